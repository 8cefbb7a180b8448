"""
The explorer as the UI sees it.

`FlowSession` wires the graph store, explorer, force layout and scene
renderer together and exposes the handful of operations a front end needs.
UI glue is limited to two optional callbacks given at construction:
`on_open(node)` for drill-down links and `on_change(result)` after a
reconcile that changed the scene.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

from flowmap.config import RetryPolicy, Settings
from flowmap.errors import UnknownNodeError
from flowmap.graph.explorer import Explorer, PageReport
from flowmap.graph.store import GraphSnapshot, GraphStore, NodeView
from flowmap.layout.simulation import ForceLayout
from flowmap.ledger.client import LedgerClient
from flowmap.render.scene import ReconcileResult, SceneRenderer

logger = logging.getLogger(__name__)


class FlowSession:
    def __init__(
        self,
        client: LedgerClient,
        *,
        distance: float = 450.0,
        page_limit: int = 100,
        retry: RetryPolicy = RetryPolicy(),
        refit_interval: float = 2.0,
        on_open: Optional[Callable[[NodeView], None]] = None,
        on_change: Optional[Callable[[ReconcileResult], None]] = None,
    ):
        self.store = GraphStore()
        self.explorer = Explorer(client, self.store, page_limit=page_limit, retry=retry)
        self.layout = ForceLayout(distance=distance)
        self.renderer = SceneRenderer(refit_interval=refit_interval)
        self._on_open = on_open
        self._on_change = on_change
        self._synced_version = -1
        self._reconciled_version = -1

    @classmethod
    def from_settings(cls, client: LedgerClient, settings: Settings, **hooks) -> "FlowSession":
        return cls(
            client,
            distance=settings.layout_distance,
            page_limit=settings.page_limit,
            retry=settings.retry,
            refit_interval=settings.refit_seconds,
            **hooks,
        )

    # -- graph growth --------------------------------------------------------

    async def add_seed_address(self, address: str) -> NodeView:
        """Raises AddressResolutionError (graph unchanged) for a bad address."""
        return await self.explorer.add_seed_address(address)

    async def load_more(self, node_id: str) -> PageReport:
        report = await self.explorer.load_more(node_id)
        if report.failed or report.error:
            logger.warning(
                "Page for %s incomplete: %d failed tx%s",
                node_id, len(report.failed), f" ({report.error})" if report.error else "",
            )
        return report

    # -- tuning ------------------------------------------------------------

    def set_layout_distance(self, value) -> float:
        return self.layout.set_distance(value)

    def set_page_limit(self, value) -> int:
        return self.explorer.set_page_limit(value)

    # -- reading -----------------------------------------------------------

    def snapshot(self) -> GraphSnapshot:
        return self.store.snapshot()

    def open_node(self, node_id: str) -> NodeView:
        node = self.store.get_node(node_id)
        if self._on_open is not None:
            self._on_open(node)
        return node

    # -- drag --------------------------------------------------------------

    def drag_start(self, node_id: str, x: float, y: float) -> None:
        self.store.get_node(node_id)
        self._sync_layout()
        self.layout.pin(node_id, x, y)

    def drag_move(self, node_id: str, x: float, y: float) -> None:
        self._require_placed(node_id)
        self.layout.pin(node_id, x, y)

    def drag_end(self, node_id: str) -> None:
        self._require_placed(node_id)
        self.layout.release(node_id)

    def _require_placed(self, node_id: str) -> None:
        if node_id not in self.layout:
            raise UnknownNodeError(node_id)

    # -- render loop ---------------------------------------------------------

    def _sync_layout(self, snap: Optional[GraphSnapshot] = None) -> None:
        if self.store.version == self._synced_version:
            return
        if snap is None:
            snap = self.store.snapshot()
        self.layout.sync((n.id for n in snap.nodes), ((e.source, e.target) for e in snap.edges))
        self._synced_version = snap.version

    def _reconcile(self) -> None:
        # drag_start can sync the layout between frames
        if self.store.version == self._reconciled_version:
            return
        snap = self.store.snapshot()
        self._sync_layout(snap)
        result = self.renderer.reconcile(snap)
        self._reconciled_version = snap.version
        if result.changed and self._on_change is not None:
            self._on_change(result)

    def step(self, now: Optional[float] = None) -> float:
        """
        One frame: absorb graph changes, advance the layout one tick,
        publish positions to the store and the scene, refit when due.
        Returns the tick's displacement.
        """
        self._reconcile()

        displacement = self.layout.tick()
        positions = self.layout.positions()
        self.store.refresh_positions(positions)
        self.renderer.on_tick(positions)
        self.renderer.step(time.monotonic() if now is None else now)
        return displacement

    async def run(self, tick_hz: float = 30.0, stop: Optional[asyncio.Event] = None) -> None:
        """Drive `step` at `tick_hz` until `stop` is set (or the task is cancelled)."""
        interval = 1.0 / tick_hz
        stop = stop or asyncio.Event()
        while not stop.is_set():
            if len(self.store):
                self.step()
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
