"""
Incremental traversal of an address's transaction history.

Each `load_more(node_id)` fetches one page of the node's transactions
(ascending chain order, after the stored cursor), then processes every
transaction in the page concurrently:

    spend = sum of inputs owned by the node's script
    got   = sum of outputs owned by the node's script

    spend > got  -> node -> every distinct output owner, amount spend - got
    got > spend  -> every distinct input owner -> node, amount got - spend
    otherwise    -> nothing

Counterparties are discovered (balance, classification, color) before the
edge is recorded, and every (tx, from, to) contribution is counted at most
once, so the final graph does not depend on completion order or retries.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple, TypeVar

from flowmap.config import RetryPolicy, parse_positive_int
from flowmap.errors import FlowmapError, LedgerUnavailableError, RetryExhaustedError
from flowmap.graph.store import NOT_STARTED, GraphStore, NodeView
from flowmap.ledger.client import LedgerClient
from flowmap.ledger.types import CellAmount, Script

logger = logging.getLogger(__name__)

T = TypeVar("T")

# statuses reported by load_more
LOADED = "loaded"
EXHAUSTED = "exhausted"
NOOP = "noop"
IN_FLIGHT = "in_flight"
FAILED = "failed"


@dataclass
class PageReport:
    node_id: str
    status: str
    batch_size: int = 0
    processed: int = 0
    failed: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def complete(self) -> bool:
        return self.status in (LOADED, EXHAUSTED) and not self.failed


class Explorer:
    def __init__(
        self,
        client: LedgerClient,
        store: GraphStore,
        page_limit: int = 100,
        retry: RetryPolicy = RetryPolicy(),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.store = store
        self.page_limit = parse_positive_int(page_limit, "page_limit")
        self.retry = retry
        self._sleep = sleep
        self._in_flight: Set[str] = set()

    def set_page_limit(self, value) -> int:
        self.page_limit = parse_positive_int(value, "page_limit")
        return self.page_limit

    async def _with_retry(self, label: str, fn: Callable[[], Awaitable[T]]) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await fn()
            except (LedgerUnavailableError, OSError) as e:
                if not self.retry.allows(attempt):
                    raise RetryExhaustedError(label, attempt, e) from e
                delay = self.retry.delay_for(attempt)
                logger.warning("%s failed (attempt %d): %s; retrying in %.2fs", label, attempt, e, delay)
                await self._sleep(delay)

    async def discover(self, address: str, script: Optional[Script] = None) -> NodeView:
        """
        Make sure `address` is a node: resolve it, snapshot its balance,
        classify it and insert it. Nothing is written unless every lookup
        succeeded, so a failed discovery leaves the graph untouched.
        """
        if address in self.store:
            return self.store.get_node(address)

        if script is None:
            script = await self.client.resolve_address(address)
        balance = await self.client.get_balance(script)
        label = self.client.classify(script)
        node = self.store.add_node(address, balance, label, script.hash_int())
        logger.debug("discovered %s (%s, balance=%d)", address, label, balance)
        return node

    async def add_seed_address(self, address: str) -> NodeView:
        """
        Add a user-entered address. The node id is the canonical address of
        the resolved script, so a deprecated short-format address and its
        full-format equivalent land on the same node.

        Ledger failures while looking up the balance are retried; a bad
        address raises AddressResolutionError right away.
        """
        address = address.strip()
        if address in self.store:
            return self.store.get_node(address)
        script = await self.client.resolve_address(address)
        node_id = self.client.address_from_script(script)
        return await self._with_retry(f"seed {node_id}", lambda: self.discover(node_id, script))

    async def load_more(self, node_id: str) -> PageReport:
        node = self.store.get_node(node_id)
        if node.exhausted:
            return PageReport(node_id, NOOP)
        if node_id in self._in_flight:
            return PageReport(node_id, IN_FLIGHT)

        self._in_flight.add(node_id)
        try:
            return await self._load_page(node)
        finally:
            self._in_flight.discard(node_id)

    async def _load_page(self, node: NodeView) -> PageReport:
        limit = self.page_limit
        cursor = None if node.cursor == NOT_STARTED else node.cursor

        try:
            script = await self._with_retry(
                f"resolve {node.id}", lambda: self.client.resolve_address(node.id)
            )
            page = await self._with_retry(
                f"page of {node.id}", lambda: self.client.list_transactions(script, limit, cursor)
            )
        except RetryExhaustedError as e:
            logger.error("Giving up on page for %s: %s", node.id, e)
            return PageReport(node.id, FAILED, error=str(e))

        exhausted = page.size < limit
        self.store.record_page(node.id, page.size, None if exhausted else page.next_cursor)
        logger.info(
            "%s: page of %d tx (limit=%d)%s",
            node.id, page.size, limit, ", exhausted" if exhausted else "",
        )

        results = await asyncio.gather(
            *(self._process_transaction(node.id, script, tx_hash) for tx_hash in page.refs)
        )
        failed = [tx_hash for tx_hash, ok in zip(page.refs, results) if not ok]

        return PageReport(
            node.id,
            EXHAUSTED if exhausted else LOADED,
            batch_size=page.size,
            processed=page.size - len(failed),
            failed=failed,
        )

    async def _process_transaction(self, node_id: str, script: Script, tx_hash: str) -> bool:
        try:
            await self._with_retry(
                f"transaction {tx_hash}", lambda: self._apply_transaction(node_id, script, tx_hash)
            )
        except FlowmapError as e:
            logger.error("Skipping %s for %s: %s", tx_hash, node_id, e)
            return False
        except Exception:
            # one malformed transaction must not take its siblings down
            logger.exception("Unexpected error processing %s for %s", tx_hash, node_id)
            return False
        return True

    async def _apply_transaction(self, node_id: str, script: Script, tx_hash: str) -> None:
        detail = await self.client.get_transaction_detail(tx_hash)
        if detail is None:
            logger.warning("Transaction %s not found; skipping", tx_hash)
            return

        spend, got = detail.volumes_for(script)
        if spend > got:
            await asyncio.gather(
                *(
                    self._link(tx_hash, node_id, dest, spend - got, (dest, dest_script))
                    for dest, dest_script in self._counterparties(detail.outputs, script)
                )
            )
        elif got > spend:
            await asyncio.gather(
                *(
                    self._link(tx_hash, src, node_id, got - spend, (src, src_script))
                    for src, src_script in self._counterparties(detail.inputs, script)
                )
            )

    def _counterparties(self, cells: Sequence[CellAmount], own: Script) -> List[Tuple[str, Script]]:
        """Distinct (address, script) owners among `cells`, excluding `own`."""
        seen: Dict[Script, str] = {}
        for cell in cells:
            if cell.owner == own or cell.owner in seen:
                continue
            seen[cell.owner] = self.client.address_from_script(cell.owner)
        return [(address, s) for s, address in seen.items()]

    async def _link(
        self,
        tx_hash: str,
        source: str,
        target: str,
        amount: int,
        counterparty: Tuple[str, Script],
    ) -> None:
        # the counterparty must exist before any edge references it
        await self.discover(*counterparty)
        if self.store.claim_and_accumulate(tx_hash, source, target, amount):
            logger.debug("%s: %s -> %s += %d", tx_hash, source, target, amount)
