"""
Scene graph kept in sync with the data graph.

Every node and edge gets one persistent glyph keyed by its id. `reconcile`
does the enter/update/exit pass when the data graph changes; `on_tick`
moves glyphs to the current layout positions; `step` refits the viewport at
the render loop's cadence.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from flowmap.formatting import edge_width, format_amount
from flowmap.graph.store import EdgeView, GraphSnapshot, NodeView
from flowmap.ledger.address import short_address

VIEW_PADDING = 100.0
MIN_ZOOM = 0.5
LABEL_SOURCE_WEIGHT = 0.3

# text offsets relative to the node center
ADDR_DY = 18.0
TYPE_DY = -18.0
MORE_DY = 16.0


@dataclass
class TextGlyph:
    text: str
    x: float = 0.0
    y: float = 0.0


@dataclass
class NodeGlyph:
    id: str
    radius: float
    fill: str
    address: TextGlyph
    balance: TextGlyph
    type: TextGlyph
    more: TextGlyph
    has_more: bool
    cx: float = 0.0
    cy: float = 0.0


@dataclass
class EdgeGlyph:
    id: str
    source: str
    target: str
    stroke_width: float
    label: TextGlyph
    x1: float = 0.0
    y1: float = 0.0
    x2: float = 0.0
    y2: float = 0.0


@dataclass
class ReconcileResult:
    entered: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    exited: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.entered or self.updated or self.exited)


@dataclass(frozen=True)
class Viewport:
    min_x: float
    min_y: float
    width: float
    height: float

    @property
    def view_box(self) -> str:
        return f"{self.min_x:g} {self.min_y:g} {self.width:g} {self.height:g}"


@dataclass(frozen=True)
class ViewTransform:
    x: float = 0.0
    y: float = 0.0
    k: float = 1.0

    def apply(self, point: Tuple[float, float]) -> Tuple[float, float]:
        return point[0] * self.k + self.x, point[1] * self.k + self.y


def load_label(node: NodeView) -> str:
    return f"({node.loaded_count}) {'Load more' if node.has_more else 'Loaded'}"


def fit_viewport(positions: Mapping[str, Tuple[float, float]], padding: float = VIEW_PADDING) -> Viewport:
    """Smallest box holding every node and the origin, padded on all sides."""
    min_x = min_y = max_x = max_y = 0.0
    for x, y in positions.values():
        min_x, min_y = min(min_x, x), min(min_y, y)
        max_x, max_y = max(max_x, x), max(max_y, y)
    return Viewport(min_x - padding, min_y - padding, max_x - min_x + 2 * padding, max_y - min_y + 2 * padding)


class SceneRenderer:
    def __init__(self, refit_interval: float = 2.0, padding: float = VIEW_PADDING, min_zoom: float = MIN_ZOOM):
        self.refit_interval = refit_interval
        self.padding = padding
        self.min_zoom = min_zoom
        self.nodes: Dict[str, NodeGlyph] = {}
        self.edges: Dict[str, EdgeGlyph] = {}
        self.viewport = Viewport(-padding, -padding, 2 * padding, 2 * padding)
        self.transform = ViewTransform()
        self._last_refit: Optional[float] = None
        self._positions: Dict[str, Tuple[float, float]] = {}

    # -- data graph changes -------------------------------------------------

    def _enter_node(self, node: NodeView) -> NodeGlyph:
        return NodeGlyph(
            id=node.id,
            radius=node.size,
            fill=node.color,
            address=TextGlyph(short_address(node.id)),
            balance=TextGlyph(format_amount(node.balance)),
            type=TextGlyph(node.type),
            more=TextGlyph(load_label(node)),
            has_more=node.has_more,
        )

    def _enter_edge(self, edge: EdgeView) -> EdgeGlyph:
        return EdgeGlyph(
            id=edge.id,
            source=edge.source,
            target=edge.target,
            stroke_width=edge_width(edge.value),
            label=TextGlyph(format_amount(edge.value)),
        )

    def reconcile(self, snapshot: GraphSnapshot) -> ReconcileResult:
        result = ReconcileResult()

        seen_nodes = set()
        for node in snapshot.nodes:
            seen_nodes.add(node.id)
            glyph = self.nodes.get(node.id)
            if glyph is None:
                self.nodes[node.id] = self._enter_node(node)
                result.entered.append(node.id)
                continue
            # balance/type/color are creation-time snapshots; only the load label moves
            label = load_label(node)
            if glyph.more.text != label or glyph.has_more != node.has_more:
                glyph.more.text = label
                glyph.has_more = node.has_more
                result.updated.append(node.id)

        seen_edges = set()
        for edge in snapshot.edges:
            seen_edges.add(edge.id)
            glyph = self.edges.get(edge.id)
            if glyph is None:
                self.edges[edge.id] = self._enter_edge(edge)
                result.entered.append(edge.id)
                continue
            text = format_amount(edge.value)
            width = edge_width(edge.value)
            if glyph.label.text != text or glyph.stroke_width != width:
                glyph.label.text = text
                glyph.stroke_width = width
                result.updated.append(edge.id)

        for node_id in [n for n in self.nodes if n not in seen_nodes]:
            del self.nodes[node_id]
            result.exited.append(node_id)
        for eid in [e for e in self.edges if e not in seen_edges]:
            del self.edges[eid]
            result.exited.append(eid)

        return result

    # -- simulation ticks ---------------------------------------------------

    def on_tick(self, positions: Mapping[str, Tuple[float, float]]) -> None:
        self._positions = dict(positions)

        for node_id, g in self.nodes.items():
            if node_id not in positions:
                continue
            x, y = positions[node_id]
            g.cx, g.cy = x, y
            g.address.x, g.address.y = x, y + ADDR_DY
            g.balance.x, g.balance.y = x, y
            g.type.x, g.type.y = x, y + TYPE_DY
            g.more.x, g.more.y = x, y + g.radius + MORE_DY

        w = LABEL_SOURCE_WEIGHT
        for g in self.edges.values():
            if g.source not in positions or g.target not in positions:
                continue
            (sx, sy), (tx, ty) = positions[g.source], positions[g.target]
            g.x1, g.y1, g.x2, g.y2 = sx, sy, tx, ty
            g.label.x = sx * w + tx * (1 - w)
            g.label.y = sy * w + ty * (1 - w)

    # -- view -------------------------------------------------------------

    def refit(self) -> Viewport:
        self.viewport = fit_viewport(self._positions, self.padding)
        self.transform = ViewTransform()
        return self.viewport

    def step(self, now: float) -> bool:
        """Refit the viewport if `refit_interval` has elapsed since the last refit."""
        if self._last_refit is None or now - self._last_refit >= self.refit_interval:
            self.refit()
            self._last_refit = now
            return True
        return False

    def zoom(self, k: float, x: Optional[float] = None, y: Optional[float] = None) -> ViewTransform:
        """User zoom/pan; holds until the next refit."""
        self.transform = ViewTransform(
            x=self.transform.x if x is None else x,
            y=self.transform.y if y is None else y,
            k=max(self.min_zoom, k),
        )
        return self.transform

    def pan(self, dx: float, dy: float) -> ViewTransform:
        return self.zoom(self.transform.k, self.transform.x + dx, self.transform.y + dy)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "viewport": {**asdict(self.viewport), "view_box": self.viewport.view_box},
            "transform": asdict(self.transform),
            "nodes": [asdict(g) for g in self.nodes.values()],
            "edges": [asdict(g) for g in self.edges.values()],
        }
