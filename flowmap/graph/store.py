"""
The authoritative fund-flow graph.

Directed graph: source -> target means net value moved from source to
target. Node attributes hold the address snapshot (balance, type, derived
size/color) and exploration state; edge attributes hold the accumulated
`value`. Every mutation goes through one lock so concurrent traversal tasks
can never lose an accumulate.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Set, Tuple

import networkx as nx

from flowmap.errors import UnknownNodeError
from flowmap.formatting import node_color, node_size

NOT_STARTED = "NOT_STARTED"


@dataclass(frozen=True)
class NodeView:
    id: str
    balance: int
    type: str
    loaded_count: int
    cursor: Optional[str]
    size: float
    color: str
    x: float = 0.0
    y: float = 0.0

    @property
    def has_more(self) -> bool:
        return bool(self.cursor)

    @property
    def exhausted(self) -> bool:
        return not self.cursor


@dataclass(frozen=True)
class EdgeView:
    source: str
    target: str
    value: int

    @property
    def id(self) -> str:
        return edge_id(self.source, self.target)


@dataclass(frozen=True)
class GraphSnapshot:
    version: int
    nodes: Tuple[NodeView, ...]
    edges: Tuple[EdgeView, ...]

    def node(self, node_id: str) -> Optional[NodeView]:
        for n in self.nodes:
            if n.id == node_id:
                return n
        return None


def edge_id(source: str, target: str) -> str:
    return f"{source}->{target}"


class GraphStore:
    def __init__(self) -> None:
        self._g = nx.DiGraph()
        self._claimed: Set[Tuple[str, str, str]] = set()
        self._lock = threading.RLock()
        self._version = 0

    def _bump(self) -> None:
        self._version += 1

    def _view(self, node_id: str) -> NodeView:
        attrs = self._g.nodes[node_id]
        return NodeView(id=node_id, **attrs)

    @property
    def version(self) -> int:
        return self._version

    def __contains__(self, node_id: object) -> bool:
        with self._lock:
            return node_id in self._g

    def __len__(self) -> int:
        with self._lock:
            return self._g.number_of_nodes()

    def add_node(self, node_id: str, balance: int, type: str, color_seed: int) -> NodeView:
        """Insert a node unless it already exists; return the stored node either way."""
        with self._lock:
            if node_id not in self._g:
                self._g.add_node(
                    node_id,
                    balance=int(balance),
                    type=type,
                    loaded_count=0,
                    cursor=NOT_STARTED,
                    size=node_size(balance),
                    color=node_color(color_seed),
                    x=0.0,
                    y=0.0,
                )
                self._bump()
            return self._view(node_id)

    def get_node(self, node_id: str) -> NodeView:
        with self._lock:
            if node_id not in self._g:
                raise UnknownNodeError(node_id)
            return self._view(node_id)

    def add_or_accumulate_edge(self, source: str, target: str, amount: int) -> int:
        """Add `amount` to the source->target edge, creating it if needed. Returns the new value."""
        if amount <= 0:
            raise ValueError(f"Edge amount must be positive, got {amount}")
        with self._lock:
            for node_id in (source, target):
                if node_id not in self._g:
                    raise UnknownNodeError(node_id)
            if self._g.has_edge(source, target):
                self._g[source][target]["value"] += int(amount)
            else:
                self._g.add_edge(source, target, value=int(amount))
            self._bump()
            return self._g[source][target]["value"]

    def try_claim(self, tx_hash: str, from_id: str, to_id: str) -> bool:
        """Mark a transaction's contribution to a directed pair as counted; False if it already was."""
        key = (tx_hash, from_id, to_id)
        with self._lock:
            if key in self._claimed:
                return False
            self._claimed.add(key)
            return True

    def claim_and_accumulate(self, tx_hash: str, source: str, target: str, amount: int) -> bool:
        with self._lock:
            if not self.try_claim(tx_hash, source, target):
                return False
            try:
                self.add_or_accumulate_edge(source, target, amount)
            except Exception:
                self._claimed.discard((tx_hash, source, target))
                raise
            return True

    def record_page(self, node_id: str, batch_size: int, next_cursor: Optional[str]) -> NodeView:
        """Advance a node's exploration state; `next_cursor=None` marks it exhausted."""
        with self._lock:
            if node_id not in self._g:
                raise UnknownNodeError(node_id)
            attrs = self._g.nodes[node_id]
            attrs["loaded_count"] += int(batch_size)
            attrs["cursor"] = next_cursor
            self._bump()
            return self._view(node_id)

    def refresh_positions(self, positions: Mapping[str, Tuple[float, float]]) -> None:
        # positions are not structural; the version is left alone
        with self._lock:
            for node_id, (x, y) in positions.items():
                if node_id in self._g:
                    attrs = self._g.nodes[node_id]
                    attrs["x"] = float(x)
                    attrs["y"] = float(y)

    def edge_value(self, source: str, target: str) -> Optional[int]:
        with self._lock:
            if not self._g.has_edge(source, target):
                return None
            return self._g[source][target]["value"]

    def snapshot(self) -> GraphSnapshot:
        with self._lock:
            nodes = tuple(self._view(n) for n in self._g.nodes)
            edges = tuple(EdgeView(u, v, d["value"]) for u, v, d in self._g.edges(data=True))
            return GraphSnapshot(version=self._version, nodes=nodes, edges=edges)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "nodes": int(self._g.number_of_nodes()),
                "edges": int(self._g.number_of_edges()),
                "claimed": len(self._claimed),
            }
