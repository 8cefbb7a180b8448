"""
Continuous force-directed layout.

A velocity-integrated simulation in the d3-force manner: every tick the
link, charge and centering forces are applied with the current `alpha`,
velocities decay, and positions advance. `alpha` decays toward a small
positive target instead of zero, so the layout stays gently live and nodes
added later settle in without a restart.

Positions belong to this class; callers get copies through `positions()`.
"""

from __future__ import annotations

import math
from typing import Dict, Iterable, List, Tuple

import numpy as np

from flowmap.config import parse_positive_float

INITIAL_RADIUS = 10.0
INITIAL_ANGLE = math.pi * (3 - math.sqrt(5))


class ForceLayout:
    def __init__(
        self,
        distance: float = 450.0,
        charge_strength: float = -6000.0,
        link_strength: float = 3.0,
        center_strength: float = 0.1,
        alpha: float = 1.0,
        alpha_min: float = 0.001,
        alpha_target: float = 0.005,
        velocity_decay: float = 0.4,
        distance_min2: float = 1.0,
        seed: int = 0,
    ):
        self.distance = parse_positive_float(distance, "distance")
        self.charge_strength = charge_strength
        self.link_strength = link_strength
        self.center_strength = center_strength
        self.alpha = alpha
        self.alpha_target = alpha_target
        self.alpha_decay = 1 - alpha_min ** (1 / 300)
        self.velocity_decay = velocity_decay
        self.distance_min2 = distance_min2
        self.ticks = 0

        self._ids: List[str] = []
        self._index: Dict[str, int] = {}
        self._pos = np.zeros((0, 2))
        self._vel = np.zeros((0, 2))
        self._fixed = np.full((0, 2), np.nan)
        self._links = np.zeros((0, 2), dtype=int)
        self._bias = np.zeros(0)
        self._rng = np.random.default_rng(seed)

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._index

    def set_distance(self, value) -> float:
        self.distance = parse_positive_float(value, "distance")
        return self.distance

    def _initial_position(self, i: int) -> Tuple[float, float]:
        # phyllotaxis spiral around the origin so fresh nodes never coincide
        radius = INITIAL_RADIUS * math.sqrt(0.5 + i)
        angle = i * INITIAL_ANGLE
        return radius * math.cos(angle), radius * math.sin(angle)

    def sync(self, node_ids: Iterable[str], edges: Iterable[Tuple[str, str]]) -> int:
        """
        Absorb the current node/edge set. Existing nodes keep their position
        and velocity; new ones start near the origin. Returns how many nodes
        were added.
        """
        new_ids = [n for n in node_ids if n not in self._index]
        if new_ids:
            start = len(self._ids)
            fresh = np.array([self._initial_position(start + k) for k in range(len(new_ids))])
            self._pos = np.vstack([self._pos, fresh])
            self._vel = np.vstack([self._vel, np.zeros((len(new_ids), 2))])
            self._fixed = np.vstack([self._fixed, np.full((len(new_ids), 2), np.nan)])
            for node_id in new_ids:
                self._index[node_id] = len(self._ids)
                self._ids.append(node_id)

        pairs = [
            (self._index[s], self._index[t])
            for s, t in edges
            if s in self._index and t in self._index and s != t
        ]
        self._links = np.array(pairs, dtype=int).reshape(-1, 2)

        count = np.bincount(self._links.ravel(), minlength=len(self._ids)).astype(float)
        if len(self._links):
            src, tgt = self._links[:, 0], self._links[:, 1]
            self._bias = count[src] / (count[src] + count[tgt])
        else:
            self._bias = np.zeros(0)
        return len(new_ids)

    def pin(self, node_id: str, x: float, y: float) -> None:
        i = self._index[node_id]
        self._fixed[i] = (x, y)
        self._pos[i] = (x, y)
        self._vel[i] = 0.0

    def release(self, node_id: str) -> None:
        self._fixed[self._index[node_id]] = np.nan

    def is_pinned(self, node_id: str) -> bool:
        return not np.isnan(self._fixed[self._index[node_id], 0])

    def _jiggle(self, shape) -> np.ndarray:
        return (self._rng.random(shape) - 0.5) * 1e-6

    def _apply_links(self, alpha: float) -> None:
        if not len(self._links):
            return
        src, tgt = self._links[:, 0], self._links[:, 1]
        delta = (self._pos[tgt] + self._vel[tgt]) - (self._pos[src] + self._vel[src])
        zero = ~delta.any(axis=1)
        if zero.any():
            delta[zero] = self._jiggle((int(zero.sum()), 2))
        length = np.linalg.norm(delta, axis=1)
        scale = (length - self.distance) / length * alpha * self.link_strength
        delta *= scale[:, None]

        np.add.at(self._vel, tgt, -delta * self._bias[:, None])
        np.add.at(self._vel, src, delta * (1 - self._bias)[:, None])

    def _apply_charge(self, alpha: float) -> None:
        n = len(self._ids)
        if n < 2:
            return
        # delta[i, j] points from node i to node j
        delta = self._pos[None, :, :] - self._pos[:, None, :]
        l2 = np.einsum("ijk,ijk->ij", delta, delta)
        np.fill_diagonal(l2, np.inf)

        coincident = l2 == 0
        if coincident.any():
            delta[coincident] = self._jiggle((int(coincident.sum()), 2))
            l2 = np.einsum("ijk,ijk->ij", delta, delta)
            np.fill_diagonal(l2, np.inf)

        l2 = np.maximum(l2, self.distance_min2)
        weight = self.charge_strength * alpha / l2
        self._vel += np.einsum("ij,ijk->ik", weight, delta)

    def _apply_center(self) -> None:
        if not len(self._ids):
            return
        shift = self._pos.mean(axis=0) * self.center_strength
        self._pos -= shift

    def tick(self) -> float:
        """Advance one step; returns the total displacement of all nodes."""
        self.alpha += (self.alpha_target - self.alpha) * self.alpha_decay
        self.ticks += 1
        if not len(self._ids):
            return 0.0

        before = self._pos.copy()
        self._apply_links(self.alpha)
        self._apply_charge(self.alpha)
        self._apply_center()

        self._vel *= 1 - self.velocity_decay
        self._pos += self._vel

        pinned = ~np.isnan(self._fixed[:, 0])
        if pinned.any():
            self._pos[pinned] = self._fixed[pinned]
            self._vel[pinned] = 0.0

        return float(np.linalg.norm(self._pos - before, axis=1).sum())

    def run(self, ticks: int) -> List[float]:
        return [self.tick() for _ in range(ticks)]

    def position(self, node_id: str) -> Tuple[float, float]:
        x, y = self._pos[self._index[node_id]]
        return float(x), float(y)

    def positions(self) -> Dict[str, Tuple[float, float]]:
        return {node_id: (float(x), float(y)) for node_id, (x, y) in zip(self._ids, self._pos)}

