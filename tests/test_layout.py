import math

import numpy as np
import pytest

from flowmap.errors import ConfigError
from flowmap.layout.simulation import ForceLayout


def chain_layout(distance=450.0):
    layout = ForceLayout(distance=distance)
    layout.sync(["A", "B", "C"], [("A", "B"), ("B", "C")])
    return layout


def dist(layout, a, b):
    (ax, ay), (bx, by) = layout.position(a), layout.position(b)
    return math.hypot(ax - bx, ay - by)


def test_small_graph_settles():
    layout = chain_layout()
    displacements = layout.run(600)

    assert displacements[-1] < 1.0
    # after the initial burst, motion keeps shrinking
    assert np.mean(displacements[550:]) <= np.mean(displacements[150:200]) + 1e-9


def test_linked_nodes_sit_near_link_distance():
    layout = chain_layout()
    layout.run(600)

    assert dist(layout, "A", "B") == pytest.approx(450, abs=60)
    assert dist(layout, "B", "C") == pytest.approx(450, abs=60)
    # the unlinked ends are pushed apart further than either link
    assert dist(layout, "A", "C") > dist(layout, "A", "B")


def test_layout_stays_centered():
    layout = chain_layout()
    layout.run(600)

    center = np.mean(list(layout.positions().values()), axis=0)
    assert np.all(np.abs(center) < 5.0)


def test_growth_keeps_existing_positions():
    layout = ForceLayout()
    layout.sync(["A", "B"], [("A", "B")])
    layout.run(200)
    before = layout.positions()

    added = layout.sync(["A", "B", "C"], [("A", "B"), ("B", "C")])

    assert added == 1
    assert len(layout) == 3
    assert layout.positions()["A"] == before["A"]
    assert layout.positions()["B"] == before["B"]
    assert all(math.isfinite(v) for v in layout.position("C"))


def test_resync_without_changes_adds_nothing():
    layout = chain_layout()
    assert layout.sync(["A", "B", "C"], [("A", "B"), ("B", "C")]) == 0


def test_new_nodes_do_not_start_on_top_of_each_other():
    layout = ForceLayout()
    layout.sync([f"N{i}" for i in range(20)], [])

    points = {layout.position(f"N{i}") for i in range(20)}
    assert len(points) == 20


def test_pinned_node_does_not_move():
    layout = chain_layout()
    layout.run(50)
    layout.pin("B", 100.0, -50.0)

    layout.run(100)

    assert layout.is_pinned("B")
    assert layout.position("B") == (100.0, -50.0)


def test_released_node_moves_again():
    layout = chain_layout()
    layout.pin("A", 2000.0, 2000.0)
    layout.run(20)
    layout.release("A")

    layout.run(5)

    assert not layout.is_pinned("A")
    assert layout.position("A") != (2000.0, 2000.0)


def test_coincident_nodes_are_separated():
    layout = chain_layout()
    layout.pin("A", 0.0, 0.0)
    layout.pin("B", 0.0, 0.0)
    layout.release("A")
    layout.release("B")

    layout.run(10)

    positions = layout.positions()
    assert all(math.isfinite(c) for xy in positions.values() for c in xy)
    assert positions["A"] != positions["B"]


def test_self_loops_are_ignored():
    layout = ForceLayout()
    layout.sync(["A"], [("A", "A")])
    layout.run(10)
    assert all(math.isfinite(c) for c in layout.position("A"))


def test_empty_layout_ticks():
    layout = ForceLayout()
    assert layout.tick() == 0.0
    assert layout.positions() == {}


def test_alpha_cools_toward_target():
    layout = chain_layout()
    layout.run(600)
    assert layout.alpha == pytest.approx(layout.alpha_target, abs=1e-3)
    assert layout.alpha > 0


def test_set_distance_validates():
    layout = ForceLayout()
    assert layout.set_distance("300") == 300.0
    for bad in ("abc", 0, -5, ""):
        with pytest.raises(ConfigError):
            layout.set_distance(bad)
    assert layout.distance == 300.0
