import threading

import pytest

from flowmap.errors import UnknownNodeError
from flowmap.graph.store import NOT_STARTED, GraphStore
from flowmap.ledger.types import ONE


def make_store(*ids):
    store = GraphStore()
    for i, node_id in enumerate(ids):
        store.add_node(node_id, balance=(i + 1) * 1000 * ONE, type="Secp256k1Blake160", color_seed=i * 50)
    return store


def test_add_node_is_idempotent():
    store = make_store("A")
    version = store.version

    again = store.add_node("A", balance=1, type="Unknown", color_seed=7)

    assert again.balance == 1000 * ONE
    assert again.type == "Secp256k1Blake160"
    assert len(store) == 1
    assert store.version == version


def test_new_node_defaults():
    node = make_store("A").get_node("A")

    assert node.loaded_count == 0
    assert node.cursor == NOT_STARTED
    assert node.has_more
    assert node.color == "hsl(0 65% 45%)"
    assert node.size == pytest.approx(3 * 4 + 24)


def test_get_unknown_node_raises():
    with pytest.raises(UnknownNodeError):
        make_store("A").get_node("B")


def test_edges_accumulate_in_any_order():
    a = make_store("A", "B")
    a.add_or_accumulate_edge("A", "B", 5)
    a.add_or_accumulate_edge("A", "B", 7)

    b = make_store("A", "B")
    b.add_or_accumulate_edge("A", "B", 7)
    b.add_or_accumulate_edge("A", "B", 5)

    assert a.edge_value("A", "B") == b.edge_value("A", "B") == 12


def test_reverse_direction_is_a_separate_edge():
    store = make_store("A", "B")
    store.add_or_accumulate_edge("A", "B", 5)
    store.add_or_accumulate_edge("B", "A", 3)

    assert store.edge_value("A", "B") == 5
    assert store.edge_value("B", "A") == 3
    assert store.stats()["edges"] == 2


@pytest.mark.parametrize("amount", [0, -10])
def test_non_positive_amount_rejected(amount):
    store = make_store("A", "B")
    with pytest.raises(ValueError):
        store.add_or_accumulate_edge("A", "B", amount)
    assert store.edge_value("A", "B") is None


def test_edge_requires_both_endpoints():
    store = make_store("A")
    with pytest.raises(UnknownNodeError):
        store.add_or_accumulate_edge("A", "Z", 1)


def test_claim_counts_each_contribution_once():
    store = make_store("A", "B")

    assert store.claim_and_accumulate("tx1", "A", "B", 500)
    assert not store.claim_and_accumulate("tx1", "A", "B", 500)
    assert store.claim_and_accumulate("tx2", "A", "B", 100)

    assert store.edge_value("A", "B") == 600


def test_failed_accumulate_releases_claim():
    store = make_store("A")
    with pytest.raises(UnknownNodeError):
        store.claim_and_accumulate("tx1", "A", "B", 10)

    store.add_node("B", balance=0, type="Unknown", color_seed=0)
    assert store.claim_and_accumulate("tx1", "A", "B", 10)


def test_large_values_stay_exact():
    store = make_store("A", "B")
    big = 2**70 + 1
    store.add_or_accumulate_edge("A", "B", big)
    store.add_or_accumulate_edge("A", "B", 1)
    assert store.edge_value("A", "B") == 2**70 + 2


def test_record_page_marks_exhausted():
    store = make_store("A")
    store.record_page("A", 3, "cursor-1")
    node = store.record_page("A", 2, None)

    assert node.loaded_count == 5
    assert node.exhausted
    assert not node.has_more


def test_concurrent_accumulates_are_not_lost():
    store = make_store("A", "B")

    def worker(offset):
        for i in range(200):
            store.claim_and_accumulate(f"tx{offset}-{i}", "A", "B", 1)

    threads = [threading.Thread(target=worker, args=(t,)) for t in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert store.edge_value("A", "B") == 8 * 200
    assert store.stats()["claimed"] == 8 * 200


def test_positions_do_not_bump_version():
    store = make_store("A")
    version = store.version
    store.refresh_positions({"A": (3.0, 4.0), "ghost": (1.0, 1.0)})

    node = store.get_node("A")
    assert (node.x, node.y) == (3.0, 4.0)
    assert store.version == version


def test_snapshot_is_detached():
    store = make_store("A", "B")
    snap = store.snapshot()
    store.add_or_accumulate_edge("A", "B", 1)

    assert snap.edges == ()
    assert snap.node("A").id == "A"
    assert snap.node("missing") is None
