import asyncio

import pytest

from flowmap.config import RetryPolicy
from flowmap.errors import AddressResolutionError, ConfigError, RetryExhaustedError, UnknownNodeError
from flowmap.graph.explorer import EXHAUSTED, FAILED, IN_FLIGHT, LOADED, NOOP, Explorer
from flowmap.graph.store import NOT_STARTED, GraphStore
from flowmap.ledger.simulator import SimulatedLedger, simulate_ledger
from flowmap.ledger.types import ONE


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def make_explorer(ledger, page_limit=100, retry=None):
    sleep = RecordingSleep()
    explorer = Explorer(
        ledger,
        GraphStore(),
        page_limit=page_limit,
        retry=retry or RetryPolicy(max_attempts=5, base_delay=0.5, max_delay=30.0),
        sleep=sleep,
    )
    return explorer, sleep


def transfer(ledger, tx_hash, src, dst, amount, change=0):
    outputs = [(dst, amount)] + ([(src, change)] if change else [])
    ledger.add_transaction(tx_hash, inputs=[(src, amount + change)], outputs=outputs)


def chain_ledger(n):
    """X pays n different wallets, one transaction each."""
    ledger = SimulatedLedger()
    ledger.add_wallet("X", balance=10_000 * ONE)
    for i in range(n):
        transfer(ledger, f"tx{i}", "X", f"R{i}", (i + 1) * ONE, change=ONE)
    return ledger


@pytest.mark.asyncio
async def test_seed_address_becomes_node():
    ledger = SimulatedLedger()
    ledger.add_wallet("X", balance=1234 * ONE)
    explorer, _ = make_explorer(ledger)

    node = await explorer.add_seed_address("  X ")

    assert node.id == "X"
    assert node.balance == 1234 * ONE
    assert node.type == "Secp256k1Blake160"
    assert node.cursor == NOT_STARTED
    assert len(explorer.store) == 1


@pytest.mark.asyncio
async def test_bad_seed_address_leaves_graph_unchanged():
    explorer, _ = make_explorer(SimulatedLedger())

    with pytest.raises(AddressResolutionError):
        await explorer.add_seed_address("ckb1notanaddress")

    assert len(explorer.store) == 0
    assert explorer.store.version == 0


@pytest.mark.asyncio
async def test_seed_balance_lookup_is_retried():
    ledger = SimulatedLedger()
    ledger.add_wallet("X", balance=5 * ONE)
    ledger.balance_failures = 2
    explorer, sleep = make_explorer(ledger)

    node = await explorer.add_seed_address("X")

    assert node.balance == 5 * ONE
    assert sleep.delays == [0.5, 1.0]
    assert ledger.calls["get_balance"] == 3


@pytest.mark.asyncio
async def test_seed_balance_lookup_gives_up_after_budget():
    ledger = SimulatedLedger()
    ledger.add_wallet("X", balance=5 * ONE)
    ledger.balance_failures = 10
    explorer, _ = make_explorer(ledger, retry=RetryPolicy(max_attempts=2, base_delay=0.1))

    with pytest.raises(RetryExhaustedError):
        await explorer.add_seed_address("X")

    assert len(explorer.store) == 0


@pytest.mark.asyncio
async def test_outflow_creates_edge_and_discovers_counterparty():
    ledger = SimulatedLedger()
    ledger.add_wallet("X", balance=1000 * ONE)
    ledger.add_wallet("Y", balance=42 * ONE)
    ledger.add_transaction("t1", inputs=[("X", 600)], outputs=[("Y", 500), ("X", 100)])
    explorer, _ = make_explorer(ledger)

    await explorer.add_seed_address("X")
    report = await explorer.load_more("X")

    assert report.status == EXHAUSTED
    assert report.complete
    assert explorer.store.edge_value("X", "Y") == 500
    assert explorer.store.edge_value("Y", "X") is None
    y = explorer.store.get_node("Y")
    assert y.balance == 42 * ONE
    assert y.cursor == NOT_STARTED


@pytest.mark.asyncio
async def test_inflow_points_at_the_loaded_node():
    ledger = SimulatedLedger()
    ledger.add_transaction("t1", inputs=[("X", 600)], outputs=[("Y", 500), ("X", 100)])
    explorer, _ = make_explorer(ledger)

    await explorer.add_seed_address("Y")
    await explorer.load_more("Y")

    assert explorer.store.edge_value("X", "Y") == 500
    assert explorer.store.edge_value("Y", "X") is None


@pytest.mark.asyncio
async def test_duplicate_delivery_is_not_double_counted():
    ledger = SimulatedLedger()
    ledger.add_transaction("t1", inputs=[("X", 600)], outputs=[("Y", 500), ("X", 100)])
    ledger.add_transaction("t1", inputs=[("X", 600)], outputs=[("Y", 500), ("X", 100)])
    explorer, _ = make_explorer(ledger)

    await explorer.add_seed_address("X")
    report = await explorer.load_more("X")

    assert report.batch_size == 2
    assert explorer.store.edge_value("X", "Y") == 500


@pytest.mark.asyncio
async def test_same_transaction_seen_from_both_ends_counts_once():
    ledger = SimulatedLedger()
    ledger.add_transaction("t1", inputs=[("X", 600)], outputs=[("Y", 500), ("X", 100)])
    explorer, _ = make_explorer(ledger)

    await explorer.add_seed_address("X")
    await explorer.load_more("X")
    await explorer.load_more("Y")

    assert explorer.store.edge_value("X", "Y") == 500


@pytest.mark.asyncio
async def test_every_destination_gets_the_full_net_amount():
    ledger = SimulatedLedger()
    ledger.add_transaction("t1", inputs=[("A", 100)], outputs=[("B", 30), ("C", 40), ("A", 30)])
    explorer, _ = make_explorer(ledger)

    await explorer.add_seed_address("A")
    await explorer.load_more("A")

    assert explorer.store.edge_value("A", "B") == 70
    assert explorer.store.edge_value("A", "C") == 70
    assert explorer.store.edge_value("A", "A") is None


@pytest.mark.asyncio
async def test_balanced_transaction_adds_no_edge():
    ledger = SimulatedLedger()
    ledger.add_transaction("t1", inputs=[("A", 100), ("B", 50)], outputs=[("A", 100), ("B", 50)])
    explorer, _ = make_explorer(ledger)

    await explorer.add_seed_address("A")
    report = await explorer.load_more("A")

    assert report.processed == 1
    assert explorer.store.stats()["edges"] == 0


@pytest.mark.asyncio
async def test_pagination_walks_history_in_pages():
    ledger = chain_ledger(7)
    explorer, _ = make_explorer(ledger, page_limit=3)
    await explorer.add_seed_address("X")

    statuses = []
    for _ in range(3):
        report = await explorer.load_more("X")
        statuses.append((report.status, report.batch_size))

    assert statuses == [(LOADED, 3), (LOADED, 3), (EXHAUSTED, 1)]
    node = explorer.store.get_node("X")
    assert node.loaded_count == 7
    assert node.exhausted
    assert explorer.store.stats()["edges"] == 7
    assert ledger.calls["list_transactions"] == 3

    report = await explorer.load_more("X")
    assert report.status == NOOP
    assert ledger.calls["list_transactions"] == 3


@pytest.mark.asyncio
async def test_history_that_fills_the_last_page_needs_an_empty_page():
    ledger = chain_ledger(6)
    explorer, _ = make_explorer(ledger, page_limit=3)
    await explorer.add_seed_address("X")

    sizes = [(await explorer.load_more("X")).batch_size for _ in range(3)]

    assert sizes == [3, 3, 0]
    assert explorer.store.get_node("X").exhausted
    assert explorer.store.get_node("X").loaded_count == 6


@pytest.mark.asyncio
async def test_load_more_unknown_node_raises():
    explorer, _ = make_explorer(SimulatedLedger())
    with pytest.raises(UnknownNodeError):
        await explorer.load_more("nobody")


@pytest.mark.asyncio
async def test_concurrent_load_of_the_same_node_is_refused():
    ledger = chain_ledger(4)
    explorer, _ = make_explorer(ledger, page_limit=2)
    await explorer.add_seed_address("X")

    first, second = await asyncio.gather(explorer.load_more("X"), explorer.load_more("X"))

    assert first.status == LOADED
    assert second.status == IN_FLIGHT
    assert explorer.store.get_node("X").loaded_count == 2


@pytest.mark.asyncio
async def test_transient_failure_is_retried_with_backoff():
    ledger = chain_ledger(2)
    ledger.fail_times["tx0"] = 2
    explorer, sleep = make_explorer(ledger)
    await explorer.add_seed_address("X")

    report = await explorer.load_more("X")

    assert report.complete
    assert explorer.store.edge_value("X", "R0") == ONE
    assert sleep.delays == [0.5, 1.0]


@pytest.mark.asyncio
async def test_exhausted_retry_budget_reports_failed_transaction():
    ledger = chain_ledger(3)
    ledger.fail_times["tx1"] = 100
    explorer, sleep = make_explorer(ledger, retry=RetryPolicy(max_attempts=3, base_delay=0.1, max_delay=1.0))
    await explorer.add_seed_address("X")

    report = await explorer.load_more("X")

    assert report.failed == ["tx1"]
    assert report.processed == 2
    assert not report.complete
    assert explorer.store.edge_value("X", "R1") is None
    assert explorer.store.edge_value("X", "R0") == ONE
    assert len(sleep.delays) == 2


@pytest.mark.asyncio
async def test_unbounded_retry_eventually_succeeds():
    ledger = chain_ledger(1)
    ledger.fail_times["tx0"] = 12
    explorer, sleep = make_explorer(ledger, retry=RetryPolicy(max_attempts=None, base_delay=0.5, max_delay=4.0))
    await explorer.add_seed_address("X")

    report = await explorer.load_more("X")

    assert report.complete
    assert len(sleep.delays) == 12
    assert max(sleep.delays) == 4.0


@pytest.mark.asyncio
async def test_failed_listing_leaves_node_unchanged():
    ledger = chain_ledger(2)
    ledger.list_failures = 5
    explorer, _ = make_explorer(ledger, retry=RetryPolicy(max_attempts=2, base_delay=0.1))
    await explorer.add_seed_address("X")

    report = await explorer.load_more("X")

    assert report.status == FAILED
    assert report.error
    node = explorer.store.get_node("X")
    assert node.cursor == NOT_STARTED
    assert node.loaded_count == 0

    ledger.list_failures = 0
    assert (await explorer.load_more("X")).status == EXHAUSTED


class PrunedLedger(SimulatedLedger):
    """Lists a transaction whose detail the node no longer has."""

    def __init__(self, missing):
        super().__init__()
        self.missing = set(missing)

    async def get_transaction_detail(self, tx_hash):
        if tx_hash in self.missing:
            return None
        return await super().get_transaction_detail(tx_hash)


@pytest.mark.asyncio
async def test_missing_transaction_is_skipped():
    ledger = PrunedLedger(missing={"t0"})
    ledger.add_transaction("t0", inputs=[("X", 9)], outputs=[("W", 9)])
    ledger.add_transaction("t1", inputs=[("X", 5)], outputs=[("Z", 5)])
    explorer, _ = make_explorer(ledger)
    await explorer.add_seed_address("X")

    report = await explorer.load_more("X")

    assert report.complete
    assert report.processed == 2
    assert explorer.store.edge_value("X", "Z") == 5
    assert "W" not in explorer.store


def test_set_page_limit_validates():
    explorer, _ = make_explorer(SimulatedLedger())

    assert explorer.set_page_limit("25") == 25
    for bad in ("abc", 0, -1, "2.5"):
        with pytest.raises(ConfigError):
            explorer.set_page_limit(bad)
    assert explorer.page_limit == 25


@pytest.mark.asyncio
async def test_final_graph_does_not_depend_on_completion_order():
    async def explore(ledger):
        explorer, _ = make_explorer(ledger, page_limit=100)
        seed = ledger.wallets[0]
        await explorer.add_seed_address(seed)
        await explorer.load_more(seed)
        # pages of different nodes in a fixed order; transactions within a page race
        for node_id in sorted(n.id for n in explorer.store.snapshot().nodes if n.has_more):
            await explorer.load_more(node_id)
        return {(e.source, e.target): e.value for e in explorer.store.snapshot().edges}

    in_order = await explore(simulate_ledger(n_wallets=8, n_txs=30, seed=3))
    shuffled = await explore(simulate_ledger(n_wallets=8, n_txs=30, seed=3, jitter=0.002))

    assert in_order
    assert in_order == shuffled
