"""
Explore an address headlessly and print the resulting flow graph.

Usage:
    python -m flowmap.cli --ledger sim --pages 2
    python -m flowmap.cli --address ckb1... --pages 3 --page-limit 50 [--ticks 300]
"""

from __future__ import annotations

import argparse
import asyncio

import pandas as pd

from flowmap.config import Settings, parse_positive_int
from flowmap.errors import FlowmapError
from flowmap.graph.frames import snapshot_frames
from flowmap.ledger.ckb_rpc import CkbRpcClient
from flowmap.ledger.simulator import simulate_ledger
from flowmap.logging_setup import configure_logging
from flowmap.session import FlowSession


async def explore(session: FlowSession, address: str, pages: int) -> None:
    node = await session.add_seed_address(address)
    print(f"🌱 Seed: {node.id} ({node.type})")

    for i in range(pages):
        # expand every node that still has history, one page each
        frontier = [n.id for n in session.snapshot().nodes if n.has_more]
        if not frontier:
            print("✅ Every node fully loaded")
            return
        print(f"🔗 Round {i + 1}: loading a page for {len(frontier)} node(s)...")
        reports = await asyncio.gather(*(session.load_more(node_id) for node_id in frontier))
        failed = sum(len(r.failed) for r in reports) + sum(1 for r in reports if r.error)
        stats = session.store.stats()
        print(f"   nodes={stats['nodes']} edges={stats['edges']} failed={failed}")


def main():
    parser = argparse.ArgumentParser(description="Explore CKB fund flows from a seed address")
    parser.add_argument(
        "--ledger",
        choices=["rpc", "sim"],
        default=None,
        help="Ledger source (default: LEDGER_SOURCE env var, else rpc)",
    )
    parser.add_argument("--address", default=None, help="Seed address (default: SEED_ADDRESS env var)")
    parser.add_argument("--pages", type=int, default=1, help="Exploration rounds")
    parser.add_argument("--page-limit", default=None, help="Transactions per page")
    parser.add_argument("--ticks", type=int, default=300, help="Layout ticks before printing positions")
    parser.add_argument("--top", type=int, default=15, help="Rows to print per table")

    args = parser.parse_args()
    configure_logging()

    try:
        settings = Settings.from_env()
        source = args.ledger or settings.ledger_source
        page_limit = parse_positive_int(args.page_limit or settings.page_limit, "page_limit")
    except FlowmapError as e:
        print(f"❌ {e}")
        raise SystemExit(2)

    if source == "sim":
        client = simulate_ledger()
        address = args.address or client.wallets[0]
    else:
        client = CkbRpcClient(url=settings.rpc_url, timeout=settings.rpc_timeout)
        address = args.address or settings.seed_address
    if not address:
        print("❌ No seed address given")
        raise SystemExit(2)

    session = FlowSession.from_settings(client, settings)
    session.set_page_limit(page_limit)

    try:
        asyncio.run(explore(session, address, args.pages))
    except FlowmapError as e:
        print(f"❌ {e}")
        raise SystemExit(1)

    print(f"🧲 Running layout for {args.ticks} ticks...")
    for _ in range(args.ticks):
        session.step()

    nodes, edges = snapshot_frames(session.snapshot())
    with pd.option_context("display.max_columns", None, "display.width", 200):
        print("\n📊 Nodes (by balance):")
        print(nodes.sort_values("balance", key=lambda s: s.map(int), ascending=False).head(args.top).to_string(index=False))
        print("\n💸 Largest flows:")
        print(edges.head(args.top).to_string(index=False))


if __name__ == "__main__":
    main()
