from __future__ import annotations

from typing import Tuple

import pandas as pd

from flowmap.formatting import format_amount
from flowmap.graph.store import GraphSnapshot

NODE_COLUMNS = ["id", "type", "balance", "balance_ckb", "loaded_count", "has_more", "in_degree", "out_degree", "x", "y"]
EDGE_COLUMNS = ["source", "target", "value", "value_ckb"]


def snapshot_frames(snapshot: GraphSnapshot) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Node and edge tables for display.

    Amounts stay integer shannons in `balance`/`value` (object dtype so very
    large values never round); `*_ckb` columns are the formatted strings.
    """
    in_deg = {n.id: 0 for n in snapshot.nodes}
    out_deg = dict(in_deg)
    for e in snapshot.edges:
        out_deg[e.source] = out_deg.get(e.source, 0) + 1
        in_deg[e.target] = in_deg.get(e.target, 0) + 1

    nodes = pd.DataFrame(
        [
            {
                "id": n.id,
                "type": n.type,
                "balance": n.balance,
                "balance_ckb": format_amount(n.balance),
                "loaded_count": n.loaded_count,
                "has_more": n.has_more,
                "in_degree": in_deg.get(n.id, 0),
                "out_degree": out_deg.get(n.id, 0),
                "x": round(n.x, 2),
                "y": round(n.y, 2),
            }
            for n in snapshot.nodes
        ],
        columns=NODE_COLUMNS,
    )
    nodes["balance"] = nodes["balance"].astype(object)

    edges = pd.DataFrame(
        [
            {"source": e.source, "target": e.target, "value": e.value, "value_ckb": format_amount(e.value)}
            for e in snapshot.edges
        ],
        columns=EDGE_COLUMNS,
    )
    edges["value"] = edges["value"].astype(object)
    if not edges.empty:
        # sort on the exact integers, not a float view of them
        edges = edges.iloc[sorted(range(len(edges)), key=lambda i: -edges["value"].iat[i])].reset_index(drop=True)

    return nodes, edges
