import asyncio
import logging
from typing import Any, Dict, Optional, Set

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import HTMLResponse

from flowmap.config import Settings
from flowmap.errors import (
    AddressResolutionError,
    ConfigError,
    LedgerUnavailableError,
    RetryExhaustedError,
    UnknownNodeError,
)
from flowmap.graph.explorer import PageReport
from flowmap.graph.frames import snapshot_frames
from flowmap.graph.store import NodeView
from flowmap.ledger.ckb_rpc import CkbRpcClient
from flowmap.ledger.simulator import simulate_ledger
from flowmap.logging_setup import configure_logging
from flowmap.render.pyvis_view import render_html
from flowmap.session import FlowSession

logger = logging.getLogger(__name__)

app = FastAPI(title="Flowmap Explorer API", version="0.1.0")

SETTINGS: Optional[Settings] = None
SESSION: Optional[FlowSession] = None
SEED_ERROR: Optional[str] = None
LAST_OPENED: Optional[str] = None

_STOP: Optional[asyncio.Event] = None
_RENDER_TASK: Optional[asyncio.Task] = None
_TASKS: Set[asyncio.Task] = set()


def explorer_link(node_id: str) -> str:
    base = SETTINGS.explorer_url if SETTINGS else "https://explorer.nervos.org"
    return f"{base}/address/{node_id}"


def _remember_open(node: NodeView) -> None:
    global LAST_OPENED
    LAST_OPENED = explorer_link(node.id)
    logger.info("Open requested for %s -> %s", node.id, LAST_OPENED)


def build_client(settings: Settings):
    if settings.ledger_source == "sim":
        return simulate_ledger()
    return CkbRpcClient(url=settings.rpc_url, timeout=settings.rpc_timeout)


def _spawn(coro) -> asyncio.Task:
    task = asyncio.create_task(coro)
    _TASKS.add(task)
    task.add_done_callback(_TASKS.discard)
    return task


def _require_session() -> FlowSession:
    if SESSION is None:
        raise HTTPException(status_code=503, detail="Session not started")
    return SESSION


def _report_dict(report: PageReport) -> Dict[str, Any]:
    return {
        "node_id": report.node_id,
        "status": report.status,
        "batch_size": report.batch_size,
        "processed": report.processed,
        "failed": report.failed,
        "error": report.error,
        "complete": report.complete,
    }


async def _load_in_background(session: FlowSession, node_id: str) -> None:
    report = await session.load_more(node_id)
    logger.info("Background page for %s finished: %s", node_id, report.status)


@app.on_event("startup")
async def startup():
    global SETTINGS, SESSION, SEED_ERROR, _STOP, _RENDER_TASK

    configure_logging()
    SETTINGS = Settings.from_env()
    SEED_ERROR = None
    logger.info("Starting explorer (ledger=%s)", SETTINGS.ledger_source)

    client = build_client(SETTINGS)
    SESSION = FlowSession.from_settings(client, SETTINGS, on_open=_remember_open)

    _STOP = asyncio.Event()
    _RENDER_TASK = asyncio.create_task(SESSION.run(tick_hz=SETTINGS.tick_hz, stop=_STOP))

    seed = SETTINGS.seed_address
    if SETTINGS.ledger_source == "sim":
        seed = client.wallets[0]
    if seed:
        try:
            node = await SESSION.add_seed_address(seed)
            logger.info("Seed address added: %s (%s)", node.id, node.type)
        except AddressResolutionError as e:
            SEED_ERROR = str(e)
            logger.error("Seed address rejected: %s", e)
        except Exception as e:
            SEED_ERROR = f"Seed address not loaded: {e}"
            logger.exception("Seed address not loaded")


@app.on_event("shutdown")
async def shutdown():
    if _STOP is not None:
        _STOP.set()
    pending = list(_TASKS)
    for task in pending:
        task.cancel()
    if _RENDER_TASK is not None:
        pending.append(_RENDER_TASK)
    await asyncio.gather(*pending, return_exceptions=True)


@app.get("/health")
def health():
    session = SESSION
    return {
        "status": "ok" if session is not None else "starting",
        "ledger_source": SETTINGS.ledger_source if SETTINGS else None,
        "seed_error": SEED_ERROR,
        "graph": session.store.stats() if session else None,
        "layout": None
        if session is None
        else {
            "distance": session.layout.distance,
            "alpha": round(session.layout.alpha, 6),
            "ticks": session.layout.ticks,
        },
        "page_limit": session.explorer.page_limit if session else None,
        "pending_pages": len(_TASKS),
        "last_opened": LAST_OPENED,
    }


@app.post("/addresses")
async def add_address(address: str = Query(..., min_length=1)):
    session = _require_session()
    try:
        node = await session.add_seed_address(address)
    except AddressResolutionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (LedgerUnavailableError, RetryExhaustedError) as e:
        raise HTTPException(status_code=503, detail=f"Ledger unavailable: {e}")
    return {"id": node.id, "type": node.type, "balance": str(node.balance)}


@app.post("/nodes/{node_id}/load-more")
async def load_more(node_id: str, wait: bool = Query(False)):
    session = _require_session()
    try:
        node = session.store.get_node(node_id)
    except UnknownNodeError as e:
        raise HTTPException(status_code=404, detail=str(e))

    if wait:
        return _report_dict(await session.load_more(node_id))

    if node.exhausted:
        return {"node_id": node_id, "accepted": False, "status": "noop"}
    _spawn(_load_in_background(session, node_id))
    return {"node_id": node_id, "accepted": True}


@app.post("/nodes/{node_id}/open")
async def open_node(node_id: str):
    session = _require_session()
    try:
        node = session.open_node(node_id)
    except UnknownNodeError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"id": node.id, "url": explorer_link(node.id)}


@app.put("/settings")
async def update_settings(distance: Optional[str] = None, page_limit: Optional[str] = None):
    session = _require_session()
    try:
        if distance is not None:
            session.set_layout_distance(distance)
        if page_limit is not None:
            session.set_page_limit(page_limit)
    except ConfigError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"distance": session.layout.distance, "page_limit": session.explorer.page_limit}


@app.get("/graph")
async def graph():
    session = _require_session()
    snap = session.snapshot()
    return {
        "version": snap.version,
        "nodes": [
            {
                "id": n.id,
                "type": n.type,
                "balance": str(n.balance),
                "loaded_count": n.loaded_count,
                "has_more": n.has_more,
                "size": n.size,
                "color": n.color,
                "x": n.x,
                "y": n.y,
            }
            for n in snap.nodes
        ],
        "edges": [{"source": e.source, "target": e.target, "value": str(e.value)} for e in snap.edges],
        "scene": session.renderer.to_dict(),
    }


@app.get("/graph/frames")
async def graph_frames():
    session = _require_session()
    nodes, edges = snapshot_frames(session.snapshot())
    # integers as strings so JSON clients never see rounded amounts
    nodes["balance"] = nodes["balance"].map(str)
    edges["value"] = edges["value"].map(str)
    return {"nodes": nodes.to_dict(orient="records"), "edges": edges.to_dict(orient="records")}


@app.get("/graph/html", response_class=HTMLResponse)
async def graph_html(height: str = Query("650px")):
    session = _require_session()
    return HTMLResponse(render_html(session.renderer, height=height))
