"""
CKB JSON-RPC client for fetching live ledger data.

Talks to a public node with the indexer module enabled
(https://mainnet.ckb.dev/ by default). Every blocking HTTP call runs in a
worker thread so the explorer's event loop keeps going while requests are
in flight.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from collections import OrderedDict
from typing import Any, Dict, List, Optional

import requests

from flowmap.errors import AddressResolutionError, LedgerUnavailableError
from flowmap.ledger import known_scripts
from flowmap.ledger.address import MAINNET_HRP, decode_address, encode_address
from flowmap.ledger.types import CellAmount, Script, TransactionDetail, TransactionPage

logger = logging.getLogger(__name__)

ZERO_HASH = "0x" + "00" * 32


class CkbRpcClient:
    """Ledger client backed by a CKB node's JSON-RPC API."""

    DEFAULT_URL = "https://mainnet.ckb.dev/"
    TX_CACHE_SIZE = 4096

    def __init__(
        self,
        url: str = DEFAULT_URL,
        timeout: float = 30.0,
        hrp: str = MAINNET_HRP,
        cache_size: int = TX_CACHE_SIZE,
    ):
        """
        Initialize the client.

        Args:
            url: JSON-RPC endpoint (node with the indexer module)
            timeout: HTTP timeout per request in seconds
            hrp: address prefix used when turning scripts back into addresses
            cache_size: most committed transactions kept for input resolution
        """
        self.url = url
        self.timeout = timeout
        self.hrp = hrp
        self._ids = itertools.count(1)
        # committed transactions never change, so previous outputs can be reused
        self._tx_cache: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self._cache_size = cache_size
        self._cache_lock = threading.Lock()

    def _call(self, method: str, params: List[Any]) -> Any:
        payload = {"id": next(self._ids), "jsonrpc": "2.0", "method": method, "params": params}
        try:
            resp = requests.post(self.url, json=payload, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise LedgerUnavailableError(f"{method} failed: {e}") from e

        if data.get("error"):
            raise LedgerUnavailableError(f"{method} returned error: {data['error']}")
        return data.get("result")

    def _get_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        with self._cache_lock:
            cached = self._tx_cache.get(tx_hash)
            if cached is not None:
                self._tx_cache.move_to_end(tx_hash)
                return cached

        result = self._call("get_transaction", [tx_hash])
        if not result or not result.get("transaction"):
            return None

        status = (result.get("tx_status") or {}).get("status")
        if status == "committed":
            with self._cache_lock:
                self._tx_cache[tx_hash] = result
                if len(self._tx_cache) > self._cache_size:
                    self._tx_cache.popitem(last=False)
        return result

    def _resolve_input(self, previous_output: Dict[str, Any]) -> Optional[CellAmount]:
        prev_hash = previous_output["tx_hash"]
        if prev_hash == ZERO_HASH:
            return None  # cellbase

        prev = self._get_transaction(prev_hash)
        if prev is None:
            raise LedgerUnavailableError(f"previous transaction {prev_hash} not found")

        output = prev["transaction"]["outputs"][int(previous_output["index"], 16)]
        return CellAmount(owner=Script.from_rpc(output["lock"]), amount=int(output["capacity"], 16))

    async def resolve_address(self, address: str) -> Script:
        try:
            _, script = decode_address(address)
        except ValueError as e:
            raise AddressResolutionError(address, str(e)) from e
        return script

    async def get_balance(self, script: Script) -> int:
        search_key = {"script": script.to_rpc(), "script_type": "lock", "script_search_mode": "exact"}
        result = await asyncio.to_thread(self._call, "get_cells_capacity", [search_key])
        if not result:
            return 0
        return int(result["capacity"], 16)

    async def list_transactions(
        self, script: Script, limit: int, cursor: Optional[str]
    ) -> TransactionPage:
        """
        Fetch one page of transactions for a lock script.

        Args:
            script: lock script to search for
            limit: maximum page size
            cursor: continuation token from the previous page, or None to start

        Returns:
            TransactionPage with tx hashes in ascending chain order
        """
        search_key = {
            "script": script.to_rpc(),
            "script_type": "lock",
            "script_search_mode": "exact",
            "group_by_transaction": True,
        }
        result = await asyncio.to_thread(
            self._call, "get_transactions", [search_key, "asc", hex(limit), cursor]
        )
        objects = (result or {}).get("objects") or []
        refs = [obj["tx_hash"] for obj in objects]
        logger.debug("get_transactions returned %d refs (cursor=%s)", len(refs), cursor)
        return TransactionPage(refs=refs, next_cursor=(result or {}).get("last_cursor"))

    async def get_transaction_detail(self, tx_hash: str) -> Optional[TransactionDetail]:
        raw = await asyncio.to_thread(self._get_transaction, tx_hash)
        if raw is None:
            return None

        tx = raw["transaction"]
        resolved = await asyncio.gather(
            *(asyncio.to_thread(self._resolve_input, i["previous_output"]) for i in tx["inputs"])
        )
        inputs = tuple(c for c in resolved if c is not None)
        outputs = tuple(
            CellAmount(owner=Script.from_rpc(o["lock"]), amount=int(o["capacity"], 16))
            for o in tx["outputs"]
        )
        return TransactionDetail(tx_hash=tx_hash, inputs=inputs, outputs=outputs)

    def classify(self, script: Script) -> str:
        return known_scripts.classify(script)

    def address_from_script(self, script: Script) -> str:
        return encode_address(script, self.hrp)
