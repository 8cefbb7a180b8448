from __future__ import annotations

import asyncio
import random
from collections import Counter
from typing import Dict, List, Optional, Sequence, Tuple

from flowmap.errors import AddressResolutionError, LedgerUnavailableError
from flowmap.ledger import known_scripts
from flowmap.ledger.address import decode_address, encode_address
from flowmap.ledger.types import ONE, CellAmount, Script, TransactionDetail, TransactionPage, ckb_hash


def generate_wallet_args(i: int) -> bytes:
    return ckb_hash(f"W{i:04d}".encode())[:20]


class SimulatedLedger:
    """
    In-memory ledger implementing the LedgerClient protocol.

    Wallets are either real encoded addresses or arbitrary labels ("A", "X",
    ...). Transactions are listed in insertion order, which stands in for
    chain order; adding the same hash twice lists it twice, the way a
    duplicate delivery would. `fail_times[tx_hash] = n` makes the next n
    detail fetches of that hash fail, and `list_failures = n` and
    `balance_failures = n` do the same for page listings and balance lookups.
    """

    def __init__(self, jitter: float = 0.0, seed: int = 42):
        self.jitter = jitter
        self._rng = random.Random(seed)
        self._scripts: Dict[str, Script] = {}
        self._addresses: Dict[Script, str] = {}
        self._balances: Dict[Script, int] = {}
        self._txs: Dict[str, TransactionDetail] = {}
        self._order: List[str] = []
        self.fail_times: Dict[str, int] = {}
        self.list_failures = 0
        self.balance_failures = 0
        self.calls: Counter = Counter()

    @property
    def wallets(self) -> List[str]:
        return list(self._scripts)

    def add_wallet(
        self,
        address: Optional[str] = None,
        balance: int = 0,
        kind: str = "Secp256k1Blake160",
    ) -> str:
        if address is None:
            script = known_scripts.script_for(kind, generate_wallet_args(len(self._scripts)))
            address = encode_address(script)
        elif address in self._scripts:
            script = self._scripts[address]
        else:
            script = known_scripts.script_for(kind, ckb_hash(address.encode())[:20])

        self._scripts[address] = script
        self._addresses[script] = address
        self._balances[script] = int(balance)
        return address

    def script_of(self, address: str) -> Script:
        return self._scripts[address]

    def add_transaction(
        self,
        tx_hash: str,
        inputs: Sequence[Tuple[str, int]],
        outputs: Sequence[Tuple[str, int]],
    ) -> str:
        """inputs/outputs are (address, shannons) pairs; unknown addresses become wallets."""
        for address, _ in list(inputs) + list(outputs):
            if address not in self._scripts:
                self.add_wallet(address)

        self._txs[tx_hash] = TransactionDetail(
            tx_hash=tx_hash,
            inputs=tuple(CellAmount(self._scripts[a], int(v)) for a, v in inputs),
            outputs=tuple(CellAmount(self._scripts[a], int(v)) for a, v in outputs),
        )
        self._order.append(tx_hash)
        return tx_hash

    async def _latency(self) -> None:
        if self.jitter > 0:
            await asyncio.sleep(self._rng.random() * self.jitter)
        else:
            await asyncio.sleep(0)

    def _involves(self, tx_hash: str, script: Script) -> bool:
        tx = self._txs[tx_hash]
        return any(c.owner == script for c in tx.inputs + tx.outputs)

    async def resolve_address(self, address: str) -> Script:
        self.calls["resolve_address"] += 1
        await self._latency()
        if address in self._scripts:
            return self._scripts[address]
        try:
            _, script = decode_address(address)
        except ValueError as e:
            raise AddressResolutionError(address, str(e)) from e
        return script

    async def get_balance(self, script: Script) -> int:
        self.calls["get_balance"] += 1
        await self._latency()
        if self.balance_failures > 0:
            self.balance_failures -= 1
            raise LedgerUnavailableError("simulated balance failure")
        return self._balances.get(script, 0)

    async def list_transactions(
        self, script: Script, limit: int, cursor: Optional[str]
    ) -> TransactionPage:
        self.calls["list_transactions"] += 1
        await self._latency()
        if self.list_failures > 0:
            self.list_failures -= 1
            raise LedgerUnavailableError("simulated listing failure")

        matching = [h for h in self._order if self._involves(h, script)]
        start = int(cursor) if cursor else 0
        refs = matching[start:start + limit]
        return TransactionPage(refs=refs, next_cursor=str(start + len(refs)))

    async def get_transaction_detail(self, tx_hash: str) -> Optional[TransactionDetail]:
        self.calls["get_transaction_detail"] += 1
        await self._latency()
        remaining = self.fail_times.get(tx_hash, 0)
        if remaining > 0:
            self.fail_times[tx_hash] = remaining - 1
            raise LedgerUnavailableError(f"simulated failure fetching {tx_hash}")
        return self._txs.get(tx_hash)

    def classify(self, script: Script) -> str:
        return known_scripts.classify(script)

    def address_from_script(self, script: Script) -> str:
        return self._addresses.get(script) or encode_address(script)


def simulate_ledger(
    n_wallets: int = 60,
    n_txs: int = 400,
    seed: int = 42,
    jitter: float = 0.0,
) -> SimulatedLedger:
    """
    Create a toy ledger: n_wallets wallets and n_txs transfers, each spending
    one wallet's cell into 1-3 receivers plus change back to the sender.
    """
    rng = random.Random(seed)
    ledger = SimulatedLedger(jitter=jitter, seed=seed)

    wallets = []
    for _ in range(n_wallets):
        # skewed balances, a few whales
        balance = int(max(61, rng.random() ** 3 * 1_000_000) * ONE)
        wallets.append(ledger.add_wallet(balance=balance))

    for t in range(n_txs):
        src = rng.choice(wallets)
        receivers = rng.sample([w for w in wallets if w != src], k=rng.randint(1, 3))
        amount = int(max(61, rng.random() ** 2 * 10_000) * ONE)
        spent = amount * (len(receivers) + 1)
        outputs = [(r, amount) for r in receivers] + [(src, spent - amount * len(receivers) - 1000)]
        tx_hash = "0x" + ckb_hash(f"T{seed}_{t:06d}".encode()).hex()
        ledger.add_transaction(tx_hash, inputs=[(src, spent)], outputs=outputs)

    return ledger
