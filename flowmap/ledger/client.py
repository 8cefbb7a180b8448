"""
The interface the explorer core needs from a ledger.

Two implementations ship with the project: `CkbRpcClient` (public JSON-RPC
node) and `SimulatedLedger` (in-memory, used offline and in tests).
"""

from __future__ import annotations

from typing import Optional, Protocol

from flowmap.ledger.types import Script, TransactionDetail, TransactionPage


class LedgerClient(Protocol):
    async def resolve_address(self, address: str) -> Script:
        """Raise AddressResolutionError when the address is malformed."""
        ...

    async def get_balance(self, script: Script) -> int:
        ...

    async def list_transactions(
        self, script: Script, limit: int, cursor: Optional[str]
    ) -> TransactionPage:
        """Transactions touching `script`, ascending by chain order, after `cursor`."""
        ...

    async def get_transaction_detail(self, tx_hash: str) -> Optional[TransactionDetail]:
        ...

    def classify(self, script: Script) -> str:
        ...

    def address_from_script(self, script: Script) -> str:
        ...
