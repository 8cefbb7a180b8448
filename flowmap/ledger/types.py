"""
Ledger-side value types: scripts, resolved cell amounts, transaction pages.

Amounts are integers in shannons (1 CKB = 10**8 shannons) and are never
converted to float on the way through the core.
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

ONE = 10**8  # shannons per CKB

HASH_TYPES: Dict[str, int] = {"data": 0, "type": 1, "data1": 2, "data2": 4}
HASH_TYPE_NAMES: Dict[int, str] = {v: k for k, v in HASH_TYPES.items()}


def ckb_hash(data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=32, person=b"ckb-default-hash").digest()


def _hex_bytes(value: str) -> bytes:
    value = value[2:] if value.startswith("0x") else value
    return bytes.fromhex(value)


@dataclass(frozen=True)
class Script:
    """A lock script; the identity behind an address."""

    code_hash: bytes
    hash_type: str
    args: bytes = b""

    def __post_init__(self) -> None:
        if len(self.code_hash) != 32:
            raise ValueError(f"code_hash must be 32 bytes, got {len(self.code_hash)}")
        if self.hash_type not in HASH_TYPES:
            raise ValueError(f"Unknown hash_type {self.hash_type!r}")

    def serialize(self) -> bytes:
        """Molecule `Script` table: header, field offsets, then the three fields."""
        args_field = struct.pack("<I", len(self.args)) + self.args
        header_size = 4 + 3 * 4
        offsets = (header_size, header_size + 32, header_size + 33)
        total = header_size + 32 + 1 + len(args_field)
        return (
            struct.pack("<IIII", total, *offsets)
            + self.code_hash
            + bytes([HASH_TYPES[self.hash_type]])
            + args_field
        )

    def hash(self) -> bytes:
        return ckb_hash(self.serialize())

    def hash_int(self) -> int:
        return int.from_bytes(self.hash(), "big")

    def to_rpc(self) -> Dict[str, str]:
        return {
            "code_hash": "0x" + self.code_hash.hex(),
            "hash_type": self.hash_type,
            "args": "0x" + self.args.hex(),
        }

    @classmethod
    def from_rpc(cls, obj: Dict[str, Any]) -> "Script":
        return cls(
            code_hash=_hex_bytes(obj["code_hash"]),
            hash_type=obj["hash_type"],
            args=_hex_bytes(obj.get("args", "0x")),
        )


@dataclass(frozen=True)
class CellAmount:
    owner: Script
    amount: int


@dataclass(frozen=True)
class TransactionDetail:
    tx_hash: str
    inputs: Tuple[CellAmount, ...] = ()
    outputs: Tuple[CellAmount, ...] = ()

    def volumes_for(self, script: Script) -> Tuple[int, int]:
        """(spend_volume, got_volume) of `script` within this transaction."""
        spend = sum(i.amount for i in self.inputs if i.owner == script)
        got = sum(o.amount for o in self.outputs if o.owner == script)
        return spend, got


@dataclass(frozen=True)
class TransactionPage:
    refs: List[str] = field(default_factory=list)
    next_cursor: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.refs)
