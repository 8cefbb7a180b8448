"""
CKB address codec.

Full-format addresses (payload prefix 0x00) are bech32m; the deprecated
short (0x01) and full data/type (0x02 / 0x04) formats are bech32. Addresses
are longer than the 90 characters BIP-173 allows, so no length limit applies.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

from flowmap.ledger.types import HASH_TYPES, HASH_TYPE_NAMES, Script

CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
BECH32_CONST = 1
BECH32M_CONST = 0x2BC830A3

MAINNET_HRP = "ckb"
TESTNET_HRP = "ckt"

FORMAT_FULL = 0x00
FORMAT_SHORT = 0x01
FORMAT_FULL_DATA = 0x02
FORMAT_FULL_TYPE = 0x04

# code_hash_index of the short format -> (code_hash, hash_type)
SHORT_FORMAT_SCRIPTS = {
    0x00: ("9bd7e06f3ecf4be0f2fcd2188b23f1b9fcc88e5d4b65a8637b17723bbda3cce8", "type"),
    0x01: ("5c5069eb0857efc65e1bca0c07df34c31663b3622fd3876c876320fc9634e2a8", "type"),
    0x02: ("d369597ff47f29fbc0d47d2e3775370d1250b85140c670e4718af712983a2354", "type"),
}


def _polymod(values: List[int]) -> int:
    generator = [0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3]
    chk = 1
    for value in values:
        top = chk >> 25
        chk = (chk & 0x1FFFFFF) << 5 ^ value
        for i in range(5):
            chk ^= generator[i] if ((top >> i) & 1) else 0
    return chk


def _hrp_expand(hrp: str) -> List[int]:
    return [ord(x) >> 5 for x in hrp] + [0] + [ord(x) & 31 for x in hrp]


def _create_checksum(hrp: str, data: List[int], const: int) -> List[int]:
    polymod = _polymod(_hrp_expand(hrp) + data + [0] * 6) ^ const
    return [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]


def _convert_bits(data: List[int], from_bits: int, to_bits: int, pad: bool) -> Optional[List[int]]:
    acc = 0
    bits = 0
    ret: List[int] = []
    maxv = (1 << to_bits) - 1
    for value in data:
        if value < 0 or (value >> from_bits):
            return None
        acc = (acc << from_bits) | value
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            ret.append((acc >> bits) & maxv)
    if pad:
        if bits:
            ret.append((acc << (to_bits - bits)) & maxv)
    elif bits >= from_bits or ((acc << (to_bits - bits)) & maxv):
        return None
    return ret


def _bech32_decode(address: str) -> Tuple[str, bytes, int]:
    if address.lower() != address and address.upper() != address:
        raise ValueError("mixed case")
    address = address.lower()
    pos = address.rfind("1")
    if pos < 1 or pos + 7 > len(address):
        raise ValueError("missing separator or checksum")
    hrp = address[:pos]
    try:
        data = [CHARSET.index(c) for c in address[pos + 1:]]
    except ValueError:
        raise ValueError("invalid character") from None
    const = _polymod(_hrp_expand(hrp) + data)
    if const not in (BECH32_CONST, BECH32M_CONST):
        raise ValueError("bad checksum")
    payload = _convert_bits(data[:-6], 5, 8, False)
    if payload is None:
        raise ValueError("bad padding")
    return hrp, bytes(payload), const


def decode_address(address: str) -> Tuple[str, Script]:
    """Return (hrp, script) or raise ValueError."""
    hrp, payload, const = _bech32_decode(address.strip())
    if hrp not in (MAINNET_HRP, TESTNET_HRP):
        raise ValueError(f"unknown prefix {hrp!r}")
    if not payload:
        raise ValueError("empty payload")

    fmt, body = payload[0], payload[1:]
    if fmt == FORMAT_FULL:
        if const != BECH32M_CONST:
            raise ValueError("full format requires bech32m")
        if len(body) < 33:
            raise ValueError("payload too short")
        hash_type = HASH_TYPE_NAMES.get(body[32])
        if hash_type is None:
            raise ValueError(f"unknown hash type {body[32]}")
        return hrp, Script(body[:32], hash_type, body[33:])

    if const != BECH32_CONST:
        raise ValueError("deprecated formats use bech32")
    if fmt == FORMAT_SHORT:
        if len(body) < 1 or body[0] not in SHORT_FORMAT_SCRIPTS:
            raise ValueError("unknown short format code hash index")
        code_hash, hash_type = SHORT_FORMAT_SCRIPTS[body[0]]
        return hrp, Script(bytes.fromhex(code_hash), hash_type, body[1:])
    if fmt in (FORMAT_FULL_DATA, FORMAT_FULL_TYPE):
        if len(body) < 32:
            raise ValueError("payload too short")
        hash_type = "data" if fmt == FORMAT_FULL_DATA else "type"
        return hrp, Script(body[:32], hash_type, body[32:])
    raise ValueError(f"unknown address format {fmt:#04x}")


def encode_address(script: Script, hrp: str = MAINNET_HRP) -> str:
    """Full-format (bech32m) address of `script`."""
    if not hrp or hrp.lower() != hrp or any(ord(c) < 33 or ord(c) > 126 for c in hrp):
        raise ValueError(f"invalid address prefix {hrp!r}")
    payload = bytes([FORMAT_FULL]) + script.code_hash + bytes([HASH_TYPES[script.hash_type]]) + script.args
    data = _convert_bits(list(payload), 8, 5, True)
    if data is None:
        raise ValueError("script payload is not byte data")
    checksum = _create_checksum(hrp, data, BECH32M_CONST)
    return hrp + "1" + "".join(CHARSET[d] for d in data + checksum)


def short_address(address: str) -> str:
    return f"{address[:6]}..{address[-4:]}"
