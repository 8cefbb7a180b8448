from __future__ import annotations

from typing import Dict, Tuple

from flowmap.ledger.types import Script

UNKNOWN = "Unknown"

# label -> (code_hash hex, hash_type) of well-known mainnet scripts
MAINNET_SCRIPTS: Dict[str, Tuple[str, str]] = {
    "NervosDao": ("82d76d1b75fe2fd9a27dfbaa65a039221a380d76c926f378d3f81cf3e7e13f2e", "type"),
    "Secp256k1Blake160": ("9bd7e06f3ecf4be0f2fcd2188b23f1b9fcc88e5d4b65a8637b17723bbda3cce8", "type"),
    "Secp256k1Multisig": ("5c5069eb0857efc65e1bca0c07df34c31663b3622fd3876c876320fc9634e2a8", "type"),
    "AnyoneCanPay": ("d369597ff47f29fbc0d47d2e3775370d1250b85140c670e4718af712983a2354", "type"),
    "TypeId": ("00000000000000000000000000000000000000000000000000545950455f4944", "type"),
    "SUdt": ("5e7a36a77e68eecc013dfa2fe6a23f3b6c344b04005808694ae6dd45eea4cfd5", "type"),
    "XUdt": ("50bd8d6680b8b9cf98b73f3c08faf8b2a21914311954118ad6609be6e78a1b95", "data1"),
    "JoyId": ("d00c84f0ec8fd441c38bc3f87a371f547190f2fcff88e642bc5bf54b9e318323", "type"),
    "PWLock": ("bf43c3602455798c1a61a596e0d95278864c552fafe231c063b3fabf97a8febc", "type"),
    "OmniLock": ("9b819793a64463aed77c615d6cb226eea5487ccfc0783043a587254cda2b6f26", "type"),
}

_BY_IDENTITY: Dict[Tuple[bytes, str], str] = {
    (bytes.fromhex(code_hash), hash_type): label
    for label, (code_hash, hash_type) in MAINNET_SCRIPTS.items()
}


def classify(script: Script) -> str:
    """Human label for the script's code, or "Unknown"."""
    return _BY_IDENTITY.get((script.code_hash, script.hash_type), UNKNOWN)


def script_for(label: str, args: bytes = b"") -> Script:
    code_hash, hash_type = MAINNET_SCRIPTS[label]
    return Script(bytes.fromhex(code_hash), hash_type, args)
