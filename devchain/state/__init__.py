"""
devchain.state — the devnet's system of record.

Submodules:
- accounts:     Account records and the AccountStore facade
- contracts:    ContractCode / ContractInstance and the ContractRegistry facade
- snapshots:    LedgerSnapshot versions and StateDelta upserts
- ledger:       LedgerStateEngine (single writer, bounded history)
- keys:         Keyring (deterministic Ed25519 identities)
- persistence:  snapshot codec and SnapshotStore

Symbols are lazily re-exported from their submodules on first access.
"""

from __future__ import annotations

from importlib import import_module as _imp
from typing import Any, Dict, Tuple

_exports: Dict[str, Tuple[str, str]] = {
    "Account": ("accounts", "Account"),
    "AccountStore": ("accounts", "AccountStore"),
    "ContractCode": ("contracts", "ContractCode"),
    "ContractInstance": ("contracts", "ContractInstance"),
    "ContractRegistry": ("contracts", "ContractRegistry"),
    "LedgerSnapshot": ("snapshots", "LedgerSnapshot"),
    "StateDelta": ("snapshots", "StateDelta"),
    "LedgerStateEngine": ("ledger", "LedgerStateEngine"),
    "Keyring": ("keys", "Keyring"),
    "SnapshotStore": ("persistence", "SnapshotStore"),
    "encode_snapshot": ("persistence", "encode_snapshot"),
    "decode_snapshot": ("persistence", "decode_snapshot"),
}

__all__ = tuple(_exports.keys())


def __getattr__(name: str) -> Any:
    """
    Lazy attribute loader to avoid import-time dependency tangles.
    """
    if name in _exports:
        submod, symbol = _exports[name]
        mod = _imp(f"{__name__}.{submod}")
        return getattr(mod, symbol)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:  # pragma: no cover
    return sorted(list(globals().keys()) + list(__all__))
