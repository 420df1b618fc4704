"""
devchain.state.snapshots — immutable ledger versions and state deltas.

A ``LedgerSnapshot`` is one complete version of the devnet:

- sequence:   ledger sequence number (0 at devnet creation, +1 per apply)
- timestamp:  wall-clock seconds when the version was produced
- accounts:   handle -> Account
- instances:  instance_id -> ContractInstance
- codes:      code_hash -> ContractCode

Tables are exposed as read-only mappings. A ``StateDelta`` carries full
replacement records (upserts only; nothing is ever physically deleted on the
devnet) and ``LedgerSnapshot.advance`` folds one into the next version.

Design notes
------------
Snapshots copy their tables on construction, which keeps them trivially
shareable across threads and makes historical reads free of locking. The
devnet is small enough that O(table) per version is not a concern.

``state_root()`` commits to the tables (not the sequence or timestamp) with
SHA3-256 over canonical CBOR, so two snapshots with identical content share a
root regardless of how they were reached.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, List, Mapping

from devchain.hashing import cbor_hash

if TYPE_CHECKING:  # pragma: no cover
    from devchain.state.accounts import Account
    from devchain.state.contracts import ContractCode, ContractInstance


# =============================================================================
# Delta
# =============================================================================


@dataclass
class StateDelta:
    """
    Upserts keyed by table primary key. Records overwrite the target entry
    wholesale; the engine validates them against the current snapshot.
    """

    accounts: Dict[str, "Account"] = field(default_factory=dict)
    instances: Dict[str, "ContractInstance"] = field(default_factory=dict)
    codes: Dict[str, "ContractCode"] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not (self.accounts or self.instances or self.codes)

    def touched(self) -> Dict[str, List[str]]:
        return {
            "accounts": sorted(self.accounts),
            "instances": sorted(self.instances),
            "codes": sorted(self.codes),
        }


# =============================================================================
# Snapshot
# =============================================================================


@dataclass(frozen=True)
class LedgerSnapshot:
    sequence: int
    timestamp: float
    accounts: Mapping[str, "Account"] = field(default_factory=dict)
    instances: Mapping[str, "ContractInstance"] = field(default_factory=dict)
    codes: Mapping[str, "ContractCode"] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.sequence < 0:
            raise ValueError("ledger sequence must be non-negative")
        object.__setattr__(self, "accounts", MappingProxyType(dict(self.accounts)))
        object.__setattr__(self, "instances", MappingProxyType(dict(self.instances)))
        object.__setattr__(self, "codes", MappingProxyType(dict(self.codes)))

    @classmethod
    def genesis(cls, timestamp: float) -> "LedgerSnapshot":
        return cls(sequence=0, timestamp=timestamp)

    def advance(self, delta: StateDelta, *, timestamp: float) -> "LedgerSnapshot":
        """Next version with ``delta`` folded in. Validation is the caller's job."""
        accounts = dict(self.accounts)
        accounts.update(delta.accounts)
        instances = dict(self.instances)
        instances.update(delta.instances)
        codes = dict(self.codes)
        codes.update(delta.codes)
        return LedgerSnapshot(
            sequence=self.sequence + 1,
            timestamp=timestamp,
            accounts=accounts,
            instances=instances,
            codes=codes,
        )

    def tables(self) -> Dict[str, Any]:
        """Plain-dict view of all tables (canonical encoding input)."""
        return {
            "accounts": {h: a.to_dict() for h, a in self.accounts.items()},
            "instances": {i: inst.to_dict() for i, inst in self.instances.items()},
            "codes": {c: code.to_dict() for c, code in self.codes.items()},
        }

    def state_root(self) -> str:
        return cbor_hash(self.tables())


__all__ = ["LedgerSnapshot", "StateDelta"]
