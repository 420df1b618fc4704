"""
devchain.state.accounts — Account records and the AccountStore facade.

An Account holds four fields:

- handle:      human-readable identity ("alice"); the table key
- public_key:  0x-hex Ed25519 public key derived from (devnet seed, handle)
- balance:     non-negative integer in the smallest currency unit
- sequence:    transaction counter; advances once per successful transaction

Accounts are immutable values. "Changing" an account produces a new record
that is handed to the LedgerStateEngine inside a StateDelta; the store itself
holds no state, so the engine stays the single writer of every table.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, List, Optional

from devchain.errors import (
    DuplicateHandle,
    InsufficientBalance,
    InvalidAmount,
    NotFound,
    UnknownAccount,
)
from devchain.logging import get_logger
from devchain.state.keys import Keyring
from devchain.state.snapshots import LedgerSnapshot, StateDelta

if TYPE_CHECKING:  # pragma: no cover
    from devchain.state.ledger import LedgerStateEngine

log = get_logger(__name__)

_HANDLE_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.\-]{0,63}$")


def check_handle(handle: str) -> str:
    if not isinstance(handle, str) or not _HANDLE_RE.match(handle):
        raise ValueError(f"invalid account handle {handle!r} (1-64 chars of [A-Za-z0-9_.-])")
    return handle


def check_amount(amount: int, *, allow_zero: bool = False) -> int:
    """Amounts are plain ints; bools and floats are rejected."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount(amount, rule="amount must be an integer")
    if amount < 0 or (amount == 0 and not allow_zero):
        raise InvalidAmount(amount, rule="amount must be >= 0" if allow_zero else "amount must be > 0")
    return amount


# --------------------------------------------------------------------------- #
# Account
# --------------------------------------------------------------------------- #


@dataclass(frozen=True)
class Account:
    """
    Invariants:
    - balance >= 0
    - sequence >= 0
    """

    handle: str
    public_key: str
    balance: int = 0
    sequence: int = 0

    def __post_init__(self) -> None:
        if self.balance < 0:
            raise ValueError("balance must be non-negative")
        if self.sequence < 0:
            raise ValueError("sequence must be non-negative")

    def credited(self, amount: int) -> "Account":
        return replace(self, balance=self.balance + amount)

    def debited(self, amount: int) -> "Account":
        if amount > self.balance:
            raise InsufficientBalance(self.handle, required=amount, available=self.balance)
        return replace(self, balance=self.balance - amount)

    def bumped(self) -> "Account":
        """Next sequence number consumed."""
        return replace(self, sequence=self.sequence + 1)

    def to_dict(self) -> dict:
        return {
            "handle": self.handle,
            "public_key": self.public_key,
            "balance": self.balance,
            "sequence": self.sequence,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Account":
        return cls(
            handle=str(data["handle"]),
            public_key=str(data["public_key"]),
            balance=int(data["balance"]),
            sequence=int(data["sequence"]),
        )


# --------------------------------------------------------------------------- #
# Store facade
# --------------------------------------------------------------------------- #


class AccountStore:
    """
    Account operations over a LedgerStateEngine.

    ``create`` and ``fund`` each apply one delta (and so advance the ledger
    sequence by one); reads go to the engine's current snapshot.
    """

    def __init__(self, engine: "LedgerStateEngine", keyring: Keyring) -> None:
        self._engine = engine
        self._keyring = keyring

    @property
    def keyring(self) -> Keyring:
        return self._keyring

    def create(self, handle: str) -> Account:
        check_handle(handle)
        public_key = self._keyring.public_key(handle)

        def build(snap: LedgerSnapshot) -> StateDelta:
            if handle in snap.accounts:
                raise DuplicateHandle(handle)
            return StateDelta(accounts={handle: Account(handle=handle, public_key=public_key)})

        snap = self._engine.transact(build)
        log.info("account.created", account=handle, ledger_sequence=snap.sequence)
        return snap.accounts[handle]

    def fund(self, handle: str, amount: int) -> Account:
        """Mint ``amount`` into ``handle``; the sequence number is untouched."""
        check_amount(amount)

        def build(snap: LedgerSnapshot) -> StateDelta:
            acc = snap.accounts.get(handle)
            if acc is None:
                raise UnknownAccount(handle)
            return StateDelta(accounts={handle: acc.credited(amount)})

        snap = self._engine.transact(build)
        acc = snap.accounts[handle]
        log.info("account.funded", account=handle, amount=amount, balance=acc.balance)
        return acc

    def find(self, handle: str) -> Optional[Account]:
        return self._engine.current().accounts.get(handle)

    def get(self, handle: str) -> Account:
        acc = self.find(handle)
        if acc is None:
            raise NotFound("account", handle)
        return acc

    def next_sequence(self, handle: str) -> int:
        acc = self.find(handle)
        if acc is None:
            raise UnknownAccount(handle)
        return acc.sequence + 1

    def list(self) -> List[Account]:
        accounts = self._engine.current().accounts
        return [accounts[h] for h in sorted(accounts)]

    def total_balance(self) -> int:
        return sum(a.balance for a in self._engine.current().accounts.values())

    def __contains__(self, handle: object) -> bool:
        return handle in self._engine.current().accounts

    def __len__(self) -> int:
        return len(self._engine.current().accounts)


__all__ = ["Account", "AccountStore", "check_handle", "check_amount"]
