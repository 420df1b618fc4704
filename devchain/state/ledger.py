"""
devchain.state.ledger — LedgerStateEngine, the single writer of devnet state.

The engine holds the current LedgerSnapshot plus a bounded, append-only log
of prior versions. Every mutation in devchain funnels through ``transact``:

    snap = engine.transact(lambda current: build_delta(current))

``transact`` takes the engine lock, hands the *current* snapshot to the
builder, validates the returned delta against that snapshot, and only then
publishes the next version (sequence + 1). If the builder or validation
raises, the exception propagates and the current snapshot is untouched, so a
caller never observes a half-applied delta.

Invariants
----------
- Retained sequences form one contiguous, strictly increasing run.
- The oldest retained version is evicted first once ``retention`` is exceeded.
- Account balances never go negative; account sequences never decrease.
- Registered code is immutable; an instance's code, owner and creation point
  never change; every instance references registered code.

Usage
-----
    engine = LedgerStateEngine(retention=64)
    engine.apply(StateDelta(accounts={"alice": Account("alice", pk)}))
    engine.current().sequence   # -> 1
    engine.at(0).accounts        # -> {}
"""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable, Deque, List, Optional

from devchain.errors import DuplicateCode, InvalidTransaction, NotFound
from devchain.hashing import sha3_hex
from devchain.logging import get_logger
from devchain.state.snapshots import LedgerSnapshot, StateDelta

log = get_logger(__name__)

DeltaBuilder = Callable[[LedgerSnapshot], StateDelta]


class LedgerStateEngine:
    def __init__(
        self,
        retention: int = 64,
        *,
        clock: Callable[[], float] = time.time,
        genesis: Optional[LedgerSnapshot] = None,
    ) -> None:
        if retention < 1:
            raise ValueError("retention must be >= 1")
        self._retention = retention
        self._clock = clock
        self._lock = threading.Lock()
        first = genesis if genesis is not None else LedgerSnapshot.genesis(clock())
        self._log: Deque[LedgerSnapshot] = deque([first], maxlen=retention)

    @classmethod
    def from_snapshot(
        cls,
        snapshot: LedgerSnapshot,
        retention: int = 64,
        *,
        clock: Callable[[], float] = time.time,
    ) -> "LedgerStateEngine":
        """Resume from a persisted snapshot; history starts at its sequence."""
        return cls(retention, clock=clock, genesis=snapshot)

    @property
    def retention(self) -> int:
        return self._retention

    # ------------------------------------------------------------------ reads

    def current(self) -> LedgerSnapshot:
        return self._log[-1]

    def at(self, sequence: int) -> LedgerSnapshot:
        with self._lock:
            first = self._log[0].sequence
            last = self._log[-1].sequence
            if not first <= sequence <= last:
                raise NotFound("ledger sequence", sequence)
            return self._log[sequence - first]

    def history(self) -> List[int]:
        with self._lock:
            return [s.sequence for s in self._log]

    # ----------------------------------------------------------------- writes

    def apply(self, delta: StateDelta) -> LedgerSnapshot:
        """
        Atomically publish ``delta`` as the next version.

        A delta that fails validation raises (InvalidTransaction or
        DuplicateCode) instead of returning the prior snapshot; nothing is
        published and ``current()`` still returns that prior snapshot.
        """
        return self.transact(lambda _current: delta)

    def transact(self, build: DeltaBuilder) -> LedgerSnapshot:
        """
        Build, validate and publish a delta under the engine lock.

        ``build`` must be a pure function of the snapshot it is given; it may
        raise to abort without effect.
        """
        with self._lock:
            current = self._log[-1]
            delta = build(current)
            self.validate(current, delta)
            nxt = current.advance(delta, timestamp=max(self._clock(), current.timestamp))
            self._log.append(nxt)
        if delta.is_empty():
            log.debug("ledger.applied_empty", ledger_sequence=nxt.sequence)
        else:
            log.debug("ledger.applied", ledger_sequence=nxt.sequence, **delta.touched())
        return nxt

    def rollback(self, sequence: int) -> LedgerSnapshot:
        """
        Re-publish the tables of retained version ``sequence`` as a new
        version. History stays append-only: the sequence still increases.
        """
        with self._lock:
            first = self._log[0].sequence
            current = self._log[-1]
            if not first <= sequence <= current.sequence:
                raise NotFound("ledger sequence", sequence)
            target = self._log[sequence - first]
            nxt = LedgerSnapshot(
                sequence=current.sequence + 1,
                timestamp=max(self._clock(), current.timestamp),
                accounts=target.accounts,
                instances=target.instances,
                codes=target.codes,
            )
            self._log.append(nxt)
        log.warning("ledger.rolled_back", to_sequence=sequence, ledger_sequence=nxt.sequence)
        return nxt

    # ------------------------------------------------------------- validation

    @staticmethod
    def validate(current: LedgerSnapshot, delta: StateDelta) -> None:
        for handle, acc in delta.accounts.items():
            if acc.handle != handle:
                raise InvalidTransaction("account key does not match handle", data={"key": handle, "handle": acc.handle})
            if acc.balance < 0:
                raise InvalidTransaction("negative balance", data={"account": handle, "balance": acc.balance})
            prev = current.accounts.get(handle)
            if prev is None:
                continue
            if acc.sequence < prev.sequence:
                raise InvalidTransaction(
                    "account sequence would decrease",
                    data={"account": handle, "current": prev.sequence, "proposed": acc.sequence},
                )
            if acc.public_key != prev.public_key:
                raise InvalidTransaction("account public key is immutable", data={"account": handle})

        for code_hash, code in delta.codes.items():
            if code.code_hash != code_hash or sha3_hex(code.binary) != code_hash:
                raise InvalidTransaction("code hash does not match binary", data={"code_hash": code_hash})
            prev_code = current.codes.get(code_hash)
            if prev_code is not None and prev_code != code:
                raise DuplicateCode(code_hash)

        for instance_id, inst in delta.instances.items():
            if inst.instance_id != instance_id:
                raise InvalidTransaction("instance key does not match id", data={"key": instance_id})
            if inst.code_hash not in current.codes and inst.code_hash not in delta.codes:
                raise InvalidTransaction("instance references unregistered code", data={"code_hash": inst.code_hash})
            if inst.owner not in current.accounts and inst.owner not in delta.accounts:
                raise InvalidTransaction("instance owner does not exist", data={"owner": inst.owner})
            prev_inst = current.instances.get(instance_id)
            if prev_inst is not None and (
                prev_inst.code_hash != inst.code_hash
                or prev_inst.owner != inst.owner
                or prev_inst.created_at != inst.created_at
            ):
                raise InvalidTransaction("instance identity is immutable", data={"instance_id": instance_id})


__all__ = ["LedgerStateEngine", "DeltaBuilder"]
