"""
devchain.vm.host — transaction-scoped overlay over a LedgerSnapshot.

Contract execution never writes to the ledger directly. Every balance move,
storage write and event is staged here; the executor turns the overlay into a
single StateDelta only if the whole invocation succeeds. Discarding the
overlay is all it takes to abandon a failed or exhausted execution.

Storage keys and values are arbitrary VM values at the instruction level and
opaque bytes at the ledger level; the canonical CBOR encoding bridges the two.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import cbor2

from devchain.errors import ContractNotFound, ContractReverted, InvalidTransaction, UnknownAccount
from devchain.hashing import canonical_cbor
from devchain.state.accounts import Account, check_amount
from devchain.state.contracts import ContractCode, ContractInstance
from devchain.state.snapshots import LedgerSnapshot, StateDelta


def encode_value(v: Any) -> bytes:
    return canonical_cbor(v)


def decode_value(b: bytes) -> Any:
    return cbor2.loads(b)


class Overlay:
    def __init__(self, snapshot: LedgerSnapshot, source: str) -> None:
        self.snapshot = snapshot
        self.source = source
        self._accounts: Dict[str, Account] = {}
        self._storage: Dict[str, Dict[bytes, bytes]] = {}
        self.events: List[Dict[str, Any]] = []

    # -------------------------------------------------------------- accounts

    def find_account(self, handle: str) -> Optional[Account]:
        acc = self._accounts.get(handle)
        return acc if acc is not None else self.snapshot.accounts.get(handle)

    def account(self, handle: Any) -> Account:
        acc = self.find_account(handle) if isinstance(handle, str) else None
        if acc is None:
            raise UnknownAccount(str(handle))
        return acc

    def balance(self, handle: Any) -> int:
        return self.account(handle).balance

    def transfer(self, frm: Any, to: Any, amount: Any) -> None:
        """
        Move ``amount`` from ``frm`` to ``to``. Both accounts must exist and
        ``frm`` must be the transaction source.
        """
        src = self.account(frm)
        dst = self.account(to)
        if src.handle != self.source:
            raise ContractReverted(
                "transfer must originate from the transaction source",
                function="TRANSFER",
            )
        check_amount(amount, allow_zero=True)
        self._accounts[src.handle] = src.debited(amount)
        dst = self.account(to)
        self._accounts[dst.handle] = dst.credited(amount)

    # ------------------------------------------------------------- contracts

    def instance(self, instance_id: Any) -> ContractInstance:
        inst = self.snapshot.instances.get(instance_id) if isinstance(instance_id, str) else None
        if inst is None:
            raise ContractNotFound(str(instance_id), network="local")
        return inst

    def code(self, code_hash: str) -> ContractCode:
        code = self.snapshot.codes.get(code_hash)
        if code is None:
            raise InvalidTransaction("instance references unregistered code", data={"code_hash": code_hash})
        return code

    def sload(self, instance_id: str, key: Any) -> Any:
        k = encode_value(key)
        staged = self._storage.get(instance_id, {})
        raw = staged.get(k)
        if raw is None:
            raw = self.instance(instance_id).storage.get(k)
        return 0 if raw is None else decode_value(raw)

    def sstore(self, instance_id: str, key: Any, value: Any) -> int:
        """Stage a write; returns the change in staged bytes."""
        k = encode_value(key)
        v = encode_value(value)
        staged = self._storage.setdefault(instance_id, {})
        old = staged.get(k)
        staged[k] = v
        if old is None:
            return len(k) + len(v)
        return len(v) - len(old)

    def emit(self, instance_id: str, topic: str, value: Any) -> None:
        self.events.append({"instance_id": instance_id, "topic": topic, "value": value})

    # ----------------------------------------------------------------- delta

    def delta(self) -> StateDelta:
        instances = {
            iid: self.instance(iid).with_storage(writes)
            for iid, writes in self._storage.items()
            if writes
        }
        return StateDelta(accounts=dict(self._accounts), instances=instances)


__all__ = ["Overlay", "encode_value", "decode_value"]
