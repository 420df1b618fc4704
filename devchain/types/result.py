"""
devchain.types.result — outcomes of executing one transaction.

Every call to ``Executor.execute`` returns exactly one of:

* ``Receipt`` — the transaction landed. Records the account sequence it
  consumed, the ledger sequence it produced, the return value (invoke), events,
  steps used, touched accounts/instances and the post-state root.
* ``Failure`` — nothing landed. Carries the stable error code and category of
  the ``DevchainError`` that stopped it plus a human-readable cause. The
  original exception stays reachable through ``Failure.error`` so callers can
  re-raise it unchanged.

Both expose ``to_dict()`` for JSON output; bytes are rendered as 0x-hex.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from devchain.errors import DevchainError


class TxStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


def jsonable(v: Any) -> Any:
    """Render VM values and nested containers JSON-safe (bytes -> 0x-hex)."""
    if isinstance(v, (bytes, bytearray)):
        return "0x" + bytes(v).hex()
    if isinstance(v, dict):
        return {str(k): jsonable(x) for k, x in v.items()}
    if isinstance(v, (list, tuple)):
        return [jsonable(x) for x in v]
    return v


@dataclass(frozen=True)
class Receipt:
    tx_hash: str
    kind: str
    source: str
    account_sequence: int
    ledger_sequence: int
    contract_id: Optional[str] = None
    instance_id: Optional[str] = None
    return_value: Any = None
    events: Tuple[Dict[str, Any], ...] = ()
    steps_used: int = 0
    touched_accounts: Tuple[str, ...] = ()
    touched_instances: Tuple[str, ...] = ()
    state_root: str = ""

    status = TxStatus.SUCCESS

    @property
    def ok(self) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "tx_hash": self.tx_hash,
            "kind": self.kind,
            "source": self.source,
            "account_sequence": self.account_sequence,
            "ledger_sequence": self.ledger_sequence,
            "contract_id": self.contract_id,
            "instance_id": self.instance_id,
            "return_value": jsonable(self.return_value),
            "events": jsonable(list(self.events)),
            "steps_used": self.steps_used,
            "touched_accounts": list(self.touched_accounts),
            "touched_instances": list(self.touched_instances),
            "state_root": self.state_root,
        }


@dataclass(frozen=True)
class Failure:
    tx_hash: str
    kind: str
    source: str
    error_code: str
    category: str
    cause: str
    data: Optional[Dict[str, Any]] = None
    error: Optional[DevchainError] = field(default=None, compare=False, repr=False)

    status = TxStatus.FAILURE

    @property
    def ok(self) -> bool:
        return False

    def raise_error(self) -> None:
        if self.error is not None:
            raise self.error
        raise DevchainError(message=self.cause, code=self.error_code, data=self.data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "tx_hash": self.tx_hash,
            "kind": self.kind,
            "source": self.source,
            "error_code": self.error_code,
            "category": self.category,
            "cause": self.cause,
            "data": jsonable(self.data),
        }


Outcome = Union[Receipt, Failure]


def error_to_failure(err: DevchainError, *, tx_hash: str, kind: str, source: str) -> Failure:
    return Failure(
        tx_hash=tx_hash,
        kind=kind,
        source=source,
        error_code=err.code,
        category=err.category,
        cause=err.message,
        data=err.data,
        error=err,
    )


__all__ = ["TxStatus", "Receipt", "Failure", "Outcome", "error_to_failure", "jsonable"]
