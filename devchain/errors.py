"""
devchain.errors — typed exceptions shared by the devnet, executor and pipelines.

Every failure in devchain is a *typed exception* carrying a stable machine code
and a small JSON-safe ``data`` payload naming the violated invariant. Higher
layers convert them into ``Failure`` records (executor), CLI messages, or
persisted verification outcomes.

Hierarchy
---------
DevchainError (base)
 ├─ validation   : SequenceMismatch, InvalidAmount, DuplicateHandle,
 │                 UnknownAccount, NotFound, DuplicateCode, InvalidTransaction
 ├─ resource     : ResourceLimitExceeded, ResourceExhausted, InsufficientBalance
 ├─ transient    : Timeout, TransientRpcError
 ├─ build        : BuildFailed
 ├─ consistency  : ContractNotFound
 ├─ contract     : ContractReverted
 ├─ submission   : SubmissionFailed, RpcRejected
 └─ lifecycle    : DevnetNotRunning, InvalidTransition, PersistenceError

Only the *transient* category is ``retryable``. Everything else is surfaced to
the caller immediately.

These classes import nothing from the rest of the package so they can be used
from the lowest layers (VM engine, ledger) without cycles.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Optional

VALIDATION = "validation"
RESOURCE = "resource"
TRANSIENT = "transient"
BUILD = "build"
CONSISTENCY = "consistency"
CONTRACT = "contract"
SUBMISSION = "submission"
LIFECYCLE = "lifecycle"


@dataclass
class DevchainError(Exception):
    """
    Base error.

    Attributes:
        message: Human-readable explanation.
        code:    Stable machine code string (e.g., 'SEQUENCE_MISMATCH').
        data:    Optional structured details (kept JSON-serializable).
    """
    message: str = "devchain error"
    code: str = "DEVCHAIN_ERROR"
    data: Optional[Dict[str, Any]] = field(default=None)

    category: ClassVar[str] = VALIDATION

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:  # pragma: no cover - trivial
        if self.data:
            return f"{self.code}: {self.message} ({self.data})"
        return f"{self.code}: {self.message}"

    @property
    def retryable(self) -> bool:
        return self.category == TRANSIENT

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-safe dict for receipts/logs/CLI output."""
        out: Dict[str, Any] = {"code": self.code, "category": self.category, "message": self.message}
        if self.data is not None:
            out["data"] = self.data
        return out


def _merge(data: Optional[Dict[str, Any]], **fields: Any) -> Optional[Dict[str, Any]]:
    d: Dict[str, Any] = {}
    if data:
        d.update(data)
    for k, v in fields.items():
        if v is not None:
            d.setdefault(k, v)
    return d or None


# -------------------------------- validation ---------------------------------


class SequenceMismatch(DevchainError):
    """Claimed sequence number is not the account's current sequence + 1."""

    def __init__(self, handle: str, *, expected: int, claimed: int):
        super().__init__(
            message=f"sequence mismatch for {handle!r}: expected {expected}, got {claimed}",
            code="SEQUENCE_MISMATCH",
            data={"account": handle, "expected": expected, "claimed": claimed},
        )


class InvalidAmount(DevchainError):
    def __init__(self, amount: Any, *, rule: str = "amount must be > 0"):
        super().__init__(
            message=f"invalid amount {amount!r}: {rule}",
            code="INVALID_AMOUNT",
            data={"amount": amount, "rule": rule},
        )


class DuplicateHandle(DevchainError):
    def __init__(self, handle: str):
        super().__init__(
            message=f"account {handle!r} already exists",
            code="DUPLICATE_HANDLE",
            data={"account": handle},
        )


class UnknownAccount(DevchainError):
    def __init__(self, handle: str):
        super().__init__(
            message=f"unknown account {handle!r}",
            code="UNKNOWN_ACCOUNT",
            data={"account": handle},
        )


class NotFound(DevchainError, KeyError):
    """Lookup miss (account, code hash, historical ledger sequence, record)."""

    def __init__(self, what: str, key: Any):
        super().__init__(
            message=f"{what} {key!r} not found",
            code="NOT_FOUND",
            data={"what": what, "key": key},
        )

    def __str__(self) -> str:  # KeyError would otherwise repr() the args
        return self.message


class DuplicateCode(DevchainError):
    def __init__(self, code_hash: str):
        super().__init__(
            message=f"contract code {code_hash} already registered",
            code="DUPLICATE_CODE",
            data={"code_hash": code_hash},
        )


class InvalidTransaction(DevchainError):
    """Malformed payload, bad contract binary, unknown function, wrong arity."""

    def __init__(self, message: str = "invalid transaction", *, data: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="INVALID_TRANSACTION", data=data)


# --------------------------------- resource ----------------------------------


class ResourceLimitExceeded(DevchainError):
    """Requested limits exceed the configured maxima (rejected before execution)."""

    category = RESOURCE

    def __init__(self, limit: str, *, requested: int, maximum: int):
        super().__init__(
            message=f"{limit} limit {requested} exceeds configured maximum {maximum}",
            code="RESOURCE_LIMIT_EXCEEDED",
            data={"limit": limit, "requested": requested, "maximum": maximum},
        )


class ResourceExhausted(DevchainError):
    """Execution ran past its stated budget; no effects are applied."""

    category = RESOURCE

    def __init__(self, resource: str, *, budget: int, used: int):
        super().__init__(
            message=f"{resource} budget exhausted: used {used} of {budget}",
            code="RESOURCE_EXHAUSTED",
            data={"resource": resource, "budget": budget, "used": used},
        )


class InsufficientBalance(DevchainError):
    category = RESOURCE

    def __init__(self, handle: str, *, required: int, available: int):
        super().__init__(
            message=f"insufficient balance for {handle!r}: need {required}, have {available}",
            code="INSUFFICIENT_BALANCE",
            data={
                "account": handle,
                "required": required,
                "available": available,
                "shortfall": required - available,
            },
        )


# --------------------------------- transient ---------------------------------


class Timeout(DevchainError):
    category = TRANSIENT

    def __init__(self, operation: str, *, timeout_s: float):
        super().__init__(
            message=f"{operation} timed out after {timeout_s:g}s",
            code="TIMEOUT",
            data={"operation": operation, "timeout_s": timeout_s},
        )


class TransientRpcError(DevchainError):
    """Connection-level failure against a remote collaborator."""

    category = TRANSIENT

    def __init__(self, message: str = "transient RPC failure", *, data: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="RPC_TRANSIENT", data=data)


# ---------------------------------- build ------------------------------------


class BuildFailed(DevchainError):
    """The deterministic build collaborator rejected the source."""

    category = BUILD

    def __init__(self, message: str, *, source: Optional[str] = None, output: Optional[str] = None):
        super().__init__(
            message=message,
            code="BUILD_FAILED",
            data=_merge(None, source=source, output=output),
        )


# ------------------------------- consistency ---------------------------------


class ContractNotFound(DevchainError):
    category = CONSISTENCY

    def __init__(self, contract_id: str, *, network: Optional[str] = None):
        super().__init__(
            message=f"contract {contract_id} not found",
            code="CONTRACT_NOT_FOUND",
            data=_merge(None, contract_id=contract_id, network=network),
        )


# --------------------------------- contract ----------------------------------


class ContractReverted(DevchainError):
    """A contract function failed explicitly (REQUIRE/REVERT)."""

    category = CONTRACT

    def __init__(self, reason: str, *, function: Optional[str] = None, instance_id: Optional[str] = None):
        super().__init__(
            message=f"reverted: {reason}",
            code="REVERT",
            data=_merge(None, reason=reason, function=function, instance_id=instance_id),
        )


# -------------------------------- submission ---------------------------------


class SubmissionFailed(DevchainError):
    category = SUBMISSION

    def __init__(self, message: str, *, attempts: Optional[int] = None, data: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="SUBMISSION_FAILED", data=_merge(data, attempts=attempts))


class RpcRejected(DevchainError):
    """The remote node answered with a semantic (non-transient) rejection."""

    category = SUBMISSION

    def __init__(self, rpc_code: int, message: str, *, data: Any = None):
        super().__init__(
            message=f"RPC error {rpc_code}: {message}",
            code="RPC_REJECTED",
            data=_merge(None, rpc_code=rpc_code, detail=data),
        )
        self.rpc_code = rpc_code


# --------------------------------- lifecycle ---------------------------------


class DevnetNotRunning(DevchainError):
    category = LIFECYCLE

    def __init__(self, state: str):
        super().__init__(
            message=f"devnet is not running (state={state})",
            code="DEVNET_NOT_RUNNING",
            data={"state": state},
        )


class InvalidTransition(DevchainError):
    category = LIFECYCLE

    def __init__(self, current: str, requested: str):
        super().__init__(
            message=f"cannot {requested} while {current}",
            code="INVALID_TRANSITION",
            data={"state": current, "requested": requested},
        )


class PersistenceError(DevchainError):
    category = LIFECYCLE

    def __init__(self, message: str, *, path: Optional[str] = None):
        super().__init__(message=message, code="PERSISTENCE_ERROR", data=_merge(None, path=path))


__all__ = [
    "VALIDATION",
    "RESOURCE",
    "TRANSIENT",
    "BUILD",
    "CONSISTENCY",
    "CONTRACT",
    "SUBMISSION",
    "LIFECYCLE",
    "DevchainError",
    "SequenceMismatch",
    "InvalidAmount",
    "DuplicateHandle",
    "UnknownAccount",
    "NotFound",
    "DuplicateCode",
    "InvalidTransaction",
    "ResourceLimitExceeded",
    "ResourceExhausted",
    "InsufficientBalance",
    "Timeout",
    "TransientRpcError",
    "BuildFailed",
    "ContractNotFound",
    "ContractReverted",
    "SubmissionFailed",
    "RpcRejected",
    "DevnetNotRunning",
    "InvalidTransition",
    "PersistenceError",
]
