"""
devchain.types.tx — transactions submitted to the devnet executor.

A transaction names its kind, the signing account (``source``), the sequence
number it claims (must be the account's current sequence + 1), a kind-specific
payload and the resource budget it is willing to spend.

    tx = Transaction.invoke("alice", 2, instance_id, "transfer", ["alice", "bob", 500])
    tx.tx_hash()   # 0x-prefixed SHA3-256 over the canonical CBOR encoding

Models are pydantic and frozen; strict scalar types keep bools and floats out
of amounts and call arguments so that validation errors surface as typed
devchain errors downstream rather than as silent coercions.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBytes, StrictInt, StrictStr, model_validator

from devchain.hashing import cbor_hash

VmValue = Union[StrictInt, StrictStr, StrictBytes]


class TxKind(str, Enum):
    FUND = "fund"
    DEPLOY = "deploy"
    INVOKE = "invoke"


class ResourceLimits(BaseModel):
    """Per-transaction budgets; must not exceed the configured maxima."""

    model_config = ConfigDict(frozen=True)

    steps: int = Field(100_000, ge=0)
    memory_bytes: int = Field(64 * 1024, ge=0)


class FundPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    destination: str
    amount: StrictInt


class DeployPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    binary: bytes


class InvokePayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    instance_id: str
    function: str
    args: List[VmValue] = Field(default_factory=list)


Payload = Union[FundPayload, DeployPayload, InvokePayload]

_PAYLOAD_FOR = {
    TxKind.FUND: FundPayload,
    TxKind.DEPLOY: DeployPayload,
    TxKind.INVOKE: InvokePayload,
}


class Transaction(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: TxKind
    source: str
    sequence: int
    payload: Payload
    limits: ResourceLimits = Field(default_factory=ResourceLimits)

    @model_validator(mode="after")
    def _payload_matches_kind(self) -> "Transaction":
        expected = _PAYLOAD_FOR[self.kind]
        if not isinstance(self.payload, expected):
            raise ValueError(f"{self.kind.value} transaction needs a {expected.__name__}")
        return self

    # ------------------------------------------------------------ builders

    @classmethod
    def fund(
        cls, source: str, sequence: int, destination: str, amount: int, *, limits: Optional[ResourceLimits] = None
    ) -> "Transaction":
        return cls(
            kind=TxKind.FUND,
            source=source,
            sequence=sequence,
            payload=FundPayload(destination=destination, amount=amount),
            limits=limits or ResourceLimits(),
        )

    @classmethod
    def deploy(
        cls, source: str, sequence: int, binary: bytes, *, limits: Optional[ResourceLimits] = None
    ) -> "Transaction":
        return cls(
            kind=TxKind.DEPLOY,
            source=source,
            sequence=sequence,
            payload=DeployPayload(binary=binary),
            limits=limits or ResourceLimits(),
        )

    @classmethod
    def invoke(
        cls,
        source: str,
        sequence: int,
        instance_id: str,
        function: str,
        args: Optional[List[Any]] = None,
        *,
        limits: Optional[ResourceLimits] = None,
    ) -> "Transaction":
        return cls(
            kind=TxKind.INVOKE,
            source=source,
            sequence=sequence,
            payload=InvokePayload(instance_id=instance_id, function=function, args=list(args or [])),
            limits=limits or ResourceLimits(),
        )

    # ------------------------------------------------------------ encoding

    def to_obj(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "source": self.source,
            "sequence": self.sequence,
            "payload": self.payload.model_dump(),
            "limits": self.limits.model_dump(),
        }

    def tx_hash(self) -> str:
        return cbor_hash(self.to_obj())


__all__ = [
    "TxKind",
    "ResourceLimits",
    "FundPayload",
    "DeployPayload",
    "InvokePayload",
    "Payload",
    "Transaction",
    "VmValue",
]
