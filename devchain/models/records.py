from __future__ import annotations

"""
Durable record models

- DeployReceipt: what a deployment produced, where it landed and who signed
  for it. Signed with the deployer's Ed25519 key over canonical JSON.
- VerificationRecord: the conclusive outcome of comparing a rebuilt code hash
  with the hash observed on a network.

Notes
-----
* Both models are frozen; once created they are only ever inserted, never
  updated (see devchain.storage.sqlite.RecordStore).
* Ids are content-derived: ``receipt_id``/``record_id`` hash the canonical JSON
  of every other field, so identical content always yields the same id.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from devchain.hashing import canonical_json, json_hash, sha3_hex
from devchain.state.keys import Keyring


class DeployReceipt(BaseModel):
    """
    Fields
    ------
    contract_id: str
        Content hash for local deployments; network-assigned id for remote.
    instance_id: Optional[str]
        Local instance id. Remote deployments leave it unset.
    position: Optional[int]
        Ledger sequence (local) or network position (remote) the deploy landed at.
    cost_estimate: int
        Resource-cost model estimate computed before submission.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    receipt_id: str
    contract_id: str
    instance_id: Optional[str] = None
    code_hash: str
    network: str
    position: Optional[int] = None
    cost_estimate: int = Field(ge=0)
    deployer: str
    tx_hash: Optional[str] = None
    submission_id: Optional[str] = None
    timestamp: float
    public_key: str
    signature: str

    @classmethod
    def issue(cls, keyring: Keyring, **fields: Any) -> "DeployReceipt":
        """Fill in public key, receipt id and signature for ``fields``."""
        draft = cls(receipt_id="", signature="", public_key=keyring.public_key(fields["deployer"]), **fields)
        unsigned = draft.signing_bytes()
        return draft.model_copy(
            update={"receipt_id": sha3_hex(unsigned), "signature": keyring.sign(draft.deployer, unsigned)}
        )

    def signing_bytes(self) -> bytes:
        """Canonical JSON of every field except ``receipt_id`` and ``signature``."""
        return canonical_json(self.model_dump(mode="json", exclude={"receipt_id", "signature"}))

    def verify_signature(self) -> bool:
        unsigned = self.signing_bytes()
        if self.receipt_id != sha3_hex(unsigned):
            return False
        return Keyring.verify(self.public_key, unsigned, self.signature)


class VerificationRecord(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    record_id: str
    contract_id: str
    local_hash: str
    remote_hash: str
    match: bool
    network: str
    toolchain: Dict[str, Any] = Field(default_factory=dict)
    timestamp: float

    @classmethod
    def create(cls, **fields: Any) -> "VerificationRecord":
        draft = cls(record_id="", **fields)
        body = draft.model_dump(mode="json", exclude={"record_id"})
        return draft.model_copy(update={"record_id": json_hash(body)})


__all__ = ["DeployReceipt", "VerificationRecord"]
