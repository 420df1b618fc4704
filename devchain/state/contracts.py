"""
devchain.state.contracts — content-addressed contract code and instances.

Two tables live in every LedgerSnapshot:

- ``codes``:      code_hash -> ContractCode (immutable once registered)
- ``instances``:  instance_id -> ContractInstance (storage mutated by invoke)

Code is identified solely by ``0x || sha3_256(binary)``, so deterministic
rebuilds of the same source always land on the same entry and ``register`` is
idempotent. Instances reference code by hash and other instances by id; nothing
holds a live object reference, so contracts calling contracts (even cyclically)
are resolved by table lookup at call time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Dict, List, Mapping, Optional, Sequence

from devchain.config import ExecutionLimits
from devchain.errors import ContractNotFound, InvalidTransaction, NotFound, UnknownAccount
from devchain.hashing import domain_hash, sha3_hex
from devchain.logging import get_logger
from devchain.state.snapshots import LedgerSnapshot, StateDelta
from devchain.vm.module import decode_module

if TYPE_CHECKING:  # pragma: no cover
    from devchain.state.ledger import LedgerStateEngine

log = get_logger(__name__)

Interface = Mapping[str, Sequence[str]]


def instance_id_for(code_hash: str, owner: str, sequence: int) -> str:
    """Deterministic instance id: H(code_hash || owner || owner's tx sequence)."""
    return domain_hash("devchain/instance/v1", code_hash, owner, sequence)


# --------------------------------------------------------------------------- #
# Records
# --------------------------------------------------------------------------- #


@dataclass(frozen=True)
class ContractCode:
    code_hash: str
    binary: bytes
    interface: Dict[str, tuple] = field(default_factory=dict)
    deployer: str = ""

    def to_dict(self) -> dict:
        return {
            "code_hash": self.code_hash,
            "binary": self.binary,
            "interface": {k: list(v) for k, v in self.interface.items()},
            "deployer": self.deployer,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ContractCode":
        return cls(
            code_hash=str(data["code_hash"]),
            binary=bytes(data["binary"]),
            interface={str(k): tuple(v) for k, v in dict(data.get("interface") or {}).items()},
            deployer=str(data.get("deployer", "")),
        )


@dataclass(frozen=True)
class ContractInstance:
    """
    A deployed contract. ``storage`` maps opaque byte keys to opaque byte
    values and is exposed read-only; invoke produces a replacement instance.
    """

    instance_id: str
    code_hash: str
    owner: str
    storage: Mapping[bytes, bytes] = field(default_factory=dict)
    created_at: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "storage", MappingProxyType(dict(self.storage)))

    def with_storage(self, writes: Mapping[bytes, bytes]) -> "ContractInstance":
        merged = dict(self.storage)
        merged.update(writes)
        return ContractInstance(
            instance_id=self.instance_id,
            code_hash=self.code_hash,
            owner=self.owner,
            storage=merged,
            created_at=self.created_at,
        )

    def to_dict(self) -> dict:
        return {
            "instance_id": self.instance_id,
            "code_hash": self.code_hash,
            "owner": self.owner,
            "storage": dict(self.storage),
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ContractInstance":
        return cls(
            instance_id=str(data["instance_id"]),
            code_hash=str(data["code_hash"]),
            owner=str(data["owner"]),
            storage={bytes(k): bytes(v) for k, v in dict(data.get("storage") or {}).items()},
            created_at=int(data.get("created_at", 0)),
        )


class _AlreadyRegistered(Exception):
    def __init__(self, code: ContractCode) -> None:
        super().__init__(code.code_hash)
        self.code = code


# --------------------------------------------------------------------------- #
# Registry facade
# --------------------------------------------------------------------------- #


class ContractRegistry:
    """Code registration and lookup over a LedgerStateEngine."""

    def __init__(self, engine: "LedgerStateEngine", limits: Optional[ExecutionLimits] = None) -> None:
        self._engine = engine
        self._limits = limits or ExecutionLimits()

    def prepare(self, binary: bytes, deployer: str, interface: Optional[Interface] = None) -> ContractCode:
        """
        Validate and hash a binary without writing anything.

        Raises InvalidTransaction if the binary is oversized or does not
        decode as a contract module.
        """
        if not isinstance(binary, (bytes, bytearray, memoryview)):
            raise InvalidTransaction("contract binary must be bytes")
        binary = bytes(binary)
        if len(binary) > self._limits.max_code_bytes:
            raise InvalidTransaction(
                "contract binary exceeds max_code_bytes",
                data={"size": len(binary), "max_code_bytes": self._limits.max_code_bytes},
            )
        module = decode_module(binary)
        iface = interface if interface is not None else module.interface()
        return ContractCode(
            code_hash=sha3_hex(binary),
            binary=binary,
            interface={str(k): tuple(v) for k, v in iface.items()},
            deployer=deployer,
        )

    def register(self, binary: bytes, *, deployer: str, interface: Optional[Interface] = None) -> ContractCode:
        """
        Register ``binary``; if its hash is already present the existing entry
        is returned unchanged and the ledger does not advance.
        """
        code = self.prepare(binary, deployer, interface)

        def build(snap: LedgerSnapshot) -> StateDelta:
            existing = snap.codes.get(code.code_hash)
            if existing is not None:
                raise _AlreadyRegistered(existing)
            if deployer not in snap.accounts:
                raise UnknownAccount(deployer)
            return StateDelta(codes={code.code_hash: code})

        try:
            snap = self._engine.transact(build)
        except _AlreadyRegistered as e:
            log.debug("registry.exists", code_hash=code.code_hash)
            return e.code
        log.info("registry.registered", code_hash=code.code_hash, deployer=deployer, size=len(code.binary))
        return snap.codes[code.code_hash]

    def find(self, code_hash: str) -> Optional[ContractCode]:
        return self._engine.current().codes.get(code_hash)

    def lookup(self, code_hash: str) -> ContractCode:
        code = self.find(code_hash)
        if code is None:
            raise NotFound("contract code", code_hash)
        return code

    def list(self) -> List[ContractCode]:
        codes = self._engine.current().codes
        return [codes[h] for h in sorted(codes)]

    # ------------------------------ instances ------------------------------ #

    def find_instance(self, instance_id: str) -> Optional[ContractInstance]:
        return self._engine.current().instances.get(instance_id)

    def instance(self, instance_id: str) -> ContractInstance:
        inst = self.find_instance(instance_id)
        if inst is None:
            raise ContractNotFound(instance_id, network="local")
        return inst

    def instances(self) -> List[ContractInstance]:
        table = self._engine.current().instances
        return [table[i] for i in sorted(table)]


__all__ = [
    "ContractCode",
    "ContractInstance",
    "ContractRegistry",
    "instance_id_for",
]
