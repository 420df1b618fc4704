"""
Verification engine: rebuild a source, fetch the on-chain code hash, compare,
and persist the outcome.

    engine = VerificationEngine(LocalNodeRpc(controller), network="local")
    record = engine.verify(contract_id, "contracts/token")
    record.match  # True iff the rebuilt binary hashes to what the network holds

Outcomes
--------
- match / mismatch: a VerificationRecord is created and stored. A mismatch is
  a conclusive answer and is never retried.
- the network does not know ``contract_id``: ContractNotFound.
- the source does not build: BuildFailed (never retried).
- the lookup keeps failing transiently: the last Timeout/TransientRpcError
  once the retry policy gives up, or Timeout when ``timeout_s`` runs out.

The rebuild uses the same builder and toolchain pin as the deployment
pipeline, so two builds of identical source always hash identically.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional, Union

from devchain.adapters.builder import Builder, DeterministicBuilder
from devchain.adapters.node_rpc import RPC_NOT_FOUND, LocalNodeRpc, RemoteRpc
from devchain.config import Settings, get_settings
from devchain.errors import ContractNotFound, RpcRejected
from devchain.logging import get_logger
from devchain.models.records import VerificationRecord
from devchain.services.retry import call_with_retry
from devchain.storage.sqlite import RecordStore

if TYPE_CHECKING:  # pragma: no cover
    from devchain.network.controller import DevnetController

log = get_logger(__name__)


class VerificationEngine:
    def __init__(
        self,
        rpc: RemoteRpc,
        *,
        network: str,
        builder: Optional[Builder] = None,
        settings: Optional[Settings] = None,
        records: Optional[RecordStore] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.rpc = rpc
        self.network = network
        self.builder = builder or DeterministicBuilder()
        self.settings = settings or get_settings()
        self.records = records
        self._sleep = sleep
        self._clock = clock
        self._monotonic = monotonic

    @classmethod
    def for_devnet(cls, controller: "DevnetController", **kwargs) -> "VerificationEngine":
        """Verify against the in-process devnet."""
        kwargs.setdefault("settings", controller.settings)
        return cls(LocalNodeRpc(controller), network="local", **kwargs)

    def _remote_hash(self, contract_id: str, timeout_s: Optional[float]) -> Optional[str]:
        try:
            return call_with_retry(
                lambda: self.rpc.get_code_hash(contract_id),
                self.settings.retry,
                operation="code hash lookup",
                timeout_s=timeout_s,
                sleep=self._sleep,
                monotonic=self._monotonic,
            )
        except RpcRejected as e:
            if e.rpc_code == RPC_NOT_FOUND:
                return None
            raise

    def verify(self, contract_id: str, source_path: Union[str, Path], *, timeout_s: Optional[float] = None) -> VerificationRecord:
        artifact = self.builder.build(source_path, self.settings.toolchain)

        remote_hash = self._remote_hash(contract_id, timeout_s)
        if remote_hash is None:
            log.info("verify.not_found", contract_id=contract_id, network=self.network)
            raise ContractNotFound(contract_id, network=self.network)

        remote_hash = remote_hash.lower()
        record = VerificationRecord.create(
            contract_id=contract_id,
            local_hash=artifact.code_hash,
            remote_hash=remote_hash,
            match=artifact.code_hash == remote_hash,
            network=self.network,
            toolchain=artifact.toolchain,
            timestamp=self._clock(),
        )
        if self.records is not None:
            self.records.save_verification(record)
        log.info(
            "verify.completed",
            contract_id=contract_id,
            match=record.match,
            local_hash=record.local_hash,
            remote_hash=record.remote_hash,
            network=self.network,
        )
        return record


__all__ = ["VerificationEngine"]
