"""
Deployment pipeline: build -> estimate -> submit -> persist a signed receipt.

Targets
-------
- LocalTarget(account): a deploy transaction through the running devnet's
  Transaction Executor, using the account's next sequence number.
- RemoteTarget(network, rpc_url, account, chain_id): a signed envelope sent
  through a RemoteRpc collaborator.

Retry rules (remote only)
-------------------------
- Timeouts and connection failures are retried with the configured bounded
  exponential backoff. Once attempts run out the pipeline raises
  SubmissionFailed; if the caller's ``timeout_s`` runs out first, Timeout.
- Semantic rejections (insufficient balance, sequence mismatch, bad envelope)
  are never retried.
- Every envelope carries a deterministic ``submission_id`` derived from
  (chain id, account, sequence, code hash). Before each retry the node is
  asked for that id, so a submission whose response was lost is picked up
  instead of being sent twice.

Build errors (BuildFailed) come straight from the builder and are never
retried.
"""

from __future__ import annotations

import time
from contextlib import closing
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, Optional, Sequence, Union

from devchain.adapters.builder import BuildArtifact, Builder, DeterministicBuilder
from devchain.adapters.node_rpc import (
    RPC_INSUFFICIENT_BALANCE,
    HttpNodeRpc,
    RemoteRpc,
    envelope_signing_bytes,
)
from devchain.config import CostModel, Settings, get_settings
from devchain.errors import (
    DevchainError,
    DevnetNotRunning,
    InsufficientBalance,
    RpcRejected,
    SubmissionFailed,
    Timeout,
)
from devchain.hashing import domain_hash
from devchain.logging import get_logger
from devchain.models.records import DeployReceipt
from devchain.services.retry import call_with_retry
from devchain.state.keys import Keyring
from devchain.storage.sqlite import RecordStore
from devchain.types.tx import Transaction

if TYPE_CHECKING:  # pragma: no cover
    from devchain.network.controller import DevnetController

log = get_logger(__name__)

LOCAL_NETWORK = "local"


@dataclass(frozen=True)
class LocalTarget:
    account: str

    @property
    def network(self) -> str:
        return LOCAL_NETWORK


@dataclass(frozen=True)
class RemoteTarget:
    network: str
    rpc_url: str
    account: str
    chain_id: int


Target = Union[LocalTarget, RemoteTarget]
RpcFactory = Callable[[RemoteTarget, float], RemoteRpc]


def estimate_cost(binary: bytes, interface: Union[Mapping[str, Sequence[str]], Sequence[str]], model: CostModel) -> int:
    """base_fee + per_byte_fee * len(binary) + per_function_fee * n_functions"""
    return model.base_fee + model.per_byte_fee * len(binary) + model.per_function_fee * len(interface)


def submission_id_for(chain_id: int, account: str, sequence: int, code_hash: str) -> str:
    return domain_hash("devchain/submission/v1", chain_id, account, sequence, code_hash)


def _rejection_detail(err: RpcRejected) -> Dict[str, Any]:
    detail = (err.data or {}).get("detail")
    if not isinstance(detail, dict):
        return {}
    inner = detail.get("data")
    return inner if isinstance(inner, dict) else detail


class DeploymentPipeline:
    def __init__(
        self,
        builder: Optional[Builder] = None,
        *,
        settings: Optional[Settings] = None,
        records: Optional[RecordStore] = None,
        controller: Optional["DevnetController"] = None,
        rpc_factory: Optional[RpcFactory] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or (controller.settings if controller is not None else get_settings())
        self.builder = builder or DeterministicBuilder()
        self.records = records
        self.controller = controller
        self._rpc_factory = rpc_factory or self._http_rpc
        self._sleep = sleep
        self._clock = clock
        self._monotonic = monotonic
        self._keyring = Keyring(self.settings.devnet_seed)

    def _http_rpc(self, target: RemoteTarget, timeout_s: float) -> RemoteRpc:
        return HttpNodeRpc(target.rpc_url, timeout_s=timeout_s, headers=self.settings.rpc.headers)

    # ------------------------------------------------------------ public API

    def build(self, source_path: Union[str, Path]) -> BuildArtifact:
        return self.builder.build(source_path, self.settings.toolchain)

    def deploy(self, source_path: Union[str, Path], target: Target, *, timeout_s: Optional[float] = None) -> DeployReceipt:
        artifact = self.build(source_path)
        cost = estimate_cost(artifact.binary, artifact.interface, self.settings.costs)
        log.info(
            "deploy.built",
            code_hash=artifact.code_hash,
            size=len(artifact.binary),
            cost_estimate=cost,
            network=target.network,
        )

        if isinstance(target, LocalTarget):
            fields = self._deploy_local(artifact, target)
        else:
            fields = self._deploy_remote(artifact, target, timeout_s)

        receipt = DeployReceipt.issue(
            self._keyring,
            code_hash=artifact.code_hash,
            network=target.network,
            cost_estimate=cost,
            deployer=target.account,
            timestamp=self._clock(),
            **fields,
        )
        if self.records is not None:
            self.records.save_receipt(receipt)
        log.info(
            "deploy.completed",
            receipt_id=receipt.receipt_id,
            contract_id=receipt.contract_id,
            network=receipt.network,
            position=receipt.position,
        )
        return receipt

    # ----------------------------------------------------------------- local

    def _deploy_local(self, artifact: BuildArtifact, target: LocalTarget) -> Dict[str, Any]:
        if self.controller is None:
            raise DevnetNotRunning("stopped")
        ctl = self.controller
        sequence = ctl.accounts.next_sequence(target.account)
        outcome = ctl.executor.execute(Transaction.deploy(target.account, sequence, artifact.binary))
        if not outcome.ok:
            if outcome.error_code == "INSUFFICIENT_BALANCE":
                outcome.raise_error()
            raise SubmissionFailed(f"local deploy rejected: {outcome.cause}", attempts=1, data={"failure": outcome.to_dict()})
        return {
            "contract_id": outcome.contract_id,
            "instance_id": outcome.instance_id,
            "position": outcome.ledger_sequence,
            "tx_hash": outcome.tx_hash,
        }

    # ---------------------------------------------------------------- remote

    def _deploy_remote(self, artifact: BuildArtifact, target: RemoteTarget, timeout_s: Optional[float]) -> Dict[str, Any]:
        call_timeout = min(timeout_s, self.settings.rpc.timeout_s) if timeout_s else self.settings.rpc.timeout_s
        with closing(self._rpc_factory(target, call_timeout)) as rpc:
            return self._submit_remote(rpc, artifact, target, timeout_s)

    def _submit_remote(
        self,
        rpc: RemoteRpc,
        artifact: BuildArtifact,
        target: RemoteTarget,
        timeout_s: Optional[float],
    ) -> Dict[str, Any]:
        policy = self.settings.retry
        started = self._monotonic()

        def remaining() -> Optional[float]:
            if timeout_s is None:
                return None
            left = timeout_s - (self._monotonic() - started)
            if left <= 0:
                raise Timeout(f"deploy to {target.network}", timeout_s=timeout_s)
            return left

        def exhausted(err: DevchainError, attempts: int) -> Exception:
            return SubmissionFailed(
                f"deploy to {target.network} failed after {attempts} attempt(s): {err.message}",
                attempts=attempts,
                data={"last_error": err.to_dict()},
            )

        def settled() -> Optional[Dict[str, Any]]:
            status = rpc.get_submission(submission_id)
            if status is None or status.get("status") not in ("applied", "rejected"):
                return None
            return status

        def submit() -> Dict[str, Any]:
            rpc.submit(envelope)
            status = rpc.get_submission(submission_id)
            if status is None:
                raise SubmissionFailed(f"node does not know submission {submission_id}", attempts=1)
            return status

        try:
            sequence = call_with_retry(
                lambda: rpc.get_sequence(target.account),
                policy,
                operation="sequence lookup",
                timeout_s=remaining(),
                exhausted=exhausted,
                sleep=self._sleep,
                monotonic=self._monotonic,
            ) + 1
            envelope = self._envelope(artifact, target, sequence)
            submission_id = envelope["submission_id"]
            status = call_with_retry(
                submit,
                policy,
                operation=f"deploy to {target.network}",
                timeout_s=remaining(),
                probe=settled,
                exhausted=exhausted,
                sleep=self._sleep,
                monotonic=self._monotonic,
            )
        except RpcRejected as e:
            raise self._map_rejection(e, target) from e

        if status.get("status") == "rejected":
            raise SubmissionFailed(
                f"deploy to {target.network} rejected: {status.get('error', 'unknown reason')}",
                data={"submission": status},
            )
        if status.get("code_hash") not in (None, artifact.code_hash):
            raise SubmissionFailed(
                "node reports a different code hash for the submission",
                data={"expected": artifact.code_hash, "reported": status.get("code_hash")},
            )
        return {
            "contract_id": str(status["contract_id"]),
            "position": status.get("position"),
            "tx_hash": status.get("tx_hash"),
            "submission_id": submission_id,
        }

    def _envelope(self, artifact: BuildArtifact, target: RemoteTarget, sequence: int) -> Dict[str, Any]:
        envelope: Dict[str, Any] = {
            "submission_id": submission_id_for(target.chain_id, target.account, sequence, artifact.code_hash),
            "kind": "deploy",
            "source": target.account,
            "sequence": sequence,
            "binary": "0x" + artifact.binary.hex(),
            "chain_id": target.chain_id,
            "public_key": self._keyring.public_key(target.account),
        }
        envelope["signature"] = self._keyring.sign(target.account, envelope_signing_bytes(envelope))
        return envelope

    @staticmethod
    def _map_rejection(err: RpcRejected, target: RemoteTarget) -> DevchainError:
        if err.rpc_code == RPC_INSUFFICIENT_BALANCE:
            detail = _rejection_detail(err)
            return InsufficientBalance(
                target.account,
                required=int(detail.get("required", 0)),
                available=int(detail.get("available", 0)),
            )
        log.info("deploy.rejected", network=target.network, rpc_code=err.rpc_code)
        return SubmissionFailed(f"deploy to {target.network} rejected: {err.message}", attempts=1, data={"rejection": err.to_dict()})


__all__ = [
    "DeploymentPipeline",
    "LocalTarget",
    "RemoteTarget",
    "Target",
    "estimate_cost",
    "submission_id_for",
    "LOCAL_NETWORK",
]
