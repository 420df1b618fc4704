"""
devchain.runtime.executor — apply one transaction to the devnet, atomically.

Responsibilities
- execute: validate, run and commit a single fund/deploy/invoke transaction,
  returning a Receipt on success or a Failure describing why nothing changed.
- simulate: the same pipeline against the current snapshot without
  committing (dry run for step estimates and previews).

Algorithm
1. The source account must exist and the claimed sequence must equal its
   current sequence + 1 (SequenceMismatch otherwise).
2. Requested budgets must be within the configured maxima
   (ResourceLimitExceeded, before any state is touched).
3. Dispatch by kind into a *plan*: the full StateDelta plus receipt details,
   computed purely from one snapshot. Invoke runs the contract inside an
   Overlay, so exhaustion or a revert simply discards the plan.
4. Commit the plan through LedgerStateEngine.transact. Planning first happens
   without the engine lock; under the lock the plan is reused if the snapshot
   has not moved and recomputed against the new one if it has. Validation of
   independent accounts thus runs concurrently while commits stay serialized
   in arrival order.

Sequence policy
- Failed transactions never consume a sequence slot: a Failure means the
  ledger (including the source account's sequence) is byte-for-byte unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Tuple

from devchain.config import ExecutionLimits
from devchain.errors import DevchainError, ResourceLimitExceeded, SequenceMismatch, UnknownAccount
from devchain.logging import get_logger
from devchain.state.accounts import Account, check_amount
from devchain.state.contracts import ContractInstance, ContractRegistry, instance_id_for
from devchain.state.ledger import LedgerStateEngine
from devchain.state.snapshots import LedgerSnapshot, StateDelta
from devchain.types.result import Outcome, Receipt, error_to_failure
from devchain.types.tx import DeployPayload, FundPayload, InvokePayload, Transaction
from devchain.vm.engine import Engine
from devchain.vm.host import Overlay
from devchain.vm.meter import ResourceMeter

log = get_logger(__name__)


@dataclass
class _Plan:
    snapshot: LedgerSnapshot
    delta: StateDelta
    contract_id: Optional[str] = None
    instance_id: Optional[str] = None
    return_value: Any = None
    events: Tuple[dict, ...] = ()
    steps_used: int = 0


class Executor:
    def __init__(
        self,
        engine: LedgerStateEngine,
        registry: ContractRegistry,
        limits: Optional[ExecutionLimits] = None,
    ) -> None:
        self.engine = engine
        self.registry = registry
        self.limits = limits or ExecutionLimits()

    # ------------------------------------------------------------ public API

    def execute(self, tx: Transaction) -> Outcome:
        tx_hash = tx.tx_hash()
        try:
            plan = self._plan(self.engine.current(), tx)

            def build(current: LedgerSnapshot) -> StateDelta:
                nonlocal plan
                if current is not plan.snapshot:
                    plan = self._plan(current, tx)
                return plan.delta

            snap = self.engine.transact(build)
        except DevchainError as e:
            log.info(
                "executor.failed",
                tx_hash=tx_hash,
                kind=tx.kind.value,
                source=tx.source,
                error_code=e.code,
                cause=e.message,
            )
            return error_to_failure(e, tx_hash=tx_hash, kind=tx.kind.value, source=tx.source)

        receipt = self._receipt(tx, tx_hash, plan, snap)
        log.info(
            "executor.applied",
            tx_hash=tx_hash,
            kind=tx.kind.value,
            source=tx.source,
            ledger_sequence=snap.sequence,
            steps_used=plan.steps_used,
        )
        return receipt

    def simulate(self, tx: Transaction) -> Outcome:
        """Dry run against the current snapshot; never commits."""
        tx_hash = tx.tx_hash()
        current = self.engine.current()
        try:
            plan = self._plan(current, tx)
            self.engine.validate(current, plan.delta)
        except DevchainError as e:
            return error_to_failure(e, tx_hash=tx_hash, kind=tx.kind.value, source=tx.source)
        projected = current.advance(plan.delta, timestamp=current.timestamp)
        return self._receipt(tx, tx_hash, plan, projected)

    # ------------------------------------------------------------- planning

    def _check_limits(self, tx: Transaction) -> None:
        lim = tx.limits
        if lim.steps > self.limits.max_steps:
            raise ResourceLimitExceeded("steps", requested=lim.steps, maximum=self.limits.max_steps)
        if lim.memory_bytes > self.limits.max_memory_bytes:
            raise ResourceLimitExceeded(
                "memory_bytes", requested=lim.memory_bytes, maximum=self.limits.max_memory_bytes
            )

    def _plan(self, snap: LedgerSnapshot, tx: Transaction) -> _Plan:
        src = snap.accounts.get(tx.source)
        if src is None:
            raise UnknownAccount(tx.source)
        if tx.sequence != src.sequence + 1:
            raise SequenceMismatch(tx.source, expected=src.sequence + 1, claimed=tx.sequence)
        self._check_limits(tx)

        payload = tx.payload
        if isinstance(payload, FundPayload):
            return self._plan_fund(snap, src, payload)
        if isinstance(payload, DeployPayload):
            return self._plan_deploy(snap, src, tx, payload)
        if isinstance(payload, InvokePayload):
            return self._plan_invoke(snap, src, tx, payload)
        raise TypeError(f"unsupported payload {type(payload).__name__}")

    def _plan_fund(self, snap: LedgerSnapshot, src: Account, p: FundPayload) -> _Plan:
        check_amount(p.amount, allow_zero=True)
        dest = snap.accounts.get(p.destination)
        if dest is None:
            raise UnknownAccount(p.destination)
        bumped = src.bumped()
        if dest.handle == src.handle:
            accounts = {src.handle: bumped.credited(p.amount)}
        else:
            accounts = {src.handle: bumped, dest.handle: dest.credited(p.amount)}
        return _Plan(snapshot=snap, delta=StateDelta(accounts=accounts))

    def _plan_deploy(self, snap: LedgerSnapshot, src: Account, tx: Transaction, p: DeployPayload) -> _Plan:
        code = self.registry.prepare(p.binary, deployer=src.handle)
        charged = src.debited(self.limits.deploy_cost).bumped()
        instance_id = instance_id_for(code.code_hash, src.handle, tx.sequence)
        instance = ContractInstance(
            instance_id=instance_id,
            code_hash=code.code_hash,
            owner=src.handle,
            storage={},
            created_at=snap.sequence + 1,
        )
        codes = {} if code.code_hash in snap.codes else {code.code_hash: code}
        delta = StateDelta(accounts={src.handle: charged}, instances={instance_id: instance}, codes=codes)
        return _Plan(snapshot=snap, delta=delta, contract_id=code.code_hash, instance_id=instance_id)

    def _plan_invoke(self, snap: LedgerSnapshot, src: Account, tx: Transaction, p: InvokePayload) -> _Plan:
        overlay = Overlay(snap, source=src.handle)
        meter = ResourceMeter(tx.limits.steps, tx.limits.memory_bytes)
        vm = Engine(overlay, meter, max_call_depth=self.limits.max_call_depth)
        result = vm.call(p.instance_id, p.function, p.args, caller=src.handle)

        delta = overlay.delta()
        delta.accounts[src.handle] = delta.accounts.get(src.handle, src).bumped()
        instance = overlay.instance(p.instance_id)
        return _Plan(
            snapshot=snap,
            delta=delta,
            contract_id=instance.code_hash,
            instance_id=p.instance_id,
            return_value=result.return_value,
            events=result.events,
            steps_used=result.steps_used,
        )

    # -------------------------------------------------------------- receipts

    @staticmethod
    def _receipt(tx: Transaction, tx_hash: str, plan: _Plan, snap: LedgerSnapshot) -> Receipt:
        touched = plan.delta.touched()
        return Receipt(
            tx_hash=tx_hash,
            kind=tx.kind.value,
            source=tx.source,
            account_sequence=tx.sequence,
            ledger_sequence=snap.sequence,
            contract_id=plan.contract_id,
            instance_id=plan.instance_id,
            return_value=plan.return_value,
            events=tuple(plan.events),
            steps_used=plan.steps_used,
            touched_accounts=tuple(touched["accounts"]),
            touched_instances=tuple(touched["instances"]),
            state_root=snap.state_root(),
        )


__all__ = ["Executor"]
