from __future__ import annotations

import threading

import pytest

from devchain.config import ExecutionLimits
from devchain.errors import InsufficientBalance, SequenceMismatch, UnknownAccount
from devchain.hashing import sha3_hex
from devchain.runtime.executor import Executor
from devchain.types.result import Failure, Receipt
from devchain.types.tx import ResourceLimits, Transaction


@pytest.fixture
def funded(accounts):
    accounts.create("alice")
    accounts.create("bob")
    accounts.fund("alice", 10_000)
    return accounts


def _deploy(executor, accounts, binary, who="alice"):
    tx = Transaction.deploy(who, accounts.next_sequence(who), binary)
    out = executor.execute(tx)
    assert out.ok, out
    return out


def test_fund_transfers_mint_to_destination(executor, funded, engine):
    out = executor.execute(Transaction.fund("alice", 1, "bob", 250))
    assert isinstance(out, Receipt)
    assert funded.get("bob").balance == 250
    assert funded.get("alice").sequence == 1
    assert funded.get("bob").sequence == 0
    assert out.ledger_sequence == engine.current().sequence
    assert out.touched_accounts == ("alice", "bob")
    assert out.state_root == engine.current().state_root()


def test_sequence_must_be_next(executor, funded, engine):
    before = engine.current()
    for claimed in (0, 2, 7):
        out = executor.execute(Transaction.fund("alice", claimed, "bob", 1))
        assert isinstance(out, Failure)
        assert out.error_code == "SEQUENCE_MISMATCH"
        assert out.data == {"account": "alice", "expected": 1, "claimed": claimed}
        with pytest.raises(SequenceMismatch):
            out.raise_error()
    assert engine.current() is before


def test_failures_do_not_consume_a_sequence_slot(executor, funded):
    assert not executor.execute(Transaction.fund("alice", 1, "ghost", 1)).ok
    assert funded.get("alice").sequence == 0
    assert executor.execute(Transaction.fund("alice", 1, "bob", 1)).ok


def test_unknown_source(executor, funded):
    out = executor.execute(Transaction.fund("ghost", 1, "bob", 1))
    assert out.error_code == "UNKNOWN_ACCOUNT"
    assert isinstance(out.error, UnknownAccount)


def test_deploy_charges_fixed_cost_and_registers_code(executor, funded, registry, token_artifact):
    out = _deploy(executor, funded, token_artifact.binary)
    assert out.contract_id == sha3_hex(token_artifact.binary)
    assert funded.get("alice").balance == 10_000 - ExecutionLimits().deploy_cost
    assert funded.get("alice").sequence == 1
    inst = registry.instance(out.instance_id)
    assert inst.code_hash == out.contract_id
    assert inst.owner == "alice"
    assert dict(inst.storage) == {}
    assert registry.lookup(out.contract_id).binary == token_artifact.binary


def test_redeploy_same_code_creates_new_instance(executor, funded, registry, token_artifact):
    a = _deploy(executor, funded, token_artifact.binary)
    b = _deploy(executor, funded, token_artifact.binary)
    assert a.contract_id == b.contract_id
    assert a.instance_id != b.instance_id
    assert len(registry.list()) == 1
    assert len(registry.instances()) == 2


def test_deploy_insufficient_balance_checked_before_mutation(executor, funded, engine, token_artifact):
    before = engine.current()
    out = executor.execute(Transaction.deploy("bob", 1, token_artifact.binary))
    assert out.error_code == "INSUFFICIENT_BALANCE"
    assert out.data["required"] == 100 and out.data["available"] == 0
    with pytest.raises(InsufficientBalance):
        out.raise_error()
    assert engine.current() is before


def test_deploy_rejects_invalid_binary(executor, funded, engine):
    before = engine.current()
    out = executor.execute(Transaction.deploy("alice", 1, b"DVCM\x01garbage"))
    assert out.error_code == "INVALID_TRANSACTION"
    assert engine.current() is before


def test_requested_limits_over_configured_maximum(engine, registry, funded, token_artifact):
    ex = Executor(engine, registry, ExecutionLimits(max_steps=50))
    out = ex.execute(Transaction.deploy("alice", 1, token_artifact.binary, limits=ResourceLimits(steps=51)))
    assert out.error_code == "RESOURCE_LIMIT_EXCEEDED"
    assert out.data == {"limit": "steps", "requested": 51, "maximum": 50}


def test_invoke_counter_updates_storage(executor, funded, counter_artifact):
    dep = _deploy(executor, funded, counter_artifact.binary)
    seq = funded.next_sequence("alice")
    out = executor.execute(Transaction.invoke("alice", seq, dep.instance_id, "increment", [5]))
    assert out.ok and out.return_value == 5
    out = executor.execute(Transaction.invoke("alice", seq + 1, dep.instance_id, "increment", [2]))
    assert out.return_value == 7
    assert out.touched_instances == (dep.instance_id,)
    assert out.steps_used > 0


def test_invoke_transfer_moves_balance_and_emits(executor, funded, token_artifact):
    dep = _deploy(executor, funded, token_artifact.binary)
    out = executor.execute(
        Transaction.invoke("alice", 2, dep.instance_id, "transfer", ["alice", "bob", 500])
    )
    assert out.ok, out
    assert out.return_value == 1
    assert funded.get("alice").balance == 10_000 - 100 - 500
    assert funded.get("bob").balance == 500
    assert funded.get("alice").sequence == 2
    assert [e["topic"] for e in out.events] == ["transferred"]


def test_invoke_transfer_from_someone_else_reverts(executor, funded, token_artifact, engine):
    dep = _deploy(executor, funded, token_artifact.binary)
    funded.fund("bob", 50)
    before = engine.current()
    out = executor.execute(Transaction.invoke("alice", 2, dep.instance_id, "transfer", ["bob", "alice", 10]))
    assert out.error_code == "REVERT"
    assert engine.current() is before


def test_invoke_revert_and_exhaustion_are_atomic(executor, funded, counter_artifact, engine):
    dep = _deploy(executor, funded, counter_artifact.binary)
    before = engine.current()

    out = executor.execute(Transaction.invoke("alice", 2, dep.instance_id, "guarded", [20]))
    assert out.error_code == "REVERT"
    assert out.data["reason"] == "x must be below 10"

    out = executor.execute(
        Transaction.invoke("alice", 2, dep.instance_id, "spin", [], limits=ResourceLimits(steps=500))
    )
    assert out.error_code == "RESOURCE_EXHAUSTED"
    assert out.data["resource"] == "steps"
    assert engine.current() is before

    assert executor.execute(Transaction.invoke("alice", 2, dep.instance_id, "guarded", [3])).ok


def test_invoke_unknown_instance_and_function(executor, funded, counter_artifact):
    out = executor.execute(Transaction.invoke("alice", 1, "0x" + "ab" * 32, "get"))
    assert out.error_code == "CONTRACT_NOT_FOUND"
    dep = _deploy(executor, funded, counter_artifact.binary)
    out = executor.execute(Transaction.invoke("alice", 2, dep.instance_id, "nope"))
    assert out.error_code == "INVALID_TRANSACTION"
    out = executor.execute(Transaction.invoke("alice", 2, dep.instance_id, "increment", []))
    assert out.error_code == "INVALID_TRANSACTION"


def test_simulate_never_commits(executor, funded, counter_artifact, engine):
    dep = _deploy(executor, funded, counter_artifact.binary)
    before = engine.current()
    out = executor.simulate(Transaction.invoke("alice", 2, dep.instance_id, "increment", [9]))
    assert out.ok and out.return_value == 9
    assert out.ledger_sequence == before.sequence + 1
    assert engine.current() is before


def test_concurrent_submissions_apply_one_at_a_time(executor, accounts, engine):
    handles = [f"user{i}" for i in range(8)]
    for h in handles:
        accounts.create(h)
    start = engine.current().sequence
    barrier = threading.Barrier(len(handles))
    failures = []

    def submit(handle):
        barrier.wait()
        for n in range(1, 26):
            out = executor.execute(Transaction.fund(handle, n, handles[n % len(handles)], 3))
            if not out.ok:
                failures.append(out)

    threads = [threading.Thread(target=submit, args=(h,)) for h in handles]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert failures == []
    assert engine.current().sequence == start + 8 * 25
    assert {h: accounts.get(h).sequence for h in handles} == {h: 25 for h in handles}
    assert accounts.total_balance() == 8 * 25 * 3
    hist = engine.history()
    assert hist == list(range(hist[0], hist[-1] + 1))


def test_commit_replans_when_the_snapshot_moved(executor, funded, engine, monkeypatch):
    real_plan = executor._plan
    planned = []

    def plan_then_race(snap, tx):
        plan = real_plan(snap, tx)
        planned.append(snap.sequence)
        if len(planned) == 1:
            # another writer commits between planning and the locked commit
            funded.fund("bob", 5)
        return plan

    monkeypatch.setattr(executor, "_plan", plan_then_race)
    out = executor.execute(Transaction.fund("alice", 1, "bob", 100))

    assert out.ok
    assert planned == [planned[0], planned[0] + 1]
    assert funded.get("bob").balance == 105
    assert funded.get("alice").sequence == 1
    assert out.ledger_sequence == planned[0] + 2


def test_replan_surfaces_a_conflict_as_failure(executor, funded, engine, monkeypatch):
    real_plan = executor._plan
    calls = []

    def plan_then_steal_sequence(snap, tx):
        plan = real_plan(snap, tx)
        calls.append(snap.sequence)
        if len(calls) == 1:
            assert executor.execute(Transaction.fund("alice", 1, "bob", 1)).ok
        return plan

    monkeypatch.setattr(executor, "_plan", plan_then_steal_sequence)
    out = executor.execute(Transaction.fund("alice", 1, "bob", 100))

    assert isinstance(out, Failure)
    assert out.error_code == "SEQUENCE_MISMATCH"
    assert funded.get("bob").balance == 1
    assert funded.get("alice").sequence == 1
