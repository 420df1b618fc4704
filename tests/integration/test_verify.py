from __future__ import annotations

import json
import time

import httpx
import pytest

from devchain.adapters.node_rpc import RPC_NOT_FOUND, HttpNodeRpc
from devchain.errors import BuildFailed, ContractNotFound, Timeout, TransientRpcError
from devchain.services.deploy import DeploymentPipeline, LocalTarget
from devchain.services.verify import VerificationEngine
from devchain.storage.sqlite import RecordStore

from ..conftest import COUNTER_YAML, write_contract


@pytest.fixture
def deployed(controller, counter_src):
    controller.accounts.create("alice")
    controller.accounts.fund("alice", 1_000)
    return DeploymentPipeline(controller=controller).deploy(counter_src, LocalTarget("alice"))


@pytest.fixture
def records(tmp_path):
    store = RecordStore(tmp_path / "records.db")
    yield store
    store.close()


def test_matching_source_verifies(controller, deployed, counter_src, records):
    engine = VerificationEngine.for_devnet(controller, records=records)
    for contract_id in (deployed.contract_id, deployed.instance_id):
        record = engine.verify(contract_id, counter_src)
        assert record.match is True
        assert record.local_hash == record.remote_hash == deployed.code_hash
        assert record.network == "local"
        assert record.toolchain == {"version": "devchain-asm/1", "optimize": True}
    assert len(records.list_verifications(contract_id=deployed.instance_id)) == 1


def test_changed_source_is_a_mismatch(controller, deployed, tmp_path, records):
    edited = write_contract(tmp_path / "edited", "counter", COUNTER_YAML.replace("PUSH 10", "PUSH 12"))
    record = VerificationEngine.for_devnet(controller, records=records).verify(deployed.contract_id, edited)
    assert record.match is False
    assert record.remote_hash == deployed.code_hash
    assert record.local_hash != record.remote_hash
    assert records.get_verification(record.record_id) == record


def test_repeat_verification_is_stable(controller, deployed, counter_src):
    engine = VerificationEngine.for_devnet(controller, clock=lambda: 5.0)
    assert engine.verify(deployed.contract_id, counter_src) == engine.verify(deployed.contract_id, counter_src)


def test_unknown_contract(controller, counter_src, records):
    with pytest.raises(ContractNotFound) as ei:
        VerificationEngine.for_devnet(controller, records=records).verify("0x" + "ab" * 32, counter_src)
    assert ei.value.data == {"contract_id": "0x" + "ab" * 32, "network": "local"}
    assert records.list_verifications() == []


def test_build_failure_skips_lookup(settings, tmp_path):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": None})

    rpc = HttpNodeRpc("http://node.test", transport=httpx.MockTransport(handler))
    with pytest.raises(BuildFailed):
        VerificationEngine(rpc, network="testnet", settings=settings).verify("0x01", tmp_path / "nope")
    assert calls == []


def _remote_engine(settings, handler, sleeps):
    rpc = HttpNodeRpc("http://node.test", transport=httpx.MockTransport(handler))
    return VerificationEngine(rpc, network="testnet", settings=settings, sleep=sleeps.append)


def test_remote_lookup_retries_transient_failures(settings, counter_src, counter_artifact):
    sleeps = []
    answers = [httpx.Response(502), httpx.Response(503)]

    def handler(request):
        if answers:
            return answers.pop(0)
        rid = json.loads(request.content)["id"]
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": rid, "result": counter_artifact.code_hash.upper().replace("0X", "0x")})

    record = _remote_engine(settings, handler, sleeps).verify("remote-1", counter_src)
    assert record.match is True
    assert sleeps == [0.01, 0.02]


def test_remote_lookup_gives_up(settings, counter_src):
    sleeps = []
    engine = _remote_engine(settings, lambda request: httpx.Response(503), sleeps)
    with pytest.raises(TransientRpcError):
        engine.verify("remote-1", counter_src)
    assert len(sleeps) == 2


@pytest.mark.parametrize(
    "body",
    [
        {"jsonrpc": "2.0", "id": 1, "result": None},
        {"jsonrpc": "2.0", "id": 1, "error": {"code": RPC_NOT_FOUND, "message": "no such contract"}},
    ],
)
def test_remote_not_found(settings, counter_src, body):
    engine = _remote_engine(settings, lambda request: httpx.Response(200, json=body), [])
    with pytest.raises(ContractNotFound) as ei:
        engine.verify("remote-404", counter_src)
    assert ei.value.data["network"] == "testnet"


class StalledLookup:
    def __init__(self, code_hash, delay_s):
        self.code_hash = code_hash
        self.delay_s = delay_s
        self.calls = 0

    def get_code_hash(self, contract_id):
        self.calls += 1
        time.sleep(self.delay_s)
        return self.code_hash


def test_stalled_lookup_times_out(settings, counter_src, counter_artifact, records):
    rpc = StalledLookup(counter_artifact.code_hash, 0.6)
    engine = VerificationEngine(rpc, network="testnet", settings=settings, records=records)
    started = time.monotonic()
    with pytest.raises(Timeout):
        engine.verify("remote-1", counter_src, timeout_s=0.1)
    assert time.monotonic() - started < 0.5
    assert rpc.calls == 1
    assert records.list_verifications() == []


def test_lookup_within_deadline_still_verifies(settings, counter_src, counter_artifact):
    rpc = StalledLookup(counter_artifact.code_hash, 0.0)
    record = VerificationEngine(rpc, network="testnet", settings=settings).verify("remote-1", counter_src, timeout_s=2.0)
    assert record.match is True
