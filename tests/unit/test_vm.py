from __future__ import annotations

import pytest

from devchain.errors import ContractReverted, InvalidTransaction, ResourceExhausted
from devchain.vm.engine import Engine
from devchain.vm.host import Overlay, decode_value, encode_value
from devchain.vm.meter import ResourceMeter, value_size
from devchain.types.tx import Transaction

from ..conftest import COUNTER_YAML, build_text

PROXY_YAML = """\
name: proxy
functions:
  bump:
    params: [target, by]
    code:
      - ARG target
      - ARG by
      - INVOKE increment 1
      - RETURN
  recurse:
    params: []
    code:
      - SELF
      - INVOKE recurse 0
      - RETURN
  whoami:
    params: []
    code:
      - CALLER
      - RETURN
"""


def _deploy(executor, accounts, yaml_text):
    art = build_text(yaml_text)
    out = executor.execute(Transaction.deploy("alice", accounts.next_sequence("alice"), art.binary))
    assert out.ok, out
    return out.instance_id


@pytest.fixture
def alice(accounts):
    accounts.create("alice")
    accounts.fund("alice", 1_000)
    return "alice"


def _vm(engine, steps=10_000, memory=64 * 1024, depth=8):
    overlay = Overlay(engine.current(), source="alice")
    return Engine(overlay, ResourceMeter(steps, memory), max_call_depth=depth), overlay


def test_counter_increment_stages_storage(engine, executor, accounts, alice):
    iid = _deploy(executor, accounts, COUNTER_YAML)
    vm, overlay = _vm(engine)
    res = vm.call(iid, "increment", [4], caller="alice")
    assert res.return_value == 4
    assert res.steps_used == 6
    assert vm.call(iid, "increment", [1], caller="alice").return_value == 5

    delta = overlay.delta()
    stored = delta.instances[iid].storage
    assert decode_value(stored[encode_value("count")]) == 5
    # the snapshot the overlay sits on is never written
    assert dict(engine.current().instances[iid].storage) == {}


def test_missing_storage_key_reads_zero(engine, executor, accounts, alice):
    iid = _deploy(executor, accounts, COUNTER_YAML)
    vm, _ = _vm(engine)
    assert vm.call(iid, "get", [], caller="alice").return_value == 0


def test_require_reverts_with_message(engine, executor, accounts, alice):
    iid = _deploy(executor, accounts, COUNTER_YAML)
    vm, overlay = _vm(engine)
    with pytest.raises(ContractReverted) as ei:
        vm.call(iid, "guarded", [20], caller="alice")
    assert ei.value.data["reason"] == "x must be below 10"
    assert ei.value.data["function"] == "guarded"
    assert vm.call(iid, "guarded", [3], caller="alice").return_value == 0


def test_infinite_loop_runs_out_of_steps(engine, executor, accounts, alice):
    iid = _deploy(executor, accounts, COUNTER_YAML)
    vm, _ = _vm(engine, steps=250)
    with pytest.raises(ResourceExhausted) as ei:
        vm.call(iid, "spin", [], caller="alice")
    assert ei.value.data == {"resource": "steps", "budget": 250, "used": 251}
    assert vm.meter.steps_used == 250


def test_storage_writes_count_against_memory(engine, executor, accounts, alice):
    iid = _deploy(executor, accounts, COUNTER_YAML)
    vm, _ = _vm(engine, memory=16)
    with pytest.raises(ResourceExhausted) as ei:
        vm.call(iid, "increment", [1], caller="alice")
    assert ei.value.data["resource"] == "memory"


def test_unknown_function_and_arity(engine, executor, accounts, alice):
    iid = _deploy(executor, accounts, COUNTER_YAML)
    vm, _ = _vm(engine)
    with pytest.raises(InvalidTransaction):
        vm.call(iid, "missing", [], caller="alice")
    with pytest.raises(InvalidTransaction) as ei:
        vm.call(iid, "increment", [1, 2], caller="alice")
    assert ei.value.data == {"function": "increment", "expected": 1, "got": 2}


def test_nested_invoke_shares_overlay(engine, executor, accounts, alice):
    counter = _deploy(executor, accounts, COUNTER_YAML)
    proxy = _deploy(executor, accounts, PROXY_YAML)
    vm, overlay = _vm(engine)
    assert vm.call(proxy, "bump", [counter, 7], caller="alice").return_value == 7
    assert vm.call(counter, "get", [], caller="alice").return_value == 7
    assert vm.call(proxy, "whoami", [], caller="alice").return_value == "alice"
    assert set(overlay.delta().instances) == {counter}


def test_call_depth_is_bounded(engine, executor, accounts, alice):
    proxy = _deploy(executor, accounts, PROXY_YAML)
    vm, _ = _vm(engine, depth=3)
    with pytest.raises(ResourceExhausted) as ei:
        vm.call(proxy, "recurse", [], caller="alice")
    assert ei.value.data["resource"] == "call_depth"


def test_meter_budgets():
    m = ResourceMeter(steps=2, memory_bytes=20)
    m.step()
    m.step()
    with pytest.raises(ResourceExhausted):
        m.step()
    f = m.push_frame()
    m.set_frame(f, 12)
    m.add_pending(8)
    assert m.memory_in_use == 20
    with pytest.raises(ResourceExhausted):
        m.set_frame(f, 13)
    assert m.memory_peak == 21
    with pytest.raises(ValueError):
        ResourceMeter(-1, 0)


@pytest.mark.parametrize(
    "value,size",
    [(0, 8), (2**64 - 1, 8), (2**64, 9), (2**72, 10), ("abc", 11), (b"\x00\x01", 10), ("é", 10)],
)
def test_value_size(value, size):
    assert value_size(value) == size
