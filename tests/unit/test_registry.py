from __future__ import annotations

import pytest

from devchain.config import ExecutionLimits
from devchain.errors import ContractNotFound, InvalidTransaction, NotFound, UnknownAccount
from devchain.hashing import sha3_hex
from devchain.state.contracts import ContractRegistry


def test_register_is_content_addressed(accounts, registry, engine, token_artifact):
    accounts.create("alice")
    code = registry.register(token_artifact.binary, deployer="alice")
    assert code.code_hash == sha3_hex(token_artifact.binary) == token_artifact.code_hash
    assert registry.lookup(code.code_hash).binary == token_artifact.binary
    assert code.interface == {"balance_of": ("who",), "transfer": ("from", "to", "amount")}
    assert code.deployer == "alice"


def test_register_twice_returns_existing_without_advancing(accounts, registry, engine, token_artifact):
    accounts.create("alice")
    accounts.create("bob")
    first = registry.register(token_artifact.binary, deployer="alice")
    seq = engine.current().sequence
    again = registry.register(token_artifact.binary, deployer="bob")
    assert again == first
    assert again.deployer == "alice"
    assert engine.current().sequence == seq


def test_register_requires_known_deployer(registry, engine, token_artifact):
    with pytest.raises(UnknownAccount):
        registry.register(token_artifact.binary, deployer="ghost")
    assert engine.current().sequence == 0


def test_register_rejects_garbage_and_oversized(accounts, engine, token_artifact):
    accounts.create("alice")
    reg = ContractRegistry(engine, ExecutionLimits(max_code_bytes=16))
    with pytest.raises(InvalidTransaction):
        reg.register(token_artifact.binary, deployer="alice")
    with pytest.raises(InvalidTransaction):
        ContractRegistry(engine).register(b"not a module", deployer="alice")
    with pytest.raises(InvalidTransaction):
        ContractRegistry(engine).register("0xdead", deployer="alice")  # type: ignore[arg-type]


def test_lookup_misses(registry):
    assert registry.find("0x" + "00" * 32) is None
    with pytest.raises(NotFound):
        registry.lookup("0x" + "00" * 32)
    with pytest.raises(KeyError):
        registry.lookup("0x" + "11" * 32)
    with pytest.raises(ContractNotFound):
        registry.instance("0x" + "22" * 32)


def test_list_is_sorted_by_hash(accounts, registry, token_artifact, counter_artifact):
    accounts.create("alice")
    registry.register(token_artifact.binary, deployer="alice")
    registry.register(counter_artifact.binary, deployer="alice")
    hashes = [c.code_hash for c in registry.list()]
    assert hashes == sorted(hashes) and len(hashes) == 2
    assert registry.instances() == []
