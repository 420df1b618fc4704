"""
Property tests for the ledger, executor and codecs.

- balance conservation: the sum of balances always equals the sum of amounts
  minted by fund transactions and direct funding; transfers between existing
  accounts never create or destroy units
- sequence contiguity: every successful transaction consumes exactly the next
  sequence number of its source, failed ones consume nothing
- snapshot codec: decode(encode(s)) preserves the state root
- content addressing: registering a binary yields sha3(binary) and the same
  bytes come back from lookup
"""
from __future__ import annotations

from typing import List, Tuple

from hypothesis import given, settings, strategies as st

from devchain.config import ExecutionLimits
from devchain.hashing import sha3_hex
from devchain.runtime.executor import Executor
from devchain.state.accounts import AccountStore
from devchain.state.contracts import ContractRegistry
from devchain.state.keys import Keyring
from devchain.state.ledger import LedgerStateEngine
from devchain.state.persistence import decode_snapshot, encode_snapshot
from devchain.types.tx import Transaction

from ..conftest import TOKEN_YAML, build_text

HANDLES = ["alice", "bob", "carol"]
KEYRING = Keyring("prop-seed")
TOKEN = build_text(TOKEN_YAML)

# (source index, destination index, amount, claimed sequence offset)
OP = st.tuples(
    st.integers(0, len(HANDLES) - 1),
    st.integers(0, len(HANDLES) - 1),
    st.integers(0, 400),
    st.sampled_from([0, 0, 0, 1, -1]),
)


def _devnet(balances: List[int]) -> Tuple[LedgerStateEngine, AccountStore, Executor]:
    engine = LedgerStateEngine(retention=8)
    accounts = AccountStore(engine, KEYRING)
    for h, amount in zip(HANDLES, balances):
        accounts.create(h)
        if amount:
            accounts.fund(h, amount)
    registry = ContractRegistry(engine, ExecutionLimits())
    return engine, accounts, Executor(engine, registry, ExecutionLimits())


def _total(engine: LedgerStateEngine) -> int:
    return sum(a.balance for a in engine.current().accounts.values())


# either a fund transaction (tx=True) or a direct AccountStore.fund call
FUNDING = st.tuples(st.booleans(), OP)


@settings(max_examples=60, deadline=None)
@given(steps=st.lists(FUNDING, max_size=30))
def test_balances_equal_total_minted(steps):
    engine, accounts, executor = _devnet([0, 0, 0])
    minted = 0

    for as_tx, (src, dst, amount, skew) in steps:
        s, d = HANDLES[src], HANDLES[dst]
        if as_tx:
            out = executor.execute(Transaction.fund(s, accounts.next_sequence(s) + skew, d, amount))
            if out.ok:
                minted += amount
        elif amount > 0:
            accounts.fund(d, amount)
            minted += amount
        assert _total(engine) == minted
        assert accounts.total_balance() == minted


@settings(max_examples=60, deadline=None)
@given(balances=st.lists(st.integers(0, 1_000), min_size=3, max_size=3), ops=st.lists(OP, max_size=25))
def test_contract_transfers_conserve_balance(balances, ops):
    engine, accounts, executor = _devnet(balances)
    dep = executor.execute(Transaction.deploy("alice", 1, TOKEN.binary)) if balances[0] >= 100 else None
    total = _total(engine)

    for src, dst, amount, _ in ops:
        if dep is None:
            break
        s, d = HANDLES[src], HANDLES[dst]
        executor.execute(
            Transaction.invoke(s, accounts.next_sequence(s), dep.instance_id, "transfer", [s, d, amount])
        )
        assert _total(engine) == total
        assert all(a.balance >= 0 for a in engine.current().accounts.values())


@settings(max_examples=60, deadline=None)
@given(ops=st.lists(OP, max_size=30))
def test_sequences_are_contiguous(ops):
    engine, accounts, executor = _devnet([500, 500, 500])
    expected = {h: 0 for h in HANDLES}

    for src, dst, amount, skew in ops:
        s = HANDLES[src]
        before = engine.current()
        out = executor.execute(Transaction.fund(s, expected[s] + 1 + skew, HANDLES[dst], amount))
        if out.ok:
            assert skew == 0
            expected[s] += 1
            assert out.account_sequence == expected[s]
            assert out.ledger_sequence == before.sequence + 1
        else:
            assert engine.current() is before
        assert {h: accounts.get(h).sequence for h in HANDLES} == expected


@settings(max_examples=40, deadline=None)
@given(balances=st.lists(st.integers(0, 10**12), min_size=3, max_size=3), ops=st.lists(OP, max_size=10))
def test_snapshot_codec_preserves_state_root(balances, ops):
    engine, accounts, executor = _devnet(balances)
    for src, dst, amount, _ in ops:
        s = HANDLES[src]
        executor.execute(Transaction.fund(s, accounts.next_sequence(s), HANDLES[dst], amount))
    snap = engine.current()
    back = decode_snapshot(encode_snapshot(snap))
    assert back.sequence == snap.sequence
    assert back.state_root() == snap.state_root()


@settings(max_examples=40, deadline=None)
@given(names=st.lists(st.text(alphabet="abcdefghij", min_size=1, max_size=8), min_size=1, max_size=4, unique=True))
def test_registry_is_content_addressed(names):
    engine = LedgerStateEngine(retention=8)
    AccountStore(engine, KEYRING).create("alice")
    registry = ContractRegistry(engine, ExecutionLimits())
    for n in names:
        art = build_text(TOKEN_YAML.replace("name: token", f"name: {n}"))
        code = registry.register(art.binary, deployer="alice")
        assert code.code_hash == sha3_hex(art.binary) == art.code_hash
        assert registry.lookup(code.code_hash).binary == art.binary
    assert len(registry.list()) == len(names)
