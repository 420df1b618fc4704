from __future__ import annotations

import threading

import pytest
from pydantic import ValidationError

from devchain.errors import PersistenceError
from devchain.models.records import DeployReceipt, VerificationRecord
from devchain.storage.sqlite import SCHEMA_VERSION, RecordStore


def _receipt(keyring, **over):
    fields = dict(
        contract_id="0x" + "11" * 32,
        instance_id="0x" + "22" * 32,
        code_hash="0x" + "11" * 32,
        network="local",
        position=3,
        cost_estimate=420,
        deployer="alice",
        tx_hash="0x" + "33" * 32,
        timestamp=1_700_000_000.0,
    )
    fields.update(over)
    return DeployReceipt.issue(keyring, **fields)


def _verification(**over):
    fields = dict(
        contract_id="0x" + "11" * 32,
        local_hash="0x" + "11" * 32,
        remote_hash="0x" + "11" * 32,
        match=True,
        network="local",
        toolchain={"version": "devchain-asm/1", "optimize": True},
        timestamp=1_700_000_001.0,
    )
    fields.update(over)
    return VerificationRecord.create(**fields)


@pytest.fixture
def store(tmp_path):
    s = RecordStore(tmp_path / "records.db")
    yield s
    s.close()


# ----------------------------------------------------------------- models


def test_receipt_is_signed_by_deployer(keyring):
    r = _receipt(keyring)
    assert r.public_key == keyring.public_key("alice")
    assert r.verify_signature()
    assert _receipt(keyring).receipt_id == r.receipt_id


def test_tampered_receipt_fails_verification(keyring):
    r = _receipt(keyring)
    assert not r.model_copy(update={"position": 4}).verify_signature()
    forged = _receipt(keyring, deployer="mallory")
    assert not r.model_copy(update={"signature": forged.signature}).verify_signature()


def test_receipt_rejects_unknown_fields_and_negative_cost(keyring):
    with pytest.raises(ValidationError):
        _receipt(keyring, colour="blue")
    with pytest.raises(ValidationError):
        _receipt(keyring, cost_estimate=-1)


def test_verification_id_is_content_derived():
    a = _verification()
    assert a.record_id == _verification().record_id
    assert a.record_id != _verification(match=False, remote_hash="0x" + "44" * 32).record_id


# ------------------------------------------------------------------ store


def test_schema_version_recorded(store):
    row = store.db().execute("SELECT value FROM meta_kv WHERE key = 'schema_version'").fetchone()
    assert row["value"] == SCHEMA_VERSION


def test_receipt_insert_is_idempotent(store, keyring):
    r = _receipt(keyring)
    assert store.save_receipt(r) is True
    assert store.save_receipt(r) is False
    assert store.get_receipt(r.receipt_id) == r
    assert store.get_receipt("0xmissing") is None


def test_conflicting_body_is_refused(store, keyring):
    r = _receipt(keyring)
    store.save_receipt(r)
    with pytest.raises(PersistenceError):
        store.save_receipt(r.model_copy(update={"position": 99}))
    assert store.get_receipt(r.receipt_id).position == 3


def test_list_receipts_filters_and_orders(store, keyring):
    late = _receipt(keyring, timestamp=20.0)
    early = _receipt(keyring, timestamp=10.0)
    other = _receipt(keyring, network="testnet", contract_id="0xabc", timestamp=15.0)
    for r in (late, early, other):
        store.save_receipt(r)
    assert [r.timestamp for r in store.list_receipts()] == [10.0, 15.0, 20.0]
    assert store.list_receipts(network="testnet") == [other]
    assert store.list_receipts(contract_id="0x" + "11" * 32, network="local") == [early, late]


def test_verifications_round_trip(store):
    ok = _verification()
    bad = _verification(match=False, remote_hash="0x" + "44" * 32, timestamp=1_700_000_002.0)
    assert store.save_verification(ok)
    assert store.save_verification(bad)
    assert not store.save_verification(ok)
    assert store.get_verification(bad.record_id) == bad
    assert [v.match for v in store.list_verifications(contract_id=ok.contract_id)] == [True, False]
    assert store.list_verifications(contract_id="0xother") == []


def test_records_survive_reopen(tmp_path, keyring):
    path = tmp_path / "records.db"
    first = RecordStore(path)
    r = _receipt(keyring)
    first.save_receipt(r)
    first.close()

    second = RecordStore(path)
    try:
        assert second.list_receipts() == [r]
    finally:
        second.close()


def test_concurrent_writers(store, keyring):
    receipts = [_receipt(keyring, timestamp=float(i)) for i in range(20)]
    errors = []

    def work(chunk):
        try:
            for r in chunk:
                store.save_receipt(r)
        except Exception as e:  # pragma: no cover - reported below
            errors.append(e)

    threads = [threading.Thread(target=work, args=(receipts[i::4],)) for i in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert errors == []
    assert len(store.list_receipts()) == 20
