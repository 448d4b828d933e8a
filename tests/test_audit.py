"""Tests for hashing, the ledgers and the audit emitter."""

import sys, os, json, sqlite3, threading
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import dataclasses
from datetime import datetime, timezone

import pytest

from pii_audit.audit import (
    TRANSFORMATION_ANONYMIZATION,
    AuditConfig,
    AuditEmitter,
    build_correction,
    build_record,
    new_transaction_id,
)
from pii_audit.errors import (
    AuditRejected,
    AuditUnavailable,
    PermanentLedgerError,
    TransientLedgerError,
)
from pii_audit.hashing import GENESIS_HASH, canonical_json, chain_hash, hash_text
from pii_audit.ledger import InMemoryLedger, verify_entries
from pii_audit.ledger_sqlite import SqliteLedger
from pii_audit.types import (
    Ack,
    AuditRecord,
    FairnessDecision,
    FairnessSummary,
    ParityMetric,
    PIIKind,
)


ORIGINAL = "Contact me at john@example.com or 555-123-4567"
ANONYMIZED = "Contact me at [EMAIL] or [PHONE]"


def _record(tx="tx-1", **kw):
    fields = dict(
        transaction_id=tx,
        user_id="u1",
        original_text=ORIGINAL,
        anonymized_text=ANONYMIZED,
        pii_types=[PIIKind.EMAIL, PIIKind.PHONE],
        consent_ref="consent-42",
        timestamp=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
    )
    fields.update(kw)
    return build_record(**fields)


class FlakyLedger:
    """Fails the first ``failures`` appends with ``error``, then delegates."""

    def __init__(self, failures, error=TransientLedgerError("ledger busy")):
        self.inner = InMemoryLedger()
        self.failures = failures
        self.error = error
        self.calls = 0

    def append(self, record):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.inner.append(record)


class HangingLedger:
    def __init__(self):
        self.release = threading.Event()

    def append(self, record):
        self.release.wait(2.0)
        return Ack(record.transaction_id, 1, GENESIS_HASH)


def _emitter(ledger, sleeps=None, **config):
    config.setdefault("timeout", None)
    sleep = sleeps.append if sleeps is not None else (lambda s: None)
    return AuditEmitter(ledger, AuditConfig(**config), sleep=sleep)


# ── Hashing ──────────────────────────────────────────────────────────

def test_hash_text_is_sha256_hex():
    assert hash_text("") == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
    assert hash_text("abc") == hash_text("abc")
    assert hash_text("abc") != hash_text("abd")
    assert len(hash_text("ünïcode")) == 64


def test_canonical_json_is_key_order_independent():
    assert canonical_json({"b": 1, "a": [1, 2]}) == canonical_json({"a": [1, 2], "b": 1})
    assert canonical_json({"a": 1}) == '{"a":1}'


def test_chain_hash_depends_on_previous():
    assert chain_hash(GENESIS_HASH, "x") != chain_hash("f" * 64, "x")


# ── Records ──────────────────────────────────────────────────────────

def test_record_holds_hashes_not_text():
    record = _record()
    assert record.original_hash == hash_text(ORIGINAL)
    assert record.anonymized_hash == hash_text(ANONYMIZED)
    assert record.pii_types_detected == {"email", "phone"}
    assert record.transformation_type == TRANSFORMATION_ANONYMIZATION

    payload = json.dumps(record.to_dict())
    assert "john@example.com" not in payload
    assert "555-123-4567" not in payload
    assert ANONYMIZED not in payload


def test_record_dict_round_trip():
    fairness = FairnessSummary(ParityMetric.DEMOGRAPHIC_PARITY, 0.05, FairnessDecision.PASS)
    record = _record(fairness=fairness)
    data = record.to_dict()
    assert data["pii_types_detected"] == ["email", "phone"]
    assert data["fairness_decision"]["decision"] == "pass"
    assert AuditRecord.from_dict(data) == record


def test_transaction_ids_are_unique():
    assert len({new_transaction_id() for _ in range(100)}) == 100


def test_build_correction_references_original():
    original = _record()
    fix = build_correction(original, pii_types_detected=frozenset({"email"}))
    assert fix.correction_of == original.transaction_id
    assert fix.transaction_id != original.transaction_id
    assert fix.pii_types_detected == {"email"}
    assert original.pii_types_detected == {"email", "phone"}


# ── InMemoryLedger ───────────────────────────────────────────────────

def test_append_acks_in_sequence():
    ledger = InMemoryLedger()
    a = ledger.append(_record("tx-1"))
    b = ledger.append(_record("tx-2"))
    assert (a.sequence, b.sequence) == (1, 2)
    assert not a.duplicate
    assert ledger.size == 2
    assert ledger.verify()


def test_replay_of_identical_record_is_idempotent():
    ledger = InMemoryLedger()
    first = ledger.append(_record())
    again = ledger.append(_record())
    assert again.duplicate
    assert (again.sequence, again.entry_hash) == (first.sequence, first.entry_hash)
    assert ledger.size == 1


def test_same_id_with_different_content_rejected():
    ledger = InMemoryLedger()
    ledger.append(_record())
    with pytest.raises(PermanentLedgerError):
        ledger.append(_record(consent_ref="other"))
    assert ledger.size == 1


def test_correction_appends_without_touching_original():
    ledger = InMemoryLedger()
    original = _record()
    ledger.append(original)
    ledger.append(build_correction(original, pii_types_detected=frozenset({"email"})))
    records = list(ledger.records())
    assert records[0] == original
    assert records[1].correction_of == original.transaction_id
    assert ledger.get(original.transaction_id) == original


def test_correction_of_unknown_transaction_rejected():
    ledger = InMemoryLedger()
    with pytest.raises(PermanentLedgerError):
        ledger.append(dataclasses.replace(_record(), correction_of="nope"))


def test_tampering_breaks_verification():
    ledger = InMemoryLedger()
    for i in range(3):
        ledger.append(_record(f"tx-{i}"))
    entries = ledger.entries()
    assert verify_entries(entries)

    forged = entries[1].payload.replace("consent-42", "consent-99")
    entries[1] = dataclasses.replace(entries[1], payload=forged)
    assert not verify_entries(entries)

    assert not verify_entries([entries[0], entries[2]])


def test_get_unknown_is_none():
    assert InMemoryLedger().get("missing") is None


# ── SqliteLedger ─────────────────────────────────────────────────────

def test_sqlite_ledger_persists_across_instances(tmp_path):
    path = tmp_path / "ledger.db"
    ledger = SqliteLedger(path)
    ledger.append(_record("tx-1"))
    ledger.append(_record("tx-2"))
    ledger.close()

    reopened = SqliteLedger(path)
    try:
        assert reopened.size == 2
        assert reopened.verify()
        assert reopened.get("tx-1") == _record("tx-1")
        ack = reopened.append(_record("tx-3"))
        assert ack.sequence == 3
        assert reopened.append(_record("tx-1")).duplicate
    finally:
        reopened.close()


def test_sqlite_ledger_rejects_conflicts_and_unknown_corrections(tmp_path):
    ledger = SqliteLedger(tmp_path / "ledger.db")
    try:
        ledger.append(_record())
        with pytest.raises(PermanentLedgerError):
            ledger.append(_record(consent_ref="other"))
        with pytest.raises(PermanentLedgerError):
            ledger.append(dataclasses.replace(_record("tx-9"), correction_of="nope"))
        assert ledger.size == 1
    finally:
        ledger.close()


def test_sqlite_ledger_refuses_update_and_delete(tmp_path):
    path = tmp_path / "ledger.db"
    ledger = SqliteLedger(path)
    ledger.append(_record())
    ledger.close()

    conn = sqlite3.connect(str(path))
    try:
        with pytest.raises(sqlite3.DatabaseError):
            conn.execute("UPDATE entries SET payload = 'x' WHERE sequence = 1")
        with pytest.raises(sqlite3.DatabaseError):
            conn.execute("DELETE FROM entries")
    finally:
        conn.close()

    reopened = SqliteLedger(path)
    try:
        assert reopened.size == 1
        assert reopened.verify()
    finally:
        reopened.close()

def test_sqlite_ledger_shared_by_several_connections(tmp_path):
    path = tmp_path / "ledger.db"
    ledgers = [SqliteLedger(path) for _ in range(4)]
    errors = []

    def work(n, ledger):
        for i in range(25):
            try:
                ledger.append(_record(f"tx-{n}-{i}"))
            except Exception as e:
                errors.append(e)

    threads = [threading.Thread(target=work, args=(n, l)) for n, l in enumerate(ledgers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    try:
        assert errors == []
        assert ledgers[0].size == 100
        assert [e.sequence for e in ledgers[0].entries()] == list(range(1, 101))
        assert ledgers[0].verify()
    finally:
        for ledger in ledgers:
            ledger.close()



# ── AuditEmitter ─────────────────────────────────────────────────────

def test_emit_first_try():
    ledger = FlakyLedger(0)
    ack = _emitter(ledger).emit(_record())
    assert ack.sequence == 1
    assert ledger.calls == 1


def test_emit_retries_transient_failures_with_backoff():
    ledger = FlakyLedger(2)
    sleeps = []
    ack = _emitter(ledger, sleeps).emit(_record())
    assert ack.sequence == 1
    assert ledger.calls == 3
    assert sleeps == pytest.approx([0.2, 0.4])


def test_emit_gives_up_after_max_attempts():
    ledger = FlakyLedger(10)
    sleeps = []
    with pytest.raises(AuditUnavailable):
        _emitter(ledger, sleeps).emit(_record())
    assert ledger.calls == 3
    assert len(sleeps) == 2
    assert ledger.inner.size == 0


def test_backoff_is_capped():
    ledger = FlakyLedger(10)
    sleeps = []
    with pytest.raises(AuditUnavailable):
        _emitter(ledger, sleeps, max_attempts=6, max_delay=1.0).emit(_record())
    assert max(sleeps) == pytest.approx(1.0)


def test_permanent_error_is_not_retried():
    ledger = FlakyLedger(10, PermanentLedgerError("schema mismatch"))
    sleeps = []
    with pytest.raises(AuditRejected):
        _emitter(ledger, sleeps).emit(_record())
    assert ledger.calls == 1
    assert sleeps == []


def test_connection_error_treated_as_transient():
    ledger = FlakyLedger(1, ConnectionError("reset by peer"))
    assert _emitter(ledger).emit(_record()).sequence == 1
    assert ledger.calls == 2


def test_slow_ledger_times_out():
    ledger = HangingLedger()
    emitter = _emitter(ledger, timeout=0.05)
    try:
        with pytest.raises(AuditUnavailable):
            emitter.emit(_record())
    finally:
        ledger.release.set()
        emitter.close()


def test_timed_out_append_that_lands_later_replays():
    class LateLedger:
        def __init__(self):
            self.inner = InMemoryLedger()
            self.release = threading.Event()
            self.landed = threading.Event()

        def append(self, record):
            self.release.wait(2.0)
            ack = self.inner.append(record)
            self.landed.set()
            return ack

    ledger = LateLedger()
    emitter = _emitter(ledger, timeout=0.05, max_attempts=1)
    try:
        with pytest.raises(AuditUnavailable):
            emitter.emit(_record())
        ledger.release.set()
        assert ledger.landed.wait(2.0)
        again = emitter.emit(_record())
    finally:
        emitter.close()
    assert again.duplicate
    assert ledger.inner.size == 1


def test_retry_after_landed_append_does_not_duplicate():
    ledger = InMemoryLedger()
    emitter = _emitter(ledger)
    first = emitter.emit(_record())
    second = emitter.emit(_record())
    assert second.duplicate
    assert second.sequence == first.sequence
    assert ledger.size == 1
