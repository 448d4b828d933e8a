"""Ledger: append-only, hash-chained store for audit records.

The pipeline only needs ``append``; any ledger technology that honours
the protocol below will do.  ``InMemoryLedger`` is the reference
implementation (tests, single-process use); ``SqliteLedger`` persists.

Properties every implementation keeps:
  - Append-only: entries are never updated or deleted
  - Idempotent replay: re-appending an identical record under the same
    transaction id returns the original Ack (``duplicate=True``)
  - Tamper-evident: each entry hash covers the previous entry's hash
"""

from __future__ import annotations
import json
import threading
from dataclasses import dataclass
from typing import Iterator, Protocol

from .errors import PermanentLedgerError
from .hashing import GENESIS_HASH, canonical_json, chain_hash, hash_text
from .types import Ack, AuditRecord


class Ledger(Protocol):
    def append(self, record: AuditRecord) -> Ack:
        """Append a record.  Raises Transient/PermanentLedgerError."""
        ...


@dataclass(frozen=True, slots=True)
class LedgerEntry:
    sequence: int
    transaction_id: str
    payload: str           # canonical JSON of the record
    record_hash: str
    prev_hash: str
    entry_hash: str

    @property
    def record(self) -> AuditRecord:
        return AuditRecord.from_dict(json.loads(self.payload))


def verify_entries(entries: Iterator[LedgerEntry] | list[LedgerEntry]) -> bool:
    """Walk a chain of entries and check every link."""
    prev = GENESIS_HASH
    expected_seq = 1
    for e in entries:
        if e.sequence != expected_seq or e.prev_hash != prev:
            return False
        if e.record_hash != hash_text(e.payload):
            return False
        if e.entry_hash != chain_hash(prev, e.payload):
            return False
        prev = e.entry_hash
        expected_seq += 1
    return True


class InMemoryLedger:
    """Thread-safe in-process ledger."""

    __slots__ = ("_entries", "_by_tx", "_lock")

    def __init__(self) -> None:
        self._entries: list[LedgerEntry] = []
        self._by_tx: dict[str, LedgerEntry] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Core API
    # ------------------------------------------------------------------

    def append(self, record: AuditRecord) -> Ack:
        payload = canonical_json(record.to_dict())
        record_hash = hash_text(payload)

        with self._lock:
            existing = self._by_tx.get(record.transaction_id)
            if existing is not None:
                return _replay_ack(existing, record_hash)
            if record.correction_of and record.correction_of not in self._by_tx:
                raise PermanentLedgerError(
                    f"correction references unknown transaction {record.correction_of}"
                )

            prev = self._entries[-1].entry_hash if self._entries else GENESIS_HASH
            entry = LedgerEntry(
                sequence=len(self._entries) + 1,
                transaction_id=record.transaction_id,
                payload=payload,
                record_hash=record_hash,
                prev_hash=prev,
                entry_hash=chain_hash(prev, payload),
            )
            self._entries.append(entry)
            self._by_tx[record.transaction_id] = entry

        return Ack(transaction_id=entry.transaction_id, sequence=entry.sequence, entry_hash=entry.entry_hash)

    def get(self, transaction_id: str) -> AuditRecord | None:
        entry = self._by_tx.get(transaction_id)
        return entry.record if entry else None

    def records(self) -> Iterator[AuditRecord]:
        """Replay every record in append order."""
        for entry in list(self._entries):
            yield entry.record

    def entries(self) -> list[LedgerEntry]:
        return list(self._entries)

    def verify(self) -> bool:
        return verify_entries(self.entries())

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def size(self) -> int:
        return len(self._entries)


def _replay_ack(existing: LedgerEntry, record_hash: str) -> Ack:
    if existing.record_hash != record_hash:
        raise PermanentLedgerError(
            f"transaction {existing.transaction_id} already recorded with different content"
        )
    return Ack(
        transaction_id=existing.transaction_id,
        sequence=existing.sequence,
        entry_hash=existing.entry_hash,
        duplicate=True,
    )
