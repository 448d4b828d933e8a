"""Persistent ledger backed by SQLite: survives process restarts.

Drop-in replacement for InMemoryLedger when you need durability.
Triggers reject UPDATE and DELETE on the entries table, so even direct
SQL cannot rewrite history without dropping the triggers first (and a
rewritten entry still breaks ``verify()``).

Usage:
    ledger = SqliteLedger(db_path="~/.pii-audit/ledger.db")
    ack = ledger.append(record)
"""

from __future__ import annotations
import sqlite3
import threading
from pathlib import Path
from typing import Iterator

from .errors import PermanentLedgerError, TransientLedgerError
from .hashing import GENESIS_HASH, canonical_json, chain_hash, hash_text
from .ledger import LedgerEntry, _replay_ack, verify_entries
from .types import Ack, AuditRecord


_SCHEMA = """
CREATE TABLE IF NOT EXISTS entries (
    sequence INTEGER PRIMARY KEY,
    transaction_id TEXT NOT NULL UNIQUE,
    payload TEXT NOT NULL,
    record_hash TEXT NOT NULL,
    prev_hash TEXT NOT NULL,
    entry_hash TEXT NOT NULL,
    created_at REAL NOT NULL DEFAULT (julianday('now'))
);
CREATE TRIGGER IF NOT EXISTS entries_no_update
    BEFORE UPDATE ON entries
    BEGIN SELECT RAISE(ABORT, 'ledger is append-only'); END;
CREATE TRIGGER IF NOT EXISTS entries_no_delete
    BEFORE DELETE ON entries
    BEGIN SELECT RAISE(ABORT, 'ledger is append-only'); END;
"""

_COLUMNS = "sequence, transaction_id, payload, record_hash, prev_hash, entry_hash"


class SqliteLedger:
    """Append-only, hash-chained ledger in a single SQLite file."""

    __slots__ = ("_db", "_lock")

    def __init__(self, db_path: str | Path = "ledger.db", *, timeout: float = 5.0) -> None:
        db_path = Path(db_path).expanduser()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        # Autocommit mode: append() opens its own BEGIN IMMEDIATE transaction.
        self._db = sqlite3.connect(
            str(db_path), timeout=timeout, check_same_thread=False, isolation_level=None,
        )
        self._db.executescript(_SCHEMA)
        self._lock = threading.Lock()

    def append(self, record: AuditRecord) -> Ack:
        """Append under a write lock on the database file.

        Other connections (other processes on the same file) wait for the
        lock, so the sequence read and the insert see one consistent tail.
        """
        payload = canonical_json(record.to_dict())
        record_hash = hash_text(payload)

        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as e:
                # locked / busy: worth another attempt
                raise TransientLedgerError(str(e)) from e
            try:
                ack = self._append_in_tx(record, payload, record_hash)
            except BaseException:
                if self._db.in_transaction:
                    self._db.execute("ROLLBACK")
                raise
            else:
                try:
                    self._db.execute("COMMIT")
                except sqlite3.OperationalError as e:
                    if self._db.in_transaction:
                        self._db.execute("ROLLBACK")
                    raise TransientLedgerError(str(e)) from e
        return ack

    def _append_in_tx(self, record: AuditRecord, payload: str, record_hash: str) -> Ack:
        try:
            existing = self._entry_for(record.transaction_id)
            if existing is not None:
                return _replay_ack(existing, record_hash)
            if record.correction_of and self._entry_for(record.correction_of) is None:
                raise PermanentLedgerError(
                    f"correction references unknown transaction {record.correction_of}"
                )

            row = self._db.execute(
                "SELECT sequence, entry_hash FROM entries ORDER BY sequence DESC LIMIT 1"
            ).fetchone()
            sequence, prev = (row[0] + 1, row[1]) if row else (1, GENESIS_HASH)
            entry_hash = chain_hash(prev, payload)

            self._db.execute(
                f"INSERT INTO entries ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                (sequence, record.transaction_id, payload, record_hash, prev, entry_hash),
            )
        except sqlite3.OperationalError as e:
            # locked / busy / disk I/O: worth another attempt
            raise TransientLedgerError(str(e)) from e
        except sqlite3.DatabaseError as e:
            raise PermanentLedgerError(str(e)) from e

        return Ack(transaction_id=record.transaction_id, sequence=sequence, entry_hash=entry_hash)

    def get(self, transaction_id: str) -> AuditRecord | None:
        with self._lock:
            entry = self._entry_for(transaction_id)
        return entry.record if entry else None

    def entries(self) -> list[LedgerEntry]:
        with self._lock:
            rows = self._db.execute(
                f"SELECT {_COLUMNS} FROM entries ORDER BY sequence"
            ).fetchall()
        return [LedgerEntry(*row) for row in rows]

    def records(self) -> Iterator[AuditRecord]:
        """Replay every record in append order."""
        for entry in self.entries():
            yield entry.record

    def verify(self) -> bool:
        return verify_entries(self.entries())

    @property
    def size(self) -> int:
        with self._lock:
            return self._db.execute("SELECT COUNT(*) FROM entries").fetchone()[0]

    def close(self) -> None:
        self._db.close()

    def _entry_for(self, transaction_id: str) -> LedgerEntry | None:
        row = self._db.execute(
            f"SELECT {_COLUMNS} FROM entries WHERE transaction_id = ?",
            (transaction_id,),
        ).fetchone()
        return LedgerEntry(*row) if row else None
