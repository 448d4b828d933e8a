"""Audit emitter: commit one immutable record per transformation.

Transient ledger failures (busy, network, timeout) are retried with
bounded exponential backoff; permanent rejections are not.  If the
record cannot be committed the caller gets an ``AuditError`` and must
not report the transformation as done.

The ledger is expected to deduplicate on transaction id, so a retry
after an append that actually landed does not create a second entry.
"""

from __future__ import annotations
import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Iterable

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .errors import AuditRejected, AuditUnavailable, PermanentLedgerError, TransientLedgerError
from .hashing import hash_text
from .ledger import Ledger
from .types import Ack, AuditRecord, FairnessSummary, kind_value

logger = logging.getLogger(__name__)

TRANSFORMATION_ANONYMIZATION = "pii_anonymization"


@dataclass
class AuditConfig:
    max_attempts: int = 3
    base_delay: float = 0.2        # seconds; doubles per attempt
    max_delay: float = 2.0
    timeout: float | None = 5.0    # per ledger call; None = wait forever


class AuditEmitter:
    """Submits audit records to a ledger.  Safe to share between threads.

    A ledger call that times out is abandoned, not cancelled: it keeps
    running on the worker thread and may still commit after ``emit`` has
    raised ``AuditUnavailable``.  Such a record is harmless because the
    ledger replays on transaction id.  Re-emitting the same record returns
    the committed Ack (``duplicate=True``) instead of a second entry, so a
    caller that must know whether it landed should retry ``emit`` with the
    same record.
    """

    def __init__(
        self,
        ledger: Ledger,
        config: AuditConfig | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.ledger = ledger
        self.config = config or AuditConfig()
        self._sleep = sleep
        self._executor = (
            ThreadPoolExecutor(max_workers=4, thread_name_prefix="audit-emitter")
            if self.config.timeout is not None else None
        )

    def emit(self, record: AuditRecord) -> Ack:
        """Append ``record`` to the ledger, retrying transient failures.

        Raises ``AuditUnavailable`` once retries are exhausted and
        ``AuditRejected`` on a permanent ledger error.
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.config.max_attempts),
            wait=wait_exponential(multiplier=self.config.base_delay, max=self.config.max_delay),
            retry=retry_if_exception_type(TransientLedgerError),
            sleep=self._sleep,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    ack = self._append(record)
        except TransientLedgerError as e:
            logger.error(
                "Audit unavailable after %d attempts: tx=%s",
                self.config.max_attempts, record.transaction_id,
            )
            raise AuditUnavailable(f"ledger unavailable: {e}") from e
        except PermanentLedgerError as e:
            logger.error("Audit rejected: tx=%s (%s)", record.transaction_id, e)
            raise AuditRejected(str(e)) from e

        logger.info(
            "Audit record committed: tx=%s seq=%d%s",
            ack.transaction_id, ack.sequence, " (replay)" if ack.duplicate else "",
        )
        return ack

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False)

    def _append(self, record: AuditRecord) -> Ack:
        try:
            if self._executor is None:
                return self.ledger.append(record)
            future = self._executor.submit(self.ledger.append, record)
            return future.result(timeout=self.config.timeout)
        except FutureTimeout as e:
            raise TransientLedgerError(f"ledger call timed out after {self.config.timeout}s") from e
        except ConnectionError as e:
            raise TransientLedgerError(str(e)) from e


# ------------------------------------------------------------------
# Record construction
# ------------------------------------------------------------------

def new_transaction_id() -> str:
    return str(uuid.uuid4())


def build_record(
    *,
    transaction_id: str,
    user_id: str,
    original_text: str,
    anonymized_text: str,
    pii_types: Iterable[str],
    consent_ref: str,
    fairness: FairnessSummary | None = None,
    transformation_type: str = TRANSFORMATION_ANONYMIZATION,
    timestamp: datetime | None = None,
) -> AuditRecord:
    """Hash both texts and assemble the record.  Raw text is not kept."""
    return AuditRecord(
        transaction_id=transaction_id,
        user_id=user_id,
        timestamp=timestamp or datetime.now(timezone.utc),
        original_hash=hash_text(original_text),
        anonymized_hash=hash_text(anonymized_text),
        transformation_type=transformation_type,
        pii_types_detected=frozenset(kind_value(k) for k in pii_types),
        consent_ref=consent_ref,
        fairness_decision=fairness,
    )


def build_correction(original: AuditRecord, **changes) -> AuditRecord:
    """A new record superseding ``original``; the original is never touched."""
    return replace(
        original,
        **changes,
        transaction_id=new_transaction_id(),
        timestamp=datetime.now(timezone.utc),
        correction_of=original.transaction_id,
    )
