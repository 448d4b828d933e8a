"""Pipeline: the ingest state machine.

    start ─consent granted→ consent_checked ─→ detected ─→ anonymized
      │                                                     │
      └─denied / store down→ blocked          [fairness_assessed]
                                                            │
                                              audited ─→ done
                                                 └──→ blocked (fairness gate said BLOCK)

Any stage may end in ``failed``.  A transaction id is minted at start and
carried into the audit record; no stage runs twice for it.

Usage:
    pipeline = Pipeline(
        consent_provider=my_consent_store,
        audit_emitter=AuditEmitter(InMemoryLedger()),
    )
    result = pipeline.ingest("user-42", "Mail me at jo@example.com")
    result.status            # IngestStatus.DONE
    result.anonymized_text   # "Mail me at [EMAIL]"
"""

from __future__ import annotations
import logging
from typing import Any, Mapping, Protocol

from .anonymizer import Anonymizer
from .audit import AuditEmitter, TRANSFORMATION_ANONYMIZATION, build_record, new_transaction_id
from .consent import ConsentProvider
from .engine import PIIDetectionEngine
from .errors import (
    AnonymizationInvariantViolation,
    AuditRejected,
    AuditUnavailable,
    ConsentUnavailable,
    ValidationError,
)
from .fairness import FairnessGate
from .types import (
    Diagnostic,
    FairnessAssessment,
    FairnessDecision,
    IngestResult,
    IngestStatus,
    ParityMetric,
    PipelineState,
    Purpose,
)

logger = logging.getLogger(__name__)

S = PipelineState

_TRANSITIONS: dict[PipelineState, frozenset[PipelineState]] = {
    S.START: frozenset({S.CONSENT_CHECKED, S.BLOCKED, S.FAILED}),
    S.CONSENT_CHECKED: frozenset({S.DETECTED, S.FAILED}),
    S.DETECTED: frozenset({S.ANONYMIZED, S.FAILED}),
    S.ANONYMIZED: frozenset({S.FAIRNESS_ASSESSED, S.AUDITED, S.FAILED}),
    S.FAIRNESS_ASSESSED: frozenset({S.AUDITED, S.FAILED}),
    S.AUDITED: frozenset({S.DONE, S.BLOCKED}),
}

REASON_CONSENT_DENIED = "consent_denied"
REASON_CONSENT_UNAVAILABLE = "consent_unavailable"
REASON_ANONYMIZATION_INVARIANT = "anonymization_invariant"
REASON_CLASSIFICATION_FAILED = "classification_failed"
REASON_FAIRNESS_BLOCKED = "fairness_blocked"
REASON_AUDIT_UNAVAILABLE = "audit_unavailable"
REASON_AUDIT_REJECTED = "audit_rejected"
REASON_CANCELLED = "cancelled"


class Classifier(Protocol):
    """Downstream classifier: anonymized text → group outcome rates."""
    def classify(self, anonymized_text: str) -> Mapping[str, Any]:
        ...


class CancelToken(Protocol):
    def is_set(self) -> bool:
        ...


class _Run:
    """Per-request state: transaction id and the states visited so far."""

    __slots__ = ("transaction_id", "states", "pii_detected", "diagnostics")

    def __init__(self) -> None:
        self.transaction_id = new_transaction_id()
        self.states: list[PipelineState] = [S.START]
        self.pii_detected = False
        self.diagnostics: list[Diagnostic] = []

    @property
    def state(self) -> PipelineState:
        return self.states[-1]

    def advance(self, to: PipelineState) -> None:
        if to not in _TRANSITIONS.get(self.state, frozenset()) or to in self.states:
            raise RuntimeError(f"illegal pipeline transition {self.state.value} -> {to.value}")
        self.states.append(to)

    def blocked(self, reason: str, **extra) -> IngestResult:
        self.advance(S.BLOCKED)
        return self._result(IngestStatus.BLOCKED, reason=reason, **extra)

    def failed(self, stage: PipelineState, reason: str, **extra) -> IngestResult:
        self.advance(S.FAILED)
        return self._result(IngestStatus.FAILED, reason=reason, failed_stage=stage, **extra)

    def done(self, **extra) -> IngestResult:
        self.advance(S.DONE)
        return self._result(IngestStatus.DONE, **extra)

    def _result(self, status: IngestStatus, **fields) -> IngestResult:
        return IngestResult(
            status=status,
            transaction_id=self.transaction_id,
            pii_detected=self.pii_detected,
            diagnostics=list(self.diagnostics),
            states=list(self.states),
            **fields,
        )


class Pipeline:
    """Consent → detect → anonymize → fairness → audit.

    Holds only fixed configuration and stateless collaborators, so one
    instance can serve many requests concurrently.
    """

    def __init__(
        self,
        consent_provider: ConsentProvider,
        audit_emitter: AuditEmitter,
        engine: PIIDetectionEngine | None = None,
        anonymizer: Anonymizer | None = None,
        fairness_gate: FairnessGate | None = None,
        classifier: Classifier | None = None,
        *,
        required_purpose: Purpose = Purpose.PROCESSING,
        transformation_type: str = TRANSFORMATION_ANONYMIZATION,
        max_text_length: int = 100_000,
    ) -> None:
        self.consent_provider = consent_provider
        self.audit_emitter = audit_emitter
        self.engine = engine or PIIDetectionEngine()
        self.anonymizer = anonymizer or Anonymizer()
        self.fairness_gate = fairness_gate or FairnessGate()
        self.classifier = classifier
        self.required_purpose = Purpose(required_purpose)
        self.transformation_type = transformation_type
        self.max_text_length = max_text_length

    def ingest(
        self,
        user_id: str,
        text: str,
        *,
        outcome: Mapping[str, Any] | None = None,
        metric: ParityMetric | None = None,
        cancel: CancelToken | None = None,
    ) -> IngestResult:
        """Run one request through the pipeline.

        ``outcome`` is a precomputed group → rate mapping for the fairness
        gate; without it (and without a classifier) fairness is skipped.
        ``cancel`` is checked between stages; once set, nothing is emitted.
        Raises ``ValidationError`` for malformed input.
        """
        self._validate(user_id, text, outcome, metric)
        run = _Run()
        tx = run.transaction_id

        # --- Consent (fail closed) ---
        try:
            consent = self.consent_provider.get_consent(user_id)
        except (ConsentUnavailable, OSError) as e:
            # ConnectionError and TimeoutError are OSErrors too
            logger.warning("tx=%s consent store unavailable (%s); blocking", tx, type(e).__name__)
            return run.blocked(REASON_CONSENT_UNAVAILABLE)
        if not consent.permits(self.required_purpose):
            logger.info("tx=%s blocked: no consent for %s", tx, self.required_purpose.value)
            return run.blocked(REASON_CONSENT_DENIED)
        run.advance(S.CONSENT_CHECKED)

        if _cancelled(cancel):
            return run.failed(S.DETECTED, REASON_CANCELLED)

        # --- Detection + anonymization ---
        try:
            detection = self.engine.detect(text)
            run.diagnostics.extend(detection.diagnostics)
            run.pii_detected = bool(detection.spans)
            run.advance(S.DETECTED)
            anonymized = self.anonymizer.anonymize(text, detection.spans)
        except AnonymizationInvariantViolation as e:
            logger.error("tx=%s anonymization invariant violated: %s", tx, e)
            stage = S.DETECTED if run.state == S.CONSENT_CHECKED else S.ANONYMIZED
            return run.failed(stage, REASON_ANONYMIZATION_INVARIANT)
        run.advance(S.ANONYMIZED)
        pii_types = anonymized.pii_types
        logger.info("tx=%s anonymized %d spans, kinds=%s", tx, len(anonymized.applied_spans), sorted(pii_types))

        # --- Fairness (optional) ---
        assessment: FairnessAssessment | None = None
        if outcome is None and self.classifier is not None:
            try:
                outcome = self.classifier.classify(anonymized.anonymized_text)
            except Exception as e:
                logger.error("tx=%s classifier failed: %s", tx, type(e).__name__)
                return run.failed(S.FAIRNESS_ASSESSED, REASON_CLASSIFICATION_FAILED)
        if outcome is not None:
            try:
                assessment = self.fairness_gate.assess(outcome, metric)
            except ValidationError as e:
                logger.error("tx=%s classifier outcome invalid: %s", tx, e)
                return run.failed(S.FAIRNESS_ASSESSED, REASON_CLASSIFICATION_FAILED)
            run.advance(S.FAIRNESS_ASSESSED)
            logger.info(
                "tx=%s fairness %s: disparity=%.3f decision=%s",
                tx, assessment.metric.value, assessment.disparity, assessment.decision.value,
            )

        if _cancelled(cancel):
            logger.info("tx=%s cancelled before audit; nothing emitted", tx)
            return run.failed(S.AUDITED, REASON_CANCELLED, fairness=assessment)

        # --- Audit ---
        record = build_record(
            transaction_id=tx,
            user_id=user_id,
            original_text=text,
            anonymized_text=anonymized.anonymized_text,
            pii_types=pii_types,
            consent_ref=consent.consent_ref,
            fairness=assessment.summary() if assessment else None,
            transformation_type=self.transformation_type,
        )
        try:
            ack = self.audit_emitter.emit(record)
        except AuditUnavailable:
            return run.failed(S.AUDITED, REASON_AUDIT_UNAVAILABLE, fairness=assessment)
        except AuditRejected:
            return run.failed(S.AUDITED, REASON_AUDIT_REJECTED, fairness=assessment)
        run.advance(S.AUDITED)

        if assessment is not None and assessment.decision == FairnessDecision.BLOCK:
            return run.blocked(REASON_FAIRNESS_BLOCKED, fairness=assessment, ack=ack)

        return run.done(
            anonymized_text=anonymized.anonymized_text,
            fairness=assessment,
            ack=ack,
        )

    def close(self) -> None:
        """Shut down worker threads held by the emitter and model detector."""
        self.audit_emitter.close()
        if self.engine.model_detector is not None:
            self.engine.model_detector.close()

    def _validate(
        self,
        user_id: Any,
        text: Any,
        outcome: Mapping[str, Any] | None,
        metric: ParityMetric | None,
    ) -> None:
        if not isinstance(user_id, str) or not user_id.strip():
            raise ValidationError("user_id must be a non-empty string")
        if not isinstance(text, str):
            raise ValidationError("text must be a string")
        if len(text) > self.max_text_length:
            raise ValidationError(f"text exceeds {self.max_text_length} characters")
        if metric is not None:
            try:
                ParityMetric(metric)
            except ValueError:
                raise ValidationError(f"unknown parity metric {metric!r}") from None
        if outcome is not None:
            self.fairness_gate.validate(outcome, metric)


def _cancelled(cancel: CancelToken | None) -> bool:
    return cancel is not None and cancel.is_set()
