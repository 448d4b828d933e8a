"""Core types."""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class Purpose(str, Enum):
    """Processing purposes a user can consent to."""
    PROCESSING = "processing"
    ANALYTICS = "analytics"
    RESEARCH = "research"
    MODEL_TRAINING = "model_training"


class PIIKind(str, Enum):
    """Built-in PII kinds.  Custom pattern kinds may be plain strings."""
    EMAIL = "email"
    PHONE = "phone"
    NATIONAL_ID = "national_id"
    PAYMENT_CARD = "payment_card"
    IP_ADDRESS = "ip_address"
    PERSON = "person"
    LOCATION = "location"
    ORGANIZATION = "organization"


class SpanSource(str, Enum):
    PATTERN = "pattern"
    MODEL = "model"


class ParityMetric(str, Enum):
    DEMOGRAPHIC_PARITY = "demographic_parity"
    EQUALIZED_ODDS = "equalized_odds"


class FairnessDecision(str, Enum):
    PASS = "pass"
    MITIGATE = "mitigate"
    BLOCK = "block"


class MitigationKind(str, Enum):
    REWEIGHTING = "reweighting"
    THRESHOLD_ADJUSTMENT = "threshold_adjustment"


class IngestStatus(str, Enum):
    BLOCKED = "blocked"
    DONE = "done"
    FAILED = "failed"


class PipelineState(str, Enum):
    START = "start"
    CONSENT_CHECKED = "consent_checked"
    DETECTED = "detected"
    ANONYMIZED = "anonymized"
    FAIRNESS_ASSESSED = "fairness_assessed"
    AUDITED = "audited"
    DONE = "done"
    BLOCKED = "blocked"
    FAILED = "failed"


# ------------------------------------------------------------------
# Consent
# ------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class ConsentDecision:
    """Snapshot of a user's consent, as returned by the consent store."""
    user_id: str
    granted: bool
    scope: frozenset[Purpose] = frozenset()
    as_of: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    ref: str | None = None            # store-side record id, if any

    def permits(self, purpose: Purpose) -> bool:
        return self.granted and purpose in self.scope

    @property
    def consent_ref(self) -> str:
        return self.ref or f"{self.user_id}@{self.as_of.isoformat()}"


# ------------------------------------------------------------------
# Detection / anonymization
# ------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class PIISpan:
    """A located, typed region of text identified as PII."""
    type: str              # PIIKind value, or a custom kind name
    start: int
    end: int
    value: str
    source: SpanSource
    confidence: float      # 1.0 for pattern matches

    def __post_init__(self) -> None:
        if self.start < 0 or self.end <= self.start:
            raise ValueError(f"invalid span range [{self.start}, {self.end})")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence out of range: {self.confidence}")

    @property
    def length(self) -> int:
        return self.end - self.start

    def overlaps(self, other: PIISpan) -> bool:
        return self.start < other.end and other.start < self.end


@dataclass(frozen=True, slots=True)
class AnonymizationResult:
    anonymized_text: str
    applied_spans: tuple[PIISpan, ...] = ()

    @property
    def pii_types(self) -> frozenset[str]:
        return frozenset(kind_value(s.type) for s in self.applied_spans)


@dataclass(frozen=True, slots=True)
class Diagnostic:
    """Non-fatal condition surfaced alongside a result."""
    code: str              # e.g. "detection_degraded"
    detail: str = ""


# ------------------------------------------------------------------
# Fairness
# ------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class OddsRates:
    """Per-group true/false positive rates, for equalized odds."""
    tpr: float
    fpr: float


@dataclass(frozen=True, slots=True)
class FairnessSummary:
    """The part of a fairness assessment that goes into the audit record."""
    metric: ParityMetric
    disparity: float
    decision: FairnessDecision
    mitigation_applied: MitigationKind | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric": self.metric.value,
            "disparity": self.disparity,
            "decision": self.decision.value,
            "mitigation_applied": self.mitigation_applied.value if self.mitigation_applied else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FairnessSummary:
        mitigation = data.get("mitigation_applied")
        return cls(
            metric=ParityMetric(data["metric"]),
            disparity=float(data["disparity"]),
            decision=FairnessDecision(data["decision"]),
            mitigation_applied=MitigationKind(mitigation) if mitigation else None,
        )


@dataclass(frozen=True, slots=True)
class FairnessAssessment:
    metric: ParityMetric
    groups: dict[str, Any]
    disparity: float
    ratio: float                       # min/max group rate
    decision: FairnessDecision
    mitigation_applied: MitigationKind | None = None
    mitigated_groups: dict[str, float] | None = None

    def summary(self) -> FairnessSummary:
        return FairnessSummary(
            metric=self.metric,
            disparity=self.disparity,
            decision=self.decision,
            mitigation_applied=self.mitigation_applied,
        )


# ------------------------------------------------------------------
# Audit
# ------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class AuditRecord:
    """Immutable, hash-based description of one transformation event.

    Raw text never appears here: only content hashes of the original and
    anonymized text, plus the kinds of PII that were replaced.
    """
    transaction_id: str
    user_id: str
    timestamp: datetime
    original_hash: str
    anonymized_hash: str
    transformation_type: str
    pii_types_detected: frozenset[str]
    consent_ref: str
    fairness_decision: FairnessSummary | None = None
    correction_of: str | None = None   # transaction id this record corrects

    def to_dict(self) -> dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "user_id": self.user_id,
            "timestamp": self.timestamp.astimezone(timezone.utc).isoformat(),
            "original_hash": self.original_hash,
            "anonymized_hash": self.anonymized_hash,
            "transformation_type": self.transformation_type,
            "pii_types_detected": sorted(kind_value(k) for k in self.pii_types_detected),
            "consent_ref": self.consent_ref,
            "fairness_decision": self.fairness_decision.to_dict() if self.fairness_decision else None,
            "correction_of": self.correction_of,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuditRecord:
        fairness = data.get("fairness_decision")
        return cls(
            transaction_id=data["transaction_id"],
            user_id=data["user_id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            original_hash=data["original_hash"],
            anonymized_hash=data["anonymized_hash"],
            transformation_type=data["transformation_type"],
            pii_types_detected=frozenset(data.get("pii_types_detected", [])),
            consent_ref=data["consent_ref"],
            fairness_decision=FairnessSummary.from_dict(fairness) if fairness else None,
            correction_of=data.get("correction_of"),
        )


@dataclass(frozen=True, slots=True)
class Ack:
    """Ledger acknowledgement for an appended record."""
    transaction_id: str
    sequence: int
    entry_hash: str
    duplicate: bool = False            # True when replayed on an existing id


# ------------------------------------------------------------------
# Pipeline result
# ------------------------------------------------------------------

@dataclass(slots=True)
class IngestResult:
    """Outcome of one ``Pipeline.ingest`` call."""
    status: IngestStatus
    transaction_id: str
    anonymized_text: str | None = None
    pii_detected: bool = False
    reason: str | None = None          # e.g. "consent_denied", "audit_unavailable"
    failed_stage: PipelineState | None = None
    fairness: FairnessAssessment | None = None
    ack: Ack | None = None
    diagnostics: list[Diagnostic] = field(default_factory=list)
    states: list[PipelineState] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "transaction_id": self.transaction_id,
            "anonymized_text": self.anonymized_text,
            "pii_detected": self.pii_detected,
            "reason": self.reason,
            "fairness": self.fairness.summary().to_dict() if self.fairness else None,
            "diagnostics": [{"code": d.code, "detail": d.detail} for d in self.diagnostics],
        }


def kind_value(kind: str) -> str:
    """Plain string value of a kind, whether enum member or custom name."""
    return kind.value if isinstance(kind, Enum) else kind
