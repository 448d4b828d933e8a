"""PII Audit: consent-gated anonymization with a tamper-evident audit trail."""

from .anonymizer import Anonymizer, anonymize
from .audit import AuditConfig, AuditEmitter, build_correction, build_record
from .config import create_pipeline, load_config, load_from_yaml
from .consent import ConsentProvider, StaticConsentProvider
from .engine import PIIDetectionEngine, merge
from .errors import (
    AnonymizationInvariantViolation,
    AuditError,
    AuditRejected,
    AuditUnavailable,
    ConsentUnavailable,
    PermanentLedgerError,
    PipelineError,
    TransientLedgerError,
    ValidationError,
)
from .fairness import (
    FairnessConfig,
    FairnessGate,
    ReweightingStrategy,
    ThresholdAdjustmentStrategy,
)
from .hashing import hash_text
from .ledger import InMemoryLedger, Ledger
from .ledger_sqlite import SqliteLedger
from .model_detector import EntityResult, ModelDetector, ModelDetectorConfig
from .patterns import PatternDetector
from .pipeline import Pipeline
from .types import (
    Ack,
    AnonymizationResult,
    AuditRecord,
    ConsentDecision,
    FairnessAssessment,
    FairnessDecision,
    IngestResult,
    IngestStatus,
    MitigationKind,
    OddsRates,
    ParityMetric,
    PIIKind,
    PIISpan,
    Purpose,
    SpanSource,
)

__all__ = [
    "Pipeline", "create_pipeline", "load_config", "load_from_yaml",
    "PatternDetector", "ModelDetector", "ModelDetectorConfig", "EntityResult",
    "PIIDetectionEngine", "merge",
    "Anonymizer", "anonymize",
    "FairnessGate", "FairnessConfig", "ReweightingStrategy", "ThresholdAdjustmentStrategy",
    "AuditEmitter", "AuditConfig", "build_record", "build_correction",
    "Ledger", "InMemoryLedger", "SqliteLedger",
    "ConsentProvider", "StaticConsentProvider",
    "hash_text",
    "Ack", "AnonymizationResult", "AuditRecord", "ConsentDecision",
    "FairnessAssessment", "FairnessDecision", "IngestResult", "IngestStatus",
    "MitigationKind", "OddsRates", "ParityMetric", "PIIKind", "PIISpan",
    "Purpose", "SpanSource",
    "PipelineError", "ValidationError", "ConsentUnavailable",
    "AnonymizationInvariantViolation", "AuditError", "AuditUnavailable",
    "AuditRejected", "TransientLedgerError", "PermanentLedgerError",
]
__version__ = "0.1.0"
