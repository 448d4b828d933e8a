"""YAML/dict config loader for pii-audit.

Supports loading from a YAML file or a plain dict (for embedding in a
larger service config).

Example YAML:

    pii_audit:
      required_purpose: processing
      max_text_length: 100000
      patterns:                    # extra pattern kinds
        employee_id: "EMP-\\d{6}"
      model_detector:
        enabled: true
        backend: presidio
        language: en
        score_threshold: 0.5
        timeout: 2.0
        kinds: [person, location, organization]
      fairness:
        metric: demographic_parity
        min_ratio: 0.8
        max_disparity: null        # set to use a plain disparity threshold
        block_disparity: 0.4
        mitigation: reweighting    # reweighting | threshold_adjustment | null
      audit:
        max_attempts: 3
        base_delay: 0.2
        max_delay: 2.0
        timeout: 5.0
      ledger:
        backend: sqlite            # "memory" or "sqlite"
        path: ~/.pii-audit/ledger.db
"""

from __future__ import annotations
from pathlib import Path
from typing import Any

from .anonymizer import Anonymizer
from .audit import AuditConfig, AuditEmitter
from .consent import ConsentProvider
from .engine import PIIDetectionEngine
from .fairness import MITIGATIONS, FairnessConfig, FairnessGate
from .ledger import InMemoryLedger, Ledger
from .ledger_sqlite import SqliteLedger
from .model_detector import ModelBackend, ModelDetector, ModelDetectorConfig
from .patterns import PatternDetector
from .pipeline import Classifier, Pipeline
from .types import ParityMetric, PIIKind, Purpose


def load_config(data: dict[str, Any] | None) -> dict[str, Any]:
    """Normalize a config dict (from YAML or inline)."""
    data = data or {}
    # Support nested under "pii_audit" key or flat
    if "pii_audit" in data:
        data = data["pii_audit"] or {}

    model = data.get("model_detector") or {}
    fairness = data.get("fairness") or {}
    audit = data.get("audit") or {}
    ledger = data.get("ledger") or {}
    kinds = model.get("kinds")

    return {
        "required_purpose": Purpose(data.get("required_purpose", Purpose.PROCESSING.value)),
        "max_text_length": int(data.get("max_text_length", 100_000)),
        "patterns": dict(data.get("patterns") or {}),
        "model_enabled": model.get("enabled", True),
        "model_backend": model.get("backend", "presidio"),
        "language": model.get("language", "en"),
        "score_threshold": float(model.get("score_threshold", 0.5)),
        "model_timeout": model.get("timeout", 2.0),
        "model_kinds": frozenset(kinds) if kinds is not None else frozenset(k.value for k in PIIKind),
        "fairness_metric": ParityMetric(fairness.get("metric", ParityMetric.DEMOGRAPHIC_PARITY.value)),
        "min_ratio": float(fairness.get("min_ratio", 0.8)),
        "max_disparity": fairness.get("max_disparity"),
        "block_disparity": float(fairness.get("block_disparity", 0.4)),
        "mitigation": fairness.get("mitigation"),
        "audit_max_attempts": int(audit.get("max_attempts", 3)),
        "audit_base_delay": float(audit.get("base_delay", 0.2)),
        "audit_max_delay": float(audit.get("max_delay", 2.0)),
        "audit_timeout": audit.get("timeout", 5.0),
        "ledger_backend": ledger.get("backend", "memory"),
        "ledger_path": ledger.get("path", "ledger.db"),
    }


def load_from_yaml(path: str | Path) -> dict[str, Any]:
    """Load config from a YAML file."""
    import yaml
    with open(Path(path).expanduser()) as f:
        return load_config(yaml.safe_load(f))


def create_ledger(cfg: dict[str, Any]) -> Ledger:
    if cfg["ledger_backend"] == "sqlite":
        return SqliteLedger(cfg["ledger_path"])
    if cfg["ledger_backend"] == "memory":
        return InMemoryLedger()
    raise ValueError(f"unknown ledger backend {cfg['ledger_backend']!r}")


def create_fairness_gate(cfg: dict[str, Any]) -> FairnessGate:
    mitigation = cfg["mitigation"]
    if mitigation is not None and mitigation not in MITIGATIONS:
        raise ValueError(f"unknown mitigation {mitigation!r}; expected one of {sorted(MITIGATIONS)}")
    return FairnessGate(FairnessConfig(
        metric=cfg["fairness_metric"],
        min_ratio=cfg["min_ratio"],
        max_disparity=cfg["max_disparity"],
        block_disparity=cfg["block_disparity"],
        mitigation=MITIGATIONS[mitigation]() if mitigation else None,
    ))


def create_pipeline(
    config: dict[str, Any],
    consent_provider: ConsentProvider,
    *,
    ledger: Ledger | None = None,
    backend: ModelBackend | None = None,
    classifier: Classifier | None = None,
) -> Pipeline:
    """Create a fully wired pipeline from a config dict.

    ``backend`` overrides the configured model backend; with the model
    detector disabled no backend is built at all (pattern-only mode).
    """
    cfg = load_config(config) if "ledger_backend" not in config else config

    model_detector = None
    if cfg["model_enabled"]:
        if backend is None:
            if cfg["model_backend"] != "presidio":
                raise ValueError(f"unknown model backend {cfg['model_backend']!r}")
            from .presidio_layer import PresidioBackend
            backend = PresidioBackend(language=cfg["language"])
        model_detector = ModelDetector(backend, ModelDetectorConfig(
            score_threshold=cfg["score_threshold"],
            timeout=cfg["model_timeout"],
        ))

    engine = PIIDetectionEngine(
        pattern_detector=PatternDetector(cfg["patterns"]),
        model_detector=model_detector,
        model_kinds=cfg["model_kinds"],
    )
    emitter = AuditEmitter(
        ledger if ledger is not None else create_ledger(cfg),
        AuditConfig(
            max_attempts=cfg["audit_max_attempts"],
            base_delay=cfg["audit_base_delay"],
            max_delay=cfg["audit_max_delay"],
            timeout=cfg["audit_timeout"],
        ),
    )
    return Pipeline(
        consent_provider=consent_provider,
        audit_emitter=emitter,
        engine=engine,
        anonymizer=Anonymizer(),
        fairness_gate=create_fairness_gate(cfg),
        classifier=classifier,
        required_purpose=cfg["required_purpose"],
        max_text_length=cfg["max_text_length"],
    )
