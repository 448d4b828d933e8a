"""Tests for the fairness gate."""

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest

from pii_audit.errors import ValidationError
from pii_audit.fairness import (
    FairnessConfig,
    FairnessGate,
    ReweightingStrategy,
    ThresholdAdjustmentStrategy,
)
from pii_audit.types import FairnessDecision, MitigationKind, OddsRates, ParityMetric


# ── Demographic parity ───────────────────────────────────────────────

@pytest.mark.parametrize("rates", [
    {"a": 0.4, "b": 0.4, "c": 0.4},
    {"a": 0.0, "b": 0.0},
    {"only": 0.7},
])
def test_equal_rates_always_pass(rates):
    for config in (FairnessConfig(), FairnessConfig(max_disparity=0.0)):
        result = FairnessGate(config).assess(rates)
        assert result.disparity == 0.0
        assert result.decision == FairnessDecision.PASS
        assert result.mitigation_applied is None


def test_within_eighty_percent_rule_passes():
    result = FairnessGate().assess({"a": 0.5, "b": 0.45})
    assert result.decision == FairnessDecision.PASS
    assert result.disparity == pytest.approx(0.05)
    assert result.ratio == pytest.approx(0.9)


def test_beyond_threshold_without_mitigation_blocks():
    result = FairnessGate().assess({"a": 0.5, "b": 0.3})
    assert result.disparity == pytest.approx(0.2)
    assert result.ratio == pytest.approx(0.6)
    assert result.decision == FairnessDecision.BLOCK
    assert result.mitigation_applied is None


def test_beyond_threshold_with_mitigation_mitigates():
    gate = FairnessGate(FairnessConfig(mitigation=ReweightingStrategy()))
    result = gate.assess({"a": 0.5, "b": 0.3})
    assert result.decision == FairnessDecision.MITIGATE
    assert result.mitigation_applied == MitigationKind.REWEIGHTING
    assert result.mitigated_groups == pytest.approx({"a": 0.4, "b": 0.4})


def test_above_hard_ceiling_blocks_even_with_mitigation():
    gate = FairnessGate(FairnessConfig(mitigation=ReweightingStrategy()))
    result = gate.assess({"a": 0.9, "b": 0.2})
    assert result.decision == FairnessDecision.BLOCK
    assert result.mitigation_applied is None


def test_explicit_disparity_threshold_overrides_ratio_rule():
    gate = FairnessGate(FairnessConfig(max_disparity=0.25))
    assert gate.assess({"a": 0.5, "b": 0.3}).decision == FairnessDecision.PASS
    gate = FairnessGate(FairnessConfig(max_disparity=0.01))
    assert gate.assess({"a": 0.5, "b": 0.45}).decision == FairnessDecision.BLOCK


def test_hard_ceiling_blocks_even_under_a_loose_disparity_threshold():
    gate = FairnessGate(FairnessConfig(max_disparity=0.5, block_disparity=0.4))
    result = gate.assess({"a": 0.9, "b": 0.45})
    assert result.disparity == pytest.approx(0.45)
    assert result.decision == FairnessDecision.BLOCK

    gate = FairnessGate(FairnessConfig(min_ratio=0.1, mitigation=ReweightingStrategy()))
    result = gate.assess({"a": 0.9, "b": 0.45})
    assert result.decision == FairnessDecision.BLOCK
    assert result.mitigation_applied is None


def test_summary_keeps_decision_fields():
    gate = FairnessGate(FairnessConfig(mitigation=ThresholdAdjustmentStrategy()))
    summary = gate.assess({"a": 0.5, "b": 0.3}).summary()
    assert summary.metric == ParityMetric.DEMOGRAPHIC_PARITY
    assert summary.decision == FairnessDecision.MITIGATE
    assert summary.mitigation_applied == MitigationKind.THRESHOLD_ADJUSTMENT
    assert summary.to_dict()["mitigation_applied"] == "threshold_adjustment"


# ── Equalized odds ───────────────────────────────────────────────────

def test_equalized_odds_small_gap_passes():
    result = FairnessGate().assess(
        {"a": OddsRates(tpr=0.8, fpr=0.1), "b": (0.7, 0.1)},
        ParityMetric.EQUALIZED_ODDS,
    )
    assert result.metric == ParityMetric.EQUALIZED_ODDS
    assert result.disparity == pytest.approx(0.1)
    assert result.ratio == pytest.approx(0.875)
    assert result.decision == FairnessDecision.PASS


def test_equalized_odds_uses_the_worse_of_tpr_and_fpr_gaps():
    result = FairnessGate().assess(
        {"a": {"tpr": 0.8, "fpr": 0.05}, "b": {"tpr": 0.8, "fpr": 0.25}},
        "equalized_odds",
    )
    assert result.disparity == pytest.approx(0.2)
    assert result.ratio == pytest.approx(0.2)
    assert result.decision == FairnessDecision.BLOCK


def test_metric_from_config():
    gate = FairnessGate(FairnessConfig(metric=ParityMetric.EQUALIZED_ODDS))
    assert gate.assess({"a": (0.5, 0.1), "b": (0.5, 0.1)}).metric == ParityMetric.EQUALIZED_ODDS


# ── Mitigation strategies ────────────────────────────────────────────

def test_reweighting_weights():
    weights = ReweightingStrategy().weights({"a": 0.6, "b": 0.2, "c": 0.0})
    mean = 0.8 / 3
    assert weights["a"] == pytest.approx(mean / 0.6)
    assert weights["b"] == pytest.approx(mean / 0.2)
    assert weights["c"] == 1.0


def test_threshold_adjustment_partial_strength():
    adjusted = ThresholdAdjustmentStrategy(strength=0.5).mitigate({"a": 0.5, "b": 0.3})
    assert adjusted == pytest.approx({"a": 0.5, "b": 0.4})


def test_threshold_adjustment_rejects_bad_strength():
    with pytest.raises(ValueError):
        ThresholdAdjustmentStrategy(strength=1.5)


# ── Validation ───────────────────────────────────────────────────────

@pytest.mark.parametrize("outcome", [
    {},
    {"a": 1.5, "b": 0.2},
    {"a": -0.1},
    {"a": float("nan")},
    {"a": "high"},
])
def test_bad_demographic_input_rejected(outcome):
    with pytest.raises(ValidationError):
        FairnessGate().assess(outcome)


def test_bad_odds_input_rejected():
    with pytest.raises(ValidationError):
        FairnessGate().assess({"a": 0.5}, ParityMetric.EQUALIZED_ODDS)


def test_unknown_metric_rejected():
    with pytest.raises(ValidationError):
        FairnessGate().validate({"a": 0.5}, "calibration")
