"""Fairness gate: parity metrics over a classifier's outcome distribution.

The gate consumes a precomputed ``group → rate`` mapping; aggregating
outcomes across requests is the caller's job.

Decision:

    above the hard ceiling                   → BLOCK
    within threshold                         → PASS
    beyond it, no mitigation configured      → BLOCK
    otherwise                                → MITIGATE (strategy applied)

"Within threshold" means ``disparity <= max_disparity`` when that is
configured, else the 80% rule: ``min_rate / max_rate >= min_ratio``.
"""

from __future__ import annotations
import math
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

from .errors import ValidationError
from .types import (
    FairnessAssessment,
    FairnessDecision,
    MitigationKind,
    OddsRates,
    ParityMetric,
)


class MitigationStrategy(Protocol):
    """Pluggable bias mitigation: returns adjusted group rates."""
    kind: MitigationKind

    def mitigate(self, groups: Mapping[str, float]) -> dict[str, float]:
        ...


class ReweightingStrategy:
    """Weight each group so its effective rate moves to the overall mean."""

    kind = MitigationKind.REWEIGHTING

    def weights(self, groups: Mapping[str, float]) -> dict[str, float]:
        mean = sum(groups.values()) / len(groups)
        return {g: (mean / r if r > 0 else 1.0) for g, r in groups.items()}

    def mitigate(self, groups: Mapping[str, float]) -> dict[str, float]:
        w = self.weights(groups)
        return {g: min(1.0, r * w[g]) for g, r in groups.items()}


class ThresholdAdjustmentStrategy:
    """Post-hoc threshold shift: lift lower rates toward the highest one.

    ``strength`` is the fraction of the gap closed (1.0 closes it fully).
    """

    kind = MitigationKind.THRESHOLD_ADJUSTMENT

    def __init__(self, strength: float = 1.0) -> None:
        if not 0.0 <= strength <= 1.0:
            raise ValueError("strength must be in [0, 1]")
        self.strength = strength

    def mitigate(self, groups: Mapping[str, float]) -> dict[str, float]:
        top = max(groups.values())
        return {g: r + self.strength * (top - r) for g, r in groups.items()}


MITIGATIONS: dict[str, type] = {
    MitigationKind.REWEIGHTING.value: ReweightingStrategy,
    MitigationKind.THRESHOLD_ADJUSTMENT.value: ThresholdAdjustmentStrategy,
}


@dataclass
class FairnessConfig:
    metric: ParityMetric = ParityMetric.DEMOGRAPHIC_PARITY
    min_ratio: float = 0.8                # 80% rule
    max_disparity: float | None = None    # overrides min_ratio when set
    block_disparity: float = 0.4          # hard ceiling, never mitigated
    mitigation: MitigationStrategy | None = None


class FairnessGate:
    def __init__(self, config: FairnessConfig | None = None) -> None:
        self.config = config or FairnessConfig()

    def assess(
        self,
        outcome_distribution: Mapping[str, Any],
        metric: ParityMetric | None = None,
    ) -> FairnessAssessment:
        metric, groups = self._normalize(outcome_distribution, metric)

        if metric == ParityMetric.EQUALIZED_ODDS:
            tprs = {g: o.tpr for g, o in groups.items()}
            fprs = {g: o.fpr for g, o in groups.items()}
            disparity = max(_spread(tprs), _spread(fprs))
            ratio = min(_ratio(tprs), _ratio(fprs))
            primary = tprs
        else:
            disparity = _spread(groups)
            ratio = _ratio(groups)
            primary = groups

        decision = FairnessDecision.PASS
        mitigation_applied = None
        mitigated = None
        if disparity > self.config.block_disparity:
            decision = FairnessDecision.BLOCK
        elif not self._within_threshold(disparity, ratio):
            strategy = self.config.mitigation
            if strategy is None:
                decision = FairnessDecision.BLOCK
            else:
                decision = FairnessDecision.MITIGATE
                mitigation_applied = strategy.kind
                mitigated = strategy.mitigate(primary)

        return FairnessAssessment(
            metric=metric,
            groups=groups,
            disparity=disparity,
            ratio=ratio,
            decision=decision,
            mitigation_applied=mitigation_applied,
            mitigated_groups=mitigated,
        )

    def validate(
        self,
        outcome_distribution: Mapping[str, Any],
        metric: ParityMetric | None = None,
    ) -> None:
        """Raise ``ValidationError`` if ``assess`` would reject this input."""
        self._normalize(outcome_distribution, metric)

    def _normalize(
        self,
        outcome_distribution: Mapping[str, Any],
        metric: ParityMetric | None,
    ) -> tuple[ParityMetric, dict[str, Any]]:
        try:
            metric = ParityMetric(metric) if metric is not None else self.config.metric
        except ValueError:
            raise ValidationError(f"unknown parity metric {metric!r}") from None
        if not isinstance(outcome_distribution, Mapping) or not outcome_distribution:
            raise ValidationError("outcome distribution must be a non-empty mapping")
        if metric == ParityMetric.EQUALIZED_ODDS:
            return metric, {str(g): _as_odds(g, v) for g, v in outcome_distribution.items()}
        return metric, {str(g): _as_rate(g, v) for g, v in outcome_distribution.items()}

    def _within_threshold(self, disparity: float, ratio: float) -> bool:
        if disparity == 0.0:
            return True
        if self.config.max_disparity is not None:
            return disparity <= self.config.max_disparity
        return ratio >= self.config.min_ratio


def _spread(rates: Mapping[str, float]) -> float:
    return max(rates.values()) - min(rates.values())


def _ratio(rates: Mapping[str, float]) -> float:
    top = max(rates.values())
    return 1.0 if top == 0 else min(rates.values()) / top


def _as_rate(group: str, value: Any) -> float:
    try:
        rate = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"rate for group {group!r} is not a number") from None
    if not math.isfinite(rate) or not 0.0 <= rate <= 1.0:
        raise ValidationError(f"rate for group {group!r} must be in [0, 1], got {value!r}")
    return rate


def _as_odds(group: str, value: Any) -> OddsRates:
    if isinstance(value, OddsRates):
        tpr, fpr = value.tpr, value.fpr
    elif isinstance(value, Mapping):
        tpr, fpr = value.get("tpr"), value.get("fpr")
    elif isinstance(value, (tuple, list)) and len(value) == 2:
        tpr, fpr = value
    else:
        raise ValidationError(f"group {group!r} needs (tpr, fpr) for equalized odds")
    return OddsRates(tpr=_as_rate(group, tpr), fpr=_as_rate(group, fpr))
