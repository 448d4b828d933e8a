"""Detection engine: pattern layer + model layer, merged deterministically.

Merge rule for overlapping spans (ranges intersect):

    1. higher confidence wins
    2. equal confidence: the pattern span wins
    3. then the longer span
    4. then the earlier start, then the kind name

Pattern matches sit at 1.0 and model spans are capped below it, so a
pattern match always beats a model span over the same region.  The same
rule settles pattern/pattern overlaps between different kinds, e.g. a
digit run matching both a phone and a card pattern.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from .errors import AnonymizationInvariantViolation
from .model_detector import ModelDetector
from .patterns import PatternDetector
from .types import Diagnostic, PIIKind, PIISpan, SpanSource, kind_value

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DetectionOutcome:
    spans: list[PIISpan]
    diagnostics: list[Diagnostic] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.diagnostics)


def merge(pattern_spans: Sequence[PIISpan], model_spans: Sequence[PIISpan]) -> list[PIISpan]:
    """Merge both layers into one non-overlapping span list.

    Output is sorted ascending by start, ties by end.
    """
    _check_same_kind_disjoint(pattern_spans)
    _check_same_kind_disjoint(model_spans)

    ranked = sorted([*pattern_spans, *model_spans], key=_rank)
    taken: list[PIISpan] = []
    for span in ranked:
        if not any(span.overlaps(t) for t in taken):
            taken.append(span)
    return sorted(taken, key=lambda s: (s.start, s.end))


def _rank(span: PIISpan) -> tuple:
    return (
        -span.confidence,
        0 if span.source == SpanSource.PATTERN else 1,
        -span.length,
        span.start,
        kind_value(span.type),
    )


def _check_same_kind_disjoint(spans: Sequence[PIISpan]) -> None:
    """Within one layer, spans of one kind never overlap."""
    last_end: dict[tuple[str, str], PIISpan] = {}
    for span in sorted(spans, key=lambda s: (s.start, s.end)):
        key = (kind_value(span.source), kind_value(span.type))
        prev = last_end.get(key)
        if prev is not None and prev.overlaps(span):
            raise AnonymizationInvariantViolation(
                f"overlapping {key[0]} spans of kind {key[1]!r} at "
                f"[{prev.start},{prev.end}) and [{span.start},{span.end})"
            )
        if prev is None or span.end > prev.end:
            last_end[key] = span


class PIIDetectionEngine:
    """Runs both detectors and merges their output."""

    def __init__(
        self,
        pattern_detector: PatternDetector | None = None,
        model_detector: ModelDetector | None = None,
        model_kinds: Iterable[str] | None = None,
    ) -> None:
        self.pattern_detector = pattern_detector or PatternDetector()
        self.model_detector = model_detector
        self.model_kinds = frozenset(model_kinds) if model_kinds is not None else frozenset(PIIKind)

    def detect(self, text: str) -> DetectionOutcome:
        pattern_spans = self.pattern_detector.detect(text)

        diagnostics: list[Diagnostic] = []
        model_spans: list[PIISpan] = []
        if self.model_detector is not None:
            model_spans, diagnostic = self.model_detector.scan(text, self.model_kinds)
            if diagnostic is not None:
                diagnostics.append(diagnostic)

        spans = merge(pattern_spans, model_spans)
        logger.debug(
            "Detection: pattern=%d model=%d kept=%d",
            len(pattern_spans), len(model_spans), len(spans),
        )
        return DetectionOutcome(spans=spans, diagnostics=diagnostics)
