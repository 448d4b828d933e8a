"""Model layer: adapter over a probabilistic entity detector.

The backend (Presidio, a hosted NER service, ...) is an external
collaborator and is not trusted: offsets are clipped to the text,
low-confidence and unrequested entities are dropped, and any backend
failure or timeout degrades to "no model spans" instead of aborting
the pipeline.  Pattern detection alone must still succeed.
"""

from __future__ import annotations
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Iterable, Protocol

from .types import Diagnostic, PIISpan, SpanSource, kind_value

logger = logging.getLogger(__name__)

# Model spans stay strictly below pattern confidence.
MAX_MODEL_CONFIDENCE = 0.99

DETECTION_DEGRADED = "detection_degraded"


@dataclass(frozen=True, slots=True)
class EntityResult:
    """One raw entity as reported by a backend."""
    type: str
    text: str
    start: int
    end: int
    confidence: float


class ModelBackend(Protocol):
    def detect_entities(self, text: str, kinds: Iterable[str]) -> Iterable[EntityResult]:
        ...


@dataclass
class ModelDetectorConfig:
    score_threshold: float = 0.5      # drop entities below this confidence
    timeout: float | None = 2.0       # seconds per backend call; None = wait forever
    max_workers: int = 4


class ModelDetector:
    """Validating, soft-failing wrapper around a ``ModelBackend``."""

    def __init__(
        self,
        backend: ModelBackend | None,
        config: ModelDetectorConfig | None = None,
    ) -> None:
        self.backend = backend
        self.config = config or ModelDetectorConfig()
        self._executor: ThreadPoolExecutor | None = None

    def detect(self, text: str, requested_kinds: Iterable[str]) -> list[PIISpan]:
        spans, _ = self.scan(text, requested_kinds)
        return spans

    def scan(
        self, text: str, requested_kinds: Iterable[str]
    ) -> tuple[list[PIISpan], Diagnostic | None]:
        """Detect model spans, reporting degradation instead of raising."""
        if self.backend is None:
            return [], None
        kinds = frozenset(kind_value(k) for k in requested_kinds)
        if not kinds or not text:
            return [], None

        try:
            raw = self._call_backend(text, kinds)
        except FutureTimeout:
            logger.warning("Model detector timed out after %ss; pattern-only mode", self.config.timeout)
            return [], Diagnostic(DETECTION_DEGRADED, "model detector timed out")
        except Exception as e:
            # Backend errors never abort the pipeline.
            logger.warning("Model detector failed (%s); pattern-only mode", type(e).__name__)
            return [], Diagnostic(DETECTION_DEGRADED, f"model detector error: {type(e).__name__}")

        return self._validate(text, raw, kinds), None

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    # ------------------------------------------------------------------

    def _call_backend(self, text: str, kinds: frozenset[str]) -> list[EntityResult]:
        if self.config.timeout is None:
            return list(self.backend.detect_entities(text, kinds))
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.config.max_workers,
                thread_name_prefix="model-detector",
            )
        future = self._executor.submit(lambda: list(self.backend.detect_entities(text, kinds)))
        return future.result(timeout=self.config.timeout)

    def _validate(
        self, text: str, raw: list[EntityResult], kinds: frozenset[str]
    ) -> list[PIISpan]:
        n = len(text)
        candidates: list[PIISpan] = []
        dropped = 0
        for r in raw:
            start = max(0, min(int(r.start), n))
            end = max(0, min(int(r.end), n))
            confidence = float(r.confidence)
            if start >= end or kind_value(r.type) not in kinds or not confidence >= self.config.score_threshold:
                dropped += 1
                continue
            candidates.append(PIISpan(
                type=r.type,
                start=start,
                end=end,
                value=text[start:end],
                source=SpanSource.MODEL,
                confidence=min(confidence, MAX_MODEL_CONFIDENCE),
            ))
        if dropped:
            logger.debug("Model detector dropped %d of %d entities", dropped, len(raw))
        return _remove_overlaps(candidates)


def _remove_overlaps(spans: list[PIISpan]) -> list[PIISpan]:
    """Keep model output self-consistent: highest confidence, then longest, wins."""
    ranked = sorted(spans, key=lambda s: (-s.confidence, -s.length, s.start))
    taken: list[PIISpan] = []
    for s in ranked:
        if not any(s.overlaps(t) for t in taken):
            taken.append(s)
    return sorted(taken, key=lambda s: (s.start, s.end))
