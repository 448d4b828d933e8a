"""Anonymizer: replace detected spans with ``[KIND]`` tokens.

Replacement runs right-to-left (descending start offset), so each
rewrite only shifts text that has already been processed and the
offsets of the spans still to go stay valid.
"""

from __future__ import annotations
from typing import Sequence

from .errors import AnonymizationInvariantViolation
from .types import AnonymizationResult, PIISpan, kind_value


def replacement_token(kind: str) -> str:
    return f"[{kind_value(kind).upper()}]"


def anonymize(text: str, spans: Sequence[PIISpan]) -> AnonymizationResult:
    """Rewrite text, replacing each span with its kind token.

    Spans must lie inside the text and must not overlap; both are
    checked before anything is rewritten.
    """
    if not spans:
        return AnonymizationResult(anonymized_text=text, applied_spans=())

    ordered = sorted(spans, key=lambda s: (s.start, s.end))
    _check_spans(text, ordered)

    result = text
    for span in reversed(ordered):
        result = result[:span.start] + replacement_token(span.type) + result[span.end:]

    return AnonymizationResult(anonymized_text=result, applied_spans=tuple(ordered))


def _check_spans(text: str, ordered: Sequence[PIISpan]) -> None:
    n = len(text)
    prev: PIISpan | None = None
    for span in ordered:
        if span.end > n:
            raise AnonymizationInvariantViolation(
                f"span [{span.start},{span.end}) outside text of length {n}"
            )
        if text[span.start:span.end] != span.value:
            raise AnonymizationInvariantViolation(
                f"span [{span.start},{span.end}) does not match its recorded value"
            )
        if prev is not None and prev.end > span.start:
            raise AnonymizationInvariantViolation(
                f"overlapping spans [{prev.start},{prev.end}) and [{span.start},{span.end})"
            )
        prev = span


class Anonymizer:
    """Object form of ``anonymize`` for injection into the pipeline."""

    def anonymize(self, text: str, spans: Sequence[PIISpan]) -> AnonymizationResult:
        return anonymize(text, spans)
