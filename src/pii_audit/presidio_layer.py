"""Presidio NER backend for the model detector.

Catches names, organizations, locations and whatever else Presidio's
recognizers find.  Uses spaCy under the hood.  Install with the
``presidio`` extra and a spaCy model (``en_core_web_sm`` by default).
"""

from __future__ import annotations
from typing import TYPE_CHECKING, Iterable

from .model_detector import EntityResult
from .types import PIIKind

if TYPE_CHECKING:
    from presidio_analyzer import AnalyzerEngine

# Presidio entity name → PIIKind
ENTITY_MAP: dict[str, PIIKind] = {
    "EMAIL_ADDRESS": PIIKind.EMAIL,
    "PHONE_NUMBER": PIIKind.PHONE,
    "US_SSN": PIIKind.NATIONAL_ID,
    "CREDIT_CARD": PIIKind.PAYMENT_CARD,
    "IP_ADDRESS": PIIKind.IP_ADDRESS,
    "PERSON": PIIKind.PERSON,
    "LOCATION": PIIKind.LOCATION,
    "ORGANIZATION": PIIKind.ORGANIZATION,
}
_KIND_TO_ENTITY = {kind: name for name, kind in ENTITY_MAP.items()}


class PresidioBackend:
    """Model backend over a lazily-built Presidio ``AnalyzerEngine``.

    The engine (and the spaCy model behind it) is loaded on first use,
    then reused for every call.
    """

    def __init__(self, language: str = "en", model_name: str | None = None) -> None:
        self.language = language
        self.model_name = model_name or f"{language}_core_web_sm"
        self._engine: AnalyzerEngine | None = None

    def _get_engine(self) -> AnalyzerEngine:
        if self._engine is None:
            from presidio_analyzer import AnalyzerEngine
            from presidio_analyzer.nlp_engine import NlpEngineProvider

            provider = NlpEngineProvider(nlp_configuration={
                "nlp_engine_name": "spacy",
                "models": [{"lang_code": self.language, "model_name": self.model_name}],
            })
            self._engine = AnalyzerEngine(
                nlp_engine=provider.create_engine(),
                supported_languages=[self.language],
            )
        return self._engine

    def detect_entities(self, text: str, kinds: Iterable[str]) -> list[EntityResult]:
        entities = [_KIND_TO_ENTITY[k] for k in kinds if k in _KIND_TO_ENTITY]
        if not entities:
            return []
        results = self._get_engine().analyze(
            text=text,
            language=self.language,
            entities=entities,
        )
        return [
            EntityResult(
                type=ENTITY_MAP[r.entity_type],
                text=text[r.start:r.end],
                start=r.start,
                end=r.end,
                confidence=r.score,
            )
            for r in results
            if r.entity_type in ENTITY_MAP
        ]
