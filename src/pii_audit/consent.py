"""Consent lookup.

The consent store is external; the pipeline only calls
``get_consent(user_id)`` once per request and never caches the answer.
A provider that cannot answer raises ``ConsentUnavailable`` and the
pipeline fails closed.

``StaticConsentProvider`` is a fixed-table provider for tests, the CLI
and offline batch runs.  Consent file format (JSON or YAML):

    alice:
      granted: true
      scope: [processing, analytics]
      ref: consent-2024-0001
    bob:
      granted: false
"""

from __future__ import annotations
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Protocol

from .types import ConsentDecision, Purpose


class ConsentProvider(Protocol):
    def get_consent(self, user_id: str) -> ConsentDecision:
        ...


class StaticConsentProvider:
    """Answers from a fixed user → decision table.  Unknown users are denied."""

    def __init__(self, decisions: Mapping[str, ConsentDecision] | None = None) -> None:
        self._decisions = dict(decisions or {})

    def get_consent(self, user_id: str) -> ConsentDecision:
        decision = self._decisions.get(user_id)
        if decision is None:
            return ConsentDecision(user_id=user_id, granted=False)
        return decision

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> StaticConsentProvider:
        decisions = {}
        for user_id, entry in data.items():
            as_of = entry.get("as_of")
            if isinstance(as_of, str):
                as_of = datetime.fromisoformat(as_of)
            decisions[user_id] = ConsentDecision(
                user_id=user_id,
                granted=bool(entry.get("granted", False)),
                scope=frozenset(Purpose(p) for p in entry.get("scope", [Purpose.PROCESSING.value])),
                as_of=as_of or datetime.now(timezone.utc),
                ref=entry.get("ref"),
            )
        return cls(decisions)

    @classmethod
    def from_file(cls, path: str | Path) -> StaticConsentProvider:
        path = Path(path).expanduser()
        with open(path) as f:
            if path.suffix in (".yaml", ".yml"):
                import yaml
                data = yaml.safe_load(f) or {}
            else:
                data = json.load(f)
        return cls.from_dict(data)
