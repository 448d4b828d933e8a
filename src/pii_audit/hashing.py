"""Content hashing.

SHA-256 hex digests are used for:
- the original/anonymized text hashes in every audit record
- record digests, for idempotent replay on the ledger
- chaining ledger entries so tampering with one entry breaks every later hash
"""

from __future__ import annotations
import hashlib
import json
from typing import Any

GENESIS_HASH = "0" * 64


def hash_text(text: str) -> str:
    """Deterministic 256-bit digest of text (lowercase hex)."""
    return hashlib.sha256(text.encode("utf-8", errors="surrogatepass")).hexdigest()


def canonical_json(obj: Any) -> str:
    """Stable JSON encoding: sorted keys, no whitespace."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def chain_hash(prev_hash: str, payload: str) -> str:
    """Hash linking one ledger entry to the one before it."""
    return hash_text(f"{prev_hash}\n{payload}")
