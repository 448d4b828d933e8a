"""CLI interface for pii-audit.

Usage:
    # Anonymize text on stdin for a consenting user; prints a JSON result
    echo 'Mail me at jo@example.com' | \
        python -m pii_audit.cli --no-model ingest --user-id alice --consent-file consent.yaml

    # With a precomputed classifier outcome for the fairness gate
    echo '...' | python -m pii_audit.cli ingest --user-id alice \
        --consent-file consent.yaml --outcome '{"group_a": 0.6, "group_b": 0.55}'

    # Dump the ledger (one JSON record per line) and check its hash chain
    python -m pii_audit.cli records
    python -m pii_audit.cli verify

Audit records are kept in a SQLite ledger so they survive across calls.
Exit codes: 0 done/ok, 2 blocked, 1 failed or broken chain.
"""

from __future__ import annotations
import argparse
import json
import os
import sys
from pathlib import Path

from .config import create_pipeline, load_config, load_from_yaml
from .consent import StaticConsentProvider
from .errors import ValidationError
from .ledger_sqlite import SqliteLedger
from .logging_config import setup_logging
from .types import IngestStatus


DEFAULT_LEDGER = os.environ.get(
    "PII_AUDIT_LEDGER",
    str(Path.home() / ".pii-audit" / "ledger.db"),
)
DEFAULT_CONFIG = os.environ.get("PII_AUDIT_CONFIG", "")

_EXIT_CODES = {
    IngestStatus.DONE: 0,
    IngestStatus.BLOCKED: 2,
    IngestStatus.FAILED: 1,
}


def _load_cfg(args: argparse.Namespace) -> dict:
    cfg = load_from_yaml(args.config) if args.config else load_config({})
    if args.no_model:
        cfg["model_enabled"] = False
    return cfg


def cmd_ingest(args: argparse.Namespace) -> int:
    """Run stdin text through the pipeline."""
    try:
        outcome = json.loads(args.outcome) if args.outcome else None
    except json.JSONDecodeError as e:
        print(f"error: --outcome is not valid JSON: {e}", file=sys.stderr)
        return 1

    consent = (
        StaticConsentProvider.from_file(args.consent_file)
        if args.consent_file else StaticConsentProvider()
    )
    cfg = _load_cfg(args)

    ledger = SqliteLedger(args.ledger)
    try:
        pipeline = create_pipeline(cfg, consent, ledger=ledger)
    except Exception:
        ledger.close()
        raise

    text = sys.stdin.read()
    try:
        result = pipeline.ingest(args.user_id, text, outcome=outcome)
    except ValidationError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    finally:
        pipeline.close()
        ledger.close()

    json.dump(result.to_dict(), sys.stdout, ensure_ascii=False)
    sys.stdout.write("\n")
    return _EXIT_CODES[result.status]


def cmd_records(args: argparse.Namespace) -> int:
    """Dump ledger records as JSON lines, in append order."""
    ledger = SqliteLedger(args.ledger)
    for record in ledger.records():
        json.dump(record.to_dict(), sys.stdout, ensure_ascii=False)
        sys.stdout.write("\n")
    ledger.close()
    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    """Check the ledger's hash chain."""
    ledger = SqliteLedger(args.ledger)
    ok = ledger.verify()
    json.dump({"ok": ok, "entries": ledger.size}, sys.stdout)
    sys.stdout.write("\n")
    ledger.close()
    return 0 if ok else 1


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="pii_audit",
        description="Consent-gated PII anonymization with a tamper-evident audit trail",
    )
    parser.add_argument("--ledger", default=DEFAULT_LEDGER, help="SQLite ledger path")
    parser.add_argument("--config", default=DEFAULT_CONFIG, help="YAML config file")
    parser.add_argument("--no-model", action="store_true", help="Pattern-only detection")
    parser.add_argument("--log-level", default="WARNING", help="Log level")

    sub = parser.add_subparsers(dest="command", required=True)
    p_ingest = sub.add_parser("ingest", help="Anonymize and audit text (stdin)")
    p_ingest.add_argument("--user-id", required=True)
    p_ingest.add_argument("--consent-file", default="", help="JSON/YAML consent table")
    p_ingest.add_argument("--outcome", default="", help="JSON group -> rate mapping")
    sub.add_parser("records", help="Dump ledger records")
    sub.add_parser("verify", help="Verify the ledger hash chain")

    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    cmds = {
        "ingest": cmd_ingest,
        "records": cmd_records,
        "verify": cmd_verify,
    }
    return cmds[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
