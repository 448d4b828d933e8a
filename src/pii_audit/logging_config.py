"""Logging setup.

Library modules only ever call ``logging.getLogger(__name__)``.  Apps
and the CLI call ``setup_logging()`` once, which installs a console
handler behind ``PIISafeFilter`` so that PII slipping into a log line
(an exception message quoting user input, say) is masked on the way out.
"""

from __future__ import annotations
import logging
import logging.config

from .anonymizer import anonymize
from .engine import merge
from .patterns import scan_patterns


def mask_pii(value: object) -> object:
    if not isinstance(value, str) or not value:
        return value
    return anonymize(value, merge(scan_patterns(value), [])).anonymized_text


class PIISafeFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = mask_pii(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(mask_pii(a) for a in record.args)
        elif isinstance(record.args, dict):
            record.args = {k: mask_pii(v) for k, v in record.args.items()}
        return True


def setup_logging(level: str = "INFO") -> None:
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "pii_safe": {"()": "pii_audit.logging_config.PIISafeFilter"},
        },
        "formatters": {
            "default": {
                "format": "%(asctime)s %(levelname)s %(name)s | %(message)s",
                "datefmt": "%Y-%m-%dT%H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "filters": ["pii_safe"],
                "stream": "ext://sys.stderr",
            },
        },
        "loggers": {
            "pii_audit": {"handlers": ["console"], "level": level.upper(), "propagate": False},
        },
    })
