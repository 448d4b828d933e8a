"""Exception hierarchy.

Consent denial is not an error: it is a policy outcome reported as a
``blocked`` result.  Degraded model detection is a ``Diagnostic``.
Everything below is raised.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all pii-audit errors."""


class ValidationError(PipelineError, ValueError):
    """Malformed input, rejected before any stage runs."""


class ConsentUnavailable(PipelineError):
    """The consent store could not answer.  Treated as a denial."""


class AnonymizationInvariantViolation(PipelineError):
    """Overlapping or out-of-range spans reached the anonymizer."""


# ------------------------------------------------------------------
# Ledger side (raised by Ledger implementations)
# ------------------------------------------------------------------

class LedgerError(PipelineError):
    """Base for errors raised by a ledger's ``append``."""


class TransientLedgerError(LedgerError):
    """Network trouble, ledger busy, timeouts.  Safe to retry."""


class PermanentLedgerError(LedgerError):
    """Validation failure or permanent rejection.  Never retried."""


# ------------------------------------------------------------------
# Emitter side (raised by AuditEmitter.emit)
# ------------------------------------------------------------------

class AuditError(PipelineError):
    """The audit record could not be committed."""


class AuditUnavailable(AuditError):
    """Ledger still failing after all retry attempts."""


class AuditRejected(AuditError):
    """Ledger permanently rejected the record."""
