"""Error taxonomy for statement ingestion and categorization.

Input problems keep ``ValueError`` compatibility so callers that already
handle bad input keep working. Delegate problems derive from ``RuntimeError``
and carry a :class:`DelegateErrorKind` so the pipeline can pick a fallback
without string matching on messages.
"""

from __future__ import annotations

from enum import StrEnum


class IngestError(Exception):
    """Base class for every error raised by ``statement_ingest``."""


class StructuralInputError(IngestError, ValueError):
    """The whole input is unusable (empty file, missing required columns)."""


class RowLevelError(IngestError, ValueError):
    """A single data row could not be parsed; the row is skipped."""


class ValidationError(IngestError, ValueError):
    """An expense amount is non-numeric or outside the accepted range."""


class DelegateErrorKind(StrEnum):
    NOT_CONFIGURED = "not_configured"
    RATE_LIMITED = "rate_limited"
    MALFORMED_RESPONSE = "malformed_response"
    TIMEOUT = "timeout"
    OTHER = "other"


class DelegateError(IngestError, RuntimeError):
    """An external generative delegate could not produce a usable result."""

    kind: DelegateErrorKind = DelegateErrorKind.OTHER

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DelegateNotConfigured(DelegateError):
    kind = DelegateErrorKind.NOT_CONFIGURED


class DelegateRateLimited(DelegateError):
    kind = DelegateErrorKind.RATE_LIMITED


class DelegateMalformedResponse(DelegateError):
    kind = DelegateErrorKind.MALFORMED_RESPONSE


class DelegateTimeout(DelegateError):
    kind = DelegateErrorKind.TIMEOUT


class DelegateFailure(DelegateError):
    kind = DelegateErrorKind.OTHER


class TextExtractionError(IngestError):
    """Document text could not be extracted (e.g. image-only PDF)."""


def missing_column(role: str, aliases: tuple[str, ...]) -> str:
    """Return the message for a header role that could not be resolved."""
    listed = ", ".join(aliases[:-1]) + f", or {aliases[-1]}" if len(aliases) > 1 else aliases[0]
    return f"Could not find {role} column. Expected: {listed}"


def row_error(row_number: int, exc: BaseException) -> str:
    """Return the message recorded for a skipped row."""
    return f"Error parsing row {row_number}: {exc}"


__all__ = [
    "DelegateError",
    "DelegateErrorKind",
    "DelegateFailure",
    "DelegateMalformedResponse",
    "DelegateNotConfigured",
    "DelegateRateLimited",
    "DelegateTimeout",
    "IngestError",
    "RowLevelError",
    "StructuralInputError",
    "TextExtractionError",
    "ValidationError",
    "missing_column",
    "row_error",
]
