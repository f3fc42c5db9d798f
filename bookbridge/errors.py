"""Domain exceptions for conversion, synchronization, and CLI diagnostics.

Every failure carries a machine-checkable `ErrorKind` and a human-readable
detail message. `stage` and `hint` are optional context used by CLI
rendering and job error records.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Machine-checkable failure categories."""

    INVALID_INPUT = "invalid_input"
    EXTRACTION = "extraction_error"
    PACKAGING = "packaging_error"
    NOT_FOUND = "not_found"
    OUT_OF_RANGE_QUERY = "out_of_range_query"


class BookbridgeError(RuntimeError):
    """Base class for failures raised by Bookbridge components."""

    kind: ErrorKind = ErrorKind.INVALID_INPUT

    def __init__(
        self,
        detail: str,
        *,
        stage: str | None = None,
        hint: str | None = None,
    ) -> None:
        """Initialize an error with optional stage and remediation hint."""

        super().__init__(detail)
        self.detail = detail
        self.stage = stage
        self.hint = hint


class InvalidInputError(BookbridgeError):
    """Raised for wrong media types, oversized payloads, or bad metadata."""

    kind = ErrorKind.INVALID_INPUT


class ExtractionError(BookbridgeError):
    """Raised when a source document is unreadable or corrupt."""

    kind = ErrorKind.EXTRACTION


class PackagingError(BookbridgeError):
    """Raised when a packaged document cannot be finalized."""

    kind = ErrorKind.PACKAGING


class NotFoundError(BookbridgeError):
    """Raised when an artifact, job, or calibration table reference is unknown."""

    kind = ErrorKind.NOT_FOUND
