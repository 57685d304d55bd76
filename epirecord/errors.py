"""
Error taxonomy for evidentiary records.

Every failure path raises one of these. Verification mismatches are
not errors; see verifier.VerificationResult.
"""

from typing import Any, Dict, Optional


class RecordError(Exception):
    """Base class for all evidentiary record errors."""

    code = "RECORD_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class EncodingError(RecordError):
    """A field holds a value the canonical encoding does not support."""
    code = "ENCODING_ERROR"


class IncompleteRecordError(RecordError):
    """A required field is missing at commit time."""
    code = "INCOMPLETE_RECORD"


class AlreadyCommittedError(RecordError):
    """Commit or mutation attempted on a committed record."""
    code = "ALREADY_COMMITTED"


class NotCommittedError(RecordError):
    """Operation requires a committed record."""
    code = "NOT_COMMITTED"


class DuplicateIdError(RecordError):
    """A record with this id is already stored."""
    code = "DUPLICATE_ID"


class NotFoundError(RecordError):
    """No record stored under this id."""
    code = "NOT_FOUND"


class EvidenceTooLargeError(RecordError):
    """An evidence blob exceeds its declared size ceiling."""
    code = "EVIDENCE_TOO_LARGE"


class UnsupportedAlgorithmError(RecordError):
    """Unknown digest algorithm identifier."""
    code = "UNSUPPORTED_ALGORITHM"


class StoreTimeoutError(RecordError, TimeoutError):
    """
    Storage I/O did not complete within the caller's timeout.

    Transient; the caller may retry put() with backoff. A retry that
    races a successful earlier attempt surfaces as DuplicateIdError.
    """
    code = "STORE_TIMEOUT"
