"""
Capture boundary.

The capture collaborator (camera, signature pad, form) supplies raw
values. This module validates their shape and opens records; it never
depends on how the bytes were captured.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Optional, Union

from .config import Settings, load_settings
from .errors import EvidenceTooLargeError
from .logging_config import audit_log
from .record import (
    CaptureContext,
    Claim,
    EvidenceBlob,
    EvidentiaryRecord,
    SubjectIdentity,
    new_record_id,
)

# Called with (data, max_bytes); returns a smaller re-encoding or None if it cannot
Reducer = Callable[[bytes, int], Optional[bytes]]


class CaptureDevice(ABC):
    """Capability interface for anything that yields evidence bytes."""

    @abstractmethod
    def capture(self) -> bytes:
        pass


class StaticCapture(CaptureDevice):
    """Wraps bytes already captured elsewhere (e.g. a base64 upload)."""

    def __init__(self, data: bytes):
        self._data = bytes(data)

    def capture(self) -> bytes:
        return self._data


def open_record(
    subject: SubjectIdentity,
    claim: Claim,
    context: CaptureContext,
    record_id: Optional[str] = None,
    supersedes: Optional[str] = None,
    digest_algorithm: Optional[str] = None,
) -> EvidentiaryRecord:
    """
    Validate captured fields and open a record.

    Raises:
        ValueError/TypeError: a field has the wrong shape
    """
    if not isinstance(subject, SubjectIdentity):
        raise TypeError("subject must be a SubjectIdentity")
    if not isinstance(claim, Claim):
        raise TypeError("claim must be a Claim")
    if not isinstance(context, CaptureContext):
        raise TypeError("context must be a CaptureContext")
    if isinstance(claim.quantity, bool) or not isinstance(claim.quantity, int) or claim.quantity < 1:
        raise ValueError(f"claim.quantity must be a positive integer: {claim.quantity!r}")
    if context.captured_at is not None and context.captured_at.tzinfo is None:
        raise ValueError("context.captured_at must be timezone-aware")

    record = EvidentiaryRecord(
        id=record_id or new_record_id(),
        subject=subject,
        claim=claim,
        context=context,
        supersedes=supersedes,
        digest_algorithm=digest_algorithm,
    )
    audit_log.record_opened(record.id, supersedes)
    return record


def attach_evidence(
    record: EvidentiaryRecord,
    kind: str,
    source: Union[CaptureDevice, bytes],
    media_type: str,
    max_bytes: Optional[int] = None,
    reducer: Optional[Reducer] = None,
    captured_at: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> EvidenceBlob:
    """
    Capture evidence and attach it to an OPEN record.

    Oversized data is shrunk only when the caller passes a reducer; the
    reducer is retried until the data fits or it gives up.

    Args:
        kind: an EvidenceKind value or any other kind name
        source: A CaptureDevice or raw bytes
        max_bytes: Ceiling; defaults to the configured ceiling for `kind`
        reducer: Caller-consented shrinking step

    Raises:
        EvidenceTooLargeError: data does not fit the ceiling
        AlreadyCommittedError: record is committed
    """
    settings = settings or load_settings()
    ceiling = max_bytes if max_bytes is not None else settings.ceiling_for(kind)
    data = source.capture() if isinstance(source, CaptureDevice) else bytes(source)

    if len(data) > ceiling and reducer is not None:
        while len(data) > ceiling:
            smaller = reducer(data, ceiling)
            if smaller is None or len(smaller) >= len(data):
                break
            data = smaller

    try:
        blob = EvidenceBlob(
            kind=kind,
            data=data,
            media_type=media_type,
            max_bytes=ceiling,
            captured_at=captured_at or datetime.now(timezone.utc),
        )
    except EvidenceTooLargeError:
        audit_log.evidence_rejected(kind, len(data), ceiling)
        raise
    record.attach(blob)
    return blob
