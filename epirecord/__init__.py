"""
epirecord: Signed Evidentiary Records

Version: 1.0.0

Tamper-evident records of EPI/EPC delivery acknowledgements: a collaborator
signs for protective equipment, the capture flow gathers signature, selfie,
network origin, device and geolocation, and the record is hashed once and
stored write-once.

Data flows one way:
    capture -> canonicalize -> hash -> store -> verify / export

Usage:
    from datetime import datetime, timezone
    from epirecord import (
        CaptureContext, Claim, SubjectIdentity,
        open_record, commit, InMemoryRecordStore, verify_record, export_view,
    )

    record = open_record(
        SubjectIdentity(name="Ana Souza", identifier="MAT-004"),
        Claim(item="Luva Nitrílica", quantity=2, reason="Substituição"),
        CaptureContext(captured_at=datetime.now(timezone.utc)),
    )
    commit(record)

    store = InMemoryRecordStore()
    store.put(record)

    assert verify_record(store.get(record.id)).valid
    view = export_view(record)
"""

__version__ = "1.0.0"

# Errors
from .errors import (
    RecordError,
    EncodingError,
    IncompleteRecordError,
    AlreadyCommittedError,
    NotCommittedError,
    DuplicateIdError,
    NotFoundError,
    EvidenceTooLargeError,
    UnsupportedAlgorithmError,
    StoreTimeoutError,
)

# Canonicalization and hashing
from .canonicalization import (
    ENCODING_VERSION,
    canonicalize,
    canonicalize_str,
    encode_record,
    record_payload,
)
from .hashing import (
    DEFAULT_ALGORITHM,
    compute_digest,
    content_hash,
    digests_equal,
    supported_algorithms,
)

# Data model
from .config import EvidenceKind
from .record import (
    CaptureContext,
    Claim,
    EvidenceBlob,
    EvidentiaryRecord,
    GeoLocation,
    RecordState,
    Seal,
    SubjectIdentity,
)

# Capture, commit, store, verify, export
from .capture import CaptureDevice, StaticCapture, attach_evidence, open_record
from .committer import commit, recompute_digest
from .store import (
    RecordStore,
    InMemoryRecordStore,
    SqliteRecordStore,
    S3ObjectLockRecordStore,
    get_record_store,
)
from .verifier import (
    RecordVerifier,
    VerificationOutcome,
    VerificationResult,
    verify_record,
    verify_stored,
)
from .export import EN_LABELS, PT_BR_LABELS, ExportView, export_view

# Sealing
from .signing import FileKeyProvider, InMemoryKeyProvider, KeyProvider, verify_seal


__all__ = [
    "__version__",

    # Errors
    "RecordError",
    "EncodingError",
    "IncompleteRecordError",
    "AlreadyCommittedError",
    "NotCommittedError",
    "DuplicateIdError",
    "NotFoundError",
    "EvidenceTooLargeError",
    "UnsupportedAlgorithmError",
    "StoreTimeoutError",

    # Canonicalization and hashing
    "ENCODING_VERSION",
    "canonicalize",
    "canonicalize_str",
    "encode_record",
    "record_payload",
    "DEFAULT_ALGORITHM",
    "compute_digest",
    "content_hash",
    "digests_equal",
    "supported_algorithms",

    # Data model
    "CaptureContext",
    "Claim",
    "EvidenceBlob",
    "EvidenceKind",
    "EvidentiaryRecord",
    "GeoLocation",
    "RecordState",
    "Seal",
    "SubjectIdentity",

    # Capture
    "CaptureDevice",
    "StaticCapture",
    "attach_evidence",
    "open_record",

    # Commit
    "commit",
    "recompute_digest",

    # Store
    "RecordStore",
    "InMemoryRecordStore",
    "SqliteRecordStore",
    "S3ObjectLockRecordStore",
    "get_record_store",

    # Verify
    "RecordVerifier",
    "VerificationOutcome",
    "VerificationResult",
    "verify_record",
    "verify_stored",

    # Export
    "EN_LABELS",
    "PT_BR_LABELS",
    "ExportView",
    "export_view",

    # Sealing
    "FileKeyProvider",
    "InMemoryKeyProvider",
    "KeyProvider",
    "verify_seal",
]
