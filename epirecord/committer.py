"""
Hash committer: moves a record from OPEN to COMMITTED exactly once.
"""

from datetime import datetime, timezone
from typing import Optional

from .canonicalization import encode_record
from .config import DEFAULT_DIGEST_ALGORITHM
from .errors import AlreadyCommittedError, EncodingError, IncompleteRecordError
from .hashing import check_algorithm, compute_digest
from .logging_config import audit_log
from .record import EvidentiaryRecord, check_evidence_size
from .signing import KeyProvider


def recompute_digest(record: EvidentiaryRecord, algorithm: Optional[str] = None) -> str:
    """
    Hash the canonical encoding of a record's current fields.

    Pure: shared by commit() and the verifier. The algorithm defaults
    to the one declared on the record.
    """
    algorithm = algorithm or record.digest_algorithm
    if algorithm is None:
        raise IncompleteRecordError("record declares no digest algorithm", {"id": record.id})
    return compute_digest(encode_record(record, algorithm), algorithm)


def _check_complete(record: EvidentiaryRecord, committed_at: datetime) -> None:
    missing = []
    if record.subject is None:
        missing.append("subject")
    if record.claim is None:
        missing.append("claim")
    if record.context is None or record.context.captured_at is None:
        missing.append("context.captured_at")
    if missing:
        raise IncompleteRecordError(
            f"record {record.id} is missing {', '.join(missing)}",
            {"id": record.id, "missing": missing},
        )
    stamps = record.capture_timestamps()
    if any(ts.tzinfo is None for ts in stamps):
        raise EncodingError("capture timestamps must be timezone-aware", {"id": record.id})
    late = [ts for ts in stamps if ts > committed_at]
    if late:
        raise IncompleteRecordError(
            f"record {record.id} has a capture timestamp after commit time",
            {"id": record.id, "committed_at": committed_at.isoformat(),
             "latest_capture": max(late).isoformat()},
        )


def commit(
    record: EvidentiaryRecord,
    algorithm: Optional[str] = None,
    now: Optional[datetime] = None,
    signer: Optional[KeyProvider] = None,
) -> EvidentiaryRecord:
    """
    Compute and store the record digest.

    Args:
        record: An OPEN record
        algorithm: Digest algorithm; used only when the record declares none
        now: Commit time (default: current UTC time); must be timezone-aware
        signer: Optional key provider that seals the digest

    Returns:
        The same record, now COMMITTED and immutable

    Raises:
        AlreadyCommittedError: record already has a digest
        IncompleteRecordError: subject, claim or capture timestamp missing
        EvidenceTooLargeError: a blob exceeds its ceiling
        EncodingError: a field cannot be canonically encoded
    """
    if record.is_committed:
        raise AlreadyCommittedError(
            f"record {record.id} is already committed",
            {"id": record.id, "digest": record.digest},
        )

    committed_at = now or datetime.now(timezone.utc)
    if committed_at.tzinfo is None:
        raise ValueError("commit time must be timezone-aware")

    _check_complete(record, committed_at)
    for blob in record.evidence:
        check_evidence_size(blob)

    # the record keeps no trace of a failed attempt
    alg = check_algorithm(record.digest_algorithm or algorithm or DEFAULT_DIGEST_ALGORITHM)
    digest = recompute_digest(record, alg)
    seal = signer.seal(digest) if signer is not None else None
    record._seal_fields(digest, committed_at, seal, alg)

    audit_log.record_committed(record.id, digest, sealed=seal is not None)
    return record
