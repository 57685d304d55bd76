"""
Record verification.

Recomputes a committed record's digest from its current field values and
compares it with the stored digest. A mismatch is a normal result to be
escalated by the caller, not an exception.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from .committer import recompute_digest
from .errors import (
    EncodingError,
    EvidenceTooLargeError,
    IncompleteRecordError,
    NotCommittedError,
    UnsupportedAlgorithmError,
)
from .hashing import digests_equal
from .logging_config import audit_log
from .record import EvidentiaryRecord, check_evidence_size
from .signing import verify_seal


class VerificationOutcome(str, Enum):
    """
    VALID: digest (and seal, when checked) match
    DIGEST_MISMATCH: fields changed since commit
    EVIDENCE_OVERSIZED: a blob exceeds its declared ceiling
    SEAL_INVALID: seal missing, unknown key or bad signature
    UNVERIFIABLE: the record can no longer be re-encoded or hashed
    """
    VALID = "VALID"
    DIGEST_MISMATCH = "DIGEST_MISMATCH"
    EVIDENCE_OVERSIZED = "EVIDENCE_OVERSIZED"
    SEAL_INVALID = "SEAL_INVALID"
    UNVERIFIABLE = "UNVERIFIABLE"


@dataclass
class VerificationResult:
    """Result of verifying a record."""
    valid: bool
    recomputed_digest: Optional[str]
    declared_digest: Optional[str]
    outcome: VerificationOutcome
    reason: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return self.valid

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "recomputed_digest": self.recomputed_digest,
            "declared_digest": self.declared_digest,
            "outcome": self.outcome.value,
            "reason": self.reason,
            "details": self.details,
        }


class RecordVerifier:
    """
    Verifies committed records.

    Args:
        trust_store: {"record_seal_keys": {kid: public_key_b64}}. When given,
            seals are checked.
        require_seal: with a trust store, treat an unsealed record as invalid
    """

    def __init__(self, trust_store: Optional[Dict[str, Any]] = None, require_seal: bool = False):
        self.trust_store = trust_store
        self.require_seal = require_seal

    def verify(self, record: EvidentiaryRecord) -> VerificationResult:
        """
        Verify a committed record. Never mutates it.

        Raises:
            NotCommittedError: record has no digest
        """
        if not record.is_committed:
            raise NotCommittedError(f"record {record.id} is not committed", {"id": record.id})

        result = self._verify(record)
        audit_log.verification_result(record.id, result.valid, result.outcome.value, result.reason)
        return result

    def _verify(self, record: EvidentiaryRecord) -> VerificationResult:
        declared = record.digest

        try:
            recomputed = recompute_digest(record)
        except (EncodingError, UnsupportedAlgorithmError, IncompleteRecordError) as e:
            return VerificationResult(
                valid=False,
                recomputed_digest=None,
                declared_digest=declared,
                outcome=VerificationOutcome.UNVERIFIABLE,
                reason=e.message,
                details=e.to_dict(),
            )

        if not digests_equal(recomputed, declared):
            return VerificationResult(
                valid=False,
                recomputed_digest=recomputed,
                declared_digest=declared,
                outcome=VerificationOutcome.DIGEST_MISMATCH,
                reason="Digest mismatch",
            )

        for blob in record.evidence:
            try:
                check_evidence_size(blob)
            except EvidenceTooLargeError as e:
                return VerificationResult(
                    valid=False,
                    recomputed_digest=recomputed,
                    declared_digest=declared,
                    outcome=VerificationOutcome.EVIDENCE_OVERSIZED,
                    reason=e.message,
                    details=e.details,
                )

        if self.trust_store is not None:
            if record.seal is None:
                if self.require_seal:
                    return VerificationResult(
                        valid=False,
                        recomputed_digest=recomputed,
                        declared_digest=declared,
                        outcome=VerificationOutcome.SEAL_INVALID,
                        reason="Record is not sealed",
                    )
            else:
                ok, reason = verify_seal(record.seal, declared, self.trust_store)
                if not ok:
                    return VerificationResult(
                        valid=False,
                        recomputed_digest=recomputed,
                        declared_digest=declared,
                        outcome=VerificationOutcome.SEAL_INVALID,
                        reason=reason,
                        details={"kid": record.seal.kid},
                    )

        return VerificationResult(
            valid=True,
            recomputed_digest=recomputed,
            declared_digest=declared,
            outcome=VerificationOutcome.VALID,
        )


def verify_record(
    record: EvidentiaryRecord,
    trust_store: Optional[Dict[str, Any]] = None,
) -> VerificationResult:
    """Convenience function to verify a record."""
    return RecordVerifier(trust_store).verify(record)


def verify_stored(store, record_id: str, trust_store: Optional[Dict[str, Any]] = None,
                  timeout: Optional[float] = None) -> VerificationResult:
    """Fetch a record from a store and verify it."""
    return RecordVerifier(trust_store).verify(store.get(record_id, timeout=timeout))
