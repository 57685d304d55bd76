"""
Evidentiary record data model.

An EvidentiaryRecord is created OPEN by the capture flow, populated, and
sealed exactly once by the committer. After that no attribute may be
assigned; corrections are new records carrying `supersedes`.

Component types (SubjectIdentity, Claim, GeoLocation, CaptureContext,
EvidenceBlob, Seal) are frozen dataclasses.
"""

import base64
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from .canonicalization import (
    ACCURACY_QUANTUM,
    COORDINATE_QUANTUM,
    canonical_value,
    fixed_decimal,
    format_timestamp,
)
from .errors import AlreadyCommittedError, EvidenceTooLargeError
from .hashing import content_hash


class RecordState(str, Enum):
    OPEN = "OPEN"
    COMMITTED = "COMMITTED"


def new_record_id() -> str:
    return str(uuid.uuid4())


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC3339 UTC string (as written by to_dict) into an aware datetime."""
    if value is None:
        return None
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        raise ValueError(f"timestamp without timezone: {value}")
    return dt


def _dump_timestamp(value: Optional[datetime]) -> Optional[str]:
    return format_timestamp(value) if value is not None else None


def _freeze(attributes: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    return MappingProxyType(dict(attributes or {}))


def _require_text(value: Any, name: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} must be a non-empty string")


@dataclass(frozen=True)
class SubjectIdentity:
    """
    The signer.

    `attributes` carries optional business fields such as cpf, email,
    setor, funcao or empresa. A key that is absent and a key mapped to
    None encode differently.
    """
    name: str
    identifier: str
    role: Optional[str] = None
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        _require_text(self.name, "subject.name")
        _require_text(self.identifier, "subject.identifier")
        object.__setattr__(self, "attributes", _freeze(self.attributes))

    def canonical_fields(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "identifier": self.identifier,
            "role": self.role,
            "attributes": dict(self.attributes),
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.canonical_fields()
        data["attributes"] = canonical_value(data["attributes"])
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubjectIdentity":
        return cls(
            name=data["name"],
            identifier=data["identifier"],
            role=data.get("role"),
            attributes=data.get("attributes") or {},
        )


@dataclass(frozen=True)
class Claim:
    """What is being attested: item, quantity and reason."""
    item: str
    quantity: Any
    reason: Optional[str] = None
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        _require_text(self.item, "claim.item")
        object.__setattr__(self, "attributes", _freeze(self.attributes))

    def canonical_fields(self) -> Dict[str, Any]:
        return {
            "item": self.item,
            "quantity": self.quantity,
            "reason": self.reason,
            "attributes": dict(self.attributes),
        }

    def to_dict(self) -> Dict[str, Any]:
        return canonical_value(self.canonical_fields())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Claim":
        return cls(
            item=data["item"],
            quantity=data["quantity"],
            reason=data.get("reason"),
            attributes=data.get("attributes") or {},
        )


@dataclass(frozen=True)
class GeoLocation:
    latitude: float
    longitude: float
    accuracy: Optional[float] = None

    def __post_init__(self):
        if not -90 <= self.latitude <= 90:
            raise ValueError(f"latitude out of range: {self.latitude}")
        if not -180 <= self.longitude <= 180:
            raise ValueError(f"longitude out of range: {self.longitude}")
        if self.accuracy is not None and self.accuracy < 0:
            raise ValueError(f"accuracy must be >= 0: {self.accuracy}")

    def canonical_fields(self) -> Dict[str, Any]:
        return {
            "latitude": fixed_decimal(self.latitude, COORDINATE_QUANTUM),
            "longitude": fixed_decimal(self.longitude, COORDINATE_QUANTUM),
            "accuracy": (
                fixed_decimal(self.accuracy, ACCURACY_QUANTUM)
                if self.accuracy is not None else None
            ),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {"latitude": self.latitude, "longitude": self.longitude, "accuracy": self.accuracy}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GeoLocation":
        return cls(
            latitude=data["latitude"],
            longitude=data["longitude"],
            accuracy=data.get("accuracy"),
        )


@dataclass(frozen=True)
class CaptureContext:
    """Capture-time metadata. `captured_at` is required before commit."""
    captured_at: Optional[datetime] = None
    network_origin: Optional[str] = None
    device: Optional[str] = None
    geolocation: Optional[GeoLocation] = None
    terms_version: Optional[str] = None

    def canonical_fields(self) -> Dict[str, Any]:
        return {
            "captured_at": self.captured_at,
            "network_origin": self.network_origin,
            "device": self.device,
            "geolocation": self.geolocation.canonical_fields() if self.geolocation else None,
            "terms_version": self.terms_version,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "captured_at": _dump_timestamp(self.captured_at),
            "network_origin": self.network_origin,
            "device": self.device,
            "geolocation": self.geolocation.to_dict() if self.geolocation else None,
            "terms_version": self.terms_version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CaptureContext":
        geo = data.get("geolocation")
        return cls(
            captured_at=parse_timestamp(data.get("captured_at")),
            network_origin=data.get("network_origin"),
            device=data.get("device"),
            geolocation=GeoLocation.from_dict(geo) if geo else None,
            terms_version=data.get("terms_version"),
        )


@dataclass(frozen=True)
class EvidenceBlob:
    """
    Binary attachment (selfie, signature trace) with a declared ceiling.

    Construction fails with EvidenceTooLargeError when data exceeds
    max_bytes; nothing is truncated.
    """
    kind: str
    data: bytes
    media_type: str
    max_bytes: int
    captured_at: Optional[datetime] = None

    def __post_init__(self):
        _require_text(self.kind, "evidence.kind")
        _require_text(self.media_type, "evidence.media_type")
        if isinstance(self.data, bytearray):
            object.__setattr__(self, "data", bytes(self.data))
        if not isinstance(self.data, bytes):
            raise TypeError(f"evidence data must be bytes, got {type(self.data).__name__}")
        if isinstance(self.max_bytes, bool) or not isinstance(self.max_bytes, int) or self.max_bytes <= 0:
            raise ValueError(f"max_bytes must be a positive integer: {self.max_bytes!r}")
        check_evidence_size(self)

    @property
    def size(self) -> int:
        return len(self.data)

    def canonical_fields(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "media_type": self.media_type,
            "max_bytes": self.max_bytes,
            "size": self.size,
            "sha256": content_hash(self.data),
            "captured_at": self.captured_at,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "media_type": self.media_type,
            "max_bytes": self.max_bytes,
            "captured_at": _dump_timestamp(self.captured_at),
            "data_b64": base64.b64encode(self.data).decode("ascii"),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EvidenceBlob":
        return cls(
            kind=data["kind"],
            data=base64.b64decode(data["data_b64"]),
            media_type=data["media_type"],
            max_bytes=data["max_bytes"],
            captured_at=parse_timestamp(data.get("captured_at")),
        )


def check_evidence_size(blob: EvidenceBlob) -> None:
    if len(blob.data) > blob.max_bytes:
        raise EvidenceTooLargeError(
            f"{blob.kind} evidence is {len(blob.data)} bytes, ceiling is {blob.max_bytes}",
            {"kind": blob.kind, "size": len(blob.data), "max_bytes": blob.max_bytes},
        )


@dataclass(frozen=True)
class Seal:
    """Ed25519 signature over a record digest."""
    kid: str
    sig_b64: str
    alg: str = "ed25519"

    def to_dict(self) -> Dict[str, Any]:
        return {"kid": self.kid, "alg": self.alg, "sig_b64": self.sig_b64}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Seal":
        return cls(kid=data["kid"], sig_b64=data["sig_b64"], alg=data.get("alg", "ed25519"))


@dataclass
class EvidentiaryRecord:
    """
    Tamper-evident record of a consent/approval event.

    `digest` is declared last so that constructing an already committed
    record (from storage) assigns every other field before the record
    locks.
    """
    id: str = field(default_factory=new_record_id)
    subject: Optional[SubjectIdentity] = None
    claim: Optional[Claim] = None
    context: Optional[CaptureContext] = None
    evidence: Tuple[EvidenceBlob, ...] = ()
    supersedes: Optional[str] = None
    digest_algorithm: Optional[str] = None
    committed_at: Optional[datetime] = None
    seal: Optional[Seal] = None
    digest: Optional[str] = None

    def __post_init__(self):
        _require_text(self.id, "id")
        if not isinstance(self.evidence, tuple):
            object.__setattr__(self, "evidence", tuple(self.evidence))

    def __setattr__(self, name: str, value: Any) -> None:
        if self.__dict__.get("digest") is not None:
            raise AlreadyCommittedError(
                f"record {self.id} is committed; field {name!r} cannot change",
                {"id": self.id, "field": name},
            )
        super().__setattr__(name, value)

    @property
    def state(self) -> RecordState:
        return RecordState.COMMITTED if self.digest is not None else RecordState.OPEN

    @property
    def is_committed(self) -> bool:
        return self.digest is not None

    def attach(self, blob: EvidenceBlob) -> None:
        """Append an evidence blob (OPEN records only)."""
        self.evidence = self.evidence + (blob,)

    def capture_timestamps(self) -> Tuple[datetime, ...]:
        stamps = []
        if self.context is not None and self.context.captured_at is not None:
            stamps.append(self.context.captured_at)
        stamps.extend(b.captured_at for b in self.evidence if b.captured_at is not None)
        return tuple(stamps)

    def _seal_fields(
        self,
        digest: str,
        committed_at: datetime,
        seal: Optional[Seal],
        digest_algorithm: Optional[str] = None,
    ) -> None:
        # digest goes last: once it is set the record refuses assignment
        if digest_algorithm is not None:
            object.__setattr__(self, "digest_algorithm", digest_algorithm)
        object.__setattr__(self, "committed_at", committed_at)
        object.__setattr__(self, "seal", seal)
        object.__setattr__(self, "digest", digest)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "subject": self.subject.to_dict() if self.subject else None,
            "claim": self.claim.to_dict() if self.claim else None,
            "context": self.context.to_dict() if self.context else None,
            "evidence": [b.to_dict() for b in self.evidence],
            "supersedes": self.supersedes,
            "digest_algorithm": self.digest_algorithm,
            "digest": self.digest,
            "committed_at": _dump_timestamp(self.committed_at),
            "seal": self.seal.to_dict() if self.seal else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EvidentiaryRecord":
        """Rebuild a record (OPEN or COMMITTED) from its to_dict() form."""
        if "id" not in data:
            raise ValueError("Missing required field: id")
        subject = data.get("subject")
        claim = data.get("claim")
        context = data.get("context")
        seal = data.get("seal")
        return cls(
            id=data["id"],
            subject=SubjectIdentity.from_dict(subject) if subject else None,
            claim=Claim.from_dict(claim) if claim else None,
            context=CaptureContext.from_dict(context) if context else None,
            evidence=tuple(EvidenceBlob.from_dict(b) for b in data.get("evidence") or []),
            supersedes=data.get("supersedes"),
            digest_algorithm=data.get("digest_algorithm"),
            committed_at=parse_timestamp(data.get("committed_at")),
            seal=Seal.from_dict(seal) if seal else None,
            digest=data.get("digest"),
        )
