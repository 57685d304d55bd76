import base64
import binascii
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .record import CaptureContext, Claim, GeoLocation, SubjectIdentity


class SubjectIn(BaseModel):
    name: str = Field(min_length=1)
    identifier: str = Field(min_length=1)
    role: Optional[str] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)

    def to_domain(self) -> SubjectIdentity:
        return SubjectIdentity(self.name, self.identifier, self.role, self.attributes)


class ClaimIn(BaseModel):
    item: str = Field(min_length=1)
    quantity: int = Field(ge=1)
    reason: Optional[str] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)

    def to_domain(self) -> Claim:
        return Claim(self.item, self.quantity, self.reason, self.attributes)


class GeoLocationIn(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    accuracy: Optional[float] = Field(default=None, ge=0)


class ContextIn(BaseModel):
    captured_at: datetime
    network_origin: Optional[str] = None
    device: Optional[str] = None
    geolocation: Optional[GeoLocationIn] = None
    terms_version: Optional[str] = None

    def to_domain(self) -> CaptureContext:
        geo = self.geolocation
        return CaptureContext(
            captured_at=self.captured_at,
            network_origin=self.network_origin,
            device=self.device,
            geolocation=GeoLocation(geo.latitude, geo.longitude, geo.accuracy) if geo else None,
            terms_version=self.terms_version,
        )


class EvidenceIn(BaseModel):
    kind: str = Field(min_length=1)
    media_type: str = Field(min_length=1)
    data_b64: str
    captured_at: Optional[datetime] = None
    max_bytes: Optional[int] = Field(default=None, ge=1)

    def decode(self) -> bytes:
        """Decode base64, accepting browser data URLs ("data:image/png;base64,...")."""
        payload = self.data_b64
        if payload.startswith("data:") and "," in payload:
            payload = payload.split(",", 1)[1]
        try:
            return base64.b64decode(payload, validate=True)
        except binascii.Error as e:
            raise ValueError(f"{self.kind}: invalid base64 evidence") from e


class RecordRequest(BaseModel):
    subject: SubjectIn
    claim: ClaimIn
    context: ContextIn
    evidence: List[EvidenceIn] = Field(default_factory=list)
    supersedes: Optional[str] = None
    digest_algorithm: Optional[str] = None


class RecordSummary(BaseModel):
    id: str
    state: str
    digest: str
    digest_algorithm: str
    committed_at: str
    supersedes: Optional[str] = None
    sealed: bool = False
