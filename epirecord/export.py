"""
Export adapter: projects a committed record into a rendering-ready view.

The view is an ordered list of (label, value) pairs plus the digest and
its algorithm. Values are passed through exactly as stored; formatting is
the renderer's job.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .canonicalization import canonical_value
from .errors import NotCommittedError
from .record import EvidentiaryRecord

EN_LABELS: Dict[str, str] = {
    "title": "Equipment Receipt",
    "record_id": "Record",
    "subject.name": "Name",
    "subject.identifier": "Employee ID",
    "subject.role": "Role",
    "claim.item": "Item",
    "claim.quantity": "Quantity",
    "claim.reason": "Reason",
    "context.captured_at": "Signed at",
    "context.network_origin": "Network origin",
    "context.device": "Device",
    "context.geolocation": "Geolocation",
    "context.terms_version": "Terms version",
    "supersedes": "Supersedes",
    "committed_at": "Committed at",
    "digest": "Digest",
    "digest_algorithm": "Algorithm",
}

# Labels of the original receipt ("comprovante")
PT_BR_LABELS: Dict[str, str] = {
    "title": "Comprovante de Entrega de EPI",
    "record_id": "Registro",
    "subject.name": "Nome",
    "subject.identifier": "Matrícula",
    "subject.role": "Função",
    "subject.attributes.setor": "Setor",
    "subject.attributes.empresa": "Revenda",
    "subject.attributes.cpf": "CPF",
    "subject.attributes.email": "E-mail",
    "claim.item": "Produto",
    "claim.attributes.ca": "C.A.",
    "claim.quantity": "Quantidade",
    "claim.reason": "Motivo",
    "claim.attributes.observacao": "Observação",
    "context.captured_at": "Assinado em",
    "context.network_origin": "IP de origem",
    "context.device": "Dispositivo",
    "context.geolocation": "Geolocalização",
    "context.terms_version": "Versão do termo",
    "supersedes": "Substitui",
    "committed_at": "Registrado em",
    "digest": "Hash",
    "digest_algorithm": "Algoritmo",
}


@dataclass(frozen=True)
class EvidenceView:
    kind: str
    media_type: str
    data: bytes


@dataclass(frozen=True)
class ExportView:
    record_id: str
    title: str
    fields: Tuple[Tuple[str, Any], ...]
    digest: str
    digest_algorithm: str
    committed_at: datetime
    digest_label: str = "Digest"
    algorithm_label: str = "Algorithm"
    evidence: Tuple[EvidenceView, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready form (values in canonical JSON representation)."""
        return {
            "record_id": self.record_id,
            "title": self.title,
            "fields": [{"label": label, "value": _json_value(value)} for label, value in self.fields],
            "digest": self.digest,
            "digest_algorithm": self.digest_algorithm,
            "committed_at": canonical_value(self.committed_at),
            "evidence": [{"kind": e.kind, "media_type": e.media_type, "size": len(e.data)} for e in self.evidence],
        }


def _json_value(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        value = value.to_dict()
    return canonical_value(value)


def _label(labels: Mapping[str, str], key: str) -> str:
    return labels.get(key) or EN_LABELS.get(key) or key.rsplit(".", 1)[-1]


def export_view(record: EvidentiaryRecord, labels: Optional[Mapping[str, str]] = None) -> ExportView:
    """
    Project a committed record into an ExportView.

    Field order: record id, subject, subject attributes, claim, claim
    attributes, capture context, supersedes. Attribute entries keep
    their insertion order.

    Raises:
        NotCommittedError: record is OPEN
    """
    if not record.is_committed:
        raise NotCommittedError(f"record {record.id} is not committed", {"id": record.id})

    labels = labels if labels is not None else EN_LABELS
    pairs: List[Tuple[str, Any]] = [(_label(labels, "record_id"), record.id)]

    subject = record.subject
    pairs.append((_label(labels, "subject.name"), subject.name))
    pairs.append((_label(labels, "subject.identifier"), subject.identifier))
    if subject.role is not None:
        pairs.append((_label(labels, "subject.role"), subject.role))
    for key, value in subject.attributes.items():
        pairs.append((_label(labels, f"subject.attributes.{key}"), value))

    claim = record.claim
    pairs.append((_label(labels, "claim.item"), claim.item))
    pairs.append((_label(labels, "claim.quantity"), claim.quantity))
    if claim.reason is not None:
        pairs.append((_label(labels, "claim.reason"), claim.reason))
    for key, value in claim.attributes.items():
        pairs.append((_label(labels, f"claim.attributes.{key}"), value))

    ctx = record.context
    pairs.append((_label(labels, "context.captured_at"), ctx.captured_at))
    for key in ("network_origin", "device", "geolocation", "terms_version"):
        value = getattr(ctx, key)
        if value is not None:
            pairs.append((_label(labels, f"context.{key}"), value))

    if record.supersedes is not None:
        pairs.append((_label(labels, "supersedes"), record.supersedes))

    return ExportView(
        record_id=record.id,
        title=_label(labels, "title"),
        fields=tuple(pairs),
        digest=record.digest,
        digest_algorithm=record.digest_algorithm,
        committed_at=record.committed_at,
        digest_label=_label(labels, "digest"),
        algorithm_label=_label(labels, "digest_algorithm"),
        evidence=tuple(EvidenceView(b.kind, b.media_type, b.data) for b in record.evidence),
    )
