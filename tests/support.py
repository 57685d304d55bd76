"""Shared builders for the test suite."""

from datetime import datetime, timedelta, timezone

from epirecord import (
    CaptureContext,
    Claim,
    EvidenceBlob,
    EvidentiaryRecord,
    GeoLocation,
    SubjectIdentity,
    commit,
)

CAPTURED_AT = datetime(2026, 2, 20, 8, 30, tzinfo=timezone.utc)
COMMITTED_AT = CAPTURED_AT + timedelta(seconds=5)

# build_record() with sha256; never changes for "epirecord/1"
GOLDEN_CANONICAL = (
    '{"claim":{"attributes":{},"item":"Luva Nitrílica","quantity":2,"reason":null},'
    '"context":{"captured_at":"2026-02-20T08:30:00.000000Z","device":null,"geolocation":null,'
    '"network_origin":null,"terms_version":null},"digest_algorithm":"sha256",'
    '"encoding":"epirecord/1","evidence":[],"id":"rec-0001",'
    '"subject":{"attributes":{},"identifier":"MAT-004","name":"Ana Souza","role":null},'
    '"supersedes":null}'
)
GOLDEN_DIGEST = "sha256:36a7877ce982f87cd3afe39bca6bb0700ed4a3072e312dc465a06ab43991dae5"

# 1x1 transparent PNG
PNG_1X1 = bytes.fromhex(
    "89504e470d0a1a0a0000000d49484452000000010000000108060000001f15c489"
    "0000000d49444154789c6360000002000001e221bc330000000049454e44ae426082"
)


def build_record(record_id="rec-0001", quantity=2, with_evidence=False, **overrides) -> EvidentiaryRecord:
    """An OPEN record for the Ana Souza / Luva Nitrílica scenario."""
    fields = dict(
        id=record_id,
        subject=SubjectIdentity(name="Ana Souza", identifier="MAT-004"),
        claim=Claim(item="Luva Nitrílica", quantity=quantity),
        context=CaptureContext(captured_at=CAPTURED_AT),
    )
    fields.update(overrides)
    record = EvidentiaryRecord(**fields)
    if with_evidence:
        record.attach(EvidenceBlob("signature", PNG_1X1, "image/png", 1024, CAPTURED_AT))
        record.attach(EvidenceBlob("selfie", b"\xff\xd8fake-jpeg\xff\xd9", "image/jpeg", 1024, CAPTURED_AT))
    return record


def build_full_record(record_id="rec-full") -> EvidentiaryRecord:
    """An OPEN record with every optional field populated."""
    return build_record(
        record_id=record_id,
        with_evidence=True,
        subject=SubjectIdentity(
            name="Ana Souza",
            identifier="MAT-004",
            role="Operadora",
            attributes={"cpf": "123.456.789-00", "setor": "Produção", "email": None},
        ),
        claim=Claim(
            item="Luva Nitrílica",
            quantity=2,
            reason="Substituição",
            attributes={"ca": "CA-12345"},
        ),
        context=CaptureContext(
            captured_at=CAPTURED_AT,
            network_origin="203.0.113.7",
            device="Mozilla/5.0 (Linux; Android 14)",
            geolocation=GeoLocation(-23.5505199, -46.6333094, 12.5),
            terms_version="2.0",
        ),
    )


def committed_record(**kwargs) -> EvidentiaryRecord:
    return commit(build_record(**kwargs), now=COMMITTED_AT)
