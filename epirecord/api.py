"""
HTTP API for evidentiary records.

The record id is the idempotency key: re-sending an identical PUT returns
the stored record, a different record under an existing id is a 409.

Run with: uvicorn epirecord.api:create_app --factory
"""

from typing import Optional

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from .capture import attach_evidence, open_record
from .committer import commit
from .config import Settings, load_settings
from .errors import DuplicateIdError, RecordError
from .export import EN_LABELS, PT_BR_LABELS, export_view
from .hashing import digests_equal
from .logging_config import audit_log, set_request_id
from .models import RecordRequest, RecordSummary
from .pdf import render_pdf
from .record import EvidentiaryRecord
from .signing import FileKeyProvider, KeyProvider
from .store import RecordStore, get_record_store
from .verifier import RecordVerifier

STATUS_BY_CODE = {
    "ENCODING_ERROR": 422,
    "INCOMPLETE_RECORD": 422,
    "UNSUPPORTED_ALGORITHM": 422,
    "ALREADY_COMMITTED": 409,
    "DUPLICATE_ID": 409,
    "NOT_COMMITTED": 409,
    "NOT_FOUND": 404,
    "EVIDENCE_TOO_LARGE": 413,
    "STORE_TIMEOUT": 503,
}

LABEL_SETS = {"en": EN_LABELS, "pt-BR": PT_BR_LABELS}


def _summary(record: EvidentiaryRecord) -> RecordSummary:
    data = record.to_dict()
    return RecordSummary(
        id=record.id,
        state=record.state.value,
        digest=record.digest,
        digest_algorithm=record.digest_algorithm,
        committed_at=data["committed_at"],
        supersedes=record.supersedes,
        sealed=record.seal is not None,
    )


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[RecordStore] = None,
    signer: Optional[KeyProvider] = None,
) -> FastAPI:
    """
    Build the API around an explicitly passed store and signer.

    Missing collaborators are built from settings.
    """
    settings = settings or load_settings()
    if store is None:
        store = get_record_store(settings)
    if signer is None and settings.seal_key_path:
        signer = FileKeyProvider(settings.seal_key_path)
    verifier = RecordVerifier(trust_store=signer.trust_store() if signer else None)

    app = FastAPI(title="epirecord")
    app.state.settings = settings
    app.state.store = store
    app.state.signer = signer

    @app.middleware("http")
    async def _request_id(request: Request, call_next):
        rid = set_request_id(request.headers.get("x-request-id"))
        response = await call_next(request)
        response.headers["x-request-id"] = rid
        return response

    @app.exception_handler(RecordError)
    async def _record_error(request: Request, exc: RecordError):
        return JSONResponse(status_code=STATUS_BY_CODE.get(exc.code, 400), content=exc.to_dict())

    @app.put("/records/{record_id}", response_model=RecordSummary)
    def put_record(record_id: str, req: RecordRequest, response: Response):
        try:
            record = open_record(
                req.subject.to_domain(),
                req.claim.to_domain(),
                req.context.to_domain(),
                record_id=record_id,
                supersedes=req.supersedes,
                digest_algorithm=req.digest_algorithm,
            )
            for ev in req.evidence:
                attach_evidence(
                    record,
                    ev.kind,
                    ev.decode(),
                    ev.media_type,
                    max_bytes=ev.max_bytes,
                    captured_at=ev.captured_at or req.context.captured_at,
                    settings=settings,
                )
        except (ValueError, TypeError) as e:
            raise HTTPException(422, str(e))

        commit(record, algorithm=settings.digest_algorithm, signer=signer)
        try:
            store.put(record)
        except DuplicateIdError:
            existing = store.get(record_id)
            if not digests_equal(existing.digest, record.digest):
                raise
            response.status_code = 200
            return _summary(existing)
        response.status_code = 201
        return _summary(record)

    @app.get("/records/{record_id}")
    def get_record(record_id: str):
        return store.get(record_id).to_dict()

    @app.get("/records/{record_id}/corrections")
    def get_corrections(record_id: str):
        store.get(record_id)
        return {"id": record_id, "superseded_by": store.superseded_by(record_id)}

    @app.post("/records/{record_id}/verify")
    def verify_record(record_id: str):
        return verifier.verify(store.get(record_id)).to_dict()

    @app.get("/records/{record_id}/export")
    def export_record(record_id: str, lang: str = "en"):
        labels = LABEL_SETS.get(lang)
        if labels is None:
            raise HTTPException(400, f"unsupported language: {lang}")
        view = export_view(store.get(record_id), labels)
        audit_log.record_exported(record_id, "json")
        return view.to_dict()

    @app.get("/records/{record_id}/receipt.pdf")
    def export_pdf(record_id: str, lang: str = "pt-BR"):
        labels = LABEL_SETS.get(lang)
        if labels is None:
            raise HTTPException(400, f"unsupported language: {lang}")
        pdf = render_pdf(export_view(store.get(record_id), labels))
        audit_log.record_exported(record_id, "pdf")
        return Response(
            content=pdf,
            media_type="application/pdf",
            headers={"Content-Disposition": f'inline; filename="comprovante-{record_id[:8]}.pdf"'},
        )

    return app
