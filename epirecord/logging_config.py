"""
Structured logging for epirecord.

Audit events go to the "epirecord.audit" logger as JSON lines, each one
tagged with the request id of the HTTP call (or CLI run) that caused it.
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, TextIO

request_id_var: ContextVar[str] = ContextVar("epirecord_request_id", default="")


class StructuredFormatter(logging.Formatter):
    """One JSON object per line; audit fields are merged at top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        rid = request_id_var.get()
        if rid:
            entry["request_id"] = rid
        entry.update(getattr(record, "audit", None) or {})
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


class AuditLogger:
    """
    Typed lifecycle events for evidentiary records.

    Each event has an upper-case event_type; record events carry record_id.
    """

    def __init__(self, name: str = "epirecord.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, message: str = "", **fields: Any) -> None:
        if not self._logger.isEnabledFor(level):
            return
        audit = {"event_type": event_type, "request_id": request_id_var.get(), **fields}
        # stacklevel 3 points location at the caller of the typed method
        self._logger.log(level, f"{event_type}: {message}", extra={"audit": audit}, stacklevel=3)

    def record_opened(self, record_id: str, supersedes: Optional[str] = None) -> None:
        self._log(
            logging.DEBUG,
            "RECORD_OPENED",
            record_id=record_id,
            supersedes=supersedes,
            message=f"Record {record_id} opened",
        )

    def record_committed(self, record_id: str, digest: str, sealed: bool) -> None:
        self._log(
            logging.INFO,
            "RECORD_COMMITTED",
            record_id=record_id,
            digest=digest,
            sealed=sealed,
            message=f"Record {record_id} committed",
        )

    def record_stored(self, record_id: str, backend: str) -> None:
        self._log(
            logging.INFO,
            "RECORD_STORED",
            record_id=record_id,
            backend=backend,
            message=f"Record {record_id} stored in {backend}",
        )

    def duplicate_rejected(self, record_id: str, backend: str) -> None:
        self._log(
            logging.WARNING,
            "DUPLICATE_REJECTED",
            record_id=record_id,
            backend=backend,
            message=f"Duplicate put for {record_id}",
        )

    def evidence_rejected(self, kind: str, size: int, max_bytes: int) -> None:
        self._log(
            logging.WARNING,
            "EVIDENCE_REJECTED",
            kind=kind,
            size=size,
            max_bytes=max_bytes,
            message=f"{kind} evidence over ceiling ({size} > {max_bytes})",
        )

    def verification_result(
        self,
        record_id: str,
        valid: bool,
        outcome: str,
        reason: Optional[str] = None,
    ) -> None:
        """Invalid results are logged at WARNING for escalation."""
        self._log(
            logging.INFO if valid else logging.WARNING,
            "VERIFICATION_RESULT",
            record_id=record_id,
            valid=valid,
            outcome=outcome,
            reason=reason,
            message=f"Verification {outcome} for {record_id}",
        )

    def record_exported(self, record_id: str, fmt: str) -> None:
        self._log(
            logging.INFO,
            "RECORD_EXPORTED",
            record_id=record_id,
            format=fmt,
            message=f"Record {record_id} exported as {fmt}",
        )



def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Replace root handlers with a console handler (and optionally a file).

    Args:
        level: Level name, e.g. "INFO" or "WARNING"
        json_format: JSON lines when True, plain text otherwise
        log_file: Also append to this file
        stream: Console stream (default: the current sys.stdout)
    """
    if json_format:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")

    handlers: List[logging.Handler] = [logging.StreamHandler(stream or sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=level.upper(), handlers=handlers, force=True)


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind a request id (generated when absent) to the current context."""
    request_id = request_id or uuid.uuid4().hex
    request_id_var.set(request_id)
    return request_id


def get_request_id() -> str:
    return request_id_var.get()


audit_log = AuditLogger()
