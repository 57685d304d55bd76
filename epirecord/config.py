"""
Configuration module for epirecord.

Centralizes configuration with environment variable support.
Module-level constants are read once at import; load_settings()
takes a fresh snapshot that callers pass explicitly to stores
and the API.
"""

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Optional

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("EPIRECORD_ENV", "dev")  # dev|stage|prod

# Digest algorithm used when a record does not declare one
DEFAULT_DIGEST_ALGORITHM = os.getenv("EPIRECORD_DIGEST_ALGORITHM", "sha256")

# Evidence ceilings (bytes)
MAX_SELFIE_BYTES = int(os.getenv("EPIRECORD_MAX_SELFIE_BYTES", str(500 * 1024)))
MAX_SIGNATURE_BYTES = int(os.getenv("EPIRECORD_MAX_SIGNATURE_BYTES", str(200 * 1024)))
MAX_EVIDENCE_BYTES = int(os.getenv("EPIRECORD_MAX_EVIDENCE_BYTES", str(1024 * 1024)))

# Storage
STORE_BACKEND = os.getenv("EPIRECORD_STORE", "sqlite")  # memory|sqlite|s3_object_lock
DB_PATH = os.getenv("EPIRECORD_DB_PATH", "data/epirecord.db")
STORE_TIMEOUT = float(os.getenv("EPIRECORD_STORE_TIMEOUT", "5.0"))

S3_BUCKET = os.getenv("EPIRECORD_S3_BUCKET", "")
S3_PREFIX = os.getenv("EPIRECORD_S3_PREFIX", "epirecord/records/")
S3_RETENTION_DAYS = int(os.getenv("EPIRECORD_S3_RETENTION_DAYS", str(5 * 365)))
AWS_REGION = os.getenv("AWS_REGION", "")

# Sealing
SEAL_KEY_PATH = os.getenv("EPIRECORD_SEAL_KEY_PATH", "")

# Logging
LOG_LEVEL = os.getenv("EPIRECORD_LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("EPIRECORD_LOG_JSON", "1").lower() in ("1", "true", "yes")


class EvidenceKind:
    SELFIE = "selfie"
    SIGNATURE = "signature"
    DOCUMENT = "document"


@dataclass(frozen=True)
class Settings:
    """Immutable configuration snapshot."""
    env: str = ENV
    digest_algorithm: str = DEFAULT_DIGEST_ALGORITHM
    max_selfie_bytes: int = MAX_SELFIE_BYTES
    max_signature_bytes: int = MAX_SIGNATURE_BYTES
    max_evidence_bytes: int = MAX_EVIDENCE_BYTES
    store_backend: str = STORE_BACKEND
    db_path: str = DB_PATH
    store_timeout: float = STORE_TIMEOUT
    s3_bucket: str = S3_BUCKET
    s3_prefix: str = S3_PREFIX
    s3_retention_days: int = S3_RETENTION_DAYS
    aws_region: str = AWS_REGION
    seal_key_path: str = SEAL_KEY_PATH
    log_level: str = LOG_LEVEL
    log_json: bool = LOG_JSON

    def with_overrides(self, **overrides) -> "Settings":
        return replace(self, **overrides)

    def ceiling_for(self, kind: str) -> int:
        """Default size ceiling for an evidence kind."""
        return {
            EvidenceKind.SELFIE: self.max_selfie_bytes,
            EvidenceKind.SIGNATURE: self.max_signature_bytes,
        }.get(kind, self.max_evidence_bytes)


def load_settings(environ: Optional[Dict[str, str]] = None) -> Settings:
    """
    Build a Settings snapshot from the environment.

    Args:
        environ: Mapping to read from (default: os.environ)
    """
    env = os.environ if environ is None else environ
    return Settings(
        env=env.get("EPIRECORD_ENV", "dev"),
        digest_algorithm=env.get("EPIRECORD_DIGEST_ALGORITHM", "sha256"),
        max_selfie_bytes=int(env.get("EPIRECORD_MAX_SELFIE_BYTES", str(500 * 1024))),
        max_signature_bytes=int(env.get("EPIRECORD_MAX_SIGNATURE_BYTES", str(200 * 1024))),
        max_evidence_bytes=int(env.get("EPIRECORD_MAX_EVIDENCE_BYTES", str(1024 * 1024))),
        store_backend=env.get("EPIRECORD_STORE", "sqlite"),
        db_path=env.get("EPIRECORD_DB_PATH", "data/epirecord.db"),
        store_timeout=float(env.get("EPIRECORD_STORE_TIMEOUT", "5.0")),
        s3_bucket=env.get("EPIRECORD_S3_BUCKET", ""),
        s3_prefix=env.get("EPIRECORD_S3_PREFIX", "epirecord/records/"),
        s3_retention_days=int(env.get("EPIRECORD_S3_RETENTION_DAYS", str(5 * 365))),
        aws_region=env.get("AWS_REGION", ""),
        seal_key_path=env.get("EPIRECORD_SEAL_KEY_PATH", ""),
        log_level=env.get("EPIRECORD_LOG_LEVEL", "INFO"),
        log_json=env.get("EPIRECORD_LOG_JSON", "1").lower() in ("1", "true", "yes"),
    )


# ============================================================
# Validation
# ============================================================

def validate_config(settings: Optional[Settings] = None) -> Dict[str, bool]:
    """
    Check that configured files and backends are usable.
    Returns dict of check name -> ok.
    """
    settings = settings or load_settings()
    checks = {
        "store_backend": settings.store_backend in ("memory", "sqlite", "s3_object_lock"),
    }
    if settings.store_backend == "s3_object_lock":
        checks["s3_bucket"] = bool(settings.s3_bucket)
    if settings.seal_key_path:
        checks["seal_key"] = Path(settings.seal_key_path).exists()
    return checks

