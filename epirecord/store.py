"""
Write-once record storage.

put() accepts committed records only and never overwrites; there is no
update or delete. Concurrent puts for one id are linearizable: exactly
one succeeds, the others raise DuplicateIdError.

Backends:
- InMemoryRecordStore: dict guarded by a lock
- SqliteRecordStore: PRIMARY KEY insert, thread-local connections
- S3ObjectLockRecordStore: conditional create with Object Lock retention
"""

import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from .config import Settings
from .errors import DuplicateIdError, NotCommittedError, NotFoundError, StoreTimeoutError
from .logging_config import audit_log
from .record import EvidentiaryRecord


class RecordStore(ABC):
    """
    Abstract write-once store.

    `timeout` arguments are seconds; None means the store's default.
    """

    backend = "abstract"

    def __init__(self, default_timeout: Optional[float] = None):
        self.default_timeout = default_timeout

    def _timeout(self, timeout: Optional[float]) -> Optional[float]:
        return self.default_timeout if timeout is None else timeout

    def put(self, record: EvidentiaryRecord, timeout: Optional[float] = None) -> None:
        """
        Store a committed record.

        Raises:
            NotCommittedError: record has no digest
            NotFoundError: record.supersedes names an unknown id
            DuplicateIdError: id already stored
            StoreTimeoutError: I/O did not finish within timeout
        """
        if not record.is_committed:
            raise NotCommittedError(f"record {record.id} is not committed", {"id": record.id})
        if record.supersedes is not None and not self.exists(record.supersedes, timeout):
            raise NotFoundError(
                f"superseded record {record.supersedes} not found",
                {"id": record.id, "supersedes": record.supersedes},
            )
        try:
            self._insert(record, self._timeout(timeout))
        except DuplicateIdError:
            audit_log.duplicate_rejected(record.id, self.backend)
            raise
        audit_log.record_stored(record.id, self.backend)

    @abstractmethod
    def _insert(self, record: EvidentiaryRecord, timeout: Optional[float]) -> None:
        """Atomically insert; raise DuplicateIdError if the id exists."""

    @abstractmethod
    def get(self, record_id: str, timeout: Optional[float] = None) -> EvidentiaryRecord:
        """Return the stored record or raise NotFoundError."""

    @abstractmethod
    def exists(self, record_id: str, timeout: Optional[float] = None) -> bool:
        pass

    @abstractmethod
    def superseded_by(self, record_id: str, timeout: Optional[float] = None) -> List[str]:
        """Ids of records that declare they supersede `record_id`."""

    @abstractmethod
    def ids(self, timeout: Optional[float] = None) -> List[str]:
        pass


def _not_found(record_id: str) -> NotFoundError:
    return NotFoundError(f"record {record_id} not found", {"id": record_id})


def _duplicate(record_id: str) -> DuplicateIdError:
    return DuplicateIdError(f"record {record_id} already exists", {"id": record_id})


# ============================================================
# In-memory
# ============================================================

class InMemoryRecordStore(RecordStore):
    backend = "memory"

    def __init__(self, default_timeout: Optional[float] = None):
        super().__init__(default_timeout)
        self._records: Dict[str, EvidentiaryRecord] = {}
        self._lock = threading.Lock()

    @contextmanager
    def _locked(self, timeout: Optional[float]) -> Iterator[None]:
        timeout = self._timeout(timeout)
        if not self._lock.acquire(timeout=-1 if timeout is None else timeout):
            raise StoreTimeoutError("timed out waiting for record store lock", {"timeout": timeout})
        try:
            yield
        finally:
            self._lock.release()

    def _insert(self, record: EvidentiaryRecord, timeout: Optional[float]) -> None:
        with self._locked(timeout):
            if record.id in self._records:
                raise _duplicate(record.id)
            self._records[record.id] = record

    def get(self, record_id: str, timeout: Optional[float] = None) -> EvidentiaryRecord:
        with self._locked(timeout):
            record = self._records.get(record_id)
        if record is None:
            raise _not_found(record_id)
        return record

    def exists(self, record_id: str, timeout: Optional[float] = None) -> bool:
        with self._locked(timeout):
            return record_id in self._records

    def superseded_by(self, record_id: str, timeout: Optional[float] = None) -> List[str]:
        with self._locked(timeout):
            return sorted(r.id for r in self._records.values() if r.supersedes == record_id)

    def ids(self, timeout: Optional[float] = None) -> List[str]:
        with self._locked(timeout):
            return sorted(self._records)


# ============================================================
# SQLite
# ============================================================

class SqliteRecordStore(RecordStore):
    """
    SQLite-backed store.

    One connection per thread; uniqueness is enforced by the PRIMARY KEY,
    so concurrent puts from several threads or processes resolve to one
    winner. A busy database past the timeout raises StoreTimeoutError.

    ":memory:" databases are private to their connection, so that path
    uses a single connection shared by all threads under a lock.
    """

    backend = "sqlite"

    def __init__(self, db_path: str, default_timeout: Optional[float] = 5.0):
        super().__init__(default_timeout)
        self.db_path = db_path
        self._local = threading.local()
        self._shared = db_path == ":memory:"
        self._shared_conn: Optional[sqlite3.Connection] = None
        self._shared_lock = threading.RLock()
        self.init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        if not self._shared:
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
        conn.row_factory = sqlite3.Row
        return conn

    def _get_connection(self) -> sqlite3.Connection:
        if self._shared:
            if self._shared_conn is None:
                self._shared_conn = self._connect()
                # a fresh :memory: database is empty
                self._create_schema(self._shared_conn)
            return self._shared_conn
        conn = getattr(self._local, "conn", None)
        if conn is None:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            conn = self._connect()
            self._local.conn = conn
        return conn

    @contextmanager
    def _connection_lock(self, timeout: Optional[float]) -> Iterator[None]:
        if not self._shared:
            yield
            return
        if not self._shared_lock.acquire(timeout=-1 if timeout is None else timeout):
            raise StoreTimeoutError("timed out waiting for database", {"timeout": timeout})
        try:
            yield
        finally:
            self._shared_lock.release()

    @contextmanager
    def _transaction(self, timeout: Optional[float]) -> Iterator[sqlite3.Connection]:
        """
        Commit on success, roll back on failure.
        Lock contention beyond `timeout` becomes StoreTimeoutError.
        """
        with self._connection_lock(timeout):
            conn = self._get_connection()
            busy_ms = 60000 if timeout is None else int(timeout * 1000)
            conn.execute(f"PRAGMA busy_timeout = {busy_ms};")
            try:
                yield conn
                conn.commit()
            except sqlite3.OperationalError as e:
                conn.rollback()
                if "locked" in str(e) or "busy" in str(e):
                    raise StoreTimeoutError(
                        "timed out waiting for database", {"timeout": timeout, "error": str(e)}
                    ) from e
                raise
            except Exception:
                conn.rollback()
                raise

    def init_db(self) -> None:
        """Create schema. Safe to call multiple times."""
        with self._transaction(self.default_timeout) as conn:
            self._create_schema(conn)

    @staticmethod
    def _create_schema(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS evidentiary_records (
                id TEXT PRIMARY KEY,
                digest TEXT NOT NULL,
                digest_algorithm TEXT NOT NULL,
                committed_at TEXT NOT NULL,
                supersedes TEXT,
                record_json TEXT NOT NULL,
                stored_at INTEGER DEFAULT (strftime('%s', 'now'))
            );""")
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_records_supersedes
            ON evidentiary_records(supersedes);""")

    def _insert(self, record: EvidentiaryRecord, timeout: Optional[float]) -> None:
        data = record.to_dict()
        try:
            with self._transaction(timeout) as conn:
                conn.execute(
                    "INSERT INTO evidentiary_records(id, digest, digest_algorithm, committed_at, "
                    "supersedes, record_json) VALUES(?,?,?,?,?,?)",
                    (record.id, record.digest, record.digest_algorithm, data["committed_at"],
                     record.supersedes, json.dumps(data, sort_keys=True)),
                )
        except sqlite3.IntegrityError as e:
            raise _duplicate(record.id) from e

    def get(self, record_id: str, timeout: Optional[float] = None) -> EvidentiaryRecord:
        with self._transaction(self._timeout(timeout)) as conn:
            row = conn.execute(
                "SELECT record_json FROM evidentiary_records WHERE id=?", (record_id,)
            ).fetchone()
        if row is None:
            raise _not_found(record_id)
        return EvidentiaryRecord.from_dict(json.loads(row["record_json"]))

    def exists(self, record_id: str, timeout: Optional[float] = None) -> bool:
        with self._transaction(self._timeout(timeout)) as conn:
            row = conn.execute(
                "SELECT 1 FROM evidentiary_records WHERE id=?", (record_id,)
            ).fetchone()
        return row is not None

    def superseded_by(self, record_id: str, timeout: Optional[float] = None) -> List[str]:
        with self._transaction(self._timeout(timeout)) as conn:
            rows = conn.execute(
                "SELECT id FROM evidentiary_records WHERE supersedes=? ORDER BY id", (record_id,)
            ).fetchall()
        return [r["id"] for r in rows]

    def ids(self, timeout: Optional[float] = None) -> List[str]:
        with self._transaction(self._timeout(timeout)) as conn:
            rows = conn.execute("SELECT id FROM evidentiary_records ORDER BY id").fetchall()
        return [r["id"] for r in rows]

    def close_connection(self) -> None:
        """Close this thread's connection (the shared one for ":memory:")."""
        if self._shared:
            with self._shared_lock:
                if self._shared_conn is not None:
                    self._shared_conn.close()
                    self._shared_conn = None
            return
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None


# ============================================================
# S3 Object Lock
# ============================================================

TIMEOUT_BUCKETS = (0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0)


def timeout_bucket(timeout: Optional[float]) -> Optional[float]:
    """Largest bucket not above `timeout` (the smallest bucket for tiny values)."""
    if timeout is None:
        return None
    fitting = [b for b in TIMEOUT_BUCKETS if b <= timeout]
    return fitting[-1] if fitting else TIMEOUT_BUCKETS[0]


class S3ObjectLockRecordStore(RecordStore):
    """
    Each record is one immutable object under `<prefix>records/<id>.json`,
    written with IfNoneMatch="*" so S3 itself rejects a second create,
    and retained in COMPLIANCE mode.

    Requires a bucket with Object Lock enabled.
    Docs: https://docs.aws.amazon.com/AmazonS3/latest/userguide/object-lock.html
    """

    backend = "s3_object_lock"

    DUPLICATE_CODES = ("PreconditionFailed", "ConditionalRequestConflict")
    MISSING_CODES = ("NoSuchKey", "404", "NotFound")

    def __init__(
        self,
        bucket: str,
        prefix: str = "epirecord/records/",
        retention_days: int = 5 * 365,
        region: Optional[str] = None,
        legal_hold: str = "OFF",
        default_timeout: Optional[float] = 5.0,
        client=None,
    ):
        super().__init__(default_timeout)
        self.bucket = bucket
        self.prefix = prefix.rstrip("/") + "/"
        self.retention_days = retention_days
        self.region = region or None
        self.legal_hold = legal_hold
        self._client = client
        self._clients: Dict[Optional[float], object] = {}
        self._lock = threading.Lock()

    def _s3(self, timeout: Optional[float]):
        """Client for the timeout bucket covering `timeout` (lazy, cached)."""
        if self._client is not None:
            return self._client
        bucket = timeout_bucket(timeout)
        with self._lock:
            if bucket not in self._clients:
                import boto3
                from botocore.config import Config

                config = Config(retries={"max_attempts": 1})
                if bucket is not None:
                    config = config.merge(Config(connect_timeout=bucket, read_timeout=bucket))
                self._clients[bucket] = boto3.client("s3", region_name=self.region, config=config)
            return self._clients[bucket]

    def _record_key(self, record_id: str) -> str:
        return f"{self.prefix}records/{record_id}.json"

    def _supersedes_key(self, old_id: str, new_id: str) -> str:
        return f"{self.prefix}supersedes/{old_id}/{new_id}"

    @contextmanager
    def _translate_errors(self, record_id: str, timeout: Optional[float]) -> Iterator[None]:
        from botocore.exceptions import ClientError, ConnectTimeoutError, ReadTimeoutError

        try:
            yield
        except (ConnectTimeoutError, ReadTimeoutError) as e:
            raise StoreTimeoutError(
                f"S3 request for {record_id} timed out", {"id": record_id, "timeout": timeout}
            ) from e
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in self.DUPLICATE_CODES:
                raise _duplicate(record_id) from e
            if code in self.MISSING_CODES:
                raise _not_found(record_id) from e
            raise

    def _insert(self, record: EvidentiaryRecord, timeout: Optional[float]) -> None:
        s3 = self._s3(timeout)
        retain_until = datetime.now(timezone.utc) + timedelta(days=int(self.retention_days))
        body = json.dumps(record.to_dict(), sort_keys=True).encode("utf-8")
        with self._translate_errors(record.id, timeout):
            # marker before record; superseded_by ignores markers without a matching record
            if record.supersedes is not None:
                s3.put_object(
                    Bucket=self.bucket,
                    Key=self._supersedes_key(record.supersedes, record.id),
                    Body=b"",
                )
            s3.put_object(
                Bucket=self.bucket,
                Key=self._record_key(record.id),
                Body=body,
                ContentType="application/json",
                IfNoneMatch="*",
                ObjectLockMode="COMPLIANCE",
                ObjectLockRetainUntilDate=retain_until,
                ObjectLockLegalHoldStatus=self.legal_hold,
                Metadata={"digest": record.digest, "digest-algorithm": record.digest_algorithm},
            )

    def get(self, record_id: str, timeout: Optional[float] = None) -> EvidentiaryRecord:
        timeout = self._timeout(timeout)
        with self._translate_errors(record_id, timeout):
            resp = self._s3(timeout).get_object(Bucket=self.bucket, Key=self._record_key(record_id))
            data = json.loads(resp["Body"].read().decode("utf-8"))
        return EvidentiaryRecord.from_dict(data)

    def exists(self, record_id: str, timeout: Optional[float] = None) -> bool:
        timeout = self._timeout(timeout)
        try:
            with self._translate_errors(record_id, timeout):
                self._s3(timeout).head_object(Bucket=self.bucket, Key=self._record_key(record_id))
        except NotFoundError:
            return False
        return True

    def _list_keys(self, prefix: str, timeout: Optional[float]) -> List[str]:
        keys = []
        paginator = self._s3(timeout).get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            keys.extend(obj["Key"] for obj in page.get("Contents", []))
        return keys

    def superseded_by(self, record_id: str, timeout: Optional[float] = None) -> List[str]:
        """
        Markers are written before their record, so a marker only counts
        once the record it names exists and declares `record_id`.
        """
        prefix = f"{self.prefix}supersedes/{record_id}/"
        with self._translate_errors(record_id, self._timeout(timeout)):
            keys = self._list_keys(prefix, self._timeout(timeout))
        found = []
        for new_id in sorted(k[len(prefix):] for k in keys):
            try:
                if self.get(new_id, timeout).supersedes == record_id:
                    found.append(new_id)
            except NotFoundError:
                continue
        return found

    def ids(self, timeout: Optional[float] = None) -> List[str]:
        prefix = f"{self.prefix}records/"
        with self._translate_errors("*", self._timeout(timeout)):
            keys = self._list_keys(prefix, self._timeout(timeout))
        return sorted(k[len(prefix):-len(".json")] for k in keys if k.endswith(".json"))


def get_record_store(settings: Settings) -> RecordStore:
    """Build the store selected by settings.store_backend."""
    if settings.store_backend == "memory":
        return InMemoryRecordStore(default_timeout=settings.store_timeout)
    if settings.store_backend == "s3_object_lock":
        if not settings.s3_bucket:
            raise ValueError("EPIRECORD_S3_BUCKET required for s3_object_lock store")
        return S3ObjectLockRecordStore(
            bucket=settings.s3_bucket,
            prefix=settings.s3_prefix,
            retention_days=settings.s3_retention_days,
            region=settings.aws_region,
            default_timeout=settings.store_timeout,
        )
    if settings.store_backend == "sqlite":
        return SqliteRecordStore(settings.db_path, default_timeout=settings.store_timeout)
    raise ValueError(f"unknown record store backend: {settings.store_backend}")
