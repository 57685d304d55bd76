"""
Write-once store tests.

The same behaviour is checked against the in-memory and SQLite backends;
the S3 Object Lock backend runs against a fake client that mimics the
conditional-create semantics of put_object(IfNoneMatch="*").
"""

import io
import json
import os
import sqlite3
import tempfile
import threading
import unittest
from unittest import mock

from botocore.exceptions import ClientError, ReadTimeoutError

from epirecord import (
    DuplicateIdError,
    InMemoryRecordStore,
    NotCommittedError,
    NotFoundError,
    S3ObjectLockRecordStore,
    SqliteRecordStore,
    StoreTimeoutError,
    commit,
    get_record_store,
    recompute_digest,
)
from epirecord.config import load_settings
from epirecord.store import TIMEOUT_BUCKETS, timeout_bucket

from support import COMMITTED_AT, build_full_record, build_record, committed_record


class StoreContract:
    """Behaviour every backend shares. Subclasses provide make_store()."""

    def make_store(self):
        raise NotImplementedError

    def setUp(self):
        self.store = self.make_store()

    def test_put_then_get(self):
        record = commit(build_full_record(), now=COMMITTED_AT)
        self.store.put(record)
        stored = self.store.get(record.id)
        self.assertEqual(stored.digest, record.digest)
        self.assertEqual(recompute_digest(stored), record.digest)
        self.assertTrue(self.store.exists(record.id))

    def test_duplicate_rejected_first_kept(self):
        first = committed_record(quantity=2)
        second = committed_record(quantity=5)
        self.store.put(first)
        with self.assertRaises(DuplicateIdError):
            self.store.put(second)
        self.assertEqual(self.store.get(first.id).digest, first.digest)
        self.assertEqual(self.store.get(first.id).claim.quantity, 2)

    def test_identical_replay_is_duplicate(self):
        record = committed_record()
        self.store.put(record)
        with self.assertRaises(DuplicateIdError):
            self.store.put(record)

    def test_open_record_rejected(self):
        with self.assertRaises(NotCommittedError):
            self.store.put(build_record())
        self.assertFalse(self.store.exists("rec-0001"))

    def test_get_missing(self):
        with self.assertRaises(NotFoundError):
            self.store.get("nope")
        self.assertFalse(self.store.exists("nope"))

    def test_corrections(self):
        original = committed_record(record_id="rec-a")
        self.store.put(original)
        self.store.put(committed_record(record_id="rec-b", supersedes="rec-a", quantity=3))
        self.store.put(committed_record(record_id="rec-c", supersedes="rec-a", quantity=4))
        self.assertEqual(self.store.superseded_by("rec-a"), ["rec-b", "rec-c"])
        self.assertEqual(self.store.superseded_by("rec-b"), [])
        # the corrected record is untouched
        self.assertEqual(self.store.get("rec-a").digest, original.digest)
        self.assertEqual(self.store.ids(), ["rec-a", "rec-b", "rec-c"])

    def test_correction_of_unknown_record(self):
        with self.assertRaises(NotFoundError):
            self.store.put(committed_record(record_id="rec-b", supersedes="rec-missing"))
        self.assertFalse(self.store.exists("rec-b"))


class ConcurrentPutContract:

    def test_concurrent_put_single_winner(self):
        """Racing puts for one id: exactly one success, the rest DuplicateIdError."""
        n = 8
        records = [committed_record(record_id="rec-race", quantity=i + 1) for i in range(n)]
        barrier = threading.Barrier(n)
        outcomes = []
        lock = threading.Lock()

        def worker(record):
            barrier.wait()
            try:
                self.store.put(record)
                result = ("ok", record.digest)
            except DuplicateIdError:
                result = ("dup", record.digest)
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=worker, args=(r,)) for r in records]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        winners = [digest for status, digest in outcomes if status == "ok"]
        self.assertEqual(len(outcomes), n)
        self.assertEqual(len(winners), 1)
        self.assertEqual(self.store.get("rec-race").digest, winners[0])


class TestInMemoryStore(StoreContract, ConcurrentPutContract, unittest.TestCase):

    def make_store(self):
        return InMemoryRecordStore(default_timeout=1.0)

    def test_lock_timeout(self):
        self.store._lock.acquire()
        try:
            with self.assertRaises(StoreTimeoutError) as ctx:
                self.store.put(committed_record(), timeout=0.05)
        finally:
            self.store._lock.release()
        self.assertIsInstance(ctx.exception, TimeoutError)
        self.assertFalse(self.store.exists("rec-0001"))


class TestSqliteStore(StoreContract, ConcurrentPutContract, unittest.TestCase):

    def make_store(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self._tmp.name, "records.db")
        return SqliteRecordStore(self.db_path, default_timeout=5.0)

    def tearDown(self):
        self.store.close_connection()
        self._tmp.cleanup()

    def test_survives_reopen(self):
        record = committed_record()
        self.store.put(record)
        self.store.close_connection()
        reopened = SqliteRecordStore(self.db_path)
        try:
            self.assertEqual(reopened.get(record.id).digest, record.digest)
            with self.assertRaises(DuplicateIdError):
                reopened.put(committed_record(quantity=9))
        finally:
            reopened.close_connection()

    def test_locked_database_times_out(self):
        blocker = sqlite3.connect(self.db_path, isolation_level=None)
        blocker.execute("BEGIN EXCLUSIVE")
        try:
            with self.assertRaises(StoreTimeoutError):
                self.store.put(committed_record(), timeout=0.1)
        finally:
            blocker.execute("ROLLBACK")
            blocker.close()
        self.assertFalse(self.store.exists("rec-0001"))


class TestSqliteMemoryStore(StoreContract, ConcurrentPutContract, unittest.TestCase):
    """The ":memory:" database is one shared connection seen by every thread."""

    def make_store(self):
        return SqliteRecordStore(":memory:", default_timeout=5.0)

    def tearDown(self):
        self.store.close_connection()

    def test_put_from_worker_thread(self):
        record = committed_record()
        errors = []

        def worker():
            try:
                self.store.put(record)
            except Exception as e:
                errors.append(e)

        t = threading.Thread(target=worker)
        t.start()
        t.join()
        self.assertEqual(errors, [])
        self.assertEqual(self.store.get(record.id).digest, record.digest)

    def test_usable_after_close(self):
        self.store.put(committed_record())
        self.store.close_connection()
        self.assertEqual(self.store.ids(), [])
        self.store.put(committed_record())
        self.assertTrue(self.store.exists("rec-0001"))

    def test_busy_connection_times_out(self):
        held = threading.Event()
        release = threading.Event()

        def hold():
            with self.store._shared_lock:
                held.set()
                release.wait(5)

        t = threading.Thread(target=hold)
        t.start()
        held.wait(5)
        try:
            with self.assertRaises(StoreTimeoutError):
                self.store.put(committed_record(), timeout=0.05)
        finally:
            release.set()
            t.join()
        self.assertFalse(self.store.exists("rec-0001"))


class FakeS3:
    """Just enough of the S3 client API for the Object Lock store."""

    class _Paginator:
        def __init__(self, s3):
            self.s3 = s3

        def paginate(self, Bucket, Prefix):
            keys = sorted(k for k in self.s3.objects if k.startswith(Prefix))
            # two pages so pagination is exercised
            half = len(keys) // 2
            yield {"Contents": [{"Key": k} for k in keys[:half]]}
            yield {"Contents": [{"Key": k} for k in keys[half:]]}

    def __init__(self):
        self.objects = {}
        self.put_calls = []
        self._lock = threading.Lock()

    @staticmethod
    def _error(code, op):
        return ClientError({"Error": {"Code": code, "Message": code}}, op)

    def put_object(self, **kwargs):
        with self._lock:
            self.put_calls.append(kwargs)
            key = kwargs["Key"]
            if kwargs.get("IfNoneMatch") == "*" and key in self.objects:
                raise self._error("PreconditionFailed", "PutObject")
            self.objects[key] = kwargs["Body"]
        return {}

    def get_object(self, Bucket, Key):
        if Key not in self.objects:
            raise self._error("NoSuchKey", "GetObject")
        return {"Body": io.BytesIO(self.objects[Key])}

    def head_object(self, Bucket, Key):
        if Key not in self.objects:
            raise self._error("404", "HeadObject")
        return {}

    def get_paginator(self, name):
        assert name == "list_objects_v2"
        return self._Paginator(self)


class TestS3ObjectLockStore(StoreContract, ConcurrentPutContract, unittest.TestCase):

    def make_store(self):
        self.s3 = FakeS3()
        return S3ObjectLockRecordStore(bucket="evidence", prefix="epi/", retention_days=30, client=self.s3)

    def test_object_written_with_compliance_lock(self):
        record = committed_record()
        self.store.put(record)
        call = self.s3.put_calls[0]
        self.assertEqual(call["Key"], "epi/records/rec-0001.json")
        self.assertEqual(call["IfNoneMatch"], "*")
        self.assertEqual(call["ObjectLockMode"], "COMPLIANCE")
        self.assertEqual(call["Metadata"]["digest"], record.digest)
        self.assertEqual(json.loads(call["Body"])["digest"], record.digest)

    def test_timeout_translated(self):
        def slow(**kwargs):
            raise ReadTimeoutError(endpoint_url="https://s3.example")

        self.s3.put_object = slow
        with self.assertRaises(StoreTimeoutError):
            self.store.put(committed_record(), timeout=0.5)

    def test_correction_survives_lost_response(self):
        """Record stored but the reply timed out: the retry is a duplicate, the link remains."""
        self.store.put(committed_record(record_id="rec-a"))
        stored = self.s3.put_object

        def reply_lost(**kwargs):
            result = stored(**kwargs)
            if kwargs["Key"] == "epi/records/rec-b.json":
                raise ReadTimeoutError(endpoint_url="https://s3.example")
            return result

        self.s3.put_object = reply_lost
        correction = committed_record(record_id="rec-b", supersedes="rec-a", quantity=3)
        with self.assertRaises(StoreTimeoutError):
            self.store.put(correction)
        with self.assertRaises(DuplicateIdError):
            self.store.put(correction)
        self.assertEqual(self.store.superseded_by("rec-a"), ["rec-b"])

    def test_marker_without_record_ignored(self):
        self.store.put(committed_record(record_id="rec-a"))
        stored = self.s3.put_object

        def record_put_fails(**kwargs):
            if kwargs["Key"] == "epi/records/rec-b.json":
                raise ReadTimeoutError(endpoint_url="https://s3.example")
            return stored(**kwargs)

        self.s3.put_object = record_put_fails
        correction = committed_record(record_id="rec-b", supersedes="rec-a", quantity=3)
        with self.assertRaises(StoreTimeoutError):
            self.store.put(correction)
        self.assertIn("epi/supersedes/rec-a/rec-b", self.s3.objects)
        self.assertEqual(self.store.superseded_by("rec-a"), [])

        self.s3.put_object = stored
        self.store.put(correction)
        self.assertEqual(self.store.superseded_by("rec-a"), ["rec-b"])

    def test_marker_for_unrelated_record_ignored(self):
        self.store.put(committed_record(record_id="rec-a"))
        self.store.put(committed_record(record_id="rec-c"))
        self.s3.objects["epi/supersedes/rec-a/rec-c"] = b""
        self.assertEqual(self.store.superseded_by("rec-a"), [])

    def test_other_client_errors_propagate(self):
        def denied(**kwargs):
            raise FakeS3._error("AccessDenied", "PutObject")

        self.s3.put_object = denied
        with self.assertRaises(ClientError):
            self.store.put(committed_record())


class TestS3ClientCache(unittest.TestCase):

    def test_timeout_bucket(self):
        self.assertIsNone(timeout_bucket(None))
        self.assertEqual(timeout_bucket(0.01), 0.1)
        self.assertEqual(timeout_bucket(0.5), 0.5)
        self.assertEqual(timeout_bucket(0.7), 0.5)
        self.assertEqual(timeout_bucket(7), 5.0)
        self.assertEqual(timeout_bucket(3600), TIMEOUT_BUCKETS[-1])

    def test_clients_bounded_by_buckets(self):
        store = S3ObjectLockRecordStore(bucket="evidence", region="us-east-1")
        with mock.patch("boto3.client", side_effect=lambda *a, **kw: object()) as factory:
            for i in range(1, 1000):
                store._s3(i / 37)
            store._s3(None)
        self.assertLessEqual(len(store._clients), len(TIMEOUT_BUCKETS) + 1)
        self.assertEqual(factory.call_count, len(store._clients))
        self.assertIs(store._s3(1.2), store._s3(1.9))


class TestGetRecordStore(unittest.TestCase):

    def test_memory(self):
        settings = load_settings({"EPIRECORD_STORE": "memory"})
        self.assertIsInstance(get_record_store(settings), InMemoryRecordStore)

    def test_sqlite(self):
        with tempfile.TemporaryDirectory() as tmp:
            settings = load_settings({"EPIRECORD_DB_PATH": os.path.join(tmp, "r.db")})
            store = get_record_store(settings)
            self.assertIsInstance(store, SqliteRecordStore)
            store.close_connection()

    def test_s3_requires_bucket(self):
        with self.assertRaises(ValueError):
            get_record_store(load_settings({"EPIRECORD_STORE": "s3_object_lock"}))

    def test_unknown_backend(self):
        with self.assertRaises(ValueError):
            get_record_store(load_settings({"EPIRECORD_STORE": "postgres"}))


if __name__ == "__main__":
    unittest.main()
