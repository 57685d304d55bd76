"""Command line interface tests."""

import contextlib
import io
import json
import logging
import os
import tempfile
import unittest
from unittest import mock

from epirecord import EvidentiaryRecord, SqliteRecordStore
from epirecord.cli import main

from support import GOLDEN_DIGEST, build_full_record, build_record, committed_record


class TestCli(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.dir = self._tmp.name

    def tearDown(self):
        logging.getLogger().handlers.clear()
        self._tmp.cleanup()

    def path(self, name):
        return os.path.join(self.dir, name)

    def write(self, name, data):
        with open(self.path(name), "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False)
        return self.path(name)

    def run_cli(self, *argv):
        out, err = io.StringIO(), io.StringIO()
        with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
            code = main(list(argv))
        return code, out.getvalue(), err.getvalue()

    def test_hash_open_record(self):
        path = self.write("open.json", build_record().to_dict())
        code, out, _ = self.run_cli("hash", path)
        self.assertEqual(code, 0)
        self.assertEqual(out.strip(), GOLDEN_DIGEST)

    def test_commit_then_verify(self):
        src = self.write("open.json", build_full_record().to_dict())
        committed = self.path("committed.json")
        code, _, err = self.run_cli("commit", src, "--output", committed)
        self.assertEqual(code, 0)
        self.assertIn("Committed rec-full", err)

        code, out, _ = self.run_cli("verify", committed)
        self.assertEqual(code, 0)
        self.assertIn("VALID", out)

    def test_verify_tampered(self):
        data = committed_record().to_dict()
        data["claim"]["quantity"] = 20
        code, out, _ = self.run_cli("verify", self.write("tampered.json", data))
        self.assertEqual(code, 1)
        self.assertIn("DIGEST_MISMATCH", out)

    def test_commit_committed_record_fails(self):
        path = self.write("committed.json", committed_record().to_dict())
        code, _, err = self.run_cli("commit", path)
        self.assertEqual(code, 2)
        self.assertIn("ALREADY_COMMITTED", err)

    def test_sealed_commit_and_trust_store(self):
        key = self.path("seal.json")
        code, out, _ = self.run_cli("keygen", "--output", key, "--kid", "seal-cli")
        self.assertEqual(code, 0)
        trust_store = json.loads(out)
        self.assertIn("seal-cli", trust_store["record_seal_keys"])
        ts_path = self.write("trust.json", trust_store)

        src = self.write("open.json", build_record().to_dict())
        committed = self.path("committed.json")
        self.assertEqual(self.run_cli("commit", src, "-o", committed, "--key", key)[0], 0)
        with open(committed, encoding="utf-8") as f:
            self.assertEqual(json.load(f)["seal"]["kid"], "seal-cli")

        code, _, _ = self.run_cli("verify", committed, "--trust-store", ts_path)
        self.assertEqual(code, 0)

    def test_export_pdf(self):
        src = self.write("committed.json", committed_record().to_dict())
        out_pdf = self.path("receipt.pdf")
        code, _, _ = self.run_cli("export-pdf", src, "--output", out_pdf, "--lang", "en")
        self.assertEqual(code, 0)
        with open(out_pdf, "rb") as f:
            self.assertEqual(f.read(4), b"%PDF")

    def test_get_from_store(self):
        db_path = self.path("records.db")
        store = SqliteRecordStore(db_path)
        record = committed_record()
        store.put(record)
        store.close_connection()

        env = {"EPIRECORD_STORE": "sqlite", "EPIRECORD_DB_PATH": db_path}
        with mock.patch.dict(os.environ, env):
            code, out, _ = self.run_cli("get", record.id)
            self.assertEqual(code, 0)
            self.assertEqual(EvidentiaryRecord.from_dict(json.loads(out)).digest, record.digest)

            code, _, err = self.run_cli("get", "missing")
            self.assertEqual(code, 2)
            self.assertIn("NOT_FOUND", err)


if __name__ == "__main__":
    unittest.main()
