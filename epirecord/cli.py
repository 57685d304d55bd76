#!/usr/bin/env python3
"""
epirecord command line interface

Usage:
    epirecord hash <record.json>
    epirecord commit <record.json> [--output FILE] [--key KEYFILE] [--algorithm ALG]
    epirecord verify <record.json> [--trust-store FILE]
    epirecord export-pdf <record.json> --output FILE [--lang pt-BR|en]
    epirecord keygen --output KEYFILE [--kid KID]
    epirecord get <id>
"""

import argparse
import json
import sys

from .committer import commit, recompute_digest
from .config import DEFAULT_DIGEST_ALGORITHM, load_settings
from .errors import RecordError
from .export import EN_LABELS, PT_BR_LABELS, export_view
from .hashing import supported_algorithms
from .logging_config import configure_logging
from .pdf import render_pdf
from .record import EvidentiaryRecord
from .signing import FileKeyProvider, generate_key_file
from .store import get_record_store
from .verifier import RecordVerifier


def load_json(path: str) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def save_json(data: dict, path: str):
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


def cmd_hash(args) -> int:
    """Print the digest commit would assign to a record's current fields."""
    record = EvidentiaryRecord.from_dict(load_json(args.record))
    print(recompute_digest(record, record.digest_algorithm or args.algorithm or DEFAULT_DIGEST_ALGORITHM))
    return 0


def cmd_commit(args) -> int:
    record = EvidentiaryRecord.from_dict(load_json(args.record))
    signer = FileKeyProvider(args.key) if args.key else None
    commit(record, algorithm=args.algorithm, signer=signer)
    if args.output:
        save_json(record.to_dict(), args.output)
        print(f"Committed {record.id}: {record.digest}", file=sys.stderr)
    else:
        print(json.dumps(record.to_dict(), indent=2, ensure_ascii=False))
    return 0


def cmd_verify(args) -> int:
    record = EvidentiaryRecord.from_dict(load_json(args.record))
    trust_store = load_json(args.trust_store) if args.trust_store else None
    result = RecordVerifier(trust_store).verify(record)
    if result.valid:
        print(f"✓ VALID {result.recomputed_digest}")
        return 0
    print(f"✗ {result.outcome.value}: {result.reason}")
    print(json.dumps(result.to_dict(), indent=2))
    return 1


def cmd_export_pdf(args) -> int:
    record = EvidentiaryRecord.from_dict(load_json(args.record))
    labels = PT_BR_LABELS if args.lang == "pt-BR" else EN_LABELS
    render_pdf(export_view(record, labels), args.output)
    print(f"Receipt saved to: {args.output}", file=sys.stderr)
    return 0


def cmd_keygen(args) -> int:
    trust_store = generate_key_file(args.output, kid=args.kid)
    print(json.dumps(trust_store, indent=2))
    print(f"\nSigning key written to: {args.output}", file=sys.stderr)
    return 0


def cmd_get(args) -> int:
    store = get_record_store(load_settings())
    record = store.get(args.id)
    print(json.dumps(record.to_dict(), indent=2, ensure_ascii=False))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="epirecord",
        description="Tamper-evident records for EPI/EPC deliveries",
    )
    parser.add_argument("--log-level", default=None)
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("hash", help="Digest of a record's current fields")
    p.add_argument("record")
    p.add_argument("--algorithm", choices=supported_algorithms())
    p.set_defaults(func=cmd_hash)

    p = sub.add_parser("commit", help="Commit an open record")
    p.add_argument("record")
    p.add_argument("--output", "-o")
    p.add_argument("--key", help="Seal key file (see keygen)")
    p.add_argument("--algorithm", choices=supported_algorithms())
    p.set_defaults(func=cmd_commit)

    p = sub.add_parser("verify", help="Verify a committed record")
    p.add_argument("record")
    p.add_argument("--trust-store")
    p.set_defaults(func=cmd_verify)

    p = sub.add_parser("export-pdf", help="Render a receipt PDF")
    p.add_argument("record")
    p.add_argument("--output", "-o", required=True)
    p.add_argument("--lang", choices=["pt-BR", "en"], default="pt-BR")
    p.set_defaults(func=cmd_export_pdf)

    p = sub.add_parser("keygen", help="Generate an Ed25519 seal key")
    p.add_argument("--output", "-o", required=True)
    p.add_argument("--kid")
    p.set_defaults(func=cmd_keygen)

    p = sub.add_parser("get", help="Fetch a record from the configured store")
    p.add_argument("id")
    p.set_defaults(func=cmd_get)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings()
    # audit events share stdout with command output
    configure_logging(args.log_level or "WARNING", json_format=settings.log_json)
    try:
        return args.func(args)
    except RecordError as e:
        print(f"error: {e.code}: {e.message}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
