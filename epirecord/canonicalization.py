"""
Canonical encoding for evidentiary records.

Turns a record into a deterministic byte sequence so its digest can be
reproduced years later on any platform.

Rules:
- Object keys sorted lexicographically (Unicode code point order)
- No whitespace between tokens (compact form)
- UTF-8 encoded, no BOM, non-ASCII kept as-is
- Arrays preserve order
- datetime must be timezone-aware; encoded as UTC
  "YYYY-MM-DDTHH:MM:SS.ffffffZ"
- date as "YYYY-MM-DD", Decimal as its normalized string,
  Enum as its value, finite floats as shortest round-trip repr
- Geocoordinates fixed to 6 decimal places, accuracy to 2,
  both as strings (ROUND_HALF_EVEN)
- Anything else raises EncodingError

Record payload shape (ENCODING_VERSION "epirecord/1"):

    {"claim", "context", "digest_algorithm", "encoding", "evidence",
     "id", "subject", "supersedes"}

digest, committed_at and seal are never part of the payload.
"""

import json
import math
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_EVEN, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from .errors import EncodingError

ENCODING_VERSION = "epirecord/1"

COORDINATE_QUANTUM = Decimal("0.000001")
ACCURACY_QUANTUM = Decimal("0.01")


def canonicalize(obj: Any) -> bytes:
    """
    Convert an object to canonical JSON bytes.

    Returns:
        UTF-8 encoded bytes of canonical JSON

    Raises:
        EncodingError: if obj contains an unsupported type
    """
    canonical = _canonicalize_value(obj, "$")
    return json.dumps(
        canonical, separators=(",", ":"), ensure_ascii=False, allow_nan=False
    ).encode("utf-8")


def canonicalize_str(obj: Any) -> str:
    """Return canonical JSON as string."""
    return canonicalize(obj).decode("utf-8")


def canonical_value(value: Any) -> Any:
    """JSON-ready canonical form of a value, as canonicalize() would serialize it."""
    return _canonicalize_value(value, "$")


def format_timestamp(value: datetime) -> str:
    """Render an aware datetime in the canonical UTC form."""
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        raise EncodingError("naive datetime cannot be encoded", {"value": value.isoformat()})
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def fixed_decimal(value: Union[int, float, Decimal, str], quantum: Decimal) -> str:
    """Quantize a number to a fixed number of decimal places."""
    if isinstance(value, bool):
        raise EncodingError("boolean is not a number", {"value": value})
    try:
        # str() first so 0.1 becomes Decimal("0.1"), not its binary expansion
        d = Decimal(str(value))
    except InvalidOperation:
        raise EncodingError("not a decimal number", {"value": str(value)})
    if not d.is_finite():
        raise EncodingError("non-finite number", {"value": str(value)})
    return str(d.quantize(quantum, rounding=ROUND_HALF_EVEN))


def _canonicalize_value(value: Any, path: str) -> Any:
    if isinstance(value, Enum):
        return _canonicalize_value(value.value, path)
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise EncodingError(f"non-finite float at {path}", {"path": path})
        return value
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise EncodingError(f"non-finite decimal at {path}", {"path": path})
        return str(value.normalize())
    if isinstance(value, datetime):
        try:
            return format_timestamp(value)
        except EncodingError as e:
            raise EncodingError(f"naive datetime at {path}", {"path": path}) from e
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Mapping):
        return _canonicalize_object(value, path)
    if isinstance(value, (list, tuple)):
        return _canonicalize_array(value, path)
    raise EncodingError(
        f"cannot encode {type(value).__name__} at {path}",
        {"path": path, "type": type(value).__name__},
    )


def _canonicalize_object(obj: Mapping, path: str) -> Dict[str, Any]:
    for k in obj:
        if not isinstance(k, str):
            raise EncodingError(f"non-string key at {path}", {"path": path, "key": repr(k)})
    return {k: _canonicalize_value(obj[k], f"{path}.{k}") for k in sorted(obj)}


def _canonicalize_array(arr: Union[List, tuple], path: str) -> List:
    return [_canonicalize_value(item, f"{path}[{i}]") for i, item in enumerate(arr)]


# ============================================================
# Record payload
# ============================================================

def record_payload(record, digest_algorithm: Optional[str] = None) -> Dict[str, Any]:
    """
    Build the hashed payload of a record.

    Works in any record state; missing sections encode as null.
    `digest_algorithm` stands in for the declared algorithm when given.
    """
    return {
        "encoding": ENCODING_VERSION,
        "id": record.id,
        "subject": record.subject.canonical_fields() if record.subject is not None else None,
        "claim": record.claim.canonical_fields() if record.claim is not None else None,
        "evidence": [blob.canonical_fields() for blob in record.evidence],
        "context": record.context.canonical_fields() if record.context is not None else None,
        "supersedes": record.supersedes,
        "digest_algorithm": digest_algorithm or record.digest_algorithm,
    }


def encode_record(record, digest_algorithm: Optional[str] = None) -> bytes:
    """Canonical bytes of a record's hashed payload."""
    return canonicalize(record_payload(record, digest_algorithm))
