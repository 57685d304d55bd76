"""
Digest computation for evidentiary records.

Digests are formatted "<algorithm>:<lowercase hex>", e.g. "sha256:ab12...".
The algorithm identifier is stored with every record so a later change of
the default never breaks verification of older records.
"""

import hashlib
import hmac
from typing import Any, Callable, Dict, Tuple, Union

from .errors import UnsupportedAlgorithmError

DEFAULT_ALGORITHM = "sha256"

ALGORITHMS: Dict[str, Callable[[bytes], Any]] = {
    "sha256": hashlib.sha256,
    "sha384": hashlib.sha384,
    "sha512": hashlib.sha512,
    "sha3-256": hashlib.sha3_256,
    "blake2b-256": lambda data: hashlib.blake2b(data, digest_size=32),
}


def supported_algorithms() -> Tuple[str, ...]:
    return tuple(sorted(ALGORITHMS))


def check_algorithm(algorithm: str) -> str:
    """Return the algorithm id if supported, else raise UnsupportedAlgorithmError."""
    if algorithm not in ALGORITHMS:
        raise UnsupportedAlgorithmError(
            f"unsupported digest algorithm: {algorithm}",
            {"algorithm": algorithm, "supported": list(supported_algorithms())},
        )
    return algorithm


def compute_digest(data: Union[bytes, str], algorithm: str = DEFAULT_ALGORITHM) -> str:
    """
    Hash data with the named algorithm.

    Returns:
        Digest string in format "<algorithm>:<hex>"
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    h = ALGORITHMS[check_algorithm(algorithm)](data)
    return f"{algorithm}:{h.hexdigest().lower()}"


def content_hash(data: bytes) -> str:
    """SHA-256 hex of raw evidence bytes (no prefix)."""
    return hashlib.sha256(data).hexdigest()


def parse_digest(digest: str) -> Tuple[str, str]:
    """Split "<algorithm>:<hex>" into its parts."""
    algorithm, sep, hexdigest = digest.partition(":")
    if not sep or not hexdigest:
        raise ValueError(f"malformed digest: {digest!r}")
    return algorithm, hexdigest


def digests_equal(a: str, b: str) -> bool:
    """Compare two digests in constant time."""
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))
