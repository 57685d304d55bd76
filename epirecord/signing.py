"""
Record sealing with Ed25519 (PyNaCl).

A seal is a signature over the UTF-8 bytes of a record's digest string.
It is attached at commit time and is not covered by the digest itself.
"""

import base64
import json
import os
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from .record import Seal

SEAL_ALGORITHM = "ed25519"


def b64e(b: bytes) -> str:
    return base64.b64encode(b).decode("ascii")


def b64d(s: str) -> bytes:
    return base64.b64decode(s.encode("ascii"))


class KeyProvider(ABC):
    """Abstract interface for record sealing and trust store retrieval."""

    @abstractmethod
    def sign(self, payload: bytes) -> Tuple[str, str]:
        """
        Sign a payload and return (kid, signature_b64).
        """

    @abstractmethod
    def trust_store(self) -> Dict[str, Any]:
        """
        Public keys for verification.

        Returns:
            Dict of the form {"record_seal_keys": {kid: public_key_b64}}
        """

    @abstractmethod
    def get_kid(self) -> str:
        """Get the key ID used for signing."""

    def seal(self, digest: str) -> Seal:
        kid, sig_b64 = self.sign(digest.encode("utf-8"))
        return Seal(kid=kid, sig_b64=sig_b64, alg=SEAL_ALGORITHM)


class InMemoryKeyProvider(KeyProvider):
    """Key provider holding a single Ed25519 key in memory."""

    def __init__(self, kid: str, signing_key: Optional[SigningKey] = None):
        self._kid = kid
        self._sk = signing_key or SigningKey.generate()

    def sign(self, payload: bytes) -> Tuple[str, str]:
        return self._kid, b64e(self._sk.sign(payload).signature)

    def trust_store(self) -> Dict[str, Any]:
        return {"record_seal_keys": {self._kid: b64e(bytes(self._sk.verify_key))}}

    def get_kid(self) -> str:
        return self._kid


class FileKeyProvider(KeyProvider):
    """
    File-based key provider.

    The key file is JSON: {"kid", "private_key_b64", "public_key_b64"}.
    The signing key is loaded once at initialization.
    """

    def __init__(self, signing_key_path: str):
        self._path = signing_key_path
        self._lock = threading.RLock()
        with open(signing_key_path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        self._kid = raw["kid"]
        self._sk = SigningKey(b64d(raw["private_key_b64"]))

    def sign(self, payload: bytes) -> Tuple[str, str]:
        with self._lock:
            sig = self._sk.sign(payload).signature
        return self._kid, b64e(sig)

    def trust_store(self) -> Dict[str, Any]:
        return {"record_seal_keys": {self._kid: b64e(bytes(self._sk.verify_key))}}

    def get_kid(self) -> str:
        return self._kid


def generate_key_file(path: str, kid: Optional[str] = None) -> Dict[str, Any]:
    """
    Generate an Ed25519 key and write it to `path` (mode 0600).

    Returns:
        The trust store entry for the new key
    """
    kid = kid or f"epirecord-seal-{datetime.now(timezone.utc).strftime('%Y%m%d')}"
    sk = SigningKey.generate()
    raw = {
        "kid": kid,
        "private_key_b64": b64e(bytes(sk)),
        "public_key_b64": b64e(bytes(sk.verify_key)),
    }
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(raw, indent=2), encoding="utf-8")
    os.chmod(p, 0o600)
    return {"record_seal_keys": {kid: raw["public_key_b64"]}}


def verify_ed25519(signature_b64: str, payload: bytes, public_key_b64: str) -> bool:
    """
    Verify an Ed25519 signature.

    Returns:
        True if signature is valid, False otherwise
    """
    try:
        vk = VerifyKey(b64d(public_key_b64))
        vk.verify(payload, b64d(signature_b64))
        return True
    except (BadSignatureError, ValueError, TypeError):
        return False


def verify_seal(seal: Seal, digest: str, trust_store: Dict[str, Any]) -> Tuple[bool, str]:
    """
    Check a seal against a digest.

    Returns:
        (ok, reason) where reason is empty when ok
    """
    if seal.alg != SEAL_ALGORITHM:
        return False, f"unsupported seal algorithm: {seal.alg}"
    pub = trust_store.get("record_seal_keys", {}).get(seal.kid)
    if not pub:
        return False, f"unknown seal key: {seal.kid}"
    if not verify_ed25519(seal.sig_b64, digest.encode("utf-8"), pub):
        return False, "bad seal signature"
    return True, ""
