"""SHA-256 hashing utilities for evidence files and access tokens."""

from __future__ import annotations

import hashlib
import hmac
import re

_SHA256_HEX_RE = re.compile(r"^[0-9a-f]{64}$")


def sha256_hex(data: bytes) -> str:
    """Return the lowercase hex SHA-256 digest of *data*.

    Must be called on the same buffer that is handed to the object store, so
    the recorded hash and the stored bytes cannot diverge.
    """
    return hashlib.sha256(data).hexdigest()


def is_sha256_hex(value: str) -> bool:
    return bool(_SHA256_HEX_RE.match(value or ""))


def hmac_sha256(key: str, message: str) -> str:
    """Return HMAC-SHA256 hex digest of *message* using *key*."""
    return hmac.new(
        key.encode("utf-8"),
        message.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def verify_hmac_sha256(key: str, message: str, signature: str) -> bool:
    """Constant-time HMAC-SHA256 verification."""
    expected = hmac_sha256(key, message)
    return hmac.compare_digest(expected, signature)
