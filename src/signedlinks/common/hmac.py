"""HMAC signing utilities for signed URLs."""

from __future__ import annotations

import hashlib
import hmac


def sign(key: bytes, message: str) -> str:
    """Create a lowercase hex-encoded HMAC-SHA256 signature."""
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).hexdigest()


def verify(key: bytes, message: str, signature: str) -> bool:
    """Verify HMAC signature in constant time."""
    expected = sign(key, message)
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))
