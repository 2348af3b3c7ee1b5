"""Integrity checks for provider notifications."""

import hashlib
import hmac
from typing import Optional


def tokens_match(expected: Optional[str], received: Optional[str]) -> bool:
    if not expected or received is None:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))


def hmac_sha256_hex(secret: str, message: str | bytes) -> str:
    data = message.encode("utf-8") if isinstance(message, str) else message
    return hmac.new(secret.encode("utf-8"), data, hashlib.sha256).hexdigest()


def zoom_signature(secret: str, timestamp: str, body: bytes) -> str:
    """Zoom signs ``v0:{timestamp}:{raw body}`` and prefixes the digest with ``v0=``."""
    return "v0=" + hmac_sha256_hex(secret, b"v0:" + timestamp.encode("utf-8") + b":" + body)


def verify_zoom_signature(secret: Optional[str], timestamp: str, body: bytes, signature: str) -> bool:
    if not secret:
        return False
    return tokens_match(zoom_signature(secret, timestamp, body), signature)
