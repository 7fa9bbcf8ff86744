# FILE: firmware_backend/services/signature_service.py
import hashlib
import hmac
from typing import Optional

SIGNATURE_PREFIX = "sha256="


def _timing_safe_equal(a: str, b: str) -> bool:
    a_bytes, b_bytes = a.encode(), b.encode()
    if len(a_bytes) != len(b_bytes):
        return False
    result = 0
    for x, y in zip(a_bytes, b_bytes):
        result |= x ^ y
    return result == 0


def verify_github_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """Check an X-Hub-Signature-256 header ("sha256=<hex>") against the raw body."""
    if not signature or not signature.startswith(SIGNATURE_PREFIX):
        return False
    if not secret:
        return False

    expected = signature[len(SIGNATURE_PREFIX):]
    computed = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return _timing_safe_equal(computed, expected)
