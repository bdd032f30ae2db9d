"""
Request signing for the media worker dispatch protocol.

The dispatch client serializes the request body once, signs exactly those bytes
with HMAC-SHA256 and sends both. The worker recomputes the code over the raw bytes
it received, so both sides agree without re-serializing.
"""

import hashlib
import hmac
import json
from typing import Any, Dict, Optional

SIGNATURE_HEADER = "X-Signature"


def canonical_body(payload: Dict[str, Any]) -> bytes:
    """Serialize a request payload deterministically (sorted keys, compact separators)."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def sign_body(body: bytes, secret: str) -> str:
    """Create the hex-encoded HMAC-SHA256 of a serialized body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, received_signature: Optional[str], secret: str) -> bool:
    """
    Check a received signature against the body in constant time.

    Args:
        body: Raw request bytes exactly as received
        received_signature: Value of the signature header, if any
        secret: Pre-shared secret

    Returns:
        True only when a signature was supplied and matches
    """
    if not received_signature or not secret:
        return False
    expected = sign_body(body, secret)
    return hmac.compare_digest(expected.encode("ascii"), received_signature.strip().encode("ascii", "replace"))
