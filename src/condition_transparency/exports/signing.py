"""
Webhook payload signing.

Pure functions: the signature depends only on the exact payload bytes and
the webhook secret, so receivers can verify it independently of delivery.
"""

import hashlib
import hmac
import secrets
from typing import Union


def sign_payload(payload: Union[bytes, str], secret: str) -> str:
    """Hex HMAC-SHA256 of ``payload`` keyed with ``secret``."""
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_signature(payload: Union[bytes, str], secret: str, signature: str) -> bool:
    return hmac.compare_digest(sign_payload(payload, secret), signature)


def generate_secret() -> str:
    """32 hex characters of fresh randomness."""
    return secrets.token_hex(16)


__all__ = ["sign_payload", "verify_signature", "generate_secret"]
