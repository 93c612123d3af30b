"""HMAC-SHA256 signing of webhook bodies."""
from __future__ import annotations

import hmac
import json
from hashlib import sha256
from typing import Any

SIGNATURE_PREFIX = "sha256="


def encode_payload(payload: Any) -> bytes:
    """Serialize a payload to the exact bytes sent on the wire (and signed)."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def sign(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify(body: bytes, secret: str, signature: str) -> bool:
    """Receiver-side check of an ``X-Webhook-Signature`` header value."""
    return hmac.compare_digest(sign(body, secret), signature)
