"""Outbound HTTP delivery of a single webhook request."""
from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Mapping
from uuid import UUID

from aiohttp import ClientError, ClientSession, ClientTimeout

from webhook_service.domain.webhooks import DeliveryResult
from webhook_service.services.signing import sign

SIGNATURE_HEADER = "X-Webhook-Signature"


def format_timestamp(value: datetime) -> str:
    """ISO-8601 UTC with millisecond precision, e.g. ``2025-08-25T15:43:31.000Z``."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _set_header(headers: dict[str, str], name: str, value: str) -> None:
    # HTTP header names are case-insensitive: replace any existing spelling
    for existing in [key for key in headers if key.lower() == name.lower()]:
        del headers[existing]
    headers[name] = value


def build_headers(
    *,
    event: str,
    created_at: datetime,
    delivery_id: UUID,
    user_agent: str,
    body: bytes,
    secret: str | None = None,
    custom_headers: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Merge outbound headers with explicit precedence.

    Lowest to highest: protocol headers, then the subscription's custom
    headers, then the signature (only when a secret is configured).
    """
    headers: dict[str, str] = {
        "Content-Type": "application/json",
        "User-Agent": user_agent,
        "X-Webhook-Event": event,
        "X-Webhook-Timestamp": format_timestamp(created_at),
        "X-Webhook-Delivery-Id": str(delivery_id),
    }
    for name, value in (custom_headers or {}).items():
        _set_header(headers, name, value)
    if secret:
        _set_header(headers, SIGNATURE_HEADER, sign(body, secret))
    return headers


async def post_webhook(
    session: ClientSession,
    url: str,
    body: bytes,
    headers: Mapping[str, str],
    *,
    timeout_s: float,
) -> DeliveryResult:
    """Issue one POST and report the outcome. Network failures are returned, not raised."""
    started = time.monotonic()

    def elapsed_ms() -> int:
        return int((time.monotonic() - started) * 1000)

    try:
        async with session.post(
            url,
            data=body,
            headers=dict(headers),
            timeout=ClientTimeout(total=timeout_s),
        ) as resp:
            if 200 <= resp.status < 300:
                return DeliveryResult(True, resp.status, None, elapsed_ms())
            return DeliveryResult(
                False, resp.status, f"HTTP {resp.status}: {resp.reason}", elapsed_ms()
            )
    except asyncio.TimeoutError:
        return DeliveryResult(False, 0, f"Request timed out after {timeout_s:g}s", elapsed_ms())
    except (ClientError, ValueError) as exc:
        return DeliveryResult(False, 0, str(exc) or type(exc).__name__, elapsed_ms())
