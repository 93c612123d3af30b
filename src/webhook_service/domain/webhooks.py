"""Webhook domain primitives."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from webhook_service.domain.enums import QueueStatus


class WebhookSubscription(BaseModel):
    id: UUID
    name: str
    url: str
    secret: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    event_types: list[str] = Field(default_factory=list)
    is_active: bool = True
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    last_triggered_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    def public_dump(self) -> dict[str, Any]:
        """Serializable view for read interfaces; the secret never leaves the service."""
        data = self.model_dump(mode="json", exclude={"secret"})
        data["has_secret"] = bool(self.secret)
        return data


class QueueItem(BaseModel):
    id: UUID
    subscription_id: UUID
    event: str
    payload: Any = None
    status: QueueStatus
    attempt: int = 1
    scheduled_for: datetime
    created_at: datetime
    processing_started_at: datetime | None = None
    completed_at: datetime | None = None
    status_code: int | None = None
    error_message: str | None = None


class DeliveryLogEntry(BaseModel):
    id: UUID
    subscription_id: UUID
    queue_item_id: UUID | None = None
    event: str
    url: str
    payload: Any = None
    status_code: int
    success: bool
    error_message: str | None = None
    duration_ms: int
    triggered_at: datetime


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of a single HTTP delivery attempt."""

    success: bool
    status_code: int  # 0 when no response was received
    error: str | None
    duration_ms: int
