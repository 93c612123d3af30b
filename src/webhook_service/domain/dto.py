"""Pydantic DTOs for the API and service layers."""
from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field, field_validator

from webhook_service.domain.enums import WebhookEvent


def _normalize_events(values: list[WebhookEvent]) -> list[WebhookEvent]:
    return list(dict.fromkeys(values))


class WebhookCreateDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    url: AnyHttpUrl
    event_types: list[WebhookEvent] = Field(min_length=1)
    secret: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    is_active: bool = True

    @field_validator("event_types")
    @classmethod
    def _dedupe(cls, value: list[WebhookEvent]) -> list[WebhookEvent]:
        return _normalize_events(value)


class WebhookUpdateDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1)
    url: AnyHttpUrl | None = None
    event_types: list[WebhookEvent] | None = Field(default=None, min_length=1)
    secret: str | None = None
    headers: dict[str, str] | None = None
    is_active: bool | None = None

    # omitted means unchanged; only the secret may be cleared with null
    @field_validator("name", "url", "event_types", "headers", "is_active")
    @classmethod
    def _not_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("may be omitted but not null")
        return value

    @field_validator("event_types")
    @classmethod
    def _dedupe(cls, value: list[WebhookEvent] | None) -> list[WebhookEvent] | None:
        return _normalize_events(value) if value is not None else None

    def changes(self) -> dict[str, Any]:
        """Only the fields the caller actually sent, in storage form."""
        return self.model_dump(exclude_unset=True, mode="json")


class EnqueueDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    subscription_id: UUID
    event: str = Field(min_length=1)
    payload: Any
    scheduled_for: datetime | None = None


class EmitEventDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    event: WebhookEvent
    data: dict[str, Any] = Field(default_factory=dict)
