"""Common exceptions for domain and repository layers."""
from __future__ import annotations


class WebhookServiceError(Exception):
    """Base error for service layer."""


class RepositoryError(WebhookServiceError):
    """Raised when repository operations fail."""


class NotFoundError(RepositoryError):
    """Raised when requested entity is missing."""


class ConflictError(RepositoryError):
    """Raised when a write collides with existing state (unique URL, referenced rows)."""


class InvalidStatusTransitionError(WebhookServiceError):
    """Raised when a queue item attempts an unsupported status change."""
