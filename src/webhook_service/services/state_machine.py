"""Queue item status transition validators."""
from __future__ import annotations

from webhook_service.core.exceptions import InvalidStatusTransitionError
from webhook_service.domain.enums import QueueStatus

QUEUE_TRANSITIONS: dict[QueueStatus, set[QueueStatus]] = {
    QueueStatus.PENDING: {QueueStatus.PROCESSING},
    QueueStatus.PROCESSING: {
        QueueStatus.COMPLETED,
        QueueStatus.FAILED,
        QueueStatus.CANCELLED,
        # reclaim of items orphaned by a crashed worker
        QueueStatus.PENDING,
    },
    QueueStatus.COMPLETED: set(),
    QueueStatus.FAILED: set(),
    QueueStatus.CANCELLED: set(),
}


def can_transition(current: QueueStatus, new: QueueStatus) -> bool:
    return new in QUEUE_TRANSITIONS.get(current, set())


def validate_queue_transition(current: QueueStatus, new: QueueStatus) -> None:
    if not can_transition(current, new):
        raise InvalidStatusTransitionError(
            f"Invalid queue item status transition: {current.value} → {new.value}"
        )
