"""Webhook queue poller: claims due items and delivers them over HTTP."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from uuid import UUID

import structlog
from aiohttp import ClientSession

from webhook_service.domain.enums import QueueStatus
from webhook_service.domain.webhooks import QueueItem
from webhook_service.repositories import WebhookQueueRepository, WebhookSubscriptionRepository
from webhook_service.services.delivery import build_headers, post_webhook
from webhook_service.services.signing import encode_payload
from webhook_service.services.state_machine import validate_queue_transition

logger = structlog.get_logger(__name__)

SUBSCRIPTION_UNAVAILABLE = "subscription not found or inactive"


def backoff_seconds(attempt: int, *, cap: int) -> int:
    # attempt is 1-based: 60s, 120s, 240s, ... capped
    return min(cap, 30 * 2 ** min(attempt, 16))


class DispatchResult(str, Enum):
    """What happened to one claimed item during a cycle."""

    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    # outcome not recorded: the item left ``processing`` meanwhile (reclaim race)
    SKIPPED = "skipped"
    # processing raised; the item stays ``processing`` until reclaimed
    ERRORED = "errored"

    @classmethod
    def recorded(cls, status: QueueStatus) -> DispatchResult:
        return cls(status.value)


@dataclass(frozen=True)
class DispatchOutcome:
    item_id: UUID
    result: DispatchResult
    error: str | None = None


@dataclass
class CycleReport:
    claimed: int = 0
    outcomes: list[DispatchOutcome] = field(default_factory=list)
    claim_error: str | None = None

    def count(self, result: DispatchResult) -> int:
        return sum(1 for outcome in self.outcomes if outcome.result == result)

    def summary(self) -> str | None:
        if self.claim_error:
            return f"claim_error={self.claim_error}"
        if not self.claimed:
            return None
        counts = " ".join(f"{result.value}={self.count(result)}" for result in DispatchResult)
        return f"claimed={self.claimed} {counts}"


class QueuePoller:
    """Drains the webhook queue in bounded batches.

    One :meth:`run_cycle` claims up to ``batch_size`` due items (marking them
    ``processing`` before any network call), delivers them concurrently and
    waits for every delivery to settle. Failures are contained per item.
    """

    def __init__(
        self,
        subscriptions: WebhookSubscriptionRepository,
        queue: WebhookQueueRepository,
        *,
        session: ClientSession | None = None,
        batch_size: int = 10,
        timeout_s: float = 30.0,
        user_agent: str = "Webhook-Worker/1.0",
        max_attempts: int = 1,
        backoff_cap_seconds: int = 3600,
    ):
        self._subscriptions = subscriptions
        self._queue = queue
        self._session = session
        self._owns_session = session is None
        self.batch_size = batch_size
        self.timeout_s = timeout_s
        self.user_agent = user_agent
        self.max_attempts = max_attempts
        self.backoff_cap_seconds = backoff_cap_seconds

    async def open(self) -> None:
        if self._session is None:
            self._session = ClientSession()

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def poll(self, now: datetime) -> str | None:
        """Periodic task entrypoint (see :class:`webhook_service.worker.WorkerTask`)."""
        report = await self.run_cycle()
        return report.summary()

    async def run_cycle(self) -> CycleReport:
        report = CycleReport()
        try:
            claimed = await self._queue.claim_due(limit=self.batch_size)
        except Exception as exc:
            logger.exception("webhook claim failed")
            report.claim_error = type(exc).__name__
            return report

        report.claimed = len(claimed)
        if not claimed:
            return report

        logger.info("webhook batch claimed", claimed=len(claimed))
        report.outcomes = list(await asyncio.gather(*(self._dispatch(item) for item in claimed)))
        return report

    async def _dispatch(self, item: QueueItem) -> DispatchOutcome:
        try:
            result = await self.deliver(item)
        except Exception as exc:
            logger.exception("webhook delivery errored", item_id=str(item.id))
            return DispatchOutcome(item.id, DispatchResult.ERRORED, str(exc) or type(exc).__name__)
        return DispatchOutcome(item.id, result)

    async def deliver(self, item: QueueItem) -> DispatchResult:
        """Deliver one ``processing`` item and record the outcome.

        Returns the terminal status written, or ``SKIPPED`` when the item
        was no longer ``processing`` at write time (e.g. reclaimed).
        """
        if self._session is None:
            await self.open()
        assert self._session is not None

        subscription = await self._subscriptions.find(item.subscription_id)
        if subscription is None or not subscription.is_active:
            validate_queue_transition(item.status, QueueStatus.CANCELLED)
            cancelled = await self._queue.mark_cancelled(item.id, SUBSCRIPTION_UNAVAILABLE)
            logger.info(
                "webhook cancelled",
                item_id=str(item.id),
                subscription_id=str(item.subscription_id),
                reason=SUBSCRIPTION_UNAVAILABLE,
            )
            return DispatchResult.CANCELLED if cancelled else self._skipped(item)

        body = encode_payload(item.payload)
        headers = build_headers(
            event=item.event,
            created_at=item.created_at,
            delivery_id=item.id,
            user_agent=self.user_agent,
            body=body,
            secret=subscription.secret,
            custom_headers=subscription.headers,
        )
        result = await post_webhook(
            self._session, subscription.url, body, headers, timeout_s=self.timeout_s
        )

        status = QueueStatus.COMPLETED if result.success else QueueStatus.FAILED
        validate_queue_transition(item.status, status)
        retry_at = None
        if not result.success and item.attempt < self.max_attempts:
            retry_at = datetime.now(timezone.utc) + timedelta(
                seconds=backoff_seconds(item.attempt, cap=self.backoff_cap_seconds)
            )
        recorded = await self._queue.finalize_attempt(item, subscription, result, retry_at=retry_at)

        log = logger.info if result.success else logger.warning
        log(
            "webhook delivered" if result.success else "webhook delivery failed",
            item_id=str(item.id),
            subscription_id=str(subscription.id),
            url=subscription.url,
            webhook_event=item.event,
            status_code=result.status_code,
            duration_ms=result.duration_ms,
            error=result.error,
            retry_at=retry_at.isoformat() if retry_at else None,
        )
        return DispatchResult.recorded(status) if recorded else self._skipped(item)

    @staticmethod
    def _skipped(item: QueueItem) -> DispatchResult:
        logger.warning("webhook outcome not recorded, item no longer processing", item_id=str(item.id))
        return DispatchResult.SKIPPED
