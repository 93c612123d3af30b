"""Queue poller behaviour against the in-memory store and a local receiver."""
from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from tests.fakes import FakeSubscriptionRepository
from webhook_service.dispatcher import (
    SUBSCRIPTION_UNAVAILABLE,
    CycleReport,
    DispatchOutcome,
    DispatchResult,
    QueuePoller,
    backoff_seconds,
)
from webhook_service.domain.enums import QueueStatus
from webhook_service.services.signing import encode_payload, sign


@pytest.fixture
def poller(subscriptions, queue, http_session):
    return QueuePoller(subscriptions, queue, session=http_session, timeout_s=2.0)


def _seed(store, receiver, count=1, **sub_fields):
    sub = store.add_subscription(url=receiver.url(), **sub_fields)
    base = datetime.now(timezone.utc) - timedelta(minutes=5)
    items = [
        store.add_item(
            sub.id,
            payload={"event": "TASK_CREATED", "n": n},
            created_at=base + timedelta(seconds=n),
        )
        for n in range(count)
    ]
    return sub, items


@pytest.mark.asyncio
async def test_success_completes_item_and_records_log(store, receiver, poller):
    sub, (item,) = _seed(store, receiver)

    report = await poller.run_cycle()

    assert report.claimed == 1
    assert report.outcomes == [DispatchOutcome(item.id, DispatchResult.COMPLETED)]
    stored = store.items[item.id]
    assert stored.status == QueueStatus.COMPLETED
    assert stored.status_code == 200
    assert stored.completed_at is not None

    updated = store.subscriptions[sub.id]
    assert (updated.total_calls, updated.successful_calls, updated.failed_calls) == (1, 1, 0)
    assert updated.last_triggered_at is not None

    assert len(store.logs) == 1
    log = store.logs[0]
    assert log.success is True
    assert log.status_code == 200
    assert log.queue_item_id == item.id
    assert log.url == sub.url


@pytest.mark.asyncio
async def test_request_carries_protocol_headers_and_exact_body(store, receiver, poller):
    sub, (item,) = _seed(store, receiver, secret="s3cr3t", headers={"X-Tenant": "acme"})

    await poller.run_cycle()

    (request,) = receiver.requests
    assert request.body == encode_payload(item.payload)
    assert json.loads(request.body) == item.payload
    assert request.headers["X-Webhook-Event"] == "TASK_CREATED"
    assert request.headers["X-Webhook-Delivery-Id"] == str(item.id)
    assert request.headers["User-Agent"] == "Webhook-Worker/1.0"
    assert request.headers["X-Tenant"] == "acme"
    assert request.headers["X-Webhook-Signature"] == sign(request.body, "s3cr3t")


@pytest.mark.asyncio
async def test_no_signature_without_secret(store, receiver, poller):
    _seed(store, receiver)

    await poller.run_cycle()

    assert "X-Webhook-Signature" not in receiver.requests[0].headers


@pytest.mark.asyncio
async def test_batch_is_claimed_before_first_request_is_sent(store, receiver, poller):
    _, items = _seed(store, receiver, count=3)
    snapshots: list[list[QueueStatus]] = []
    receiver.on_request = lambda _: snapshots.append(
        [store.items[item.id].status for item in items]
    )

    await poller.run_cycle()

    assert len(snapshots) == 3
    assert snapshots[0] == [QueueStatus.PROCESSING] * 3
    claims = store.transitions[:3]
    assert claims == [(item.id, QueueStatus.PENDING, QueueStatus.PROCESSING) for item in items]


@pytest.mark.asyncio
async def test_failed_response_marks_item_failed(store, receiver, poller):
    receiver.status = 500
    sub, (item,) = _seed(store, receiver)

    report = await poller.run_cycle()

    assert report.count(DispatchResult.FAILED) == 1
    stored = store.items[item.id]
    assert stored.status == QueueStatus.FAILED
    assert stored.status_code == 500
    assert stored.error_message == "HTTP 500: Internal Server Error"

    updated = store.subscriptions[sub.id]
    assert (updated.total_calls, updated.successful_calls, updated.failed_calls) == (1, 0, 1)
    assert [log.status_code for log in store.logs] == [500]
    assert store.logs[0].success is False
    # single attempt by default: no follow-up item
    assert len(store.items) == 1


@pytest.mark.asyncio
async def test_unreachable_subscriber_fails_with_status_zero(store, subscriptions, queue, http_session):
    sub = store.add_subscription(url="http://127.0.0.1:1/hook")
    item = store.add_item(sub.id)
    poller = QueuePoller(subscriptions, queue, session=http_session, timeout_s=2.0)

    await poller.run_cycle()

    stored = store.items[item.id]
    assert stored.status == QueueStatus.FAILED
    assert stored.status_code == 0
    assert stored.error_message
    assert store.logs[0].status_code == 0


@pytest.mark.asyncio
async def test_timeout_fails_item(store, receiver, subscriptions, queue, http_session):
    receiver.delay = 1.0
    _, (item,) = _seed(store, receiver)
    poller = QueuePoller(subscriptions, queue, session=http_session, timeout_s=0.1)

    await poller.run_cycle()

    stored = store.items[item.id]
    assert stored.status == QueueStatus.FAILED
    assert stored.status_code == 0
    assert "timed out" in stored.error_message


@pytest.mark.asyncio
async def test_inactive_subscription_cancels_without_request(store, receiver, poller):
    sub, (item,) = _seed(store, receiver, is_active=False)

    report = await poller.run_cycle()

    assert report.outcomes == [DispatchOutcome(item.id, DispatchResult.CANCELLED)]
    stored = store.items[item.id]
    assert stored.status == QueueStatus.CANCELLED
    assert stored.error_message == SUBSCRIPTION_UNAVAILABLE
    assert receiver.requests == []
    assert store.logs == []
    assert store.subscriptions[sub.id].total_calls == 0


@pytest.mark.asyncio
async def test_missing_subscription_cancels(store, receiver, poller):
    sub, (item,) = _seed(store, receiver)
    del store.subscriptions[sub.id]

    await poller.run_cycle()

    assert store.items[item.id].status == QueueStatus.CANCELLED
    assert receiver.requests == []
    assert store.logs == []


@pytest.mark.asyncio
async def test_empty_queue_is_a_no_op(store, poller):
    report = await poller.run_cycle()

    assert report.claimed == 0
    assert report.outcomes == []
    assert report.summary() is None


@pytest.mark.asyncio
async def test_future_items_are_not_claimed(store, receiver, poller):
    sub = store.add_subscription(url=receiver.url())
    item = store.add_item(
        sub.id, scheduled_for=datetime.now(timezone.utc) + timedelta(minutes=10)
    )

    report = await poller.run_cycle()

    assert report.claimed == 0
    assert store.items[item.id].status == QueueStatus.PENDING


@pytest.mark.asyncio
async def test_batch_claims_oldest_first(store, receiver, poller):
    _, items = _seed(store, receiver, count=12)

    report = await poller.run_cycle()

    assert report.claimed == 10
    claimed_ids = [item_id for item_id, old, new in store.transitions if new == QueueStatus.PROCESSING]
    assert claimed_ids == [item.id for item in items[:10]]
    assert store.items[items[10].id].status == QueueStatus.PENDING
    assert store.items[items[11].id].status == QueueStatus.PENDING

    report = await poller.run_cycle()
    assert report.claimed == 2
    assert all(item.status == QueueStatus.COMPLETED for item in store.items.values())


@pytest.mark.asyncio
async def test_overlapping_cycles_deliver_each_item_once(store, receiver, subscriptions, queue, http_session):
    _, items = _seed(store, receiver, count=15)
    first = QueuePoller(subscriptions, queue, session=http_session)
    second = QueuePoller(subscriptions, queue, session=http_session)

    reports = await asyncio.gather(first.run_cycle(), second.run_cycle())

    assert sum(report.claimed for report in reports) == 15
    assert len(receiver.requests) == 15
    delivered = [request.headers["X-Webhook-Delivery-Id"] for request in receiver.requests]
    assert sorted(delivered) == sorted(str(item.id) for item in items)
    assert len(store.logs) == 15


@pytest.mark.asyncio
async def test_claim_error_ends_cycle(subscriptions, http_session):
    queue = AsyncMock()
    queue.claim_due.side_effect = ConnectionError("db down")
    poller = QueuePoller(subscriptions, queue, session=http_session)

    report = await poller.run_cycle()

    assert report.claimed == 0
    assert report.claim_error == "ConnectionError"
    assert report.summary() == "claim_error=ConnectionError"
    queue.finalize_attempt.assert_not_called()


class _FlakySubscriptions(FakeSubscriptionRepository):
    def __init__(self, store, broken_id):
        super().__init__(store)
        self.broken_id = broken_id

    async def find(self, subscription_id):
        if subscription_id == self.broken_id:
            raise RuntimeError("lookup failed")
        return await super().find(subscription_id)


@pytest.mark.asyncio
async def test_one_failing_item_does_not_affect_others(store, receiver, queue, http_session):
    broken = store.add_subscription(url=receiver.url("/broken"))
    healthy = store.add_subscription(url=receiver.url("/healthy"))
    broken_item = store.add_item(broken.id)
    healthy_item = store.add_item(healthy.id)
    poller = QueuePoller(_FlakySubscriptions(store, broken.id), queue, session=http_session)

    report = await poller.run_cycle()

    outcomes = {outcome.item_id: outcome for outcome in report.outcomes}
    assert outcomes[healthy_item.id].result == DispatchResult.COMPLETED
    assert outcomes[broken_item.id].result == DispatchResult.ERRORED
    assert outcomes[broken_item.id].error == "lookup failed"
    # left for the reclaim sweep
    assert store.items[broken_item.id].status == QueueStatus.PROCESSING
    assert report.summary() == "claimed=2 completed=1 failed=0 cancelled=0 skipped=0 errored=1"


@pytest.mark.asyncio
async def test_retry_enqueues_next_attempt(store, receiver, subscriptions, queue, http_session):
    receiver.status = 503
    sub, (item,) = _seed(store, receiver)
    poller = QueuePoller(subscriptions, queue, session=http_session, max_attempts=3)

    before = datetime.now(timezone.utc)
    await poller.run_cycle()

    assert store.items[item.id].status == QueueStatus.FAILED
    retries = [other for other in store.items.values() if other.id != item.id]
    assert len(retries) == 1
    retry = retries[0]
    assert retry.status == QueueStatus.PENDING
    assert retry.attempt == 2
    assert retry.payload == item.payload
    assert retry.scheduled_for >= before + timedelta(seconds=backoff_seconds(1, cap=3600))

    # not due yet
    report = await poller.run_cycle()
    assert report.claimed == 0


@pytest.mark.asyncio
async def test_retry_stops_at_max_attempts(store, receiver, subscriptions, queue, http_session):
    receiver.status = 500
    sub = store.add_subscription(url=receiver.url())
    item = store.add_item(sub.id, attempt=3)
    poller = QueuePoller(subscriptions, queue, session=http_session, max_attempts=3)

    await poller.run_cycle()

    assert store.items[item.id].status == QueueStatus.FAILED
    assert len(store.items) == 1


def test_backoff_doubles_and_caps():
    assert backoff_seconds(1, cap=3600) == 60
    assert backoff_seconds(2, cap=3600) == 120
    assert backoff_seconds(3, cap=3600) == 240
    assert backoff_seconds(10, cap=3600) == 3600
    assert backoff_seconds(100, cap=3600) == 3600


@pytest.mark.asyncio
async def test_poll_returns_summary(store, receiver, poller):
    _seed(store, receiver, count=2)

    summary = await poller.poll(datetime.now(timezone.utc))

    assert summary == "claimed=2 completed=2 failed=0 cancelled=0 skipped=0 errored=0"


@pytest.mark.asyncio
async def test_item_finalized_elsewhere_is_not_overwritten(store, receiver, queue, subscriptions, http_session):
    """A reclaimed item finishing late does not clobber the newer state."""
    sub, (item,) = _seed(store, receiver)
    poller = QueuePoller(subscriptions, queue, session=http_session)
    (claimed,) = await queue.claim_due(limit=10)
    store.transition(item.id, QueueStatus.PENDING, processing_started_at=None)

    result = await poller.deliver(claimed)

    assert result == DispatchResult.SKIPPED
    assert store.items[item.id].status == QueueStatus.PENDING
    assert store.logs == []


@pytest.mark.asyncio
async def test_reclaim_returns_stuck_items_to_pending(store, queue):
    sub = store.add_subscription()
    now = datetime.now(timezone.utc)
    stuck = store.add_item(
        sub.id, status=QueueStatus.PROCESSING, processing_started_at=now - timedelta(minutes=5)
    )
    fresh = store.add_item(
        sub.id, status=QueueStatus.PROCESSING, processing_started_at=now - timedelta(seconds=5)
    )

    reclaimed = await queue.reclaim_stuck(now - timedelta(seconds=90))

    assert reclaimed == 1
    assert store.items[stuck.id].status == QueueStatus.PENDING
    assert store.items[fresh.id].status == QueueStatus.PROCESSING


def test_cycle_report_summary():
    report = CycleReport()
    assert report.summary() is None


@pytest.mark.asyncio
async def test_reclaim_race_is_reported_as_skipped(store, receiver, poller):
    _, (item,) = _seed(store, receiver)
    # the reclaim sweep returns the item to pending while the request is in flight
    receiver.on_request = lambda _: store.transition(
        item.id, QueueStatus.PENDING, processing_started_at=None
    )

    report = await poller.run_cycle()

    assert report.outcomes == [DispatchOutcome(item.id, DispatchResult.SKIPPED)]
    assert report.count(DispatchResult.ERRORED) == 0
    assert report.summary() == "claimed=1 completed=0 failed=0 cancelled=0 skipped=1 errored=0"
    assert store.items[item.id].status == QueueStatus.PENDING
    assert store.logs == []
