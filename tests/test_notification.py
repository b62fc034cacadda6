"""Notification consumer: webhook delivery and inbox dedupe."""

import json

import httpx
import pytest
from sqlalchemy import select

from chainpay.common.events import INTENT_FAILED_TOPIC, INTENT_SETTLED_TOPIC, EventEnvelope
from chainpay.services.notification.models import InboxEvent, NotificationLog
from chainpay.services.notification.service import NotificationService, webhook_body


def settled_event(callback_url="https://merchant.test/hook"):
    return EventEnvelope(
        event_type=INTENT_SETTLED_TOPIC,
        aggregate_id="intent-1",
        trace_id="trace-1",
        payload={
            "state": "settled",
            "reference": "inv-1",
            "settlement_tx_hash": "0x" + "5" * 64,
            "failure_reason": None,
            "callback_url": callback_url,
        },
    )


def make_service(session_factory, handler):
    return NotificationService(session_factory, service_name="notification-test", transport=httpx.MockTransport(handler))


def test_webhook_body_shape():
    body = webhook_body(settled_event())

    assert body == {
        "event": INTENT_SETTLED_TOPIC,
        "intent_id": "intent-1",
        "state": "settled",
        "settlement_tx_hash": "0x" + "5" * 64,
        "failure_reason": None,
        "reference": "inv-1",
    }


@pytest.mark.asyncio
async def test_delivers_callback_once(session_factory):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(204)

    service = make_service(session_factory, handler)
    event = settled_event()

    await service.handle_result(event)
    await service.handle_result(event)

    assert len(requests) == 1
    assert str(requests[0].url) == "https://merchant.test/hook"
    assert json.loads(requests[0].content)["intent_id"] == "intent-1"
    with session_factory() as db:
        logs = db.execute(select(NotificationLog)).scalars().all()
        inbox = db.execute(select(InboxEvent)).scalars().all()
    assert [(log.outcome, log.status_code) for log in logs] == [("delivered", 204)]
    assert [row.event_id for row in inbox] == [event.event_id]


@pytest.mark.asyncio
async def test_rejected_and_unreachable_callbacks_are_logged(session_factory):
    def rejecting(request):
        return httpx.Response(500)

    def unreachable(request):
        raise httpx.ConnectError("refused", request=request)

    await make_service(session_factory, rejecting).handle_result(settled_event())
    await make_service(session_factory, unreachable).handle_result(settled_event())

    with session_factory() as db:
        outcomes = sorted(log.outcome for log in db.execute(select(NotificationLog)).scalars())
    assert outcomes == ["error", "rejected"]


@pytest.mark.asyncio
async def test_event_without_callback_is_recorded_as_skipped(session_factory):
    def handler(request):
        raise AssertionError("no request expected")

    event = EventEnvelope(
        event_type=INTENT_FAILED_TOPIC,
        aggregate_id="intent-2",
        trace_id="trace-2",
        payload={"state": "failed", "failure_reason": "funding-timeout", "callback_url": None},
    )

    await make_service(session_factory, handler).handle_result(event)

    with session_factory() as db:
        log = db.execute(select(NotificationLog)).scalar_one()
    assert log.outcome == "skipped"
    assert log.target is None
    assert log.event_type == INTENT_FAILED_TOPIC
