"""Outbox relay: terminal events reach Kafka exactly when they should."""

import pytest
from sqlalchemy import select

from chainpay.common.events import INTENT_FAILED_TOPIC
from chainpay.common.outbox import relay_outbox_once
from chainpay.common.state_machine import FAILED
from chainpay.services.settlement.models import OutboxEvent

PAYER = "0x90F8bf6A479f320ead074411a4B0e7944Ea8c9C1"


class RecordingBus:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.published = []

    async def publish(self, topic, event):
        if self.fail:
            raise ConnectionError("broker unavailable")
        self.published.append((topic, event))


def _failed_intent(store):
    intent, _ = store.create(payer_address=PAYER, token="USDC", amount=10, settlement_token="USDC")
    return store.compare_and_set(intent, FAILED, failure_reason="funding-timeout")


def _statuses(session_factory):
    with session_factory() as db:
        return [row.status for row in db.execute(select(OutboxEvent)).scalars()]


@pytest.mark.asyncio
async def test_relay_publishes_and_marks_sent(store, session_factory):
    intent = _failed_intent(store)
    bus = RecordingBus()

    delivered = await relay_outbox_once(session_factory, OutboxEvent, bus, "settlement-test")

    assert delivered == 1
    topic, event = bus.published[0]
    assert topic == INTENT_FAILED_TOPIC
    assert event.aggregate_id == intent.intent_id
    assert event.payload["failure_reason"] == "funding-timeout"
    assert _statuses(session_factory) == ["SENT"]

    assert await relay_outbox_once(session_factory, OutboxEvent, bus, "settlement-test") == 0
    assert len(bus.published) == 1


@pytest.mark.asyncio
async def test_relay_requeues_when_broker_is_down(store, session_factory):
    _failed_intent(store)

    delivered = await relay_outbox_once(session_factory, OutboxEvent, RecordingBus(fail=True), "settlement-test")

    assert delivered == 0
    assert _statuses(session_factory) == ["PENDING"]

    bus = RecordingBus()
    assert await relay_outbox_once(session_factory, OutboxEvent, bus, "settlement-test") == 1
    assert _statuses(session_factory) == ["SENT"]
