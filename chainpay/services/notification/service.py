"""Notification consumer for terminal intent events.

Each settled/failed event is delivered once to the merchant's callback URL
(when the intent carries one) and logged. Redelivered events are skipped via
the inbox table.
"""

import asyncio

import httpx
from sqlalchemy import select

from chainpay.common.events import INTENT_FAILED_TOPIC, INTENT_SETTLED_TOPIC, EventEnvelope, consume_forever
from chainpay.common.logging import logger
from chainpay.common.metrics import duplicate_events_skipped_total, webhook_deliveries_total
from chainpay.services.notification.models import InboxEvent, NotificationLog


def webhook_body(event: EventEnvelope) -> dict:
    payload = event.payload
    return {
        "event": event.event_type,
        "intent_id": event.aggregate_id,
        "state": payload.get("state"),
        "settlement_tx_hash": payload.get("settlement_tx_hash"),
        "failure_reason": payload.get("failure_reason"),
        "reference": payload.get("reference"),
    }


class NotificationService:
    """Delivers merchant webhooks for settled/failed outcomes."""

    def __init__(
        self,
        session_factory,
        service_name: str = "notification",
        timeout_seconds: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.service_name = service_name
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    def _inbox_seen(self, db, event_id: str) -> bool:
        return (
            db.execute(
                select(InboxEvent).where(
                    InboxEvent.event_id == event_id,
                    InboxEvent.consumed_by_service == self.service_name,
                )
            ).scalar_one_or_none()
            is not None
        )

    def _mark_inbox(self, db, event_id: str) -> None:
        db.add(InboxEvent(event_id=event_id, consumed_by_service=self.service_name))

    async def _deliver(self, url: str, body: dict) -> tuple[str, int | None]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
                resp = await client.post(url, json=body)
        except httpx.HTTPError as exc:
            logger.warning("webhook_delivery_error error=%s", type(exc).__name__)
            return "error", None
        return ("delivered" if resp.status_code < 400 else "rejected"), resp.status_code

    async def handle_result(self, event: EventEnvelope) -> None:
        """Deliver and log one terminal event, skipping duplicates safely."""

        with self.session_factory() as db:
            if self._inbox_seen(db, event.event_id):
                logger.info("duplicate_event_skipped topic=%s event_id=%s", event.event_type, event.event_id)
                duplicate_events_skipped_total.labels(service=self.service_name, topic=event.event_type).inc()
                return

        body = webhook_body(event)
        callback_url = event.payload.get("callback_url")
        if callback_url:
            outcome, status_code = await self._deliver(callback_url, body)
        else:
            outcome, status_code = "skipped", None
        webhook_deliveries_total.labels(service=self.service_name, outcome=outcome).inc()

        message = f"intent {event.aggregate_id} {event.event_type} state={body['state']}"
        with self.session_factory() as db:
            db.add(
                NotificationLog(
                    intent_id=event.aggregate_id,
                    event_type=event.event_type,
                    channel="webhook",
                    target=callback_url,
                    outcome=outcome,
                    status_code=status_code,
                    message=message,
                )
            )
            self._mark_inbox(db, event.event_id)
            db.commit()
        logger.info("notification_recorded outcome=%s %s", outcome, message)

    async def start_consumers(self) -> None:
        """Start both failed and settled event consumers."""

        await asyncio.gather(
            consume_forever(INTENT_FAILED_TOPIC, "notification-failed", self.handle_result),
            consume_forever(INTENT_SETTLED_TOPIC, "notification-settled", self.handle_result),
        )
