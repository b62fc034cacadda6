"""Kafka envelope plus producer/consumer helpers.

Terminal intent events leave the settlement service through its outbox and
are consumed by the notification service with the loop below.
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable
from uuid import uuid4

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer
from pydantic import BaseModel, Field

from chainpay.common.config import settings
from chainpay.common.logging import event_id_ctx, intent_id_ctx, logger, trace_id_ctx
from chainpay.common.metrics import event_queue_delay_seconds

INTENT_SETTLED_TOPIC = "payment_intents.settled"
INTENT_FAILED_TOPIC = "payment_intents.failed"


class EventEnvelope(BaseModel):
    """Canonical event shape sent across Kafka topics."""

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    event_type: str
    aggregate_id: str
    occurred_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    trace_id: str
    payload: dict[str, Any]

    def age_seconds(self) -> float:
        occurred_at = datetime.fromisoformat(self.occurred_at.replace("Z", "+00:00"))
        if occurred_at.tzinfo is None:
            occurred_at = occurred_at.replace(tzinfo=timezone.utc)
        return max(0.0, (datetime.now(timezone.utc) - occurred_at).total_seconds())


class KafkaBus:
    """Lazily started producer used by the outbox publisher."""

    def __init__(self) -> None:
        self._producer: AIOKafkaProducer | None = None

    async def producer(self) -> AIOKafkaProducer:
        if self._producer is None:
            self._producer = AIOKafkaProducer(bootstrap_servers=settings.kafka_bootstrap_servers)
            await self._producer.start()
        return self._producer

    async def publish(self, topic: str, event: EventEnvelope) -> None:
        producer = await self.producer()
        await producer.send_and_wait(topic, event.model_dump_json().encode("utf-8"))

    async def close(self) -> None:
        if self._producer:
            await self._producer.stop()
            self._producer = None


async def dispatch_envelope(topic: str, raw: bytes, handler: Callable[[EventEnvelope], Awaitable[None]]) -> None:
    """Decode one message and run `handler` with correlation ids bound to the log context."""

    event = EventEnvelope(**json.loads(raw.decode("utf-8")))
    event_queue_delay_seconds.labels(service=settings.service_name, topic=topic).observe(event.age_seconds())
    tokens = (
        trace_id_ctx.set(event.trace_id),
        event_id_ctx.set(event.event_id),
        intent_id_ctx.set(event.aggregate_id),
    )
    try:
        logger.info("event_received topic=%s event_type=%s", topic, event.event_type)
        await handler(event)
    finally:
        trace_id_ctx.reset(tokens[0])
        event_id_ctx.reset(tokens[1])
        intent_id_ctx.reset(tokens[2])


async def consume_forever(topic: str, group_id: str, handler: Callable[[EventEnvelope], Awaitable[None]]) -> None:
    """Consume one topic forever, committing offsets after each batch.

    A failing message is logged and skipped; a broken connection restarts the
    consumer after a short pause.
    """

    while True:
        consumer = AIOKafkaConsumer(
            topic,
            bootstrap_servers=settings.kafka_bootstrap_servers,
            group_id=group_id,
            auto_offset_reset="earliest",
            enable_auto_commit=False,
        )
        try:
            await consumer.start()
            while True:
                batches = await consumer.getmany(timeout_ms=500, max_records=50)
                for messages in batches.values():
                    for msg in messages:
                        try:
                            await dispatch_envelope(topic, msg.value, handler)
                        except Exception as exc:
                            logger.error("handler_error topic=%s offset=%s error=%s", topic, msg.offset, exc)
                await consumer.commit()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("consumer_loop_error topic=%s group=%s error=%s", topic, group_id, exc)
            await asyncio.sleep(2)
        finally:
            await consumer.stop()
