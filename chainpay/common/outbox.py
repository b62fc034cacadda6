"""Transactional outbox relay.

Rows are written in the same transaction as the state change they describe;
`relay_outbox_once` claims a batch, publishes each row and marks it SENT, or
hands it back to PENDING when Kafka is unavailable.
"""

from datetime import datetime, timedelta, timezone

from sqlalchemy import func, or_, select, update

from chainpay.common.events import EventEnvelope
from chainpay.common.logging import logger
from chainpay.common.metrics import outbox_oldest_pending_age_seconds, outbox_pending_total

IN_FLIGHT = ("PENDING", "PROCESSING")


def claim_outbox_batch(db, outbox_model, limit: int = 100, processing_timeout_seconds: int = 30) -> list[dict]:
    """Atomically claim pending rows plus PROCESSING rows whose claim went stale."""

    table = outbox_model.__table__
    now = datetime.now(timezone.utc)
    stale = (table.c.status == "PROCESSING") & (table.c.sent_at < now - timedelta(seconds=processing_timeout_seconds))
    claimable = (
        select(table.c.id)
        .where(or_(table.c.status == "PENDING", stale))
        .order_by(table.c.created_at)
        .limit(limit)
        .with_for_update(skip_locked=True)
    )
    rows = db.execute(
        update(table)
        .where(table.c.id.in_(claimable))
        .values(status="PROCESSING", sent_at=now)
        .returning(table.c.id, table.c.topic, table.c.payload)
    ).all()
    return [{"id": row.id, "topic": row.topic, "payload": row.payload} for row in rows]


def _finish(db, outbox_model, event_id: str, status: str) -> None:
    table = outbox_model.__table__
    sent_at = datetime.now(timezone.utc) if status == "SENT" else None
    db.execute(
        update(table)
        .where(table.c.id == event_id, table.c.status == "PROCESSING")
        .values(status=status, sent_at=sent_at)
    )


def update_outbox_backlog_metrics(db, outbox_model, service_name: str) -> None:
    """Refresh backlog depth and oldest-pending age gauges."""

    table = outbox_model.__table__
    pending, oldest = db.execute(
        select(func.count(), func.min(table.c.created_at)).where(table.c.status.in_(IN_FLIGHT))
    ).one()
    age_seconds = 0.0
    if oldest is not None:
        if oldest.tzinfo is None:
            oldest = oldest.replace(tzinfo=timezone.utc)
        age_seconds = max(0.0, (datetime.now(timezone.utc) - oldest).total_seconds())
    outbox_pending_total.labels(service=service_name).set(float(pending))
    outbox_oldest_pending_age_seconds.labels(service=service_name).set(age_seconds)


async def relay_outbox_once(session_factory, outbox_model, bus, service_name: str, limit: int = 100) -> int:
    """Publish one claimed batch; returns how many rows were delivered."""

    with session_factory() as db:
        rows = claim_outbox_batch(db, outbox_model, limit=limit)
        update_outbox_backlog_metrics(db, outbox_model, service_name)
        db.commit()

    delivered = 0
    for row in rows:
        try:
            await bus.publish(row["topic"], EventEnvelope(**row["payload"]))
            status = "SENT"
            delivered += 1
        except Exception as exc:
            logger.exception("outbox_publish_failed event_id=%s error=%s", row["id"], exc)
            status = "PENDING"
        with session_factory() as db:
            _finish(db, outbox_model, row["id"], status)
            update_outbox_backlog_metrics(db, outbox_model, service_name)
            db.commit()
    return delivered
