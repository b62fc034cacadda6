"""Notification service lifecycle and lightweight read endpoints."""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy import select

from chainpay.common.config import settings
from chainpay.common.db import SessionLocal
from chainpay.common.logging import configure_logging
from chainpay.common.metrics import metrics_response
from chainpay.common.startup import log_startup_config
from chainpay.common.tracing import instrument_app, setup_tracing
from chainpay.services.notification.models import NotificationLog
from chainpay.services.notification.service import NotificationService

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    ["SERVICE_NAME", "POSTGRES_DSN", "KAFKA_BOOTSTRAP_SERVERS", "WEBHOOK_TIMEOUT_SECONDS"],
)
service = NotificationService(SessionLocal, timeout_seconds=settings.webhook_timeout_seconds)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Run consumer loop with FastAPI application lifecycle."""

    consumer_task = asyncio.create_task(service.start_consumers())
    yield
    consumer_task.cancel()


app = FastAPI(title="ChainPay Notification Service", lifespan=lifespan)
instrument_app(app)


@app.get("/notifications/{intent_id}")
def list_notifications(intent_id: str):
    """Delivery log for one intent, oldest first."""

    with SessionLocal() as db:
        rows = db.execute(
            select(NotificationLog)
            .where(NotificationLog.intent_id == intent_id)
            .order_by(NotificationLog.created_at)
        ).scalars()
        return [
            {
                "event_type": row.event_type,
                "outcome": row.outcome,
                "status_code": row.status_code,
                "created_at": row.created_at,
            }
            for row in rows
        ]


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True}


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()
