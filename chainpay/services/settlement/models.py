"""Settlement database models.

This DB is the source of truth for payment intents, their transition
timeline, on-chain submission attempts and the service-local outbox.
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from chainpay.common.db import Base, JsonPayload, TokenAmount


class PaymentIntent(Base):
    """Current state of one expected inbound payment and its settlement."""

    __tablename__ = "payment_intents"
    __table_args__ = (Index("ix_payment_intents_state_updated_at", "state", "updated_at"),)

    intent_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    reference: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    payer_address: Mapped[str] = mapped_column(String(42), index=True)
    token: Mapped[str] = mapped_column(String(16))
    amount: Mapped[int] = mapped_column(TokenAmount)
    settlement_token: Mapped[str] = mapped_column(String(16))
    state: Mapped[str] = mapped_column(String, index=True)
    state_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    chain_tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    swap_tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    settlement_tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    # Signed bytes of the swap/settlement tx currently in flight, for rebroadcast.
    pending_tx_payload: Mapped[str | None] = mapped_column(Text, nullable=True)
    funding_checks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    settlement_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Finality waits or RPC outages on the in-flight tx; reset when a swap finalizes.
    chain_deferrals: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failure_reason: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str | None] = mapped_column(String, nullable=True)
    callback_url: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class IntentTimeline(Base):
    """Immutable audit trail of every state transition."""

    __tablename__ = "intent_timeline"

    timeline_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    intent_id: Mapped[str] = mapped_column(ForeignKey("payment_intents.intent_id"), index=True)
    from_state: Mapped[str | None] = mapped_column(String, nullable=True)
    to_state: Mapped[str] = mapped_column(String)
    reason: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class ChainAttempt(Base):
    """Outcome of one swap or settlement broadcast."""

    __tablename__ = "chain_attempts"

    attempt_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    intent_id: Mapped[str] = mapped_column(ForeignKey("payment_intents.intent_id"), index=True)
    kind: Mapped[str] = mapped_column(String)
    attempt_number: Mapped[int] = mapped_column(Integer)
    tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    result: Mapped[str] = mapped_column(String)
    error_code: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class OutboxEvent(Base):
    """Terminal intent events waiting to be published to Kafka."""

    __tablename__ = "outbox_events"
    __table_args__ = (Index("ix_outbox_events_status_created_at", "status", "created_at"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    aggregate_type: Mapped[str] = mapped_column(String)
    aggregate_id: Mapped[str] = mapped_column(String, index=True)
    event_type: Mapped[str] = mapped_column(String, index=True)
    topic: Mapped[str] = mapped_column(String)
    payload: Mapped[dict] = mapped_column(JsonPayload)
    status: Mapped[str] = mapped_column(String, default="PENDING", index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
