"""initial settlement schema

Revision ID: 0001_settlement
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_settlement"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "payment_intents",
        sa.Column("intent_id", sa.String(), nullable=False),
        sa.Column("reference", sa.String(), nullable=True),
        sa.Column("payer_address", sa.String(length=42), nullable=False),
        sa.Column("token", sa.String(length=16), nullable=False),
        sa.Column("amount", sa.Numeric(78, 0), nullable=False),
        sa.Column("settlement_token", sa.String(length=16), nullable=False),
        sa.Column("state", sa.String(), nullable=False),
        sa.Column("state_version", sa.Integer(), nullable=False),
        sa.Column("chain_tx_hash", sa.String(length=66), nullable=True),
        sa.Column("swap_tx_hash", sa.String(length=66), nullable=True),
        sa.Column("settlement_tx_hash", sa.String(length=66), nullable=True),
        sa.Column("pending_tx_payload", sa.Text(), nullable=True),
        sa.Column("funding_checks", sa.Integer(), nullable=False),
        sa.Column("settlement_attempts", sa.Integer(), nullable=False),
        sa.Column("failure_reason", sa.String(), nullable=True),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("callback_url", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("intent_id"),
        sa.UniqueConstraint("reference"),
    )
    op.create_index("ix_payment_intents_payer_address", "payment_intents", ["payer_address"])
    op.create_index("ix_payment_intents_state", "payment_intents", ["state"])

    op.create_table(
        "intent_timeline",
        sa.Column("timeline_id", sa.String(), nullable=False),
        sa.Column("intent_id", sa.String(), nullable=False),
        sa.Column("from_state", sa.String(), nullable=True),
        sa.Column("to_state", sa.String(), nullable=False),
        sa.Column("reason", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["intent_id"], ["payment_intents.intent_id"]),
        sa.PrimaryKeyConstraint("timeline_id"),
    )
    op.create_index("ix_intent_timeline_intent_id", "intent_timeline", ["intent_id"])

    op.create_table(
        "chain_attempts",
        sa.Column("attempt_id", sa.String(), nullable=False),
        sa.Column("intent_id", sa.String(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("attempt_number", sa.Integer(), nullable=False),
        sa.Column("tx_hash", sa.String(length=66), nullable=True),
        sa.Column("result", sa.String(), nullable=False),
        sa.Column("error_code", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["intent_id"], ["payment_intents.intent_id"]),
        sa.PrimaryKeyConstraint("attempt_id"),
    )
    op.create_index("ix_chain_attempts_intent_id", "chain_attempts", ["intent_id"])

    op.create_table(
        "outbox_events",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("aggregate_type", sa.String(), nullable=False),
        sa.Column("aggregate_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("topic", sa.String(), nullable=False),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_outbox_events_aggregate_id", "outbox_events", ["aggregate_id"])
    op.create_index("ix_outbox_events_event_type", "outbox_events", ["event_type"])
    op.create_index("ix_outbox_events_status", "outbox_events", ["status"])


def downgrade() -> None:
    op.drop_index("ix_outbox_events_status", table_name="outbox_events")
    op.drop_index("ix_outbox_events_event_type", table_name="outbox_events")
    op.drop_index("ix_outbox_events_aggregate_id", table_name="outbox_events")
    op.drop_table("outbox_events")
    op.drop_index("ix_chain_attempts_intent_id", table_name="chain_attempts")
    op.drop_table("chain_attempts")
    op.drop_index("ix_intent_timeline_intent_id", table_name="intent_timeline")
    op.drop_table("intent_timeline")
    op.drop_index("ix_payment_intents_state", table_name="payment_intents")
    op.drop_index("ix_payment_intents_payer_address", table_name="payment_intents")
    op.drop_table("payment_intents")
