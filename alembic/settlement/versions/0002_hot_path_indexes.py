"""add hot-path indexes for the reconciliation sweep and outbox

Revision ID: 0002_hot_path_indexes
Revises: 0001_settlement
Create Date: 2026-10-19
"""

from alembic import op


revision = "0002_hot_path_indexes"
down_revision = "0001_settlement"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_index(
        "ix_payment_intents_state_updated_at",
        "payment_intents",
        ["state", "updated_at"],
    )
    op.create_index(
        "ix_outbox_events_status_created_at",
        "outbox_events",
        ["status", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_outbox_events_status_created_at", table_name="outbox_events")
    op.drop_index("ix_payment_intents_state_updated_at", table_name="payment_intents")
