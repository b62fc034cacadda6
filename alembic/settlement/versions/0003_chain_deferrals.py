"""count deferred chain waits per intent

Revision ID: 0003_chain_deferrals
Revises: 0002_hot_path_indexes
Create Date: 2026-10-20
"""

from alembic import op
import sqlalchemy as sa


revision = "0003_chain_deferrals"
down_revision = "0002_hot_path_indexes"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "payment_intents",
        sa.Column("chain_deferrals", sa.Integer(), nullable=False, server_default="0"),
    )


def downgrade() -> None:
    op.drop_column("payment_intents", "chain_deferrals")
