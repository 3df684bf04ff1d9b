"""initial records schema

Revision ID: 0001_records
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_records"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "fortunes",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("images", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("subject_name", sa.String(), nullable=False),
        sa.Column("subject_age", sa.String(), nullable=False),
        sa.Column("intent", sa.String(), nullable=False),
        sa.Column("about", sa.Text(), nullable=False),
        sa.Column("prediction", sa.Text(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("state_version", sa.Integer(), nullable=False),
        sa.Column("payment_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_fortunes_owner_id", "fortunes", ["owner_id"])
    op.create_index("ix_fortunes_status", "fortunes", ["status"])

    op.create_table(
        "payments",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("fortune_id", sa.String(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("external_intent_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["fortune_id"], ["fortunes.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_payments_owner_id", "payments", ["owner_id"])
    op.create_index("ix_payments_fortune_id", "payments", ["fortune_id"])
    op.create_index("ix_payments_status", "payments", ["status"])
    op.create_index("ix_payments_external_intent_id", "payments", ["external_intent_id"], unique=True)

    op.create_table(
        "fortune_timeline",
        sa.Column("timeline_id", sa.String(), nullable=False),
        sa.Column("fortune_id", sa.String(), nullable=False),
        sa.Column("from_state", sa.String(), nullable=True),
        sa.Column("to_state", sa.String(), nullable=False),
        sa.Column("reason", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["fortune_id"], ["fortunes.id"]),
        sa.PrimaryKeyConstraint("timeline_id"),
    )
    op.create_index("ix_fortune_timeline_fortune_id", "fortune_timeline", ["fortune_id"])

    op.create_table(
        "notification_logs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("fortune_id", sa.String(), nullable=False),
        sa.Column("channel", sa.String(), nullable=False),
        sa.Column("delivery_id", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notification_logs_fortune_id", "notification_logs", ["fortune_id"])


def downgrade() -> None:
    op.drop_index("ix_notification_logs_fortune_id", table_name="notification_logs")
    op.drop_table("notification_logs")
    op.drop_index("ix_fortune_timeline_fortune_id", table_name="fortune_timeline")
    op.drop_table("fortune_timeline")
    op.drop_index("ix_payments_external_intent_id", table_name="payments")
    op.drop_index("ix_payments_status", table_name="payments")
    op.drop_index("ix_payments_fortune_id", table_name="payments")
    op.drop_index("ix_payments_owner_id", table_name="payments")
    op.drop_table("payments")
    op.drop_index("ix_fortunes_status", table_name="fortunes")
    op.drop_index("ix_fortunes_owner_id", table_name="fortunes")
    op.drop_table("fortunes")
