"""Initial schema: permits, permit_events, email_queue, push_subscriptions

Revision ID: 0001
Revises: None
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables."""

    # --- permits ---
    op.create_table(
        "permits",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("ref_number", sa.String(64), nullable=False),
        sa.Column("template_id", sa.String(64), nullable=True),
        sa.Column("holder_id", sa.String(64), nullable=True),
        sa.Column("holder_email", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("valid_from", sa.DateTime(), nullable=True),
        sa.Column("valid_to", sa.DateTime(), nullable=True),
        sa.Column("approved_by", sa.String(64), nullable=True),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("rejected_by", sa.String(64), nullable=True),
        sa.Column("rejected_at", sa.DateTime(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("closed_by", sa.String(64), nullable=True),
        sa.Column("closed_at", sa.DateTime(), nullable=True),
        sa.Column("closure_reason", sa.Text(), nullable=True),
        sa.Column("work_started_at", sa.DateTime(), nullable=True),
        sa.Column("unique_link", sa.String(64), nullable=True),
        sa.Column("notified_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_permits"),
        sa.UniqueConstraint("unique_link", name="uq_permits_unique_link"),
    )
    op.create_index("ix_permits_ref_number", "permits", ["ref_number"])
    op.create_index("ix_permits_holder_id", "permits", ["holder_id"])
    op.create_index("ix_permits_status", "permits", ["status"])
    op.create_index("ix_permits_valid_to", "permits", ["valid_to"])

    # --- permit_events (FK -> permits) ---
    op.create_table(
        "permit_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("permit_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("actor", sa.String(64), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_permit_events"),
        sa.ForeignKeyConstraint(["permit_id"], ["permits.id"], name="fk_permit_events_permit_id"),
    )
    op.create_index("ix_permit_events_permit_id", "permit_events", ["permit_id"])
    op.create_index("ix_permit_events_type", "permit_events", ["type"])
    op.create_index("ix_permit_events_created_at", "permit_events", ["created_at"])

    # --- email_queue ---
    op.create_table(
        "email_queue",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("to_address", sa.String(255), nullable=False),
        sa.Column("subject", sa.String(512), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("dedup_key", sa.String(512), nullable=True),
        sa.Column("claim_token", sa.String(36), nullable=True),
        sa.Column("claimed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_email_queue"),
    )
    op.create_index("ix_email_queue_to_address", "email_queue", ["to_address"])
    op.create_index("ix_email_queue_status", "email_queue", ["status"])
    op.create_index("ix_email_queue_dedup_key", "email_queue", ["dedup_key"])
    op.create_index("ix_email_queue_claim_token", "email_queue", ["claim_token"])
    op.create_index("ix_email_queue_created_at", "email_queue", ["created_at"])

    # --- push_subscriptions ---
    op.create_table(
        "push_subscriptions",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("endpoint", sa.Text(), nullable=False),
        sa.Column("endpoint_hash", sa.String(64), nullable=False),
        sa.Column("p256dh", sa.String(255), nullable=False),
        sa.Column("auth", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_push_subscriptions"),
        sa.UniqueConstraint("endpoint_hash", name="uq_push_subscriptions_endpoint_hash"),
    )
    op.create_index("ix_push_subscriptions_user_id", "push_subscriptions", ["user_id"])


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    op.drop_table("push_subscriptions")
    op.drop_table("email_queue")
    op.drop_table("permit_events")
    op.drop_table("permits")
