"""Initial schema: integrations and webhook records.

Revision ID: 001
Revises:
Create Date: 2026-10-17
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Integrations (owned by the integration screens, read-only here)
    op.create_table(
        "integrations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("platform", sa.String(50), nullable=False),
        sa.Column("webhook_secret", sa.String(255)),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_integrations_user_id", "integrations", ["user_id"])

    # Webhook records
    op.create_table(
        "webhook_records",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("integration_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("platform", sa.String(50), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False, server_default="unknown"),
        sa.Column("payload", sa.Text, nullable=False),
        sa.Column("signature", sa.String(255)),
        sa.Column("source_ip", sa.String(64)),
        sa.Column("user_agent", sa.String(512)),
        sa.Column("headers", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("delivery_id", sa.String(128)),
        sa.Column("correlation_id", sa.String(64)),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("retry_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("next_retry_at", sa.DateTime(timezone=True)),
        sa.Column("error_message", sa.Text),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'processed', 'failed')",
            name="ck_webhook_records_status",
        ),
        sa.CheckConstraint(
            "retry_count >= 0 AND retry_count <= 3",
            name="ck_webhook_records_retry_count",
        ),
    )
    op.create_index(
        "ix_webhook_records_integration_event", "webhook_records", ["integration_id", "event_type"]
    )
    op.create_index("ix_webhook_records_status_created", "webhook_records", ["status", "created_at"])
    op.create_index("ix_webhook_records_processed_at", "webhook_records", ["processed_at"])
    op.create_index("ix_webhook_records_next_retry_at", "webhook_records", ["next_retry_at"])


def downgrade() -> None:
    op.drop_table("webhook_records")
    op.drop_table("integrations")
