"""Create notification queue, delivery log and device token tables.

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19 00:00:01

"""

from typing import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "20261019_000001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Upgrade database schema."""
    # Create notification_queue table
    op.create_table(
        "notification_queue",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column(
            "notification_type", sa.String(length=32), nullable=False
        ),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("data", sa.JSON(), nullable=True),
        sa.Column(
            "priority", sa.Integer(), server_default="5", nullable=False
        ),
        sa.Column(
            "status",
            sa.String(length=32),
            server_default="pending",
            nullable=False,
        ),
        sa.Column(
            "retry_count", sa.Integer(), server_default="0", nullable=False
        ),
        sa.Column(
            "max_retries", sa.Integer(), server_default="3", nullable=False
        ),
        sa.Column(
            "next_retry_at", sa.DateTime(timezone=True), nullable=True
        ),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column(
            "scheduled_for", sa.DateTime(timezone=True), nullable=True
        ),
        sa.Column("dedup_key", sa.String(length=255), nullable=True),
        sa.Column("lock_id", sa.String(length=64), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.CheckConstraint(
            "retry_count >= 0 AND retry_count <= max_retries",
            name="ck_notification_queue_retry_count",
        ),
        sa.CheckConstraint(
            "priority BETWEEN 1 AND 10",
            name="ck_notification_queue_priority",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("dedup_key"),
    )

    op.create_index(
        "ix_notification_queue_user_id",
        "notification_queue",
        ["user_id"],
        unique=False,
    )
    op.create_index(
        "ix_notification_queue_notification_type",
        "notification_queue",
        ["notification_type"],
        unique=False,
    )
    op.create_index(
        "ix_notification_queue_lock_id",
        "notification_queue",
        ["lock_id"],
        unique=False,
    )
    # Fetch order: pending by priority, then FIFO
    op.create_index(
        "idx_notification_queue_processing",
        "notification_queue",
        ["status", "priority", "created_at"],
        unique=False,
    )
    op.create_index(
        "idx_notification_queue_retry",
        "notification_queue",
        ["status", "next_retry_at"],
        unique=False,
    )
    op.create_index(
        "idx_notification_queue_claim",
        "notification_queue",
        ["status", "claimed_at"],
        unique=False,
    )

    # Create notification_deliveries table
    op.create_table(
        "notification_deliveries",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("queue_item_id", sa.Integer(), nullable=False),
        sa.Column("attempt_id", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column(
            "notification_type", sa.String(length=32), nullable=False
        ),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column(
            "sent_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("device_token", sa.String(length=255), nullable=False),
        sa.Column("outcome", sa.String(length=16), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "queue_item_id",
            "device_token",
            "attempt_id",
            name="uq_notification_deliveries_attempt",
        ),
    )

    op.create_index(
        "ix_notification_deliveries_queue_item_id",
        "notification_deliveries",
        ["queue_item_id"],
        unique=False,
    )
    op.create_index(
        "idx_notification_deliveries_user",
        "notification_deliveries",
        ["user_id", "sent_at"],
        unique=False,
    )
    op.create_index(
        "idx_notification_deliveries_type",
        "notification_deliveries",
        ["notification_type", "sent_at"],
        unique=False,
    )

    # Create user_devices table
    op.create_table(
        "user_devices",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("token", sa.String(length=255), nullable=False),
        sa.Column("platform", sa.String(length=16), nullable=True),
        sa.Column(
            "is_active",
            sa.Boolean(),
            server_default=sa.true(),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "last_used_at", sa.DateTime(timezone=True), nullable=True
        ),
        sa.Column(
            "deactivated_at", sa.DateTime(timezone=True), nullable=True
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("token"),
    )

    op.create_index(
        "idx_user_devices_user_active",
        "user_devices",
        ["user_id", "is_active"],
        unique=False,
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index("idx_user_devices_user_active", table_name="user_devices")
    op.drop_table("user_devices")

    op.drop_index(
        "idx_notification_deliveries_type",
        table_name="notification_deliveries",
    )
    op.drop_index(
        "idx_notification_deliveries_user",
        table_name="notification_deliveries",
    )
    op.drop_index(
        "ix_notification_deliveries_queue_item_id",
        table_name="notification_deliveries",
    )
    op.drop_table("notification_deliveries")

    op.drop_index(
        "idx_notification_queue_claim", table_name="notification_queue"
    )
    op.drop_index(
        "idx_notification_queue_retry", table_name="notification_queue"
    )
    op.drop_index(
        "idx_notification_queue_processing", table_name="notification_queue"
    )
    op.drop_index(
        "ix_notification_queue_lock_id", table_name="notification_queue"
    )
    op.drop_index(
        "ix_notification_queue_notification_type",
        table_name="notification_queue",
    )
    op.drop_index(
        "ix_notification_queue_user_id", table_name="notification_queue"
    )
    op.drop_table("notification_queue")
