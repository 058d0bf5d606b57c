"""initial republishing schema

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    ]


def upgrade() -> None:
    op.create_table(
        "channel_mappings",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("source_channel_id", sa.String(length=128), nullable=False),
        sa.Column("source_channel_url", sa.String(length=512), nullable=True),
        sa.Column("source_channel_name", sa.String(length=255), nullable=True),
        sa.Column("target_channel_id", sa.String(length=128), nullable=False),
        sa.Column("target_channel_name", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("uploads_per_day", sa.Integer(), nullable=False, server_default="2"),
        sa.Column("upload_time_morning", sa.String(length=5), nullable=True),
        sa.Column("upload_time_evening", sa.String(length=5), nullable=True),
        sa.Column("default_visibility", sa.String(length=16), nullable=True),
        sa.Column("ai_enhancement_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("publish_delay_hours", sa.Integer(), nullable=True),
        sa.Column("last_fetched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_fetched", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_uploaded", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_channel_mappings_active_source",
        "channel_mappings",
        ["is_active", "source_channel_id"],
        unique=False,
    )
    op.create_index("ix_channel_mappings_source_url", "channel_mappings", ["source_channel_url"], unique=False)

    op.create_table(
        "shorts_data",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("video_id", sa.String(length=64), nullable=False),
        sa.Column("video_url", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False, server_default=""),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("thumbnail_url", sa.Text(), nullable=True),
        sa.Column("duration", sa.String(length=32), nullable=True),
        sa.Column("published_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="Pending"),
        sa.Column("mapping_id", sa.String(length=36), nullable=True),
        sa.Column("source_channel", sa.String(length=512), nullable=True),
        sa.Column("target_channel", sa.String(length=128), nullable=True),
        sa.Column("scheduled_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("uploaded_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("target_video_id", sa.String(length=64), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_log", sa.Text(), nullable=True),
        sa.Column("failure_kind", sa.String(length=32), nullable=True),
        sa.Column("ai_title", sa.Text(), nullable=True),
        sa.Column("ai_description", sa.Text(), nullable=True),
        sa.Column("ai_hashtags", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["mapping_id"], ["channel_mappings.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("video_id", name="uq_shorts_data_video_id"),
        sa.CheckConstraint(
            "status IN ('Pending', 'Downloaded', 'Uploading', 'Uploaded', 'Failed')",
            name="ck_shorts_data_status",
        ),
    )
    op.create_index("ix_shorts_data_status_created_at", "shorts_data", ["status", "created_at"], unique=False)
    op.create_index(
        "ix_shorts_data_mapping_status_created_at",
        "shorts_data",
        ["mapping_id", "status", "created_at"],
        unique=False,
    )
    op.create_index("ix_shorts_data_status_scheduled_date", "shorts_data", ["status", "scheduled_date"], unique=False)
    op.create_index("ix_shorts_data_status_uploaded_date", "shorts_data", ["status", "uploaded_date"], unique=False)

    op.create_table(
        "upload_logs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("short_id", sa.String(length=36), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("details", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["short_id"], ["shorts_data.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_upload_logs_short_created_at", "upload_logs", ["short_id", "created_at"], unique=False)

    op.create_table(
        "scheduler_state",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("is_running", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("lock_token", sa.String(length=36), nullable=True),
        sa.Column("lock_acquired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("uploads_today", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("uploads_day", sa.Date(), nullable=True),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_status", sa.String(length=255), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.execute("INSERT INTO scheduler_state (id, is_running, uploads_today, version) VALUES (1, false, 0, 0)")

    op.create_table(
        "destination_channels",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("channel_id", sa.String(length=128), nullable=False),
        sa.Column("channel_title", sa.String(length=255), nullable=True),
        sa.Column("refresh_token_encrypted", sa.Text(), nullable=True),
        sa.Column("is_connected", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("connected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("channel_id", name="uq_destination_channels_channel_id"),
    )

    op.create_table(
        "config",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("key", sa.String(length=128), nullable=False),
        sa.Column("value", sa.Text(), nullable=False, server_default=""),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("key", name="uq_config_key"),
    )


def downgrade() -> None:
    op.drop_table("config")
    op.drop_table("destination_channels")
    op.drop_table("scheduler_state")
    op.drop_index("ix_upload_logs_short_created_at", table_name="upload_logs")
    op.drop_table("upload_logs")
    op.drop_index("ix_shorts_data_status_uploaded_date", table_name="shorts_data")
    op.drop_index("ix_shorts_data_status_scheduled_date", table_name="shorts_data")
    op.drop_index("ix_shorts_data_mapping_status_created_at", table_name="shorts_data")
    op.drop_index("ix_shorts_data_status_created_at", table_name="shorts_data")
    op.drop_table("shorts_data")
    op.drop_index("ix_channel_mappings_source_url", table_name="channel_mappings")
    op.drop_index("ix_channel_mappings_active_source", table_name="channel_mappings")
    op.drop_table("channel_mappings")
