"""SQLAlchemy ORM models for the republishing queue and scheduler state."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Optional
import uuid

from sqlalchemy import JSON, Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shorts_relay.storage.db import Base


STATUS_PENDING = "Pending"
STATUS_DOWNLOADED = "Downloaded"
STATUS_UPLOADING = "Uploading"
STATUS_UPLOADED = "Uploaded"
STATUS_FAILED = "Failed"

CONTENT_STATUSES = (
    STATUS_PENDING,
    STATUS_DOWNLOADED,
    STATUS_UPLOADING,
    STATUS_UPLOADED,
    STATUS_FAILED,
)

FAILURE_TRANSIENT = "transient"
FAILURE_CONFIGURATION = "configuration"
FAILURE_VALIDATION = "validation"

SCHEDULER_STATE_ID = 1


def _uuid() -> str:
    return str(uuid.uuid4())


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from backends without tz support."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ChannelMapping(Base):
    __tablename__ = "channel_mappings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    source_channel_id: Mapped[str] = mapped_column(String(128), nullable=False)
    source_channel_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    source_channel_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    target_channel_id: Mapped[str] = mapped_column(String(128), nullable=False)
    target_channel_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    uploads_per_day: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    upload_time_morning: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    upload_time_evening: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    default_visibility: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    ai_enhancement_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    publish_delay_hours: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    last_fetched_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    total_fetched: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_uploaded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utc_now,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utc_now,
        onupdate=_utc_now,
        server_default=func.now(),
    )

    __table_args__ = (
        Index("ix_channel_mappings_active_source", "is_active", "source_channel_id"),
        Index("ix_channel_mappings_source_url", "source_channel_url"),
    )


class ContentItem(Base):
    __tablename__ = "shorts_data"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    video_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    video_url: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tags: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    thumbnail_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    duration: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    published_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_PENDING)
    mapping_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("channel_mappings.id", ondelete="SET NULL"),
        nullable=True,
    )
    source_channel: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    target_channel: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    scheduled_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    uploaded_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    target_video_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_log: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    failure_kind: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    ai_title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ai_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ai_hashtags: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utc_now,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utc_now,
        onupdate=_utc_now,
        server_default=func.now(),
    )

    mapping: Mapped[Optional[ChannelMapping]] = relationship("ChannelMapping")

    __table_args__ = (
        Index("ix_shorts_data_status_created_at", "status", "created_at"),
        Index("ix_shorts_data_mapping_status_created_at", "mapping_id", "status", "created_at"),
        Index("ix_shorts_data_status_scheduled_date", "status", "scheduled_date"),
        Index("ix_shorts_data_status_uploaded_date", "status", "uploaded_date"),
    )


class UploadLog(Base):
    __tablename__ = "upload_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    short_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("shorts_data.id", ondelete="CASCADE"),
        nullable=False,
    )
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utc_now,
        server_default=func.now(),
    )

    __table_args__ = (Index("ix_upload_logs_short_created_at", "short_id", "created_at"),)


class SchedulerRunState(Base):
    __tablename__ = "scheduler_state"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=SCHEDULER_STATE_ID)
    is_running: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    lock_token: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    lock_acquired_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    uploads_today: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    uploads_day: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    last_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    current_status: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utc_now,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utc_now,
        onupdate=_utc_now,
        server_default=func.now(),
    )


class DestinationChannel(Base):
    __tablename__ = "destination_channels"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    channel_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    channel_title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    refresh_token_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_connected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    connected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utc_now,
        onupdate=_utc_now,
        server_default=func.now(),
    )


class ConfigEntry(Base):
    __tablename__ = "config"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    key: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    value: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utc_now,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utc_now,
        onupdate=_utc_now,
        server_default=func.now(),
    )
