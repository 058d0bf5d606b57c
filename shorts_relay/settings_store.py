"""Typed view over the key/value ``config`` table shared with the dashboard."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shorts_relay.core.config import Settings, get_settings
from shorts_relay.core.logger import get_logger
from shorts_relay.storage.models import ConfigEntry


VISIBILITIES = ("public", "unlisted", "private")
DEFAULT_MORNING_SLOT = "09:00"
DEFAULT_EVENING_SLOT = "18:00"

logger = get_logger("shorts_relay.settings_store")


@dataclass(frozen=True)
class GlobalConfig:
    scheduler_timezone: str = "UTC"
    upload_time_morning: str = DEFAULT_MORNING_SLOT
    upload_time_evening: str = DEFAULT_EVENING_SLOT
    default_visibility: str = "public"
    uploads_per_day: int = 2
    unlisted_publish_delay_hours: int = 0
    ai_enhancement_enabled: bool = False
    automation_enabled: bool = False
    uploaded_cleanup_hours: int = 5
    max_retry_count: int = 3
    failed_retry_enabled: bool = False
    failed_retry_backoff_minutes: int = 30

    def as_dict(self) -> Dict[str, object]:
        return {
            "scheduler_timezone": self.scheduler_timezone,
            "upload_time_morning": self.upload_time_morning,
            "upload_time_evening": self.upload_time_evening,
            "default_visibility": self.default_visibility,
            "uploads_per_day": self.uploads_per_day,
            "unlisted_publish_delay_hours": self.unlisted_publish_delay_hours,
            "ai_enhancement_enabled": self.ai_enhancement_enabled,
            "automation_enabled": self.automation_enabled,
            "uploaded_cleanup_hours": self.uploaded_cleanup_hours,
            "max_retry_count": self.max_retry_count,
            "failed_retry_enabled": self.failed_retry_enabled,
            "failed_retry_backoff_minutes": self.failed_retry_backoff_minutes,
        }


def normalize_visibility(raw: Optional[str], *, fallback: str = "public") -> str:
    normalized = (raw or "").strip().lower()
    return normalized if normalized in VISIBILITIES else fallback


def _as_bool(raw: Optional[str], default: bool) -> bool:
    if raw is None:
        return default
    return raw.strip().lower() == "true"


def _as_int(raw: Optional[str], default: int, *, minimum: int = 0) -> int:
    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        return default
    return value if value >= minimum else default


def parse_global_config(values: Mapping[str, str], *, settings: Optional[Settings] = None) -> GlobalConfig:
    """Build a GlobalConfig from raw string values, falling back per key on bad input."""

    effective_settings = settings or get_settings()
    defaults = GlobalConfig(scheduler_timezone=effective_settings.scheduler_timezone)

    timezone_name = (values.get("scheduler_timezone") or "").strip() or defaults.scheduler_timezone
    return GlobalConfig(
        scheduler_timezone=timezone_name,
        # Slot strings are normalized where they are consumed so a bad value
        # still falls back to the documented default.
        upload_time_morning=(values.get("upload_time_morning") or defaults.upload_time_morning).strip(),
        upload_time_evening=(values.get("upload_time_evening") or defaults.upload_time_evening).strip(),
        default_visibility=normalize_visibility(values.get("default_visibility")),
        uploads_per_day=_as_int(values.get("uploads_per_day"), defaults.uploads_per_day),
        unlisted_publish_delay_hours=_as_int(
            values.get("unlisted_publish_delay_hours"),
            defaults.unlisted_publish_delay_hours,
        ),
        ai_enhancement_enabled=_as_bool(values.get("ai_enhancement_enabled"), defaults.ai_enhancement_enabled),
        automation_enabled=_as_bool(values.get("automation_enabled"), defaults.automation_enabled),
        uploaded_cleanup_hours=_as_int(
            values.get("uploaded_cleanup_hours"),
            defaults.uploaded_cleanup_hours,
            minimum=1,
        ),
        max_retry_count=_as_int(values.get("max_retry_count"), defaults.max_retry_count),
        failed_retry_enabled=_as_bool(values.get("failed_retry_enabled"), defaults.failed_retry_enabled),
        failed_retry_backoff_minutes=_as_int(
            values.get("failed_retry_backoff_minutes"),
            defaults.failed_retry_backoff_minutes,
        ),
    )


def read_config_values(session: Session) -> Dict[str, str]:
    rows = session.scalars(select(ConfigEntry)).all()
    return {row.key: row.value for row in rows}


def load_global_config(session: Session, *, settings: Optional[Settings] = None) -> GlobalConfig:
    try:
        values = read_config_values(session)
    except SQLAlchemyError as exc:
        logger.error("global_config_read_failed", error=str(exc))
        session.rollback()
        values = {}
    return parse_global_config(values, settings=settings)


def set_config_value(session: Session, key: str, value: str) -> None:
    entry = session.scalar(select(ConfigEntry).where(ConfigEntry.key == key))
    if entry is None:
        session.add(ConfigEntry(key=key, value=value))
    else:
        entry.value = value
    session.commit()
