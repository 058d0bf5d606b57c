"""Timezone-aware slot matching and idempotent trigger keys."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
import re
from threading import Lock
from typing import Dict, List, Optional, Protocol, Sequence, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from redis import Redis

from shorts_relay.core.logger import get_logger
from shorts_relay.storage.redis_client import namespaced


SLOT_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")
GLOBAL_SCOPE = "global"

logger = get_logger("shorts_relay.scheduling.slots")


@dataclass(frozen=True)
class LocalMoment:
    timezone: str
    date: str
    time: str


@dataclass(frozen=True)
class SlotFiring:
    label: str
    time: str

    @property
    def key_label(self) -> str:
        return f"{self.label}@{self.time}"


def normalize_slot_time(raw: object, fallback: str) -> str:
    if not isinstance(raw, str):
        return fallback
    trimmed = raw.strip()
    if not trimmed:
        return fallback
    return trimmed if SLOT_TIME_PATTERN.match(trimmed) else fallback


def resolve_zone(iana_tz: str) -> Tuple[str, timezone | ZoneInfo]:
    name = (iana_tz or "").strip() or "UTC"
    try:
        return name, ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        logger.warning("scheduler_timezone_invalid", timezone=name, fallback="UTC")
        return "UTC", timezone.utc


def resolve_time_in_zone(instant: datetime, iana_tz: str) -> LocalMoment:
    """Convert an instant to the local date and HH:MM wall time of ``iana_tz``.

    Unknown zones fall back to UTC so a typo in the dashboard never stops the tick.
    """

    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    name, zone = resolve_zone(iana_tz)
    local = instant.astimezone(zone)
    return LocalMoment(timezone=name, date=local.strftime("%Y-%m-%d"), time=local.strftime("%H:%M"))


def local_date(instant: datetime, iana_tz: str) -> date:
    return datetime.strptime(resolve_time_in_zone(instant, iana_tz).date, "%Y-%m-%d").date()


def match_slots(now_time: str, slots: Sequence[Tuple[str, str]]) -> List[SlotFiring]:
    """Return the slots equal to ``now_time``; coinciding slots collapse into one firing."""

    matched = [label for label, slot_time in slots if slot_time == now_time]
    if not matched:
        return []
    return [SlotFiring(label="|".join(matched), time=now_time)]


def build_trigger_key(tz: str, date: str, scope: str, slot_label: str) -> str:
    return f"{tz}:{date}:{scope}:{slot_label}"


class TriggerKeyCache(Protocol):
    def should_fire(self, key: str, *, now: Optional[datetime] = None) -> bool:
        ...


class MemoryTriggerKeyCache:
    """Process-local fired-key map; entries older than ``ttl_days`` are evicted."""

    def __init__(self, *, ttl_days: int = 3) -> None:
        if ttl_days <= 0:
            raise ValueError("ttl_days must be positive")
        self._ttl = timedelta(days=ttl_days)
        self._fired: Dict[str, datetime] = {}
        self._lock = Lock()

    def __len__(self) -> int:
        return len(self._fired)

    def should_fire(self, key: str, *, now: Optional[datetime] = None) -> bool:
        current = now or datetime.now(timezone.utc)
        with self._lock:
            self._evict(current)
            if key in self._fired:
                return False
            self._fired[key] = current
            return True

    def _evict(self, now: datetime) -> None:
        cutoff = now - self._ttl
        stale = [key for key, fired_at in self._fired.items() if fired_at < cutoff]
        for key in stale:
            del self._fired[key]


class RedisTriggerKeyCache:
    """Fired keys survive restarts; Redis expiry handles eviction."""

    def __init__(self, redis_client: Redis, *, ttl_days: int = 3) -> None:
        if ttl_days <= 0:
            raise ValueError("ttl_days must be positive")
        self._redis = redis_client
        self._ttl_seconds = ttl_days * 86400

    def should_fire(self, key: str, *, now: Optional[datetime] = None) -> bool:
        current = now or datetime.now(timezone.utc)
        acquired = self._redis.set(
            namespaced("trigger", key),
            current.isoformat(),
            nx=True,
            ex=self._ttl_seconds,
        )
        return bool(acquired)


def local_day_start(instant: datetime, iana_tz: str) -> datetime:
    """UTC instant of local midnight for the day containing ``instant``."""

    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    _, zone = resolve_zone(iana_tz)
    midnight = instant.astimezone(zone).replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.astimezone(timezone.utc)
