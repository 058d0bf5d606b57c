from __future__ import annotations

from datetime import datetime, timedelta, timezone

from shorts_relay.scheduling.slots import (
    MemoryTriggerKeyCache,
    RedisTriggerKeyCache,
    build_trigger_key,
    local_date,
    local_day_start,
    match_slots,
    normalize_slot_time,
    resolve_time_in_zone,
)
from tests.helpers import FakeRedis


def test_resolves_half_hour_offset_zone() -> None:
    moment = resolve_time_in_zone(datetime(2025, 1, 10, 3, 30, tzinfo=timezone.utc), "Asia/Kolkata")

    assert moment.timezone == "Asia/Kolkata"
    assert moment.date == "2025-01-10"
    assert moment.time == "09:00"


def test_resolves_daylight_saving_offsets() -> None:
    summer = resolve_time_in_zone(datetime(2025, 7, 1, 13, 0, tzinfo=timezone.utc), "America/New_York")
    winter = resolve_time_in_zone(datetime(2025, 1, 10, 14, 0, tzinfo=timezone.utc), "America/New_York")

    assert summer.time == "09:00"
    assert winter.time == "09:00"


def test_local_date_crosses_midnight_before_utc() -> None:
    instant = datetime(2025, 1, 10, 20, 0, tzinfo=timezone.utc)

    assert local_date(instant, "Asia/Tokyo").isoformat() == "2025-01-11"
    assert local_day_start(instant, "Asia/Tokyo") == datetime(2025, 1, 10, 15, 0, tzinfo=timezone.utc)


def test_unknown_zone_falls_back_to_utc() -> None:
    moment = resolve_time_in_zone(datetime(2025, 1, 10, 9, 0, tzinfo=timezone.utc), "Mars/Olympus_Mons")

    assert moment.timezone == "UTC"
    assert moment.time == "09:00"


def test_normalize_slot_time_rejects_malformed_values() -> None:
    assert normalize_slot_time("07:45", "09:00") == "07:45"
    assert normalize_slot_time(" 23:59 ", "09:00") == "23:59"
    assert normalize_slot_time("24:00", "09:00") == "09:00"
    assert normalize_slot_time("9:00", "09:00") == "09:00"
    assert normalize_slot_time("", "18:00") == "18:00"
    assert normalize_slot_time(None, "18:00") == "18:00"


def test_coinciding_slots_collapse_into_single_firing() -> None:
    firings = match_slots("09:00", [("morning", "09:00"), ("evening", "09:00")])

    assert len(firings) == 1
    assert firings[0].label == "morning|evening"
    assert firings[0].key_label == "morning|evening@09:00"
    assert match_slots("09:01", [("morning", "09:00")]) == []


def test_trigger_key_layout() -> None:
    assert build_trigger_key("UTC", "2025-01-10", "global", "morning@09:00") == "UTC:2025-01-10:global:morning@09:00"


def test_memory_cache_fires_once_and_evicts_stale_keys() -> None:
    cache = MemoryTriggerKeyCache(ttl_days=3)
    now = datetime(2025, 1, 10, 9, 0, tzinfo=timezone.utc)

    assert cache.should_fire("UTC:2025-01-10:global:morning@09:00", now=now) is True
    assert cache.should_fire("UTC:2025-01-10:global:morning@09:00", now=now + timedelta(seconds=30)) is False
    assert len(cache) == 1

    cache.should_fire("UTC:2025-01-14:global:morning@09:00", now=now + timedelta(days=4))
    assert len(cache) == 1


def test_redis_cache_uses_set_nx_with_expiry() -> None:
    redis = FakeRedis()
    cache = RedisTriggerKeyCache(redis, ttl_days=3)
    now = datetime(2025, 1, 10, 9, 0, tzinfo=timezone.utc)

    assert cache.should_fire("UTC:2025-01-10:global:evening@18:00", now=now) is True
    assert cache.should_fire("UTC:2025-01-10:global:evening@18:00", now=now) is False
    assert redis.expiries["shorts_relay:trigger:UTC:2025-01-10:global:evening@18:00"] == 3 * 86400
