from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from shorts_relay.scheduling.quota import daily_quota_remaining, mapping_uploads_today, uploads_today
from shorts_relay.scheduling.run_state import (
    increment_uploads_today,
    is_lock_held,
    load_state,
    mark_run_finished,
    release_run_lock,
    reset_daily_counter,
    try_acquire_run_lock,
)
from shorts_relay.settings_store import GlobalConfig
from shorts_relay.storage.models import STATUS_UPLOADED, as_utc
from tests.helpers import add_item, add_mapping, build_sqlite_session_factory


def test_run_lock_is_exclusive_until_lease_expires() -> None:
    session_factory = build_sqlite_session_factory()
    started = datetime(2025, 1, 10, 9, 0, tzinfo=timezone.utc)

    with session_factory() as session:
        first = try_acquire_run_lock(session, ttl_seconds=1800, now=started)
        assert first is not None
        assert try_acquire_run_lock(session, ttl_seconds=1800, now=started + timedelta(minutes=10)) is None
        assert is_lock_held(load_state(session), ttl_seconds=1800, now=started + timedelta(minutes=10)) is True

        takeover = try_acquire_run_lock(session, ttl_seconds=1800, now=started + timedelta(minutes=31))
        assert takeover is not None
        assert takeover.token != first.token

        # The stale holder must not release the new lease.
        assert release_run_lock(session, first, status="Completed") is False
        assert load_state(session).is_running is True

        assert release_run_lock(session, takeover, status="Completed", now=started + timedelta(minutes=32)) is True
        state = load_state(session)
        assert state.is_running is False
        assert state.lock_token is None
        assert state.current_status == "Completed"


def test_mark_run_finished_skips_while_lock_is_held() -> None:
    session_factory = build_sqlite_session_factory()
    started = datetime(2025, 1, 10, 9, 0, tzinfo=timezone.utc)

    with session_factory() as session:
        assert mark_run_finished(session, status="Completed", now=started) is True
        assert load_state(session).current_status == "Completed"

        handle = try_acquire_run_lock(session, ttl_seconds=1800, now=started + timedelta(minutes=1))
        assert handle is not None
        assert mark_run_finished(session, status="Completed", now=started + timedelta(minutes=2)) is False
        state = load_state(session)
        assert state.current_status == "Processing..."
        assert as_utc(state.last_run_at) == started

def test_upload_counter_rolls_over_by_day() -> None:
    session_factory = build_sqlite_session_factory()
    day = date(2025, 1, 10)

    with session_factory() as session:
        assert increment_uploads_today(session, today=day) == 1
        assert increment_uploads_today(session, today=day) == 2
        assert increment_uploads_today(session, today=day + timedelta(days=1)) == 1

        reset_daily_counter(session, today=day + timedelta(days=2))
        state = load_state(session)
        assert state.uploads_today == 0
        assert state.uploads_day == day + timedelta(days=2)
        assert state.version == 4


def test_quota_counts_global_uploads_in_local_day() -> None:
    session_factory = build_sqlite_session_factory()
    config = GlobalConfig(scheduler_timezone="Asia/Kolkata", uploads_per_day=3)
    # 20:00 UTC is already the next day in India.
    now = datetime(2025, 1, 10, 20, 0, tzinfo=timezone.utc)

    with session_factory() as session:
        increment_uploads_today(session, today=date(2025, 1, 11))
        assert uploads_today(session, config, now=now) == 1
        assert daily_quota_remaining(session, config, now=now) == 2
        assert daily_quota_remaining(session, config, mapping_id="any-mapping", now=now) is None


def test_mapping_uploads_today_counts_since_local_midnight() -> None:
    session_factory = build_sqlite_session_factory()
    config = GlobalConfig(scheduler_timezone="UTC")
    now = datetime(2025, 1, 10, 12, 0, tzinfo=timezone.utc)

    with session_factory() as session:
        mapping = add_mapping(session)
        add_item(session, mapping_id=mapping.id, status=STATUS_UPLOADED, uploaded_date=now - timedelta(hours=2))
        add_item(session, mapping_id=mapping.id, status=STATUS_UPLOADED, uploaded_date=now - timedelta(hours=20))
        add_item(session, mapping_id=mapping.id)

        assert mapping_uploads_today(session, config, mapping_id=mapping.id, now=now) == 1
