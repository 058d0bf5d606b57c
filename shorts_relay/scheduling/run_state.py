"""Durable scheduler run-state row: leased run lock and daily upload counter."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional
import uuid

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shorts_relay.core.logger import get_logger
from shorts_relay.storage.models import SCHEDULER_STATE_ID, SchedulerRunState, as_utc


MAX_COUNTER_ATTEMPTS = 5

logger = get_logger("shorts_relay.scheduling.run_state")


@dataclass(frozen=True)
class RunLockHandle:
    token: str
    acquired_at: datetime


class CounterConflictError(RuntimeError):
    """Raised when the optimistic counter update keeps losing to concurrent writers."""


def _now(now: Optional[datetime]) -> datetime:
    return as_utc(now) if now is not None else datetime.now(timezone.utc)


def load_state(session: Session) -> SchedulerRunState:
    """Return the singleton row, creating it on first use."""

    statement = (
        select(SchedulerRunState)
        .where(SchedulerRunState.id == SCHEDULER_STATE_ID)
        .execution_options(populate_existing=True)
    )
    state = session.scalar(statement)
    if state is not None:
        return state

    session.add(SchedulerRunState(id=SCHEDULER_STATE_ID))
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
    return session.scalars(statement).one()


def effective_uploads_today(state: SchedulerRunState, today: date) -> int:
    if state.uploads_day != today:
        return 0
    return max(int(state.uploads_today or 0), 0)


def is_lock_held(state: SchedulerRunState, *, ttl_seconds: int, now: Optional[datetime] = None) -> bool:
    if not state.is_running:
        return False
    acquired_at = as_utc(state.lock_acquired_at)
    if acquired_at is None:
        return True
    return acquired_at >= _now(now) - timedelta(seconds=ttl_seconds)


def try_acquire_run_lock(
    session: Session,
    *,
    ttl_seconds: int,
    status: str = "Processing...",
    now: Optional[datetime] = None,
) -> RunLockHandle | None:
    """Compare-and-set the run flag; a lock older than ``ttl_seconds`` may be taken over."""

    current = _now(now)
    load_state(session)
    token = str(uuid.uuid4())
    stale_cutoff = current - timedelta(seconds=ttl_seconds)
    result = session.execute(
        update(SchedulerRunState)
        .where(SchedulerRunState.id == SCHEDULER_STATE_ID)
        .where(
            or_(
                SchedulerRunState.is_running.is_(False),
                SchedulerRunState.lock_acquired_at.is_(None),
                SchedulerRunState.lock_acquired_at < stale_cutoff,
            )
        )
        .values(
            is_running=True,
            lock_token=token,
            lock_acquired_at=current,
            current_status=status,
            updated_at=current,
        )
        .execution_options(synchronize_session=False)
    )
    session.commit()
    if result.rowcount != 1:
        logger.info("run_lock_busy")
        return None
    logger.info("run_lock_acquired", token=token)
    return RunLockHandle(token=token, acquired_at=current)


def release_run_lock(
    session: Session,
    handle: RunLockHandle,
    *,
    status: Optional[str] = None,
    now: Optional[datetime] = None,
) -> bool:
    current = _now(now)
    values: dict[str, object] = {
        "is_running": False,
        "lock_token": None,
        "lock_acquired_at": None,
        "last_run_at": current,
        "updated_at": current,
    }
    if status is not None:
        values["current_status"] = status
    result = session.execute(
        update(SchedulerRunState)
        .where(SchedulerRunState.id == SCHEDULER_STATE_ID)
        .where(SchedulerRunState.lock_token == handle.token)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    session.commit()
    released = result.rowcount == 1
    if not released:
        logger.warning("run_lock_release_lost", token=handle.token)
    return released


def increment_uploads_today(session: Session, *, today: date) -> int:
    """Bump the daily counter with an optimistic version check, rolling over stale days."""

    for _ in range(MAX_COUNTER_ATTEMPTS):
        state = load_state(session)
        observed_version = int(state.version or 0)
        next_count = effective_uploads_today(state, today) + 1
        result = session.execute(
            update(SchedulerRunState)
            .where(SchedulerRunState.id == SCHEDULER_STATE_ID)
            .where(SchedulerRunState.version == observed_version)
            .values(
                uploads_today=next_count,
                uploads_day=today,
                version=observed_version + 1,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        session.commit()
        if result.rowcount == 1:
            return next_count
        logger.info("uploads_counter_conflict", observed_version=observed_version)
    raise CounterConflictError("uploads_today_update_conflict")


def reset_daily_counter(session: Session, *, today: date) -> None:
    state = load_state(session)
    session.execute(
        update(SchedulerRunState)
        .where(SchedulerRunState.id == SCHEDULER_STATE_ID)
        .values(
            uploads_today=0,
            uploads_day=today,
            version=int(state.version or 0) + 1,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    session.commit()
    logger.info("uploads_counter_reset", day=today.isoformat())


def mark_run_finished(session: Session, *, status: str, now: Optional[datetime] = None) -> bool:
    """Record a pass that ended without taking the run lock; a live holder keeps its status."""

    current = _now(now)
    load_state(session)
    result = session.execute(
        update(SchedulerRunState)
        .where(SchedulerRunState.id == SCHEDULER_STATE_ID)
        .where(SchedulerRunState.is_running.is_(False))
        .values(last_run_at=current, current_status=status, updated_at=current)
        .execution_options(synchronize_session=False)
    )
    session.commit()
    return result.rowcount == 1
