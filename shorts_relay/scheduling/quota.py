"""Daily quota arithmetic.

Only the global pool has a counter. A mapping's cadence is bounded by its
configured slots; ``mapping_uploads_today`` exists for reporting.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from shorts_relay.scheduling.run_state import effective_uploads_today, load_state
from shorts_relay.scheduling.slots import local_date, local_day_start
from shorts_relay.settings_store import GlobalConfig
from shorts_relay.storage.models import STATUS_UPLOADED, ContentItem


def daily_quota_remaining(
    session: Session,
    config: GlobalConfig,
    *,
    mapping_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[int]:
    """Remaining global uploads for the local day; ``None`` for mapping scope (no counter)."""

    if mapping_id is not None:
        return None
    current = now or datetime.now(timezone.utc)
    state = load_state(session)
    used = effective_uploads_today(state, local_date(current, config.scheduler_timezone))
    return max(config.uploads_per_day - used, 0)


def uploads_today(session: Session, config: GlobalConfig, *, now: Optional[datetime] = None) -> int:
    current = now or datetime.now(timezone.utc)
    return effective_uploads_today(load_state(session), local_date(current, config.scheduler_timezone))


def mapping_uploads_today(
    session: Session,
    config: GlobalConfig,
    *,
    mapping_id: str,
    now: Optional[datetime] = None,
) -> int:
    current = now or datetime.now(timezone.utc)
    since = local_day_start(current, config.scheduler_timezone)
    statement = (
        select(func.count(ContentItem.id))
        .where(ContentItem.mapping_id == mapping_id)
        .where(ContentItem.status == STATUS_UPLOADED)
        .where(ContentItem.uploaded_date >= since)
    )
    return int(session.scalar(statement) or 0)
