"""Bounded re-queue of transient failures.

Disabled unless ``failed_retry_enabled`` is set in the global config. Configuration
and validation failures stay Failed until someone intervenes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from shorts_relay.core.logger import get_logger
from shorts_relay.pipeline.activity import log_activity
from shorts_relay.pipeline.states import assert_transition
from shorts_relay.settings_store import GlobalConfig
from shorts_relay.storage.models import FAILURE_TRANSIENT, STATUS_FAILED, STATUS_PENDING, ContentItem, as_utc


DEFAULT_RETRY_BATCH_LIMIT = 50

logger = get_logger("shorts_relay.pipeline.retry")


@dataclass(frozen=True)
class RequeueResult:
    checked: int
    requeued: int


def requeue_failed(
    session: Session,
    config: GlobalConfig,
    *,
    limit: int = DEFAULT_RETRY_BATCH_LIMIT,
    now: Optional[datetime] = None,
) -> RequeueResult:
    if not config.failed_retry_enabled:
        return RequeueResult(checked=0, requeued=0)

    current = as_utc(now) if now is not None else datetime.now(timezone.utc)
    cutoff = current - timedelta(minutes=config.failed_retry_backoff_minutes)
    statement = (
        select(ContentItem)
        .where(ContentItem.status == STATUS_FAILED)
        .where(ContentItem.failure_kind == FAILURE_TRANSIENT)
        .where(ContentItem.retry_count < config.max_retry_count)
        .where(ContentItem.updated_at <= cutoff)
        .order_by(ContentItem.updated_at.asc())
        .limit(max(1, limit))
    )
    candidates = list(session.scalars(statement).all())

    requeued = 0
    for item in candidates:
        assert_transition(item.status, STATUS_PENDING, retry=True)
        attempt = int(item.retry_count or 0) + 1
        # Guarded on status so a concurrent manual edit wins.
        result = session.execute(
            update(ContentItem)
            .where(ContentItem.id == item.id)
            .where(ContentItem.status == STATUS_FAILED)
            .values(
                status=STATUS_PENDING,
                retry_count=attempt,
                failure_kind=None,
                updated_at=current,
            )
            .execution_options(synchronize_session=False)
        )
        session.commit()
        if result.rowcount != 1:
            continue
        requeued += 1
        log_activity(
            session,
            item_id=item.id,
            action="retry",
            status="success",
            message=f"Re-queued after transient failure (attempt {attempt} of {config.max_retry_count})",
            details={"previous_error": item.error_log},
        )

    logger.info("failed_requeue_pass", checked=len(candidates), requeued=requeued)
    return RequeueResult(checked=len(candidates), requeued=requeued)
