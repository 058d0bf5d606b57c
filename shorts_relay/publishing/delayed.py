"""Promote unlisted/private uploads to public once their delay has elapsed."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from shorts_relay.core.logger import get_logger
from shorts_relay.core.metrics import record_delayed_publish
from shorts_relay.pipeline.activity import log_activity
from shorts_relay.pipeline.collaborators import CredentialResolver, UploadError, VisibilityClient
from shorts_relay.storage.models import STATUS_UPLOADED, ContentItem, as_utc


DEFAULT_PUBLISH_LIMIT = 20
DEFAULT_RETRY_MINUTES = 15

logger = get_logger("shorts_relay.publishing.delayed")


@dataclass(frozen=True)
class PublishDueResult:
    checked: int
    published: int
    rescheduled: int


def publish_due(
    session: Session,
    *,
    credential_resolver: CredentialResolver,
    visibility_client: VisibilityClient,
    limit: int = DEFAULT_PUBLISH_LIMIT,
    retry_minutes: int = DEFAULT_RETRY_MINUTES,
    now: Optional[datetime] = None,
) -> PublishDueResult:
    """Flip due items to public; failures back off without touching item status."""

    current = as_utc(now) if now is not None else datetime.now(timezone.utc)
    statement = (
        select(ContentItem)
        .where(ContentItem.status == STATUS_UPLOADED)
        .where(ContentItem.scheduled_date.is_not(None))
        .where(ContentItem.scheduled_date <= current)
        .where(ContentItem.target_video_id.is_not(None))
        .order_by(ContentItem.scheduled_date.asc())
        .limit(max(1, limit))
    )
    items = list(session.scalars(statement).all())
    retry_at = current + timedelta(minutes=retry_minutes)

    published = 0
    rescheduled = 0
    for item in items:
        credential = credential_resolver.resolve(item.target_channel)
        if credential is None:
            message = f"Publish postponed: destination channel {item.target_channel or '(unset)'} is not connected."
            _reschedule(session, item, retry_at=retry_at, message=message)
            rescheduled += 1
            continue

        try:
            visibility_client.update_visibility(item.target_video_id, "public", credential)
        except UploadError as exc:
            _reschedule(session, item, retry_at=retry_at, message=f"Scheduled publish failed: {exc}")
            rescheduled += 1
            continue

        item.scheduled_date = None
        item.error_log = None
        session.commit()
        published += 1
        log_activity(
            session,
            item_id=item.id,
            action="publish",
            status="success",
            message=f"Published {item.target_video_id} as public",
        )

    record_delayed_publish(status="published", count=published)
    record_delayed_publish(status="rescheduled", count=rescheduled)
    if items:
        logger.info("delayed_publish_pass", checked=len(items), published=published, rescheduled=rescheduled)
    return PublishDueResult(checked=len(items), published=published, rescheduled=rescheduled)


def _reschedule(session: Session, item: ContentItem, *, retry_at: datetime, message: str) -> None:
    item.scheduled_date = retry_at
    item.error_log = message
    session.commit()
    log_activity(
        session,
        item_id=item.id,
        action="publish",
        status="error",
        message=message,
        details={"retry_at": retry_at.isoformat()},
    )
