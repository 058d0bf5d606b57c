"""Retention pass for uploaded history."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shorts_relay.core.logger import get_logger
from shorts_relay.core.metrics import record_cleanup_deleted
from shorts_relay.storage.models import STATUS_UPLOADED, ChannelMapping, ContentItem, UploadLog, as_utc


DEFAULT_CLEANUP_HOURS = 5
DEFAULT_CLEANUP_LIMIT = 200

logger = get_logger("shorts_relay.publishing.cleanup")


@dataclass(frozen=True)
class CleanupResult:
    checked: int
    deleted: int


def source_identifiers(
    source_channel: Optional[str],
    mapping: Optional[ChannelMapping],
) -> Tuple[Optional[str], Optional[str]]:
    """Return ``(channel_id, channel_url)``; mapping values win over the item's own source."""

    from_item = (source_channel or "").strip() or None
    mapping_id_value = ((mapping.source_channel_id or "").strip() or None) if mapping else None
    mapping_url_value = ((mapping.source_channel_url or "").strip() or None) if mapping else None

    item_is_url = from_item is not None and "youtube.com" in from_item
    channel_url = mapping_url_value or (from_item if item_is_url else None)
    channel_id = mapping_id_value or (from_item if from_item is not None and not item_is_url else None)
    return channel_id, channel_url


def active_mapping_count(session: Session, channel_id: Optional[str], channel_url: Optional[str]) -> int:
    clauses = []
    if channel_id:
        clauses.append(ChannelMapping.source_channel_id == channel_id)
    if channel_url:
        clauses.append(ChannelMapping.source_channel_url == channel_url)
    if not clauses:
        return 0
    statement = select(ChannelMapping.id).where(ChannelMapping.is_active.is_(True)).where(or_(*clauses))
    return len(set(session.scalars(statement).all()))


def cleanup_uploaded(
    session: Session,
    *,
    older_than_hours: int = DEFAULT_CLEANUP_HOURS,
    limit: int = DEFAULT_CLEANUP_LIMIT,
    trigger: str = "batch",
    now: Optional[datetime] = None,
) -> CleanupResult:
    """Delete old uploaded items unless their source fans out to several active mappings."""

    current = as_utc(now) if now is not None else datetime.now(timezone.utc)
    cutoff = current - timedelta(hours=older_than_hours)
    statement = (
        select(ContentItem)
        .where(ContentItem.status == STATUS_UPLOADED)
        .where(ContentItem.uploaded_date.is_not(None))
        .where(ContentItem.uploaded_date <= cutoff)
        .order_by(ContentItem.uploaded_date.asc())
        .limit(max(1, limit))
    )
    try:
        items = list(session.scalars(statement).all())
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("cleanup_candidates_failed", error=str(exc))
        return CleanupResult(checked=0, deleted=0)

    mapping_cache: Dict[str, Optional[ChannelMapping]] = {}
    deleted = 0
    for item in items:
        mapping: Optional[ChannelMapping] = None
        if item.mapping_id:
            if item.mapping_id not in mapping_cache:
                mapping_cache[item.mapping_id] = session.get(ChannelMapping, item.mapping_id)
            mapping = mapping_cache[item.mapping_id]

        channel_id, channel_url = source_identifiers(item.source_channel, mapping)
        if channel_id is None and channel_url is None:
            continue
        if active_mapping_count(session, channel_id, channel_url) > 1:
            continue

        item_id = item.id
        try:
            session.execute(delete(UploadLog).where(UploadLog.short_id == item_id))
            session.execute(delete(ContentItem).where(ContentItem.id == item_id))
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("cleanup_delete_failed", item_id=item_id, error=str(exc))
            continue
        deleted += 1

    record_cleanup_deleted(trigger=trigger, count=deleted)
    if items:
        logger.info("uploaded_cleanup_pass", trigger=trigger, checked=len(items), deleted=deleted)
    return CleanupResult(checked=len(items), deleted=deleted)
