"""Next-item selection for a mapping or the shared global pool."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional, Set

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shorts_relay.core.logger import get_logger
from shorts_relay.storage.models import STATUS_PENDING, ChannelMapping, ContentItem


CLAIM_WINDOW = 20
GLOBAL_POOL_WINDOW = 200

logger = get_logger("shorts_relay.queueing.resolver")


def _source_identities(mapping: ChannelMapping) -> List[str]:
    values = [mapping.source_channel_id, mapping.source_channel_url]
    return [value.strip() for value in values if value and value.strip()]


def owned_source_identities(session: Session) -> Set[str]:
    """Source ids and urls reserved by active mappings."""

    rows = session.execute(
        select(ChannelMapping.source_channel_id, ChannelMapping.source_channel_url).where(
            ChannelMapping.is_active.is_(True)
        )
    ).all()
    owned: Set[str] = set()
    for source_id, source_url in rows:
        for value in (source_id, source_url):
            if value and value.strip():
                owned.add(value.strip())
    return owned


def _oldest_mapped_pending(session: Session, mapping_id: str) -> Optional[ContentItem]:
    statement = (
        select(ContentItem)
        .where(ContentItem.mapping_id == mapping_id)
        .where(ContentItem.status == STATUS_PENDING)
        .order_by(ContentItem.created_at.asc(), ContentItem.id.asc())
        .limit(1)
    )
    return session.scalars(statement).first()


def unmapped_candidates(session: Session, mapping: ChannelMapping, *, limit: int = CLAIM_WINDOW) -> List[ContentItem]:
    identities = _source_identities(mapping)
    if not identities:
        return []
    statement = (
        select(ContentItem)
        .where(ContentItem.status == STATUS_PENDING)
        .where(ContentItem.mapping_id.is_(None))
        .where(or_(*(ContentItem.source_channel == identity for identity in identities)))
        .order_by(ContentItem.created_at.asc(), ContentItem.id.asc())
        .limit(max(1, limit))
    )
    return list(session.scalars(statement).all())


def try_claim(session: Session, item_id: str, mapping: ChannelMapping) -> bool:
    """Atomically attach an unmapped Pending item to ``mapping``; first writer wins."""

    result = session.execute(
        update(ContentItem)
        .where(ContentItem.id == item_id)
        .where(ContentItem.status == STATUS_PENDING)
        .where(ContentItem.mapping_id.is_(None))
        .values(
            mapping_id=mapping.id,
            target_channel=mapping.target_channel_id,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    session.commit()
    claimed = result.rowcount == 1
    logger.info(
        "unmapped_item_claim",
        item_id=item_id,
        mapping_id=mapping.id,
        claimed=claimed,
    )
    return claimed


def _reload(session: Session, item_id: str) -> Optional[ContentItem]:
    return session.get(ContentItem, item_id, populate_existing=True)


def claim_unmapped(session: Session, mapping: ChannelMapping, *, limit: int = CLAIM_WINDOW) -> Optional[ContentItem]:
    for candidate in unmapped_candidates(session, mapping, limit=limit):
        if try_claim(session, candidate.id, mapping):
            return _reload(session, candidate.id)
    return None


def _global_pool_candidate(session: Session, *, window: int = GLOBAL_POOL_WINDOW) -> Optional[ContentItem]:
    owned = owned_source_identities(session)
    statement = (
        select(ContentItem)
        .where(ContentItem.status == STATUS_PENDING)
        .where(ContentItem.mapping_id.is_(None))
        .order_by(ContentItem.created_at.asc(), ContentItem.id.asc())
        .limit(window)
    )
    for item in session.scalars(statement).all():
        source = (item.source_channel or "").strip()
        if source and source in owned:
            continue
        return item
    return None


def _active_mapping(session: Session, mapping_id: str) -> Optional[ChannelMapping]:
    mapping = session.get(ChannelMapping, mapping_id)
    if mapping is None or not mapping.is_active:
        logger.info("mapping_not_active", mapping_id=mapping_id)
        return None
    return mapping


def peek_next(session: Session, mapping_id: Optional[str] = None) -> Optional[ContentItem]:
    """Same choice as ``resolve_next`` without claiming anything."""

    try:
        if mapping_id is None:
            return _global_pool_candidate(session)
        mapping = _active_mapping(session, mapping_id)
        if mapping is None:
            return None
        item = _oldest_mapped_pending(session, mapping_id)
        if item is not None:
            return item
        candidates = unmapped_candidates(session, mapping, limit=1)
        return candidates[0] if candidates else None
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("queue_peek_failed", mapping_id=mapping_id, error=str(exc))
        return None


def secure_candidate(
    session: Session,
    candidate: ContentItem,
    mapping_id: Optional[str] = None,
) -> Optional[ContentItem]:
    """Turn a peeked candidate into an owned item, claiming the next one if it was taken."""

    try:
        current = _reload(session, candidate.id)
        if mapping_id is None:
            if current is not None and current.status == STATUS_PENDING and current.mapping_id is None:
                return current
            return _global_pool_candidate(session)

        mapping = _active_mapping(session, mapping_id)
        if mapping is None:
            return None
        if current is not None and current.status == STATUS_PENDING:
            if current.mapping_id == mapping_id:
                return current
            if current.mapping_id is None and try_claim(session, current.id, mapping):
                return _reload(session, current.id)
        item = _oldest_mapped_pending(session, mapping_id)
        if item is not None:
            return item
        return claim_unmapped(session, mapping)
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("queue_claim_failed", item_id=candidate.id, mapping_id=mapping_id, error=str(exc))
        return None


def resolve_next(session: Session, mapping_id: Optional[str] = None) -> Optional[ContentItem]:
    """Peek and secure in one call; the pipeline splits the two around the run lock."""

    candidate = peek_next(session, mapping_id)
    if candidate is None:
        return None
    return secure_candidate(session, candidate, mapping_id)
