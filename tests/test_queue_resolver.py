from __future__ import annotations

from datetime import datetime, timezone

from shorts_relay.queueing.resolver import peek_next, resolve_next, try_claim
from shorts_relay.storage.models import ContentItem
from tests.helpers import add_item, add_mapping, build_sqlite_session_factory


def test_second_claim_on_same_item_loses() -> None:
    session_factory = build_sqlite_session_factory()
    with session_factory() as session:
        first = add_mapping(session, source_channel_id="UC123", target_channel_id="UCdest-a")
        second = add_mapping(session, source_channel_id="UC123", target_channel_id="UCdest-b")
        item = add_item(session, source_channel="UC123")

        assert try_claim(session, item.id, first) is True
        assert try_claim(session, item.id, second) is False

        stored = session.get(ContentItem, item.id, populate_existing=True)
        assert stored.mapping_id == first.id
        assert stored.target_channel == "UCdest-a"


def test_mapping_prefers_its_own_queue_before_claiming() -> None:
    session_factory = build_sqlite_session_factory()
    with session_factory() as session:
        mapping = add_mapping(session)
        unmapped = add_item(session, source_channel="UC123", created_at=datetime(2025, 1, 1, tzinfo=timezone.utc))
        mapped = add_item(
            session,
            mapping_id=mapping.id,
            created_at=datetime(2025, 1, 5, tzinfo=timezone.utc),
        )

        assert resolve_next(session, mapping.id).id == mapped.id
        assert session.get(ContentItem, unmapped.id, populate_existing=True).mapping_id is None


def test_mapping_claims_oldest_unmapped_item_by_source_url() -> None:
    session_factory = build_sqlite_session_factory()
    with session_factory() as session:
        mapping = add_mapping(
            session,
            source_channel_id="UCother",
            source_channel_url="https://www.youtube.com/@clips",
        )
        newer = add_item(
            session,
            source_channel="https://www.youtube.com/@clips",
            created_at=datetime(2025, 1, 3, tzinfo=timezone.utc),
        )
        older = add_item(
            session,
            source_channel="https://www.youtube.com/@clips",
            created_at=datetime(2025, 1, 2, tzinfo=timezone.utc),
        )

        claimed = resolve_next(session, mapping.id)

        assert claimed.id == older.id
        assert claimed.mapping_id == mapping.id
        assert session.get(ContentItem, newer.id, populate_existing=True).mapping_id is None


def test_peek_does_not_claim() -> None:
    session_factory = build_sqlite_session_factory()
    with session_factory() as session:
        mapping = add_mapping(session)
        item = add_item(session, source_channel="UC123")

        assert peek_next(session, mapping.id).id == item.id
        assert session.get(ContentItem, item.id, populate_existing=True).mapping_id is None


def test_inactive_or_unknown_mapping_yields_nothing() -> None:
    session_factory = build_sqlite_session_factory()
    with session_factory() as session:
        mapping = add_mapping(session, is_active=False)
        add_item(session, source_channel="UC123")

        assert resolve_next(session, mapping.id) is None
        assert resolve_next(session, "missing-mapping") is None


def test_global_resolve_matches_peek_and_skips_owned_sources() -> None:
    session_factory = build_sqlite_session_factory()
    with session_factory() as session:
        add_mapping(session)
        add_item(session, source_channel="UC123", created_at=datetime(2025, 1, 1, tzinfo=timezone.utc))
        free = add_item(session, source_channel="UCfree", created_at=datetime(2025, 1, 2, tzinfo=timezone.utc))

        assert peek_next(session).id == free.id
        resolved = resolve_next(session)
        assert resolved.id == free.id
        assert resolved.mapping_id is None
