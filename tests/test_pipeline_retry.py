from __future__ import annotations

from datetime import timedelta

from shorts_relay.pipeline.retry import requeue_failed
from shorts_relay.settings_store import GlobalConfig
from shorts_relay.storage.models import (
    FAILURE_CONFIGURATION,
    FAILURE_TRANSIENT,
    STATUS_FAILED,
    STATUS_PENDING,
    ContentItem,
)
from tests.helpers import NINE_AM_UTC, add_item, build_sqlite_session_factory


def _failed(session, **fields) -> ContentItem:
    values = {
        "status": STATUS_FAILED,
        "failure_kind": FAILURE_TRANSIENT,
        "error_log": "Upload failed: backendError",
        "updated_at": NINE_AM_UTC - timedelta(hours=1),
    }
    values.update(fields)
    return add_item(session, **values)


def test_retry_is_off_by_default() -> None:
    session_factory = build_sqlite_session_factory()
    with session_factory() as session:
        item = _failed(session)

        result = requeue_failed(session, GlobalConfig(), now=NINE_AM_UTC)

        assert result.requeued == 0
        assert session.get(ContentItem, item.id).status == STATUS_FAILED


def test_retry_requeues_only_eligible_transient_failures() -> None:
    session_factory = build_sqlite_session_factory()
    config = GlobalConfig(failed_retry_enabled=True, max_retry_count=3, failed_retry_backoff_minutes=30)
    with session_factory() as session:
        eligible = _failed(session)
        exhausted = _failed(session, retry_count=3)
        too_recent = _failed(session, updated_at=NINE_AM_UTC - timedelta(minutes=5))
        misconfigured = _failed(session, failure_kind=FAILURE_CONFIGURATION)

        result = requeue_failed(session, config, now=NINE_AM_UTC)

        assert result.checked == 1
        assert result.requeued == 1
        requeued = session.get(ContentItem, eligible.id, populate_existing=True)
        assert requeued.status == STATUS_PENDING
        assert requeued.retry_count == 1
        assert requeued.failure_kind is None
        for item in (exhausted, too_recent, misconfigured):
            assert session.get(ContentItem, item.id, populate_existing=True).status == STATUS_FAILED
