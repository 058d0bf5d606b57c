from __future__ import annotations

from fastapi.testclient import TestClient

import shorts_relay.api.main as api_main
from shorts_relay.core.metrics import reset_metrics_for_tests
from shorts_relay.pipeline.orchestrator import ProcessOutcome
from shorts_relay.scheduling.run_state import load_state, try_acquire_run_lock
from shorts_relay.scheduling.trigger_loop import SlotJob, TickResult
from shorts_relay.storage.db import get_session
from shorts_relay.storage.models import STATUS_FAILED
from tests.helpers import add_item, add_mapping, build_sqlite_session_factory, set_config


class _FakeLoop:
    def __init__(self) -> None:
        self.manual_runs = 0

    def run_manual_pass(self) -> TickResult:
        self.manual_runs += 1
        return TickResult(
            status="manual",
            jobs=[SlotJob(mapping_id=None, slot_label="manual")],
            outcomes=[ProcessOutcome(ok=False, reason="empty", message="No pending items")],
        )

    def guarded(self, job, action):
        del job
        return action()


def _client_with(session_factory, loop: _FakeLoop) -> TestClient:
    def override_get_session():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    api_main.app.dependency_overrides[get_session] = override_get_session
    api_main.app.dependency_overrides[api_main.get_loop] = lambda: loop
    return TestClient(api_main.app)


def test_health_ok(monkeypatch) -> None:
    monkeypatch.setattr(api_main, "test_db_connection", lambda: (True, None))
    monkeypatch.setattr(api_main, "test_redis_connection", lambda: (True, None))

    client = TestClient(api_main.app)
    response = client.get("/health", headers={"x-request-id": "req-123"})

    assert response.status_code == 200
    assert response.headers["x-request-id"] == "req-123"
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["services"]["database"]["ok"] is True
    assert payload["services"]["redis"]["ok"] is True


def test_health_degraded_when_database_is_down(monkeypatch) -> None:
    monkeypatch.setattr(api_main, "test_db_connection", lambda: (False, "connection refused"))
    monkeypatch.setattr(api_main, "test_redis_connection", lambda: (True, None))

    response = TestClient(api_main.app).get("/health")

    assert response.status_code == 503
    assert response.json()["services"]["database"]["error"] == "connection refused"


def test_version_endpoint() -> None:
    response = TestClient(api_main.app).get("/version")

    assert response.status_code == 200
    assert response.json()["name"] == api_main.settings.app_name


def test_metrics_endpoint_returns_prometheus_payload(monkeypatch) -> None:
    reset_metrics_for_tests()
    monkeypatch.setattr(api_main.settings, "metrics_enabled", True)

    client = TestClient(api_main.app)
    assert client.get("/version").status_code == 200

    response = client.get("/metrics")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert "shorts_relay_build_info" in response.text
    assert 'shorts_relay_http_requests_total{method="GET",path="/version",status="200"}' in response.text


def test_metrics_endpoint_disabled_returns_404(monkeypatch) -> None:
    monkeypatch.setattr(api_main.settings, "metrics_enabled", False)

    assert TestClient(api_main.app).get("/metrics").status_code == 404


def test_trigger_runs_manual_pass_in_background() -> None:
    session_factory = build_sqlite_session_factory()
    loop = _FakeLoop()
    try:
        response = _client_with(session_factory, loop).post("/trigger")

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Scheduler triggered"}
        assert loop.manual_runs == 1
    finally:
        api_main.app.dependency_overrides.clear()


def test_trigger_rejected_while_run_lock_is_held() -> None:
    session_factory = build_sqlite_session_factory()
    with session_factory() as session:
        assert try_acquire_run_lock(session, ttl_seconds=1800) is not None

    loop = _FakeLoop()
    try:
        response = _client_with(session_factory, loop).post("/trigger")

        assert response.json() == {"success": False, "message": "already running"}
        assert loop.manual_runs == 0
    finally:
        api_main.app.dependency_overrides.clear()


def test_status_reports_scheduler_queue_and_mappings() -> None:
    session_factory = build_sqlite_session_factory()
    with session_factory() as session:
        set_config(session, automation_enabled=True, uploads_per_day=3)
        mapping = add_mapping(session, name="Travel clips", upload_time_morning="07:30")
        add_item(session)
        add_item(session, status=STATUS_FAILED)
        load_state(session)
        mapping_id = mapping.id

    try:
        response = _client_with(session_factory, _FakeLoop()).get("/status")

        assert response.status_code == 200
        payload = response.json()
        assert payload["scheduler"]["is_running"] is False
        assert payload["scheduler"]["uploads_remaining"] == 3
        assert payload["config"]["automation_enabled"] is True
        assert payload["items"]["Pending"] == 1
        assert payload["items"]["Failed"] == 1
        assert payload["items"]["Uploaded"] == 0
        assert payload["mappings"][0]["id"] == mapping_id
        assert payload["mappings"][0]["slots"] == {"morning": "07:30", "evening": "18:00"}
    finally:
        api_main.app.dependency_overrides.clear()
