"""FastAPI control surface for the shorts relay scheduler."""

from __future__ import annotations

from datetime import datetime, timezone
from time import perf_counter
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import BackgroundTasks, Depends, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from shorts_relay.core.config import get_settings
from shorts_relay.core.logger import bind_request_context, clear_request_context, get_logger
from shorts_relay.core.metrics import record_http_request, render_prometheus_metrics
from shorts_relay.core.observability import init_sentry, sentry_scope
from shorts_relay.scheduling.manager import get_trigger_loop
from shorts_relay.scheduling.quota import daily_quota_remaining, mapping_uploads_today, uploads_today
from shorts_relay.scheduling.run_state import is_lock_held, load_state
from shorts_relay.scheduling.trigger_loop import TriggerLoop, mapping_slots
from shorts_relay.settings_store import load_global_config
from shorts_relay.storage.db import get_session, load_models
from shorts_relay.storage.db import test_connection as test_db_connection
from shorts_relay.storage.models import CONTENT_STATUSES, ChannelMapping, ContentItem, as_utc
from shorts_relay.storage.redis_client import test_connection as test_redis_connection


settings = get_settings()
logger = get_logger("shorts_relay.api")

app = FastAPI(title=settings.app_name, version=settings.app_version)


def _iso(value: Optional[datetime]) -> Optional[str]:
    normalized = as_utc(value)
    return normalized.isoformat() if normalized is not None else None


def get_loop() -> TriggerLoop:
    return get_trigger_loop()


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    started_at = perf_counter()
    request_id = request.headers.get("x-request-id", str(uuid4()))
    bind_request_context(request_id=request_id)

    status_code = 500
    try:
        with sentry_scope(request_id=request_id):
            response = await call_next(request)
        status_code = int(response.status_code)
    finally:
        if settings.metrics_enabled:
            record_http_request(
                method=request.method,
                path=request.url.path,
                status_code=status_code,
                duration_seconds=perf_counter() - started_at,
            )
        clear_request_context()

    response.headers["x-request-id"] = request_id
    return response


@app.on_event("startup")
def on_startup() -> None:
    load_models()
    sentry_enabled = init_sentry()
    logger.info(
        "application_startup",
        env=settings.env,
        version=settings.app_version,
        sentry_enabled=sentry_enabled,
        metrics_enabled=settings.metrics_enabled,
    )


@app.get("/health")
def health() -> JSONResponse:
    db_ok, db_error = test_db_connection()
    redis_ok, redis_error = test_redis_connection()

    healthy = db_ok and redis_ok
    payload = {
        "status": "ok" if healthy else "degraded",
        "env": settings.env,
        "services": {
            "database": {"ok": db_ok, "error": db_error},
            "redis": {"ok": redis_ok, "error": redis_error},
        },
    }
    return JSONResponse(content=payload, status_code=200 if healthy else 503)


@app.get("/version")
def version() -> dict[str, str]:
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "env": settings.env,
    }


@app.get("/metrics")
def metrics() -> PlainTextResponse:
    if not settings.metrics_enabled:
        return PlainTextResponse("metrics disabled\n", status_code=404)

    payload = render_prometheus_metrics(
        app_name=settings.app_name,
        app_version=settings.app_version,
        env=settings.env,
    )
    return PlainTextResponse(
        payload,
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )


def _run_manual_pass(loop: TriggerLoop) -> None:
    result = loop.guarded("manual", loop.run_manual_pass)
    if result is not None:
        logger.info("manual_pass_finished", reasons=[outcome.reason for outcome in result.outcomes])


@app.post("/trigger")
def trigger(
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
    loop: TriggerLoop = Depends(get_loop),
) -> Dict[str, Any]:
    state = load_state(session)
    if is_lock_held(state, ttl_seconds=settings.run_lock_ttl_seconds):
        logger.info("manual_trigger_rejected_busy")
        return {"success": False, "message": "already running"}

    background_tasks.add_task(_run_manual_pass, loop)
    logger.info("manual_trigger_accepted")
    return {"success": True, "message": "Scheduler triggered"}


@app.get("/status")
def status(session: Session = Depends(get_session)) -> Dict[str, Any]:
    now = datetime.now(timezone.utc)
    config = load_global_config(session, settings=settings)
    state = load_state(session)

    counts = {name: 0 for name in CONTENT_STATUSES}
    rows = session.execute(select(ContentItem.status, func.count(ContentItem.id)).group_by(ContentItem.status)).all()
    for item_status, count in rows:
        counts[item_status] = int(count)

    mappings = session.scalars(
        select(ChannelMapping).where(ChannelMapping.is_active.is_(True)).order_by(ChannelMapping.created_at.asc())
    ).all()

    return {
        "scheduler": {
            "is_running": is_lock_held(state, ttl_seconds=settings.run_lock_ttl_seconds, now=now),
            "lock_acquired_at": _iso(state.lock_acquired_at),
            "last_run_at": _iso(state.last_run_at),
            "current_status": state.current_status,
            "uploads_today": uploads_today(session, config, now=now),
            "uploads_remaining": daily_quota_remaining(session, config, now=now),
        },
        "config": config.as_dict(),
        "items": counts,
        "mappings": [
            {
                "id": mapping.id,
                "name": mapping.name,
                "target_channel_id": mapping.target_channel_id,
                "slots": dict(mapping_slots(mapping, config)),
                "uploads_today": mapping_uploads_today(session, config, mapping_id=mapping.id, now=now),
                "total_uploaded": mapping.total_uploaded,
            }
            for mapping in mappings
        ],
    }
