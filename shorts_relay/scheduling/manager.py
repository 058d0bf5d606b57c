"""Process wiring for the scheduler: APScheduler jobs and the CLI entrypoint."""

from __future__ import annotations

import argparse
from functools import lru_cache
import json
from typing import Optional

from apscheduler.schedulers.base import BaseScheduler
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from shorts_relay.core.config import Settings, get_settings
from shorts_relay.core.logger import get_logger
from shorts_relay.core.observability import init_sentry
from shorts_relay.integrations.gemini.enhancer import build_enhancer
from shorts_relay.integrations.media.ytdlp import build_media_adapters, cleanup_stale_artifacts, delete_artifact
from shorts_relay.integrations.youtube.client import get_youtube_client
from shorts_relay.integrations.youtube.credentials import StoredCredentialResolver
from shorts_relay.pipeline.orchestrator import PipelineOrchestrator
from shorts_relay.scheduling.slots import MemoryTriggerKeyCache, RedisTriggerKeyCache, TriggerKeyCache, resolve_zone
from shorts_relay.scheduling.trigger_loop import TickResult, TriggerLoop
from shorts_relay.storage.db import get_session_factory, load_models
from shorts_relay.storage.redis_client import get_client as get_redis_client


TICK_JOB_ID = "slot_tick"
PUBLISH_JOB_ID = "publish_due"
CLEANUP_JOB_ID = "uploaded_cleanup"
RESET_JOB_ID = "daily_counter_reset"

logger = get_logger("shorts_relay.scheduling.manager")


def build_trigger_cache(settings: Settings) -> TriggerKeyCache:
    if settings.trigger_cache_backend.strip().lower() == "redis":
        return RedisTriggerKeyCache(get_redis_client(), ttl_days=settings.trigger_key_ttl_days)
    return MemoryTriggerKeyCache(ttl_days=settings.trigger_key_ttl_days)


@lru_cache(maxsize=1)
def get_trigger_loop() -> TriggerLoop:
    """Production wiring shared by the CLI and the control API."""

    settings = get_settings()
    load_models()
    session_factory = get_session_factory()
    downloader, validator = build_media_adapters()
    youtube = get_youtube_client()
    credentials = StoredCredentialResolver(
        session_factory=session_factory,
        default_refresh_token=settings.youtube_default_refresh_token,
    )
    orchestrator = PipelineOrchestrator(
        session_factory=session_factory,
        downloader=downloader,
        validator=validator,
        uploader=youtube,
        credential_resolver=credentials,
        delete_artifact=delete_artifact,
        enhancer=build_enhancer(),
        settings=settings,
    )
    return TriggerLoop(
        session_factory=session_factory,
        processor=orchestrator,
        trigger_cache=build_trigger_cache(settings),
        credential_resolver=credentials,
        visibility_client=youtube,
        settings=settings,
        artifact_sweeper=lambda: cleanup_stale_artifacts(settings.media_temp_dir),
    )


def register_jobs(scheduler: BaseScheduler, loop: TriggerLoop, *, settings: Settings, timezone_name: str) -> None:
    _, zone = resolve_zone(timezone_name)
    scheduler.add_job(
        loop.run_tick_job,
        CronTrigger(second=0, timezone="UTC"),
        id=TICK_JOB_ID,
        name="Match upload slots",
        replace_existing=True,
    )
    scheduler.add_job(
        loop.run_publish_job,
        IntervalTrigger(minutes=settings.publish_interval_minutes),
        id=PUBLISH_JOB_ID,
        name="Publish delayed uploads",
        replace_existing=True,
    )
    scheduler.add_job(
        loop.run_cleanup_job,
        IntervalTrigger(minutes=settings.cleanup_interval_minutes),
        id=CLEANUP_JOB_ID,
        name="Uploaded history cleanup",
        replace_existing=True,
    )
    scheduler.add_job(
        loop.run_reset_job,
        CronTrigger(hour=0, minute=0, timezone=zone),
        id=RESET_JOB_ID,
        name="Reset daily upload counter",
        replace_existing=True,
    )


def build_scheduler(loop: TriggerLoop, *, settings: Optional[Settings] = None) -> BlockingScheduler:
    effective_settings = settings or get_settings()
    timezone_name = loop.load_config().scheduler_timezone
    scheduler = BlockingScheduler(
        timezone="UTC",
        job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 30},
    )
    register_jobs(scheduler, loop, settings=effective_settings, timezone_name=timezone_name)
    return scheduler


def run_scheduler_once() -> Optional[TickResult]:
    return get_trigger_loop().run_tick_job()


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the shorts relay upload scheduler.")
    parser.add_argument("--once", action="store_true", help="Run a single slot tick and print the result.")
    args = parser.parse_args()

    init_sentry()
    if args.once:
        result = run_scheduler_once()
        payload = result.as_dict() if result is not None else {"status": "failed"}
        print(json.dumps(payload, ensure_ascii=True, separators=(",", ":"), sort_keys=True, default=str))
        return

    settings = get_settings()
    if not settings.scheduler_enabled:
        logger.info("scheduler_disabled")
        return

    scheduler = build_scheduler(get_trigger_loop(), settings=settings)
    logger.info("scheduler_started", jobs=[job.id for job in scheduler.get_jobs()])
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("scheduler_stopped")


if __name__ == "__main__":
    main()
