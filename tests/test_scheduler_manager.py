from __future__ import annotations

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from shorts_relay.core.config import Settings
from shorts_relay.scheduling.manager import (
    CLEANUP_JOB_ID,
    PUBLISH_JOB_ID,
    RESET_JOB_ID,
    TICK_JOB_ID,
    build_scheduler,
    build_trigger_cache,
)
from shorts_relay.scheduling.slots import MemoryTriggerKeyCache
from shorts_relay.settings_store import GlobalConfig


class _StubLoop:
    def load_config(self) -> GlobalConfig:
        return GlobalConfig(scheduler_timezone="Asia/Kolkata")

    def run_tick_job(self):
        return None

    def run_publish_job(self):
        return None

    def run_cleanup_job(self):
        return None

    def run_reset_job(self) -> None:
        return None


def test_scheduler_registers_tick_publish_cleanup_and_reset_jobs() -> None:
    loop = _StubLoop()
    scheduler = build_scheduler(loop, settings=Settings(cleanup_interval_minutes=45))

    assert isinstance(scheduler, BlockingScheduler)
    jobs = {job.id: job for job in scheduler.get_jobs()}
    assert set(jobs) == {TICK_JOB_ID, PUBLISH_JOB_ID, CLEANUP_JOB_ID, RESET_JOB_ID}

    assert isinstance(jobs[TICK_JOB_ID].trigger, CronTrigger)
    assert isinstance(jobs[CLEANUP_JOB_ID].trigger, IntervalTrigger)
    assert isinstance(jobs[PUBLISH_JOB_ID].trigger, IntervalTrigger)
    assert jobs[PUBLISH_JOB_ID].trigger.interval.total_seconds() == 60
    assert jobs[PUBLISH_JOB_ID].func == loop.run_publish_job
    assert jobs[CLEANUP_JOB_ID].trigger.interval.total_seconds() == 45 * 60
    assert str(jobs[RESET_JOB_ID].trigger.timezone) == "Asia/Kolkata"


def test_memory_trigger_cache_is_default() -> None:
    assert isinstance(build_trigger_cache(Settings(trigger_cache_backend="memory")), MemoryTriggerKeyCache)
