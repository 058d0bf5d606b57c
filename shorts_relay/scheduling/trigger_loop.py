"""Minute tick: decide which slots fire and dispatch them to the pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from shorts_relay.core.config import Settings, get_settings
from shorts_relay.core.logger import get_logger
from shorts_relay.core.metrics import record_scheduler_job, record_tick_failure
from shorts_relay.core.observability import capture_exception, sentry_scope
from shorts_relay.pipeline.collaborators import CredentialResolver, VisibilityClient
from shorts_relay.pipeline.orchestrator import ProcessOutcome
from shorts_relay.pipeline.retry import RequeueResult, requeue_failed
from shorts_relay.publishing.cleanup import CleanupResult, cleanup_uploaded
from shorts_relay.publishing.delayed import PublishDueResult, publish_due
from shorts_relay.scheduling.run_state import reset_daily_counter
from shorts_relay.scheduling.slots import (
    GLOBAL_SCOPE,
    LocalMoment,
    TriggerKeyCache,
    build_trigger_key,
    local_date,
    match_slots,
    normalize_slot_time,
    resolve_time_in_zone,
)
from shorts_relay.settings_store import DEFAULT_EVENING_SLOT, DEFAULT_MORNING_SLOT, GlobalConfig, load_global_config
from shorts_relay.storage.db import session_scope
from shorts_relay.storage.models import ChannelMapping


T = TypeVar("T")

logger = get_logger("shorts_relay.scheduling.trigger_loop")


class ItemProcessor(Protocol):
    def process_next(self, mapping_id: Optional[str] = None) -> ProcessOutcome:
        raise NotImplementedError


@dataclass(frozen=True)
class SlotJob:
    mapping_id: Optional[str]
    slot_label: str


@dataclass(frozen=True)
class FollowUpResult:
    publish: PublishDueResult
    cleanup: CleanupResult
    retry: Optional[RequeueResult] = None

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TickResult:
    status: str
    local_time: Optional[str] = None
    jobs: List[SlotJob] = field(default_factory=list)
    outcomes: List[ProcessOutcome] = field(default_factory=list)
    follow_up: Optional[FollowUpResult] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "local_time": self.local_time,
            "jobs": [{"mapping_id": job.mapping_id, "slot_label": job.slot_label} for job in self.jobs],
            "outcomes": [outcome.as_dict() for outcome in self.outcomes],
            "follow_up": self.follow_up.as_dict() if self.follow_up is not None else None,
        }


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def mapping_slots(mapping: ChannelMapping, config: GlobalConfig) -> List[tuple[str, str]]:
    """Effective (label, HH:MM) pairs: mapping value, else global value, else the default."""

    global_morning = normalize_slot_time(config.upload_time_morning, DEFAULT_MORNING_SLOT)
    global_evening = normalize_slot_time(config.upload_time_evening, DEFAULT_EVENING_SLOT)
    return [
        ("morning", normalize_slot_time(mapping.upload_time_morning, global_morning)),
        ("evening", normalize_slot_time(mapping.upload_time_evening, global_evening)),
    ]


def global_slots(config: GlobalConfig) -> List[tuple[str, str]]:
    return [
        ("morning", normalize_slot_time(config.upload_time_morning, DEFAULT_MORNING_SLOT)),
        ("evening", normalize_slot_time(config.upload_time_evening, DEFAULT_EVENING_SLOT)),
    ]


class TriggerLoop:
    """Slot dispatcher plus the periodic publish/cleanup/reset passes."""

    def __init__(
        self,
        *,
        session_factory: sessionmaker,
        processor: ItemProcessor,
        trigger_cache: TriggerKeyCache,
        credential_resolver: CredentialResolver,
        visibility_client: VisibilityClient,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
        artifact_sweeper: Callable[[], int] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._processor = processor
        self._trigger_cache = trigger_cache
        self._credential_resolver = credential_resolver
        self._visibility_client = visibility_client
        self._settings = settings or get_settings()
        self._clock = clock or _utc_now
        self._artifact_sweeper = artifact_sweeper

    def load_config(self) -> GlobalConfig:
        with session_scope(self._session_factory) as session:
            return load_global_config(session, settings=self._settings)

    def collect_jobs(self, session: Session, config: GlobalConfig, now: datetime) -> tuple[LocalMoment, List[SlotJob]]:
        moment = resolve_time_in_zone(now, config.scheduler_timezone)
        mappings = session.scalars(
            select(ChannelMapping)
            .where(ChannelMapping.is_active.is_(True))
            .order_by(ChannelMapping.created_at.asc(), ChannelMapping.id.asc())
        ).all()

        jobs: List[SlotJob] = []
        mapping_matched = False
        for mapping in mappings:
            for firing in match_slots(moment.time, mapping_slots(mapping, config)):
                mapping_matched = True
                key = build_trigger_key(moment.timezone, moment.date, f"mapping:{mapping.id}", firing.key_label)
                if self._trigger_cache.should_fire(key, now=now):
                    jobs.append(SlotJob(mapping_id=mapping.id, slot_label=firing.label))
                else:
                    logger.info("slot_already_fired", mapping_id=mapping.id, trigger_key=key)

        if not mapping_matched:
            for firing in match_slots(moment.time, global_slots(config)):
                key = build_trigger_key(moment.timezone, moment.date, GLOBAL_SCOPE, firing.key_label)
                if self._trigger_cache.should_fire(key, now=now):
                    jobs.append(SlotJob(mapping_id=None, slot_label=firing.label))
                else:
                    logger.info("slot_already_fired", mapping_id=None, trigger_key=key)
        return moment, jobs

    def tick(self, now: Optional[datetime] = None) -> TickResult:
        current = now or self._clock()
        with session_scope(self._session_factory) as session:
            config = load_global_config(session, settings=self._settings)
            if not config.automation_enabled:
                logger.info("tick_skipped_automation_disabled")
                return TickResult(status="automation_disabled")
            moment, jobs = self.collect_jobs(session, config, current)

        if not jobs:
            return TickResult(status="idle", local_time=moment.time)

        outcomes: List[ProcessOutcome] = []
        # Jobs run one at a time; the run lock rejects overlapping passes.
        for job in jobs:
            logger.info("slot_job_dispatched", mapping_id=job.mapping_id, slot=job.slot_label, local_time=moment.time)
            outcome = self._processor.process_next(job.mapping_id)
            record_scheduler_job(job="mapping" if job.mapping_id else "global", status=outcome.reason)
            outcomes.append(outcome)

        follow_up = self.run_follow_up(config=config, now=current)
        return TickResult(
            status="dispatched",
            local_time=moment.time,
            jobs=jobs,
            outcomes=outcomes,
            follow_up=follow_up,
        )

    def run_follow_up(self, *, config: Optional[GlobalConfig] = None, now: Optional[datetime] = None) -> FollowUpResult:
        current = now or self._clock()
        effective_config = config or self.load_config()
        with session_scope(self._session_factory) as session:
            published = publish_due(
                session,
                credential_resolver=self._credential_resolver,
                visibility_client=self._visibility_client,
                limit=self._settings.publish_batch_limit,
                retry_minutes=self._settings.publish_retry_minutes,
                now=current,
            )
            cleaned = cleanup_uploaded(
                session,
                older_than_hours=effective_config.uploaded_cleanup_hours,
                limit=self._settings.cleanup_batch_limit,
                trigger="batch",
                now=current,
            )
            retried = None
            if effective_config.failed_retry_enabled:
                retried = requeue_failed(session, effective_config, now=current)
        return FollowUpResult(publish=published, cleanup=cleaned, retry=retried)

    def run_publish(self, now: Optional[datetime] = None) -> PublishDueResult:
        current = now or self._clock()
        with session_scope(self._session_factory) as session:
            return publish_due(
                session,
                credential_resolver=self._credential_resolver,
                visibility_client=self._visibility_client,
                limit=self._settings.publish_batch_limit,
                retry_minutes=self._settings.publish_retry_minutes,
                now=current,
            )

    def run_cleanup(self, now: Optional[datetime] = None) -> CleanupResult:
        current = now or self._clock()
        config = self.load_config()
        with session_scope(self._session_factory) as session:
            result = cleanup_uploaded(
                session,
                older_than_hours=config.uploaded_cleanup_hours,
                limit=self._settings.cleanup_batch_limit,
                trigger="interval",
                now=current,
            )
        if self._artifact_sweeper is not None:
            swept = self._artifact_sweeper()
            if swept:
                logger.info("stale_artifacts_removed", count=swept)
        return result

    def reset_daily_counter(self, now: Optional[datetime] = None) -> None:
        current = now or self._clock()
        config = self.load_config()
        with session_scope(self._session_factory) as session:
            reset_daily_counter(session, today=local_date(current, config.scheduler_timezone))

    def run_manual_pass(self) -> TickResult:
        """One global-pool pass followed by the publish/cleanup passes."""

        current = self._clock()
        outcome = self._processor.process_next(None)
        record_scheduler_job(job="manual", status=outcome.reason)
        follow_up = self.run_follow_up(now=current)
        return TickResult(
            status="manual",
            jobs=[SlotJob(mapping_id=None, slot_label="manual")],
            outcomes=[outcome],
            follow_up=follow_up,
        )

    def guarded(self, job: str, action: Callable[[], T]) -> Optional[T]:
        """Run a scheduled job so that an exception never stops the next run."""

        try:
            with sentry_scope(job=job):
                return action()
        except Exception as exc:
            record_tick_failure(job=job)
            capture_exception(exc)
            logger.error("scheduler_job_failed", job=job, error=str(exc))
            return None

    def run_tick_job(self) -> Optional[TickResult]:
        return self.guarded("tick", self.tick)

    def run_publish_job(self) -> Optional[PublishDueResult]:
        return self.guarded("publish", self.run_publish)

    def run_cleanup_job(self) -> Optional[CleanupResult]:
        return self.guarded("cleanup", self.run_cleanup)

    def run_reset_job(self) -> None:
        self.guarded("daily_reset", self.reset_daily_counter)
