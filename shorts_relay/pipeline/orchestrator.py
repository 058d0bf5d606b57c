"""Drive one queued item from Pending to a terminal state."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session, sessionmaker

from shorts_relay.core.config import Settings, get_settings
from shorts_relay.core.logger import bind_item_context, get_logger
from shorts_relay.core.metrics import record_pipeline_outcome
from shorts_relay.core.observability import capture_exception, sentry_scope
from shorts_relay.pipeline.activity import log_activity
from shorts_relay.pipeline.collaborators import (
    ArtifactRemover,
    CredentialResolver,
    DownloadError,
    Downloader,
    Enhancer,
    UploadError,
    Uploader,
    Validator,
)
from shorts_relay.pipeline.states import assert_transition
from shorts_relay.pipeline.upload_settings import (
    UploadBehavior,
    append_hashtags,
    build_upload_tags,
    filter_blocked,
    resolve_upload_behavior,
    source_block_terms,
    strip_blocked_hashtags,
)
from shorts_relay.queueing.resolver import peek_next, secure_candidate
from shorts_relay.scheduling.quota import daily_quota_remaining
from shorts_relay.scheduling.run_state import (
    RunLockHandle,
    increment_uploads_today,
    mark_run_finished,
    release_run_lock,
    try_acquire_run_lock,
)
from shorts_relay.scheduling.slots import local_date
from shorts_relay.settings_store import GlobalConfig, load_global_config
from shorts_relay.storage.db import session_scope
from shorts_relay.storage.models import (
    FAILURE_CONFIGURATION,
    FAILURE_TRANSIENT,
    FAILURE_VALIDATION,
    STATUS_DOWNLOADED,
    STATUS_FAILED,
    STATUS_UPLOADED,
    STATUS_UPLOADING,
    ChannelMapping,
    ContentItem,
)


REASON_QUOTA = "quota"
REASON_EMPTY = "empty"
REASON_BUSY = "busy"
REASON_DOWNLOAD_FAILED = "download_failed"
REASON_VALIDATION_FAILED = "validation_failed"
REASON_CHANNEL_NOT_CONNECTED = "channel_not_connected"
REASON_UPLOAD_FAILED = "upload_failed"
REASON_ERROR = "error"
REASON_UPLOADED = "uploaded"

STATUS_TEXT_PROCESSING = "Processing..."
STATUS_TEXT_COMPLETED = "Completed"
STATUS_TEXT_ERROR = "Error"

Clock = Callable[[], datetime]

logger = get_logger("shorts_relay.pipeline.orchestrator")


@dataclass(frozen=True)
class ProcessOutcome:
    ok: bool
    reason: str
    message: str = ""
    item_id: Optional[str] = None
    external_id: Optional[str] = None
    scheduled_publish_at: Optional[datetime] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "reason": self.reason,
            "message": self.message,
            "item_id": self.item_id,
            "external_id": self.external_id,
            "scheduled_publish_at": self.scheduled_publish_at.isoformat() if self.scheduled_publish_at else None,
        }


@dataclass(frozen=True)
class _PreparedMetadata:
    title: str
    description: str
    tags: List[str]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def not_connected_message(channel_id: Optional[str]) -> str:
    return f"Destination channel {channel_id or '(unset)'} is not connected. Connect it from mapping screen."


class PipelineOrchestrator:
    """Strictly serialized state machine; every exit returns a ``ProcessOutcome``."""

    def __init__(
        self,
        *,
        session_factory: sessionmaker,
        downloader: Downloader,
        validator: Validator,
        uploader: Uploader,
        credential_resolver: CredentialResolver,
        delete_artifact: ArtifactRemover,
        enhancer: Enhancer | None = None,
        settings: Settings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._downloader = downloader
        self._validator = validator
        self._uploader = uploader
        self._credential_resolver = credential_resolver
        self._delete_artifact = delete_artifact
        self._enhancer = enhancer
        self._settings = settings or get_settings()
        self._clock = clock or _utc_now

    def process_next(self, mapping_id: Optional[str] = None) -> ProcessOutcome:
        scope = "mapping" if mapping_id else "global"
        with session_scope(self._session_factory) as session:
            try:
                outcome = self._process(session, mapping_id)
            except Exception as exc:
                session.rollback()
                capture_exception(exc)
                logger.error("process_next_crashed", mapping_id=mapping_id, error=str(exc))
                outcome = ProcessOutcome(ok=False, reason=REASON_ERROR, message=str(exc))
        record_pipeline_outcome(scope=scope, reason=outcome.reason)
        logger.info(
            "process_next_finished",
            mapping_id=mapping_id,
            ok=outcome.ok,
            reason=outcome.reason,
            item_id=outcome.item_id,
        )
        return outcome

    def _process(self, session: Session, mapping_id: Optional[str]) -> ProcessOutcome:
        now = self._clock()
        config = load_global_config(session, settings=self._settings)

        if mapping_id is None:
            remaining = daily_quota_remaining(session, config, now=now)
            if remaining is not None and remaining <= 0:
                mark_run_finished(session, status=STATUS_TEXT_COMPLETED, now=now)
                return ProcessOutcome(ok=False, reason=REASON_QUOTA, message="Daily upload limit reached")

        candidate = peek_next(session, mapping_id)
        if candidate is None:
            mark_run_finished(session, status=STATUS_TEXT_COMPLETED, now=now)
            return ProcessOutcome(ok=False, reason=REASON_EMPTY, message="No pending items")

        handle = try_acquire_run_lock(
            session,
            ttl_seconds=self._settings.run_lock_ttl_seconds,
            status=STATUS_TEXT_PROCESSING,
            now=now,
        )
        if handle is None:
            return ProcessOutcome(ok=False, reason=REASON_BUSY, message="already running")

        outcome: Optional[ProcessOutcome] = None
        item_id: Optional[str] = None
        try:
            item = secure_candidate(session, candidate, mapping_id)
            if item is None:
                outcome = ProcessOutcome(ok=False, reason=REASON_EMPTY, message="No pending items")
                return outcome
            item_id = item.id
            bind_item_context(item.id)
            with sentry_scope(item_id=item.id):
                outcome = self._drive_item(session, item, config)
            return outcome
        except Exception as exc:
            session.rollback()
            capture_exception(exc)
            logger.error("process_item_crashed", item_id=item_id, error=str(exc))
            if item_id is not None:
                self._fail_unexpected(session, item_id, exc)
            outcome = ProcessOutcome(ok=False, reason=REASON_ERROR, message=str(exc), item_id=item_id)
            return outcome
        finally:
            bind_item_context(None)
            self._release(session, handle, outcome)

    def _release(self, session: Session, handle: RunLockHandle, outcome: Optional[ProcessOutcome]) -> None:
        status = STATUS_TEXT_COMPLETED if outcome is not None and outcome.reason != REASON_ERROR else STATUS_TEXT_ERROR
        try:
            release_run_lock(session, handle, status=status, now=self._clock())
        except Exception as exc:
            session.rollback()
            capture_exception(exc)
            logger.error("run_lock_release_failed", token=handle.token, error=str(exc))

    def _drive_item(self, session: Session, item: ContentItem, config: GlobalConfig) -> ProcessOutcome:
        mapping = session.get(ChannelMapping, item.mapping_id) if item.mapping_id else None
        target_channel = item.target_channel or (mapping.target_channel_id if mapping else None)
        log_activity(session, item_id=item.id, action="process", status="success", message="Processing started")

        try:
            download = self._downloader.download(item.video_url, item.video_id)
        except DownloadError as exc:
            message = f"Download failed: {exc}"
            self._fail(session, item, kind=FAILURE_TRANSIENT, message=message, action="download")
            return ProcessOutcome(ok=False, reason=REASON_DOWNLOAD_FAILED, message=message, item_id=item.id)

        try:
            return self._publish_artifact(session, item, mapping, target_channel, config, download.file_path)
        finally:
            self._remove_artifact(item.id, download.file_path)

    def _publish_artifact(
        self,
        session: Session,
        item: ContentItem,
        mapping: Optional[ChannelMapping],
        target_channel: Optional[str],
        config: GlobalConfig,
        file_path: str,
    ) -> ProcessOutcome:
        validation = self._validator.validate(file_path)
        if not validation.valid:
            message = validation.reason or "Video failed validation"
            self._fail(session, item, kind=FAILURE_VALIDATION, message=message, action="validate")
            return ProcessOutcome(ok=False, reason=REASON_VALIDATION_FAILED, message=message, item_id=item.id)

        self._transition(session, item, STATUS_DOWNLOADED)
        log_activity(
            session,
            item_id=item.id,
            action="download",
            status="success",
            message="Downloaded and validated",
            details={"width": validation.width, "height": validation.height, "duration": validation.duration},
        )

        behavior = resolve_upload_behavior(mapping, config)
        metadata = self._prepare_metadata(session, item, mapping, behavior)

        credential = self._credential_resolver.resolve(target_channel)
        if credential is None:
            message = not_connected_message(target_channel)
            self._fail(session, item, kind=FAILURE_CONFIGURATION, message=message, action="upload")
            return ProcessOutcome(ok=False, reason=REASON_CHANNEL_NOT_CONNECTED, message=message, item_id=item.id)

        self._transition(session, item, STATUS_UPLOADING)
        try:
            result = self._uploader.upload(
                file_path=file_path,
                title=metadata.title,
                description=metadata.description,
                tags=metadata.tags,
                visibility=behavior.visibility,
                credential=credential,
            )
        except UploadError as exc:
            message = f"Upload failed: {exc}"
            self._fail(session, item, kind=FAILURE_TRANSIENT, message=message, action="upload")
            return ProcessOutcome(ok=False, reason=REASON_UPLOAD_FAILED, message=message, item_id=item.id)

        return self._complete(session, item, mapping, config, behavior, result.external_id)

    def _prepare_metadata(
        self,
        session: Session,
        item: ContentItem,
        mapping: Optional[ChannelMapping],
        behavior: UploadBehavior,
    ) -> _PreparedMetadata:
        blocked_terms = source_block_terms(item.source_channel, mapping)
        title = item.title or ""
        description = strip_blocked_hashtags(item.description or "", blocked_terms)
        hashtags: List[str] = []

        if behavior.ai_enabled and self._enhancer is not None:
            try:
                enhanced = self._enhancer.enhance(
                    title=title,
                    description=item.description or "",
                    tags=list(item.tags or []),
                    blocked_terms=blocked_terms,
                )
            except Exception as exc:
                logger.warning("enhancement_failed", item_id=item.id, error=str(exc))
                log_activity(
                    session,
                    item_id=item.id,
                    action="ai_enhance",
                    status="error",
                    message=f"AI enhancement failed, using original content: {exc}",
                )
            else:
                title = enhanced.title or title
                description = strip_blocked_hashtags(enhanced.description, blocked_terms)
                hashtags = filter_blocked(enhanced.hashtags, blocked_terms)
                item.ai_title = enhanced.title
                item.ai_description = enhanced.description
                item.ai_hashtags = ", ".join(enhanced.hashtags)
                session.commit()
                log_activity(session, item_id=item.id, action="ai_enhance", status="success", message="AI enhancement applied")

        return _PreparedMetadata(
            title=title,
            description=append_hashtags(description, hashtags),
            tags=build_upload_tags(item.tags or [], hashtags, blocked_terms),
        )

    def _complete(
        self,
        session: Session,
        item: ContentItem,
        mapping: Optional[ChannelMapping],
        config: GlobalConfig,
        behavior: UploadBehavior,
        external_id: str,
    ) -> ProcessOutcome:
        now = self._clock()
        scheduled_publish_at = now + timedelta(hours=behavior.delay_hours) if behavior.schedules_publish else None
        self._transition(
            session,
            item,
            STATUS_UPLOADED,
            uploaded_date=now,
            target_video_id=external_id,
            scheduled_date=scheduled_publish_at,
            error_log=None,
            failure_kind=None,
        )
        if mapping is not None:
            session.execute(
                update(ChannelMapping)
                .where(ChannelMapping.id == mapping.id)
                .values(total_uploaded=ChannelMapping.total_uploaded + 1)
                .execution_options(synchronize_session=False)
            )
            session.commit()
        increment_uploads_today(session, today=local_date(now, config.scheduler_timezone))

        log_activity(session, item_id=item.id, action="upload", status="success", message=f"Uploaded as {external_id}")
        if scheduled_publish_at is not None:
            log_activity(
                session,
                item_id=item.id,
                action="schedule_publish",
                status="success",
                message=(
                    f"Scheduled public publish at {scheduled_publish_at.isoformat()} "
                    f"({behavior.delay_hours}h delay)"
                ),
            )
        return ProcessOutcome(
            ok=True,
            reason=REASON_UPLOADED,
            message=f"Uploaded as {external_id}",
            item_id=item.id,
            external_id=external_id,
            scheduled_publish_at=scheduled_publish_at,
        )

    def _transition(self, session: Session, item: ContentItem, status: str, **fields: Any) -> None:
        assert_transition(item.status, status)
        item.status = status
        for name, value in fields.items():
            setattr(item, name, value)
        item.updated_at = self._clock()
        session.commit()
        logger.info("item_status_changed", item_id=item.id, status=status)

    def _fail(self, session: Session, item: ContentItem, *, kind: str, message: str, action: str) -> None:
        self._transition(session, item, STATUS_FAILED, error_log=message, failure_kind=kind)
        log_activity(
            session,
            item_id=item.id,
            action=action,
            status="error",
            message=message,
            details={"failure_kind": kind},
        )

    def _fail_unexpected(self, session: Session, item_id: str, exc: Exception) -> None:
        try:
            item = session.get(ContentItem, item_id, populate_existing=True)
            if item is None or item.status in (STATUS_UPLOADED, STATUS_FAILED):
                return
            self._transition(session, item, STATUS_FAILED, error_log=str(exc), failure_kind=FAILURE_TRANSIENT)
            log_activity(session, item_id=item_id, action="process", status="error", message=str(exc))
        except Exception as nested:
            session.rollback()
            logger.error("item_failure_record_failed", item_id=item_id, error=str(nested))

    def _remove_artifact(self, item_id: str, file_path: str) -> None:
        try:
            self._delete_artifact(file_path)
        except OSError as exc:
            logger.warning("artifact_delete_failed", item_id=item_id, path=file_path, error=str(exc))
