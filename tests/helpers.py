from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence
import uuid

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from shorts_relay.core.config import Settings
from shorts_relay.pipeline.collaborators import (
    DestinationCredential,
    DownloadError,
    DownloadResult,
    Enhancement,
    EnhancementError,
    UploadError,
    UploadResult,
    ValidationResult,
)
from shorts_relay.pipeline.orchestrator import PipelineOrchestrator
from shorts_relay.settings_store import set_config_value
from shorts_relay.storage.db import Base, load_models
from shorts_relay.storage.models import STATUS_PENDING, ChannelMapping, ContentItem


NINE_AM_UTC = datetime(2025, 1, 10, 9, 0, tzinfo=timezone.utc)


def build_sqlite_session_factory() -> sessionmaker:
    load_models()
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


class FakeRedis:
    def __init__(self) -> None:
        self._store: Dict[str, str] = {}
        self.expiries: Dict[str, int] = {}

    def set(self, key: str, value: str, nx: bool = False, ex: int | None = None):
        if nx and key in self._store:
            return None
        self._store[key] = str(value)
        if ex is not None:
            self.expiries[key] = ex
        return True

    def get(self, key: str):
        return self._store.get(key)

    def delete(self, key: str):
        return 1 if self._store.pop(key, None) is not None else 0


class FakeDownloader:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.calls: List[str] = []

    def download(self, url: str, video_id: str) -> DownloadResult:
        self.calls.append(video_id)
        if self.fail:
            raise DownloadError("ytdlp_failed code=1 detail=HTTP Error 403")
        return DownloadResult(file_path=f"/tmp/shorts-relay-tests/{video_id}.mp4")


class FakeValidator:
    def __init__(self, result: Optional[ValidationResult] = None) -> None:
        self.result = result or ValidationResult(valid=True, width=1080, height=1920, duration=20.0)
        self.calls: List[str] = []

    def validate(self, file_path: str) -> ValidationResult:
        self.calls.append(file_path)
        return self.result


class FakeUploader:
    def __init__(self, *, error: Optional[Exception] = None) -> None:
        self.error = error
        self.calls: List[dict] = []

    def upload(
        self,
        *,
        file_path: str,
        title: str,
        description: str,
        tags: Sequence[str],
        visibility: str,
        credential: DestinationCredential,
    ) -> UploadResult:
        self.calls.append(
            {
                "file_path": file_path,
                "title": title,
                "description": description,
                "tags": list(tags),
                "visibility": visibility,
                "channel_id": credential.channel_id,
            }
        )
        if self.error is not None:
            raise self.error
        return UploadResult(external_id=f"yt-{len(self.calls)}")


class FakeVisibilityClient:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.calls: List[tuple[str, str]] = []

    def update_visibility(self, external_id: str, visibility: str, credential: DestinationCredential) -> None:
        del credential
        self.calls.append((external_id, visibility))
        if self.fail:
            raise UploadError("youtube_visibility_update_failed status=500 detail=backendError")


class FakeCredentialResolver:
    def __init__(self, connected: Sequence[str] = ("UCdest",)) -> None:
        self.connected = set(connected)

    def resolve(self, target_channel_id: Optional[str]) -> Optional[DestinationCredential]:
        if target_channel_id and target_channel_id in self.connected:
            return DestinationCredential(channel_id=target_channel_id, refresh_token=f"refresh-{target_channel_id}")
        return None


class FakeEnhancer:
    def __init__(self, result: Optional[Enhancement] = None, *, fail: bool = False) -> None:
        self.result = result
        self.fail = fail
        self.calls: List[dict] = []

    def enhance(self, *, title: str, description: str, tags: Sequence[str], blocked_terms: Sequence[str] = ()) -> Enhancement:
        self.calls.append({"title": title, "blocked_terms": list(blocked_terms)})
        if self.fail or self.result is None:
            raise EnhancementError("gemini_request_failed model=gemini-2.5-flash status=503 detail=overloaded")
        return self.result


class ArtifactRecorder:
    def __init__(self) -> None:
        self.removed: List[str] = []

    def __call__(self, file_path: str) -> None:
        self.removed.append(file_path)


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def build_orchestrator(
    session_factory: sessionmaker,
    *,
    clock: FixedClock,
    downloader: Optional[FakeDownloader] = None,
    validator: Optional[FakeValidator] = None,
    uploader: Optional[FakeUploader] = None,
    credential_resolver: Optional[FakeCredentialResolver] = None,
    enhancer: Optional[FakeEnhancer] = None,
    remover: Optional[ArtifactRecorder] = None,
) -> PipelineOrchestrator:
    return PipelineOrchestrator(
        session_factory=session_factory,
        downloader=downloader or FakeDownloader(),
        validator=validator or FakeValidator(),
        uploader=uploader or FakeUploader(),
        credential_resolver=credential_resolver or FakeCredentialResolver(),
        delete_artifact=remover or ArtifactRecorder(),
        enhancer=enhancer,
        settings=Settings(),
        clock=clock,
    )


def add_mapping(session: Session, **fields) -> ChannelMapping:
    values = {
        "name": "Clips relay",
        "source_channel_id": "UC123",
        "target_channel_id": "UCdest",
        "is_active": True,
        "created_at": datetime(2025, 1, 1, tzinfo=timezone.utc),
    }
    values.update(fields)
    mapping = ChannelMapping(**values)
    session.add(mapping)
    session.commit()
    return mapping


def add_item(session: Session, **fields) -> ContentItem:
    video_id = fields.pop("video_id", f"vid-{uuid.uuid4().hex[:10]}")
    values = {
        "video_id": video_id,
        "video_url": f"https://www.youtube.com/shorts/{video_id}",
        "title": "Original clip title",
        "description": "Original description #shorts",
        "tags": ["clips", "funny"],
        "status": STATUS_PENDING,
        "source_channel": "UC123",
        "created_at": datetime(2025, 1, 2, tzinfo=timezone.utc),
    }
    values.update(fields)
    item = ContentItem(**values)
    session.add(item)
    session.commit()
    return item


def set_config(session: Session, **values: object) -> None:
    for key, value in values.items():
        if isinstance(value, bool):
            raw = "true" if value else "false"
        else:
            raw = str(value)
        set_config_value(session, key, raw)
