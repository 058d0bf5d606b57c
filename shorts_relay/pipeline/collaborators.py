"""Contracts for the external steps the pipeline drives."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence


class DownloadError(RuntimeError):
    """Raised when source media cannot be fetched to local storage."""


class UploadError(RuntimeError):
    """Raised when the destination platform rejects an upload or visibility change."""


class EnhancementError(RuntimeError):
    """Raised when AI metadata enhancement fails; callers treat it as non-fatal."""


@dataclass(frozen=True)
class DownloadResult:
    file_path: str


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    width: int = 0
    height: int = 0
    duration: float = 0.0
    reason: Optional[str] = None


@dataclass(frozen=True)
class Enhancement:
    title: str
    description: str
    hashtags: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class UploadResult:
    external_id: str


@dataclass(frozen=True)
class DestinationCredential:
    channel_id: str
    refresh_token: str
    channel_title: Optional[str] = None


class Downloader(Protocol):
    def download(self, url: str, video_id: str) -> DownloadResult:
        raise NotImplementedError


class Validator(Protocol):
    def validate(self, file_path: str) -> ValidationResult:
        raise NotImplementedError


class Enhancer(Protocol):
    def enhance(
        self,
        *,
        title: str,
        description: str,
        tags: Sequence[str],
        blocked_terms: Sequence[str] = (),
    ) -> Enhancement:
        raise NotImplementedError


class Uploader(Protocol):
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
        raise NotImplementedError


class VisibilityClient(Protocol):
    def update_visibility(self, external_id: str, visibility: str, credential: DestinationCredential) -> None:
        raise NotImplementedError


class CredentialResolver(Protocol):
    def resolve(self, target_channel_id: Optional[str]) -> Optional[DestinationCredential]:
        raise NotImplementedError


class ArtifactRemover(Protocol):
    def __call__(self, file_path: str) -> None:
        ...
