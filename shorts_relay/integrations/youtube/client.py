"""YouTube Data API client for resumable uploads and privacy changes."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

import httpx

from shorts_relay.core.config import get_settings
from shorts_relay.core.logger import get_logger
from shorts_relay.pipeline.collaborators import DestinationCredential, UploadError, UploadResult


MAX_TITLE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 5000
ENTERTAINMENT_CATEGORY_ID = "24"

logger = get_logger("shorts_relay.integrations.youtube")


class YouTubeClientError(UploadError):
    """Raised when token refresh, upload or video update calls fail."""


def _detail(response: httpx.Response) -> str:
    detail = response.text.strip()
    if len(detail) > 240:
        detail = detail[:240] + "..."
    return detail


class YouTubeClient:
    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        token_url: str = "https://oauth2.googleapis.com/token",
        upload_url: str = "https://www.googleapis.com/upload/youtube/v3/videos",
        api_base_url: str = "https://www.googleapis.com/youtube/v3",
        timeout_seconds: int = 120,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._client_id = client_id.strip()
        self._client_secret = client_secret.strip()
        self._token_url = token_url
        self._upload_url = upload_url
        self._api_base_url = api_base_url.rstrip("/")
        self._timeout_seconds = max(1, timeout_seconds)
        self._client = client

    def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            if self._client is not None:
                return self._client.request(method, url, **kwargs)
            with httpx.Client(timeout=self._timeout_seconds) as client:
                return client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise YouTubeClientError(f"youtube_transport_error detail={exc}") from exc

    def _json(self, response: httpx.Response, *, error_code: str) -> Dict[str, Any]:
        if response.status_code < 200 or response.status_code >= 300:
            raise YouTubeClientError(f"{error_code} status={response.status_code} detail={_detail(response)}")
        try:
            body = response.json()
        except ValueError as exc:
            raise YouTubeClientError(f"{error_code} invalid_json_response") from exc
        if not isinstance(body, dict):
            raise YouTubeClientError(f"{error_code} unexpected_response_shape")
        return body

    def access_token(self, refresh_token: str) -> str:
        if not self._client_id or not self._client_secret:
            raise YouTubeClientError("youtube_oauth_client_missing")
        if not refresh_token.strip():
            raise YouTubeClientError("youtube_refresh_token_missing")
        response = self._send(
            "POST",
            self._token_url,
            data={
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
        )
        body = self._json(response, error_code="youtube_token_refresh_failed")
        token = str(body.get("access_token") or "").strip()
        if not token:
            raise YouTubeClientError("youtube_token_refresh_failed missing_access_token")
        return token

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
        token = self.access_token(credential.refresh_token)
        metadata = {
            "snippet": {
                "title": title[:MAX_TITLE_LENGTH],
                "description": description[:MAX_DESCRIPTION_LENGTH],
                "tags": list(tags),
                "categoryId": ENTERTAINMENT_CATEGORY_ID,
            },
            "status": {"privacyStatus": visibility, "selfDeclaredMadeForKids": False},
        }
        init = self._send(
            "POST",
            self._upload_url,
            params={"uploadType": "resumable", "part": "snippet,status"},
            headers={"Authorization": f"Bearer {token}"},
            json=metadata,
        )
        if init.status_code < 200 or init.status_code >= 300:
            raise YouTubeClientError(f"youtube_upload_init_failed status={init.status_code} detail={_detail(init)}")
        session_url = init.headers.get("location")
        if not session_url:
            raise YouTubeClientError("youtube_upload_init_failed missing_location")

        path = Path(file_path)
        try:
            size = path.stat().st_size
            payload = path.open("rb")
        except OSError as exc:
            raise YouTubeClientError(f"youtube_upload_file_unreadable detail={exc}") from exc

        with payload:
            response = self._send(
                "PUT",
                session_url,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "video/*",
                    "Content-Length": str(size),
                },
                content=payload,
            )
        body = self._json(response, error_code="youtube_upload_failed")
        video_id = str(body.get("id") or "").strip()
        if not video_id:
            raise YouTubeClientError("youtube_upload_failed missing_video_id")
        logger.info("youtube_upload_completed", channel_id=credential.channel_id, video_id=video_id)
        return UploadResult(external_id=video_id)

    def update_visibility(self, external_id: str, visibility: str, credential: DestinationCredential) -> None:
        token = self.access_token(credential.refresh_token)
        response = self._send(
            "PUT",
            f"{self._api_base_url}/videos",
            params={"part": "status"},
            headers={"Authorization": f"Bearer {token}"},
            json={"id": external_id, "status": {"privacyStatus": visibility}},
        )
        self._json(response, error_code="youtube_visibility_update_failed")
        logger.info("youtube_visibility_updated", video_id=external_id, visibility=visibility)


@lru_cache(maxsize=1)
def get_youtube_client() -> YouTubeClient:
    settings = get_settings()
    return YouTubeClient(
        client_id=settings.youtube_client_id,
        client_secret=settings.youtube_client_secret,
        token_url=settings.youtube_token_url,
        upload_url=settings.youtube_upload_url,
        api_base_url=settings.youtube_api_base_url,
        timeout_seconds=settings.youtube_api_timeout_seconds,
    )
