"""yt-dlp/ffprobe subprocess adapters for fetching and checking short clips."""

from __future__ import annotations

import json
from pathlib import Path
import subprocess
import time
from typing import Any, Callable, Dict, Optional, Sequence

from shorts_relay.core.config import get_settings
from shorts_relay.core.logger import get_logger
from shorts_relay.pipeline.collaborators import DownloadError, DownloadResult, ValidationResult


YTDLP_FORMAT = "best[height<=1080][ext=mp4][filesize<100M]/best[height<=720][ext=mp4]"
MIN_VERTICAL_RATIO = 1.5
MAX_VERTICAL_RATIO = 2.0
MAX_SHORT_DURATION_SECONDS = 60.0
FFPROBE_TIMEOUT_SECONDS = 30

Runner = Callable[..., subprocess.CompletedProcess]

logger = get_logger("shorts_relay.integrations.media")


def _tail(text: str, limit: int = 240) -> str:
    stripped = (text or "").strip()
    return stripped if len(stripped) <= limit else "..." + stripped[-limit:]


class YtDlpDownloader:
    def __init__(
        self,
        *,
        temp_dir: str,
        binary: str = "yt-dlp",
        timeout_seconds: int = 300,
        runner: Optional[Runner] = None,
    ) -> None:
        self._temp_dir = Path(temp_dir)
        self._binary = binary
        self._timeout_seconds = max(1, timeout_seconds)
        self._runner = runner or subprocess.run

    def output_path(self, video_id: str) -> Path:
        return self._temp_dir / f"{video_id}.mp4"

    def download(self, url: str, video_id: str) -> DownloadResult:
        self._temp_dir.mkdir(parents=True, exist_ok=True)
        output = self.output_path(video_id)
        if output.exists():
            logger.info("download_reused_artifact", video_id=video_id, path=str(output))
            return DownloadResult(file_path=str(output))

        cmd = [self._binary, "-f", YTDLP_FORMAT, "-o", str(output), "--no-playlist", url]
        try:
            result = self._runner(cmd, capture_output=True, text=True, timeout=self._timeout_seconds)
        except subprocess.TimeoutExpired as exc:
            raise DownloadError(f"ytdlp_timeout seconds={self._timeout_seconds}") from exc
        except OSError as exc:
            raise DownloadError(f"ytdlp_unavailable detail={exc}") from exc

        if result.returncode != 0:
            raise DownloadError(f"ytdlp_failed code={result.returncode} detail={_tail(result.stderr)}")
        if not output.exists():
            raise DownloadError("Downloaded file not found")
        logger.info("download_completed", video_id=video_id, path=str(output))
        return DownloadResult(file_path=str(output))


class FfprobeValidator:
    """Accept vertical (9:16-ish) clips no longer than one minute."""

    def __init__(self, *, binary: str = "ffprobe", runner: Optional[Runner] = None) -> None:
        self._binary = binary
        self._runner = runner or subprocess.run

    def _probe(self, file_path: str) -> Dict[str, Any]:
        cmd: Sequence[str] = [
            self._binary,
            "-v",
            "error",
            "-select_streams",
            "v:0",
            "-show_entries",
            "stream=width,height,duration",
            "-of",
            "json",
            file_path,
        ]
        result = self._runner(list(cmd), capture_output=True, text=True, timeout=FFPROBE_TIMEOUT_SECONDS)
        if result.returncode != 0:
            raise RuntimeError(f"ffprobe failed: {_tail(result.stderr)}")
        return json.loads(result.stdout or "{}")

    def validate(self, file_path: str) -> ValidationResult:
        try:
            data = self._probe(file_path)
        except (RuntimeError, OSError, ValueError, subprocess.TimeoutExpired) as exc:
            return ValidationResult(valid=False, reason=f"Validation failed: {exc}")

        streams = data.get("streams") or []
        if not streams:
            return ValidationResult(valid=False, reason="No video stream found")

        stream = streams[0]
        width = int(stream.get("width") or 0)
        height = int(stream.get("height") or 0)
        try:
            duration = float(stream.get("duration") or 0)
        except (TypeError, ValueError):
            duration = 0.0

        if width <= 0 or height <= 0:
            return ValidationResult(valid=False, width=width, height=height, duration=duration, reason="No video stream found")

        ratio = height / width
        if ratio < MIN_VERTICAL_RATIO or ratio > MAX_VERTICAL_RATIO:
            return ValidationResult(
                valid=False,
                width=width,
                height=height,
                duration=duration,
                reason="Video is not vertical (9:16 format)",
            )
        if duration > MAX_SHORT_DURATION_SECONDS:
            return ValidationResult(
                valid=False,
                width=width,
                height=height,
                duration=duration,
                reason="Video duration exceeds 60 seconds",
            )
        return ValidationResult(valid=True, width=width, height=height, duration=duration)


def delete_artifact(file_path: str) -> None:
    Path(file_path).unlink(missing_ok=True)


def cleanup_stale_artifacts(temp_dir: str, *, max_age_seconds: int = 24 * 60 * 60, now: Optional[float] = None) -> int:
    """Remove leftovers from crashed runs; returns how many files were deleted."""

    directory = Path(temp_dir)
    if not directory.is_dir():
        return 0
    current = now if now is not None else time.time()
    deleted = 0
    for path in directory.iterdir():
        if not path.is_file():
            continue
        try:
            if current - path.stat().st_mtime > max_age_seconds:
                path.unlink()
                deleted += 1
        except OSError as exc:
            logger.warning("stale_artifact_delete_failed", path=str(path), error=str(exc))
    return deleted


def build_media_adapters() -> tuple[YtDlpDownloader, FfprobeValidator]:
    settings = get_settings()
    downloader = YtDlpDownloader(
        temp_dir=settings.media_temp_dir,
        binary=settings.ytdlp_binary,
        timeout_seconds=settings.download_timeout_seconds,
    )
    return downloader, FfprobeValidator(binary=settings.ffprobe_binary)
