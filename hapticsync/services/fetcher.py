"""Media download helpers with retry and progress reporting."""

from __future__ import annotations

import logging
import time
import uuid
from pathlib import Path
from typing import Callable, Optional

import httpx

from ..audio.types import DownloadProgress, MediaFetchResult
from ..config import PipelineConfig, get_config
from ..errors import FetchError, OperationCancelled
from .cancellation import CancellationToken
from .metrics import DOWNLOAD_ATTEMPTS, DOWNLOAD_BYTES

LOGGER = logging.getLogger("hapticsync.fetcher")

VIDEO_EXTENSIONS = (".mp4", ".webm", ".m4v", ".mov", ".avi", ".mkv")
VIDEO_URL_HINTS = ("/video/", "/media/", "cdn", "stream")

ProgressCallback = Callable[[DownloadProgress], None]


class MediaFetcher:
    """Streams a remote media resource into a uniquely named temp file."""

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        *,
        client: Optional[httpx.Client] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        self.config = config or get_config()
        self.on_progress = on_progress
        self._client = client or httpx.Client(
            timeout=self.config.download_timeout_sec,
            follow_redirects=True,
            headers={"User-Agent": self.config.user_agent},
        )

    def download(
        self,
        url: str,
        cancel: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> MediaFetchResult:
        cancel = cancel or CancellationToken()
        temp_dir = Path(self.config.temp_dir)
        temp_dir.mkdir(parents=True, exist_ok=True)
        target = temp_dir / f"haptic_media_{uuid.uuid4().hex}.tmp"
        attempts = self.config.download_max_attempts
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                cancel.raise_if_cancelled()
                size = self._download_to_file(url, target, cancel, on_progress or self.on_progress)
            except OperationCancelled:
                _remove(target)
                DOWNLOAD_ATTEMPTS.labels(outcome="cancelled").inc()
                raise
            except Exception as exc:
                last_error = exc
                _remove(target)
                DOWNLOAD_ATTEMPTS.labels(outcome="error").inc()
                if attempt >= attempts:
                    break
                LOGGER.warning("Download attempt %d failed: %s. Retrying...", attempt, exc)
                try:
                    cancel.sleep(self.config.download_retry_delay_sec * attempt)
                except OperationCancelled:
                    DOWNLOAD_ATTEMPTS.labels(outcome="cancelled").inc()
                    raise
            else:
                DOWNLOAD_ATTEMPTS.labels(outcome="success").inc()
                LOGGER.info("Downloaded media to %s (%d bytes)", target, size)
                return MediaFetchResult(path=str(target), byte_length=size)

        raise FetchError(
            f"Failed to download media after {attempts} attempts: {last_error}",
            last_error,
        ) from last_error

    def _download_to_file(
        self,
        url: str,
        target: Path,
        cancel: CancellationToken,
        report: Optional[ProgressCallback],
    ) -> int:
        buffer_size = self.config.download_buffer_bytes
        interval = self.config.progress_interval_sec
        timeout = self.config.download_timeout_sec
        # The client timeout bounds single reads; this bounds the whole transfer.
        deadline = time.monotonic() + timeout
        downloaded = 0
        with self._client.stream("GET", url) as resp:
            resp.raise_for_status()
            total = _content_length(resp)
            last_report = time.monotonic()
            with target.open("wb", buffering=buffer_size) as handle:
                for data in resp.iter_bytes():
                    cancel.raise_if_cancelled()
                    if time.monotonic() > deadline:
                        raise httpx.TimeoutException(
                            f"Download exceeded {timeout:.1f}s after {downloaded} bytes",
                            request=resp.request,
                        )
                    handle.write(data)
                    downloaded += len(data)
                    DOWNLOAD_BYTES.inc(len(data))
                    now = time.monotonic()
                    if now - last_report >= interval:
                        last_report = now
                        _report(report, DownloadProgress(downloaded, total))
        _report(report, DownloadProgress(downloaded, total))
        return downloaded

    def close(self) -> None:
        self._client.close()


class LocalMediaSource:
    """Serves a file already on disk through the fetcher interface."""

    def download(
        self,
        url: str,
        cancel: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> MediaFetchResult:
        if cancel:
            cancel.raise_if_cancelled()
        path = Path(url)
        if not path.is_file():
            raise FetchError(f"Media file not found: {url}")
        size = path.stat().st_size
        _report(on_progress, DownloadProgress(size, size))
        return MediaFetchResult(path=str(path), byte_length=size, temporary=False)

    def close(self) -> None:
        return None


def _report(callback: Optional[ProgressCallback], progress: DownloadProgress) -> None:
    if callback:
        callback(progress)


def is_likely_video_url(url: str | None) -> bool:
    if not url:
        return False
    lowered = url.lower()
    if any(ext in lowered for ext in VIDEO_EXTENSIONS):
        return True
    return any(hint in lowered for hint in VIDEO_URL_HINTS)


def _content_length(resp: httpx.Response) -> Optional[int]:
    raw = resp.headers.get("Content-Length")
    try:
        return int(raw) if raw is not None else None
    except ValueError:
        return None


def _remove(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        LOGGER.debug("Could not remove partial download %s: %s", path, exc)


__all__ = ["LocalMediaSource", "MediaFetcher", "ProgressCallback", "is_likely_video_url"]
