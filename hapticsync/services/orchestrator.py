"""Chunked download, extraction and analysis of a video's audio track."""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from pathlib import Path
from typing import List, Optional, Protocol

import numpy as np

from ..audio.decoder import AudioRangeReader
from ..audio.feature_extractor import AnalysisContext, FeatureExtractor
from ..audio.types import Chunk, ChunkState, DownloadProgress, MediaFetchResult
from ..config import PipelineConfig, get_config
from ..errors import ExtractionError, OperationCancelled
from ..store.intensity_store import IntensityStore
from ..store.settings_store import AnalysisSettings
from .cancellation import CancellationToken, acquire_cancellable
from .events import ChunkReady, EventChannel, PipelineError, Progress
from .fetcher import MediaFetcher, ProgressCallback
from .metrics import CHUNK_COUNTER, CHUNK_DURATION

LOGGER = logging.getLogger("hapticsync.chunks")

NO_AUDIO_SAMPLES = "No audio samples"


class Fetcher(Protocol):
    def download(
        self,
        url: str,
        cancel: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> MediaFetchResult: ...

    def close(self) -> None: ...


class RangeReader(Protocol):
    def read(
        self, path: str, start: float, end: float, cancel: Optional[CancellationToken] = None
    ) -> np.ndarray: ...


class _Superseded(Exception):
    """The pipeline was re-initialized while a chunk was in flight."""


class ChunkOrchestrator:
    """Downloads a video once, then analyzes its audio chunk by chunk.

    The timeline is split into fixed-width chunks. Chunk 0 is processed before
    playback starts; later chunks are scheduled from the playback position
    (``check_buffer_and_process``) or on demand after a seek
    (``ensure_chunk_ready``). A capacity-1 processing lock keeps at most one
    chunk in flight; whichever caller takes it first runs to READY or FAILED
    before the next one starts.
    """

    def __init__(
        self,
        settings: AnalysisSettings,
        *,
        config: Optional[PipelineConfig] = None,
        fetcher: Optional[Fetcher] = None,
        reader: Optional[RangeReader] = None,
        extractor: Optional[FeatureExtractor] = None,
        events: Optional[EventChannel] = None,
    ) -> None:
        self.settings = settings
        self.config = config or get_config()
        self.events = events or EventChannel()
        self.extractor = extractor or FeatureExtractor(self.config.target_sample_rate)
        self.reader: RangeReader = reader or AudioRangeReader(self.config)
        self.fetcher: Fetcher = fetcher or MediaFetcher(self.config)
        self.store = IntensityStore(self.extractor.output_sample_rate, settings.chunk_duration_seconds)

        self._context = AnalysisContext()
        self._chunks: List[Chunk] = []
        self._lock = threading.Lock()
        self._processing_lock = threading.Lock()
        self._generation = 0
        self._url: Optional[str] = None
        self._duration = 0.0
        self._media: Optional[MediaFetchResult] = None
        self._background: Optional[threading.Thread] = None
        self._background_cancel: Optional[CancellationToken] = None
        self._closed = False

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def duration(self) -> float:
        return self._duration

    @property
    def chunks(self) -> List[Chunk]:
        with self._lock:
            return [dataclasses.replace(chunk) for chunk in self._chunks]

    @property
    def chunk_count(self) -> int:
        return len(self._chunks)

    @property
    def media_path(self) -> Optional[str]:
        media = self._media
        return media.path if media else None

    @property
    def is_processing(self) -> bool:
        return self._processing_lock.locked()

    @property
    def is_first_chunk_ready(self) -> bool:
        return self.is_chunk_ready(0)

    def is_chunk_ready(self, index: int) -> bool:
        with self._lock:
            return 0 <= index < len(self._chunks) and self._chunks[index].state is ChunkState.READY

    def chunk_index_for_time(self, time_sec: float) -> int:
        return self.store.chunk_index_for_time(time_sec)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self, url: str, estimated_duration: Optional[float] = None) -> None:
        self.stop()
        duration = estimated_duration if estimated_duration and estimated_duration > 0 else None
        with self._lock:
            self._generation += 1
            self._discard_media()
            self._url = url
            self._duration = float(duration or self.config.default_duration_sec)
            self._chunks = _partition(self._duration, self.store.chunk_duration)
            self.store.clear()
            self._context.reset()
        LOGGER.info(
            "Initialized with %d chunks for media duration %.1fs", len(self._chunks), self._duration
        )

    def start_first_chunk(self, cancel: Optional[CancellationToken] = None) -> bool:
        """Process chunk 0 on the calling thread so playback starts with data."""
        if not self._chunks or not self._url:
            self.events.publish(PipelineError("No media initialized"))
            return False
        self._process_chunk(0, cancel)
        return self.is_chunk_ready(0)

    def ensure_chunk_ready(self, index: int, cancel: Optional[CancellationToken] = None) -> bool:
        """Block until ``index`` is analyzed; used after a seek.

        Waits behind any chunk already in flight, then processes ``index``
        regardless of the chunks before it. Raises ``OperationCancelled`` when
        ``cancel`` fires.
        """
        with self._lock:
            if not 0 <= index < len(self._chunks):
                return False
            if self._chunks[index].state is ChunkState.READY:
                return True
        LOGGER.info("Chunk %d requested on demand", index)
        self._process_chunk(index, cancel)
        return self.is_chunk_ready(index)

    def check_buffer_and_process(self, current_time: float) -> bool:
        """Start background work when contiguous buffer runs low.

        Scheduling stops at the first chunk that decoded no audio, since the
        media ends there; ``ensure_chunk_ready`` can still retry it. Returns
        True when a background chunk was started.
        """
        with self._lock:
            if self._closed or not self._chunks:
                return False
            if self._background and self._background.is_alive():
                return False
            if self._processing_lock.locked():
                return False
            buffered = self.store.buffer_ahead(current_time)
            if buffered >= self.settings.min_buffer_ahead_seconds:
                return False
            start = max(0, self.store.chunk_index_for_time(current_time))
            target = _next_schedulable(self._chunks[start:])
            if target is None:
                return False
            token = CancellationToken()
            thread = threading.Thread(
                target=self._run_background,
                args=(target, token),
                name=f"hapticsync-chunk-{target}",
                daemon=True,
            )
            self._background = thread
            self._background_cancel = token
        LOGGER.info(
            "Starting chunk %d in background (position %.1fs, buffer %.1fs)", target, current_time, buffered
        )
        thread.start()
        return True

    def stop(self, timeout: float = 1.0) -> None:
        with self._lock:
            thread = self._background
            token = self._background_cancel
            self._background = None
            self._background_cancel = None
        if token:
            token.cancel()
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.stop()
        with self._lock:
            self._generation += 1
            self._discard_media()
        self.fetcher.close()

    def __enter__(self) -> "ChunkOrchestrator":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def _run_background(self, index: int, token: CancellationToken) -> None:
        try:
            self._process_chunk(index, token)
        except OperationCancelled:
            LOGGER.debug("Background processing of chunk %d cancelled", index)

    def _process_chunk(self, index: int, cancel: Optional[CancellationToken]) -> None:
        cancel = cancel or CancellationToken()
        acquire_cancellable(self._processing_lock, cancel)
        try:
            with self._lock:
                if not 0 <= index < len(self._chunks):
                    return
                chunk = self._chunks[index]
                if chunk.state is ChunkState.READY or chunk.state.is_active:
                    return
                generation = self._generation
                url = self._url
                chunk.state = ChunkState.DOWNLOADING
                chunk.error_message = None
            self._run_chunk(chunk, generation, url, cancel)
        finally:
            self._processing_lock.release()

    def _run_chunk(
        self, chunk: Chunk, generation: int, url: Optional[str], cancel: CancellationToken
    ) -> None:
        index = chunk.index
        started = time.perf_counter()
        LOGGER.info("Processing chunk %d (%.0fs - %.0fs)", index, chunk.start_time, chunk.end_time)
        try:
            media = self._ensure_media(index, generation, url, cancel)

            self._transition(chunk, generation, ChunkState.EXTRACTING)
            self.events.publish(Progress(index, f"Extracting audio (chunk {index + 1})...", 33))
            pcm = self.reader.read(media.path, chunk.start_time, chunk.end_time, cancel)
            if pcm.size == 0:
                raise ExtractionError(NO_AUDIO_SAMPLES)

            self._transition(chunk, generation, ChunkState.ANALYZING)
            self.events.publish(Progress(index, f"Analyzing audio (chunk {index + 1})...", 66))
            self._context.reset()
            intensities = self.extractor.analyze(pcm, self.settings, self._context)
            cancel.raise_if_cancelled()

            with self._lock:
                if generation != self._generation:
                    raise _Superseded()
                chunk.intensities = intensities
                chunk.state = ChunkState.READY
                self.store.set_chunk(index, intensities)
        except _Superseded:
            LOGGER.debug("Chunk %d discarded after re-initialization", index)
            return
        except OperationCancelled:
            self._revert(chunk, generation, ChunkState.NOT_STARTED)
            CHUNK_COUNTER.labels(status="cancelled").inc()
            LOGGER.debug("Chunk %d cancelled", index)
            raise
        except Exception as exc:
            self._revert(chunk, generation, ChunkState.FAILED, str(exc))
            CHUNK_COUNTER.labels(status="failed").inc()
            LOGGER.error("Failed to process chunk %d", index, exc_info=True)
            self.events.publish(PipelineError(f"Chunk {index} failed: {exc}"))
            return
        finally:
            CHUNK_DURATION.observe(time.perf_counter() - started)

        CHUNK_COUNTER.labels(status="ready").inc()
        self.events.publish(Progress(index, "Ready", 100))
        self.events.publish(ChunkReady(index, int(intensities.size)))
        LOGGER.info(
            "Chunk %d ready with %d intensity samples (%.1fs of audio)",
            index,
            intensities.size,
            intensities.size / self.extractor.output_sample_rate,
        )

    def _ensure_media(
        self, index: int, generation: int, url: Optional[str], cancel: CancellationToken
    ) -> MediaFetchResult:
        media = self._media
        if media and Path(media.path).exists():
            return media
        if not url:
            raise ExtractionError("No media URL initialized")

        self.events.publish(Progress(index, "Downloading video...", 0))
        media = self.fetcher.download(url, cancel, on_progress=self._download_progress(index))
        with self._lock:
            if generation != self._generation:
                if media.temporary:
                    _remove_file(media.path)
                raise _Superseded()
            self._media = media
        LOGGER.info("Media downloaded to %s", media.path)
        return media

    def _download_progress(self, index: int) -> ProgressCallback:
        def report(progress: DownloadProgress) -> None:
            percent = progress.percent_complete or 0.0
            self.events.publish(Progress(index, f"Downloading... {percent:.0f}%", int(percent * 0.33)))

        return report

    def _transition(self, chunk: Chunk, generation: int, state: ChunkState) -> None:
        with self._lock:
            if generation != self._generation:
                raise _Superseded()
            chunk.state = state

    def _revert(
        self, chunk: Chunk, generation: int, state: ChunkState, message: Optional[str] = None
    ) -> None:
        with self._lock:
            if generation != self._generation:
                return
            chunk.state = state
            chunk.error_message = message
            chunk.intensities = None

    def _discard_media(self) -> None:
        media, self._media = self._media, None
        if media and media.temporary:
            _remove_file(media.path)


def _next_schedulable(chunks: List[Chunk]) -> Optional[int]:
    for chunk in chunks:
        # An empty decode means the media ended before this chunk; nothing later has audio.
        if chunk.state is ChunkState.FAILED and chunk.error_message == NO_AUDIO_SAMPLES:
            return None
        if chunk.state.is_schedulable:
            return chunk.index
    return None


def _partition(duration: float, width: float) -> List[Chunk]:
    chunks: List[Chunk] = []
    index = 0
    while index * width < duration:
        start = index * width
        chunks.append(Chunk(index=index, start_time=start, end_time=min(start + width, duration)))
        index += 1
    return chunks


def _remove_file(path: str) -> None:
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as exc:
        LOGGER.warning("Could not delete cached media %s: %s", path, exc)


__all__ = ["NO_AUDIO_SAMPLES", "ChunkOrchestrator", "Fetcher", "RangeReader"]
