"""Playback-side controller that drives a haptic sink from the intensity track."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional, Protocol

from ..errors import OperationCancelled
from ..store.settings_store import AnalysisSettings
from .cancellation import CancellationToken
from .events import EventChannel, PipelineError
from .fetcher import is_likely_video_url
from .orchestrator import ChunkOrchestrator

LOGGER = logging.getLogger("hapticsync.session")

RESYNC_INTERVAL_SEC = 5.0
BASE_LATENCY_MS = 300.0
MIN_DEVICE_INTENSITY = 0.08
QUIET_THRESHOLD = 0.01


class HapticSink(Protocol):
    """Output device. Implementations live outside this package."""

    @property
    def is_connected(self) -> bool: ...

    @property
    def anticipation_ms(self) -> float: ...

    def set_intensity(self, value: float) -> None: ...

    def stop(self) -> None: ...


OrchestratorFactory = Callable[[AnalysisSettings, EventChannel], ChunkOrchestrator]


def _default_factory(settings: AnalysisSettings, events: EventChannel) -> ChunkOrchestrator:
    return ChunkOrchestrator(settings, events=events)


def to_device_intensity(intensity: float, live_intensity: float) -> float:
    """Map a track value onto the range the device can actually feel.

    Motors barely respond below ``MIN_DEVICE_INTENSITY``, so non-quiet values
    are spread over ``[MIN_DEVICE_INTENSITY, live_intensity]``. A live level at
    or below that floor scales the track directly.
    """
    if intensity <= QUIET_THRESHOLD or live_intensity <= 0:
        return 0.0
    if live_intensity <= MIN_DEVICE_INTENSITY:
        return intensity * live_intensity
    return MIN_DEVICE_INTENSITY + intensity * (live_intensity - MIN_DEVICE_INTENSITY)


class SyncSession:
    """Connects video playback callbacks to the chunk pipeline and a sink.

    The host calls ``on_video_detected`` once per video, then feeds
    ``on_playback_state`` on every position tick and ``on_seek`` when the user
    jumps. Each tick looks slightly ahead of the playhead to cover device
    latency, except every ``RESYNC_INTERVAL_SEC`` when the exact position is
    used to stop drift from accumulating.
    """

    def __init__(
        self,
        sink: HapticSink,
        settings: AnalysisSettings,
        *,
        events: Optional[EventChannel] = None,
        orchestrator_factory: Optional[OrchestratorFactory] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.sink = sink
        self.settings = settings
        self.events = events or EventChannel()
        self._factory = orchestrator_factory or _default_factory
        self._clock = clock
        self._orchestrator: Optional[ChunkOrchestrator] = None
        self._cancel = CancellationToken()
        self._paused = False
        self._playing = False
        self._processing = False
        self._waiting_for_chunk = False
        self._last_resync: Optional[float] = None
        self._last_position = 0.0
        self._seek_thread: Optional[threading.Thread] = None

    @property
    def orchestrator(self) -> Optional[ChunkOrchestrator]:
        return self._orchestrator

    @property
    def is_processing(self) -> bool:
        return self._processing

    @property
    def is_playing(self) -> bool:
        return self._playing

    @property
    def is_ready_to_play(self) -> bool:
        return bool(self._orchestrator and self._orchestrator.is_first_chunk_ready)

    @property
    def is_waiting_for_chunk(self) -> bool:
        return self._waiting_for_chunk

    @property
    def last_position(self) -> float:
        return self._last_position

    def on_video_detected(self, url: str, estimated_duration: Optional[float] = None) -> bool:
        """Prepare the pipeline for ``url`` and analyze its first chunk.

        Returns True when playback can start with haptics. On False the video
        should still play, just without haptic output.
        """
        if not self.settings.enabled or not self.sink.is_connected:
            LOGGER.debug(
                "Skipping video: enabled=%s connected=%s", self.settings.enabled, self.sink.is_connected
            )
            return False
        if not is_likely_video_url(url):
            LOGGER.debug("URL does not look like a video: %s", url)
            return False

        LOGGER.info("Video detected, starting processing: %s", url)
        self._processing = True
        try:
            if self._orchestrator is not None:
                self._orchestrator.close()
            self._orchestrator = self._factory(self.settings, self.events)
            self._orchestrator.initialize(url, estimated_duration)
            ready = self._orchestrator.start_first_chunk(self._cancel)
        except OperationCancelled:
            LOGGER.debug("Preparation cancelled for %s", url)
            return False
        finally:
            self._processing = False

        if not ready:
            self.events.publish(PipelineError("Failed to prepare haptic sync: first chunk not ready"))
            return False
        LOGGER.info("First chunk ready, video can start playing")
        return True

    def on_playback_state(self, current_time: float, paused: bool) -> None:
        orchestrator = self._orchestrator
        if not self.settings.enabled or orchestrator is None:
            return

        if paused and not self._paused:
            self._paused = True
            self._playing = False
            self._stop_sink()
            LOGGER.debug("Playback paused at %.2fs", current_time)
            return
        if not paused and self._paused:
            self._paused = False
            self._last_resync = self._clock()
            LOGGER.debug("Playback resumed at %.2fs", current_time)
        if paused or self._waiting_for_chunk:
            return

        self._playing = True
        self._last_position = current_time
        orchestrator.check_buffer_and_process(current_time)

        now = self._clock()
        if self._last_resync is None or now - self._last_resync >= RESYNC_INTERVAL_SEC:
            lookup_time = current_time
            self._last_resync = now
            LOGGER.debug("Forced resync at %.2fs", current_time)
        else:
            latency_ms = BASE_LATENCY_MS + self.sink.anticipation_ms + self.settings.manual_latency_offset_ms
            lookup_time = current_time + latency_ms / 1000.0

        if not orchestrator.store.has_data_for_time(lookup_time):
            LOGGER.debug("No haptic data for %.2fs yet", lookup_time)
            return
        self._send(orchestrator.store.intensity_at(lookup_time))

    def on_seek(self, new_time: float) -> Optional[threading.Thread]:
        """Record a seek; load the target chunk in the background if needed.

        Returns the loader thread when one was started. Playback ticks are
        ignored while it runs.
        """
        orchestrator = self._orchestrator
        if not self.settings.enabled or orchestrator is None:
            return None

        LOGGER.info("Seeked to %.2fs", new_time)
        self._last_position = new_time
        self._last_resync = self._clock()
        index = orchestrator.chunk_index_for_time(new_time)
        if orchestrator.is_chunk_ready(index):
            return None

        self._waiting_for_chunk = True
        thread = threading.Thread(
            target=self._load_for_seek,
            args=(orchestrator, index, self._cancel),
            name=f"hapticsync-seek-{index}",
            daemon=True,
        )
        self._seek_thread = thread
        thread.start()
        return thread

    def on_video_ended(self) -> None:
        LOGGER.info("Video ended")
        self.stop_sync()

    def stop_sync(self) -> None:
        self._playing = False
        self._paused = False
        self._waiting_for_chunk = False
        self._cancel.cancel()
        self._cancel = CancellationToken()
        self._stop_sink()
        if self._orchestrator is not None:
            self._orchestrator.stop()

    def reset(self) -> None:
        """Stop syncing and release the pipeline, e.g. when navigating away."""
        self.stop_sync()
        if self._orchestrator is not None:
            self._orchestrator.close()
            self._orchestrator = None
        self._processing = False
        self._last_resync = None

    close = reset

    def __enter__(self) -> "SyncSession":
        return self

    def __exit__(self, *exc_info) -> None:
        self.reset()

    def _load_for_seek(self, orchestrator: ChunkOrchestrator, index: int, cancel: CancellationToken) -> None:
        try:
            orchestrator.ensure_chunk_ready(index, cancel)
            LOGGER.info("Chunk %d loaded after seek", index)
        except OperationCancelled:
            LOGGER.debug("Seek load of chunk %d cancelled", index)
        except Exception as exc:
            LOGGER.error("Failed to load chunk %d after seek", index, exc_info=True)
            self.events.publish(PipelineError(f"Failed to load haptic data: {exc}"))
        finally:
            self._waiting_for_chunk = False

    def _send(self, intensity: float) -> None:
        value = to_device_intensity(intensity, self.settings.live_intensity)
        try:
            self.sink.set_intensity(value)
        except Exception as exc:
            LOGGER.warning("Failed to send haptic intensity %.3f: %s", value, exc)

    def _stop_sink(self) -> None:
        try:
            self.sink.stop()
        except Exception as exc:
            LOGGER.warning("Failed to stop haptic sink: %s", exc)


__all__ = ["HapticSink", "SyncSession", "to_device_intensity"]
