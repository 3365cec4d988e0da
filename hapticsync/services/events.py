"""Typed notifications published by the pipeline."""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Union

LOGGER = logging.getLogger("hapticsync.events")


@dataclass(frozen=True, slots=True)
class ChunkReady:
    index: int
    sample_count: int


@dataclass(frozen=True, slots=True)
class Progress:
    chunk_index: int
    phase: str
    percent: int


@dataclass(frozen=True, slots=True)
class PipelineError:
    message: str


PipelineEvent = Union[ChunkReady, Progress, PipelineError]
Listener = Callable[[PipelineEvent], None]


class EventChannel:
    """Queue the playback surface polls, with optional push listeners.

    Publishing never blocks and never runs consumer code on the caller's
    behalf unless a listener was explicitly subscribed.
    """

    def __init__(self, maxsize: int = 1024) -> None:
        self._queue: "queue.Queue[PipelineEvent]" = queue.Queue(maxsize=maxsize)
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def publish(self, event: PipelineEvent) -> None:
        with self._lock:
            # Full: drop the oldest event. Publishers are serialized by the lock,
            # so the freed slot is ours.
            if self._queue.full():
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    pass
            self._queue.put_nowait(event)
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                LOGGER.exception("Event listener failed for %r", event)

    def get(self, timeout: Optional[float] = None) -> Optional[PipelineEvent]:
        try:
            return self._queue.get(timeout=timeout) if timeout else self._queue.get_nowait()
        except queue.Empty:
            return None

    def drain(self) -> List[PipelineEvent]:
        events: List[PipelineEvent] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events


__all__ = ["ChunkReady", "EventChannel", "PipelineError", "PipelineEvent", "Progress"]
