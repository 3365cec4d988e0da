"""Dataclasses shared across the audio pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np


class ChunkState(str, Enum):
    """Lifecycle of a single timeline chunk."""

    NOT_STARTED = "not_started"
    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    ANALYZING = "analyzing"
    READY = "ready"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        return self in (ChunkState.DOWNLOADING, ChunkState.EXTRACTING, ChunkState.ANALYZING)

    @property
    def is_schedulable(self) -> bool:
        # Failed chunks are retried exactly like fresh ones.
        return self in (ChunkState.NOT_STARTED, ChunkState.FAILED)


@dataclass(slots=True)
class Chunk:
    """A fixed-width segment of the source timeline (seconds)."""

    index: int
    start_time: float
    end_time: float
    state: ChunkState = ChunkState.NOT_STARTED
    intensities: Optional[np.ndarray] = None
    error_message: Optional[str] = None


@dataclass(slots=True)
class MediaFetchResult:
    """Local copy of a downloaded media resource."""

    path: str
    byte_length: Optional[int] = None
    # False for files the caller owns; only temporary copies are deleted.
    temporary: bool = True


@dataclass(slots=True)
class DownloadProgress:
    bytes_downloaded: int
    total_bytes: Optional[int] = None

    @property
    def percent_complete(self) -> Optional[float]:
        if not self.total_bytes:
            return None
        return self.bytes_downloaded / self.total_bytes * 100.0


__all__ = ["Chunk", "ChunkState", "DownloadProgress", "MediaFetchResult"]
