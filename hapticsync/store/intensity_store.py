"""Sparse, chunk-addressed store of analyzed intensity values."""

from __future__ import annotations

import threading
from typing import Dict, Sequence

import numpy as np


class IntensityStore:
    """Intensity samples keyed by chunk index for time-accurate lookup.

    Chunk ``i`` covers ``[i * chunk_duration, (i + 1) * chunk_duration)``.
    Chunks may arrive out of order (a seek can deliver chunk 7 before chunk 2),
    so lookups never assume the loaded chunks are contiguous.
    """

    def __init__(self, samples_per_second: float, chunk_duration: float = 300.0) -> None:
        if samples_per_second <= 0:
            raise ValueError("samples_per_second must be positive")
        if chunk_duration <= 0:
            raise ValueError("chunk_duration must be positive")
        self.samples_per_second = float(samples_per_second)
        self.chunk_duration = float(chunk_duration)
        self._chunks: Dict[int, np.ndarray] = {}
        self._lock = threading.Lock()
        self._duration = 0.0
        self._highest_index = -1

    @property
    def duration(self) -> float:
        """End time of the highest chunk ever inserted (not contiguous coverage)."""
        return self._duration

    @property
    def chunk_count(self) -> int:
        return len(self._chunks)

    @property
    def highest_chunk_index(self) -> int:
        return self._highest_index

    def chunk_index_for_time(self, time: float) -> int:
        return int(time // self.chunk_duration)

    def set_chunk(self, index: int, samples: Sequence[float] | np.ndarray) -> None:
        if index < 0:
            raise ValueError("chunk index must be non-negative")
        data = np.array(samples, dtype=np.float32)
        with self._lock:
            self._chunks[index] = data
            if index > self._highest_index:
                self._highest_index = index
            self._duration = max(self._duration, (index + 1) * self.chunk_duration)

    def append_chunk(self, samples: Sequence[float] | np.ndarray) -> int:
        index = self._highest_index + 1
        self.set_chunk(index, samples)
        return index

    def is_chunk_loaded(self, index: int) -> bool:
        return index in self._chunks

    def has_data_for_time(self, time: float) -> bool:
        if time < 0:
            return False
        return self.chunk_index_for_time(time) in self._chunks

    def intensity_at(self, time: float) -> float:
        if time < 0:
            return 0.0
        index = self.chunk_index_for_time(time)
        chunk = self._chunks.get(index)
        if chunk is None or chunk.size == 0:
            return 0.0

        exact = (time - index * self.chunk_duration) * self.samples_per_second
        position = int(exact)
        if position >= chunk.size - 1:
            return float(chunk[-1])
        if position < 0:
            return float(chunk[0])
        fraction = exact - position
        current = float(chunk[position])
        following = float(chunk[position + 1])
        return current + (following - current) * fraction

    def buffer_ahead(self, from_time: float) -> float:
        """Seconds of contiguous analyzed data from ``from_time`` onward."""
        with self._lock:
            if not self._chunks:
                return 0.0
            start = self.chunk_index_for_time(max(from_time, 0.0))
            index = start
            while index <= self._highest_index and index in self._chunks:
                index += 1
        if index == start:
            return 0.0
        return max(0.0, index * self.chunk_duration - from_time)

    def clear(self) -> None:
        with self._lock:
            self._chunks.clear()
            self._duration = 0.0
            self._highest_index = -1


__all__ = ["IntensityStore"]
