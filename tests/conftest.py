"""Pytest configuration helpers."""

from __future__ import annotations

import sys
import threading
import time
from pathlib import Path


def _ensure_repo_on_path() -> None:
    """Allow tests to import from repo modules without setting PYTHONPATH."""
    repo_root = Path(__file__).resolve().parents[1]
    path_str = str(repo_root)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)


_ensure_repo_on_path()

import numpy as np  # noqa: E402
import pytest  # noqa: E402

from hapticsync.audio.feature_extractor import FeatureExtractor  # noqa: E402
from hapticsync.audio.types import DownloadProgress, MediaFetchResult  # noqa: E402
from hapticsync.config import PipelineConfig  # noqa: E402
from hapticsync.services.events import EventChannel  # noqa: E402
from hapticsync.services.orchestrator import ChunkOrchestrator  # noqa: E402
from hapticsync.store.settings_store import AnalysisSettings  # noqa: E402

SAMPLE_RATE = 8000


class FakeFetcher:
    """Writes a small placeholder file instead of touching the network."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self.calls = 0
        self.closed = False

    def download(self, url, cancel=None, on_progress=None):
        self.calls += 1
        path = self.directory / f"media_{self.calls}.tmp"
        path.write_bytes(b"media")
        if on_progress:
            on_progress(DownloadProgress(5, 10))
        return MediaFetchResult(path=str(path), byte_length=5)

    def close(self) -> None:
        self.closed = True


class FakeReader:
    """Returns one second of silence per chunk; individual chunks can be gated or failed."""

    def __init__(self, chunk_duration: float = 300.0, samples: int = SAMPLE_RATE) -> None:
        self.chunk_duration = chunk_duration
        self.samples = samples
        self.calls: list[int] = []
        self.gates: dict[int, threading.Event] = {}
        self.entered: dict[int, threading.Event] = {}
        self.failures: dict[int, BaseException] = {}
        self.empty: set[int] = set()

    def gate(self, index: int) -> tuple[threading.Event, threading.Event]:
        self.gates[index] = threading.Event()
        self.entered[index] = threading.Event()
        return self.gates[index], self.entered[index]

    def read(self, path, start, end, cancel=None):
        index = int(start // self.chunk_duration)
        self.calls.append(index)
        if index in self.entered:
            self.entered[index].set()
        gate = self.gates.get(index)
        if gate is not None:
            assert gate.wait(5), f"gate for chunk {index} never opened"
        if index in self.failures:
            raise self.failures.pop(index)
        if index in self.empty:
            return np.array([], dtype=np.float32)
        return np.zeros(self.samples, dtype=np.float32)


class FakeSink:
    def __init__(self, connected: bool = True, anticipation_ms: float = 100.0) -> None:
        self.is_connected = connected
        self.anticipation_ms = anticipation_ms
        self.values: list[float] = []
        self.stops = 0

    def set_intensity(self, value: float) -> None:
        self.values.append(value)

    def stop(self) -> None:
        self.stops += 1


def wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def settings() -> AnalysisSettings:
    return AnalysisSettings(enabled=True, smoothing=0.0)


@pytest.fixture
def pipeline(tmp_path, settings):
    """Build an orchestrator wired to fakes; returns (orchestrator, fetcher, reader)."""
    created = []

    def factory(analysis: AnalysisSettings = settings, events: EventChannel | None = None):
        fetcher = FakeFetcher(tmp_path)
        reader = FakeReader(chunk_duration=analysis.chunk_duration_seconds)
        orchestrator = ChunkOrchestrator(
            analysis,
            config=PipelineConfig(temp_dir=str(tmp_path), target_sample_rate=SAMPLE_RATE),
            fetcher=fetcher,
            reader=reader,
            extractor=FeatureExtractor(SAMPLE_RATE),
            events=events or EventChannel(),
        )
        created.append((orchestrator, reader))
        return orchestrator, fetcher, reader

    yield factory

    for orchestrator, reader in created:
        for gate in reader.gates.values():
            gate.set()
        orchestrator.close()
