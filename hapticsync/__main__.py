"""Analyze a video or audio source and write its haptic intensity track."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import soundfile as sf

from .audio.types import ChunkState
from .services.events import EventChannel, PipelineError, Progress
from .services.fetcher import LocalMediaSource
from .services.orchestrator import NO_AUDIO_SAMPLES, ChunkOrchestrator
from .store.settings_store import AnalysisSettings, SettingsStore

LOGGER = logging.getLogger("hapticsync.cli")


def _probe_duration(path: Path) -> Optional[float]:
    try:
        info = sf.info(str(path))
    except RuntimeError:
        return None
    return float(info.duration) if info.duration > 0 else None


def _log_event(event) -> None:
    if isinstance(event, Progress):
        LOGGER.info("[chunk %d] %s (%d%%)", event.chunk_index, event.phase, event.percent)
    elif isinstance(event, PipelineError):
        LOGGER.error("%s", event.message)


def build_track(orchestrator: ChunkOrchestrator, source: str) -> dict:
    chunks = []
    for chunk in orchestrator.chunks:
        values = chunk.intensities.tolist() if chunk.intensities is not None else []
        chunks.append(
            {
                "index": chunk.index,
                "start": chunk.start_time,
                "end": chunk.end_time,
                "state": chunk.state.value,
                "error": chunk.error_message,
                "intensities": [round(value, 4) for value in values],
            }
        )
    return {
        "source": source,
        "sample_rate": orchestrator.store.samples_per_second,
        "chunk_duration": orchestrator.store.chunk_duration,
        "duration": orchestrator.duration,
        "chunks": chunks,
    }


def run(
    source: str,
    output: Path,
    settings: AnalysisSettings,
    duration: Optional[float] = None,
) -> int:
    local = Path(source)
    fetcher = LocalMediaSource() if local.is_file() else None
    if fetcher is not None and duration is None:
        duration = _probe_duration(local)

    events = EventChannel()
    events.subscribe(_log_event)
    with ChunkOrchestrator(settings, fetcher=fetcher, events=events) as orchestrator:
        orchestrator.initialize(source, duration)
        if not orchestrator.start_first_chunk():
            LOGGER.error("First chunk could not be analyzed")
            return 1
        for index in range(1, orchestrator.chunk_count):
            orchestrator.ensure_chunk_ready(index)
            chunk = orchestrator.chunks[index]
            # Estimated durations overshoot; an empty chunk marks the real end.
            if chunk.state is ChunkState.FAILED and chunk.error_message == NO_AUDIO_SAMPLES:
                LOGGER.info("Reached end of media at chunk %d", index)
                break
        track = build_track(orchestrator, source)

    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(json.dumps(track, indent=2), encoding="utf-8")
    failed = [
        chunk["index"]
        for chunk in track["chunks"]
        if chunk["state"] == ChunkState.FAILED.value and chunk["error"] != NO_AUDIO_SAMPLES
    ]
    LOGGER.info("Wrote %d chunks to %s", len(track["chunks"]), output)
    if failed:
        LOGGER.error("Chunks %s failed; the track has silent gaps", failed)
        return 1
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Generate a haptic intensity track from a media source.")
    parser.add_argument("source", help="Video URL or path to a local media file.")
    parser.add_argument(
        "--output",
        type=Path,
        default=Path("haptic_track.json"),
        help="Where to write the JSON track (default: haptic_track.json).",
    )
    parser.add_argument("--duration", type=float, default=None, help="Estimated media duration in seconds.")
    parser.add_argument("--settings", type=Path, default=None, help="JSON file with analysis settings.")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = SettingsStore(args.settings).get() if args.settings else AnalysisSettings()
    return run(args.source, args.output, settings, args.duration)


if __name__ == "__main__":
    sys.exit(main())
