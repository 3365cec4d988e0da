"""Decode bounded time ranges of a media file into mono PCM."""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Optional

import numpy as np
import soundfile as sf

from ..config import PipelineConfig, get_config
from ..errors import ExtractionError
from ..services.cancellation import CancellationToken

LOGGER = logging.getLogger("hapticsync.decoder")

READ_BLOCK_FRAMES = 4096
PIPE_BLOCK_BYTES = READ_BLOCK_FRAMES * 4


class AudioRangeReader:
    """Reads ``[start, end)`` seconds of audio as float32 mono at a fixed rate.

    Files libsndfile understands (wav, flac, ogg, ...) are read in place with
    soundfile; containers such as mp4/webm are piped through ffmpeg. Both paths
    seek to ``start`` before the first sample is read.
    """

    def __init__(self, config: Optional[PipelineConfig] = None) -> None:
        self.config = config or get_config()
        self.sample_rate = self.config.target_sample_rate

    def read(
        self,
        path: str,
        start: float,
        end: float,
        cancel: Optional[CancellationToken] = None,
    ) -> np.ndarray:
        cancel = cancel or CancellationToken()
        if not Path(path).exists():
            raise ExtractionError(f"Media file not found: {path}")
        if end <= start:
            return np.array([], dtype=np.float32)

        try:
            samples = self._read_soundfile(path, start, end, cancel)
        except (sf.LibsndfileError, RuntimeError) as exc:
            LOGGER.debug("soundfile cannot open %s (%s); using ffmpeg", path, exc)
            samples = self._read_ffmpeg(path, start, end, cancel)

        LOGGER.info(
            "Extracted %d samples for range %.1fs - %.1fs", samples.size, start, end
        )
        return samples

    def _read_soundfile(
        self, path: str, start: float, end: float, cancel: CancellationToken
    ) -> np.ndarray:
        with sf.SoundFile(path) as handle:
            native_rate = handle.samplerate
            first = int(start * native_rate)
            if first >= handle.frames:
                return np.array([], dtype=np.float32)
            if first > 0:
                handle.seek(first)
            wanted = int((end - start) * native_rate)
            blocks: list[np.ndarray] = []
            total = 0
            while total < wanted:
                cancel.raise_if_cancelled()
                block = handle.read(min(READ_BLOCK_FRAMES, wanted - total), dtype="float32", always_2d=True)
                if block.shape[0] == 0:
                    break
                blocks.append(block.mean(axis=1))
                total += block.shape[0]

        if not blocks:
            return np.array([], dtype=np.float32)
        mono = np.concatenate(blocks).astype(np.float32, copy=False)
        if native_rate != self.sample_rate:
            mono = resample_linear(mono, native_rate, self.sample_rate)
        return mono

    def _read_ffmpeg(
        self, path: str, start: float, end: float, cancel: CancellationToken
    ) -> np.ndarray:
        binary = shutil.which(self.config.ffmpeg_binary)
        if binary is None:
            raise ExtractionError(
                f"ffmpeg not found ({self.config.ffmpeg_binary}) and soundfile cannot decode {path}"
            )

        # -ss before -i seeks the demuxer, so decoding starts at the chunk.
        cmd = [
            binary,
            "-nostdin",
            "-v", "error",
            "-ss", f"{start:.3f}",
            "-i", path,
            "-t", f"{end - start:.3f}",
            "-vn",
            "-ac", "1",
            "-ar", str(self.sample_rate),
            "-f", "f32le",
            "pipe:1",
        ]
        wanted_bytes = int((end - start) * self.sample_rate) * 4
        chunks: list[bytes] = []
        received = 0
        process = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        try:
            if process.stdout is None:
                raise ExtractionError("ffmpeg produced no output pipe")
            while received < wanted_bytes:
                cancel.raise_if_cancelled()
                data = process.stdout.read(min(PIPE_BLOCK_BYTES, wanted_bytes - received))
                if not data:
                    break
                chunks.append(data)
                received += len(data)
        finally:
            if process.poll() is None:
                process.kill()
            _, stderr = process.communicate()

        if not chunks and process.returncode != 0:
            message = stderr.decode("utf-8", errors="ignore").strip()
            raise ExtractionError(f"ffmpeg extraction failed: {message or process.returncode}")

        payload = b"".join(chunks)
        usable = len(payload) - len(payload) % 4
        return np.frombuffer(payload[:usable], dtype="<f4").astype(np.float32)


def resample_linear(audio: np.ndarray, source_rate: int, target_rate: int) -> np.ndarray:
    if audio.size == 0 or source_rate == target_rate:
        return audio
    duration = audio.size / float(source_rate)
    target_len = max(1, int(round(duration * target_rate)))
    source_times = np.arange(audio.size) / float(source_rate)
    target_times = np.arange(target_len) / float(target_rate)
    return np.interp(target_times, source_times, audio).astype(np.float32)


__all__ = ["AudioRangeReader", "resample_linear"]
