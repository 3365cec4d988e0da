"""Spectral feature extraction that turns PCM into haptic intensity."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from ..store.settings_store import AnalysisSettings

LOGGER = logging.getLogger("hapticsync.analyzer")

FFT_SIZE = 2048
HOP_SIZE = 512
BASS_LOW_HZ = 20.0
BASS_HIGH_HZ = 260.0
# Seed for the per-chunk maxima; doubles as the divide-by-zero guard.
MAX_EPSILON = 0.001
# Frames per FFT batch, keeps a 10 minute chunk well under 100 MB of spectra.
FRAME_BATCH = 1024


@dataclass
class AnalysisContext:
    """Mutable state carried between analysis windows.

    The orchestrator resets it before every chunk, trading a one-sample
    discontinuity at chunk boundaries for chunks that analyze independently.
    """

    previous_spectrum: Optional[np.ndarray] = None
    max_rms: float = MAX_EPSILON
    max_bass: float = MAX_EPSILON
    max_onset: float = MAX_EPSILON
    previous_intensity: float = 0.0

    def reset(self) -> None:
        self.previous_spectrum = None
        self.reset_maxima()
        self.previous_intensity = 0.0

    def reset_maxima(self) -> None:
        self.max_rms = MAX_EPSILON
        self.max_bass = MAX_EPSILON
        self.max_onset = MAX_EPSILON


class FeatureExtractor:
    """Windowed FFT analysis producing intensities in ``[0, 1]``.

    Each hop yields three raw features (RMS loudness, 20-260 Hz bass energy and
    positive spectral flux). They are normalized against their maxima within
    the analyzed buffer, weighted, shaped by the sensitivity curve, smoothed
    with an exponential moving average and clamped to the configured range.
    """

    def __init__(self, sample_rate: int = 44100) -> None:
        if sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        self.sample_rate = int(sample_rate)
        self._window = np.hanning(FFT_SIZE).astype(np.float32)
        bin_hz = self.sample_rate / FFT_SIZE
        self._bass_low = max(1, int(round(BASS_LOW_HZ / bin_hz)))
        self._bass_high = min(FFT_SIZE // 2 - 1, int(round(BASS_HIGH_HZ / bin_hz)))

    @property
    def output_sample_rate(self) -> float:
        return self.sample_rate / HOP_SIZE

    def window_count(self, sample_count: int) -> int:
        if sample_count < FFT_SIZE:
            return 0
        return (sample_count - FFT_SIZE) // HOP_SIZE + 1

    def analyze(
        self,
        samples: np.ndarray,
        settings: AnalysisSettings,
        context: Optional[AnalysisContext] = None,
    ) -> np.ndarray:
        context = context if context is not None else AnalysisContext()
        pcm = np.asarray(samples, dtype=np.float32).reshape(-1)
        count = self.window_count(pcm.size)
        if count == 0:
            LOGGER.warning("Not enough samples (%d) for FFT analysis", pcm.size)
            return np.array([], dtype=np.float32)

        # Normalization adapts to this buffer only.
        context.reset_maxima()
        rms, bass, onset = self._raw_features(pcm, count, context)
        intensities = self._combine(rms, bass, onset, settings, context)

        LOGGER.debug(
            "Analyzed %d samples into %d intensity values. MaxRMS=%.4f, MaxBass=%.4f, MaxOnset=%.4f",
            pcm.size,
            intensities.size,
            context.max_rms,
            context.max_bass,
            context.max_onset,
        )
        return intensities

    def _raw_features(
        self, pcm: np.ndarray, count: int, context: AnalysisContext
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        frames = sliding_window_view(pcm, FFT_SIZE)[::HOP_SIZE][:count]
        rms = np.empty(count, dtype=np.float64)
        bass = np.empty(count, dtype=np.float64)
        onset = np.empty(count, dtype=np.float64)

        for start in range(0, count, FRAME_BATCH):
            stop = min(start + FRAME_BATCH, count)
            windowed = frames[start:stop] * self._window
            rms[start:stop] = np.sqrt(np.mean(np.square(windowed, dtype=np.float64), axis=1))
            spectrum = np.abs(np.fft.rfft(windowed, axis=1))[:, : FFT_SIZE // 2]
            bass[start:stop] = spectrum[:, self._bass_low : self._bass_high + 1].sum(axis=1)

            if context.previous_spectrum is None:
                previous = np.vstack([spectrum[:1], spectrum[:-1]])
            else:
                previous = np.vstack([context.previous_spectrum[None, :], spectrum[:-1]])
            # Only energy increases count as onsets.
            onset[start:stop] = np.clip(spectrum - previous, 0.0, None).sum(axis=1)
            context.previous_spectrum = spectrum[-1].copy()

        context.max_rms = max(context.max_rms, float(rms.max()))
        context.max_bass = max(context.max_bass, float(bass.max()))
        context.max_onset = max(context.max_onset, float(onset.max()))
        return rms, bass, onset

    def _combine(
        self,
        rms: np.ndarray,
        bass: np.ndarray,
        onset: np.ndarray,
        settings: AnalysisSettings,
        context: AnalysisContext,
    ) -> np.ndarray:
        norm_rms = rms / context.max_rms
        norm_bass = bass / context.max_bass
        if context.max_onset > MAX_EPSILON:
            norm_onset = onset / context.max_onset
        else:
            norm_onset = np.zeros_like(onset)

        raw = (
            norm_rms * settings.rms_weight
            + norm_bass * settings.bass_weight
            + norm_onset * settings.onset_weight
        )
        if settings.sensitivity != 1.0:
            positive = raw > 0
            raw[positive] = np.power(raw[positive], 1.0 / settings.sensitivity)

        smoothed = raw
        if settings.smoothing > 0:
            smoothed = np.empty_like(raw)
            alpha = settings.smoothing
            previous = context.previous_intensity
            for idx, value in enumerate(raw):
                previous = previous * alpha + value * (1.0 - alpha)
                smoothed[idx] = previous
        context.previous_intensity = float(smoothed[-1])

        return np.clip(smoothed, settings.min_intensity, settings.max_intensity).astype(np.float32)


__all__ = ["AnalysisContext", "FeatureExtractor", "FFT_SIZE", "HOP_SIZE"]
