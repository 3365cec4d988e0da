"""Persistent storage for audio-sync analysis settings."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

LOGGER = logging.getLogger("hapticsync.settings")


class AnalysisSettings(BaseModel):
    """Immutable snapshot consumed by one pipeline run."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    sensitivity: float = Field(default=1.0, ge=0.1, le=3.0)
    bass_weight: float = Field(default=0.40, ge=0.0, le=1.0)
    rms_weight: float = Field(default=0.35, ge=0.0, le=1.0)
    onset_weight: float = Field(default=0.25, ge=0.0, le=1.0)
    smoothing: float = Field(default=0.3, ge=0.0, le=0.95)
    min_intensity: float = Field(default=0.05, ge=0.0, le=1.0)
    max_intensity: float = Field(default=1.0, ge=0.0, le=1.0)
    manual_latency_offset_ms: int = Field(default=0, ge=-2000, le=2000)
    chunk_duration_seconds: int = Field(default=300, ge=60, le=600)
    min_buffer_ahead_seconds: int = Field(default=120, ge=30, le=300)
    live_intensity: float = Field(default=1.0, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_range(self) -> "AnalysisSettings":
        if self.min_intensity >= self.max_intensity:
            raise ValueError("min_intensity must be below max_intensity")
        return self


class SettingsStore:
    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._settings = self._load()

    def _load(self) -> AnalysisSettings:
        if not self.path.exists():
            return AnalysisSettings()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            return AnalysisSettings.model_validate(raw)
        except (ValueError, ValidationError) as exc:
            LOGGER.warning("Ignoring unreadable settings file %s: %s", self.path, exc)
            return AnalysisSettings()

    def get(self) -> AnalysisSettings:
        return self._settings

    def update(self, **kwargs) -> AnalysisSettings:
        unknown = set(kwargs) - set(AnalysisSettings.model_fields)
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")
        merged = {**self._settings.model_dump(), **kwargs}
        self._settings = AnalysisSettings.model_validate(merged)
        self._persist()
        return self._settings

    def _persist(self) -> None:
        self.path.write_text(self._settings.model_dump_json(indent=2), encoding="utf-8")


__all__ = ["AnalysisSettings", "SettingsStore"]
