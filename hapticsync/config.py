"""Process-level pipeline configuration resolved from the environment."""

from __future__ import annotations

import os
import tempfile
from functools import lru_cache

from pydantic import BaseModel, Field


class PipelineConfig(BaseModel):
    temp_dir: str = Field(default=os.getenv("HAPTICSYNC_TEMP_DIR", tempfile.gettempdir()))
    target_sample_rate: int = Field(default=int(os.getenv("HAPTICSYNC_SAMPLE_RATE", "44100")), gt=0)
    download_timeout_sec: float = Field(
        default=float(os.getenv("HAPTICSYNC_DOWNLOAD_TIMEOUT_SEC", "600")), gt=0
    )
    download_max_attempts: int = Field(default=int(os.getenv("HAPTICSYNC_DOWNLOAD_ATTEMPTS", "3")), ge=1)
    download_retry_delay_sec: float = Field(
        default=float(os.getenv("HAPTICSYNC_DOWNLOAD_RETRY_DELAY_SEC", "2.0")), ge=0
    )
    download_buffer_bytes: int = Field(default=81920, ge=65536)
    progress_interval_sec: float = Field(default=0.1, ge=0.1)
    user_agent: str = Field(
        default=os.getenv(
            "HAPTICSYNC_USER_AGENT",
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
        )
    )
    ffmpeg_binary: str = Field(default=os.getenv("HAPTICSYNC_FFMPEG", "ffmpeg"))
    default_duration_sec: float = Field(default=1800.0, gt=0)


@lru_cache()
def get_config() -> PipelineConfig:
    return PipelineConfig()


__all__ = ["PipelineConfig", "get_config"]
