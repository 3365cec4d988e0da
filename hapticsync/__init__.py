"""Audio-driven haptic intensity tracks for streamed video."""

from .audio.feature_extractor import AnalysisContext, FeatureExtractor
from .services.events import ChunkReady, EventChannel, PipelineError, Progress
from .services.orchestrator import ChunkOrchestrator
from .services.session import HapticSink, SyncSession
from .store.intensity_store import IntensityStore
from .store.settings_store import AnalysisSettings, SettingsStore

__version__ = "1.0.0"

__all__ = [
    "AnalysisContext",
    "AnalysisSettings",
    "ChunkOrchestrator",
    "ChunkReady",
    "EventChannel",
    "FeatureExtractor",
    "HapticSink",
    "IntensityStore",
    "PipelineError",
    "Progress",
    "SettingsStore",
    "SyncSession",
]
