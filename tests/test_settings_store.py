import json

import pytest
from pydantic import ValidationError

from hapticsync.store.settings_store import AnalysisSettings, SettingsStore


def test_defaults_when_file_missing(tmp_path):
    store = SettingsStore(tmp_path / "settings.json")
    settings = store.get()

    assert settings.enabled is False
    assert settings.sensitivity == 1.0
    assert (settings.bass_weight, settings.rms_weight, settings.onset_weight) == (0.40, 0.35, 0.25)
    assert settings.chunk_duration_seconds == 300
    assert settings.min_buffer_ahead_seconds == 120


def test_update_persists_and_reloads(tmp_path):
    path = tmp_path / "settings.json"
    store = SettingsStore(path)
    updated = store.update(enabled=True, sensitivity=1.5, manual_latency_offset_ms=-120)

    assert updated.enabled is True
    raw = json.loads(path.read_text(encoding="utf-8"))
    assert raw["sensitivity"] == 1.5

    reloaded = SettingsStore(path).get()
    assert reloaded == updated


def test_update_rejects_unknown_and_invalid_values(tmp_path):
    store = SettingsStore(tmp_path / "settings.json")
    with pytest.raises(ValueError):
        store.update(volume=3)
    with pytest.raises(ValidationError):
        store.update(sensitivity=5.0)
    with pytest.raises(ValidationError):
        store.update(min_intensity=0.8, max_intensity=0.5)
    assert store.get() == AnalysisSettings()


def test_corrupt_file_falls_back_to_defaults(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")
    assert SettingsStore(path).get() == AnalysisSettings()

    path.write_text(json.dumps({"chunk_duration_seconds": 5}), encoding="utf-8")
    assert SettingsStore(path).get() == AnalysisSettings()


def test_snapshots_are_immutable():
    settings = AnalysisSettings()
    with pytest.raises(ValidationError):
        settings.sensitivity = 2.0
