"""Tests for lapcoach.config."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from lapcoach.config import EngineSettings, get_settings


class TestEngineSettings:
    def test_defaults(self, settings: EngineSettings) -> None:
        assert settings.segment_length_m == 25.0
        assert settings.curvature_threshold == 0.01
        assert settings.braking_speed_drop_kph == 10.0
        assert settings.distance_tolerance_m == 10.0
        assert settings.lap_start_threshold == 0.1
        assert settings.lap_complete_threshold == 0.9
        assert settings.min_lap_time_s == 30.0
        assert settings.max_lap_time_s == 600.0
        assert settings.min_lap_samples == 100
        assert settings.min_speed_variation_kph == 50.0
        assert settings.require_valid_flag is True

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LAPCOACH_SEGMENT_LENGTH_M", "50")
        monkeypatch.setenv("LAPCOACH_DISTANCE_TOLERANCE_M", "5.5")
        cfg = EngineSettings(_env_file=None)
        assert cfg.segment_length_m == 50.0
        assert cfg.distance_tolerance_m == 5.5

    def test_non_positive_segment_length_rejected(self) -> None:
        with pytest.raises(ValidationError):
            EngineSettings(_env_file=None, segment_length_m=0)

    def test_start_threshold_must_be_below_complete(self) -> None:
        with pytest.raises(ValidationError, match="lap_start_threshold"):
            EngineSettings(_env_file=None, lap_start_threshold=0.9, lap_complete_threshold=0.5)

    def test_min_lap_time_must_be_below_max(self) -> None:
        with pytest.raises(ValidationError, match="min_lap_time_s"):
            EngineSettings(_env_file=None, min_lap_time_s=700.0)

    def test_validation_error_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            EngineSettings(_env_file=None, min_lap_samples=0)


class TestGetSettings:
    def test_cached_instance(self) -> None:
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()
