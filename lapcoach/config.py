"""Engine settings via pydantic-settings."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """lapcoach engine configuration.

    Values are loaded from ``LAPCOACH_``-prefixed environment variables, falling
    back to a ``.env`` file in the working directory.  Invalid combinations are
    rejected at construction time, before any track map or comparison is built.
    """

    model_config = SettingsConfigDict(
        env_prefix="LAPCOACH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Track segmentation
    segment_length_m: float = Field(default=25.0, gt=0)
    curvature_threshold: float = Field(default=0.01, gt=0)
    braking_speed_drop_kph: float = Field(default=10.0, ge=0)
    min_mapping_samples: int = Field(default=100, ge=1)

    # Reference matching
    distance_tolerance_m: float = Field(default=10.0, gt=0)

    # Lap boundary detection
    lap_start_threshold: float = Field(default=0.1, gt=0, lt=1)
    lap_complete_threshold: float = Field(default=0.9, gt=0, lt=1)
    min_lap_time_s: float = Field(default=30.0, ge=0)
    max_lap_time_s: float = Field(default=600.0, gt=0)
    min_lap_samples: int = Field(default=100, ge=1)
    min_speed_variation_kph: float = Field(default=50.0, ge=0)
    require_valid_flag: bool = True

    # Rolling metrics
    improvement_horizon_m: float = Field(default=1000.0, gt=0)
    max_active_improvements: int = Field(default=200, ge=1)
    comparison_history_size: int = Field(default=500, ge=1)

    @model_validator(mode="after")
    def _check_ranges(self) -> EngineSettings:
        if self.lap_start_threshold >= self.lap_complete_threshold:
            msg = (
                f"lap_start_threshold ({self.lap_start_threshold}) must be below "
                f"lap_complete_threshold ({self.lap_complete_threshold})"
            )
            raise ValueError(msg)
        if self.min_lap_time_s >= self.max_lap_time_s:
            msg = (
                f"min_lap_time_s ({self.min_lap_time_s}) must be below "
                f"max_lap_time_s ({self.max_lap_time_s})"
            )
            raise ValueError(msg)
        return self


@lru_cache(maxsize=1)
def get_settings() -> EngineSettings:
    """Return the process-wide settings instance."""
    return EngineSettings()
