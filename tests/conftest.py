"""Shared test fixtures for lapcoach tests."""

from __future__ import annotations

import math
from collections.abc import Callable
from typing import Any

import pytest

from lapcoach.config import EngineSettings
from lapcoach.constants import KPH_TO_MPS
from lapcoach.reference import ReferenceLap
from lapcoach.telemetry import TelemetrySample

SampleFactory = Callable[..., TelemetrySample]
LapFactory = Callable[..., list[TelemetrySample]]

TRACK = "Test Track"
VEHICLE = "Test Vehicle"


def make_sample(**overrides: Any) -> TelemetrySample:
    """Build a sample with sensible defaults; keyword overrides win."""
    fields: dict[str, Any] = {
        "distance_m": 0.0,
        "lap_number": 1,
        "lap_time_s": 0.0,
        "lap_progress": 0.0,
        "speed_kph": 100.0,
        "track_name": TRACK,
        "vehicle_name": VEHICLE,
        "track_condition": "Dry",
    }
    fields.update(overrides)
    return TelemetrySample(**fields)


def make_lap(
    lap_number: int = 1,
    lap_time_s: float = 60.0,
    n_points: int = 120,
    length_m: float = 3000.0,
) -> list[TelemetrySample]:
    """A 10 Hz style lap whose last sample wraps progress back past the line.

    The final three samples are 0.95, 0.96 and then 0.05, so the detector
    sees the line crossing on the last sample.
    """
    samples: list[TelemetrySample] = []
    for i in range(n_points):
        progress = i / n_points
        if i >= n_points - 3:
            lap_progress = 0.05 if i == n_points - 1 else 0.95 + (i - (n_points - 3)) * 0.01
        else:
            lap_progress = progress
        samples.append(
            make_sample(
                lap_number=lap_number,
                lap_progress=lap_progress,
                lap_time_s=lap_time_s * progress,
                distance_m=length_m * progress,
                speed_kph=80.0 + progress * 80.0 + math.sin(progress * math.pi * 4) * 20.0,
                throttle=50.0,
                timestamp=float(i),
            )
        )
    return samples


def make_circle_lap(
    radius_m: float,
    step_m: float,
    speed_kph: float,
    clockwise: bool = False,
    gear: int = 3,
) -> list[TelemetrySample]:
    """One lap around a circle in the horizontal plane at constant speed."""
    circumference = 2.0 * math.pi * radius_m
    n = int(circumference / step_m)
    sign = -1.0 if clockwise else 1.0
    speed_mps = speed_kph * KPH_TO_MPS

    samples: list[TelemetrySample] = []
    for i in range(n):
        d = i * step_m
        theta = sign * d / radius_m
        samples.append(
            make_sample(
                distance_m=d,
                lap_progress=d / circumference,
                lap_time_s=d / speed_mps,
                speed_kph=speed_kph,
                position_x=radius_m * math.cos(theta),
                position_y=radius_m * math.sin(theta),
                velocity_x=-sign * math.sin(theta) * speed_mps,
                velocity_y=sign * math.cos(theta) * speed_mps,
                gear=gear,
            )
        )
    return samples


def make_straight_lap(
    length_m: float = 200.0,
    step_m: float = 1.0,
    speed_kph: float = 250.0,
) -> list[TelemetrySample]:
    """A straight line along +x at constant speed, samples from 0 to *length_m*."""
    speed_mps = speed_kph * KPH_TO_MPS
    n = int(round(length_m / step_m)) + 1
    return [
        make_sample(
            distance_m=i * step_m,
            lap_progress=i * step_m / length_m,
            lap_time_s=i * step_m / speed_mps,
            speed_kph=speed_kph,
            position_x=i * step_m,
            velocity_x=speed_mps,
            gear=6,
        )
        for i in range(n)
    ]


@pytest.fixture
def settings() -> EngineSettings:
    """Default settings, isolated from any environment or .env file."""
    return EngineSettings(_env_file=None)


@pytest.fixture
def sample_factory() -> SampleFactory:
    return make_sample


@pytest.fixture
def lap_factory() -> LapFactory:
    return make_lap


@pytest.fixture
def reference_samples() -> list[TelemetrySample]:
    """Reference lap sampled every 5 m over 1000 m at 110 km/h, 60% throttle."""
    speed_mps = 110.0 * KPH_TO_MPS
    return [
        make_sample(
            distance_m=float(d),
            lap_time_s=d / speed_mps,
            lap_progress=d / 1000.0,
            speed_kph=110.0,
            throttle=60.0,
            brake=0.0,
            steering=0.0,
        )
        for d in range(0, 1001, 5)
    ]


@pytest.fixture
def reference_lap(reference_samples: list[TelemetrySample]) -> ReferenceLap:
    return ReferenceLap.from_samples(reference_samples, lap_number=1)
