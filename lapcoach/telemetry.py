"""Telemetry sample record and conversion into distance-domain DataFrames."""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
import pandas as pd


@dataclass(frozen=True)
class TelemetrySample:
    """One simulator tick of vehicle telemetry.

    Positions are in metres with ``position_z`` pointing up; the horizontal
    plane is (x, y).  Driver inputs are percentages (0-100, steering -100 to
    100) and speed is in km/h.
    """

    distance_m: float  # distance from the start/finish line along the lap
    lap_number: int
    lap_time_s: float
    lap_progress: float  # 0.0-1.0
    speed_kph: float
    position_x: float = 0.0
    position_y: float = 0.0
    position_z: float = 0.0
    velocity_x: float = 0.0
    velocity_y: float = 0.0
    velocity_z: float = 0.0
    throttle: float = 0.0
    brake: float = 0.0
    steering: float = 0.0
    clutch: float = 0.0
    gear: int = 0
    longitudinal_g: float = 0.0
    lateral_g: float = 0.0
    vertical_g: float = 0.0
    track_name: str = ""
    vehicle_name: str = ""
    track_condition: str = ""
    is_valid: bool = True
    timestamp: float = 0.0  # session clock, seconds

    @property
    def heading_rad(self) -> float:
        """Direction of horizontal travel, counter-clockwise from +x, in (-pi, pi]."""
        return math.atan2(self.velocity_y, self.velocity_x)


# Columns produced by samples_to_frame, in order
FRAME_COLUMNS: tuple[str, ...] = (
    "distance_m",
    "lap_time_s",
    "speed_kph",
    "position_x",
    "position_y",
    "position_z",
    "heading_rad",
    "gear",
    "throttle",
    "brake",
    "steering",
)


def samples_to_frame(samples: Sequence[TelemetrySample]) -> pd.DataFrame:
    """Convert buffered samples into a DataFrame in arrival order.

    Heading is derived from the horizontal velocity components of each sample.
    """
    if not samples:
        return pd.DataFrame({col: pd.Series(dtype=float) for col in FRAME_COLUMNS})

    vel_x = np.array([s.velocity_x for s in samples], dtype=np.float64)
    vel_y = np.array([s.velocity_y for s in samples], dtype=np.float64)

    return pd.DataFrame(
        {
            "distance_m": np.array([s.distance_m for s in samples], dtype=np.float64),
            "lap_time_s": np.array([s.lap_time_s for s in samples], dtype=np.float64),
            "speed_kph": np.array([s.speed_kph for s in samples], dtype=np.float64),
            "position_x": np.array([s.position_x for s in samples], dtype=np.float64),
            "position_y": np.array([s.position_y for s in samples], dtype=np.float64),
            "position_z": np.array([s.position_z for s in samples], dtype=np.float64),
            "heading_rad": np.arctan2(vel_y, vel_x),
            "gear": np.array([s.gear for s in samples], dtype=np.int64),
            "throttle": np.array([s.throttle for s in samples], dtype=np.float64),
            "brake": np.array([s.brake for s in samples], dtype=np.float64),
            "steering": np.array([s.steering for s in samples], dtype=np.float64),
        }
    )
