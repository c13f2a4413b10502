"""Reference laps and the distance-keyed index used for live matching."""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np

from lapcoach.errors import InsufficientDataError
from lapcoach.telemetry import TelemetrySample

# Quality thresholds for a lap to be stored as a reference
MIN_REFERENCE_SAMPLES = 100
MAX_REFERENCE_LAP_TIME_S = 600.0
MIN_REFERENCE_SPEED_RANGE_KPH = 50.0


@dataclass(frozen=True)
class LapPerformance:
    """Extremes and averages of one lap's telemetry."""

    max_speed_kph: float = 0.0
    min_speed_kph: float = 0.0
    avg_speed_kph: float = 0.0
    max_longitudinal_g: float = 0.0
    min_longitudinal_g: float = 0.0
    max_lateral_g: float = 0.0  # absolute
    max_throttle: float = 0.0
    max_brake: float = 0.0
    max_steering: float = 0.0  # absolute
    distance_m: float = 0.0


def compute_lap_performance(samples: Sequence[TelemetrySample]) -> LapPerformance:
    """Summarise speed, g and input extremes over a lap."""
    if not samples:
        return LapPerformance()

    speed = np.array([s.speed_kph for s in samples])
    lon_g = np.array([s.longitudinal_g for s in samples])
    lat_g = np.array([s.lateral_g for s in samples])

    return LapPerformance(
        max_speed_kph=float(np.max(speed)),
        min_speed_kph=float(np.min(speed)),
        avg_speed_kph=float(np.mean(speed)),
        max_longitudinal_g=float(np.max(lon_g)),
        min_longitudinal_g=float(np.min(lon_g)),
        max_lateral_g=float(np.max(np.abs(lat_g))),
        max_throttle=max(s.throttle for s in samples),
        max_brake=max(s.brake for s in samples),
        max_steering=max(abs(s.steering) for s in samples),
        distance_m=samples[-1].distance_m,
    )


@dataclass(frozen=True)
class ReferenceLap:
    """A recorded lap used as the comparison baseline. Read-only once built."""

    lap_time_s: float
    samples: tuple[TelemetrySample, ...]
    lap_number: int = 0
    track_name: str = ""
    vehicle_name: str = ""
    is_valid: bool = True
    performance: LapPerformance = field(default_factory=LapPerformance)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def from_samples(cls, samples: Sequence[TelemetrySample], lap_number: int) -> ReferenceLap:
        """Build a reference lap from one lap of samples.

        Names come from the first sample, the lap time from the last sample,
        and validity requires every sample's validity flag.
        """
        if not samples:
            msg = "Reference lap needs at least one telemetry sample"
            raise InsufficientDataError(msg)

        first = samples[0]
        return cls(
            lap_time_s=samples[-1].lap_time_s,
            samples=tuple(samples),
            lap_number=lap_number,
            track_name=first.track_name,
            vehicle_name=first.vehicle_name,
            is_valid=all(s.is_valid for s in samples),
            performance=compute_lap_performance(samples),
        )

    def sector_times(self, sector_fractions: Sequence[float]) -> list[float]:
        """Split the lap time at lap-progress fractions.

        Each boundary uses the first sample at or beyond the fraction.  The
        last entry is the time from the final boundary to the last sample.
        """
        if not sector_fractions or not self.samples:
            return []

        times: list[float] = []
        last_time = 0.0
        for fraction in sector_fractions:
            candidates = [s for s in self.samples if s.lap_progress >= fraction]
            if not candidates:
                continue
            boundary = min(candidates, key=lambda s: abs(s.lap_progress - fraction))
            times.append(boundary.lap_time_s - last_time)
            last_time = boundary.lap_time_s

        times.append(self.samples[-1].lap_time_s - last_time)
        return times

    def validate_quality(self) -> bool:
        """True if the lap is fit to be stored as a reference."""
        if len(self.samples) < MIN_REFERENCE_SAMPLES:
            return False
        if self.lap_time_s <= 0 or self.lap_time_s > MAX_REFERENCE_LAP_TIME_S:
            return False
        if not self.is_valid:
            return False
        speed_range = self.performance.max_speed_kph - self.performance.min_speed_kph
        return speed_range >= MIN_REFERENCE_SPEED_RANGE_KPH

    def summary(self) -> str:
        return "\n".join(
            [
                f"Reference Lap: {self.track_name} - {self.vehicle_name}",
                f"Lap Time: {self.lap_time_s:.3f}s (Lap #{self.lap_number})",
                f"Max Speed: {self.performance.max_speed_kph:.1f} km/h",
                f"Valid: {self.is_valid}",
                f"Data Points: {len(self.samples)}",
            ]
        )


class ReferenceLapIndex:
    """Sorted distance → sample lookup built once per reference lap.

    Samples sharing a distance keep only the one that arrived last.  Lookups
    are binary searches over the sorted distance array.
    """

    def __init__(self, samples: Sequence[TelemetrySample]) -> None:
        latest: dict[float, TelemetrySample] = {}
        for sample in samples:
            latest[sample.distance_m] = sample
        ordered = sorted(latest.items())
        self._distances = np.array([d for d, _ in ordered], dtype=np.float64)
        self._samples: tuple[TelemetrySample, ...] = tuple(s for _, s in ordered)

    @classmethod
    def from_reference_lap(cls, lap: ReferenceLap) -> ReferenceLapIndex:
        return cls(lap.samples)

    def __len__(self) -> int:
        return len(self._samples)

    @property
    def distances(self) -> np.ndarray:
        return self._distances.copy()

    def nearest(self, distance_m: float) -> tuple[TelemetrySample, float]:
        """Return the sample closest in distance and the absolute distance gap.

        Raises
        ------
        InsufficientDataError
            If the index is empty.
        """
        n = len(self._distances)
        if n == 0:
            msg = "Reference lap index is empty"
            raise InsufficientDataError(msg)

        pos = int(np.searchsorted(self._distances, distance_m))
        if pos == 0:
            best = 0
        elif pos == n:
            best = n - 1
        else:
            before = distance_m - self._distances[pos - 1]
            after = self._distances[pos] - distance_m
            best = pos - 1 if before <= after else pos

        gap = abs(float(self._distances[best]) - distance_m)
        return self._samples[best], gap

    def within(self, distance_m: float, tolerance_m: float) -> TelemetrySample | None:
        """Nearest sample if it lies within *tolerance_m*, else ``None``."""
        if len(self._samples) == 0:
            return None
        sample, gap = self.nearest(distance_m)
        if gap > tolerance_m:
            return None
        return sample
