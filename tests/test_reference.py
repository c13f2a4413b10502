"""Tests for lapcoach.reference."""

from __future__ import annotations

from dataclasses import replace

import numpy as np
import pytest

from lapcoach.errors import InsufficientDataError
from lapcoach.reference import ReferenceLap, ReferenceLapIndex, compute_lap_performance
from lapcoach.telemetry import TelemetrySample
from tests.conftest import make_lap, make_sample


class TestReferenceLap:
    def test_from_samples(self, reference_samples: list[TelemetrySample]) -> None:
        lap = ReferenceLap.from_samples(reference_samples, lap_number=3)
        assert lap.lap_number == 3
        assert lap.lap_time_s == pytest.approx(reference_samples[-1].lap_time_s)
        assert lap.track_name == "Test Track"
        assert lap.vehicle_name == "Test Vehicle"
        assert lap.is_valid
        assert len(lap.samples) == len(reference_samples)

    def test_invalid_sample_marks_lap_invalid(
        self, reference_samples: list[TelemetrySample]
    ) -> None:
        samples = list(reference_samples)
        samples[10] = replace(samples[10], is_valid=False)
        assert not ReferenceLap.from_samples(samples, 1).is_valid

    def test_empty_samples_rejected(self) -> None:
        with pytest.raises(InsufficientDataError):
            ReferenceLap.from_samples([], 1)

    def test_performance_summary(self) -> None:
        samples = [
            make_sample(speed_kph=100.0, longitudinal_g=-1.2, lateral_g=-1.5, steering=-40.0),
            make_sample(speed_kph=200.0, longitudinal_g=0.4, lateral_g=0.8, throttle=100.0),
            make_sample(speed_kph=150.0, brake=90.0, distance_m=120.0),
        ]
        perf = compute_lap_performance(samples)
        assert perf.max_speed_kph == 200.0
        assert perf.min_speed_kph == 100.0
        assert perf.avg_speed_kph == pytest.approx(150.0)
        assert perf.max_longitudinal_g == pytest.approx(0.4)
        assert perf.min_longitudinal_g == pytest.approx(-1.2)
        assert perf.max_lateral_g == pytest.approx(1.5)
        assert perf.max_throttle == 100.0
        assert perf.max_brake == 90.0
        assert perf.max_steering == 40.0
        assert perf.distance_m == 120.0

    def test_sector_times(self) -> None:
        samples = [
            make_sample(lap_progress=p, lap_time_s=p * 90.0)
            for p in np.linspace(0.0, 1.0, 101)
        ]
        lap = ReferenceLap.from_samples(samples, 1)
        times = lap.sector_times([1 / 3, 2 / 3])
        assert len(times) == 3
        assert sum(times) == pytest.approx(90.0)
        assert times[0] == pytest.approx(30.6, abs=1.0)

    def test_sector_times_no_fractions(self, reference_lap: ReferenceLap) -> None:
        assert reference_lap.sector_times([]) == []

    def test_validate_quality(self) -> None:
        samples = make_lap()[:-1]
        assert ReferenceLap.from_samples(samples, 1).validate_quality()

    def test_validate_quality_rejects_flat_speed(self, reference_lap: ReferenceLap) -> None:
        # constant 110 km/h reference
        assert not reference_lap.validate_quality()

    def test_validate_quality_rejects_short_lap(self) -> None:
        assert not ReferenceLap.from_samples(make_lap()[:50], 1).validate_quality()

    def test_summary(self, reference_lap: ReferenceLap) -> None:
        text = reference_lap.summary()
        assert "Test Track - Test Vehicle" in text
        assert "Data Points: 201" in text


class TestReferenceLapIndex:
    def test_sorted_and_deduplicated(self) -> None:
        samples = [make_sample(distance_m=d) for d in (30.0, 10.0, 20.0, 10.0)]
        index = ReferenceLapIndex(samples)
        assert len(index) == 3
        np.testing.assert_array_equal(index.distances, [10.0, 20.0, 30.0])

    def test_duplicate_distance_last_write_wins(self) -> None:
        first = make_sample(distance_m=10.0, speed_kph=100.0)
        second = make_sample(distance_m=10.0, speed_kph=120.0)
        index = ReferenceLapIndex([first, second])
        sample, gap = index.nearest(10.0)
        assert sample.speed_kph == 120.0
        assert gap == 0.0

    @pytest.mark.parametrize(
        ("query", "expected", "gap"),
        [
            (-5.0, 0.0, 5.0),
            (0.0, 0.0, 0.0),
            (12.0, 10.0, 2.0),
            (17.0, 20.0, 3.0),
            (15.0, 10.0, 5.0),  # tie resolves to the lower distance
            (99.0, 30.0, 69.0),
        ],
    )
    def test_nearest(self, query: float, expected: float, gap: float) -> None:
        index = ReferenceLapIndex([make_sample(distance_m=d) for d in (0.0, 10.0, 20.0, 30.0)])
        sample, actual_gap = index.nearest(query)
        assert sample.distance_m == expected
        assert actual_gap == pytest.approx(gap)

    def test_within_tolerance(self) -> None:
        index = ReferenceLapIndex([make_sample(distance_m=d) for d in (0.0, 100.0)])
        assert index.within(8.0, 10.0) is not None
        assert index.within(50.0, 10.0) is None

    def test_empty_index(self) -> None:
        index = ReferenceLapIndex([])
        assert len(index) == 0
        assert index.within(10.0, 10.0) is None
        with pytest.raises(InsufficientDataError):
            index.nearest(10.0)

    def test_from_reference_lap(self, reference_lap: ReferenceLap) -> None:
        index = ReferenceLapIndex.from_reference_lap(reference_lap)
        assert len(index) == 201
