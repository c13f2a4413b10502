"""Rolling comparison metrics: active improvements, segment deltas, lap and session ratings."""

from __future__ import annotations

import math
from collections import defaultdict, deque
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import numpy as np

from lapcoach.constants import SEGMENT_DELTA_THRESHOLD_S

if TYPE_CHECKING:
    from lapcoach.comparison import ComparisonResult, ImprovementArea
    from lapcoach.track import TrackMap, TrackSegment

# Per-segment std dev (s) at which consistency reaches zero
CONSISTENCY_STD_CEILING_S = 2.0


@dataclass
class SessionComparisonStats:
    """Lap-level aggregates for the whole session."""

    laps_completed: int = 0
    best_lap_time_delta: float = math.inf
    worst_lap_time_delta: float = -math.inf
    average_lap_time_delta: float = 0.0
    total_potential_gain_s: float = 0.0
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def update_with_lap(self, lap_time_delta: float) -> None:
        self.laps_completed += 1
        self.best_lap_time_delta = min(self.best_lap_time_delta, lap_time_delta)
        self.worst_lap_time_delta = max(self.worst_lap_time_delta, lap_time_delta)
        n = self.laps_completed
        self.average_lap_time_delta = (self.average_lap_time_delta * (n - 1) + lap_time_delta) / n


@dataclass(frozen=True)
class MetricsSnapshot:
    """Immutable copy of the rolling metrics handed to consumers."""

    reference_lap_time_s: float
    current_lap_time_delta: float
    consistency_rating: float
    performance_rating: float
    segment_time_deltas: dict[int, float]
    best_segment_deltas: dict[int, float]
    worst_segment_deltas: dict[int, float]
    sector_time_deltas: dict[int, float]
    active_improvements: tuple[ImprovementArea, ...]
    problematic_segments: tuple[TrackSegment, ...]
    strong_segments: tuple[TrackSegment, ...]
    laps_completed: int
    best_lap_time_delta: float
    worst_lap_time_delta: float
    average_lap_time_delta: float
    total_potential_gain_s: float
    last_updated: datetime

    def top_improvements(self, count: int = 3) -> list[ImprovementArea]:
        return sorted(self.active_improvements, key=lambda a: a.potential_gain_s, reverse=True)[
            :count
        ]


class RollingComparisonMetrics:
    """Incrementally maintained comparison metrics.

    Mutated by a single writer (the comparison engine).  Readers on other
    threads should only ever see a :class:`MetricsSnapshot`.
    """

    def __init__(
        self,
        reference_lap_time_s: float = 0.0,
        improvement_horizon_m: float = 1000.0,
        max_active_improvements: int = 200,
    ) -> None:
        self.reference_lap_time_s = reference_lap_time_s
        self.improvement_horizon_m = improvement_horizon_m
        self.current_lap_time_delta = 0.0
        self.consistency_rating = 0.0
        self.performance_rating = 0.0
        self.segment_time_deltas: dict[int, float] = {}
        self.best_segment_deltas: dict[int, float] = {}
        self.worst_segment_deltas: dict[int, float] = {}
        self.sector_time_deltas: dict[int, float] = {}
        self.active_improvements: deque[ImprovementArea] = deque(maxlen=max_active_improvements)
        # keyed by segment id, insertion ordered
        self.problematic_segments: dict[str, TrackSegment] = {}
        self.strong_segments: dict[str, TrackSegment] = {}
        self.session = SessionComparisonStats()
        self.last_updated = datetime.now(UTC)

    # ------------------------------------------------------------------
    # Per-comparison updates
    # ------------------------------------------------------------------

    def record(self, result: ComparisonResult) -> None:
        """Fold one accepted comparison into the rolling state."""
        self.last_updated = result.calculated_at

        for area in result.improvements:
            self.active_improvements.append(area)
            self.session.total_potential_gain_s += area.potential_gain_s
        self._prune_improvements(result.distance_m)

        segment = result.segment
        if segment is None:
            return
        if result.time_delta_s > SEGMENT_DELTA_THRESHOLD_S:
            self.problematic_segments.setdefault(segment.id, segment)
        elif result.time_delta_s < -SEGMENT_DELTA_THRESHOLD_S:
            self.strong_segments.setdefault(segment.id, segment)

    def _prune_improvements(self, distance_m: float) -> None:
        cutoff = distance_m - self.improvement_horizon_m
        if any(a.window_end_m < cutoff for a in self.active_improvements):
            kept = [a for a in self.active_improvements if a.window_end_m >= cutoff]
            self.active_improvements.clear()
            self.active_improvements.extend(kept)

    # ------------------------------------------------------------------
    # Lap completion
    # ------------------------------------------------------------------

    def complete_lap(
        self,
        comparisons: Sequence[ComparisonResult],
        lap_time_delta: float,
        track_map: TrackMap | None = None,
    ) -> None:
        """Finalise one lap's comparisons into segment, sector and session metrics.

        Parameters
        ----------
        comparisons:
            Accepted comparisons of the lap that just finished.
        lap_time_delta:
            Completed lap time minus reference lap time.
        track_map:
            Used to assign comparisons to sectors; sector deltas are left
            empty without one.
        """
        self.session.update_with_lap(lap_time_delta)
        self.current_lap_time_delta = lap_time_delta

        by_segment: dict[int, list[float]] = defaultdict(list)
        for result in comparisons:
            if result.segment is not None:
                by_segment[result.segment.index].append(result.time_delta_s)

        self.segment_time_deltas = {idx: float(np.mean(d)) for idx, d in by_segment.items()}
        for idx, avg in self.segment_time_deltas.items():
            if idx not in self.best_segment_deltas or avg < self.best_segment_deltas[idx]:
                self.best_segment_deltas[idx] = avg
            if idx not in self.worst_segment_deltas or avg > self.worst_segment_deltas[idx]:
                self.worst_segment_deltas[idx] = avg

        self.sector_time_deltas = {}
        if track_map is not None:
            by_sector: dict[int, list[float]] = defaultdict(list)
            for result in comparisons:
                by_sector[track_map.sector_of(result.distance_m)].append(result.time_delta_s)
            self.sector_time_deltas = {s: float(np.mean(d)) for s, d in sorted(by_sector.items())}

        self.consistency_rating = self.calculate_consistency_rating()
        self.performance_rating = self.calculate_overall_performance()
        self.last_updated = datetime.now(UTC)

    def calculate_consistency_rating(self) -> float:
        """0-100 score; a 2 s spread of per-segment deltas scores 0."""
        if len(self.segment_time_deltas) < 2:
            return 100.0
        std = float(np.std(list(self.segment_time_deltas.values())))
        ratio = max(0.0, (CONSISTENCY_STD_CEILING_S - std) / CONSISTENCY_STD_CEILING_S)
        return min(100.0, ratio * 100.0)

    def calculate_overall_performance(self) -> float:
        """0-100 score of reference lap time against the summed segment deltas."""
        if not self.segment_time_deltas or self.reference_lap_time_s == 0:
            return 0.0
        total = sum(self.segment_time_deltas.values())
        ratio = max(0.0, (self.reference_lap_time_s - total) / self.reference_lap_time_s)
        return min(100.0, ratio * 100.0)

    def top_improvements(self, count: int = 3) -> list[ImprovementArea]:
        """Active improvements with the largest potential gain first."""
        return sorted(self.active_improvements, key=lambda a: a.potential_gain_s, reverse=True)[
            :count
        ]

    def snapshot(self) -> MetricsSnapshot:
        return MetricsSnapshot(
            reference_lap_time_s=self.reference_lap_time_s,
            current_lap_time_delta=self.current_lap_time_delta,
            consistency_rating=self.consistency_rating,
            performance_rating=self.performance_rating,
            segment_time_deltas=dict(self.segment_time_deltas),
            best_segment_deltas=dict(self.best_segment_deltas),
            worst_segment_deltas=dict(self.worst_segment_deltas),
            sector_time_deltas=dict(self.sector_time_deltas),
            active_improvements=tuple(self.active_improvements),
            problematic_segments=tuple(self.problematic_segments.values()),
            strong_segments=tuple(self.strong_segments.values()),
            laps_completed=self.session.laps_completed,
            best_lap_time_delta=self.session.best_lap_time_delta,
            worst_lap_time_delta=self.session.worst_lap_time_delta,
            average_lap_time_delta=self.session.average_lap_time_delta,
            total_potential_gain_s=self.session.total_potential_gain_s,
            last_updated=self.last_updated,
        )
