"""Real-time comparison of live telemetry against a reference lap.

Each live sample is matched by distance to the nearest reference sample.
Accepted matches produce an immutable :class:`ComparisonResult` carrying
input/speed/time deltas, a confidence score and zero or more
:class:`ImprovementArea` coaching opportunities, and are folded into the
engine's :class:`~lapcoach.metrics.RollingComparisonMetrics`.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from lapcoach.config import EngineSettings, get_settings
from lapcoach.errors import InsufficientDataError
from lapcoach.metrics import MetricsSnapshot, RollingComparisonMetrics
from lapcoach.reference import ReferenceLap, ReferenceLapIndex
from lapcoach.telemetry import TelemetrySample
from lapcoach.track import TrackMap, TrackSegment

logger = logging.getLogger(__name__)


class ImprovementCategory(Enum):
    """What kind of driving change an improvement area asks for."""

    braking_point = "braking_point"
    braking_pressure = "braking_pressure"
    throttle_application = "throttle_application"
    throttle_modulation = "throttle_modulation"
    cornering_line = "cornering_line"
    steering_smoothing = "steering_smoothing"
    gear_timing = "gear_timing"
    corner_speed = "corner_speed"
    corner_exit = "corner_exit"
    consistency = "consistency"


# ---------------------------------------------------------------------------
# Improvement heuristics: trigger threshold, half window (m), gain weight
# ---------------------------------------------------------------------------

SPEED_DEFICIT_KPH = 5.0
SPEED_WINDOW_M = 50.0
SPEED_WEIGHT = 1.0

BRAKE_EXCESS_PCT = 10.0
BRAKE_WINDOW_M = 30.0
BRAKE_WEIGHT = 0.5

THROTTLE_DEFICIT_PCT = 10.0
THROTTLE_WINDOW_M = 30.0
THROTTLE_WEIGHT = 0.75

STEERING_DIFF_PCT = 15.0
STEERING_WINDOW_M = 20.0
STEERING_WEIGHT = 0.25

MAX_GAIN_PER_AREA_S = 0.1

# Confidence penalties
CONFIDENCE_GAP_PENALTY = 20.0  # at a gap equal to the tolerance
CONFIDENCE_SPEED_DIFF_KPH = 20.0
CONFIDENCE_SPEED_PENALTY = 10.0
CONFIDENCE_CONDITION_PENALTY = 15.0


@dataclass(frozen=True)
class ImprovementArea:
    """A localised coaching opportunity derived from one comparison."""

    category: ImprovementCategory
    severity: float  # 0-100
    message: str
    potential_gain_s: float
    window_m: tuple[float, float]

    @property
    def window_start_m(self) -> float:
        return self.window_m[0]

    @property
    def window_end_m(self) -> float:
        return self.window_m[1]


@dataclass(frozen=True)
class ComparisonResult:
    """Deltas (current minus reference) at one matched distance."""

    current: TelemetrySample
    reference: TelemetrySample
    distance_m: float
    time_delta_s: float
    speed_delta_kph: float
    throttle_delta: float
    brake_delta: float
    steering_delta: float
    longitudinal_g_delta: float
    lateral_g_delta: float
    confidence: float  # 0-100
    segment: TrackSegment | None = None
    improvements: tuple[ImprovementArea, ...] = ()
    calculated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_losing_time(self) -> bool:
        return self.time_delta_s > 0


ComparisonListener = Callable[[ComparisonResult], None]
MetricsListener = Callable[[MetricsSnapshot], None]


def estimate_time_gain(magnitude: float, weight: float) -> float:
    """Coarse time-gain heuristic, at most 0.1 s per full-scale (100) magnitude."""
    return (magnitude / 100.0) * weight * MAX_GAIN_PER_AREA_S


def compute_confidence(
    current: TelemetrySample,
    reference: TelemetrySample,
    tolerance_m: float,
) -> float:
    """Score (0-100) how trustworthy a matched pair is.

    Penalises the distance gap (20 points at a gap equal to *tolerance_m*), a
    speed difference above 20 km/h, and differing track conditions.
    """
    confidence = 100.0
    gap = abs(current.distance_m - reference.distance_m)
    confidence -= gap / tolerance_m * CONFIDENCE_GAP_PENALTY
    if abs(current.speed_kph - reference.speed_kph) > CONFIDENCE_SPEED_DIFF_KPH:
        confidence -= CONFIDENCE_SPEED_PENALTY
    if current.track_condition.casefold() != reference.track_condition.casefold():
        confidence -= CONFIDENCE_CONDITION_PENALTY
    return max(0.0, min(100.0, confidence))


def find_improvements(
    current: TelemetrySample,
    reference: TelemetrySample,
) -> list[ImprovementArea]:
    """Evaluate each improvement heuristic independently for a matched pair."""
    d = current.distance_m
    areas: list[ImprovementArea] = []

    speed_deficit = reference.speed_kph - current.speed_kph
    if speed_deficit > SPEED_DEFICIT_KPH:
        severity = speed_deficit / reference.speed_kph * 100.0 if reference.speed_kph else 100.0
        areas.append(
            ImprovementArea(
                category=ImprovementCategory.corner_speed,
                severity=min(100.0, severity),
                message=f"Carry {speed_deficit:.1f} km/h more speed through this section",
                potential_gain_s=estimate_time_gain(speed_deficit, SPEED_WEIGHT),
                window_m=(d - SPEED_WINDOW_M, d + SPEED_WINDOW_M),
            )
        )

    brake_excess = current.brake - reference.brake
    if brake_excess > BRAKE_EXCESS_PCT:
        areas.append(
            ImprovementArea(
                category=ImprovementCategory.braking_pressure,
                severity=min(100.0, brake_excess),
                message=f"Reduce braking pressure by {brake_excess:.1f}%",
                potential_gain_s=estimate_time_gain(brake_excess, BRAKE_WEIGHT),
                window_m=(d - BRAKE_WINDOW_M, d + BRAKE_WINDOW_M),
            )
        )

    throttle_deficit = reference.throttle - current.throttle
    if throttle_deficit > THROTTLE_DEFICIT_PCT:
        areas.append(
            ImprovementArea(
                category=ImprovementCategory.throttle_application,
                severity=min(100.0, throttle_deficit),
                message=f"Apply {throttle_deficit:.1f}% more throttle",
                potential_gain_s=estimate_time_gain(throttle_deficit, THROTTLE_WEIGHT),
                window_m=(d - THROTTLE_WINDOW_M, d + THROTTLE_WINDOW_M),
            )
        )

    steering_diff = abs(current.steering - reference.steering)
    if steering_diff > STEERING_DIFF_PCT:
        areas.append(
            ImprovementArea(
                category=ImprovementCategory.steering_smoothing,
                severity=min(100.0, steering_diff),
                message="Smooth steering inputs for better stability",
                potential_gain_s=estimate_time_gain(steering_diff, STEERING_WEIGHT),
                window_m=(d - STEERING_WINDOW_M, d + STEERING_WINDOW_M),
            )
        )

    return areas


def compare_samples(
    current: TelemetrySample,
    reference: TelemetrySample,
    tolerance_m: float,
    segment: TrackSegment | None = None,
) -> ComparisonResult:
    """Build the comparison result for one matched (current, reference) pair."""
    return ComparisonResult(
        current=current,
        reference=reference,
        distance_m=current.distance_m,
        time_delta_s=current.lap_time_s - reference.lap_time_s,
        speed_delta_kph=current.speed_kph - reference.speed_kph,
        throttle_delta=current.throttle - reference.throttle,
        brake_delta=current.brake - reference.brake,
        steering_delta=current.steering - reference.steering,
        longitudinal_g_delta=current.longitudinal_g - reference.longitudinal_g,
        lateral_g_delta=current.lateral_g - reference.lateral_g,
        confidence=compute_confidence(current, reference, tolerance_m),
        segment=segment,
        improvements=tuple(find_improvements(current, reference)),
    )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _ReferenceState:
    """Everything a comparison reads, swapped as one unit."""

    lap: ReferenceLap | None = None
    index: ReferenceLapIndex | None = None
    track_map: TrackMap | None = None


class ComparisonEngine:
    """Stateful per-sample comparison against the current reference lap.

    A single thread should feed :meth:`process`; listeners and other threads
    only ever receive immutable results and :class:`MetricsSnapshot` copies.
    Reference lap and track map are replaced atomically.
    """

    def __init__(self, settings: EngineSettings | None = None) -> None:
        self.settings = settings or get_settings()
        self._lock = threading.Lock()
        self._state = _ReferenceState()
        self._lap_comparisons: list[ComparisonResult] = []
        self._last_processed_m: float | None = None
        self._metrics = self._new_metrics(0.0)
        self._comparison_listeners: list[ComparisonListener] = []
        self._metrics_listeners: list[MetricsListener] = []
        self._history: deque[ComparisonResult] = deque(
            maxlen=self.settings.comparison_history_size
        )
        self.rejected_count = 0

    def _new_metrics(self, reference_lap_time_s: float) -> RollingComparisonMetrics:
        return RollingComparisonMetrics(
            reference_lap_time_s=reference_lap_time_s,
            improvement_horizon_m=self.settings.improvement_horizon_m,
            max_active_improvements=self.settings.max_active_improvements,
        )

    @property
    def reference_lap(self) -> ReferenceLap | None:
        return self._state.lap

    @property
    def track_map(self) -> TrackMap | None:
        return self._state.track_map

    def add_comparison_listener(self, listener: ComparisonListener) -> None:
        self._comparison_listeners.append(listener)

    def add_metrics_listener(self, listener: MetricsListener) -> None:
        self._metrics_listeners.append(listener)

    # ------------------------------------------------------------------
    # State replacement
    # ------------------------------------------------------------------

    def set_reference_lap(self, lap: ReferenceLap, track_map: TrackMap | None = None) -> None:
        """Switch to a new reference lap, optionally with a new track map.

        Rebuilds the distance index, resets per-lap accumulation and starts
        fresh rolling metrics.

        Raises
        ------
        InsufficientDataError
            If the lap has no samples; the current reference is kept.
        """
        index = ReferenceLapIndex.from_reference_lap(lap)
        if len(index) == 0:
            msg = f"Reference lap {lap.lap_number} has no samples to index"
            raise InsufficientDataError(msg)
        with self._lock:
            self._state = _ReferenceState(
                lap=lap,
                index=index,
                track_map=track_map if track_map is not None else self._state.track_map,
            )
            self._metrics = self._new_metrics(lap.lap_time_s)
            self._reset_lap()
        logger.info(
            "Reference lap %d set (%.3fs, %d indexed samples)",
            lap.lap_number,
            lap.lap_time_s,
            len(index),
        )

    def set_track_map(self, track_map: TrackMap) -> None:
        with self._lock:
            self._state = _ReferenceState(
                lap=self._state.lap,
                index=self._state.index,
                track_map=track_map,
            )
            self._reset_lap()
        logger.info("Track map set: %s", track_map.describe())

    def reset_session(self) -> None:
        """Clear metrics, history and per-lap state; keep reference and map."""
        with self._lock:
            lap = self._state.lap
            self._metrics = self._new_metrics(lap.lap_time_s if lap is not None else 0.0)
            self._history.clear()
            self.rejected_count = 0
            self._reset_lap()

    def _reset_lap(self) -> None:
        self._lap_comparisons.clear()
        # no throttle anchor, so the first sample after the line is compared
        self._last_processed_m = None

    # ------------------------------------------------------------------
    # Live path
    # ------------------------------------------------------------------

    def process(self, sample: TelemetrySample) -> ComparisonResult | None:
        """Compare one live sample; ``None`` when there is nothing to report.

        Returns ``None`` without a reference lap, when no reference sample lies
        within the distance tolerance, or when the car has not moved more than
        the tolerance since the last accepted comparison.
        """
        tolerance = self.settings.distance_tolerance_m

        with self._lock:
            state = self._state
            if state.index is None:
                return None

            reference = state.index.within(sample.distance_m, tolerance)
            if reference is None:
                self.rejected_count += 1
                logger.debug(
                    "No reference sample within %.1fm of %.1fm", tolerance, sample.distance_m
                )
                return None

            last = self._last_processed_m
            if last is not None and abs(sample.distance_m - last) <= tolerance:
                self.rejected_count += 1
                return None

            segment = (
                state.track_map.segment_at_distance(sample.distance_m)
                if state.track_map is not None
                else None
            )
            result = compare_samples(sample, reference, tolerance, segment)

            self._last_processed_m = sample.distance_m
            self._lap_comparisons.append(result)
            self._history.append(result)
            self._metrics.record(result)
            snapshot = self._metrics.snapshot()

        self._notify(result, snapshot)
        return result

    def complete_lap(self, lap_time_s: float) -> MetricsSnapshot | None:
        """Finalise the current lap's metrics; ``None`` without a reference lap."""
        with self._lock:
            state = self._state
            if state.lap is None:
                return None

            lap_time_delta = lap_time_s - state.lap.lap_time_s
            self._metrics.complete_lap(self._lap_comparisons, lap_time_delta, state.track_map)
            compared = len(self._lap_comparisons)
            self._reset_lap()
            snapshot = self._metrics.snapshot()

        logger.info(
            "Lap metrics finalised: delta %+.3fs over %d comparisons, "
            "consistency %.1f, performance %.1f",
            lap_time_delta,
            compared,
            snapshot.consistency_rating,
            snapshot.performance_rating,
        )
        self._notify_metrics(snapshot)
        return snapshot

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    def metrics_snapshot(self) -> MetricsSnapshot:
        with self._lock:
            return self._metrics.snapshot()

    def current_lap_comparisons(self) -> list[ComparisonResult]:
        with self._lock:
            return list(self._lap_comparisons)

    def recent_results(self) -> tuple[ComparisonResult, ...]:
        """Copy of the bounded history of accepted comparisons, oldest first."""
        with self._lock:
            return tuple(self._history)

    def top_improvements(self, count: int = 3) -> list[ImprovementArea]:
        with self._lock:
            return self._metrics.top_improvements(count)

    # ------------------------------------------------------------------
    # Notification
    # ------------------------------------------------------------------

    def _notify(self, result: ComparisonResult, snapshot: MetricsSnapshot) -> None:
        for listener in self._comparison_listeners:
            try:
                listener(result)
            except Exception:
                logger.exception("Comparison listener %r raised", listener)
        self._notify_metrics(snapshot)

    def _notify_metrics(self, snapshot: MetricsSnapshot) -> None:
        for listener in self._metrics_listeners:
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Metrics listener %r raised", listener)
