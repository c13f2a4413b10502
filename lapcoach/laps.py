"""Lap boundary detection from a live telemetry stream, with lap quality validation."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from lapcoach.config import EngineSettings, get_settings
from lapcoach.telemetry import TelemetrySample

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LapStarted:
    """Emitted when the detector begins tracking a new lap."""

    lap_number: int
    track_name: str
    vehicle_name: str
    start_time_s: float  # lap time of the triggering sample
    timestamp: float


@dataclass(frozen=True)
class LapCompleted:
    """Emitted when a tracked lap crosses the line; invalid laps are still emitted."""

    lap_number: int
    lap_time_s: float
    samples: tuple[TelemetrySample, ...]
    is_valid: bool
    invalid_reason: str | None
    track_name: str
    vehicle_name: str
    completed_at: float


@dataclass(frozen=True)
class LapProgressInfo:
    """Point-in-time view of the lap currently being accumulated."""

    lap_number: int
    in_progress: bool
    data_points: int
    elapsed_time_s: float
    last_lap_progress: float


LapEvent = LapStarted | LapCompleted
LapListener = Callable[[LapEvent], None]


def validate_lap(
    samples: Sequence[TelemetrySample],
    lap_time_s: float,
    settings: EngineSettings | None = None,
) -> tuple[bool, str | None]:
    """Check a completed lap against the quality criteria.

    Returns ``(True, None)`` for a valid lap, otherwise ``(False, reason)``
    naming the first failed criterion.
    """
    cfg = settings or get_settings()

    if len(samples) < cfg.min_lap_samples:
        return False, f"only {len(samples)} samples (need {cfg.min_lap_samples})"

    if lap_time_s < cfg.min_lap_time_s or lap_time_s > cfg.max_lap_time_s:
        return False, (
            f"lap time {lap_time_s:.3f}s outside "
            f"[{cfg.min_lap_time_s:.1f}, {cfg.max_lap_time_s:.1f}]"
        )

    track_name = samples[0].track_name
    vehicle_name = samples[0].vehicle_name
    if any(s.track_name != track_name or s.vehicle_name != vehicle_name for s in samples):
        return False, "track or vehicle changed during the lap"

    speeds = [s.speed_kph for s in samples]
    speed_range = max(speeds) - min(speeds)
    if speed_range < cfg.min_speed_variation_kph:
        return False, (
            f"speed range {speed_range:.1f} km/h below {cfg.min_speed_variation_kph:.1f} km/h"
        )

    if cfg.require_valid_flag and not all(s.is_valid for s in samples):
        return False, "sample flagged invalid by the simulator"

    return True, None


class LapDetector:
    """Two-state (idle / in progress) lap boundary state machine.

    Feed every sample to :meth:`process`.  Emitted events are returned to the
    caller and also delivered to registered listeners, in emission order.
    """

    def __init__(self, settings: EngineSettings | None = None) -> None:
        self.settings = settings or get_settings()
        self._listeners: list[LapListener] = []
        self._buffer: list[TelemetrySample] = []
        self._current_lap_number = 0
        self._in_progress = False
        self._has_started = False
        self._last_progress = 0.0
        self._lap_start_time = 0.0

    @property
    def current_lap_number(self) -> int:
        return self._current_lap_number

    @property
    def is_lap_in_progress(self) -> bool:
        return self._in_progress

    @property
    def current_lap_data_points(self) -> int:
        return len(self._buffer)

    def add_listener(self, listener: LapListener) -> None:
        """Register a callback receiving every LapStarted / LapCompleted event."""
        self._listeners.append(listener)

    def process(self, sample: TelemetrySample | None) -> list[LapEvent]:
        """Advance the state machine by one sample.

        Completion is checked before start so that the sample closing a lap can
        also open the next one.  A ``None`` sample is ignored.
        """
        if sample is None:
            return []

        events: list[LapEvent] = []

        if self._in_progress and self._should_complete(sample):
            events.append(self._complete_lap(sample))

        if not self._in_progress and self._should_start(sample):
            events.append(self._start_lap(sample))
        elif self._in_progress:
            self._buffer.append(sample)

        self._last_progress = sample.lap_progress

        for event in events:
            self._notify(event)
        return events

    def reset(self) -> None:
        """Drop all state, returning to idle as if freshly constructed."""
        self._buffer.clear()
        self._current_lap_number = 0
        self._in_progress = False
        self._has_started = False
        self._last_progress = 0.0
        self._lap_start_time = 0.0

    def current_progress(self) -> LapProgressInfo:
        elapsed = self._buffer[-1].lap_time_s - self._lap_start_time if self._buffer else 0.0
        return LapProgressInfo(
            lap_number=self._current_lap_number,
            in_progress=self._in_progress,
            data_points=len(self._buffer),
            elapsed_time_s=elapsed,
            last_lap_progress=self._last_progress,
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _crossed_line(self, sample: TelemetrySample) -> bool:
        return (
            sample.lap_progress < self.settings.lap_start_threshold
            and self._last_progress > self.settings.lap_complete_threshold
        )

    def _should_start(self, sample: TelemetrySample) -> bool:
        if sample.lap_progress >= self.settings.lap_start_threshold:
            return False
        if not self._has_started:
            return True
        if sample.lap_number > self._current_lap_number:
            return True
        return self._crossed_line(sample)

    def _should_complete(self, sample: TelemetrySample) -> bool:
        boundary = self._crossed_line(sample) or sample.lap_number > self._current_lap_number
        elapsed = sample.lap_time_s - self._lap_start_time
        return boundary and elapsed > self.settings.min_lap_time_s

    def _start_lap(self, sample: TelemetrySample) -> LapStarted:
        self._current_lap_number = sample.lap_number
        self._in_progress = True
        self._has_started = True
        self._lap_start_time = sample.lap_time_s
        self._buffer.clear()
        self._buffer.append(sample)

        logger.info("Lap %d started on %s", sample.lap_number, sample.track_name or "<unknown>")
        return LapStarted(
            lap_number=sample.lap_number,
            track_name=sample.track_name,
            vehicle_name=sample.vehicle_name,
            start_time_s=sample.lap_time_s,
            timestamp=sample.timestamp,
        )

    def _complete_lap(self, sample: TelemetrySample) -> LapCompleted:
        lap_samples = tuple(self._buffer)
        lap_time = sample.lap_time_s - self._lap_start_time
        is_valid, reason = validate_lap(lap_samples, lap_time, self.settings)

        if is_valid:
            logger.info("Lap %d completed in %.3fs", self._current_lap_number, lap_time)
        else:
            logger.warning(
                "Lap %d completed in %.3fs but failed validation: %s",
                self._current_lap_number,
                lap_time,
                reason,
            )

        event = LapCompleted(
            lap_number=self._current_lap_number,
            lap_time_s=lap_time,
            samples=lap_samples,
            is_valid=is_valid,
            invalid_reason=reason,
            track_name=sample.track_name,
            vehicle_name=sample.vehicle_name,
            completed_at=sample.timestamp,
        )

        self._in_progress = False
        self._buffer.clear()
        return event

    def _notify(self, event: LapEvent) -> None:
        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Lap listener %r raised while handling %s", listener, event)
