"""Live-path orchestration: lap detection and comparison per sample, mapping off the live path.

:class:`CoachingSession` is the single entry point for a telemetry stream.
Track mapping is CPU-bound and runs in a worker thread via
:func:`asyncio.to_thread` so it never blocks the per-sample path.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from lapcoach.comparison import ComparisonEngine, ComparisonResult
from lapcoach.config import EngineSettings, get_settings
from lapcoach.laps import LapCompleted, LapDetector, LapEvent
from lapcoach.reference import ReferenceLap
from lapcoach.segmentation import ProgressCallback, build_track_map
from lapcoach.telemetry import TelemetrySample
from lapcoach.track import TrackMap

logger = logging.getLogger(__name__)


@dataclass
class SampleOutcome:
    """What one call to :meth:`CoachingSession.process` produced."""

    lap_events: list[LapEvent] = field(default_factory=list)
    comparison: ComparisonResult | None = None


class CoachingSession:
    """Feeds every sample through the lap detector and the comparison engine."""

    def __init__(self, settings: EngineSettings | None = None) -> None:
        self.settings = settings or get_settings()
        self.detector = LapDetector(self.settings)
        self.engine = ComparisonEngine(self.settings)
        self.last_completed_lap: LapCompleted | None = None

    def set_reference_lap(self, lap: ReferenceLap, track_map: TrackMap | None = None) -> None:
        self.engine.set_reference_lap(lap, track_map)

    def use_completed_lap_as_reference(self) -> ReferenceLap | None:
        """Promote the last completed lap to reference if it is valid."""
        lap = self.last_completed_lap
        if lap is None or not lap.is_valid:
            return None
        reference = ReferenceLap.from_samples(lap.samples, lap.lap_number)
        self.engine.set_reference_lap(reference)
        return reference

    def process(self, sample: TelemetrySample) -> SampleOutcome:
        """Run lap detection then comparison for one live sample.

        A completed lap finalises the engine's lap metrics before the sample is
        compared, so the sample that opens a new lap is counted in that lap.
        """
        events = self.detector.process(sample)
        for event in events:
            if isinstance(event, LapCompleted):
                self.last_completed_lap = event
                self.engine.complete_lap(event.lap_time_s)

        comparison = self.engine.process(sample)
        return SampleOutcome(lap_events=events, comparison=comparison)

    async def map_track_async(
        self,
        samples: Sequence[TelemetrySample],
        name: str,
        variant: str = "",
        install: bool = True,
        on_progress: ProgressCallback | None = None,
    ) -> TrackMap:
        """Build a track map off the live path and optionally install it.

        On failure the error is logged and re-raised; the engine keeps its
        previous map.
        """
        track_map = await map_track_async(
            samples, name, variant=variant, settings=self.settings, on_progress=on_progress
        )
        if install:
            self.engine.set_track_map(track_map)
        return track_map


async def map_track_async(
    samples: Sequence[TelemetrySample],
    name: str,
    variant: str = "",
    settings: EngineSettings | None = None,
    on_progress: ProgressCallback | None = None,
) -> TrackMap:
    """Run :func:`build_track_map` in a worker thread."""
    buffered = list(samples)
    try:
        return await asyncio.to_thread(
            build_track_map, buffered, name, variant, settings, on_progress
        )
    except ValueError:
        logger.warning(
            "Track mapping failed for %s (%d samples)", name, len(buffered), exc_info=True
        )
        raise
