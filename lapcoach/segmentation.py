"""Track segmentation: fixed-length micro-segments with curvature and speed heuristics.

Turns a buffered set of samples covering at least one lap into an immutable
:class:`~lapcoach.track.TrackMap`.  The run is a batch operation and is meant
to be executed off the live sample path (see :mod:`lapcoach.session`).
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace

import numpy as np
import pandas as pd

from lapcoach.config import EngineSettings, get_settings
from lapcoach.curvature import detect_direction, mean_heading, segment_curvature
from lapcoach.errors import InsufficientDataError
from lapcoach.telemetry import TelemetrySample, samples_to_frame
from lapcoach.track import SegmentType, TrackDirection, TrackMap, TrackSegment

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

HAIRPIN_CURVATURE = 0.1
FAST_CORNER_KPH = 180.0
SLOW_CORNER_KPH = 100.0
BRAKING_POINT_FRACTION = 0.7  # brake in the last 30% of the segment
TOP_SPEED_FRACTION = 4  # optimal speed = mean of the fastest 1/4 of samples

# (turn-in, apex, exit) as fractions of segment length
CORNER_POINTS: dict[SegmentType, tuple[float, float, float]] = {
    SegmentType.hairpin: (0.2, 0.4, 0.8),
    SegmentType.fast_corner: (0.1, 0.5, 0.9),
    SegmentType.slow_corner: (0.3, 0.5, 0.7),
}
DEFAULT_CORNER_POINTS = (0.25, 0.5, 0.75)

COACHING_NOTES: dict[SegmentType, str] = {
    SegmentType.hairpin: (
        "Slow corner - brake early, trail brake to apex, early throttle application"
    ),
    SegmentType.fast_corner: "Fast corner - maintain speed, smooth inputs, late apex",
    SegmentType.slow_corner: "Technical corner - precise line, patience on throttle",
    SegmentType.braking_zone: "Braking zone - maximum braking, downshift preparation",
    SegmentType.left_turn: "Left-hander - use the full width on exit",
    SegmentType.right_turn: "Right-hander - use the full width on exit",
    SegmentType.chicane: "Chicane - straighten the line, prioritise the second apex",
    SegmentType.complex_corner: "Corner complex - sacrifice the first part for the exit",
}
CHALLENGING_NOTE = "Challenging section - focus on consistency and smooth inputs"
NOTE_DIFFICULTY = 7
CHALLENGING_DIFFICULTY = 8


@dataclass
class TrackStatistics:
    """Track-level figures derived from the raw sample set."""

    length_m: float
    min_elevation_m: float
    max_elevation_m: float
    sector_boundaries_m: tuple[float, float]
    start_finish: tuple[float, float, float]


# ---------------------------------------------------------------------------
# Statistics and segment generation
# ---------------------------------------------------------------------------


def compute_track_statistics(df: pd.DataFrame) -> TrackStatistics:
    """Length, elevation extremes, naive thirds sectors, and start/finish position."""
    distance = df["distance_m"].to_numpy()
    length = float(np.max(distance))
    elevation = df["position_z"].to_numpy()

    sf_idx = int(np.argmin(np.abs(distance)))
    start_finish = (
        float(df["position_x"].iloc[sf_idx]),
        float(df["position_y"].iloc[sf_idx]),
        float(df["position_z"].iloc[sf_idx]),
    )

    return TrackStatistics(
        length_m=length,
        min_elevation_m=float(np.min(elevation)),
        max_elevation_m=float(np.max(elevation)),
        sector_boundaries_m=(length / 3.0, length * 2.0 / 3.0),
        start_finish=start_finish,
    )


def _optimal_speed(speeds: np.ndarray) -> float:
    """Mean of the fastest quarter of speeds (at least one sample)."""
    ordered = np.sort(speeds)[::-1]
    top = max(1, len(ordered) // TOP_SPEED_FRACTION)
    return float(np.mean(ordered[:top]))


def _recommended_gear(gears: np.ndarray) -> int:
    forward = gears[gears > 0]
    if len(forward) == 0:
        return 0
    return int(round(float(np.mean(forward))))


def _segment_from_group(
    index: int,
    start_m: float,
    length_m: float,
    group: pd.DataFrame,
) -> TrackSegment:
    """Build the geometric attributes of one segment from its samples."""
    heading = group["heading_rad"].to_numpy()
    elevation = group["position_z"].to_numpy()
    elevation_delta = float(np.max(elevation) - np.min(elevation)) if len(group) > 1 else 0.0

    return TrackSegment(
        index=index,
        start_m=start_m,
        length_m=length_m,
        center_x=float(group["position_x"].mean()),
        center_y=float(group["position_y"].mean()),
        center_z=float(group["position_z"].mean()),
        heading_rad=mean_heading(heading),
        curvature=segment_curvature(heading),
        elevation_delta_m=elevation_delta,
        optimal_speed_kph=_optimal_speed(group["speed_kph"].to_numpy()),
        recommended_gear=_recommended_gear(group["gear"].to_numpy()),
    )


def generate_segments(
    df: pd.DataFrame,
    track_length_m: float,
    target_length_m: float,
    on_progress: ProgressCallback | None = None,
) -> list[TrackSegment]:
    """Tile ``[0, track_length_m)`` with equal-length bins and build one segment per bin.

    The bin count is ``ceil(length / target)`` so every bin has the same length.
    Bins without samples produce no segment of their own; their distance range
    is absorbed by the preceding segment (or the following one at the start of
    the lap), so the output always covers the full track without gaps.
    """
    n_segments = math.ceil(track_length_m / target_length_m)
    if n_segments <= 0:
        msg = f"Segment count must be positive (track length {track_length_m}m)"
        raise ValueError(msg)

    boundaries = np.linspace(0.0, track_length_m, n_segments + 1)
    distance = df["distance_m"].to_numpy()
    bins = np.searchsorted(boundaries, distance, side="right") - 1
    in_range = (distance >= 0.0) & (bins >= 0) & (bins < n_segments)
    grouped = dict(tuple(df[in_range].groupby(bins[in_range], sort=True)))

    segments: list[TrackSegment] = []
    pending_start: float | None = None  # leading empty bins waiting for a segment
    for i in range(n_segments):
        seg_start = float(boundaries[i])
        seg_end = float(boundaries[i + 1])
        group = grouped.get(i)

        if group is None or group.empty:
            if segments:
                prev = segments[-1]
                segments[-1] = replace(prev, length_m=seg_end - prev.start_m)
            elif pending_start is None:
                pending_start = seg_start
        else:
            start = pending_start if pending_start is not None else seg_start
            pending_start = None
            segments.append(_segment_from_group(i, start, seg_end - start, group))

        if on_progress is not None:
            on_progress(int((i + 1) * 100 / n_segments), f"Generating segment {i + 1}/{n_segments}")

    return segments


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def classify_segment(
    curvature: float,
    optimal_speed_kph: float,
    curvature_threshold: float,
) -> SegmentType:
    """First matching rule wins: straight, hairpin, fast, slow, then by direction."""
    abs_curv = abs(curvature)
    if abs_curv < curvature_threshold:
        return SegmentType.straight
    if abs_curv > HAIRPIN_CURVATURE:
        return SegmentType.hairpin
    if optimal_speed_kph > FAST_CORNER_KPH:
        return SegmentType.fast_corner
    if optimal_speed_kph < SLOW_CORNER_KPH:
        return SegmentType.slow_corner
    return SegmentType.right_turn if curvature > 0 else SegmentType.left_turn


def rate_segment(curvature: float, optimal_speed_kph: float) -> tuple[int, int]:
    """Return ``(difficulty, importance)``, both on a 1-10 scale."""
    curvature_factor = min(abs(curvature) * 100.0, 5.0)
    speed_factor = max(0.0, (200.0 - optimal_speed_kph) / 40.0)
    difficulty = int(np.clip(int(curvature_factor + speed_factor + 1.0), 1, 10))
    importance = min(10, difficulty + 2)
    return difficulty, importance


def mark_braking_zones(
    segments: list[TrackSegment],
    speed_drop_kph: float,
) -> list[TrackSegment]:
    """Relabel straights that lead into a corner with a large speed drop."""
    result = list(segments)
    for i in range(len(segments) - 1):
        current = segments[i]
        following = segments[i + 1]
        if current.segment_type is not SegmentType.straight or not following.is_corner:
            continue
        if current.optimal_speed_kph - following.optimal_speed_kph > speed_drop_kph:
            result[i] = replace(
                current,
                segment_type=SegmentType.braking_zone,
                braking_point=BRAKING_POINT_FRACTION,
            )
    return result


def corner_points(segment_type: SegmentType) -> tuple[float, float, float]:
    """Fixed (turn-in, apex, exit) fractions for a corner type."""
    return CORNER_POINTS.get(segment_type, DEFAULT_CORNER_POINTS)


def coaching_note(segment: TrackSegment) -> str:
    """Canned note for difficult, corner, or braking segments; empty otherwise."""
    needs_note = (
        segment.difficulty >= NOTE_DIFFICULTY
        or segment.is_corner
        or segment.segment_type is SegmentType.braking_zone
    )
    if not needs_note:
        return ""
    note = COACHING_NOTES.get(segment.segment_type)
    if note is not None:
        return note
    if segment.difficulty >= CHALLENGING_DIFFICULTY:
        return CHALLENGING_NOTE
    return ""


def _annotate(segment: TrackSegment, curvature_threshold: float) -> TrackSegment:
    segment_type = classify_segment(
        segment.curvature, segment.optimal_speed_kph, curvature_threshold
    )
    difficulty, importance = rate_segment(segment.curvature, segment.optimal_speed_kph)
    return replace(segment, segment_type=segment_type, difficulty=difficulty, importance=importance)


def _finalise(segment: TrackSegment) -> TrackSegment:
    if segment.is_corner:
        turn_in, apex, exit_ = corner_points(segment.segment_type)
        segment = replace(segment, turn_in_point=turn_in, apex_point=apex, exit_point=exit_)
    return replace(segment, notes=coaching_note(segment))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_track_map(
    samples: Sequence[TelemetrySample],
    name: str,
    variant: str = "",
    settings: EngineSettings | None = None,
    on_progress: ProgressCallback | None = None,
) -> TrackMap:
    """Segment a buffered lap (or laps) of telemetry into a :class:`TrackMap`.

    Parameters
    ----------
    samples:
        Samples spanning at least one full lap, in arrival order.
    name:
        Track name; must be non-empty.
    variant:
        Optional layout name.
    settings:
        Engine settings; defaults to :func:`~lapcoach.config.get_settings`.
    on_progress:
        Optional ``(percent, message)`` callback invoked once per segment bin.

    Returns
    -------
    TrackMap
        Built atomically; nothing is returned on failure.

    Raises
    ------
    InsufficientDataError
        If fewer than ``settings.min_mapping_samples`` samples are given.
    ValueError
        If *name* is empty or the samples imply a non-positive track length.
    """
    cfg = settings or get_settings()

    if not name:
        msg = "Track name cannot be empty"
        raise ValueError(msg)

    if len(samples) < cfg.min_mapping_samples:
        msg = (
            f"Insufficient data for track mapping: {len(samples)} samples, "
            f"need at least {cfg.min_mapping_samples}"
        )
        raise InsufficientDataError(msg)

    df = samples_to_frame(samples)
    stats = compute_track_statistics(df)
    if stats.length_m <= 0:
        msg = f"Track length must be positive, got {stats.length_m}m"
        raise ValueError(msg)

    direction: TrackDirection = detect_direction(df["heading_rad"].to_numpy())

    segments = generate_segments(df, stats.length_m, cfg.segment_length_m, on_progress)
    if not segments:
        msg = "No segment contains any samples"
        raise ValueError(msg)

    segments = [_annotate(s, cfg.curvature_threshold) for s in segments]
    segments = mark_braking_zones(segments, cfg.braking_speed_drop_kph)
    segments = [_finalise(s) for s in segments]

    type_counts = Counter(s.segment_type.value for s in segments)
    logger.debug("Segment classification for %s: %s", name, dict(type_counts))

    track_map = TrackMap(
        name=name,
        variant=variant,
        length_m=stats.length_m,
        segments=tuple(segments),
        direction=direction,
        sector_boundaries_m=stats.sector_boundaries_m,
        min_elevation_m=stats.min_elevation_m,
        max_elevation_m=stats.max_elevation_m,
        start_finish=stats.start_finish,
    )
    logger.info(
        "Mapped %s: %.0fm, %d segments, %d turns, %s",
        name,
        track_map.length_m,
        len(track_map.segments),
        track_map.number_of_turns,
        direction.value,
    )
    return track_map
