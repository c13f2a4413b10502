"""Track map data model: fixed-length micro-segments with geometry and classification."""

from __future__ import annotations

import math
import uuid
from bisect import bisect_right
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from functools import cached_property


class SegmentType(Enum):
    """Classification of a track segment."""

    straight = "straight"
    left_turn = "left_turn"
    right_turn = "right_turn"
    hairpin = "hairpin"
    fast_corner = "fast_corner"
    slow_corner = "slow_corner"
    braking_zone = "braking_zone"
    chicane = "chicane"
    complex_corner = "complex_corner"


CORNER_TYPES: frozenset[SegmentType] = frozenset(
    {
        SegmentType.left_turn,
        SegmentType.right_turn,
        SegmentType.hairpin,
        SegmentType.fast_corner,
        SegmentType.slow_corner,
        SegmentType.chicane,
        SegmentType.complex_corner,
    }
)


class TrackDirection(Enum):
    clockwise = "clockwise"
    counterclockwise = "counterclockwise"


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class TrackSegment:
    """A fixed-length slice of the track.

    Curvature is signed: positive = right-hand turn, negative = left, ~0 =
    straight.  The turn-in/apex/exit and braking-point fields are fractions of
    the segment length and are only meaningful for corner and braking types.
    """

    index: int
    start_m: float
    length_m: float
    center_x: float = 0.0
    center_y: float = 0.0
    center_z: float = 0.0
    heading_rad: float = 0.0
    curvature: float = 0.0
    elevation_delta_m: float = 0.0
    optimal_speed_kph: float = 0.0
    recommended_gear: int = 0
    segment_type: SegmentType = SegmentType.straight
    difficulty: int = 1  # 1-10
    importance: int = 1  # 1-10
    braking_point: float = 0.0
    turn_in_point: float = 0.0
    apex_point: float = 0.0
    exit_point: float = 0.0
    notes: str = ""
    id: str = field(default_factory=_new_id)

    @property
    def end_m(self) -> float:
        return self.start_m + self.length_m

    @property
    def is_corner(self) -> bool:
        return self.segment_type in CORNER_TYPES

    @property
    def is_braking_zone(self) -> bool:
        return self.segment_type is SegmentType.braking_zone or self.braking_point > 0.0

    def contains(self, distance_m: float) -> bool:
        """Half-open membership test: ``start <= d < end``."""
        return self.start_m <= distance_m < self.end_m

    def distance_to(self, x: float, y: float, z: float) -> float:
        """Euclidean distance from the segment centroid to a point."""
        return math.sqrt(
            (self.center_x - x) ** 2 + (self.center_y - y) ** 2 + (self.center_z - z) ** 2
        )

    def describe(self) -> str:
        return (
            f"Segment {self.index}: {self.segment_type.value} @ {self.start_m:.1f}m "
            f"({self.optimal_speed_kph:.1f} km/h)"
        )


@dataclass(frozen=True)
class TrackMap:
    """Ordered, contiguous segments covering ``[0, length_m)`` plus track metadata.

    Built once per mapping run and never mutated; re-mapping yields a new map.
    """

    name: str
    length_m: float
    segments: tuple[TrackSegment, ...]
    direction: TrackDirection = TrackDirection.clockwise
    sector_boundaries_m: tuple[float, float] = (0.0, 0.0)
    min_elevation_m: float = 0.0
    max_elevation_m: float = 0.0
    start_finish: tuple[float, float, float] = (0.0, 0.0, 0.0)
    variant: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    id: str = field(default_factory=_new_id)

    @property
    def elevation_change_m(self) -> float:
        return self.max_elevation_m - self.min_elevation_m

    @property
    def number_of_turns(self) -> int:
        return sum(1 for s in self.segments if s.is_corner)

    @property
    def average_segment_length(self) -> float:
        if not self.segments:
            return 0.0
        return sum(s.length_m for s in self.segments) / len(self.segments)

    @property
    def difficulty_rating(self) -> float:
        """Mean segment difficulty (1.0 for an empty map)."""
        if not self.segments:
            return 1.0
        return sum(s.difficulty for s in self.segments) / len(self.segments)

    def is_valid(self) -> bool:
        """Named, positive length, non-empty, strictly increasing segment indices."""
        if not self.name or self.length_m <= 0 or not self.segments:
            return False
        pairs = zip(self.segments, self.segments[1:], strict=False)
        return all(a.index < b.index for a, b in pairs)

    @cached_property
    def _segment_starts(self) -> list[float]:
        return [s.start_m for s in self.segments]

    def segment_at_distance(self, distance_m: float) -> TrackSegment | None:
        """Return the segment whose ``[start, end)`` contains *distance_m*.

        Binary search over segment start distances, which are ascending.
        """
        pos = bisect_right(self._segment_starts, distance_m) - 1
        if pos < 0:
            return None
        segment = self.segments[pos]
        return segment if segment.contains(distance_m) else None

    def closest_segment(self, x: float, y: float, z: float) -> TrackSegment | None:
        if not self.segments:
            return None
        return min(self.segments, key=lambda s: s.distance_to(x, y, z))

    def corner_segments(self) -> list[TrackSegment]:
        return [s for s in self.segments if s.is_corner]

    def braking_zone_segments(self) -> list[TrackSegment]:
        return [s for s in self.segments if s.is_braking_zone]

    def sector_of(self, distance_m: float) -> int:
        """Sector number (1-3) for a lap distance."""
        sector1_end, sector2_end = self.sector_boundaries_m
        if distance_m < sector1_end:
            return 1
        if distance_m < sector2_end:
            return 2
        return 3

    def sector_segments(self, sector: int) -> list[TrackSegment]:
        """Segments whose start lies in *sector* (1-3); empty for any other number."""
        if sector not in (1, 2, 3):
            return []
        return [s for s in self.segments if self.sector_of(s.start_m) == sector]

    def describe(self) -> str:
        variant = f" ({self.variant})" if self.variant else ""
        return f"{self.name}{variant} - {self.length_m:.0f}m, {len(self.segments)} segments"
