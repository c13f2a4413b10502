"""Tests for lapcoach.track."""

from __future__ import annotations

import pytest

from lapcoach.track import SegmentType, TrackMap, TrackSegment


def _segment(index: int, segment_type: SegmentType = SegmentType.straight, **kw) -> TrackSegment:
    return TrackSegment(
        index=index,
        start_m=index * 100.0,
        length_m=100.0,
        center_x=index * 100.0 + 50.0,
        segment_type=segment_type,
        **kw,
    )


@pytest.fixture
def track_map() -> TrackMap:
    return TrackMap(
        name="Test Track",
        length_m=600.0,
        segments=(
            _segment(0, difficulty=2),
            _segment(1, SegmentType.braking_zone, braking_point=0.7, difficulty=4),
            _segment(2, SegmentType.hairpin, difficulty=9),
            _segment(3, difficulty=2),
            _segment(4, SegmentType.left_turn, difficulty=5),
            _segment(5, SegmentType.fast_corner, difficulty=6),
        ),
        sector_boundaries_m=(200.0, 400.0),
    )


class TestTrackSegment:
    def test_contains_is_half_open(self) -> None:
        seg = _segment(1)
        assert seg.contains(100.0)
        assert seg.contains(199.9)
        assert not seg.contains(200.0)
        assert not seg.contains(99.9)

    def test_end(self) -> None:
        assert _segment(2).end_m == 300.0

    def test_corner_and_braking_flags(self) -> None:
        assert _segment(0, SegmentType.hairpin).is_corner
        assert _segment(0, SegmentType.chicane).is_corner
        assert not _segment(0, SegmentType.braking_zone).is_corner
        assert _segment(0, SegmentType.braking_zone).is_braking_zone
        assert _segment(0, braking_point=0.7).is_braking_zone
        assert not _segment(0).is_braking_zone

    def test_distance_to(self) -> None:
        seg = TrackSegment(index=0, start_m=0.0, length_m=10.0, center_x=3.0, center_y=4.0)
        assert seg.distance_to(0.0, 0.0, 0.0) == pytest.approx(5.0)

    def test_unique_ids(self) -> None:
        assert _segment(0).id != _segment(0).id


class TestTrackMap:
    def test_segment_at_distance(self, track_map: TrackMap) -> None:
        seg = track_map.segment_at_distance(250.0)
        assert seg is not None
        assert seg.index == 2
        assert track_map.segment_at_distance(200.0).index == 2  # type: ignore[union-attr]
        assert track_map.segment_at_distance(600.0) is None
        assert track_map.segment_at_distance(-1.0) is None

    def test_segment_at_distance_long_track(self) -> None:
        segments = tuple(TrackSegment(index=i, start_m=i * 25.0, length_m=25.0) for i in range(800))
        long_map = TrackMap(name="Long", length_m=20000.0, segments=segments)
        for i in (0, 1, 399, 799):
            for d in (i * 25.0, i * 25.0 + 24.9):
                seg = long_map.segment_at_distance(d)
                assert seg is not None
                assert seg.index == i
        assert long_map.segment_at_distance(20000.0) is None

    def test_segment_at_distance_outside_segment(self) -> None:
        gapped = TrackMap(
            name="Gapped",
            length_m=300.0,
            segments=(
                TrackSegment(index=0, start_m=0.0, length_m=100.0),
                TrackSegment(index=1, start_m=200.0, length_m=100.0),
            ),
        )
        assert gapped.segment_at_distance(150.0) is None
        assert gapped.segment_at_distance(250.0).index == 1  # type: ignore[union-attr]

    def test_closest_segment(self, track_map: TrackMap) -> None:
        seg = track_map.closest_segment(260.0, 0.0, 0.0)
        assert seg is not None
        assert seg.index == 2

    def test_filters(self, track_map: TrackMap) -> None:
        assert [s.index for s in track_map.corner_segments()] == [2, 4, 5]
        assert [s.index for s in track_map.braking_zone_segments()] == [1]
        assert track_map.number_of_turns == 3

    def test_sectors(self, track_map: TrackMap) -> None:
        assert track_map.sector_of(50.0) == 1
        assert track_map.sector_of(200.0) == 2
        assert track_map.sector_of(599.0) == 3
        assert [s.index for s in track_map.sector_segments(2)] == [2, 3]
        assert track_map.sector_segments(4) == []

    def test_aggregates(self, track_map: TrackMap) -> None:
        assert track_map.average_segment_length == pytest.approx(100.0)
        assert track_map.difficulty_rating == pytest.approx(28 / 6)

    def test_is_valid(self, track_map: TrackMap) -> None:
        assert track_map.is_valid()

    @pytest.mark.parametrize(
        ("name", "length", "indices"),
        [
            ("", 600.0, (0, 1)),
            ("Track", 0.0, (0, 1)),
            ("Track", 600.0, ()),
            ("Track", 600.0, (1, 1)),
        ],
    )
    def test_invalid_maps(self, name: str, length: float, indices: tuple[int, ...]) -> None:
        track_map = TrackMap(
            name=name, length_m=length, segments=tuple(_segment(i) for i in indices)
        )
        assert not track_map.is_valid()

    def test_empty_map_defaults(self) -> None:
        empty = TrackMap(name="Empty", length_m=100.0, segments=())
        assert empty.difficulty_rating == 1.0
        assert empty.average_segment_length == 0.0
        assert empty.closest_segment(0.0, 0.0, 0.0) is None

    def test_describe(self, track_map: TrackMap) -> None:
        assert track_map.describe() == "Test Track - 600m, 6 segments"
