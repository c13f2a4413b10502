"""Post-lap performance analysis over a batch of comparison results."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np
import pandas as pd

from lapcoach.comparison import ComparisonResult, ImprovementCategory

# Driver input -> (noise floor, problematic threshold), in input percentage points
INPUT_THRESHOLDS: dict[str, tuple[float, float]] = {
    "throttle": (5.0, 15.0),
    "brake": (5.0, 20.0),
    "steering": (10.0, 25.0),
}

CONSISTENT_SCORE = 0.8
INCONSISTENT_SCORE = 0.5
RECOMMENDATION_MIN_SECTIONS = 5
RECOMMENDATION_CONSISTENCY = 70.0


@dataclass
class InputAnalysis:
    """Statistics for one driver input over comparisons above its noise floor."""

    mean_delta: float
    max_deficit: float
    max_excess: float
    problematic_sections: int


@dataclass
class CategorySummary:
    """Improvement areas of one category aggregated over the batch."""

    category: ImprovementCategory
    frequency: int
    mean_severity: float
    max_severity: float
    total_potential_gain_s: float
    affected_sections: int


@dataclass
class PerformanceSummary:
    total_comparisons: int = 0
    mean_time_delta_s: float = 0.0
    total_time_lost_s: float = 0.0
    total_time_gained_s: float = 0.0
    mean_speed_delta_kph: float = 0.0
    max_speed_deficit_kph: float = 0.0
    max_speed_advantage_kph: float = 0.0
    throttle: InputAnalysis | None = None
    brake: InputAnalysis | None = None
    steering: InputAnalysis | None = None
    categories: list[CategorySummary] = field(default_factory=list)
    consistency_score: float = 0.0  # 0-100
    consistent_sections: int = 0
    inconsistent_sections: int = 0
    recommendations: list[str] = field(default_factory=list)


def _comparisons_to_frame(comparisons: Sequence[ComparisonResult]) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "time_delta": [c.time_delta_s for c in comparisons],
            "speed_delta": [c.speed_delta_kph for c in comparisons],
            "throttle": [c.throttle_delta for c in comparisons],
            "brake": [c.brake_delta for c in comparisons],
            "steering": [c.steering_delta for c in comparisons],
            "segment_id": [c.segment.id if c.segment is not None else None for c in comparisons],
        }
    )


def _analyze_input(deltas: pd.Series, floor: float, problematic: float) -> InputAnalysis | None:
    active = deltas[deltas.abs() > floor]
    if active.empty:
        return None
    deficits = active[active < 0]
    excesses = active[active > 0]
    return InputAnalysis(
        mean_delta=float(active.mean()),
        max_deficit=float(deficits.min()) if not deficits.empty else 0.0,
        max_excess=float(excesses.max()) if not excesses.empty else 0.0,
        problematic_sections=int((active.abs() > problematic).sum()),
    )


def _summarize_categories(comparisons: Sequence[ComparisonResult]) -> list[CategorySummary]:
    areas = [a for c in comparisons for a in c.improvements]
    if not areas:
        return []

    df = pd.DataFrame(
        {
            "category": [a.category.value for a in areas],
            "severity": [a.severity for a in areas],
            "gain": [a.potential_gain_s for a in areas],
            "window": [a.window_m for a in areas],
        }
    )
    grouped = df.groupby("category").agg(
        frequency=("severity", "size"),
        mean_severity=("severity", "mean"),
        max_severity=("severity", "max"),
        total_gain=("gain", "sum"),
        affected=("window", "nunique"),
    )
    grouped = grouped.sort_values("total_gain", ascending=False)

    return [
        CategorySummary(
            category=ImprovementCategory(name),
            frequency=int(row.frequency),
            mean_severity=float(row.mean_severity),
            max_severity=float(row.max_severity),
            total_potential_gain_s=float(row.total_gain),
            affected_sections=int(row.affected),
        )
        for name, row in grouped.iterrows()
    ]


def _segment_consistency(df: pd.DataFrame) -> list[float]:
    """Per-segment 0-1 consistency for segments with at least two comparisons."""
    with_segment = df.dropna(subset=["segment_id"])
    scores: list[float] = []
    for _, group in with_segment.groupby("segment_id"):
        if len(group) < 2:
            continue
        std = float(np.std(group["time_delta"].to_numpy()))
        scores.append(max(0.0, 1.0 - std / 2.0))
    return scores


def _recommendations(summary: PerformanceSummary) -> list[str]:
    recs: list[str] = []
    if summary.mean_time_delta_s > 0.5:
        recs.append(
            f"Focus on reducing lap time: currently {summary.mean_time_delta_s:.2f}s "
            "slower than reference"
        )
    if summary.mean_speed_delta_kph < -5:
        recs.append(
            "Work on carrying more speed: average deficit of "
            f"{abs(summary.mean_speed_delta_kph):.1f} km/h"
        )
    if summary.throttle and summary.throttle.problematic_sections > RECOMMENDATION_MIN_SECTIONS:
        recs.append("Focus on throttle application in the sections where it falls short")
    if summary.brake and summary.brake.problematic_sections > RECOMMENDATION_MIN_SECTIONS:
        recs.append("Work on braking technique and brake point placement")
    if summary.steering and summary.steering.problematic_sections > RECOMMENDATION_MIN_SECTIONS:
        recs.append("Improve steering smoothness and avoid excessive inputs")
    for cat in summary.categories[:3]:
        recs.append(
            f"Priority improvement: {cat.category.value} "
            f"(potential gain {cat.total_potential_gain_s:.2f}s)"
        )
    if summary.consistency_score < RECOMMENDATION_CONSISTENCY:
        recs.append(f"Focus on consistency: current score {summary.consistency_score:.1f}%")
    return recs


def analyze_performance(comparisons: Sequence[ComparisonResult]) -> PerformanceSummary:
    """Summarise a lap's (or session's) comparison results.

    Parameters
    ----------
    comparisons:
        Accepted comparison results, e.g. from
        :meth:`ComparisonEngine.current_lap_comparisons`.

    Returns
    -------
    PerformanceSummary
        Time and speed aggregates, per-input analysis, improvement categories
        ordered by total potential gain, segment consistency and canned
        recommendations.  All zero for empty input.
    """
    if not comparisons:
        return PerformanceSummary()

    df = _comparisons_to_frame(comparisons)
    time_delta = df["time_delta"]
    speed_delta = df["speed_delta"]

    summary = PerformanceSummary(
        total_comparisons=len(df),
        mean_time_delta_s=float(time_delta.mean()),
        total_time_lost_s=float(time_delta[time_delta > 0].sum()),
        total_time_gained_s=abs(float(time_delta[time_delta < 0].sum())),
        mean_speed_delta_kph=float(speed_delta.mean()),
        max_speed_deficit_kph=float(min(0.0, speed_delta.min())),
        max_speed_advantage_kph=float(max(0.0, speed_delta.max())),
    )

    for name, (floor, problematic) in INPUT_THRESHOLDS.items():
        setattr(summary, name, _analyze_input(df[name], floor, problematic))

    summary.categories = _summarize_categories(comparisons)

    scores = _segment_consistency(df)
    if scores:
        summary.consistency_score = float(np.mean(scores)) * 100.0
        summary.consistent_sections = sum(1 for s in scores if s > CONSISTENT_SCORE)
        summary.inconsistent_sections = sum(1 for s in scores if s < INCONSISTENT_SCORE)

    summary.recommendations = _recommendations(summary)
    return summary
