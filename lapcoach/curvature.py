"""Heading-based geometry: angle wrapping, circular mean, segment curvature, track direction.

All headings are in radians, counter-clockwise from +x in the horizontal
(x, y) plane, as produced by :attr:`TelemetrySample.heading_rad`.
"""

from __future__ import annotations

import numpy as np
from scipy.stats import circmean

from lapcoach.track import TrackDirection

DIRECTION_MAX_SAMPLES = 1000
DIRECTION_NOISE_LIMIT_RAD = 0.1  # larger per-sample changes are wrap/noise artefacts


def normalize_angle(angle: np.ndarray | float) -> np.ndarray:
    """Wrap angles into (-pi, pi]."""
    return np.pi - np.mod(np.pi - np.asarray(angle, dtype=np.float64), 2.0 * np.pi)


def heading_deltas(heading_rad: np.ndarray) -> np.ndarray:
    """Consecutive heading changes, wrapped into (-pi, pi]."""
    heading = np.asarray(heading_rad, dtype=np.float64)
    if len(heading) < 2:
        return np.empty(0, dtype=np.float64)
    return normalize_angle(np.diff(heading))


def mean_heading(heading_rad: np.ndarray) -> float:
    """Circular mean heading: direction of the summed unit vectors."""
    heading = np.asarray(heading_rad, dtype=np.float64)
    if len(heading) == 0:
        return 0.0
    return float(circmean(heading, high=np.pi, low=-np.pi))


def segment_curvature(heading_rad: np.ndarray) -> float:
    """Signed curvature proxy for one segment.

    Mean of the wrapped central heading differences ``h[i+1] - h[i-1]`` over
    interior samples, sign-flipped so that right-hand (clockwise) turns are
    positive.  Fewer than 3 samples yields 0.
    """
    heading = np.asarray(heading_rad, dtype=np.float64)
    if len(heading) < 3:
        return 0.0
    central = normalize_angle(heading[2:] - heading[:-2])
    return float(-np.mean(central))


def detect_direction(
    heading_rad: np.ndarray,
    max_samples: int = DIRECTION_MAX_SAMPLES,
    noise_limit_rad: float = DIRECTION_NOISE_LIMIT_RAD,
) -> TrackDirection:
    """Infer the direction of travel around the circuit.

    Sums the small (``|d| < noise_limit_rad``) heading changes over the first
    *max_samples* samples.  A net counter-clockwise rotation means the track is
    driven counter-clockwise.
    """
    deltas = heading_deltas(np.asarray(heading_rad, dtype=np.float64)[:max_samples])
    small = deltas[np.abs(deltas) < noise_limit_rad]
    if float(np.sum(small)) > 0:
        return TrackDirection.counterclockwise
    return TrackDirection.clockwise
