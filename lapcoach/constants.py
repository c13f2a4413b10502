"""Shared constants for the lapcoach telemetry engine.

Centralises conversion factors and magic numbers used across multiple modules.
"""

from __future__ import annotations

# Speed conversion: meters per second → kilometers per hour
MPS_TO_KPH: float = 3.6
KPH_TO_MPS: float = 1.0 / MPS_TO_KPH

# Deltas smaller than this (seconds) are treated as neither loss nor gain
SEGMENT_DELTA_THRESHOLD_S: float = 0.1
