"""Exception types raised by the lapcoach engine."""

from __future__ import annotations


class InsufficientDataError(ValueError):
    """Raised when an operation is given too little telemetry to produce a result."""
