"""Formatting helpers for handicap values shown to golfers."""

from __future__ import annotations

from typing import Any, Optional

from .handicap import MIN_ROUNDS, HandicapIndex, InsufficientDataResult


def _value(handicap: Any) -> Optional[float]:
    if handicap is None or isinstance(handicap, InsufficientDataResult):
        return None
    if isinstance(handicap, HandicapIndex):
        return handicap.value
    return float(handicap)


def format_handicap(handicap: Any) -> str:
    """Return the display label for an index, e.g. ``Scratch`` or ``+1.4``."""
    value = _value(handicap)
    if value is None:
        return "N/A"
    if value == 0:
        return "Scratch"
    if value < 0:
        # plus handicaps are shown with a leading "+"
        return f"+{abs(value):.1f}"
    return f"{value:.1f}"


def handicap_color(handicap: Any) -> str:
    value = _value(handicap)
    if value is None:
        return "default"
    if value <= 0:
        return "success"
    if value <= 10:
        return "primary"
    if value <= 20:
        return "secondary"
    return "warning"


def format_differential(value: float) -> str:
    return f"+{value:.1f}" if value >= 0 else f"{value:.1f}"


def differential_color(value: float) -> str:
    if value <= 0:
        return "success"
    if value <= 10:
        return "warning"
    return "error"


def trend(current: Optional[float], previous: Optional[float]) -> Optional[str]:
    """Compare two chronological values; lower means the golfer improved."""
    if current is None or previous is None:
        return None
    if current < previous:
        return "down"
    if current > previous:
        return "up"
    return "flat"


def can_calculate_handicap(round_count: int) -> bool:
    return round_count >= MIN_ROUNDS


__all__ = [
    "can_calculate_handicap",
    "differential_color",
    "format_differential",
    "format_handicap",
    "handicap_color",
    "trend",
]
