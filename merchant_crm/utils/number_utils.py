"""Rounding helpers for reported percentages and averages"""

import math


def round_half_up(value: float, ndigits: int = 0) -> float:
    """Round with halves going up (2.5 -> 3), unlike the built-in banker's rounding"""
    factor = 10 ** ndigits
    return math.floor(value * factor + 0.5) / factor


def percent(part: int, whole: int) -> int:
    """Whole-number percentage of ``part`` in ``whole``; 0 when ``whole`` is empty"""
    if whole <= 0:
        return 0
    return int(round_half_up(part / whole * 100))


def ratio_to_percent(ratio: float) -> int:
    """0.0-1.0 score as a whole-number percentage"""
    return int(round_half_up(ratio * 100))
