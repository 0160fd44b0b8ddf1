"""Numeric helpers shared by the calibration engine."""

import math


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def round_half_up(value: float) -> int:
    """Round to the nearest integer, .5 going up (towards +inf).

    The builtin round() uses banker's rounding, which turns 6.5 into 6.
    """
    return int(math.floor(value + 0.5))
