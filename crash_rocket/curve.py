# curve.py
"""
Multiplier-time curve.

    multiplier(t) = 1 + A * t_seconds ** B

Both directions are pure; the engine converts the crash multiplier to a
crash instant once per round and converts elapsed time to a displayed
multiplier on every tick.
"""

from __future__ import annotations

import math

CURVE_A = 0.62
CURVE_B = 1.25


def multiplier_at(elapsed_ms: float) -> float:
    """Multiplier after ``elapsed_ms`` of flight (negative time clamps to 0)."""
    t = max(0.0, elapsed_ms) / 1000.0
    return 1.0 + CURVE_A * math.pow(t, CURVE_B)


def time_for_multiplier(mult: float) -> float:
    """Inverse of multiplier_at, in milliseconds. Multipliers below 1 clamp to 1."""
    x = max(0.0, (max(1.0, mult) - 1.0) / CURVE_A)
    return math.pow(x, 1.0 / CURVE_B) * 1000.0


def floor_x100(mult: float) -> int:
    """Truncate a multiplier to hundredths, scaled by 100. Never rounds up."""
    return int(math.floor(mult * 100))


def first_ms_at_x100(x100: int) -> int:
    """
    First whole millisecond at or after the instant the curve reaches ``x100``.
    A host recomputing floor_x100(multiplier_at(ms)) gets back ``x100``.
    """
    ms = math.ceil(time_for_multiplier(x100 / 100))
    while floor_x100(multiplier_at(ms)) < x100:
        ms += 1
    return ms
