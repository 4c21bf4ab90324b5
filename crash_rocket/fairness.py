# fairness.py
"""
Crash point derivation – deterministic from (seed, volatility level).

    r      = (first 56 bits of sha256(seed)) >> 4        # 52-bit fraction
    r_pow  = r ** level                                   # fixed point, >> 52 per multiply
    x100   = (10000 - EDGE) * 100 * 2**52 // (10000 * (2**52 - r_pow))
    x100   = clamp(x100, 100, 50000)

Everything after the hash is exact integer arithmetic. Floats would make the
result platform dependent, so they never touch r, r_pow or the division.
Level 1 gives the widest spread of outcomes, level 5 the narrowest.
"""

from __future__ import annotations

import asyncio
import logging
import math

from crash_rocket.utils import clamp, sha256_digest

logger = logging.getLogger("crash_rocket.fairness")

# =========================
# CONSTANTS
# =========================

FRACTION_BITS = 52
B52 = 1 << FRACTION_BITS

HOUSE_EDGE_BPS = 350  # 3.50%
BPS_SCALE = 10000

MIN_X100 = 100     # 1.00x
MAX_X100 = 50000   # 500.00x

MIN_LEVEL = 1
MAX_LEVEL = 5


# =========================
# VOLATILITY
# =========================

def volatility_level(vol: float) -> int:
    """
    Map a volatility fraction in [0, 1] to a level 1..5.

    0.0 -> 5 (low variance), 1.0 -> 1 (high variance). Rounds half up so
    that 0.125 lands on level 4, not level 5.
    """
    return clamp(5 - int(math.floor(vol * 4 + 0.5)), MIN_LEVEL, MAX_LEVEL)


# =========================
# DERIVATION
# =========================

def int52_from_seed(seed: str) -> int:
    """Leading 56 bits of sha256(seed), shifted down to a 52-bit fraction."""
    digest = sha256_digest(seed)
    return int.from_bytes(digest[:7], "big") >> 4


def crash_x100_from_int52(r: int, level: int) -> int:
    """Crash multiplier (x100) for a 52-bit fraction ``r`` at ``level``."""
    r_pow = r
    for _ in range(1, level):
        r_pow = (r_pow * r) >> FRACTION_BITS

    denom = B52 - r_pow
    if denom <= 0:
        # unreachable while r < 2**52; kept as a floor
        return MIN_X100

    numerator = (BPS_SCALE - HOUSE_EDGE_BPS) * 100 * B52
    x100 = numerator // (BPS_SCALE * denom)
    return clamp(x100, MIN_X100, MAX_X100)


def derive_crash_x100(seed: str, level: int) -> int:
    """Pure, total: same (seed, level) always yields the same crash point."""
    return crash_x100_from_int52(int52_from_seed(seed), level)


async def derive_crash_x100_async(seed: str, level: int) -> int:
    """
    Awaitable derivation used during round preparation.
    The hash runs off the event loop; no round state is touched here.
    """
    x100 = await asyncio.to_thread(derive_crash_x100, seed, level)
    logger.debug(f"Derived crash point x{x100 / 100:.2f} (level {level})")
    return x100
