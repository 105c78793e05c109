"""Rational approximations used by the metadata writers."""
from __future__ import annotations

import math
from typing import Tuple

FRACTION_EPSILON = 1.0e-6


def fraction(value: float, epsilon: float = FRACTION_EPSILON) -> Tuple[int, int]:
    """Approximate a float as a small (numerator, denominator) pair.

    Walks the continued-fraction expansion of ``value`` and stops once the
    convergent ``h/k`` is within ``epsilon * k**2`` of the remaining term.

    Args:
        value: Value to approximate.
        epsilon: Relative tolerance of the expansion.

    Returns:
        Tuple of (numerator, denominator); the denominator is positive.
    """
    x = value
    a = math.floor(x)
    h1, k1 = 1, 0
    h, k = int(a), 1

    while x - a > epsilon * k * k:
        x = 1.0 / (x - a)
        a = math.floor(x)
        h1, k1, h, k = h, k, h1 + int(a) * h, k1 + int(a) * k

    return h, k


def rounding(value: float, places: int) -> float:
    """Round half away from zero to a fixed number of decimal places."""
    divisor = 10.0 ** places
    scaled = value * divisor
    rounded = math.floor(abs(scaled) + 0.5)
    return math.copysign(rounded, scaled) / divisor


def fraction_string(value: float, places: int = 5) -> str:
    """Format a value as ``"num/den"`` after rounding to ``places`` decimals."""
    num, den = fraction(rounding(value, places))
    return f"{num}/{den}"
