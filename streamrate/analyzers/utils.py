"""Numeric helpers shared by the stream analyzers.

Tail probabilities come from :mod:`scipy.special` (Cephes based), whose
``erfc``, ``gammaincc``, ``pdtr`` and ``pdtrc`` are accurate to a few units in
the last place over the ranges used here.  Combining several p-values uses the
Šidák correction evaluated through ``log1p``/``expm1`` so tiny p-values do not
round to zero.
"""

from __future__ import annotations

import math
from typing import Iterable

from scipy import special


def clamp_probability(value: float) -> float:
    """Clamp ``value`` into ``[0, 1]``."""

    return max(0.0, min(1.0, float(value)))


def normal_two_sided(z: float) -> float:
    """Two-sided standard normal tail probability ``P(|Z| >= |z|)``."""

    return clamp_probability(special.erfc(abs(z) / math.sqrt(2.0)))


def chi_square_sf(statistic: float, degrees_of_freedom: int) -> float:
    """Return the chi-square survival function via the regularised gamma function."""

    if degrees_of_freedom <= 0:
        raise ValueError("Degrees of freedom must be positive.")
    if statistic <= 0:
        return 1.0
    return clamp_probability(special.gammaincc(degrees_of_freedom / 2.0, statistic / 2.0))


def poisson_two_sided(observed: int, rate: float) -> float:
    """Two-sided Poisson tail: ``2 * min(P(X <= k), P(X >= k))`` capped at 1."""

    if rate <= 0:
        return 1.0
    lower = special.pdtr(observed, rate)
    upper = special.pdtrc(observed - 1, rate) if observed > 0 else 1.0
    return clamp_probability(2.0 * min(lower, upper))


def sidak(p_values: Iterable[float]) -> float:
    """Šidák-corrected minimum of independent p-values."""

    values = [clamp_probability(p) for p in p_values]
    if not values:
        raise ValueError("At least one p-value is required.")
    p_min = min(values)
    if p_min >= 1.0:
        return 1.0
    return clamp_probability(-math.expm1(len(values) * math.log1p(-p_min)))


__all__ = [
    "chi_square_sf",
    "clamp_probability",
    "normal_two_sided",
    "poisson_two_sided",
    "sidak",
]
