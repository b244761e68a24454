#!/usr/bin/env python3
"""
Ratio Math Module

Cents arithmetic shared by every solver stage.

Key functions:
- ratio_to_cents() / cents_to_ratio(): log-domain conversion
- wrap_to_cycle() / signed_wrap_diff(): circular arithmetic on a cycle (octave)
- reduce_ratio() / parse_ratio(): rational normalisation
- nearest_step_for_ratio() / build_equal_temperament(): N-EDO helpers
- cents_to_ratio_approx(): simple rational name for a cents value

wrap_to_cycle and signed_wrap_diff accept scalars or numpy arrays.
"""

import math
import re
from fractions import Fraction
from typing import List, Tuple

import numpy as np

from solver_types import InvalidInput, RatioSpec


NOTE_NAMES_12 = ["C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"]

CENTS_PER_OCTAVE = 1200.0

_RATIO_PATTERN = re.compile(r"^\s*(\d+)\s*[/:]\s*(\d+)\s*$")


# =============================================================================
# Cents conversion
# =============================================================================

def ratio_to_cents(n: int, d: int) -> float:
    """
    Convert the frequency ratio n/d to cents (1200 * log2(n/d)).

    Raises:
        InvalidInput: if n or d is not positive (d == 0 included)
    """
    if d == 0:
        raise InvalidInput(f"Ratio {n}/{d} has a zero denominator")
    if n <= 0 or d <= 0:
        raise InvalidInput(f"Ratio {n}/{d} must have positive terms")
    return CENTS_PER_OCTAVE * math.log2(n / d)


def spec_to_cents(ratio: RatioSpec) -> float:
    return ratio_to_cents(ratio.n, ratio.d)


def cents_to_ratio(cents: float) -> float:
    """Inverse of ratio_to_cents: the frequency ratio for a cents value."""
    return 2.0 ** (cents / CENTS_PER_OCTAVE)


# =============================================================================
# Circular arithmetic
# =============================================================================

def wrap_to_cycle(cents, cycle: float):
    """
    Reduce cents into [0, cycle).

    Floating point can turn a tiny negative value into exactly `cycle`
    after the modulo; that case folds back to 0.
    """
    wrapped = np.mod(cents, cycle)
    if np.ndim(wrapped) == 0:
        wrapped = float(wrapped)
        return 0.0 if wrapped >= cycle else wrapped
    return np.where(wrapped >= cycle, 0.0, wrapped)


def signed_wrap_diff(actual, target, cycle: float):
    """
    Shortest signed circular distance from target to actual, in (-cycle/2, cycle/2].
    """
    diff = wrap_to_cycle(np.subtract(actual, target), cycle)
    half = cycle / 2.0
    if np.ndim(diff) == 0:
        return diff - cycle if diff > half else diff
    return np.where(diff > half, diff - cycle, diff)


# =============================================================================
# Rational normalisation
# =============================================================================

def reduce_ratio(n: int, d: int) -> Tuple[int, int]:
    """Divide n/d by its gcd. Raises InvalidInput for non-positive terms."""
    if d == 0:
        raise InvalidInput(f"Ratio {n}/{d} has a zero denominator")
    if n <= 0 or d <= 0:
        raise InvalidInput(f"Ratio {n}/{d} must have positive terms")
    g = math.gcd(n, d)
    return n // g, d // g


def parse_ratio(text: str) -> RatioSpec:
    """
    Parse "3/2" (or "3:2") into a reduced RatioSpec labelled with its reduced form.

    Raises:
        InvalidInput: on malformed text or a zero/negative term
    """
    m = _RATIO_PATTERN.match(text)
    if not m:
        raise InvalidInput(f"Cannot parse ratio '{text}' (expected n/d)")
    n, d = reduce_ratio(int(m.group(1)), int(m.group(2)))
    return RatioSpec(n=n, d=d, label=f"{n}/{d}")


def cents_to_ratio_approx(cents: float, max_den: int = 1024) -> str:
    """Closest rational (denominator <= max_den) to a cents value, as 'p/q'."""
    frac = Fraction(cents_to_ratio(cents)).limit_denominator(max_den)
    return f"{frac.numerator}/{frac.denominator}"


# =============================================================================
# Equal-division helpers
# =============================================================================

def build_equal_temperament(n_notes: int, cycle: float) -> np.ndarray:
    """Equal division of the cycle: k * cycle / N for k in 0..N-1."""
    return np.arange(n_notes, dtype=float) * (cycle / n_notes)


def nearest_step_for_ratio(cents: float, n_notes: int, cycle: float) -> int:
    """Index of the N-EDO step closest to a cents value, reduced mod N."""
    step = cycle / n_notes
    return int(round(cents / step)) % n_notes


def degree_name(degree: int, n_notes: int) -> str:
    if n_notes == 12:
        return NOTE_NAMES_12[degree % 12]
    return f"deg{degree}"


def degree_names(n_notes: int) -> List[str]:
    return [degree_name(k, n_notes) for k in range(n_notes)]
