#!/usr/bin/env python3
"""
Rank-2 Temperament Solver (Mode A / "regular")

Models every target interval as a combination of one generator g and one
period p:

    ideal_cents ~= g * generator_steps + p * period_steps

Two-stage approach:
1. Integer scan: place each target on the chain of pure fifths
   (k in [-GENERATOR_SCAN_LIMIT, GENERATOR_SCAN_LIMIT]) to get its steps
2. Weighted least squares: solve the 2x2 normal equations for (g, p) in
   closed form, with a synthetic octave anchor whose weight follows the
   octave stiffness

Recovery paths (never fatal):
- ill-conditioned system -> fall back to (pure fifth, cycle)
- period outside the band -> clamp it and re-solve g with p held fixed

The scale itself is N consecutive links of the generator chain.
"""

import math
from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from key_skeleton import classify_kind, match_skeleton
from octa_weighting import clamp, weighted_anchor_targets
from ratio_math import (
    nearest_step_for_ratio,
    ratio_to_cents,
    signed_wrap_diff,
    wrap_to_cycle,
)
from solver_types import (
    DEFAULT_TARGETS,
    IntervalError,
    Rank2Constraint,
    Rank2Result,
    RatioSpec,
    SolverDiagnostic,
    SolverInput,
)


# =============================================================================
# Constants
# =============================================================================

# Pure fifth: reference generator for the integer scan and the fallback solution
REF_GENERATOR_CENTS = 1200.0 * math.log2(3.0 / 2.0)

# Largest |k| tried when placing a target on the fifths chain
GENERATOR_SCAN_LIMIT = 31

# Octave-anchor weight at stiffness 0 and 1
ANCHOR_WEIGHT_MIN = 0.1
ANCHOR_WEIGHT_MAX = 100.0

# The solved period must stay within cycle +/- this many cents
PERIOD_BAND_CENTS = 10.0

# Normal equations above this condition number are treated as singular
CONDITION_LIMIT = 1e10

# Per-ratio weights at or below this are ignored
TARGET_WEIGHT_FLOOR = 0.001

PERIOD_STRETCH_WARNING_CENTS = 10.0


class Rank2Scale(NamedTuple):
    result: Rank2Result
    constraints: List[Rank2Constraint]
    cents: np.ndarray           # wrapped chain positions, chain order
    absolute_cents: np.ndarray  # unwrapped chain positions, chain order
    period_optimized: bool


# =============================================================================
# Integer scan
# =============================================================================

def estimate_generator_steps(ideal_cents: float,
                             ref_generator: float = REF_GENERATOR_CENTS,
                             cycle: float = 1200.0,
                             scan_limit: int = GENERATOR_SCAN_LIMIT) -> int:
    """
    Number of reference generators (k != 0, |k| <= scan_limit) whose stack
    lands circularly closest to ideal_cents. Ties keep the first k scanned.
    """
    best_step = 1
    min_diff = float('inf')
    for k in range(-scan_limit, scan_limit + 1):
        if k == 0:
            continue
        generated = wrap_to_cycle(k * ref_generator, cycle)
        diff = abs(signed_wrap_diff(generated, ideal_cents, cycle))
        if diff < min_diff:
            min_diff = diff
            best_step = k
    return best_step


def estimate_period_steps(ideal_cents: float, generator_steps: int,
                          ref_generator: float = REF_GENERATOR_CENTS,
                          cycle: float = 1200.0) -> int:
    """Whole periods needed so that k*g + o*p lands on ideal_cents."""
    if generator_steps == 0:
        return 0
    return int(round((ideal_cents - generator_steps * ref_generator) / cycle))


def build_rank2_constraint(label: str, n: int, d: int, weight: float,
                           cycle: float = 1200.0,
                           anchor_id: Optional[str] = None,
                           scan_limit: int = GENERATOR_SCAN_LIMIT) -> Rank2Constraint:
    ideal = wrap_to_cycle(ratio_to_cents(n, d), cycle)
    gen_steps = estimate_generator_steps(ideal, REF_GENERATOR_CENTS, cycle, scan_limit)
    return Rank2Constraint(
        label=label,
        n=n,
        d=d,
        weight=weight,
        ideal_cents=ideal,
        generator_steps=gen_steps,
        period_steps=estimate_period_steps(ideal, gen_steps, REF_GENERATOR_CENTS, cycle),
        anchor_id=anchor_id,
    )


# =============================================================================
# Target construction
# =============================================================================

def _weighted_targets(inp: SolverInput,
                      diagnostics: List[SolverDiagnostic]) -> List[Tuple[str, int, int, float, Optional[str]]]:
    """(label, n, d, weight, anchor_id) for every Mode A target."""
    if inp.octa_weighting is not None:
        out = []
        for anchor, w in weighted_anchor_targets(inp.octa_weighting):
            if w > 0.0:
                label = f"{anchor.label or anchor.id} ({anchor.n}/{anchor.d})"
                out.append((label, anchor.n, anchor.d, w, anchor.id))
        return out

    targets = inp.targets
    if not targets:
        targets = DEFAULT_TARGETS
        diagnostics.append(SolverDiagnostic(
            level="info",
            code="default_targets",
            message="No targets given; using 3/2 and 5/4",
        ))

    weights = inp.target_weights or {}
    if any(w > TARGET_WEIGHT_FLOOR for w in weights.values()):
        out = [(t.display, t.n, t.d, weights[t.key], None)
               for t in targets if weights.get(t.key, 0.0) > TARGET_WEIGHT_FLOOR]
        if out:
            return out

    equal = 1.0 / len(targets)
    return [(t.display, t.n, t.d, equal, None) for t in targets]


def build_mode_a_constraints(inp: SolverInput,
                             diagnostics: List[SolverDiagnostic]) -> List[Rank2Constraint]:
    """
    Rank-2 constraints for the target set, weights normalised to sum 1.
    Targets equivalent to the period (unison/octave) carry no generator
    information and are skipped.
    """
    cycle = inp.cycle_cents
    constraints = []
    for label, n, d, weight, anchor_id in _weighted_targets(inp, diagnostics):
        c = build_rank2_constraint(label, n, d, weight, cycle, anchor_id)
        if abs(signed_wrap_diff(c.ideal_cents, 0.0, cycle)) < 1e-9:
            diagnostics.append(SolverDiagnostic(
                level="info",
                code="skipped_constraint",
                message=f"Ratio {n}/{d} is a multiple of the period; skipped",
                context={"ratio": f"{n}/{d}"},
            ))
            continue
        constraints.append(c)

    if not constraints:
        constraints = [build_rank2_constraint("3/2", 3, 2, 1.0, cycle)]

    total = sum(c.weight for c in constraints)
    for c in constraints:
        c.weight = c.weight / total
    return constraints


# =============================================================================
# Weighted least squares
# =============================================================================

def create_octave_anchor(octave_stiffness: float, cycle: float = 1200.0) -> Rank2Constraint:
    """Pure period constraint; weight interpolates ANCHOR_WEIGHT_MIN..MAX."""
    stiffness = clamp(octave_stiffness, 0.0, 1.0)
    weight = ANCHOR_WEIGHT_MIN + stiffness * (ANCHOR_WEIGHT_MAX - ANCHOR_WEIGHT_MIN)
    return Rank2Constraint(
        label="2/1 (Octave Anchor)",
        n=2,
        d=1,
        weight=weight,
        ideal_cents=cycle,
        generator_steps=0,
        period_steps=1,
    )


def solve_normal_equations(X: np.ndarray, W: np.ndarray,
                           Y: np.ndarray) -> Optional[Tuple[Tuple[float, float], float]]:
    """
    Closed-form solve of (X^T W X) beta = X^T W Y for the 2-parameter model.

    Returns:
        ((g, p), condition_number), or None when the system is singular or
        its condition number exceeds CONDITION_LIMIT
    """
    if X.shape[0] == 0:
        return None
    XtWX = X.T @ (W[:, None] * X)
    XtWY = X.T @ (W * Y)

    with np.errstate(divide='ignore', invalid='ignore'):
        cond = float(np.linalg.cond(XtWX))
    if not np.isfinite(cond) or cond > CONDITION_LIMIT:
        return None

    (a, b), (c, d) = XtWX
    det = a * d - b * c
    if abs(det) < 1e-10:
        return None
    g = (d * XtWY[0] - b * XtWY[1]) / det
    p = (a * XtWY[1] - c * XtWY[0]) / det
    return (float(g), float(p)), cond


def optimize_generator_with_fixed_period(constraints: Sequence[Rank2Constraint],
                                         fixed_period: float) -> Optional[float]:
    """
    1-D weighted least squares for g with p held fixed.
    Returns None when no constraint involves the generator.
    """
    sum_wss = 0.0
    sum_wsy = 0.0
    for c in constraints:
        s = c.generator_steps
        adjusted_target = c.ideal_cents - c.period_steps * fixed_period
        sum_wss += c.weight * s * s
        sum_wsy += c.weight * s * adjusted_target
    if abs(sum_wss) < 1e-10:
        return None
    return sum_wsy / sum_wss


def compute_residuals(constraints: Sequence[Rank2Constraint], g: float, p: float) -> List[float]:
    """Predicted minus ideal cents for each constraint."""
    return [c.generator_steps * g + c.period_steps * p - c.ideal_cents for c in constraints]


def solve_wls(constraints: Sequence[Rank2Constraint],
              octave_stiffness: float = 1.0,
              cycle: float = 1200.0,
              fallback_generator: float = REF_GENERATOR_CENTS) -> Rank2Result:
    """
    Solve for generator and period.

    Stiffness 1 pins the period to the cycle and fits g alone; anything lower
    frees the period against the octave anchor. Residuals cover the given
    constraints followed by the anchor.
    """
    anchor = create_octave_anchor(octave_stiffness, cycle)
    all_constraints = list(constraints) + [anchor]

    if octave_stiffness >= 1.0:
        g = optimize_generator_with_fixed_period(all_constraints, cycle)
        degenerate = g is None
        if degenerate:
            g = fallback_generator
        return Rank2Result(
            generator_cents=g,
            period_cents=cycle,
            residuals=compute_residuals(all_constraints, g, cycle),
            condition_number=1.0 if not degenerate else float('inf'),
            was_clamped=False,
            degenerate=degenerate,
        )

    X = np.array([[c.generator_steps, c.period_steps] for c in all_constraints], dtype=float)
    W = np.array([c.weight for c in all_constraints], dtype=float)
    Y = np.array([c.ideal_cents for c in all_constraints], dtype=float)

    solved = solve_normal_equations(X, W, Y)
    if solved is None:
        return Rank2Result(
            generator_cents=fallback_generator,
            period_cents=cycle,
            residuals=compute_residuals(all_constraints, fallback_generator, cycle),
            condition_number=float('inf'),
            was_clamped=False,
            degenerate=True,
        )

    (g, p), cond = solved
    was_clamped = False
    period_min = cycle - PERIOD_BAND_CENTS
    period_max = cycle + PERIOD_BAND_CENTS
    if p < period_min or p > period_max:
        was_clamped = True
        p = clamp(p, period_min, period_max)
        refit = optimize_generator_with_fixed_period(all_constraints, p)
        g = refit if refit is not None else fallback_generator

    return Rank2Result(
        generator_cents=g,
        period_cents=p,
        residuals=compute_residuals(all_constraints, g, p),
        condition_number=cond,
        was_clamped=was_clamped,
    )


# =============================================================================
# Scale construction
# =============================================================================

def chain_start_index(n_notes: int, flats: int, wolf_edge_index: Optional[int] = None) -> int:
    """
    How many links of the chain sit below the tonic.

    Auto placement follows the number of flats; a manual wolf edge e puts
    the break between chain positions N-1-e and N-e.
    """
    if wolf_edge_index is not None:
        edge = int(clamp(round(wolf_edge_index), 0, n_notes - 1))
        return (n_notes - 1 - edge) % n_notes
    return int(clamp(round(flats), 0, n_notes - 1))


def build_generator_chain(n_notes: int, generator: float, period: float,
                          start: int = 0) -> Tuple[np.ndarray, np.ndarray]:
    """
    Positions (k - start) * g for k in 0..N-1.

    Returns:
        (wrapped cents in [0, period), unwrapped cents)
    """
    offsets = np.arange(n_notes, dtype=float) - start
    absolute = offsets * generator
    return wrap_to_cycle(absolute, period), absolute


def solve_rank2_scale(inp: SolverInput,
                      diagnostics: List[SolverDiagnostic]) -> Rank2Scale:
    """
    Mode A end to end up to (but not including) sorting: constraints,
    generator/period solve, and the generator chain.
    """
    constraints = build_mode_a_constraints(inp, diagnostics)
    stiffness = inp.octave_stiffness
    result = solve_wls(constraints, stiffness, inp.cycle_cents)

    if result.degenerate:
        diagnostics.append(SolverDiagnostic(
            level="warning",
            code="numeric_degeneracy",
            message="Singular rank-2 system; falling back to pure fifth and nominal period",
            context={"generator_cents": result.generator_cents, "period_cents": result.period_cents},
        ))
    if result.was_clamped:
        diagnostics.append(SolverDiagnostic(
            level="warning",
            code="period_clamped",
            message=f"Solved period clamped to {result.period_cents:.3f} cents",
            context={"period_cents": result.period_cents},
        ))

    start = chain_start_index(inp.scale_size, inp.key_specificity.flats, inp.wolf_edge_index)
    cents, absolute = build_generator_chain(
        inp.scale_size, result.generator_cents, result.period_cents, start)
    return Rank2Scale(result, constraints, cents, absolute, period_optimized=stiffness < 1.0)


def rank2_interval_errors(constraints: Sequence[Rank2Constraint], cents: Sequence[float],
                          period: float, skeleton: Dict[Tuple[int, int, str], int]) -> List[IntervalError]:
    """
    Residual of every target at every degree of the finished (sorted) scale.
    Degree i is paired with i + nearest N-EDO step of the target.
    """
    n_notes = len(cents)
    intervals = []
    for c in constraints:
        step = nearest_step_for_ratio(c.ideal_cents, n_notes, period)
        kind = classify_kind(c.ideal_cents)
        target = RatioSpec(n=c.n, d=c.d, label=c.label)
        for i in range(n_notes):
            j = (i + step) % n_notes
            actual = wrap_to_cycle(cents[j] - cents[i], period)
            is_skel, key_tonic = match_skeleton(skeleton, i, j, kind)
            intervals.append(IntervalError(
                i=i,
                j=j,
                step=step,
                target=target,
                target_cents=c.ideal_cents,
                actual_cents=actual,
                error_cents=signed_wrap_diff(actual, c.ideal_cents, period),
                weight=c.weight,
                kind=kind,
                is_skeleton=is_skel,
                key_tonic=key_tonic,
                anchor_id=c.anchor_id,
                base_weight=c.weight,
            ))
    return intervals
