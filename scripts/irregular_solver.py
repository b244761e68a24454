#!/usr/bin/env python3
"""
Irregular Temperament Solver (Mode B / "irregular")

Finds N free degree positions (an irregular, well-temperament-like scale) by
iteratively reweighted least squares over a constraint graph:

1. Every degree pair (i, j) whose step distance matches a target's nearest
   N-EDO step becomes one constraint
2. Constraint weights favour the harmonic skeleton of the active keys and
   decay with distance from the tonic
3. A damped gradient descent from the equal division minimises the weighted
   squared circular error; IRLS rounds then boost the worst non-skeleton
   constraints and solve again

Tunables are the module constants below. The defaults reproduce the fixed
iteration budget; pass a convergence tolerance to stop early instead.
"""

from typing import List, NamedTuple, Optional, Sequence

import numpy as np

from key_skeleton import (
    build_skeleton,
    classify_kind,
    key_distance_weight,
    match_skeleton,
    skeleton_lookup,
)
from octa_weighting import clamp
from ratio_math import (
    build_equal_temperament,
    nearest_step_for_ratio,
    signed_wrap_diff,
    spec_to_cents,
    wrap_to_cycle,
)
from solver_types import (
    CURVE_GRADUAL,
    DEFAULT_TARGETS,
    IntervalError,
    RatioSpec,
    SolverDiagnostic,
    SolverInput,
)


# =============================================================================
# Solver parameters
# =============================================================================

# Gradient descent iterations per solve
GRADIENT_ITERATIONS = 220

# Step size of each gradient update (cents per unit gradient)
LEARNING_RATE = 0.00035

# Number of solve + reweight rounds
IRLS_ROUNDS = 6

# Fraction of the way each position moves back toward the equal division per iteration
BASELINE_BLEND = 0.02

# Constraint weighting
SKELETON_WEIGHT = 5.0
DEFAULT_WEIGHT = 1.0
KEY_DISTANCE_DECAY = 0.15
GRADUAL_CURVE_SCALE = 0.7

# A target whose best N-EDO step misses by more than this many tolerances is a poor fit
POOR_FIT_FACTOR = 2.0
POOR_FIT_PENALTY = 0.3

# IRLS weight update: w = base * (1 + gain * (|e| / max|e|)^2), clamped
IRLS_GAIN = 2.5
IRLS_WEIGHT_MIN = 0.25
IRLS_WEIGHT_MAX = 12.0

# Final errors beyond this many global tolerances are reported
LARGE_ERROR_FACTOR = 2.0


class TargetInfo(NamedTuple):
    ratio: RatioSpec
    target_cents: float
    step: int
    kind: str
    poor_fit: bool


# =============================================================================
# Constraint construction
# =============================================================================

def analyze_targets(targets: Sequence[RatioSpec], n_notes: int, cycle: float,
                    global_tolerance: float,
                    diagnostics: List[SolverDiagnostic]) -> List[TargetInfo]:
    """
    Kind, nearest N-EDO step and poor-fit flag for every target.
    A poor fit is reported as a warning and later down-weighted.
    """
    step_cents = cycle / n_notes
    infos = []
    for ratio in targets:
        cents = spec_to_cents(ratio)
        target_cents = wrap_to_cycle(cents, cycle)
        step = nearest_step_for_ratio(cents, n_notes, cycle)
        error = abs(signed_wrap_diff(step * step_cents, target_cents, cycle))
        tolerance = ratio.tolerance if ratio.tolerance is not None else global_tolerance

        poor_fit = error > tolerance * POOR_FIT_FACTOR
        if poor_fit:
            diagnostics.append(SolverDiagnostic(
                level="warning",
                code="poor_fit",
                message=f"Ratio {ratio.key} has poor approximation in {n_notes}-EDO",
                context={"ratio": ratio.key, "error": round(error, 1), "tolerance": tolerance},
            ))
        infos.append(TargetInfo(ratio, target_cents, step, classify_kind(cents), poor_fit))
    return infos


def build_mode_b_constraints(inp: SolverInput,
                             diagnostics: List[SolverDiagnostic]) -> List[IntervalError]:
    """
    One constraint per (i, j, target) with matching step distance.

    Weight = (SKELETON_WEIGHT if skeleton else DEFAULT_WEIGHT)
             * exp(-KEY_DISTANCE_DECAY * average key distance),
    times POOR_FIT_PENALTY for poor fits and GRADUAL_CURVE_SCALE for
    non-skeleton pairs under the gradual curve.
    """
    n_notes = inp.scale_size
    cycle = inp.cycle_cents
    key = inp.key_specificity
    tonic = key.tonic % n_notes

    targets = inp.targets
    if not targets:
        targets = DEFAULT_TARGETS
        diagnostics.append(SolverDiagnostic(
            level="info",
            code="default_targets",
            message="No targets given; using 3/2 and 5/4",
        ))

    infos = analyze_targets(targets, n_notes, cycle, inp.global_tolerance_cents, diagnostics)
    skeleton = skeleton_lookup(build_skeleton(tonic, key.flats, key.sharps, n_notes, cycle))
    gradual = inp.curve_shape == CURVE_GRADUAL

    constraints = []
    for i in range(n_notes):
        for j in range(n_notes):
            if i == j:
                continue
            step = (j - i) % n_notes
            for info in infos:
                if step != info.step:
                    continue
                is_skel, key_tonic = match_skeleton(skeleton, i, j, info.kind)
                weight = (SKELETON_WEIGHT if is_skel else DEFAULT_WEIGHT) * \
                    key_distance_weight(i, j, tonic, n_notes, KEY_DISTANCE_DECAY)
                if info.poor_fit:
                    weight *= POOR_FIT_PENALTY
                if gradual and not is_skel:
                    weight *= GRADUAL_CURVE_SCALE

                constraints.append(IntervalError(
                    i=i,
                    j=j,
                    step=step,
                    target=info.ratio,
                    target_cents=info.target_cents,
                    actual_cents=0.0,
                    error_cents=0.0,
                    weight=weight,
                    kind=info.kind,
                    is_skeleton=is_skel,
                    key_tonic=key_tonic,
                    tolerance_cents=info.ratio.tolerance,
                    base_weight=weight,
                ))
    return constraints


# =============================================================================
# Weighted least squares by gradient descent
# =============================================================================

def solve_positions(n_notes: int, cycle: float, constraints: Sequence[IntervalError],
                    iterations: int = GRADIENT_ITERATIONS,
                    learning_rate: float = LEARNING_RATE,
                    blend: float = BASELINE_BLEND,
                    tolerance: Optional[float] = None) -> np.ndarray:
    """
    Minimise sum(w * signed_wrap_diff(x_j - x_i, target)^2) over positions x.

    Starts from the equal division. Degree 0 is the root: its gradient is
    dropped so it stays at 0. Each iteration also blends `blend` of the way
    back toward the equal division.

    Args:
        tolerance: stop once no position moves more than this (cents);
            None runs the full iteration budget

    Returns:
        Positions in [0, cycle), indexed by the constraints' degrees (unsorted)
    """
    baseline = build_equal_temperament(n_notes, cycle)
    x = baseline.copy()

    I = np.array([c.i for c in constraints], dtype=int)
    J = np.array([c.j for c in constraints], dtype=int)
    T = np.array([c.target_cents for c in constraints], dtype=float)
    W = np.array([c.weight for c in constraints], dtype=float)

    for _ in range(iterations):
        actual = wrap_to_cycle(x[J] - x[I], cycle)
        err = signed_wrap_diff(actual, T, cycle)
        g = 2.0 * W * err

        grad = np.zeros(n_notes)
        np.add.at(grad, J, g)
        np.add.at(grad, I, -g)
        grad[0] = 0.0

        previous = x.copy()
        x[1:] = wrap_to_cycle(x[1:] - learning_rate * grad[1:], cycle)
        x[1:] = wrap_to_cycle((1.0 - blend) * x[1:] + blend * baseline[1:], cycle)

        if tolerance is not None:
            moved = np.max(np.abs(signed_wrap_diff(x, previous, cycle)))
            if moved < tolerance:
                break
    return x


def measure_residuals(constraints: Sequence[IntervalError], cents: Sequence[float],
                      cycle: float) -> float:
    """Store actual/error cents on each constraint; return the max |error|."""
    max_abs = 0.0
    for c in constraints:
        c.actual_cents = wrap_to_cycle(cents[c.j] - cents[c.i], cycle)
        c.error_cents = signed_wrap_diff(c.actual_cents, c.target_cents, cycle)
        max_abs = max(max_abs, abs(c.error_cents))
    return max_abs


def reweight_constraints(constraints: Sequence[IntervalError], max_abs: float) -> None:
    """
    IRLS update from each constraint's base weight. Skeleton constraints keep
    their weight.
    """
    scale = max(1e-6, max_abs)
    for c in constraints:
        if c.is_skeleton:
            continue
        factor = 1.0 + IRLS_GAIN * (abs(c.error_cents) / scale) ** 2
        c.weight = clamp(c.base_weight * factor, IRLS_WEIGHT_MIN, IRLS_WEIGHT_MAX)


def run_irls(n_notes: int, cycle: float, constraints: Sequence[IntervalError],
             rounds: int = IRLS_ROUNDS,
             iterations: int = GRADIENT_ITERATIONS,
             learning_rate: float = LEARNING_RATE,
             tolerance: Optional[float] = None) -> np.ndarray:
    """
    Alternate solve and reweight. The weights left on the constraints are
    the ones the final solve used.
    """
    cents = build_equal_temperament(n_notes, cycle)
    for round_idx in range(rounds):
        cents = solve_positions(n_notes, cycle, constraints, iterations, learning_rate,
                                tolerance=tolerance)
        max_abs = measure_residuals(constraints, cents, cycle)
        if round_idx < rounds - 1:
            reweight_constraints(constraints, max_abs)
    return cents


def solve_irregular(inp: SolverInput, diagnostics: List[SolverDiagnostic],
                    tolerance: Optional[float] = None):
    """
    Mode B up to (but not including) sorting.

    Returns:
        Tuple of (positions indexed by original degree, constraints)
    """
    constraints = build_mode_b_constraints(inp, diagnostics)
    cents = run_irls(inp.scale_size, inp.cycle_cents, constraints, tolerance=tolerance)
    return cents, constraints


# =============================================================================
# Post-relabel bookkeeping
# =============================================================================

def remap_constraints(constraints: Sequence[IntervalError], mapping: Sequence[int]) -> None:
    """Point constraint degrees at their relabelled positions."""
    for c in constraints:
        c.i = mapping[c.i]
        c.j = mapping[c.j]


def finalize_residuals(constraints: Sequence[IntervalError], cents: Sequence[float],
                       cycle: float, global_tolerance: float, n_notes: int,
                       diagnostics: List[SolverDiagnostic]) -> float:
    """
    Recompute residuals on the relabelled scale and warn when the worst one
    exceeds LARGE_ERROR_FACTOR global tolerances.
    """
    max_abs = measure_residuals(constraints, cents, cycle)
    if constraints and max_abs > global_tolerance * LARGE_ERROR_FACTOR:
        worst = max(constraints, key=lambda c: abs(c.error_cents))
        diagnostics.append(SolverDiagnostic(
            level="warning",
            code="large_error",
            message=f"Large error detected for {worst.target.key} in {n_notes}-EDO",
            context={
                "ratio": worst.target.key,
                "error": round(max_abs, 1),
                "tolerance": global_tolerance,
                "edo": n_notes,
            },
        ))
    return max_abs
