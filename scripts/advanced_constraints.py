#!/usr/bin/env python3
"""
Advanced Constraint Solver

Explicit per-degree interval constraints (tolerance, priority, optional hard
max) plus an optional octave constraint. Each interval record pins the span
from the root to one degree; the positions come from the same gradient solve
as the irregular mode, reweighted by how far each error sits outside its
tolerance.

With a prioritised octave constraint the cycle length itself is optimised:
every candidate cycle gets a full solve, and scipy's bounded scalar
minimiser searches the window around the nominal cycle.
"""

from typing import Dict, List, NamedTuple, Optional, Sequence

import numpy as np
from scipy.optimize import minimize_scalar

from irregular_solver import measure_residuals, solve_positions
from key_skeleton import classify_kind
from octa_weighting import clamp
from ratio_math import build_equal_temperament, ratio_to_cents, wrap_to_cycle
from solver_types import (
    AdvancedConstraints,
    AdvancedOctaveSpec,
    IntervalError,
    RatioSpec,
    SolverDiagnostic,
)


ADVANCED_ROUNDS = 5

# Tolerances below this are raised to it
TOLERANCE_FLOOR = 0.001

# Reweighting: w = base * (1 + TOLERANCE_GAIN * (|e| / tol)^2)
TOLERANCE_GAIN = 1.6

# Extra factor once |e| exceeds the hard max: HARD_MAX_BASE + HARD_MAX_GAIN * (|e| / max)^2
HARD_MAX_BASE = 6.0
HARD_MAX_GAIN = 18.0

WEIGHT_MIN = 1e-4
WEIGHT_MAX = 1e6

# Octave constraint
OCTAVE_TOLERANCE_FLOOR = 0.1
OCTAVE_SPAN_MIN = 5.0
OCTAVE_SPAN_TOLERANCES = 4.0
OCTAVE_HARD_MAX_PENALTY = 50.0

# Cycle search resolution (cents)
CYCLE_SEARCH_XATOL = 1e-3

STRETCH_WARNING_CENTS = 10.0


class CycleSolve(NamedTuple):
    cycle: float
    cents: np.ndarray
    constraints: List[IntervalError]
    cost: float


class AdvancedResult(NamedTuple):
    cents: np.ndarray
    constraints: List[IntervalError]
    period_cents: float
    stretch_cents: float
    stretch_warning: bool


def build_advanced_constraints(specs, n_notes: int, cycle: float,
                               diagnostics: Optional[List[SolverDiagnostic]] = None) -> List[IntervalError]:
    """
    One root->degree constraint per record. Records without a positive
    priority are skipped.
    """
    constraints = []
    for spec in specs:
        if not spec.priority > 0:
            if diagnostics is not None:
                diagnostics.append(SolverDiagnostic(
                    level="info",
                    code="skipped_constraint",
                    message=f"Constraint {spec.n}/{spec.d} at degree {spec.degree} has no priority; skipped",
                    context={"degree": spec.degree, "ratio": f"{spec.n}/{spec.d}"},
                ))
            continue

        cents = ratio_to_cents(spec.n, spec.d)
        tol = max(TOLERANCE_FLOOR, spec.tolerance_cents or TOLERANCE_FLOOR)
        target = RatioSpec(n=spec.n, d=spec.d, label=spec.label or f"{spec.n}/{spec.d}",
                           tolerance=tol)
        constraints.append(IntervalError(
            i=0,
            j=spec.degree,
            step=spec.degree,
            target=target,
            target_cents=wrap_to_cycle(cents, cycle),
            actual_cents=0.0,
            error_cents=0.0,
            weight=spec.priority,
            kind=classify_kind(cents),
            is_skeleton=False,
            tolerance_cents=tol,
            max_error_cents=spec.max_error_cents,
            priority=spec.priority,
            base_weight=spec.priority,
        ))
    return constraints


def reweight_by_tolerance(constraints: Sequence[IntervalError]) -> None:
    for c in constraints:
        err = abs(c.error_cents)
        factor = 1.0 + TOLERANCE_GAIN * (err / c.tolerance_cents) ** 2
        if c.max_error_cents and c.max_error_cents > 0 and err > c.max_error_cents:
            over = err / c.max_error_cents
            factor *= HARD_MAX_BASE + HARD_MAX_GAIN * over ** 2
        c.weight = clamp(c.base_weight * factor, WEIGHT_MIN, WEIGHT_MAX)


def constraint_cost(constraints: Sequence[IntervalError]) -> float:
    """Sum of (priority / tol^2) * e^2."""
    return sum((c.priority / c.tolerance_cents ** 2) * c.error_cents ** 2 for c in constraints)


def solve_for_cycle(specs, n_notes: int, cycle: float) -> CycleSolve:
    """Tolerance-driven IRLS at a fixed cycle length."""
    constraints = build_advanced_constraints(specs, n_notes, cycle)
    if not constraints:
        return CycleSolve(cycle, build_equal_temperament(n_notes, cycle), constraints, 0.0)

    cents = build_equal_temperament(n_notes, cycle)
    for round_idx in range(ADVANCED_ROUNDS):
        cents = solve_positions(n_notes, cycle, constraints)
        measure_residuals(constraints, cents, cycle)
        if round_idx < ADVANCED_ROUNDS - 1:
            reweight_by_tolerance(constraints)
    return CycleSolve(cycle, cents, constraints, constraint_cost(constraints))


def octave_weight(octave: Optional[AdvancedOctaveSpec]) -> float:
    """priority / max(0.1, tol)^2, or 0 without a prioritised octave."""
    if octave is None or not octave.priority > 0:
        return 0.0
    denom = max(OCTAVE_TOLERANCE_FLOOR, octave.tolerance_cents or OCTAVE_TOLERANCE_FLOOR)
    return octave.priority / denom ** 2


def octave_span(octave: Optional[AdvancedOctaveSpec]) -> float:
    if octave is not None and octave.max_error_cents:
        return octave.max_error_cents
    tol = octave.tolerance_cents if octave is not None else 0.0
    return max(OCTAVE_SPAN_MIN, OCTAVE_SPAN_TOLERANCES * tol)


def octave_penalty(cycle: float, nominal: float, weight: float,
                   max_error: Optional[float]) -> float:
    diff = cycle - nominal
    penalty = weight * diff ** 2
    if max_error and abs(diff) > max_error:
        over = abs(diff) / max_error
        penalty += weight * OCTAVE_HARD_MAX_PENALTY * over ** 2
    return penalty


def solve_advanced(constraints_in: AdvancedConstraints, n_notes: int, nominal_cycle: float,
                   diagnostics: List[SolverDiagnostic]) -> AdvancedResult:
    """
    Solve the explicit constraints, optimising the cycle when the octave
    constraint carries a priority.

    Returns:
        AdvancedResult with positions indexed by degree (unsorted)
    """
    specs = constraints_in.intervals
    octave = constraints_in.octave

    # Surface skipped records once, not per candidate cycle
    kept = build_advanced_constraints(specs, n_notes, nominal_cycle, diagnostics)
    if not kept:
        diagnostics.append(SolverDiagnostic(
            level="warning",
            code="no_constraints",
            message="No advanced constraint has a positive priority; returning the equal division",
        ))

    weight = octave_weight(octave)
    max_error = octave.max_error_cents if octave is not None else None
    span = octave_span(octave)
    lo = max(1.0, nominal_cycle - span)
    hi = nominal_cycle + span

    evaluated: Dict[float, CycleSolve] = {}

    def total_cost(cycle: float) -> float:
        key = round(float(cycle), 6)
        if key not in evaluated:
            evaluated[key] = solve_for_cycle(specs, n_notes, key)
        solved = evaluated[key]
        cost = solved.cost
        if weight > 0:
            cost += octave_penalty(key, nominal_cycle, weight, max_error)
        return cost

    best_cycle = nominal_cycle
    if weight > 0 and hi > lo:
        minimize_scalar(total_cost, bounds=(lo, hi), method='bounded',
                        options={'xatol': CYCLE_SEARCH_XATOL})
        # Pick from every cycle the search evaluated, plus the nominal one
        candidates = list(evaluated) + [nominal_cycle]
        best_cycle = min(candidates, key=lambda c: (total_cost(c), abs(c - nominal_cycle)))

    best = evaluated.get(round(float(best_cycle), 6)) or solve_for_cycle(specs, n_notes, best_cycle)
    stretch = best.cycle - nominal_cycle
    warning = abs(stretch) > STRETCH_WARNING_CENTS
    if warning:
        diagnostics.append(SolverDiagnostic(
            level="warning",
            code="period_stretch",
            message=f"Optimised period is stretched by {stretch:.2f} cents",
            context={"period_cents": best.cycle, "stretch_cents": stretch},
        ))
    return AdvancedResult(best.cents, best.constraints, best.cycle, stretch, warning)
