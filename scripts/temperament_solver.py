#!/usr/bin/env python3
"""
Temperament Solver

Entry point of the solver: `solve(SolverInput) -> SolverOutput`.

Pipeline:
1. Validate the input (InvalidInput before any iteration)
2. Dispatch: advanced constraints > regular (rank-2) > irregular (IRLS)
3. Sort the degree positions once and relabel every degree reference
4. Build note results, error statistics and the beat-rate table

Every stage reports through SolverDiagnostic records collected on the output.
"""

import math
from typing import List, Optional, Sequence, Tuple

import numpy as np

from advanced_constraints import solve_advanced
from irregular_solver import finalize_residuals, measure_residuals, remap_constraints, solve_irregular
from key_skeleton import build_skeleton, skeleton_lookup
from rank2_solver import PERIOD_STRETCH_WARNING_CENTS, rank2_interval_errors, solve_rank2_scale
from ratio_math import degree_names, wrap_to_cycle
from solver_types import (
    CURVE_SHAPES,
    MODE_REGULAR,
    MODES,
    OCTAVE_MODELS,
    BeatRateRow,
    IntervalError,
    InvalidInput,
    NoteResult,
    SolverDiagnostic,
    SolverInput,
    SolverOutput,
)


# Rows kept in the beat-rate table
BEAT_TABLE_SIZE = 48

# Floor on the total weight in the RMS denominator
RMS_WEIGHT_FLOOR = 1e-9


# =============================================================================
# Validation
# =============================================================================

def _check_ratio(n, d, where: str) -> None:
    if d == 0:
        raise InvalidInput(f"{where}: ratio {n}/{d} has a zero denominator")
    if n <= 0 or d <= 0:
        raise InvalidInput(f"{where}: ratio {n}/{d} must have positive terms")


def validate_input(inp: SolverInput) -> None:
    """Raise InvalidInput for anything the solvers cannot work with."""
    n_notes = inp.scale_size
    if isinstance(n_notes, bool) or not isinstance(n_notes, (int, np.integer)) or n_notes < 2:
        raise InvalidInput(f"Scale size must be an integer >= 2, got {n_notes!r}")
    if not inp.cycle_cents > 0:
        raise InvalidInput(f"Cycle must be positive, got {inp.cycle_cents}")
    if not inp.base_frequency_hz > 0:
        raise InvalidInput(f"Base frequency must be positive, got {inp.base_frequency_hz}")
    if inp.mode not in MODES:
        raise InvalidInput(f"Unknown mode '{inp.mode}' (expected one of {', '.join(MODES)})")
    if inp.curve_shape not in CURVE_SHAPES:
        raise InvalidInput(f"Unknown curve shape '{inp.curve_shape}'")
    if inp.octave_model not in OCTAVE_MODELS:
        raise InvalidInput(f"Unknown octave model '{inp.octave_model}'")
    if not 0.0 <= inp.octave_stiffness <= 1.0:
        raise InvalidInput(f"Octave stiffness must be within [0, 1], got {inp.octave_stiffness}")
    if not inp.global_tolerance_cents > 0:
        raise InvalidInput(f"Global tolerance must be positive, got {inp.global_tolerance_cents}")

    key = inp.key_specificity
    if key.flats < 0 or key.sharps < 0:
        raise InvalidInput(f"Flats and sharps must be non-negative, got {key.flats}/{key.sharps}")

    for target in inp.targets:
        _check_ratio(target.n, target.d, "target")
    if inp.octa_weighting is not None and inp.octa_weighting.anchors:
        for anchor in inp.octa_weighting.anchors:
            _check_ratio(anchor.n, anchor.d, f"anchor {anchor.id}")

    adv = inp.advanced_constraints
    if adv is not None:
        for spec in adv.intervals:
            degree = spec.degree
            if isinstance(degree, bool) or not isinstance(degree, (int, np.integer)):
                raise InvalidInput(f"Advanced constraint degree must be an integer, got {degree!r}")
            _check_ratio(spec.n, spec.d, f"degree {degree}")
            if not 1 <= degree <= n_notes - 1:
                raise InvalidInput(
                    f"Advanced constraint degree {spec.degree} outside [1, {n_notes - 1}]")


# =============================================================================
# Sorting / relabelling
# =============================================================================

def normalize_and_relabel(cents: Sequence[float], cycle: float) -> Tuple[np.ndarray, List[int]]:
    """
    Sort degree positions ascending and shift so the lowest reads 0.

    Returns:
        (sorted cents in [0, cycle), mapping) where mapping[old_degree] = new_degree
    """
    values = wrap_to_cycle(np.asarray(cents, dtype=float), cycle)
    order = np.argsort(values, kind='stable')
    ordered = values[order]
    ordered = wrap_to_cycle(ordered - ordered[0], cycle)

    mapping = [0] * len(order)
    for new_degree, old_degree in enumerate(order):
        mapping[int(old_degree)] = new_degree
    return ordered, mapping


# =============================================================================
# Result assembly
# =============================================================================

def frequency_for_cents(base_hz: float, cents: float) -> float:
    return base_hz * 2.0 ** (cents / 1200.0)


def build_notes(cents: Sequence[float], base_hz: float,
                absolute: Optional[Sequence[float]] = None) -> List[NoteResult]:
    names = degree_names(len(cents))
    return [
        NoteResult(
            degree=k,
            name=names[k],
            cents_from_root=float(c),
            frequency_hz=frequency_for_cents(base_hz, float(c)),
            cents_absolute=float(absolute[k]) if absolute is not None else None,
        )
        for k, c in enumerate(cents)
    ]


def compute_error_stats(intervals: Sequence[IntervalError]) -> Tuple[float, float]:
    """(max |error|, weighted RMS error) over all interval constraints."""
    sum_sq = 0.0
    sum_w = 0.0
    max_abs = 0.0
    for it in intervals:
        sum_sq += it.weight * it.error_cents ** 2
        sum_w += it.weight
        max_abs = max(max_abs, abs(it.error_cents))
    return max_abs, math.sqrt(sum_sq / max(RMS_WEIGHT_FLOOR, sum_w))


def build_beat_table(notes: Sequence[NoteResult], intervals: Sequence[IntervalError],
                     size: int = BEAT_TABLE_SIZE) -> List[BeatRateRow]:
    """
    Beat rates |n * f_low - d * f_high| of the heaviest constraints.
    Ties in weight keep constraint order.
    """
    heaviest = sorted(intervals, key=lambda it: -it.weight)[:size]
    rows = []
    for it in heaviest:
        low_hz = notes[it.i].frequency_hz
        high_hz = notes[it.j].frequency_hz
        rows.append(BeatRateRow(
            low_degree=it.i,
            high_degree=it.j,
            ratio=it.target,
            beat_hz=abs(it.target.n * low_hz - it.target.d * high_hz),
            low_hz=low_hz,
            high_hz=high_hz,
        ))
    return rows


def _stretch_diagnostic(stretch: float, period: float) -> SolverDiagnostic:
    return SolverDiagnostic(
        level="warning",
        code="period_stretch",
        message=f"Period is stretched by {stretch:.2f} cents",
        context={"period_cents": period, "stretch_cents": stretch},
    )


# =============================================================================
# Mode runners
# =============================================================================

def _solve_regular(inp: SolverInput, diagnostics: List[SolverDiagnostic]) -> SolverOutput:
    scale = solve_rank2_scale(inp, diagnostics)
    result = scale.result
    period = result.period_cents

    cents, mapping = normalize_and_relabel(scale.cents, period)

    absolute = None
    if scale.period_optimized:
        absolute = [0.0] * len(mapping)
        for old_degree, new_degree in enumerate(mapping):
            absolute[new_degree] = float(scale.absolute_cents[old_degree])

    # Key steps come from the nominal cycle, not the solved period
    key = inp.key_specificity
    lookup = skeleton_lookup(build_skeleton(key.tonic % inp.scale_size, key.flats, key.sharps,
                                            inp.scale_size, inp.cycle_cents))
    intervals = rank2_interval_errors(scale.constraints, cents, period, lookup)

    stretch = period - inp.cycle_cents
    stretch_warning = abs(stretch) > PERIOD_STRETCH_WARNING_CENTS
    if stretch_warning:
        diagnostics.append(_stretch_diagnostic(stretch, period))

    notes = build_notes(cents, inp.base_frequency_hz, absolute)
    max_abs, rms = compute_error_stats(intervals)
    return SolverOutput(
        notes=notes,
        intervals=intervals,
        max_abs_error_cents=max_abs,
        rms_error_cents=rms,
        cycle_cents=period,
        degree_mapping=mapping,
        beat_table=build_beat_table(notes, intervals),
        diagnostics=diagnostics,
        generator_cents=result.generator_cents,
        period_cents=period,
        period_clamped=result.was_clamped,
        numeric_degeneracy=result.degenerate,
        period_stretch_cents=stretch,
        period_stretch_warning=stretch_warning,
    )


def _solve_irregular(inp: SolverInput, diagnostics: List[SolverDiagnostic]) -> SolverOutput:
    cycle = inp.cycle_cents
    positions, intervals = solve_irregular(inp, diagnostics)
    cents, mapping = normalize_and_relabel(positions, cycle)
    remap_constraints(intervals, mapping)
    finalize_residuals(intervals, cents, cycle, inp.global_tolerance_cents,
                       inp.scale_size, diagnostics)

    notes = build_notes(cents, inp.base_frequency_hz)
    max_abs, rms = compute_error_stats(intervals)
    return SolverOutput(
        notes=notes,
        intervals=intervals,
        max_abs_error_cents=max_abs,
        rms_error_cents=rms,
        cycle_cents=cycle,
        degree_mapping=mapping,
        beat_table=build_beat_table(notes, intervals),
        diagnostics=diagnostics,
    )


def _solve_advanced(inp: SolverInput, diagnostics: List[SolverDiagnostic]) -> SolverOutput:
    result = solve_advanced(inp.advanced_constraints, inp.scale_size, inp.cycle_cents, diagnostics)
    period = result.period_cents

    cents, mapping = normalize_and_relabel(result.cents, period)
    intervals = result.constraints
    remap_constraints(intervals, mapping)
    measure_residuals(intervals, cents, period)

    notes = build_notes(cents, inp.base_frequency_hz)
    max_abs, rms = compute_error_stats(intervals)
    return SolverOutput(
        notes=notes,
        intervals=intervals,
        max_abs_error_cents=max_abs,
        rms_error_cents=rms,
        cycle_cents=period,
        degree_mapping=mapping,
        beat_table=build_beat_table(notes, intervals),
        diagnostics=diagnostics,
        period_cents=period,
        period_stretch_cents=result.stretch_cents,
        period_stretch_warning=result.stretch_warning,
    )


def solve(inp: SolverInput) -> SolverOutput:
    """
    Solve a tuning request.

    Raises:
        InvalidInput: for malformed input, before any iteration
    """
    validate_input(inp)
    diagnostics: List[SolverDiagnostic] = []

    if inp.advanced_constraints is not None:
        output = _solve_advanced(inp, diagnostics)
    elif inp.mode == MODE_REGULAR:
        output = _solve_regular(inp, diagnostics)
    else:
        output = _solve_irregular(inp, diagnostics)
    output.octave_model = inp.octave_model
    return output
