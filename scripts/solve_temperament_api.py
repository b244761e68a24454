#!/usr/bin/env python3
"""
API wrapper for temperament_solver.py
Outputs JSON for the web API to consume.
"""
import os
import sys
import json
import argparse

sys.path.insert(0, os.path.dirname(__file__))
from error_report import format_report
from ratio_math import parse_ratio
from solver_types import (
    AdvancedConstraints,
    AdvancedIntervalSpec,
    AdvancedOctaveSpec,
    CURVE_SHAPES,
    InvalidInput,
    KeySpecificity,
    MODES,
    OCTAVE_MODELS,
    OctaWeighting,
    SolverInput,
)
from temperament_solver import solve


def parse_advanced_interval(text):
    """'degree:n/d:tol:priority[:max]' -> AdvancedIntervalSpec"""
    parts = text.split(":")
    if len(parts) not in (4, 5):
        raise InvalidInput(f"Cannot parse advanced interval '{text}' (expected degree:n/d:tol:priority[:max])")
    try:
        ratio = parse_ratio(parts[1])
        return AdvancedIntervalSpec(
            degree=int(parts[0]),
            n=ratio.n,
            d=ratio.d,
            tolerance_cents=float(parts[2]),
            priority=float(parts[3]),
            max_error_cents=float(parts[4]) if len(parts) == 5 else None,
        )
    except InvalidInput:
        raise
    except ValueError as e:
        raise InvalidInput(f"Cannot parse advanced interval '{text}': {e}") from e


def parse_advanced_octave(text):
    """'tol:priority[:max]' -> AdvancedOctaveSpec"""
    parts = text.split(":")
    if len(parts) not in (2, 3):
        raise InvalidInput(f"Cannot parse advanced octave '{text}' (expected tol:priority[:max])")
    try:
        return AdvancedOctaveSpec(
            tolerance_cents=float(parts[0]),
            priority=float(parts[1]),
            max_error_cents=float(parts[2]) if len(parts) == 3 else None,
        )
    except ValueError as e:
        raise InvalidInput(f"Cannot parse advanced octave '{text}': {e}") from e


def build_input(args):
    targets = tuple(parse_ratio(t) for t in args.targets)

    octa = None
    if args.octa is not None:
        x, y, z = args.octa
        octa = OctaWeighting(x=x, y=y, z=z)

    advanced = None
    if args.advanced_interval or args.advanced_octave:
        advanced = AdvancedConstraints(
            intervals=tuple(parse_advanced_interval(t) for t in args.advanced_interval),
            octave=parse_advanced_octave(args.advanced_octave) if args.advanced_octave else None,
        )

    return SolverInput(
        scale_size=args.size,
        base_frequency_hz=args.base_frequency,
        cycle_cents=args.cycle,
        octave_model=args.octave_model,
        targets=targets,
        global_tolerance_cents=args.tolerance,
        key_specificity=KeySpecificity(tonic=args.tonic, flats=args.flats, sharps=args.sharps),
        mode=args.mode,
        curve_shape=args.curve,
        octa_weighting=octa,
        octave_stiffness=args.stiffness,
        wolf_edge_index=args.wolf_edge,
        advanced_constraints=advanced,
    )


def build_parser():
    parser = argparse.ArgumentParser(description="Solve a temperament and output JSON")
    parser.add_argument("--size", type=int, default=12,
                        help="Number of scale degrees (default: 12)")
    parser.add_argument("--base-frequency", type=float, default=440.0,
                        help="Frequency of degree 0 in Hz (default: 440)")
    parser.add_argument("--cycle", type=float, default=1200.0,
                        help="Cycle length in cents (default: 1200)")
    parser.add_argument("--octave-model", choices=OCTAVE_MODELS, default="perfect")
    parser.add_argument("--targets", nargs="*", default=["3/2", "5/4"],
                        help="Target ratios as n/d (default: 3/2 5/4)")
    parser.add_argument("--mode", choices=MODES, default="regular")
    parser.add_argument("--curve", choices=CURVE_SHAPES, default="symmetrical",
                        help="Detuning curve shape for irregular mode")
    parser.add_argument("--tonic", type=int, default=0)
    parser.add_argument("--flats", type=int, default=3)
    parser.add_argument("--sharps", type=int, default=4)
    parser.add_argument("--tolerance", type=float, default=7.0,
                        help="Global tolerance in cents (default: 7)")
    parser.add_argument("--stiffness", type=float, default=1.0,
                        help="Octave stiffness in [0, 1]; 1 keeps the period rigid")
    parser.add_argument("--octa", type=float, nargs=3, default=None, metavar=("X", "Y", "Z"),
                        help="Octa-weighting control point (regular mode)")
    parser.add_argument("--wolf-edge", type=int, default=None,
                        help="Manual wolf edge index (regular mode)")
    parser.add_argument("--advanced-interval", action="append", default=[],
                        help="Explicit constraint degree:n/d:tol:priority[:max] (repeatable)")
    parser.add_argument("--advanced-octave", default=None,
                        help="Octave constraint tol:priority[:max]")
    parser.add_argument("--summary", action="store_true",
                        help="Print a text report instead of JSON")
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        output = solve(build_input(args))
    except InvalidInput as e:
        print(f"⚠ Invalid input: {e}", file=sys.stderr)
        return 2

    if args.summary:
        print(format_report(output))
    else:
        for diag in output.diagnostics:
            if diag.level == "warning":
                print(f"⚠ {diag.message}", file=sys.stderr)
        print(json.dumps(output.to_dict()))
    return 0


if __name__ == "__main__":
    sys.exit(main())
