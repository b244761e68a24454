"""Tests for the irregular (IRLS) solver."""

import math
import sys
import unittest
from pathlib import Path

import numpy as np

sys.path.insert(0, str(Path(__file__).parent.parent))

from irregular_solver import (
    GRADUAL_CURVE_SCALE,
    IRLS_WEIGHT_MAX,
    IRLS_WEIGHT_MIN,
    POOR_FIT_PENALTY,
    SKELETON_WEIGHT,
    analyze_targets,
    build_mode_b_constraints,
    finalize_residuals,
    measure_residuals,
    remap_constraints,
    reweight_constraints,
    run_irls,
    solve_irregular,
    solve_positions,
)
from ratio_math import build_equal_temperament
from solver_types import IntervalError, KeySpecificity, RatioSpec, SolverInput


FIFTH = RatioSpec(n=3, d=2, label="3/2")
THIRD = RatioSpec(n=5, d=4, label="5/4")


def make_constraint(i, j, target_cents, weight, is_skeleton=False):
    return IntervalError(
        i=i, j=j, step=j - i, target=RatioSpec(n=1, d=1), target_cents=target_cents,
        actual_cents=0.0, error_cents=0.0, weight=weight, kind="M3",
        is_skeleton=is_skeleton, base_weight=weight,
    )


class TestTargets(unittest.TestCase):
    def test_good_fit(self):
        diagnostics = []
        infos = analyze_targets([FIFTH], 12, 1200.0, 7.0, diagnostics)
        self.assertEqual(infos[0].step, 7)
        self.assertEqual(infos[0].kind, "P5")
        self.assertFalse(infos[0].poor_fit)
        self.assertEqual(diagnostics, [])

    def test_poor_fit_warns(self):
        diagnostics = []
        infos = analyze_targets([FIFTH], 7, 1200.0, 7.0, diagnostics)
        self.assertTrue(infos[0].poor_fit)
        self.assertEqual(diagnostics[0].code, "poor_fit")
        self.assertEqual(diagnostics[0].level, "warning")
        self.assertEqual(diagnostics[0].context["error"], 16.2)

    def test_ratio_tolerance_overrides_global(self):
        loose = RatioSpec(n=3, d=2, tolerance=10.0)
        infos = analyze_targets([loose], 7, 1200.0, 7.0, [])
        self.assertFalse(infos[0].poor_fit)


class TestConstraintGraph(unittest.TestCase):
    def setUp(self):
        self.inp = SolverInput(targets=(FIFTH, THIRD), mode="irregular")

    def test_one_constraint_per_degree_and_target(self):
        constraints = build_mode_b_constraints(self.inp, [])
        self.assertEqual(len(constraints), 24)
        for c in constraints:
            self.assertEqual((c.j - c.i) % 12, c.step)

    def test_skeleton_weight(self):
        constraints = build_mode_b_constraints(self.inp, [])
        c = next(c for c in constraints if (c.i, c.j, c.kind) == (0, 7, "P5"))
        self.assertTrue(c.is_skeleton)
        self.assertAlmostEqual(c.weight, SKELETON_WEIGHT * math.exp(-0.15 * 2.5))
        self.assertEqual(c.base_weight, c.weight)

    def test_remote_pair_is_not_skeleton(self):
        constraints = build_mode_b_constraints(self.inp, [])
        c = next(c for c in constraints if (c.i, c.j, c.kind) == (1, 8, "P5"))
        self.assertFalse(c.is_skeleton)
        self.assertAlmostEqual(c.weight, math.exp(-0.15 * 2.5))

    def test_gradual_curve_scales_non_skeleton(self):
        symmetric = build_mode_b_constraints(self.inp, [])
        gradual = build_mode_b_constraints(
            SolverInput(targets=(FIFTH, THIRD), mode="irregular", curve_shape="gradual"), [])
        for a, b in zip(symmetric, gradual):
            expected = a.weight if a.is_skeleton else a.weight * GRADUAL_CURVE_SCALE
            self.assertAlmostEqual(b.weight, expected)

    def test_poor_fit_down_weighted(self):
        inp = SolverInput(scale_size=7, targets=(FIFTH,), mode="irregular",
                          key_specificity=KeySpecificity(0, 0, 0))
        constraints = build_mode_b_constraints(inp, [])
        plain = next(c for c in constraints if not c.is_skeleton)
        self.assertAlmostEqual(
            plain.weight,
            POOR_FIT_PENALTY * math.exp(-0.15 * (min(plain.i, 7 - plain.i) + min(plain.j, 7 - plain.j)) / 2))


class TestSolvePositions(unittest.TestCase):
    def test_no_constraints_keeps_equal_division(self):
        x = solve_positions(12, 1200.0, [])
        np.testing.assert_allclose(x, build_equal_temperament(12, 1200.0), atol=1e-9)

    def test_root_fixed(self):
        constraints = [make_constraint(0, 4, 386.314, 5.0), make_constraint(4, 7, 315.641, 1.0)]
        x = solve_positions(12, 1200.0, constraints)
        self.assertEqual(x[0], 0.0)

    def test_moves_toward_target(self):
        x = solve_positions(12, 1200.0, [make_constraint(0, 7, 701.955, 5.0)])
        self.assertGreater(x[7], 700.0)
        self.assertLess(x[7], 701.955)

    def test_tolerance_stops_early(self):
        constraints = [make_constraint(0, 7, 701.955, 5.0)]
        full = solve_positions(12, 1200.0, constraints)
        early = solve_positions(12, 1200.0, constraints, tolerance=1e3)
        self.assertNotAlmostEqual(full[7], early[7], places=3)


class TestReweighting(unittest.TestCase):
    def test_skeleton_untouched(self):
        skel = make_constraint(0, 4, 400.0, 5.0, is_skeleton=True)
        skel.error_cents = 10.0
        reweight_constraints([skel], 10.0)
        self.assertEqual(skel.weight, 5.0)

    def test_worst_boosted_from_base(self):
        worst = make_constraint(0, 4, 400.0, 1.0)
        worst.error_cents = -10.0
        exact = make_constraint(0, 7, 700.0, 1.0)
        exact.error_cents = 0.0
        reweight_constraints([worst, exact], 10.0)
        self.assertAlmostEqual(worst.weight, 3.5)
        self.assertAlmostEqual(exact.weight, 1.0)
        # A second pass starts from the base weight again
        reweight_constraints([worst, exact], 10.0)
        self.assertAlmostEqual(worst.weight, 3.5)

    def test_weight_clamped(self):
        heavy = make_constraint(0, 4, 400.0, 10.0)
        heavy.error_cents = 5.0
        light = make_constraint(0, 7, 700.0, 0.01)
        light.error_cents = 0.0
        reweight_constraints([heavy, light], 5.0)
        self.assertEqual(heavy.weight, IRLS_WEIGHT_MAX)
        self.assertEqual(light.weight, IRLS_WEIGHT_MIN)

    def test_skeleton_beats_equal_non_skeleton(self):
        # Mirror-image edges around degree 2, neither touching the fixed root
        skel = make_constraint(1, 2, 320.0, 5.0, is_skeleton=True)
        plain = make_constraint(2, 3, 320.0, 1.0)
        constraints = [skel, plain]
        run_irls(4, 1200.0, constraints)
        self.assertLess(abs(skel.error_cents), 20.0)
        self.assertLessEqual(abs(skel.error_cents), abs(plain.error_cents))
        self.assertTrue(all(c.weight > 0 for c in constraints))


class TestIrregularScenario(unittest.TestCase):
    def test_twelve_note_well_temperament(self):
        inp = SolverInput(targets=(FIFTH, THIRD), mode="irregular",
                          key_specificity=KeySpecificity(0, 3, 4))
        diagnostics = []
        cents, constraints = solve_irregular(inp, diagnostics)
        self.assertEqual(cents[0], 0.0)
        fifths = [c for c in constraints if c.kind == "P5"]
        thirds = [c for c in constraints if c.kind == "M3"]
        self.assertLessEqual(max(abs(c.error_cents) for c in fifths), 7.0)
        # Twelve stacked thirds close four octaves, twelve fifths seven
        self.assertAlmostEqual(np.mean([c.error_cents for c in thirds]), 400.0 - 386.3137, places=3)
        self.assertAlmostEqual(np.mean([c.error_cents for c in fifths]), 700.0 - 701.9550, places=3)


class TestFinalize(unittest.TestCase):
    def test_remap(self):
        c = make_constraint(0, 2, 800.0, 1.0)
        remap_constraints([c], [0, 2, 1])
        self.assertEqual((c.i, c.j), (0, 1))

    def test_measure(self):
        c = make_constraint(0, 1, 400.0, 1.0)
        max_abs = measure_residuals([c], [0.0, 390.0], 1200.0)
        self.assertAlmostEqual(c.actual_cents, 390.0)
        self.assertAlmostEqual(c.error_cents, -10.0)
        self.assertAlmostEqual(max_abs, 10.0)

    def test_large_error_warning(self):
        diagnostics = []
        c = make_constraint(0, 1, 400.0, 1.0)
        finalize_residuals([c], [0.0, 380.0], 1200.0, 7.0, 2, diagnostics)
        self.assertEqual([d.code for d in diagnostics], ["large_error"])
        self.assertEqual(diagnostics[0].context["error"], 20.0)

    def test_no_warning_within_tolerance(self):
        diagnostics = []
        c = make_constraint(0, 1, 400.0, 1.0)
        finalize_residuals([c], [0.0, 395.0], 1200.0, 7.0, 2, diagnostics)
        self.assertEqual(diagnostics, [])


if __name__ == "__main__":
    unittest.main()
