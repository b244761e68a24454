"""Tests for the rank-2 (regular) solver."""

import sys
import unittest
from pathlib import Path

import numpy as np

sys.path.insert(0, str(Path(__file__).parent.parent))

from rank2_solver import (
    ANCHOR_WEIGHT_MAX,
    ANCHOR_WEIGHT_MIN,
    REF_GENERATOR_CENTS,
    build_generator_chain,
    build_mode_a_constraints,
    build_rank2_constraint,
    chain_start_index,
    create_octave_anchor,
    estimate_generator_steps,
    estimate_period_steps,
    optimize_generator_with_fixed_period,
    solve_rank2_scale,
    solve_wls,
)
from ratio_math import nearest_step_for_ratio, ratio_to_cents
from solver_types import OctaWeighting, Rank2Constraint, RatioSpec, SolverInput


FIFTH = RatioSpec(n=3, d=2, label="3/2")
THIRD = RatioSpec(n=5, d=4, label="5/4")


class TestIntegerScan(unittest.TestCase):
    def test_fifth_is_one_generator(self):
        self.assertEqual(estimate_generator_steps(ratio_to_cents(3, 2)), 1)

    def test_fourth_is_minus_one_generator(self):
        cents = ratio_to_cents(4, 3)
        k = estimate_generator_steps(cents)
        self.assertEqual(k, -1)
        self.assertEqual(estimate_period_steps(cents, k), 1)

    def test_major_third_is_eight_fifths_down(self):
        cents = ratio_to_cents(5, 4)
        k = estimate_generator_steps(cents)
        self.assertEqual(k, -8)
        o = estimate_period_steps(cents, k)
        self.assertEqual(o, 5)
        # k*g + o*p reproduces the Pythagorean diminished fourth
        self.assertAlmostEqual(k * REF_GENERATOR_CENTS + o * 1200.0, 384.36, places=2)

    def test_scan_limit_is_a_parameter(self):
        cents = ratio_to_cents(5, 4)
        self.assertEqual(estimate_generator_steps(cents, scan_limit=4), 4)

    def test_constraint_fields(self):
        c = build_rank2_constraint("3/2", 3, 2, 0.5)
        self.assertEqual((c.generator_steps, c.period_steps), (1, 0))
        self.assertAlmostEqual(c.ideal_cents, 701.955, places=3)
        self.assertEqual(c.weight, 0.5)


class TestOctaveAnchor(unittest.TestCase):
    def test_weight_interpolates(self):
        self.assertAlmostEqual(create_octave_anchor(0.0).weight, ANCHOR_WEIGHT_MIN)
        self.assertAlmostEqual(create_octave_anchor(1.0).weight, ANCHOR_WEIGHT_MAX)
        self.assertAlmostEqual(create_octave_anchor(0.5).weight, 50.05)

    def test_anchor_shape(self):
        anchor = create_octave_anchor(0.3, 1901.955)
        self.assertEqual((anchor.generator_steps, anchor.period_steps), (0, 1))
        self.assertEqual(anchor.ideal_cents, 1901.955)


class TestSolveWLS(unittest.TestCase):
    def test_rigid_octave_single_fifth(self):
        c = build_rank2_constraint("3/2", 3, 2, 1.0)
        result = solve_wls([c], octave_stiffness=1.0)
        self.assertAlmostEqual(result.generator_cents, 701.955, places=3)
        self.assertEqual(result.period_cents, 1200.0)
        self.assertFalse(result.was_clamped)
        self.assertFalse(result.degenerate)

    def test_rigid_octave_meantone(self):
        constraints = [build_rank2_constraint("3/2", 3, 2, 0.5),
                       build_rank2_constraint("5/4", 5, 4, 0.5)]
        result = solve_wls(constraints, octave_stiffness=1.0)
        self.assertEqual(result.period_cents, 1200.0)
        # Between the pure fifth and the fifth of pure thirds
        self.assertLess(result.generator_cents, 701.955)
        self.assertGreater(result.generator_cents, 696.0)

    def test_free_period(self):
        c = build_rank2_constraint("3/2", 3, 2, 1.0)
        result = solve_wls([c], octave_stiffness=0.0)
        self.assertAlmostEqual(result.generator_cents, REF_GENERATOR_CENTS, places=6)
        self.assertAlmostEqual(result.period_cents, 1200.0, places=6)
        self.assertEqual(len(result.residuals), 2)
        self.assertLess(result.condition_number, 1e10)

    def test_period_clamped_to_band(self):
        fifth = build_rank2_constraint("3/2", 3, 2, 1.0)
        stretched = Rank2Constraint(label="stretched", n=2, d=1, weight=1.0, ideal_cents=1250.0,
                                    generator_steps=0, period_steps=1)
        result = solve_wls([fifth, stretched], octave_stiffness=0.0)
        self.assertTrue(result.was_clamped)
        self.assertEqual(result.period_cents, 1210.0)
        self.assertAlmostEqual(result.generator_cents, REF_GENERATOR_CENTS, places=6)

    def test_singular_falls_back(self):
        result = solve_wls([], octave_stiffness=0.5)
        self.assertTrue(result.degenerate)
        self.assertAlmostEqual(result.generator_cents, REF_GENERATOR_CENTS)
        self.assertEqual(result.period_cents, 1200.0)
        self.assertEqual(len(result.residuals), 1)

    def test_fixed_period_without_generator(self):
        anchor = create_octave_anchor(1.0)
        self.assertIsNone(optimize_generator_with_fixed_period([anchor], 1200.0))


class TestChain(unittest.TestCase):
    def test_start_index(self):
        self.assertEqual(chain_start_index(12, 3), 3)
        self.assertEqual(chain_start_index(12, 20), 11)
        self.assertEqual(chain_start_index(12, 3, wolf_edge_index=0), 11)
        self.assertEqual(chain_start_index(12, 3, wolf_edge_index=11), 0)

    def test_chain(self):
        wrapped, absolute = build_generator_chain(3, 700.0, 1200.0)
        np.testing.assert_allclose(wrapped, [0.0, 700.0, 200.0])
        np.testing.assert_allclose(absolute, [0.0, 700.0, 1400.0])

    def test_chain_with_start(self):
        wrapped, absolute = build_generator_chain(3, 700.0, 1200.0, start=1)
        np.testing.assert_allclose(wrapped, [500.0, 0.0, 700.0])
        np.testing.assert_allclose(absolute, [-700.0, 0.0, 700.0])


class TestModeAConstraints(unittest.TestCase):
    def test_default_targets(self):
        diagnostics = []
        constraints = build_mode_a_constraints(SolverInput(), diagnostics)
        self.assertEqual(len(constraints), 2)
        self.assertAlmostEqual(sum(c.weight for c in constraints), 1.0)
        self.assertIn("default_targets", [d.code for d in diagnostics])

    def test_explicit_weights(self):
        inp = SolverInput(targets=(FIFTH, THIRD), target_weights={"3/2": 2.0, "5/4": 0.0})
        constraints = build_mode_a_constraints(inp, [])
        self.assertEqual(len(constraints), 1)
        self.assertEqual((constraints[0].n, constraints[0].d), (3, 2))
        self.assertAlmostEqual(constraints[0].weight, 1.0)

    def test_octa_corner(self):
        inp = SolverInput(octa_weighting=OctaWeighting(x=1.0, y=0.0, z=0.0))
        constraints = build_mode_a_constraints(inp, [])
        self.assertEqual(len(constraints), 1)
        self.assertEqual(constraints[0].anchor_id, "v100")
        self.assertIn("5/4", constraints[0].label)

    def test_octa_center_uses_all_anchors(self):
        inp = SolverInput(octa_weighting=OctaWeighting())
        constraints = build_mode_a_constraints(inp, [])
        self.assertEqual(len(constraints), 8)
        for c in constraints:
            self.assertAlmostEqual(c.weight, 0.125)

    def test_period_equivalent_target_skipped(self):
        diagnostics = []
        inp = SolverInput(targets=(RatioSpec(2, 1), FIFTH))
        constraints = build_mode_a_constraints(inp, diagnostics)
        self.assertEqual(len(constraints), 1)
        self.assertIn("skipped_constraint", [d.code for d in diagnostics])


class TestRank2Scale(unittest.TestCase):
    def test_rigid_octave_period_is_cycle(self):
        scale = solve_rank2_scale(SolverInput(targets=(FIFTH, THIRD), octave_stiffness=1.0), [])
        self.assertAlmostEqual(scale.result.period_cents, 1200.0, delta=1e-6)
        self.assertFalse(scale.period_optimized)
        self.assertEqual(len(scale.cents), 12)

    def test_nineteen_notes(self):
        inp = SolverInput(scale_size=19, targets=(FIFTH,), octave_stiffness=1.0)
        scale = solve_rank2_scale(inp, [])
        self.assertEqual(scale.result.period_cents, 1200.0)
        self.assertAlmostEqual(scale.result.generator_cents, 701.955, places=3)
        self.assertEqual(nearest_step_for_ratio(scale.result.generator_cents, 19, 1200.0), 11)

    def test_flexible_octave_is_optimized(self):
        inp = SolverInput(targets=(FIFTH, THIRD), octave_stiffness=0.2)
        scale = solve_rank2_scale(inp, [])
        self.assertTrue(scale.period_optimized)
        self.assertGreaterEqual(scale.result.period_cents, 1190.0)
        self.assertLessEqual(scale.result.period_cents, 1210.0)


if __name__ == "__main__":
    unittest.main()
