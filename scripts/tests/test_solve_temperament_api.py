"""Tests for the JSON command-line wrapper."""

import io
import json
import sys
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from solve_temperament_api import main, parse_advanced_interval, parse_advanced_octave
from solver_types import InvalidInput


def run(argv):
    out, err = io.StringIO(), io.StringIO()
    with redirect_stdout(out), redirect_stderr(err):
        code = main(argv)
    return code, out.getvalue(), err.getvalue()


class TestParsing(unittest.TestCase):
    def test_interval(self):
        spec = parse_advanced_interval("7:3/2:2:1")
        self.assertEqual((spec.degree, spec.n, spec.d), (7, 3, 2))
        self.assertEqual((spec.tolerance_cents, spec.priority), (2.0, 1.0))
        self.assertIsNone(spec.max_error_cents)
        self.assertEqual(parse_advanced_interval("4:5/4:3:2:6").max_error_cents, 6.0)

    def test_interval_errors(self):
        for text in ("7:3/2", "x:3/2:2:1", "7:3/0:2:1"):
            with self.assertRaises(InvalidInput):
                parse_advanced_interval(text)

    def test_octave(self):
        spec = parse_advanced_octave("2:1:8")
        self.assertEqual((spec.tolerance_cents, spec.priority, spec.max_error_cents), (2.0, 1.0, 8.0))
        with self.assertRaises(InvalidInput):
            parse_advanced_octave("2")


class TestMain(unittest.TestCase):
    def test_default_json(self):
        code, out, _ = run([])
        self.assertEqual(code, 0)
        payload = json.loads(out)
        self.assertEqual(len(payload["notes"]), 12)
        self.assertEqual(payload["notes"][0]["cents_from_root"], 0.0)
        self.assertAlmostEqual(payload["period_cents"], 1200.0)

    def test_irregular(self):
        code, out, _ = run(["--mode", "irregular", "--size", "12", "--targets", "3/2", "5/4"])
        self.assertEqual(code, 0)
        payload = json.loads(out)
        self.assertIsNone(payload["generator_cents"])
        self.assertEqual(len(payload["intervals"]), 24)

    def test_invalid_ratio_exit_code(self):
        code, out, err = run(["--targets", "5/0"])
        self.assertEqual(code, 2)
        self.assertEqual(out, "")
        self.assertIn("Invalid input", err)

    def test_invalid_size_exit_code(self):
        code, _, err = run(["--size", "1"])
        self.assertEqual(code, 2)
        self.assertIn("Scale size", err)

    def test_advanced(self):
        code, out, _ = run(["--advanced-interval", "7:3/2:1:1", "--advanced-octave", "2:1:6"])
        self.assertEqual(code, 0)
        payload = json.loads(out)
        self.assertEqual(len(payload["intervals"]), 1)
        self.assertLessEqual(abs(payload["period_stretch_cents"]), 6.0)

    def test_summary(self):
        code, out, _ = run(["--summary", "--octa", "0.5", "0.5", "0.5"])
        self.assertEqual(code, 0)
        self.assertIn("TEMPERAMENT SOLUTION", out)


if __name__ == "__main__":
    unittest.main()
