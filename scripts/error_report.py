"""
Error Report

Tabular views of a SolverOutput:
- notes_frame: one row per scale degree, with a rational name for its cents
- intervals_frame: one row per interval constraint
- error_summary: errors grouped by interval kind and skeleton membership
- format_report: plain-text report used by the CLI
"""

from typing import List

import pandas as pd

from ratio_math import cents_to_ratio_approx
from solver_types import SolverOutput


INTERVAL_COLUMNS = [
    "i", "j", "step", "ratio", "kind", "is_skeleton", "target_cents",
    "actual_cents", "error_cents", "weight", "key_tonic", "anchor_id",
]


def notes_frame(output: SolverOutput) -> pd.DataFrame:
    rows = []
    for note in output.notes:
        rows.append({
            "degree": note.degree,
            "name": note.name,
            "cents": note.cents_from_root,
            "frequency_hz": note.frequency_hz,
            "ratio_approx": cents_to_ratio_approx(note.cents_from_root),
            "cents_absolute": note.cents_absolute,
        })
    return pd.DataFrame(rows, columns=[
        "degree", "name", "cents", "frequency_hz", "ratio_approx", "cents_absolute"])


def intervals_frame(output: SolverOutput) -> pd.DataFrame:
    rows = []
    for it in output.intervals:
        rows.append({
            "i": it.i,
            "j": it.j,
            "step": it.step,
            "ratio": it.target.key,
            "kind": it.kind,
            "is_skeleton": it.is_skeleton,
            "target_cents": it.target_cents,
            "actual_cents": it.actual_cents,
            "error_cents": it.error_cents,
            "weight": it.weight,
            "key_tonic": it.key_tonic,
            "anchor_id": it.anchor_id,
        })
    return pd.DataFrame(rows, columns=INTERVAL_COLUMNS)


def error_summary(output: SolverOutput) -> pd.DataFrame:
    """
    Per (kind, is_skeleton) group: constraint count, max |error|, mean
    signed error and total weight.
    """
    df = intervals_frame(output)
    if df.empty:
        return pd.DataFrame(columns=["kind", "is_skeleton", "count", "max_abs_error",
                                     "mean_error", "total_weight"])
    df["abs_error"] = df["error_cents"].abs()
    summary = df.groupby(["kind", "is_skeleton"]).agg(
        count=("error_cents", "size"),
        max_abs_error=("abs_error", "max"),
        mean_error=("error_cents", "mean"),
        total_weight=("weight", "sum"),
    ).reset_index()
    return summary


def format_report(output: SolverOutput) -> str:
    lines: List[str] = []
    lines.append("=" * 60)
    lines.append("TEMPERAMENT SOLUTION")
    lines.append("=" * 60)
    lines.append(f"Octave model: {output.octave_model}")
    lines.append(f"Cycle: {output.cycle_cents:.3f} cents")
    if output.generator_cents is not None:
        lines.append(f"Generator: {output.generator_cents:.3f} cents")
    if output.period_stretch_cents is not None:
        lines.append(f"Period stretch: {output.period_stretch_cents:+.3f} cents")
    lines.append(f"Max |error|: {output.max_abs_error_cents:.3f} cents")
    lines.append(f"Weighted RMS: {output.rms_error_cents:.3f} cents")

    lines.append("")
    lines.append("Notes:")
    notes = notes_frame(output)
    lines.append(notes[["degree", "name", "cents", "frequency_hz", "ratio_approx"]]
                 .to_string(index=False, float_format=lambda v: f"{v:.3f}"))

    summary = error_summary(output)
    if not summary.empty:
        lines.append("")
        lines.append("Errors by kind:")
        lines.append(summary.to_string(index=False, float_format=lambda v: f"{v:.3f}"))

    if output.diagnostics:
        lines.append("")
        for diag in output.diagnostics:
            marker = "⚠" if diag.level == "warning" else "✓"
            lines.append(f"{marker} {diag.message}")
    return "\n".join(lines)
