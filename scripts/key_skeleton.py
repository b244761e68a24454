#!/usr/bin/env python3
"""
Key Skeleton Builder

Works out which degree pairs of an N-note scale are harmonically structural
for a given key specificity (tonic plus a range of flats and sharps):

1. Approximate the pure fifth (3/2) and pure major third (5/4) by N-EDO steps
2. Walk the chain of fifths `flats` steps down and `sharps` steps up from the
   tonic to get the active keys
3. For every active key, build the I, IV and V triads and record their
   root->third (M3) and root->fifth (P5) pairs

These "skeleton" pairs get priority weighting in the irregular solver.
"""

import math
from typing import Dict, List, NamedTuple, Optional, Tuple

from ratio_math import nearest_step_for_ratio, ratio_to_cents
from solver_types import KIND_M3, KIND_MINOR_3, KIND_P5, KIND_UNCLASSIFIED


class SkeletonPair(NamedTuple):
    a: int
    b: int
    kind: str
    key_tonic: int


# Cents windows (exclusive bounds) for interval kinds
P5_WINDOW = (650.0, 750.0)
M3_WINDOW = (350.0, 420.0)
MINOR_3_WINDOW = (280.0, 340.0)


def classify_kind(cents: float) -> str:
    """
    Classify a target interval by its cents value.

    Anything outside the three windows is KIND_UNCLASSIFIED; it never matches
    a skeleton pair.
    """
    if P5_WINDOW[0] < cents < P5_WINDOW[1]:
        return KIND_P5
    if M3_WINDOW[0] < cents < M3_WINDOW[1]:
        return KIND_M3
    if MINOR_3_WINDOW[0] < cents < MINOR_3_WINDOW[1]:
        return KIND_MINOR_3
    return KIND_UNCLASSIFIED


def fifth_and_third_steps(n_notes: int, cycle: float = 1200.0) -> Tuple[int, int]:
    """Nearest N-EDO steps for 3/2 and 5/4."""
    fifth = nearest_step_for_ratio(ratio_to_cents(3, 2), n_notes, cycle)
    third = nearest_step_for_ratio(ratio_to_cents(5, 4), n_notes, cycle)
    return fifth, third


def build_key_set_on_fifths(tonic: int, flats: int, sharps: int, n_notes: int,
                            cycle: float = 1200.0) -> List[int]:
    """
    Degrees reached by walking the fifths chain from -flats to +sharps around
    the tonic. Duplicates (chain wrapping in small N) are dropped, order kept.
    """
    fifth_step, _ = fifth_and_third_steps(n_notes, cycle)
    keys = []
    for k in range(-flats, sharps + 1):
        pc = (tonic + k * fifth_step) % n_notes
        if pc not in keys:
            keys.append(pc)
    return keys


def build_harmonic_skeleton_pairs(keys: List[int], n_notes: int,
                                  cycle: float = 1200.0) -> List[SkeletonPair]:
    """
    Root->third (M3) and root->fifth (P5) pairs of the I, IV and V triads of
    every active key, deduplicated by (a, b, kind, key_tonic).
    """
    step_p5, step_m3 = fifth_and_third_steps(n_notes, cycle)
    step_p4 = (n_notes - step_p5) % n_notes

    pairs = []
    seen = set()
    for t in keys:
        tonic_triad = (t, (t + step_m3) % n_notes, (t + step_p5) % n_notes)
        subdominant = ((t + step_p4) % n_notes, (t + step_p4 + step_m3) % n_notes, t)
        dominant = ((t + step_p5) % n_notes, (t + step_p5 + step_m3) % n_notes,
                    (t + 2 * step_p5) % n_notes)

        for root, third, fifth in (tonic_triad, subdominant, dominant):
            for pair in (SkeletonPair(root, third, KIND_M3, t),
                         SkeletonPair(root, fifth, KIND_P5, t)):
                if pair not in seen:
                    seen.add(pair)
                    pairs.append(pair)
    return pairs


def build_skeleton(tonic: int, flats: int, sharps: int, n_notes: int,
                   cycle: float = 1200.0) -> List[SkeletonPair]:
    keys = build_key_set_on_fifths(tonic, flats, sharps, n_notes, cycle)
    return build_harmonic_skeleton_pairs(keys, n_notes, cycle)


def skeleton_lookup(pairs: List[SkeletonPair]) -> Dict[Tuple[int, int, str], int]:
    """(a, b, kind) -> tonic of the first key that owns the pair."""
    lookup = {}
    for p in pairs:
        lookup.setdefault((p.a, p.b, p.kind), p.key_tonic)
    return lookup


def match_skeleton(lookup: Dict[Tuple[int, int, str], int], i: int, j: int,
                   kind: str) -> Tuple[bool, Optional[int]]:
    if kind == KIND_UNCLASSIFIED:
        return False, None
    tonic = lookup.get((i, j, kind))
    return tonic is not None, tonic


def key_distance(degree: int, tonic: int, n_notes: int) -> int:
    """Circular distance (in scale steps) between a degree and the tonic."""
    up = (degree - tonic) % n_notes
    return min(up, (tonic - degree) % n_notes)


def average_key_distance(i: int, j: int, tonic: int, n_notes: int) -> float:
    return (key_distance(i, tonic, n_notes) + key_distance(j, tonic, n_notes)) / 2.0


def key_distance_weight(i: int, j: int, tonic: int, n_notes: int, decay: float) -> float:
    """exp(-decay * average key distance): remote pairs matter less."""
    return math.exp(-decay * average_key_distance(i, j, tonic, n_notes))
