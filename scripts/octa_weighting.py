#!/usr/bin/env python3
"""
Octa-Weighting Interpolator

Eight just-intonation anchors sit on the corners of the unit cube, keyed by a
3-bit vertex code "v<bx><by><bz>". A control point (x, y, z) is turned into
per-anchor weights by trilinear interpolation, so moving the point blends the
Mode A target set continuously instead of switching ratios on and off.

The weights always form a partition of unity.
"""

from typing import Dict, List, Optional, Sequence, Tuple

from solver_types import InvalidInput, OctaAnchor, OctaWeighting


# Corner anchors of the weighting cube
OCTA_ANCHORS = (
    OctaAnchor(id="v000", n=3, d=2, label="Anchor v000"),
    OctaAnchor(id="v001", n=4, d=3, label="Anchor v001"),
    OctaAnchor(id="v100", n=5, d=4, label="Anchor v100"),
    OctaAnchor(id="v101", n=6, d=5, label="Anchor v101"),
    OctaAnchor(id="v010", n=7, d=4, label="Anchor v010"),
    OctaAnchor(id="v011", n=7, d=6, label="Anchor v011"),
    OctaAnchor(id="v110", n=11, d=8, label="Anchor v110"),
    OctaAnchor(id="v111", n=13, d=8, label="Anchor v111"),
)

VERTEX_IDS = tuple(f"v{bx}{by}{bz}" for bx in (0, 1) for by in (0, 1) for bz in (0, 1))


def clamp(value: float, lo: float, hi: float) -> float:
    return min(hi, max(lo, value))


def vertex_bits(vertex_id: str) -> Tuple[int, int, int]:
    """Decode 'v101' into (1, 0, 1)."""
    if vertex_id not in VERTEX_IDS:
        raise InvalidInput(f"Unknown octa vertex id '{vertex_id}'")
    return int(vertex_id[1]), int(vertex_id[2]), int(vertex_id[3])


def compute_octa_weights(x: float, y: float, z: float) -> Dict[str, float]:
    """
    Trilinear weights for the 8 cube corners.

    Each coordinate is clamped to [0, 1]. The weight of vertex (bx, by, bz) is
    the product over axes of (coord if bit == 1 else 1 - coord).

    Returns:
        Dict mapping vertex id -> weight; values sum to 1
    """
    coords = (clamp(x, 0.0, 1.0), clamp(y, 0.0, 1.0), clamp(z, 0.0, 1.0))
    weights = {}
    for vertex_id in VERTEX_IDS:
        w = 1.0
        for bit, c in zip(vertex_bits(vertex_id), coords):
            w *= c if bit == 1 else (1.0 - c)
        weights[vertex_id] = w
    return weights


def resolve_anchors(anchors: Optional[Sequence[OctaAnchor]]) -> Tuple[OctaAnchor, ...]:
    """Custom anchors replace the defaults; every id must be a cube vertex."""
    if not anchors:
        return OCTA_ANCHORS
    for anchor in anchors:
        vertex_bits(anchor.id)
    return tuple(anchors)


def weighted_anchor_targets(octa: OctaWeighting) -> List[Tuple[OctaAnchor, float]]:
    """
    Pair each anchor with its interpolated weight for the given control point.
    """
    weights = compute_octa_weights(octa.x, octa.y, octa.z)
    return [(anchor, weights[anchor.id]) for anchor in resolve_anchors(octa.anchors)]
