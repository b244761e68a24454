#!/usr/bin/env python3
"""
Solver Data Model

Dataclasses shared by every stage of the temperament solver:
- RatioSpec / KeySpecificity / OctaWeighting / advanced specs (input side)
- SolverInput: the immutable request consumed once per solve
- Rank2Constraint / IntervalError: the constraint records the solvers work on
- NoteResult / BeatRateRow / SolverDiagnostic / SolverOutput (output side)

Also defines InvalidInput, the only error a solve raises.
"""

from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional, Tuple


# =============================================================================
# Errors
# =============================================================================

class InvalidInput(ValueError):
    """Raised for malformed solver input, always before any iteration."""


# =============================================================================
# Enumerated string values
# =============================================================================

MODE_REGULAR = "regular"
MODE_IRREGULAR = "irregular"
MODES = (MODE_REGULAR, MODE_IRREGULAR)

CURVE_SYMMETRICAL = "symmetrical"
CURVE_GRADUAL = "gradual"
CURVE_SHAPES = (CURVE_SYMMETRICAL, CURVE_GRADUAL)

OCTAVE_MODELS = ("perfect", "stretched", "non_octave")

KIND_P5 = "P5"
KIND_M3 = "M3"
KIND_MINOR_3 = "m3"
KIND_UNCLASSIFIED = "unclassified"


# =============================================================================
# Input side
# =============================================================================

@dataclass(frozen=True)
class RatioSpec:
    n: int
    d: int
    label: Optional[str] = None
    tolerance: Optional[float] = None  # cents

    @property
    def key(self) -> str:
        return f"{self.n}/{self.d}"

    @property
    def display(self) -> str:
        return self.label or self.key


# Used by both modes when the target list is empty
DEFAULT_TARGETS = (
    RatioSpec(n=3, d=2, label="3/2"),
    RatioSpec(n=5, d=4, label="5/4"),
)


@dataclass(frozen=True)
class KeySpecificity:
    tonic: int = 0
    flats: int = 3
    sharps: int = 4


@dataclass(frozen=True)
class OctaAnchor:
    id: str
    n: int
    d: int
    label: str = ""


@dataclass(frozen=True)
class OctaWeighting:
    x: float = 0.5
    y: float = 0.5
    z: float = 0.5
    anchors: Optional[Tuple[OctaAnchor, ...]] = None


@dataclass(frozen=True)
class AdvancedIntervalSpec:
    degree: int
    n: int
    d: int
    tolerance_cents: float
    priority: float
    max_error_cents: Optional[float] = None
    label: Optional[str] = None


@dataclass(frozen=True)
class AdvancedOctaveSpec:
    tolerance_cents: float
    priority: float
    max_error_cents: Optional[float] = None


@dataclass(frozen=True)
class AdvancedConstraints:
    intervals: Tuple[AdvancedIntervalSpec, ...] = ()
    octave: Optional[AdvancedOctaveSpec] = None


@dataclass(frozen=True)
class SolverInput:
    """
    Everything a solve needs. Defaults match the solver panel's initial state
    (12 notes, A=440, perfect octave, 7 cent tolerance, C with 3 flats/4 sharps).
    """
    scale_size: int = 12
    base_frequency_hz: float = 440.0
    cycle_cents: float = 1200.0
    # Carried to the report header only; no solver reads it
    octave_model: str = "perfect"
    targets: Tuple[RatioSpec, ...] = ()
    global_tolerance_cents: float = 7.0
    key_specificity: KeySpecificity = field(default_factory=KeySpecificity)
    mode: str = MODE_REGULAR
    curve_shape: str = CURVE_SYMMETRICAL
    target_weights: Optional[Dict[str, float]] = None
    octa_weighting: Optional[OctaWeighting] = None
    octave_stiffness: float = 1.0
    wolf_edge_index: Optional[int] = None
    advanced_constraints: Optional[AdvancedConstraints] = None


# =============================================================================
# Constraint records
# =============================================================================

@dataclass
class Rank2Constraint:
    label: str
    n: int
    d: int
    weight: float
    ideal_cents: float
    generator_steps: int
    period_steps: int
    anchor_id: Optional[str] = None


@dataclass
class Rank2Result:
    generator_cents: float
    period_cents: float
    residuals: List[float]
    condition_number: float
    was_clamped: bool
    degenerate: bool = False


@dataclass
class IntervalError:
    i: int
    j: int
    step: int
    target: RatioSpec
    target_cents: float
    actual_cents: float
    error_cents: float
    weight: float
    kind: str
    is_skeleton: bool
    key_tonic: Optional[int] = None
    anchor_id: Optional[str] = None
    tolerance_cents: Optional[float] = None
    max_error_cents: Optional[float] = None
    priority: Optional[float] = None
    base_weight: Optional[float] = None


# =============================================================================
# Output side
# =============================================================================

@dataclass
class NoteResult:
    degree: int
    name: str
    cents_from_root: float
    frequency_hz: float
    cents_absolute: Optional[float] = None


@dataclass
class BeatRateRow:
    low_degree: int
    high_degree: int
    ratio: RatioSpec
    beat_hz: float
    low_hz: float
    high_hz: float


@dataclass
class SolverDiagnostic:
    level: str
    code: str
    message: str
    context: Dict[str, object] = field(default_factory=dict)


@dataclass
class SolverOutput:
    notes: List[NoteResult]
    intervals: List[IntervalError]
    max_abs_error_cents: float
    rms_error_cents: float
    cycle_cents: float
    degree_mapping: List[int]
    beat_table: List[BeatRateRow] = field(default_factory=list)
    diagnostics: List[SolverDiagnostic] = field(default_factory=list)
    generator_cents: Optional[float] = None
    period_cents: Optional[float] = None
    period_clamped: bool = False
    numeric_degeneracy: bool = False
    period_stretch_cents: Optional[float] = None
    period_stretch_warning: Optional[bool] = None
    octave_model: str = "perfect"

    def to_dict(self) -> Dict:
        """JSON-ready view of the result."""
        return asdict(self)
