"""Relationship scoring rules — stage thresholds and delta clamping.

Shared by context assembly (to describe the relationship in the system
prompt) and finalize (to apply a delta proposed by the model).
"""

from __future__ import annotations

import math
from dataclasses import dataclass

AXES = ("bond", "trust", "warmth", "repair")

AXIS_MIN = 0.0
AXIS_MAX = 100.0

# Per-call bounds on what a single finalize may move each axis
DELTA_BOUNDS: dict[str, tuple[int, int]] = {
    "bond": (-2, 4),
    "trust": (-2, 3),
    "warmth": (-2, 3),
    "repair": (-2, 3),
}

# Upper bound (exclusive) of bond for stages 0..3; anything above is stage 4
_STAGE_THRESHOLDS = (15, 35, 60, 80)

STAGE_NAMES = ("初识", "熟悉", "亲近", "默契", "深陪伴")


def stage_from_bond(bond: float) -> int:
    for stage, upper in enumerate(_STAGE_THRESHOLDS):
        if bond < upper:
            return stage
    return len(_STAGE_THRESHOLDS)


def stage_name(stage: int) -> str:
    if 0 <= stage < len(STAGE_NAMES):
        return STAGE_NAMES[stage]
    return STAGE_NAMES[0]


def clamp_axis(value: float) -> float:
    if not math.isfinite(value):
        return AXIS_MIN
    return max(AXIS_MIN, min(AXIS_MAX, value))


def clamp_int(value: object, low: int, high: int) -> int:
    """Truncate to int and clamp. Anything non-numeric counts as 0."""
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        number = 0.0
    if not math.isfinite(number):
        number = 0.0
    return max(low, min(high, math.trunc(number)))


@dataclass(frozen=True)
class RelationshipScores:
    bond: float = 0.0
    trust: float = 0.0
    warmth: float = 0.0
    repair: float = 0.0

    @property
    def stage(self) -> int:
        return stage_from_bond(self.bond)


def clamp_delta(delta: dict | None) -> dict[str, int]:
    """Clamp each proposed axis delta into its per-call bound."""
    delta = delta or {}
    return {axis: clamp_int(delta.get(axis, 0), *DELTA_BOUNDS[axis]) for axis in AXES}


def apply_delta(current: RelationshipScores, delta: dict[str, int]) -> RelationshipScores:
    """Add an already-clamped delta and keep every axis inside [0, 100]."""
    return RelationshipScores(
        **{axis: clamp_axis(getattr(current, axis) + delta.get(axis, 0)) for axis in AXES}
    )
