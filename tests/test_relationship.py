"""Tests for relationship stages and delta clamping."""

import math

import pytest

from buddy.core.relationship import (
    RelationshipScores,
    apply_delta,
    clamp_delta,
    clamp_int,
    stage_from_bond,
    stage_name,
)


class TestStages:
    @pytest.mark.parametrize(
        "bond,stage",
        [(0, 0), (14.9, 0), (15, 1), (34.9, 1), (35, 2), (59.9, 2), (60, 3), (79.9, 3), (80, 4), (100, 4)],
    )
    def test_thresholds(self, bond, stage):
        assert stage_from_bond(bond) == stage

    def test_names(self):
        assert [stage_name(i) for i in range(5)] == ["初识", "熟悉", "亲近", "默契", "深陪伴"]
        assert stage_name(99) == "初识"


class TestClampDelta:
    def test_bounds(self):
        delta = clamp_delta({"bond": 10, "trust": -9, "warmth": 3, "repair": 100})
        assert delta == {"bond": 4, "trust": -2, "warmth": 3, "repair": 3}

    def test_non_numeric_and_missing(self):
        assert clamp_delta({"bond": "lots", "trust": None}) == {"bond": 0, "trust": 0, "warmth": 0, "repair": 0}
        assert clamp_delta(None) == {"bond": 0, "trust": 0, "warmth": 0, "repair": 0}

    def test_fractions_truncate(self):
        assert clamp_delta({"bond": 2.9, "trust": -1.7})["bond"] == 2
        assert clamp_delta({"bond": 2.9, "trust": -1.7})["trust"] == -1

    def test_numeric_strings(self):
        assert clamp_int("3", 1, 5) == 3
        assert clamp_int(math.nan, -2, 4) == 0
        assert clamp_int("high", 1, 5) == 1


class TestApplyDelta:
    def test_bond_caps_at_100(self):
        scores = apply_delta(RelationshipScores(bond=97), {"bond": 3, "trust": 0, "warmth": 0, "repair": 0})
        assert scores.bond == 100
        assert scores.stage == 4

    def test_floor_at_zero(self):
        scores = apply_delta(RelationshipScores(trust=1), {"bond": -2, "trust": -2, "warmth": 0, "repair": 0})
        assert scores.bond == 0
        assert scores.trust == 0

    def test_axes_always_in_range(self):
        current = RelationshipScores()
        for step in range(200):
            raw = {"bond": (step % 13) - 6, "trust": 50, "warmth": -50, "repair": step}
            current = apply_delta(current, clamp_delta(raw))
            for axis in ("bond", "trust", "warmth", "repair"):
                assert 0 <= getattr(current, axis) <= 100
