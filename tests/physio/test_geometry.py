"""Tests for joint-angle geometry and EMA smoothing."""

import numpy as np
import pytest

from physio_service.models.geometry import (
    Landmark,
    calculate_angle,
    elbow_flexion_angle,
    ema,
    hip_flexion_angle,
    knee_flexion_angle,
    round_half_up,
    shoulder_flexion_angle,
    torso_lean_angle,
)


# ============================================================================
# calculate_angle
# ============================================================================

class TestCalculateAngle:

    def test_symmetric_in_outer_points(self):
        rng = np.random.RandomState(7)
        for _ in range(50):
            a, b, c = rng.uniform(-1, 1, size=(3, 3))
            assert calculate_angle(a, b, c) == pytest.approx(calculate_angle(c, b, a), abs=1e-9)

    def test_collinear_with_vertex_between_is_180(self):
        assert calculate_angle((0, 0, 0), (1, 0, 0), (2, 0, 0)) == pytest.approx(180.0)

    def test_same_outer_point_is_zero(self):
        assert calculate_angle((1, 2, 3), (0, 0, 0), (1, 2, 3)) == pytest.approx(0.0, abs=1e-4)

    def test_right_angle(self):
        assert calculate_angle((1, 0, 0), (0, 0, 0), (0, 1, 0)) == pytest.approx(90.0)

    def test_uses_depth(self):
        assert calculate_angle((1, 0, 0), (0, 0, 0), (0, 0, 1)) == pytest.approx(90.0)

    def test_degenerate_vector_returns_zero(self):
        assert calculate_angle((0.5, 0.5, 0), (0.5, 0.5, 0), (1, 1, 0)) == 0.0
        assert calculate_angle((1, 1, 0), (0.5, 0.5, 0), (0.5, 0.5, 0)) == 0.0

    def test_accepts_landmarks_and_2d_points(self):
        a = Landmark(x=1, y=0, z=0, visibility=0.9)
        b = Landmark(x=0, y=0, z=0, visibility=0.9)
        assert calculate_angle(a, b, (0, 1)) == pytest.approx(90.0)

    def test_result_in_range(self):
        rng = np.random.RandomState(3)
        for _ in range(50):
            a, b, c = rng.uniform(-5, 5, size=(3, 3))
            assert 0.0 <= calculate_angle(a, b, c) <= 180.0


class TestNamedJointAngles:

    def test_helpers_bind_vertex_correctly(self):
        upper = (0.5, 0.3, 0)
        vertex = (0.5, 0.5, 0)
        lower = (0.7, 0.5, 0)
        for fn in (knee_flexion_angle, hip_flexion_angle, shoulder_flexion_angle, elbow_flexion_angle):
            assert fn(upper, vertex, lower) == pytest.approx(90.0)

    def test_straight_leg_is_extended(self):
        hip = Landmark(0.5, 0.4, 0.0, 1.0)
        knee = Landmark(0.5, 0.6, 0.0, 1.0)
        ankle = Landmark(0.5, 0.8, 0.0, 1.0)
        assert knee_flexion_angle(hip, knee, ankle) == pytest.approx(180.0)

    def test_torso_lean_is_deviation_from_axis(self):
        assert torso_lean_angle((0, 0), (0, 1)) == pytest.approx(0.0)
        assert torso_lean_angle((0, 0), (1, 1)) == pytest.approx(45.0)
        assert torso_lean_angle((0, 0), (-1, 1)) == pytest.approx(45.0)


# ============================================================================
# Smoothing
# ============================================================================

class TestEma:

    @pytest.mark.parametrize("alpha", [0.1, 0.3, 0.5, 1.0])
    def test_bootstrap_returns_current(self, alpha):
        assert ema(None, 123.4, alpha) == 123.4

    @pytest.mark.parametrize("alpha", [0.1, 0.3, 0.77, 1.0])
    def test_fixed_point(self, alpha):
        for value in (0.0, 42.42, 179.999):
            assert ema(value, value, alpha) == value

    def test_weighting(self):
        assert ema(100.0, 200.0, 0.3) == pytest.approx(130.0)

    def test_matches_weighted_form_bit_for_bit(self):
        for previous, current in ((150.123, 91.7), (179.3, 0.1), (97.31, 104.99)):
            assert ema(previous, current, 0.3) == 0.3 * current + (1 - 0.3) * previous

    def test_alpha_one_passes_through(self):
        assert ema(100.0, 90.0, 1.0) == pytest.approx(90.0)

    def test_reproducible(self):
        first = [ema(150.123, x, 0.3) for x in (1.1, 2.2, 3.3)]
        second = [ema(150.123, x, 0.3) for x in (1.1, 2.2, 3.3)]
        assert first == second


def test_round_half_up():
    assert round_half_up(89.5) == 90
    assert round_half_up(90.49) == 90
    assert round_half_up(74.5) == 75
