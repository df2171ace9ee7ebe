"""Unit tests for the crown Envelope and attraction-point sampling."""
import numpy as np
import pytest

from fuzzy_tree.envelope import Envelope, cone_profile, parabolic_profile
from fuzzy_tree.parameters import TreeParameters


@pytest.fixture
def cone():
    return Envelope(4.0, 4.0, cone_profile(4.0, 3.0), n_layers=10, angle_steps=36)


def test_layers_are_monotonic_with_equal_ring_sizes(cone):
    heights = cone.layers[:, 0, 1]
    assert np.all(np.diff(heights) > 0.0)
    assert cone.layers.shape == (10, 36, 3)


def test_interpolated_radius_matches_profile_on_grid(cone):
    for h in cone.heights:
        for a in (0.0, 10.0, 350.0):
            assert cone.interpolated_radius(h, a) == pytest.approx(cone.envelope_radius(h, a))


def test_interpolated_radius_between_layers_is_linear(cone):
    h = 0.5 * (cone.heights[2] + cone.heights[3])
    assert cone.interpolated_radius(h, 5.0) == pytest.approx(3.0 * (1.0 - h / 4.0))


def test_interpolated_radius_zero_outside_vertical_extent(cone):
    assert cone.interpolated_radius(-0.1, 0.0) == 0.0
    assert cone.interpolated_radius(4.1, 0.0) == 0.0


def test_contains(cone):
    assert cone.contains(np.array([0.0, 4.5, 0.0]))
    assert cone.contains(np.array([0.0, 4.0, -2.9]))
    assert not cone.contains(np.array([0.0, 4.0, 3.1]))
    assert not cone.contains(np.array([0.0, 3.9, 0.0]))  # below the crown
    assert not cone.contains(np.array([2.0, 7.5, 0.0]))  # near the apex


def test_bounds(cone):
    lo, hi = cone.bounds
    np.testing.assert_allclose(lo, [-3.0, 4.0, -3.0], atol=1e-9)
    np.testing.assert_allclose(hi, [3.0, 8.0, 3.0], atol=1e-9)


def test_sample_points_are_inside(cone, rng):
    """Sampled attraction points all pass the inclusion test."""
    pts = cone.sample(50, rng=rng)
    assert pts.shape == (50, 3)
    assert all(cone.contains(p) for p in pts)


def test_sample_zero_count():
    env = Envelope(0.0, 1.0, cone_profile(1.0, 1.0))
    assert env.sample(0).shape == (0, 3)


def test_sample_empty_envelope_raises(rng):
    env = Envelope(0.0, 1.0, lambda h, a: 0.0)
    with pytest.raises(RuntimeError):
        env.sample(5, rng=rng)


def test_sample_budget_exhausted_raises(cone, rng):
    """Sampling gives up with RuntimeError once the attempt budget is spent."""
    with pytest.raises(RuntimeError):
        cone.sample(5, rng=rng, max_attempts=1)


def test_from_parameters_sits_on_trunk():
    params = TreeParameters(trunk_height=4.0, crown_height=4.0, crown_radius=3.0)
    env = Envelope.from_parameters(params)
    assert env.base_height == pytest.approx(4.0)
    # parabola is widest mid-crown
    assert env.envelope_radius(2.0, 0.0) == pytest.approx(3.0)
    assert env.envelope_radius(0.0, 0.0) == pytest.approx(0.0)


def test_profiles_accept_angle():
    par = parabolic_profile(2.0, 1.0)
    assert par(1.0, 0.0) == par(1.0, 123.0)
    assert cone_profile(2.0, 1.0)(2.0, 45.0) == 0.0


def test_invalid_grid_raises():
    with pytest.raises(ValueError):
        Envelope(0.0, 0.0, cone_profile(1.0, 1.0))
    with pytest.raises(ValueError):
        Envelope(0.0, 1.0, cone_profile(1.0, 1.0), n_layers=1)
