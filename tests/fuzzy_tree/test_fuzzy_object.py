"""Unit tests for the FuzzyObject particle relaxation engine."""
from unittest.mock import Mock, call

import numpy as np
import pytest
from numpy.testing import assert_allclose

from fuzzy_tree.fuzzy_object import BuildState, FuzzyObject, lennard_jones_force, reflect
from fuzzy_tree.parameters import LJ_MINIMUM_RATIO, FuzzyParameters


def _place(fo, positions, velocities):
    """Replace the swarm with particles at `positions` moving with `velocities`."""
    fo.clear_particles()
    for _ in positions:
        fo.add_particle()
    fo.positions = np.asarray(positions, dtype=float)
    fo.velocities = np.asarray(velocities, dtype=float)
    for i in range(len(positions)):
        fo.update_facing_triangle(i)


# -----------------------------------------------------------------------------
# Lennard-Jones force
# -----------------------------------------------------------------------------
def test_force_vanishes_at_effect_range():
    sigma = 0.35
    d = LJ_MINIMUM_RATIO * sigma
    f = lennard_jones_force(np.array([d, 0.0, 0.0]), d, 0.005, sigma)
    assert_allclose(f, 0.0, atol=1e-12)


def test_force_sign_change():
    sigma, eps = 0.35, 0.005
    d_min = LJ_MINIMUM_RATIO * sigma
    for d in (0.5 * sigma, sigma, 0.99 * d_min):
        f = lennard_jones_force(np.array([d, 0.0, 0.0]), d, eps, sigma)
        assert f[0] > 0.0  # pushes apart
    for d in (1.01 * d_min, 2.0 * sigma):
        f = lennard_jones_force(np.array([d, 0.0, 0.0]), d, eps, sigma)
        assert f[0] < 0.0  # pulls together


def test_force_vectorized_over_pairs():
    delta = np.array([[0.1, 0.0, 0.0], [0.0, 0.2, 0.0]])
    dist = np.linalg.norm(delta, axis=1)
    f = lennard_jones_force(delta, dist, 0.005, 0.35)
    assert f.shape == (2, 3)
    assert_allclose(f[1], lennard_jones_force(delta[1], dist[1], 0.005, 0.35))


def test_reflect():
    v = np.array([[0.0, 0.0, 0.01]])
    n = np.array([[0.0, 0.0, -1.0]])
    assert_allclose(reflect(v, n), [[0.0, 0.0, -0.01]])


# -----------------------------------------------------------------------------
# Single steps
# -----------------------------------------------------------------------------
def test_starts_empty(unit_sphere):
    fo = FuzzyObject(unit_sphere, rng=np.random.default_rng(0))
    assert fo.state is BuildState.EMPTY
    assert fo.particle_count() == 0
    assert not fo.finished_building()
    assert fo.get_system().shape == (0, 3)
    assert_allclose(fo.spawn_point, [0.0, 0.0, 0.0], atol=1e-12)


def test_add_particle_spawns_near_spawn_point(unit_sphere, small_fuzzy_params):
    fo = FuzzyObject(unit_sphere, small_fuzzy_params, rng=np.random.default_rng(1))
    fo.add_particle()
    assert fo.particle_count() == 1
    assert np.all(np.abs(fo.positions[0]) <= small_fuzzy_params.spawn_offset)
    assert np.all(np.abs(fo.velocities[0]) <= small_fuzzy_params.vel_range)
    # from inside a closed sphere every ray hits
    assert fo.triangle_indices[0] >= 0
    assert fo.in_collision[0]


def test_missing_facing_triangle_is_culled(simple_triangle_mesh):
    """A particle whose velocity ray misses the mesh is dropped on the next update."""
    fo = FuzzyObject(
        simple_triangle_mesh,
        FuzzyParameters(spawn_offset=0.0),
        spawn_point=np.array([0.2, 0.2, 1.0]),
        rng=np.random.default_rng(0),
    )
    _place(fo, [[0.2, 0.2, 1.0]], [[0.0, 0.0, 1.0]])
    assert fo.triangle_indices[0] == -1
    assert np.all(np.isinf(fo.hit_points[0]))
    assert fo.in_collision[0]

    fo.update_building_system()
    assert fo.particle_count() == 0


def test_particle_outside_facing_triangle_is_culled(simple_triangle_mesh):
    """Particles past their facing triangle are removed; the survivor keeps its id and moves."""
    # the triangle's outward normal is +z, so z > 0 is outside
    fo = FuzzyObject(simple_triangle_mesh, rng=np.random.default_rng(0))
    _place(fo, [[0.2, 0.2, 1.0], [0.2, 0.2, -1.0]], [[0.0, 0.0, -1.0], [0.0, 0.0, 1.0]])
    assert list(fo.triangle_indices) == [0, 0]

    fo.update_building_system()
    assert fo.particle_count() == 1
    assert fo.ids[0] == 1
    # velocity was clamped to the velocity range before moving
    assert_allclose(fo.positions[0], [0.2, 0.2, -1.0 + fo.vel_range])


def test_boundary_reflection(simple_triangle_mesh):
    """A particle inside the boundary radius is reflected, damped and re-faced."""
    params = FuzzyParameters(boundary_radius=0.25, mesh_collision_friction=0.5)
    fo = FuzzyObject(simple_triangle_mesh, params, rng=np.random.default_rng(0))
    _place(fo, [[0.2, 0.2, -0.1]], [[0.0, 0.0, 0.01]])
    fo.accelerations[:] = 1.0

    fo.apply_boundary_forces()

    assert_allclose(fo.velocities[0], [0.0, 0.0, -0.005])
    assert_allclose(fo.accelerations[0], 0.0)
    # heading away from the only triangle now
    assert fo.triangle_indices[0] == -1


def test_pair_friction_compounds_per_neighbour(unit_sphere):
    """Friction is applied once per in-range pair, so the middle particle is slowed twice."""
    params = FuzzyParameters(length_scale=0.35, particle_collision_friction=0.5)
    fo = FuzzyObject(unit_sphere, params, rng=np.random.default_rng(0))
    _place(
        fo,
        [[0.0, 0.0, 0.0], [0.3, 0.0, 0.0], [0.6, 0.0, 0.0]],
        [[0.01, 0.01, 0.01]] * 3,
    )
    fo.accelerations[:] = 0.0
    fo.in_collision[:] = False

    fo.apply_particle_forces()

    assert_allclose(fo.velocities[0], 0.005)
    assert_allclose(fo.velocities[1], 0.0025)
    assert_allclose(fo.velocities[2], 0.005)
    assert fo.in_collision.all()
    # equal and opposite contributions
    assert_allclose(fo.accelerations.sum(axis=0), 0.0, atol=1e-12)
    assert fo.accelerations[0, 0] < 0.0 < fo.accelerations[2, 0]


def test_coincident_particles_are_skipped(unit_sphere):
    """Pairs closer than the minimum pair distance exert no force."""
    fo = FuzzyObject(unit_sphere, rng=np.random.default_rng(0))
    _place(fo, [[0.0, 0.0, 0.0], [0.0, 0.0, 0.0005]], [[0.01, 0.0, 0.0]] * 2)
    fo.accelerations[:] = 0.0
    fo.in_collision[:] = False

    fo.apply_particle_forces()

    assert_allclose(fo.accelerations, 0.0)
    assert not fo.in_collision.any()


@pytest.mark.parametrize(
    "second, refaced",
    [
        ([0.2, 0.1, 0.0], []),
        ([0.2, 0.1, 0.05], [call(0), call(1)]),
    ],
)
def test_refacing_needs_acceleration_on_every_axis(unit_sphere, second, refaced):
    """Only particles accelerated along x, y and z look for a new facing triangle.

    Two particles level in z push each other in the xy plane only, which
    leaves their facing triangles alone.
    """
    fo = FuzzyObject(unit_sphere, rng=np.random.default_rng(0))
    _place(fo, [[0.0, 0.0, 0.0], second], [[0.001, 0.002, 0.003]] * 2)
    fo.update_facing_triangle = Mock(wraps=fo.update_facing_triangle)

    fo.update_building_system()

    assert fo.particle_count() == 2
    assert np.all(fo.accelerations[:, :2] != 0.0)
    assert fo.update_facing_triangle.call_args_list == refaced


# -----------------------------------------------------------------------------
# Full builds
# -----------------------------------------------------------------------------
def test_incremental_build_advances_one_step(unit_sphere, small_fuzzy_params):
    fo = FuzzyObject(unit_sphere, small_fuzzy_params, rng=np.random.default_rng(2))
    fo.build_system_increment()
    assert fo.steps == 1
    assert fo.particle_count() <= 1
    assert fo.state is BuildState.GROWING


def test_stopping_criteria_at_particle_limit(unit_sphere):
    fo = FuzzyObject(unit_sphere, FuzzyParameters(particle_limit=2), rng=np.random.default_rng(0))
    assert not fo.stopping_criteria()
    fo.add_particle()
    fo.add_particle()
    fo.add_particle()  # ignored at the limit
    assert fo.particle_count() == 2
    assert fo.stopping_criteria()


@pytest.fixture
def crowded_params():
    # The pair range spans the whole unit sphere, so every pair interacts
    return FuzzyParameters(
        particle_limit=30, min_particle_count=2, stability_updates=3, length_scale=2.0
    )


def test_stopping_criteria_when_all_in_collision(unit_sphere, crowded_params):
    """A swarm still fully in collision after the stability updates stops growing."""
    fo = FuzzyObject(unit_sphere, crowded_params, rng=np.random.default_rng(0))
    _place(
        fo,
        [[0.0, 0.0, 0.0], [0.2, 0.0, 0.0], [0.0, 0.2, 0.0], [0.0, 0.0, 0.2]],
        [[0.001, 0.002, 0.003]] * 4,
    )
    fo.update_building_system()
    assert fo.collision_count == 4

    steps = fo.steps
    assert fo.stopping_criteria()
    assert fo.steps == steps + crowded_params.stability_updates
    assert fo.first_pass_finished
    assert fo.state is BuildState.STABILIZING

    fo.build_system()
    assert fo.state is BuildState.BUILT
    assert fo.particle_count() == 4


def test_build_stops_below_limit_once_swarm_is_stable(unit_sphere, crowded_params):
    """Growing ends on the collision test long before the particle limit."""
    fo = FuzzyObject(unit_sphere, crowded_params, rng=np.random.default_rng(4))
    fo.build_system(max_steps=100)

    assert fo.first_pass_finished
    assert fo.state is BuildState.BUILT
    assert crowded_params.min_particle_count < fo.particle_count()
    assert fo.particle_count() < crowded_params.particle_limit


def test_sphere_build_stays_inside(unit_sphere, small_fuzzy_params):
    """A full build inside a sphere finishes with every particle inside the shell."""
    fo = FuzzyObject(unit_sphere, small_fuzzy_params, rng=np.random.default_rng(3))
    fo.build_system(max_steps=500)

    assert fo.finished_building()
    assert fo.state is BuildState.BUILT
    assert 0 < fo.particle_count() <= small_fuzzy_params.particle_limit

    r = np.linalg.norm(fo.get_system(), axis=1)
    assert np.all(r <= 1.0 + small_fuzzy_params.boundary_radius)

    # Built is terminal
    count = fo.particle_count()
    fo.build_system()
    assert fo.particle_count() == count

    fo.clear_particles()
    assert fo.particle_count() == 0
    assert fo.finished_building()


def test_scale_density_is_reversible(unit_sphere):
    """Scaling up and back down restores the spacing parameters."""
    fo = FuzzyObject(unit_sphere, rng=np.random.default_rng(0))
    radius, boundary, spawn, sigma = fo.radius, fo.boundary_radius, fo.spawn_offset, fo.length_scale

    fo.scale_density(2.0)
    assert fo.radius == pytest.approx(2.0 * radius)
    assert fo.length_scale <= sigma
    assert fo.particle_geometry.bounds[1][2] == pytest.approx(2.0 * radius)

    fo.scale_density(0.5)
    assert fo.radius == pytest.approx(radius)
    assert fo.boundary_radius == pytest.approx(boundary)
    assert fo.spawn_offset == pytest.approx(spawn)
    assert fo.effect_range == pytest.approx(LJ_MINIMUM_RATIO * fo.length_scale)


def test_scale_density_rejects_non_positive(unit_sphere):
    fo = FuzzyObject(unit_sphere)
    with pytest.raises(ValueError):
        fo.scale_density(0.0)
