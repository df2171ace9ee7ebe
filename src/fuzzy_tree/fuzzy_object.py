"""Particle representation ("fuzzy object") of a closed triangle mesh.

A swarm of particles is spawned inside a mesh and relaxed under a pairwise
Lennard-Jones style potential. Every particle casts a ray along its velocity
to find the triangle it is heading for; it bounces off that triangle when
it gets within the boundary radius and is discarded once it ends up on the
outside. Particles are added one per step until every particle is in
collision (with a neighbour or the boundary) and stays so for a number of
stability updates, or the particle limit is reached.

Reference: B. M. Dingle, "Obtaining Fuzzy Representations of 3D Objects",
Texas A&M University, 2005.
"""

from __future__ import annotations

import enum
import logging
from typing import Any, Optional

import numpy as np
from numpy.typing import NDArray
from scipy.spatial import cKDTree

from .config import config
from .mesh import Mesh
from .parameters import LJ_MINIMUM_RATIO, FuzzyParameters
from .primitives import sphere_mesh

_LOGGER = logging.getLogger(__name__)

# Pairs closer than this are skipped to avoid the potential's singularity.
_MIN_PAIR_DISTANCE = 1e-3
_NO_HIT = np.full(3, np.inf)


class BuildState(enum.Enum):
    """Lifecycle of a particle system build."""

    EMPTY = "empty"
    GROWING = "growing"
    STABILIZING = "stabilizing"
    BUILT = "built"


def lennard_jones_force(
    delta: NDArray[Any], dist: Any, strength: float, length_scale: float
) -> NDArray[Any]:
    """Force one particle exerts on another at separation `delta`.

    ``F = 48 e / s^2 * ((s/d)^14 - 0.5 (s/d)^8) * delta``; positive
    coefficients push the particles apart. The sign changes at
    ``d = 2**(1/6) * s``.

    Args:
        delta: Position difference(s), shape (3,) or (P, 3).
        dist: Matching distance(s), scalar or shape (P,).
        strength: Well depth ``e``.
        length_scale: Length scale ``s``.
    """
    ratio = length_scale / np.asarray(dist, dtype=float)
    coeff = 48.0 * strength / length_scale**2 * (ratio**14 - 0.5 * ratio**8)
    return coeff[..., None] * np.asarray(delta, dtype=float)


def reflect(v: NDArray[Any], n: NDArray[Any]) -> NDArray[Any]:
    """Reflect row vectors `v` about unit normals `n`."""
    return v - 2.0 * np.einsum("ij,ij->i", v, n)[:, None] * n


class FuzzyObject:
    """Particle relaxation engine bound to one mesh.

    Attributes:
        mesh (Mesh): Collision oracle (not owned).
        spawn_point (NDArray[Any]): Centre of the particle spawn region.
        positions (NDArray[Any]): Particle positions, shape (N, 3).
        velocities (NDArray[Any]): Particle velocities, shape (N, 3).
        accelerations (NDArray[Any]): Accumulated accelerations, shape (N, 3).
        hit_points (NDArray[Any]): Cached facing-triangle intersection points;
            ``inf`` rows when no triangle is faced.
        triangle_indices (NDArray[Any]): Facing triangle per particle, -1 if none.
        in_collision (NDArray[Any]): Collision flag per particle.
        ids (NDArray[Any]): Sequence ids of the particles.
        collision_count (int): Particles in collision after the last update.
    """

    def __init__(
        self,
        mesh: Mesh,
        params: Optional[FuzzyParameters] = None,
        spawn_point: Optional[NDArray[Any]] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        p = FuzzyParameters() if params is None else params
        self.mesh = mesh
        self.rng = config.rng if rng is None else rng
        self.spawn_point = (
            mesh.origin.copy() if spawn_point is None else np.asarray(spawn_point, dtype=float)
        )

        # Copied so density scaling stays local to this object
        self.particle_limit = p.particle_limit
        self.min_particle_count = p.min_particle_count
        self.stability_updates = p.stability_updates
        self.vel_range = p.vel_range
        self.radius = p.radius
        self.boundary_radius = p.boundary_radius
        self.spawn_offset = p.spawn_offset
        self.mass = p.mass
        self.strength = p.strength
        self.length_scale = p.length_scale
        self.effect_range = p.effect_range
        self.mesh_collision_friction = p.mesh_collision_friction
        self.particle_collision_friction = p.particle_collision_friction

        self.first_pass_finished = False
        self.build_finished = False
        self.collision_count = 0
        self.steps = 0
        self._next_id = 0

        self.clear_particles()
        self._setup_particle_geometry()

        _LOGGER.debug(
            "FuzzyObject on %r: spawn=%s limit=%d",
            mesh,
            self.spawn_point.tolist(),
            self.particle_limit,
        )

    def _setup_particle_geometry(self) -> None:
        """(Re)build the per-particle instance geometry."""
        self.particle_geometry = sphere_mesh(self.radius, 3, 3)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    @property
    def state(self) -> BuildState:
        if self.build_finished:
            return BuildState.BUILT
        if self.first_pass_finished or (
            self.particle_count() and self.particle_count() >= self.particle_limit
        ):
            return BuildState.STABILIZING
        if self.steps == 0 and self.particle_count() == 0:
            return BuildState.EMPTY
        return BuildState.GROWING

    def particle_count(self) -> int:
        return int(self.positions.shape[0])

    def finished_building(self) -> bool:
        return self.build_finished

    def get_system(self) -> NDArray[Any]:
        """Particle positions, shape (N, 3), in mesh-local coordinates."""
        return self.positions.copy()

    def clear_particles(self) -> None:
        """Remove every particle."""
        self.positions = np.empty((0, 3), dtype=float)
        self.velocities = np.empty((0, 3), dtype=float)
        self.accelerations = np.empty((0, 3), dtype=float)
        self.hit_points = np.empty((0, 3), dtype=float)
        self.triangle_indices = np.empty(0, dtype=int)
        self.in_collision = np.empty(0, dtype=bool)
        self.ids = np.empty(0, dtype=int)
        self.collision_count = 0

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------
    def build_system_increment(self) -> None:
        """Advance the build by exactly one step."""
        self.build_system(incremental=True)

    def build_system(self, incremental: bool = False, max_steps: Optional[int] = None) -> None:
        """Build the particle system.

        Args:
            incremental: Return after a single step.
            max_steps: Optional cap on relaxation updates in this call; the
                build is left unfinished when it is hit.
        """
        done = 0

        # Growing: add one particle per step
        while not self.first_pass_finished and not self.stopping_criteria():
            self.add_particle()
            self.update_building_system()
            done += 1
            if incremental:
                return
            if max_steps is not None and done >= max_steps:
                _LOGGER.warning(
                    "build_system: stopped after %d steps with %d particles.",
                    done,
                    self.particle_count(),
                )
                return

        # Stabilizing
        while not self.system_at_rest():
            self.update_building_system()
            if incremental:
                return

        if not self.build_finished:
            _LOGGER.info(
                "FuzzyObject built: %d particles after %d updates.",
                self.particle_count(),
                self.steps,
            )
        self.build_finished = True

    def stopping_criteria(self) -> bool:
        """True when the growing phase is over.

        Either the particle limit is reached, or every particle is in
        collision (and there are more than the minimum) both now and after
        the stability updates.
        """
        if self.particle_count() >= self.particle_limit:
            return True

        if self._all_in_collision():
            for _ in range(self.stability_updates):
                self.update_building_system()

            if self._all_in_collision():
                self.first_pass_finished = True
                _LOGGER.debug(
                    "stopping_criteria: swarm stable with %d particles.",
                    self.particle_count(),
                )
                return True

        return False

    def _all_in_collision(self) -> bool:
        n = self.particle_count()
        return self.collision_count == n and n > self.min_particle_count

    def system_at_rest(self) -> bool:
        """Whether the swarm has settled after the growing phase."""
        return True

    def add_particle(self) -> None:
        """Spawn one particle near the spawn point with a random velocity."""
        if self.particle_count() >= self.particle_limit:
            return

        off = self.spawn_offset
        pos = self.spawn_point + self.rng.uniform(-off, off, size=3)
        vel = self.rng.uniform(-1.0, 1.0, size=3) * self.vel_range

        self.positions = np.vstack([self.positions, pos])
        self.velocities = np.vstack([self.velocities, vel])
        self.accelerations = np.vstack([self.accelerations, np.zeros(3)])
        self.hit_points = np.vstack([self.hit_points, _NO_HIT])
        self.triangle_indices = np.append(self.triangle_indices, -1)
        self.in_collision = np.append(self.in_collision, False)
        self.ids = np.append(self.ids, self._next_id)
        self._next_id += 1

        self.update_facing_triangle(self.particle_count() - 1)

    def update_building_system(self) -> None:
        """Perform one relaxation update."""
        self.steps += 1
        self.accelerations[:] = 0.0
        self.in_collision[:] = False

        self._remove_escaped()
        self.apply_particle_forces()
        self.apply_boundary_forces()

        # Integrate
        self.accelerations /= self.mass
        self.velocities = np.clip(
            self.velocities + self.accelerations, -self.vel_range, self.vel_range
        )
        self.positions += self.velocities

        # Acceleration on every axis may have turned the particle around.
        # TODO: revisit whether any non-zero axis should trigger this.
        turned = np.all(self.accelerations != 0.0, axis=1)
        for i in np.flatnonzero(turned):
            self.update_facing_triangle(int(i))

        self.collision_count = int(np.count_nonzero(self.in_collision))

    def _remove_escaped(self) -> None:
        """Drop particles that crossed their facing triangle or face nothing."""
        if self.particle_count() == 0:
            return

        faced = (self.triangle_indices >= 0) & np.all(np.isfinite(self.hit_points), axis=1)
        inward = -self.mesh.normals[np.where(faced, self.triangle_indices, 0)]
        hits = np.where(faced[:, None], self.hit_points, 0.0)
        depth = np.einsum("ij,ij->i", self.positions - hits, inward)
        escaped = ~faced | (depth < 0.0)

        if np.any(escaped):
            keep = ~escaped
            _LOGGER.debug("Removing %d escaped particles.", int(escaped.sum()))
            self.positions = self.positions[keep]
            self.velocities = self.velocities[keep]
            self.accelerations = self.accelerations[keep]
            self.hit_points = self.hit_points[keep]
            self.triangle_indices = self.triangle_indices[keep]
            self.in_collision = self.in_collision[keep]
            self.ids = self.ids[keep]

    def apply_particle_forces(self) -> None:
        """Accumulate pairwise forces and per-pair friction."""
        n = self.particle_count()
        if n < 2:
            return

        pairs = cKDTree(self.positions).query_pairs(self.effect_range, output_type="ndarray")
        if len(pairs) == 0:
            return

        i, j = pairs[:, 0], pairs[:, 1]
        delta = self.positions[i] - self.positions[j]
        dist = np.linalg.norm(delta, axis=1)
        close = (dist < self.effect_range) & (dist >= _MIN_PAIR_DISTANCE)
        i, j, delta, dist = i[close], j[close], delta[close], dist[close]
        if i.size == 0:
            return

        force = lennard_jones_force(delta, dist, self.strength, self.length_scale)
        np.add.at(self.accelerations, i, force)
        np.add.at(self.accelerations, j, -force)

        # Friction compounds once per neighbouring pair
        contacts = np.bincount(np.concatenate([i, j]), minlength=n)
        self.velocities *= (self.particle_collision_friction ** contacts)[:, None]
        self.in_collision |= contacts > 0

    def apply_boundary_forces(self) -> None:
        """Bounce particles off their facing triangle when close enough."""
        if self.particle_count() == 0:
            return

        gap = np.linalg.norm(self.positions - self.hit_points, axis=1)
        hitting = np.flatnonzero(gap < self.boundary_radius)
        if hitting.size == 0:
            return

        inward = -self.mesh.normals[self.triangle_indices[hitting]]
        self.velocities[hitting] = (
            reflect(self.velocities[hitting], inward) * self.mesh_collision_friction
        )
        self.accelerations[hitting] = 0.0

        for i in hitting:
            self.update_facing_triangle(int(i))

    def update_facing_triangle(self, index: int) -> None:
        """Recompute the triangle a particle is heading for.

        A particle whose velocity ray hits nothing gets the sentinel state,
        which the next boundary-exit check culls.
        """
        tri, point = self.mesh.closest_intersection(
            self.positions[index], self.velocities[index]
        )
        if point is None:
            self.hit_points[index] = _NO_HIT
            self.triangle_indices[index] = -1
        else:
            self.hit_points[index] = point
            self.triangle_indices[index] = tri
        self.in_collision[index] = True

    # ------------------------------------------------------------------
    # Density control
    # ------------------------------------------------------------------
    def scale_density(self, factor: float) -> None:
        """Rescale particle spacing parameters by `factor`.

        Radius, boundary radius and spawn offset scale linearly; the
        potential length scale never grows past its current value.
        """
        if factor <= 0.0:
            raise ValueError(f"density factor must be > 0, got {factor!r}")

        self.radius *= factor
        self.boundary_radius *= factor
        self.spawn_offset *= factor
        self.length_scale = min(self.length_scale, self.length_scale * max(factor * 1.5, 1.0))
        self.effect_range = LJ_MINIMUM_RATIO * self.length_scale

        self._setup_particle_geometry()
        _LOGGER.debug(
            "scale_density(%g): radius=%.4g boundary=%.4g sigma=%.4g",
            factor,
            self.radius,
            self.boundary_radius,
            self.length_scale,
        )
