"""Module defining the parameter classes for tree growth, particles and wind.

This module provides the settings containers consumed by the growth engine
(`TreeParameters`), the particle relaxation engine (`FuzzyParameters`) and
the wind sway model (`WindParameters`).
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import numpy as np

from .config import bool_env

_LOGGER = logging.getLogger(__name__)

# Distance at which the Lennard-Jones force changes sign, in units of sigma.
LJ_MINIMUM_RATIO = 2.0 ** (1.0 / 6.0)


class TreeParameters:
    """Holds settings for growing a tree skeleton by space colonization.

    Attributes:
        trunk_height (float): Height of the crown base; the trunk segment spans
            ``max(trunk_height, branch_segment_length)``.
        branch_segment_length (float): Length of every grown segment.
        radius_of_influence (float): Max distance at which an attraction point
            steers a branch tip.
        kill_distance (float): Distance at which an attraction point is consumed.
        attraction_point_count (int): Number of points sampled in the envelope.
        crown_height (float): Vertical extent of the envelope above the trunk.
        crown_radius (float): Maximum envelope radius.
        envelope_layers (int): Number of height layers of the envelope grid.
        envelope_angle_steps (int): Number of angular samples per layer.
        min_branch_width (float): Base width given to leaf branches.
        tip_width (float): Top width given to leaf branches.
        merge_angle (float): Sibling branches closer than this (degrees) merge.
        gravity (NDArray): Bias added to every growth direction.
        max_iterations (Optional[int]): Growth iteration guard; None disables it.
        root_position (NDArray): World-space origin of the trunk.

    Notes:
        - `kill_distance` larger than `branch_segment_length` guarantees that a
          tip heading straight at a point eventually consumes it.
        - Points that never fall within `radius_of_influence` of a tip are
          only released by `max_iterations`.
    """

    def __init__(
        self,
        trunk_height: float = 4.0,
        branch_segment_length: float = 1.0,
        radius_of_influence: float = 6.0,
        kill_distance: float = 1.5,
        attraction_point_count: int = 50,
        crown_height: float = 4.0,
        crown_radius: float = 3.0,
        envelope_layers: int = 10,
        envelope_angle_steps: int = 36,
        min_branch_width: float = 0.1,
        tip_width: float = 0.05,
        merge_angle: float = 5.0,
        gravity: Sequence[float] = (0.0, -0.2, 0.0),
        max_iterations: Optional[int] = 1000,
        root_position: Sequence[float] = (0.0, 0.0, 0.0),
    ) -> None:
        self.trunk_height = float(trunk_height)
        self.branch_segment_length = float(branch_segment_length)
        self.radius_of_influence = float(radius_of_influence)
        self.kill_distance = float(kill_distance)
        self.attraction_point_count = int(attraction_point_count)

        # Envelope
        self.crown_height = float(crown_height)
        self.crown_radius = float(crown_radius)
        self.envelope_layers = int(envelope_layers)
        self.envelope_angle_steps = int(envelope_angle_steps)

        # Widths
        self.min_branch_width = float(min_branch_width)
        self.tip_width = float(tip_width)

        self.merge_angle = float(merge_angle)
        self.gravity = np.asarray(gravity, dtype=float)
        self.max_iterations = None if max_iterations is None else int(max_iterations)
        self.root_position = np.asarray(root_position, dtype=float)

        self.validate()

    def validate(self) -> None:
        """Check parameter consistency.

        Raises:
            ValueError: If any setting makes growth impossible.
        """
        positive = {
            "branch_segment_length": self.branch_segment_length,
            "radius_of_influence": self.radius_of_influence,
            "kill_distance": self.kill_distance,
            "crown_height": self.crown_height,
            "min_branch_width": self.min_branch_width,
            "tip_width": self.tip_width,
        }
        for name, value in positive.items():
            if not value > 0.0:
                _LOGGER.error("TreeParameters: %s must be > 0 (got %r).", name, value)
                raise ValueError(f"{name} must be > 0, got {value!r}")

        if self.trunk_height < 0.0:
            raise ValueError(f"trunk_height must be >= 0, got {self.trunk_height!r}")
        if self.crown_radius < 0.0:
            raise ValueError(f"crown_radius must be >= 0, got {self.crown_radius!r}")
        if self.attraction_point_count < 0:
            raise ValueError("attraction_point_count must be >= 0")
        if self.kill_distance > self.radius_of_influence:
            raise ValueError(
                "kill_distance must not exceed radius_of_influence "
                f"({self.kill_distance!r} > {self.radius_of_influence!r})"
            )
        if self.tip_width > self.min_branch_width:
            raise ValueError(
                "tip_width must not exceed min_branch_width "
                f"({self.tip_width!r} > {self.min_branch_width!r})"
            )
        if self.envelope_layers < 2 or self.envelope_angle_steps < 3:
            raise ValueError("envelope needs >= 2 layers and >= 3 angular steps")
        if self.max_iterations is not None and self.max_iterations < 0:
            raise ValueError("max_iterations must be >= 0 or None")
        if self.gravity.shape != (3,) or self.root_position.shape != (3,):
            raise ValueError("gravity and root_position must be 3-vectors")

    @property
    def trunk_length(self) -> float:
        """Length of the trunk segment."""
        return max(self.trunk_height, self.branch_segment_length)


class FuzzyParameters:
    """Holds settings for the particle relaxation engine.

    Attributes:
        particle_limit (int): Hard cap on the number of particles.
        min_particle_count (int): Floor the swarm must exceed before the
            all-in-collision stopping test applies.
        stability_updates (int): Extra relaxation updates run before the
            stopping test is confirmed.
        vel_range (float): Per-component velocity bound.
        radius (float): Particle radius (render geometry).
        boundary_radius (float): Distance to the facing triangle at which a
            particle is reflected.
        spawn_offset (float): Half-width of the random spawn jitter.
        mass (float): Particle mass.
        strength (float): Lennard-Jones well depth (epsilon).
        length_scale (float): Lennard-Jones length scale (sigma).
        effect_range (float): Pair cut-off, ``2**(1/6) * length_scale``.
        mesh_collision_friction (float): Velocity factor applied on reflection.
        particle_collision_friction (float): Velocity factor applied per
            in-range particle pair.
    """

    def __init__(
        self,
        particle_limit: int = 3000,
        min_particle_count: int = 10,
        stability_updates: int = 10,
        vel_range: float = 0.03,
        radius: float = 0.2,
        boundary_radius: float = 0.25,
        spawn_offset: float = 0.05,
        mass: float = 100.0,
        strength: float = 0.005,
        length_scale: float = 0.35,
        mesh_collision_friction: float = 0.995,
        particle_collision_friction: float = 0.995,
    ) -> None:
        self.particle_limit = int(particle_limit)
        self.min_particle_count = int(min_particle_count)
        self.stability_updates = int(stability_updates)

        # Particle attributes
        self.vel_range = float(vel_range)
        self.radius = float(radius)
        self.boundary_radius = float(boundary_radius)
        self.spawn_offset = float(spawn_offset)
        self.mass = float(mass)

        # LJ potential
        self.strength = float(strength)
        self.length_scale = float(length_scale)
        self.effect_range = LJ_MINIMUM_RATIO * self.length_scale

        # Physics
        self.mesh_collision_friction = float(mesh_collision_friction)
        self.particle_collision_friction = float(particle_collision_friction)

        if self.mass <= 0.0:
            raise ValueError(f"mass must be > 0, got {self.mass!r}")
        if self.length_scale <= 0.0:
            raise ValueError(f"length_scale must be > 0, got {self.length_scale!r}")
        if self.vel_range < 0.0 or self.particle_limit < 0:
            raise ValueError("vel_range and particle_limit must be non-negative")

    @classmethod
    def example(cls) -> FuzzyParameters:
        """Return hand-tuned values that convert typical models quickly."""
        return cls(
            stability_updates=10,
            vel_range=0.03,
            radius=0.2,
            boundary_radius=0.23,
            spawn_offset=0.05,
            strength=0.005,
            length_scale=0.32,
        )


class WindParameters:
    """Holds settings for the wind sway model.

    Attributes:
        force (NDArray): Wind force vector; only x and z sway the branches.
        elasticity (float): Material stiffness in the spring constant.
        amplitude (float): Strength of the sinusoidal gusting.
        clamp_angle (float): Accumulated rotation (radians) past which a
            branch swings back.
        time_step (float): Time added to the wind clock per branch update.
        enabled (bool): Whether wind is applied at all; read from the
            `FUZZY_TREE_WIND` environment variable when not given.
    """

    def __init__(
        self,
        force: Sequence[float] = (20.0, 0.0, 20.0),
        elasticity: float = 1.0,
        amplitude: float = 1.0,
        clamp_angle: float = 0.5,
        time_step: float = 8e-6,
        enabled: Optional[bool] = None,
    ) -> None:
        self.force = np.asarray(force, dtype=float)
        self.elasticity = float(elasticity)
        self.amplitude = float(amplitude)
        self.clamp_angle = float(clamp_angle)
        self.time_step = float(time_step)
        self.enabled = bool_env("FUZZY_TREE_WIND", True) if enabled is None else bool(enabled)

        if self.force.shape != (3,):
            raise ValueError(f"force must be a 3-vector, got shape {self.force.shape}")
        if self.clamp_angle <= 0.0:
            raise ValueError(f"clamp_angle must be > 0, got {self.clamp_angle!r}")
