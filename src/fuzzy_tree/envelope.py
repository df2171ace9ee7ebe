"""Module defining the crown Envelope and attraction-point sampling.

The envelope describes the region a tree crown may occupy as a maximum
radius for every (height above trunk, angle around the vertical axis) pair.
It is materialized as a grid of rings (layers x angular steps) that is used
both for point-inclusion tests, by bilinear interpolation between the two
nearest layers and angular samples, and for bounding-box derivation.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray

from .config import config
from .parameters import TreeParameters

_LOGGER = logging.getLogger(__name__)

ProfileFn = Callable[[float, float], float]


def parabolic_profile(crown_height: float, crown_radius: float) -> ProfileFn:
    """Return a downward parabola in normalized height, widest mid-crown."""

    def profile(height: float, angle: float) -> float:
        hn = height / crown_height
        return max(0.0, crown_radius * 4.0 * hn * (1.0 - hn))

    return profile


def cone_profile(crown_height: float, crown_radius: float) -> ProfileFn:
    """Return a cone profile, widest at the crown base and closed at the top."""

    def profile(height: float, angle: float) -> float:
        hn = height / crown_height
        return max(0.0, crown_radius * (1.0 - hn))

    return profile


class Envelope:
    """Allowed growth region around a vertical axis.

    Attributes:
        base_height (float): World height of the lowest layer (top of trunk).
        crown_height (float): Vertical extent from the lowest to the highest layer.
        center (NDArray[Any]): (x, z) of the vertical axis.
        heights (NDArray[Any]): Layer heights above `base_height`, shape (L,).
        layers (NDArray[Any]): Ring points, shape (L, A, 3), world space.
        radii (NDArray[Any]): Ring radii, shape (L, A).
    """

    def __init__(
        self,
        base_height: float,
        crown_height: float,
        profile: ProfileFn,
        n_layers: int = 10,
        angle_steps: int = 36,
        center: Sequence[float] = (0.0, 0.0),
    ) -> None:
        """Materialize the envelope grid.

        Args:
            base_height: World height of the crown base.
            crown_height: Height of the crown above its base.
            profile: ``profile(height_above_trunk, angle_degrees) -> radius``.
            n_layers: Number of layers (>= 2).
            angle_steps: Number of angular samples per layer (>= 3).
            center: (x, z) position of the vertical axis.

        Raises:
            ValueError: On a non-positive crown height or a too coarse grid.
        """
        if crown_height <= 0.0:
            raise ValueError(f"crown_height must be > 0, got {crown_height!r}")
        if n_layers < 2 or angle_steps < 3:
            raise ValueError("envelope needs >= 2 layers and >= 3 angular steps")

        self.base_height = float(base_height)
        self.crown_height = float(crown_height)
        self.profile = profile
        self.center = np.asarray(center, dtype=float)
        self.angle_step = 360.0 / angle_steps

        self.heights = np.linspace(0.0, self.crown_height, n_layers)
        angles = np.arange(angle_steps) * self.angle_step

        self.radii = np.array(
            [[max(0.0, float(profile(h, a))) for a in angles] for h in self.heights],
            dtype=float,
        )

        rad = np.radians(angles)
        self.layers = np.empty((n_layers, angle_steps, 3), dtype=float)
        self.layers[:, :, 0] = self.center[0] + self.radii * np.cos(rad)[None, :]
        self.layers[:, :, 1] = (self.base_height + self.heights)[:, None]
        self.layers[:, :, 2] = self.center[1] + self.radii * np.sin(rad)[None, :]

        _LOGGER.debug(
            "Envelope: %d layers x %d steps, base=%.4g, height=%.4g, max radius=%.4g",
            n_layers,
            angle_steps,
            self.base_height,
            self.crown_height,
            float(self.radii.max()),
        )

    @classmethod
    def from_parameters(
        cls, params: TreeParameters, profile: Optional[ProfileFn] = None
    ) -> Envelope:
        """Build the crown envelope described by tree parameters.

        The default profile is the parabolic one.
        """
        if profile is None:
            profile = parabolic_profile(params.crown_height, params.crown_radius)
        root = params.root_position
        return cls(
            base_height=float(root[1]) + params.trunk_length,
            crown_height=params.crown_height,
            profile=profile,
            n_layers=params.envelope_layers,
            angle_steps=params.envelope_angle_steps,
            center=(float(root[0]), float(root[2])),
        )

    def envelope_radius(self, height: float, angle: float) -> float:
        """Closed-form envelope radius at a height above trunk and angle in degrees."""
        return max(0.0, float(self.profile(height, angle)))

    def interpolated_radius(self, height: float, angle: float) -> float:
        """Grid radius at (height above trunk, angle in degrees), bilinear.

        Returns:
            The interpolated radius, or 0.0 outside the vertical extent.
        """
        if height < 0.0 or height > self.crown_height:
            return 0.0

        n_layers, n_steps = self.radii.shape
        f = height / self.crown_height * (n_layers - 1)
        i0 = min(int(np.floor(f)), n_layers - 2)
        tf = f - i0

        g = (angle % 360.0) / self.angle_step
        j0 = int(np.floor(g)) % n_steps
        j1 = (j0 + 1) % n_steps
        ta = g - np.floor(g)

        lower = (1.0 - ta) * self.radii[i0, j0] + ta * self.radii[i0, j1]
        upper = (1.0 - ta) * self.radii[i0 + 1, j0] + ta * self.radii[i0 + 1, j1]
        return float((1.0 - tf) * lower + tf * upper)

    def contains(self, point: NDArray[Any]) -> bool:
        """Return True if `point` lies inside the interpolated envelope."""
        p = np.asarray(point, dtype=float)
        height = float(p[1]) - self.base_height
        if height < 0.0 or height > self.crown_height:
            return False
        dx = p[0] - self.center[0]
        dz = p[2] - self.center[1]
        angle = float(np.degrees(np.arctan2(dz, dx)))
        radius = self.interpolated_radius(height, angle)
        return bool(np.hypot(dx, dz) <= radius)

    @property
    def bounds(self) -> Tuple[NDArray[Any], NDArray[Any]]:
        """Axis-aligned bounding box ``(lo, hi)`` of the envelope rings."""
        lo = self.layers.reshape(-1, 3).min(axis=0)
        hi = self.layers.reshape(-1, 3).max(axis=0)
        return lo, hi

    def sample(
        self,
        count: int,
        rng: Optional[np.random.Generator] = None,
        max_attempts: Optional[int] = None,
    ) -> NDArray[Any]:
        """Draw attraction points uniformly inside the envelope.

        Candidates are drawn uniformly in the bounding box and kept only if
        `contains` accepts them.

        Args:
            count: Number of points to return.
            rng: Generator to draw from; defaults to the configured one.
            max_attempts: Candidate budget; defaults to ``1000 * count``.

        Returns:
            Array of shape (count, 3).

        Raises:
            RuntimeError: If the budget is exhausted before `count` points
                were accepted (near-empty envelope).
        """
        if count <= 0:
            return np.empty((0, 3), dtype=float)

        gen = config.rng if rng is None else rng
        budget = 1000 * count if max_attempts is None else int(max_attempts)
        lo, hi = self.bounds

        if not np.any(self.radii > 0.0):
            _LOGGER.error("Envelope.sample: envelope has zero radius everywhere.")
            raise RuntimeError("Cannot sample attraction points in an empty envelope.")

        accepted: list[NDArray[Any]] = []
        attempts = 0
        while len(accepted) < count:
            if attempts >= budget:
                _LOGGER.error(
                    "Envelope.sample: accepted %d/%d points after %d attempts.",
                    len(accepted),
                    count,
                    attempts,
                )
                raise RuntimeError(
                    f"Envelope rejection sampling exceeded {budget} attempts "
                    f"({len(accepted)}/{count} points accepted)."
                )
            candidate = gen.uniform(lo, hi)
            attempts += 1
            if self.contains(candidate):
                accepted.append(candidate)

        _LOGGER.info(
            "Envelope.sample: %d points accepted after %d attempts.", count, attempts
        )
        return np.array(accepted, dtype=float)
