"""Wind sway model.

Each branch is treated as a cantilever spring loaded by wind pressure. The
pressure oscillates with the wind clock plus the branch's own phase offset;
dividing by the spring constant gives a displacement that is clamped to
[-1, 1] and turned into a rotation angle with arcsin. A branch reverses
its swing once the rotation accumulated from the root exceeds the clamp
angle, which keeps the motion bounded.

Wind time lives in an explicit `WindContext` passed to every update.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import numpy as np
from numpy.typing import NDArray
from scipy.spatial.transform import Rotation

from .branch import Branch
from .parameters import WindParameters

_LOGGER = logging.getLogger(__name__)

_MIN_LENGTH = 1e-5
_EPS = 1e-12
# Rotation axes driven by the wind (x and z; wind along y is ignored)
_SWAY_AXES = (0, 2)


@dataclass
class WindContext:
    """Wind clock threaded through every frame update."""

    time: float = 0.0
    time_step: float = 8e-6

    def advance(self) -> float:
        """Step the clock and return the new time."""
        self.time += self.time_step
        return self.time


def world_direction(direction: NDArray[Any], combined_rotation: NDArray[Any]) -> NDArray[Any]:
    """Rotate `direction` by an accumulated (x, y, z) rotation; x applies first, then z."""
    rot = Rotation.from_euler("xz", [combined_rotation[0], combined_rotation[2]])
    return rot.apply(direction)


class WindModel:
    """Per-frame branch sway driven by `WindParameters`."""

    def __init__(self, params: Optional[WindParameters] = None) -> None:
        self.params = WindParameters() if params is None else params
        self.force = self.params.force.copy()
        self.enabled = self.params.enabled

    def toggle(self) -> bool:
        """Switch wind on or off; returns the new state."""
        self.enabled = not self.enabled
        _LOGGER.info("Wind %s.", "enabled" if self.enabled else "disabled")
        return self.enabled

    def set_force(self, force: Sequence[float] | NDArray[Any]) -> None:
        f = np.asarray(force, dtype=float)
        if f.shape != (3,):
            raise ValueError(f"wind force must be a 3-vector, got shape {f.shape}")
        self.force = f

    def new_context(self) -> WindContext:
        return WindContext(time_step=self.params.time_step)

    def spring_constant(self, branch: Branch) -> float:
        """``k = E * base * thickness**2 / (4 * length**3)``.

        `thickness` is the mean of the base and top widths. Zero lengths are
        replaced by a small epsilon, and so is a vanishing result.
        """
        length = branch.length if branch.length > 0.0 else _MIN_LENGTH
        thickness = 0.5 * (branch.base_width + branch.top_width)
        k = self.params.elasticity * branch.base_width * thickness**2 / (4.0 * length**3)
        if k < _EPS:
            _LOGGER.debug("spring_constant: ~zero stiffness for %r; clamped.", branch.name)
            return _EPS
        return k

    def pressure(self, branch: Branch, force: NDArray[Any], time: float) -> NDArray[Any]:
        """Oscillating pressure from the wind component across the branch."""
        axis = branch.world_dir
        across = force - np.dot(force, axis) * axis
        return across * (1.0 + self.params.amplitude * np.sin(time + branch.offset))

    def displacement(self, branch: Branch, pressure: NDArray[Any]) -> NDArray[Any]:
        """Spring displacement clamped to [-1, 1]."""
        return np.clip(pressure / self.spring_constant(branch), -1.0, 1.0)

    def apply_branch(
        self,
        branch: Branch,
        context: WindContext,
        parent_rotation: Optional[NDArray[Any]] = None,
    ) -> None:
        """Update the sway state of a single branch."""
        inherited = np.zeros(3) if parent_rotation is None else parent_rotation
        branch.world_dir = world_direction(branch.direction, inherited)

        disp = self.displacement(branch, self.pressure(branch, self.force, context.time))
        context.advance()

        rotation = np.zeros(3, dtype=float)
        for axis in _SWAY_AXES:
            rotation[axis] = branch.sway_sign[axis] * np.arcsin(disp[axis])
        branch.rotation = rotation
        branch.combined_rotation = inherited + rotation

        for axis in _SWAY_AXES:
            if abs(branch.combined_rotation[axis]) > self.params.clamp_angle:
                branch.sway_sign[axis] *= -1.0

        branch.rotation_min = np.minimum(branch.rotation_min, rotation)
        branch.rotation_max = np.maximum(branch.rotation_max, rotation)

    def apply(self, root: Branch, context: WindContext) -> None:
        """Update every branch below (and including) `root`, parents first.

        Does nothing while the wind is disabled.
        """
        if not self.enabled:
            return
        for branch in root.walk():
            parent = branch.parent
            self.apply_branch(
                branch,
                context,
                None if parent is None else parent.combined_rotation,
            )
        _LOGGER.debug("Wind applied at t=%.6g", context.time)
