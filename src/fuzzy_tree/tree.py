"""Module defining the Tree class, which ties the whole pipeline together.

A Tree grows a skeleton by space colonization, simplifies it and assigns
widths, builds one cylinder collision mesh and one particle engine per
branch, and bakes every branch's particles into a single world-space
point cloud. It also drives the wind sway model and exports the skeleton
and particle cloud with meshio.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

import meshio
import numpy as np
from numpy.typing import NDArray
from scipy.spatial.transform import Rotation

from .branch import Branch
from .config import config
from .envelope import Envelope
from .fuzzy_object import FuzzyObject
from .growth import SpaceColonization
from .parameters import FuzzyParameters, TreeParameters, WindParameters
from .primitives import cylinder_mesh
from .skeleton import propagate_widths, simplify
from .wind import WindContext, WindModel

_LOGGER = logging.getLogger(__name__)

_EPS = 1e-12
# Axis the branch cylinders (and their particles) are generated along
_LOCAL_AXIS = np.array([0.0, 0.0, 1.0])


def axis_rotation(direction: NDArray[Any]) -> Rotation:
    """Rotation taking the local +z axis onto `direction`.

    The rotation is about ``cross(z, direction)`` by the angle between them;
    parallel and anti-parallel directions are handled explicitly.
    """
    d = np.asarray(direction, dtype=float)
    d = d / max(float(np.linalg.norm(d)), _EPS)
    axis = np.cross(_LOCAL_AXIS, d)
    sin = float(np.linalg.norm(axis))
    cos = float(np.dot(_LOCAL_AXIS, d))
    if sin < _EPS:
        if cos > 0.0:
            return Rotation.identity()
        return Rotation.from_rotvec([np.pi, 0.0, 0.0])
    return Rotation.from_rotvec(axis / sin * np.arctan2(sin, cos))


class Tree:
    """A grown tree together with its per-branch particle systems.

    Attributes:
        params (TreeParameters): Growth settings.
        fuzzy_params (FuzzyParameters): Settings for every branch engine.
        position (NDArray[Any]): World-space offset added to baked particles.
        root (Branch): Trunk of the skeleton.
        growth (Optional[SpaceColonization]): Growth engine; None for a tree
            built from an existing skeleton.
        wind (WindModel): Sway model.
        wind_context (WindContext): Wind clock.
        density_reference_width (Optional[float]): Branch width at which
            particle density is left unscaled; None disables scaling.
    """

    def __init__(
        self,
        params: Optional[TreeParameters] = None,
        fuzzy_params: Optional[FuzzyParameters] = None,
        wind_params: Optional[WindParameters] = None,
        position: Sequence[float] = (0.0, 0.0, 0.0),
        density_reference_width: Optional[float] = None,
        rng: Optional[np.random.Generator] = None,
        envelope: Optional[Envelope] = None,
        attraction_points: Optional[NDArray[Any]] = None,
        root: Optional[Branch] = None,
    ) -> None:
        self.params = TreeParameters() if params is None else params
        self.fuzzy_params = FuzzyParameters() if fuzzy_params is None else fuzzy_params
        self.position = np.asarray(position, dtype=float)
        self.rng = config.rng if rng is None else rng

        if density_reference_width is not None and density_reference_width <= 0.0:
            raise ValueError("density_reference_width must be > 0")
        self.density_reference_width = density_reference_width

        if root is None:
            self.growth: Optional[SpaceColonization] = SpaceColonization(
                self.params,
                attraction_points=attraction_points,
                envelope=envelope,
                rng=self.rng,
            )
            self.root = self.growth.root
            self.finalized = False
        else:
            self.growth = None
            self.root = root
            self.finalized = True

        self.wind = WindModel(wind_params)
        self.wind_context: WindContext = self.wind.new_context()

    @classmethod
    def from_skeleton(cls, root: Branch, **kwargs: Any) -> Tree:
        """Wrap an existing, already finalized skeleton."""
        return cls(root=root, **kwargs)

    # ------------------------------------------------------------------
    # Skeleton
    # ------------------------------------------------------------------
    def branches(self) -> List[Branch]:
        return list(self.root.walk())

    def grow_step(self) -> bool:
        """Run one growth round; finalizes the skeleton once growth stops.

        Returns:
            True while the skeleton is still growing.
        """
        if self.growth is None or self.finalized:
            return False
        if self.growth.grow_step():
            return True
        self.finalize()
        return False

    def grow(self, max_iterations: Optional[int] = None) -> Branch:
        """Grow to completion, then simplify and assign widths."""
        if self.growth is not None and not self.finalized:
            self.growth.grow(max_iterations=max_iterations)
            self.finalize()
        return self.root

    def finalize(self) -> None:
        """Merge near-parallel siblings and propagate widths."""
        simplify(self.root, self.params.merge_angle)
        propagate_widths(self.root, self.params.min_branch_width, self.params.tip_width)
        self.finalized = True
        _LOGGER.info("Tree finalized with %d branches.", len(self.branches()))

    # ------------------------------------------------------------------
    # Particles
    # ------------------------------------------------------------------
    def build_meshes(self) -> int:
        """Create a collision mesh and particle engine for every branch.

        Branches with no length or no width are skipped.

        Returns:
            Number of engines created.
        """
        if not self.finalized:
            raise RuntimeError("build_meshes: grow the tree before building meshes")

        created = 0
        leaky = 0
        for branch in self.root.walk():
            if branch.length <= 0.0 or max(branch.base_width, branch.top_width) <= 0.0:
                _LOGGER.warning("build_meshes: skipping degenerate branch %r.", branch)
                branch.fuzzy = None
                continue
            mesh = cylinder_mesh(branch.base_width, branch.top_width, branch.length)
            engine = FuzzyObject(mesh, self.fuzzy_params, rng=self.rng)
            if self.density_reference_width is not None:
                engine.scale_density(max(branch.base_width, _EPS) / self.density_reference_width)
            # A particle can move up to sqrt(3) * vel_range per update
            if engine.boundary_radius < np.sqrt(3.0) * engine.vel_range:
                leaky += 1
            branch.fuzzy = engine
            created += 1

        if leaky:
            _LOGGER.warning(
                "build_meshes: %d of %d engines have a boundary radius below one "
                "particle step; their particles can leave the mesh without bouncing.",
                leaky,
                created,
            )

        _LOGGER.info("build_meshes: created %d particle engines.", created)
        return created

    def _engines(self) -> List[FuzzyObject]:
        return [b.fuzzy for b in self.root.walk() if b.fuzzy is not None]

    def build_particles(self, max_steps: Optional[int] = None) -> None:
        """Build every branch's particle system to completion."""
        if not self._engines():
            self.build_meshes()
        for engine in self._engines():
            engine.build_system(max_steps=max_steps)

    def build_particles_increment(self) -> bool:
        """Advance every unfinished branch engine by one step.

        Returns:
            True once every engine has finished.
        """
        if not self._engines():
            self.build_meshes()
        for engine in self._engines():
            if not engine.finished_building():
                engine.build_system_increment()
        return self.finished_building()

    def finished_building(self) -> bool:
        engines = self._engines()
        return bool(engines) and all(e.finished_building() for e in engines)

    def particle_count(self) -> int:
        return sum(e.particle_count() for e in self._engines())

    def clear_particles(self) -> None:
        for engine in self._engines():
            engine.clear_particles()

    def get_system(self) -> NDArray[Any]:
        """Every branch's particles baked into world space, shape (N, 3).

        Local particles are rotated from the cylinder axis onto the branch
        direction, then translated by the branch origin and the tree position.
        """
        chunks = []
        for branch in self.root.walk():
            if branch.fuzzy is None or branch.fuzzy.particle_count() == 0:
                continue
            local = branch.fuzzy.get_system()
            world = axis_rotation(branch.direction).apply(local)
            chunks.append(world + branch.position + self.position)

        if not chunks:
            return np.empty((0, 3), dtype=float)
        return np.vstack(chunks)

    # ------------------------------------------------------------------
    # Wind
    # ------------------------------------------------------------------
    def apply_wind(self, context: Optional[WindContext] = None) -> None:
        """Advance the sway of every branch by one frame."""
        self.wind.apply(self.root, self.wind_context if context is None else context)

    def toggle_wind(self) -> bool:
        return self.wind.toggle()

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------
    def save(self, filename: str) -> None:
        """Write the skeleton as line cells with per-segment widths."""
        branches = self.branches()
        pts = np.vstack([np.vstack([b.position, b.tip]) for b in branches]) + self.position
        con = np.arange(2 * len(branches), dtype=int).reshape(-1, 2)
        cell_data = {
            "base_width": [np.array([b.base_width for b in branches], dtype=float)],
            "top_width": [np.array([b.top_width for b in branches], dtype=float)],
        }

        try:
            m = meshio.Mesh(points=pts, cells=[("line", con)], cell_data=cell_data)
            m.write(filename)
            _LOGGER.info("save: wrote '%s' (segments=%d).", filename, con.shape[0])
        except Exception:
            _LOGGER.exception("save: failed to write '%s'.", filename)
            raise

    def save_particles(self, filename: str) -> None:
        """Write the world-space particle cloud as vertex cells."""
        pts = self.get_system()
        if pts.shape[0] == 0:
            _LOGGER.error("save_particles: no particles to write.")
            raise ValueError("Cannot save: the tree has no particles.")

        try:
            cells = [("vertex", np.arange(pts.shape[0], dtype=int).reshape(-1, 1))]
            meshio.Mesh(points=pts, cells=cells).write(filename)
            _LOGGER.info("save_particles: wrote '%s' (particles=%d).", filename, pts.shape[0])
        except Exception:
            _LOGGER.exception("save_particles: failed to write '%s'.", filename)
            raise
