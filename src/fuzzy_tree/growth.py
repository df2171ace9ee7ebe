"""Module implementing space-colonization growth of a tree skeleton.

Attraction points "claim" the branch whose tip is nearest to them (within
the radius of influence). Every claimed branch spawns one new segment
toward the mean direction of its points, biased by gravity, and points that
any tip reaches within the kill distance are consumed. Growth stops when no
points remain.

Reference: Runions, Lane and Prusinkiewicz, "Modeling Trees with a Space
Colonization Algorithm" (2007).
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np
from numpy.typing import NDArray

from .branch import Branch
from .config import cdist, config, norm
from .envelope import Envelope
from .parameters import TreeParameters

_LOGGER = logging.getLogger(__name__)
_EPS = 1e-12
_MAX_WIND_OFFSET = 0.1
# Children closer than this (radians) to an existing sibling are repeats
_REPEAT_ANGLE = 1e-3


def nearest_tips(
    points: NDArray[Any], tips: NDArray[Any]
) -> Tuple[NDArray[Any], NDArray[Any]]:
    """Return the distance to, and index of, the nearest tip for every point.

    Ties resolve to the lowest tip index.

    Args:
        points: Attraction points, shape (N, 3).
        tips: Branch tips, shape (M, 3), M >= 1.

    Returns:
        ``(distances, indices)``, both of shape (N,).
    """
    if len(points) == 0:
        return np.empty(0, dtype=float), np.empty(0, dtype=int)
    dists = cdist(points, tips)
    idx = np.argmin(dists, axis=1)
    return dists[np.arange(len(points)), idx], idx


def cull_points(
    points: NDArray[Any], tips: NDArray[Any], kill_distance: float
) -> Tuple[NDArray[Any], NDArray[Any]]:
    """Drop every point closer than `kill_distance` to some tip.

    Args:
        points: Attraction points, shape (N, 3).
        tips: Branch tips, shape (M, 3).
        kill_distance: Consumption distance.

    Returns:
        ``(survivors, killed_mask)`` where `killed_mask` indexes `points`.
    """
    dist, _ = nearest_tips(points, tips)
    killed = dist < kill_distance
    return points[~killed], killed


class SpaceColonization:
    """Space-colonization growth engine.

    Attributes:
        params (TreeParameters): Growth settings.
        envelope (Envelope): Region the attraction points were sampled in.
        attraction_points (NDArray[Any]): Live points, shape (N, 3).
        root (Branch): Trunk segment.
        branches (List[Branch]): Every branch in creation order; index order
            defines the nearest-tip tie-break.
        iteration (int): Completed growth rounds.
    """

    def __init__(
        self,
        params: TreeParameters,
        attraction_points: Optional[NDArray[Any]] = None,
        envelope: Optional[Envelope] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        """Create the trunk and the attraction-point field.

        Args:
            params: Growth settings.
            attraction_points: Explicit points; sampled from the envelope if None.
            envelope: Crown envelope; built from `params` if None.
            rng: Generator for sampling and wind offsets; defaults to the
                configured one.
        """
        self.params = params
        self.rng = config.rng if rng is None else rng
        self.envelope = envelope if envelope is not None else Envelope.from_parameters(params)

        if attraction_points is None:
            attraction_points = self.envelope.sample(
                params.attraction_point_count, rng=self.rng
            )
        self.attraction_points = np.asarray(attraction_points, dtype=float).reshape(-1, 3)

        self.root = Branch(
            params.root_position,
            (0.0, 1.0, 0.0),
            params.trunk_length,
            offset=self._random_offset(),
            name="trunk",
        )
        self.branches: List[Branch] = [self.root]
        self.iteration = 0
        self.stalled = False

        _LOGGER.info(
            "SpaceColonization: trunk length=%.4g, %d attraction points",
            self.root.length,
            len(self.attraction_points),
        )

    def _random_offset(self) -> float:
        return float(self.rng.uniform(0.0, _MAX_WIND_OFFSET))

    @property
    def finished(self) -> bool:
        """True once every attraction point has been consumed."""
        return len(self.attraction_points) == 0

    def tips(self) -> NDArray[Any]:
        """Tips of all branches, shape (M, 3), in `branches` order."""
        return np.array([b.tip for b in self.branches], dtype=float)

    def associate(self) -> Dict[int, NDArray[Any]]:
        """Map branch index -> indices of the points it attracts this round.

        A point belongs to its nearest tip, and only if that tip lies within
        the radius of influence.
        """
        dist, idx = nearest_tips(self.attraction_points, self.tips())
        influenced = dist < self.params.radius_of_influence

        associations: Dict[int, NDArray[Any]] = {}
        for b_idx in np.unique(idx[influenced]):
            associations[int(b_idx)] = np.flatnonzero(influenced & (idx == b_idx))
        return associations

    def growth_direction(self, branch: Branch, points: NDArray[Any]) -> NDArray[Any]:
        """Normalized sum of unit vectors toward `points`, plus gravity.

        Points sitting exactly on the tip contribute nothing; a vanishing sum
        falls back to the branch's own direction.
        """
        diff = points - branch.tip
        mags = norm(diff, axis=1, keepdims=True)
        units = np.where(mags > _EPS, diff / np.maximum(mags, _EPS), 0.0)

        total = units.sum(axis=0) + self.params.gravity
        mag = float(norm(total))
        if mag < _EPS:
            _LOGGER.debug("growth_direction: vanishing sum; keeping parent direction.")
            return branch.direction.copy()
        return total / mag

    def repeats_child(self, branch: Branch, direction: NDArray[Any]) -> bool:
        """True if `branch` already has a child growing along `direction`.

        Attracted points whose unit vectors cancel keep producing the same
        gravity-biased segment; spawning it again would never reach them.
        """
        cos_tol = np.cos(_REPEAT_ANGLE)
        return any(float(np.dot(c.direction, direction)) >= cos_tol for c in branch.children)

    def cull(self) -> int:
        """Consume points within the kill distance of the nearest tip.

        Returns:
            Number of points removed.
        """
        if len(self.attraction_points) == 0:
            return 0
        survivors, killed = cull_points(
            self.attraction_points, self.tips(), self.params.kill_distance
        )
        self.attraction_points = survivors
        return int(np.count_nonzero(killed))

    def grow_step(self) -> bool:
        """Perform one growth round.

        Returns:
            True if the tree changed, False if there was nothing left to do
            (no points, no point within reach of any tip, or every
            attracted tip would only repeat a segment it already grew).
        """
        if len(self.attraction_points) == 0:
            return False

        associations = self.associate()
        if not associations:
            self.stalled = True
            _LOGGER.warning(
                "grow_step: %d attraction points are out of reach of every tip; "
                "growth stalled at iteration %d.",
                len(self.attraction_points),
                self.iteration,
            )
            return False

        new_branches: List[Branch] = []
        for b_idx in sorted(associations):
            parent = self.branches[b_idx]
            direction = self.growth_direction(
                parent, self.attraction_points[associations[b_idx]]
            )
            if self.repeats_child(parent, direction):
                continue
            new_branches.append(
                parent.spawn(
                    direction,
                    self.params.branch_segment_length,
                    offset=self._random_offset(),
                )
            )

        if not new_branches:
            self.stalled = True
            _LOGGER.warning(
                "grow_step: every attracted tip would repeat an existing segment; "
                "%d points left, growth stalled at iteration %d.",
                len(self.attraction_points),
                self.iteration,
            )
            return False
        self.branches.extend(new_branches)

        removed = self.cull()
        self.iteration += 1

        _LOGGER.debug(
            "grow_step %d: grew %d branches, culled %d points, %d remaining",
            self.iteration,
            len(new_branches),
            removed,
            len(self.attraction_points),
        )
        return True

    def grow(
        self,
        max_iterations: Optional[int] = None,
        callback: Optional[Callable[[SpaceColonization, int], None]] = None,
    ) -> int:
        """Run growth rounds until the points are exhausted.

        Args:
            max_iterations: Round guard; defaults to ``params.max_iterations``
                (None means unguarded).
            callback: Called after each round with (engine, iteration).

        Returns:
            Total number of completed rounds.
        """
        limit = self.params.max_iterations if max_iterations is None else max_iterations
        _LOGGER.info(
            "Starting growth with %d attraction points (limit=%s)",
            len(self.attraction_points),
            limit,
        )

        while self.attraction_points.size:
            if limit is not None and self.iteration >= limit:
                _LOGGER.warning(
                    "Growth stopped by the iteration guard (%d) with %d points left.",
                    limit,
                    len(self.attraction_points),
                )
                break
            if not self.grow_step():
                break
            if callback is not None:
                callback(self, self.iteration)

        _LOGGER.info(
            "Growth complete after %d iterations: %d branches, %d points remaining",
            self.iteration,
            len(self.branches),
            len(self.attraction_points),
        )
        return self.iteration
