"""Module defining the Branch class, a node of the tree skeleton.

Each Branch is a straight segment starting at `position` and extending
`length` along the unit `direction`. Children are owned by their parent in
creation order; the parent link is a weak reference so ownership is never
shared.
"""

from __future__ import annotations

import logging
import weakref
from typing import TYPE_CHECKING, Any, Iterator, List, Optional, Sequence

import numpy as np
from numpy.typing import NDArray

if TYPE_CHECKING:
    from .fuzzy_object import FuzzyObject

_LOGGER = logging.getLogger(__name__)
_EPS = 1e-12


class Branch:
    """A segment of the tree skeleton.

    Attributes:
        position (NDArray[Any]): World-space origin of the segment.
        direction (NDArray[Any]): Unit growth/orientation axis.
        length (float): Segment length.
        base_width (float): Width at the segment origin.
        top_width (float): Width at the segment tip.
        offset (float): Random phase used only by the wind model.
        children (List[Branch]): Owned child segments, in creation order.
        rotation (NDArray[Any]): Per-frame wind rotation (x, y, z), radians.
        combined_rotation (NDArray[Any]): Rotation accumulated from the root.
        world_dir (NDArray[Any]): `direction` rotated by `combined_rotation`.
        rotation_min (NDArray[Any]): Smallest wind rotation seen per axis.
        rotation_max (NDArray[Any]): Largest wind rotation seen per axis.
        sway_sign (NDArray[Any]): Current swing sense per axis (+1 or -1).
        fuzzy (Optional[FuzzyObject]): Particle engine bound to this branch.
    """

    def __init__(
        self,
        position: Sequence[float] | NDArray[Any],
        direction: Sequence[float] | NDArray[Any],
        length: float,
        parent: Optional[Branch] = None,
        offset: float = 0.0,
        name: str = "",
    ) -> None:
        self.position: NDArray[Any] = np.asarray(position, dtype=float).copy()
        self.direction: NDArray[Any] = _unit(np.asarray(direction, dtype=float))
        self.length = float(length)
        self.base_width = 0.0
        self.top_width = 0.0
        self.offset = float(offset)
        self.name = name

        self._parent: Optional[weakref.ReferenceType[Branch]] = None
        self.children: List[Branch] = []

        # Transient animation state
        self.rotation: NDArray[Any] = np.zeros(3, dtype=float)
        self.combined_rotation: NDArray[Any] = np.zeros(3, dtype=float)
        self.world_dir: NDArray[Any] = self.direction.copy()
        self.rotation_min: NDArray[Any] = np.zeros(3, dtype=float)
        self.rotation_max: NDArray[Any] = np.zeros(3, dtype=float)
        self.sway_sign: NDArray[Any] = np.ones(3, dtype=float)

        self.fuzzy: Optional[FuzzyObject] = None

        if self.length <= 0.0:
            _LOGGER.warning("Branch %r created with non-positive length %g", name, length)

        if parent is not None:
            parent.add_child(self)

    @property
    def parent(self) -> Optional[Branch]:
        """Parent branch, or None for the root (or a detached node)."""
        return None if self._parent is None else self._parent()

    @property
    def tip(self) -> NDArray[Any]:
        """World-space end point ``position + direction * length``."""
        return self.position + self.direction * self.length

    @property
    def is_leaf(self) -> bool:
        return len(self.children) == 0

    def add_child(self, child: Branch) -> Branch:
        """Take ownership of `child` and return it."""
        child._parent = weakref.ref(self)
        self.children.append(child)
        return child

    def spawn(self, direction: NDArray[Any], length: float, offset: float = 0.0) -> Branch:
        """Create a child starting at this branch's tip."""
        return Branch(self.tip, direction, length, parent=self, offset=offset)

    def walk(self) -> Iterator[Branch]:
        """Yield this branch and all descendants, depth first, parents first."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def descendant_count(self) -> int:
        """Number of branches below this one."""
        return sum(1 for _ in self.walk()) - 1

    def leaves(self) -> List[Branch]:
        return [b for b in self.walk() if b.is_leaf]

    def __repr__(self) -> str:
        return (
            f"Branch(position={self.position.tolist()}, "
            f"direction={self.direction.tolist()}, length={self.length:g}, "
            f"children={len(self.children)})"
        )


def _unit(v: NDArray[Any]) -> NDArray[Any]:
    """Normalize `v`; a ~zero vector falls back to +y."""
    mag = float(np.linalg.norm(v))
    if mag < _EPS:
        _LOGGER.debug("Zero-magnitude branch direction; defaulting to +y.")
        return np.array([0.0, 1.0, 0.0], dtype=float)
    return v / mag
