"""Skeleton post-processing: sibling simplification and width propagation.

After growth, near-duplicate siblings (directions within a few degrees) are
merged, the absorbing sibling adopting the absorbed one's children. Widths
are then assigned bottom-up: leaves get fixed widths, and every internal
node takes the width that conserves cross-sectional area of its children.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

import numpy as np
from numpy.typing import NDArray

from .branch import Branch
from .config import config

_LOGGER = logging.getLogger(__name__)

_DUMMY_SIDE_DIRECTIONS = (
    (1.0, 0.3, 0.0),
    (-1.0, 0.3, 0.0),
    (0.0, 0.3, 1.0),
    (0.0, 0.3, -1.0),
)


def angle_between(u: NDArray[Any], v: NDArray[Any]) -> float:
    """Angle between two vectors in degrees (0 if either is ~zero)."""
    nu = float(np.linalg.norm(u))
    nv = float(np.linalg.norm(v))
    if nu < 1e-12 or nv < 1e-12:
        return 0.0
    cos = float(np.dot(u, v)) / (nu * nv)
    return float(np.degrees(np.arccos(np.clip(cos, -1.0, 1.0))))


def _merge_siblings(parent: Branch, merge_angle: float) -> List[Branch]:
    """Merge near-parallel children of `parent` in place.

    Returns:
        The absorbed (now detached) branches.
    """
    children = parent.children
    absorbed: List[Branch] = []
    i = 0
    while i < len(children):
        keeper = children[i]
        j = i + 1
        while j < len(children):
            other = children[j]
            if angle_between(keeper.direction, other.direction) < merge_angle:
                for grandchild in other.children:
                    keeper.add_child(grandchild)
                other.children = []
                other._parent = None
                # swap-remove; the swapped-in sibling is examined next
                children[j] = children[-1]
                children.pop()
                absorbed.append(other)
            else:
                j += 1
        i += 1
    return absorbed


def simplify(root: Branch, merge_angle: float = 5.0) -> List[Branch]:
    """Merge sibling branches whose directions differ by less than `merge_angle`.

    Args:
        root: Subtree to simplify (modified in place).
        merge_angle: Threshold in degrees.

    Returns:
        The branches that were absorbed and removed from the tree.
    """
    removed: List[Branch] = []
    stack = [root]
    while stack:
        node = stack.pop()
        removed.extend(_merge_siblings(node, merge_angle))
        stack.extend(node.children)

    _LOGGER.info("simplify: merged %d sibling branches", len(removed))
    return removed


def propagate_widths(root: Branch, min_branch_width: float, tip_width: float) -> None:
    """Assign widths bottom-up.

    Leaves get ``base_width = min_branch_width`` and ``top_width = tip_width``.
    An internal node gets ``base_width = sqrt(sum(child.base_width**2))`` and
    ``top_width = max(child.base_width)``. The root's base width is then set
    to its top width, so the trunk does not taper below its first fork.
    """
    # Reversed pre-order visits every child before its parent.
    for node in reversed(list(root.walk())):
        if node.is_leaf:
            node.base_width = min_branch_width
            node.top_width = tip_width
        else:
            child_widths = np.array([c.base_width for c in node.children], dtype=float)
            node.base_width = float(np.sqrt(np.sum(child_widths**2)))
            node.top_width = float(child_widths.max())

    root.base_width = root.top_width
    _LOGGER.debug(
        "propagate_widths: root base=%.6g top=%.6g", root.base_width, root.top_width
    )


def build_dummy_tree(
    levels: int = 4,
    length: float = 2.0,
    width: float = 0.1,
    position: Optional[NDArray[Any]] = None,
    rng: Optional[np.random.Generator] = None,
) -> Branch:
    """Build a hand-made skeleton: a trunk with four side branches per level.

    Every level above the first carries four side branches leaning outward
    along +x, -x, +z and -z plus a shorter trunk continuation.

    Args:
        levels: Number of trunk levels (>= 1).
        length: Trunk segment length.
        width: Width unit; trunk level n has base width ``n * width``.
        position: World-space origin of the lowest trunk segment.
        rng: Generator for wind phase offsets.

    Returns:
        The root branch.
    """
    if levels < 1:
        raise ValueError(f"levels must be >= 1, got {levels!r}")
    gen = config.rng if rng is None else rng
    origin = np.zeros(3) if position is None else np.asarray(position, dtype=float)

    def make(level: int, start: NDArray[Any]) -> Branch:
        trunk = Branch(
            start,
            (0.0, 1.0, 0.0),
            length,
            offset=float(gen.uniform(0.0, 0.1)),
            name=f"trunk{level}",
        )
        trunk.base_width = width * level
        trunk.top_width = width / 2 if level == 1 else width * (level - 1)
        if level > 1:
            for i, direction in enumerate(_DUMMY_SIDE_DIRECTIONS):
                side = Branch(
                    trunk.tip,
                    direction,
                    length / 2 * (level - 1),
                    parent=trunk,
                    offset=float(gen.uniform(0.0, 0.1)),
                    name=f"branch{i} trunk{level}",
                )
                side.base_width = width * (level - 1)
                side.top_width = width / 2
            trunk.add_child(make(level - 1, trunk.tip))
        return trunk

    return make(levels, origin)
