from __future__ import annotations
import pytest

import numpy as np
from fuzzy_tree.branch import Branch
from fuzzy_tree.mesh import Mesh
from fuzzy_tree.parameters import FuzzyParameters
from fuzzy_tree.primitives import sphere_mesh


@pytest.fixture()
def rng():
    return np.random.default_rng(0)


@pytest.fixture
def simple_triangle_mesh():
    """
    Provides a Mesh instance with a single triangle in the z = 0 plane:
        v0 = [0, 0, 0]
        v1 = [1, 0, 0]
        v2 = [0, 1, 0]
    Its normal points along +z.
    """
    verts = np.array(
        [
            [0.0, 0.0, 0.0],  # v0
            [1.0, 0.0, 0.0],  # v1
            [0.0, 1.0, 0.0],  # v2
        ]
    )
    connectivity = np.array([[0, 1, 2]])  # One triangle
    return Mesh(verts=verts, connectivity=connectivity)


@pytest.fixture(scope="session")
def unit_sphere():
    """Coarse unit sphere centred on the origin."""
    return sphere_mesh(1.0, slices=6, stacks=6)


@pytest.fixture
def small_fuzzy_params():
    """Particle settings sized for a unit sphere and a short run."""
    return FuzzyParameters(
        particle_limit=30,
        min_particle_count=2,
        stability_updates=2,
        vel_range=0.03,
        radius=0.1,
        boundary_radius=0.1,
        spawn_offset=0.05,
        length_scale=0.3,
    )


@pytest.fixture
def forked_branch():
    """
    A trunk along +y with three children:
      - two almost parallel ones (2 degrees apart), each with one child
      - one pointing along +x
    """
    root = Branch((0.0, 0.0, 0.0), (0.0, 1.0, 0.0), 2.0, name="root")
    a = Branch(root.tip, (0.0, 1.0, 0.0), 1.0, parent=root, name="a")
    tilt = np.radians(2.0)
    b = Branch(root.tip, (np.sin(tilt), np.cos(tilt), 0.0), 1.0, parent=root, name="b")
    Branch(root.tip, (1.0, 0.0, 0.0), 1.0, parent=root, name="c")
    Branch(a.tip, (0.0, 0.0, 1.0), 1.0, parent=a, name="a0")
    Branch(b.tip, (0.0, 0.0, -1.0), 1.0, parent=b, name="b0")
    return root
