"""Unit tests for the Mesh collision oracle."""
import logging

import numpy as np
import pytest
from numpy.testing import assert_allclose

from fuzzy_tree.mesh import Mesh


@pytest.fixture
def tetra_surface():
    """
    Closed tetrahedron surface with outward vertex normals.
    Vertices: (0,0,0),(1,0,0),(0,1,0),(0,0,1)
    Faces: (0,1,2),(0,1,3),(1,2,3),(0,2,3) (winding not consistent)
    """
    verts = np.array(
        [
            [0.0, 0.0, 0.0],  # 0
            [1.0, 0.0, 0.0],  # 1
            [0.0, 1.0, 0.0],  # 2
            [0.0, 0.0, 1.0],  # 3
        ],
        dtype=float,
    )
    conn = np.array([[0, 1, 2], [0, 1, 3], [1, 2, 3], [0, 2, 3]], dtype=int)
    centre = verts.mean(axis=0)
    vn = verts - centre
    vn /= np.linalg.norm(vn, axis=1, keepdims=True)
    return Mesh(verts=verts, connectivity=conn, vertex_normals=vn)


def test_counts_and_normal(simple_triangle_mesh):
    m = simple_triangle_mesh
    assert m.triangle_count() == 1
    assert_allclose(m.surface_normal(0), [0.0, 0.0, 1.0])
    assert_allclose(m.centroids[0], [1.0 / 3.0, 1.0 / 3.0, 0.0])
    assert_allclose(m.origin, [0.5, 0.5, 0.0])


def test_ray_hits_triangle(simple_triangle_mesh):
    hit = simple_triangle_mesh.ray_intersects_triangle(
        np.array([0.2, 0.2, 1.0]), np.array([0.0, 0.0, -5.0]), 0
    )
    assert hit is not None
    assert_allclose(hit, [0.2, 0.2, 0.0], atol=1e-12)


@pytest.mark.parametrize(
    "origin, direction",
    [
        ([2.0, 2.0, 1.0], [0.0, 0.0, -1.0]),  # outside the triangle
        ([0.2, 0.2, 1.0], [1.0, 0.0, 0.0]),  # parallel to the plane
        ([0.2, 0.2, 1.0], [0.0, 0.0, 1.0]),  # pointing away
    ],
)
def test_ray_misses_triangle(simple_triangle_mesh, origin, direction):
    assert (
        simple_triangle_mesh.ray_intersects_triangle(
            np.array(origin), np.array(direction), 0
        )
        is None
    )


def test_tetra_normals_point_outward(tetra_surface):
    m = tetra_surface
    centre = m.verts.mean(axis=0)
    outward = np.einsum("ij,ij->i", m.normals, m.centroids - centre)
    assert np.all(outward > 0.0)
    assert_allclose(np.linalg.norm(m.normals, axis=1), 1.0)


def test_vectorized_matches_scalar(tetra_surface):
    """The vectorised ray test agrees with the per-triangle one."""
    m = tetra_surface
    origin = np.array([0.2, 0.2, 0.2])
    for direction in (np.array([1.0, 0.3, 0.1]), np.array([-1.0, 0.0, 0.0]), np.array([0.0, 0.0, 1.0])):
        t = m.ray_intersections(origin, direction)
        for i in range(m.triangle_count()):
            hit = m.ray_intersects_triangle(origin, direction, i)
            if hit is None:
                assert np.isinf(t[i])
            else:
                assert_allclose(origin + t[i] * direction, hit, atol=1e-12)


def test_closest_intersection(tetra_surface):
    """The nearest hit along the ray is returned with its triangle."""
    m = tetra_surface
    idx, point = m.closest_intersection(np.array([0.2, 0.2, 0.2]), np.array([0.0, 0.0, -1.0]))
    assert idx == 0
    assert_allclose(point, [0.2, 0.2, 0.0], atol=1e-12)


def test_closest_intersection_miss(simple_triangle_mesh):
    idx, point = simple_triangle_mesh.closest_intersection(
        np.array([0.2, 0.2, 1.0]), np.array([0.0, 0.0, 1.0])
    )
    assert idx == -1
    assert point is None


def test_degenerate_triangle_gets_zero_normal(caplog):
    verts = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [2.0, 0.0, 0.0]])
    with caplog.at_level(logging.WARNING, logger="fuzzy_tree.mesh"):
        m = Mesh(verts=verts, connectivity=np.array([[0, 1, 2]]))
    assert_allclose(m.normals[0], [0.0, 0.0, 0.0])
    assert "degenerate" in caplog.text
    assert m.ray_intersects_triangle(np.array([1.0, 1.0, 0.0]), np.array([0.0, -1.0, 0.0]), 0) is None


def test_invalid_input_raises():
    with pytest.raises(ValueError):
        Mesh(verts=np.zeros((3, 2)), connectivity=np.array([[0, 1, 2]]))
    with pytest.raises(ValueError):
        Mesh(verts=np.zeros((3, 3)), connectivity=np.array([[0, 1, 5]]))
