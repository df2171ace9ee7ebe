"""Module defining the Mesh class, a triangle-mesh collision oracle.

This module provides:
  - Construction from vertex / connectivity arrays (plus optional per-vertex
    normals and UVs).
  - Per-triangle unit normals, oriented outward when vertex normals are given.
  - Ray/triangle intersection queries (single triangle and all triangles).

A Mesh is immutable for the lifetime of a particle relaxation run.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Tuple

import numpy as np
from numpy.typing import NDArray

_LOGGER = logging.getLogger(__name__)

_DET_EPS = 1e-12
_T_EPS = 1e-9


class Mesh:
    """Indexed triangle mesh with geometric queries.

    Args:
        verts (NDArray[Any]): Vertex coordinates (n_nodes x 3).
        connectivity (NDArray[Any]): Triangle indices (n_triangles x 3).
        vertex_normals (Optional[NDArray[Any]]): Per-vertex normals used to
            orient triangle normals outward.
        uvs (Optional[NDArray[Any]]): Per-vertex texture coordinates.

    Attributes:
        verts (NDArray[Any]): Vertex array, shape (n_nodes, 3).
        connectivity (NDArray[Any]): Triangle indices, shape (n_triangles, 3).
        normals (NDArray[Any]): Unit triangle normals, shape (n_triangles, 3);
            zero for degenerate triangles.
        centroids (NDArray[Any]): Triangle centroids, shape (n_triangles, 3).
        vertex_normals (Optional[NDArray[Any]]): As given.
        uvs (Optional[NDArray[Any]]): As given.
    """

    verts: NDArray[Any]
    connectivity: NDArray[Any]
    normals: NDArray[Any]
    centroids: NDArray[Any]

    def __init__(
        self,
        verts: NDArray[Any],
        connectivity: NDArray[Any],
        vertex_normals: Optional[NDArray[Any]] = None,
        uvs: Optional[NDArray[Any]] = None,
    ) -> None:
        """Initialize mesh from arrays.

        Raises:
            ValueError: If the arrays are malformed or indices are out of range.
        """
        self.verts = np.asarray(verts, dtype=float)
        self.connectivity = np.asarray(connectivity, dtype=int).reshape(-1, 3)

        if self.verts.ndim != 2 or self.verts.shape[1] != 3:
            raise ValueError(f"verts must be (N, 3); got shape {self.verts.shape}")
        if self.connectivity.size and (
            self.connectivity.min() < 0 or self.connectivity.max() >= len(self.verts)
        ):
            _LOGGER.error("Mesh __init__: connectivity has out-of-range indices.")
            raise ValueError("connectivity references vertices that do not exist")

        self.vertex_normals = (
            None if vertex_normals is None else np.asarray(vertex_normals, dtype=float)
        )
        self.uvs = None if uvs is None else np.asarray(uvs, dtype=float)

        a = self.verts[self.connectivity[:, 0]]
        b = self.verts[self.connectivity[:, 1]]
        c = self.verts[self.connectivity[:, 2]]

        # Moller-Trumbore edge vectors, reused by every ray query
        self._v0 = a
        self._e1 = b - a
        self._e2 = c - a

        n = np.cross(self._e1, self._e2)
        nn = np.linalg.norm(n, axis=1)
        safe = np.where(nn > _DET_EPS, nn, 1.0)
        normals = n / safe[:, None]

        deg_mask = nn <= _DET_EPS
        if np.any(deg_mask):
            # Zero-out degenerate triangle normals to avoid NaNs
            normals[deg_mask] = 0.0
            _LOGGER.warning(
                "Mesh __init__: %d degenerate triangle(s) with ~zero area; normals set to 0.",
                int(np.count_nonzero(deg_mask)),
            )

        if self.vertex_normals is not None:
            ref = self.vertex_normals[self.connectivity].sum(axis=1)
            flip = np.einsum("ij,ij->i", normals, ref) < 0.0
            normals[flip] *= -1.0
            _LOGGER.debug("Mesh __init__: flipped %d inward-facing normals.", int(flip.sum()))

        self.normals = normals
        self.centroids = (a + b + c) / 3.0

        _LOGGER.info(
            "Mesh initialized with %d vertices and %d triangles",
            self.verts.shape[0],
            self.connectivity.shape[0],
        )

    def triangle_count(self) -> int:
        """Number of triangles."""
        return int(self.connectivity.shape[0])

    def surface_normal(self, triangle_index: int) -> NDArray[Any]:
        """Unit outward normal of a triangle."""
        return self.normals[triangle_index]

    @property
    def origin(self) -> NDArray[Any]:
        """Centre of the vertex bounding box."""
        lo, hi = self.bounds
        return (lo + hi) / 2.0

    @property
    def bounds(self) -> Tuple[NDArray[Any], NDArray[Any]]:
        """Axis-aligned bounding box ``(lo, hi)`` of the vertices."""
        return self.verts.min(axis=0), self.verts.max(axis=0)

    def ray_intersects_triangle(
        self,
        origin: NDArray[Any],
        direction: NDArray[Any],
        triangle_index: int,
    ) -> Optional[NDArray[Any]]:
        """Intersect a ray with one triangle (Moller-Trumbore).

        Args:
            origin: Ray origin.
            direction: Ray direction; need not be normalized.
            triangle_index: Triangle to test.

        Returns:
            The intersection point, or None on a miss, a ray parallel to the
            triangle plane, or a degenerate triangle.
        """
        o = np.asarray(origin, dtype=float)
        d = np.asarray(direction, dtype=float)
        e1 = self._e1[triangle_index]
        e2 = self._e2[triangle_index]

        h = np.cross(d, e2)
        det = float(np.dot(e1, h))
        if abs(det) < _DET_EPS:
            return None

        inv = 1.0 / det
        s = o - self._v0[triangle_index]
        u = inv * float(np.dot(s, h))
        if u < 0.0 or u > 1.0:
            return None

        q = np.cross(s, e1)
        v = inv * float(np.dot(d, q))
        if v < 0.0 or u + v > 1.0:
            return None

        t = inv * float(np.dot(e2, q))
        if t <= _T_EPS:
            return None
        return o + t * d

    def ray_intersections(
        self, origin: NDArray[Any], direction: NDArray[Any]
    ) -> NDArray[Any]:
        """Ray parameter of the hit with every triangle.

        Same test as `ray_intersects_triangle`, vectorized over triangles.

        Returns:
            Array of shape (n_triangles,) holding ``t`` such that the hit is
            ``origin + t * direction``, or ``inf`` where the ray misses.
        """
        o = np.asarray(origin, dtype=float)
        d = np.asarray(direction, dtype=float)

        h = np.cross(d, self._e2)
        det = np.einsum("ij,ij->i", self._e1, h)
        valid = np.abs(det) >= _DET_EPS
        inv = np.divide(1.0, det, out=np.zeros_like(det), where=valid)

        s = o - self._v0
        u = inv * np.einsum("ij,ij->i", s, h)
        q = np.cross(s, self._e1)
        v = inv * (q @ d)
        t = inv * np.einsum("ij,ij->i", self._e2, q)

        hit = valid & (u >= 0.0) & (u <= 1.0) & (v >= 0.0) & (u + v <= 1.0) & (t > _T_EPS)
        return np.where(hit, t, np.inf)

    def closest_intersection(
        self, origin: NDArray[Any], direction: NDArray[Any]
    ) -> Tuple[int, Optional[NDArray[Any]]]:
        """Nearest triangle hit along a ray.

        Ties resolve to the lowest triangle index.

        Returns:
            ``(triangle_index, point)``, or ``(-1, None)`` when nothing is hit.
        """
        t = self.ray_intersections(origin, direction)
        if t.size == 0:
            return -1, None
        idx = int(np.argmin(t))
        if not np.isfinite(t[idx]):
            return -1, None
        return idx, np.asarray(origin, dtype=float) + t[idx] * np.asarray(direction, dtype=float)

    def __repr__(self) -> str:
        return f"Mesh(n_verts={self.verts.shape[0]}, n_triangles={self.triangle_count()})"
