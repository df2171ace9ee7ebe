"""Triangle-mesh generators for the per-branch collision geometry.

Spheres are centred on the origin with their poles on the z axis; cylinders
(possibly tapered) run along +z from ``z = 0`` to ``z = height`` and are
closed with end caps wherever the corresponding radius is positive. Both
return `Mesh` objects with per-vertex normals (used to orient triangle
normals outward) and UVs.
"""

from __future__ import annotations

import logging
from typing import Any, List, Tuple

import numpy as np
from numpy.typing import NDArray

from .mesh import Mesh

_LOGGER = logging.getLogger(__name__)
_AREA_EPS = 1e-14


def _grid_triangles(rows: int, cols: int, offset: int = 0) -> List[Tuple[int, int, int]]:
    """Two triangles per quad of a (rows+1) x cols vertex grid."""
    tris: List[Tuple[int, int, int]] = []
    for i in range(rows):
        for j in range(cols - 1):
            a = offset + i * cols + j
            b = a + cols
            tris.append((a, b, b + 1))
            tris.append((a, b + 1, a + 1))
    return tris


def _drop_degenerate(verts: NDArray[Any], tris: NDArray[Any]) -> NDArray[Any]:
    """Remove zero-area triangles (collapsed poles and apexes)."""
    a, b, c = verts[tris[:, 0]], verts[tris[:, 1]], verts[tris[:, 2]]
    area2 = np.linalg.norm(np.cross(b - a, c - a), axis=1)
    keep = area2 > _AREA_EPS
    _LOGGER.debug("_drop_degenerate: dropped %d triangles", int((~keep).sum()))
    return tris[keep]


def sphere_mesh(radius: float, slices: int = 10, stacks: int = 10) -> Mesh:
    """Generate a UV sphere.

    Args:
        radius: Sphere radius (> 0).
        slices: Half the number of longitudinal divisions.
        stacks: Number of latitudinal divisions.

    Returns:
        A closed sphere mesh.
    """
    if radius <= 0.0 or slices <= 0 or stacks <= 0:
        raise ValueError("sphere_mesh needs radius > 0, slices > 0 and stacks > 0")

    dualslices = slices * 2
    cols = dualslices + 1
    theta = np.pi * np.arange(stacks + 1) / stacks
    phi = 2.0 * np.pi * np.arange(cols) / dualslices

    st, ct = np.sin(theta)[:, None], np.cos(theta)[:, None]
    unit = np.stack(
        [
            (st * np.cos(phi)[None, :]).ravel(),
            (st * np.sin(phi)[None, :]).ravel(),
            np.repeat(ct, cols, axis=1).ravel(),
        ],
        axis=1,
    )
    uu, vv = np.meshgrid(np.arange(cols) / dualslices, np.arange(stacks + 1) / stacks)
    uvs = np.stack([vv.ravel(), uu.ravel()], axis=1)

    verts = unit * radius
    tris = _drop_degenerate(verts, np.array(_grid_triangles(stacks, cols), dtype=int))
    return Mesh(verts=verts, connectivity=tris, vertex_normals=unit, uvs=uvs)


def cylinder_mesh(
    base_radius: float,
    top_radius: float,
    height: float,
    slices: int = 10,
    stacks: int = 10,
) -> Mesh:
    """Generate a (possibly tapered) cylinder along +z.

    Args:
        base_radius: Radius at ``z = 0``.
        top_radius: Radius at ``z = height``.
        height: Length of the cylinder (> 0).
        slices: Half the number of divisions around the axis.
        stacks: Number of divisions along the axis.

    Returns:
        A closed cylinder (or cone) mesh.
    """
    if height <= 0.0 or slices <= 0 or stacks <= 0:
        raise ValueError("cylinder_mesh needs height > 0, slices > 0 and stacks > 0")
    if base_radius < 0.0 or top_radius < 0.0 or max(base_radius, top_radius) <= 0.0:
        raise ValueError("cylinder_mesh needs non-negative radii, at least one > 0")

    dualslices = slices * 2
    cols = dualslices + 1
    phi = 2.0 * np.pi * np.arange(cols) / dualslices
    cphi, sphi = np.cos(phi), np.sin(phi)

    t = np.arange(stacks + 1) / stacks
    z = height * t
    width = base_radius + (top_radius - base_radius) * t

    side = np.stack(
        [
            (width[:, None] * cphi[None, :]).ravel(),
            (width[:, None] * sphi[None, :]).ravel(),
            np.repeat(z[:, None], cols, axis=1).ravel(),
        ],
        axis=1,
    )
    slope = (base_radius - top_radius) / height
    ring_normals = np.stack([cphi, sphi, np.full(cols, slope)], axis=1)
    ring_normals /= np.linalg.norm(ring_normals, axis=1, keepdims=True)
    side_normals = np.tile(ring_normals, (stacks + 1, 1))
    uu, vv = np.meshgrid(np.arange(cols) / dualslices, t)
    side_uvs = np.stack([uu.ravel(), vv.ravel()], axis=1)

    verts: List[NDArray[Any]] = [side]
    normals: List[NDArray[Any]] = [side_normals]
    uvs: List[NDArray[Any]] = [side_uvs]
    tris = _grid_triangles(stacks, cols)
    count = side.shape[0]

    # End caps: centre vertex followed by its own copy of the rim
    for radius, zc, nz in ((base_radius, 0.0, -1.0), (top_radius, height, 1.0)):
        if radius <= 0.0:
            continue
        rim = np.stack([radius * cphi, radius * sphi, np.full(cols, zc)], axis=1)
        cap = np.vstack([[0.0, 0.0, zc], rim])
        verts.append(cap)
        normals.append(np.tile([0.0, 0.0, nz], (cols + 1, 1)))
        uvs.append(np.vstack([[0.5, 0.5], np.stack([0.5 + 0.5 * cphi, 0.5 + 0.5 * sphi], axis=1)]))
        centre = count
        tris.extend((centre, centre + 1 + j, centre + 2 + j) for j in range(cols - 1))
        count += cap.shape[0]

    all_verts = np.vstack(verts)
    conn = _drop_degenerate(all_verts, np.array(tris, dtype=int))
    return Mesh(
        verts=all_verts,
        connectivity=conn,
        vertex_normals=np.vstack(normals),
        uvs=np.vstack(uvs),
    )
