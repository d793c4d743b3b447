"""Triangle meshes prepared on the host before upload.

A Mesh is an ownership group of triangles that share one material and one
smoothing flag. Vertex data arrives already parsed (positions, optional
per-vertex normals and colours); this module places the mesh in the world
and flattens it into per-triangle arrays.

Example:
    >>> mesh = Mesh(
    ...     vertices=[(0, 0, 0), (1, 0, 0), (0, 1, 0)],
    ...     faces=[(0, 1, 2)],
    ...     smooth=False,
    ... )
    >>> triangles = mesh.triangles()
    >>> triangles.v0.shape
    (1, 3)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import numpy.typing as npt

from src.pathtracer.geometry.transform import rotation_matrix

logger = logging.getLogger(__name__)

# Triangles with an area below this are treated as degenerate and dropped
MIN_TRIANGLE_AREA = 1e-12


@dataclass
class TriangleArrays:
    """Per-triangle arrays in world space, each of shape (M, 3).

    Attributes:
        v0, v1, v2: Vertex positions.
        n0, n1, n2: Vertex normals. Equal to the face normal for flat meshes.
        c0, c1, c2: Vertex colours, or None when the mesh carries none.
    """

    v0: npt.NDArray[np.float32]
    v1: npt.NDArray[np.float32]
    v2: npt.NDArray[np.float32]
    n0: npt.NDArray[np.float32]
    n1: npt.NDArray[np.float32]
    n2: npt.NDArray[np.float32]
    c0: npt.NDArray[np.float32] | None = None
    c1: npt.NDArray[np.float32] | None = None
    c2: npt.NDArray[np.float32] | None = None

    def __len__(self) -> int:
        return int(self.v0.shape[0])

    def face_colours(self) -> npt.NDArray[np.float32] | None:
        """Mean vertex colour of each triangle."""
        if self.c0 is None:
            return None
        return ((self.c0 + self.c1 + self.c2) / 3.0).astype(np.float32)


def compute_vertex_normals(
    vertices: npt.NDArray[np.float64], faces: npt.NDArray[np.int64]
) -> npt.NDArray[np.float64]:
    """Vertex normals as the normalized sum of adjacent unit face normals.

    Vertices not referenced by any non-degenerate face get a zero normal,
    which the shading code replaces by the face normal.
    """
    v0 = vertices[faces[:, 0]]
    v1 = vertices[faces[:, 1]]
    v2 = vertices[faces[:, 2]]
    face_n = np.cross(v1 - v0, v2 - v0)
    lengths = np.linalg.norm(face_n, axis=1, keepdims=True)
    face_n = np.divide(face_n, lengths, out=np.zeros_like(face_n), where=lengths > 0.0)

    normals = np.zeros_like(vertices)
    for k in range(3):
        np.add.at(normals, faces[:, k], face_n)

    lengths = np.linalg.norm(normals, axis=1, keepdims=True)
    return np.divide(normals, lengths, out=np.zeros_like(normals), where=lengths > 0.0)


@dataclass
class Mesh:
    """An indexed triangle mesh with placement.

    Attributes:
        vertices: Vertex positions, shape (N, 3).
        faces: Vertex indices of each triangle, shape (M, 3), counter-clockwise.
        normals: Optional per-vertex normals, shape (N, 3).
        colours: Optional per-vertex linear RGB colours, shape (N, 3).
        smooth: Interpolate vertex normals across faces. Normals are computed
            from the faces when smoothing is requested but none are given.
        translation: World-space offset applied after rotation and scale.
        rotation: (pitch, yaw, roll) in degrees.
        scale: Uniform scale factor.
    """

    vertices: npt.ArrayLike
    faces: npt.ArrayLike
    normals: npt.ArrayLike | None = None
    colours: npt.ArrayLike | None = None
    smooth: bool = False
    translation: tuple[float, float, float] = (0.0, 0.0, 0.0)
    rotation: tuple[float, float, float] = (0.0, 0.0, 0.0)
    scale: float = 1.0

    def __post_init__(self) -> None:
        self.vertices = np.asarray(self.vertices, dtype=np.float64).reshape(-1, 3)
        self.faces = np.asarray(self.faces, dtype=np.int64).reshape(-1, 3)
        n = self.vertices.shape[0]

        if self.faces.size and (self.faces.min() < 0 or self.faces.max() >= n):
            raise ValueError(f"Face indices must be in [0, {n}), got range "
                             f"[{self.faces.min()}, {self.faces.max()}]")
        if self.normals is not None:
            self.normals = np.asarray(self.normals, dtype=np.float64).reshape(-1, 3)
            if self.normals.shape[0] != n:
                raise ValueError(f"Expected {n} vertex normals, got {self.normals.shape[0]}")
        if self.colours is not None:
            self.colours = np.asarray(self.colours, dtype=np.float64).reshape(-1, 3)
            if self.colours.shape[0] != n:
                raise ValueError(f"Expected {n} vertex colours, got {self.colours.shape[0]}")
            if np.any(self.colours < 0.0):
                raise ValueError("Vertex colours must be non-negative")
        if self.scale == 0.0:
            raise ValueError("Mesh scale must be non-zero")

    @property
    def has_colours(self) -> bool:
        return self.colours is not None

    def world_vertices(self) -> npt.NDArray[np.float64]:
        """Vertex positions after scale, rotation and translation."""
        rot = rotation_matrix(*self.rotation)
        return (self.vertices * self.scale) @ rot.T + np.asarray(self.translation, dtype=np.float64)

    def triangles(self) -> TriangleArrays:
        """Flatten the mesh into world-space per-triangle arrays.

        Zero-area triangles are dropped with a warning.
        """
        verts = self.world_vertices()
        faces = self.faces

        v0 = verts[faces[:, 0]]
        v1 = verts[faces[:, 1]]
        v2 = verts[faces[:, 2]]
        face_n = np.cross(v1 - v0, v2 - v0)
        area2 = np.linalg.norm(face_n, axis=1)
        keep = area2 > 2.0 * MIN_TRIANGLE_AREA

        dropped = int(np.count_nonzero(~keep))
        if dropped:
            logger.warning("Dropping %d degenerate triangle(s) from mesh", dropped)

        faces = faces[keep]
        v0, v1, v2 = v0[keep], v1[keep], v2[keep]
        face_n = face_n[keep] / area2[keep, None]

        if self.smooth:
            if self.normals is not None:
                rot = rotation_matrix(*self.rotation)
                vn = self.normals @ rot.T * np.sign(self.scale)
                lengths = np.linalg.norm(vn, axis=1, keepdims=True)
                vn = np.divide(vn, lengths, out=np.zeros_like(vn), where=lengths > 0.0)
            else:
                vn = compute_vertex_normals(verts, faces)
            n0, n1, n2 = vn[faces[:, 0]], vn[faces[:, 1]], vn[faces[:, 2]]
        else:
            n0 = n1 = n2 = face_n

        c0 = c1 = c2 = None
        if self.colours is not None:
            c0 = self.colours[faces[:, 0]].astype(np.float32)
            c1 = self.colours[faces[:, 1]].astype(np.float32)
            c2 = self.colours[faces[:, 2]].astype(np.float32)

        f32 = np.float32
        return TriangleArrays(
            v0=v0.astype(f32),
            v1=v1.astype(f32),
            v2=v2.astype(f32),
            n0=n0.astype(f32),
            n1=n1.astype(f32),
            n2=n2.astype(f32),
            c0=c0,
            c1=c1,
            c2=c2,
        )
