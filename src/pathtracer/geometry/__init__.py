"""Geometry module for shape primitives and spatial acceleration.

Components:
    aabb: Axis-aligned box slab test and host-side box helpers
    sphere: Ray-sphere intersection
    triangle: Ray-triangle intersection and normal interpolation
    mesh: Host-side triangle meshes with placement
    transform: Pitch/yaw/roll rotation matrices
    bvh: Binned-SAH bounding volume hierarchy and its device arena
"""

from .aabb import hit_aabb, pad_degenerate, safe_inverse_direction, sphere_bounds, triangle_bounds
from .bvh import MAX_LEAF_SIZE, MAX_PRIMITIVES, BVHArrays, build_bvh, clear_bvh, upload_bvh
from .mesh import Mesh, TriangleArrays, compute_vertex_normals
from .sphere import hit_sphere, sphere_normal
from .transform import rotation_matrix
from .triangle import hit_triangle, triangle_face_normal, triangle_shading_normal

__all__ = [
    "hit_aabb",
    "safe_inverse_direction",
    "sphere_bounds",
    "triangle_bounds",
    "pad_degenerate",
    "BVHArrays",
    "build_bvh",
    "upload_bvh",
    "clear_bvh",
    "MAX_LEAF_SIZE",
    "MAX_PRIMITIVES",
    "Mesh",
    "TriangleArrays",
    "compute_vertex_normals",
    "hit_sphere",
    "sphere_normal",
    "rotation_matrix",
    "hit_triangle",
    "triangle_face_normal",
    "triangle_shading_normal",
]
