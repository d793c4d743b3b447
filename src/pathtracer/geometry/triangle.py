"""Triangle primitive with Moller-Trumbore intersection.

Triangles store three vertex positions and three vertex normals. When a
triangle belongs to a smoothed mesh, the shading normal is the barycentric
interpolation of its vertex normals; otherwise the geometric face normal is
used.
"""

import taichi as ti
import taichi.math as tm

vec3 = tm.vec3

# Determinants below this magnitude mean the ray is parallel to the triangle
# or the triangle has zero area.
_PARALLEL_EPSILON = 1e-12


@ti.func
def hit_triangle(
    ray_origin: vec3,
    ray_direction: vec3,
    v0: vec3,
    v1: vec3,
    v2: vec3,
    t_min: ti.f32,
    t_max: ti.f32,
):
    """Test for ray-triangle intersection.

    Args:
        ray_origin: The starting point of the ray.
        ray_direction: The direction vector of the ray.
        v0: First vertex.
        v1: Second vertex.
        v2: Third vertex.
        t_min: Minimum t value to consider a valid hit.
        t_max: Maximum t value to consider a valid hit.

    Returns:
        A tuple of (hit, t, b1, b2) where b1 and b2 are the barycentric
        weights of v1 and v2 at the hit point.
    """
    edge1 = v1 - v0
    edge2 = v2 - v0
    p = tm.cross(ray_direction, edge2)
    det = tm.dot(edge1, p)

    did_hit = 0
    hit_t = 0.0
    b1 = 0.0
    b2 = 0.0

    if ti.abs(det) > _PARALLEL_EPSILON:
        inv_det = 1.0 / det
        s = ray_origin - v0
        u = tm.dot(s, p) * inv_det
        q = tm.cross(s, edge1)
        v = tm.dot(ray_direction, q) * inv_det
        if u >= 0.0 and v >= 0.0 and u + v <= 1.0:
            t = tm.dot(edge2, q) * inv_det
            if t > t_min and t < t_max:
                did_hit = 1
                hit_t = t
                b1 = u
                b2 = v

    return did_hit, hit_t, b1, b2


@ti.func
def triangle_face_normal(v0: vec3, v1: vec3, v2: vec3) -> vec3:
    """Unit geometric normal following the counter-clockwise winding."""
    return tm.normalize(tm.cross(v1 - v0, v2 - v0))


@ti.func
def triangle_shading_normal(
    n0: vec3, n1: vec3, n2: vec3, b1: ti.f32, b2: ti.f32, face_normal: vec3
) -> vec3:
    """Interpolate vertex normals at barycentric (1 - b1 - b2, b1, b2).

    Falls back to the face normal when the interpolated normal vanishes.
    """
    n = (1.0 - b1 - b2) * n0 + b1 * n1 + b2 * n2
    result = face_normal
    if tm.dot(n, n) > 1e-12:
        result = tm.normalize(n)
    return result
