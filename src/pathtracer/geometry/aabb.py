"""Axis-aligned bounding boxes.

The slab test runs inside Taichi kernels during BVH traversal; the numpy
helpers compute per-primitive boxes on the host while the BVH is built.
"""

import numpy as np
import numpy.typing as npt
import taichi as ti
import taichi.math as tm

vec3 = tm.vec3

# Smallest box extent along any axis. Degenerate primitives (zero-radius
# spheres, axis-aligned triangles) are padded to this size so traversal
# never divides a zero-width slab.
MIN_BOX_EXTENT = 1e-5

# Direction components smaller than this are replaced before inversion
_MIN_DIRECTION_COMPONENT = 1e-12


@ti.func
def safe_inverse_direction(direction: vec3) -> vec3:
    """Compute 1 / direction without producing infinities or NaNs."""
    inv = vec3(0.0, 0.0, 0.0)
    for c in ti.static(range(3)):
        d = direction[c]
        if ti.abs(d) < _MIN_DIRECTION_COMPONENT:
            d = ti.select(d < 0.0, -_MIN_DIRECTION_COMPONENT, _MIN_DIRECTION_COMPONENT)
        inv[c] = 1.0 / d
    return inv


@ti.func
def hit_aabb(
    box_min: vec3,
    box_max: vec3,
    ray_origin: vec3,
    inv_direction: vec3,
    t_min: ti.f32,
    t_max: ti.f32,
):
    """Slab test of a ray against a box.

    Args:
        box_min: Minimum corner of the box.
        box_max: Maximum corner of the box.
        ray_origin: The ray origin.
        inv_direction: Component-wise inverse of the ray direction.
        t_min: Start of the valid ray interval.
        t_max: End of the valid ray interval.

    Returns:
        A tuple of (hit, t_enter) where t_enter is the parameter at which the
        ray enters the box, clipped to the valid interval.
    """
    t0 = (box_min - ray_origin) * inv_direction
    t1 = (box_max - ray_origin) * inv_direction
    t_near = ti.min(t0, t1)
    t_far = ti.max(t0, t1)
    t_enter = ti.max(ti.max(t_near.x, t_near.y), ti.max(t_near.z, t_min))
    t_exit = ti.min(ti.min(t_far.x, t_far.y), ti.min(t_far.z, t_max))
    hit = 0
    if t_exit >= t_enter:
        hit = 1
    return hit, t_enter


# =============================================================================
# Host-side helpers
# =============================================================================


def sphere_bounds(
    centers: npt.NDArray[np.float32], radii: npt.NDArray[np.float32]
) -> tuple[npt.NDArray[np.float32], npt.NDArray[np.float32]]:
    """Bounding boxes of spheres, shape (N, 3) each."""
    r = np.abs(radii).reshape(-1, 1)
    return centers - r, centers + r


def triangle_bounds(
    v0: npt.NDArray[np.float32], v1: npt.NDArray[np.float32], v2: npt.NDArray[np.float32]
) -> tuple[npt.NDArray[np.float32], npt.NDArray[np.float32]]:
    """Bounding boxes of triangles, shape (N, 3) each."""
    return np.minimum(np.minimum(v0, v1), v2), np.maximum(np.maximum(v0, v1), v2)


def pad_degenerate(
    box_min: npt.NDArray[np.float32], box_max: npt.NDArray[np.float32]
) -> tuple[npt.NDArray[np.float32], npt.NDArray[np.float32]]:
    """Grow boxes so that every axis has at least MIN_BOX_EXTENT."""
    center = 0.5 * (box_min + box_max)
    half = np.maximum(0.5 * (box_max - box_min), 0.5 * MIN_BOX_EXTENT)
    return center - half, center + half


def surface_area(box_min: npt.NDArray, box_max: npt.NDArray) -> npt.NDArray:
    """Surface area of one box or of an array of boxes."""
    d = np.maximum(box_max - box_min, 0.0)
    return 2.0 * (d[..., 0] * d[..., 1] + d[..., 1] * d[..., 2] + d[..., 2] * d[..., 0])
