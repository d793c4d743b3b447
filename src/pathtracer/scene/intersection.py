"""Scene-level ray queries over the uploaded primitives.

Primitives (spheres and triangles) are stored in one Structure-of-Arrays
table, already reordered so that every BVH leaf references a contiguous range.
The two queries used by the integrator are:

    nearest_hit: closest intersection, with shading information
    any_hit:     shadow-ray test that stops at the first intersection

Both walk the BVH with an explicit stack, visit the nearer child first, and
skip subtrees whose entry distance lies beyond the best hit found so far.
``brute_force_nearest_hit`` tests every primitive and exists to validate the
traversal.

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from src.pathtracer.scene.intersection import nearest_hit
    >>> # Within a Taichi kernel, after a Scene has been uploaded:
    >>> # rec = nearest_hit(origin, direction, 1e-4, 1e10)
"""

from enum import IntEnum

import numpy as np
import numpy.typing as npt
import taichi as ti
import taichi.math as tm

from src.pathtracer.geometry.aabb import hit_aabb, safe_inverse_direction
from src.pathtracer.geometry.bvh import (
    BVH_STACK_SIZE,
    MAX_PRIMITIVES,
    bvh_count,
    bvh_first,
    bvh_left,
    bvh_node_max,
    bvh_node_min,
    bvh_right,
    num_bvh_nodes,
)
from src.pathtracer.geometry.sphere import hit_sphere, sphere_normal
from src.pathtracer.geometry.triangle import (
    hit_triangle,
    triangle_face_normal,
    triangle_shading_normal,
)

# Type alias for 3D vectors using Taichi's math module
vec3 = tm.vec3


class PrimitiveKind(IntEnum):
    """Closed set of primitive shapes understood by the intersector."""

    SPHERE = 0
    TRIANGLE = 1


@ti.dataclass
class HitRecord:
    """Record of a ray-scene intersection.

    Attributes:
        hit: 1 if the ray intersected a primitive, 0 on a miss.
        t: Ray parameter of the intersection.
        point: World-space intersection point.
        normal: Unit shading normal, facing the side the ray came from.
        geometric_normal: Unit geometric normal, facing the side the ray
            came from. Used to offset secondary ray origins.
        front_face: 1 if the ray hit the outward-facing side.
        material_id: Unified material ID of the hit primitive.
        light_id: Index into the light table, or -1 if not a light.
        prim_id: Index of the hit primitive in the reordered array.
    """

    hit: ti.i32
    t: ti.f32
    point: vec3
    normal: vec3
    geometric_normal: vec3
    front_face: ti.i32
    material_id: ti.i32
    light_id: ti.i32
    prim_id: ti.i32


# Primitive storage: Structure of Arrays in BVH order.
# Spheres use prim_v0 as center and prim_radius; triangles use the three
# vertices and vertex normals.
prim_kind = ti.field(dtype=ti.i32, shape=MAX_PRIMITIVES)
prim_v0 = ti.Vector.field(3, dtype=ti.f32, shape=MAX_PRIMITIVES)
prim_v1 = ti.Vector.field(3, dtype=ti.f32, shape=MAX_PRIMITIVES)
prim_v2 = ti.Vector.field(3, dtype=ti.f32, shape=MAX_PRIMITIVES)
prim_n0 = ti.Vector.field(3, dtype=ti.f32, shape=MAX_PRIMITIVES)
prim_n1 = ti.Vector.field(3, dtype=ti.f32, shape=MAX_PRIMITIVES)
prim_n2 = ti.Vector.field(3, dtype=ti.f32, shape=MAX_PRIMITIVES)
prim_radius = ti.field(dtype=ti.f32, shape=MAX_PRIMITIVES)
prim_material = ti.field(dtype=ti.i32, shape=MAX_PRIMITIVES)
prim_light = ti.field(dtype=ti.i32, shape=MAX_PRIMITIVES)
num_primitives = ti.field(dtype=ti.i32, shape=())


@ti.kernel
def _upload_primitives(
    kind: ti.types.ndarray(dtype=ti.i32, ndim=1),
    v0: ti.types.ndarray(dtype=ti.f32, ndim=2),
    v1: ti.types.ndarray(dtype=ti.f32, ndim=2),
    v2: ti.types.ndarray(dtype=ti.f32, ndim=2),
    n0: ti.types.ndarray(dtype=ti.f32, ndim=2),
    n1: ti.types.ndarray(dtype=ti.f32, ndim=2),
    n2: ti.types.ndarray(dtype=ti.f32, ndim=2),
    radius: ti.types.ndarray(dtype=ti.f32, ndim=1),
    material: ti.types.ndarray(dtype=ti.i32, ndim=1),
    light: ti.types.ndarray(dtype=ti.i32, ndim=1),
    n: ti.i32,
):
    for i in range(n):
        prim_kind[i] = kind[i]
        prim_v0[i] = vec3(v0[i, 0], v0[i, 1], v0[i, 2])
        prim_v1[i] = vec3(v1[i, 0], v1[i, 1], v1[i, 2])
        prim_v2[i] = vec3(v2[i, 0], v2[i, 1], v2[i, 2])
        prim_n0[i] = vec3(n0[i, 0], n0[i, 1], n0[i, 2])
        prim_n1[i] = vec3(n1[i, 0], n1[i, 1], n1[i, 2])
        prim_n2[i] = vec3(n2[i, 0], n2[i, 1], n2[i, 2])
        prim_radius[i] = radius[i]
        prim_material[i] = material[i]
        prim_light[i] = light[i]


def upload_primitives(arrays: dict[str, npt.NDArray]) -> None:
    """Copy packed primitive arrays (already in BVH order) to the device.

    Args:
        arrays: Mapping with keys kind, v0, v1, v2, n0, n1, n2, radius,
            material and light, as produced by the scene manager.

    Raises:
        RuntimeError: If the primitive count exceeds MAX_PRIMITIVES.
    """
    n = int(arrays["kind"].shape[0])
    if n > MAX_PRIMITIVES:
        raise RuntimeError(f"Scene has {n} primitives, capacity is {MAX_PRIMITIVES}")
    if n > 0:
        _upload_primitives(
            *(np.ascontiguousarray(arrays[key])
              for key in ("kind", "v0", "v1", "v2", "n0", "n1", "n2", "radius", "material", "light")),
            n,
        )
    num_primitives[None] = n


def clear_primitives() -> None:
    """Remove all primitives from the device table."""
    num_primitives[None] = 0


def get_primitive_count() -> int:
    return int(num_primitives[None])


# =============================================================================
# Per-primitive tests
# =============================================================================


@ti.func
def _intersect_primitive(
    k: ti.i32,
    ray_origin: vec3,
    ray_direction: vec3,
    t_min: ti.f32,
    t_max: ti.f32,
):
    """Intersect one primitive. Returns (hit, t, b1, b2)."""
    did_hit = 0
    t = 0.0
    b1 = 0.0
    b2 = 0.0
    if prim_kind[k] == int(PrimitiveKind.SPHERE):
        did_hit, t = hit_sphere(ray_origin, ray_direction, prim_v0[k], prim_radius[k], t_min, t_max)
    else:
        did_hit, t, b1, b2 = hit_triangle(
            ray_origin, ray_direction, prim_v0[k], prim_v1[k], prim_v2[k], t_min, t_max
        )
    return did_hit, t, b1, b2


@ti.func
def _make_miss_record() -> HitRecord:
    return HitRecord(
        hit=0,
        t=0.0,
        point=vec3(0.0, 0.0, 0.0),
        normal=vec3(0.0, 0.0, 0.0),
        geometric_normal=vec3(0.0, 0.0, 0.0),
        front_face=0,
        material_id=-1,
        light_id=-1,
        prim_id=-1,
    )


@ti.func
def _make_hit_record(
    k: ti.i32, ray_origin: vec3, ray_direction: vec3, t: ti.f32, b1: ti.f32, b2: ti.f32
) -> HitRecord:
    """Build the full record for the closest hit on primitive k."""
    point = ray_origin + t * ray_direction
    geometric = vec3(0.0, 0.0, 0.0)
    shading = vec3(0.0, 0.0, 0.0)
    if prim_kind[k] == int(PrimitiveKind.SPHERE):
        geometric = sphere_normal(point, prim_v0[k], prim_radius[k])
        shading = geometric
    else:
        geometric = triangle_face_normal(prim_v0[k], prim_v1[k], prim_v2[k])
        shading = triangle_shading_normal(prim_n0[k], prim_n1[k], prim_n2[k], b1, b2, geometric)

    front_face = 1
    if tm.dot(ray_direction, geometric) > 0.0:
        front_face = 0
        geometric = -geometric
    if tm.dot(ray_direction, shading) > 0.0:
        shading = -shading

    return HitRecord(
        hit=1,
        t=t,
        point=point,
        normal=shading,
        geometric_normal=geometric,
        front_face=front_face,
        material_id=prim_material[k],
        light_id=prim_light[k],
        prim_id=k,
    )


# =============================================================================
# Scene queries
# =============================================================================


@ti.func
def nearest_hit(
    ray_origin: vec3,
    ray_direction: vec3,
    t_min: ti.f32,
    t_max: ti.f32,
) -> HitRecord:
    """Find the closest intersection along a ray.

    Args:
        ray_origin: The starting point of the ray.
        ray_direction: The unit direction of the ray.
        t_min: Minimum t value to consider a valid hit.
        t_max: Maximum t value to consider a valid hit.

    Returns:
        A HitRecord for the closest hit, or a miss record.
    """
    closest_t = t_max
    closest_prim = -1
    closest_b1 = 0.0
    closest_b2 = 0.0

    if num_bvh_nodes[None] > 0:
        inv_dir = safe_inverse_direction(ray_direction)
        stack_node = ti.Vector([0 for _ in range(BVH_STACK_SIZE)], dt=ti.i32)
        stack_t = ti.Vector([0.0 for _ in range(BVH_STACK_SIZE)], dt=ti.f32)
        stack_ptr = 0

        root_hit, root_t = hit_aabb(
            bvh_node_min[0], bvh_node_max[0], ray_origin, inv_dir, t_min, closest_t
        )
        if root_hit == 1:
            stack_node[0] = 0
            stack_t[0] = root_t
            stack_ptr = 1

        while stack_ptr > 0:
            stack_ptr -= 1
            node = stack_node[stack_ptr]

            # Prune subtrees entered beyond the current best hit
            if stack_t[stack_ptr] <= closest_t:
                count = bvh_count[node]
                if count > 0:
                    first = bvh_first[node]
                    for k in range(first, first + count):
                        did_hit, t, b1, b2 = _intersect_primitive(
                            k, ray_origin, ray_direction, t_min, closest_t
                        )
                        if did_hit == 1:
                            closest_t = t
                            closest_prim = k
                            closest_b1 = b1
                            closest_b2 = b2
                else:
                    left = bvh_left[node]
                    right = bvh_right[node]
                    hit_l, t_l = hit_aabb(
                        bvh_node_min[left], bvh_node_max[left], ray_origin, inv_dir, t_min, closest_t
                    )
                    hit_r, t_r = hit_aabb(
                        bvh_node_min[right], bvh_node_max[right], ray_origin, inv_dir, t_min, closest_t
                    )
                    if hit_l == 1 and hit_r == 1 and stack_ptr + 2 <= BVH_STACK_SIZE:
                        # Push the far child first so the near child pops next
                        if t_l <= t_r:
                            stack_node[stack_ptr] = right
                            stack_t[stack_ptr] = t_r
                            stack_node[stack_ptr + 1] = left
                            stack_t[stack_ptr + 1] = t_l
                        else:
                            stack_node[stack_ptr] = left
                            stack_t[stack_ptr] = t_l
                            stack_node[stack_ptr + 1] = right
                            stack_t[stack_ptr + 1] = t_r
                        stack_ptr += 2
                    elif hit_l == 1 and stack_ptr < BVH_STACK_SIZE:
                        stack_node[stack_ptr] = left
                        stack_t[stack_ptr] = t_l
                        stack_ptr += 1
                    elif hit_r == 1 and stack_ptr < BVH_STACK_SIZE:
                        stack_node[stack_ptr] = right
                        stack_t[stack_ptr] = t_r
                        stack_ptr += 1

    result = _make_miss_record()
    if closest_prim >= 0:
        result = _make_hit_record(
            closest_prim, ray_origin, ray_direction, closest_t, closest_b1, closest_b2
        )
    return result


@ti.func
def any_hit(
    ray_origin: vec3,
    ray_direction: vec3,
    t_min: ti.f32,
    t_max: ti.f32,
) -> ti.i32:
    """Test whether anything intersects the ray inside (t_min, t_max).

    Traversal stops as soon as one intersection is found.

    Returns:
        1 if any primitive was hit, 0 otherwise.
    """
    found = 0

    if num_bvh_nodes[None] > 0:
        inv_dir = safe_inverse_direction(ray_direction)
        stack_node = ti.Vector([0 for _ in range(BVH_STACK_SIZE)], dt=ti.i32)
        stack_ptr = 0

        root_hit, _ = hit_aabb(bvh_node_min[0], bvh_node_max[0], ray_origin, inv_dir, t_min, t_max)
        if root_hit == 1:
            stack_node[0] = 0
            stack_ptr = 1

        while stack_ptr > 0 and found == 0:
            stack_ptr -= 1
            node = stack_node[stack_ptr]
            count = bvh_count[node]
            if count > 0:
                first = bvh_first[node]
                for k in range(first, first + count):
                    if found == 0:
                        did_hit, _, _, _ = _intersect_primitive(
                            k, ray_origin, ray_direction, t_min, t_max
                        )
                        if did_hit == 1:
                            found = 1
            else:
                left = bvh_left[node]
                right = bvh_right[node]
                hit_l, _ = hit_aabb(
                    bvh_node_min[left], bvh_node_max[left], ray_origin, inv_dir, t_min, t_max
                )
                hit_r, _ = hit_aabb(
                    bvh_node_min[right], bvh_node_max[right], ray_origin, inv_dir, t_min, t_max
                )
                if hit_l == 1 and stack_ptr < BVH_STACK_SIZE:
                    stack_node[stack_ptr] = left
                    stack_ptr += 1
                if hit_r == 1 and stack_ptr < BVH_STACK_SIZE:
                    stack_node[stack_ptr] = right
                    stack_ptr += 1

    return found


@ti.func
def brute_force_nearest_hit(
    ray_origin: vec3,
    ray_direction: vec3,
    t_min: ti.f32,
    t_max: ti.f32,
) -> HitRecord:
    """Closest intersection found by testing every primitive in order."""
    closest_t = t_max
    closest_prim = -1
    closest_b1 = 0.0
    closest_b2 = 0.0
    for k in range(num_primitives[None]):
        did_hit, t, b1, b2 = _intersect_primitive(k, ray_origin, ray_direction, t_min, closest_t)
        if did_hit == 1:
            closest_t = t
            closest_prim = k
            closest_b1 = b1
            closest_b2 = b2

    result = _make_miss_record()
    if closest_prim >= 0:
        result = _make_hit_record(
            closest_prim, ray_origin, ray_direction, closest_t, closest_b1, closest_b2
        )
    return result
