"""Sphere primitive with robust ray-sphere intersection.

The intersection uses the robust quadratic formula from Ray Tracing Gems to
avoid catastrophic cancellation when b^2 is nearly equal to 4ac.

The intersection test only reports the hit distance. The surface normal is
computed once, for the closest hit, by ``sphere_normal``.
"""

import taichi as ti
import taichi.math as tm

# Type alias for 3D vectors using Taichi's math module
vec3 = tm.vec3


@ti.func
def _solve_quadratic_robust(h: ti.f32, a: ti.f32, c: ti.f32, sqrt_d: ti.f32):
    """Solve a*t^2 + 2*h*t + c = 0 with a numerically stable formula.

    Args:
        h: Half of the linear coefficient.
        a: Quadratic coefficient.
        c: Constant term.
        sqrt_d: Square root of discriminant (h^2 - a*c).

    Returns:
        Tuple of (t0, t1) where t0 <= t1.
    """
    # q = -(h + sign(h) * sqrt(discriminant))
    sign_h = ti.select(h < 0.0, -1.0, 1.0)
    q = -(h + sign_h * sqrt_d)

    t0 = 0.0
    t1 = 0.0
    if ti.abs(q) < 1e-10:
        # Tangent ray
        t0 = (-h - sqrt_d) / a
        t1 = (-h + sqrt_d) / a
    else:
        t0 = q / a
        t1 = c / q

    if t0 > t1:
        temp = t0
        t0 = t1
        t1 = temp

    return t0, t1


@ti.func
def hit_sphere(
    ray_origin: vec3,
    ray_direction: vec3,
    center: vec3,
    radius: ti.f32,
    t_min: ti.f32,
    t_max: ti.f32,
):
    """Test for ray-sphere intersection.

    Solves |ray_origin + t * ray_direction - center|^2 = radius^2 in the
    half-b form a*t^2 + 2*h*t + c = 0 with
        a = dot(direction, direction)
        h = dot(direction, origin - center)
        c = |origin - center|^2 - radius^2

    The discriminant is taken from the distance between the center and the
    ray's closest approach, a * (radius^2 - |l|^2), instead of h^2 - a*c.
    For a small sphere far away c has already lost radius^2 in f32.

    A zero-radius sphere is never hit.

    Args:
        ray_origin: The starting point of the ray.
        ray_direction: The direction vector of the ray.
        center: Sphere center.
        radius: Sphere radius.
        t_min: Minimum t value to consider a valid hit.
        t_max: Maximum t value to consider a valid hit.

    Returns:
        A tuple of (hit, t) for the first root inside (t_min, t_max).
    """
    oc = ray_origin - center
    a = tm.dot(ray_direction, ray_direction)
    h = tm.dot(ray_direction, oc)
    c = tm.dot(oc, oc) - radius * radius
    l = oc - (h / a) * ray_direction
    discriminant = a * (radius * radius - tm.dot(l, l))

    did_hit = 0
    hit_t = 0.0

    if discriminant >= 0.0 and radius > 0.0:
        sqrt_d = ti.sqrt(discriminant)
        t0, t1 = _solve_quadratic_robust(h, a, c, sqrt_d)

        if t0 > t_min and t0 < t_max:
            did_hit = 1
            hit_t = t0
        elif t1 > t_min and t1 < t_max:
            did_hit = 1
            hit_t = t1

    return did_hit, hit_t


@ti.func
def sphere_normal(point: vec3, center: vec3, radius: ti.f32) -> vec3:
    """Outward unit normal of a sphere at a surface point."""
    return tm.normalize((point - center) / radius)
