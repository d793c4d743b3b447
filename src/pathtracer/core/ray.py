"""Ray data structure, vector utilities and sampling warps.

This module provides the Ray dataclass used throughout the renderer, a few
vector helpers, and the warping functions that turn uniform random numbers
into directions (cosine hemisphere, uniform cone, uniform sphere, disk).

Sampling functions never draw random numbers themselves: the caller passes
uniform values produced by ``src.pathtracer.core.rng`` so that every sample is
reproducible from its pixel and sample index.

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> # Within a Taichi kernel:
    >>> # ray = make_ray(origin, direction, 1e-4, 1e10)
    >>> # point = ray_at(ray, 5.0)
"""

import taichi as ti
import taichi.math as tm

# Type alias for 3D vectors using Taichi's math module
vec3 = tm.vec3


@ti.dataclass
class Ray:
    """A ray with an origin, a unit direction and a valid interval.

    Attributes:
        origin: The starting point of the ray.
        direction: The unit direction of the ray.
        t_min: Smallest parameter accepted as a hit.
        t_max: Largest parameter accepted as a hit.
    """

    origin: vec3
    direction: vec3
    t_min: ti.f32
    t_max: ti.f32


@ti.func
def ray_at(ray: Ray, t: ti.f32) -> vec3:
    """Compute the point ray.origin + t * ray.direction."""
    return ray.origin + t * ray.direction


@ti.func
def make_ray(origin: vec3, direction: vec3, t_min: ti.f32, t_max: ti.f32) -> Ray:
    """Create a ray inside a Taichi kernel."""
    return Ray(origin=origin, direction=direction, t_min=t_min, t_max=t_max)


# =============================================================================
# Vector Utility Functions
# =============================================================================


@ti.func
def length_squared(v: vec3) -> ti.f32:
    return tm.dot(v, v)


@ti.func
def max_component(v: vec3) -> ti.f32:
    """Return the largest of the three components."""
    return ti.max(v.x, ti.max(v.y, v.z))


@ti.func
def reflect(incident: vec3, normal: vec3) -> vec3:
    """Reflect an incident vector about a normal.

    Args:
        incident: The incoming direction vector (pointing toward the surface).
        normal: The surface normal (should be normalized).

    Returns:
        The reflected direction vector.
    """
    return incident - 2.0 * tm.dot(incident, normal) * normal


@ti.func
def schlick_fresnel(cosine: ti.f32, r0: ti.f32) -> ti.f32:
    """Schlick's approximation of Fresnel reflectance.

    Args:
        cosine: Cosine of the angle between the view direction and the normal.
        r0: Reflectance at normal incidence.

    Returns:
        r0 + (1 - r0) * (1 - cosine)^5. No clamping is applied.
    """
    c = tm.clamp(1.0 - cosine, 0.0, 1.0)
    c2 = c * c
    return r0 + (1.0 - r0) * (c2 * c2 * c)


@ti.func
def near_zero(v: vec3) -> ti.i32:
    """Return 1 if all components of v are near zero."""
    s = 1e-8
    return ti.abs(v.x) < s and ti.abs(v.y) < s and ti.abs(v.z) < s


@ti.func
def is_finite(v: vec3) -> ti.i32:
    """Return 1 if no component of v is NaN or infinite."""
    ok = 1
    for c in ti.static(range(3)):
        if tm.isnan(v[c]) or tm.isinf(v[c]):
            ok = 0
    return ok


# =============================================================================
# Sampling Warps
# =============================================================================


@ti.func
def build_onb_from_normal(normal: vec3):
    """Build an orthonormal basis with the normal as its z-axis.

    Args:
        normal: The surface normal (should be normalized).

    Returns:
        A tuple (tangent, bitangent, normal).
    """
    a = vec3(1.0, 0.0, 0.0)
    if ti.abs(normal.x) > 0.9:
        a = vec3(0.0, 1.0, 0.0)
    tangent = tm.normalize(tm.cross(a, normal))
    bitangent = tm.cross(normal, tangent)
    return tangent, bitangent, normal


@ti.func
def local_to_world(local_dir: vec3, tangent: vec3, bitangent: vec3, normal: vec3) -> vec3:
    """Transform a direction from a z-up local frame to world coordinates."""
    return local_dir.x * tangent + local_dir.y * bitangent + local_dir.z * normal


@ti.func
def sample_uniform_disk(u1: ti.f32, u2: ti.f32) -> tm.vec2:
    """Map two uniform numbers to a uniformly distributed point on the unit disk."""
    r = ti.sqrt(u1)
    theta = 2.0 * tm.pi * u2
    return tm.vec2(r * ti.cos(theta), r * ti.sin(theta))


@ti.func
def sample_cosine_hemisphere(normal: vec3, u1: ti.f32, u2: ti.f32):
    """Cosine-weighted hemisphere sampling for diffuse surfaces.

    Args:
        normal: The surface normal defining the hemisphere orientation.
        u1: Uniform random number in [0, 1).
        u2: Uniform random number in [0, 1).

    Returns:
        A tuple of (direction, pdf) where pdf = cos(theta) / pi.
    """
    r = ti.sqrt(u1)
    phi = 2.0 * tm.pi * u2
    local_dir = vec3(r * ti.cos(phi), r * ti.sin(phi), ti.sqrt(ti.max(0.0, 1.0 - u1)))
    tangent, bitangent, n = build_onb_from_normal(normal)
    world_dir = tm.normalize(local_to_world(local_dir, tangent, bitangent, n))
    pdf = ti.max(tm.dot(world_dir, normal), 0.0) / tm.pi
    return world_dir, pdf


@ti.func
def sample_uniform_cone(axis: vec3, cos_theta_max: ti.f32, u1: ti.f32, u2: ti.f32) -> vec3:
    """Sample a direction uniformly inside a cone around ``axis``.

    The matching solid-angle pdf is 1 / (2 * pi * (1 - cos_theta_max)).
    """
    cos_theta = 1.0 - u1 * (1.0 - cos_theta_max)
    sin_theta = ti.sqrt(ti.max(0.0, 1.0 - cos_theta * cos_theta))
    phi = 2.0 * tm.pi * u2
    local_dir = vec3(sin_theta * ti.cos(phi), sin_theta * ti.sin(phi), cos_theta)
    tangent, bitangent, n = build_onb_from_normal(axis)
    return tm.normalize(local_to_world(local_dir, tangent, bitangent, n))


@ti.func
def sample_uniform_sphere(u1: ti.f32, u2: ti.f32) -> vec3:
    """Sample a direction uniformly on the unit sphere (pdf 1 / (4 * pi))."""
    z = 1.0 - 2.0 * u1
    r = ti.sqrt(ti.max(0.0, 1.0 - z * z))
    phi = 2.0 * tm.pi * u2
    return vec3(r * ti.cos(phi), r * ti.sin(phi), z)
