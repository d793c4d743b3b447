"""Lambertian (ideal diffuse) material implementation.

The Lambertian BRDF scatters incident light uniformly, weighted by the cosine
of the angle from the surface normal:

    f_r(wi, wo) = albedo / pi

Directions are drawn by cosine-weighted hemisphere sampling:

    pdf(wi) = cos(theta) / pi

so the Monte Carlo weight f_r * cos(theta) / pdf reduces to the albedo.

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from src.pathtracer.materials.lambertian import scatter_lambertian
    >>> # Within a Taichi kernel, with u1, u2 drawn from the sample's RNG:
    >>> # direction, weight, pdf = scatter_lambertian(albedo, normal, u1, u2)
"""

import taichi as ti
import taichi.math as tm

from src.pathtracer.core.ray import near_zero, sample_cosine_hemisphere

# Type alias for 3D vectors
vec3 = tm.vec3


@ti.func
def eval_lambertian(albedo: vec3) -> vec3:
    """Evaluate the Lambertian BRDF (albedo / pi), without the cosine term."""
    return albedo / tm.pi


@ti.func
def pdf_lambertian(normal: vec3, scattered_direction: vec3) -> ti.f32:
    """PDF of cosine-weighted sampling, cos(theta) / pi.

    Returns 0 for directions below the surface.
    """
    cos_theta = tm.dot(normal, scattered_direction)
    pdf = 0.0
    if cos_theta > 0.0:
        pdf = cos_theta / tm.pi
    return pdf


@ti.func
def scatter_lambertian(albedo: vec3, normal: vec3, u1: ti.f32, u2: ti.f32):
    """Sample a scattered direction for a Lambertian surface.

    With cosine-weighted sampling:
        weight = (albedo / pi) * cos_theta / (cos_theta / pi) = albedo

    Args:
        albedo: The diffuse reflectance color (RGB).
        normal: The shading normal at the hit point (normalized).
        u1: Uniform random number in [0, 1).
        u2: Uniform random number in [0, 1).

    Returns:
        A tuple of (scattered_direction, weight, pdf).
    """
    scattered_direction, pdf = sample_cosine_hemisphere(normal, u1, u2)

    # Floating point can collapse the sample; fall back to the normal
    if near_zero(scattered_direction):
        scattered_direction = normal
        pdf = 1.0 / tm.pi

    return scattered_direction, albedo, pdf


# =============================================================================
# Material Field Storage
# =============================================================================

# Maximum number of Lambertian materials in the scene. Meshes with per-vertex
# colour resolve into one Lambertian per distinct face colour.
MAX_LAMBERTIAN_MATERIALS = 8192

lambertian_albedos = ti.Vector.field(3, dtype=ti.f32, shape=MAX_LAMBERTIAN_MATERIALS)
num_lambertian_materials = ti.field(dtype=ti.i32, shape=())


def clear_lambertian_materials() -> None:
    """Reset the Lambertian registry to empty."""
    num_lambertian_materials[None] = 0


def add_lambertian_material(albedo: tuple[float, float, float]) -> int:
    """Add a Lambertian material to the registry.

    Args:
        albedo: The diffuse reflectance color as (R, G, B).

    Returns:
        The type-local index of the added material.

    Raises:
        RuntimeError: If the maximum number of materials is exceeded.
        ValueError: If any albedo component is outside [0, 1].
    """
    for i, component in enumerate(albedo):
        if component < 0.0 or component > 1.0:
            raise ValueError(
                f"Albedo component {i} = {component} is outside [0, 1]. "
                "This would violate energy conservation."
            )

    idx = num_lambertian_materials[None]
    if idx >= MAX_LAMBERTIAN_MATERIALS:
        raise RuntimeError(
            f"Maximum number of Lambertian materials ({MAX_LAMBERTIAN_MATERIALS}) exceeded"
        )

    lambertian_albedos[idx] = vec3(albedo[0], albedo[1], albedo[2])
    num_lambertian_materials[None] = idx + 1
    return idx


def get_lambertian_material_count() -> int:
    return int(num_lambertian_materials[None])


@ti.func
def get_lambertian_albedo(material_idx: ti.i32) -> vec3:
    return lambertian_albedos[material_idx]
