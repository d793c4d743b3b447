"""Gloss material: a diffuse lobe blended with a specular lobe.

Parameters:
    albedo:      base colour.
    reflectance: Schlick reflectance at normal incidence. It is an unconstrained
                 positive scalar; scene data uses values above 1 for strongly
                 reflective surfaces.
    metalness:   how much the base colour tints the specular lobe. 0 leaves the
                 specular lobe white, 1 tints it fully and removes the diffuse
                 lobe. Clamped to [0, 1] where it is used.
    roughness:   width of the specular lobe. 0 is a perfect mirror (a Dirac lobe,
                 invisible to next-event estimation); larger values use a GGX
                 microfacet distribution with alpha = roughness^2.

The Fresnel term F = schlick(cos_o, reflectance), clamped to [0, 1], splits the
energy between the lobes:

    f = (1 - F)(1 - metalness) * albedo / pi  +  F * tint * D * G / (4 cos_o cos_i)

Sampling picks a lobe with probability proportional to its energy and weights
the result by the mixture pdf, so the combined estimator stays unbiased.
"""

import taichi as ti
import taichi.math as tm

from src.pathtracer.core.ray import (
    build_onb_from_normal,
    local_to_world,
    max_component,
    reflect,
    sample_cosine_hemisphere,
    schlick_fresnel,
)

vec3 = tm.vec3

# Below this roughness the specular lobe is treated as a perfect mirror
MIN_ROUGHNESS = 1e-3


@ti.dataclass
class GlossMaterial:
    """Gloss material properties.

    Attributes:
        albedo: Base colour (RGB).
        reflectance: Fresnel reflectance at normal incidence (>= 0).
        metalness: Specular tint amount (>= 0, clamped to 1 when used).
        roughness: Specular lobe roughness in [0, 1].
    """

    albedo: vec3
    reflectance: ti.f32
    metalness: ti.f32
    roughness: ti.f32


@ti.func
def gloss_fresnel(reflectance: ti.f32, cos_theta: ti.f32) -> ti.f32:
    """Specular share of the energy at a viewing angle, in [0, 1]."""
    return tm.clamp(schlick_fresnel(cos_theta, reflectance), 0.0, 1.0)


@ti.func
def specular_tint(albedo: vec3, metalness: ti.f32) -> vec3:
    m = tm.clamp(metalness, 0.0, 1.0)
    return (1.0 - m) * vec3(1.0, 1.0, 1.0) + m * albedo


@ti.func
def _lobe_weights(mat: GlossMaterial, cos_o: ti.f32):
    """Return (fresnel, specular selection probability, total lobe energy)."""
    f = gloss_fresnel(mat.reflectance, cos_o)
    m = tm.clamp(mat.metalness, 0.0, 1.0)
    e_spec = f * max_component(specular_tint(mat.albedo, mat.metalness))
    e_diff = (1.0 - f) * (1.0 - m) * max_component(mat.albedo)
    total = e_spec + e_diff
    p_spec = 0.0
    if total > 0.0:
        p_spec = e_spec / total
    return f, p_spec, total


@ti.func
def ggx_distribution(cos_h: ti.f32, alpha: ti.f32) -> ti.f32:
    """GGX normal distribution D(h)."""
    a2 = alpha * alpha
    d = cos_h * cos_h * (a2 - 1.0) + 1.0
    return a2 / (tm.pi * d * d)


@ti.func
def smith_g1(cos_v: ti.f32, alpha: ti.f32) -> ti.f32:
    """Smith masking term for GGX."""
    a2 = alpha * alpha
    return 2.0 * cos_v / (cos_v + ti.sqrt(a2 + (1.0 - a2) * cos_v * cos_v))


@ti.func
def sample_ggx_half_vector(normal: vec3, alpha: ti.f32, u1: ti.f32, u2: ti.f32) -> vec3:
    """Sample a microfacet normal with density D(h) * cos(theta_h)."""
    tan2 = alpha * alpha * u1 / ti.max(1.0 - u1, 1e-7)
    cos_t = 1.0 / ti.sqrt(1.0 + tan2)
    sin_t = ti.sqrt(ti.max(0.0, 1.0 - cos_t * cos_t))
    phi = 2.0 * tm.pi * u2
    local_h = vec3(sin_t * ti.cos(phi), sin_t * ti.sin(phi), cos_t)
    tangent, bitangent, n = build_onb_from_normal(normal)
    return tm.normalize(local_to_world(local_h, tangent, bitangent, n))


@ti.func
def eval_gloss(mat: GlossMaterial, wo: vec3, wi: vec3, normal: vec3) -> vec3:
    """Evaluate the non-delta part of the Gloss BRDF.

    Args:
        mat: The material parameters.
        wo: Unit direction toward the viewer.
        wi: Unit direction toward the light.
        normal: Shading normal.

    Returns:
        The BRDF value (without the cosine term). The perfect-mirror lobe of a
        zero-roughness material is not included.
    """
    cos_o = tm.dot(normal, wo)
    cos_i = tm.dot(normal, wi)
    result = vec3(0.0, 0.0, 0.0)
    if cos_o > 0.0 and cos_i > 0.0:
        f = gloss_fresnel(mat.reflectance, cos_o)
        m = tm.clamp(mat.metalness, 0.0, 1.0)
        result = (1.0 - f) * (1.0 - m) * mat.albedo / tm.pi
        if mat.roughness >= MIN_ROUGHNESS:
            alpha = mat.roughness * mat.roughness
            h = tm.normalize(wo + wi)
            d = ggx_distribution(tm.dot(normal, h), alpha)
            g = smith_g1(cos_o, alpha) * smith_g1(cos_i, alpha)
            result += f * specular_tint(mat.albedo, mat.metalness) * d * g / (4.0 * cos_o * cos_i)
    return result


@ti.func
def pdf_gloss(mat: GlossMaterial, wo: vec3, wi: vec3, normal: vec3) -> ti.f32:
    """Mixture pdf of sampling wi, excluding the perfect-mirror lobe."""
    cos_o = tm.dot(normal, wo)
    cos_i = tm.dot(normal, wi)
    pdf = 0.0
    if cos_o > 0.0 and cos_i > 0.0:
        _, p_spec, _ = _lobe_weights(mat, cos_o)
        pdf = (1.0 - p_spec) * cos_i / tm.pi
        if mat.roughness >= MIN_ROUGHNESS:
            alpha = mat.roughness * mat.roughness
            h = tm.normalize(wo + wi)
            cos_h = tm.dot(normal, h)
            wo_h = ti.max(tm.dot(wo, h), 1e-7)
            pdf += p_spec * ggx_distribution(cos_h, alpha) * cos_h / (4.0 * wo_h)
    return pdf


@ti.func
def scatter_gloss(
    mat: GlossMaterial,
    incident_direction: vec3,
    normal: vec3,
    u_lobe: ti.f32,
    u1: ti.f32,
    u2: ti.f32,
):
    """Sample a scattered direction for a Gloss surface.

    Args:
        mat: The material parameters.
        incident_direction: The incoming ray direction (normalized).
        normal: The shading normal, facing the incoming ray.
        u_lobe: Uniform number choosing the lobe.
        u1: Uniform number for the direction.
        u2: Uniform number for the direction.

    Returns:
        A tuple of (scattered_direction, weight, is_delta, did_scatter).
        weight is BRDF * cos / pdf; is_delta is 1 when the perfect-mirror lobe
        was sampled.
    """
    wo = -incident_direction
    cos_o = ti.max(tm.dot(normal, wo), 1e-4)
    f, p_spec, total = _lobe_weights(mat, cos_o)

    direction = vec3(0.0, 0.0, 0.0)
    weight = vec3(0.0, 0.0, 0.0)
    is_delta = 0
    did_scatter = 0

    if total > 0.0:
        if u_lobe < p_spec and mat.roughness < MIN_ROUGHNESS:
            direction = reflect(incident_direction, normal)
            weight = f * specular_tint(mat.albedo, mat.metalness) / p_spec
            is_delta = 1
            if tm.dot(direction, normal) > 0.0:
                did_scatter = 1
        else:
            if u_lobe < p_spec:
                h = sample_ggx_half_vector(normal, mat.roughness * mat.roughness, u1, u2)
                direction = reflect(incident_direction, h)
            else:
                direction, _ = sample_cosine_hemisphere(normal, u1, u2)

            cos_i = tm.dot(normal, direction)
            if cos_i > 0.0:
                pdf = pdf_gloss(mat, wo, direction, normal)
                if pdf > 0.0:
                    weight = eval_gloss(mat, wo, direction, normal) * cos_i / pdf
                    did_scatter = 1

    return direction, weight, is_delta, did_scatter


# =============================================================================
# Material Field Storage
# =============================================================================

MAX_GLOSS_MATERIALS = 1024

gloss_albedos = ti.Vector.field(3, dtype=ti.f32, shape=MAX_GLOSS_MATERIALS)
gloss_reflectances = ti.field(dtype=ti.f32, shape=MAX_GLOSS_MATERIALS)
gloss_metalnesses = ti.field(dtype=ti.f32, shape=MAX_GLOSS_MATERIALS)
gloss_roughnesses = ti.field(dtype=ti.f32, shape=MAX_GLOSS_MATERIALS)
num_gloss_materials = ti.field(dtype=ti.i32, shape=())


def clear_gloss_materials() -> None:
    """Reset the Gloss registry to empty."""
    num_gloss_materials[None] = 0


def add_gloss_material(
    albedo: tuple[float, float, float],
    reflectance: float,
    metalness: float,
    roughness: float = 0.0,
) -> int:
    """Add a Gloss material to the registry.

    Args:
        albedo: Base colour as (R, G, B), each in [0, 1].
        reflectance: Reflectance at normal incidence, >= 0. Not clamped.
        metalness: Specular tint amount, >= 0.
        roughness: Specular roughness in [0, 1]. Default 0 (mirror lobe).

    Returns:
        The type-local index of the added material.

    Raises:
        RuntimeError: If the maximum number of materials is exceeded.
        ValueError: If a parameter is out of range.
    """
    for i, component in enumerate(albedo):
        if component < 0.0 or component > 1.0:
            raise ValueError(
                f"Albedo component {i} = {component} is outside [0, 1]. "
                "This would violate energy conservation."
            )
    if reflectance < 0.0:
        raise ValueError(f"Reflectance = {reflectance} must be non-negative")
    if metalness < 0.0:
        raise ValueError(f"Metalness = {metalness} must be non-negative")
    if roughness < 0.0 or roughness > 1.0:
        raise ValueError(f"Roughness = {roughness} is outside [0, 1]")

    idx = num_gloss_materials[None]
    if idx >= MAX_GLOSS_MATERIALS:
        raise RuntimeError(f"Maximum number of Gloss materials ({MAX_GLOSS_MATERIALS}) exceeded")

    gloss_albedos[idx] = vec3(albedo[0], albedo[1], albedo[2])
    gloss_reflectances[idx] = reflectance
    gloss_metalnesses[idx] = metalness
    gloss_roughnesses[idx] = roughness
    num_gloss_materials[None] = idx + 1
    return idx


def get_gloss_material_count() -> int:
    return int(num_gloss_materials[None])


@ti.func
def get_gloss_material(material_idx: ti.i32) -> GlossMaterial:
    return GlossMaterial(
        albedo=gloss_albedos[material_idx],
        reflectance=gloss_reflectances[material_idx],
        metalness=gloss_metalnesses[material_idx],
        roughness=gloss_roughnesses[material_idx],
    )
