"""Core rendering module.

Components:
    ray: Ray data structure, vector helpers and sampling warps
    rng: Deterministic per-sample random numbers
    integrator: Path tracing state machine and render target
    render: One-shot render driver
    progressive: Sample accumulation across batches

All compute-intensive operations use Taichi kernels.
"""

from .ray import (
    Ray,
    build_onb_from_normal,
    is_finite,
    length_squared,
    local_to_world,
    make_ray,
    max_component,
    near_zero,
    ray_at,
    reflect,
    sample_cosine_hemisphere,
    sample_uniform_cone,
    sample_uniform_disk,
    sample_uniform_sphere,
    schlick_fresnel,
    vec3,
)
from .rng import init_rng, next_float, next_u32, next_vec2, wang_hash

# Note: integrator, render and progressive are NOT imported here to avoid
# circular imports. Import them directly, e.g.
#   from src.pathtracer.core.render import render

__all__ = [
    "Ray",
    "ray_at",
    "make_ray",
    "vec3",
    "length_squared",
    "max_component",
    "reflect",
    "schlick_fresnel",
    "near_zero",
    "is_finite",
    "build_onb_from_normal",
    "local_to_world",
    "sample_uniform_disk",
    "sample_cosine_hemisphere",
    "sample_uniform_cone",
    "sample_uniform_sphere",
    "wang_hash",
    "init_rng",
    "next_u32",
    "next_float",
    "next_vec2",
]
