"""Materials module for BRDF models.

Components:
    lambertian: Ideal diffuse reflection
    mirror: Perfect specular reflection
    gloss: Diffuse base with a Fresnel-weighted specular lobe

Each material provides evaluation of the non-delta BRDF, a pdf where it has
one, and a sampling routine that takes explicit uniform random numbers.
Auto materials are resolved by the scene manager and have no device code.
"""

from .gloss import (
    GlossMaterial,
    add_gloss_material,
    clear_gloss_materials,
    eval_gloss,
    get_gloss_material,
    get_gloss_material_count,
    pdf_gloss,
    scatter_gloss,
)
from .lambertian import (
    add_lambertian_material,
    clear_lambertian_materials,
    eval_lambertian,
    get_lambertian_albedo,
    get_lambertian_material_count,
    pdf_lambertian,
    scatter_lambertian,
)
from .mirror import eval_mirror, scatter_mirror

__all__ = [
    # Lambertian
    "eval_lambertian",
    "pdf_lambertian",
    "scatter_lambertian",
    "add_lambertian_material",
    "clear_lambertian_materials",
    "get_lambertian_material_count",
    "get_lambertian_albedo",
    # Mirror
    "eval_mirror",
    "scatter_mirror",
    # Gloss
    "GlossMaterial",
    "eval_gloss",
    "pdf_gloss",
    "scatter_gloss",
    "add_gloss_material",
    "clear_gloss_materials",
    "get_gloss_material_count",
    "get_gloss_material",
]
