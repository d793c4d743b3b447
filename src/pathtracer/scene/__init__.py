"""Scene module for scene building and ray-scene queries.

Components:
    intersection: Packed primitive table, HitRecord, nearest_hit and any_hit
    lights: Sphere lights and their sampling
    skybox: Flat, gradient and HDRI backgrounds
    manager: SceneManager builder and the immutable Scene

Scene data is organized for efficient device access:
    - Structure-of-Arrays layout in BVH order
    - Unified material ID table
    - Pre-computed light selection CDF
"""

from .intersection import (
    HitRecord,
    PrimitiveKind,
    any_hit,
    brute_force_nearest_hit,
    clear_primitives,
    get_primitive_count,
    nearest_hit,
    upload_primitives,
)
from .lights import MAX_LIGHTS, SphereLight, clear_lights, get_light_count, sample_light, upload_lights
from .skybox import FlatSkybox, GradientSkybox, HdriSkybox, Skybox, evaluate_skybox, upload_skybox
from .manager import (
    MAX_MATERIALS,
    AutoMaterial,
    Gloss,
    Lambertian,
    Material,
    MaterialType,
    Mirror,
    Scene,
    SceneManager,
    clear_scene,
    get_material_type,
    get_material_type_index,
)

__all__ = [
    # Intersection
    "HitRecord",
    "PrimitiveKind",
    "nearest_hit",
    "any_hit",
    "brute_force_nearest_hit",
    "upload_primitives",
    "clear_primitives",
    "get_primitive_count",
    # Lights
    "SphereLight",
    "MAX_LIGHTS",
    "upload_lights",
    "clear_lights",
    "get_light_count",
    "sample_light",
    # Skybox
    "FlatSkybox",
    "GradientSkybox",
    "HdriSkybox",
    "Skybox",
    "upload_skybox",
    "evaluate_skybox",
    # Manager
    "SceneManager",
    "Scene",
    "Material",
    "MaterialType",
    "Lambertian",
    "Mirror",
    "Gloss",
    "AutoMaterial",
    "MAX_MATERIALS",
    "clear_scene",
    "get_material_type",
    "get_material_type_index",
]
