"""Scene builder coordinating primitives, materials, lights and the background.

This module provides the high-level API for assembling a scene. The
SceneManager collects materials, spheres, meshes and lights on the host,
then ``build()`` resolves Auto materials, packs every primitive into flat
arrays, builds the BVH and returns an immutable Scene. ``Scene.upload()``
writes the packed data into the device fields used by the integrator.

The SceneManager maintains:
- A unified material_id space across all material types
- Mapping from material_id to (material_type, type_local_index) on device
- Lights that are both visible geometry and next-event estimation targets

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from src.pathtracer.camera.thin_lens import ThinLensCamera
    >>> from src.pathtracer.scene.manager import SceneManager
    >>> builder = SceneManager()
    >>> red = builder.add_lambertian_material(albedo=(0.8, 0.3, 0.3))
    >>> builder.add_sphere(center=(0, 0, 5), radius=1.0, material_id=red)
    >>> builder.set_camera(ThinLensCamera(image_width=64, image_height=48))
    >>> scene = builder.build()
    >>> scene.upload()
"""

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Union

import numpy as np
import numpy.typing as npt
import taichi as ti

from src.pathtracer.camera.thin_lens import ThinLensCamera, setup_camera
from src.pathtracer.geometry.aabb import sphere_bounds, triangle_bounds
from src.pathtracer.geometry.bvh import MAX_PRIMITIVES, BVHArrays, build_bvh, clear_bvh, upload_bvh
from src.pathtracer.geometry.mesh import Mesh
from src.pathtracer.materials.gloss import (
    MAX_GLOSS_MATERIALS,
    add_gloss_material,
    clear_gloss_materials,
)
from src.pathtracer.materials.lambertian import (
    MAX_LAMBERTIAN_MATERIALS,
    add_lambertian_material,
    clear_lambertian_materials,
)
from src.pathtracer.scene.intersection import PrimitiveKind, clear_primitives, upload_primitives
from src.pathtracer.scene.lights import MAX_LIGHTS, SphereLight, clear_lights, upload_lights
from src.pathtracer.scene.skybox import FlatSkybox, Skybox, upload_skybox

logger = logging.getLogger(__name__)


class MaterialType(IntEnum):
    """Enumeration of supported material types.

    Used for material dispatch in the path tracer to determine which
    scattering function to call.
    """

    LAMBERTIAN = 0
    MIRROR = 1
    GLOSS = 2


# Maximum number of materials across all types
MAX_MATERIALS = MAX_LAMBERTIAN_MATERIALS + MAX_GLOSS_MATERIALS + 1024

# material_types[i] stores the MaterialType for material_id i
material_types = ti.field(dtype=ti.i32, shape=MAX_MATERIALS)
# material_type_indices[i] stores the type-local index for material_id i
material_type_indices = ti.field(dtype=ti.i32, shape=MAX_MATERIALS)
num_materials = ti.field(dtype=ti.i32, shape=())


def _clear_material_tracking() -> None:
    num_materials[None] = 0


@ti.func
def get_material_type(material_id: ti.i32) -> ti.i32:
    """Get the material type for a given material ID.

    Returns:
        The material type as an integer (see MaterialType enum).
        Returns -1 for invalid material IDs.
    """
    result = -1
    if 0 <= material_id < num_materials[None]:
        result = material_types[material_id]
    return result


@ti.func
def get_material_type_index(material_id: ti.i32) -> ti.i32:
    """Get the index into the type-specific material arrays, or -1."""
    result = -1
    if 0 <= material_id < num_materials[None]:
        result = material_type_indices[material_id]
    return result


# =============================================================================
# Material Descriptions
# =============================================================================


def _check_albedo(albedo: tuple[float, float, float]) -> None:
    if len(albedo) != 3:
        raise ValueError(f"Albedo must have three components, got {len(albedo)}")
    for i, component in enumerate(albedo):
        if component < 0.0 or component > 1.0:
            raise ValueError(
                f"Albedo component {i} = {component} is outside [0, 1]. "
                "This would violate energy conservation."
            )


@dataclass(frozen=True)
class Lambertian:
    albedo: tuple[float, float, float]

    def __post_init__(self) -> None:
        _check_albedo(self.albedo)


@dataclass(frozen=True)
class Mirror:
    pass


@dataclass(frozen=True)
class Gloss:
    """Diffuse base with a Fresnel-weighted specular coat.

    Attributes:
        albedo: Base colour, each component in [0, 1].
        reflectance: Reflectance at normal incidence (>= 0, may exceed 1).
        metalness: How strongly the albedo tints the specular lobe (>= 0).
        roughness: Specular lobe roughness in [0, 1]. 0 is a perfect mirror.
    """

    albedo: tuple[float, float, float]
    reflectance: float
    metalness: float = 0.0
    roughness: float = 0.0

    def __post_init__(self) -> None:
        _check_albedo(self.albedo)
        if self.reflectance < 0.0:
            raise ValueError(f"Reflectance = {self.reflectance} must be non-negative")
        if self.metalness < 0.0:
            raise ValueError(f"Metalness = {self.metalness} must be non-negative")
        if self.roughness < 0.0 or self.roughness > 1.0:
            raise ValueError(f"Roughness = {self.roughness} is outside [0, 1]")


@dataclass(frozen=True)
class AutoMaterial:
    """Per-triangle Lambertian taken from the mesh's vertex colours.

    Attributes:
        fallback: Material ID used when the mesh has no vertex colours. When
            None, a neutral grey Lambertian is used instead.
    """

    fallback: Optional[int] = None


Material = Union[Lambertian, Mirror, Gloss]

# Albedo of the material used by AutoMaterial without colours or fallback
DEFAULT_AUTO_ALBEDO = (0.5, 0.5, 0.5)

# Auto colours are quantized to this many levels per channel before dedup
AUTO_COLOUR_LEVELS = 255


def _register_material(material_id: int, material: Material) -> None:
    """Write one resolved material into its registry and the type table."""
    if isinstance(material, Lambertian):
        material_type = MaterialType.LAMBERTIAN
        type_index = add_lambertian_material(material.albedo)
    elif isinstance(material, Mirror):
        material_type = MaterialType.MIRROR
        type_index = 0
    elif isinstance(material, Gloss):
        material_type = MaterialType.GLOSS
        type_index = add_gloss_material(
            material.albedo, material.reflectance, material.metalness, material.roughness
        )
    else:
        raise TypeError(f"Unsupported material type: {type(material).__name__}")

    material_types[material_id] = int(material_type)
    material_type_indices[material_id] = type_index


# =============================================================================
# Scene
# =============================================================================

# The Scene whose data currently lives in the device fields
_resident_scene: Optional["Scene"] = None

_PRIMITIVE_KEYS = ("kind", "v0", "v1", "v2", "n0", "n1", "n2", "radius", "material", "light")


@dataclass(frozen=True, eq=False)
class Scene:
    """A fully resolved, immutable scene ready for upload.

    Attributes:
        primitives: Packed primitive arrays in BVH order, keyed by
            kind, v0, v1, v2, n0, n1, n2, radius, material and light.
        bvh: Node arena over the packed primitives.
        materials: Resolved materials; the position is the material ID.
        lights: Sphere lights; the position is the light index.
        skybox: Background for escaping rays.
        camera: Camera used by render, or None for geometry-only scenes.
    """

    primitives: dict[str, npt.NDArray]
    bvh: BVHArrays
    materials: tuple[Material, ...]
    lights: tuple[SphereLight, ...]
    skybox: Skybox
    camera: Optional[ThinLensCamera] = None

    @property
    def num_primitives(self) -> int:
        return int(self.primitives["kind"].shape[0])

    @property
    def num_triangles(self) -> int:
        return int(np.count_nonzero(self.primitives["kind"] == int(PrimitiveKind.TRIANGLE)))

    @property
    def num_spheres(self) -> int:
        return self.num_primitives - self.num_triangles

    @property
    def is_resident(self) -> bool:
        return _resident_scene is self

    def upload(self) -> None:
        """Write this scene into the device fields, replacing any other scene."""
        global _resident_scene

        clear_lambertian_materials()
        clear_gloss_materials()
        _clear_material_tracking()
        for material_id, material in enumerate(self.materials):
            _register_material(material_id, material)
        num_materials[None] = len(self.materials)

        upload_primitives(self.primitives)
        upload_bvh(self.bvh)
        upload_lights(list(self.lights))
        upload_skybox(self.skybox)
        if self.camera is not None:
            setup_camera(self.camera)

        _resident_scene = self

    def ensure_uploaded(self) -> None:
        """Upload the scene unless it is already resident."""
        if not self.is_resident:
            self.upload()


def get_resident_scene() -> Optional[Scene]:
    return _resident_scene


# =============================================================================
# Builder
# =============================================================================


@dataclass
class _MeshEntry:
    mesh: Mesh
    material: Union[int, AutoMaterial]


@dataclass
class _SphereEntry:
    center: tuple[float, float, float]
    radius: float
    material_id: int
    light_id: int = -1


class SceneManager:
    """Builder that collects scene content and produces a Scene.

    A SceneManager is single use: after ``build()`` every mutating call
    raises RuntimeError.

    Example:
        >>> builder = SceneManager()
        >>> grey = builder.add_lambertian_material(albedo=(0.5, 0.5, 0.5))
        >>> chrome = builder.add_mirror_material()
        >>> builder.add_sphere((0, -1000, 0), 1000.0, grey)
        >>> builder.add_sphere((0, 1, 0), 1.0, chrome)
        >>> builder.add_light(SphereLight(center=(0, 5, 0), radius=0.5, intensity=10.0))
        >>> scene = builder.build()
    """

    def __init__(self) -> None:
        self.materials: list[Material] = []
        self.lights: list[SphereLight] = []
        self._spheres: list[_SphereEntry] = []
        self._meshes: list[_MeshEntry] = []
        self._skybox: Skybox = FlatSkybox()
        self._camera: Optional[ThinLensCamera] = None
        self._built = False

    def _check_open(self) -> None:
        if self._built:
            raise RuntimeError("SceneManager has already built a scene; create a new one")

    def _check_material_id(self, material_id: int) -> None:
        if not 0 <= material_id < len(self.materials):
            raise ValueError(
                f"Unknown material ID {material_id}; {len(self.materials)} material(s) registered"
            )

    # =========================================================================
    # Material Management
    # =========================================================================

    def add_material(self, material: Material) -> int:
        """Register a resolved material and return its unified material ID.

        Raises:
            RuntimeError: If the maximum number of materials is exceeded.
            TypeError: If the material is not Lambertian, Mirror or Gloss.
        """
        self._check_open()
        if not isinstance(material, (Lambertian, Mirror, Gloss)):
            raise TypeError(f"Unsupported material type: {type(material).__name__}")
        if len(self.materials) >= MAX_MATERIALS:
            raise RuntimeError(f"Maximum number of materials ({MAX_MATERIALS}) exceeded")
        self.materials.append(material)
        return len(self.materials) - 1

    def add_lambertian_material(self, albedo: tuple[float, float, float]) -> int:
        """Add a Lambertian (diffuse) material.

        Raises:
            ValueError: If any albedo component is outside [0, 1].
        """
        return self.add_material(Lambertian(tuple(albedo)))

    def add_mirror_material(self) -> int:
        return self.add_material(Mirror())

    def add_gloss_material(
        self,
        albedo: tuple[float, float, float],
        reflectance: float,
        metalness: float = 0.0,
        roughness: float = 0.0,
    ) -> int:
        """Add a Gloss material.

        Raises:
            ValueError: If a parameter is out of range.
        """
        return self.add_material(Gloss(tuple(albedo), reflectance, metalness, roughness))

    # =========================================================================
    # Geometry
    # =========================================================================

    def add_sphere(
        self, center: tuple[float, float, float], radius: float, material_id: int
    ) -> None:
        """Add a sphere with a registered material.

        A zero radius is accepted with a warning; such a sphere is never hit.

        Raises:
            ValueError: If the radius is negative or the material is unknown.
        """
        self._check_open()
        if radius < 0.0:
            raise ValueError(f"Sphere radius must be non-negative, got {radius}")
        self._check_material_id(material_id)
        if radius == 0.0:
            logger.warning("Sphere at %s has zero radius and will never be hit", tuple(center))
        self._spheres.append(_SphereEntry(tuple(center), float(radius), material_id))

    def add_mesh(self, mesh: Mesh, material: Union[int, AutoMaterial]) -> None:
        """Add a triangle mesh with one material ID or an AutoMaterial.

        Raises:
            ValueError: If the material ID (or Auto fallback) is unknown.
        """
        self._check_open()
        if isinstance(material, AutoMaterial):
            if material.fallback is not None:
                self._check_material_id(material.fallback)
        else:
            self._check_material_id(material)
        self._meshes.append(_MeshEntry(mesh, material))

    def add_light(self, light: SphereLight) -> int:
        """Add a sphere light. It is visible to rays and sampled by NEE.

        Returns:
            The light index.

        Raises:
            RuntimeError: If the maximum number of lights is exceeded.
        """
        self._check_open()
        if len(self.lights) >= MAX_LIGHTS:
            raise RuntimeError(f"Maximum number of lights ({MAX_LIGHTS}) exceeded")
        self.lights.append(light)
        light_id = len(self.lights) - 1
        self._spheres.append(_SphereEntry(light.center, light.radius, -1, light_id))
        return light_id

    def set_skybox(self, skybox: Skybox) -> None:
        self._check_open()
        self._skybox = skybox

    def set_camera(self, camera: ThinLensCamera) -> None:
        self._check_open()
        self._camera = camera

    # =========================================================================
    # Build
    # =========================================================================

    def _resolve_auto(
        self,
        entry: _MeshEntry,
        num_triangles: int,
        face_colours: Optional[npt.NDArray[np.float32]],
        materials: list[Material],
        colour_ids: dict[tuple[float, float, float], int],
    ) -> npt.NDArray[np.int32]:
        """Material ID of every triangle of a mesh with an AutoMaterial."""
        auto = entry.material
        if face_colours is None:
            if auto.fallback is not None:
                return np.full(num_triangles, auto.fallback, dtype=np.int32)
            key = DEFAULT_AUTO_ALBEDO
            if key not in colour_ids:
                materials.append(Lambertian(key))
                colour_ids[key] = len(materials) - 1
            return np.full(num_triangles, colour_ids[key], dtype=np.int32)

        levels = AUTO_COLOUR_LEVELS
        quantized = np.round(np.clip(face_colours, 0.0, 1.0) * levels) / levels
        unique, inverse = np.unique(quantized, axis=0, return_inverse=True)
        ids = np.empty(len(unique), dtype=np.int32)
        for k, colour in enumerate(unique):
            key = (float(colour[0]), float(colour[1]), float(colour[2]))
            if key not in colour_ids:
                materials.append(Lambertian(key))
                colour_ids[key] = len(materials) - 1
            ids[k] = colour_ids[key]
        return ids[inverse.reshape(-1)]

    def _pack_spheres(self) -> dict[str, npt.NDArray]:
        n = len(self._spheres)
        centers = np.array([s.center for s in self._spheres], dtype=np.float32).reshape(n, 3)
        zeros = np.zeros((n, 3), dtype=np.float32)
        return {
            "kind": np.full(n, int(PrimitiveKind.SPHERE), dtype=np.int32),
            "v0": centers,
            "v1": zeros,
            "v2": zeros,
            "n0": zeros,
            "n1": zeros,
            "n2": zeros,
            "radius": np.array([s.radius for s in self._spheres], dtype=np.float32),
            "material": np.array([s.material_id for s in self._spheres], dtype=np.int32),
            "light": np.array([s.light_id for s in self._spheres], dtype=np.int32),
        }

    def _pack_meshes(self, materials: list[Material]) -> list[dict[str, npt.NDArray]]:
        packed = []
        colour_ids: dict[tuple[float, float, float], int] = {}
        for entry in self._meshes:
            tris = entry.mesh.triangles()
            m = len(tris)
            if m == 0:
                continue
            if isinstance(entry.material, AutoMaterial):
                mat = self._resolve_auto(entry, m, tris.face_colours(), materials, colour_ids)
            else:
                mat = np.full(m, entry.material, dtype=np.int32)
            packed.append({
                "kind": np.full(m, int(PrimitiveKind.TRIANGLE), dtype=np.int32),
                "v0": tris.v0,
                "v1": tris.v1,
                "v2": tris.v2,
                "n0": tris.n0,
                "n1": tris.n1,
                "n2": tris.n2,
                "radius": np.zeros(m, dtype=np.float32),
                "material": mat,
                "light": np.full(m, -1, dtype=np.int32),
            })
        return packed

    def build(self) -> Scene:
        """Resolve materials, pack primitives, build the BVH and return a Scene.

        Raises:
            RuntimeError: If the builder was already used, or a capacity
                (primitives, materials) is exceeded.
        """
        self._check_open()
        self._built = True

        materials = list(self.materials)
        groups = [self._pack_spheres()] + self._pack_meshes(materials)
        if len(materials) > MAX_MATERIALS:
            raise RuntimeError(f"Maximum number of materials ({MAX_MATERIALS}) exceeded")
        num_lambertian = sum(isinstance(m, Lambertian) for m in materials)
        if num_lambertian > MAX_LAMBERTIAN_MATERIALS:
            raise RuntimeError(
                f"Maximum number of Lambertian materials ({MAX_LAMBERTIAN_MATERIALS}) exceeded"
            )
        num_gloss = sum(isinstance(m, Gloss) for m in materials)
        if num_gloss > MAX_GLOSS_MATERIALS:
            raise RuntimeError(f"Maximum number of Gloss materials ({MAX_GLOSS_MATERIALS}) exceeded")

        primitives = {key: np.concatenate([g[key] for g in groups]) for key in _PRIMITIVE_KEYS}
        n = int(primitives["kind"].shape[0])
        if n > MAX_PRIMITIVES:
            raise RuntimeError(f"Scene has {n} primitives, capacity is {MAX_PRIMITIVES}")

        is_sphere = primitives["kind"] == int(PrimitiveKind.SPHERE)
        s_min, s_max = sphere_bounds(primitives["v0"], primitives["radius"])
        t_min, t_max = triangle_bounds(primitives["v0"], primitives["v1"], primitives["v2"])
        box_min = np.where(is_sphere[:, None], s_min, t_min)
        box_max = np.where(is_sphere[:, None], s_max, t_max)

        bvh = build_bvh(box_min, box_max)
        primitives = {key: np.ascontiguousarray(value[bvh.order]) for key, value in primitives.items()}

        scene = Scene(
            primitives=primitives,
            bvh=bvh,
            materials=tuple(materials),
            lights=tuple(self.lights),
            skybox=self._skybox,
            camera=self._camera,
        )
        logger.info(
            "Built scene: %d spheres, %d triangles, %d lights, %d materials, %d BVH nodes",
            scene.num_spheres, scene.num_triangles, len(scene.lights), len(materials), bvh.num_nodes,
        )
        return scene


def clear_scene() -> None:
    """Empty every device table and forget the resident scene."""
    global _resident_scene

    clear_lambertian_materials()
    clear_gloss_materials()
    _clear_material_tracking()
    clear_primitives()
    clear_bvh()
    clear_lights()
    upload_skybox(FlatSkybox())
    _resident_scene = None
