"""Tests for the scene builder and resident scene handling.

Tests cover:
- Material registration and validation
- Geometry and light registration
- AutoMaterial resolution from vertex colours
- Single-use builders
- Upload of materials into the device registries
"""

import logging

import numpy as np
import pytest
import taichi as ti

QUAD_VERTICES = [[0, 0, 0], [1, 0, 0], [1, 1, 0], [0, 1, 0]]
QUAD_FACES = [[0, 1, 2], [0, 2, 3]]


class TestMaterials:
    """Tests for material registration."""

    def test_ids_are_sequential(self):
        from src.pathtracer.scene.manager import SceneManager

        builder = SceneManager()
        assert builder.add_lambertian_material((0.5, 0.5, 0.5)) == 0
        assert builder.add_mirror_material() == 1
        assert builder.add_gloss_material((1.0, 0.0, 0.0), 1.5, 0.0, 0.2) == 2

    @pytest.mark.parametrize("albedo", [(1.5, 0.0, 0.0), (-0.1, 0.5, 0.5), (0.5, 0.5)])
    def test_invalid_albedo(self, albedo):
        from src.pathtracer.scene.manager import SceneManager

        with pytest.raises(ValueError):
            SceneManager().add_lambertian_material(albedo)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"reflectance": -0.1},
            {"reflectance": 0.5, "metalness": -1.0},
            {"reflectance": 0.5, "roughness": 1.5},
        ],
    )
    def test_invalid_gloss(self, kwargs):
        from src.pathtracer.scene.manager import Gloss

        with pytest.raises(ValueError):
            Gloss(albedo=(0.5, 0.5, 0.5), **kwargs)

    def test_reflectance_above_one_is_accepted(self):
        from src.pathtracer.scene.manager import Gloss

        assert Gloss(albedo=(0.5, 0.5, 0.5), reflectance=2.5).reflectance == 2.5

    def test_unsupported_material_type(self):
        from src.pathtracer.scene.manager import AutoMaterial, SceneManager

        with pytest.raises(TypeError):
            SceneManager().add_material(AutoMaterial())


class TestGeometry:
    """Tests for spheres, meshes and lights."""

    def test_unknown_material_id(self):
        from src.pathtracer.geometry.mesh import Mesh
        from src.pathtracer.scene.manager import AutoMaterial, SceneManager

        builder = SceneManager()
        with pytest.raises(ValueError):
            builder.add_sphere((0, 0, 0), 1.0, 0)
        with pytest.raises(ValueError):
            builder.add_mesh(Mesh(vertices=QUAD_VERTICES, faces=QUAD_FACES), 3)
        with pytest.raises(ValueError):
            builder.add_mesh(Mesh(vertices=QUAD_VERTICES, faces=QUAD_FACES), AutoMaterial(5))

    def test_negative_radius(self):
        from src.pathtracer.scene.manager import SceneManager

        builder = SceneManager()
        mat = builder.add_mirror_material()
        with pytest.raises(ValueError):
            builder.add_sphere((0, 0, 0), -1.0, mat)

    def test_zero_radius_warns(self, caplog):
        from src.pathtracer.scene.manager import SceneManager

        builder = SceneManager()
        mat = builder.add_mirror_material()
        with caplog.at_level(logging.WARNING):
            builder.add_sphere((0, 0, 0), 0.0, mat)
        assert "zero radius" in caplog.text
        assert builder.build().num_spheres == 1

    def test_lights_are_primitives(self):
        from src.pathtracer.scene.lights import SphereLight
        from src.pathtracer.scene.manager import SceneManager

        builder = SceneManager()
        first = builder.add_light(SphereLight(center=(0, 5, 0), radius=0.5))
        second = builder.add_light(SphereLight(center=(0, -5, 0), radius=0.5, intensity=2.0))
        scene = builder.build()
        assert (first, second) == (0, 1)
        assert scene.num_spheres == 2
        assert len(scene.lights) == 2
        assert sorted(scene.primitives["light"].tolist()) == [0, 1]
        assert np.all(scene.primitives["material"] == -1)

    def test_invalid_light(self):
        from src.pathtracer.scene.lights import SphereLight

        with pytest.raises(ValueError):
            SphereLight(center=(0, 0, 0), radius=0.0)
        with pytest.raises(ValueError):
            SphereLight(center=(0, 0, 0), radius=1.0, intensity=-1.0)
        with pytest.raises(ValueError):
            SphereLight(center=(0, 0, 0), radius=1.0, colour=(1.0, -0.5, 1.0))

    def test_primitive_arrays_follow_bvh_order(self):
        """Materials stay attached to their primitives after reordering."""
        from src.pathtracer.scene.manager import SceneManager

        builder = SceneManager()
        ids = [builder.add_lambertian_material((k / 20.0, 0.0, 0.0)) for k in range(20)]
        for k, mat in enumerate(ids):
            builder.add_sphere((float(k) * 3.0, 0.0, 0.0), 1.0, mat)
        scene = builder.build()
        centers = scene.primitives["v0"]
        materials = scene.primitives["material"]
        for center, mat in zip(centers, materials):
            assert int(round(center[0] / 3.0)) == mat


class TestAutoMaterial:
    """Tests for AutoMaterial resolution."""

    def test_one_material_per_distinct_colour(self):
        from src.pathtracer.geometry.mesh import Mesh
        from src.pathtracer.scene.manager import AutoMaterial, Lambertian, SceneManager

        # Both faces average to the same colour
        colours = [[0.6, 0.0, 0.0], [0.0, 0.6, 0.0], [0.0, 0.0, 0.6], [0.0, 0.6, 0.0]]
        mesh = Mesh(vertices=QUAD_VERTICES, faces=[[0, 1, 2], [0, 3, 2]], colours=colours)
        builder = SceneManager()
        builder.add_mesh(mesh, AutoMaterial())
        scene = builder.build()

        assert len(scene.materials) == 1
        assert isinstance(scene.materials[0], Lambertian)
        np.testing.assert_allclose(scene.materials[0].albedo, [0.2, 0.2, 0.2], atol=1 / 255)
        assert np.all(scene.primitives["material"] == 0)

    def test_distinct_face_colours(self):
        from src.pathtracer.geometry.mesh import Mesh
        from src.pathtracer.scene.manager import AutoMaterial, SceneManager

        colours = [[0.9, 0.0, 0.0], [0.9, 0.0, 0.0], [0.9, 0.0, 0.0], [0.0, 0.0, 0.9]]
        mesh = Mesh(vertices=QUAD_VERTICES, faces=QUAD_FACES, colours=colours)
        builder = SceneManager()
        builder.add_mesh(mesh, AutoMaterial())
        scene = builder.build()

        assert len(scene.materials) == 2
        albedos = sorted(m.albedo for m in scene.materials)
        np.testing.assert_allclose(albedos, [[0.6, 0.0, 0.3], [0.9, 0.0, 0.0]], atol=0.005)

    def test_bright_colours_are_clamped(self):
        from src.pathtracer.geometry.mesh import Mesh
        from src.pathtracer.scene.manager import AutoMaterial, SceneManager

        mesh = Mesh(vertices=QUAD_VERTICES, faces=QUAD_FACES, colours=[[2.0, 0.5, 0.5]] * 4)
        builder = SceneManager()
        builder.add_mesh(mesh, AutoMaterial())
        scene = builder.build()
        assert scene.materials[0].albedo[0] == 1.0

    def test_fallback_without_colours(self):
        from src.pathtracer.geometry.mesh import Mesh
        from src.pathtracer.scene.manager import AutoMaterial, SceneManager

        builder = SceneManager()
        chrome = builder.add_mirror_material()
        builder.add_mesh(Mesh(vertices=QUAD_VERTICES, faces=QUAD_FACES), AutoMaterial(chrome))
        scene = builder.build()
        assert len(scene.materials) == 1
        assert np.all(scene.primitives["material"] == chrome)

    def test_grey_default_without_colours(self):
        from src.pathtracer.geometry.mesh import Mesh
        from src.pathtracer.scene.manager import (
            DEFAULT_AUTO_ALBEDO,
            AutoMaterial,
            Lambertian,
            SceneManager,
        )

        builder = SceneManager()
        builder.add_mesh(Mesh(vertices=QUAD_VERTICES, faces=QUAD_FACES), AutoMaterial())
        builder.add_mesh(
            Mesh(vertices=QUAD_VERTICES, faces=QUAD_FACES, translation=(0, 0, 1)), AutoMaterial()
        )
        scene = builder.build()
        assert scene.materials == (Lambertian(DEFAULT_AUTO_ALBEDO),)
        assert scene.num_triangles == 4


class TestBuilderLifecycle:
    """Tests for single-use builders and uploads."""

    def test_builder_is_single_use(self):
        from src.pathtracer.scene.lights import SphereLight
        from src.pathtracer.scene.manager import SceneManager

        builder = SceneManager()
        builder.build()
        with pytest.raises(RuntimeError):
            builder.build()
        with pytest.raises(RuntimeError):
            builder.add_mirror_material()
        with pytest.raises(RuntimeError):
            builder.add_light(SphereLight(center=(0, 0, 0), radius=1.0))

    def test_empty_scene(self):
        from src.pathtracer.scene.manager import SceneManager

        scene = SceneManager().build()
        assert scene.num_primitives == 0
        assert scene.bvh.is_empty
        assert scene.camera is None

    def test_upload_registers_materials(self):
        from src.pathtracer.materials.gloss import get_gloss_material_count
        from src.pathtracer.materials.lambertian import get_lambertian_material_count
        from src.pathtracer.scene.intersection import get_primitive_count
        from src.pathtracer.scene.manager import (
            MaterialType,
            SceneManager,
            get_material_type,
            get_material_type_index,
            get_resident_scene,
        )

        builder = SceneManager()
        builder.add_lambertian_material((0.5, 0.5, 0.5))
        builder.add_mirror_material()
        builder.add_gloss_material((0.1, 0.2, 0.3), 0.04)
        builder.add_lambertian_material((0.2, 0.2, 0.2))
        builder.add_sphere((0, 0, 0), 1.0, 0)
        scene = builder.build()
        scene.upload()

        assert get_resident_scene() is scene
        assert scene.is_resident
        assert get_lambertian_material_count() == 2
        assert get_gloss_material_count() == 1
        assert get_primitive_count() == 1

        result = ti.field(dtype=ti.i32, shape=(5, 2))

        @ti.kernel
        def test_kernel():
            for k in range(5):
                result[k, 0] = get_material_type(k)
                result[k, 1] = get_material_type_index(k)

        test_kernel()
        values = result.to_numpy()
        assert values[:, 0].tolist() == [
            int(MaterialType.LAMBERTIAN),
            int(MaterialType.MIRROR),
            int(MaterialType.GLOSS),
            int(MaterialType.LAMBERTIAN),
            -1,
        ]
        assert values[0, 1] == 0
        assert values[2, 1] == 0
        assert values[3, 1] == 1
        assert values[4, 1] == -1

    def test_second_upload_replaces_first(self):
        from src.pathtracer.scene.intersection import get_primitive_count
        from src.pathtracer.scene.manager import SceneManager, clear_scene, get_resident_scene

        first = SceneManager()
        mat = first.add_mirror_material()
        first.add_sphere((0, 0, 0), 1.0, mat)
        first.add_sphere((3, 0, 0), 1.0, mat)
        a = first.build()
        b = SceneManager().build()

        a.upload()
        assert get_primitive_count() == 2
        b.ensure_uploaded()
        assert get_primitive_count() == 0
        assert not a.is_resident

        clear_scene()
        assert get_resident_scene() is None
