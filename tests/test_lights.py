"""Tests for sphere lights and next-event estimation sampling.

Tests cover:
- Light table upload and selection probabilities
- Cone sampling from outside a light (directions, distances, pdf)
- Surface sampling from inside a light
- The pdf integrating to the light's solid angle
"""

import math

import numpy as np
import pytest
import taichi as ti


def _sample_many(point, n=20000):
    from src.pathtracer.scene.lights import sample_light

    dirs = ti.Vector.field(3, dtype=ti.f32, shape=n)
    values = ti.field(dtype=ti.f32, shape=(n, 3))

    @ti.kernel
    def test_kernel(p: ti.math.vec3):
        for k in range(n):
            u_sel = ti.math.fract(ti.cast(k, ti.f32) * 0.5698403)
            u1 = (ti.cast(k, ti.f32) + 0.5) / n
            u2 = ti.math.fract(ti.cast(k, ti.f32) * 0.618034)
            d, dist, pdf, _, valid = sample_light(p, u_sel, u1, u2)
            dirs[k] = d
            values[k, 0] = dist
            values[k, 1] = pdf
            values[k, 2] = ti.cast(valid, ti.f32)

    test_kernel(ti.math.vec3(*map(float, point)))
    v = values.to_numpy()
    return dirs.to_numpy(), v[:, 0], v[:, 1], v[:, 2]


class TestUploadLights:
    def test_selection_probabilities(self):
        from src.pathtracer.scene.lights import (
            SphereLight,
            get_light_count,
            light_cdf,
            light_pick_pdf,
            upload_lights,
        )

        upload_lights([
            SphereLight(center=(0, 0, 0), radius=1.0, intensity=1.0),
            SphereLight(center=(5, 0, 0), radius=1.0, colour=(0.5, 1.0, 0.5), intensity=3.0),
        ])
        assert get_light_count() == 2
        assert abs(light_pick_pdf[0] - 0.25) < 1e-6
        assert abs(light_pick_pdf[1] - 0.75) < 1e-6
        assert light_cdf[1] == 1.0

    def test_all_dark_lights_are_picked_uniformly(self):
        from src.pathtracer.scene.lights import SphereLight, light_pick_pdf, upload_lights

        upload_lights([
            SphereLight(center=(0, 0, 0), radius=1.0, intensity=0.0),
            SphereLight(center=(5, 0, 0), radius=1.0, intensity=0.0),
        ])
        assert abs(light_pick_pdf[0] - 0.5) < 1e-6

    def test_too_many_lights(self):
        from src.pathtracer.scene.lights import MAX_LIGHTS, SphereLight, upload_lights

        with pytest.raises(RuntimeError):
            upload_lights([SphereLight(center=(0, 0, 0), radius=1.0)] * (MAX_LIGHTS + 1))

    def test_radiance(self):
        from src.pathtracer.scene.lights import SphereLight

        light = SphereLight(center=(0, 0, 0), radius=1.0, colour=(1.0, 0.5, 0.0), intensity=4.0)
        assert light.radiance == (4.0, 2.0, 0.0)


class TestSampleLight:
    def test_no_lights_is_invalid(self):
        _, _, pdf, valid = _sample_many((0, 0, 0), n=16)
        assert np.all(valid == 0)
        assert np.all(pdf == 0.0)

    def test_cone_sampling_from_outside(self):
        from src.pathtracer.scene.lights import SphereLight, upload_lights

        center = np.array([0.0, 4.0, 0.0])
        radius = 1.0
        upload_lights([SphereLight(center=tuple(center), radius=radius, intensity=5.0)])
        dirs, dist, pdf, valid = _sample_many((0, 0, 0))

        assert np.all(valid == 1)
        sin2 = (radius / 4.0) ** 2
        cos_max = math.sqrt(1.0 - sin2)
        assert dirs[:, 1].min() >= cos_max - 1e-5
        # Every sampled point lies on the light surface
        points = dirs * dist[:, None]
        np.testing.assert_allclose(np.linalg.norm(points - center, axis=1), radius, atol=5e-3)
        np.testing.assert_allclose(pdf, 1.0 / (2.0 * math.pi * (1.0 - cos_max)), rtol=1e-3)

    def test_inside_light_samples_surface(self):
        from src.pathtracer.scene.lights import SphereLight, upload_lights

        upload_lights([SphereLight(center=(0, 0, 0), radius=2.0)])
        dirs, dist, pdf, valid = _sample_many((0, 0, 0), n=2000)
        assert np.all(valid == 1)
        np.testing.assert_allclose(dist, 2.0, atol=1e-4)
        # From the center the area pdf maps to 1 / (4 pi) per steradian
        np.testing.assert_allclose(pdf, 1.0 / (4.0 * math.pi), rtol=1e-3)

    def test_pdf_includes_selection_probability(self):
        """Sum of 1/pdf over lights recovers the total solid angle."""
        from src.pathtracer.scene.lights import SphereLight, upload_lights

        lights = [
            SphereLight(center=(0.0, 5.0, 0.0), radius=1.0, intensity=1.0),
            SphereLight(center=(0.0, -3.0, 0.0), radius=0.5, intensity=3.0),
        ]
        upload_lights(lights)
        _, _, pdf, valid = _sample_many((0, 0, 0), n=40000)
        assert np.all(valid == 1)

        def solid_angle(light):
            d = np.linalg.norm(light.center)
            return 2.0 * math.pi * (1.0 - math.sqrt(1.0 - (light.radius / d) ** 2))

        # E[1 / pdf] over the mixture equals the summed solid angle
        expected = solid_angle(lights[0]) + solid_angle(lights[1])
        assert abs(np.mean(1.0 / pdf) - expected) / expected < 0.02
