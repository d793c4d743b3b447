"""Unit tests for the ray module.

Tests cover:
- Ray construction and ray_at
- Vector helpers (reflect, schlick_fresnel, is_finite, max_component)
- Sampling warps used by the camera, materials and lights
"""

import math

import numpy as np
import taichi as ti


class TestRayBasics:
    """Tests for Ray and its helpers."""

    def test_ray_at(self):
        """Test ray_at computes origin + t * direction."""
        from src.pathtracer.core.ray import make_ray, ray_at, vec3

        result = ti.field(dtype=ti.math.vec3, shape=())

        @ti.kernel
        def test_kernel():
            ray = make_ray(vec3(1.0, 2.0, 3.0), vec3(0.0, 0.0, -1.0), 0.0, 10.0)
            result[None] = ray_at(ray, 2.5)

        test_kernel()
        np.testing.assert_allclose(result[None].to_numpy(), [1.0, 2.0, 0.5], atol=1e-6)

    def test_make_ray_keeps_interval(self):
        from src.pathtracer.core.ray import make_ray, vec3

        result = ti.field(dtype=ti.f32, shape=2)

        @ti.kernel
        def test_kernel():
            ray = make_ray(vec3(0.0, 0.0, 0.0), vec3(1.0, 0.0, 0.0), 0.25, 4.0)
            result[0] = ray.t_min
            result[1] = ray.t_max

        test_kernel()
        assert result[0] == 0.25
        assert result[1] == 4.0


class TestVectorHelpers:
    """Tests for reflect, Fresnel and finiteness checks."""

    def test_reflect_45_degrees(self):
        """A 45 degree incident ray reflects off a floor with the same angle."""
        from src.pathtracer.core.ray import reflect, vec3

        result = ti.field(dtype=ti.math.vec3, shape=())

        @ti.kernel
        def test_kernel():
            incident = ti.math.normalize(vec3(1.0, -1.0, 0.0))
            result[None] = reflect(incident, vec3(0.0, 1.0, 0.0))

        test_kernel()
        s = 1.0 / math.sqrt(2.0)
        np.testing.assert_allclose(result[None].to_numpy(), [s, s, 0.0], atol=1e-6)

    def test_schlick_endpoints(self):
        """Schlick gives r0 at normal incidence and 1 at grazing incidence."""
        from src.pathtracer.core.ray import schlick_fresnel

        result = ti.field(dtype=ti.f32, shape=3)

        @ti.kernel
        def test_kernel():
            result[0] = schlick_fresnel(1.0, 0.04)
            result[1] = schlick_fresnel(0.0, 0.04)
            # Not clamped for r0 > 1
            result[2] = schlick_fresnel(1.0, 1.5)

        test_kernel()
        assert abs(result[0] - 0.04) < 1e-6
        assert abs(result[1] - 1.0) < 1e-6
        assert abs(result[2] - 1.5) < 1e-6

    def test_is_finite(self):
        from src.pathtracer.core.ray import is_finite, vec3

        result = ti.field(dtype=ti.i32, shape=3)

        @ti.kernel
        def test_kernel(bad: ti.f32):
            result[0] = is_finite(vec3(1.0, -2.0, 3.0))
            result[1] = is_finite(vec3(0.0, bad, 0.0))
            result[2] = is_finite(vec3(0.0, 0.0, bad * -1.0))

        test_kernel(float("nan"))
        assert result[0] == 1
        assert result[1] == 0
        assert result[2] == 0

        test_kernel(float("inf"))
        assert result[1] == 0
        assert result[2] == 0

    def test_max_component(self):
        from src.pathtracer.core.ray import max_component, vec3

        result = ti.field(dtype=ti.f32, shape=())

        @ti.kernel
        def test_kernel():
            result[None] = max_component(vec3(0.2, 0.9, -3.0))

        test_kernel()
        assert abs(result[None] - 0.9) < 1e-6


class TestSamplingWarps:
    """Tests for the disk, hemisphere, cone and sphere warps."""

    N = 20000

    def test_uniform_disk_inside_unit_circle(self):
        from src.pathtracer.core.ray import sample_uniform_disk

        n = self.N
        result = ti.Vector.field(2, dtype=ti.f32, shape=n)

        @ti.kernel
        def test_kernel():
            for k in range(n):
                u1 = (ti.cast(k, ti.f32) + 0.5) / n
                u2 = ti.math.fract(ti.cast(k, ti.f32) * 0.618034)
                result[k] = sample_uniform_disk(u1, u2)

        test_kernel()
        points = result.to_numpy()
        radii = np.linalg.norm(points, axis=1)
        assert radii.max() <= 1.0 + 1e-6
        # Uniform in area: half the points inside radius sqrt(0.5)
        assert abs(np.mean(radii < math.sqrt(0.5)) - 0.5) < 0.02

    def test_cosine_hemisphere(self):
        """Samples stay above the surface and the pdf is cos / pi."""
        from src.pathtracer.core.ray import sample_cosine_hemisphere, vec3

        n = self.N
        dirs = ti.Vector.field(3, dtype=ti.f32, shape=n)
        pdfs = ti.field(dtype=ti.f32, shape=n)

        @ti.kernel
        def test_kernel():
            normal = ti.math.normalize(vec3(0.3, 0.8, -0.2))
            for k in range(n):
                u1 = (ti.cast(k, ti.f32) + 0.5) / n
                u2 = ti.math.fract(ti.cast(k, ti.f32) * 0.618034)
                d, pdf = sample_cosine_hemisphere(normal, u1, u2)
                dirs[k] = d
                pdfs[k] = pdf

        test_kernel()
        normal = np.array([0.3, 0.8, -0.2])
        normal /= np.linalg.norm(normal)
        d = dirs.to_numpy()
        cos = d @ normal
        np.testing.assert_allclose(np.linalg.norm(d, axis=1), 1.0, atol=1e-5)
        assert cos.min() >= -1e-5
        np.testing.assert_allclose(pdfs.to_numpy(), np.maximum(cos, 0.0) / math.pi, atol=1e-5)
        # E[cos] under cos-weighted sampling is 2/3
        assert abs(cos.mean() - 2.0 / 3.0) < 0.01

    def test_uniform_cone(self):
        """Cone samples stay within the half angle and cover it uniformly."""
        from src.pathtracer.core.ray import sample_uniform_cone, vec3

        n = self.N
        cos_max = 0.9
        dirs = ti.Vector.field(3, dtype=ti.f32, shape=n)

        @ti.kernel
        def test_kernel():
            axis = vec3(0.0, 0.0, -1.0)
            for k in range(n):
                u1 = (ti.cast(k, ti.f32) + 0.5) / n
                u2 = ti.math.fract(ti.cast(k, ti.f32) * 0.618034)
                dirs[k] = sample_uniform_cone(axis, cos_max, u1, u2)

        test_kernel()
        cos = -dirs.to_numpy()[:, 2]
        assert cos.min() >= cos_max - 1e-5
        # Uniform in solid angle: cos is uniform in [cos_max, 1]
        assert abs(cos.mean() - 0.5 * (1.0 + cos_max)) < 1e-3

    def test_uniform_sphere(self):
        from src.pathtracer.core.ray import sample_uniform_sphere

        n = self.N
        dirs = ti.Vector.field(3, dtype=ti.f32, shape=n)

        @ti.kernel
        def test_kernel():
            for k in range(n):
                u1 = (ti.cast(k, ti.f32) + 0.5) / n
                u2 = ti.math.fract(ti.cast(k, ti.f32) * 0.618034)
                dirs[k] = sample_uniform_sphere(u1, u2)

        test_kernel()
        d = dirs.to_numpy()
        np.testing.assert_allclose(np.linalg.norm(d, axis=1), 1.0, atol=1e-5)
        np.testing.assert_allclose(d.mean(axis=0), 0.0, atol=0.02)

    def test_onb_is_orthonormal(self):
        from src.pathtracer.core.ray import build_onb_from_normal, vec3

        result = ti.field(dtype=ti.f32, shape=(2, 6))

        @ti.kernel
        def test_kernel():
            for r in ti.static(range(2)):
                normal = vec3(1.0, 0.0, 0.0)
                if r == 1:
                    normal = ti.math.normalize(vec3(0.1, -0.7, 0.7))
                t, b, n = build_onb_from_normal(normal)
                result[r, 0] = t.dot(b)
                result[r, 1] = t.dot(n)
                result[r, 2] = b.dot(n)
                result[r, 3] = t.norm()
                result[r, 4] = b.norm()
                result[r, 5] = n.norm()

        test_kernel()
        values = result.to_numpy()
        np.testing.assert_allclose(values[:, :3], 0.0, atol=1e-6)
        np.testing.assert_allclose(values[:, 3:], 1.0, atol=1e-6)
