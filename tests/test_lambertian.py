"""Unit tests for the Lambertian material module.

Tests cover:
- BRDF evaluation (albedo / pi)
- PDF of cosine-weighted sampling
- Scatter weight and hemisphere
- Material registry operations
"""

import math

import numpy as np
import pytest
import taichi as ti


class TestLambertianBrdf:
    """Tests for eval_lambertian and pdf_lambertian."""

    def test_eval_is_albedo_over_pi(self):
        from src.pathtracer.materials.lambertian import eval_lambertian

        result = ti.Vector.field(3, dtype=ti.f32, shape=())

        @ti.kernel
        def test_kernel():
            result[None] = eval_lambertian(ti.math.vec3(0.5, 0.3, 0.1))

        test_kernel()
        np.testing.assert_allclose(
            result[None].to_numpy(), np.array([0.5, 0.3, 0.1]) / math.pi, atol=1e-6
        )

    def test_pdf(self):
        from src.pathtracer.materials.lambertian import pdf_lambertian

        result = ti.field(dtype=ti.f32, shape=3)

        @ti.kernel
        def test_kernel():
            n = ti.math.vec3(0.0, 1.0, 0.0)
            result[0] = pdf_lambertian(n, n)
            result[1] = pdf_lambertian(n, ti.math.normalize(ti.math.vec3(1.0, 1.0, 0.0)))
            result[2] = pdf_lambertian(n, ti.math.vec3(0.0, -1.0, 0.0))

        test_kernel()
        assert abs(result[0] - 1.0 / math.pi) < 1e-6
        assert abs(result[1] - math.sqrt(0.5) / math.pi) < 1e-6
        assert result[2] == 0.0


class TestLambertianScatter:
    """Tests for scatter_lambertian."""

    def test_weight_is_albedo_and_direction_above_surface(self):
        from src.pathtracer.materials.lambertian import scatter_lambertian

        n = 5000
        dirs = ti.Vector.field(3, dtype=ti.f32, shape=n)
        weights = ti.Vector.field(3, dtype=ti.f32, shape=n)
        pdfs = ti.field(dtype=ti.f32, shape=n)

        @ti.kernel
        def test_kernel():
            normal = ti.math.vec3(0.0, 0.0, 1.0)
            for k in range(n):
                u1 = (ti.cast(k, ti.f32) + 0.5) / n
                u2 = ti.math.fract(ti.cast(k, ti.f32) * 0.754877)
                d, w, pdf = scatter_lambertian(ti.math.vec3(0.7, 0.5, 0.2), normal, u1, u2)
                dirs[k] = d
                weights[k] = w
                pdfs[k] = pdf

        test_kernel()
        d = dirs.to_numpy()
        assert d[:, 2].min() >= 0.0
        np.testing.assert_allclose(weights.to_numpy(), [[0.7, 0.5, 0.2]] * n, atol=1e-6)
        np.testing.assert_allclose(pdfs.to_numpy(), d[:, 2] / math.pi, atol=1e-5)


class TestLambertianRegistry:
    """Tests for the Lambertian registry."""

    def test_add_and_read_back(self):
        from src.pathtracer.materials.lambertian import (
            add_lambertian_material,
            get_lambertian_albedo,
            get_lambertian_material_count,
        )

        assert add_lambertian_material((0.1, 0.2, 0.3)) == 0
        assert add_lambertian_material((0.4, 0.5, 0.6)) == 1
        assert get_lambertian_material_count() == 2

        result = ti.Vector.field(3, dtype=ti.f32, shape=())

        @ti.kernel
        def test_kernel():
            result[None] = get_lambertian_albedo(1)

        test_kernel()
        np.testing.assert_allclose(result[None].to_numpy(), [0.4, 0.5, 0.6], atol=1e-6)

    def test_clear(self):
        from src.pathtracer.materials.lambertian import (
            add_lambertian_material,
            clear_lambertian_materials,
            get_lambertian_material_count,
        )

        add_lambertian_material((0.1, 0.2, 0.3))
        clear_lambertian_materials()
        assert get_lambertian_material_count() == 0

    def test_rejects_albedo_above_one(self):
        from src.pathtracer.materials.lambertian import add_lambertian_material

        with pytest.raises(ValueError):
            add_lambertian_material((1.2, 0.0, 0.0))
