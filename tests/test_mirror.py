"""Unit tests for the mirror material.

Tests cover:
- Law of reflection
- Unit weight
- Zero BRDF for explicit light sampling
"""

import math

import numpy as np
import taichi as ti


class TestMirror:
    def test_law_of_reflection(self):
        from src.pathtracer.materials.mirror import scatter_mirror

        dirs = ti.Vector.field(3, dtype=ti.f32, shape=())
        weight = ti.Vector.field(3, dtype=ti.f32, shape=())
        did = ti.field(dtype=ti.i32, shape=())

        @ti.kernel
        def test_kernel():
            incident = ti.math.normalize(ti.math.vec3(1.0, -2.0, 0.5))
            d, w, ok = scatter_mirror(incident, ti.math.vec3(0.0, 1.0, 0.0))
            dirs[None] = d
            weight[None] = w
            did[None] = ok

        test_kernel()
        incident = np.array([1.0, -2.0, 0.5]) / math.sqrt(5.25)
        expected = incident * np.array([1.0, -1.0, 1.0])
        np.testing.assert_allclose(dirs[None].to_numpy(), expected, atol=1e-6)
        np.testing.assert_allclose(weight[None].to_numpy(), [1.0, 1.0, 1.0])
        assert did[None] == 1

    def test_ray_leaving_surface_does_not_scatter(self):
        from src.pathtracer.materials.mirror import scatter_mirror

        did = ti.field(dtype=ti.i32, shape=())

        @ti.kernel
        def test_kernel():
            _, _, ok = scatter_mirror(ti.math.vec3(0.0, 1.0, 0.0), ti.math.vec3(0.0, 1.0, 0.0))
            did[None] = ok

        test_kernel()
        assert did[None] == 0

    def test_eval_is_zero(self):
        from src.pathtracer.materials.mirror import eval_mirror

        result = ti.Vector.field(3, dtype=ti.f32, shape=())

        @ti.kernel
        def test_kernel():
            result[None] = eval_mirror()

        test_kernel()
        np.testing.assert_array_equal(result[None].to_numpy(), [0.0, 0.0, 0.0])
