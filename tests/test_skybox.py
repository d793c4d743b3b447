"""Tests for skybox variants.

Tests cover:
- Flat and gradient evaluation, including below the horizon
- HDRI lookups, bilinear filtering and seam wraparound
- Validation and downsampling of environment maps
"""

import logging
import math

import numpy as np
import pytest
import taichi as ti


def _evaluate(directions):
    from src.pathtracer.scene.skybox import evaluate_skybox

    dirs = np.asarray(directions, dtype=np.float32).reshape(-1, 3)
    n = dirs.shape[0]
    result = ti.Vector.field(3, dtype=ti.f32, shape=n)

    @ti.kernel
    def test_kernel(d: ti.types.ndarray(dtype=ti.f32, ndim=2)):
        for k in range(n):
            result[k] = evaluate_skybox(ti.math.normalize(ti.math.vec3(d[k, 0], d[k, 1], d[k, 2])))

    test_kernel(dirs)
    return result.to_numpy()


class TestFlatAndGradient:
    def test_flat_is_constant(self):
        from src.pathtracer.scene.skybox import FlatSkybox, upload_skybox

        upload_skybox(FlatSkybox((0.2, 0.3, 0.4)))
        values = _evaluate([[0, 1, 0], [0, -1, 0], [1, 0, 0], [0.3, 0.2, -0.9]])
        np.testing.assert_allclose(values, [[0.2, 0.3, 0.4]] * 4, atol=1e-6)

    def test_gradient(self):
        from src.pathtracer.scene.skybox import GradientSkybox, upload_skybox

        horizon = np.array([1.0, 1.0, 1.0])
        overhead = np.array([0.2, 0.4, 1.0])
        upload_skybox(GradientSkybox(tuple(horizon), tuple(overhead)))
        values = _evaluate([[0, 1, 0], [1, 0, 0], [0, 0.5, math.sqrt(0.75)]])
        np.testing.assert_allclose(values[0], overhead, atol=1e-6)
        np.testing.assert_allclose(values[1], horizon, atol=1e-6)
        np.testing.assert_allclose(values[2], 0.5 * (horizon + overhead), atol=1e-5)

    def test_gradient_below_horizon_is_horizon(self):
        from src.pathtracer.scene.skybox import GradientSkybox, upload_skybox

        upload_skybox(GradientSkybox((0.9, 0.8, 0.7), (0.0, 0.0, 1.0)))
        values = _evaluate([[0, -1, 0], [1, -0.5, 0.2]])
        np.testing.assert_allclose(values, [[0.9, 0.8, 0.7]] * 2, atol=1e-6)

    def test_unknown_variant(self):
        from src.pathtracer.scene.skybox import upload_skybox

        with pytest.raises(TypeError):
            upload_skybox((0.5, 0.5, 0.5))


class TestHdri:
    def test_constant_map(self):
        from src.pathtracer.scene.skybox import HdriSkybox, upload_skybox

        image = np.full((8, 16, 3), 2.5, dtype=np.float32)
        upload_skybox(HdriSkybox(image))
        values = _evaluate([[0, 1, 0], [0, -1, 0], [1, 0, 0], [-0.2, 0.3, 0.9]])
        np.testing.assert_allclose(values, 2.5, atol=1e-5)

    def test_zenith_and_nadir_rows(self):
        from src.pathtracer.scene.skybox import HdriSkybox, upload_skybox

        image = np.zeros((4, 8, 3), dtype=np.float32)
        image[0] = 1.0
        image[-1] = 3.0
        upload_skybox(HdriSkybox(image))
        values = _evaluate([[0, 1, 0], [0, -1, 0]])
        np.testing.assert_allclose(values[0], 1.0, atol=1e-5)
        np.testing.assert_allclose(values[1], 3.0, atol=1e-5)

    def test_seam_wraps(self):
        """Directions just either side of the seam blend the first and last columns."""
        from src.pathtracer.scene.skybox import HdriSkybox, upload_skybox

        image = np.zeros((2, 4, 3), dtype=np.float32)
        for col in range(4):
            image[:, col] = float(col)
        upload_skybox(HdriSkybox(image))
        # atan2(x, -z) = +-pi on the +z axis, i.e. u = 0 or 1
        values = _evaluate([[-1e-4, 0.0, 1.0], [1e-4, 0.0, 1.0]])
        np.testing.assert_allclose(values[0], 1.5, atol=1e-2)
        np.testing.assert_allclose(values[1], 1.5, atol=1e-2)

    def test_column_centres(self):
        from src.pathtracer.scene.skybox import HdriSkybox, upload_skybox

        image = np.zeros((2, 4, 3), dtype=np.float32)
        for col in range(4):
            image[:, col] = float(col)
        upload_skybox(HdriSkybox(image))
        # u = 0.625 is the centre of column 2: atan2(x, -z) = pi / 4
        values = _evaluate([[1.0, 0.0, -1.0]])
        np.testing.assert_allclose(values[0], 2.0, atol=1e-4)

    @pytest.mark.parametrize(
        "image",
        [
            np.zeros((4, 4), dtype=np.float32),
            np.zeros((4, 4, 4), dtype=np.float32),
            np.zeros((0, 4, 3), dtype=np.float32),
            np.full((2, 2, 3), np.nan, dtype=np.float32),
        ],
    )
    def test_invalid_maps(self, image):
        from src.pathtracer.scene.skybox import HdriSkybox

        with pytest.raises(ValueError):
            HdriSkybox(image)

    def test_oversized_map_is_downsampled(self, caplog):
        from src.pathtracer.scene.skybox import MAX_ENV_WIDTH, fit_env_map

        image = np.zeros((2, 2 * MAX_ENV_WIDTH + 1, 3), dtype=np.float32)
        with caplog.at_level(logging.WARNING):
            fitted = fit_env_map(image)
        assert fitted.shape[1] <= MAX_ENV_WIDTH
        assert fitted.shape[0] == 2
        assert "downsampling" in caplog.text
