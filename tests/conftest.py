"""Pytest configuration for path tracer tests.

This module provides shared fixtures for all test modules, including
Taichi initialization which must happen once per session.
"""

import pytest
import taichi as ti


@pytest.fixture(scope="session", autouse=True)
def init_taichi_session():
    """Initialize Taichi once for the entire test session.

    Using session scope prevents multiple ti.init() calls which can cause
    segmentation faults due to Taichi runtime conflicts.
    """
    ti.init(arch=ti.cpu, random_seed=42)
    yield


@pytest.fixture(autouse=True)
def clear_all_scene_data():
    """Clear device scene data and the render target around each test."""
    # Import here so that Taichi is initialized before fields are declared
    from src.pathtracer.core.integrator import clear_render_target
    from src.pathtracer.scene.manager import clear_scene

    def _clear_all():
        clear_scene()
        clear_render_target()

    _clear_all()
    yield
    _clear_all()


@pytest.fixture
def small_camera():
    """Factory for small pinhole cameras looking along +z."""
    from src.pathtracer.camera.thin_lens import ThinLensCamera

    def _make(width=16, height=12, **kwargs):
        return ThinLensCamera(image_width=width, image_height=height, **kwargs)

    return _make
