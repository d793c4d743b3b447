"""Camera module for primary ray generation.

Components:
    thin_lens: Thin-lens camera with depth of field; a zero lens radius
        gives a pinhole camera

Pixel (0, 0) is the top-left corner; the camera looks along +z with +y up
before its orientation is applied.
"""

from .thin_lens import (
    ThinLensCamera,
    generate_ray,
    get_camera_info,
    get_camera_location,
    setup_camera,
)

__all__ = [
    "ThinLensCamera",
    "setup_camera",
    "generate_ray",
    "get_camera_location",
    "get_camera_info",
]
