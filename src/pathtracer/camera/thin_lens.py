"""Thin-lens camera model for primary ray generation with depth of field.

The camera sits at ``location`` and, before rotation, looks along +z with +y
up. Pixel (0, 0) is the top-left corner of the image.

Ray generation follows the thin-lens equation. For a lens of focal length f
focused at distance F, the sensor sits at the image distance

    v = f * F / (F - f)

behind the lens. A sensor point k maps through the lens center onto the focus
plane at k * F / v. Every ray leaving the lens aims at that focus point, so
points on the focus plane stay sharp while everything else blurs in proportion
to the lens radius (focal_length / aperture).

With a zero lens radius (aperture <= 0 or infinite) the lens point is exactly
the origin and the camera degenerates to a pinhole.

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from src.pathtracer.camera.thin_lens import ThinLensCamera, setup_camera
    >>>
    >>> camera = ThinLensCamera(
    ...     image_width=320,
    ...     image_height=240,
    ...     location=(0.0, 1.0, -10.0),
    ...     focus_distance=10.0,
    ...     aperture=2.8,
    ... )
    >>> setup_camera(camera)
    >>>
    >>> # Within a Taichi kernel, with jitter and lens samples from the RNG:
    >>> # ray = generate_ray(i, j, jitter, lens_sample)
"""

import math
from dataclasses import dataclass

import numpy as np
import taichi as ti
import taichi.math as tm

from src.pathtracer.core.ray import Ray, make_ray, sample_uniform_disk, vec3
from src.pathtracer.geometry.transform import rotation_matrix

# Maximum supported image dimensions, shared with the render target
MAX_IMAGE_WIDTH = 2048
MAX_IMAGE_HEIGHT = 2048

# Primary rays are valid up to this distance
CAMERA_T_MAX = 1e10

# =============================================================================
# Camera Data Structures
# =============================================================================


@dataclass(frozen=True)
class ThinLensCamera:
    """Configuration for a thin-lens camera.

    Attributes:
        image_width: Output width in pixels.
        image_height: Output height in pixels.
        location: Center of the lens in world space (x, y, z).
        orientation: (pitch, yaw, roll) in degrees, applied as
            Rx(pitch) @ Ry(yaw) @ Rz(roll).
        sensor_width: Physical sensor width (same units as focal_length).
        sensor_height: Physical sensor height.
        focal_length: Lens focal length.
        focus_distance: Distance from the lens to the plane in focus. Must be
            larger than the focal length.
        aperture: f-number. The lens radius is focal_length / aperture. Zero,
            negative or infinite values give a pinhole camera.
    """

    image_width: int
    image_height: int
    location: tuple[float, float, float] = (0.0, 0.0, 0.0)
    orientation: tuple[float, float, float] = (0.0, 0.0, 0.0)
    sensor_width: float = 0.036
    sensor_height: float = 0.024
    focal_length: float = 0.05
    focus_distance: float = 10.0
    aperture: float = 0.0

    def __post_init__(self) -> None:
        if self.image_width < 1 or self.image_height < 1:
            raise ValueError(
                f"Image dimensions must be positive, got {self.image_width}x{self.image_height}"
            )
        if self.image_width > MAX_IMAGE_WIDTH or self.image_height > MAX_IMAGE_HEIGHT:
            raise ValueError(
                f"Image dimensions ({self.image_width}x{self.image_height}) exceed maximum "
                f"supported ({MAX_IMAGE_WIDTH}x{MAX_IMAGE_HEIGHT})"
            )
        if self.sensor_width <= 0.0 or self.sensor_height <= 0.0:
            raise ValueError("Sensor dimensions must be positive")
        if self.focal_length <= 0.0:
            raise ValueError(f"Focal length must be positive, got {self.focal_length}")
        if self.focus_distance <= self.focal_length:
            raise ValueError(
                f"Focus distance ({self.focus_distance}) must be larger than the "
                f"focal length ({self.focal_length})"
            )

    @property
    def lens_radius(self) -> float:
        if self.aperture <= 0.0 or math.isinf(self.aperture):
            return 0.0
        return self.focal_length / self.aperture

    @property
    def image_distance(self) -> float:
        """Distance from the lens to the sensor for the configured focus."""
        f = self.focal_length
        return f * self.focus_distance / (self.focus_distance - f)


# =============================================================================
# Taichi Fields for Camera State
# =============================================================================

_camera_location = ti.Vector.field(3, dtype=ti.f32, shape=())

# Columns of the orientation matrix
_camera_right = ti.Vector.field(3, dtype=ti.f32, shape=())
_camera_up = ti.Vector.field(3, dtype=ti.f32, shape=())
_camera_forward = ti.Vector.field(3, dtype=ti.f32, shape=())

# Sensor size of one pixel
_pixel_size = ti.Vector.field(2, dtype=ti.f32, shape=())
_image_size = ti.Vector.field(2, dtype=ti.i32, shape=())

# Sensor-to-focus-plane magnification F / v
_focus_scale = ti.field(dtype=ti.f32, shape=())
_focus_distance = ti.field(dtype=ti.f32, shape=())
_lens_radius = ti.field(dtype=ti.f32, shape=())


# =============================================================================
# Camera Setup
# =============================================================================


def setup_camera(camera: ThinLensCamera) -> None:
    """Write the camera state to the device.

    Args:
        camera: Validated camera configuration.
    """
    rot = rotation_matrix(*camera.orientation)

    _camera_location[None] = np.asarray(camera.location, dtype=np.float32).tolist()
    _camera_right[None] = rot[:, 0].tolist()
    _camera_up[None] = rot[:, 1].tolist()
    _camera_forward[None] = rot[:, 2].tolist()

    _pixel_size[None] = [
        camera.sensor_width / camera.image_width,
        camera.sensor_height / camera.image_height,
    ]
    _image_size[None] = [camera.image_width, camera.image_height]

    _focus_scale[None] = camera.focus_distance / camera.image_distance
    _focus_distance[None] = camera.focus_distance
    _lens_radius[None] = camera.lens_radius


# =============================================================================
# Ray Generation
# =============================================================================


@ti.func
def generate_ray(pixel_x: ti.i32, pixel_y: ti.i32, jitter: tm.vec2, lens_sample: tm.vec2) -> Ray:
    """Generate a primary ray through a pixel.

    Args:
        pixel_x: Column, 0 at the left edge.
        pixel_y: Row, 0 at the top edge.
        jitter: Sub-pixel offset in [0, 1)^2.
        lens_sample: Uniform numbers in [0, 1)^2 choosing the point on the lens.

    Returns:
        A world-space Ray starting on the lens.
    """
    size = _image_size[None]
    pixel = _pixel_size[None]

    sensor_x = (ti.cast(pixel_x, ti.f32) + jitter.x - 0.5 * ti.cast(size.x, ti.f32)) * pixel.x
    sensor_y = (0.5 * ti.cast(size.y, ti.f32) - (ti.cast(pixel_y, ti.f32) + jitter.y)) * pixel.y

    scale = _focus_scale[None]
    focus_point = vec3(sensor_x * scale, sensor_y * scale, _focus_distance[None])

    disk = sample_uniform_disk(lens_sample.x, lens_sample.y) * _lens_radius[None]
    lens_point = vec3(disk.x, disk.y, 0.0)

    local_dir = tm.normalize(focus_point - lens_point)

    right = _camera_right[None]
    up = _camera_up[None]
    forward = _camera_forward[None]

    origin = _camera_location[None] + lens_point.x * right + lens_point.y * up
    direction = tm.normalize(local_dir.x * right + local_dir.y * up + local_dir.z * forward)

    return make_ray(origin, direction, 0.0, CAMERA_T_MAX)


@ti.func
def get_camera_location() -> vec3:
    return _camera_location[None]


# =============================================================================
# Utility Functions
# =============================================================================


def get_camera_info() -> dict[str, object]:
    """Get current camera state for debugging.

    Returns:
        Dictionary with location, basis vectors, focus and lens parameters.
    """

    def _vec(field) -> tuple[float, ...]:
        return tuple(float(c) for c in field[None].to_numpy())

    return {
        "location": _vec(_camera_location),
        "right": _vec(_camera_right),
        "up": _vec(_camera_up),
        "forward": _vec(_camera_forward),
        "pixel_size": _vec(_pixel_size),
        "image_size": (int(_image_size[None][0]), int(_image_size[None][1])),
        "focus_scale": float(_focus_scale[None]),
        "focus_distance": float(_focus_distance[None]),
        "lens_radius": float(_lens_radius[None]),
    }
