"""Background radiance for rays that leave the scene.

Three variants are supported:

    Flat:     constant colour in every direction.
    Gradient: linear blend from the horizon colour (direction.y <= 0) to the
              overhead colour (direction.y = 1).
    Hdri:     equirectangular radiance map, sampled bilinearly. Longitude
              wraps around the seam; latitude is clamped at the poles.

The skybox depends only on the ray direction.

Equirectangular convention: column u = 0.5 + atan2(d.x, -d.z) / (2 * pi),
row v = acos(d.y) / pi, with row 0 at the zenith.
"""

import logging
import math
from dataclasses import dataclass
from enum import IntEnum
from typing import Union

import numpy as np
import numpy.typing as npt
import taichi as ti
import taichi.math as tm

logger = logging.getLogger(__name__)

vec3 = tm.vec3

# Device capacity for environment maps; larger maps are downsampled on upload
MAX_ENV_WIDTH = 2048
MAX_ENV_HEIGHT = 1024


class SkyboxKind(IntEnum):
    FLAT = 0
    GRADIENT = 1
    HDRI = 2


@dataclass(frozen=True)
class FlatSkybox:
    colour: tuple[float, float, float] = (0.0, 0.0, 0.0)


@dataclass(frozen=True)
class GradientSkybox:
    """Blend between a horizon colour and an overhead colour."""

    horizon: tuple[float, float, float]
    overhead: tuple[float, float, float]


@dataclass(frozen=True, eq=False)
class HdriSkybox:
    """Equirectangular environment map.

    Attributes:
        radiance: Linear RGB radiance, shape (height, width, 3), row 0 at the
            zenith. Already loaded by the caller.
    """

    radiance: npt.NDArray[np.float32]

    def __post_init__(self) -> None:
        data = np.asarray(self.radiance, dtype=np.float32)
        if data.ndim != 3 or data.shape[2] != 3 or data.shape[0] < 1 or data.shape[1] < 1:
            raise ValueError(f"HDRI radiance must have shape (H, W, 3), got {data.shape}")
        if not np.all(np.isfinite(data)):
            raise ValueError("HDRI radiance contains NaN or infinite values")
        object.__setattr__(self, "radiance", data)


Skybox = Union[FlatSkybox, GradientSkybox, HdriSkybox]


sky_kind = ti.field(dtype=ti.i32, shape=())
sky_horizon = ti.Vector.field(3, dtype=ti.f32, shape=())
sky_overhead = ti.Vector.field(3, dtype=ti.f32, shape=())
env_map = ti.Vector.field(3, dtype=ti.f32, shape=(MAX_ENV_WIDTH, MAX_ENV_HEIGHT))
env_width = ti.field(dtype=ti.i32, shape=())
env_height = ti.field(dtype=ti.i32, shape=())


@ti.kernel
def _upload_env_map(image: ti.types.ndarray(dtype=ti.f32, ndim=3), width: ti.i32, height: ti.i32):
    for x, y in ti.ndrange(width, height):
        env_map[x, y] = vec3(image[y, x, 0], image[y, x, 1], image[y, x, 2])


def fit_env_map(radiance: npt.NDArray[np.float32]) -> npt.NDArray[np.float32]:
    """Downsample a map by integer strides until it fits the device capacity."""
    height, width = radiance.shape[:2]
    step_x = math.ceil(width / MAX_ENV_WIDTH)
    step_y = math.ceil(height / MAX_ENV_HEIGHT)
    if step_x > 1 or step_y > 1:
        logger.warning(
            "Environment map %dx%d exceeds %dx%d; downsampling by (%d, %d)",
            width, height, MAX_ENV_WIDTH, MAX_ENV_HEIGHT, step_x, step_y,
        )
        radiance = radiance[::step_y, ::step_x]
    return np.ascontiguousarray(radiance, dtype=np.float32)


def upload_skybox(skybox: Skybox) -> None:
    """Make a skybox the active background.

    Raises:
        TypeError: If the skybox is not one of the supported variants.
    """
    if isinstance(skybox, FlatSkybox):
        sky_kind[None] = int(SkyboxKind.FLAT)
        sky_horizon[None] = vec3(*skybox.colour)
        sky_overhead[None] = vec3(*skybox.colour)
    elif isinstance(skybox, GradientSkybox):
        sky_kind[None] = int(SkyboxKind.GRADIENT)
        sky_horizon[None] = vec3(*skybox.horizon)
        sky_overhead[None] = vec3(*skybox.overhead)
    elif isinstance(skybox, HdriSkybox):
        image = fit_env_map(skybox.radiance)
        height, width = image.shape[:2]
        _upload_env_map(image, width, height)
        env_width[None] = width
        env_height[None] = height
        sky_kind[None] = int(SkyboxKind.HDRI)
    else:
        raise TypeError(f"Unsupported skybox type: {type(skybox).__name__}")


@ti.func
def _env_texel(x: ti.i32, y: ti.i32) -> vec3:
    w = env_width[None]
    h = env_height[None]
    xw = ((x % w) + w) % w
    yc = ti.min(ti.max(y, 0), h - 1)
    return env_map[xw, yc]


@ti.func
def sample_env_map(direction: vec3) -> vec3:
    """Bilinear equirectangular lookup with longitude wraparound."""
    d = tm.normalize(direction)
    u = 0.5 + ti.atan2(d.x, -d.z) / (2.0 * tm.pi)
    v = ti.acos(tm.clamp(d.y, -1.0, 1.0)) / tm.pi

    fx = u * ti.cast(env_width[None], ti.f32) - 0.5
    fy = v * ti.cast(env_height[None], ti.f32) - 0.5
    x0f = ti.floor(fx)
    y0f = ti.floor(fy)
    tx = fx - x0f
    ty = fy - y0f
    x0 = ti.cast(x0f, ti.i32)
    y0 = ti.cast(y0f, ti.i32)

    top = (1.0 - tx) * _env_texel(x0, y0) + tx * _env_texel(x0 + 1, y0)
    bottom = (1.0 - tx) * _env_texel(x0, y0 + 1) + tx * _env_texel(x0 + 1, y0 + 1)
    return (1.0 - ty) * top + ty * bottom


@ti.func
def evaluate_skybox(direction: vec3) -> vec3:
    """Background radiance seen along a direction."""
    kind = sky_kind[None]
    result = sky_horizon[None]
    if kind == int(SkyboxKind.GRADIENT):
        t = tm.clamp(direction.y, 0.0, 1.0)
        result = (1.0 - t) * sky_horizon[None] + t * sky_overhead[None]
    elif kind == int(SkyboxKind.HDRI):
        result = sample_env_map(direction)
    return result
