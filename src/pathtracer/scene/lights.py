"""Sphere lights and their sampling for next-event estimation.

Each light is a sphere that emits radiance colour * intensity from its whole
surface. Lights are inserted into the BVH as ordinary primitives, so camera
rays can see them, and are also stored here as sampling targets.

Sampling picks one light with probability proportional to
intensity * max(colour), then a direction toward it:

    shading point outside the sphere: uniform inside the subtended cone,
        pdf = 1 / (2 * pi * (1 - cos_theta_max))
    shading point inside the sphere: uniform point on the surface,
        area pdf converted to solid angle, pdf = d^2 / (cos_light * 4 * pi * r^2)

The returned pdf includes the light selection probability.
"""

from dataclasses import dataclass

import numpy as np
import taichi as ti
import taichi.math as tm

from src.pathtracer.core.ray import sample_uniform_cone, sample_uniform_sphere

vec3 = tm.vec3

# Maximum number of lights in the scene
MAX_LIGHTS = 256


@dataclass(frozen=True)
class SphereLight:
    """An emissive sphere.

    Attributes:
        center: Sphere center.
        radius: Sphere radius (> 0).
        colour: Emitted colour (linear RGB, non-negative).
        intensity: Scalar multiplier of the colour (>= 0).
    """

    center: tuple[float, float, float]
    radius: float
    colour: tuple[float, float, float] = (1.0, 1.0, 1.0)
    intensity: float = 1.0

    def __post_init__(self) -> None:
        if self.radius <= 0.0:
            raise ValueError(f"Light radius must be positive, got {self.radius}")
        if self.intensity < 0.0:
            raise ValueError(f"Light intensity must be non-negative, got {self.intensity}")
        if any(c < 0.0 for c in self.colour):
            raise ValueError(f"Light colour must be non-negative, got {self.colour}")

    @property
    def radiance(self) -> tuple[float, float, float]:
        return tuple(c * self.intensity for c in self.colour)

    @property
    def selection_weight(self) -> float:
        return self.intensity * max(self.colour)


light_centers = ti.Vector.field(3, dtype=ti.f32, shape=MAX_LIGHTS)
light_radii = ti.field(dtype=ti.f32, shape=MAX_LIGHTS)
light_radiances = ti.Vector.field(3, dtype=ti.f32, shape=MAX_LIGHTS)
# Cumulative selection probabilities; the last entry is 1
light_cdf = ti.field(dtype=ti.f32, shape=MAX_LIGHTS)
light_pick_pdf = ti.field(dtype=ti.f32, shape=MAX_LIGHTS)
num_lights = ti.field(dtype=ti.i32, shape=())


def clear_lights() -> None:
    num_lights[None] = 0


def upload_lights(lights: list[SphereLight]) -> None:
    """Store lights and their selection distribution on the device.

    Raises:
        RuntimeError: If more than MAX_LIGHTS lights are given.
    """
    if len(lights) > MAX_LIGHTS:
        raise RuntimeError(f"Maximum number of lights ({MAX_LIGHTS}) exceeded")

    weights = np.array([light.selection_weight for light in lights], dtype=np.float64)
    if weights.size and weights.sum() <= 0.0:
        weights = np.ones_like(weights)
    pick = weights / weights.sum() if weights.size else weights
    cdf = np.cumsum(pick)

    for i, light in enumerate(lights):
        light_centers[i] = vec3(*light.center)
        light_radii[i] = light.radius
        light_radiances[i] = vec3(*light.radiance)
        light_pick_pdf[i] = pick[i]
        light_cdf[i] = cdf[i]
    if lights:
        light_cdf[len(lights) - 1] = 1.0
    num_lights[None] = len(lights)


def get_light_count() -> int:
    return int(num_lights[None])


@ti.func
def get_light_radiance(light_idx: ti.i32) -> vec3:
    return light_radiances[light_idx]


@ti.func
def _select_light(u_select: ti.f32) -> ti.i32:
    n = num_lights[None]
    idx = n - 1
    found = 0
    for k in range(n):
        if found == 0 and u_select < light_cdf[k]:
            idx = k
            found = 1
    return idx


@ti.func
def sample_light(point: vec3, u_select: ti.f32, u1: ti.f32, u2: ti.f32):
    """Sample a direction toward one light from a shading point.

    Args:
        point: The shading point.
        u_select: Uniform number choosing the light.
        u1: Uniform number for the direction.
        u2: Uniform number for the direction.

    Returns:
        A tuple of (direction, distance, pdf, radiance, valid) where distance
        is measured to the sampled point on the light surface and pdf is a
        solid-angle density including the selection probability.
    """
    direction = vec3(0.0, 0.0, 1.0)
    distance = 0.0
    pdf = 0.0
    radiance = vec3(0.0, 0.0, 0.0)
    valid = 0

    if num_lights[None] > 0:
        idx = _select_light(u_select)
        pick = light_pick_pdf[idx]
        center = light_centers[idx]
        radius = light_radii[idx]
        radiance = light_radiances[idx]

        oc = center - point
        dist2 = tm.dot(oc, oc)
        r2 = radius * radius

        if dist2 > r2 * (1.0 + 1e-4):
            dist_c = ti.sqrt(dist2)
            sin2_max = r2 / dist2
            cos_max = ti.sqrt(ti.max(0.0, 1.0 - sin2_max))
            # 1 - cos computed without cancellation for distant lights
            one_minus_cos = sin2_max / (1.0 + cos_max)
            direction = sample_uniform_cone(oc / dist_c, cos_max, u1, u2)
            b = tm.dot(oc, direction)
            disc = r2 - (dist2 - b * b)
            distance = b - ti.sqrt(ti.max(disc, 0.0))
            if one_minus_cos > 0.0 and pick > 0.0:
                pdf = pick / (2.0 * tm.pi * one_minus_cos)
                valid = 1
        else:
            surface = center + radius * sample_uniform_sphere(u1, u2)
            d = surface - point
            distance = tm.length(d)
            if distance > 1e-6:
                direction = d / distance
                cos_light = ti.abs(tm.dot((surface - center) / radius, direction))
                if cos_light > 1e-6 and pick > 0.0:
                    pdf = pick * distance * distance / (cos_light * 4.0 * tm.pi * r2)
                    valid = 1

    return direction, distance, pdf, radiance, valid
