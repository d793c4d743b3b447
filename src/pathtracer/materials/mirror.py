"""Mirror (perfect specular) material implementation.

A mirror reflects every incident ray about the surface normal:

    R = I - 2(I . N)N

The BRDF is a Dirac delta at the reflection direction, so it evaluates to
zero for every explicitly chosen pair of directions. Mirrors are therefore
invisible to next-event estimation and only reachable through sampling. The
sampling weight is exactly 1: a mirror loses no energy.

Mirrors carry no parameters and need no registry.
"""

import taichi as ti
import taichi.math as tm

from src.pathtracer.core.ray import reflect

# Type alias for 3D vectors
vec3 = tm.vec3


@ti.func
def eval_mirror() -> vec3:
    """Evaluate the mirror BRDF for explicit directions (always zero)."""
    return vec3(0.0, 0.0, 0.0)


@ti.func
def scatter_mirror(incident_direction: vec3, normal: vec3):
    """Reflect an incident ray about the normal.

    Args:
        incident_direction: The incoming ray direction (normalized).
        normal: The shading normal, facing the incoming ray (normalized).

    Returns:
        A tuple of (scattered_direction, weight, did_scatter). did_scatter is 0
        when the reflected direction does not leave the surface.
    """
    scattered_direction = reflect(incident_direction, normal)
    did_scatter = 1
    if tm.dot(scattered_direction, normal) <= 0.0:
        did_scatter = 0
    return scattered_direction, vec3(1.0, 1.0, 1.0), did_scatter
