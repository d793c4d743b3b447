"""Path tracing integrator for Monte Carlo light transport.

This module implements the rendering kernel: unbiased path tracing with
next-event estimation toward sphere lights, BSDF importance sampling,
Russian roulette termination and a hard depth cap.

Each path runs a small state machine:

    Trace:     find the nearest hit; a miss adds the skybox and terminates.
    Shade:     a light adds its emission (unless next-event estimation already
               accounted for it) and absorbs the path. Any other surface
               receives one shadow-tested light sample, then samples its BSDF
               to continue the path.
    Terminate: BSDF failure, Russian roulette or the depth cap.

Every random number comes from the sample's private generator state (see
``core.rng``), so a pixel's value depends only on its coordinates, the sample
indices and the seed.

Samples with a NaN, infinite or negative channel are replaced by zero and still
counted, so one numerical fault cannot poison a pixel.

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from src.pathtracer.core.integrator import RenderSettings, render_batch
    >>> settings = RenderSettings(samples_per_pixel=16)
    >>> scene.upload()
    >>> setup_render_target(scene.camera.image_width, scene.camera.image_height)
    >>> render_batch(0, settings.samples_per_pixel, settings)
    >>> image = get_image_numpy()
"""

from dataclasses import dataclass

import numpy as np
import numpy.typing as npt
import taichi as ti
import taichi.math as tm

from src.pathtracer.camera.thin_lens import MAX_IMAGE_HEIGHT, MAX_IMAGE_WIDTH, generate_ray
from src.pathtracer.core.ray import is_finite, max_component
from src.pathtracer.core.rng import init_rng, next_float, next_vec2
from src.pathtracer.materials.gloss import eval_gloss, get_gloss_material, scatter_gloss
from src.pathtracer.materials.lambertian import (
    eval_lambertian,
    get_lambertian_albedo,
    scatter_lambertian,
)
from src.pathtracer.materials.mirror import eval_mirror, scatter_mirror
from src.pathtracer.scene.intersection import any_hit, nearest_hit
from src.pathtracer.scene.lights import get_light_radiance, num_lights, sample_light
from src.pathtracer.scene.manager import (
    MaterialType,
    get_material_type,
    get_material_type_index,
)
from src.pathtracer.scene.skybox import evaluate_skybox

# Type alias for 3D vectors
vec3 = tm.vec3

# =============================================================================
# Rendering Constants
# =============================================================================

# Ray offset epsilon to avoid self-intersection
RAY_EPSILON = 1e-4

# t_min and t_max for ray intersection
T_MIN = 1e-4
T_MAX = 1e10

# Shadow rays stop this fraction short of the sampled light point
SHADOW_EPSILON = 1e-3

# Largest seed or sample index representable by the kernels
MAX_SEED = 2**31 - 1


@dataclass(frozen=True)
class RenderSettings:
    """Integrator configuration.

    Attributes:
        samples_per_pixel: Number of samples averaged into every pixel.
        max_depth: Hard cap on surface interactions per path.
        rr_min_depth: Depth at which Russian roulette starts.
        russian_roulette: Enable Russian roulette termination.
        next_event_estimation: Sample lights explicitly at every non-delta hit.
        seed: Render-wide seed mixed into every sample's generator.
    """

    samples_per_pixel: int = 16
    max_depth: int = 8
    rr_min_depth: int = 3
    russian_roulette: bool = True
    next_event_estimation: bool = True
    seed: int = 0

    def __post_init__(self) -> None:
        if self.samples_per_pixel < 1:
            raise ValueError(f"samples_per_pixel must be positive, got {self.samples_per_pixel}")
        if self.max_depth < 1:
            raise ValueError(f"max_depth must be positive, got {self.max_depth}")
        if self.rr_min_depth < 0:
            raise ValueError(f"rr_min_depth must be non-negative, got {self.rr_min_depth}")
        if not 0 <= self.seed <= MAX_SEED:
            raise ValueError(f"seed must be in [0, {MAX_SEED}], got {self.seed}")


# =============================================================================
# Render Target (Image Buffer)
# =============================================================================

# Image dimensions (actual active size)
_image_width = ti.field(dtype=ti.i32, shape=())
_image_height = ti.field(dtype=ti.i32, shape=())

# Running mean of the samples, indexed [column, row]; row 0 is the top
_color_buffer = ti.Vector.field(3, dtype=ti.f32, shape=(MAX_IMAGE_WIDTH, MAX_IMAGE_HEIGHT))
_sample_count = ti.field(dtype=ti.i32, shape=(MAX_IMAGE_WIDTH, MAX_IMAGE_HEIGHT))
_discarded_count = ti.field(dtype=ti.i32, shape=(MAX_IMAGE_WIDTH, MAX_IMAGE_HEIGHT))

_render_target_initialized = ti.field(dtype=ti.i32, shape=())


def setup_render_target(width: int, height: int) -> None:
    """Set the active image dimensions and clear the buffers.

    Raises:
        ValueError: If dimensions are not positive or exceed the maximum.
    """
    if width < 1 or height < 1:
        raise ValueError(f"Image dimensions must be positive, got {width}x{height}")
    if width > MAX_IMAGE_WIDTH or height > MAX_IMAGE_HEIGHT:
        raise ValueError(
            f"Image dimensions ({width}x{height}) exceed maximum supported "
            f"({MAX_IMAGE_WIDTH}x{MAX_IMAGE_HEIGHT})"
        )

    _image_width[None] = width
    _image_height[None] = height
    _render_target_initialized[None] = 1
    clear_render_target()


def clear_render_target() -> None:
    """Clear the render target buffers to zero."""
    _color_buffer.fill(0.0)
    _sample_count.fill(0)
    _discarded_count.fill(0)


def get_image_dimensions() -> tuple[int, int]:
    """Return the active (width, height)."""
    return int(_image_width[None]), int(_image_height[None])


def _check_render_target_initialized() -> None:
    if _render_target_initialized[None] == 0:
        raise RuntimeError("Render target not set up. Call setup_render_target() first.")


# =============================================================================
# Material Dispatch
# =============================================================================


@ti.func
def _evaluate_material(material_id: ti.i32, wo: vec3, wi: vec3, normal: vec3) -> vec3:
    """Non-delta BRDF value for an explicit pair of directions.

    Args:
        material_id: The unified material ID.
        wo: Unit direction toward the viewer.
        wi: Unit direction toward the light.
        normal: Shading normal facing wo.

    Returns:
        The BRDF (without the cosine term). Zero for mirrors.
    """
    mat_type = get_material_type(material_id)
    type_index = get_material_type_index(material_id)
    result = vec3(0.0, 0.0, 0.0)

    if mat_type == int(MaterialType.LAMBERTIAN):
        if tm.dot(normal, wi) > 0.0:
            result = eval_lambertian(get_lambertian_albedo(type_index))
    elif mat_type == int(MaterialType.MIRROR):
        result = eval_mirror()
    elif mat_type == int(MaterialType.GLOSS):
        result = eval_gloss(get_gloss_material(type_index), wo, wi, normal)

    return result


@ti.func
def _sample_material(
    material_id: ti.i32,
    incident_direction: vec3,
    normal: vec3,
    u_lobe: ti.f32,
    u1: ti.f32,
    u2: ti.f32,
):
    """Dispatch to the material's sampling routine.

    Returns:
        A tuple of (scattered_direction, weight, is_delta, did_scatter) where
        weight is BRDF * cos / pdf for the sampled direction.
    """
    mat_type = get_material_type(material_id)
    type_index = get_material_type_index(material_id)

    scattered_direction = vec3(0.0, 0.0, 0.0)
    weight = vec3(0.0, 0.0, 0.0)
    is_delta = 0
    did_scatter = 0

    if mat_type == int(MaterialType.LAMBERTIAN):
        albedo = get_lambertian_albedo(type_index)
        pdf = 0.0
        scattered_direction, weight, pdf = scatter_lambertian(albedo, normal, u1, u2)
        if pdf > 0.0:
            did_scatter = 1

    elif mat_type == int(MaterialType.MIRROR):
        scattered_direction, weight, did_scatter = scatter_mirror(incident_direction, normal)
        is_delta = 1

    elif mat_type == int(MaterialType.GLOSS):
        scattered_direction, weight, is_delta, did_scatter = scatter_gloss(
            get_gloss_material(type_index), incident_direction, normal, u_lobe, u1, u2
        )

    return scattered_direction, weight, is_delta, did_scatter


# =============================================================================
# Path Tracing Core
# =============================================================================


@ti.func
def _offset_ray_origin(point: vec3, normal: vec3, direction: vec3) -> vec3:
    """Push a point off the surface on the side the new ray travels to."""
    offset_dir = normal
    if tm.dot(direction, normal) < 0.0:
        offset_dir = -normal
    return point + RAY_EPSILON * offset_dir


@ti.func
def trace_radiance(
    origin: vec3,
    direction: vec3,
    state: ti.u32,
    max_depth: ti.i32,
    rr_min_depth: ti.i32,
    use_rr: ti.i32,
    use_nee: ti.i32,
):
    """Estimate the radiance arriving at ``origin`` from ``direction``.

    Args:
        origin: Ray origin.
        direction: Unit ray direction.
        state: The sample's generator state.
        max_depth: Maximum number of surface interactions.
        rr_min_depth: Depth from which Russian roulette applies.
        use_rr: 1 to enable Russian roulette.
        use_nee: 1 to enable next-event estimation.

    Returns:
        A tuple of (radiance, state).
    """
    s = state
    radiance = vec3(0.0, 0.0, 0.0)
    throughput = vec3(1.0, 1.0, 1.0)
    ray_origin = origin
    ray_direction = direction

    # Primary rays and delta bounces see light emission directly
    count_emission = 1
    active = 1

    for depth in range(max_depth):
        if active == 1:
            rec = nearest_hit(ray_origin, ray_direction, T_MIN, T_MAX)

            if rec.hit == 0:
                radiance += throughput * evaluate_skybox(ray_direction)
                active = 0

            elif rec.light_id >= 0:
                if count_emission == 1 or use_nee == 0:
                    radiance += throughput * get_light_radiance(rec.light_id)
                active = 0

            else:
                hit_point = rec.point
                normal = rec.normal
                geometric = rec.geometric_normal
                material_id = rec.material_id
                wo = -ray_direction

                # Next-event estimation
                if use_nee == 1:
                    u_select = 0.0
                    u_l1 = 0.0
                    u_l2 = 0.0
                    s, u_select = next_float(s)
                    s, u_l1 = next_float(s)
                    s, u_l2 = next_float(s)
                    if num_lights[None] > 0 and get_material_type(material_id) != int(MaterialType.MIRROR):
                        l_dir, l_dist, l_pdf, l_radiance, valid = sample_light(
                            hit_point, u_select, u_l1, u_l2
                        )
                        cos_i = tm.dot(normal, l_dir)
                        if valid == 1 and cos_i > 0.0 and tm.dot(geometric, l_dir) > 0.0:
                            f = _evaluate_material(material_id, wo, l_dir, normal)
                            if max_component(f) > 0.0:
                                shadow_origin = _offset_ray_origin(hit_point, geometric, l_dir)
                                shadow_t = l_dist * (1.0 - SHADOW_EPSILON)
                                if any_hit(shadow_origin, l_dir, T_MIN, shadow_t) == 0:
                                    radiance += throughput * f * l_radiance * cos_i / l_pdf

                # BSDF sampling
                u_lobe = 0.0
                u1 = 0.0
                u2 = 0.0
                s, u_lobe = next_float(s)
                s, u1 = next_float(s)
                s, u2 = next_float(s)
                new_dir, weight, is_delta, did_scatter = _sample_material(
                    material_id, ray_direction, normal, u_lobe, u1, u2
                )

                if did_scatter == 0 or tm.dot(new_dir, geometric) <= 0.0:
                    active = 0
                else:
                    throughput *= weight
                    count_emission = is_delta

                    if use_rr == 1 and depth >= rr_min_depth:
                        survive = ti.min(1.0, max_component(throughput))
                        u_rr = 0.0
                        s, u_rr = next_float(s)
                        if u_rr >= survive:
                            active = 0
                        else:
                            throughput /= survive

                    if active == 1:
                        ray_origin = _offset_ray_origin(hit_point, geometric, new_dir)
                        ray_direction = new_dir

    return radiance, s


@ti.func
def accumulate_sample(i: ti.i32, j: ti.i32, color: vec3):
    """Fold one sample into pixel (i, j), discarding invalid samples."""
    sample = color
    if is_finite(sample) == 0 or ti.min(sample.x, ti.min(sample.y, sample.z)) < 0.0:
        sample = vec3(0.0, 0.0, 0.0)
        _discarded_count[i, j] += 1

    # Running average: avg_n = avg_{n-1} + (x_n - avg_{n-1}) / n
    _sample_count[i, j] += 1
    n = _sample_count[i, j]
    _color_buffer[i, j] += (sample - _color_buffer[i, j]) / ti.cast(n, ti.f32)


@ti.func
def render_sample_impl(
    i: ti.i32,
    j: ti.i32,
    sample_index: ti.i32,
    seed: ti.i32,
    max_depth: ti.i32,
    rr_min_depth: ti.i32,
    use_rr: ti.i32,
    use_nee: ti.i32,
) -> vec3:
    """Trace one camera sample through pixel (i, j)."""
    state = init_rng(i, j, sample_index, seed)
    jitter = tm.vec2(0.0, 0.0)
    lens = tm.vec2(0.0, 0.0)
    state, jitter = next_vec2(state)
    state, lens = next_vec2(state)
    ray = generate_ray(i, j, jitter, lens)
    color, state = trace_radiance(
        ray.origin, ray.direction, state, max_depth, rr_min_depth, use_rr, use_nee
    )
    return color


# =============================================================================
# Rendering Kernels
# =============================================================================


@ti.kernel
def _render_batch(
    width: ti.i32,
    height: ti.i32,
    sample_offset: ti.i32,
    num_samples: ti.i32,
    seed: ti.i32,
    max_depth: ti.i32,
    rr_min_depth: ti.i32,
    use_rr: ti.i32,
    use_nee: ti.i32,
):
    """Trace a batch of samples for every pixel.

    The outer loop runs in parallel over pixels; each pixel folds its samples
    in sample-index order.
    """
    for i, j in ti.ndrange(width, height):
        for k in range(num_samples):
            color = render_sample_impl(
                i, j, sample_offset + k, seed, max_depth, rr_min_depth, use_rr, use_nee
            )
            accumulate_sample(i, j, color)


# Capacity of the per-sample buffer used by estimate_radiance
MAX_ESTIMATE_SAMPLES = 1 << 18

_estimate_buffer = ti.Vector.field(3, dtype=ti.f32, shape=MAX_ESTIMATE_SAMPLES)


@ti.kernel
def _estimate_radiance(
    origin: vec3,
    direction: vec3,
    num_samples: ti.i32,
    seed: ti.i32,
    max_depth: ti.i32,
    rr_min_depth: ti.i32,
    use_rr: ti.i32,
    use_nee: ti.i32,
):
    for k in range(num_samples):
        state = init_rng(0, 0, k, seed)
        color, state = trace_radiance(
            origin, tm.normalize(direction), state, max_depth, rr_min_depth, use_rr, use_nee
        )
        _estimate_buffer[k] = color


# =============================================================================
# Public Rendering API
# =============================================================================


def render_batch(sample_offset: int, num_samples: int, settings: RenderSettings) -> None:
    """Accumulate ``num_samples`` samples per pixel into the render target.

    Sample indices run from ``sample_offset`` upward, so consecutive batches
    continue the same per-pixel sample sequence.

    Raises:
        RuntimeError: If the render target has not been set up.
        ValueError: If the sample range is empty or exceeds the index range.
    """
    _check_render_target_initialized()
    if num_samples < 1:
        raise ValueError(f"num_samples must be positive, got {num_samples}")
    if sample_offset < 0 or sample_offset + num_samples > MAX_SEED:
        raise ValueError(f"Sample range [{sample_offset}, {sample_offset + num_samples}) is invalid")

    width, height = get_image_dimensions()
    _render_batch(
        width,
        height,
        sample_offset,
        num_samples,
        settings.seed,
        settings.max_depth,
        settings.rr_min_depth,
        int(settings.russian_roulette),
        int(settings.next_event_estimation),
    )


def estimate_radiance(
    origin: tuple[float, float, float],
    direction: tuple[float, float, float],
    num_samples: int,
    settings: RenderSettings,
) -> npt.NDArray[np.float32]:
    """Average ``num_samples`` path samples along one ray.

    Invalid samples are discarded the same way the render target does it.
    Requires a scene to be uploaded.

    Returns:
        Mean radiance as an array of shape (3,).
    """
    if not 1 <= num_samples <= MAX_ESTIMATE_SAMPLES:
        raise ValueError(f"num_samples must be in [1, {MAX_ESTIMATE_SAMPLES}], got {num_samples}")
    _estimate_radiance(
        vec3(*(float(c) for c in origin)),
        vec3(*(float(c) for c in direction)),
        num_samples,
        settings.seed,
        settings.max_depth,
        settings.rr_min_depth,
        int(settings.russian_roulette),
        int(settings.next_event_estimation),
    )
    samples = _estimate_buffer.to_numpy()[:num_samples]
    bad = ~np.all(np.isfinite(samples), axis=1) | np.any(samples < 0.0, axis=1)
    samples[bad] = 0.0
    return samples.mean(axis=0).astype(np.float32)


def get_total_samples() -> int:
    """Number of samples accumulated in pixel (0, 0)."""
    _check_render_target_initialized()
    return int(_sample_count[0, 0])


def get_discarded_sample_count() -> int:
    """Total number of samples rejected as NaN, infinite or negative."""
    _check_render_target_initialized()
    width, height = get_image_dimensions()
    return int(_discarded_count.to_numpy()[:width, :height].sum())


def get_image_numpy() -> npt.NDArray[np.float32]:
    """Get the accumulated image as a NumPy array.

    Returns:
        Linear, unclamped RGB of shape (height, width, 3), row 0 at the top.

    Raises:
        RuntimeError: If the render target has not been set up.
    """
    _check_render_target_initialized()
    width, height = get_image_dimensions()
    full_image = _color_buffer.to_numpy()
    image = full_image[:width, :height, :]
    # (width, height, 3) -> (height, width, 3)
    return np.ascontiguousarray(np.transpose(image, (1, 0, 2)), dtype=np.float32)
