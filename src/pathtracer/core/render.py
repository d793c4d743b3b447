"""One-shot render driver.

``render`` uploads a scene if needed, traces every sample of every pixel and
returns the linear radiance buffer. The worker pool is Taichi's parallel
outer loop over pixels; each pixel owns its slot in the buffer, and every
sample is seeded from its pixel, sample index and the render seed, so the
result does not depend on scheduling.

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from src.pathtracer.core.render import render
    >>> image = render(scene, samples_per_pixel=64)
    >>> image.shape
    (480, 640, 3)
"""

import dataclasses
import logging
import time
from typing import Optional

import numpy as np
import numpy.typing as npt
import taichi as ti

from src.pathtracer.core.integrator import (
    RenderSettings,
    get_discarded_sample_count,
    get_image_numpy,
    render_batch,
    setup_render_target,
)
from src.pathtracer.scene.manager import Scene

logger = logging.getLogger(__name__)


def prepare_scene(scene: Optional[Scene]) -> Scene:
    """Check that a scene can be rendered and make it resident.

    Raises:
        ValueError: If the scene is None or has no camera.
    """
    if scene is None:
        raise ValueError("Cannot render: scene is None")
    if scene.camera is None:
        raise ValueError("Cannot render: scene has no camera")
    scene.ensure_uploaded()
    return scene


def render(
    scene: Scene,
    samples_per_pixel: int,
    settings: Optional[RenderSettings] = None,
) -> npt.NDArray[np.float32]:
    """Render a scene.

    Args:
        scene: A built scene with a camera.
        samples_per_pixel: Number of samples averaged into every pixel.
            Overrides ``settings.samples_per_pixel``.
        settings: Integrator configuration. Defaults to RenderSettings().

    Returns:
        Linear, unclamped RGB radiance of shape (height, width, 3), row 0 at
        the top of the image.

    Raises:
        ValueError: If the scene is None, has no camera, or the sample count
            is not positive.
    """
    if settings is None:
        settings = RenderSettings(samples_per_pixel=samples_per_pixel)
    else:
        settings = dataclasses.replace(settings, samples_per_pixel=samples_per_pixel)
    scene = prepare_scene(scene)

    camera = scene.camera
    setup_render_target(camera.image_width, camera.image_height)

    start = time.perf_counter()
    render_batch(0, settings.samples_per_pixel, settings)
    ti.sync()
    elapsed = time.perf_counter() - start

    discarded = get_discarded_sample_count()
    logger.info(
        "Rendered %dx%d at %d spp in %.2fs",
        camera.image_width, camera.image_height, settings.samples_per_pixel, elapsed,
    )
    if discarded:
        logger.debug("Discarded %d invalid sample(s)", discarded)
    return get_image_numpy()
