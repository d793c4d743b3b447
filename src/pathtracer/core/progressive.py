"""Progressive renderer for iterative sample accumulation.

This module provides a wrapper around the core integrator that supports:
- Progressive rendering that refines over time
- Batch rendering (multiple SPP in one call)
- Progress callbacks and a generator interface for UI updates
- Reset and re-render

Sample indices continue across batches, so N samples rendered progressively
produce the same image as a single N-sample ``render`` with the same seed.

The render target is a single global buffer: only one renderer should be
accumulating at a time.

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from src.pathtracer.core.progressive import ProgressiveRenderer
    >>>
    >>> renderer = ProgressiveRenderer(scene, RenderSettings(seed=7))
    >>> renderer.render(100, batch_size=10)
    >>> image = renderer.get_image_numpy()
"""

from collections.abc import Callable, Generator
from typing import Optional

import numpy as np
import numpy.typing as npt

from src.pathtracer.core.integrator import (
    RenderSettings,
    clear_render_target,
    get_image_numpy,
    render_batch,
    setup_render_target,
)
from src.pathtracer.core.render import prepare_scene
from src.pathtracer.scene.manager import Scene

# Callback receives (current_samples, total_target_samples)
ProgressCallback = Callable[[int, int], None]


class ProgressiveRenderer:
    """Accumulates samples of one scene over successive calls.

    Attributes:
        scene: The scene being rendered.
        settings: Integrator configuration. ``samples_per_pixel`` is ignored;
            the sample count is driven by the render calls.
    """

    def __init__(self, scene: Scene, settings: Optional[RenderSettings] = None) -> None:
        """Upload the scene if needed and clear the render target.

        Raises:
            ValueError: If the scene is None or has no camera.
        """
        self.scene = prepare_scene(scene)
        self.settings = settings if settings is not None else RenderSettings()
        self._samples = 0
        self._target = 0
        setup_render_target(self.width, self.height)

    @property
    def width(self) -> int:
        return self.scene.camera.image_width

    @property
    def height(self) -> int:
        return self.scene.camera.image_height

    @property
    def sample_count(self) -> int:
        """Number of samples accumulated per pixel."""
        return self._samples

    def reset(self) -> None:
        """Clear the accumulator and restart the sample sequence."""
        clear_render_target()
        self._samples = 0

    def _render_batch(self, batch: int) -> None:
        self.scene.ensure_uploaded()
        render_batch(self._samples, batch, self.settings)
        self._samples += batch

    def render(
        self,
        num_samples: int = 1,
        batch_size: int = 1,
        callback: Optional[ProgressCallback] = None,
    ) -> None:
        """Render samples progressively with optional progress callback.

        Args:
            num_samples: Number of samples to add to every pixel.
            batch_size: Number of samples per kernel launch.
            callback: Called after each batch with
                (current_total_samples, target_total_samples).

        Raises:
            ValueError: If batch_size is not positive.
        """
        for _ in self.render_progressive(num_samples, batch_size):
            if callback is not None:
                callback(self._samples, self._target)

    def render_progressive(
        self,
        num_samples: int = 1,
        batch_size: int = 1,
    ) -> Generator[tuple[int, int], None, None]:
        """Render samples progressively, yielding progress after each batch.

        Yields:
            Tuple of (current_total_samples, target_total_samples).
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        if num_samples <= 0:
            return

        self._target = self._samples + num_samples
        remaining = num_samples
        while remaining > 0:
            batch = min(batch_size, remaining)
            self._render_batch(batch)
            remaining -= batch
            yield (self._samples, self._target)

    def get_image_numpy(self) -> npt.NDArray[np.float32]:
        """Linear accumulated image of shape (height, width, 3)."""
        return get_image_numpy()

    def __repr__(self) -> str:
        return (
            f"ProgressiveRenderer(width={self.width}, height={self.height}, "
            f"samples={self.sample_count})"
        )
