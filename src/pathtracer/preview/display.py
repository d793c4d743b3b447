"""Display helpers for linear radiance buffers.

The renderer returns linear, unclamped radiance. These helpers bring such a
buffer into the displayable [0, 1] range:

    - Tone mapping (Reinhard, exposure-based)
    - Gamma correction (sRGB 2.2)
    - A Matplotlib preview window

Example:
    >>> from src.pathtracer.core.render import render
    >>> from src.pathtracer.preview.display import process_image_for_display
    >>> image = render(scene, samples_per_pixel=64)
    >>> display_image = process_image_for_display(image, tone_map="reinhard")
"""

from __future__ import annotations

from typing import Literal

import numpy as np
import numpy.typing as npt

# Type alias for tone mapping options
ToneMapMethod = Literal["none", "reinhard", "exposure"]


def tone_map_reinhard(image: npt.NDArray[np.float32]) -> npt.NDArray[np.float32]:
    """Apply Reinhard tone mapping: L / (1 + L)."""
    image = np.maximum(image, 0.0)
    return (image / (1.0 + image)).astype(np.float32)


def tone_map_exposure(
    image: npt.NDArray[np.float32],
    exposure: float = 1.0,
) -> npt.NDArray[np.float32]:
    """Apply exposure-based tone mapping: 1 - exp(-c * exposure).

    Args:
        image: Linear HDR image array of shape (H, W, 3).
        exposure: Exposure value. Higher values brighten the image.

    Returns:
        Tone mapped image in [0, 1] range.
    """
    image = np.maximum(image, 0.0)
    return (1.0 - np.exp(-image * exposure)).astype(np.float32)


def apply_gamma(
    image: npt.NDArray[np.float32],
    gamma: float = 2.2,
) -> npt.NDArray[np.float32]:
    """Encode linear values in [0, 1] with out = in^(1/gamma).

    Values are clamped to [0, 1] first so that negative inputs cannot produce
    NaN.
    """
    if gamma <= 0.0:
        raise ValueError(f"Gamma must be positive, got {gamma}")
    if gamma == 1.0:
        return image
    image = np.clip(image, 0.0, 1.0)
    return np.power(image, 1.0 / gamma).astype(np.float32)


def process_image_for_display(
    image: npt.NDArray[np.float32],
    tone_map: ToneMapMethod = "none",
    gamma: float = 2.2,
    exposure: float = 1.0,
) -> npt.NDArray[np.float32]:
    """Tone map, gamma encode and clamp a linear image.

    Args:
        image: Linear HDR image array of shape (H, W, 3).
        tone_map: Tone mapping method ("none", "reinhard", or "exposure").
        gamma: Gamma correction value (default 2.2 for sRGB).
        exposure: Exposure value for exposure tone mapping.

    Returns:
        Processed image in [0, 1] range.

    Raises:
        ValueError: If the tone mapping method is unknown.
    """
    result = np.array(image, dtype=np.float32, copy=True)
    # Non-finite pixels display as black
    result[~np.isfinite(result)] = 0.0

    if tone_map == "reinhard":
        result = tone_map_reinhard(result)
    elif tone_map == "exposure":
        result = tone_map_exposure(result, exposure)
    elif tone_map != "none":
        raise ValueError(f"Unknown tone mapping method: {tone_map}")

    result = apply_gamma(result, gamma)
    return np.clip(result, 0.0, 1.0).astype(np.float32)


def show_preview(
    image: npt.NDArray[np.float32],
    *,
    tone_map: ToneMapMethod = "none",
    gamma: float = 2.2,
    exposure: float = 1.0,
    title: str | None = None,
    samples_per_pixel: int | None = None,
    figsize: tuple[float, float] = (8, 6),
    block: bool = True,
) -> None:
    """Display a linear image in a Matplotlib window.

    Args:
        image: Linear image array of shape (H, W, 3).
        tone_map: Tone mapping method.
        gamma: Gamma correction value.
        exposure: Exposure value for exposure tone mapping.
        title: Custom title. By default the sample count is shown when given.
        samples_per_pixel: Sample count for the default title.
        figsize: Figure size in inches.
        block: Whether to block until the figure is closed.
    """
    import matplotlib.pyplot as plt

    display_image = process_image_for_display(
        image, tone_map=tone_map, gamma=gamma, exposure=exposure
    )

    fig, ax = plt.subplots(1, 1, figsize=figsize)
    ax.imshow(display_image)
    ax.axis("off")

    if title is None:
        title = "Render Preview"
        if samples_per_pixel is not None:
            title += f" - {samples_per_pixel} SPP"
        if tone_map != "none":
            title += f" ({tone_map})"
    ax.set_title(title)

    plt.tight_layout()
    plt.show(block=block)
