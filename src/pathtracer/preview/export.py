"""Image export utilities for rendered images.

Supported formats:
    - PNG (8-bit sRGB via Pillow)
    - NPY (linear float32 radiance via NumPy)

Example:
    >>> from src.pathtracer.core.render import render
    >>> from src.pathtracer.preview.export import save_png
    >>> image = render(scene, samples_per_pixel=64)
    >>> save_png(image, "output.png", tone_map="reinhard")
"""

from __future__ import annotations

from pathlib import Path

import numpy as np
import numpy.typing as npt
from PIL import Image as PILImage

from src.pathtracer.preview.display import ToneMapMethod, process_image_for_display


def image_to_uint8(
    image: npt.NDArray[np.float32],
    *,
    tone_map: ToneMapMethod = "none",
    gamma: float = 2.2,
    exposure: float = 1.0,
) -> npt.NDArray[np.uint8]:
    """Convert a linear float32 image to uint8 for display/export.

    Returns:
        8-bit image array of shape (H, W, 3).
    """
    processed = process_image_for_display(
        image,
        tone_map=tone_map,
        gamma=gamma,
        exposure=exposure,
    )
    return np.round(processed * 255.0).astype(np.uint8)


def save_png(
    image: npt.NDArray[np.float32],
    filepath: str | Path,
    *,
    tone_map: ToneMapMethod = "none",
    gamma: float = 2.2,
    exposure: float = 1.0,
) -> None:
    """Save a linear image as an 8-bit sRGB PNG.

    Args:
        image: Linear HDR image array of shape (H, W, 3).
        filepath: Output file path (should end in .png).
        tone_map: Tone mapping method ("none", "reinhard", or "exposure").
        gamma: Gamma correction value (default 2.2 for sRGB).
        exposure: Exposure value for exposure tone mapping.

    Raises:
        ValueError: If the image is not of shape (H, W, 3).
    """
    if image.ndim != 3 or image.shape[2] != 3:
        raise ValueError(f"Expected an image of shape (H, W, 3), got {image.shape}")
    image_uint8 = image_to_uint8(image, tone_map=tone_map, gamma=gamma, exposure=exposure)
    PILImage.fromarray(image_uint8).save(filepath)


def save_radiance(image: npt.NDArray[np.float32], filepath: str | Path) -> None:
    """Save the linear, unclamped radiance buffer as a .npy file."""
    np.save(filepath, np.asarray(image, dtype=np.float32))


def compute_rmse(
    image_a: npt.NDArray[np.floating],
    image_b: npt.NDArray[np.floating],
) -> float:
    """Root mean squared error between two images.

    Raises:
        ValueError: If image shapes don't match.
    """
    if image_a.shape != image_b.shape:
        raise ValueError(f"Image shapes must match: {image_a.shape} vs {image_b.shape}")
    diff = image_a.astype(np.float64) - image_b.astype(np.float64)
    return float(np.sqrt(np.mean(diff**2)))
