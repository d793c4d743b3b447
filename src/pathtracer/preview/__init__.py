"""Preview module for output and visualization.

Components:
    display: Tone mapping, gamma and a Matplotlib preview window
    export: PNG and raw radiance export

Example:
    >>> from src.pathtracer.core.render import render
    >>> from src.pathtracer.preview import save_png
    >>> image = render(scene, samples_per_pixel=64)
    >>> save_png(image, "output.png", tone_map="reinhard")
"""

from src.pathtracer.preview.display import (
    ToneMapMethod,
    apply_gamma,
    process_image_for_display,
    show_preview,
    tone_map_exposure,
    tone_map_reinhard,
)
from src.pathtracer.preview.export import compute_rmse, image_to_uint8, save_png, save_radiance

__all__ = [
    "show_preview",
    "tone_map_reinhard",
    "tone_map_exposure",
    "apply_gamma",
    "process_image_for_display",
    "ToneMapMethod",
    "save_png",
    "save_radiance",
    "image_to_uint8",
    "compute_rmse",
]
