#!/usr/bin/env python3
"""Render a small depth-of-field demo scene.

Three spheres (mirror, red gloss, blue rough gloss) stand on a large diffuse
ground sphere next to a vertex-coloured tetrahedron, lit by one sphere light
under a gradient sky. The camera focuses on the middle row so the mirror
sphere in the distance blurs.

Usage:
    python -m examples.render_spheres [options]

Options:
    --width WIDTH       Image width in pixels (default: 480)
    --height HEIGHT     Image height in pixels (default: 320)
    --samples SAMPLES   Number of samples per pixel (default: 64)
    --batch-size SIZE   Samples per progress update (default: 8)
    --aperture F        Lens f-number, 0 for a pinhole (default: 2.0)
    --seed SEED         Render seed (default: 0)
    --output OUTPUT     Output file path (default: spheres.png)
    --cpu               Force the CPU backend
    --verbose           Enable debug logging

Example:
    python -m examples.render_spheres --width 240 --height 160 --samples 16
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

import taichi as ti

logger = logging.getLogger("render_spheres")


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Render the depth-of-field demo scene.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--width", type=int, default=480, help="Image width in pixels (default: 480)")
    parser.add_argument("--height", type=int, default=320, help="Image height in pixels (default: 320)")
    parser.add_argument("--samples", type=int, default=64, help="Samples per pixel (default: 64)")
    parser.add_argument("--batch-size", type=int, default=8, help="Samples per progress update (default: 8)")
    parser.add_argument("--aperture", type=float, default=2.0, help="Lens f-number, 0 for a pinhole")
    parser.add_argument("--seed", type=int, default=0, help="Render seed (default: 0)")
    parser.add_argument("--output", type=str, default="spheres.png", help="Output file path")
    parser.add_argument("--cpu", action="store_true", help="Force the CPU backend")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args()


def build_scene(width: int, height: int, aperture: float):
    """Assemble the demo scene."""
    # Lazy imports to allow Taichi initialization first
    from src.pathtracer.camera.thin_lens import ThinLensCamera
    from src.pathtracer.geometry.mesh import Mesh
    from src.pathtracer.scene.lights import SphereLight
    from src.pathtracer.scene.manager import AutoMaterial, SceneManager
    from src.pathtracer.scene.skybox import GradientSkybox

    builder = SceneManager()
    ground = builder.add_lambertian_material(albedo=(0.6, 0.6, 0.55))
    mirror = builder.add_mirror_material()
    red = builder.add_gloss_material(albedo=(0.8, 0.3, 0.3), reflectance=1.5)
    blue = builder.add_gloss_material(albedo=(0.3, 0.3, 0.8), reflectance=0.05, roughness=0.3)

    builder.add_sphere((0.0, -1000.0, 0.0), 1000.0, ground)
    builder.add_sphere((0.0, 2.0, 30.0), 2.0, mirror)
    builder.add_sphere((3.0, 2.0, 0.0), 2.0, red)
    builder.add_sphere((-3.0, 2.0, 0.0), 2.0, blue)

    tetrahedron = Mesh(
        vertices=[(0.0, 0.0, 0.0), (1.0, 0.0, 0.0), (0.5, 0.0, 0.9), (0.5, 0.8, 0.3)],
        faces=[(0, 2, 1), (0, 1, 3), (1, 2, 3), (2, 0, 3)],
        colours=[(0.9, 0.2, 0.2), (0.2, 0.9, 0.2), (0.2, 0.2, 0.9), (0.9, 0.9, 0.9)],
        translation=(-0.2, 0.0, -4.0),
        rotation=(0.0, 30.0, 0.0),
        scale=1.5,
    )
    builder.add_mesh(tetrahedron, AutoMaterial())

    builder.add_light(SphereLight(center=(-6.0, 12.0, -8.0), radius=1.5, intensity=20.0))
    builder.set_skybox(GradientSkybox(horizon=(0.7, 0.85, 0.9), overhead=(0.5, 0.8, 0.9)))
    builder.set_camera(
        ThinLensCamera(
            image_width=width,
            image_height=height,
            location=(0.0, 2.0, -15.0),
            sensor_width=0.036,
            sensor_height=0.036 * height / width,
            focal_length=0.05,
            focus_distance=15.0,
            aperture=aperture,
        )
    )
    return builder.build()


def main() -> int:
    """Main entry point."""
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Taichi falls back to the CPU when no GPU backend is available
    ti.init(arch=ti.cpu if args.cpu else ti.gpu)

    from src.pathtracer.core.integrator import RenderSettings
    from src.pathtracer.core.progressive import ProgressiveRenderer
    from src.pathtracer.preview.export import save_png

    try:
        scene = build_scene(args.width, args.height, args.aperture)
        settings = RenderSettings(samples_per_pixel=args.samples, seed=args.seed)
    except (ValueError, RuntimeError) as e:
        logger.error("Could not build scene: %s", e)
        return 1

    renderer = ProgressiveRenderer(scene, settings)
    start_time = time.time()

    def progress_callback(current: int, target: int) -> None:
        elapsed = time.time() - start_time
        rate = current / elapsed if elapsed > 0 else 0.0
        logger.info("Progress: %d/%d samples (%.1f spp/s)", current, target, rate)

    renderer.render(num_samples=args.samples, batch_size=args.batch_size, callback=progress_callback)

    output_file = Path(args.output)
    save_png(renderer.get_image_numpy(), output_file, tone_map="reinhard", gamma=2.2)
    logger.info("Saved to %s in %.2fs", output_file.absolute(), time.time() - start_time)
    return 0


if __name__ == "__main__":
    sys.exit(main())
