"""Taichi-based Monte Carlo path tracer.

This package renders fully resolved scenes with unbiased path tracing:
- BVH-accelerated spheres and triangle meshes
- Thin-lens camera with depth of field
- Next-event estimation toward sphere lights, Russian roulette
- Lambertian, Mirror and Gloss materials, with Auto materials resolved from
  mesh vertex colours
- Flat, gradient and HDRI skyboxes

Subpackages:
    core: Ray utilities, random numbers, the integrator and render drivers
    geometry: Shape intersection, mesh preparation and the BVH
    materials: BRDF models and their device registries
    scene: Scene building, ray queries, lights and skyboxes
    camera: Thin-lens primary ray generation
    preview: Tone mapping, display and export of rendered buffers
"""

__version__ = "0.1.0"
