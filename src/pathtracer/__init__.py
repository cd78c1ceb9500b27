"""Progressive Monte Carlo path tracer built on Taichi.

This package renders triangle-mesh scenes lit by a point light and an
environment map, accumulating one path per pixel per pass into a running
average image:
- Unidirectional path tracing with next event estimation toward the point light
- A fixed BRDF tree blending diffuse, Blinn-Phong dielectric and metal lobes
- Triangle meshes with per-geometry bounding boxes
- Progressive accumulation that restarts whenever the image would change

Subpackages:
    core: Rays, random streams, settings, the integrator and the pass driver
    materials: Material registry and BRDF nodes
    scene: Geometry storage, intersection, lights and environment maps
    camera: View and projection matrices
    preview: Tone mapping and image export
"""

__version__ = "0.1.0"
