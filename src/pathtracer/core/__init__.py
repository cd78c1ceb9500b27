"""Core rendering module.

Components:
    ray: Ray structure and small vector helpers
    sampling: Per-pixel random streams and hemisphere sampling
    settings: Render settings shared by the driver and the integrator
    integrator: Path tracing of one ray
    progressive: Running-average image and the pass loop

Note: integrator and progressive are NOT imported here since they pull in the
materials and scene packages. Import them directly:
    from pathtracer.core.progressive import create_renderer
"""

from .ray import (
    INVALID_ID,
    T_FAR,
    Ray,
    is_black,
    make_ray,
    make_segment,
    offset_origin,
    ray_at,
    reflect_about,
)
from .sampling import (
    RngPool,
    concentric_sample_disk,
    cosine_sample_hemisphere,
    perpendicular,
    same_hemisphere,
    tangent_frame,
    to_world,
)
from .settings import DEFAULT_MAX_BOUNCES, DEFAULT_RAY_EPSILON, Settings

__all__ = [
    "Ray",
    "INVALID_ID",
    "T_FAR",
    "make_ray",
    "make_segment",
    "ray_at",
    "offset_origin",
    "reflect_about",
    "is_black",
    "RngPool",
    "concentric_sample_disk",
    "cosine_sample_hemisphere",
    "perpendicular",
    "tangent_frame",
    "to_world",
    "same_hemisphere",
    "Settings",
    "DEFAULT_MAX_BOUNCES",
    "DEFAULT_RAY_EPSILON",
]
