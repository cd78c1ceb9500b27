"""Preview module for image output.

Features:
    - Tonemapping for HDR output (Reinhard, exposure-based)
    - Gamma-correct PNG export (sRGB approximation)
    - Linear .hdr / .exr export

Example:
    >>> from pathtracer.preview import save_png
    >>> save_png(renderer.get_image_numpy(), "output.png", tone_map="reinhard")
"""

from pathtracer.preview.export import (
    HDR_EXTENSIONS,
    ToneMapMethod,
    apply_gamma,
    compute_rmse,
    image_to_uint8,
    process_image_for_display,
    save_hdr,
    save_png,
    tone_map_exposure,
    tone_map_reinhard,
)

__all__ = [
    # Tone mapping
    "tone_map_reinhard",
    "tone_map_exposure",
    "apply_gamma",
    "process_image_for_display",
    "ToneMapMethod",
    # Export functions
    "save_png",
    "save_hdr",
    "image_to_uint8",
    "compute_rmse",
    "HDR_EXTENSIONS",
]
