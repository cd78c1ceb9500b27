"""Conversion of the accumulated linear image into files.

The renderer only produces a linear float32 radiance image. This module turns
it into something viewable:

    - tone mapping ("none", "reinhard" c / (1 + c), "exposure" 1 - exp(-k c))
    - gamma encoding (out = in^(1/gamma))
    - 8-bit PNG via Pillow
    - linear Radiance .hdr / OpenEXR via OpenCV

Example:
    >>> from pathtracer.preview.export import save_hdr, save_png
    >>> save_png(renderer.get_image_numpy(), "out.png", tone_map="reinhard")
    >>> save_hdr(renderer.get_image_numpy(), "out.hdr")
"""

import logging
import os
from pathlib import Path
from typing import Literal

import numpy as np
import numpy.typing as npt
from PIL import Image as PILImage

# OpenEXR encoding is disabled in OpenCV builds unless requested before import
os.environ.setdefault("OPENCV_IO_ENABLE_OPENEXR", "1")

import cv2  # noqa: E402

logger = logging.getLogger(__name__)

# Type alias for tone mapping options
ToneMapMethod = Literal["none", "reinhard", "exposure"]

HDR_EXTENSIONS = (".hdr", ".exr")


def tone_map_reinhard(image: npt.NDArray[np.float32]) -> npt.NDArray[np.float32]:
    """Compress radiance into [0, 1) with c / (1 + c), per channel."""
    image = np.maximum(image, 0.0)
    return (image / (1.0 + image)).astype(np.float32)


def tone_map_exposure(
    image: npt.NDArray[np.float32],
    exposure: float = 1.0,
) -> npt.NDArray[np.float32]:
    """Map radiance with 1 - exp(-c * exposure); larger exposure brightens."""
    image = np.maximum(image, 0.0)
    return (1.0 - np.exp(-image * exposure)).astype(np.float32)


def apply_gamma(
    image: npt.NDArray[np.float32],
    gamma: float = 2.2,
) -> npt.NDArray[np.float32]:
    """Gamma-encode an image in [0, 1].

    Values are clamped to [0, 1] first so that negative inputs cannot produce
    NaN. A gamma of 1.0 returns the image unchanged.
    """
    if gamma <= 0.0:
        raise ValueError(f"Gamma must be positive, got {gamma}")
    if gamma == 1.0:
        return image
    return np.power(np.clip(image, 0.0, 1.0), 1.0 / gamma).astype(np.float32)


def process_image_for_display(
    image: npt.NDArray[np.float32],
    tone_map: ToneMapMethod = "none",
    gamma: float = 2.2,
    exposure: float = 1.0,
) -> npt.NDArray[np.float32]:
    """Tone map, gamma-encode and clamp a linear image to [0, 1].

    Args:
        image: Linear image array of shape (H, W, 3).
        tone_map: Tone mapping method ("none", "reinhard", or "exposure").
        gamma: Gamma value (2.2 approximates sRGB).
        exposure: Exposure for the "exposure" operator.

    Returns:
        Display-ready image in [0, 1].

    Raises:
        ValueError: If the tone mapping method is unknown.
    """
    result = np.asarray(image, dtype=np.float32)
    if tone_map == "reinhard":
        result = tone_map_reinhard(result)
    elif tone_map == "exposure":
        result = tone_map_exposure(result, exposure)
    elif tone_map != "none":
        raise ValueError(f"Unknown tone mapping method: {tone_map}")

    result = apply_gamma(result, gamma)
    return np.clip(result, 0.0, 1.0).astype(np.float32)


def image_to_uint8(
    image: npt.NDArray[np.float32],
    *,
    tone_map: ToneMapMethod = "none",
    gamma: float = 2.2,
    exposure: float = 1.0,
) -> npt.NDArray[np.uint8]:
    """Convert a linear image to 8 bits per channel, rounding to nearest."""
    processed = process_image_for_display(image, tone_map=tone_map, gamma=gamma, exposure=exposure)
    return np.round(processed * 255.0).astype(np.uint8)


def save_png(
    image: npt.NDArray[np.float32],
    filepath: str | Path,
    *,
    tone_map: ToneMapMethod = "none",
    gamma: float = 2.2,
    exposure: float = 1.0,
) -> None:
    """Save a linear image as an 8-bit PNG.

    Args:
        image: Linear image of shape (H, W, 3), row 0 at the top (as returned
            by ProgressiveRenderer.get_image_numpy()).
        filepath: Output path.
        tone_map: Tone mapping method ("none", "reinhard", or "exposure").
        gamma: Gamma value (2.2 approximates sRGB).
        exposure: Exposure for the "exposure" operator.
    """
    image_uint8 = image_to_uint8(image, tone_map=tone_map, gamma=gamma, exposure=exposure)
    PILImage.fromarray(image_uint8).save(str(filepath))
    logger.info("Saved %s (%dx%d)", filepath, image_uint8.shape[1], image_uint8.shape[0])


def save_hdr(image: npt.NDArray[np.float32], filepath: str | Path) -> None:
    """Save a linear image without tone mapping as .hdr or .exr.

    Args:
        image: Linear image of shape (H, W, 3), row 0 at the top.
        filepath: Output path ending in .hdr or .exr.

    Raises:
        ValueError: If the extension is not supported.
        RuntimeError: If OpenCV fails to write the file.
    """
    filepath = Path(filepath)
    if filepath.suffix.lower() not in HDR_EXTENSIONS:
        raise ValueError(
            f"Unsupported HDR extension {filepath.suffix!r}, expected one of "
            f"{', '.join(HDR_EXTENSIONS)}"
        )
    bgr = cv2.cvtColor(np.asarray(image, dtype=np.float32), cv2.COLOR_RGB2BGR)
    if not cv2.imwrite(str(filepath), bgr):
        raise RuntimeError(f"Failed to write {filepath}")
    logger.info("Saved %s (%dx%d)", filepath, bgr.shape[1], bgr.shape[0])


def compute_rmse(
    image_a: npt.NDArray[np.floating],
    image_b: npt.NDArray[np.floating],
) -> float:
    """Root mean squared error between two images of the same shape.

    Raises:
        ValueError: If image shapes don't match.
    """
    if image_a.shape != image_b.shape:
        raise ValueError(f"Image shapes must match: {image_a.shape} vs {image_b.shape}")
    diff = image_a.astype(np.float64) - image_b.astype(np.float64)
    return float(np.sqrt(np.mean(diff**2)))
