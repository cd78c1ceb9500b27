"""Equirectangular environment map lighting.

Rays that leave the scene pick up radiance from an HDR image wrapped around
the scene. A unit direction maps to texture coordinates as

    theta = acos(clamp(dir.y, -1, 1))       polar angle from +Y
    phi   = atan2(dir.z, dir.x) in [0, 2 pi)
    (u, v) = (phi / 2 pi, theta / pi)

so row 0 of the image is the sky straight up. Lookups wrap around on both
axes, and the result is scaled by a global intensity multiplier that can be
changed between passes.

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from pathtracer.scene.environment import load_environment_map
    >>> env = load_environment_map("envmaps/sky.hdr", multiplier=1.0)
    >>> # Within a Taichi kernel:
    >>> # radiance = env.radiance(direction)
"""

import logging
import os
from pathlib import Path

import numpy as np
import numpy.typing as npt
import taichi as ti
import taichi.math as tm

# OpenEXR decoding is disabled in OpenCV builds unless requested before import
os.environ.setdefault("OPENCV_IO_ENABLE_OPENEXR", "1")

import cv2  # noqa: E402

logger = logging.getLogger(__name__)

vec3 = tm.vec3

FILTERING_MODES = ("nearest", "bilinear")


class EnvironmentMapError(RuntimeError):
    """Raised when an environment map cannot be loaded."""


@ti.data_oriented
class EnvironmentMap:
    """HDR environment stored as a (height, width) field of linear RGB texels.

    Attributes:
        width: Image width in texels.
        height: Image height in texels.
        filtering: "nearest" or "bilinear".
        texels: Taichi vector field of shape (height, width).
        multiplier: Taichi scalar field holding the intensity multiplier.
    """

    def __init__(
        self,
        texels: npt.ArrayLike,
        multiplier: float = 1.0,
        filtering: str = "nearest",
    ) -> None:
        """Upload an image as an environment map.

        Args:
            texels: Linear RGB image of shape (height, width, 3), row 0 at the
                top.
            multiplier: Intensity multiplier, non-negative.
            filtering: "nearest" or "bilinear".

        Raises:
            ValueError: If the image shape, multiplier or filtering is invalid.
        """
        data = np.ascontiguousarray(texels, dtype=np.float32)
        if data.ndim != 3 or data.shape[2] != 3 or data.shape[0] == 0 or data.shape[1] == 0:
            raise ValueError(f"Environment texels must have shape (h, w, 3), got {data.shape}")
        if filtering not in FILTERING_MODES:
            raise ValueError(
                f"Unknown filtering {filtering!r}, expected one of {', '.join(FILTERING_MODES)}"
            )

        self.height, self.width = int(data.shape[0]), int(data.shape[1])
        self.filtering = filtering
        self.bilinear = filtering == "bilinear"
        self.texels = ti.Vector.field(3, dtype=ti.f32, shape=(self.height, self.width))
        self.texels.from_numpy(data)
        self.multiplier = ti.field(dtype=ti.f32, shape=())
        self.set_multiplier(multiplier)

    @classmethod
    def from_array(
        cls, texels: npt.ArrayLike, multiplier: float = 1.0, filtering: str = "nearest"
    ) -> "EnvironmentMap":
        """Create an environment map from an in-memory image."""
        return cls(texels, multiplier=multiplier, filtering=filtering)

    @classmethod
    def constant(
        cls, color: tuple[float, float, float], multiplier: float = 1.0
    ) -> "EnvironmentMap":
        """Create an environment that returns the same radiance in every direction."""
        texels = np.array(color, dtype=np.float32).reshape(1, 1, 3)
        return cls(texels, multiplier=multiplier)

    def get_multiplier(self) -> float:
        """Get the intensity multiplier."""
        return float(self.multiplier[None])

    def set_multiplier(self, multiplier: float) -> None:
        """Set the intensity multiplier.

        Raises:
            ValueError: If multiplier is negative.
        """
        if multiplier < 0.0:
            raise ValueError(f"Environment multiplier = {multiplier} must be non-negative")
        self.multiplier[None] = multiplier

    @ti.func
    def _fetch(self, x: ti.i32, y: ti.i32) -> vec3:
        """Read one texel with wrap-around addressing."""
        return self.texels[y % self.height, x % self.width]

    @ti.func
    def sample(self, u: ti.f32, v: ti.f32) -> vec3:
        """Look up the image at texture coordinates (u, v).

        Coordinates outside [0, 1) wrap around rather than clamp.

        Args:
            u: Horizontal coordinate, 0 at the left edge.
            v: Vertical coordinate, 0 at the top edge.

        Returns:
            The unscaled texel value (nearest) or the bilinear blend of the
            four surrounding texel centres.
        """
        result = vec3(0.0, 0.0, 0.0)
        if ti.static(self.bilinear):
            x = u * self.width - 0.5
            y = v * self.height - 0.5
            x0 = ti.cast(tm.floor(x), ti.i32)
            y0 = ti.cast(tm.floor(y), ti.i32)
            fx = x - x0
            fy = y - y0
            top = (1.0 - fx) * self._fetch(x0, y0) + fx * self._fetch(x0 + 1, y0)
            bottom = (1.0 - fx) * self._fetch(x0, y0 + 1) + fx * self._fetch(x0 + 1, y0 + 1)
            result = (1.0 - fy) * top + fy * bottom
        else:
            x = ti.cast(tm.floor(u * self.width), ti.i32)
            y = ti.cast(tm.floor(v * self.height), ti.i32)
            result = self._fetch(x, y)
        return result

    @ti.func
    def radiance(self, direction: vec3) -> vec3:
        """Radiance arriving from a direction.

        Args:
            direction: Unit direction pointing away from the scene.

        Returns:
            multiplier * sample(phi / 2 pi, theta / pi).
        """
        theta = ti.acos(tm.clamp(direction.y, -1.0, 1.0))
        phi = tm.atan2(direction.z, direction.x)
        if phi < 0.0:
            phi += 2.0 * tm.pi
        return self.multiplier[None] * self.sample(phi / (2.0 * tm.pi), theta / tm.pi)

    def __repr__(self) -> str:
        return (
            f"EnvironmentMap(width={self.width}, height={self.height}, "
            f"filtering={self.filtering!r}, multiplier={self.get_multiplier()})"
        )


def read_hdr_image(path: str | Path) -> npt.NDArray[np.float32]:
    """Read a Radiance .hdr or OpenEXR image as linear RGB float32.

    Args:
        path: Path to the image.

    Returns:
        Array of shape (height, width, 3), row 0 at the top.

    Raises:
        EnvironmentMapError: If the file is missing or cannot be decoded.
    """
    path = Path(path)
    if not path.is_file():
        raise EnvironmentMapError(f"Environment map not found: {path}")

    data = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    if data is None:
        raise EnvironmentMapError(f"Failed to decode environment map: {path}")
    if data.ndim == 2:
        data = cv2.cvtColor(data, cv2.COLOR_GRAY2BGR)
    elif data.shape[2] == 4:
        data = cv2.cvtColor(data, cv2.COLOR_BGRA2BGR)
    scale = 1.0
    if np.issubdtype(data.dtype, np.integer):
        scale = 1.0 / np.iinfo(data.dtype).max
    return cv2.cvtColor(data.astype("f4") * np.float32(scale), cv2.COLOR_BGR2RGB)


def load_environment_map(
    path: str | Path,
    multiplier: float = 1.0,
    filtering: str = "nearest",
) -> EnvironmentMap:
    """Load an HDR image from disk as an environment map.

    Args:
        path: Path to a .hdr or .exr image.
        multiplier: Intensity multiplier.
        filtering: "nearest" or "bilinear".

    Returns:
        The uploaded environment map.

    Raises:
        EnvironmentMapError: If the file is missing or cannot be decoded.
    """
    texels = read_hdr_image(path)
    env = EnvironmentMap(texels, multiplier=multiplier, filtering=filtering)
    logger.info("Loaded environment map %s (%dx%d)", path, env.width, env.height)
    return env
