"""Render settings shared by the integrator and the progressive driver.

Settings are validated on construction so that out-of-range values never
reach a render pass. Changing any of them through the renderer restarts
accumulation.

Example:
    >>> from pathtracer.core.settings import Settings
    >>> settings = Settings(max_bounces=4, subsampling=2)
    >>> settings.to_dict()["max_bounces"]
    4
"""

from dataclasses import asdict, dataclass, fields
from typing import Any

# Defaults of the interactive renderer this package replaces
DEFAULT_MAX_BOUNCES = 8
DEFAULT_RAY_EPSILON = 1e-4


@dataclass
class Settings:
    """Configuration of a progressive render.

    Attributes:
        max_bounces: Maximum number of surface interactions per path. Zero
            renders black for every pixel that hits geometry.
        max_paths_per_pixel: Stop accumulating once this many passes have been
            blended in. Zero means unbounded.
        subsampling: Integer divisor applied to the window size to get the
            render resolution.
        jitter: Offset primary rays by a uniform random amount inside the
            pixel instead of shooting through the pixel centre.
        ray_epsilon: Distance secondary rays are pushed off the surface along
            the shading normal.
    """

    max_bounces: int = DEFAULT_MAX_BOUNCES
    max_paths_per_pixel: int = 0
    subsampling: int = 1
    jitter: bool = True
    ray_epsilon: float = DEFAULT_RAY_EPSILON

    def __post_init__(self) -> None:
        """Validate settings.

        Raises:
            ValueError: If any value is out of range.
        """
        if self.max_bounces < 0:
            raise ValueError(f"max_bounces must be non-negative, got {self.max_bounces}")
        if self.max_paths_per_pixel < 0:
            raise ValueError(
                f"max_paths_per_pixel must be non-negative (0 = unbounded), "
                f"got {self.max_paths_per_pixel}"
            )
        if self.subsampling < 1:
            raise ValueError(f"subsampling must be at least 1, got {self.subsampling}")
        if self.ray_epsilon <= 0.0:
            raise ValueError(f"ray_epsilon must be positive, got {self.ray_epsilon}")

    def to_dict(self) -> dict[str, Any]:
        """Export the settings to a dictionary (for JSON serialization)."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Settings":
        """Create settings from a dictionary.

        Missing keys take their defaults.

        Args:
            data: Dictionary as produced by to_dict().

        Returns:
            The validated settings.

        Raises:
            ValueError: If a key is unknown or a value is out of range.
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")
        return cls(**data)
