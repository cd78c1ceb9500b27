"""Point light used for next-event estimation.

The light's parameters live in Taichi fields so they can be edited between
passes without recompiling the render kernel. Radiance arriving at a point at
distance d is intensity * color / d^2.

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from pathtracer.scene.light import PointLight
    >>> light = PointLight(position=(0.0, 10.0, 0.0), intensity=100.0)
    >>> light.set(color=(1.0, 0.9, 0.8))
"""

import taichi as ti
import taichi.math as tm

vec3 = tm.vec3

DEFAULT_LIGHT_POSITION = (10.0, 40.0, 10.0)
DEFAULT_LIGHT_COLOR = (1.0, 1.0, 1.0)
DEFAULT_LIGHT_INTENSITY = 2500.0


@ti.data_oriented
class PointLight:
    """An isotropic point light.

    Attributes:
        position: Taichi field holding the world-space position.
        color: Taichi field holding the RGB color.
        intensity: Taichi field holding the intensity multiplier.
    """

    def __init__(
        self,
        position: tuple[float, float, float] = DEFAULT_LIGHT_POSITION,
        color: tuple[float, float, float] = DEFAULT_LIGHT_COLOR,
        intensity: float = DEFAULT_LIGHT_INTENSITY,
    ) -> None:
        self.position = ti.Vector.field(3, dtype=ti.f32, shape=())
        self.color = ti.Vector.field(3, dtype=ti.f32, shape=())
        self.intensity = ti.field(dtype=ti.f32, shape=())
        self.set(position=position, color=color, intensity=intensity)

    def set(
        self,
        position: tuple[float, float, float] | None = None,
        color: tuple[float, float, float] | None = None,
        intensity: float | None = None,
    ) -> None:
        """Update any subset of the light's parameters.

        Raises:
            ValueError: If a color component or the intensity is negative.
        """
        if color is not None and any(c < 0.0 for c in color):
            raise ValueError(f"Light color components must be non-negative, got {color}")
        if intensity is not None and intensity < 0.0:
            raise ValueError(f"Light intensity = {intensity} must be non-negative")

        if position is not None:
            self.position[None] = [position[0], position[1], position[2]]
        if color is not None:
            self.color[None] = [color[0], color[1], color[2]]
        if intensity is not None:
            self.intensity[None] = intensity

    def to_dict(self) -> dict[str, object]:
        """Export the light parameters (for JSON serialization)."""
        return {
            "position": self.position[None].to_numpy().tolist(),
            "color": self.color[None].to_numpy().tolist(),
            "intensity": float(self.intensity[None]),
        }

    @ti.func
    def radiance_at(self, point: vec3) -> vec3:
        """Unoccluded radiance arriving at a point."""
        to_light = self.position[None] - point
        return self.intensity[None] * self.color[None] / tm.dot(to_light, to_light)
