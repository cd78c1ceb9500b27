"""Stochastic linear blend of two BRDF nodes.

    f = w f_A + (1 - w) f_B

Sampling delegates to A with probability w and to B otherwise, returning the
chosen node's pdf as is. The pdf is deliberately not divided by the selection
probability.

The blend weight is a Taichi function of the bound material, so one tree can
serve every material in the scene.

Example:
    >>> from pathtracer.materials.blend import LinearBlend, metalness_weight
    >>> blend = LinearBlend(rng, metalness_weight, metal, dielectric)
"""

import taichi as ti
import taichi.math as tm

vec3 = tm.vec3


@ti.func
def metalness_weight(mat) -> ti.f32:
    """Blend weight taken from the material's metalness."""
    return mat.metalness


@ti.func
def reflectivity_weight(mat) -> ti.f32:
    """Blend weight taken from the material's reflectivity."""
    return mat.reflectivity


def constant_weight(value: float):
    """Create a blend weight that ignores the material.

    Args:
        value: The weight, in [0, 1].

    Returns:
        A Taichi function of the material returning ``value``.

    Raises:
        ValueError: If value is outside [0, 1].
    """
    if value < 0.0 or value > 1.0:
        raise ValueError(f"Blend weight = {value} is outside [0, 1]")

    @ti.func
    def weight(mat) -> ti.f32:
        return value

    return weight


@ti.data_oriented
class LinearBlend:
    """Mix of two BRDF nodes.

    Attributes:
        rng: Random number streams used to choose a branch.
        weight: Taichi function mapping the bound material to w.
        first: Node weighted by w.
        second: Node weighted by 1 - w.
    """

    def __init__(self, rng, weight, first, second) -> None:
        self.rng = rng
        self.weight = weight
        self.first = first
        self.second = second

    @ti.func
    def evaluate(self, mat, wi: vec3, wo: vec3, n: vec3) -> vec3:
        w = self.weight(mat)
        return w * self.first.evaluate(mat, wi, wo, n) + (1.0 - w) * self.second.evaluate(
            mat, wi, wo, n
        )

    @ti.func
    def sample(self, mat, wo: vec3, n: vec3, stream: ti.i32):
        """Delegate sampling to one node, chosen with probability w.

        Returns:
            The chosen node's (wi, weight, pdf), unscaled.
        """
        wi = n
        weight = vec3(0.0, 0.0, 0.0)
        pdf = 0.0
        if self.rng.uniform(stream) < self.weight(mat):
            first_wi, first_weight, first_pdf = self.first.sample(mat, wo, n, stream)
            wi = first_wi
            weight = first_weight
            pdf = first_pdf
        else:
            second_wi, second_weight, second_pdf = self.second.sample(mat, wo, n, stream)
            wi = second_wi
            weight = second_weight
            pdf = second_pdf
        return wi, weight, pdf
