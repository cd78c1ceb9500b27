"""Lambertian (ideal diffuse) BRDF node.

The Lambertian BRDF is constant over the upper hemisphere:
    f_r(wi, wo) = color / pi

Sampling is cosine-weighted about the shading normal, so the density is:
    pdf(wi) = cos(theta) / pi

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from pathtracer.core.sampling import RngPool
    >>> from pathtracer.materials.diffuse import Diffuse
    >>> diffuse = Diffuse(RngPool(size=16))
    >>> # Within a Taichi kernel:
    >>> # wi, weight, pdf = diffuse.sample(mat, wo, n, stream)
"""

import taichi as ti
import taichi.math as tm

from pathtracer.core.sampling import (
    cosine_sample_hemisphere,
    same_hemisphere,
    tangent_frame,
    to_world,
)

vec3 = tm.vec3


@ti.data_oriented
class Diffuse:
    """Diffuse BRDF tinted by the bound material's color.

    Attributes:
        rng: Random number streams used for sampling.
    """

    def __init__(self, rng) -> None:
        self.rng = rng

    @ti.func
    def evaluate(self, mat, wi: vec3, wo: vec3, n: vec3) -> vec3:
        """Evaluate the BRDF (without the cosine term).

        Args:
            mat: The bound SurfaceMaterial.
            wi: Incident direction, pointing away from the surface.
            wo: Outgoing direction, pointing away from the surface.
            n: Unit shading normal.

        Returns:
            color / pi, or zero when wi is below the surface or wi and wo lie
            on opposite sides.
        """
        result = vec3(0.0, 0.0, 0.0)
        if tm.dot(wi, n) > 0.0 and same_hemisphere(wi, wo, n):
            result = mat.color / tm.pi
        return result

    @ti.func
    def sample(self, mat, wo: vec3, n: vec3, stream: ti.i32):
        """Draw a cosine-weighted incident direction.

        Args:
            mat: The bound SurfaceMaterial.
            wo: Outgoing direction, pointing away from the surface.
            n: Unit shading normal.
            stream: RNG stream owned by the calling pixel task.

        Returns:
            A tuple of (wi, weight, pdf) where weight is the BRDF value for wi
            and pdf is max(0, n.wi) / pi, forced to zero below the surface.
        """
        tangent, bitangent = tangent_frame(n)
        u1 = self.rng.uniform(stream)
        u2 = self.rng.uniform(stream)
        local_dir = cosine_sample_hemisphere(u1, u2)
        wi = tm.normalize(to_world(local_dir, tangent, bitangent, n))

        pdf = 0.0
        if tm.dot(wi, n) > 0.0:
            pdf = tm.max(0.0, tm.dot(n, wi)) / tm.pi

        return wi, self.evaluate(mat, wi, wo, n), pdf
