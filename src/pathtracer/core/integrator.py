"""Path tracing integrator for Monte Carlo light transport.

The integrator estimates the radiance leaving a surface toward the camera by
walking one path through the scene. At every bounce it:

    1. resolves the hit and binds the hit material to the BRDF tree,
    2. adds direct light from the point light if the shadow ray is clear,
    3. adds the material's emission,
    4. samples the BRDF tree for the next direction,
    5. updates the path throughput by weight * |cos| / pdf,
    6. traces the next ray, picking up environment light if it escapes.

The walk ends when the pdf is too small, the throughput is exactly zero, the
next ray escapes, or the bounce budget runs out. There is no Russian roulette;
the bounce budget is the only length control.

Secondary rays start at the hit point pushed along the shading normal by
``ray_epsilon``. This is a numerical fix bounding how far the shading normal
may diverge from the true surface, not a physical quantity.

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from pathtracer.core.integrator import PathIntegrator
    >>> from pathtracer.core.sampling import RngPool
    >>> from pathtracer.scene.environment import EnvironmentMap
    >>> integrator = PathIntegrator(RngPool(64 * 64), EnvironmentMap.constant((0.5, 0.5, 0.5)))
    >>> # Within a Taichi kernel:
    >>> # color = integrator.shade(primary_ray, max_bounces, stream)
"""

import taichi as ti
import taichi.math as tm

from pathtracer.core.ray import is_black, make_ray, make_segment, offset_origin
from pathtracer.core.settings import DEFAULT_RAY_EPSILON
from pathtracer.materials.registry import get_material
from pathtracer.materials.tree import build_material_brdf
from pathtracer.scene.intersection import intersect, occluded, resolve_intersection
from pathtracer.scene.light import PointLight

vec3 = tm.vec3

# Sampled directions with a smaller pdf end the path
PDF_EPSILON = 1e-4


@ti.data_oriented
class PathIntegrator:
    """Unidirectional path tracer over the registered scene.

    Attributes:
        rng: Random number streams shared by the BRDF tree and the driver.
        brdf: Root node of the BRDF tree.
        environment: EnvironmentMap lighting escaped rays.
        light: PointLight used for direct lighting.
        ray_epsilon: Taichi scalar field holding the self-intersection offset.
    """

    def __init__(
        self,
        rng,
        environment,
        light: PointLight | None = None,
        brdf=None,
        ray_epsilon: float = DEFAULT_RAY_EPSILON,
    ) -> None:
        """Create an integrator.

        Args:
            rng: RngPool with at least one stream per pixel task.
            environment: EnvironmentMap for escaped rays.
            light: Point light. Defaults to a PointLight with default settings.
            brdf: Root BRDF node. Defaults to build_material_brdf(rng).
            ray_epsilon: Self-intersection offset, positive.

        Raises:
            ValueError: If ray_epsilon is not positive.
        """
        self.rng = rng
        self.environment = environment
        self.light = light if light is not None else PointLight()
        self.brdf = brdf if brdf is not None else build_material_brdf(rng)
        self.ray_epsilon = ti.field(dtype=ti.f32, shape=())
        self.set_ray_epsilon(ray_epsilon)

    def set_ray_epsilon(self, ray_epsilon: float) -> None:
        """Set the self-intersection offset.

        Raises:
            ValueError: If ray_epsilon is not positive.
        """
        if ray_epsilon <= 0.0:
            raise ValueError(f"ray_epsilon must be positive, got {ray_epsilon}")
        self.ray_epsilon[None] = ray_epsilon

    @ti.func
    def direct_light(self, mat, position: vec3, wo: vec3, n: vec3) -> vec3:
        """Unshadowed-if-visible contribution of the point light.

        The shadow ray runs from the offset hit point to the light position,
        so geometry behind the light does not occlude it.
        """
        result = vec3(0.0, 0.0, 0.0)
        light_pos = self.light.position[None]
        origin = offset_origin(position, n, self.ray_epsilon[None])
        to_light = light_pos - origin
        distance = tm.length(to_light)
        if distance > 0.0:
            shadow_ray = make_segment(origin, to_light / distance, 0.0, distance)
            if occluded(shadow_ray) == 0:
                wi = tm.normalize(light_pos - position)
                result = (
                    self.brdf.evaluate(mat, wi, wo, n)
                    * self.light.radiance_at(position)
                    * tm.max(0.0, tm.dot(wi, n))
                )
        return result

    @ti.func
    def Li(self, ray, max_bounces: ti.i32, stream: ti.i32) -> vec3:
        """Estimate the radiance leaving a hit point toward the ray origin.

        Args:
            ray: A ray for which intersect() returned 1.
            max_bounces: Maximum number of surface interactions.
            stream: RNG stream owned by the calling pixel task.

        Returns:
            The radiance estimate. Zero when max_bounces is zero.
        """
        L = vec3(0.0, 0.0, 0.0)
        beta = vec3(1.0, 1.0, 1.0)
        current = ray

        # Active flag for path continuation (no early return from ti.func loops)
        active = 1
        for _ in range(max_bounces):
            if active == 1:
                hit = resolve_intersection(current)
                mat = get_material(hit.material_id)
                n = hit.shading_normal

                L += beta * self.direct_light(mat, hit.position, hit.wo, n)
                L += beta * mat.emission * mat.color

                wi, weight, pdf = self.brdf.sample(mat, hit.wo, n, stream)
                if pdf < PDF_EPSILON:
                    active = 0
                else:
                    beta = beta * weight * ti.abs(tm.dot(wi, n)) / pdf
                    if is_black(beta):
                        active = 0
                    else:
                        origin = offset_origin(hit.position, n, self.ray_epsilon[None])
                        current = make_ray(origin, wi)
                        if intersect(current) == 0:
                            L += beta * self.environment.radiance(wi)
                            active = 0
        return L

    @ti.func
    def shade(self, ray, max_bounces: ti.i32, stream: ti.i32) -> vec3:
        """Radiance along a primary ray.

        Rays that hit geometry go through Li; rays that miss see the
        environment directly.
        """
        color = vec3(0.0, 0.0, 0.0)
        if intersect(ray):
            color = self.Li(ray, max_bounces, stream)
        else:
            color = self.environment.radiance(ray.direction)
        return color
