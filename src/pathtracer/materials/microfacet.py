"""Blinn-Phong microfacet BRDF nodes for dielectric and metallic surfaces.

The reflection lobe is shared by both nodes and lives in free functions:

    wh = normalize(wi + wo)
    F  = R0 + (1 - R0) (1 - |wh.wi|)^5                         (Schlick)
    D  = (s + 2) / (2 pi) (n.wh)^s                             (Blinn-Phong)
    G  = min(1, 2 (n.wh)(n.wo) / (wo.wh), 2 (n.wh)(n.wi) / (wo.wh))
    f  = F D G / (4 (n.wo)(n.wi))

where s is the material's shininess and R0 its Fresnel reflectance at normal
incidence.

A dielectric layers an optional refraction node (normally Diffuse) under the
glossy coat, weighted by the energy the coat does not reflect:

    f_dielectric = f + (1 - F) f_refraction

A metal tints the lobe by the material color and has no refraction layer.

Sampling picks the reflection or the refraction branch with probability 1/2
each and halves the returned pdf. The reflection branch draws a half vector
with density (s + 1) / (2 pi) (n.wh)^s and mirrors wo about it, converting the
density to the incident-direction measure with the 1 / (4 wo.wh) Jacobian.

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from pathtracer.core.sampling import RngPool
    >>> from pathtracer.materials.diffuse import Diffuse
    >>> from pathtracer.materials.microfacet import MicrofacetDielectric
    >>> rng = RngPool(size=16)
    >>> coat = MicrofacetDielectric(rng, refraction_layer=Diffuse(rng))
    >>> # Within a Taichi kernel:
    >>> # wi, weight, pdf = coat.sample(mat, wo, n, stream)
"""

import taichi as ti
import taichi.math as tm

from pathtracer.core.ray import reflect_about
from pathtracer.core.sampling import tangent_frame, to_world

vec3 = tm.vec3

# Below this length wi + wo has no usable half vector
_HALF_VECTOR_EPSILON = 1e-8


@ti.func
def schlick_fresnel(r0: ti.f32, cos_theta: ti.f32) -> ti.f32:
    """Schlick's approximation of the Fresnel reflectance."""
    return r0 + (1.0 - r0) * tm.pow(1.0 - cos_theta, 5.0)


@ti.func
def blinn_phong_reflection(shininess: ti.f32, r0: ti.f32, wi: vec3, wo: vec3, n: vec3) -> ti.f32:
    """Evaluate the untinted Blinn-Phong reflection lobe.

    Args:
        shininess: Blinn-Phong exponent.
        r0: Fresnel reflectance at normal incidence.
        wi: Incident direction, pointing away from the surface.
        wo: Outgoing direction, pointing away from the surface.
        n: Unit shading normal.

    Returns:
        F D G / (4 (n.wo)(n.wi)), or zero when wi or wo is below the surface
        or wi + wo is degenerate.
    """
    result = 0.0
    n_wi = tm.dot(n, wi)
    n_wo = tm.dot(n, wo)
    half = wi + wo
    if n_wi > 0.0 and n_wo > 0.0 and tm.length(half) > _HALF_VECTOR_EPSILON:
        wh = tm.normalize(half)
        n_wh = tm.dot(n, wh)
        wo_wh = tm.dot(wo, wh)

        fresnel = schlick_fresnel(r0, ti.abs(tm.dot(wh, wi)))
        distribution = (shininess + 2.0) / (2.0 * tm.pi) * tm.pow(n_wh, shininess)
        shadowing = tm.min(
            1.0, tm.min(2.0 * n_wh * n_wo / wo_wh, 2.0 * n_wh * n_wi / wo_wh)
        )
        result = fresnel * distribution * shadowing / (4.0 * n_wo * n_wi)
    return result


@ti.func
def sample_blinn_phong_half_vector(shininess: ti.f32, n: vec3, u1: ti.f32, u2: ti.f32) -> vec3:
    """Draw a microfacet normal about n from the Blinn-Phong distribution.

    Args:
        shininess: Blinn-Phong exponent.
        n: Unit shading normal.
        u1: Uniform variate mapped to the azimuth.
        u2: Uniform variate mapped to cos(theta_h) = u2^(1 / (s + 1)).

    Returns:
        The unit half vector in world space.
    """
    tangent, bitangent = tangent_frame(n)
    phi = 2.0 * tm.pi * u1
    cos_theta = tm.pow(u2, 1.0 / (shininess + 1.0))
    sin_theta = ti.sqrt(tm.max(0.0, 1.0 - cos_theta * cos_theta))
    local_dir = vec3(sin_theta * ti.cos(phi), sin_theta * ti.sin(phi), cos_theta)
    return tm.normalize(to_world(local_dir, tangent, bitangent, n))


@ti.func
def blinn_phong_half_vector_pdf(shininess: ti.f32, n: vec3, wh: vec3) -> ti.f32:
    """Density of sample_blinn_phong_half_vector, in half-vector measure."""
    return (shininess + 1.0) * tm.pow(tm.dot(n, wh), shininess) / (2.0 * tm.pi)


@ti.func
def _sample_reflection(shininess: ti.f32, wo: vec3, n: vec3, wh: vec3):
    """Mirror wo about a sampled half vector.

    Returns:
        A tuple of (wi, pdf) with pdf in incident-direction measure, not yet
        halved for the branch choice. The pdf is zero when wo faces away from
        the microfacet.
    """
    wi = tm.normalize(reflect_about(wo, wh))
    wo_wh = tm.dot(wo, wh)
    pdf = 0.0
    if wo_wh > 0.0:
        pdf = blinn_phong_half_vector_pdf(shininess, n, wh) / (4.0 * wo_wh)
    return wi, pdf


@ti.data_oriented
class MicrofacetDielectric:
    """Glossy dielectric coat with an optional refraction layer below it.

    Attributes:
        rng: Random number streams used for sampling.
        refraction_layer: BRDF node lit by the light the coat transmits, or
            None for a coat over nothing.
    """

    def __init__(self, rng, refraction_layer=None) -> None:
        self.rng = rng
        self.refraction_layer = refraction_layer
        self.has_refraction = refraction_layer is not None

    @ti.func
    def reflection(self, mat, wi: vec3, wo: vec3, n: vec3) -> vec3:
        """Evaluate the untinted reflection lobe."""
        f = blinn_phong_reflection(mat.shininess, mat.fresnel, wi, wo, n)
        return vec3(f, f, f)

    @ti.func
    def refraction(self, mat, wi: vec3, wo: vec3, n: vec3) -> vec3:
        """Evaluate (1 - F) times the refraction layer, or zero without one."""
        result = vec3(0.0, 0.0, 0.0)
        if ti.static(self.has_refraction):
            half = wi + wo
            if tm.length(half) > _HALF_VECTOR_EPSILON:
                wh = tm.normalize(half)
                fresnel = schlick_fresnel(mat.fresnel, ti.abs(tm.dot(wh, wi)))
                result = (1.0 - fresnel) * self.refraction_layer.evaluate(mat, wi, wo, n)
        return result

    @ti.func
    def evaluate(self, mat, wi: vec3, wo: vec3, n: vec3) -> vec3:
        """Evaluate reflection plus refraction (without the cosine term)."""
        return self.reflection(mat, wi, wo, n) + self.refraction(mat, wi, wo, n)

    @ti.func
    def sample(self, mat, wo: vec3, n: vec3, stream: ti.i32):
        """Sample the reflection or the refraction branch with equal probability.

        Args:
            mat: The bound SurfaceMaterial.
            wo: Outgoing direction, pointing away from the surface.
            n: Unit shading normal.
            stream: RNG stream owned by the calling pixel task.

        Returns:
            A tuple of (wi, weight, pdf). Weight and pdf are both zero when wo
            is below the surface, or when the refraction branch is chosen and
            there is no refraction layer. Otherwise the pdf is halved for the
            branch choice.
        """
        u1 = self.rng.uniform(stream)
        u2 = self.rng.uniform(stream)
        wh = sample_blinn_phong_half_vector(mat.shininess, n, u1, u2)

        wi = n
        weight = vec3(0.0, 0.0, 0.0)
        pdf = 0.0
        if tm.dot(wo, n) > 0.0:
            if self.rng.uniform(stream) < 0.5:
                reflected, reflection_pdf = _sample_reflection(mat.shininess, wo, n, wh)
                wi = reflected
                weight = self.reflection(mat, wi, wo, n)
                pdf = 0.5 * reflection_pdf
            else:
                if ti.static(self.has_refraction):
                    refracted, layer_weight, layer_pdf = self.refraction_layer.sample(
                        mat, wo, n, stream
                    )
                    wi = refracted
                    # Fresnel of the sampled microfacet, as seen from wi
                    fresnel = schlick_fresnel(mat.fresnel, ti.abs(tm.dot(wh, wi)))
                    weight = (1.0 - fresnel) * layer_weight
                    pdf = 0.5 * layer_pdf
        return wi, weight, pdf


@ti.data_oriented
class MicrofacetMetal:
    """Glossy metal: the dielectric reflection lobe tinted by color, no refraction.

    Attributes:
        rng: Random number streams used for sampling.
    """

    def __init__(self, rng) -> None:
        self.rng = rng

    @ti.func
    def evaluate(self, mat, wi: vec3, wo: vec3, n: vec3) -> vec3:
        """Evaluate the tinted reflection lobe (without the cosine term)."""
        return blinn_phong_reflection(mat.shininess, mat.fresnel, wi, wo, n) * mat.color

    @ti.func
    def sample(self, mat, wo: vec3, n: vec3, stream: ti.i32):
        """Sample the reflection branch with probability 1/2.

        The other half of the time the (empty) refraction branch is chosen and
        both weight and pdf are zero, so metal and dielectric share one pdf.

        Returns:
            A tuple of (wi, weight, pdf).
        """
        u1 = self.rng.uniform(stream)
        u2 = self.rng.uniform(stream)
        wh = sample_blinn_phong_half_vector(mat.shininess, n, u1, u2)

        wi = n
        weight = vec3(0.0, 0.0, 0.0)
        pdf = 0.0
        if tm.dot(wo, n) > 0.0:
            if self.rng.uniform(stream) < 0.5:
                reflected, reflection_pdf = _sample_reflection(mat.shininess, wo, n, wh)
                wi = reflected
                weight = self.evaluate(mat, wi, wo, n)
                pdf = 0.5 * reflection_pdf
        return wi, weight, pdf
