"""Assembly of the material BRDF tree.

Every surface is shaded by the same tree, parameterized by the material bound
at the hit:

    root = LinearBlend(reflectivity,
                       LinearBlend(metalness, MicrofacetMetal, MicrofacetDielectric),
                       Diffuse)

with the dielectric coat layered over a Diffuse node. The four scalars
shininess, fresnel, metalness and reflectivity span everything from pure
diffuse to polished metal.

The tree shape is fixed here in Python and inlined into the render kernel at
compile time. Nodes hold no per-hit state.
"""

from pathtracer.materials.blend import LinearBlend, metalness_weight, reflectivity_weight
from pathtracer.materials.diffuse import Diffuse
from pathtracer.materials.microfacet import MicrofacetDielectric, MicrofacetMetal


def build_material_brdf(rng) -> LinearBlend:
    """Build the root node of the material BRDF tree.

    Args:
        rng: RngPool shared by every node of the tree.

    Returns:
        The root LinearBlend node.
    """
    diffuse = Diffuse(rng)
    dielectric = MicrofacetDielectric(rng, refraction_layer=diffuse)
    metal = MicrofacetMetal(rng)
    metal_blend = LinearBlend(rng, metalness_weight, metal, dielectric)
    return LinearBlend(rng, reflectivity_weight, metal_blend, diffuse)
