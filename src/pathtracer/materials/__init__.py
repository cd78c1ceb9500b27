"""Materials module.

Every surface uses one parameter block (SurfaceMaterial) and one fixed BRDF
tree. The parameters decide how much each lobe contributes:

    root = blend(reflectivity: blend(metalness: metal, dielectric), diffuse)

where the dielectric refracts into the diffuse lobe.

Example:
    >>> from pathtracer.materials import add_material
    >>> red = add_material(color=(0.8, 0.1, 0.1))
    >>> gold = add_material(color=(1.0, 0.8, 0.3), shininess=500, reflectivity=1, metalness=1)
"""

from .blend import LinearBlend, constant_weight, metalness_weight, reflectivity_weight
from .diffuse import Diffuse
from .microfacet import (
    MicrofacetDielectric,
    MicrofacetMetal,
    blinn_phong_half_vector_pdf,
    blinn_phong_reflection,
    sample_blinn_phong_half_vector,
    schlick_fresnel,
)
from .registry import (
    MAX_MATERIALS,
    SurfaceMaterial,
    add_material,
    clear_materials,
    get_material,
    get_material_count,
)
from .tree import build_material_brdf

__all__ = [
    # Registry
    "SurfaceMaterial",
    "MAX_MATERIALS",
    "add_material",
    "clear_materials",
    "get_material",
    "get_material_count",
    # BRDF nodes
    "Diffuse",
    "MicrofacetDielectric",
    "MicrofacetMetal",
    "LinearBlend",
    "constant_weight",
    "metalness_weight",
    "reflectivity_weight",
    "build_material_brdf",
    # Blinn-Phong helpers
    "schlick_fresnel",
    "blinn_phong_reflection",
    "sample_blinn_phong_half_vector",
    "blinn_phong_half_vector_pdf",
]
