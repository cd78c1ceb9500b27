"""Material parameter registry.

Every surface references one material by index. A material is a flat set of
parameters; the BRDF tree decides how they combine:

    color         Base color (diffuse albedo, metal tint, emission tint).
    shininess     Blinn-Phong exponent of the glossy lobe.
    fresnel       Reflectance at normal incidence (R0) of the dielectric layer.
    metalness     Blend weight between the metal and dielectric lobes.
    reflectivity  Blend weight between the glossy layers and pure diffuse.
    emission      Scale of emitted radiance (emitted = emission * color).
    transparency  Stored for completeness; no node reads it.

Parameters live in Taichi fields preallocated to MAX_MATERIALS and are read-only
while a render pass is running.

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from pathtracer.materials.registry import add_material
    >>> red = add_material(color=(0.8, 0.1, 0.1), shininess=50.0, fresnel=0.04)
    >>> # Within a Taichi kernel:
    >>> # mat = get_material(red)
"""

import taichi as ti
import taichi.math as tm

vec3 = tm.vec3


@ti.dataclass
class SurfaceMaterial:
    """Parameters of one material, bound to the BRDF tree at each hit."""

    color: vec3
    shininess: ti.f32
    fresnel: ti.f32
    metalness: ti.f32
    reflectivity: ti.f32
    emission: ti.f32
    transparency: ti.f32


# Maximum number of materials in the scene
MAX_MATERIALS = 1024

material_colors = ti.Vector.field(3, dtype=ti.f32, shape=MAX_MATERIALS)
material_shininess = ti.field(dtype=ti.f32, shape=MAX_MATERIALS)
material_fresnel = ti.field(dtype=ti.f32, shape=MAX_MATERIALS)
material_metalness = ti.field(dtype=ti.f32, shape=MAX_MATERIALS)
material_reflectivity = ti.field(dtype=ti.f32, shape=MAX_MATERIALS)
material_emission = ti.field(dtype=ti.f32, shape=MAX_MATERIALS)
material_transparency = ti.field(dtype=ti.f32, shape=MAX_MATERIALS)
num_materials = ti.field(dtype=ti.i32, shape=())


def clear_materials() -> None:
    """Clear all materials.

    Resets the material count to zero. Existing data in the fields will be
    overwritten when new materials are added.
    """
    num_materials[None] = 0


def _check_unit_interval(name: str, value: float) -> None:
    if value < 0.0 or value > 1.0:
        raise ValueError(f"{name} = {value} is outside [0, 1]")


def add_material(
    color: tuple[float, float, float] = (1.0, 1.0, 1.0),
    shininess: float = 0.0,
    fresnel: float = 0.0,
    metalness: float = 0.0,
    reflectivity: float = 0.0,
    emission: float = 0.0,
    transparency: float = 0.0,
) -> int:
    """Add a material to the registry.

    Args:
        color: Base color as (R, G, B), each component in [0, 1].
        shininess: Blinn-Phong exponent, non-negative.
        fresnel: Normal-incidence reflectance in [0, 1].
        metalness: Metal/dielectric blend weight in [0, 1].
        reflectivity: Glossy/diffuse blend weight in [0, 1].
        emission: Emission scale, non-negative.
        transparency: Transparency in [0, 1].

    Returns:
        The index of the added material.

    Raises:
        RuntimeError: If the maximum number of materials is exceeded.
        ValueError: If any parameter is out of range.
    """
    if len(color) != 3:
        raise ValueError(f"color must have 3 components, got {len(color)}")
    for i, component in enumerate(color):
        if component < 0.0 or component > 1.0:
            raise ValueError(
                f"Color component {i} = {component} is outside [0, 1]. "
                "This would violate energy conservation."
            )
    if shininess < 0.0:
        raise ValueError(f"Shininess = {shininess} must be non-negative")
    if emission < 0.0:
        raise ValueError(f"Emission = {emission} must be non-negative")
    _check_unit_interval("Fresnel", fresnel)
    _check_unit_interval("Metalness", metalness)
    _check_unit_interval("Reflectivity", reflectivity)
    _check_unit_interval("Transparency", transparency)

    idx = num_materials[None]
    if idx >= MAX_MATERIALS:
        raise RuntimeError(f"Maximum number of materials ({MAX_MATERIALS}) exceeded")

    material_colors[idx] = vec3(color[0], color[1], color[2])
    material_shininess[idx] = shininess
    material_fresnel[idx] = fresnel
    material_metalness[idx] = metalness
    material_reflectivity[idx] = reflectivity
    material_emission[idx] = emission
    material_transparency[idx] = transparency
    num_materials[None] = idx + 1
    return idx


def get_material_count() -> int:
    """Get the number of materials in the registry."""
    return int(num_materials[None])


@ti.func
def get_material(material_idx: ti.i32) -> SurfaceMaterial:
    """Gather the parameters of a material into a struct.

    Args:
        material_idx: The index of the material in the registry.

    Returns:
        The material parameters.
    """
    return SurfaceMaterial(
        color=material_colors[material_idx],
        shininess=material_shininess[material_idx],
        fresnel=material_fresnel[material_idx],
        metalness=material_metalness[material_idx],
        reflectivity=material_reflectivity[material_idx],
        emission=material_emission[material_idx],
        transparency=material_transparency[material_idx],
    )
