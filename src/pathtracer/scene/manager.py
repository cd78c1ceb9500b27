"""Scene manager coordinating materials and triangle geometry.

This module provides the high-level scene API. It registers materials in the
material registry, turns meshes, spheres and quads into triangle geometry for
the intersection oracle, and builds the acceleration structure once the scene
is complete.

The SceneManager maintains:
- A material id space shared by every geometry
- One geometry id per mesh, sphere or quad
- The parameters each object was created from, for serialization

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from pathtracer.scene.manager import SceneManager
    >>> scene = SceneManager()
    >>> red = scene.add_material(color=(0.8, 0.1, 0.1), shininess=40.0, fresnel=0.04)
    >>> scene.add_sphere(center=(0.0, 1.0, 0.0), radius=1.0, material_id=red)
    >>> scene.build_acceleration_structure()
"""

import logging
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import numpy.typing as npt

from pathtracer.materials import registry
from pathtracer.scene import intersection

logger = logging.getLogger(__name__)

# Default sphere tessellation
DEFAULT_SPHERE_RINGS = 24
DEFAULT_SPHERE_SEGMENTS = 48

# Serialization key of each geometry kind
_KIND_KEYS = {"mesh": "meshes", "sphere": "spheres", "quad": "quads"}


@dataclass
class MaterialInfo:
    """Information about a registered material.

    Attributes:
        material_id: The material id.
        params: The material parameters as provided during creation.
    """

    material_id: int
    params: dict[str, Any]


@dataclass
class GeometryInfo:
    """Information about a geometry in the scene.

    Attributes:
        geom_id: The geometry id assigned by the intersection oracle.
        kind: "mesh", "sphere" or "quad".
        material_id: The material id assigned to the geometry.
        params: The parameters the geometry was created from.
        triangle_count: Number of triangles the geometry was turned into.
    """

    geom_id: int
    kind: str
    material_id: int
    params: dict[str, Any] = field(default_factory=dict)
    triangle_count: int = 0


def _as_vec3(value: Any, name: str) -> tuple[float, float, float]:
    if len(value) != 3:
        raise ValueError(f"{name} must have 3 components, got {len(value)}")
    return (float(value[0]), float(value[1]), float(value[2]))


def tessellate_sphere(
    center: tuple[float, float, float],
    radius: float,
    rings: int = DEFAULT_SPHERE_RINGS,
    segments: int = DEFAULT_SPHERE_SEGMENTS,
) -> tuple[npt.NDArray[np.float32], npt.NDArray[np.float32]]:
    """Triangulate a sphere on a latitude/longitude grid.

    Triangles wind counter-clockwise seen from outside and carry the exact
    sphere normal at each vertex. The collapsed triangles at the poles are
    dropped.

    Args:
        center: Sphere center.
        radius: Sphere radius, positive.
        rings: Number of latitude bands, at least 2.
        segments: Number of longitude slices, at least 3.

    Returns:
        Tuple of (positions, normals), each of shape (n, 3, 3).

    Raises:
        ValueError: If the radius or tessellation is invalid.
    """
    if radius <= 0.0:
        raise ValueError(f"Sphere radius must be positive, got {radius}")
    if rings < 2 or segments < 3:
        raise ValueError(f"Need rings >= 2 and segments >= 3, got {rings} and {segments}")

    theta = np.linspace(0.0, np.pi, rings + 1)
    phi = np.linspace(0.0, 2.0 * np.pi, segments + 1)
    sin_t = np.sin(theta)[:, None]
    cos_t = np.cos(theta)[:, None]
    dirs = np.stack(
        [
            sin_t * np.cos(phi)[None, :],
            np.broadcast_to(cos_t, (rings + 1, segments + 1)),
            sin_t * np.sin(phi)[None, :],
        ],
        axis=-1,
    )

    a = dirs[:-1, :-1]
    b = dirs[1:, :-1]
    c = dirs[1:, 1:]
    d = dirs[:-1, 1:]
    # (a, c, b) collapses on the last ring, (a, d, c) on the first
    upper = np.stack([a, c, b], axis=2)[:-1].reshape(-1, 3, 3)
    lower = np.stack([a, d, c], axis=2)[1:].reshape(-1, 3, 3)
    normals = np.concatenate([upper, lower], axis=0)
    positions = np.asarray(center, dtype=np.float64) + radius * normals
    return positions.astype(np.float32), normals.astype(np.float32)


def tessellate_quad(
    corner: tuple[float, float, float],
    edge_u: tuple[float, float, float],
    edge_v: tuple[float, float, float],
) -> tuple[npt.NDArray[np.float32], npt.NDArray[np.float32]]:
    """Split the parallelogram corner + s*edge_u + t*edge_v into two triangles.

    Both triangles use the flat normal normalize(edge_u x edge_v).

    Raises:
        ValueError: If the edges are parallel or zero.
    """
    q = np.asarray(corner, dtype=np.float64)
    u = np.asarray(edge_u, dtype=np.float64)
    v = np.asarray(edge_v, dtype=np.float64)
    normal = np.cross(u, v)
    length = np.linalg.norm(normal)
    if length < 1e-12:
        raise ValueError("Quad edges must span a non-zero area")
    normal /= length

    positions = np.array([[q, q + u, q + u + v], [q, q + u + v, q + v]])
    normals = np.broadcast_to(normal, (2, 3, 3))
    return positions.astype(np.float32), normals.astype(np.float32)


class SceneManager:
    """Scene manager coordinating materials and geometry.

    Attributes:
        materials: List of MaterialInfo for all registered materials.
        geometries: List of GeometryInfo, indexed by geometry id.

    Example:
        >>> scene = SceneManager()
        >>> floor = scene.add_material(color=(0.8, 0.8, 0.8))
        >>> gold = scene.add_material(
        ...     color=(1.0, 0.8, 0.3), shininess=200.0, fresnel=0.9,
        ...     metalness=1.0, reflectivity=1.0,
        ... )
        >>> scene.add_quad((-5, 0, -5), (10, 0, 0), (0, 0, 10), floor)
        >>> scene.add_sphere((0, 1, 0), 1.0, gold)
        >>> scene.build_acceleration_structure()
    """

    def __init__(self) -> None:
        """Initialize an empty scene."""
        self.materials: list[MaterialInfo] = []
        self.geometries: list[GeometryInfo] = []
        self._clear_all()

    def _clear_all(self) -> None:
        """Clear all scene data including Taichi fields."""
        intersection.clear_scene()
        registry.clear_materials()
        self.materials.clear()
        self.geometries.clear()

    def clear(self) -> None:
        """Clear the entire scene (geometry and materials)."""
        self._clear_all()

    # =========================================================================
    # Material Management
    # =========================================================================

    def add_material(
        self,
        color: tuple[float, float, float] = (1.0, 1.0, 1.0),
        shininess: float = 0.0,
        fresnel: float = 0.0,
        metalness: float = 0.0,
        reflectivity: float = 0.0,
        emission: float = 0.0,
        transparency: float = 0.0,
    ) -> int:
        """Add a material to the scene.

        Args:
            color: Base color as (R, G, B), each component in [0, 1].
            shininess: Blinn-Phong exponent, non-negative.
            fresnel: Reflectance at normal incidence in [0, 1].
            metalness: Metal/dielectric blend weight in [0, 1].
            reflectivity: Glossy/diffuse blend weight in [0, 1].
            emission: Emission scale, non-negative.
            transparency: Transparency in [0, 1].

        Returns:
            The material id.

        Raises:
            RuntimeError: If the maximum number of materials is exceeded.
            ValueError: If any parameter is out of range.
        """
        color = _as_vec3(color, "color")
        material_id = registry.add_material(
            color=color,
            shininess=shininess,
            fresnel=fresnel,
            metalness=metalness,
            reflectivity=reflectivity,
            emission=emission,
            transparency=transparency,
        )
        self.materials.append(
            MaterialInfo(
                material_id=material_id,
                params={
                    "color": list(color),
                    "shininess": shininess,
                    "fresnel": fresnel,
                    "metalness": metalness,
                    "reflectivity": reflectivity,
                    "emission": emission,
                    "transparency": transparency,
                },
            )
        )
        return material_id

    def get_material_count(self) -> int:
        """Get the total number of materials in the scene."""
        return registry.get_material_count()

    def get_material_info(self, material_id: int) -> MaterialInfo | None:
        """Get information about a material by id.

        Returns:
            MaterialInfo for the material, or None if not found.
        """
        if 0 <= material_id < len(self.materials):
            return self.materials[material_id]
        return None

    # =========================================================================
    # Geometry Management
    # =========================================================================

    def _check_material_id(self, material_id: int) -> None:
        if material_id < 0 or material_id >= registry.get_material_count():
            raise ValueError(f"Invalid material_id: {material_id}")

    def _add_geometry(
        self,
        kind: str,
        positions: npt.ArrayLike,
        normals: npt.ArrayLike,
        material_id: int,
        params: dict[str, Any],
    ) -> int:
        self._check_material_id(material_id)
        geom_id = intersection.add_triangle_mesh(positions, normals, material_id)
        count = int(np.asarray(positions).reshape(-1, 3, 3).shape[0])
        self.geometries.append(
            GeometryInfo(
                geom_id=geom_id,
                kind=kind,
                material_id=material_id,
                params=params,
                triangle_count=count,
            )
        )
        return geom_id

    def add_triangle_mesh(
        self,
        positions: npt.ArrayLike,
        normals: npt.ArrayLike,
        material_id: int,
    ) -> int:
        """Add a triangle mesh with per-vertex normals.

        Args:
            positions: Triangle corners, shape (n, 3, 3) or (3n, 3).
            normals: Vertex normals matching positions.
            material_id: Material of the whole mesh.

        Returns:
            The geometry id.

        Raises:
            ValueError: If material_id is invalid or the arrays are malformed.
            RuntimeError: If the geometry capacity is exceeded.
        """
        pos = np.asarray(positions, dtype=np.float32).reshape(-1, 3, 3)
        nrm = np.asarray(normals, dtype=np.float32).reshape(-1, 3, 3)
        params = {"positions": pos.tolist(), "normals": nrm.tolist()}
        return self._add_geometry("mesh", pos, nrm, material_id, params)

    def add_sphere(
        self,
        center: tuple[float, float, float],
        radius: float,
        material_id: int,
        rings: int = DEFAULT_SPHERE_RINGS,
        segments: int = DEFAULT_SPHERE_SEGMENTS,
    ) -> int:
        """Add a smooth-shaded tessellated sphere.

        Args:
            center: The center point of the sphere as (x, y, z).
            radius: The radius of the sphere, positive.
            material_id: The material id to assign to the sphere.
            rings: Number of latitude bands.
            segments: Number of longitude slices.

        Returns:
            The geometry id.

        Raises:
            ValueError: If material_id, radius or tessellation is invalid.
        """
        self._check_material_id(material_id)
        center = _as_vec3(center, "center")
        positions, normals = tessellate_sphere(center, radius, rings, segments)
        params = {
            "center": list(center),
            "radius": radius,
            "rings": rings,
            "segments": segments,
        }
        return self._add_geometry("sphere", positions, normals, material_id, params)

    def add_quad(
        self,
        corner: tuple[float, float, float],
        edge_u: tuple[float, float, float],
        edge_v: tuple[float, float, float],
        material_id: int,
    ) -> int:
        """Add a flat quad (parallelogram).

        The quad has vertices at corner, corner+edge_u, corner+edge_v and
        corner+edge_u+edge_v, and faces along edge_u x edge_v.

        Returns:
            The geometry id.

        Raises:
            ValueError: If material_id is invalid or the edges are degenerate.
        """
        self._check_material_id(material_id)
        corner = _as_vec3(corner, "corner")
        edge_u = _as_vec3(edge_u, "edge_u")
        edge_v = _as_vec3(edge_v, "edge_v")
        positions, normals = tessellate_quad(corner, edge_u, edge_v)
        params = {"corner": list(corner), "edge_u": list(edge_u), "edge_v": list(edge_v)}
        return self._add_geometry("quad", positions, normals, material_id, params)

    def build_acceleration_structure(self) -> None:
        """Finalize the scene for rendering.

        Verifies that every geometry references a registered material, then
        builds the per-geometry bounding boxes.

        Raises:
            RuntimeError: If a geometry references a missing material.
        """
        n_materials = registry.get_material_count()
        for geom_id, material_id in enumerate(intersection.get_geometry_material_ids()):
            if material_id < 0 or material_id >= n_materials:
                raise RuntimeError(
                    f"Geometry {geom_id} references material {material_id}, "
                    f"but only {n_materials} materials are registered"
                )
        intersection.build_bounds()
        logger.info(
            "Built acceleration structure: %d geometries, %d triangles, %d materials",
            intersection.get_geometry_count(),
            intersection.get_triangle_count(),
            n_materials,
        )

    # =========================================================================
    # Scene Queries
    # =========================================================================

    def get_geometry_count(self) -> int:
        """Get the number of geometries in the scene."""
        return intersection.get_geometry_count()

    def get_triangle_count(self) -> int:
        """Get the total number of triangles in the scene."""
        return intersection.get_triangle_count()

    # =========================================================================
    # Scene Serialization
    # =========================================================================

    def to_dict(self) -> dict[str, Any]:
        """Export the scene to a dictionary (for JSON serialization).

        Returns:
            Dictionary with "materials", "meshes", "spheres" and "quads" lists.
        """
        data: dict[str, Any] = {
            "materials": [dict(m.params) for m in self.materials],
            "meshes": [],
            "spheres": [],
            "quads": [],
        }
        for geom in self.geometries:
            entry = {**geom.params, "material_id": geom.material_id}
            data[_KIND_KEYS[geom.kind]].append(entry)
        return data

    def from_dict(self, data: dict[str, Any]) -> None:
        """Load a scene from a dictionary.

        Clears the current scene, loads materials first and then geometry.
        The acceleration structure is not built.

        Args:
            data: Dictionary as produced by to_dict().

        Raises:
            ValueError: If the dictionary contains invalid data.
        """
        self.clear()

        for mat_config in data.get("materials", []):
            self.add_material(
                color=tuple(mat_config.get("color", [1.0, 1.0, 1.0])),
                shininess=mat_config.get("shininess", 0.0),
                fresnel=mat_config.get("fresnel", 0.0),
                metalness=mat_config.get("metalness", 0.0),
                reflectivity=mat_config.get("reflectivity", 0.0),
                emission=mat_config.get("emission", 0.0),
                transparency=mat_config.get("transparency", 0.0),
            )

        for mesh_config in data.get("meshes", []):
            self.add_triangle_mesh(
                mesh_config["positions"],
                mesh_config["normals"],
                mesh_config.get("material_id", 0),
            )

        for sphere_config in data.get("spheres", []):
            self.add_sphere(
                center=tuple(sphere_config.get("center", [0.0, 0.0, 0.0])),
                radius=sphere_config.get("radius", 1.0),
                material_id=sphere_config.get("material_id", 0),
                rings=sphere_config.get("rings", DEFAULT_SPHERE_RINGS),
                segments=sphere_config.get("segments", DEFAULT_SPHERE_SEGMENTS),
            )

        for quad_config in data.get("quads", []):
            self.add_quad(
                corner=tuple(quad_config.get("corner", [0.0, 0.0, 0.0])),
                edge_u=tuple(quad_config.get("edge_u", [1.0, 0.0, 0.0])),
                edge_v=tuple(quad_config.get("edge_v", [0.0, 0.0, 1.0])),
                material_id=quad_config.get("material_id", 0),
            )

    def __repr__(self) -> str:
        return (
            f"SceneManager(materials={self.get_material_count()}, "
            f"geometries={self.get_geometry_count()}, triangles={self.get_triangle_count()})"
        )
