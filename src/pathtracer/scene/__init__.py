"""Scene module.

Components:
    intersection: Triangle storage, bounds and ray queries
    manager: High-level SceneManager for materials and geometry
    light: The point light
    environment: Lat-long environment maps for escaped rays
"""

from .environment import (
    EnvironmentMap,
    EnvironmentMapError,
    load_environment_map,
    read_hdr_image,
)
from .intersection import Intersection, clear_scene, intersect, occluded, resolve_intersection
from .light import PointLight
from .manager import GeometryInfo, MaterialInfo, SceneManager, tessellate_quad, tessellate_sphere

__all__ = [
    "SceneManager",
    "MaterialInfo",
    "GeometryInfo",
    "tessellate_sphere",
    "tessellate_quad",
    "Intersection",
    "clear_scene",
    "intersect",
    "occluded",
    "resolve_intersection",
    "PointLight",
    "EnvironmentMap",
    "EnvironmentMapError",
    "load_environment_map",
    "read_hdr_image",
]
