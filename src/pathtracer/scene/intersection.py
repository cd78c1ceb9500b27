"""Ray/scene intersection oracle over triangle meshes.

Geometry is registered host-side as triangle meshes, one geometry id per mesh.
Each triangle carries three vertex normals for smooth shading. Every geometry
maps to one material.

The structure has two levels: a bounding box per geometry culls whole meshes,
then the surviving meshes are tested triangle by triangle (Moller-Trumbore).
``build_bounds()`` must run after the last mesh is added and before any query;
adding a mesh invalidates the structure.

Queries work on a Ray passed by reference:

    intersect(ray)   closest hit; fills ray.t_far, u, v, geometry_normal,
                     geom_id and prim_id in place.
    occluded(ray)    any hit in [t_near, t_far]; sets ray.geom_id on a hit.

Example:
    >>> import numpy as np
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from pathtracer.scene.intersection import add_triangle_mesh, build_bounds
    >>> positions = np.array([[[0, 0, 0], [1, 0, 0], [0, 1, 0]]], dtype=np.float32)
    >>> normals = np.tile(np.array([0, 0, 1], dtype=np.float32), (1, 3, 1))
    >>> geom_id = add_triangle_mesh(positions, normals, material_id=0)
    >>> build_bounds()
    >>> # Within a Taichi kernel:
    >>> # if intersect(ray):
    >>> #     hit = resolve_intersection(ray)
"""

import numpy as np
import numpy.typing as npt
import taichi as ti
import taichi.math as tm

from pathtracer.core.ray import INVALID_ID, Ray, ray_at

vec3 = tm.vec3

# Maximum number of triangles and meshes in the scene
MAX_TRIANGLES = 1 << 16
MAX_GEOMETRIES = 1024

# Determinants below this are treated as rays parallel to the triangle
_PARALLEL_EPSILON = 1e-12


@ti.dataclass
class Intersection:
    """Resolved hit, derived from a ray after a successful intersect().

    Attributes:
        position: World-space hit point.
        geometry_normal: Unit face normal, flipped to face the incoming ray.
        shading_normal: Unit normal interpolated from the vertex normals with
            barycentric weights (1 - u - v, u, v). Not flipped.
        wo: Unit direction from the hit point back toward the ray origin.
        material_id: Material of the hit geometry.
    """

    position: vec3
    geometry_normal: vec3
    shading_normal: vec3
    wo: vec3
    material_id: ti.i32


# Triangle storage: corner k of triangle i lives at [i, k]
tri_vertices = ti.Vector.field(3, dtype=ti.f32, shape=(MAX_TRIANGLES, 3))
tri_normals = ti.Vector.field(3, dtype=ti.f32, shape=(MAX_TRIANGLES, 3))
tri_geometry_ids = ti.field(dtype=ti.i32, shape=MAX_TRIANGLES)
num_triangles = ti.field(dtype=ti.i32, shape=())

# Geometry storage: a contiguous triangle range, a material, and a bounding box
geom_first_triangle = ti.field(dtype=ti.i32, shape=MAX_GEOMETRIES)
geom_triangle_count = ti.field(dtype=ti.i32, shape=MAX_GEOMETRIES)
geom_material_ids = ti.field(dtype=ti.i32, shape=MAX_GEOMETRIES)
geom_bounds_min = ti.Vector.field(3, dtype=ti.f32, shape=MAX_GEOMETRIES)
geom_bounds_max = ti.Vector.field(3, dtype=ti.f32, shape=MAX_GEOMETRIES)
num_geometries = ti.field(dtype=ti.i32, shape=())

_bounds_built = ti.field(dtype=ti.i32, shape=())


def clear_scene() -> None:
    """Remove all geometry.

    Resets the counts to zero. The field data is overwritten when new
    meshes are added.
    """
    num_triangles[None] = 0
    num_geometries[None] = 0
    _bounds_built[None] = 0


@ti.kernel
def _write_triangles(
    start: ti.i32,
    count: ti.i32,
    geom_id: ti.i32,
    positions: ti.types.ndarray(),
    normals: ti.types.ndarray(),
):
    for i, k in ti.ndrange(count, 3):
        idx = start + i
        tri_vertices[idx, k] = vec3(positions[i, k, 0], positions[i, k, 1], positions[i, k, 2])
        tri_normals[idx, k] = vec3(normals[i, k, 0], normals[i, k, 1], normals[i, k, 2])
        tri_geometry_ids[idx] = geom_id


def add_triangle_mesh(
    positions: npt.ArrayLike,
    normals: npt.ArrayLike,
    material_id: int,
) -> int:
    """Register a triangle mesh as one geometry.

    Args:
        positions: Triangle corners, shape (n, 3, 3) or (3n, 3).
        normals: Vertex normals matching positions. They are normalized
            before storage.
        material_id: Material of every triangle in the mesh.

    Returns:
        The geometry id of the mesh.

    Raises:
        ValueError: If the arrays are malformed or empty.
        RuntimeError: If the triangle or geometry capacity is exceeded.
    """
    pos = np.ascontiguousarray(positions, dtype=np.float32).reshape(-1, 3, 3)
    nrm = np.asarray(normals, dtype=np.float32).reshape(-1, 3, 3)
    if pos.shape != nrm.shape:
        raise ValueError(
            f"positions {pos.shape} and normals {nrm.shape} describe different triangles"
        )
    count = pos.shape[0]
    if count == 0:
        raise ValueError("Triangle mesh has no triangles")

    lengths = np.linalg.norm(nrm, axis=-1, keepdims=True)
    if np.any(lengths < 1e-12):
        raise ValueError("Vertex normals must be non-zero")
    nrm = np.ascontiguousarray(nrm / lengths, dtype=np.float32)

    geom_id = num_geometries[None]
    if geom_id >= MAX_GEOMETRIES:
        raise RuntimeError(f"Maximum number of geometries ({MAX_GEOMETRIES}) exceeded")
    start = num_triangles[None]
    if start + count > MAX_TRIANGLES:
        raise RuntimeError(f"Maximum number of triangles ({MAX_TRIANGLES}) exceeded")

    _write_triangles(start, count, geom_id, pos, nrm)
    geom_first_triangle[geom_id] = start
    geom_triangle_count[geom_id] = count
    geom_material_ids[geom_id] = material_id
    num_triangles[None] = start + count
    num_geometries[None] = geom_id + 1
    _bounds_built[None] = 0
    return geom_id


def build_bounds() -> None:
    """Compute the bounding box of every geometry and mark the structure built."""
    n_geoms = get_geometry_count()
    if n_geoms > 0:
        vertices = tri_vertices.to_numpy()
        firsts = geom_first_triangle.to_numpy()[:n_geoms]
        counts = geom_triangle_count.to_numpy()[:n_geoms]
        mins = np.zeros((MAX_GEOMETRIES, 3), dtype=np.float32)
        maxs = np.zeros((MAX_GEOMETRIES, 3), dtype=np.float32)
        for geom_id, (first, count) in enumerate(zip(firsts, counts)):
            corners = vertices[first : first + count].reshape(-1, 3)
            mins[geom_id] = corners.min(axis=0)
            maxs[geom_id] = corners.max(axis=0)
        geom_bounds_min.from_numpy(mins)
        geom_bounds_max.from_numpy(maxs)
    _bounds_built[None] = 1


def is_built() -> bool:
    """Check whether build_bounds() ran after the last mesh was added."""
    return bool(_bounds_built[None])


def get_triangle_count() -> int:
    """Get the number of triangles in the scene."""
    return int(num_triangles[None])


def get_geometry_count() -> int:
    """Get the number of meshes in the scene."""
    return int(num_geometries[None])


def get_geometry_material_ids() -> list[int]:
    """Get the material id of every geometry, indexed by geometry id."""
    return [int(m) for m in geom_material_ids.to_numpy()[: get_geometry_count()]]


@ti.func
def _safe_inverse(direction: vec3) -> vec3:
    """Componentwise 1/d with zero components replaced by a tiny signed value."""
    result = vec3(0.0, 0.0, 0.0)
    for i in ti.static(range(3)):
        d = direction[i]
        if ti.abs(d) < _PARALLEL_EPSILON:
            d = _PARALLEL_EPSILON
            if direction[i] < 0.0:
                d = -_PARALLEL_EPSILON
        result[i] = 1.0 / d
    return result


@ti.func
def _hit_bounds(
    origin: vec3, inv_dir: vec3, t_near: ti.f32, t_far: ti.f32, geom_id: ti.i32
) -> ti.i32:
    """Slab test of a ray segment against a geometry's bounding box."""
    t0 = (geom_bounds_min[geom_id] - origin) * inv_dir
    t1 = (geom_bounds_max[geom_id] - origin) * inv_dir
    t_enter = tm.max(tm.min(t0, t1).max(), t_near)
    t_exit = tm.min(tm.max(t0, t1).min(), t_far)
    return t_enter <= t_exit


@ti.func
def _hit_triangle(origin: vec3, direction: vec3, t_near: ti.f32, t_far: ti.f32, tri: ti.i32):
    """Moller-Trumbore ray/triangle test.

    Returns:
        A tuple of (hit, t, u, v).
    """
    v0 = tri_vertices[tri, 0]
    e1 = tri_vertices[tri, 1] - v0
    e2 = tri_vertices[tri, 2] - v0
    p = tm.cross(direction, e2)
    det = tm.dot(e1, p)

    hit = 0
    t = 0.0
    u = 0.0
    v = 0.0
    if ti.abs(det) > _PARALLEL_EPSILON:
        inv_det = 1.0 / det
        s = origin - v0
        u = tm.dot(s, p) * inv_det
        if 0.0 <= u <= 1.0:
            q = tm.cross(s, e1)
            v = tm.dot(direction, q) * inv_det
            if v >= 0.0 and u + v <= 1.0:
                t = tm.dot(e2, q) * inv_det
                if t_near < t < t_far:
                    hit = 1
    return hit, t, u, v


@ti.func
def _face_normal(tri: ti.i32) -> vec3:
    """Unnormalized face normal, counter-clockwise winding."""
    v0 = tri_vertices[tri, 0]
    return tm.cross(tri_vertices[tri, 1] - v0, tri_vertices[tri, 2] - v0)


@ti.func
def intersect(ray: ti.template()) -> ti.i32:
    """Find the closest hit of a ray and record it in the ray.

    Args:
        ray: The ray, updated in place. On a hit t_far becomes the hit
            distance and the hit fields are filled; on a miss the ray is left
            unchanged.

    Returns:
        1 if anything was hit, 0 otherwise.
    """
    inv_dir = _safe_inverse(ray.direction)
    for g in range(num_geometries[None]):
        if _hit_bounds(ray.origin, inv_dir, ray.t_near, ray.t_far, g):
            first = geom_first_triangle[g]
            for tri in range(first, first + geom_triangle_count[g]):
                hit, t, u, v = _hit_triangle(ray.origin, ray.direction, ray.t_near, ray.t_far, tri)
                if hit:
                    ray.t_far = t
                    ray.u = u
                    ray.v = v
                    ray.geometry_normal = _face_normal(tri)
                    ray.geom_id = g
                    ray.prim_id = tri
    return ray.geom_id != INVALID_ID


@ti.func
def occluded(ray: ti.template()) -> ti.i32:
    """Check whether anything blocks a ray segment.

    Only geom_id is written on a hit; the other hit fields are not meaningful
    after an occlusion query.

    Returns:
        1 if any triangle is hit within [t_near, t_far], 0 otherwise.
    """
    inv_dir = _safe_inverse(ray.direction)
    blocked = 0
    for g in range(num_geometries[None]):
        if blocked == 0 and _hit_bounds(ray.origin, inv_dir, ray.t_near, ray.t_far, g):
            first = geom_first_triangle[g]
            for tri in range(first, first + geom_triangle_count[g]):
                if blocked == 0:
                    hit, _t, _u, _v = _hit_triangle(
                        ray.origin, ray.direction, ray.t_near, ray.t_far, tri
                    )
                    if hit:
                        blocked = 1
                        ray.geom_id = g
    return blocked


@ti.func
def resolve_intersection(ray: Ray) -> Intersection:
    """Derive the shading data of a ray's recorded hit.

    Args:
        ray: A ray for which intersect() returned 1.

    Returns:
        The resolved Intersection.
    """
    tri = ray.prim_id
    w = 1.0 - ray.u - ray.v
    shading_normal = tm.normalize(
        w * tri_normals[tri, 0] + ray.u * tri_normals[tri, 1] + ray.v * tri_normals[tri, 2]
    )
    geometry_normal = tm.normalize(ray.geometry_normal)
    if tm.dot(geometry_normal, ray.direction) > 0.0:
        geometry_normal = -geometry_normal
    return Intersection(
        position=ray_at(ray, ray.t_far),
        geometry_normal=geometry_normal,
        shading_normal=shading_normal,
        wo=tm.normalize(-ray.direction),
        material_id=geom_material_ids[ray.geom_id],
    )
