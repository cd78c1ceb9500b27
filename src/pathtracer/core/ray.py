"""Ray data structure and vector helpers shared by the oracle and integrator.

A Ray carries both the query (origin, direction, valid parametric interval) and
the hit fields the intersection oracle fills in place: the unnormalized face
normal, the barycentric coordinates of the hit, and the identifiers of the hit
geometry and triangle. A ray with ``geom_id == INVALID_ID`` has not hit anything.

Rays are stack-local values inside Taichi functions. Functions that need to
update a ray's hit fields take it as ``ti.template()`` so the caller sees the
mutation.

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from pathtracer.core.ray import make_ray, ray_at
    >>> # Within a Taichi kernel:
    >>> # ray = make_ray(vec3(0.0), vec3(0.0, 0.0, -1.0))
    >>> # point = ray_at(ray, 5.0)
"""

import taichi as ti
import taichi.math as tm

# Type alias for 3D vectors using Taichi's math module
vec3 = tm.vec3

# Identifier stored in geom_id / prim_id / inst_id when nothing was hit
INVALID_ID = -1

# Default far end of the parametric interval
T_FAR = 1e30


@ti.dataclass
class Ray:
    """A ray segment plus the hit fields written by the intersection oracle.

    Attributes:
        origin: The starting point of the ray.
        direction: The direction of the ray (normalized by every producer in
            this package).
        t_near: Start of the valid parametric interval.
        t_far: End of the valid parametric interval. After a closest-hit query
            this is the distance to the hit.
        time: Time value forwarded to the oracle (unused by static scenes).
        mask: Geometry mask forwarded to the oracle.
        geometry_normal: Unnormalized face normal of the hit triangle.
        u: Second barycentric coordinate of the hit.
        v: Third barycentric coordinate of the hit.
        geom_id: Identifier of the hit geometry, or INVALID_ID.
        prim_id: Index of the hit triangle within the scene, or INVALID_ID.
        inst_id: Instance identifier, or INVALID_ID.
    """

    origin: vec3
    direction: vec3
    t_near: ti.f32
    t_far: ti.f32
    time: ti.f32
    mask: ti.i32
    geometry_normal: vec3
    u: ti.f32
    v: ti.f32
    geom_id: ti.i32
    prim_id: ti.i32
    inst_id: ti.i32


@ti.func
def make_ray(origin: vec3, direction: vec3) -> Ray:
    """Create an unresolved ray over ``[0, T_FAR]``.

    Args:
        origin: The starting point of the ray.
        direction: The direction of the ray.

    Returns:
        A Ray with all hit fields set to "no hit".
    """
    return make_segment(origin, direction, 0.0, T_FAR)


@ti.func
def make_segment(origin: vec3, direction: vec3, t_near: ti.f32, t_far: ti.f32) -> Ray:
    """Create an unresolved ray restricted to ``[t_near, t_far]``.

    Shadow rays use this to stop at the light position.
    """
    return Ray(
        origin=origin,
        direction=direction,
        t_near=t_near,
        t_far=t_far,
        time=0.0,
        mask=-1,
        geometry_normal=vec3(0.0, 0.0, 0.0),
        u=0.0,
        v=0.0,
        geom_id=INVALID_ID,
        prim_id=INVALID_ID,
        inst_id=INVALID_ID,
    )


@ti.func
def ray_at(ray: Ray, t: ti.f32) -> vec3:
    """Compute the point along the ray at parameter t."""
    return ray.origin + t * ray.direction


@ti.func
def offset_origin(point: vec3, normal: vec3, epsilon: ti.f32) -> vec3:
    """Push a surface point along a normal to avoid self-intersection.

    The offset is a numerical fix, not a physical quantity: it bounds how far
    the shading normal may diverge from the true surface before secondary rays
    start re-hitting the triangle they leave from.

    Args:
        point: The surface point.
        normal: The direction to push along (the shading normal).
        epsilon: Offset distance.

    Returns:
        The offset point.
    """
    return point + epsilon * normal


@ti.func
def reflect_about(direction: vec3, axis: vec3) -> vec3:
    """Mirror an outgoing direction about an axis.

    Unlike the incident-ray convention, both ``direction`` and the result
    point away from the surface: ``-d + 2(d.a)a``.

    Args:
        direction: Unit direction pointing away from the surface.
        axis: Unit mirror axis (a surface or microfacet normal).

    Returns:
        The mirrored direction.
    """
    return -direction + 2.0 * tm.dot(axis, direction) * axis


@ti.func
def is_black(v: vec3) -> ti.i32:
    """Check if every channel of a color is exactly zero."""
    return v.x == 0.0 and v.y == 0.0 and v.z == 0.0
