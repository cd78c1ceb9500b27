"""Random number streams and the warping functions used for importance sampling.

Every pixel task of a pass draws its random numbers from its own stream of an
explicitly sized RngPool. A stream is owned by exactly one task for the whole
pass, so streams are never shared, locked, or correlated across workers.

The warping functions are pure: they take uniform variates as arguments and
map them onto the disk or hemisphere, which makes them testable on fixed grids
of inputs. Callers draw the variates from the pool.

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from pathtracer.core.sampling import RngPool, cosine_sample_hemisphere
    >>> rng = RngPool(size=64 * 64, seed=7)
    >>> # Within a Taichi kernel:
    >>> # u1 = rng.uniform(stream)
    >>> # u2 = rng.uniform(stream)
    >>> # local_dir = cosine_sample_hemisphere(u1, u2)
"""

import numpy as np
import taichi as ti
import taichi.math as tm

vec2 = tm.vec2
vec3 = tm.vec3

# 2^-24: converts the 24 high bits of a state into [0, 1)
_INV_2_24 = 1.0 / 16777216.0


@ti.data_oriented
class RngPool:
    """A fixed number of independent xorshift32 streams.

    Attributes:
        size: Number of streams in the pool.
        seed: Seed the streams were last initialized from.
    """

    def __init__(self, size: int, seed: int = 0) -> None:
        """Allocate and seed the pool.

        Args:
            size: Number of streams. A pass needs one per pixel task.
            seed: Seed for the host-side generator that initializes streams.

        Raises:
            ValueError: If size is not positive.
        """
        if size <= 0:
            raise ValueError(f"RngPool size must be positive, got {size}")
        self.size = size
        self.seed = seed
        self.states = ti.field(dtype=ti.u32, shape=size)
        self.reseed(seed)

    def reseed(self, seed: int) -> None:
        """Reinitialize every stream deterministically from ``seed``.

        States are drawn from NumPy's SeedSequence-backed generator and are
        never zero (zero is a fixed point of xorshift).
        """
        generator = np.random.default_rng(np.random.SeedSequence(seed))
        states = generator.integers(1, 2**32, size=self.size, dtype=np.uint64)
        self.states.from_numpy(states.astype(np.uint32))
        self.seed = seed

    @ti.func
    def uniform(self, stream: ti.i32) -> ti.f32:
        """Advance one stream and return a float in [0, 1).

        Args:
            stream: Index of the stream owned by the calling task.

        Returns:
            A uniform variate in [0, 1).
        """
        x = self.states[stream]
        x ^= x << 13
        x ^= ti.bit_shr(x, 17)
        x ^= x << 5
        self.states[stream] = x
        return ti.cast(ti.bit_shr(x, 8), ti.f32) * _INV_2_24


@ti.func
def concentric_sample_disk(u1: ti.f32, u2: ti.f32) -> vec2:
    """Map two uniform variates onto the unit disk (Shirley's concentric map).

    The square ``[-1, 1]^2`` is split into four triangular regions, each of
    which is remapped to a quarter of the disk in polar coordinates. This keeps
    relative areas, so uniform inputs give uniform points on the disk.

    Args:
        u1: Uniform variate in [0, 1).
        u2: Uniform variate in [0, 1).

    Returns:
        A point (x, y) with x^2 + y^2 <= 1. The centre of the square
        (u1 = u2 = 0.5) maps to (0, 0).
    """
    sx = 2.0 * u1 - 1.0
    sy = 2.0 * u2 - 1.0
    result = vec2(0.0, 0.0)
    if sx != 0.0 or sy != 0.0:
        r = 0.0
        theta = 0.0
        if sx >= -sy:
            if sx > sy:
                r = sx
                if sy > 0.0:
                    theta = sy / r
                else:
                    theta = 8.0 + sy / r
            else:
                r = sy
                theta = 2.0 - sx / r
        else:
            if sx <= sy:
                r = -sx
                theta = 4.0 - sy / r
            else:
                r = -sy
                theta = 6.0 + sx / r
        theta *= tm.pi / 4.0
        result = vec2(r * ti.cos(theta), r * ti.sin(theta))
    return result


@ti.func
def cosine_sample_hemisphere(u1: ti.f32, u2: ti.f32) -> vec3:
    """Cosine-weighted direction on the +z hemisphere.

    Lifts a concentric disk sample onto the hemisphere (Malley's method). The
    density of the result is cos(theta) / pi in the local frame whose +z axis
    is the surface normal.

    Args:
        u1: Uniform variate in [0, 1).
        u2: Uniform variate in [0, 1).

    Returns:
        A unit direction with z >= 0.
    """
    d = concentric_sample_disk(u1, u2)
    z = ti.sqrt(tm.max(0.0, 1.0 - d.x * d.x - d.y * d.y))
    return vec3(d.x, d.y, z)


@ti.func
def perpendicular(v: vec3) -> vec3:
    """Return a vector orthogonal to ``v``.

    The component with the smaller magnitude among x and y is dropped, which
    keeps the result away from zero length for any non-zero input.
    """
    result = vec3(-v.z, 0.0, v.x)
    if ti.abs(v.x) < ti.abs(v.y):
        result = vec3(0.0, -v.z, v.y)
    return result


@ti.func
def tangent_frame(n: vec3):
    """Build the tangent and bitangent completing an orthonormal frame about n.

    Args:
        n: Unit surface normal (the local +z axis).

    Returns:
        A tuple (tangent, bitangent), the local +x and +y axes in world space.
    """
    tangent = tm.normalize(perpendicular(n))
    bitangent = tm.normalize(tm.cross(tangent, n))
    return tangent, bitangent


@ti.func
def to_world(local_dir: vec3, tangent: vec3, bitangent: vec3, n: vec3) -> vec3:
    """Transform a local-frame direction to world space."""
    return local_dir.x * tangent + local_dir.y * bitangent + local_dir.z * n


@ti.func
def same_hemisphere(wi: vec3, wo: vec3, n: vec3) -> ti.i32:
    """Check whether wi and wo lie on the same side of the plane normal to n."""
    return tm.sign(tm.dot(wo, n)) == tm.sign(tm.dot(wi, n))
