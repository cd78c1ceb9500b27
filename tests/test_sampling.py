"""Unit tests for random streams and hemisphere sampling.

Tests cover:
- RngPool construction, range and determinism
- Concentric disk mapping
- Cosine-weighted hemisphere sampling
- Tangent frames and hemisphere tests
"""

import numpy as np
import pytest
import taichi as ti


def _draw(pool, count):
    """Draw ``count`` values from every stream of a pool."""
    out = ti.field(dtype=ti.f32, shape=(pool.size, count))

    @ti.kernel
    def draw_kernel():
        for s in range(pool.size):
            for k in range(count):
                out[s, k] = pool.uniform(s)

    draw_kernel()
    return out.to_numpy()


class TestRngPool:
    """Tests for the per-pixel xorshift streams."""

    def test_rejects_non_positive_size(self):
        """Test that an empty pool is rejected."""
        from pathtracer.core.sampling import RngPool

        with pytest.raises(ValueError, match="positive"):
            RngPool(size=0)

    def test_values_in_unit_interval(self):
        """Test that every draw lies in [0, 1)."""
        from pathtracer.core.sampling import RngPool

        values = _draw(RngPool(size=64, seed=1), 32)
        assert values.min() >= 0.0
        assert values.max() < 1.0

    def test_mean_is_near_one_half(self):
        """Test that draws are roughly uniform."""
        from pathtracer.core.sampling import RngPool

        values = _draw(RngPool(size=256, seed=3), 64)
        assert abs(values.mean() - 0.5) < 0.02

    def test_same_seed_gives_same_sequence(self):
        """Test that two pools with one seed produce identical draws."""
        from pathtracer.core.sampling import RngPool

        a = _draw(RngPool(size=16, seed=7), 8)
        b = _draw(RngPool(size=16, seed=7), 8)
        np.testing.assert_array_equal(a, b)

    def test_different_seeds_differ(self):
        """Test that different seeds produce different draws."""
        from pathtracer.core.sampling import RngPool

        a = _draw(RngPool(size=16, seed=7), 8)
        b = _draw(RngPool(size=16, seed=8), 8)
        assert not np.array_equal(a, b)

    def test_reseed_restarts_sequence(self):
        """Test that reseeding reproduces the first draws."""
        from pathtracer.core.sampling import RngPool

        pool = RngPool(size=8, seed=5)
        first = _draw(pool, 4)
        pool.reseed(5)
        again = _draw(pool, 4)
        np.testing.assert_array_equal(first, again)

    def test_states_are_never_zero(self):
        """Test that seeding avoids the xorshift fixed point."""
        from pathtracer.core.sampling import RngPool

        pool = RngPool(size=1024, seed=11)
        assert np.all(pool.states.to_numpy() != 0)


class TestConcentricDisk:
    """Tests for concentric_sample_disk."""

    def test_center_maps_to_origin(self):
        """Test that (0.5, 0.5) maps to the disk centre."""
        from pathtracer.core.sampling import concentric_sample_disk

        result = ti.Vector.field(2, dtype=ti.f32, shape=())

        @ti.kernel
        def test_kernel():
            result[None] = concentric_sample_disk(0.5, 0.5)

        test_kernel()
        assert abs(result[None][0]) < 1e-7
        assert abs(result[None][1]) < 1e-7

    def test_samples_inside_unit_disk(self):
        """Test that a grid of inputs stays within the unit disk."""
        from pathtracer.core.sampling import concentric_sample_disk

        n = 32
        result = ti.Vector.field(2, dtype=ti.f32, shape=(n, n))

        @ti.kernel
        def test_kernel():
            for i, j in result:
                result[i, j] = concentric_sample_disk((i + 0.5) / n, (j + 0.5) / n)

        test_kernel()
        radii = np.linalg.norm(result.to_numpy(), axis=-1)
        assert radii.max() <= 1.0 + 1e-5

    def test_square_edge_maps_to_circle(self):
        """Test that the middle of the right edge maps to (1, 0)."""
        from pathtracer.core.sampling import concentric_sample_disk

        result = ti.Vector.field(2, dtype=ti.f32, shape=())

        @ti.kernel
        def test_kernel():
            result[None] = concentric_sample_disk(1.0, 0.5)

        test_kernel()
        assert abs(result[None][0] - 1.0) < 1e-5
        assert abs(result[None][1]) < 1e-5


class TestCosineHemisphere:
    """Tests for cosine_sample_hemisphere."""

    def test_directions_are_unit_and_upper(self):
        """Test that samples are unit vectors with z >= 0."""
        from pathtracer.core.sampling import cosine_sample_hemisphere

        n = 16
        result = ti.Vector.field(3, dtype=ti.f32, shape=(n, n))

        @ti.kernel
        def test_kernel():
            for i, j in result:
                result[i, j] = cosine_sample_hemisphere((i + 0.5) / n, (j + 0.5) / n)

        test_kernel()
        dirs = result.to_numpy().reshape(-1, 3)
        assert np.all(dirs[:, 2] >= 0.0)
        np.testing.assert_allclose(np.linalg.norm(dirs, axis=-1), 1.0, atol=1e-5)

    def test_mean_cosine(self):
        """Test E[cos theta] = 2/3 for a cosine-weighted distribution."""
        from pathtracer.core.sampling import cosine_sample_hemisphere

        n = 64
        result = ti.field(dtype=ti.f32, shape=(n, n))

        @ti.kernel
        def test_kernel():
            for i, j in result:
                result[i, j] = cosine_sample_hemisphere((i + 0.5) / n, (j + 0.5) / n).z

        test_kernel()
        assert abs(result.to_numpy().mean() - 2.0 / 3.0) < 0.01


class TestFrames:
    """Tests for tangent frames and hemisphere checks."""

    @pytest.mark.parametrize(
        "normal",
        [(0.0, 0.0, 1.0), (0.0, 1.0, 0.0), (1.0, 0.0, 0.0), (0.577, -0.577, 0.577)],
    )
    def test_tangent_frame_is_orthonormal(self, normal):
        """Test that (t, b, n) is orthonormal."""
        from pathtracer.core.sampling import tangent_frame

        t_out = ti.Vector.field(3, dtype=ti.f32, shape=())
        b_out = ti.Vector.field(3, dtype=ti.f32, shape=())
        nx, ny, nz = normal

        @ti.kernel
        def test_kernel():
            n = ti.math.normalize(ti.math.vec3(nx, ny, nz))
            t, b = tangent_frame(n)
            t_out[None] = t
            b_out[None] = b

        test_kernel()
        n = np.array(normal) / np.linalg.norm(normal)
        t = t_out[None].to_numpy()
        b = b_out[None].to_numpy()
        assert abs(np.linalg.norm(t) - 1.0) < 1e-5
        assert abs(np.linalg.norm(b) - 1.0) < 1e-5
        assert abs(np.dot(t, n)) < 1e-5
        assert abs(np.dot(b, n)) < 1e-5
        assert abs(np.dot(t, b)) < 1e-5

    def test_to_world_maps_z_to_normal(self):
        """Test that the local +z axis maps onto the normal."""
        from pathtracer.core.sampling import tangent_frame, to_world

        result = ti.Vector.field(3, dtype=ti.f32, shape=())

        @ti.kernel
        def test_kernel():
            n = ti.math.vec3(0.0, 1.0, 0.0)
            t, b = tangent_frame(n)
            result[None] = to_world(ti.math.vec3(0.0, 0.0, 1.0), t, b, n)

        test_kernel()
        r = result[None]
        assert abs(r[0]) < 1e-6
        assert abs(r[1] - 1.0) < 1e-6
        assert abs(r[2]) < 1e-6

    def test_same_hemisphere(self):
        """Test same_hemisphere for both sides of the plane."""
        from pathtracer.core.sampling import same_hemisphere

        result = ti.field(dtype=ti.i32, shape=2)

        @ti.kernel
        def test_kernel():
            n = ti.math.vec3(0.0, 0.0, 1.0)
            wo = ti.math.vec3(0.0, 0.6, 0.8)
            result[0] = same_hemisphere(ti.math.vec3(0.6, 0.0, 0.8), wo, n)
            result[1] = same_hemisphere(ti.math.vec3(0.6, 0.0, -0.8), wo, n)

        test_kernel()
        assert result[0] == 1
        assert result[1] == 0
