"""Tests for the triangle intersection oracle.

Tests cover:
- Mesh registration and validation
- Acceleration structure state
- Closest-hit queries and hit records
- Occlusion queries over bounded segments
- Resolved intersections (normals, position, material)

Note: Imports are done inside test methods to avoid Taichi initialization issues.
"""

import numpy as np
import pytest
import taichi as ti


def _quad(z, material_id=0, half=1.0):
    """Register a square in the plane z = const facing +z."""
    from pathtracer.scene.intersection import add_triangle_mesh
    from pathtracer.scene.manager import tessellate_quad

    positions, normals = tessellate_quad((-half, -half, z), (2 * half, 0, 0), (0, 2 * half, 0))
    return add_triangle_mesh(positions, normals, material_id)


def _single_triangle():
    positions = np.array([[[0, 0, 0], [1, 0, 0], [0, 1, 0]]], dtype=np.float32)
    normals = np.tile(np.array([0, 0, 1], dtype=np.float32), (1, 3, 1))
    return positions, normals


class TestMeshRegistration:
    """Tests for add_triangle_mesh and scene bookkeeping."""

    def test_geometry_ids_and_counts(self):
        """Test that each mesh gets the next geometry id."""
        from pathtracer.scene.intersection import (
            get_geometry_count,
            get_geometry_material_ids,
            get_triangle_count,
        )

        assert _quad(-2.0, material_id=3) == 0
        assert _quad(-4.0, material_id=1) == 1
        assert get_geometry_count() == 2
        assert get_triangle_count() == 4
        assert get_geometry_material_ids() == [3, 1]

    def test_accepts_flat_vertex_list(self):
        """Test that (3n, 3) arrays are accepted."""
        from pathtracer.scene.intersection import add_triangle_mesh, get_triangle_count

        positions, normals = _single_triangle()
        add_triangle_mesh(positions.reshape(-1, 3), normals.reshape(-1, 3), 0)
        assert get_triangle_count() == 1

    def test_rejects_mismatched_normals(self):
        """Test that positions and normals must describe the same triangles."""
        from pathtracer.scene.intersection import add_triangle_mesh

        positions, normals = _single_triangle()
        with pytest.raises(ValueError, match="different triangles"):
            add_triangle_mesh(np.concatenate([positions, positions]), normals, 0)

    def test_rejects_empty_mesh(self):
        """Test that a mesh needs at least one triangle."""
        from pathtracer.scene.intersection import add_triangle_mesh

        with pytest.raises(ValueError, match="no triangles"):
            add_triangle_mesh(np.zeros((0, 3, 3)), np.zeros((0, 3, 3)), 0)

    def test_rejects_zero_normals(self):
        """Test that zero-length vertex normals are rejected."""
        from pathtracer.scene.intersection import add_triangle_mesh

        positions, _ = _single_triangle()
        with pytest.raises(ValueError, match="non-zero"):
            add_triangle_mesh(positions, np.zeros((1, 3, 3)), 0)

    def test_rejects_malformed_positions(self):
        """Test that arrays that are not triangles of 3D points are rejected."""
        from pathtracer.scene.intersection import add_triangle_mesh

        with pytest.raises(ValueError):
            add_triangle_mesh(np.zeros((4, 2)), np.zeros((4, 2)), 0)

    def test_adding_mesh_invalidates_structure(self):
        """Test that build_bounds must run again after a mesh is added."""
        from pathtracer.scene.intersection import build_bounds, clear_scene, is_built

        _quad(-2.0)
        assert not is_built()
        build_bounds()
        assert is_built()
        _quad(-3.0)
        assert not is_built()
        build_bounds()
        clear_scene()
        assert not is_built()

    def test_bounds_cover_mesh(self):
        """Test that the bounding box of a mesh spans its vertices."""
        from pathtracer.scene.intersection import build_bounds, geom_bounds_max, geom_bounds_min

        _quad(-2.0, half=1.5)
        build_bounds()
        np.testing.assert_allclose(geom_bounds_min[0].to_numpy(), [-1.5, -1.5, -2.0])
        np.testing.assert_allclose(geom_bounds_max[0].to_numpy(), [1.5, 1.5, -2.0])


def _trace(origin, direction):
    """Run intersect() for one ray and return the hit fields."""
    from pathtracer.core.ray import make_ray
    from pathtracer.scene.intersection import intersect, resolve_intersection

    hit = ti.field(dtype=ti.i32, shape=())
    t = ti.field(dtype=ti.f32, shape=())
    ids = ti.field(dtype=ti.i32, shape=3)
    vectors = ti.Vector.field(3, dtype=ti.f32, shape=4)
    ox, oy, oz = origin
    dx, dy, dz = direction

    @ti.kernel
    def trace_kernel():
        ray = make_ray(ti.math.vec3(ox, oy, oz), ti.math.normalize(ti.math.vec3(dx, dy, dz)))
        hit[None] = intersect(ray)
        t[None] = ray.t_far
        ids[0] = ray.geom_id
        ids[1] = ray.prim_id
        if hit[None]:
            rec = resolve_intersection(ray)
            ids[2] = rec.material_id
            vectors[0] = rec.position
            vectors[1] = rec.geometry_normal
            vectors[2] = rec.shading_normal
            vectors[3] = rec.wo

    trace_kernel()
    return {
        "hit": hit[None],
        "t": t[None],
        "geom_id": ids[0],
        "prim_id": ids[1],
        "material_id": ids[2],
        "position": vectors[0].to_numpy(),
        "geometry_normal": vectors[1].to_numpy(),
        "shading_normal": vectors[2].to_numpy(),
        "wo": vectors[3].to_numpy(),
    }


class TestIntersect:
    """Tests for closest-hit queries."""

    def test_hit_quad(self):
        """Test a ray straight at a quad."""
        from pathtracer.scene.intersection import build_bounds

        _quad(-2.0, material_id=5)
        build_bounds()
        result = _trace((0.2, 0.3, 0.0), (0.0, 0.0, -1.0))

        assert result["hit"] == 1
        assert abs(result["t"] - 2.0) < 1e-5
        assert result["geom_id"] == 0
        assert result["prim_id"] in (0, 1)
        assert result["material_id"] == 5
        np.testing.assert_allclose(result["position"], [0.2, 0.3, -2.0], atol=1e-5)
        np.testing.assert_allclose(result["wo"], [0.0, 0.0, 1.0], atol=1e-6)
        np.testing.assert_allclose(result["geometry_normal"], [0.0, 0.0, 1.0], atol=1e-6)
        np.testing.assert_allclose(result["shading_normal"], [0.0, 0.0, 1.0], atol=1e-6)

    def test_miss_leaves_ray_unresolved(self):
        """Test that a miss keeps the invalid ids and the original interval."""
        from pathtracer.core.ray import INVALID_ID, T_FAR
        from pathtracer.scene.intersection import build_bounds

        _quad(-2.0)
        build_bounds()
        result = _trace((5.0, 0.0, 0.0), (0.0, 0.0, -1.0))

        assert result["hit"] == 0
        assert result["geom_id"] == INVALID_ID
        assert result["prim_id"] == INVALID_ID
        assert result["t"] == pytest.approx(T_FAR, rel=1e-6)

    def test_empty_scene_misses(self):
        """Test that an empty scene never reports a hit."""
        from pathtracer.scene.intersection import build_bounds

        build_bounds()
        assert _trace((0.0, 0.0, 0.0), (0.0, 0.0, -1.0))["hit"] == 0

    def test_closest_of_two(self):
        """Test that the nearer of two overlapping quads is reported."""
        from pathtracer.scene.intersection import build_bounds

        _quad(-5.0, material_id=1)
        _quad(-3.0, material_id=2)
        build_bounds()
        result = _trace((0.1, 0.1, 0.0), (0.0, 0.0, -1.0))

        assert result["geom_id"] == 1
        assert result["material_id"] == 2
        assert abs(result["t"] - 3.0) < 1e-5

    def test_hit_behind_origin_is_ignored(self):
        """Test that geometry behind the ray origin is not hit."""
        from pathtracer.scene.intersection import build_bounds

        _quad(2.0)
        build_bounds()
        assert _trace((0.0, 0.0, 0.0), (0.0, 0.0, -1.0))["hit"] == 0

    def test_back_face_flips_geometry_normal_only(self):
        """Test that the geometric normal faces the ray but the shading normal does not flip."""
        from pathtracer.scene.intersection import build_bounds

        _quad(-2.0)
        build_bounds()
        result = _trace((0.0, 0.0, -4.0), (0.0, 0.0, 1.0))

        assert result["hit"] == 1
        np.testing.assert_allclose(result["geometry_normal"], [0.0, 0.0, -1.0], atol=1e-6)
        np.testing.assert_allclose(result["shading_normal"], [0.0, 0.0, 1.0], atol=1e-6)

    def test_shading_normal_is_interpolated(self):
        """Test barycentric interpolation of vertex normals."""
        from pathtracer.scene.intersection import add_triangle_mesh, build_bounds

        positions = np.array([[[0, 0, -1], [1, 0, -1], [0, 1, -1]]], dtype=np.float32)
        normals = np.array([[[0, 0, 1], [1, 0, 0], [0, 1, 0]]], dtype=np.float32)
        add_triangle_mesh(positions, normals, 0)
        build_bounds()

        # u = 0.25, v = 0.25 gives weights (0.5, 0.25, 0.25)
        result = _trace((0.25, 0.25, 0.0), (0.0, 0.0, -1.0))
        expected = np.array([0.25, 0.25, 0.5])
        expected /= np.linalg.norm(expected)
        np.testing.assert_allclose(result["shading_normal"], expected, atol=1e-5)


class TestOccluded:
    """Tests for occlusion queries."""

    def _occluded(self, t_far):
        from pathtracer.core.ray import make_segment
        from pathtracer.scene.intersection import occluded

        result = ti.field(dtype=ti.i32, shape=())

        @ti.kernel
        def test_kernel():
            ray = make_segment(
                ti.math.vec3(0.0, 0.0, 0.0), ti.math.vec3(0.0, 0.0, -1.0), 0.0, t_far
            )
            result[None] = occluded(ray)

        test_kernel()
        return result[None]

    def test_blocker_inside_segment(self):
        """Test that a quad inside the segment occludes it."""
        from pathtracer.scene.intersection import build_bounds

        _quad(-2.0)
        build_bounds()
        assert self._occluded(3.0) == 1

    def test_blocker_beyond_segment(self):
        """Test that a quad past t_far does not occlude the segment."""
        from pathtracer.scene.intersection import build_bounds

        _quad(-2.0)
        build_bounds()
        assert self._occluded(1.5) == 0
