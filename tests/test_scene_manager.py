"""Tests for the SceneManager and the tessellation helpers.

Tests cover:
- Sphere and quad tessellation
- Material and geometry registration through the manager
- Validation of material ids
- Building the acceleration structure
- Scene serialization (to_dict/from_dict)
"""

import json

import numpy as np
import pytest


class TestTessellateSphere:
    """Tests for tessellate_sphere."""

    def test_triangle_count(self):
        """Test that pole triangles are dropped: 2 * segments * (rings - 1)."""
        from pathtracer.scene.manager import tessellate_sphere

        positions, normals = tessellate_sphere((0, 0, 0), 1.0, rings=6, segments=8)
        assert positions.shape == (2 * 8 * 5, 3, 3)
        assert normals.shape == positions.shape

    def test_vertices_lie_on_sphere(self):
        """Test that every vertex is at distance radius from the center."""
        from pathtracer.scene.manager import tessellate_sphere

        center = np.array([1.0, 2.0, -3.0])
        positions, normals = tessellate_sphere(tuple(center), 2.5, rings=8, segments=12)
        distances = np.linalg.norm(positions.reshape(-1, 3) - center, axis=-1)
        np.testing.assert_allclose(distances, 2.5, atol=1e-5)
        np.testing.assert_allclose(
            normals.reshape(-1, 3), (positions.reshape(-1, 3) - center) / 2.5, atol=1e-5
        )

    def test_winding_faces_outward(self):
        """Test that counter-clockwise face normals point away from the center."""
        from pathtracer.scene.manager import tessellate_sphere

        positions, _ = tessellate_sphere((0, 0, 0), 1.0, rings=8, segments=12)
        face = np.cross(positions[:, 1] - positions[:, 0], positions[:, 2] - positions[:, 0])
        centroid = positions.mean(axis=1)
        assert np.all(np.einsum("ij,ij->i", face, centroid) > 0.0)

    def test_no_degenerate_triangles(self):
        """Test that every triangle has non-zero area."""
        from pathtracer.scene.manager import tessellate_sphere

        positions, _ = tessellate_sphere((0, 0, 0), 1.0, rings=4, segments=6)
        face = np.cross(positions[:, 1] - positions[:, 0], positions[:, 2] - positions[:, 0])
        assert np.all(np.linalg.norm(face, axis=-1) > 1e-6)

    @pytest.mark.parametrize(
        "radius, rings, segments", [(0.0, 8, 8), (-1.0, 8, 8), (1.0, 1, 8), (1.0, 8, 2)]
    )
    def test_rejects_invalid_parameters(self, radius, rings, segments):
        """Test validation of radius and tessellation."""
        from pathtracer.scene.manager import tessellate_sphere

        with pytest.raises(ValueError):
            tessellate_sphere((0, 0, 0), radius, rings, segments)


class TestTessellateQuad:
    """Tests for tessellate_quad."""

    def test_two_triangles_with_flat_normal(self):
        """Test that a quad becomes two triangles facing edge_u x edge_v."""
        from pathtracer.scene.manager import tessellate_quad

        positions, normals = tessellate_quad((0, 0, 0), (2, 0, 0), (0, 0, -3))
        assert positions.shape == (2, 3, 3)
        np.testing.assert_allclose(normals.reshape(-1, 3), np.tile([0, 1, 0], (6, 1)))
        corners = {tuple(p) for p in positions.reshape(-1, 3).tolist()}
        assert corners == {(0, 0, 0), (2, 0, 0), (2, 0, -3), (0, 0, -3)}

    def test_rejects_parallel_edges(self):
        """Test that a zero-area quad is rejected."""
        from pathtracer.scene.manager import tessellate_quad

        with pytest.raises(ValueError, match="non-zero area"):
            tessellate_quad((0, 0, 0), (1, 0, 0), (2, 0, 0))


class TestSceneManagerGeometry:
    """Tests for materials and geometry added through the manager."""

    def test_add_material_and_info(self):
        """Test that materials are registered and their parameters kept."""
        from pathtracer.scene.manager import SceneManager

        scene = SceneManager()
        red = scene.add_material(color=(0.8, 0.1, 0.1), shininess=40.0, fresnel=0.04)
        gold = scene.add_material(color=(1.0, 0.8, 0.3), metalness=1.0, reflectivity=1.0)

        assert (red, gold) == (0, 1)
        assert scene.get_material_count() == 2
        info = scene.get_material_info(red)
        assert info.params["shininess"] == 40.0
        assert scene.get_material_info(7) is None

    def test_add_sphere_and_quad(self):
        """Test that geometry ids are shared between sphere and quad."""
        from pathtracer.scene.manager import SceneManager

        scene = SceneManager()
        mat = scene.add_material()
        quad = scene.add_quad((-5, 0, -5), (10, 0, 0), (0, 0, 10), mat)
        sphere = scene.add_sphere((0, 1, 0), 1.0, mat, rings=4, segments=6)

        assert (quad, sphere) == (0, 1)
        assert scene.get_geometry_count() == 2
        assert scene.get_triangle_count() == 2 + 2 * 6 * 3
        assert [g.kind for g in scene.geometries] == ["quad", "sphere"]

    def test_add_triangle_mesh(self):
        """Test adding a raw mesh."""
        from pathtracer.scene.manager import SceneManager

        scene = SceneManager()
        mat = scene.add_material()
        positions = [[[0, 0, 0], [1, 0, 0], [0, 1, 0]]]
        normals = [[[0, 0, 1], [0, 0, 1], [0, 0, 1]]]
        assert scene.add_triangle_mesh(positions, normals, mat) == 0
        assert scene.geometries[0].triangle_count == 1

    @pytest.mark.parametrize("material_id", [-1, 1, 100])
    def test_rejects_invalid_material_id(self, material_id):
        """Test that geometry must reference a registered material."""
        from pathtracer.scene.manager import SceneManager

        scene = SceneManager()
        scene.add_material()
        with pytest.raises(ValueError, match="Invalid material_id"):
            scene.add_sphere((0, 0, 0), 1.0, material_id)
        assert scene.get_geometry_count() == 0

    def test_build_acceleration_structure(self):
        """Test that building marks the structure ready."""
        from pathtracer.scene import intersection
        from pathtracer.scene.manager import SceneManager

        scene = SceneManager()
        mat = scene.add_material()
        scene.add_sphere((0, 0, -3), 1.0, mat, rings=4, segments=6)
        assert not intersection.is_built()
        scene.build_acceleration_structure()
        assert intersection.is_built()

    def test_clear(self):
        """Test that clear removes materials and geometry."""
        from pathtracer.scene.manager import SceneManager

        scene = SceneManager()
        mat = scene.add_material()
        scene.add_sphere((0, 0, 0), 1.0, mat, rings=4, segments=6)
        scene.clear()
        assert scene.get_material_count() == 0
        assert scene.get_geometry_count() == 0
        assert scene.get_triangle_count() == 0
        assert scene.geometries == []


class TestSceneSerialization:
    """Tests for to_dict/from_dict."""

    def _build(self):
        from pathtracer.scene.manager import SceneManager

        scene = SceneManager()
        floor = scene.add_material(color=(0.8, 0.8, 0.8))
        gold = scene.add_material(
            color=(1.0, 0.8, 0.3), shininess=200.0, fresnel=0.9, metalness=1.0, reflectivity=1.0
        )
        scene.add_quad((-5, 0, -5), (10, 0, 0), (0, 0, 10), floor)
        scene.add_sphere((0, 1, 0), 1.0, gold, rings=4, segments=6)
        scene.add_triangle_mesh(
            [[[0, 0, 0], [1, 0, 0], [0, 1, 0]]], [[[0, 0, 1], [0, 0, 1], [0, 0, 1]]], floor
        )
        return scene

    def test_to_dict_is_json_serializable(self):
        """Test that the exported dictionary survives a JSON round trip."""
        data = self._build().to_dict()
        assert json.loads(json.dumps(data)) == data
        assert len(data["materials"]) == 2
        assert len(data["quads"]) == 1
        assert len(data["spheres"]) == 1
        assert len(data["meshes"]) == 1
        assert data["spheres"][0]["material_id"] == 1

    def test_from_dict_rebuilds_scene(self):
        """Test that loading an exported scene recreates the same geometry."""
        from pathtracer.scene.manager import SceneManager

        original = self._build()
        data = original.to_dict()
        triangles = original.get_triangle_count()

        restored = SceneManager()
        restored.from_dict(json.loads(json.dumps(data)))
        assert restored.get_material_count() == 2
        assert restored.get_geometry_count() == 3
        assert restored.get_triangle_count() == triangles
        assert restored.to_dict()["materials"] == data["materials"]

    def test_from_dict_rejects_bad_material(self):
        """Test that invalid material parameters raise ValueError."""
        from pathtracer.scene.manager import SceneManager

        with pytest.raises(ValueError):
            SceneManager().from_dict({"materials": [{"color": [2.0, 0.0, 0.0]}]})
