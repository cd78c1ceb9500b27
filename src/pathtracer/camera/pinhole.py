"""Pinhole camera producing view and projection matrices.

The progressive renderer consumes a camera as a pair of 4x4 matrices in the
OpenGL convention (right-handed view space looking down -Z, clip space depth
in [-1, 1]). Primary rays are generated by unprojecting normalized device
coordinates through ``inverse(projection @ view)``, so any camera that can be
expressed as these two matrices works.

Example:
    >>> from pathtracer.camera.pinhole import PinholeCamera
    >>> camera = PinholeCamera(
    ...     lookfrom=(0.0, 2.0, 8.0),
    ...     lookat=(0.0, 0.0, 0.0),
    ...     vup=(0.0, 1.0, 0.0),
    ...     vfov=45.0,
    ...     aspect_ratio=16.0 / 9.0,
    ... )
    >>> view = camera.view_matrix()
    >>> proj = camera.projection_matrix()
"""

import math
from dataclasses import dataclass

import numpy as np
import numpy.typing as npt


def _normalize(v: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    length = np.linalg.norm(v)
    if length < 1e-12:
        raise ValueError("Cannot normalize a zero-length vector")
    return v / length


def look_at(
    eye: tuple[float, float, float],
    target: tuple[float, float, float],
    up: tuple[float, float, float],
) -> npt.NDArray[np.float32]:
    """Build a world-to-view matrix.

    Args:
        eye: Camera position.
        target: Point the camera looks at.
        up: Approximate up direction.

    Returns:
        A 4x4 float32 matrix mapping world space to view space.

    Raises:
        ValueError: If eye equals target or up is parallel to the view direction.
    """
    eye_v = np.asarray(eye, dtype=np.float64)
    forward = _normalize(np.asarray(target, dtype=np.float64) - eye_v)
    right = _normalize(np.cross(forward, np.asarray(up, dtype=np.float64)))
    true_up = np.cross(right, forward)

    view = np.identity(4, dtype=np.float64)
    view[0, :3] = right
    view[1, :3] = true_up
    view[2, :3] = -forward
    view[:3, 3] = -view[:3, :3] @ eye_v
    return view.astype(np.float32)


def perspective(
    fovy_degrees: float,
    aspect: float,
    near: float,
    far: float,
) -> npt.NDArray[np.float32]:
    """Build an OpenGL-style perspective projection matrix.

    Args:
        fovy_degrees: Vertical field of view in degrees, in (0, 180).
        aspect: Width divided by height.
        near: Distance to the near plane, positive.
        far: Distance to the far plane, greater than near.

    Returns:
        A 4x4 float32 matrix mapping view space to clip space.

    Raises:
        ValueError: If any parameter is out of range.
    """
    if not 0.0 < fovy_degrees < 180.0:
        raise ValueError(f"fovy must be in (0, 180) degrees, got {fovy_degrees}")
    if aspect <= 0.0:
        raise ValueError(f"aspect must be positive, got {aspect}")
    if near <= 0.0 or far <= near:
        raise ValueError(f"Need 0 < near < far, got near={near}, far={far}")

    f = 1.0 / math.tan(math.radians(fovy_degrees) / 2.0)
    proj = np.zeros((4, 4), dtype=np.float64)
    proj[0, 0] = f / aspect
    proj[1, 1] = f
    proj[2, 2] = (far + near) / (near - far)
    proj[2, 3] = 2.0 * far * near / (near - far)
    proj[3, 2] = -1.0
    return proj.astype(np.float32)


def camera_position(view: npt.ArrayLike) -> npt.NDArray[np.float32]:
    """Recover the camera origin as inverse(view) @ (0, 0, 0, 1)."""
    origin = np.linalg.inv(np.asarray(view, dtype=np.float64)) @ np.array([0.0, 0.0, 0.0, 1.0])
    return (origin[:3] / origin[3]).astype(np.float32)


@dataclass
class PinholeCamera:
    """Configuration for a pinhole (perspective) camera.

    Attributes:
        lookfrom: Camera position in world space (x, y, z).
        lookat: Point the camera is looking at in world space (x, y, z).
        vup: Up direction vector for camera orientation (typically (0, 1, 0)).
        vfov: Vertical field of view in degrees.
        aspect_ratio: Width divided by height of the output image.
        near: Near plane distance. Only affects depth precision of the
            matrices, never which surfaces rays can hit.
        far: Far plane distance.
    """

    lookfrom: tuple[float, float, float]
    lookat: tuple[float, float, float]
    vup: tuple[float, float, float] = (0.0, 1.0, 0.0)
    vfov: float = 45.0
    aspect_ratio: float = 1.0
    near: float = 0.1
    far: float = 1000.0

    def view_matrix(self) -> npt.NDArray[np.float32]:
        """World-to-view matrix of the camera."""
        return look_at(self.lookfrom, self.lookat, self.vup)

    def projection_matrix(self) -> npt.NDArray[np.float32]:
        """View-to-clip matrix of the camera."""
        return perspective(self.vfov, self.aspect_ratio, self.near, self.far)
