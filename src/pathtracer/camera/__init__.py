"""Camera module.

Cameras hand the renderer a view matrix and a projection matrix; primary rays
are built by unprojecting pixel positions through them.
"""

from .pinhole import PinholeCamera, camera_position, look_at, perspective

__all__ = [
    "PinholeCamera",
    "look_at",
    "perspective",
    "camera_position",
]
