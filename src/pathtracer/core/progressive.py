"""Progressive renderer accumulating one path per pixel per pass.

Each call to ``trace_paths`` launches one Taichi kernel that traces one path
through every pixel and blends the estimate into a running average:

    pixel = pixel * n / (n + 1) + color / (n + 1)

where n is the number of passes blended in since the last restart. After the
kernel returns the counter is incremented once on the host, so every pixel of
a pass uses the same n. With n = 0 the blend is a pure overwrite, which is why
``restart`` only zeroes the counter.

Anything that changes the image being estimated (camera, settings, light,
environment intensity) must restart accumulation. The renderer does this for
its own mutators and for camera matrices that differ from the previous pass.

Passes are issued synchronously from the host under a lock. A restart from
another thread waits for the pass in flight; passes are never aborted midway.

Example:
    >>> import taichi as ti
    >>> ti.init(arch=ti.cpu)
    >>> from pathtracer.camera.pinhole import PinholeCamera
    >>> from pathtracer.core.progressive import create_renderer
    >>> from pathtracer.scene.environment import EnvironmentMap
    >>> renderer = create_renderer(EnvironmentMap.constant((0.5, 0.6, 0.8)))
    >>> renderer.resize(640, 480)
    >>> camera = PinholeCamera(lookfrom=(0, 2, 8), lookat=(0, 0, 0), aspect_ratio=640 / 480)
    >>> renderer.render(16, camera.view_matrix(), camera.projection_matrix())
    >>> image = renderer.get_image_numpy()
"""

import logging
import threading
from collections.abc import Callable, Generator
from dataclasses import replace

import numpy as np
import numpy.typing as npt
import taichi as ti
import taichi.math as tm

from pathtracer.camera.pinhole import camera_position
from pathtracer.core.integrator import PathIntegrator
from pathtracer.core.ray import make_ray
from pathtracer.core.sampling import RngPool
from pathtracer.core.settings import Settings
from pathtracer.scene import intersection

logger = logging.getLogger(__name__)

vec3 = tm.vec3
vec4 = tm.vec4

# Maximum supported image dimensions (preallocated to avoid kernel recompilation)
MAX_IMAGE_WIDTH = 2048
MAX_IMAGE_HEIGHT = 2048

# Type alias for progress callback
# Callback receives (current_samples, total_target_samples)
ProgressCallback = Callable[[int, int], None]


@ti.data_oriented
class ProgressiveRenderer:
    """Running-average image plus the driver loop that feeds it.

    The color buffer is preallocated to max_height x max_width; resizing only
    changes the active region. Row 0 of the buffer is the bottom scanline.

    Attributes:
        integrator: PathIntegrator tracing the paths.
        settings: Current render settings.
        buffer: Taichi vector field of shape (max_height, max_width).
    """

    def __init__(
        self,
        integrator: PathIntegrator,
        settings: Settings | None = None,
        max_width: int = MAX_IMAGE_WIDTH,
        max_height: int = MAX_IMAGE_HEIGHT,
    ) -> None:
        """Create a renderer with an empty 1x1 image.

        Args:
            integrator: Integrator whose RNG pool has one stream per pixel of
                the largest image.
            settings: Render settings. Defaults to Settings().
            max_width: Largest supported image width.
            max_height: Largest supported image height.

        Raises:
            ValueError: If the maximum size is not positive or the RNG pool
                is too small for it.
        """
        if max_width <= 0 or max_height <= 0:
            raise ValueError(f"Maximum size must be positive, got {max_width}x{max_height}")
        if integrator.rng.size < max_width * max_height:
            raise ValueError(
                f"RNG pool has {integrator.rng.size} streams, need one per pixel "
                f"({max_width * max_height})"
            )

        self.integrator = integrator
        self.settings = settings if settings is not None else Settings()
        self.max_width = max_width
        self.max_height = max_height
        integrator.set_ray_epsilon(self.settings.ray_epsilon)

        self.buffer = ti.Vector.field(3, dtype=ti.f32, shape=(max_height, max_width))
        self.inv_view_proj = ti.Matrix.field(4, 4, dtype=ti.f32, shape=())
        self.camera_origin = ti.Vector.field(3, dtype=ti.f32, shape=())

        self._lock = threading.Lock()
        self._sample_count = 0
        self._width = 1
        self._height = 1
        self._window_width = 1
        self._window_height = 1
        self._last_view: npt.NDArray[np.float32] | None = None
        self._last_proj: npt.NDArray[np.float32] | None = None
        self.buffer.fill(0.0)

    @property
    def width(self) -> int:
        """Get the active image width."""
        return self._width

    @property
    def height(self) -> int:
        """Get the active image height."""
        return self._height

    @property
    def sample_count(self) -> int:
        """Get the number of passes blended in since the last restart."""
        return self._sample_count

    def _active_size(
        self, window_width: int, window_height: int, subsampling: int
    ) -> tuple[int, int]:
        """Image size for a window size and subsampling factor, validated."""
        if window_width <= 0 or window_height <= 0:
            raise ValueError(f"Window size must be positive, got {window_width}x{window_height}")
        width = max(1, window_width // subsampling)
        height = max(1, window_height // subsampling)
        if width > self.max_width or height > self.max_height:
            raise ValueError(
                f"Image dimensions ({width}x{height}) exceed maximum supported "
                f"({self.max_width}x{self.max_height})"
            )
        return width, height

    def resize(self, window_width: int, window_height: int) -> None:
        """Set the output size and clear the image.

        The active size is the window size divided by the subsampling factor,
        never smaller than 1x1.

        Args:
            window_width: Window width in pixels.
            window_height: Window height in pixels.

        Raises:
            ValueError: If the window size is not positive or the active size
                exceeds the maximum.
        """
        s = self.settings.subsampling
        width, height = self._active_size(window_width, window_height, s)

        with self._lock:
            self._window_width = window_width
            self._window_height = window_height
            self._width = width
            self._height = height
            self.buffer.fill(0.0)
            self._sample_count = 0
        logger.debug(
            "Resized to %dx%d (window %dx%d, subsampling %d)",
            width,
            height,
            window_width,
            window_height,
            s,
        )

    def restart(self) -> None:
        """Restart accumulation.

        Only the counter is reset; the next pass overwrites every texel.
        """
        with self._lock:
            self._sample_count = 0
        logger.debug("Restarted accumulation")

    def update_settings(self, **changes) -> Settings:
        """Change render settings and restart accumulation.

        A change of subsampling also resizes the image.

        Args:
            **changes: Settings fields to change.

        Returns:
            The new settings.

        Raises:
            ValueError: If a field is unknown or a value is out of range.
        """
        unknown = set(changes) - set(self.settings.to_dict())
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")
        new_settings = replace(self.settings, **changes)
        resized = new_settings.subsampling != self.settings.subsampling
        if resized:
            self._active_size(self._window_width, self._window_height, new_settings.subsampling)

        self.integrator.set_ray_epsilon(new_settings.ray_epsilon)
        self.settings = new_settings
        if resized:
            self.resize(self._window_width, self._window_height)
        else:
            self.restart()
        return new_settings

    def set_point_light(
        self,
        position: tuple[float, float, float] | None = None,
        color: tuple[float, float, float] | None = None,
        intensity: float | None = None,
    ) -> None:
        """Update the point light and restart accumulation."""
        self.integrator.light.set(position=position, color=color, intensity=intensity)
        self.restart()

    def set_environment_multiplier(self, multiplier: float) -> None:
        """Update the environment intensity and restart accumulation."""
        self.integrator.environment.set_multiplier(multiplier)
        self.restart()

    @ti.kernel
    def _trace_pass(
        self,
        width: ti.i32,
        height: ti.i32,
        n: ti.f32,
        max_bounces: ti.i32,
        jitter: ti.i32,
    ):
        """Trace one path per pixel and blend it into the running average."""
        inv_view_proj = self.inv_view_proj[None]
        origin = self.camera_origin[None]
        for y, x in ti.ndrange(height, width):
            stream = y * width + x

            dx = 0.5
            dy = 0.5
            if jitter:
                dx = self.integrator.rng.uniform(stream)
                dy = self.integrator.rng.uniform(stream)

            ndc = vec4((x + dx) / width * 2.0 - 1.0, (y + dy) / height * 2.0 - 1.0, 1.0, 1.0)
            p = inv_view_proj @ ndc
            target = vec3(p.x, p.y, p.z) / p.w
            ray = make_ray(origin, tm.normalize(target - origin))

            color = self.integrator.shade(ray, max_bounces, stream)

            # Check for NaN/Inf and replace with zero
            for c in ti.static(range(3)):
                if tm.isnan(color[c]) or tm.isinf(color[c]):
                    color[c] = 0.0

            self.buffer[y, x] = self.buffer[y, x] * (n / (n + 1.0)) + color * (1.0 / (n + 1.0))

    def _set_camera(self, view: npt.ArrayLike, proj: npt.ArrayLike) -> None:
        view_m = np.asarray(view, dtype=np.float32)
        proj_m = np.asarray(proj, dtype=np.float32)
        if view_m.shape != (4, 4) or proj_m.shape != (4, 4):
            raise ValueError(
                f"View and projection must be 4x4 matrices, got {view_m.shape} and {proj_m.shape}"
            )
        changed = (
            self._last_view is None
            or self._last_proj is None
            or not np.array_equal(view_m, self._last_view)
            or not np.array_equal(proj_m, self._last_proj)
        )
        if changed:
            if self._sample_count > 0:
                logger.debug("Camera changed, restarting accumulation")
            self._sample_count = 0
            self._last_view = view_m.copy()
            self._last_proj = proj_m.copy()
            inv_view_proj = np.linalg.inv(proj_m.astype(np.float64) @ view_m.astype(np.float64))
            self.inv_view_proj[None] = ti.Matrix(inv_view_proj.astype(np.float32).tolist())
            self.camera_origin[None] = ti.Vector(camera_position(view_m).tolist())

    def trace_paths(self, view: npt.ArrayLike, proj: npt.ArrayLike) -> bool:
        """Run one pass: one path per pixel, blended into the image.

        Does nothing once max_paths_per_pixel passes have been blended in (when
        the cap is non-zero). A view or projection matrix that differs from the
        previous pass restarts accumulation first.

        Args:
            view: 4x4 world-to-view matrix.
            proj: 4x4 view-to-clip matrix.

        Returns:
            True if a pass ran, False if the sample cap was already reached.

        Raises:
            RuntimeError: If the scene's acceleration structure is not built.
            ValueError: If the matrices are not 4x4.
        """
        if not intersection.is_built():
            raise RuntimeError(
                "Acceleration structure not built. Call build_acceleration_structure() first."
            )

        with self._lock:
            self._set_camera(view, proj)
            cap = self.settings.max_paths_per_pixel
            if cap > 0 and self._sample_count >= cap:
                logger.debug("Sample cap of %d reached, skipping pass", cap)
                return False

            self._trace_pass(
                self._width,
                self._height,
                float(self._sample_count),
                self.settings.max_bounces,
                int(self.settings.jitter),
            )
            self._sample_count += 1
        return True

    def render(
        self,
        num_passes: int,
        view: npt.ArrayLike,
        proj: npt.ArrayLike,
        callback: ProgressCallback | None = None,
    ) -> int:
        """Run several passes with an optional progress callback.

        Stops early once the sample cap is reached.

        Args:
            num_passes: Number of passes to attempt.
            view: 4x4 world-to-view matrix.
            proj: 4x4 view-to-clip matrix.
            callback: Optional callback called after each pass with
                (current_samples, target_samples).

        Returns:
            The number of passes that ran.
        """
        completed = 0
        for current, target in self.render_progressive(num_passes, view, proj):
            completed += 1
            if callback is not None:
                callback(current, target)
        return completed

    def render_progressive(
        self,
        num_passes: int,
        view: npt.ArrayLike,
        proj: npt.ArrayLike,
    ) -> Generator[tuple[int, int], None, None]:
        """Run passes, yielding progress after each one.

        The camera is applied before the first pass, so a camera change
        restarts accumulation before the target is computed.

        Yields:
            Tuple of (current_samples, target_samples).
        """
        if num_passes <= 0:
            return

        with self._lock:
            self._set_camera(view, proj)
        target = self.sample_count + num_passes
        for _ in range(num_passes):
            if not self.trace_paths(view, proj):
                return
            yield (self.sample_count, target)

    def get_buffer_numpy(self) -> npt.NDArray[np.float32]:
        """Get a copy of the active region of the raw accumulation buffer.

        Returns:
            Array of shape (height, width, 3), row 0 = bottom scanline.
        """
        return self.buffer.to_numpy()[: self._height, : self._width].copy()

    def get_image_numpy(self) -> npt.NDArray[np.float32]:
        """Get the accumulated linear image in top-down row order.

        Returns:
            Array of shape (height, width, 3) with dtype float32.
        """
        return np.ascontiguousarray(np.flipud(self.get_buffer_numpy()))

    def __repr__(self) -> str:
        """Return a string representation of the renderer state."""
        return (
            f"ProgressiveRenderer(width={self.width}, height={self.height}, "
            f"samples={self.sample_count})"
        )


def create_renderer(
    environment,
    light=None,
    settings: Settings | None = None,
    max_width: int = MAX_IMAGE_WIDTH,
    max_height: int = MAX_IMAGE_HEIGHT,
    seed: int = 0,
) -> ProgressiveRenderer:
    """Wire an RNG pool, the material BRDF tree, an integrator and a renderer.

    Args:
        environment: EnvironmentMap for escaped rays.
        light: PointLight, or None for the default light.
        settings: Render settings, or None for defaults.
        max_width: Largest supported image width.
        max_height: Largest supported image height.
        seed: Seed of the per-pixel random streams.

    Returns:
        A renderer with a 1x1 image; call resize() before rendering.
    """
    settings = settings if settings is not None else Settings()
    rng = RngPool(size=max_width * max_height, seed=seed)
    integrator = PathIntegrator(rng, environment, light=light, ray_epsilon=settings.ray_epsilon)
    return ProgressiveRenderer(integrator, settings, max_width=max_width, max_height=max_height)
