#!/usr/bin/env python3
"""Render a scene progressively and save the result.

This script builds a small default scene (a ground quad and three spheres
with diffuse, glossy and metallic materials) or loads one from a JSON file
written by SceneManager.to_dict(), lights it with the point light and an
environment map, and accumulates a number of passes.

Usage:
    python examples/render_scene.py [options]

Options:
    --width WIDTH             Window width in pixels (default: 512)
    --height HEIGHT           Window height in pixels (default: 384)
    --passes PASSES           Number of passes to accumulate (default: 64)
    --max-bounces N           Maximum surface interactions per path (default: 8)
    --subsampling S           Render at window size / S (default: 1)
    --max-paths N             Stop after N passes per pixel, 0 = unbounded (default: 0)
    --env PATH                .hdr / .exr environment map (default: constant sky)
    --env-multiplier M        Environment intensity multiplier (default: 1.0)
    --scene PATH              JSON scene description (default: built-in scene)
    --output OUTPUT           PNG output path (default: render.png)
    --hdr-output PATH         Also write the linear image as .hdr / .exr
    --seed SEED               Seed of the per-pixel random streams (default: 0)
    --log-level LEVEL         Logging level (default: INFO)
    --cpu                     Force the CPU backend

Example:
    python examples/render_scene.py --width 320 --height 240 --passes 16 --cpu
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path

import taichi as ti

logger = logging.getLogger("render_scene")

DEFAULT_SKY = (0.6, 0.7, 0.9)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Render a scene with the progressive path tracer.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--width", type=int, default=512, help="Window width (default: 512)")
    parser.add_argument("--height", type=int, default=384, help="Window height (default: 384)")
    parser.add_argument(
        "--passes", type=int, default=64, help="Passes to accumulate (default: 64)"
    )
    parser.add_argument(
        "--max-bounces", type=int, default=8, help="Maximum bounces per path (default: 8)"
    )
    parser.add_argument(
        "--subsampling", type=int, default=1, help="Window size divisor (default: 1)"
    )
    parser.add_argument(
        "--max-paths",
        type=int,
        default=0,
        help="Stop after this many passes per pixel, 0 = unbounded (default: 0)",
    )
    parser.add_argument("--env", type=str, default=None, help="Environment map (.hdr / .exr)")
    parser.add_argument(
        "--env-multiplier",
        type=float,
        default=1.0,
        help="Environment intensity multiplier (default: 1.0)",
    )
    parser.add_argument("--scene", type=str, default=None, help="JSON scene description")
    parser.add_argument(
        "--output", type=str, default="render.png", help="PNG output path (default: render.png)"
    )
    parser.add_argument(
        "--hdr-output", type=str, default=None, help="Linear .hdr / .exr output path"
    )
    parser.add_argument("--seed", type=int, default=0, help="Random seed (default: 0)")
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument("--cpu", action="store_true", help="Force the CPU backend")
    return parser.parse_args(argv)


def build_default_scene(scene) -> None:
    """Populate a SceneManager with the built-in demo scene."""
    ground = scene.add_material(color=(0.7, 0.7, 0.7))
    plastic = scene.add_material(
        color=(0.8, 0.15, 0.1), shininess=80.0, fresnel=0.04, reflectivity=0.6
    )
    gold = scene.add_material(
        color=(1.0, 0.78, 0.34), shininess=400.0, fresnel=0.9, metalness=1.0, reflectivity=1.0
    )
    chalk = scene.add_material(color=(0.2, 0.4, 0.8))

    scene.add_quad((-10.0, 0.0, 10.0), (20.0, 0.0, 0.0), (0.0, 0.0, -20.0), ground)
    scene.add_sphere((-2.2, 1.0, 0.0), 1.0, plastic)
    scene.add_sphere((0.0, 1.0, 0.0), 1.0, gold)
    scene.add_sphere((2.2, 1.0, 0.0), 1.0, chalk)


def render_scene(args: argparse.Namespace) -> Path:
    """Build the scene, render it and write the output images.

    Returns:
        Path to the saved PNG.
    """
    # Lazy imports so the modules create their fields after ti.init()
    from pathtracer.camera.pinhole import PinholeCamera
    from pathtracer.core.progressive import create_renderer
    from pathtracer.core.settings import Settings
    from pathtracer.preview.export import save_hdr, save_png
    from pathtracer.scene.environment import EnvironmentMap, load_environment_map
    from pathtracer.scene.manager import SceneManager

    settings = Settings(
        max_bounces=args.max_bounces,
        max_paths_per_pixel=args.max_paths,
        subsampling=args.subsampling,
    )

    scene = SceneManager()
    if args.scene is not None:
        with open(args.scene, encoding="utf-8") as f:
            scene.from_dict(json.load(f))
        logger.info("Loaded scene %s", args.scene)
    else:
        build_default_scene(scene)
    scene.build_acceleration_structure()

    if args.env is not None:
        environment = load_environment_map(args.env, multiplier=args.env_multiplier)
    else:
        environment = EnvironmentMap.constant(DEFAULT_SKY, multiplier=args.env_multiplier)

    width = max(1, args.width // settings.subsampling)
    height = max(1, args.height // settings.subsampling)
    renderer = create_renderer(
        environment, settings=settings, max_width=width, max_height=height, seed=args.seed
    )
    renderer.resize(args.width, args.height)

    camera = PinholeCamera(
        lookfrom=(0.0, 3.0, 9.0),
        lookat=(0.0, 0.8, 0.0),
        vfov=35.0,
        aspect_ratio=args.width / args.height,
    )
    view = camera.view_matrix()
    proj = camera.projection_matrix()

    start_time = time.time()

    def progress_callback(current: int, target: int) -> None:
        elapsed = time.time() - start_time
        rate = current / elapsed if elapsed > 0 else 0.0
        logger.debug("Pass %d/%d (%.1f passes/s)", current, target, rate)

    completed = renderer.render(args.passes, view, proj, callback=progress_callback)
    logger.info(
        "Rendered %d passes at %dx%d in %.2fs",
        completed,
        renderer.width,
        renderer.height,
        time.time() - start_time,
    )

    image = renderer.get_image_numpy()
    output_file = Path(args.output)
    save_png(image, output_file, tone_map="reinhard", gamma=2.2)
    if args.hdr_output is not None:
        save_hdr(image, args.hdr_output)
    return output_file


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.cpu:
        ti.init(arch=ti.cpu)
    else:
        # Fall back to CPU when no GPU backend is available
        ti.init(arch=ti.gpu)

    try:
        output_file = render_scene(args)
    except Exception:
        logger.exception("Rendering failed")
        return 1
    logger.info("Saved to %s", output_file.absolute())
    return 0


if __name__ == "__main__":
    sys.exit(main())
