#!/usr/bin/env python3
"""
Stereo GPU - Depth Map Tool
===========================

Computes a depth map from a stereo pair and prints stage timings.

Parameters start from a quality preset (or a YAML file) and individual
flags override single fields.

Usage:
    uv run python main.py im0.png im1.png opencl_out.png
    uv run python main.py im0.png im1.png out.png -F 2 -R 3 -D 128
    uv run python main.py im0.png im1.png out.png --preset fast --cpu
    uv run python main.py --info
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path

from stereo_gpu import (
    DepthEstimator,
    DeviceContext,
    EstimatorConfig,
    QualityPreset,
    ReferenceDepthEstimator,
    StereoGPUError,
    TileConfig,
)


logger = logging.getLogger("stereo_gpu.main")


# ============================================================================
# Configuration
# ============================================================================


@dataclass
class RunConfig:
    """Command line run configuration."""

    left: Path = Path("im0.png")
    right: Path = Path("im1.png")
    output: Path = Path("opencl_out.png")
    estimator: EstimatorConfig = field(default_factory=EstimatorConfig)
    use_cpu: bool = False

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> RunConfig:
        """Create from parsed arguments."""
        if args.config:
            base = EstimatorConfig.from_yaml(args.config)
        else:
            base = EstimatorConfig.for_preset(QualityPreset[args.preset.upper()])

        overrides = {
            name: value
            for name, value in (
                ("downsample_factor", args.factor),
                ("window_radius", args.radius),
                ("max_disparity", args.max_disparity),
                ("max_cross_difference", args.max_difference),
                ("occlusion_radius", args.occlusion_radius),
            )
            if value is not None
        }
        if args.tile is not None:
            tile_x, tile_y = args.tile
            overrides["tiles"] = TileConfig(
                base.tiles.group_size, tile_x, tile_y
            )
        if args.group_size is not None:
            tiles = overrides.get("tiles", base.tiles)
            overrides["tiles"] = tiles._replace(group_size=args.group_size)

        return cls(
            left=Path(args.left),
            right=Path(args.right),
            output=Path(args.output),
            estimator=replace(base, **overrides),
            use_cpu=args.cpu,
        )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Stereo block-matching depth estimation on OpenCL devices",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "left", nargs="?", default="im0.png", help="Left image (default: im0.png)"
    )
    parser.add_argument(
        "right", nargs="?", default="im1.png", help="Right image (default: im1.png)"
    )
    parser.add_argument(
        "output", nargs="?", default="opencl_out.png",
        help="Output depth image (default: opencl_out.png)"
    )
    parser.add_argument(
        "--factor", "-F", type=int, help="Downsample factor"
    )
    parser.add_argument(
        "--radius", "-R", type=int, help="Filter/correlation window radius"
    )
    parser.add_argument(
        "--max-disparity", "-D", type=int, help="Maximum disparity searched"
    )
    parser.add_argument(
        "--max-difference", "-T", type=int, help="Cross check threshold"
    )
    parser.add_argument(
        "--occlusion-radius", "-O", type=int, help="Occlusion fill window radius"
    )
    parser.add_argument(
        "--tile", type=int, nargs=2, metavar=("X", "Y"),
        help="Workgroup tile for 2-D stages"
    )
    parser.add_argument(
        "--group-size", type=int, help="Workgroup size for 1-D stages"
    )
    parser.add_argument(
        "--preset", "-p", choices=[p.name.lower() for p in QualityPreset],
        default="balanced", help="Quality preset (default: balanced)"
    )
    parser.add_argument(
        "--config", "-c", type=str, help="YAML estimator config (replaces --preset)"
    )
    parser.add_argument(
        "--cpu", action="store_true", help="Use the NumPy reference estimator"
    )
    parser.add_argument(
        "--info", action="store_true", help="Print OpenCL platform/device info and exit"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )

    return parser.parse_args(argv)


# ============================================================================
# Commands
# ============================================================================


def print_info() -> None:
    """Print the selected platform and device."""
    with DeviceContext() as device:
        print(device.describe().format_verbose())


def run(config: RunConfig) -> None:
    """Compute and write one depth map."""
    est_cls = ReferenceDepthEstimator if config.use_cpu else DepthEstimator

    with est_cls(config.estimator) as estimator:
        result = estimator.create_depth_map(config.left, config.right, config.output)

    print(result.report.format_verbose())
    print(f"Wrote {config.output} ({result.resolution}, "
          f"{result.valid_ratio * 100:.1f}% valid)")


# ============================================================================
# Entry Point
# ============================================================================


def main(argv: list[str] | None = None) -> int:
    """Main entry point. Returns the process exit status."""
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.info:
            print_info()
        else:
            run(RunConfig.from_args(args))
    except (StereoGPUError, ValueError, FileNotFoundError) as e:
        logger.debug("Run failed", exc_info=True)
        print(f"[ERROR] {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
