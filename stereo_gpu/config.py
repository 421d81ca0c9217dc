"""
Depth Estimator Configuration
==============================

Immutable configuration dataclasses for the GPU depth estimator.
All sizes are in pixels unless otherwise specified.

This module provides:
- Resolution: Type-safe image size representation
- TileConfig: Workgroup dimensions used by the compute stages
- QualityPreset: Predefined quality/speed tradeoffs
- EstimatorConfig: Main configuration with validation and factory methods
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import NamedTuple, Self


__all__ = [
    "Resolution",
    "TileConfig",
    "QualityPreset",
    "EstimatorConfig",
]


class Resolution(NamedTuple):
    """Type-safe resolution representation."""

    width: int
    height: int

    @property
    def pixel_count(self) -> int:
        """Total number of pixels."""
        return self.width * self.height

    def downsampled(self, factor: int) -> Resolution:
        """Return the resolution after integer downsampling by factor."""
        return Resolution(self.width // factor, self.height // factor)

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"

    @classmethod
    def parse(cls, s: str) -> Resolution:
        """Parse 'WxH' string to Resolution."""
        w, h = s.lower().split("x")
        return cls(int(w), int(h))


class TileConfig(NamedTuple):
    """Workgroup dimensions for kernel dispatch.

    Attributes:
        group_size: Work-items per group for the 1-D stages
        tile_x: Group width for the 2-D stages
        tile_y: Group height for the 2-D stages

    The 2-D tile also sets the size of the local-memory tiles staged by
    the downsample and filter kernels. The downsample tile grows with the
    square of the factor, so large factors need smaller tiles to fit a
    device's local memory.
    """

    group_size: int = 64
    tile_x: int = 8
    tile_y: int = 8

    @property
    def local_2d(self) -> tuple[int, int]:
        """Local work size for the 2-D stages."""
        return (self.tile_x, self.tile_y)

    def global_1d(self, count: int) -> tuple[int]:
        """Global size covering count elements, rounded up to whole groups."""
        groups = -(-count // self.group_size)
        return (groups * self.group_size,)

    def global_2d(self, width: int, height: int) -> tuple[int, int]:
        """Global size covering width x height, rounded up per axis."""
        return (
            -(-width // self.tile_x) * self.tile_x,
            -(-height // self.tile_y) * self.tile_y,
        )

    def downsample_tile_bytes(self, factor: int) -> int:
        """Local memory staged by one downsample workgroup."""
        return self.tile_x * factor * self.tile_y * factor

    def filter_tile_bytes(self, radius: int) -> int:
        """Local memory staged by one filter workgroup (tile plus apron)."""
        return (self.tile_x + 2 * radius) * (self.tile_y + 2 * radius)


class QualityPreset(Enum):
    """Predefined quality/performance tradeoffs."""

    FAST = auto()  # Coarse grid, short search
    BALANCED = auto()  # Good tradeoff for most use cases
    QUALITY = auto()  # Finer grid, longer search


@dataclass(frozen=True, slots=True)
class EstimatorConfig:
    """
    Immutable configuration for the depth estimator.

    Use factory methods for convenient construction:
    - EstimatorConfig.for_preset() - Use quality preset
    - EstimatorConfig.from_yaml() - Load from a YAML file

    Attributes:
        downsample_factor: Image shrink ratio applied before matching (F)
        window_radius: Filter/correlation half-window, side = 2R+1 (R)
        max_disparity: Exclusive upper bound on the searched offset (D)
        max_cross_difference: Left/right disparity agreement threshold (T)
        occlusion_radius: Fill-search half-window (Ro)
        tiles: Workgroup dimensions for kernel dispatch

    Example:
        >>> config = EstimatorConfig(downsample_factor=2, window_radius=3)
        >>> print(config.output_resolution(Resolution(640, 480)))
        320x240
    """

    downsample_factor: int = 4
    window_radius: int = 4
    max_disparity: int = 64
    max_cross_difference: int = 8
    occlusion_radius: int = 8
    tiles: TileConfig = field(default_factory=TileConfig)

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.downsample_factor < 1:
            raise ValueError(
                f"downsample_factor must be >= 1: {self.downsample_factor}"
            )
        if self.window_radius < 0:
            raise ValueError(f"window_radius must be >= 0: {self.window_radius}")
        if not 0 < self.max_disparity <= 255:
            raise ValueError(
                f"max_disparity must be in (0, 255]: {self.max_disparity}"
            )
        if not 0 <= self.max_cross_difference <= 255:
            raise ValueError(
                f"max_cross_difference must be in [0, 255]: {self.max_cross_difference}"
            )
        if self.occlusion_radius < 0:
            raise ValueError(
                f"occlusion_radius must be >= 0: {self.occlusion_radius}"
            )
        if min(self.tiles) <= 0:
            raise ValueError(f"Invalid tile dimensions: {tuple(self.tiles)}")

    @property
    def window_side(self) -> int:
        """Correlation window side length (2R+1)."""
        return 2 * self.window_radius + 1

    def output_resolution(self, resolution: Resolution) -> Resolution:
        """
        Get the size of the depth map produced for an input resolution.

        Raises:
            ValueError: If downsampling leaves an empty image
        """
        out = resolution.downsampled(self.downsample_factor)
        if out.width <= 0 or out.height <= 0:
            raise ValueError(
                f"Input {resolution} is too small for downsample factor "
                f"{self.downsample_factor}"
            )
        return out

    @classmethod
    def for_preset(cls, preset: QualityPreset) -> Self:
        """Create configuration with parameters for a preset."""
        match preset:
            case QualityPreset.FAST:
                return cls(
                    downsample_factor=4,
                    window_radius=2,
                    max_disparity=32,
                    occlusion_radius=4,
                )
            case QualityPreset.QUALITY:
                return cls(
                    downsample_factor=2,
                    window_radius=4,
                    max_disparity=128,
                    occlusion_radius=8,
                )
            case _:  # BALANCED
                return cls()  # Defaults are balanced

    def to_dict(self) -> dict:
        """Serialize to dictionary (for JSON storage)."""
        return {
            "downsample_factor": self.downsample_factor,
            "window_radius": self.window_radius,
            "max_disparity": self.max_disparity,
            "max_cross_difference": self.max_cross_difference,
            "occlusion_radius": self.occlusion_radius,
            "tiles": {
                "group_size": self.tiles.group_size,
                "tile_x": self.tiles.tile_x,
                "tile_y": self.tiles.tile_y,
            },
        }

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """
        Create configuration from dictionary.

        Args:
            data: Dictionary with configuration values (from to_dict())

        Returns:
            EstimatorConfig instance
        """
        tile_data = data.get("tiles", {})
        tiles = TileConfig(
            group_size=tile_data.get("group_size", 64),
            tile_x=tile_data.get("tile_x", 8),
            tile_y=tile_data.get("tile_y", 8),
        )

        return cls(
            downsample_factor=data.get("downsample_factor", 4),
            window_radius=data.get("window_radius", 4),
            max_disparity=data.get("max_disparity", 64),
            max_cross_difference=data.get("max_cross_difference", 8),
            occlusion_radius=data.get("occlusion_radius", 8),
            tiles=tiles,
        )

    @classmethod
    def from_json(cls, json_str: str) -> Self:
        """Create configuration from JSON string (from to_json())."""
        return cls.from_dict(json.loads(json_str))

    @classmethod
    def from_yaml(cls, path: str | Path) -> Self:
        """
        Load configuration from a YAML file.

        File format:
            downsample_factor: 4
            window_radius: 4
            max_disparity: 64
            max_cross_difference: 8
            occlusion_radius: 8
            tiles: {group_size: 64, tile_x: 8, tile_y: 8}

        Raises:
            FileNotFoundError: If file doesn't exist
            ValueError: If file format is invalid
        """
        import yaml

        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f)

        if not isinstance(data, dict):
            raise ValueError(f"Invalid config file format: {path}")

        return cls.from_dict(data)

    def save_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file (creates parent dirs)."""
        import yaml

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)
