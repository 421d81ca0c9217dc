"""
Stage Dispatch
==============

Host-side glue for the seven compute stages: work sizes, local-memory
tiles and argument binding. Every call binds the full argument list before
submitting, so nothing carries over from a previous submission.

Each method enqueues one kernel and returns its completion event.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pyopencl as cl

from .config import Resolution, TileConfig
from .errors import DispatchError

if TYPE_CHECKING:
    from .buffers import DeviceBuffer
    from .kernels import KernelLibrary


__all__ = [
    "LEFT",
    "RIGHT",
    "StageRunner",
]

# Search directions for the disparity stage
LEFT = -1
RIGHT = 1


class StageRunner:
    """
    Submits pipeline stages with the configured workgroup geometry.

    1-D stages (greyscale, rgba, crosscheck) cover width*height items in
    groups of tiles.group_size. 2-D stages cover the image in
    tiles.tile_x x tiles.tile_y groups, rounded up per axis.
    """

    __slots__ = ("_kernels", "_tiles")

    def __init__(self, kernels: KernelLibrary, tiles: TileConfig) -> None:
        self._kernels = kernels
        self._tiles = tiles

    @property
    def tiles(self) -> TileConfig:
        return self._tiles

    def _enqueue(
        self,
        name: str,
        queue: cl.CommandQueue,
        global_size: tuple[int, ...],
        local_size: tuple[int, ...],
        *args,
    ) -> cl.Event:
        try:
            return self._kernels[name](queue, global_size, local_size, *args)
        except cl.Error as exc:
            raise DispatchError(f"Could not submit {name} work: {exc}") from exc

    def greyscale(
        self,
        queue: cl.CommandQueue,
        img: DeviceBuffer,
        size: Resolution,
        out: DeviceBuffer,
    ) -> cl.Event:
        """RGBA image -> 1-channel luma."""
        return self._enqueue(
            "greyscale",
            queue,
            self._tiles.global_1d(size.pixel_count),
            (self._tiles.group_size,),
            img.handle,
            size.width,
            size.height,
            out.handle,
        )

    def rgba(
        self,
        queue: cl.CommandQueue,
        img: DeviceBuffer,
        size: Resolution,
        out: DeviceBuffer,
    ) -> cl.Event:
        """1-channel image -> RGBA (v, v, v, 255)."""
        return self._enqueue(
            "rgba",
            queue,
            self._tiles.global_1d(size.pixel_count),
            (self._tiles.group_size,),
            img.handle,
            size.width,
            size.height,
            out.handle,
        )

    def downsample(
        self,
        queue: cl.CommandQueue,
        img: DeviceBuffer,
        size: Resolution,
        factor: int,
        out: DeviceBuffer,
    ) -> cl.Event:
        """Full-size grey image -> block means at size // factor."""
        small = size.downsampled(factor)
        return self._enqueue(
            "downsample",
            queue,
            self._tiles.global_2d(small.width, small.height),
            self._tiles.local_2d,
            img.handle,
            size.width,
            size.height,
            factor,
            out.handle,
            cl.LocalMemory(self._tiles.downsample_tile_bytes(factor)),
        )

    def filter(
        self,
        queue: cl.CommandQueue,
        img: DeviceBuffer,
        size: Resolution,
        radius: int,
        out: DeviceBuffer,
    ) -> cl.Event:
        """Zero-padded fixed-divisor box mean."""
        return self._enqueue(
            "filter",
            queue,
            self._tiles.global_2d(size.width, size.height),
            self._tiles.local_2d,
            img.handle,
            size.width,
            size.height,
            radius,
            out.handle,
            cl.LocalMemory(self._tiles.filter_tile_bytes(radius)),
        )

    def disparity(
        self,
        queue: cl.CommandQueue,
        img_0: DeviceBuffer,
        img_1: DeviceBuffer,
        mean_0: DeviceBuffer,
        mean_1: DeviceBuffer,
        size: Resolution,
        radius: int,
        max_disparity: int,
        direction: int,
        out: DeviceBuffer,
    ) -> cl.Event:
        """ZNCC search of img_1 against reference img_0 along direction."""
        if direction not in (LEFT, RIGHT):
            raise DispatchError(f"Invalid search direction: {direction}")
        return self._enqueue(
            "disparity",
            queue,
            self._tiles.global_2d(size.width, size.height),
            self._tiles.local_2d,
            img_0.handle,
            img_1.handle,
            mean_0.handle,
            mean_1.handle,
            size.width,
            size.height,
            radius,
            max_disparity,
            direction,
            out.handle,
        )

    def crosscheck(
        self,
        queue: cl.CommandQueue,
        left: DeviceBuffer,
        right: DeviceBuffer,
        size: Resolution,
        max_difference: int,
    ) -> cl.Event:
        """Zero left where it disagrees with right by more than max_difference."""
        return self._enqueue(
            "crosscheck",
            queue,
            self._tiles.global_1d(size.pixel_count),
            (self._tiles.group_size,),
            left.handle,
            right.handle,
            size.width,
            size.height,
            max_difference,
        )

    def occlusion(
        self,
        queue: cl.CommandQueue,
        img: DeviceBuffer,
        size: Resolution,
        radius: int,
        out: DeviceBuffer,
    ) -> cl.Event:
        """Fill zero pixels with the mean of nonzero neighbours."""
        return self._enqueue(
            "occlusion",
            queue,
            self._tiles.global_2d(size.width, size.height),
            self._tiles.local_2d,
            img.handle,
            size.width,
            size.height,
            radius,
            out.handle,
        )
