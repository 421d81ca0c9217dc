"""
Stereo Depth Estimator
======================

GPU block-matching depth estimation from a stereo pair of RGBA images.

Pipeline (queue A carries the left image, queue B the right image):

    A: upload -> greyscale -> downsample -> filter ─┐
    B: upload -> greyscale -> downsample -> filter ─┤ join
    A: disparity (left reference, search -x)  ──────┤
    B: disparity (right reference, search +x) ──────┤ join
    A: crosscheck -> occlusion fill -> rgba ────────┘ join -> download

Each disparity pass reads the downsampled and filtered images of both
queues, which is only safe after the first join.

This module provides:
- DepthMapResult: Immutable result container with output image and timings
- BaseDepthEstimator: File-level entry point shared by all backends
- DepthEstimator: The OpenCL pipeline orchestrator
"""

from __future__ import annotations

import logging
from contextlib import AbstractContextManager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np

from .buffers import AccessIntent, BufferManager
from .codec import ImageCodec, OpenCVCodec
from .config import EstimatorConfig, Resolution
from .device import DeviceContext
from .errors import ResourceError, StereoGPUError
from .kernels import KernelLibrary
from .profiler import ProfileReport, Profiler
from .stages import LEFT, RIGHT, StageRunner

if TYPE_CHECKING:
    import numpy.typing as npt


__all__ = [
    "STAGE_LABELS",
    "DepthMapResult",
    "BaseDepthEstimator",
    "DepthEstimator",
]

logger = logging.getLogger(__name__)

SIDES = ("Left", "Right")

STAGE_LABELS: tuple[str, ...] = (
    "Left greyscale",
    "Left downsample",
    "Left filter",
    "Right greyscale",
    "Right downsample",
    "Right filter",
    "Left disparity",
    "Right disparity",
    "Cross check",
    "Occlusion fill",
    "Convert rgba",
)


@dataclass(frozen=True, slots=True)
class DepthMapResult:
    """
    Immutable container for one depth-map run.

    Attributes:
        rgba: (H, W, 4) uint8 visualisation, (v, v, v, 255) per pixel
        report: Stage timings for the run
    """

    rgba: npt.NDArray
    report: ProfileReport

    @property
    def disparity(self) -> npt.NDArray:
        """(H, W) uint8 disparity values after cross check and fill."""
        return self.rgba[:, :, 0]

    @property
    def resolution(self) -> Resolution:
        """Output image size."""
        return Resolution(self.rgba.shape[1], self.rgba.shape[0])

    @property
    def valid_ratio(self) -> float:
        """Fraction of pixels with nonzero disparity."""
        return float(np.count_nonzero(self.disparity)) / self.disparity.size


class BaseDepthEstimator(AbstractContextManager):
    """
    Base class providing the file-level API and input validation.

    Concrete backends implement compute() on in-memory RGBA arrays.
    """

    __slots__ = ("_config", "_codec")

    def __init__(
        self, config: EstimatorConfig, codec: ImageCodec | None = None
    ) -> None:
        self._config = config
        self._codec: ImageCodec = codec if codec is not None else OpenCVCodec()

    @property
    def config(self) -> EstimatorConfig:
        """Get estimator configuration."""
        return self._config

    def compute(self, left: npt.NDArray, right: npt.NDArray) -> DepthMapResult:
        """Compute the depth map for an RGBA pair - implemented by subclass."""
        raise NotImplementedError

    def create_depth_map(
        self,
        left_path: str | Path,
        right_path: str | Path,
        out_path: str | Path,
    ) -> DepthMapResult:
        """
        Read a stereo pair, compute its depth map and write it as RGBA.

        Nothing is written unless the whole pipeline succeeds.

        Args:
            left_path: Left camera image
            right_path: Right camera image
            out_path: Output image, (width // F) x (height // F)

        Raises:
            CodecError: If an image cannot be read or written
            StereoGPUError: For any device failure
        """
        left = self._codec.decode(left_path)
        right = self._codec.decode(right_path)
        result = self.compute(left, right)
        self._codec.encode(out_path, result.rgba)
        return result

    def _check_pair(
        self, left: npt.NDArray, right: npt.NDArray
    ) -> tuple[Resolution, Resolution]:
        """Validate an input pair; returns (input size, output size)."""
        for name, img in (("left", left), ("right", right)):
            if img.dtype != np.uint8 or img.ndim != 3 or img.shape[2] != 4:
                raise ValueError(
                    f"{name} image must be (H, W, 4) uint8 RGBA, "
                    f"got {img.dtype} {img.shape}"
                )
        if left.shape != right.shape:
            raise ValueError(
                f"Image sizes differ: {left.shape[1]}x{left.shape[0]} "
                f"vs {right.shape[1]}x{right.shape[0]}"
            )
        size = Resolution(left.shape[1], left.shape[0])
        return size, self._config.output_resolution(size)

    def release(self) -> None:
        """Release backend resources."""

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        """Context manager exit - ensures release is called."""
        self.release()
        return False


class DepthEstimator(BaseDepthEstimator):
    """
    OpenCL stereo depth estimator.

    The device context and compiled kernels are created once here and
    live until release(); buffers and events live for one compute() call.

    Example:
        >>> with DepthEstimator(EstimatorConfig()) as estimator:
        ...     result = estimator.create_depth_map("im0.png", "im1.png", "out.png")
        ...     print(result.report.format_verbose())

    Raises:
        DeviceNotFoundError: If no OpenCL platform or device exists
        KernelBuildError: If a kernel fails to compile
        ResourceError: If the device cannot host the configured tiles
    """

    __slots__ = ("_device", "_kernels", "_stages")

    def __init__(
        self,
        config: EstimatorConfig,
        codec: ImageCodec | None = None,
        device: DeviceContext | None = None,
    ) -> None:
        super().__init__(config, codec)
        self._device = device if device is not None else DeviceContext()
        try:
            self._check_device_limits()
            self._kernels = KernelLibrary(self._device)
        except StereoGPUError:
            self._device.release()
            raise
        self._stages = StageRunner(self._kernels, config.tiles)

    def _check_device_limits(self) -> None:
        cfg = self._config
        dev = self._device.device
        tiles = cfg.tiles

        if max(tiles.group_size, tiles.tile_x * tiles.tile_y) > dev.max_work_group_size:
            raise ResourceError(
                f"Workgroup size exceeds device limit {dev.max_work_group_size}"
            )
        item_sizes = dev.max_work_item_sizes
        if (
            tiles.group_size > item_sizes[0]
            or tiles.tile_x > item_sizes[0]
            or tiles.tile_y > item_sizes[1]
        ):
            raise ResourceError(
                f"Workgroup dimensions {tuple(tiles)} exceed device item sizes "
                f"{tuple(item_sizes)}"
            )

        local = max(
            tiles.downsample_tile_bytes(cfg.downsample_factor),
            tiles.filter_tile_bytes(cfg.window_radius),
        )
        if local > dev.local_mem_size:
            raise ResourceError(
                f"Local tile of {local}B exceeds device local memory "
                f"of {dev.local_mem_size}B"
            )

        if "cl_khr_fp64" not in dev.extensions:
            logger.warning("Device lacks fp64; ZNCC scores use single precision")

    @property
    def device(self) -> DeviceContext:
        """Get the owned device context."""
        return self._device

    @property
    def kernels(self) -> KernelLibrary:
        """Get the compiled kernel library."""
        return self._kernels

    def compute(self, left: npt.NDArray, right: npt.NDArray) -> DepthMapResult:
        """
        Run the full pipeline on an in-memory RGBA pair.

        Args:
            left: (h, w, 4) uint8 left image
            right: (h, w, 4) uint8 right image, same size

        Returns:
            DepthMapResult with a (h // F, w // F) RGBA image

        Raises:
            ValueError: If the images are malformed or too small
            ResourceError: If a buffer cannot be allocated
            DispatchError: If a stage cannot be submitted
        """
        if not self._device.is_open:
            raise ResourceError("Estimator has been released")

        size, small = self._check_pair(left, right)
        cfg = self._config
        device = self._device
        stages = self._stages
        queues = device.queues
        profiler = Profiler("OpenCL Depth Estimator")

        logger.info("Depth map %s -> %s on %s", size, small, device.device.name.strip())

        with BufferManager(device) as buffers:
            profiler.start()

            img = [
                buffers.transfer_in(queue, pixels, f"{side.lower()}-rgba")[0]
                for side, queue, pixels in zip(SIDES, queues, (left, right))
            ]

            def pair(kind: str, nbytes: int) -> list:
                return [
                    buffers.allocate(
                        AccessIntent.DEVICE_ONLY, nbytes, label=f"{side.lower()}-{kind}"
                    )
                    for side in SIDES
                ]

            grey = pair("grey", size.pixel_count)
            down = pair("down", small.pixel_count)
            mean = pair("mean", small.pixel_count)
            disp = pair("disparity", small.pixel_count)
            filled = buffers.allocate(AccessIntent.DEVICE_ONLY, small.pixel_count, label="filled")
            out = buffers.allocate(AccessIntent.DEVICE_ONLY, small.pixel_count * 4, label="out")

            for i, (side, queue) in enumerate(zip(SIDES, queues)):
                profiler.record(
                    f"{side} greyscale", stages.greyscale(queue, img[i], size, grey[i])
                )
                profiler.record(
                    f"{side} downsample",
                    stages.downsample(queue, grey[i], size, cfg.downsample_factor, down[i]),
                )
                profiler.record(
                    f"{side} filter",
                    stages.filter(queue, down[i], small, cfg.window_radius, mean[i]),
                )

            device.join()

            for i, (direction, queue) in enumerate(zip((LEFT, RIGHT), queues)):
                profiler.record(
                    f"{SIDES[i]} disparity",
                    stages.disparity(
                        queue,
                        down[i],
                        down[1 - i],
                        mean[i],
                        mean[1 - i],
                        small,
                        cfg.window_radius,
                        cfg.max_disparity,
                        direction,
                        disp[i],
                    ),
                )

            device.join()

            queue = device.queue_a
            profiler.record(
                "Cross check",
                stages.crosscheck(queue, disp[0], disp[1], small, cfg.max_cross_difference),
            )
            profiler.record(
                "Occlusion fill",
                stages.occlusion(queue, disp[0], small, cfg.occlusion_radius, filled),
            )
            profiler.record("Convert rgba", stages.rgba(queue, filled, small, out))

            device.join()
            profiler.stop()

            pixels = buffers.transfer_out(queue, out, small)

        return DepthMapResult(rgba=pixels, report=profiler.report())

    def release(self) -> None:
        """Release kernels, then queues and context. Safe to call twice."""
        self._kernels.release()
        self._device.release()
