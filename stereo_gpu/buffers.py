"""
Device Buffer Management
========================

Owning handles for device memory and the staged host/device transfers.

Uploads go host -> host-visible staging buffer -> device-local buffer,
and downloads go the opposite way. Kernels then only touch buffers the
host cannot see, which the driver is free to place in fast device memory.

This module provides:
- AccessIntent: How a buffer will be used by host and device
- DeviceBuffer: Owning handle, released exactly once
- BufferManager: Allocation, staged transfers, per-run release
"""

from __future__ import annotations

import logging
from contextlib import AbstractContextManager
from enum import Enum
from typing import TYPE_CHECKING

import numpy as np
import pyopencl as cl

from .config import Resolution
from .errors import DispatchError, ResourceError

if TYPE_CHECKING:
    import numpy.typing as npt
    from .device import DeviceContext


__all__ = [
    "AccessIntent",
    "DeviceBuffer",
    "BufferManager",
]

logger = logging.getLogger(__name__)

_mf = cl.mem_flags


class AccessIntent(Enum):
    """Declared use of a device buffer, mapped to OpenCL memory flags."""

    READ_ONLY = _mf.READ_ONLY | _mf.HOST_NO_ACCESS  # Kernel input, filled by device copy
    READ_WRITE = _mf.READ_WRITE  # Visible to host and device
    HOST_WRITE_ONLY = _mf.READ_ONLY | _mf.HOST_WRITE_ONLY  # Upload staging
    DEVICE_ONLY = _mf.READ_WRITE | _mf.HOST_NO_ACCESS  # Intermediate images
    HOST_READ_ONLY = _mf.READ_WRITE | _mf.HOST_READ_ONLY  # Download staging

    @property
    def flags(self) -> int:
        """OpenCL memory flags for this intent."""
        return self.value


class DeviceBuffer(AbstractContextManager):
    """
    Exclusively owned device memory region.

    The underlying cl.Buffer is released exactly once; any access after
    release raises ResourceError.

    Attributes:
        nbytes: Size in bytes
        intent: Declared access intent
    """

    __slots__ = ("_buffer", "nbytes", "intent", "label")

    def __init__(
        self, buffer: cl.Buffer, nbytes: int, intent: AccessIntent, label: str = ""
    ) -> None:
        self._buffer: cl.Buffer | None = buffer
        self.nbytes = nbytes
        self.intent = intent
        self.label = label

    @property
    def handle(self) -> cl.Buffer:
        """Underlying OpenCL buffer."""
        if self._buffer is None:
            raise ResourceError(f"Buffer {self.label or '<unnamed>'} used after release")
        return self._buffer

    @property
    def released(self) -> bool:
        """Whether release() has run."""
        return self._buffer is None

    def release(self) -> None:
        """Release the device memory. Later calls are no-ops."""
        if self._buffer is None:
            return
        buffer, self._buffer = self._buffer, None
        try:
            buffer.release()
        except cl.Error as exc:
            raise ResourceError(f"Could not release buffer {self.label}: {exc}") from exc

    def __repr__(self) -> str:
        state = "released" if self._buffer is None else "live"
        return f"DeviceBuffer({self.label!r}, {self.nbytes}B, {self.intent.name}, {state})"

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        """Context manager exit - ensures release is called."""
        self.release()
        return False


class BufferManager(AbstractContextManager):
    """
    Allocates device buffers and moves pixels across the host boundary.

    Every buffer allocated through the manager is tracked and released,
    newest first, when the manager is released or its with-block exits,
    on both normal and error paths.

    Example:
        >>> with BufferManager(device) as buffers:
        ...     img, size = buffers.transfer_in(device.queue_a, pixels)
        ...     out = buffers.transfer_out(device.queue_a, img, size)
    """

    __slots__ = ("_device", "_live")

    def __init__(self, device: DeviceContext) -> None:
        self._device = device
        self._live: list[DeviceBuffer] = []

    @property
    def live_buffers(self) -> tuple[DeviceBuffer, ...]:
        """Tracked buffers that have not been released."""
        return tuple(b for b in self._live if not b.released)

    def allocate(
        self,
        intent: AccessIntent,
        nbytes: int,
        initial: npt.NDArray | None = None,
        label: str = "",
    ) -> DeviceBuffer:
        """
        Allocate a device buffer.

        Args:
            intent: Declared access intent
            nbytes: Size in bytes (must be positive)
            initial: Host data copied into the buffer at creation
            label: Name used in diagnostics

        Raises:
            ResourceError: If the device cannot allocate the buffer
        """
        if nbytes <= 0:
            raise ResourceError(f"Invalid buffer size {nbytes} for {label or 'buffer'}")

        flags = intent.flags
        if initial is not None:
            if initial.nbytes != nbytes:
                raise ResourceError(
                    f"Initial data is {initial.nbytes}B, buffer {label} is {nbytes}B"
                )
            flags |= _mf.COPY_HOST_PTR

        try:
            handle = cl.Buffer(self._device.context, flags, size=nbytes, hostbuf=initial)
        except cl.Error as exc:
            raise ResourceError(
                f"Could not create a buffer {label} ({nbytes}B): {exc}"
            ) from exc

        buffer = DeviceBuffer(handle, nbytes, intent, label)
        self._live.append(buffer)
        return buffer

    def transfer_in(
        self,
        queue: cl.CommandQueue,
        pixels: npt.NDArray,
        label: str = "image",
    ) -> tuple[DeviceBuffer, Resolution]:
        """
        Upload a host image into a device-only buffer via a staging buffer.

        Args:
            queue: Queue the staging copy is submitted on
            pixels: (height, width) or (height, width, channels) uint8 array
            label: Name used in diagnostics

        Returns:
            (device buffer, image resolution)

        Raises:
            ResourceError: If a buffer cannot be allocated
            DispatchError: If the device copy cannot be submitted
        """
        if pixels.dtype != np.uint8 or pixels.ndim not in (2, 3):
            raise DispatchError(
                f"Expected a uint8 image, got {pixels.dtype} with shape {pixels.shape}"
            )
        pixels = np.ascontiguousarray(pixels)
        resolution = Resolution(pixels.shape[1], pixels.shape[0])

        staging = self.allocate(
            AccessIntent.HOST_WRITE_ONLY, pixels.nbytes, pixels, f"{label}-staging"
        )
        image = self.allocate(AccessIntent.READ_ONLY, pixels.nbytes, label=label)
        try:
            cl.enqueue_copy(queue, image.handle, staging.handle, byte_count=pixels.nbytes)
        except cl.Error as exc:
            raise DispatchError(
                f"Could not copy contents from the staging buffer: {exc}"
            ) from exc
        finally:
            # The runtime keeps the memory alive until the queued copy is done.
            self._discard(staging)

        logger.debug("Uploaded %s (%s, %dB)", label, resolution, pixels.nbytes)
        return image, resolution

    def transfer_out(
        self,
        queue: cl.CommandQueue,
        buffer: DeviceBuffer,
        resolution: Resolution,
        channels: int = 4,
    ) -> npt.NDArray:
        """
        Download a device image into a new host array via a staging buffer.

        The read is blocking: the returned array is complete.

        Returns:
            (height, width, channels) uint8 array, or (height, width) for 1 channel

        Raises:
            ResourceError: If the staging buffer cannot be allocated
            DispatchError: If the copy or read fails
        """
        shape = (resolution.height, resolution.width, channels)
        nbytes = resolution.pixel_count * channels
        if nbytes > buffer.nbytes:
            raise DispatchError(
                f"Cannot read {nbytes}B from {buffer.label} of {buffer.nbytes}B"
            )

        staging = self.allocate(
            AccessIntent.HOST_READ_ONLY, nbytes, label=f"{buffer.label}-readback"
        )
        host = np.empty(shape, dtype=np.uint8)
        try:
            cl.enqueue_copy(queue, staging.handle, buffer.handle, byte_count=nbytes)
            cl.enqueue_copy(queue, host, staging.handle, is_blocking=True)
        except cl.Error as exc:
            raise DispatchError(f"Could not read results: {exc}") from exc
        finally:
            self._discard(staging)

        return host[:, :, 0].copy() if channels == 1 else host

    def _discard(self, buffer: DeviceBuffer) -> None:
        buffer.release()
        self._live.remove(buffer)

    def release(self) -> int:
        """Release every tracked buffer, newest first. Returns the count."""
        count = 0
        while self._live:
            buffer = self._live.pop()
            if not buffer.released:
                buffer.release()
                count += 1
        if count:
            logger.debug("Released %d buffers", count)
        return count

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        """Context manager exit - ensures release is called."""
        self.release()
        return False
