"""
OpenCL Device Context
=====================

Owns the compute device, one shared context and the two command queues
used for overlapped left/right processing.

Selection is first-match: the first enumerated platform and the first
device on it. There is no scoring and no fallback device.

This module provides:
- DeviceInfo: Immutable description of the selected platform and device
- DeviceContext: Owning handle for context and queues, with join points
"""

from __future__ import annotations

import logging
from contextlib import AbstractContextManager
from dataclasses import dataclass

import pyopencl as cl

from .errors import DeviceNotFoundError, DispatchError, ResourceError


__all__ = [
    "DeviceInfo",
    "DeviceContext",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DeviceInfo:
    """Static properties of the selected platform and device."""

    platform_name: str
    platform_vendor: str
    platform_profile: str
    platform_version: str
    device_name: str
    local_mem_is_local: bool
    local_mem_size: int
    max_compute_units: int
    max_clock_frequency: int
    max_constant_buffer_size: int
    max_work_group_size: int
    max_work_item_sizes: tuple[int, ...]

    def format_verbose(self) -> str:
        """Format info as a multi-line report."""
        lines = [
            "---OpenCL Platform---",
            f"Name: {self.platform_name}",
            f"Vendor: {self.platform_vendor}",
            f"Profile: {self.platform_profile}",
            f"Version: {self.platform_version}",
            "",
            "---OpenCL Device---",
            f"Name: {self.device_name}",
            f"Local memory type: {'LOCAL' if self.local_mem_is_local else 'GLOBAL'}",
            f"Local memory size: {self.local_mem_size}",
            f"Max compute units: {self.max_compute_units}",
            f"Max clock frequency: {self.max_clock_frequency}",
            f"Max constant buffer size: {self.max_constant_buffer_size}",
            f"Max workgroup size: {self.max_work_group_size}",
            f"Max item sizes: {', '.join(str(s) for s in self.max_work_item_sizes)}",
        ]
        return "\n".join(lines)


def _first_platform() -> cl.Platform:
    try:
        platforms = cl.get_platforms()
    except cl.Error as exc:
        raise DeviceNotFoundError(f"Could not get platforms: {exc}") from exc

    if not platforms:
        raise DeviceNotFoundError("No supported platforms found")
    return platforms[0]


def _first_device(platform: cl.Platform) -> cl.Device:
    try:
        devices = platform.get_devices(device_type=cl.device_type.ALL)
    except cl.Error as exc:
        raise DeviceNotFoundError(f"Could not get devices: {exc}") from exc

    if not devices:
        raise DeviceNotFoundError(f"No supported devices found on {platform.name}")
    return devices[0]


class DeviceContext(AbstractContextManager):
    """
    Compute device with one context and two profiling queues.

    Queue A carries the left image chain and all single-queue
    post-processing; queue B carries the right image chain.

    Example:
        >>> with DeviceContext() as device:
        ...     print(device.describe().device_name)
        ...     device.join()

    Raises:
        DeviceNotFoundError: If no platform or device is available
        ResourceError: If the context or a queue cannot be created
    """

    __slots__ = ("_platform", "_device", "_context", "_queues")

    def __init__(self) -> None:
        self._platform = _first_platform()
        self._device = _first_device(self._platform)
        logger.info(
            "Using OpenCL device %s on platform %s",
            self._device.name.strip(),
            self._platform.name.strip(),
        )

        try:
            self._context = cl.Context(devices=[self._device])
        except cl.Error as exc:
            raise ResourceError(f"Could not create a context: {exc}") from exc

        props = cl.command_queue_properties.PROFILING_ENABLE
        try:
            self._queues: tuple[cl.CommandQueue, ...] = (
                cl.CommandQueue(self._context, self._device, properties=props),
                cl.CommandQueue(self._context, self._device, properties=props),
            )
        except cl.Error as exc:
            self._context = None
            raise ResourceError(f"Could not create a command queue: {exc}") from exc

    @property
    def context(self) -> cl.Context:
        """Shared OpenCL context."""
        self._check_open()
        return self._context

    @property
    def device(self) -> cl.Device:
        """Selected OpenCL device."""
        return self._device

    @property
    def queue_a(self) -> cl.CommandQueue:
        """Left-image queue, also used for post-processing."""
        self._check_open()
        return self._queues[0]

    @property
    def queue_b(self) -> cl.CommandQueue:
        """Right-image queue."""
        self._check_open()
        return self._queues[1]

    @property
    def queues(self) -> tuple[cl.CommandQueue, ...]:
        """Both queues, A first."""
        self._check_open()
        return self._queues

    @property
    def is_open(self) -> bool:
        """Whether the context has not been released."""
        return self._context is not None

    def join(self, *queues: cl.CommandQueue) -> None:
        """
        Block until every given queue has drained (both queues by default).

        This is the only cross-queue synchronisation primitive: work
        submitted before the join on either queue is complete afterwards.

        Raises:
            DispatchError: If the device reports a failure while finishing
        """
        for queue in queues or self.queues:
            try:
                queue.finish()
            except cl.Error as exc:
                raise DispatchError(f"Queue failed to finish: {exc}") from exc

    def describe(self) -> DeviceInfo:
        """Query platform and device properties."""
        p, d = self._platform, self._device
        try:
            return DeviceInfo(
                platform_name=p.name.strip(),
                platform_vendor=p.vendor.strip(),
                platform_profile=p.profile.strip(),
                platform_version=p.version.strip(),
                device_name=d.name.strip(),
                local_mem_is_local=d.local_mem_type == cl.device_local_mem_type.LOCAL,
                local_mem_size=int(d.local_mem_size),
                max_compute_units=int(d.max_compute_units),
                max_clock_frequency=int(d.max_clock_frequency),
                max_constant_buffer_size=int(d.max_constant_buffer_size),
                max_work_group_size=int(d.max_work_group_size),
                max_work_item_sizes=tuple(int(s) for s in d.max_work_item_sizes),
            )
        except cl.Error as exc:
            raise ResourceError(f"Could not get OpenCL info: {exc}") from exc

    def release(self) -> None:
        """Drain and drop both queues, then the context. Safe to call twice."""
        if self._context is None:
            return
        try:
            for queue in reversed(self._queues):
                queue.finish()
        except cl.Error as exc:
            raise DispatchError(f"Queue failed to finish: {exc}") from exc
        finally:
            self._queues = ()
            self._context = None
            logger.debug("Released OpenCL context")

    def _check_open(self) -> None:
        if self._context is None:
            raise ResourceError("Device context has been released")

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        """Context manager exit - ensures release is called."""
        self.release()
        return False
