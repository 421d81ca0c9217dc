"""
Error Types
===========

Every failure in the depth pipeline is fatal to the current run: no retry,
no fallback device and no partial output. Failures are raised as
exceptions so the caller decides whether to abort the process.
"""

from __future__ import annotations


__all__ = [
    "StereoGPUError",
    "DeviceNotFoundError",
    "ResourceError",
    "KernelBuildError",
    "DispatchError",
    "CodecError",
]


class StereoGPUError(RuntimeError):
    """Base class for all depth estimator errors."""


class DeviceNotFoundError(StereoGPUError):
    """No OpenCL platform or device could be enumerated."""


class ResourceError(StereoGPUError):
    """A context, queue, buffer or kernel could not be created."""


class KernelBuildError(StereoGPUError):
    """A kernel program failed to compile.

    Attributes:
        name: Kernel name from the registry
        log: Compiler build log reported by the device
    """

    def __init__(self, name: str, log: str) -> None:
        super().__init__(f"{name} build error:\n{log}")
        self.name = name
        self.log = log


class DispatchError(StereoGPUError):
    """Argument binding, submission or transfer failed."""


class CodecError(StereoGPUError):
    """An image could not be decoded or encoded."""
