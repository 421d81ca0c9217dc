"""
Stereo GPU
==========

Block-matching stereo depth estimation on OpenCL devices.

Quick Start::

    from stereo_gpu import EstimatorConfig, DepthEstimator

    config = EstimatorConfig(downsample_factor=4, window_radius=4, max_disparity=64)
    with DepthEstimator(config) as estimator:
        result = estimator.create_depth_map("im0.png", "im1.png", "depth.png")
        print(result.report.format_verbose())

Without a compute device::

    from stereo_gpu import ReferenceDepthEstimator

    result = ReferenceDepthEstimator(config).compute(left_rgba, right_rgba)

Modules:
    config: Estimator parameters and workgroup tiles
    errors: Exception taxonomy
    device: OpenCL device context and queue joins
    kernels: Kernel source registry and compiled library
    buffers: Device buffers and staged transfers
    stages: Kernel dispatch
    profiler: Stage timing telemetry
    codec: Image file decode/encode
    estimator: GPU pipeline orchestrator
    reference: NumPy reference stages and estimator
"""

__version__ = "1.0.0"

# Configuration
from .config import (
    Resolution,
    TileConfig,
    QualityPreset,
    EstimatorConfig,
)

# Errors
from .errors import (
    StereoGPUError,
    DeviceNotFoundError,
    ResourceError,
    KernelBuildError,
    DispatchError,
    CodecError,
)

# Device
from .device import (
    DeviceInfo,
    DeviceContext,
)

# Kernels
from .kernels import (
    KernelSource,
    KERNEL_SOURCES,
    KERNEL_NAMES,
    KernelLibrary,
)

# Buffers
from .buffers import (
    AccessIntent,
    DeviceBuffer,
    BufferManager,
)

# Profiling
from .profiler import (
    StageTiming,
    ProfileReport,
    Profiler,
)

# Codec
from .codec import (
    ImageCodec,
    OpenCVCodec,
)

# Estimators
from .estimator import (
    STAGE_LABELS,
    DepthMapResult,
    BaseDepthEstimator,
    DepthEstimator,
)
from .reference import ReferenceDepthEstimator

__all__ = [
    # Version
    "__version__",
    # Config
    "Resolution",
    "TileConfig",
    "QualityPreset",
    "EstimatorConfig",
    # Errors
    "StereoGPUError",
    "DeviceNotFoundError",
    "ResourceError",
    "KernelBuildError",
    "DispatchError",
    "CodecError",
    # Device
    "DeviceInfo",
    "DeviceContext",
    # Kernels
    "KernelSource",
    "KERNEL_SOURCES",
    "KERNEL_NAMES",
    "KernelLibrary",
    # Buffers
    "AccessIntent",
    "DeviceBuffer",
    "BufferManager",
    # Profiling
    "StageTiming",
    "ProfileReport",
    "Profiler",
    # Codec
    "ImageCodec",
    "OpenCVCodec",
    # Estimators
    "STAGE_LABELS",
    "DepthMapResult",
    "BaseDepthEstimator",
    "DepthEstimator",
    "ReferenceDepthEstimator",
]
