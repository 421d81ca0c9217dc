"""
Kernel Library
==============

Registry of the seven OpenCL programs used by the depth pipeline, and the
library that compiles them once per estimator.

Stage contracts (all indices 0-based, row-major, no padding):

    greyscale   RGBA -> grey, round half up (0.2126 R + 0.7152 G + 0.0722 B)
    rgba        grey -> RGBA, (v, v, v, 255)
    downsample  truncated mean of each factor x factor block
    filter      zero-padded box mean, divisor always (2R+1)^2
    disparity   windowed ZNCC search over d in [0, D), first best wins
    crosscheck  left[p] = 0 where |left[p] - right[p]| > T
    occlusion   zero pixels take the mean of nonzero window neighbours

The downsample and filter kernels stage their input into workgroup-local
memory before reducing. Tile sizes come from the local work size chosen at
dispatch, so the same binaries serve every TileConfig.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, NamedTuple

import numpy as np
import pyopencl as cl

from .errors import KernelBuildError, ResourceError

if TYPE_CHECKING:
    from .device import DeviceContext


__all__ = [
    "KernelSource",
    "KERNEL_SOURCES",
    "KERNEL_NAMES",
    "KernelLibrary",
]

logger = logging.getLogger(__name__)


class KernelSource(NamedTuple):
    """One versioned entry of the kernel registry.

    Attributes:
        name: Kernel entry point, also the registry key
        version: Bumped whenever the source changes numerically
        arg_dtypes: Scalar argument types (None for buffers and local memory)
        source: OpenCL C program text
    """

    name: str
    version: int
    arg_dtypes: tuple
    source: str


_GREYSCALE = r"""
__kernel void greyscale(
    __global const uchar4* img,
    const uint width,
    const uint height,
    __global uchar* out
){
    const uint m = get_global_id(0);

    if(m < width * height){
        // Fixed-point weights x10000, halves round up; the maximum is exactly 255
        const uint4 p = convert_uint4(img[m]);
        out[m] = (uchar)((2126 * p.x + 7152 * p.y + 722 * p.z + 5000) / 10000);
    }
}
"""

_RGBA = r"""
__kernel void rgba(
    __global const uchar* img,
    const uint width,
    const uint height,
    __global uchar4* out
){
    const uint m = get_global_id(0);

    if(m < width * height){
        const uchar v = img[m];
        out[m] = (uchar4)(v, v, v, 255);
    }
}
"""

_DOWNSAMPLE = r"""
__kernel void downsample(
    __global const uchar* img,
    const uint width,
    const uint height,
    const uint factor,
    __global uchar* out,
    __local uchar* tile
){
    const uint m = get_global_id(0);
    const uint n = get_global_id(1);
    const uint lm = get_local_id(0);
    const uint ln = get_local_id(1);
    const uint lw = get_local_size(0);
    const uint lh = get_local_size(1);

    const uint w = width / factor;
    const uint h = height / factor;
    const uint tile_w = lw * factor;
    const uint tile_h = lh * factor;
    const uint x0 = get_group_id(0) * tile_w;
    const uint y0 = get_group_id(1) * tile_h;

    for(uint i = lm + ln * lw; i < tile_w * tile_h; i += lw * lh){
        const uint x = x0 + i % tile_w;
        const uint y = y0 + i / tile_w;
        tile[i] = (x < width && y < height) ? img[x + y * width] : 0;
    }
    barrier(CLK_LOCAL_MEM_FENCE);

    if(m < w && n < h){
        uint sum = 0;
        for(uint i = 0; i < factor; i++){
            for(uint j = 0; j < factor; j++){
                sum += tile[(lm * factor + j) + (ln * factor + i) * tile_w];
            }
        }
        out[m + n * w] = (uchar)(sum / (factor * factor));
    }
}
"""

_FILTER = r"""
__kernel void filter(
    __global const uchar* img,
    const uint width,
    const uint height,
    const uint radius,
    __global uchar* out,
    __local uchar* tile
){
    const int w = width;
    const int h = height;
    const int r = radius;
    const int m = get_global_id(0);
    const int n = get_global_id(1);
    const int lm = get_local_id(0);
    const int ln = get_local_id(1);
    const int lw = get_local_size(0);
    const int lh = get_local_size(1);

    const int tile_w = lw + 2 * r;
    const int tile_h = lh + 2 * r;
    const int x0 = (int)get_group_id(0) * lw - r;
    const int y0 = (int)get_group_id(1) * lh - r;

    for(int i = lm + ln * lw; i < tile_w * tile_h; i += lw * lh){
        const int x = x0 + i % tile_w;
        const int y = y0 + i / tile_w;
        tile[i] = (0 <= x && x < w && 0 <= y && y < h) ? img[x + y * w] : 0;
    }
    barrier(CLK_LOCAL_MEM_FENCE);

    if(m < w && n < h){
        uint sum = 0;
        for(int i = 0; i <= 2 * r; i++){
            for(int j = 0; j <= 2 * r; j++){
                sum += tile[(lm + j) + (ln + i) * tile_w];
            }
        }
        const uint side = 2 * radius + 1;
        out[m + n * w] = (uchar)(sum / (side * side));
    }
}
"""

_DISPARITY = r"""
#ifdef cl_khr_fp64
#pragma OPENCL EXTENSION cl_khr_fp64 : enable
typedef double score_t;
#else
typedef float score_t;
#endif

__kernel void disparity(
    __global const uchar* img_0,
    __global const uchar* img_1,
    __global const uchar* mean_0,
    __global const uchar* mean_1,
    const uint width,
    const uint height,
    const uint radius,
    const uint max_disparity,
    const int direction,
    __global uchar* out
){
    const int w = width;
    const int h = height;
    const int r = radius;
    const int m = get_global_id(0);
    const int n = get_global_id(1);

    if(m < w && n < h){
        score_t best = -1;
        uchar disparity = 0;
        const int mu_0 = mean_0[m + n * w];

        for(int d = 0; d < (int)max_disparity; d++){
            const int off = direction * d;
            if(m + off < 0 || w <= m + off){
                break;
            }
            const int mu_1 = mean_1[m + off + n * w];
            long numer = 0;
            long denom_0 = 0;
            long denom_1 = 0;

            for(int i = n - r; i <= n + r; i++){
                if(i < 0 || h <= i){
                    continue;
                }
                for(int j = m - r; j <= m + r; j++){
                    if(j < 0 || w <= j || j + off < 0 || w <= j + off){
                        continue;
                    }
                    const int std_0 = img_0[j + i * w] - mu_0;
                    const int std_1 = img_1[j + off + i * w] - mu_1;
                    numer += std_0 * std_1;
                    denom_0 += std_0 * std_0;
                    denom_1 += std_1 * std_1;
                }
            }

            // 0/0 for a flat window is NaN and never replaces best
            const score_t zncc = (score_t)numer / sqrt((score_t)denom_0 * (score_t)denom_1);
            if(zncc > best){
                best = zncc;
                disparity = d;
            }
        }
        out[m + n * w] = disparity;
    }
}
"""

_CROSSCHECK = r"""
__kernel void crosscheck(
    __global uchar* left,
    __global const uchar* right,
    const uint width,
    const uint height,
    const uint max_difference
){
    const uint m = get_global_id(0);

    if(m < width * height){
        if(abs_diff(left[m], right[m]) > max_difference){
            left[m] = 0;
        }
    }
}
"""

_OCCLUSION = r"""
__kernel void occlusion(
    __global const uchar* img,
    const uint width,
    const uint height,
    const uint radius,
    __global uchar* out
){
    const int w = width;
    const int h = height;
    const int r = radius;
    const int m = get_global_id(0);
    const int n = get_global_id(1);

    if(m < w && n < h){
        const uchar v = img[m + n * w];
        if(v > 0){
            out[m + n * w] = v;
        }else{
            uint sum = 0;
            uint count = 0;
            for(int i = max(n - r, 0); i <= min(n + r, h - 1); i++){
                for(int j = max(m - r, 0); j <= min(m + r, w - 1); j++){
                    const uchar u = img[j + i * w];
                    if(u > 0){
                        sum += u;
                        count++;
                    }
                }
            }
            // no valid neighbour: the pixel stays 0
            out[m + n * w] = count > 0 ? (uchar)(sum / count) : 0;
        }
    }
}
"""

_U32 = np.uint32

# Insertion order is creation order; release runs in reverse.
KERNEL_SOURCES: dict[str, KernelSource] = {
    k.name: k
    for k in (
        KernelSource("greyscale", 3, (None, _U32, _U32, None), _GREYSCALE),
        KernelSource("rgba", 1, (None, _U32, _U32, None), _RGBA),
        KernelSource(
            "downsample", 2, (None, _U32, _U32, _U32, None, None), _DOWNSAMPLE
        ),
        KernelSource("filter", 2, (None, _U32, _U32, _U32, None, None), _FILTER),
        KernelSource(
            "disparity",
            2,
            (None, None, None, None, _U32, _U32, _U32, _U32, np.int32, None),
            _DISPARITY,
        ),
        KernelSource("crosscheck", 1, (None, None, _U32, _U32, _U32), _CROSSCHECK),
        KernelSource("occlusion", 2, (None, _U32, _U32, _U32, None), _OCCLUSION),
    )
}

KERNEL_NAMES: tuple[str, ...] = tuple(KERNEL_SOURCES)


class KernelLibrary(AbstractContextManager):
    """
    Compiled kernels for one device context.

    Every program in the registry is built at construction. Handles are
    kept until release(), which drops them in reverse creation order.

    Example:
        >>> with DeviceContext() as device, KernelLibrary(device) as kernels:
        ...     kernels["greyscale"]

    Raises:
        KernelBuildError: If a program fails to compile (carries the log)
        ResourceError: If a program or kernel object cannot be created
    """

    __slots__ = ("_device", "_kernels", "_versions")

    def __init__(
        self,
        device: DeviceContext,
        sources: Mapping[str, KernelSource] = KERNEL_SOURCES,
    ) -> None:
        self._device = device
        self._kernels: dict[str, cl.Kernel] = {}
        self._versions: dict[str, int] = {}

        try:
            for name, source in sources.items():
                self._kernels[name] = self._build(source)
                self._versions[name] = source.version
        except (KernelBuildError, ResourceError):
            self.release()
            raise

        logger.info("Compiled %d kernels", len(self._kernels))

    def _build(self, source: KernelSource) -> cl.Kernel:
        """Compile one program and extract its entry point."""
        try:
            program = cl.Program(self._device.context, source.source)
        except cl.Error as exc:
            raise ResourceError(f"Could not create program: {source.name}") from exc

        try:
            program.build(devices=[self._device.device])
        except cl.RuntimeError as exc:
            raise KernelBuildError(source.name, str(exc)) from exc

        try:
            kernel = cl.Kernel(program, source.name)
        except cl.Error as exc:
            raise ResourceError(f"Could not create kernel: {source.name}") from exc

        kernel.set_scalar_arg_dtypes(list(source.arg_dtypes))
        logger.debug("Built kernel %s v%d", source.name, source.version)
        return kernel

    def __getitem__(self, name: str) -> cl.Kernel:
        if not self._kernels:
            raise ResourceError("Kernel library has been released")
        return self._kernels[name]

    def __contains__(self, name: object) -> bool:
        return name in self._kernels

    def __len__(self) -> int:
        return len(self._kernels)

    @property
    def names(self) -> tuple[str, ...]:
        """Names of the live kernels in creation order."""
        return tuple(self._kernels)

    def version(self, name: str) -> int:
        """Registry version the named kernel was built from."""
        return self._versions[name]

    def release(self) -> list[str]:
        """Drop every kernel handle, newest first. Returns the release order."""
        released = []
        while self._kernels:
            name, _ = self._kernels.popitem()
            released.append(name)
        if released:
            logger.debug("Released kernels: %s", ", ".join(released))
        return released

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        """Context manager exit - ensures release is called."""
        self.release()
        return False
