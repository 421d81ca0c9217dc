"""
NumPy Reference Estimator
=========================

Host implementation of the seven pipeline stages with the same numerical
contract as the OpenCL kernels. It needs no compute device and serves as
the correctness oracle for the GPU path.

Every function takes and returns uint8 arrays indexed [y, x].
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from .estimator import SIDES, BaseDepthEstimator, DepthMapResult
from .profiler import Profiler
from .stages import LEFT, RIGHT

if TYPE_CHECKING:
    import numpy.typing as npt


__all__ = [
    "greyscale",
    "rgba",
    "downsample",
    "box_filter",
    "disparity",
    "crosscheck",
    "occlusion_fill",
    "ReferenceDepthEstimator",
]

_LUMA = np.array([2126, 7152, 722], dtype=np.uint32)


def greyscale(img: npt.NDArray) -> npt.NDArray:
    """(h, w, 4) RGBA -> (h, w) luma in fixed point, halves rounded up."""
    luma = img[:, :, :3].astype(np.uint32) @ _LUMA
    return ((luma + 5000) // 10000).astype(np.uint8)


def rgba(img: npt.NDArray) -> npt.NDArray:
    """(h, w) grey -> (h, w, 4) with (v, v, v, 255)."""
    out = np.empty(img.shape + (4,), dtype=np.uint8)
    out[:, :, :3] = img[:, :, None]
    out[:, :, 3] = 255
    return out


def downsample(img: npt.NDArray, factor: int) -> npt.NDArray:
    """Truncated mean of each factor x factor block; trailing pixels are dropped."""
    h, w = img.shape[0] // factor, img.shape[1] // factor
    blocks = img[: h * factor, : w * factor].reshape(h, factor, w, factor)
    return (blocks.sum(axis=(1, 3), dtype=np.uint32) // (factor * factor)).astype(np.uint8)


def _window_sums(img: npt.NDArray, radius: int) -> npt.NDArray:
    """Sum over the (2r+1)^2 window around each pixel, zero outside the image."""
    side = 2 * radius + 1
    padded = np.pad(img.astype(np.uint32), radius)
    return sliding_window_view(padded, (side, side)).sum(axis=(-2, -1), dtype=np.uint32)


def box_filter(img: npt.NDArray, radius: int) -> npt.NDArray:
    """Zero-padded box mean; the divisor is always (2r+1)^2."""
    side = 2 * radius + 1
    return (_window_sums(img, radius) // (side * side)).astype(np.uint8)


def disparity(
    img_0: npt.NDArray,
    img_1: npt.NDArray,
    mean_0: npt.NDArray,
    mean_1: npt.NDArray,
    radius: int,
    max_disparity: int,
    direction: int,
) -> npt.NDArray:
    """
    Windowed ZNCC search of img_1 against reference img_0.

    For each pixel, candidates d = 0, 1, ... are scored until x + direction*d
    leaves the image. Window cells outside either image are skipped. The
    first candidate with the strictly greatest score wins; flat windows score
    NaN and never win, leaving the pixel at 0.
    """
    h, w = img_0.shape
    r = radius
    pad_x = r + max_disparity
    inside = np.pad(np.ones((h, w), dtype=bool), ((r, r), (pad_x, pad_x)))
    p0 = np.pad(img_0.astype(np.int64), ((r, r), (pad_x, pad_x)))
    p1 = np.pad(img_1.astype(np.int64), ((r, r), (pad_x, pad_x)))
    pm1 = np.pad(mean_1.astype(np.int64), ((0, 0), (pad_x, pad_x)))
    mu_0 = mean_0.astype(np.int64)
    xs = np.arange(w)

    best = np.full((h, w), -1.0)
    out = np.zeros((h, w), dtype=np.uint8)

    for d in range(max_disparity):
        off = direction * d
        searching = (0 <= xs + off) & (xs + off < w)
        if not searching.any():
            break
        mu_1 = pm1[:, pad_x + off : pad_x + off + w]

        numer = np.zeros((h, w), dtype=np.int64)
        denom_0 = np.zeros((h, w), dtype=np.int64)
        denom_1 = np.zeros((h, w), dtype=np.int64)
        for dy in range(-r, r + 1):
            rows = slice(r + dy, r + dy + h)
            for dx in range(-r, r + 1):
                c0 = slice(pad_x + dx, pad_x + dx + w)
                c1 = slice(pad_x + dx + off, pad_x + dx + off + w)
                valid = inside[rows, c0] & inside[rows, c1]
                std_0 = np.where(valid, p0[rows, c0] - mu_0, 0)
                std_1 = np.where(valid, p1[rows, c1] - mu_1, 0)
                numer += std_0 * std_1
                denom_0 += std_0 * std_0
                denom_1 += std_1 * std_1

        with np.errstate(divide="ignore", invalid="ignore"):
            zncc = numer / np.sqrt(denom_0.astype(np.float64) * denom_1)

        better = searching[None, :] & (zncc > best)
        best = np.where(better, zncc, best)
        out[better] = d

    return out


def crosscheck(left: npt.NDArray, right: npt.NDArray, max_difference: int) -> npt.NDArray:
    """Copy of left with pixels zeroed where |left - right| > max_difference."""
    diff = np.abs(left.astype(np.int16) - right.astype(np.int16))
    return np.where(diff > max_difference, 0, left).astype(np.uint8)


def occlusion_fill(img: npt.NDArray, radius: int) -> npt.NDArray:
    """
    Fill zero pixels with the truncated mean of nonzero window neighbours.

    Nonzero pixels are copied unchanged. A zero pixel with no nonzero
    neighbour inside the window stays 0.
    """
    sums = _window_sums(img, radius)
    counts = _window_sums((img > 0).astype(np.uint8), radius)
    filled = np.floor_divide(sums, counts, out=np.zeros_like(sums), where=counts > 0)
    return np.where(img > 0, img, filled).astype(np.uint8)


class ReferenceDepthEstimator(BaseDepthEstimator):
    """
    Single-threaded NumPy depth estimator.

    Produces the same output as DepthEstimator for the same configuration,
    with host-measured stage timings.

    Example:
        >>> estimator = ReferenceDepthEstimator(EstimatorConfig(downsample_factor=2))
        >>> result = estimator.compute(left_rgba, right_rgba)
    """

    __slots__ = ()

    def compute(self, left: npt.NDArray, right: npt.NDArray) -> DepthMapResult:
        """Run the full pipeline on the host."""
        self._check_pair(left, right)
        cfg = self._config
        profiler = Profiler("Reference Depth Estimator")

        def timed(label: str, fn, *args):
            start = time.perf_counter()
            result = fn(*args)
            profiler.record_elapsed(label, time.perf_counter() - start)
            return result

        profiler.start()
        down, mean = [], []
        for side, img in zip(SIDES, (left, right)):
            grey = timed(f"{side} greyscale", greyscale, img)
            down.append(timed(f"{side} downsample", downsample, grey, cfg.downsample_factor))
            mean.append(timed(f"{side} filter", box_filter, down[-1], cfg.window_radius))

        disp = [
            timed(
                f"{SIDES[i]} disparity",
                disparity,
                down[i],
                down[1 - i],
                mean[i],
                mean[1 - i],
                cfg.window_radius,
                cfg.max_disparity,
                direction,
            )
            for i, direction in enumerate((LEFT, RIGHT))
        ]

        checked = timed("Cross check", crosscheck, disp[0], disp[1], cfg.max_cross_difference)
        filled = timed("Occlusion fill", occlusion_fill, checked, cfg.occlusion_radius)
        out = timed("Convert rgba", rgba, filled)
        profiler.stop()

        return DepthMapResult(rgba=out, report=profiler.report())
