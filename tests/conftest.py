"""
Shared fixtures for the stereo_gpu test suite.

Tests that need a real OpenCL device request the ``device`` fixture, which
skips when no platform or device can be opened.
"""

import numpy as np
import pytest

from stereo_gpu import DeviceContext, DeviceNotFoundError, ResourceError


@pytest.fixture
def device():
    """Open the first OpenCL device, or skip."""
    try:
        ctx = DeviceContext()
    except (DeviceNotFoundError, ResourceError) as e:
        pytest.skip(f"No OpenCL device: {e}")
    yield ctx
    ctx.release()


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(1234)


def make_rgba(grey: np.ndarray) -> np.ndarray:
    """(h, w) grey -> (h, w, 4) RGBA with R = G = B."""
    out = np.empty(grey.shape + (4,), dtype=np.uint8)
    out[:, :, :3] = grey[:, :, None]
    out[:, :, 3] = 255
    return out


def shifted_pair(
    rng: np.random.Generator, width: int, height: int, shift: int
) -> tuple[np.ndarray, np.ndarray]:
    """
    Random-texture stereo pair where right[x] == left[x + shift].

    Left-image features sit shift pixels further right than in the right
    image, so the true disparity is shift everywhere away from the wrap.
    """
    grey = rng.integers(0, 256, (height, width), dtype=np.uint8)
    left = make_rgba(grey)
    right = np.roll(left, -shift, axis=1)
    return left, right
