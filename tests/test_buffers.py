"""
Unit tests for device buffer management.
"""

import numpy as np
import pytest

from stereo_gpu import (
    AccessIntent,
    BufferManager,
    DispatchError,
    Resolution,
    ResourceError,
)


class TestAccessIntent:
    """Tests for intent to memory-flag mapping."""

    def test_intents_distinct(self) -> None:
        flags = [intent.flags for intent in AccessIntent]
        assert len(set(flags)) == len(flags)


class TestBufferManager:
    """Tests against the first real OpenCL device."""

    def test_roundtrip_rgba(self, device, rng) -> None:
        img = rng.integers(0, 256, (5, 7, 4), dtype=np.uint8)
        with BufferManager(device) as buffers:
            buf, size = buffers.transfer_in(device.queue_a, img)
            assert size == Resolution(7, 5)
            out = buffers.transfer_out(device.queue_a, buf, size)
        np.testing.assert_array_equal(out, img)

    def test_roundtrip_single_channel(self, device, rng) -> None:
        img = rng.integers(0, 256, (4, 6), dtype=np.uint8)
        with BufferManager(device) as buffers:
            buf, size = buffers.transfer_in(device.queue_b, img)
            out = buffers.transfer_out(device.queue_b, buf, size, channels=1)
        assert out.shape == (4, 6)
        np.testing.assert_array_equal(out, img)

    def test_staging_released(self, device) -> None:
        img = np.zeros((2, 2, 4), dtype=np.uint8)
        with BufferManager(device) as buffers:
            buf, _ = buffers.transfer_in(device.queue_a, img, "left")
            assert buffers.live_buffers == (buf,)

    def test_release_all(self, device) -> None:
        buffers = BufferManager(device)
        a = buffers.allocate(AccessIntent.DEVICE_ONLY, 16, label="a")
        b = buffers.allocate(AccessIntent.READ_WRITE, 16, label="b")
        assert buffers.release() == 2
        assert a.released and b.released
        assert buffers.release() == 0

    def test_use_after_release(self, device) -> None:
        with BufferManager(device) as buffers:
            buf = buffers.allocate(AccessIntent.DEVICE_ONLY, 8, label="tmp")
        with pytest.raises(ResourceError, match="used after release"):
            buf.handle

    def test_buffer_release_idempotent(self, device) -> None:
        with BufferManager(device) as buffers:
            buf = buffers.allocate(AccessIntent.DEVICE_ONLY, 8)
            buf.release()
            buf.release()
            assert "released" in repr(buf)

    def test_invalid_size(self, device) -> None:
        with BufferManager(device) as buffers:
            with pytest.raises(ResourceError, match="Invalid buffer size"):
                buffers.allocate(AccessIntent.DEVICE_ONLY, 0)

    def test_initial_size_mismatch(self, device) -> None:
        with BufferManager(device) as buffers:
            with pytest.raises(ResourceError, match="Initial data"):
                buffers.allocate(
                    AccessIntent.READ_WRITE, 8, initial=np.zeros(4, dtype=np.uint8)
                )

    def test_transfer_in_rejects_non_uint8(self, device) -> None:
        with BufferManager(device) as buffers:
            with pytest.raises(DispatchError, match="uint8"):
                buffers.transfer_in(device.queue_a, np.zeros((2, 2), dtype=np.float32))

    def test_released_on_error(self, device) -> None:
        buffers = BufferManager(device)
        with pytest.raises(DispatchError):
            with buffers:
                buffers.allocate(AccessIntent.DEVICE_ONLY, 8)
                buffers.transfer_in(device.queue_a, np.zeros(3, dtype=np.uint8))
        assert buffers.live_buffers == ()
