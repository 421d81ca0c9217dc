"""
Unit tests for the NumPy reference stages and estimator.
"""

import numpy as np
import pytest

from conftest import make_rgba, shifted_pair
from stereo_gpu import EstimatorConfig, ReferenceDepthEstimator, STAGE_LABELS
from stereo_gpu.reference import (
    box_filter,
    crosscheck,
    disparity,
    downsample,
    greyscale,
    occlusion_fill,
    rgba,
)
from stereo_gpu.stages import LEFT, RIGHT


class TestGreyscale:
    """Tests for luma conversion."""

    def test_white_and_black(self) -> None:
        img = np.zeros((2, 2, 4), dtype=np.uint8)
        img[0, 0] = (255, 255, 255, 255)
        out = greyscale(img)
        assert out[0, 0] == 255
        assert out[1, 1] == 0

    def test_grey_input_unchanged(self) -> None:
        grey = np.arange(256, dtype=np.uint8).reshape(16, 16)
        np.testing.assert_array_equal(greyscale(make_rgba(grey)), grey)

    def test_weights(self) -> None:
        img = np.zeros((1, 3, 4), dtype=np.uint8)
        img[0, 0, 0] = 100  # red
        img[0, 1, 1] = 100  # green
        img[0, 2, 2] = 100  # blue
        assert greyscale(img).tolist() == [[21, 72, 7]]

    def test_half_rounds_up(self) -> None:
        img = np.zeros((1, 2, 4), dtype=np.uint8)
        img[0, 0, :3] = (68, 0, 56)  # luma exactly 18.5
        img[0, 1, :3] = (13, 0, 121)  # luma exactly 11.5
        assert greyscale(img).tolist() == [[19, 12]]

    def test_matches_exact_luma(self, rng) -> None:
        img = rng.integers(0, 256, (64, 64, 4), dtype=np.uint8)
        r, g, b = (img[:, :, c].astype(np.int64) for c in range(3))
        exact = (2126 * r + 7152 * g + 722 * b + 5000) // 10000
        np.testing.assert_array_equal(greyscale(img), exact)

    def test_alpha_ignored(self, rng) -> None:
        img = rng.integers(0, 256, (5, 7, 4), dtype=np.uint8)
        opaque = img.copy()
        opaque[:, :, 3] = 255
        np.testing.assert_array_equal(greyscale(img), greyscale(opaque))


class TestRgba:
    """Tests for grey to RGBA expansion."""

    def test_channels(self) -> None:
        out = rgba(np.array([[0, 7], [128, 255]], dtype=np.uint8))
        assert out.shape == (2, 2, 4)
        assert tuple(out[1, 0]) == (128, 128, 128, 255)
        assert tuple(out[0, 0]) == (0, 0, 0, 255)


class TestDownsample:
    """Tests for block-mean downsampling."""

    def test_output_size_truncates(self) -> None:
        img = np.zeros((17, 23), dtype=np.uint8)
        assert downsample(img, 4).shape == (4, 5)

    def test_block_mean_truncated(self) -> None:
        img = np.array([[1, 2], [2, 2]], dtype=np.uint8)
        # 7 / 4 = 1.75 truncates to 1
        assert downsample(img, 2).tolist() == [[1]]

    def test_trailing_pixels_ignored(self) -> None:
        img = np.full((5, 5), 10, dtype=np.uint8)
        img[4, :] = 255
        img[:, 4] = 255
        np.testing.assert_array_equal(downsample(img, 2), np.full((2, 2), 10))

    def test_factor_one_is_identity(self, rng) -> None:
        img = rng.integers(0, 256, (9, 11), dtype=np.uint8)
        np.testing.assert_array_equal(downsample(img, 1), img)

    def test_no_overflow(self) -> None:
        img = np.full((8, 8), 255, dtype=np.uint8)
        np.testing.assert_array_equal(downsample(img, 8), [[255]])


class TestBoxFilter:
    """Tests for the zero-padded fixed-divisor box mean."""

    def test_constant_interior_and_border(self) -> None:
        img = np.full((10, 10), 90, dtype=np.uint8)
        out = box_filter(img, 1)
        assert np.all(out[1:-1, 1:-1] == 90)
        # Corner sees 4 of 9 cells: 360 / 9 = 40
        assert out[0, 0] == 40
        # Edge sees 6 of 9 cells: 540 / 9 = 60
        assert out[0, 5] == 60
        assert np.all(out[0, :] < 90)
        assert np.all(out[:, -1] < 90)

    def test_radius_zero_is_identity(self, rng) -> None:
        img = rng.integers(0, 256, (6, 6), dtype=np.uint8)
        np.testing.assert_array_equal(box_filter(img, 0), img)

    def test_radius_larger_than_image(self) -> None:
        img = np.full((2, 2), 255, dtype=np.uint8)
        # 4 * 255 / 25
        np.testing.assert_array_equal(box_filter(img, 2), np.full((2, 2), 40))


class TestDisparity:
    """Tests for the windowed ZNCC search."""

    def _search(self, img_0, img_1, radius, max_disparity, direction):
        mean_0 = box_filter(img_0, radius)
        mean_1 = box_filter(img_1, radius)
        return disparity(img_0, img_1, mean_0, mean_1, radius, max_disparity, direction)

    def test_output_in_range(self, rng) -> None:
        img_0 = rng.integers(0, 256, (12, 20), dtype=np.uint8)
        img_1 = rng.integers(0, 256, (12, 20), dtype=np.uint8)
        out = self._search(img_0, img_1, 2, 6, LEFT)
        assert out.dtype == np.uint8
        assert out.max() < 6

    def test_identical_textured_images(self, rng) -> None:
        img = rng.integers(0, 256, (12, 20), dtype=np.uint8)
        for direction in (LEFT, RIGHT):
            out = self._search(img, img, 2, 6, direction)
            assert np.all(out == 0)

    def test_flat_images_stay_zero(self) -> None:
        img = np.full((8, 8), 128, dtype=np.uint8)
        assert np.all(self._search(img, img, 1, 4, LEFT) == 0)

    def test_known_shift(self, rng) -> None:
        w, h, shift, r = 24, 10, 3, 2
        img_0 = rng.integers(0, 256, (h, w), dtype=np.uint8)
        img_1 = np.roll(img_0, -shift, axis=1)

        left = self._search(img_0, img_1, r, 8, LEFT)
        right = self._search(img_1, img_0, r, 8, RIGHT)

        assert np.all(left[:, shift + r : w - r] == shift)
        assert np.all(right[:, r : w - shift - r] == shift)

    def test_search_stops_at_image_edge(self, rng) -> None:
        img = rng.integers(0, 256, (6, 6), dtype=np.uint8)
        out = self._search(img, np.roll(img, 1, axis=1), 1, 32, LEFT)
        # Leftward search from column x can reach at most d = x
        assert np.all(out <= np.arange(6)[None, :])


class TestCrosscheck:
    """Tests for left/right consistency check."""

    def test_threshold_exact(self) -> None:
        left = np.array([[10, 10, 10, 0]], dtype=np.uint8)
        right = np.array([[10, 13, 14, 200]], dtype=np.uint8)
        out = crosscheck(left, right, 3)
        assert out.tolist() == [[10, 10, 0, 0]]

    def test_idempotent(self, rng) -> None:
        left = rng.integers(0, 64, (8, 8), dtype=np.uint8)
        right = rng.integers(0, 64, (8, 8), dtype=np.uint8)
        once = crosscheck(left, right, 8)
        np.testing.assert_array_equal(crosscheck(once, right, 8), once)

    def test_zero_threshold_keeps_equal_pixels(self, rng) -> None:
        left = rng.integers(0, 64, (8, 8), dtype=np.uint8)
        np.testing.assert_array_equal(crosscheck(left, left.copy(), 0), left)


class TestOcclusionFill:
    """Tests for zero-pixel neighbourhood fill."""

    def test_no_zeros_is_identity(self, rng) -> None:
        img = rng.integers(1, 256, (7, 9), dtype=np.uint8)
        np.testing.assert_array_equal(occlusion_fill(img, 2), img)

    def test_fill_mean_of_nonzero(self) -> None:
        img = np.array(
            [
                [4, 0, 5],
                [0, 0, 0],
                [0, 0, 0],
            ],
            dtype=np.uint8,
        )
        out = occlusion_fill(img, 1)
        assert out[0, 0] == 4
        assert out[0, 1] == 4  # (4 + 5) / 2 truncated
        assert out[1, 1] == 4
        assert out[1, 2] == 5
        # Nothing nonzero within radius 1
        assert out[2, 2] == 0
        assert out[2, 0] == 0

    def test_all_zero_stays_zero(self) -> None:
        img = np.zeros((5, 5), dtype=np.uint8)
        assert np.all(occlusion_fill(img, 3) == 0)

    def test_radius_zero_is_identity(self) -> None:
        img = np.array([[0, 3], [7, 0]], dtype=np.uint8)
        np.testing.assert_array_equal(occlusion_fill(img, 0), img)

    def test_single_pass(self) -> None:
        img = np.zeros((1, 5), dtype=np.uint8)
        img[0, 0] = 9
        # Pixels filled in this pass do not feed later pixels
        assert occlusion_fill(img, 1).tolist() == [[9, 9, 0, 0, 0]]


class TestReferenceDepthEstimator:
    """Tests for the full reference pipeline."""

    def test_uniform_grey_pair(self) -> None:
        grey = make_rgba(np.full((16, 16), 128, dtype=np.uint8))
        config = EstimatorConfig(
            downsample_factor=2,
            window_radius=1,
            max_disparity=4,
            max_cross_difference=8,
            occlusion_radius=1,
        )
        result = ReferenceDepthEstimator(config).compute(grey, grey.copy())

        assert result.rgba.shape == (8, 8, 4)
        assert np.all(result.rgba[:, :, :3] == 0)
        assert np.all(result.rgba[:, :, 3] == 255)
        assert result.valid_ratio == 0.0

    def test_known_shift(self, rng) -> None:
        factor, shift, r = 2, 3, 2
        left, right = shifted_pair(rng, 40 * factor, 12 * factor, shift * factor)
        config = EstimatorConfig(
            downsample_factor=factor,
            window_radius=r,
            max_disparity=8,
            max_cross_difference=1,
            occlusion_radius=2,
        )
        result = ReferenceDepthEstimator(config).compute(left, right)

        assert result.resolution == (40, 12)
        assert np.all(result.disparity[:, shift + r : 40 - shift - r] == shift)
        # Output channels carry the same value
        np.testing.assert_array_equal(result.rgba[:, :, 1], result.disparity)

    def test_deterministic(self, rng) -> None:
        left, right = shifted_pair(rng, 48, 24, 4)
        estimator = ReferenceDepthEstimator(EstimatorConfig(downsample_factor=2))
        first = estimator.compute(left, right)
        second = estimator.compute(left, right)
        np.testing.assert_array_equal(first.rgba, second.rgba)

    def test_report_labels(self, rng) -> None:
        left, right = shifted_pair(rng, 16, 16, 2)
        config = EstimatorConfig(downsample_factor=2, max_disparity=4)
        result = ReferenceDepthEstimator(config).compute(left, right)

        assert result.report.labels == STAGE_LABELS
        assert result.report.total_seconds >= 0.0
        assert all(s.seconds >= 0.0 for s in result.report.stages)

    def test_size_mismatch(self) -> None:
        left = np.zeros((16, 16, 4), dtype=np.uint8)
        right = np.zeros((16, 18, 4), dtype=np.uint8)
        with pytest.raises(ValueError, match="Image sizes differ"):
            ReferenceDepthEstimator(EstimatorConfig()).compute(left, right)

    def test_not_rgba(self) -> None:
        img = np.zeros((16, 16, 3), dtype=np.uint8)
        with pytest.raises(ValueError, match="RGBA"):
            ReferenceDepthEstimator(EstimatorConfig()).compute(img, img)

    def test_too_small(self) -> None:
        img = np.zeros((3, 3, 4), dtype=np.uint8)
        with pytest.raises(ValueError, match="too small"):
            ReferenceDepthEstimator(EstimatorConfig(downsample_factor=4)).compute(img, img)
