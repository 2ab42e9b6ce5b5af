"""Tests for the perceptual pixel diff."""

import numpy as np
import pytest

from vrt.comparison.pixel_diff import (
    AA_COLOR,
    DIFF_COLOR,
    crop_to_overlap,
    diff_images,
    load_rgba,
    render_diff_image,
    write_diff_image,
)

WHITE = (255, 255, 255, 255)
BLACK = (0, 0, 0, 255)


def _solid(width: int, height: int, color=WHITE) -> np.ndarray:
    img = np.zeros((height, width, 4), dtype=np.uint8)
    img[...] = color
    return img


def _half_black(width: int = 40, height: int = 30, split: int = 20) -> np.ndarray:
    """Black left of ``split``, white from ``split`` on."""
    img = _solid(width, height)
    img[:, :split] = BLACK
    return img


class TestDiffImages:
    def test_identical_images(self):
        img = _half_black()
        diff = diff_images(img, img.copy())
        assert diff.diff_count == 0
        assert diff.total_pixels == 1200
        assert not diff.aa_mask.any()

    def test_counts_changed_block(self):
        baseline = _solid(40, 30)
        candidate = baseline.copy()
        candidate[10:15, 10:15] = BLACK
        diff = diff_images(baseline, candidate)
        assert diff.diff_count == 25
        assert diff.diff_mask[10:15, 10:15].all()
        assert diff.diff_percentage == pytest.approx(25 / 1200 * 100)

    def test_small_colour_shift_within_threshold(self):
        baseline = _solid(40, 30)
        candidate = _solid(40, 30, (250, 250, 250, 255))
        assert diff_images(baseline, candidate, threshold=0.1).diff_count == 0

    def test_zero_threshold_counts_any_change(self):
        baseline = _solid(40, 30)
        candidate = _solid(40, 30, (250, 250, 250, 255))
        assert diff_images(baseline, candidate, threshold=0.0).diff_count == 1200

    def test_transparency_is_blended_over_white(self):
        baseline = _solid(10, 10)
        candidate = _solid(10, 10, (0, 0, 0, 0))
        assert diff_images(baseline, candidate, threshold=0.0).diff_count == 0

    def test_antialiased_edge_pixel_is_not_counted(self):
        baseline = _half_black()
        candidate = baseline.copy()
        candidate[15, 20] = (128, 128, 128, 255)

        diff = diff_images(baseline, candidate)
        assert diff.diff_count == 0
        assert diff.aa_mask[15, 20]

    def test_include_antialiasing_counts_edge_pixel(self):
        baseline = _half_black()
        candidate = baseline.copy()
        candidate[15, 20] = (128, 128, 128, 255)

        diff = diff_images(baseline, candidate, include_antialiasing=True)
        assert diff.diff_count == 1
        assert not diff.aa_mask.any()

    def test_size_mismatch_raises(self):
        with pytest.raises(ValueError, match="sizes do not match"):
            diff_images(_solid(10, 10), _solid(10, 11))


class TestCropToOverlap:
    def test_crops_to_shared_top_left_region(self):
        a, b = crop_to_overlap(_solid(1280, 2000), _solid(1300, 1990))
        assert a.shape == b.shape == (1990, 1280, 4)


class TestDiffImage:
    def test_colours(self):
        baseline = _half_black()
        candidate = baseline.copy()
        candidate[15, 20] = (128, 128, 128, 255)
        candidate[5:8, 30:33] = BLACK
        diff = diff_images(baseline, candidate)

        out = np.array(render_diff_image(baseline, diff))
        assert tuple(out[6, 31, :3]) == DIFF_COLOR
        assert tuple(out[15, 20, :3]) == AA_COLOR
        # Unchanged white stays white; unchanged black is faded towards white
        assert tuple(out[0, 39, :3]) == (255, 255, 255)
        assert out[0, 0, 0] > 200
        assert out[..., 3].min() == 255

    def test_write_and_reload(self, tmp_path):
        baseline = _solid(20, 10)
        candidate = baseline.copy()
        candidate[2:4, 2:4] = BLACK
        diff = diff_images(baseline, candidate)

        path = write_diff_image(baseline, diff, tmp_path / "diffs" / "home__desktop.png")
        reloaded = load_rgba(path)
        assert reloaded.shape == (10, 20, 4)
        assert tuple(reloaded[3, 3, :3]) == DIFF_COLOR
