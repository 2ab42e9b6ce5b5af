"""Pixel diff - perceptual per-pixel comparison with anti-aliasing detection.

Colours are compared in YIQ space after blending any transparency over
white. A pixel counts as different when its weighted YIQ distance exceeds
``35215 * threshold**2`` (35215 is the largest possible distance). Pixels
that differ only because of anti-aliasing are detected from their 3x3
neighbourhood in both images and reported separately, not counted.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import numpy as np
from PIL import Image

MAX_YIQ_DELTA = 35215

DIFF_COLOR = (255, 0, 0)
AA_COLOR = (255, 255, 0)

# Scan order: x outer, y inner. Ties on the darkest/brightest neighbour go to
# the first one found in this order.
_NEIGHBOURS = [(dx, dy) for dx in (-1, 0, 1) for dy in (-1, 0, 1) if (dx, dy) != (0, 0)]


@dataclass
class PixelDiff:
    diff_count: int
    total_pixels: int
    width: int
    height: int
    diff_mask: np.ndarray
    aa_mask: np.ndarray

    @property
    def diff_percentage(self) -> float:
        return self.diff_count / self.total_pixels * 100 if self.total_pixels else 0.0


def load_rgba(path: str | Path) -> np.ndarray:
    """Decode an image file into an (h, w, 4) uint8 RGBA array."""
    with Image.open(path) as img:
        return np.array(img.convert("RGBA"), dtype=np.uint8)


def crop_to_overlap(a: np.ndarray, b: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Crop both images to their shared top-left region."""
    height = min(a.shape[0], b.shape[0])
    width = min(a.shape[1], b.shape[1])
    return a[:height, :width], b[:height, :width]


def _blend_over_white(rgba: np.ndarray) -> np.ndarray:
    rgb = rgba[..., :3].astype(np.float64)
    alpha = rgba[..., 3:4].astype(np.float64) / 255
    return 255 + (rgb - 255) * alpha


def _yiq(rgb: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    r, g, b = rgb[..., 0], rgb[..., 1], rgb[..., 2]
    y = r * 0.29889531 + g * 0.58662247 + b * 0.11448223
    i = r * 0.59597799 - g * 0.27417610 - b * 0.32180189
    q = r * 0.21147017 - g * 0.52261711 + b * 0.31114694
    return y, i, q


def _pack(rgba: np.ndarray) -> np.ndarray:
    """One uint32 per pixel so raw RGBA equality is a single comparison."""
    return np.ascontiguousarray(rgba).view(np.uint32)[..., 0]


def _on_edge(ys: np.ndarray, xs: np.ndarray, height: int, width: int) -> np.ndarray:
    return (xs == 0) | (xs == width - 1) | (ys == 0) | (ys == height - 1)


def _neighbour(ys, xs, dx, dy, height, width):
    nx, ny = xs + dx, ys + dy
    inside = (nx >= 0) & (nx < width) & (ny >= 0) & (ny < height)
    return np.clip(ny, 0, height - 1), np.clip(nx, 0, width - 1), inside


def _has_many_siblings(packed: np.ndarray, ys: np.ndarray, xs: np.ndarray) -> np.ndarray:
    """More than two identical neighbours (an image edge counts as one)."""
    height, width = packed.shape
    count = _on_edge(ys, xs, height, width).astype(np.int32)
    centre = packed[ys, xs]
    for dx, dy in _NEIGHBOURS:
        ny, nx, inside = _neighbour(ys, xs, dx, dy, height, width)
        count += inside & (packed[ny, nx] == centre)
    return count > 2


def _antialiased(
    brightness: np.ndarray, packed: np.ndarray, packed_other: np.ndarray,
    ys: np.ndarray, xs: np.ndarray,
) -> np.ndarray:
    """Flag pixels of one image that look like anti-aliasing.

    A pixel is anti-aliased when it has at most two equal-brightness
    neighbours, both a darker and a brighter neighbour, and either the
    darkest or the brightest neighbour sits in a flat area of both images.
    """
    height, width = packed.shape
    n = len(ys)
    zeroes = _on_edge(ys, xs, height, width).astype(np.int32)
    deltas = np.zeros((len(_NEIGHBOURS), n))
    inside_all = np.zeros((len(_NEIGHBOURS), n), dtype=bool)
    centre_y = brightness[ys, xs]
    centre_raw = packed[ys, xs]

    for k, (dx, dy) in enumerate(_NEIGHBOURS):
        ny, nx, inside = _neighbour(ys, xs, dx, dy, height, width)
        delta = centre_y - brightness[ny, nx]
        delta[packed[ny, nx] == centre_raw] = 0.0
        delta[~inside] = 0.0
        deltas[k] = delta
        inside_all[k] = inside
        zeroes += inside & (delta == 0)

    darker = np.where(inside_all & (deltas < 0), deltas, 0.0)
    brighter = np.where(inside_all & (deltas > 0), deltas, 0.0)
    min_k = darker.argmin(axis=0)
    max_k = brighter.argmax(axis=0)
    cols = np.arange(n)
    candidate = (zeroes <= 2) & (darker[min_k, cols] < 0) & (brighter[max_k, cols] > 0)

    offsets = np.array(_NEIGHBOURS)
    min_ys = np.clip(ys + offsets[min_k, 1], 0, height - 1)
    min_xs = np.clip(xs + offsets[min_k, 0], 0, width - 1)
    max_ys = np.clip(ys + offsets[max_k, 1], 0, height - 1)
    max_xs = np.clip(xs + offsets[max_k, 0], 0, width - 1)

    flat_min = _has_many_siblings(packed, min_ys, min_xs) & _has_many_siblings(packed_other, min_ys, min_xs)
    flat_max = _has_many_siblings(packed, max_ys, max_xs) & _has_many_siblings(packed_other, max_ys, max_xs)
    return candidate & (flat_min | flat_max)


def diff_images(
    baseline: np.ndarray,
    candidate: np.ndarray,
    threshold: float = 0.1,
    include_antialiasing: bool = False,
) -> PixelDiff:
    """Compare two equally sized RGBA arrays pixel by pixel."""
    if baseline.shape != candidate.shape:
        raise ValueError(
            f"Image sizes do not match: {baseline.shape[1]}x{baseline.shape[0]} "
            f"vs {candidate.shape[1]}x{candidate.shape[0]}"
        )
    height, width = baseline.shape[:2]

    y1, i1, q1 = _yiq(_blend_over_white(baseline))
    y2, i2, q2 = _yiq(_blend_over_white(candidate))
    delta = 0.5053 * (y1 - y2) ** 2 + 0.299 * (i1 - i2) ** 2 + 0.1957 * (q1 - q2) ** 2

    packed1 = _pack(baseline)
    packed2 = _pack(candidate)
    over = (delta > MAX_YIQ_DELTA * threshold * threshold) & (packed1 != packed2)

    aa_mask = np.zeros((height, width), dtype=bool)
    if not include_antialiasing and over.any():
        ys, xs = np.nonzero(over)
        aa = _antialiased(y1, packed1, packed2, ys, xs) | _antialiased(y2, packed2, packed1, ys, xs)
        aa_mask[ys[aa], xs[aa]] = True

    diff_mask = over & ~aa_mask
    return PixelDiff(
        diff_count=int(diff_mask.sum()),
        total_pixels=width * height,
        width=width,
        height=height,
        diff_mask=diff_mask,
        aa_mask=aa_mask,
    )


def render_diff_image(baseline: np.ndarray, diff: PixelDiff, alpha: float = 0.1) -> Image.Image:
    """Faded grayscale baseline with red diff pixels and yellow anti-aliased pixels."""
    y, _, _ = _yiq(baseline[..., :3].astype(np.float64))
    opacity = baseline[..., 3].astype(np.float64) / 255
    gray = np.clip(255 + (y - 255) * alpha * opacity, 0, 255).astype(np.uint8)

    out = np.empty((diff.height, diff.width, 4), dtype=np.uint8)
    out[..., 0] = gray
    out[..., 1] = gray
    out[..., 2] = gray
    out[..., 3] = 255
    out[diff.aa_mask, :3] = AA_COLOR
    out[diff.diff_mask, :3] = DIFF_COLOR
    return Image.fromarray(out)


def write_diff_image(baseline: np.ndarray, diff: PixelDiff, path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    render_diff_image(baseline, diff).save(path, format="PNG")
    return path
