"""Small image-processing primitives used by the feature extractor."""

from __future__ import annotations

import math

import numpy as np

from semorb.keypoint import KeyPoint

# Bresenham circle of radius 3, walked in order around the centre as (dx, dy).
_CIRCLE: tuple[tuple[int, int], ...] = (
    (0, 3), (1, 3), (2, 2), (3, 1), (3, 0), (3, -1), (2, -2), (1, -3),
    (0, -3), (-1, -3), (-2, -2), (-3, -1), (-3, 0), (-3, 1), (-2, 2), (-1, 3),
)
_ARC_LENGTH = 9
_FAST_BORDER = 3
_FAST_KEYPOINT_SIZE = 7.0

_NEIGHBOURS: tuple[tuple[int, int], ...] = (
    (-1, -1), (-1, 0), (-1, 1), (0, -1), (0, 1), (1, -1), (1, 0), (1, 1),
)

# Kernels used when no positive sigma is given for small apertures.
_FIXED_KERNELS: dict[int, tuple[float, ...]] = {
    1: (1.0,),
    3: (0.25, 0.5, 0.25),
    5: (0.0625, 0.25, 0.375, 0.25, 0.0625),
    7: (0.03125, 0.109375, 0.21875, 0.28125, 0.21875, 0.109375, 0.03125),
}


def _as_gray(image) -> np.ndarray:
    arr = np.asarray(image)
    if arr.ndim != 2:
        raise ValueError("expected a single-channel two-dimensional image")
    return arr


def _cast_like(values: np.ndarray, dtype: np.dtype) -> np.ndarray:
    if np.issubdtype(dtype, np.integer):
        info = np.iinfo(dtype)
        return np.clip(np.rint(values), info.min, info.max).astype(dtype)
    return values.astype(dtype)


def fast_atan2(y: float, x: float) -> float:
    """Return the angle of the vector (x, y) in degrees, within [0, 360)."""
    angle = math.degrees(math.atan2(y, x))
    if angle < 0.0:
        angle += 360.0
    if angle >= 360.0:
        angle = 0.0
    return angle


def fast(image, threshold: int, nonmax: bool = True) -> list[KeyPoint]:
    """Detect FAST-9 corners on a 16-pixel circle.

    A pixel is a corner when nine contiguous circle pixels are all brighter
    than it by more than ``threshold`` or all darker by more than it. The
    response is the largest threshold at which the pixel is still a corner.
    Keypoints come out in row-major order.
    """
    img = _as_gray(image).astype(np.int32)
    threshold = min(max(int(threshold), 0), 255)
    h, w = img.shape
    b = _FAST_BORDER
    if h < 2 * b + 1 or w < 2 * b + 1:
        return []

    center = img[b:h - b, b:w - b]
    ring = np.stack(
        [img[b + dy:h - b + dy, b + dx:w - b + dx] for dx, dy in _CIRCLE]
    )
    diffs = ring - center
    n = len(_CIRCLE)

    best = np.full(center.shape, np.iinfo(np.int32).min, dtype=np.int32)
    for signed in (diffs, -diffs):
        extended = np.concatenate([signed, signed[:_ARC_LENGTH - 1]])
        arc_min = extended[:n].copy()
        for offset in range(1, _ARC_LENGTH):
            np.minimum(arc_min, extended[offset:offset + n], out=arc_min)
        np.maximum(best, arc_min.max(axis=0), out=best)

    score = best - 1
    corner = score >= threshold
    scores = np.zeros((h, w), dtype=np.int32)
    scores[b:h - b, b:w - b] = np.where(corner, score, 0)

    keep = corner.copy()
    if nonmax:
        inner = scores[b:h - b, b:w - b]
        for dy, dx in _NEIGHBOURS:
            keep &= inner > scores[b + dy:h - b + dy, b + dx:w - b + dx]

    rows, cols = np.nonzero(keep)
    return [
        KeyPoint(
            x=float(col + b),
            y=float(row + b),
            size=_FAST_KEYPOINT_SIZE,
            response=float(scores[row + b, col + b]),
        )
        for row, col in zip(rows.tolist(), cols.tolist())
    ]


def _linear_axis(src: int, dst: int) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    scale = src / dst
    pos = (np.arange(dst, dtype=np.float64) + 0.5) * scale - 0.5
    i0 = np.floor(pos).astype(np.intp)
    frac = pos - i0
    low = pos < 0
    i0[low] = 0
    frac[low] = 0.0
    high = i0 >= src - 1
    i0[high] = src - 1
    frac[high] = 0.0
    i1 = np.minimum(i0 + 1, src - 1)
    return i0, i1, frac


def resize_linear(image, width: int, height: int) -> np.ndarray:
    """Resize an image to ``width`` x ``height`` with bilinear interpolation."""
    arr = _as_gray(image)
    if width <= 0 or height <= 0:
        raise ValueError("target size must be positive")
    src_h, src_w = arr.shape
    if src_h == 0 or src_w == 0:
        raise ValueError("cannot resize an empty image")

    data = arr.astype(np.float64)
    y0, y1, fy = _linear_axis(src_h, height)
    rows = data[y0] * (1.0 - fy)[:, None] + data[y1] * fy[:, None]
    x0, x1, fx = _linear_axis(src_w, width)
    out = rows[:, x0] * (1.0 - fx)[None, :] + rows[:, x1] * fx[None, :]
    return _cast_like(out, arr.dtype)


def reflect_border(image, border: int) -> np.ndarray:
    """Pad an image on every side by mirroring it without repeating the edge."""
    arr = _as_gray(image)
    if border < 0:
        raise ValueError("border must not be negative")
    if border == 0:
        return arr.copy()
    return np.pad(arr, border, mode="reflect")


def _gaussian_kernel(ksize: int, sigma: float) -> np.ndarray:
    if sigma <= 0 and ksize in _FIXED_KERNELS:
        return np.array(_FIXED_KERNELS[ksize], dtype=np.float64)
    if sigma <= 0:
        sigma = 0.3 * ((ksize - 1) * 0.5 - 1) + 0.8
    x = np.arange(ksize, dtype=np.float64) - (ksize - 1) / 2.0
    kernel = np.exp(-(x * x) / (2.0 * sigma * sigma))
    return kernel / kernel.sum()


def gaussian_blur(image, ksize: int, sigma: float) -> np.ndarray:
    """Blur an image with a separable Gaussian, mirroring it at the borders."""
    arr = _as_gray(image)
    if ksize <= 0 or ksize % 2 == 0:
        raise ValueError("ksize must be a positive odd number")
    kernel = _gaussian_kernel(ksize, sigma)
    radius = ksize // 2
    h, w = arr.shape
    padded = np.pad(arr.astype(np.float64), radius, mode="reflect") if radius else arr.astype(np.float64)

    horizontal = sum(weight * padded[:, i:i + w] for i, weight in enumerate(kernel))
    blurred = sum(weight * horizontal[i:i + h, :] for i, weight in enumerate(kernel))
    return _cast_like(np.asarray(blurred), arr.dtype)