"""ORB feature extraction with semantic label descriptors."""

from __future__ import annotations

import math
from dataclasses import replace
from typing import Sequence

import numpy as np

from semorb.imgproc import fast, fast_atan2, gaussian_blur, reflect_border, resize_linear
from semorb.keypoint import KeyPoint, retain_best
from semorb.octree import distribute_oct_tree
from semorb.patterns import circle_umax, orb_pattern, sem_pattern

PATCH_SIZE = 31
HALF_PATCH_SIZE = 15
EDGE_THRESHOLD = 19
DESCRIPTOR_BYTES = 32

_CELL_SIZE = 30.0
_ORB_POINTS = 512
_SEM_POINTS = 32


def _check_gray(image) -> np.ndarray:
    arr = np.asarray(image)
    if arr.ndim != 2:
        raise ValueError("expected a single-channel two-dimensional image")
    if arr.dtype != np.uint8:
        raise ValueError("expected an 8-bit image")
    return arr


def ic_angle(image, pt: tuple[float, float], u_max: Sequence[int]) -> float:
    """Return the intensity-centroid orientation of a circular patch, in degrees."""
    img = np.asarray(image)
    half = len(u_max) - 1
    cx = int(np.rint(pt[0]))
    cy = int(np.rint(pt[1]))
    h, w = img.shape
    if cx - half < 0 or cx + half >= w or cy - half < 0 or cy + half >= h:
        raise ValueError("the patch around the point leaves the image")

    patch = img[cy - half:cy + half + 1, cx - half:cx + half + 1].astype(np.int64)
    centre_row = patch[half]
    m_10 = int(np.arange(-half, half + 1) @ centre_row)
    m_01 = 0
    for v in range(1, half + 1):
        d = u_max[v]
        u = np.arange(-d, d + 1)
        plus = patch[half + v, half - d:half + d + 1]
        minus = patch[half - v, half - d:half + d + 1]
        m_01 += v * int((plus - minus).sum())
        m_10 += int(u @ (plus + minus))
    return fast_atan2(float(m_01), float(m_10))


def _sample(kpt: KeyPoint, image, points) -> np.ndarray:
    img = np.asarray(image)
    angle = np.float32(kpt.angle) * np.float32(math.pi / 180.0)
    a = np.float32(math.cos(float(angle)))
    b = np.float32(math.sin(float(angle)))
    pts = np.asarray(points, dtype=np.float32)
    px, py = pts[:, 0], pts[:, 1]
    rows = int(np.rint(kpt.y)) + np.rint(px * b + py * a).astype(np.intp)
    cols = int(np.rint(kpt.x)) + np.rint(px * a - py * b).astype(np.intp)
    h, w = img.shape
    if rows.min() < 0 or cols.min() < 0 or rows.max() >= h or cols.max() >= w:
        raise ValueError("the sampling pattern leaves the image")
    return img[rows, cols]


def compute_orb_descriptor(kpt: KeyPoint, image, pattern) -> np.ndarray:
    """Return the 32-byte rotated BRIEF descriptor of a keypoint."""
    points = list(pattern)
    if len(points) < _ORB_POINTS:
        raise ValueError("the ORB pattern needs 512 points")
    values = _sample(kpt, image, points[:_ORB_POINTS]).astype(np.int32)
    bits = values[0::2] < values[1::2]
    return np.packbits(bits, bitorder="little")


def compute_sem_descriptor(kpt: KeyPoint, label, pattern) -> np.ndarray:
    """Return the 32 label values sampled around a keypoint."""
    points = list(pattern)
    if len(points) < _SEM_POINTS:
        raise ValueError("the semantic pattern needs 32 points")
    return _sample(kpt, label, points[:_SEM_POINTS]).astype(np.uint8)


class ORBExtractor:
    """Detects ORB keypoints on a scale pyramid and describes them."""

    def __init__(
        self,
        nfeatures: int,
        scale_factor: float,
        nlevels: int,
        ini_th_fast: int,
        min_th_fast: int,
    ) -> None:
        if nlevels < 1:
            raise ValueError("nlevels must be at least 1")
        if nfeatures < 0:
            raise ValueError("nfeatures must not be negative")
        if scale_factor <= 0 or scale_factor == 1.0:
            raise ValueError("scale_factor must be positive and different from 1")

        self.nfeatures = nfeatures
        self.scale_factor = scale_factor
        self.nlevels = nlevels
        self.ini_th_fast = ini_th_fast
        self.min_th_fast = min_th_fast

        self.scale_factors = [1.0]
        for _ in range(1, nlevels):
            self.scale_factors.append(self.scale_factors[-1] * scale_factor)
        self.level_sigma2 = [s * s for s in self.scale_factors]
        self.inv_scale_factors = [1.0 / s for s in self.scale_factors]
        self.inv_level_sigma2 = [1.0 / s for s in self.level_sigma2]

        factor = 1.0 / scale_factor
        desired = nfeatures * (1 - factor) / (1 - factor ** nlevels)
        self.features_per_level: list[int] = []
        for _ in range(nlevels - 1):
            self.features_per_level.append(round(desired))
            desired *= factor
        self.features_per_level.append(max(nfeatures - sum(self.features_per_level), 0))

        self.pattern = orb_pattern()
        self.sem_pattern = sem_pattern()
        self.umax = circle_umax(HALF_PATCH_SIZE)

        self.image_pyramid: list[np.ndarray] = []
        self.label_pyramid: list[np.ndarray] = []
        self._image_bordered: list[np.ndarray] = []
        self._label_bordered: list[np.ndarray] = []

    def _build_pyramid(self, image) -> tuple[list[np.ndarray], list[np.ndarray]]:
        arr = _check_gray(image)
        levels: list[np.ndarray] = []
        bordered: list[np.ndarray] = []
        for level in range(self.nlevels):
            scale = self.inv_scale_factors[level]
            width = round(arr.shape[1] * scale)
            height = round(arr.shape[0] * scale)
            src = arr if level == 0 else resize_linear(levels[-1], width, height)
            padded = reflect_border(src, EDGE_THRESHOLD)
            bordered.append(padded)
            levels.append(
                padded[EDGE_THRESHOLD:EDGE_THRESHOLD + src.shape[0],
                       EDGE_THRESHOLD:EDGE_THRESHOLD + src.shape[1]]
            )
        return levels, bordered

    def compute_pyramid(self, image) -> list[np.ndarray]:
        """Build the image scale pyramid and return its levels."""
        self.image_pyramid, self._image_bordered = self._build_pyramid(image)
        return self.image_pyramid

    def compute_sem_pyramid(self, label) -> list[np.ndarray]:
        """Build the label scale pyramid and return its levels."""
        self.label_pyramid, self._label_bordered = self._build_pyramid(label)
        return self.label_pyramid

    def _require_pyramid(self) -> None:
        if len(self.image_pyramid) != self.nlevels:
            raise RuntimeError("compute_pyramid must be called first")

    def _orient(self, all_keypoints: list[list[KeyPoint]]) -> None:
        for level, keypoints in enumerate(all_keypoints):
            bordered = self._image_bordered[level]
            for kp in keypoints:
                kp.angle = ic_angle(
                    bordered, (kp.x + EDGE_THRESHOLD, kp.y + EDGE_THRESHOLD), self.umax
                )

    def _detect(self, cell: np.ndarray, retry_below: int) -> list[KeyPoint]:
        keys = fast(cell, self.ini_th_fast, True)
        if len(keys) <= retry_below:
            keys = fast(cell, self.min_th_fast, True)
        return keys

    def compute_keypoints_oct_tree(self) -> list[list[KeyPoint]]:
        """Detect keypoints per level and spread them with a quadtree."""
        self._require_pyramid()
        all_keypoints: list[list[KeyPoint]] = []

        for level, img in enumerate(self.image_pyramid):
            min_border = EDGE_THRESHOLD - 3
            max_border_x = img.shape[1] - EDGE_THRESHOLD + 3
            max_border_y = img.shape[0] - EDGE_THRESHOLD + 3
            width = float(max_border_x - min_border)
            height = float(max_border_y - min_border)
            n_cols = int(width / _CELL_SIZE)
            n_rows = int(height / _CELL_SIZE)
            if n_cols < 1 or n_rows < 1:
                raise ValueError(f"pyramid level {level} is too small")
            w_cell = math.ceil(width / n_cols)
            h_cell = math.ceil(height / n_rows)

            to_distribute: list[KeyPoint] = []
            for i in range(n_rows):
                ini_y = min_border + i * h_cell
                if ini_y >= max_border_y - 3:
                    continue
                max_y = min(ini_y + h_cell + 6, max_border_y)
                for j in range(n_cols):
                    ini_x = min_border + j * w_cell
                    if ini_x >= max_border_x - 6:
                        continue
                    max_x = min(ini_x + w_cell + 6, max_border_x)
                    cell_keys = self._detect(img[ini_y:max_y, ini_x:max_x], 0)
                    for kp in cell_keys:
                        kp.x += j * w_cell
                        kp.y += i * h_cell
                    to_distribute.extend(cell_keys)

            keypoints = distribute_oct_tree(
                to_distribute, min_border, max_border_x, min_border, max_border_y,
                self.features_per_level[level],
            )
            scaled_patch = int(PATCH_SIZE * self.scale_factors[level])
            for kp in keypoints:
                kp.x += min_border
                kp.y += min_border
                kp.octave = level
                kp.size = scaled_patch
            all_keypoints.append(keypoints)

        self._orient(all_keypoints)
        return all_keypoints

    def compute_keypoints_old(self) -> list[list[KeyPoint]]:
        """Detect keypoints per level on a fixed grid, sharing quotas between cells."""
        self._require_pyramid()
        all_keypoints: list[list[KeyPoint]] = []
        base = self.image_pyramid[0]
        image_ratio = base.shape[1] / base.shape[0]

        for level, img in enumerate(self.image_pyramid):
            n_desired = self.features_per_level[level]
            level_cols = int(math.sqrt(n_desired / (5 * image_ratio)))
            level_rows = int(image_ratio * level_cols)
            if level_cols < 1 or level_rows < 1:
                raise ValueError(f"too few features requested for pyramid level {level}")

            min_border = EDGE_THRESHOLD
            max_border_x = img.shape[1] - EDGE_THRESHOLD
            max_border_y = img.shape[0] - EDGE_THRESHOLD
            cell_w = math.ceil((max_border_x - min_border) / level_cols)
            cell_h = math.ceil((max_border_y - min_border) / level_rows)
            n_cells = level_rows * level_cols
            n_per_cell = math.ceil(n_desired / n_cells)

            cells = [[[] for _ in range(level_cols)] for _ in range(level_rows)]
            to_retain = [[0] * level_cols for _ in range(level_rows)]
            totals = [[0] * level_cols for _ in range(level_rows)]
            no_more = [[False] * level_cols for _ in range(level_rows)]
            ini_x_col = [0] * level_cols
            ini_y_row = [0] * level_rows
            n_no_more = 0
            n_to_distribute = 0

            h_y = cell_h + 6
            for i in range(level_rows):
                ini_y = min_border + i * cell_h - 3
                ini_y_row[i] = ini_y
                if i == level_rows - 1:
                    h_y = max_border_y + 3 - ini_y
                    if h_y <= 0:
                        continue
                h_x = cell_w + 6
                for j in range(level_cols):
                    if i == 0:
                        ini_x_col[j] = min_border + j * cell_w - 3
                    ini_x = ini_x_col[j]
                    if j == level_cols - 1:
                        h_x = max_border_x + 3 - ini_x
                        if h_x <= 0:
                            continue
                    cell = img[ini_y:ini_y + h_y, ini_x:ini_x + h_x]
                    cells[i][j] = self._detect(cell, 3)
                    n_keys = len(cells[i][j])
                    totals[i][j] = n_keys
                    if n_keys > n_per_cell:
                        to_retain[i][j] = n_per_cell
                    else:
                        to_retain[i][j] = n_keys
                        n_to_distribute += n_per_cell - n_keys
                        no_more[i][j] = True
                        n_no_more += 1

            while n_to_distribute > 0 and n_no_more < n_cells:
                n_new = n_per_cell + math.ceil(n_to_distribute / (n_cells - n_no_more))
                n_to_distribute = 0
                for i in range(level_rows):
                    for j in range(level_cols):
                        if no_more[i][j]:
                            continue
                        if totals[i][j] > n_new:
                            to_retain[i][j] = n_new
                        else:
                            to_retain[i][j] = totals[i][j]
                            n_to_distribute += n_new - totals[i][j]
                            no_more[i][j] = True
                            n_no_more += 1

            scaled_patch = int(PATCH_SIZE * self.scale_factors[level])
            keypoints: list[KeyPoint] = []
            for i, row in enumerate(cells):
                for j, cell_keys in enumerate(row):
                    limit = to_retain[i][j]
                    kept = cell_keys if len(cell_keys) <= limit else retain_best(cell_keys, limit)
                    for kp in kept:
                        kp.x += ini_x_col[j]
                        kp.y += ini_y_row[i]
                        kp.octave = level
                        kp.size = scaled_patch
                    keypoints.extend(kept)

            if len(keypoints) > n_desired:
                keypoints = retain_best(keypoints, n_desired)
            all_keypoints.append(keypoints)

        self._orient(all_keypoints)
        return all_keypoints

    def __call__(self, image, label) -> tuple[list[KeyPoint], np.ndarray, np.ndarray]:
        """Extract keypoints, ORB descriptors and semantic descriptors.

        Keypoint coordinates are returned in the frame of the full-size image.
        """
        img = np.asarray(image)
        lab = np.asarray(label)
        empty = np.zeros((0, DESCRIPTOR_BYTES), dtype=np.uint8)
        if img.size == 0 or lab.size == 0:
            return [], empty, empty.copy()
        _check_gray(img)
        _check_gray(lab)
        if img.shape != lab.shape:
            raise ValueError("image and label must have the same shape")

        self.compute_pyramid(img)
        self.compute_sem_pyramid(lab)
        all_keypoints = self.compute_keypoints_oct_tree()

        keypoints: list[KeyPoint] = []
        descriptors: list[np.ndarray] = []
        sem_descriptors: list[np.ndarray] = []
        for level, level_keys in enumerate(all_keypoints):
            if not level_keys:
                continue
            blurred = reflect_border(
                gaussian_blur(self.image_pyramid[level], 7, 2.0), EDGE_THRESHOLD
            )
            labels = self._label_bordered[level]
            for kp in level_keys:
                shifted = replace(kp, x=kp.x + EDGE_THRESHOLD, y=kp.y + EDGE_THRESHOLD)
                descriptors.append(compute_orb_descriptor(shifted, blurred, self.pattern))
                sem_descriptors.append(compute_sem_descriptor(shifted, labels, self.pattern))
            if level != 0:
                scale = self.scale_factors[level]
                for kp in level_keys:
                    kp.x *= scale
                    kp.y *= scale
            keypoints.extend(level_keys)

        if not keypoints:
            return [], empty, empty.copy()
        return keypoints, np.vstack(descriptors), np.vstack(sem_descriptors)