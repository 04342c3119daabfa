"""Descriptor distances and matching helpers shared by the matchers."""

from __future__ import annotations

import math
from typing import Sequence, Sized

import numpy as np

from semorb.keypoint import KeyPoint

TH_HIGH = 100
TH_LOW = 56
HISTO_LENGTH = 30
SEM_DESC_SIZE = 16

_DESC_BYTES = 32

# Viewing cosine above which a point is seen almost head-on.
_HEAD_ON_VIEW_COS = 0.998
_HEAD_ON_RADIUS = 2.5
_OBLIQUE_RADIUS = 4.0


def _as_bytes(descriptor) -> np.ndarray:
    if isinstance(descriptor, (bytes, bytearray, memoryview)):
        arr = np.frombuffer(bytes(descriptor), dtype=np.uint8)
    else:
        arr = np.asarray(descriptor, dtype=np.uint8).ravel()
    if arr.size < _DESC_BYTES:
        raise ValueError("descriptors must hold at least 32 bytes")
    return arr[:_DESC_BYTES]


def descriptor_distance(a, b) -> int:
    """Return the Hamming distance between two 256-bit binary descriptors."""
    left = int.from_bytes(_as_bytes(a).tobytes(), "little")
    right = int.from_bytes(_as_bytes(b).tobytes(), "little")
    return bin(left ^ right).count("1")


def sem_descriptor_distance(a, b) -> int:
    """Return how many of the 32 sampled labels differ between two descriptors."""
    return int(np.count_nonzero(_as_bytes(a) != _as_bytes(b)))


def compute_three_maxima(histo: Sequence[Sized]) -> tuple[int, int, int]:
    """Return the indices of the three fullest histogram bins.

    A bin is reported as -1 when it holds less than a tenth of the fullest one.
    """
    max1 = max2 = max3 = 0
    ind1 = ind2 = ind3 = -1
    for i, bucket in enumerate(histo):
        s = len(bucket)
        if s > max1:
            max3, max2, max1 = max2, max1, s
            ind3, ind2, ind1 = ind2, ind1, i
        elif s > max2:
            max3, max2 = max2, s
            ind3, ind2 = ind2, i
        elif s > max3:
            max3 = s
            ind3 = i

    if max2 < 0.1 * max1:
        ind2 = ind3 = -1
    elif max3 < 0.1 * max1:
        ind3 = -1
    return ind1, ind2, ind3


def radius_by_viewing_cos(view_cos: float) -> float:
    """Return the search radius for a point seen under the given viewing cosine.

    Points viewed nearly head-on get a narrow window; all others, including
    an undefined (NaN) cosine, get the wider one.
    """
    cosine = float(view_cos)
    if cosine > _HEAD_ON_VIEW_COS:
        return _HEAD_ON_RADIUS
    return _OBLIQUE_RADIUS


def check_dist_epipolar_line(
    kp1: KeyPoint, kp2: KeyPoint, f12, level_sigma2: Sequence[float]
) -> bool:
    """Tell whether ``kp2`` lies close to the epipolar line of ``kp1``."""
    f = np.asarray(f12, dtype=np.float64)
    a = kp1.x * f[0, 0] + kp1.y * f[1, 0] + f[2, 0]
    b = kp1.x * f[0, 1] + kp1.y * f[1, 1] + f[2, 1]
    c = kp1.x * f[0, 2] + kp1.y * f[1, 2] + f[2, 2]
    num = a * kp2.x + b * kp2.y + c
    den = a * a + b * b
    if den == 0:
        return False
    return num * num / den < 3.84 * level_sigma2[kp2.octave]


def rotation_bin(angle1: float, angle2: float) -> int:
    """Return the rotation histogram bin for the angle difference of two keypoints."""
    rot = angle1 - angle2
    if rot < 0.0:
        rot += 360.0
    index = math.floor(rot * (1.0 / HISTO_LENGTH) + 0.5)
    if index == HISTO_LENGTH:
        index = 0
    return index