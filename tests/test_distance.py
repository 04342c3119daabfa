import numpy as np
import pytest

from semorb.distance import (
    HISTO_LENGTH,
    check_dist_epipolar_line,
    compute_three_maxima,
    descriptor_distance,
    radius_by_viewing_cos,
    rotation_bin,
    sem_descriptor_distance,
)
from semorb.keypoint import KeyPoint


def test_descriptor_distance_identical_is_zero():
    d = np.arange(32, dtype=np.uint8)
    assert descriptor_distance(d, d.copy()) == 0


def test_descriptor_distance_opposite_is_256():
    zeros = np.zeros(32, dtype=np.uint8)
    ones = np.full(32, 255, dtype=np.uint8)
    assert descriptor_distance(zeros, ones) == 256


def test_descriptor_distance_single_bit():
    a = np.zeros(32, dtype=np.uint8)
    b = a.copy()
    b[17] = 0b0001_0000
    assert descriptor_distance(a, b) == 1


def test_descriptor_distance_is_symmetric_and_accepts_bytes():
    rng = np.random.default_rng(3)
    a = rng.integers(0, 256, 32, dtype=np.uint8)
    b = rng.integers(0, 256, 32, dtype=np.uint8)
    assert descriptor_distance(a, b) == descriptor_distance(b, a)
    assert descriptor_distance(a.tobytes(), b.tobytes()) == descriptor_distance(a, b)


def test_descriptor_distance_short_input_raises():
    with pytest.raises(ValueError):
        descriptor_distance(b"\x00" * 8, b"\x00" * 8)


def test_sem_descriptor_distance_counts_bytes():
    a = np.zeros(32, dtype=np.uint8)
    b = np.ones(32, dtype=np.uint8)
    assert sem_descriptor_distance(a, b) == 32
    assert sem_descriptor_distance(a, a) == 0
    c = a.copy()
    c[5] = 200
    assert sem_descriptor_distance(a, c) == 1


def test_three_maxima_orders_bins():
    histo = [[0] * 5, [], [0] * 3, [0]]
    assert compute_three_maxima(histo) == (0, 2, 3)


def test_three_maxima_drops_small_bins():
    histo = [[0] * 20, [0], [0]]
    assert compute_three_maxima(histo) == (0, -1, -1)


def test_three_maxima_empty_histogram():
    assert compute_three_maxima([[] for _ in range(HISTO_LENGTH)]) == (-1, -1, -1)


def test_radius_by_viewing_cos():
    assert radius_by_viewing_cos(0.999) == 2.5
    assert radius_by_viewing_cos(0.5) == 4.0


def test_epipolar_zero_matrix_is_rejected():
    kp = KeyPoint(x=10, y=10)
    assert check_dist_epipolar_line(kp, kp, np.zeros((3, 3)), [1.0]) is False


def test_epipolar_line_for_horizontal_motion():
    f12 = np.array([[0.0, 0.0, 0.0], [0.0, 0.0, -1.0], [0.0, 1.0, 0.0]])
    kp1 = KeyPoint(x=50, y=40)
    assert check_dist_epipolar_line(kp1, KeyPoint(x=80, y=40, octave=0), f12, [1.0])
    assert not check_dist_epipolar_line(kp1, KeyPoint(x=80, y=60, octave=0), f12, [1.0])


def test_rotation_bin_equal_angles_is_zero():
    assert rotation_bin(123.0, 123.0) == 0


def test_rotation_bin_stays_in_range():
    for a1 in range(0, 360, 7):
        for a2 in range(0, 360, 11):
            assert 0 <= rotation_bin(float(a1), float(a2)) < HISTO_LENGTH


def test_rotation_bin_wraps_negative_difference():
    assert rotation_bin(10.0, 20.0) == rotation_bin(350.0, 0.0)