import numpy as np
import pytest

from semorb.distance import descriptor_distance
from semorb.frames import Frame, KeyFrame, MapPoint
from semorb.keypoint import KeyPoint
from semorb.matcher import ORBMatcher


def _random_descriptors(n, seed=3):
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=(n, 32), dtype=np.uint8)


def _build(cls, positions, descriptors, sem=None, angles=None, feat_vec=None, **kw):
    n = len(positions)
    angles = angles or [0.0] * n
    keys = [KeyPoint(x=x, y=y, angle=a) for (x, y), a in zip(positions, angles)]
    sem = np.zeros((n, 32), dtype=np.uint8) if sem is None else sem
    feat_vec = {1: list(range(n))} if feat_vec is None else feat_vec
    return cls(keys=keys, descriptors=descriptors, sem_descriptors=sem, feat_vec=feat_vec, **kw)


def _point(desc):
    return MapPoint(world_pos=[0, 0, 1], descriptor=desc, sem_descriptor=np.zeros(32))


def _keyframe_with_points(positions, descriptors, **kw):
    kf = _build(KeyFrame, positions, descriptors, **kw)
    points = []
    for i in range(len(positions)):
        mp = _point(descriptors[i])
        kf.add_map_point(mp, i)
        points.append(mp)
    return kf, points


def test_bow_frame_matches_identical_descriptor():
    desc = _random_descriptors(2)
    kf, points = _keyframe_with_points([(50, 50)], desc[:1])
    frame = _build(Frame, [(60, 60), (70, 70)], np.vstack([desc[1], desc[0]]))
    matches = ORBMatcher(0.6, True).search_by_bow_frame(kf, frame)
    assert matches == [None, points[0]]


def test_bow_frame_rejects_ambiguous_candidates():
    desc = _random_descriptors(1)
    kf, _ = _keyframe_with_points([(50, 50)], desc)
    frame = _build(Frame, [(60, 60), (70, 70)], np.vstack([desc[0], desc[0]]))
    assert ORBMatcher(0.6, False).search_by_bow_frame(kf, frame) == [None, None]


def test_bow_frame_semantic_distance_counts():
    desc = _random_descriptors(1)
    shifted = desc.copy()
    shifted[0, :3] ^= 0xFF
    shifted[0, 3] ^= 0x3F
    assert descriptor_distance(desc[0], shifted[0]) == 30
    kf, points = _keyframe_with_points([(50, 50)], desc)
    same_labels = _build(Frame, [(60, 60)], shifted)
    other_labels = _build(Frame, [(60, 60)], shifted, sem=np.ones((1, 32), dtype=np.uint8))
    matcher = ORBMatcher(0.6, False)
    assert matcher.search_by_bow_frame(kf, same_labels) == [points[0]]
    assert matcher.search_by_bow_frame(kf, other_labels) == [None]


def test_bow_frame_orientation_check_drops_outlier_rotation():
    n = 12
    desc = _random_descriptors(n, seed=11)
    positions = [(10 * i + 20, 40) for i in range(n)]
    kf, points = _keyframe_with_points(positions, desc)
    angles = [0.0] * (n - 1) + [180.0]
    frame = _build(Frame, positions, desc, angles=angles)

    checked = ORBMatcher(0.6, True).search_by_bow_frame(kf, frame)
    unchecked = ORBMatcher(0.6, False).search_by_bow_frame(kf, frame)

    assert checked[: n - 1] == points[: n - 1]
    assert checked[n - 1] is None
    assert unchecked == points


def test_bow_frame_requires_shared_word():
    desc = _random_descriptors(1)
    kf, _ = _keyframe_with_points([(50, 50)], desc)
    frame = _build(Frame, [(50, 50)], desc, feat_vec={2: [0]})
    assert ORBMatcher().search_by_bow_frame(kf, frame) == [None]


def test_bow_keyframes_match_and_skip_bad():
    desc = _random_descriptors(2, seed=5)
    kf1, _ = _keyframe_with_points([(50, 50)], desc[:1])
    kf2, points2 = _keyframe_with_points([(60, 60), (70, 70)], desc)
    matcher = ORBMatcher(0.6, True)
    assert matcher.search_by_bow(kf1, kf2) == [points2[0]]
    points2[0].bad = True
    assert matcher.search_by_bow(kf1, kf2) == [None]


def test_search_for_initialization_updates_positions():
    desc = _random_descriptors(2, seed=9)
    f1 = _build(Frame, [(100, 100), (200, 150)], desc)
    f2 = _build(Frame, [(203, 152), (102, 98)], np.vstack([desc[1], desc[0]]))
    matcher = ORBMatcher(0.9, True)
    matches, positions = matcher.search_for_initialization(f1, f2, [k.pt for k in f1.keys], 10)
    assert matches == [1, 0]
    assert positions == [f2.keys[1].pt, f2.keys[0].pt]


def test_search_for_initialization_ignores_coarse_levels_and_far_points():
    desc = _random_descriptors(2, seed=9)
    f1 = _build(Frame, [(100, 100), (200, 150)], desc)
    f1.keys_un[0].octave = 1
    f2 = _build(Frame, [(100, 100), (300, 300)], desc)
    prev = [k.pt for k in f1.keys]
    matches, positions = ORBMatcher(0.9, False).search_for_initialization(f1, f2, prev, 10)
    assert matches == [-1, -1]
    assert positions == prev


def test_search_for_initialization_length_mismatch():
    f1 = _build(Frame, [(1, 1)], _random_descriptors(1))
    with pytest.raises(ValueError):
        ORBMatcher().search_for_initialization(f1, f1, [], 10)


def _triangulation_pair(u_right2=None, u_right1=None):
    desc = _random_descriptors(1, seed=21)
    kf1 = _build(KeyFrame, [(100, 50)], desc, u_right=u_right1)
    tcw = np.eye(4)
    tcw[2, 3] = 1.0
    kf2 = _build(KeyFrame, [(140, 50), (140, 80)], np.vstack([desc, desc]), tcw=tcw, u_right=u_right2)
    f12 = np.array([[0.0, 0.0, 0.0], [0.0, 0.0, -1.0], [0.0, 1.0, 0.0]])
    return kf1, kf2, f12


def test_triangulation_follows_epipolar_line():
    kf1, kf2, f12 = _triangulation_pair()
    assert ORBMatcher(0.6, True).search_for_triangulation(kf1, kf2, f12, False) == [(0, 0)]


def test_triangulation_only_stereo_and_existing_points():
    kf1, kf2, f12 = _triangulation_pair()
    matcher = ORBMatcher(0.6, True)
    assert matcher.search_for_triangulation(kf1, kf2, f12, True) == []
    kf1.add_map_point(_point(kf1.descriptors[0]), 0)
    assert matcher.search_for_triangulation(kf1, kf2, f12, False) == []


def test_triangulation_stereo_pair():
    kf1, kf2, f12 = _triangulation_pair(u_right2=[130.0, 130.0], u_right1=[90.0])
    assert ORBMatcher(0.6, False).search_for_triangulation(kf1, kf2, f12, True) == [(0, 0)]