import numpy as np
import pytest

from semorb.frames import Frame, KeyFrame, MapPoint
from semorb.keypoint import KeyPoint
from semorb.projection import ProjectionMatcher, decompose_sim3


def _desc(first=0, second=0):
    d = np.zeros(32, dtype=np.uint8)
    d[0] = first
    d[1] = second
    return d


def _camera():
    return dict(fx=100.0, fy=100.0, cx=320.0, cy=240.0)


def _frame(points, descs=None, cls=Frame, **kwargs):
    keys = [KeyPoint(x, y) for x, y in points]
    if descs is None:
        descs = [_desc() for _ in keys]
    return cls(
        keys=keys,
        descriptors=np.array(descs),
        sem_descriptors=np.zeros((len(keys), 32), dtype=np.uint8),
        **_camera(),
        **kwargs,
    )


def _point(z=5.0, desc=None):
    return MapPoint(
        world_pos=[0.0, 0.0, z],
        descriptor=_desc() if desc is None else desc,
        sem_descriptor=np.zeros(32, dtype=np.uint8),
        normal=[0.0, 0.0, 1.0],
        max_distance=z,
    )


def _tracked(x, y):
    mp = _point()
    mp.track_in_view = True
    mp.track_proj_x = x
    mp.track_proj_y = y
    mp.track_scale_level = 0
    mp.track_view_cos = 1.0
    return mp


def test_search_by_projection_matches_tracked_point():
    frame = _frame([(100.0, 100.0)])
    mp = _tracked(100.0, 100.0)
    n = ProjectionMatcher().search_by_projection(frame, [mp], 1.0)
    assert frame.map_points[0] is mp
    assert n == sum(m is not None for m in frame.map_points)


def test_search_by_projection_skips_points_out_of_view_or_bad():
    frame = _frame([(100.0, 100.0)])
    hidden = _tracked(100.0, 100.0)
    hidden.track_in_view = False
    bad = _tracked(100.0, 100.0)
    bad.bad = True
    n = ProjectionMatcher().search_by_projection(frame, [hidden, bad], 1.0)
    assert frame.map_points == [None]
    assert n == 0


def test_search_by_projection_ratio_test_on_same_level():
    descs = [_desc(0xFF, 0x03), _desc(0xFF, 0x07)]
    strict = _frame([(100.0, 100.0), (101.0, 100.0)], descs)
    assert ProjectionMatcher(0.6).search_by_projection(strict, [_tracked(100.0, 100.0)]) == 0
    assert strict.map_points == [None, None]

    loose = _frame([(100.0, 100.0), (101.0, 100.0)], descs)
    mp = _tracked(100.0, 100.0)
    ProjectionMatcher(0.95).search_by_projection(loose, [mp])
    assert loose.map_points == [mp, None]


def test_last_frame_projection_matches_and_respects_outliers():
    mp = _point()
    last = _frame([(320.0, 240.0)], map_points=[mp])
    current = _frame([(320.0, 240.0)])
    n = ProjectionMatcher().search_by_projection_last_frame(current, last, 7.0, True)
    assert current.map_points[0] is mp
    assert n == 1

    last_outlier = _frame([(320.0, 240.0)], map_points=[mp], outliers=[True])
    fresh = _frame([(320.0, 240.0)])
    ProjectionMatcher().search_by_projection_last_frame(fresh, last_outlier, 7.0, True)
    assert fresh.map_points == [None]


def test_last_frame_projection_ignores_points_behind_camera():
    mp = _point(z=-5.0)
    last = _frame([(320.0, 240.0)], map_points=[mp])
    current = _frame([(320.0, 240.0)])
    n = ProjectionMatcher().search_by_projection_last_frame(current, last, 7.0, True)
    assert current.map_points == [None]
    assert n == 0


def test_keyframe_projection_honours_already_found_and_threshold():
    mp = _point()
    keyframe = _frame([(320.0, 240.0)], cls=KeyFrame, map_points=[mp])
    matcher = ProjectionMatcher()

    current = _frame([(320.0, 240.0)])
    matcher.search_by_projection_keyframe(current, keyframe, set(), 10.0, 50)
    assert current.map_points[0] is mp

    skipped = _frame([(320.0, 240.0)])
    matcher.search_by_projection_keyframe(skipped, keyframe, {mp}, 10.0, 50)
    assert skipped.map_points == [None]

    far = _frame([(320.0, 240.0)], [_desc(0xFF, 0x03)])
    matcher.search_by_projection_keyframe(far, keyframe, set(), 10.0, 5)
    assert far.map_points == [None]


def test_sim3_projection_adds_new_match_without_touching_input():
    mp = _point()
    keyframe = _frame([(320.0, 240.0)], cls=KeyFrame)
    matched = [None]
    n, result = ProjectionMatcher().search_by_projection_sim3(
        keyframe, np.eye(4), [mp], matched, 10
    )
    assert result == [mp]
    assert matched == [None]
    assert n == len([m for m in result if m is not None])


def test_sim3_projection_skips_already_matched_points():
    mp = _point()
    keyframe = _frame([(320.0, 240.0), (500.0, 400.0)], cls=KeyFrame)
    n, result = ProjectionMatcher().search_by_projection_sim3(
        keyframe, np.eye(4), [mp], [None, mp], 10
    )
    assert result == [None, mp]
    assert n == 0


def test_sim3_projection_rejects_wrong_length():
    keyframe = _frame([(320.0, 240.0)], cls=KeyFrame)
    with pytest.raises(ValueError):
        ProjectionMatcher().search_by_projection_sim3(keyframe, np.eye(4), [], [], 10)


def test_decompose_sim3_removes_scale():
    scw = np.eye(4)
    scw[:3, :3] *= 2.0
    scw[:3, 3] = [2.0, 4.0, 6.0]
    rcw, tcw, ow = decompose_sim3(scw)
    np.testing.assert_allclose(rcw, np.eye(3))
    np.testing.assert_allclose(tcw, scw[:3, 3] / 2.0)
    np.testing.assert_allclose(rcw @ ow + tcw, np.zeros(3))


def test_decompose_sim3_rejects_bad_shape():
    with pytest.raises(ValueError):
        decompose_sim3(np.eye(3))