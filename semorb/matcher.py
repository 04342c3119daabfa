"""Descriptor matching between frames using the bag-of-words index."""

from __future__ import annotations

import math
from typing import Iterator, Optional, Sequence

import numpy as np

from semorb.distance import (
    HISTO_LENGTH,
    TH_LOW,
    check_dist_epipolar_line,
    compute_three_maxima,
    descriptor_distance,
    rotation_bin,
    sem_descriptor_distance,
)
from semorb.frames import Frame, KeyFrame, MapPoint


def _combined_distance(d1, s1, d2, s2) -> int:
    return descriptor_distance(d1, d2) + sem_descriptor_distance(s1, s2)


class _RotationCheck:
    """Histogram of rotation differences used to reject inconsistent matches."""

    def __init__(self, enabled: bool) -> None:
        self.enabled = enabled
        self.histo: list[list[int]] = [[] for _ in range(HISTO_LENGTH)]

    def add(self, angle1: float, angle2: float, item: int) -> None:
        if self.enabled:
            self.histo[rotation_bin(angle1, angle2)].append(item)

    def rejected(self) -> Iterator[int]:
        if not self.enabled:
            return
        keep = set(compute_three_maxima(self.histo))
        for i, bucket in enumerate(self.histo):
            if i not in keep:
                yield from bucket


def _shared_words(a: dict, b: dict) -> list:
    return sorted(a.keys() & b.keys())


class ORBMatcher:
    """Matches ORB plus semantic descriptors between frames and keyframes."""

    def __init__(self, nn_ratio: float = 0.6, check_orientation: bool = True) -> None:
        self.nn_ratio = nn_ratio
        self.check_orientation = check_orientation

    def search_by_bow_frame(self, keyframe: KeyFrame, frame: Frame) -> list[Optional[MapPoint]]:
        """Match the keyframe's map points to the frame's keypoints.

        Returns, for each keypoint of the frame, the matched map point or None.
        """
        kf_points = keyframe.map_point_matches()
        matches: list[Optional[MapPoint]] = [None] * frame.n
        rotation = _RotationCheck(self.check_orientation)

        for word in _shared_words(keyframe.feat_vec, frame.feat_vec):
            frame_indices = frame.feat_vec[word]
            for idx_kf in keyframe.feat_vec[word]:
                mp = kf_points[idx_kf]
                if mp is None or mp.bad:
                    continue
                d_kf = keyframe.descriptors[idx_kf]
                s_kf = keyframe.sem_descriptors[idx_kf]

                best1 = best2 = 256
                best_idx = -1
                for idx_f in frame_indices:
                    if matches[idx_f] is not None:
                        continue
                    dist = _combined_distance(
                        d_kf, s_kf, frame.descriptors[idx_f], frame.sem_descriptors[idx_f]
                    )
                    if dist < best1:
                        best2, best1, best_idx = best1, dist, idx_f
                    elif dist < best2:
                        best2 = dist

                if best1 <= TH_LOW and best1 < self.nn_ratio * best2:
                    matches[best_idx] = mp
                    rotation.add(keyframe.keys_un[idx_kf].angle, frame.keys[best_idx].angle, best_idx)

        for idx in rotation.rejected():
            matches[idx] = None
        return matches

    def search_by_bow(self, kf1: KeyFrame, kf2: KeyFrame) -> list[Optional[MapPoint]]:
        """Match map points of two keyframes sharing vocabulary words.

        Returns, for each keypoint of ``kf1``, the matched point of ``kf2`` or None.
        """
        points1 = kf1.map_point_matches()
        points2 = kf2.map_point_matches()
        matches: list[Optional[MapPoint]] = [None] * len(points1)
        matched2 = [False] * len(points2)
        rotation = _RotationCheck(self.check_orientation)

        for word in _shared_words(kf1.feat_vec, kf2.feat_vec):
            indices2 = kf2.feat_vec[word]
            for idx1 in kf1.feat_vec[word]:
                mp1 = points1[idx1]
                if mp1 is None or mp1.bad:
                    continue
                d1 = kf1.descriptors[idx1]
                s1 = kf1.sem_descriptors[idx1]

                best1 = best2 = 256
                best_idx2 = -1
                for idx2 in indices2:
                    mp2 = points2[idx2]
                    if matched2[idx2] or mp2 is None or mp2.bad:
                        continue
                    dist = _combined_distance(d1, s1, kf2.descriptors[idx2], kf2.sem_descriptors[idx2])
                    if dist < best1:
                        best2, best1, best_idx2 = best1, dist, idx2
                    elif dist < best2:
                        best2 = dist

                if best1 < TH_LOW and best1 < self.nn_ratio * best2:
                    matches[idx1] = points2[best_idx2]
                    matched2[best_idx2] = True
                    rotation.add(kf1.keys_un[idx1].angle, kf2.keys_un[best_idx2].angle, idx1)

        for idx in rotation.rejected():
            matches[idx] = None
        return matches

    def search_for_initialization(
        self,
        f1: Frame,
        f2: Frame,
        prev_matched: Sequence[tuple[float, float]],
        window_size: float = 10,
    ) -> tuple[list[int], list[tuple[float, float]]]:
        """Match finest-level keypoints of ``f1`` to ``f2`` near their previous positions.

        Returns the index in ``f2`` matched to each keypoint of ``f1`` (-1 when
        unmatched) and the updated previous positions.
        """
        if len(prev_matched) != len(f1.keys_un):
            raise ValueError("prev_matched must hold one position per keypoint of f1")
        positions = [tuple(p) for p in prev_matched]
        matches12 = [-1] * len(f1.keys_un)
        matched_distance = [math.inf] * len(f2.keys_un)
        matches21 = [-1] * len(f2.keys_un)
        rotation = _RotationCheck(self.check_orientation)

        for i1, kp1 in enumerate(f1.keys_un):
            level1 = kp1.octave
            if level1 > 0:
                continue
            px, py = positions[i1]
            candidates = f2.features_in_area(px, py, window_size, level1, level1)
            if not candidates:
                continue
            d1 = f1.descriptors[i1]
            s1 = f1.sem_descriptors[i1]

            best = best2 = math.inf
            best_idx2 = -1
            for i2 in candidates:
                dist = _combined_distance(d1, s1, f2.descriptors[i2], f2.sem_descriptors[i2])
                if matched_distance[i2] <= dist:
                    continue
                if dist < best:
                    best2, best, best_idx2 = best, dist, i2
                elif dist < best2:
                    best2 = dist

            if best <= TH_LOW and best < best2 * self.nn_ratio:
                previous = matches21[best_idx2]
                if previous >= 0:
                    matches12[previous] = -1
                matches12[i1] = best_idx2
                matches21[best_idx2] = i1
                matched_distance[best_idx2] = best
                rotation.add(kp1.angle, f2.keys_un[best_idx2].angle, i1)

        for idx1 in rotation.rejected():
            matches12[idx1] = -1

        for i1, i2 in enumerate(matches12):
            if i2 >= 0:
                positions[i1] = f2.keys_un[i2].pt
        return matches12, positions

    def search_for_triangulation(
        self, kf1: KeyFrame, kf2: KeyFrame, f12, only_stereo: bool = False
    ) -> list[tuple[int, int]]:
        """Match keypoints without map points that satisfy the epipolar constraint.

        Returns (index in ``kf1``, index in ``kf2``) pairs ordered by the first index.
        """
        f12 = np.asarray(f12, dtype=np.float64)
        c2 = kf2.rotation @ kf1.camera_center + kf2.translation
        with np.errstate(divide="ignore", invalid="ignore"):
            invz = np.float64(1.0) / np.float64(c2[2])
            ex = kf2.fx * c2[0] * invz + kf2.cx
            ey = kf2.fy * c2[1] * invz + kf2.cy

        matched2 = [False] * kf2.n
        matches12 = [-1] * kf1.n
        rotation = _RotationCheck(self.check_orientation)

        for word in _shared_words(kf1.feat_vec, kf2.feat_vec):
            indices2 = kf2.feat_vec[word]
            for idx1 in kf1.feat_vec[word]:
                if kf1.get_map_point(idx1) is not None:
                    continue
                stereo1 = kf1.u_right[idx1] >= 0
                if only_stereo and not stereo1:
                    continue
                kp1 = kf1.keys_un[idx1]
                d1 = kf1.descriptors[idx1]
                s1 = kf1.sem_descriptors[idx1]

                best_dist = TH_LOW
                best_idx2 = -1
                for idx2 in indices2:
                    if matched2[idx2] or kf2.get_map_point(idx2) is not None:
                        continue
                    stereo2 = kf2.u_right[idx2] >= 0
                    if only_stereo and not stereo2:
                        continue
                    dist = _combined_distance(d1, s1, kf2.descriptors[idx2], kf2.sem_descriptors[idx2])
                    if dist > TH_LOW or dist > best_dist:
                        continue
                    kp2 = kf2.keys_un[idx2]
                    if not stereo1 and not stereo2:
                        dx = ex - kp2.x
                        dy = ey - kp2.y
                        if dx * dx + dy * dy < 100 * kf2.scale_factors[kp2.octave]:
                            continue
                    if check_dist_epipolar_line(kp1, kp2, f12, kf2.level_sigma2):
                        best_idx2 = idx2
                        best_dist = dist

                if best_idx2 >= 0:
                    matches12[idx1] = best_idx2
                    rotation.add(kp1.angle, kf2.keys_un[best_idx2].angle, idx1)

        for idx1 in rotation.rejected():
            matches12[idx1] = -1

        return [(i1, i2) for i1, i2 in enumerate(matches12) if i2 >= 0]