"""Matching of map points to keypoints by projecting them into an image."""

from __future__ import annotations

import math
from typing import Collection, Optional, Sequence

import numpy as np

from semorb.distance import TH_HIGH, TH_LOW, radius_by_viewing_cos
from semorb.frames import Frame, KeyFrame, MapPoint
from semorb.matcher import ORBMatcher, _combined_distance, _RotationCheck


def decompose_sim3(scw) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Split a 4x4 similarity into rotation, scale-free translation and camera centre."""
    s = np.asarray(scw, dtype=np.float64)
    if s.shape != (4, 4):
        raise ValueError("a similarity transform must be a 4x4 matrix")
    s_rcw = s[:3, :3]
    scale = math.sqrt(float(s_rcw[0] @ s_rcw[0]))
    if scale == 0.0:
        raise ValueError("the similarity transform has zero scale")
    rcw = s_rcw / scale
    tcw = s[:3, 3] / scale
    ow = -rcw.T @ tcw
    return rcw, tcw, ow


def _mp_distance(mp: MapPoint, descriptors, sem_descriptors, idx: int) -> int:
    return _combined_distance(
        mp.descriptor, mp.sem_descriptor, descriptors[idx], sem_descriptors[idx]
    )


class ProjectionMatcher(ORBMatcher):
    """Matches map points by projecting them into frames and keyframes."""

    def search_by_projection(
        self, frame: Frame, map_points: Sequence[MapPoint], th: float = 1.0
    ) -> int:
        """Match tracked local map points to the frame's keypoints.

        Each map point must carry its predicted projection in its ``track_*``
        fields. Matches are stored in ``frame.map_points``; returns how many.
        """
        nmatches = 0
        scale_radius = th != 1.0

        for mp in map_points:
            if not mp.track_in_view or mp.bad:
                continue
            level = mp.track_scale_level
            r = radius_by_viewing_cos(mp.track_view_cos)
            if scale_radius:
                r *= th
            window = r * frame.scale_factors[level]

            candidates = frame.features_in_area(
                mp.track_proj_x, mp.track_proj_y, window, level - 1, level
            )
            if not candidates:
                continue

            best = best2 = 256
            best_level = best_level2 = -1
            best_idx = -1
            for idx in candidates:
                existing = frame.map_points[idx]
                if existing is not None and existing.n_observations > 0:
                    continue
                if frame.u_right[idx] > 0:
                    if abs(mp.track_proj_xr - frame.u_right[idx]) > window:
                        continue
                dist = _mp_distance(mp, frame.descriptors, frame.sem_descriptors, idx)
                if dist < best:
                    best2, best = best, dist
                    best_level2, best_level = best_level, frame.keys_un[idx].octave
                    best_idx = idx
                elif dist < best2:
                    best_level2 = frame.keys_un[idx].octave
                    best2 = dist

            if best <= TH_HIGH:
                if best_level == best_level2 and best > self.nn_ratio * best2:
                    continue
                frame.map_points[best_idx] = mp
                nmatches += 1

        return nmatches

    def search_by_projection_last_frame(
        self, current: Frame, last: Frame, th: float, mono: bool
    ) -> int:
        """Project the map points of the previous frame into the current one.

        Matches are stored in ``current.map_points``; returns how many remain.
        """
        rcw = current.rotation
        tcw = current.translation
        twc = -rcw.T @ tcw
        tlc = last.rotation @ twc + last.translation

        baseline = current.baseline
        forward = tlc[2] > baseline and not mono
        backward = -tlc[2] > baseline and not mono

        nmatches = 0
        rotation = _RotationCheck(self.check_orientation)

        for i, mp in enumerate(last.map_points):
            if mp is None or last.outliers[i]:
                continue
            x3dc = rcw @ mp.world_pos + tcw
            if x3dc[2] <= 0:
                continue
            invzc = 1.0 / x3dc[2]

            u = current.fx * x3dc[0] * invzc + current.cx
            v = current.fy * x3dc[1] * invzc + current.cy
            if u < current.min_x or u > current.max_x:
                continue
            if v < current.min_y or v > current.max_y:
                continue

            last_octave = last.keys[i].octave
            radius = th * current.scale_factors[last_octave]

            if forward:
                candidates = current.features_in_area(u, v, radius, last_octave)
            elif backward:
                candidates = current.features_in_area(u, v, radius, 0, last_octave)
            else:
                candidates = current.features_in_area(
                    u, v, radius, last_octave - 1, last_octave + 1
                )
            if not candidates:
                continue

            best = 256
            best_idx = -1
            for i2 in candidates:
                existing = current.map_points[i2]
                if existing is not None and existing.n_observations > 0:
                    continue
                if current.u_right[i2] > 0:
                    ur = u - current.bf * invzc
                    if abs(ur - current.u_right[i2]) > radius:
                        continue
                dist = _mp_distance(mp, current.descriptors, current.sem_descriptors, i2)
                if dist < best:
                    best = dist
                    best_idx = i2

            if best <= TH_HIGH:
                current.map_points[best_idx] = mp
                nmatches += 1
                rotation.add(last.keys_un[i].angle, current.keys_un[best_idx].angle, best_idx)

        for idx in rotation.rejected():
            current.map_points[idx] = None
            nmatches -= 1
        return nmatches

    def search_by_projection_keyframe(
        self,
        current: Frame,
        keyframe: KeyFrame,
        already_found: Collection[MapPoint],
        th: float,
        orb_dist: int,
    ) -> int:
        """Project the map points of a keyframe into the current frame.

        Points in ``already_found`` are skipped. Matches are stored in
        ``current.map_points``; returns how many remain.
        """
        rcw = current.rotation
        tcw = current.translation
        ow = -rcw.T @ tcw

        nmatches = 0
        rotation = _RotationCheck(self.check_orientation)

        for i, mp in enumerate(keyframe.map_point_matches()):
            if mp is None or mp.bad or mp in already_found:
                continue
            x3dc = rcw @ mp.world_pos + tcw
            if x3dc[2] == 0:
                continue
            invzc = 1.0 / x3dc[2]

            u = current.fx * x3dc[0] * invzc + current.cx
            v = current.fy * x3dc[1] * invzc + current.cy
            if u < current.min_x or u > current.max_x:
                continue
            if v < current.min_y or v > current.max_y:
                continue

            dist3d = float(np.linalg.norm(mp.world_pos - ow))
            if dist3d < mp.min_distance or dist3d > mp.max_distance or dist3d <= 0:
                continue

            level = mp.predict_scale(dist3d, current.scale_factor, current.nlevels)
            radius = th * current.scale_factors[level]
            candidates = current.features_in_area(u, v, radius, level - 1, level + 1)
            if not candidates:
                continue

            best = 256
            best_idx = -1
            for i2 in candidates:
                if current.map_points[i2] is not None:
                    continue
                dist = _mp_distance(mp, current.descriptors, current.sem_descriptors, i2)
                if dist < best:
                    best = dist
                    best_idx = i2

            if best <= orb_dist:
                current.map_points[best_idx] = mp
                nmatches += 1
                rotation.add(keyframe.keys_un[i].angle, current.keys_un[best_idx].angle, best_idx)

        for idx in rotation.rejected():
            current.map_points[idx] = None
            nmatches -= 1
        return nmatches

    def search_by_projection_sim3(
        self,
        keyframe: KeyFrame,
        scw,
        points: Sequence[MapPoint],
        matched: Sequence[Optional[MapPoint]],
        th: int,
    ) -> tuple[int, list[Optional[MapPoint]]]:
        """Project map points into a keyframe through a similarity transform.

        ``matched`` holds the current association of each keypoint. Returns the
        number of new matches and the updated associations.
        """
        if len(matched) != keyframe.n:
            raise ValueError("matched must hold one entry per keypoint of the keyframe")
        rcw, tcw, ow = decompose_sim3(scw)
        result = list(matched)
        already = {mp for mp in matched if mp is not None}

        nmatches = 0
        for mp in points:
            if mp.bad or mp in already:
                continue
            p3dw = mp.world_pos
            p3dc = rcw @ p3dw + tcw
            if p3dc[2] <= 0:
                continue
            invz = 1.0 / p3dc[2]
            u = keyframe.fx * p3dc[0] * invz + keyframe.cx
            v = keyframe.fy * p3dc[1] * invz + keyframe.cy
            if not keyframe.is_in_image(u, v):
                continue

            po = p3dw - ow
            dist = float(np.linalg.norm(po))
            if dist < mp.min_distance or dist > mp.max_distance or dist <= 0:
                continue
            if po @ mp.normal < 0.5 * dist:
                continue

            level = mp.predict_scale(dist, keyframe.scale_factor, keyframe.nlevels)
            radius = th * keyframe.scale_factors[level]
            candidates = keyframe.features_in_area(u, v, radius)
            if not candidates:
                continue

            best = 256
            best_idx = -1
            for idx in candidates:
                if result[idx] is not None:
                    continue
                kp_level = keyframe.keys_un[idx].octave
                if kp_level < level - 1 or kp_level > level:
                    continue
                d = _mp_distance(mp, keyframe.descriptors, keyframe.sem_descriptors, idx)
                if d < best:
                    best = d
                    best_idx = idx

            if best <= TH_LOW:
                result[best_idx] = mp
                nmatches += 1

        return nmatches, result