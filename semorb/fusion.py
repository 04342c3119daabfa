"""Fusing duplicated map points and matching keyframes through a similarity."""

from __future__ import annotations

import math
from typing import Optional, Sequence

import numpy as np

from semorb.distance import TH_HIGH, TH_LOW, descriptor_distance
from semorb.frames import KeyFrame, MapPoint
from semorb.matcher import ORBMatcher, _combined_distance
from semorb.projection import decompose_sim3

_CHI2_MONO = 5.99
_CHI2_STEREO = 7.8


class FusionMatcher(ORBMatcher):
    """Fuses map points into keyframes and matches keyframes through Sim3."""

    def fuse(self, keyframe: KeyFrame, map_points: Sequence[Optional[MapPoint]], th: float = 3.0) -> int:
        """Project map points into a keyframe and merge them with what is there.

        Returns the number of points fused or added.
        """
        rcw = keyframe.rotation
        tcw = keyframe.translation
        ow = keyframe.camera_center
        nfused = 0

        for mp in map_points:
            if mp is None or mp.bad or mp.is_in_keyframe(keyframe):
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
            ur = u - keyframe.bf * invz

            po = p3dw - ow
            dist3d = float(np.linalg.norm(po))
            if dist3d < mp.min_distance or dist3d > mp.max_distance or dist3d <= 0:
                continue
            if po @ mp.normal < 0.5 * dist3d:
                continue

            level = mp.predict_scale(dist3d, keyframe.scale_factor, keyframe.nlevels)
            radius = th * keyframe.scale_factors[level]
            candidates = keyframe.features_in_area(u, v, radius)
            if not candidates:
                continue

            best = 256
            best_idx = -1
            for idx in candidates:
                kp = keyframe.keys_un[idx]
                kp_level = kp.octave
                if kp_level < level - 1 or kp_level > level:
                    continue
                ex = u - kp.x
                ey = v - kp.y
                if keyframe.u_right[idx] >= 0:
                    er = ur - keyframe.u_right[idx]
                    e2 = ex * ex + ey * ey + er * er
                    if e2 * keyframe.inv_level_sigma2[kp_level] > _CHI2_STEREO:
                        continue
                else:
                    e2 = ex * ex + ey * ey
                    if e2 * keyframe.inv_level_sigma2[kp_level] > _CHI2_MONO:
                        continue
                d = _combined_distance(
                    mp.descriptor, mp.sem_descriptor,
                    keyframe.descriptors[idx], keyframe.sem_descriptors[idx],
                )
                if d < best:
                    best = d
                    best_idx = idx

            if best <= TH_LOW:
                in_kf = keyframe.get_map_point(best_idx)
                if in_kf is not None:
                    if not in_kf.bad:
                        if in_kf.n_observations > mp.n_observations:
                            mp.replace(in_kf)
                        else:
                            in_kf.replace(mp)
                else:
                    mp.add_observation(keyframe, best_idx)
                    keyframe.add_map_point(mp, best_idx)
                nfused += 1

        return nfused

    def fuse_sim3(
        self,
        keyframe: KeyFrame,
        scw,
        points: Sequence[MapPoint],
        th: float,
        replace_points: Optional[Sequence[Optional[MapPoint]]] = None,
    ) -> tuple[int, list[Optional[MapPoint]]]:
        """Project points through a similarity into a keyframe and fuse them.

        Returns the number fused and, for each of ``points``, the keyframe
        point that should replace it (or the entry given in ``replace_points``).
        """
        if replace_points is None:
            replacements: list[Optional[MapPoint]] = [None] * len(points)
        else:
            replacements = list(replace_points)
            if len(replacements) != len(points):
                raise ValueError("replace_points must hold one entry per point")

        rcw, tcw, ow = decompose_sim3(scw)
        already = keyframe.map_point_set()
        nfused = 0

        for i, mp in enumerate(points):
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
            dist3d = float(np.linalg.norm(po))
            if dist3d < mp.min_distance or dist3d > mp.max_distance or dist3d <= 0:
                continue
            if po @ mp.normal < 0.5 * dist3d:
                continue

            level = mp.predict_scale(dist3d, keyframe.scale_factor, keyframe.nlevels)
            radius = th * keyframe.scale_factors[level]
            candidates = keyframe.features_in_area(u, v, radius)
            if not candidates:
                continue

            best = math.inf
            best_idx = -1
            for idx in candidates:
                kp_level = keyframe.keys_un[idx].octave
                if kp_level < level - 1 or kp_level > level:
                    continue
                d = descriptor_distance(mp.descriptor, keyframe.descriptors[idx])
                if d < best:
                    best = d
                    best_idx = idx

            if best <= TH_LOW:
                in_kf = keyframe.get_map_point(best_idx)
                if in_kf is not None:
                    if not in_kf.bad:
                        replacements[i] = in_kf
                else:
                    mp.add_observation(keyframe, best_idx)
                    keyframe.add_map_point(mp, best_idx)
                nfused += 1

        return nfused, replacements

    def search_by_sim3(
        self,
        kf1: KeyFrame,
        kf2: KeyFrame,
        matches12: Sequence[Optional[MapPoint]],
        s12: float,
        r12,
        t12,
        th: float,
    ) -> tuple[int, list[Optional[MapPoint]]]:
        """Find mutual matches between two keyframes related by a similarity.

        ``matches12`` holds the known match of each keypoint of ``kf1``.
        Returns the number of new mutual matches and the updated list.
        """
        points1 = kf1.map_point_matches()
        points2 = kf2.map_point_matches()
        n1, n2 = len(points1), len(points2)
        if len(matches12) != n1:
            raise ValueError("matches12 must hold one entry per keypoint of kf1")
        if s12 <= 0:
            raise ValueError("s12 must be positive")

        r12 = np.asarray(r12, dtype=np.float64).reshape(3, 3)
        t12 = np.asarray(t12, dtype=np.float64).reshape(3)
        sr12 = s12 * r12
        sr21 = (1.0 / s12) * r12.T
        t21 = -sr21 @ t12

        already1 = [mp is not None for mp in matches12]
        already2 = [False] * n2
        for mp in matches12:
            if mp is not None:
                idx2 = mp.index_in_keyframe(kf2)
                if 0 <= idx2 < n2:
                    already2[idx2] = True

        def match_in(mp: MapPoint, p3dc: np.ndarray, target: KeyFrame) -> int:
            if p3dc[2] <= 0:
                return -1
            invz = 1.0 / p3dc[2]
            u = kf1.fx * p3dc[0] * invz + kf1.cx
            v = kf1.fy * p3dc[1] * invz + kf1.cy
            if not target.is_in_image(u, v):
                return -1
            dist3d = float(np.linalg.norm(p3dc))
            if dist3d < mp.min_distance or dist3d > mp.max_distance:
                return -1
            level = mp.predict_scale(dist3d, target.scale_factor, target.nlevels)
            radius = th * target.scale_factors[level]
            best = math.inf
            best_idx = -1
            for idx in target.features_in_area(u, v, radius):
                octave = target.keys_un[idx].octave
                if octave < level - 1 or octave > level:
                    continue
                d = _combined_distance(
                    mp.descriptor, mp.sem_descriptor,
                    target.descriptors[idx], target.sem_descriptors[idx],
                )
                if d < best:
                    best = d
                    best_idx = idx
            return best_idx if best <= TH_HIGH else -1

        match1 = [-1] * n1
        for i1, mp in enumerate(points1):
            if mp is None or already1[i1] or mp.bad:
                continue
            p3dc1 = kf1.rotation @ mp.world_pos + kf1.translation
            match1[i1] = match_in(mp, sr21 @ p3dc1 + t21, kf2)

        match2 = [-1] * n2
        for i2, mp in enumerate(points2):
            if mp is None or already2[i2] or mp.bad:
                continue
            p3dc2 = kf2.rotation @ mp.world_pos + kf2.translation
            match2[i2] = match_in(mp, sr12 @ p3dc2 + t12, kf1)

        result = list(matches12)
        found = 0
        for i1, idx2 in enumerate(match1):
            if idx2 >= 0 and match2[idx2] == i1:
                result[i1] = points2[idx2]
                found += 1
        return found, result