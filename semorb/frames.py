"""Frames, keyframes and map points as seen by the descriptor matchers."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from semorb.keypoint import KeyPoint

_DESC_BYTES = 32


def _descriptor_rows(values, n: int, name: str) -> np.ndarray:
    arr = np.asarray(values, dtype=np.uint8)
    if arr.size == 0:
        arr = arr.reshape(0, _DESC_BYTES)
    if arr.ndim != 2 or arr.shape[0] != n:
        raise ValueError(f"{name} must hold one row per keypoint")
    return arr


@dataclass(eq=False)
class MapPoint:
    """A 3D landmark with its descriptors and the keyframes that observe it."""

    world_pos: np.ndarray
    descriptor: np.ndarray
    sem_descriptor: np.ndarray
    normal: np.ndarray = field(default_factory=lambda: np.zeros(3))
    min_distance: float = 0.0
    max_distance: float = math.inf
    bad: bool = False
    observations: dict = field(default_factory=dict)
    replaced_by: Optional[MapPoint] = None
    track_in_view: bool = False
    track_proj_x: float = 0.0
    track_proj_y: float = 0.0
    track_proj_xr: float = 0.0
    track_scale_level: int = 0
    track_view_cos: float = 1.0

    def __post_init__(self) -> None:
        self.world_pos = np.asarray(self.world_pos, dtype=np.float64).reshape(3)
        self.normal = np.asarray(self.normal, dtype=np.float64).reshape(3)
        self.descriptor = np.asarray(self.descriptor, dtype=np.uint8).ravel()
        self.sem_descriptor = np.asarray(self.sem_descriptor, dtype=np.uint8).ravel()

    @property
    def n_observations(self) -> int:
        """Number of observations; a stereo observation counts twice."""
        return sum(
            2 if keyframe.u_right[idx] >= 0 else 1
            for keyframe, idx in self.observations.items()
        )

    def predict_scale(self, dist: float, scale_factor: float, nlevels: int) -> int:
        """Predict the pyramid level at which the point appears at distance ``dist``."""
        if dist <= 0:
            raise ValueError("dist must be positive")
        if scale_factor <= 1.0:
            raise ValueError("scale_factor must be greater than 1")
        ratio = self.max_distance / dist
        if math.isinf(ratio):
            level = nlevels - 1
        elif ratio <= 0:
            level = 0
        else:
            level = math.ceil(math.log(ratio) / math.log(scale_factor))
        return min(max(level, 0), nlevels - 1)

    def add_observation(self, keyframe: KeyFrame, idx: int) -> None:
        """Record that ``keyframe`` sees this point at keypoint ``idx``."""
        self.observations.setdefault(keyframe, idx)

    def erase_observation(self, keyframe: KeyFrame) -> None:
        """Forget the observation from ``keyframe``, if any."""
        self.observations.pop(keyframe, None)

    def is_in_keyframe(self, keyframe: KeyFrame) -> bool:
        """Tell whether ``keyframe`` observes this point."""
        return keyframe in self.observations

    def index_in_keyframe(self, keyframe: KeyFrame) -> int:
        """Return the keypoint index in ``keyframe``, or -1 if it is not observed there."""
        return self.observations.get(keyframe, -1)

    def replace(self, other: MapPoint) -> None:
        """Hand every observation of this point over to ``other`` and retire it."""
        if other is self:
            return
        observations = dict(self.observations)
        self.observations.clear()
        self.bad = True
        self.replaced_by = other
        for keyframe, idx in observations.items():
            if other.is_in_keyframe(keyframe):
                keyframe.erase_map_point_match(idx)
            else:
                keyframe.replace_map_point_match(idx, other)
                other.add_observation(keyframe, idx)


@dataclass(eq=False)
class Frame:
    """Keypoints, descriptors and camera data of one image."""

    keys: list
    descriptors: np.ndarray
    sem_descriptors: np.ndarray
    keys_un: Optional[list] = None
    u_right: Optional[list] = None
    feat_vec: dict = field(default_factory=dict)
    fx: float = 1.0
    fy: float = 1.0
    cx: float = 0.0
    cy: float = 0.0
    bf: float = 0.0
    min_x: float = 0.0
    max_x: float = 640.0
    min_y: float = 0.0
    max_y: float = 480.0
    scale_factor: float = 1.2
    nlevels: int = 8
    tcw: np.ndarray = field(default_factory=lambda: np.eye(4))
    map_points: Optional[list] = None
    outliers: Optional[list] = None

    def __post_init__(self) -> None:
        n = len(self.keys)
        self.keys = list(self.keys)
        self.keys_un = list(self.keys) if self.keys_un is None else list(self.keys_un)
        if len(self.keys_un) != n:
            raise ValueError("keys_un must hold one keypoint per key")
        self.u_right = [-1.0] * n if self.u_right is None else [float(u) for u in self.u_right]
        if len(self.u_right) != n:
            raise ValueError("u_right must hold one value per key")
        self.descriptors = _descriptor_rows(self.descriptors, n, "descriptors")
        self.sem_descriptors = _descriptor_rows(self.sem_descriptors, n, "sem_descriptors")
        self.map_points = [None] * n if self.map_points is None else list(self.map_points)
        if len(self.map_points) != n:
            raise ValueError("map_points must hold one entry per key")
        self.outliers = [False] * n if self.outliers is None else list(self.outliers)
        self.feat_vec = {word: list(indices) for word, indices in self.feat_vec.items()}
        self.set_pose(self.tcw)

        if self.nlevels < 1:
            raise ValueError("nlevels must be at least 1")
        self.scale_factors = [self.scale_factor ** level for level in range(self.nlevels)]
        self.level_sigma2 = [s * s for s in self.scale_factors]
        self.inv_scale_factors = [1.0 / s for s in self.scale_factors]
        self.inv_level_sigma2 = [1.0 / s for s in self.level_sigma2]

    @property
    def n(self) -> int:
        """Number of keypoints."""
        return len(self.keys)

    @property
    def rotation(self) -> np.ndarray:
        """Rotation from world to camera."""
        return self.tcw[:3, :3]

    @property
    def translation(self) -> np.ndarray:
        """Translation from world to camera."""
        return self.tcw[:3, 3]

    @property
    def camera_center(self) -> np.ndarray:
        """Camera centre in world coordinates."""
        return -self.rotation.T @ self.translation

    @property
    def baseline(self) -> float:
        """Stereo baseline in metric units."""
        return self.bf / self.fx

    def set_pose(self, tcw) -> None:
        """Set the world-to-camera transform."""
        pose = np.asarray(tcw, dtype=np.float64)
        if pose.shape != (4, 4):
            raise ValueError("a pose must be a 4x4 matrix")
        self.tcw = pose.copy()

    def features_in_area(
        self, x: float, y: float, r: float, min_level: int = -1, max_level: int = -1
    ) -> list[int]:
        """Return indices of keypoints inside the square window around (x, y)."""
        check_levels = min_level > 0 or max_level >= 0
        found = []
        for idx, kp in enumerate(self.keys_un):
            if check_levels:
                if kp.octave < min_level:
                    continue
                if max_level >= 0 and kp.octave > max_level:
                    continue
            if abs(kp.x - x) < r and abs(kp.y - y) < r:
                found.append(idx)
        return found

    def is_in_image(self, u: float, v: float) -> bool:
        """Tell whether the pixel (u, v) lies within the image bounds."""
        return self.min_x <= u < self.max_x and self.min_y <= v < self.max_y


@dataclass(eq=False)
class KeyFrame(Frame):
    """A frame kept in the map, owning its map point associations."""

    bad: bool = False

    def add_map_point(self, map_point: MapPoint, idx: int) -> None:
        """Associate ``map_point`` with keypoint ``idx``."""
        self.map_points[idx] = map_point

    def replace_map_point_match(self, idx: int, map_point: MapPoint) -> None:
        """Replace the point associated with keypoint ``idx``."""
        self.map_points[idx] = map_point

    def erase_map_point_match(self, idx: int) -> None:
        """Drop the association of keypoint ``idx``."""
        self.map_points[idx] = None

    def get_map_point(self, idx: int) -> Optional[MapPoint]:
        """Return the point associated with keypoint ``idx``, if any."""
        return self.map_points[idx]

    def map_point_matches(self) -> list:
        """Return a copy of the per-keypoint point associations."""
        return list(self.map_points)

    def map_point_set(self) -> set:
        """Return the set of good map points seen by this keyframe."""
        return {mp for mp in self.map_points if mp is not None and not mp.bad}