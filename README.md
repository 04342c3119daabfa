# semorb

ORB keypoint extraction and matching, extended with a semantic descriptor
taken from a per-pixel label image. Each keypoint carries a 256-bit binary
ORB descriptor and a 32-byte semantic descriptor: the label values sampled
at 32 points around it. Matching scores a candidate by the Hamming distance
of the ORB descriptors plus the number of differing semantic labels.

Only NumPy is required.

## Install

    pip install .

For the test suite:

    pip install .[test]
    pytest

## Extracting features

Images and label maps are 2-D `uint8` NumPy arrays of the same shape.

```python
from semorb.extractor import ORBExtractor

extractor = ORBExtractor(
    nfeatures=1000, scale_factor=1.2, nlevels=8, ini_th_fast=20, min_th_fast=7
)
keypoints, descriptors, sem_descriptors = extractor(image, label)
```

`keypoints` is a list of `semorb.keypoint.KeyPoint` in level-0 image
coordinates, with `angle`, `response`, `octave` and `size` filled in.
`descriptors` and `sem_descriptors` are `(N, 32)` `uint8` arrays, one row per
keypoint. An empty image or label gives no keypoints and `(0, 32)` arrays;
images of another type or shape, or pyramid levels too small to hold a
detection cell, raise `ValueError`.

`nfeatures` is shared out between the pyramid levels
(`extractor.features_per_level`). On each level FAST corners
(`semorb.imgproc.fast`) are found cell by cell and spread over the image with
a quadtree (`semorb.octree.distribute_oct_tree`), which keeps the strongest
corner of every final cell. `compute_keypoints_old` offers the alternative
fixed-grid detection that shares quotas between cells.

The building blocks can be used on their own: `semorb.imgproc` (FAST
detection, bilinear resizing, reflective borders, Gaussian blur),
`semorb.patterns` (the sampling patterns and circular patch widths) and
`semorb.extractor.ic_angle`, `compute_orb_descriptor`,
`compute_sem_descriptor`.

## Distances

```python
from semorb.distance import descriptor_distance, sem_descriptor_distance

d = descriptor_distance(descriptors[0], descriptors[1])              # 0..256
s = sem_descriptor_distance(sem_descriptors[0], sem_descriptors[1])  # 0..32
```

`semorb.distance` also provides the rotation-consistency helpers
(`rotation_bin`, `compute_three_maxima`), the search radius by viewing angle
(`radius_by_viewing_cos`), the epipolar distance check
(`check_dist_epipolar_line`) and the thresholds `TH_LOW` and `TH_HIGH`.

## Matching

`semorb.frames` holds the data the matchers work on:

* `Frame` — keypoints (`keys`, `keys_un`), descriptor arrays, right-image
  coordinates (`u_right`, negative for monocular keypoints), a bag-of-words
  feature vector `feat_vec` (word id to list of keypoint indices), camera
  intrinsics, image bounds, pyramid scale settings, the pose `tcw` and the
  per-keypoint `map_points`.
* `KeyFrame` — a `Frame` that owns its map point associations.
* `MapPoint` — a 3D position with ORB and semantic descriptors, viewing
  normal, scale-invariance distances and its observations.

The matchers all take `nn_ratio` (default 0.6) and `check_orientation`
(default `True`), which drops matches whose rotation falls outside the three
dominant bins of a rotation histogram.

* `semorb.matcher.ORBMatcher`
  * `search_by_bow_frame(keyframe, frame)` and `search_by_bow(kf1, kf2)` —
    match within shared vocabulary words; return one matched `MapPoint` or
    `None` per keypoint.
  * `search_for_initialization(f1, f2, prev_matched, window_size)` — returns
    the match index in `f2` for each keypoint of `f1` (-1 if none) and the
    updated positions.
  * `search_for_triangulation(kf1, kf2, f12, only_stereo)` — returns
    `(index in kf1, index in kf2)` pairs satisfying the epipolar constraint.
* `semorb.projection.ProjectionMatcher`
  * `search_by_projection`, `search_by_projection_last_frame`,
    `search_by_projection_keyframe` — store matches in the frame's
    `map_points` and return their count.
  * `search_by_projection_sim3` — returns the count and the updated matches.
* `semorb.fusion.FusionMatcher`
  * `fuse` — merges map points into a keyframe; returns the count.
  * `fuse_sim3` — returns the count and the replacement points.
  * `search_by_sim3` — mutual matching between two keyframes; returns the
    count and the updated matches.

```python
from semorb.frames import Frame, KeyFrame
from semorb.matcher import ORBMatcher

kf = KeyFrame(keys=kf_keys, descriptors=kf_desc, sem_descriptors=kf_sem,
              feat_vec=kf_words, map_points=kf_points)
frame = Frame(keys=keypoints, descriptors=descriptors,
              sem_descriptors=sem_descriptors, feat_vec=frame_words)
matches = ORBMatcher(nn_ratio=0.75).search_by_bow_frame(kf, frame)
```

## What this package does not do

It extracts and matches features only. It has no vocabulary to turn
descriptors into bag-of-words vectors (`feat_vec` must be supplied), no
undistortion or stereo matching, no pose or bundle-adjustment optimisation,
no map management or loop closing, and no command-line tool.