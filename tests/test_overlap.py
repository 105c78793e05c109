import math

import numpy as np
import pytest

from conftest import FOCAL, HEIGHT, WIDTH, make_frame, make_intrinsics, make_transform
from keyframe_capture.frames import FrameMetadata
from keyframe_capture.overlap import (
    OverlapEstimator,
    count_point_matches,
    estimate_scene_distance,
    feature_point_overlap,
    field_of_view,
    fov_overlap,
)


def _rotation_y(degrees: float) -> np.ndarray:
    angle = math.radians(degrees)
    transform = np.eye(4)
    transform[0, 0] = math.cos(angle)
    transform[0, 2] = math.sin(angle)
    transform[2, 0] = -math.sin(angle)
    transform[2, 2] = math.cos(angle)
    return transform


def test_field_of_view_matches_focal_length():
    horizontal, vertical = field_of_view(make_intrinsics(), (WIDTH, HEIGHT))
    assert horizontal == pytest.approx(math.radians(60.0))
    assert vertical == pytest.approx(2.0 * math.atan(HEIGHT / (2.0 * FOCAL)))


def test_identical_frames_overlap_fully():
    transform = make_transform(1.0, 2.0, 3.0)
    ratio = fov_overlap(transform, transform, make_intrinsics(), (WIDTH, HEIGHT), 1.0)
    assert ratio == pytest.approx(1.0)


def test_small_translation_keeps_high_overlap():
    ratio = fov_overlap(make_transform(), make_transform(x=0.01), make_intrinsics(), (WIDTH, HEIGHT), 1.0)
    assert ratio > 0.9


def test_large_lateral_translation_has_no_overlap():
    ratio = fov_overlap(make_transform(), make_transform(x=2.0), make_intrinsics(), (WIDTH, HEIGHT), 1.0)
    assert ratio == 0.0


def test_small_rotation_snaps_angle_overlap():
    # 5 degrees of yaw stays above the snap threshold
    ratio = fov_overlap(make_transform(), _rotation_y(5.0), make_intrinsics(), (WIDTH, HEIGHT), 1.0)
    assert ratio == pytest.approx(1.0)


def test_large_rotation_reduces_overlap():
    ratio = fov_overlap(make_transform(), _rotation_y(120.0), make_intrinsics(), (WIDTH, HEIGHT), 1.0)
    assert 0.0 <= ratio < 0.9


def test_scene_distance_defaults_without_depth():
    assert estimate_scene_distance(None) == 1.0
    assert estimate_scene_distance(np.zeros((0, 0))) == 1.0


def test_scene_distance_is_mean_depth():
    depth = np.array([[1.0, 2.0], [3.0, 4.0]], dtype=np.float32)
    assert estimate_scene_distance(depth) == pytest.approx(2.5)


def test_farther_scene_tolerates_more_translation():
    near = fov_overlap(make_transform(), make_transform(x=0.5), make_intrinsics(), (WIDTH, HEIGHT), 1.0)
    far = fov_overlap(make_transform(), make_transform(x=0.5), make_intrinsics(), (WIDTH, HEIGHT), 5.0)
    assert far > near


def test_identical_point_sets_overlap_fully():
    points = np.random.default_rng(0).uniform(-1, 1, size=(300, 3))
    assert feature_point_overlap(points, points.copy(), 1.0) == pytest.approx(1.0)


def test_empty_point_set_counts_as_full_overlap():
    points = np.ones((10, 3))
    assert feature_point_overlap(None, points) == 1.0
    assert feature_point_overlap(points, np.zeros((0, 3))) == 1.0


def test_duplicate_previous_points_cap_at_full_overlap():
    previous = np.zeros((10, 3))
    current = np.array([[0.0, 0.0, 0.0], [5.0, 5.0, 5.0]])

    assert count_point_matches(previous, current, 0.1) == 10
    assert feature_point_overlap(previous, current, 1.0) == 1.0


def test_disjoint_point_sets_do_not_overlap():
    previous = np.zeros((20, 3))
    current = np.full((20, 3), 10.0)
    assert feature_point_overlap(previous, current, 1.0) == 0.0


def test_match_threshold_has_floor():
    previous = np.zeros((1, 3))
    current = np.array([[0.009, 0.0, 0.0]])
    # 0.01 * 0.095 is below the 0.01 floor, so a 9 mm neighbour still matches
    assert feature_point_overlap(previous, current, scene_distance=0.01) == 1.0


def test_count_point_matches_across_blocks():
    previous = np.arange(600 * 3, dtype=np.float64).reshape(600, 3)
    current = previous[::2]
    assert count_point_matches(previous, current, 0.5) == 300


def test_estimator_uses_fov_for_sparse_frames():
    estimator = OverlapEstimator()
    previous = make_frame(0.0)
    current = make_frame(1.0, x=2.0, feature_points=np.zeros((10, 3)))
    assert not estimator.uses_feature_points(current)
    assert estimator.estimate(previous, current, 1.0) == 0.0


def test_estimator_uses_feature_points_for_dense_frames():
    points = np.random.default_rng(1).uniform(-2, 2, size=(400, 3))
    estimator = OverlapEstimator()
    previous = FrameMetadata.from_frame(make_frame(0.0, feature_points=points), index=0)
    # Far apart in pose, identical in points: only point matching reports overlap
    current = make_frame(1.0, x=5.0, feature_points=points)
    assert estimator.uses_feature_points(current)
    assert estimator.estimate(previous, current, 1.0) == pytest.approx(1.0)


def test_estimator_threshold_is_exclusive():
    estimator = OverlapEstimator(feature_point_threshold=250)
    assert not estimator.uses_feature_points(make_frame(feature_points=np.zeros((250, 3))))
    assert estimator.uses_feature_points(make_frame(feature_points=np.zeros((251, 3))))
