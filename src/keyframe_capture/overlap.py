"""View-overlap estimation between the last kept frame and a new frame.

Two estimators are available:

- Field-of-view projection, for sparse scenes: compares viewing directions
  and the relative translation against the footprint of the current camera
  on a virtual plane ``scene_distance`` metres away.
- Feature-point matching, for dense scenes: the fraction of the previous
  frame's world points that still have a neighbour among the current ones.

``OverlapEstimator.estimate`` picks between them from the number of feature
points the current frame reports.
"""
from __future__ import annotations

import math
from typing import Any, Optional, Tuple

import numpy as np

from .utils.logging import get_logger

logger = get_logger(__name__)

FEATURE_POINT_THRESHOLD = 250
YAW_TOLERANCE_FACTOR = 3.5
ANGLE_SNAP_THRESHOLD = 0.9
MATCH_DISTANCE_FACTOR = 0.095
MIN_MATCH_THRESHOLD = 0.01
DEFAULT_SCENE_DISTANCE = 1.0

# Rows of the previous point set compared per broadcast block.
_MATCH_BLOCK = 256


def field_of_view(intrinsics: np.ndarray, resolution: Tuple[int, int]) -> Tuple[float, float]:
    """Horizontal and vertical field of view in radians.

    Args:
        intrinsics: 3x3 pinhole intrinsics in pixels.
        resolution: Image resolution as (width, height).

    Returns:
        Tuple of (horizontal, vertical) angles.
    """
    fx = float(intrinsics[0, 0])
    fy = float(intrinsics[1, 1])
    width, height = resolution
    return 2.0 * math.atan(width / (2.0 * fx)), 2.0 * math.atan(height / (2.0 * fy))


def estimate_scene_distance(depth_map: Optional[np.ndarray]) -> float:
    """Mean depth in metres, or 1 m when no depth map is available."""
    if depth_map is None:
        return DEFAULT_SCENE_DISTANCE
    depth = np.asarray(depth_map, dtype=np.float64)
    if depth.size == 0:
        return DEFAULT_SCENE_DISTANCE
    return float(depth.mean())


def _viewing_direction(transform: np.ndarray) -> np.ndarray:
    # Cameras look down their negative z axis.
    return -np.asarray(transform, dtype=np.float64)[:3, 2]


def _wrap_angle(angle: float) -> float:
    while angle > math.pi:
        angle -= 2.0 * math.pi
    while angle < -math.pi:
        angle += 2.0 * math.pi
    return angle


def fov_overlap(
    previous_transform: np.ndarray,
    current_transform: np.ndarray,
    intrinsics: np.ndarray,
    resolution: Tuple[int, int],
    scene_distance: float = DEFAULT_SCENE_DISTANCE,
) -> float:
    """Field-of-view projection overlap between two camera poses.

    The field of view is always taken from the current camera.

    Args:
        previous_transform: 4x4 transform of the last kept frame.
        current_transform: 4x4 transform of the candidate frame.
        intrinsics: 3x3 intrinsics of the candidate frame.
        resolution: (width, height) of the candidate frame.
        scene_distance: Distance to the virtual plane, in metres.

    Returns:
        Overlap ratio in [0, 1].
    """
    previous_transform = np.asarray(previous_transform, dtype=np.float64)
    current_transform = np.asarray(current_transform, dtype=np.float64)

    direction1 = _viewing_direction(previous_transform)
    direction2 = _viewing_direction(current_transform)

    yaw1 = math.atan2(direction1[2], direction1[0])
    yaw2 = math.atan2(direction2[2], direction2[0])
    yaw_diff = abs(_wrap_angle(yaw2 - yaw1))

    pitch1 = math.atan2(direction1[1], math.hypot(direction1[0], direction1[2]))
    pitch2 = math.atan2(direction2[1], math.hypot(direction2[0], direction2[2]))
    pitch_diff = abs(pitch2 - pitch1)

    horizontal_fov, vertical_fov = field_of_view(intrinsics, resolution)

    relative = np.linalg.inv(current_transform) @ previous_transform
    translation = relative[:3, 3]

    view_width = 2.0 * scene_distance * math.tan(horizontal_fov / 2.0)
    view_height = 2.0 * scene_distance * math.tan(vertical_fov / 2.0)

    ratio_x = max(0.0, 1.0 - abs(translation[0]) / view_width)
    ratio_y = max(0.0, 1.0 - abs(translation[1]) / view_height)
    ratio_z = max(0.0, 1.0 - abs(translation[2]) / (view_width * view_height))

    ratio_yaw = max(0.0, 1.0 - yaw_diff / (horizontal_fov * YAW_TOLERANCE_FACTOR))
    ratio_pitch = max(0.0, 1.0 - pitch_diff / vertical_fov)
    angle_overlap = ratio_yaw * ratio_pitch
    if angle_overlap > ANGLE_SNAP_THRESHOLD:
        angle_overlap = 1.0

    return float(ratio_x * ratio_y * ratio_z * angle_overlap)


def count_point_matches(
    previous_points: np.ndarray,
    current_points: np.ndarray,
    threshold: float,
) -> int:
    """Number of previous points with a current point closer than ``threshold``."""
    previous_points = np.asarray(previous_points, dtype=np.float64).reshape(-1, 3)
    current_points = np.asarray(current_points, dtype=np.float64).reshape(-1, 3)
    if len(previous_points) == 0 or len(current_points) == 0:
        return 0

    threshold_sq = threshold * threshold
    matches = 0
    for start in range(0, len(previous_points), _MATCH_BLOCK):
        block = previous_points[start:start + _MATCH_BLOCK]
        diff = block[:, None, :] - current_points[None, :, :]
        dist_sq = np.einsum("ijk,ijk->ij", diff, diff)
        matches += int(np.count_nonzero((dist_sq < threshold_sq).any(axis=1)))
    return matches


def feature_point_overlap(
    previous_points: Optional[np.ndarray],
    current_points: Optional[np.ndarray],
    scene_distance: float = DEFAULT_SCENE_DISTANCE,
    distance_factor: float = MATCH_DISTANCE_FACTOR,
    min_threshold: float = MIN_MATCH_THRESHOLD,
) -> float:
    """Feature-point proximity overlap.

    Returns 1.0 when either point set is empty.
    """
    previous = np.zeros((0, 3)) if previous_points is None else np.asarray(previous_points).reshape(-1, 3)
    current = np.zeros((0, 3)) if current_points is None else np.asarray(current_points).reshape(-1, 3)

    min_count = min(len(previous), len(current))
    if min_count == 0:
        return 1.0

    threshold = max(scene_distance * distance_factor, min_threshold)
    matches = count_point_matches(previous, current, threshold)
    # Duplicated previous points can push matches past min_count
    return min(1.0, matches / min_count)


class OverlapEstimator:
    """Stateless overlap scorer used by the keyframe pipeline.

    ``previous`` may be a ``PosedFrame`` or a ``FrameMetadata`` snapshot;
    only its ``transform`` and ``feature_points`` are read.
    """

    def __init__(
        self,
        feature_point_threshold: int = FEATURE_POINT_THRESHOLD,
        distance_factor: float = MATCH_DISTANCE_FACTOR,
        min_threshold: float = MIN_MATCH_THRESHOLD,
    ):
        self.feature_point_threshold = feature_point_threshold
        self.distance_factor = distance_factor
        self.min_threshold = min_threshold

    @classmethod
    def from_config(cls, config: Any) -> "OverlapEstimator":
        return cls(
            feature_point_threshold=config.feature_point_threshold,
            distance_factor=config.match_distance_factor,
            min_threshold=config.min_match_threshold,
        )

    def estimate_scene_distance(self, depth_map: Optional[np.ndarray]) -> float:
        return estimate_scene_distance(depth_map)

    def uses_feature_points(self, current: Any) -> bool:
        """Whether the current frame is dense enough for point matching."""
        points = getattr(current, "feature_points", None)
        count = 0 if points is None else len(points)
        return count > self.feature_point_threshold

    def estimate_from_fov(self, previous: Any, current: Any, scene_distance: float) -> float:
        return fov_overlap(
            previous.transform,
            current.transform,
            current.intrinsics,
            current.image_resolution,
            scene_distance,
        )

    def estimate_from_feature_points(self, previous: Any, current: Any, scene_distance: float) -> float:
        return feature_point_overlap(
            previous.feature_points,
            current.feature_points,
            scene_distance,
            self.distance_factor,
            self.min_threshold,
        )

    def estimate(self, previous: Any, current: Any, scene_distance: float) -> float:
        """Overlap ratio in [0, 1] between the last kept frame and ``current``."""
        if self.uses_feature_points(current):
            ratio = self.estimate_from_feature_points(previous, current, scene_distance)
            method = "feature_points"
        else:
            ratio = self.estimate_from_fov(previous, current, scene_distance)
            method = "fov"
        logger.debug(f"Overlap {ratio:.3f} via {method} at {scene_distance:.2f}m")
        return ratio
