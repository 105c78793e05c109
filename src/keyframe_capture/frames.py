"""Posed frames and the per-frame records derived from them.

A ``PosedFrame`` is what the tracking subsystem hands us for every camera
update. Admitted frames are wrapped in a ``FrameCacheEntry`` for the export
queue, and frozen into a ``FrameMetadata`` snapshot that the session keeps.

Matrix conventions follow ARKit: 4x4 camera-to-world transforms whose third
column is the camera's backward axis, 3x3 pinhole intrinsics in pixels, and
Euler angles as (pitch, yaw, roll) in radians.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import cv2
import numpy as np

from .models import ImageOutputModel, LocationModel
from .utils.identifiers import random_hex

PROJECTION_Z_NEAR = 0.001

FLIP_YZ = np.diag([1.0, -1.0, -1.0, 1.0])


@dataclass
class YCbCrImage:
    """Bi-planar 4:2:0 camera image as delivered by the capture hardware."""
    luma: np.ndarray  # (H, W) uint8
    chroma: np.ndarray  # (H/2, W/2, 2) uint8, interleaved Cb/Cr

    @property
    def size(self) -> Tuple[int, int]:
        return int(self.luma.shape[1]), int(self.luma.shape[0])

    def to_rgb(self) -> np.ndarray:
        """Convert to an (H, W, 3) uint8 RGB array."""
        return cv2.cvtColorTwoPlane(
            np.ascontiguousarray(self.luma),
            np.ascontiguousarray(self.chroma),
            cv2.COLOR_YUV2RGB_NV12,
        )


@dataclass
class PosedFrame:
    """One camera update from the tracking subsystem (read-only to us)."""
    timestamp: float
    transform: np.ndarray  # 4x4 camera-to-world
    intrinsics: np.ndarray  # 3x3
    image_resolution: Tuple[int, int]  # (width, height)
    image: Optional[Any] = None  # (H, W, 3) uint8 RGB array or YCbCrImage
    projection: Optional[np.ndarray] = None  # 4x4
    depth_map: Optional[np.ndarray] = None  # (h, w) float32 metres
    confidence_map: Optional[np.ndarray] = None  # (h, w) uint8 in [0, 2]
    feature_points: Optional[np.ndarray] = None  # (N, 3) world points
    euler_angles: Optional[np.ndarray] = None  # (pitch, yaw, roll) radians
    exposure_duration: float = 0.0
    exposure_offset: float = 0.0
    grain_intensity: float = 0.0
    fps: int = 0
    exif: Dict[str, Any] = field(default_factory=dict)
    tracking_normal: bool = True

    @property
    def feature_point_count(self) -> int:
        if self.feature_points is None:
            return 0
        return int(len(self.feature_points))


def has_depth_data(frame: Any) -> bool:
    """Whether a frame (or snapshot) carries a depth buffer."""
    return getattr(frame, "depth_map", None) is not None


class DisplayOrientation(Enum):
    """Interface orientation the capture UI is locked to."""
    PORTRAIT = "portrait"
    PORTRAIT_UPSIDE_DOWN = "portrait_upside_down"
    LANDSCAPE_LEFT = "landscape_left"
    LANDSCAPE_RIGHT = "landscape_right"


def camera_to_display_rotation(orientation: DisplayOrientation) -> int:
    """Degrees the sensor image must be rotated to appear upright."""
    if orientation == DisplayOrientation.LANDSCAPE_LEFT:
        return 180
    if orientation == DisplayOrientation.PORTRAIT:
        return 90
    if orientation == DisplayOrientation.PORTRAIT_UPSIDE_DOWN:
        return -90
    return 0


def rotation_z(degrees: float) -> np.ndarray:
    """4x4 rotation about the z axis."""
    theta = math.radians(degrees)
    c, s = math.cos(theta), math.sin(theta)
    m = np.eye(4)
    m[0, 0], m[0, 1] = c, -s
    m[1, 0], m[1, 1] = s, c
    return m


def rotate_to_camera_matrix(orientation: DisplayOrientation) -> np.ndarray:
    """Flip-YZ followed by the camera-to-display rotation."""
    return FLIP_YZ @ rotation_z(camera_to_display_rotation(orientation))


def view_matrix_for(transform: np.ndarray, orientation: DisplayOrientation) -> np.ndarray:
    """World-to-view matrix for a camera displayed in ``orientation``."""
    angle = camera_to_display_rotation(orientation)
    return rotation_z(-angle) @ np.linalg.inv(transform)


def projection_matrix_for(
    intrinsics: np.ndarray,
    resolution: Tuple[int, int],
    orientation: DisplayOrientation = DisplayOrientation.LANDSCAPE_RIGHT,
    z_near: float = PROJECTION_Z_NEAR,
) -> np.ndarray:
    """Perspective projection with an infinite far plane.

    Args:
        intrinsics: 3x3 pinhole intrinsics in pixels.
        resolution: Sensor resolution as (width, height).
        orientation: Display orientation the clip space is rotated into.
        z_near: Near clipping distance in metres.

    Returns:
        4x4 projection matrix.
    """
    width, height = resolution
    fx, fy = intrinsics[0, 0], intrinsics[1, 1]
    cx, cy = intrinsics[0, 2], intrinsics[1, 2]

    projection = np.array([
        [2.0 * fx / width, 0.0, 1.0 - 2.0 * cx / width, 0.0],
        [0.0, 2.0 * fy / height, 2.0 * cy / height - 1.0, 0.0],
        [0.0, 0.0, -1.0, -2.0 * z_near],
        [0.0, 0.0, -1.0, 0.0],
    ])
    angle = camera_to_display_rotation(orientation)
    return rotation_z(-angle) @ projection


def euler_angles_from_transform(transform: np.ndarray) -> np.ndarray:
    """Recover (pitch, yaw, roll) from a camera transform.

    The rotation is decomposed as R = Ry(yaw) @ Rx(pitch) @ Rz(roll).
    """
    r = np.asarray(transform, dtype=np.float64)[:3, :3]
    m23 = float(np.clip(r[1, 2], -1.0, 1.0))
    pitch = math.asin(-m23)
    if abs(m23) < 0.9999999:
        yaw = math.atan2(r[0, 2], r[2, 2])
        roll = math.atan2(r[1, 0], r[1, 1])
    else:
        yaw = math.atan2(-r[2, 0], r[0, 0])
        roll = 0.0
    return np.array([pitch, yaw, roll])


@dataclass(frozen=True)
class OrientationAngles:
    """Camera yaw/roll/pitch in degrees, as written to image metadata."""
    yaw: float
    roll: float
    pitch: float

    @classmethod
    def from_euler(cls, euler: np.ndarray) -> "OrientationAngles":
        """Convert tracker Euler angles (pitch, yaw, roll in radians)."""
        return cls(
            yaw=math.degrees(-float(euler[1])),
            roll=math.degrees(-float(euler[2])),
            pitch=math.degrees(float(euler[0])),
        )


@dataclass(frozen=True)
class ArtifactNames:
    """File names derived from a frame's sequence index."""
    index: int

    @property
    def image_name(self) -> str:
        return f"Image_{self.index:06d}.jpg"

    @property
    def image_name_without_extension(self) -> str:
        return f"Image_{self.index:06d}"

    @property
    def depth_map_image_name(self) -> str:
        return f"DepthMap_{self.index:06d}.tiff"

    @property
    def confidence_map_image_name(self) -> str:
        return f"Confidence_{self.index:06d}.tiff"


def artifact_names(index: int) -> ArtifactNames:
    return ArtifactNames(index)


def _frozen(array: Optional[np.ndarray], dtype: Any = np.float64) -> Optional[np.ndarray]:
    if array is None:
        return None
    copy = np.array(array, dtype=dtype, copy=True)
    copy.setflags(write=False)
    return copy


@dataclass(frozen=True, eq=False)
class FrameMetadata:
    """Immutable snapshot of an admitted frame.

    Owned by the capture session once the primary image is exported. The
    feature points are kept so the next overlap comparison can run against
    this snapshot instead of the original frame buffers.
    """
    index: int
    timestamp: float
    transform: np.ndarray
    projection: np.ndarray
    intrinsics: np.ndarray
    euler_angles: np.ndarray
    image_resolution: Tuple[int, int]
    exposure_duration: float
    exposure_offset: float
    grain_intensity: float
    gps_location: LocationModel
    rtk_location: Optional[LocationModel]
    view_matrix: np.ndarray
    projection_matrix: np.ndarray
    rotate_matrix: np.ndarray
    fps: int
    feature_points: np.ndarray
    exif: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=random_hex)

    @classmethod
    def from_frame(
        cls,
        frame: PosedFrame,
        index: int,
        fps: Optional[int] = None,
        gps_location: Optional[LocationModel] = None,
        rtk_location: Optional[LocationModel] = None,
        orientation: DisplayOrientation = DisplayOrientation.PORTRAIT,
    ) -> "FrameMetadata":
        """Snapshot a posed frame at admission time."""
        transform = np.asarray(frame.transform, dtype=np.float64)
        intrinsics = np.asarray(frame.intrinsics, dtype=np.float64)

        if frame.projection is not None:
            projection = frame.projection
        else:
            projection = projection_matrix_for(intrinsics, frame.image_resolution)

        if frame.euler_angles is not None:
            euler = frame.euler_angles
        else:
            euler = euler_angles_from_transform(transform)

        if frame.feature_points is not None:
            points = np.asarray(frame.feature_points, dtype=np.float64).reshape(-1, 3)
        else:
            points = np.zeros((0, 3))

        return cls(
            index=index,
            timestamp=frame.timestamp,
            transform=_frozen(transform),
            projection=_frozen(projection),
            intrinsics=_frozen(intrinsics),
            euler_angles=_frozen(euler),
            image_resolution=(int(frame.image_resolution[0]), int(frame.image_resolution[1])),
            exposure_duration=frame.exposure_duration,
            exposure_offset=frame.exposure_offset,
            grain_intensity=frame.grain_intensity,
            gps_location=gps_location or LocationModel(),
            rtk_location=rtk_location,
            view_matrix=_frozen(view_matrix_for(transform, orientation)),
            projection_matrix=_frozen(
                projection_matrix_for(intrinsics, frame.image_resolution, orientation)
            ),
            rotate_matrix=_frozen(rotate_to_camera_matrix(orientation)),
            fps=frame.fps if fps is None else fps,
            feature_points=_frozen(points),
            exif=dict(frame.exif),
        )

    @property
    def location(self) -> LocationModel:
        return self.rtk_location if self.rtk_location is not None else self.gps_location

    @property
    def is_rtk(self) -> bool:
        return self.location.is_rtk

    @property
    def position(self) -> np.ndarray:
        return self.transform[:3, 3]

    @property
    def width(self) -> int:
        return self.image_resolution[0]

    @property
    def height(self) -> int:
        return self.image_resolution[1]

    @property
    def names(self) -> ArtifactNames:
        return artifact_names(self.index)

    @property
    def image_name(self) -> str:
        return self.names.image_name

    @property
    def image_name_without_extension(self) -> str:
        return self.names.image_name_without_extension

    @property
    def depth_map_image_name(self) -> str:
        return self.names.depth_map_image_name

    @property
    def confidence_map_image_name(self) -> str:
        return self.names.confidence_map_image_name


def manifest_entry(metadata: FrameMetadata) -> ImageOutputModel:
    """Project a frame snapshot onto its manifest record."""
    names = metadata.names
    return ImageOutputModel(
        depth_map=names.depth_map_image_name,
        photo=names.image_name,
        depth_map_confidence=names.confidence_map_image_name,
    )


@dataclass(frozen=True, eq=False)
class FrameCacheEntry:
    """Queue element for an admitted frame awaiting export.

    Holds a reference to the raw frame buffers until the drain worker has
    written all three artifacts. ``metadata`` is the snapshot taken at
    admission; the session takes ownership of that same object on export.
    """
    index: int
    frame: PosedFrame
    fps: int = 0
    exif: Dict[str, Any] = field(default_factory=dict)
    gps_location: LocationModel = field(default_factory=LocationModel)
    rtk_location: Optional[LocationModel] = None
    metadata: Optional[FrameMetadata] = None
    id: str = field(default_factory=random_hex)

    @property
    def timestamp(self) -> float:
        return self.frame.timestamp

    @property
    def location(self) -> LocationModel:
        return self.rtk_location if self.rtk_location is not None else self.gps_location

    @property
    def names(self) -> ArtifactNames:
        return artifact_names(self.index)

    @property
    def image_name(self) -> str:
        return self.names.image_name

    @property
    def depth_map_image_name(self) -> str:
        return self.names.depth_map_image_name

    @property
    def confidence_map_image_name(self) -> str:
        return self.names.confidence_map_image_name
