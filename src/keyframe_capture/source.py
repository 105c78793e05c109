"""Posed-frame sources.

The pipeline consumes frames from a tracking subsystem through two entry
points: a pull accessor for the most recent frame and a push subscription
that delivers every frame. ``RecordedFrameSource`` implements both over a
capture recorded to disk, which is how captures are replayed offline.

Expected recording layout::

    capture_dir/
    ├── frames.jsonl          one record per camera update
    ├── intrinsics.json       shared 3x3 intrinsics (fx, fy, cx, cy)
    ├── location.json         optional fixed GPS/RTK location
    ├── images/000000.jpg     colour frames (.jpg or .png)
    ├── depth/000000.npy      metres (.npy, .tif/.tiff float, or .png in mm)
    ├── confidence/000000.png confidence levels 0..2 (.png or .npy)
    └── points/000000.npy     (N, 3) world-space feature points
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import numpy as np

from .frames import PosedFrame
from .models import LocationModel
from .utils.io import load_image, load_json, load_jsonl, load_numpy
from .utils.logging import get_logger

logger = get_logger(__name__)

FrameCallback = Callable[[PosedFrame], None]

IMAGE_SUFFIXES = (".jpg", ".jpeg", ".png")
DEPTH_SUFFIXES = (".npy", ".tif", ".tiff", ".png")
CONFIDENCE_SUFFIXES = (".png", ".npy")
POINT_SUFFIXES = (".npy",)

DEPTH_PNG_SCALE = 0.001  # millimetres to metres
TRACKING_NORMAL = "normal"


class FrameSource(ABC):
    """Supplier of posed frames (pull and push)."""

    def __init__(self) -> None:
        self._subscribers: List[FrameCallback] = []

    @property
    @abstractmethod
    def current_frame(self) -> Optional[PosedFrame]:
        """Most recent frame delivered, or None before the first one."""
        pass

    def subscribe(self, callback: FrameCallback) -> None:
        """Register ``callback`` to receive every subsequent frame."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: FrameCallback) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def _publish(self, frame: PosedFrame) -> None:
        for callback in list(self._subscribers):
            callback(frame)


def intrinsics_from_dict(data: Dict[str, Any]) -> np.ndarray:
    """Build a 3x3 pinhole matrix from ``fx/fy/cx/cy`` (or a nested matrix)."""
    if "matrix" in data:
        return np.asarray(data["matrix"], dtype=np.float64).reshape(3, 3)

    fx = float(data.get("fx", data.get("focalLengthX", 0)))
    fy = float(data.get("fy", data.get("focalLengthY", fx)))
    cx = float(data.get("cx", data.get("principalPointX", 0)))
    cy = float(data.get("cy", data.get("principalPointY", 0)))
    return np.array([
        [fx, 0.0, cx],
        [0.0, fy, cy],
        [0.0, 0.0, 1.0],
    ])


def _parse_resolution(value: Any) -> Tuple[int, int]:
    if isinstance(value, dict):
        return int(value.get("width", 1920)), int(value.get("height", 1440))
    if isinstance(value, (list, tuple)) and len(value) == 2:
        return int(value[0]), int(value[1])
    return 1920, 1440


def _index_files(directory: Path, suffixes: Tuple[str, ...]) -> Dict[int, Path]:
    """Map frame index to file for every ``<digits>.<suffix>`` in ``directory``."""
    files: Dict[int, Path] = {}
    if not directory.is_dir():
        return files

    for path in sorted(directory.iterdir()):
        if path.suffix.lower() not in suffixes:
            continue
        stem = path.stem.rsplit("-", 1)[-1]
        if not stem.isdigit():
            continue
        files.setdefault(int(stem), path)
    return files


def load_depth(path: Path) -> np.ndarray:
    """Load a depth map in metres as float32."""
    suffix = path.suffix.lower()
    if suffix == ".npy":
        depth = load_numpy(path)
    elif suffix == ".png":
        depth = load_image(path, mode="").astype(np.float32) * DEPTH_PNG_SCALE
    else:
        depth = load_image(path, mode="F")
    return np.asarray(depth, dtype=np.float32)


def load_confidence(path: Path) -> np.ndarray:
    if path.suffix.lower() == ".npy":
        confidence = load_numpy(path)
    else:
        confidence = load_image(path, mode="L")
    return np.asarray(confidence, dtype=np.uint8)


class RecordedFrameSource(FrameSource):
    """Replays a capture recorded to ``directory``.

    Buffers are loaded lazily, one frame at a time, so replaying a long
    capture keeps only the frame being delivered in memory.
    """

    def __init__(self, directory: Path):
        super().__init__()
        self.directory = Path(directory)
        frames_path = self.directory / "frames.jsonl"
        if not frames_path.exists():
            raise FileNotFoundError(f"No frames.jsonl in {self.directory}")

        self.records = load_jsonl(frames_path)
        self.intrinsics: Optional[np.ndarray] = None
        intrinsics_path = self.directory / "intrinsics.json"
        if intrinsics_path.exists():
            self.intrinsics = intrinsics_from_dict(load_json(intrinsics_path))

        self.location: Optional[LocationModel] = None
        location_path = self.directory / "location.json"
        if location_path.exists():
            self.location = LocationModel.from_dict(load_json(location_path))

        self._images = _index_files(self.directory / "images", IMAGE_SUFFIXES)
        self._depth = _index_files(self.directory / "depth", DEPTH_SUFFIXES)
        self._confidence = _index_files(self.directory / "confidence", CONFIDENCE_SUFFIXES)
        self._points = _index_files(self.directory / "points", POINT_SUFFIXES)
        self._current: Optional[PosedFrame] = None

        logger.info(
            f"Loaded recording {self.directory.name}: {len(self.records)} frames, "
            f"{len(self._images)} images, {len(self._depth)} depth maps, "
            f"{len(self._confidence)} confidence maps, {len(self._points)} point sets"
        )

    def __len__(self) -> int:
        return len(self.records)

    @property
    def current_frame(self) -> Optional[PosedFrame]:
        return self._current

    def frames(self) -> Iterator[PosedFrame]:
        """Yield every recorded frame in order."""
        for position, record in enumerate(self.records):
            yield self.load_frame(record, position)

    def play(self) -> int:
        """Push every recorded frame to the subscribers.

        Returns:
            Number of frames delivered.
        """
        delivered = 0
        for frame in self.frames():
            self._current = frame
            self._publish(frame)
            delivered += 1
        return delivered

    def load_frame(self, record: Dict[str, Any], position: int = 0) -> PosedFrame:
        """Build a ``PosedFrame`` from one frames.jsonl record and its buffers."""
        index = int(record.get("frameIndex", record.get("frame_index", position)))

        transform = np.array(record.get("cameraTransform", record.get("transform", np.eye(4).tolist())), dtype=np.float64)
        if transform.shape != (4, 4):
            transform = transform.reshape(4, 4)

        if "intrinsics" in record:
            intrinsics = intrinsics_from_dict(record["intrinsics"])
        elif self.intrinsics is not None:
            intrinsics = self.intrinsics
        else:
            raise ValueError(f"Frame {index} has no intrinsics and no intrinsics.json was found")

        euler = record.get("eulerAngles")
        projection = record.get("projectionMatrix")

        image = None
        if index in self._images:
            image = load_image(self._images[index])

        depth = load_depth(self._depth[index]) if index in self._depth else None
        confidence = load_confidence(self._confidence[index]) if index in self._confidence else None
        points = None
        if index in self._points:
            points = np.asarray(load_numpy(self._points[index]), dtype=np.float64).reshape(-1, 3)

        return PosedFrame(
            timestamp=float(record.get("timestamp", position)),
            transform=transform,
            intrinsics=intrinsics,
            image_resolution=_parse_resolution(record.get("imageResolution")),
            image=image,
            projection=np.asarray(projection, dtype=np.float64).reshape(4, 4) if projection is not None else None,
            depth_map=depth,
            confidence_map=confidence,
            feature_points=points,
            euler_angles=np.asarray(euler, dtype=np.float64) if euler is not None else None,
            exposure_duration=float(record.get("exposureDuration", 0.0)),
            exposure_offset=float(record.get("exposureOffset", 0.0)),
            grain_intensity=float(record.get("grainIntensity", 0.0)),
            fps=int(record.get("fps", 0)),
            exif=dict(record.get("exif", {})),
            tracking_normal=record.get("trackingState", TRACKING_NORMAL) == TRACKING_NORMAL,
        )
