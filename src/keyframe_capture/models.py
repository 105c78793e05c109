"""Data models shared across the keyframe capture pipeline."""
from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

DEFAULT_COORDINATE_SYSTEM = "EPSG:4326"


class ImageResolution(Enum):
    """Export resolution tier for the primary image."""
    MAXIMUM = "maximum"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def scale(self) -> float:
        return _RESOLUTION_SCALES[self]


_RESOLUTION_SCALES = {
    ImageResolution.MAXIMUM: 1.0,
    ImageResolution.HIGH: 0.75,
    ImageResolution.MEDIUM: 0.5,
    ImageResolution.LOW: 0.25,
}


@dataclass(frozen=True)
class LocationModel:
    """Geolocation fix attached to a frame.

    Both plain GPS and RTK fixes use this type; ``is_rtk`` tells them apart.
    The default instance is all zero with ``is_rtk=False``.
    """
    latitude: float = 0.0
    longitude: float = 0.0
    altitude: float = 0.0
    horizontal_accuracy: float = 0.0
    vertical_accuracy: float = 0.0
    course: float = 0.0
    course_accuracy: float = 0.0
    coordinate: str = DEFAULT_COORDINATE_SYSTEM
    is_rtk: bool = False

    @classmethod
    def from_coordinates(
        cls,
        latitude: float,
        longitude: float,
        altitude: float,
        coordinate: str = DEFAULT_COORDINATE_SYSTEM,
        is_rtk: bool = False,
    ) -> "LocationModel":
        """Build a fix from bare coordinates with centimetre accuracy."""
        return cls(
            latitude=latitude,
            longitude=longitude,
            altitude=altitude,
            horizontal_accuracy=0.01,
            vertical_accuracy=0.01,
            coordinate=coordinate,
            is_rtk=is_rtk,
        )

    @property
    def has_fix(self) -> bool:
        """True when the coordinates are anything other than the null island default."""
        return self.latitude != 0.0 or self.longitude != 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LocationModel":
        return cls(
            latitude=float(data.get("latitude", 0.0)),
            longitude=float(data.get("longitude", 0.0)),
            altitude=float(data.get("altitude", 0.0)),
            horizontal_accuracy=float(data.get("horizontal_accuracy", data.get("horizontal", 0.0))),
            vertical_accuracy=float(data.get("vertical_accuracy", data.get("vertical", 0.0))),
            course=float(data.get("course", 0.0)),
            course_accuracy=float(data.get("course_accuracy", data.get("courseAccuracy", 0.0))),
            coordinate=str(data.get("coordinate", DEFAULT_COORDINATE_SYSTEM)),
            is_rtk=bool(data.get("is_rtk", data.get("isRTK", False))),
        )


@dataclass(frozen=True)
class ImageOutputModel:
    """File names of the three artifacts written for one frame."""
    depth_map: str
    photo: str
    depth_map_confidence: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "depth_map": self.depth_map,
            "photo": self.photo,
            "depth_map_confidence": self.depth_map_confidence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImageOutputModel":
        return cls(
            depth_map=data["depth_map"],
            photo=data["photo"],
            depth_map_confidence=data["depth_map_confidence"],
        )


@dataclass
class ManifestModel:
    """Session manifest serialized to ``manifest.json``.

    Entries are only ever appended while a session is running.
    """
    log_files: List[str] = field(default_factory=list)
    inputs: List[ImageOutputModel] = field(default_factory=list)

    def add_log_file(self, name: str) -> None:
        if name not in self.log_files:
            self.log_files.append(name)

    def add_input(self, entry: ImageOutputModel) -> None:
        self.inputs.append(entry)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "log_files": list(self.log_files),
            "inputs": [entry.to_dict() for entry in self.inputs],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ManifestModel":
        return cls(
            log_files=list(data.get("log_files", [])),
            inputs=[ImageOutputModel.from_dict(d) for d in data.get("inputs", [])],
        )


@dataclass
class PipelineConfig:
    """Configuration for a keyframe capture run.

    Can be loaded from YAML or JSON; unknown keys are ignored.
    """

    # Keyframe selection
    initial_overlap_rate: float = 0.8
    overlap_rate: float = 0.9
    feature_point_threshold: int = 250
    match_distance_factor: float = 0.095
    min_match_threshold: float = 0.01

    # Primary image
    jpeg_quality: float = 0.8
    export_resolution: str = ImageResolution.MAXIMUM.value
    device_make: str = "Apple"
    device_model: str = "Pix4Dcatch.iPhone15,6"
    lens_model: str = "iOS"

    # Geolocation
    coordinate_system: str = DEFAULT_COORDINATE_SYSTEM
    vertical_coordinate_system: str = "ellipsoidal"
    rtk_model: str = "newVidoc"
    rtk_id: Optional[str] = None
    rtk_serial_number: Optional[str] = None

    # I/O
    export_workers: int = 3
    reader_buffer_size: int = 1000
    archive_chunk_size: int = 65536
    progress_step: float = 0.001

    @property
    def resolution(self) -> ImageResolution:
        return ImageResolution(self.export_resolution)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineConfig":
        """Deserialize from dictionary."""
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    @classmethod
    def from_file(cls, path: Path) -> "PipelineConfig":
        """Load configuration from a YAML or JSON file."""
        path = Path(path)
        with open(path, "r", encoding="utf-8") as f:
            if path.suffix.lower() == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
        return cls.from_dict(data or {})
