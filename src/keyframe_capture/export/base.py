"""Shared types and helpers for artifact exports."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import cv2
import numpy as np
from PIL import Image as PILImage
from PIL import TiffImagePlugin

from ..errors import EncodeError
from ..frames import YCbCrImage
from ..metadata.xmp import XMPMetadata

TIFF_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
EXIF_DATE_FORMAT = "%Y:%m:%d %H:%M:%S"

# Baseline TIFF tag ids
TIFF_MAKE = 271
TIFF_MODEL = 272
TIFF_ORIENTATION = 274
TIFF_RESOLUTION_UNIT = 296
TIFF_DATE_TIME = 306
TIFF_XMP = 700


class ArtifactKind(Enum):
    """The three files written for every admitted frame."""
    IMAGE = "image"
    CONFIDENCE = "confidence"
    DEPTH = "depth"


@dataclass
class ArtifactResult:
    """Outcome of one sub-export."""
    kind: ArtifactKind
    path: Optional[Path] = None
    skipped: bool = False
    error: Optional[str] = None
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "path": str(self.path) if self.path else None,
            "skipped": self.skipped,
            "error": self.error,
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class ExportResult:
    """Outcome of exporting one queued frame."""
    frame_id: str
    index: int
    artifacts: Dict[ArtifactKind, ArtifactResult] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "frame_id": self.frame_id,
            "index": self.index,
            "success": self.success,
            "artifacts": {k.value: v.to_dict() for k, v in self.artifacts.items()},
            "errors": self.errors,
        }


def format_double(value: float) -> str:
    """Shortest round-tripping decimal form, always with a fractional part."""
    return repr(float(value))


def to_rgb(image: Any) -> np.ndarray:
    """Normalize a frame's color buffer to an (H, W, 3) uint8 RGB array."""
    if isinstance(image, YCbCrImage):
        return image.to_rgb()

    array = np.asarray(image)
    if array.ndim == 2:
        return cv2.cvtColor(array.astype(np.uint8), cv2.COLOR_GRAY2RGB)
    if array.ndim != 3 or array.shape[2] not in (3, 4):
        raise EncodeError(f"Unsupported color buffer shape {array.shape}")
    if array.shape[2] == 4:
        array = array[:, :, :3]
    if array.dtype != np.uint8:
        array = (np.clip(array, 0, 1) * 255).astype(np.uint8)
    return np.ascontiguousarray(array)


def resize_to_scale(image: np.ndarray, scale: float) -> np.ndarray:
    """Downscale an image for lower export resolution tiers."""
    if scale >= 1.0:
        return image
    height, width = image.shape[:2]
    size = (max(1, int(round(width * scale))), max(1, int(round(height * scale))))
    return cv2.resize(image, size, interpolation=cv2.INTER_AREA)


def write_tiff(
    path: Path,
    image: PILImage.Image,
    xmp: XMPMetadata,
    make: str,
    model: str,
    captured_at: datetime,
) -> Path:
    """Write an uncompressed single-channel TIFF with an embedded XMP packet."""
    info = TiffImagePlugin.ImageFileDirectory_v2()
    info[TIFF_MAKE] = make
    info[TIFF_MODEL] = model
    info[TIFF_ORIENTATION] = 1
    info[TIFF_RESOLUTION_UNIT] = 2
    info[TIFF_DATE_TIME] = captured_at.strftime(EXIF_DATE_FORMAT)
    info[TIFF_XMP] = xmp.to_bytes()

    try:
        image.save(path, format="TIFF", compression="raw", tiffinfo=info)
    except (OSError, ValueError) as e:
        raise EncodeError(f"Failed to write {path.name}: {e}") from e
    return path
