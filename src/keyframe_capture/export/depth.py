"""Depth and confidence map TIFF exports."""
from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Optional

import numpy as np
from PIL import Image as PILImage

from ..errors import MissingBufferError
from ..metadata import xmp as tags
from ..metadata.xmp import XMPMetadata
from .base import TIFF_DATE_FORMAT, write_tiff

DEPTH_BRAND_NAME = "Depth"
CONFIDENCE_BRAND_NAME = "DepthConfidence"


def depth_map_metadata(
    brand_name: str,
    capture_id: str,
    make: str,
    model: str,
    captured_at: datetime,
) -> XMPMetadata:
    """Camera-namespace tags shared by depth and confidence maps."""
    date_str = captured_at.strftime(TIFF_DATE_FORMAT)

    metadata = XMPMetadata()
    metadata.set_tag(tags.XMP_MODEL, model)
    metadata.set_tag(tags.XMP_MAKE, make)
    metadata.set_tag(tags.XMP_CAMERA_BRAND_NAME, brand_name)
    metadata.set_tag(tags.XMP_CAMERA_DEPTH_UNIT, "m")
    metadata.set_tag(tags.XMP_CAMERA_DEPTH_CONFIDENCE_RANGE_MIN, "0")
    metadata.set_tag(tags.XMP_CAMERA_DEPTH_CONFIDENCE_RANGE_MAX, "2")
    metadata.set_tag(tags.XMP_CAMERA_DEPTH_CONFIDENCE_UNIT, "int")
    metadata.set_tag(tags.XMP_CAMERA_CAPTURE_UUID, capture_id)
    metadata.set_tag(tags.XMP_DATE_TIME_ORIGINAL, date_str)
    metadata.set_tag(tags.XMP_PHOTOSHOP_CREATED_DATE, date_str)
    metadata.set_tag(tags.XMP_PHOTOSHOP_CREATED_DATE_TIME, date_str)
    metadata.set_tag(tags.XMP_ORIENTATION, "1")
    metadata.set_tag(tags.XMP_PHOTOMETRIC_INTERPRETATION, "1")
    metadata.set_tag(tags.XMP_COMPRESSION, "1")
    metadata.set_tag(tags.XMP_RESOLUTION_UNIT, "2")
    return metadata


def export_depth_map(
    directory: Path,
    file_name: str,
    depth_map: Optional[np.ndarray],
    capture_id: str,
    make: str = "Apple",
    model: str = "Pix4Dcatch.iPhone15,6",
    captured_at: Optional[datetime] = None,
) -> Optional[Path]:
    """Write a 32-bit float depth map in metres.

    A frame without depth is not an error: nothing is written and None is
    returned.
    """
    if depth_map is None:
        return None

    moment = captured_at or datetime.now()
    depth = np.ascontiguousarray(depth_map, dtype=np.float32)
    metadata = depth_map_metadata(DEPTH_BRAND_NAME, capture_id, make, model, moment)
    return write_tiff(Path(directory) / file_name, PILImage.fromarray(depth), metadata, make, model, moment)


def export_confidence_map(
    directory: Path,
    file_name: str,
    confidence_map: Optional[np.ndarray],
    capture_id: str,
    make: str = "Apple",
    model: str = "Pix4Dcatch.iPhone15,6",
    captured_at: Optional[datetime] = None,
) -> Path:
    """Write an 8-bit confidence map (values 0 to 2).

    Raises:
        MissingBufferError: If the frame carries no confidence buffer.
    """
    if confidence_map is None:
        raise MissingBufferError(
            f"Missing confidence data for {file_name}",
            frame_id=capture_id,
            artifact="confidence",
        )

    moment = captured_at or datetime.now()
    confidence = np.ascontiguousarray(confidence_map, dtype=np.uint8)
    metadata = depth_map_metadata(CONFIDENCE_BRAND_NAME, capture_id, make, model, moment)
    return write_tiff(Path(directory) / file_name, PILImage.fromarray(confidence), metadata, make, model, moment)
