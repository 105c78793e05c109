"""Image metadata writers: XMP packets and in-place EXIF GPS patching."""
from __future__ import annotations

from .exif_patch import (
    DirectoryEntry,
    FileDataReader,
    FileDataWriter,
    GPSInfoOffsets,
    degrees_to_rational,
    find_byte_sequence,
    locate_gps_info,
    patch_gps_coordinates,
    rational_to_degrees,
    read_directory_entry,
    write_rational_triple,
)
from .xmp import CAMERA_NAMESPACE, XMP_CAMERA_PREFIX, XMPMetadata

__all__ = [
    "CAMERA_NAMESPACE",
    "XMP_CAMERA_PREFIX",
    "XMPMetadata",
    "DirectoryEntry",
    "FileDataReader",
    "FileDataWriter",
    "GPSInfoOffsets",
    "degrees_to_rational",
    "rational_to_degrees",
    "find_byte_sequence",
    "locate_gps_info",
    "patch_gps_coordinates",
    "read_directory_entry",
    "write_rational_triple",
]
