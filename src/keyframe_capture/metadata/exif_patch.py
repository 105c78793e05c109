"""In-place GPS coordinate patching for already written JPEG files.

The encoder writes the EXIF block with GPS latitude/longitude slots already
allocated. This module walks the TIFF structure inside the APP1 segment to
find those slots and overwrites their rational values with the final fix.
Every write is the same size as the bytes it replaces, so the file length
never changes.
"""
from __future__ import annotations

import os
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple, Union

from ..errors import MetadataPatchError
from ..utils.logging import get_logger
from ..utils.rational import fraction

logger = get_logger(__name__)

EXIF_MARKER = b"Exif\x00\x00"
GPS_IFD_POINTER = 0x8825
GPS_LATITUDE_REF = 0x0001
GPS_LATITUDE = 0x0002
GPS_LONGITUDE_REF = 0x0003
GPS_LONGITUDE = 0x0004
GPS_ALTITUDE = 0x0006

ENTRY_SIZE = 12
RATIONAL_TRIPLE_SIZE = 24

# Element size in bytes for each TIFF field type.
TYPE_SIZES = {
    1: 1,  # BYTE
    2: 1,  # ASCII
    3: 2,  # SHORT
    4: 4,  # LONG
    5: 8,  # RATIONAL
    7: 1,  # UNDEFINED
    9: 4,  # SLONG
    10: 8,  # SRATIONAL
}

Rational = Tuple[int, int]


class FileDataReader:
    """Random-access reader that caches a growing prefix of a file.

    Bytes are pulled in ``buffer_size`` chunks only when an offset past the
    cached prefix is requested; cached bytes are never read twice.
    """

    def __init__(self, path: Union[str, Path], buffer_size: int = 1000):
        self.path = Path(path)
        self.buffer_size = buffer_size
        self.size = self.path.stat().st_size
        self._cache = bytearray()

    @property
    def cached_size(self) -> int:
        return len(self._cache)

    def fetch(self, index: int) -> None:
        """Grow the cache until byte ``index`` is available."""
        while index >= len(self._cache):
            self._fetch_chunk()

    def _fetch_chunk(self) -> None:
        with open(self.path, "rb") as f:
            f.seek(len(self._cache))
            data = f.read(self.buffer_size)
        if not data:
            raise MetadataPatchError(f"Cannot read {self.path.name} past byte {len(self._cache)}")
        self._cache.extend(data)

    def get(self, index: int) -> int:
        self.fetch(index)
        return self._cache[index]

    def get_range(self, start: int, end: int) -> bytes:
        """Bytes in ``[start, end)``."""
        if end <= start:
            return b""
        self.fetch(end - 1)
        return bytes(self._cache[start:end])


class FileDataWriter:
    """Overwrites byte ranges of an existing file in place."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def write(self, offset: int, data: bytes) -> None:
        with open(self.path, "r+b") as f:
            f.seek(offset)
            f.write(data)
            f.flush()
            os.fsync(f.fileno())


@dataclass(frozen=True)
class DirectoryEntry:
    """One 12-byte IFD record.

    ``offset`` is -1 when the value fits in the record itself, in which case
    ``value`` holds the four raw trailing bytes.
    """
    tag: int
    type: int
    count: int
    offset: int
    value: bytes


@dataclass(frozen=True)
class GPSInfoOffsets:
    """Absolute file offsets of the GPS values (-1 when absent).

    The ref offsets point at the first character of the inline ASCII
    hemisphere tags.
    """
    latitude_offset: int = -1
    longitude_offset: int = -1
    altitude_offset: int = -1
    latitude_ref_offset: int = -1
    longitude_ref_offset: int = -1
    byte_order: str = ">"


def find_byte_sequence(reader: FileDataReader, start: int, pattern: bytes) -> int:
    """Offset of the first occurrence of ``pattern`` at or after ``start``, or -1."""
    n = len(pattern)
    if n == 0:
        return start

    window_start = start
    while window_start + n <= reader.size:
        window_end = min(reader.size, window_start + reader.buffer_size + n - 1)
        found = reader.get_range(window_start, window_end).find(pattern)
        if found != -1:
            return window_start + found
        window_start = window_end - n + 1
    return -1


def read_directory_entry(
    reader: FileDataReader,
    offset: int,
    base_offset: int,
    byte_order: str = ">",
) -> DirectoryEntry:
    """Decode the IFD entry at ``offset``.

    Args:
        reader: Reader over the container.
        offset: Absolute offset of the 12-byte record.
        base_offset: Absolute offset of the TIFF header; out-of-line value
            offsets are relative to it.
        byte_order: ``">"`` for big-endian (MM) or ``"<"`` for little-endian (II).

    Returns:
        The decoded entry.
    """
    record = reader.get_range(offset, offset + ENTRY_SIZE)
    tag, type_code, count = struct.unpack(byte_order + "HHI", record[:8])
    raw_value = record[8:12]

    size = TYPE_SIZES.get(type_code, 0) * count
    if size <= 4:
        return DirectoryEntry(tag=tag, type=type_code, count=count, offset=-1, value=raw_value)

    value_offset = base_offset + struct.unpack(byte_order + "I", raw_value)[0]
    value = reader.get_range(value_offset, value_offset + size)
    return DirectoryEntry(tag=tag, type=type_code, count=count, offset=value_offset, value=value)


def _byte_order(header: bytes) -> str:
    if header[:2] == b"MM":
        return ">"
    if header[:2] == b"II":
        return "<"
    raise MetadataPatchError(f"Unknown TIFF byte order {header[:2]!r}")


def locate_gps_info(reader: FileDataReader) -> GPSInfoOffsets:
    """Find the GPS latitude/longitude/altitude value offsets.

    Missing EXIF data, a missing GPS directory, or a missing tag all yield -1
    for the affected fields.
    """
    marker = find_byte_sequence(reader, 0, EXIF_MARKER)
    if marker == -1:
        return GPSInfoOffsets()

    base = marker + len(EXIF_MARKER)
    header = reader.get_range(base, base + 8)
    order = _byte_order(header)
    ifd0 = base + struct.unpack(order + "I", header[4:8])[0]
    entry_count = struct.unpack(order + "H", reader.get_range(ifd0, ifd0 + 2))[0]

    offsets = {
        GPS_LATITUDE_REF: -1,
        GPS_LATITUDE: -1,
        GPS_LONGITUDE_REF: -1,
        GPS_LONGITUDE: -1,
        GPS_ALTITUDE: -1,
    }
    for i in range(entry_count):
        entry = read_directory_entry(reader, ifd0 + 2 + i * ENTRY_SIZE, base, order)
        if entry.tag != GPS_IFD_POINTER:
            continue

        gps_ifd = base + struct.unpack(order + "I", entry.value[:4])[0]
        gps_count = struct.unpack(order + "H", reader.get_range(gps_ifd, gps_ifd + 2))[0]
        for j in range(gps_count):
            record_offset = gps_ifd + 2 + j * ENTRY_SIZE
            gps_entry = read_directory_entry(reader, record_offset, base, order)
            if gps_entry.tag not in offsets:
                continue
            if gps_entry.tag in (GPS_LATITUDE_REF, GPS_LONGITUDE_REF) and gps_entry.offset == -1:
                # Inline ASCII sits in the last four bytes of the record
                offsets[gps_entry.tag] = record_offset + 8
            else:
                offsets[gps_entry.tag] = gps_entry.offset
        break

    return GPSInfoOffsets(
        latitude_offset=offsets[GPS_LATITUDE],
        longitude_offset=offsets[GPS_LONGITUDE],
        altitude_offset=offsets[GPS_ALTITUDE],
        latitude_ref_offset=offsets[GPS_LATITUDE_REF],
        longitude_ref_offset=offsets[GPS_LONGITUDE_REF],
        byte_order=order,
    )


def latitude_hemisphere(latitude: float) -> str:
    return "N" if latitude > 0 else "S"


def longitude_hemisphere(longitude: float) -> str:
    return "E" if longitude > 0 else "W"


def degrees_to_rational(value: float) -> Tuple[Rational, Rational, Rational]:
    """Split decimal degrees into degree/minute/second rationals.

    Degrees and minutes are truncated toward zero; seconds keep the
    remainder as a small continued-fraction approximation.
    """
    degrees = int(value)
    minutes_float = (value - degrees) * 60.0
    minutes = int(minutes_float)
    seconds = (minutes_float - minutes) * 60.0
    return (degrees, 1), (minutes, 1), fraction(seconds)


def rational_to_degrees(dms: Tuple[Rational, Rational, Rational]) -> float:
    """Inverse of ``degrees_to_rational``."""
    (dn, dd), (mn, md), (sn, sd) = dms
    return dn / dd + (mn / md) / 60.0 + (sn / sd) / 3600.0


def write_rational_triple(
    writer: FileDataWriter,
    offset: int,
    degrees: Rational,
    minutes: Rational,
    seconds: Rational,
    byte_order: str = ">",
) -> None:
    """Write three 8-byte rationals contiguously at ``offset``."""
    data = struct.pack(byte_order + "iiiiii", *degrees, *minutes, *seconds)
    writer.write(offset, data)


def patch_gps_coordinates(
    path: Union[str, Path],
    latitude: float,
    longitude: float,
    buffer_size: int = 1000,
) -> GPSInfoOffsets:
    """Overwrite the GPS latitude and longitude of a written JPEG in place.

    Values are written as magnitudes and the sign goes into the
    GPSLatitudeRef/GPSLongitudeRef tags, which are rewritten in place as
    well. Each value is patched only if its slot exists.

    Args:
        path: JPEG file to patch.
        latitude: Latitude in decimal degrees.
        longitude: Longitude in decimal degrees.
        buffer_size: Read chunk size.

    Returns:
        The offsets that were located.
    """
    reader = FileDataReader(path, buffer_size=buffer_size)
    writer = FileDataWriter(path)
    info = locate_gps_info(reader)

    for name, offset, ref_offset, value, ref in (
        ("latitude", info.latitude_offset, info.latitude_ref_offset, latitude, latitude_hemisphere(latitude)),
        ("longitude", info.longitude_offset, info.longitude_ref_offset, longitude, longitude_hemisphere(longitude)),
    ):
        if ref_offset == -1:
            logger.debug(f"No GPS {name} ref in {Path(path).name}, skipping")
        else:
            writer.write(ref_offset, ref.encode("ascii"))

        if offset == -1:
            logger.debug(f"No GPS {name} slot in {Path(path).name}, skipping")
            continue
        if offset + RATIONAL_TRIPLE_SIZE > reader.size:
            raise MetadataPatchError(f"GPS {name} slot at {offset} runs past end of {Path(path).name}")
        write_rational_triple(writer, offset, *degrees_to_rational(abs(value)), byte_order=info.byte_order)

    return info
