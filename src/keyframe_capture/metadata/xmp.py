"""XMP packet construction for exported artifacts.

Tags are addressed by ``prefix:Name`` paths, the way photogrammetry tools
read them back. Values are always strings.
"""
from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import Dict, Iterator, Optional, Tuple

CAMERA_NAMESPACE = "http://pix4d.com/camera/1.0/"
XMP_CAMERA_PREFIX = "Camera"

NAMESPACES: Dict[str, str] = {
    "x": "adobe:ns:meta/",
    "rdf": "http://www.w3.org/1999/02/22-rdf-syntax-ns#",
    XMP_CAMERA_PREFIX: CAMERA_NAMESPACE,
    "exif": "http://ns.adobe.com/exif/1.0/",
    "exifEX": "http://cipa.jp/exif/1.0/",
    "tiff": "http://ns.adobe.com/tiff/1.0/",
    "photoshop": "http://ns.adobe.com/photoshop/1.0/",
}

for _prefix, _uri in NAMESPACES.items():
    ET.register_namespace(_prefix, _uri)

XMP_CAMERA_RTK_PREFIX = f"{XMP_CAMERA_PREFIX}:RTK"
XMP_CAMERA_GPS_PREFIX = f"{XMP_CAMERA_PREFIX}:GPS"

# Camera namespace
XMP_CAMERA_BRAND_NAME = f"{XMP_CAMERA_PREFIX}:BrandName"
XMP_CAMERA_CAPTURE_UUID = f"{XMP_CAMERA_PREFIX}:CaptureUUID"
XMP_CAMERA_DEPTH_CONFIDENCE_RANGE_MIN = f"{XMP_CAMERA_PREFIX}:DepthConfidenceRangeMin"
XMP_CAMERA_DEPTH_CONFIDENCE_RANGE_MAX = f"{XMP_CAMERA_PREFIX}:DepthConfidenceRangeMax"
XMP_CAMERA_DEPTH_CONFIDENCE_UNIT = f"{XMP_CAMERA_PREFIX}:DepthConfidenceUnit"
XMP_CAMERA_DEPTH_UNIT = f"{XMP_CAMERA_PREFIX}:DepthUnit"
XMP_CAMERA_MODEL_TYPE = f"{XMP_CAMERA_PREFIX}:ModelType"
XMP_CAMERA_PERSPECTIVE_DISTORTION = f"{XMP_CAMERA_PREFIX}:PerspectiveDistortion"
XMP_CAMERA_PRINCIPAL_POINT = f"{XMP_CAMERA_PREFIX}:PrincipalPoint"
XMP_CAMERA_PERSPECTIVE_FOCAL_LENGTH = f"{XMP_CAMERA_PREFIX}:PerspectiveFocalLength"
XMP_CAMERA_HORIZ_CS = f"{XMP_CAMERA_PREFIX}:HorizCS"
XMP_CAMERA_VERT_CS = f"{XMP_CAMERA_PREFIX}:VertCS"
XMP_CAMERA_YAW = f"{XMP_CAMERA_PREFIX}:Yaw"
XMP_CAMERA_ROLL = f"{XMP_CAMERA_PREFIX}:Roll"
XMP_CAMERA_PITCH = f"{XMP_CAMERA_PREFIX}:Pitch"

# RTK block
XMP_CAMERA_RTK_YAW = f"{XMP_CAMERA_RTK_PREFIX}Yaw"
XMP_CAMERA_RTK_ROLL = f"{XMP_CAMERA_RTK_PREFIX}Roll"
XMP_CAMERA_RTK_PITCH = f"{XMP_CAMERA_RTK_PREFIX}Pitch"
XMP_CAMERA_RTK_ALTITUDE = f"{XMP_CAMERA_RTK_PREFIX}Altitude"
XMP_CAMERA_RTK_LONGITUDE = f"{XMP_CAMERA_RTK_PREFIX}Longitude"
XMP_CAMERA_RTK_LATITUDE = f"{XMP_CAMERA_RTK_PREFIX}Latitude"
XMP_CAMERA_RTK_XY_ACCURACY = f"{XMP_CAMERA_RTK_PREFIX}XYAccuracy"
XMP_CAMERA_RTK_Z_ACCURACY = f"{XMP_CAMERA_RTK_PREFIX}ZAccuracy"
XMP_CAMERA_RTK_MODEL = f"{XMP_CAMERA_RTK_PREFIX}Model"
XMP_CAMERA_RTK_ID = f"{XMP_CAMERA_RTK_PREFIX}Id"
XMP_CAMERA_RTK_SERIAL_NUMBER = f"{XMP_CAMERA_RTK_PREFIX}SerialNumber"

# GPS block
XMP_CAMERA_GPS_XY_ACCURACY = f"{XMP_CAMERA_GPS_PREFIX}XYAccuracy"
XMP_CAMERA_GPS_Z_ACCURACY = f"{XMP_CAMERA_GPS_PREFIX}ZAccuracy"
XMP_GPS_ALTITUDE = "exif:GPSAltitude"
XMP_GPS_ALTITUDE_REF = "exif:GPSAltitudeRef"
XMP_GPS_LONGITUDE = "exif:GPSLongitude"
XMP_GPS_LONGITUDE_REF = "exif:GPSLongitudeRef"
XMP_GPS_LATITUDE = "exif:GPSLatitude"
XMP_GPS_LATITUDE_REF = "exif:GPSLatitudeRef"

# Standard photographic namespaces
XMP_FOCAL_LENGTH = "exif:FocalLength"
XMP_FOCAL_PLANE_X_RESOLUTION = "exif:FocalPlaneXResolution"
XMP_FOCAL_PLANE_Y_RESOLUTION = "exif:FocalPlaneYResolution"
XMP_FOCAL_PLANE_RESOLUTION_UNIT = "exif:FocalPlaneResolutionUnit"
XMP_DATE_TIME_ORIGINAL = "exif:DateTimeOriginal"
XMP_SUBSEC_TIME_ORIGINAL = "exif:SubsecTimeOriginal"
XMP_IMAGE_ID = "exif:ImageUniqueID"
XMP_PHOTOSHOP_CREATED_DATE = "photoshop:DateCreated"
XMP_PHOTOSHOP_CREATED_DATE_TIME = "photoshop:DateTimeOriginal"
XMP_ORIENTATION = "tiff:Orientation"
XMP_PHOTOMETRIC_INTERPRETATION = "tiff:PhotometricInterpretation"
XMP_COMPRESSION = "tiff:Compression"
XMP_RESOLUTION_UNIT = "tiff:ResolutionUnit"
XMP_MAKE = "tiff:Make"
XMP_MODEL = "tiff:Model"
XMP_LENS_MODEL = "exifEX:LensModel"

_XPACKET_BEGIN = "<?xpacket begin=\"\ufeff\" id=\"W5M0MpCehiHzreSzNTczkc9d\"?>"
_XPACKET_END = '<?xpacket end="w"?>'


def _split_path(path: str) -> Tuple[str, str]:
    prefix, sep, name = path.partition(":")
    if not sep or not name:
        raise ValueError(f"XMP path must look like 'prefix:Name', got {path!r}")
    if prefix not in NAMESPACES:
        raise ValueError(f"Unregistered XMP prefix {prefix!r}")
    return prefix, name


def _qualified(path: str) -> str:
    prefix, name = _split_path(path)
    return f"{{{NAMESPACES[prefix]}}}{name}"


class XMPMetadata:
    """Mutable set of simple-valued XMP properties."""

    def __init__(self) -> None:
        self._tags: Dict[str, str] = {}

    def set_tag(self, path: str, value: str) -> None:
        _split_path(path)
        self._tags[path] = str(value)

    def get(self, path: str, default: Optional[str] = None) -> Optional[str]:
        return self._tags.get(path, default)

    def __contains__(self, path: str) -> bool:
        return path in self._tags

    def __iter__(self) -> Iterator[Tuple[str, str]]:
        return iter(self._tags.items())

    def __len__(self) -> int:
        return len(self._tags)

    def to_bytes(self) -> bytes:
        """Serialize as a UTF-8 xpacket with one ``rdf:Description``."""
        root = ET.Element(_qualified("x:xmpmeta"))
        rdf = ET.SubElement(root, _qualified("rdf:RDF"))
        description = ET.SubElement(rdf, _qualified("rdf:Description"))
        description.set(_qualified("rdf:about"), "")
        for path, value in self._tags.items():
            description.set(_qualified(path), value)

        body = ET.tostring(root, encoding="unicode")
        return f"{_XPACKET_BEGIN}\n{body}\n{_XPACKET_END}".encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> "XMPMetadata":
        """Parse a packet written by ``to_bytes`` (attribute-form properties only)."""
        text = data.decode("utf-8") if isinstance(data, bytes) else data
        start = text.find("<x:xmpmeta")
        end = text.rfind("</x:xmpmeta>")
        if start == -1 or end == -1:
            raise ValueError("No x:xmpmeta element in XMP packet")
        root = ET.fromstring(text[start:end + len("</x:xmpmeta>")])

        by_uri = {uri: prefix for prefix, uri in NAMESPACES.items()}
        metadata = cls()
        for description in root.iter(_qualified("rdf:Description")):
            for key, value in description.attrib.items():
                if not key.startswith("{"):
                    continue
                uri, _, name = key[1:].partition("}")
                prefix = by_uri.get(uri)
                if prefix is None or prefix == "rdf":
                    continue
                metadata.set_tag(f"{prefix}:{name}", value)
        return metadata
