"""Primary JPEG export with Camera-namespace XMP and EXIF GPS.

Writing happens in two passes against the same file. The constructor
encodes the pixels; the ``set_*`` methods accumulate tags; ``export``
re-encodes the container with the accumulated XMP and EXIF blocks and then
patches the final GPS coordinates into the EXIF GPS directory in place.
"""
from __future__ import annotations

import io
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np
import piexif
from PIL import Image as PILImage

from ..errors import EncodeError
from ..frames import OrientationAngles
from ..metadata import xmp as tags
from ..metadata.exif_patch import (
    degrees_to_rational,
    latitude_hemisphere,
    longitude_hemisphere,
    patch_gps_coordinates,
)
from ..metadata.xmp import XMPMetadata
from ..models import LocationModel
from ..utils.identifiers import random_digits
from ..utils.logging import get_logger
from ..utils.rational import fraction, fraction_string, rounding
from .base import EXIF_DATE_FORMAT, format_double

logger = get_logger(__name__)

JPEG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S.%f"

# Physical pixel pitch of the wide camera sensor, in millimetres.
PIXEL_SIZE_MM = 2.6e-3
FOCAL_PLANE_RESOLUTION = "3998077/10395"
FOCAL_PLANE_RESOLUTION_UNIT = "4"
PERSPECTIVE_DISTORTION = "0.000001,0.0,0.0,0.0,0.0"

# Sensor images are landscape; the capture UI is portrait.
PRIMARY_ORIENTATION = 6


def _jpeg_date(moment: datetime) -> str:
    # Millisecond precision
    return moment.strftime(JPEG_DATE_FORMAT)[:-3]


class JpegImage:
    """Handle to an exported primary image and its pending metadata."""

    def __init__(
        self,
        path: Path,
        capture_id: str,
        make: str = "Apple",
        model: str = "Pix4Dcatch.iPhone15,6",
    ):
        self.path = Path(path)
        self.capture_id = capture_id
        self.make = make
        self.model = model
        self.latitude = 0.0
        self.longitude = 0.0
        self.is_rtk = False
        self.exported = False

        self.xmp = XMPMetadata()
        self._exif: Dict[str, Dict[int, Any]] = {"0th": {}, "Exif": {}, "GPS": {}, "1st": {}}

        self.set_tag(tags.XMP_MODEL, model)
        self.set_tag(tags.XMP_MAKE, make)
        self.set_tag(tags.XMP_CAMERA_CAPTURE_UUID, capture_id)

    @classmethod
    def write(
        cls,
        directory: Path,
        file_name: str,
        rgb: np.ndarray,
        capture_id: str,
        quality: float = 0.8,
        make: str = "Apple",
        model: str = "Pix4Dcatch.iPhone15,6",
    ) -> "JpegImage":
        """Encode the pixels to ``directory/file_name`` (first pass).

        Args:
            directory: Session directory.
            file_name: Artifact file name, e.g. ``Image_000000.jpg``.
            rgb: (H, W, 3) uint8 image.
            capture_id: Identifier shared by the frame's three artifacts.
            quality: Lossy compression quality in [0, 1].
            make: Device make tag.
            model: Device model tag.

        Returns:
            Handle used to accumulate and export metadata.
        """
        path = Path(directory) / file_name
        try:
            PILImage.fromarray(rgb).save(path, format="JPEG", quality=int(round(quality * 100)))
        except (OSError, ValueError, TypeError) as e:
            raise EncodeError(f"Failed to create JPEG data for {file_name}: {e}", frame_id=capture_id) from e
        return cls(path, capture_id, make=make, model=model)

    def set_tag(self, path: str, value: str) -> None:
        self.xmp.set_tag(path, value)

    def set_subsec_time_original(self, time: Optional[str]) -> None:
        if time is not None:
            self.set_tag(tags.XMP_SUBSEC_TIME_ORIGINAL, str(time))
            self._exif["Exif"][piexif.ExifIFD.SubSecTimeOriginal] = str(time)

    def set_coordinate(self, coordinate: str, vertical: str = "ellipsoidal") -> None:
        self.set_tag(tags.XMP_CAMERA_HORIZ_CS, coordinate)
        self.set_tag(tags.XMP_CAMERA_VERT_CS, vertical)

    def set_rtk_location(
        self,
        location: LocationModel,
        model: str = "newVidoc",
        rtk_id: Optional[str] = None,
        serial_number: Optional[str] = None,
    ) -> None:
        self.set_tag(tags.XMP_CAMERA_RTK_ALTITUDE, format_double(location.altitude))
        self.set_tag(tags.XMP_CAMERA_RTK_LONGITUDE, format_double(location.longitude))
        self.set_tag(tags.XMP_CAMERA_RTK_LATITUDE, format_double(location.latitude))
        self.set_tag(tags.XMP_CAMERA_RTK_XY_ACCURACY, format_double(location.horizontal_accuracy))
        self.set_tag(tags.XMP_CAMERA_RTK_Z_ACCURACY, format_double(location.vertical_accuracy))
        self.set_tag(tags.XMP_CAMERA_RTK_YAW, "0.0")
        self.set_tag(tags.XMP_CAMERA_RTK_ROLL, "0.0")
        self.set_tag(tags.XMP_CAMERA_RTK_PITCH, "0.0")
        self.set_tag(tags.XMP_CAMERA_RTK_MODEL, model)
        if rtk_id is not None:
            self.set_tag(tags.XMP_CAMERA_RTK_ID, rtk_id)
        if serial_number is not None:
            self.set_tag(tags.XMP_CAMERA_RTK_SERIAL_NUMBER, serial_number)
        self.is_rtk = True

    def set_gps_location(self, location: LocationModel) -> None:
        """Record the fix in XMP and allocate the EXIF GPS slots.

        The EXIF values written here are the initial ones; ``export`` patches
        latitude and longitude again once the container is on disk.
        """
        altitude = abs(location.altitude)
        altitude_ref = "0" if location.altitude >= 0 else "1"
        self.longitude = abs(location.longitude)
        longitude_ref = longitude_hemisphere(location.longitude)
        self.latitude = abs(location.latitude)
        latitude_ref = latitude_hemisphere(location.latitude)

        self.set_tag(tags.XMP_GPS_ALTITUDE, fraction_string(altitude))
        self.set_tag(tags.XMP_GPS_ALTITUDE_REF, altitude_ref)
        self.set_tag(tags.XMP_GPS_LONGITUDE, format_double(self.longitude))
        self.set_tag(tags.XMP_GPS_LONGITUDE_REF, longitude_ref)
        self.set_tag(tags.XMP_GPS_LATITUDE, format_double(self.latitude))
        self.set_tag(tags.XMP_GPS_LATITUDE_REF, latitude_ref)
        self.set_tag(tags.XMP_CAMERA_GPS_XY_ACCURACY, format_double(location.horizontal_accuracy))
        self.set_tag(tags.XMP_CAMERA_GPS_Z_ACCURACY, format_double(location.vertical_accuracy))

        gps = self._exif["GPS"]
        gps[piexif.GPSIFD.GPSVersionID] = (2, 2, 0, 0)
        gps[piexif.GPSIFD.GPSLatitudeRef] = latitude_ref
        gps[piexif.GPSIFD.GPSLatitude] = degrees_to_rational(self.latitude)
        gps[piexif.GPSIFD.GPSLongitudeRef] = longitude_ref
        gps[piexif.GPSIFD.GPSLongitude] = degrees_to_rational(self.longitude)
        gps[piexif.GPSIFD.GPSAltitudeRef] = int(altitude_ref)
        gps[piexif.GPSIFD.GPSAltitude] = fraction(rounding(altitude, 5))

    def set_focal_length_pixel(self, focal_length: float, principal_x: float, principal_y: float) -> None:
        """Write pinhole intrinsics converted from pixels to millimetres."""
        f = rounding(focal_length * PIXEL_SIZE_MM, 4)
        x = rounding(principal_x * PIXEL_SIZE_MM, 4)
        y = rounding(principal_y * PIXEL_SIZE_MM, 4)

        self.set_tag(tags.XMP_FOCAL_LENGTH, fraction_string(f))
        self.set_tag(tags.XMP_CAMERA_PERSPECTIVE_FOCAL_LENGTH, format_double(f))
        self.set_tag(tags.XMP_CAMERA_PRINCIPAL_POINT, f"{format_double(x)},{format_double(y)}")
        self.set_tag(tags.XMP_CAMERA_MODEL_TYPE, "perspective")
        self.set_tag(tags.XMP_CAMERA_PERSPECTIVE_DISTORTION, PERSPECTIVE_DISTORTION)
        self.set_tag(tags.XMP_FOCAL_PLANE_RESOLUTION_UNIT, FOCAL_PLANE_RESOLUTION_UNIT)
        self.set_tag(tags.XMP_FOCAL_PLANE_X_RESOLUTION, FOCAL_PLANE_RESOLUTION)
        self.set_tag(tags.XMP_FOCAL_PLANE_Y_RESOLUTION, FOCAL_PLANE_RESOLUTION)

        self._exif["Exif"][piexif.ExifIFD.FocalLength] = fraction(rounding(f, 5))

    def set_orientation_angles(self, angles: OrientationAngles) -> None:
        self.set_tag(tags.XMP_CAMERA_YAW, format_double(angles.yaw))
        self.set_tag(tags.XMP_CAMERA_ROLL, format_double(angles.roll))
        self.set_tag(tags.XMP_CAMERA_PITCH, format_double(angles.pitch))

    def _exif_bytes(self, captured_at: datetime, lens_model: str, unique_id: str) -> bytes:
        zeroth = self._exif["0th"]
        zeroth[piexif.ImageIFD.Make] = self.make
        zeroth[piexif.ImageIFD.Model] = self.model
        zeroth[piexif.ImageIFD.Orientation] = PRIMARY_ORIENTATION
        zeroth[piexif.ImageIFD.DateTime] = captured_at.strftime(EXIF_DATE_FORMAT)

        exif = self._exif["Exif"]
        exif[piexif.ExifIFD.DateTimeOriginal] = captured_at.strftime(EXIF_DATE_FORMAT)
        exif[piexif.ExifIFD.LensModel] = lens_model
        exif[piexif.ExifIFD.ImageUniqueID] = unique_id

        return piexif.dump(self._exif)

    def export(
        self,
        lens_model: str = "iOS",
        captured_at: Optional[datetime] = None,
        buffer_size: int = 1000,
    ) -> Path:
        """Re-encode the file with the accumulated tags, then patch GPS in place.

        Args:
            lens_model: Lens model tag.
            captured_at: Capture time stamped into the date tags; now if omitted.
            buffer_size: Read chunk size of the GPS patch pass.

        Returns:
            Path of the finished image.
        """
        moment = captured_at or datetime.now()
        date_str = _jpeg_date(moment)
        unique_id = random_digits(20)

        self.set_tag(tags.XMP_PHOTOSHOP_CREATED_DATE, date_str)
        self.set_tag(tags.XMP_PHOTOSHOP_CREATED_DATE_TIME, date_str)
        self.set_tag(tags.XMP_LENS_MODEL, lens_model)
        self.set_tag(tags.XMP_IMAGE_ID, unique_id)
        self.set_tag(tags.XMP_ORIENTATION, str(PRIMARY_ORIENTATION))

        exif_bytes = self._exif_bytes(moment, lens_model, unique_id)
        buffer = io.BytesIO()
        try:
            with PILImage.open(self.path) as image:
                image.save(
                    buffer,
                    format="JPEG",
                    quality="keep",
                    subsampling="keep",
                    exif=exif_bytes,
                    xmp=self.xmp.to_bytes(),
                )
        except (OSError, ValueError) as e:
            raise EncodeError(f"Cannot save xmp data for {self.path.name}: {e}", frame_id=self.capture_id) from e

        self.path.write_bytes(buffer.getvalue())
        patch_gps_coordinates(self.path, self.latitude, self.longitude, buffer_size=buffer_size)
        self.exported = True
        logger.debug(f"Exported {self.path.name} ({len(self.xmp)} XMP tags)")
        return self.path
