"""On-disk dataset for one capture run.

A session owns a timestamp-named directory under the storage root. The
drain worker writes every artifact into it, and the session keeps the
ordered (metadata, image) records plus the manifest. At the end the
directory is zipped with its top-level folder flattened and then removed.
"""
from __future__ import annotations

import shutil
import threading
import uuid
import zipfile
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from .errors import SessionError
from .export.jpeg import JpegImage
from .frames import FrameMetadata, manifest_entry
from .models import ImageResolution, ManifestModel
from .utils.io import append_jsonl, ensure_local_dir, save_json
from .utils.logging import get_logger

logger = get_logger(__name__)

SESSION_NAME_FORMAT = "%Y-%m-%d-%H-%M-%S"
MANIFEST_FILE = "manifest.json"
GPS_FOLDER = "_gps"
LOCATION_LOG_FILE = "locations.jsonl"

ProgressCallback = Callable[[float], None]
FileErrorCallback = Callable[[Exception], None]


class CaptureSession:
    """Dataset directory, frame records and manifest of one capture run."""

    def __init__(
        self,
        storage_root: Path,
        is_rtk: bool = False,
        on_file_error: Optional[FileErrorCallback] = None,
        created_at: Optional[datetime] = None,
        overlap_rate: float = 0.8,
    ):
        """Create the session directory.

        Args:
            storage_root: Directory holding all session folders and archives.
            is_rtk: Whether frames carry an RTK fix.
            on_file_error: Called with the exception when an artifact fails.
            created_at: Creation time used for the directory name.
            overlap_rate: Initial admission threshold.
        """
        self.id = uuid.uuid4()
        self.storage_root = ensure_local_dir(Path(storage_root))
        self.name = (created_at or datetime.now()).strftime(SESSION_NAME_FORMAT)
        self.path = self.storage_root / self.name
        self.is_rtk = is_rtk
        self.on_file_error = on_file_error
        self.overlap_rate = overlap_rate
        self.image_resolution = ImageResolution.MAXIMUM
        self.manifest = ManifestModel()

        self._frames: List[FrameMetadata] = []
        self._images: List[JpegImage] = []
        self._lock = threading.Lock()

        ensure_local_dir(self.path)
        logger.info(f"Created capture session {self.name} at {self.path}")

    @property
    def exists(self) -> bool:
        return self.path.is_dir()

    @property
    def frames(self) -> List[FrameMetadata]:
        with self._lock:
            return list(self._frames)

    @property
    def images(self) -> List[JpegImage]:
        with self._lock:
            return list(self._images)

    @property
    def records(self) -> List[Tuple[FrameMetadata, JpegImage]]:
        with self._lock:
            return list(zip(self._frames, self._images))

    def add(self, metadata: FrameMetadata, image: JpegImage) -> None:
        """Record an exported frame and append it to the manifest."""
        with self._lock:
            self._frames.append(metadata)
            self._images.append(image)
            self.manifest.add_input(manifest_entry(metadata))

        if metadata.location.has_fix:
            self._log_location(metadata)

    def _log_location(self, metadata: FrameMetadata) -> None:
        location = metadata.location
        record = {
            "index": metadata.index,
            "photo": metadata.image_name,
            "timestamp": metadata.timestamp,
            **location.to_dict(),
        }
        append_jsonl(record, self.gps_folder() / LOCATION_LOG_FILE)
        with self._lock:
            self.manifest.add_log_file(f"{GPS_FOLDER}/{LOCATION_LOG_FILE}")

    def gps_folder(self) -> Path:
        return ensure_local_dir(self.path / GPS_FOLDER)

    def report_file_error(self, error: Exception) -> None:
        if self.on_file_error is not None:
            self.on_file_error(error)

    def clear(self) -> None:
        """Delete the session directory if it is still there."""
        if self.exists:
            shutil.rmtree(self.path, ignore_errors=True)
            logger.info(f"Cleared capture session {self.name}")

    def write_manifest(self) -> Path:
        """Serialize the manifest to ``manifest.json`` in the session directory."""
        if not self.exists:
            raise SessionError("Session folder not found.")
        with self._lock:
            data = self.manifest.to_dict()
        path = save_json(data, self.path / MANIFEST_FILE)
        logger.info(f"Wrote manifest with {len(data['inputs'])} inputs to {path}")
        return path

    def is_duplicate_archive_name(self, name: str) -> bool:
        """Whether a zip with this name (case-insensitive) already exists in the storage root."""
        target = name.lower()
        if not target.endswith(".zip"):
            target += ".zip"
        return any(
            p.is_file() and p.suffix.lower() == ".zip" and p.name.lower() == target
            for p in self.storage_root.iterdir()
        )

    def _session_files(self) -> List[Path]:
        return sorted(p for p in self.path.rglob("*") if p.is_file())

    def archive(self) -> Path:
        """Zip the session to ``<name>-save.zip`` and remove the directory.

        Raises:
            SessionError: If the directory is gone or the archive already exists.
        """
        destination = self.storage_root / f"{self.name}-save.zip"
        if not self.exists:
            raise SessionError("Session folder not found.")
        if destination.exists():
            raise SessionError(f"Archive {destination.name} already exists.")

        with zipfile.ZipFile(destination, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for file_path in self._session_files():
                zf.write(file_path, arcname=file_path.relative_to(self.path).as_posix())

        shutil.rmtree(self.path)
        logger.info(f"Archived session {self.name} to {destination}")
        return destination

    def archive_with_progress(
        self,
        on_progress: Optional[ProgressCallback] = None,
        progress_step: float = 0.001,
        chunk_size: int = 65536,
    ) -> Path:
        """Zip the session to ``<name>.zip``, reporting byte progress.

        ``on_progress`` receives monotonically increasing ratios, only when
        the ratio grew by at least ``progress_step`` since the last report,
        and always a final 1.0. An existing archive of the same name is
        replaced.

        Raises:
            SessionError: If the session directory is missing.
        """
        destination = self.storage_root / f"{self.name}.zip"
        if not self.exists:
            raise SessionError("Session folder not found.")
        if destination.exists():
            destination.unlink()

        files = self._session_files()
        total_size = sum(p.stat().st_size for p in files)
        processed = 0
        last_reported = 0.0

        with zipfile.ZipFile(destination, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for file_path in files:
                arcname = file_path.relative_to(self.path).as_posix()
                with open(file_path, "rb") as src, zf.open(arcname, "w", force_zip64=True) as dst:
                    for chunk in iter(lambda: src.read(chunk_size), b""):
                        dst.write(chunk)
                        processed += len(chunk)
                        if on_progress is None or total_size == 0:
                            continue
                        ratio = processed / total_size
                        if ratio - last_reported >= progress_step and ratio < 1.0:
                            last_reported = ratio
                            on_progress(ratio)

        if on_progress is not None:
            on_progress(1.0)

        shutil.rmtree(self.path)
        logger.info(f"Archived session {self.name} to {destination} ({total_size} bytes)")
        return destination
