"""Concurrent export of one queued frame's three artifacts."""
from __future__ import annotations

import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Dict, Optional

import numpy as np

from ..frames import FrameCacheEntry, FrameMetadata, OrientationAngles, euler_angles_from_transform
from ..models import ImageResolution, PipelineConfig
from ..utils.logging import ExportTracker, get_logger
from .base import ArtifactKind, ArtifactResult, ExportResult, resize_to_scale, to_rgb
from .depth import export_confidence_map, export_depth_map
from .jpeg import JpegImage

if TYPE_CHECKING:
    from ..session import CaptureSession

logger = get_logger(__name__)

SUBSEC_TIME_KEY = "SubsecTimeOriginal"


class ArtifactExporter:
    """Writes the image, confidence and depth artifacts for one frame.

    The three sub-exports run concurrently on a small pool and are joined
    before ``export`` returns. A failing sub-export is recorded in the
    result without cancelling the others.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        tracker: Optional[ExportTracker] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config or PipelineConfig()
        self.tracker = tracker or ExportTracker()
        self.clock = clock
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.export_workers,
            thread_name_prefix="artifact-export",
        )

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def export(self, session: "CaptureSession", entry: FrameCacheEntry) -> ExportResult:
        """Export all artifacts of ``entry`` into ``session``.

        Returns:
            Per-artifact outcomes; ``success`` is False if any sub-export failed.
        """
        result = ExportResult(frame_id=entry.id, index=entry.index)
        captured_at = self.clock()

        tasks = {
            ArtifactKind.IMAGE: self._export_image,
            ArtifactKind.CONFIDENCE: self._export_confidence,
            ArtifactKind.DEPTH: self._export_depth,
        }
        futures: Dict[Future, ArtifactKind] = {
            self._executor.submit(self._timed, kind, entry, func, session, entry, captured_at): kind
            for kind, func in tasks.items()
        }

        for future in as_completed(futures):
            kind = futures[future]
            try:
                result.artifacts[kind] = future.result()
            except Exception as e:
                result.artifacts[kind] = ArtifactResult(kind=kind, error=str(e))
                result.errors.append(f"{kind.value}: {e}")
                session.report_file_error(e)

        self.tracker.record_frame(exported=result.success)
        return result

    def _timed(self, kind: ArtifactKind, entry: FrameCacheEntry, func, *args) -> ArtifactResult:
        start = time.perf_counter()
        with self.tracker.stage(kind.value, frame_id=entry.id):
            artifact = func(*args)
        artifact.duration_seconds = time.perf_counter() - start
        return artifact

    def _export_image(self, session: "CaptureSession", entry: FrameCacheEntry, captured_at: datetime) -> ArtifactResult:
        frame = entry.frame
        config = self.config
        scale = session.image_resolution.scale if session.image_resolution else ImageResolution.MAXIMUM.scale

        rgb = resize_to_scale(to_rgb(frame.image), scale)
        image = JpegImage.write(
            session.path,
            entry.image_name,
            rgb,
            capture_id=entry.id,
            quality=config.jpeg_quality,
            make=config.device_make,
            model=config.device_model,
        )

        image.set_subsec_time_original(entry.exif.get(SUBSEC_TIME_KEY))
        location = entry.location
        coordinate = location.coordinate if location.has_fix else config.coordinate_system
        image.set_coordinate(coordinate, config.vertical_coordinate_system)
        image.set_gps_location(location)

        intrinsics = np.asarray(frame.intrinsics, dtype=np.float64)
        image.set_focal_length_pixel(
            intrinsics[0, 0] * scale,
            intrinsics[0, 2] * scale,
            intrinsics[1, 2] * scale,
        )

        euler = frame.euler_angles if frame.euler_angles is not None else euler_angles_from_transform(frame.transform)
        image.set_orientation_angles(OrientationAngles.from_euler(euler))

        if entry.rtk_location is not None and entry.rtk_location.is_rtk:
            image.set_rtk_location(
                entry.rtk_location,
                model=config.rtk_model,
                rtk_id=config.rtk_id,
                serial_number=config.rtk_serial_number,
            )

        path = image.export(
            lens_model=config.lens_model,
            captured_at=captured_at,
            buffer_size=config.reader_buffer_size,
        )

        metadata = entry.metadata
        if metadata is None:
            metadata = FrameMetadata.from_frame(
                frame,
                index=entry.index,
                fps=entry.fps,
                gps_location=entry.gps_location,
                rtk_location=entry.rtk_location,
            )
        session.add(metadata, image)
        return ArtifactResult(kind=ArtifactKind.IMAGE, path=path)

    def _export_confidence(self, session: "CaptureSession", entry: FrameCacheEntry, captured_at: datetime) -> ArtifactResult:
        path = export_confidence_map(
            session.path,
            entry.confidence_map_image_name,
            entry.frame.confidence_map,
            capture_id=entry.id,
            make=self.config.device_make,
            model=self.config.device_model,
            captured_at=captured_at,
        )
        return ArtifactResult(kind=ArtifactKind.CONFIDENCE, path=path)

    def _export_depth(self, session: "CaptureSession", entry: FrameCacheEntry, captured_at: datetime) -> ArtifactResult:
        path = export_depth_map(
            session.path,
            entry.depth_map_image_name,
            entry.frame.depth_map,
            capture_id=entry.id,
            make=self.config.device_make,
            model=self.config.device_model,
            captured_at=captured_at,
        )
        return ArtifactResult(kind=ArtifactKind.DEPTH, path=path, skipped=path is None)
