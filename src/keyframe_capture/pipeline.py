"""Keyframe selection and the single-consumer export loop.

``KeyframePipeline.handle_frame`` runs on the caller's thread: it scores
the frame against the last kept frame and either drops it or enqueues it.
A single background worker drains the queue one entry at a time through
the ``ArtifactExporter``, so at most one frame's buffers are being written
at any moment.

Lifecycle::

    IDLE -> ACTIVE <-> DRAINING -> CLOSED
"""
from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .errors import SessionError
from .export.base import ExportResult
from .export.exporter import ArtifactExporter
from .frame_queue import FrameQueue
from .frames import FrameCacheEntry, FrameMetadata, PosedFrame
from .models import ImageResolution, LocationModel, PipelineConfig
from .overlap import OverlapEstimator
from .session import CaptureSession, FileErrorCallback, ProgressCallback
from .utils.logging import ExportTracker, get_logger

logger = get_logger(__name__)

HighResolutionProvider = Callable[[PosedFrame], PosedFrame]


class PipelineState(Enum):
    """Lifecycle state of a ``KeyframePipeline``."""
    IDLE = "idle"
    ACTIVE = "active"
    DRAINING = "draining"
    CLOSED = "closed"


@dataclass
class PipelineContext:
    """Per-run state shared by the ingestion path and the drain worker.

    Replaces process-wide globals: the current session, the snapshot of the
    last kept frame used for overlap scoring, and the latest location fixes
    all live here and are reset when a session starts.
    """
    storage_root: Path
    config: PipelineConfig = field(default_factory=PipelineConfig)
    session: Optional[CaptureSession] = None
    last_frame: Optional[FrameMetadata] = None
    last_index: int = -1
    gps_location: LocationModel = field(default_factory=LocationModel)
    rtk_location: Optional[LocationModel] = None

    @property
    def next_index(self) -> int:
        return self.last_index + 1

    def reset(self) -> None:
        self.session = None
        self.last_frame = None
        self.last_index = -1


class KeyframePipeline:
    """Admits posed frames by view overlap and exports the kept ones.

    Example:
        pipeline = KeyframePipeline(Path("/data/captures"))
        pipeline.start()
        for frame in source.frames():
            pipeline.handle_frame(frame)
        archive = pipeline.finalize(archive=True)
    """

    def __init__(
        self,
        storage_root: Path,
        config: Optional[PipelineConfig] = None,
        estimator: Optional[OverlapEstimator] = None,
        exporter: Optional[ArtifactExporter] = None,
        high_resolution_provider: Optional[HighResolutionProvider] = None,
        on_file_error: Optional[FileErrorCallback] = None,
    ):
        """Initialize the pipeline.

        Args:
            storage_root: Directory that receives session folders and archives.
            config: Pipeline configuration.
            estimator: Overlap scorer (built from ``config`` if omitted).
            exporter: Artifact exporter (built from ``config`` if omitted).
            high_resolution_provider: Called with an admitted frame when the
                export tier is ``maximum``; returns the frame to export,
                typically with a full-resolution still in place of the
                video-rate image.
            on_file_error: Called with the exception whenever one artifact
                of a frame fails to export.
        """
        self.config = config or PipelineConfig()
        self.context = PipelineContext(storage_root=Path(storage_root), config=self.config)
        self.estimator = estimator or OverlapEstimator.from_config(self.config)
        self.exporter = exporter or ArtifactExporter(self.config)
        self.tracker = self.exporter.tracker
        self.high_resolution_provider = high_resolution_provider
        self.on_file_error = on_file_error
        self.results: List[ExportResult] = []

        # Guards the queue, the drain flag and the admission flag
        self._lock = threading.Lock()
        self._queue = FrameQueue()
        self._draining = False
        self._accepting = False
        self._closed = False
        self._idle = threading.Event()
        self._idle.set()
        self._drain_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="frame-drain")

    # ------------------------------------------------------------------
    # State

    @property
    def state(self) -> PipelineState:
        with self._lock:
            if self._closed:
                return PipelineState.CLOSED
            if self._draining:
                return PipelineState.DRAINING
        if self.context.session is None:
            return PipelineState.IDLE
        return PipelineState.ACTIVE

    @property
    def session(self) -> Optional[CaptureSession]:
        return self.context.session

    @property
    def pending(self) -> int:
        """Number of admitted frames still waiting in the queue."""
        with self._lock:
            return len(self._queue)

    @property
    def stats(self) -> Dict[str, Any]:
        return self.tracker.generate_report()

    # ------------------------------------------------------------------
    # Lifecycle

    def start(self, is_rtk: bool = False) -> CaptureSession:
        """Open a fresh session, discarding any session still active.

        Raises:
            SessionError: If the pipeline has already been closed.
        """
        if self._closed:
            raise SessionError("Pipeline is closed; create a new one to start another session.")

        previous = self.context.session
        if previous is not None:
            logger.warning(f"Discarding active session {previous.name} before starting a new one")
            self._discard_pending()
            previous.clear()

        session = CaptureSession(
            self.context.storage_root,
            is_rtk=is_rtk,
            on_file_error=self.on_file_error,
            overlap_rate=self.config.initial_overlap_rate,
        )
        session.overlap_rate = self.config.overlap_rate
        session.image_resolution = self.config.resolution

        self.context.reset()
        self.context.session = session
        self.tracker = ExportTracker(session_id=session.name)
        self.exporter.tracker = self.tracker
        self.results = []

        with self._lock:
            self._accepting = True

        logger.info(
            f"Started session {session.name} "
            f"(overlap_rate={session.overlap_rate}, resolution={session.image_resolution.value}, rtk={is_rtk})"
        )
        return session

    def update_location(
        self,
        gps: Optional[LocationModel] = None,
        rtk: Optional[LocationModel] = None,
    ) -> None:
        """Record the latest location fixes; applied to frames admitted afterwards."""
        if gps is not None:
            self.context.gps_location = gps
        if rtk is not None:
            self.context.rtk_location = rtk

    def finalize(
        self,
        archive: bool = False,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Path:
        """Stop admitting frames, export what is queued and close the session.

        Args:
            archive: Zip the session directory and remove it afterwards.
            on_progress: Archive progress callback (ratios in [0, 1]).

        Returns:
            Archive path if ``archive`` is set, otherwise the session directory.

        Raises:
            SessionError: If no session is active or its directory is gone.
        """
        session = self._require_session()
        self._stop_accepting()
        self.wait_for_drain()

        try:
            session.write_manifest()
            report = self.tracker.generate_report()
            logger.info(
                f"Session {session.name}: {report['frames_exported']} exported, "
                f"{report['frames_failed']} with errors, {report['frames_dropped']} dropped"
            )

            if archive:
                result = session.archive_with_progress(
                    on_progress,
                    progress_step=self.config.progress_step,
                    chunk_size=self.config.archive_chunk_size,
                )
            else:
                result = session.path
        finally:
            self._close()

        return result

    def stop(self) -> Path:
        """Finish the session without archiving; the directory is kept."""
        return self.finalize(archive=False)

    def discard(self) -> None:
        """Abandon the session: drop queued frames and delete its directory."""
        session = self._require_session()
        self._stop_accepting()
        self._discard_pending()
        session.clear()
        self._close()

    # ------------------------------------------------------------------
    # Ingestion

    def handle_frame(self, frame: PosedFrame) -> Optional[int]:
        """Score ``frame`` against the last kept frame and admit or drop it.

        Returns:
            The sequence index assigned to an admitted frame, or None if the
            frame was ignored or dropped.
        """
        session = self.context.session
        with self._lock:
            accepting = self._accepting
        if session is None or not accepting:
            return None
        if not frame.tracking_normal:
            return None

        previous = self.context.last_frame
        if previous is not None:
            distance = self.estimator.estimate_scene_distance(frame.depth_map)
            overlap = self.estimator.estimate(previous, frame, distance)
            if overlap > session.overlap_rate:
                self.tracker.record_drop()
                logger.debug(f"Dropped frame at {frame.timestamp:.3f}: overlap {overlap:.3f} > {session.overlap_rate}")
                return None

        if session.image_resolution == ImageResolution.MAXIMUM and self.high_resolution_provider is not None:
            frame = self._high_resolution(frame)

        index = self.context.next_index
        gps = self.context.gps_location
        rtk = self.context.rtk_location
        metadata = FrameMetadata.from_frame(
            frame,
            index=index,
            fps=frame.fps,
            gps_location=gps,
            rtk_location=rtk,
        )
        entry = FrameCacheEntry(
            index=index,
            frame=frame,
            fps=frame.fps,
            exif=dict(frame.exif),
            gps_location=gps,
            rtk_location=rtk,
            metadata=metadata,
            id=metadata.id,
        )
        self.context.last_index = index
        self.context.last_frame = metadata

        with self._lock:
            self._queue.enqueue(entry)
            spawn = not self._draining
            if spawn:
                self._draining = True
                self._idle.clear()

        if spawn:
            self._drain_executor.submit(self._drain)

        logger.debug(f"Admitted frame {index} at {frame.timestamp:.3f}")
        return index

    def _high_resolution(self, frame: PosedFrame) -> PosedFrame:
        try:
            return self.high_resolution_provider(frame)
        except Exception as e:
            logger.warning(f"High-resolution capture failed, using video frame: {e}")
            return frame

    # ------------------------------------------------------------------
    # Drain worker

    def _drain(self) -> None:
        while True:
            with self._lock:
                entry = self._queue.dequeue()
                if entry is None:
                    self._draining = False
                    self._idle.set()
                    return

            session = self.context.session
            if session is None or not session.exists:
                logger.warning(f"No session directory for frame {entry.index}; skipping")
                continue

            try:
                result = self.exporter.export(session, entry)
            except Exception:
                logger.exception(f"Failed to export frame {entry.index} ({entry.id})")
                continue

            self.results.append(result)
            if result.success:
                logger.debug(f"Exported frame {entry.index} ({entry.id})")
            else:
                logger.error(f"Frame {entry.index} exported with errors: {'; '.join(result.errors)}")

    def wait_for_drain(self, timeout: Optional[float] = None) -> bool:
        """Block until the queue is empty and no entry is being exported.

        Returns:
            False if ``timeout`` elapsed first.
        """
        return self._idle.wait(timeout)

    # ------------------------------------------------------------------
    # Helpers

    def _require_session(self) -> CaptureSession:
        if self._closed:
            raise SessionError("Pipeline is closed.")
        session = self.context.session
        if session is None:
            raise SessionError("No active capture session.")
        return session

    def _stop_accepting(self) -> None:
        with self._lock:
            self._accepting = False

    def _discard_pending(self) -> None:
        with self._lock:
            dropped = len(self._queue)
            self._queue.dequeue_all()
        if dropped:
            logger.info(f"Discarded {dropped} queued frames")
        self.wait_for_drain()

    def _close(self) -> None:
        self.context.reset()
        with self._lock:
            self._closed = True
            self._accepting = False
        self._drain_executor.shutdown(wait=True)
        self.exporter.close()
        logger.info("Pipeline closed")
