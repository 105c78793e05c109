"""Logging and export tracking utilities."""
from __future__ import annotations

import json
import logging
import sys
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional


class JsonFormatter(logging.Formatter):
    """Formatter that emits one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "severity": record.levelname,
            "message": record.getMessage(),
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "logger": record.name,
            "thread": record.threadName,
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        context = getattr(record, "context", None)
        if context:
            log_entry.update(context)

        return json.dumps(log_entry)


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter for interactive runs."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
        name = record.name.replace("keyframe_capture.", "")

        msg = f"{color}[{timestamp}] {record.levelname:8s}{self.RESET} {name}: {record.getMessage()}"

        if record.exc_info:
            msg += "\n" + self.formatException(record.exc_info)

        return msg


class _ContextFilter(logging.Filter):
    """Attaches static key/values (session id and the like) to every record."""

    def __init__(self, context: Dict[str, Any]):
        super().__init__()
        self.context = context

    def filter(self, record: logging.LogRecord) -> bool:
        record.context = dict(self.context)
        return True


def setup_logging(
    level: int = logging.INFO,
    session_id: Optional[str] = None,
    json_logs: bool = False,
) -> logging.Logger:
    """Set up logging for a capture run.

    Args:
        level: Logging level.
        session_id: Capture session identifier attached to JSON records.
        json_logs: If True, emit single-line JSON records instead of
            coloured console output.

    Returns:
        Configured package logger.
    """
    logger = logging.getLogger("keyframe_capture")
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    if json_logs:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(ConsoleFormatter())

    if session_id:
        handler.addFilter(_ContextFilter({"session_id": session_id}))

    logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger(name: str = "keyframe_capture") -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Logger name (will be prefixed with 'keyframe_capture.').

    Returns:
        Logger instance.
    """
    if not name.startswith("keyframe_capture"):
        name = f"keyframe_capture.{name}"
    return logging.getLogger(name)


@dataclass
class ArtifactMetrics:
    """Accumulated timings for one artifact kind (image, depth, confidence)."""
    name: str
    count: int = 0
    failures: int = 0
    total_seconds: float = 0.0
    max_seconds: float = 0.0
    errors: List[str] = field(default_factory=list)

    @property
    def mean_seconds(self) -> float:
        if self.count == 0:
            return 0.0
        return self.total_seconds / self.count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "count": self.count,
            "failures": self.failures,
            "total_seconds": self.total_seconds,
            "mean_seconds": self.mean_seconds,
            "max_seconds": self.max_seconds,
            "errors": self.errors,
        }


class ExportTracker:
    """Track per-artifact export timings across a capture session.

    Sub-exports run on worker threads, so every update goes through a lock.
    """

    def __init__(
        self,
        session_id: str = "",
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize the tracker.

        Args:
            session_id: Session ID for context.
            logger: Logger instance (creates one if not provided).
        """
        self.session_id = session_id
        self.logger = logger or get_logger("export")

        self.artifacts: Dict[str, ArtifactMetrics] = {}
        self.frames_exported = 0
        self.frames_failed = 0
        self.frames_dropped = 0
        self.start_time = time.time()
        self._lock = threading.Lock()

    def _metrics(self, name: str) -> ArtifactMetrics:
        metrics = self.artifacts.get(name)
        if metrics is None:
            metrics = ArtifactMetrics(name=name)
            self.artifacts[name] = metrics
        return metrics

    @contextmanager
    def stage(self, name: str, frame_id: str = "") -> Iterator[None]:
        """Context manager timing a single artifact export.

        Args:
            name: Artifact kind being exported.
            frame_id: Identifier of the frame, for log messages.
        """
        start = time.perf_counter()
        try:
            yield
        except Exception as e:
            elapsed = time.perf_counter() - start
            with self._lock:
                metrics = self._metrics(name)
                metrics.failures += 1
                metrics.errors.append(f"{frame_id}: {e}")
            self.logger.error(f"Export {name} failed for frame {frame_id} after {elapsed:.3f}s: {e}")
            raise
        else:
            elapsed = time.perf_counter() - start
            with self._lock:
                metrics = self._metrics(name)
                metrics.count += 1
                metrics.total_seconds += elapsed
                metrics.max_seconds = max(metrics.max_seconds, elapsed)
            self.logger.debug(f"Export {name} for frame {frame_id} took {elapsed:.3f}s")

    def record_frame(self, exported: bool) -> None:
        """Count one drained frame as fully exported or partially failed."""
        with self._lock:
            if exported:
                self.frames_exported += 1
            else:
                self.frames_failed += 1

    def record_drop(self) -> None:
        """Count one frame rejected for overlapping the last kept frame."""
        with self._lock:
            self.frames_dropped += 1

    def generate_report(self) -> Dict[str, Any]:
        """Generate a summary report of the session's exports.

        Returns:
            Dictionary containing frame counters and per-artifact timings.
        """
        with self._lock:
            artifacts = [m.to_dict() for m in self.artifacts.values()]
            total_errors = sum(m.failures for m in self.artifacts.values())
            return {
                "session_id": self.session_id,
                "total_duration_seconds": time.time() - self.start_time,
                "frames_exported": self.frames_exported,
                "frames_failed": self.frames_failed,
                "frames_dropped": self.frames_dropped,
                "artifacts": artifacts,
                "success": total_errors == 0,
                "total_errors": total_errors,
            }
