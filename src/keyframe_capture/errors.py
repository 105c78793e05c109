"""Exception types raised by the capture pipeline."""
from __future__ import annotations


class CaptureError(Exception):
    """Base class for all keyframe capture errors."""


class ExportError(CaptureError):
    """A single frame's artifact could not be exported.

    Raised inside the drain loop only; the pipeline logs it and moves on to
    the next queued frame.
    """

    def __init__(self, message: str, frame_id: str = "", artifact: str = ""):
        super().__init__(message)
        self.frame_id = frame_id
        self.artifact = artifact


class MissingBufferError(ExportError):
    """A required raw buffer (the confidence map) was not supplied."""


class EncodeError(ExportError):
    """Pixel data could not be encoded into the target container."""


class SessionError(CaptureError):
    """Session-level failure surfaced to the caller (archive, finalize, start)."""


class MetadataPatchError(CaptureError):
    """The bytes of a written container could not be read or patched."""
