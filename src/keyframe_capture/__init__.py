"""Keyframe Capture - photogrammetry keyframe selection and dataset export.

Consumes a stream of posed camera frames (pose, intrinsics, depth,
confidence, feature points), keeps the frames that add enough new view
coverage, and writes them to a session directory ready for
photogrammetry processing.

Pipeline stages:
    1. Selection - overlap against the last kept frame (FOV projection or
       feature-point matching)
    2. Export - geotagged JPEG, depth TIFF and confidence TIFF per frame,
       one frame at a time
    3. Packaging - manifest.json and an optional zip archive

Session layout:
    yyyy-MM-dd-HH-mm-ss/
    ├── Image_000000.jpg
    ├── DepthMap_000000.tiff
    ├── Confidence_000000.tiff
    ├── manifest.json
    └── _gps/locations.jsonl
"""

from .errors import (
    CaptureError,
    EncodeError,
    ExportError,
    MetadataPatchError,
    MissingBufferError,
    SessionError,
)
from .export import (
    ArtifactExporter,
    ArtifactKind,
    ArtifactResult,
    ExportResult,
    JpegImage,
)
from .frame_queue import FrameQueue
from .frames import (
    FrameCacheEntry,
    FrameMetadata,
    PosedFrame,
    YCbCrImage,
)
from .models import (
    ImageOutputModel,
    ImageResolution,
    LocationModel,
    ManifestModel,
    PipelineConfig,
)
from .overlap import OverlapEstimator
from .pipeline import (
    KeyframePipeline,
    PipelineContext,
    PipelineState,
)
from .session import CaptureSession
from .source import FrameSource, RecordedFrameSource


__version__ = "1.0.0"

__all__ = [
    # Version
    "__version__",
    # Pipeline (main interface)
    "KeyframePipeline",
    "PipelineContext",
    "PipelineState",
    "CaptureSession",
    # Selection
    "OverlapEstimator",
    "FrameQueue",
    # Frames
    "PosedFrame",
    "YCbCrImage",
    "FrameCacheEntry",
    "FrameMetadata",
    # Sources
    "FrameSource",
    "RecordedFrameSource",
    # Export
    "ArtifactExporter",
    "ArtifactKind",
    "ArtifactResult",
    "ExportResult",
    "JpegImage",
    # Models
    "ImageOutputModel",
    "ImageResolution",
    "LocationModel",
    "ManifestModel",
    "PipelineConfig",
    # Errors
    "CaptureError",
    "EncodeError",
    "ExportError",
    "MetadataPatchError",
    "MissingBufferError",
    "SessionError",
]
