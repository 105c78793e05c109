"""Artifact exporters for admitted frames."""
from __future__ import annotations

from .base import ArtifactKind, ArtifactResult, ExportResult
from .depth import export_confidence_map, export_depth_map
from .exporter import ArtifactExporter
from .jpeg import JpegImage

__all__ = [
    "ArtifactExporter",
    "ArtifactKind",
    "ArtifactResult",
    "ExportResult",
    "JpegImage",
    "export_confidence_map",
    "export_depth_map",
]
