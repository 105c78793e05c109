"""Utility modules for keyframe capture."""
from __future__ import annotations

from .identifiers import random_digits, random_hex
from .io import (
    append_jsonl,
    ensure_local_dir,
    load_image,
    load_json,
    load_jsonl,
    load_numpy,
    save_json,
)
from .logging import ExportTracker, get_logger, setup_logging
from .rational import fraction, fraction_string, rounding

__all__ = [
    # Logging
    "setup_logging",
    "get_logger",
    "ExportTracker",
    # I/O
    "ensure_local_dir",
    "save_json",
    "load_json",
    "load_jsonl",
    "append_jsonl",
    "load_image",
    "load_numpy",
    # Rational values
    "fraction",
    "fraction_string",
    "rounding",
    # Identifiers
    "random_hex",
    "random_digits",
]
