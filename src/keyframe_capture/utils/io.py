"""File helpers for session directories and recorded captures."""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Union

import numpy as np
from PIL import Image as PILImage


def ensure_local_dir(path: Path) -> Path:
    """Create ``path`` (and parents) if missing and return it."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def save_json(data: Union[Dict, List], path: Path, indent: int = 2) -> Path:
    """Write JSON next to ``path`` and move it into place.

    The manifest is rewritten at the end of a session; writing through a
    sibling temp file means a crash never leaves a truncated manifest.

    Args:
        data: JSON-compatible data; numpy values and objects with
            ``to_dict`` are converted.
        path: Destination file.
        indent: Indentation, or 0 for a single line.

    Returns:
        ``path``.
    """
    ensure_local_dir(path.parent)
    tmp_path = path.with_name(path.name + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=indent or None, default=_json_serializer)
    os.replace(tmp_path, path)
    return path


def load_json(path: Path) -> Union[Dict, List]:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def load_jsonl(path: Path) -> List[Dict[str, Any]]:
    """Read one JSON object per line; blank lines are ignored."""
    with open(path, "r", encoding="utf-8") as f:
        return [json.loads(line) for line in f if line.strip()]


def append_jsonl(record: Dict[str, Any], path: Path) -> Path:
    """Append ``record`` as one line, creating the file on first use."""
    ensure_local_dir(path.parent)
    with open(path, "a", encoding="utf-8") as f:
        f.write(json.dumps(record, default=_json_serializer) + "\n")
    return path


def _json_serializer(obj: Any) -> Any:
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, (np.integer, np.floating, np.bool_)):
        return obj.item()
    if isinstance(obj, Path):
        return obj.as_posix()
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    raise TypeError(f"Cannot serialize {type(obj).__name__} to JSON")


def load_image(path: Path, mode: str = "RGB") -> np.ndarray:
    """Decode a recorded image buffer.

    Args:
        path: Image file (JPEG, PNG or TIFF).
        mode: Pillow mode to convert to, or ``""`` to keep the stored mode
            (16-bit depth PNGs and float TIFFs must keep theirs).

    Returns:
        (H, W, C) array, or (H, W) for single-channel buffers.
    """
    with PILImage.open(path) as img:
        if mode and img.mode != mode:
            img = img.convert(mode)
        return np.array(img)


def load_numpy(path: Path) -> np.ndarray:
    """Load a ``.npy`` array, or the ``data`` entry of an ``.npz`` archive."""
    if path.suffix == ".npz":
        with np.load(path) as archive:
            return archive["data"]
    return np.load(path)
