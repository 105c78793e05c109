import math
from pathlib import Path
from typing import Optional

import numpy as np
import pytest

from keyframe_capture.frames import PosedFrame
from keyframe_capture.models import LocationModel, PipelineConfig

WIDTH = 1920
HEIGHT = 1440
# 60 degree horizontal field of view
FOCAL = (WIDTH / 2.0) / math.tan(math.radians(30.0))


def make_intrinsics(focal: float = FOCAL) -> np.ndarray:
    return np.array([
        [focal, 0.0, WIDTH / 2.0],
        [0.0, focal, HEIGHT / 2.0],
        [0.0, 0.0, 1.0],
    ])


def make_transform(x: float = 0.0, y: float = 0.0, z: float = 0.0) -> np.ndarray:
    transform = np.eye(4)
    transform[:3, 3] = (x, y, z)
    return transform


def make_frame(
    timestamp: float = 0.0,
    x: float = 0.0,
    y: float = 0.0,
    z: float = 0.0,
    with_image: bool = True,
    with_depth: bool = True,
    with_confidence: bool = True,
    feature_points: Optional[np.ndarray] = None,
    tracking_normal: bool = True,
) -> PosedFrame:
    rng = np.random.default_rng(int(timestamp * 1000) % 2**32)
    return PosedFrame(
        timestamp=timestamp,
        transform=make_transform(x, y, z),
        intrinsics=make_intrinsics(),
        image_resolution=(WIDTH, HEIGHT),
        image=rng.integers(0, 255, size=(48, 64, 3), dtype=np.uint8) if with_image else None,
        depth_map=np.full((24, 32), 1.0, dtype=np.float32) if with_depth else None,
        confidence_map=np.full((24, 32), 2, dtype=np.uint8) if with_confidence else None,
        feature_points=feature_points,
        fps=60,
        exif={"SubsecTimeOriginal": "123"},
        tracking_normal=tracking_normal,
    )


@pytest.fixture
def frame_factory():
    return make_frame


@pytest.fixture
def storage_root(tmp_path: Path) -> Path:
    root = tmp_path / "captures"
    root.mkdir()
    return root


@pytest.fixture
def config() -> PipelineConfig:
    return PipelineConfig(export_workers=3)


@pytest.fixture
def location() -> LocationModel:
    return LocationModel.from_coordinates(37.422, -122.084, 12.5)
