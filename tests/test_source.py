import json
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from conftest import FOCAL, HEIGHT, WIDTH
from keyframe_capture.source import RecordedFrameSource, intrinsics_from_dict


def write_recording(directory: Path, count: int = 3, step: float = 2.0, with_location: bool = True) -> Path:
    """Write a small recorded capture in the replay layout."""
    for name in ("images", "depth", "confidence", "points"):
        (directory / name).mkdir(parents=True, exist_ok=True)

    (directory / "intrinsics.json").write_text(json.dumps({
        "fx": FOCAL, "fy": FOCAL, "cx": WIDTH / 2.0, "cy": HEIGHT / 2.0,
    }))
    if with_location:
        (directory / "location.json").write_text(json.dumps({
            "latitude": 37.422, "longitude": -122.084, "altitude": 10.0, "isRTK": False,
        }))

    rng = np.random.default_rng(7)
    with open(directory / "frames.jsonl", "w") as f:
        for i in range(count):
            transform = np.eye(4)
            transform[0, 3] = i * step
            f.write(json.dumps({
                "frameIndex": i,
                "timestamp": i / 30.0,
                "cameraTransform": transform.tolist(),
                "imageResolution": {"width": WIDTH, "height": HEIGHT},
                "fps": 30,
                "trackingState": "normal",
                "exif": {"SubsecTimeOriginal": "042"},
            }) + "\n")

            Image.fromarray(rng.integers(0, 255, size=(24, 32, 3), dtype=np.uint8)).save(
                directory / "images" / f"{i:06d}.png"
            )
            depth_mm = np.full((12, 16), 1500, dtype=np.uint16)
            Image.fromarray(depth_mm).save(directory / "depth" / f"{i:06d}.png")
            Image.fromarray(np.full((12, 16), 2, dtype=np.uint8)).save(directory / "confidence" / f"{i:06d}.png")
            np.save(directory / "points" / f"{i:06d}.npy", rng.uniform(-1, 1, size=(20, 3)))

    return directory


def test_intrinsics_from_dict_accepts_camel_case():
    matrix = intrinsics_from_dict({"focalLengthX": 100, "focalLengthY": 110, "principalPointX": 50, "principalPointY": 40})
    np.testing.assert_allclose(matrix, [[100, 0, 50], [0, 110, 40], [0, 0, 1]])


def test_missing_frames_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        RecordedFrameSource(tmp_path)


def test_recorded_frames_are_loaded(tmp_path):
    source = RecordedFrameSource(write_recording(tmp_path))
    frames = list(source.frames())

    assert len(source) == 3
    assert source.location.latitude == pytest.approx(37.422)
    assert [f.transform[0, 3] for f in frames] == [0.0, 2.0, 4.0]

    frame = frames[1]
    assert frame.image.shape == (24, 32, 3)
    assert frame.depth_map.dtype == np.float32
    assert frame.depth_map[0, 0] == pytest.approx(1.5)
    assert frame.confidence_map.max() == 2
    assert frame.feature_points.shape == (20, 3)
    assert frame.image_resolution == (WIDTH, HEIGHT)
    assert frame.exif["SubsecTimeOriginal"] == "042"
    assert frame.tracking_normal


def test_limited_tracking_state_is_flagged(tmp_path):
    write_recording(tmp_path, count=1)
    record = json.loads((tmp_path / "frames.jsonl").read_text())
    record["trackingState"] = "limited"
    (tmp_path / "frames.jsonl").write_text(json.dumps(record) + "\n")

    frame = next(RecordedFrameSource(tmp_path).frames())

    assert not frame.tracking_normal


def test_play_pushes_to_subscribers(tmp_path):
    source = RecordedFrameSource(write_recording(tmp_path))
    received = []

    assert source.current_frame is None
    source.subscribe(received.append)
    delivered = source.play()

    assert delivered == 3
    assert [f.timestamp for f in received] == pytest.approx([0.0, 1 / 30.0, 2 / 30.0])
    assert source.current_frame is received[-1]


def test_unsubscribe_stops_delivery(tmp_path):
    source = RecordedFrameSource(write_recording(tmp_path))
    received = []
    source.subscribe(received.append)
    source.unsubscribe(received.append)

    source.play()

    assert received == []
