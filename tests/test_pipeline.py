import json
import threading
import zipfile

import numpy as np
import pytest
from PIL import Image

from conftest import make_frame
from keyframe_capture.errors import SessionError
from keyframe_capture.models import ImageResolution, LocationModel, PipelineConfig
from keyframe_capture.pipeline import KeyframePipeline, PipelineState


@pytest.fixture
def pipeline(storage_root, config):
    pipeline = KeyframePipeline(storage_root, config=config)
    yield pipeline
    if pipeline.session is not None:
        pipeline.discard()


def _walk(pipeline: KeyframePipeline, count: int, step: float = 2.0):
    return [pipeline.handle_frame(make_frame(float(i), x=i * step)) for i in range(count)]


def test_pipeline_starts_idle(pipeline):
    assert pipeline.state == PipelineState.IDLE
    assert pipeline.handle_frame(make_frame(0.0)) is None


def test_start_applies_operating_threshold(pipeline):
    session = pipeline.start()

    assert pipeline.state == PipelineState.ACTIVE
    assert session.overlap_rate == 0.9
    assert session.image_resolution == ImageResolution.MAXIMUM


def test_admitted_frames_are_exported_in_order(pipeline):
    session = pipeline.start()

    indices = _walk(pipeline, 3)
    assert pipeline.wait_for_drain(timeout=30)

    assert indices == [0, 1, 2]
    assert [m.image_name for m in session.frames] == [
        "Image_000000.jpg",
        "Image_000001.jpg",
        "Image_000002.jpg",
    ]
    for name in ("Image_000002.jpg", "DepthMap_000002.tiff", "Confidence_000002.tiff"):
        assert (session.path / name).exists()


def test_session_owns_the_admission_snapshot(pipeline):
    session = pipeline.start()

    _walk(pipeline, 2)
    assert pipeline.wait_for_drain(timeout=30)

    last = pipeline.context.last_frame
    assert session.frames[-1] is last
    assert last.index == 1
    assert [r.frame_id for r in pipeline.results] == [m.id for m in session.frames]


def test_overlapping_frame_is_dropped(pipeline):
    pipeline.start()

    first = pipeline.handle_frame(make_frame(0.0))
    duplicate = pipeline.handle_frame(make_frame(1.0, x=0.01))
    moved = pipeline.handle_frame(make_frame(2.0, x=2.0))
    pipeline.wait_for_drain(timeout=30)

    assert (first, duplicate, moved) == (0, None, 1)
    assert pipeline.stats["frames_dropped"] == 1


def test_limited_tracking_is_ignored(pipeline):
    pipeline.start()

    assert pipeline.handle_frame(make_frame(0.0, tracking_normal=False)) is None
    assert pipeline.handle_frame(make_frame(1.0)) == 0


def test_failed_artifact_does_not_stop_the_queue(storage_root, config):
    errors = []
    pipeline = KeyframePipeline(storage_root, config=config, on_file_error=errors.append)
    session = pipeline.start()

    pipeline.handle_frame(make_frame(0.0, with_confidence=False))
    pipeline.handle_frame(make_frame(1.0, x=2.0))
    pipeline.finalize()

    assert [r.success for r in pipeline.results] == [False, True]
    assert len(errors) == 1
    assert (session.path / "Image_000001.jpg").exists()


def test_finalize_writes_manifest_and_closes(pipeline):
    session = pipeline.start()
    _walk(pipeline, 2)

    path = pipeline.finalize()

    assert path == session.path
    manifest = json.loads((session.path / "manifest.json").read_text())
    assert [e["photo"] for e in manifest["inputs"]] == ["Image_000000.jpg", "Image_000001.jpg"]
    assert pipeline.state == PipelineState.CLOSED
    assert pipeline.handle_frame(make_frame(10.0, x=50.0)) is None


def test_finalize_with_archive(pipeline):
    session = pipeline.start()
    _walk(pipeline, 2)
    progress = []

    archive = pipeline.finalize(archive=True, on_progress=progress.append)

    assert archive.suffix == ".zip"
    assert not session.exists
    assert progress[-1] == 1.0
    with zipfile.ZipFile(archive) as zf:
        assert "manifest.json" in zf.namelist()


def test_stop_keeps_directory(pipeline):
    session = pipeline.start()
    _walk(pipeline, 1)

    pipeline.stop()

    assert session.exists
    assert (session.path / "manifest.json").exists()


def test_discard_removes_directory(pipeline):
    session = pipeline.start()
    _walk(pipeline, 2)

    pipeline.discard()

    assert not session.exists
    assert pipeline.state == PipelineState.CLOSED


def test_restart_clears_previous_session(pipeline):
    first = pipeline.start()
    _walk(pipeline, 1)
    pipeline.wait_for_drain(timeout=30)

    second = pipeline.start()

    assert pipeline.session is second
    assert not (first.path / "Image_000000.jpg").exists()
    assert pipeline.handle_frame(make_frame(5.0)) == 0


def test_closed_pipeline_cannot_start(pipeline):
    pipeline.start()
    pipeline.stop()

    with pytest.raises(SessionError):
        pipeline.start()
    with pytest.raises(SessionError):
        pipeline.finalize()


def test_location_is_attached_to_admitted_frames(pipeline):
    session = pipeline.start()
    pipeline.update_location(gps=LocationModel.from_coordinates(37.422, -122.084, 10.0))

    _walk(pipeline, 2)
    pipeline.finalize()

    assert all(m.location.latitude == pytest.approx(37.422) for m in session.frames)
    assert (session.path / "_gps" / "locations.jsonl").exists()


def test_high_resolution_provider_replaces_image(storage_root):
    calls = []

    def provider(frame):
        calls.append(frame.timestamp)
        frame.image = np.zeros((96, 128, 3), dtype=np.uint8)
        return frame

    pipeline = KeyframePipeline(storage_root, high_resolution_provider=provider)
    session = pipeline.start()
    _walk(pipeline, 2)
    pipeline.finalize()

    assert calls == [0.0, 1.0]
    with Image.open(session.path / "Image_000001.jpg") as image:
        assert image.size == (128, 96)


def test_high_resolution_provider_skipped_below_maximum(storage_root):
    calls = []
    config = PipelineConfig(export_resolution="low")
    pipeline = KeyframePipeline(storage_root, config=config, high_resolution_provider=calls.append)
    pipeline.start()
    _walk(pipeline, 2)
    pipeline.finalize()

    assert calls == []


def test_only_one_entry_is_exported_at_a_time(storage_root, config):
    active = []
    peak = []
    lock = threading.Lock()
    pipeline = KeyframePipeline(storage_root, config=config)
    export = pipeline.exporter.export

    def tracking_export(session, entry):
        with lock:
            active.append(entry.index)
            peak.append(len(active))
        try:
            return export(session, entry)
        finally:
            with lock:
                active.remove(entry.index)

    pipeline.exporter.export = tracking_export
    pipeline.start()
    _walk(pipeline, 6)
    pipeline.finalize()

    assert max(peak) == 1
    assert [r.index for r in pipeline.results] == list(range(6))
