import json
import zipfile
from datetime import datetime

import pytest

from conftest import make_frame
from keyframe_capture.errors import SessionError
from keyframe_capture.export.jpeg import JpegImage
from keyframe_capture.frames import FrameMetadata
from keyframe_capture.session import CaptureSession

CREATED_AT = datetime(2024, 5, 1, 10, 30, 15)


def _add_frame(session: CaptureSession, index: int, location=None) -> FrameMetadata:
    metadata = FrameMetadata.from_frame(make_frame(float(index)), index=index, gps_location=location)
    (session.path / metadata.image_name).write_bytes(b"\xff\xd8" + bytes(2048) + b"\xff\xd9")
    (session.path / metadata.depth_map_image_name).write_bytes(bytes(4096))
    (session.path / metadata.confidence_map_image_name).write_bytes(bytes(1024))
    session.add(metadata, JpegImage(session.path / metadata.image_name, capture_id=metadata.id))
    return metadata


def test_session_directory_is_timestamp_named(storage_root):
    session = CaptureSession(storage_root, created_at=CREATED_AT)

    assert session.name == "2024-05-01-10-30-15"
    assert session.path == storage_root / "2024-05-01-10-30-15"
    assert session.exists


def test_manifest_lists_inputs_in_order(storage_root):
    session = CaptureSession(storage_root, created_at=CREATED_AT)
    for i in range(3):
        _add_frame(session, i)

    path = session.write_manifest()

    data = json.loads(path.read_text())
    assert data["log_files"] == []
    assert data["inputs"] == [
        {
            "depth_map": f"DepthMap_{i:06d}.tiff",
            "photo": f"Image_{i:06d}.jpg",
            "depth_map_confidence": f"Confidence_{i:06d}.tiff",
        }
        for i in range(3)
    ]


def test_located_frames_are_logged(storage_root, location):
    session = CaptureSession(storage_root, created_at=CREATED_AT)
    _add_frame(session, 0, location)
    _add_frame(session, 1, location)

    log = session.path / "_gps" / "locations.jsonl"
    records = [json.loads(line) for line in log.read_text().splitlines()]

    assert [r["photo"] for r in records] == ["Image_000000.jpg", "Image_000001.jpg"]
    assert records[0]["latitude"] == pytest.approx(37.422)
    assert session.manifest.log_files == ["_gps/locations.jsonl"]


def test_write_manifest_requires_directory(storage_root):
    session = CaptureSession(storage_root, created_at=CREATED_AT)
    session.clear()

    with pytest.raises(SessionError):
        session.write_manifest()


def test_archive_with_progress(storage_root):
    session = CaptureSession(storage_root, created_at=CREATED_AT)
    for i in range(4):
        _add_frame(session, i)
    session.write_manifest()
    progress = []

    archive = session.archive_with_progress(progress.append, progress_step=0.001, chunk_size=512)

    assert archive == storage_root / "2024-05-01-10-30-15.zip"
    assert not session.exists
    assert progress[-1] == 1.0
    assert progress == sorted(progress)
    assert all(b - a >= 0.001 for a, b in zip(progress, progress[:-1][1:]))
    with zipfile.ZipFile(archive) as zf:
        names = set(zf.namelist())
    # Top-level folder is flattened
    assert "manifest.json" in names
    assert "Image_000003.jpg" in names
    assert not any(name.startswith(session.name) for name in names)


def test_archive_with_progress_replaces_existing(storage_root):
    session = CaptureSession(storage_root, created_at=CREATED_AT)
    _add_frame(session, 0)
    stale = storage_root / f"{session.name}.zip"
    stale.write_bytes(b"stale")

    archive = session.archive_with_progress()

    assert zipfile.is_zipfile(archive)


def test_archive_of_empty_session_reports_completion(storage_root):
    session = CaptureSession(storage_root, created_at=CREATED_AT)
    progress = []

    session.archive_with_progress(progress.append)

    assert progress == [1.0]


def test_archive_requires_directory(storage_root):
    session = CaptureSession(storage_root, created_at=CREATED_AT)
    session.clear()

    with pytest.raises(SessionError):
        session.archive_with_progress()
    with pytest.raises(SessionError):
        session.archive()


def test_archive_refuses_to_overwrite(storage_root):
    session = CaptureSession(storage_root, created_at=CREATED_AT)
    _add_frame(session, 0)
    (storage_root / f"{session.name}-save.zip").write_bytes(b"existing")

    with pytest.raises(SessionError):
        session.archive()
    assert session.exists


def test_archive_saves_copy(storage_root):
    session = CaptureSession(storage_root, created_at=CREATED_AT)
    _add_frame(session, 0)

    archive = session.archive()

    assert archive.name == "2024-05-01-10-30-15-save.zip"
    assert not session.exists
    with zipfile.ZipFile(archive) as zf:
        assert "Image_000000.jpg" in zf.namelist()


def test_duplicate_archive_name_is_case_insensitive(storage_root):
    session = CaptureSession(storage_root, created_at=CREATED_AT)
    (storage_root / "Site-A.zip").write_bytes(b"")

    assert session.is_duplicate_archive_name("site-a")
    assert session.is_duplicate_archive_name("SITE-A.ZIP")
    assert not session.is_duplicate_archive_name("site-b")


def test_clear_removes_directory(storage_root):
    session = CaptureSession(storage_root, created_at=CREATED_AT)
    _add_frame(session, 0)

    session.clear()

    assert not session.exists
