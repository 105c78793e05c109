import json
import logging
import zipfile

import piexif
import pytest

from keyframe_capture.cli import build_parser, main
from keyframe_capture.metadata.exif_patch import degrees_to_rational
from test_source import write_recording


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    logging.getLogger("keyframe_capture").handlers.clear()


def _summary(capsys) -> dict:
    out = capsys.readouterr().out
    return json.loads(out[out.index("{"):out.rindex("}") + 1])


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_replay_exports_session(tmp_path, capsys):
    recording = write_recording(tmp_path / "recording", count=3)
    output_root = tmp_path / "sessions"

    code = main(["replay", str(recording), "--output-root", str(output_root)])

    summary = _summary(capsys)
    assert code == 0
    assert summary["frames_delivered"] == 3
    assert summary["frames_exported"] == 3
    assert summary["frames_dropped"] == 0
    session_dir = output_root / summary["session"]
    assert (session_dir / "manifest.json").exists()
    assert (session_dir / "Image_000002.jpg").exists()


def test_replay_drops_static_frames(tmp_path, capsys):
    recording = write_recording(tmp_path / "recording", count=4, step=0.0)

    code = main(["replay", str(recording), "--output-root", str(tmp_path / "sessions")])

    summary = _summary(capsys)
    assert code == 0
    assert summary["frames_exported"] == 1
    assert summary["frames_dropped"] == 3


def test_replay_with_archive(tmp_path, capsys):
    recording = write_recording(tmp_path / "recording", count=2)
    output_root = tmp_path / "sessions"

    code = main(["replay", str(recording), "--output-root", str(output_root), "--archive"])

    summary = _summary(capsys)
    assert code == 0
    assert summary["output"].endswith(".zip")
    with zipfile.ZipFile(summary["output"]) as zf:
        assert "Image_000001.jpg" in zf.namelist()


def test_replay_missing_recording(tmp_path):
    assert main(["replay", str(tmp_path / "nope"), "--output-root", str(tmp_path / "out")]) == 1


def test_patch_gps_command(tmp_path, capsys):
    recording = write_recording(tmp_path / "recording", count=1)
    output_root = tmp_path / "sessions"
    main(["replay", str(recording), "--output-root", str(output_root)])
    session = _summary(capsys)["session"]
    image = output_root / session / "Image_000000.jpg"

    code = main(["patch-gps", str(image), "--latitude", "46.5191", "--longitude", "6.5668"])

    assert code == 0
    result = _summary(capsys)
    assert result["latitude_offset"] > 0
    gps = piexif.load(str(image))["GPS"]
    assert gps[piexif.GPSIFD.GPSLatitude] == degrees_to_rational(46.5191)


def test_patch_gps_command_flips_hemisphere(tmp_path, capsys):
    recording = write_recording(tmp_path / "recording", count=1)
    output_root = tmp_path / "sessions"
    main(["replay", str(recording), "--output-root", str(output_root)])
    image = output_root / _summary(capsys)["session"] / "Image_000000.jpg"

    code = main(["patch-gps", str(image), "--latitude", "-33.8568", "--longitude", "151.2153"])

    assert code == 0
    gps = piexif.load(str(image))["GPS"]
    assert gps[piexif.GPSIFD.GPSLatitudeRef] == b"S"
    assert gps[piexif.GPSIFD.GPSLongitudeRef] == b"E"


def test_json_logs_carry_session_name(tmp_path, capsys):
    recording = write_recording(tmp_path / "recording", count=2)
    output_root = tmp_path / "sessions"

    code = main(["--json-logs", "replay", str(recording), "--output-root", str(output_root)])

    assert code == 0
    session_name = next(output_root.iterdir()).name
    records = [json.loads(line) for line in capsys.readouterr().out.splitlines() if line.startswith('{"severity"')]
    manifest_logs = [r for r in records if r["message"].startswith("Wrote manifest")]
    assert manifest_logs
    assert all(r["session_id"] == session_name for r in manifest_logs)
