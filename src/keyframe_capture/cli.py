"""Command-line interface for the keyframe capture pipeline.

Provides the ``keyframe-capture`` command:

    keyframe-capture replay CAPTURE_DIR --output-root DIR [--archive]
    keyframe-capture patch-gps IMAGE --latitude LAT --longitude LON
"""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import List, Optional

from .errors import CaptureError
from .metadata.exif_patch import patch_gps_coordinates
from .models import ImageResolution, PipelineConfig
from .pipeline import KeyframePipeline
from .source import RecordedFrameSource
from .utils.logging import get_logger, setup_logging

JSON_LOGS_ENV = "KEYFRAME_CAPTURE_JSON_LOGS"


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="keyframe-capture",
        description="Keyframe selection and photogrammetry dataset export",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Replay a recorded capture into a new session directory
    keyframe-capture replay ./recording --output-root ./sessions

    # Replay with custom thresholds and zip the result
    keyframe-capture replay ./recording --output-root ./sessions --config capture.yaml --archive

    # Fix the GPS coordinate of an exported image in place
    keyframe-capture patch-gps ./sessions/2024-05-01-10-00-00/Image_000003.jpg --latitude 37.422 --longitude -122.084
        """,
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help=f"Emit JSON log records (also enabled by {JSON_LOGS_ENV}=1)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    replay = subparsers.add_parser("replay", help="Run a recorded capture through the pipeline")
    replay.add_argument("capture_dir", type=Path, help="Recorded capture directory (frames.jsonl, images/, ...)")
    replay.add_argument("--output-root", type=Path, required=True, help="Directory receiving the session")
    replay.add_argument("--config", type=Path, help="Pipeline configuration (YAML or JSON)")
    replay.add_argument(
        "--resolution",
        choices=[r.value for r in ImageResolution],
        help="Export resolution tier (overrides the configuration)",
    )
    replay.add_argument("--archive", action="store_true", help="Zip the session and remove the directory")
    replay.add_argument("--rtk", action="store_true", help="Treat the recorded location as an RTK fix")

    patch = subparsers.add_parser("patch-gps", help="Overwrite the GPS coordinate of a written JPEG")
    patch.add_argument("image", type=Path, help="JPEG written by the pipeline")
    patch.add_argument("--latitude", type=float, required=True)
    patch.add_argument("--longitude", type=float, required=True)

    return parser


def _json_logs_enabled(args: argparse.Namespace) -> bool:
    return args.json_logs or os.environ.get(JSON_LOGS_ENV, "").lower() in ("1", "true", "yes")


def _configure_logging(args: argparse.Namespace, session_id: Optional[str] = None) -> None:
    setup_logging(
        level=logging.DEBUG if args.verbose else logging.INFO,
        session_id=session_id,
        json_logs=_json_logs_enabled(args),
    )


def replay(args: argparse.Namespace) -> int:
    """Replay a recorded capture and print a JSON summary."""
    logger = get_logger("cli")

    config = PipelineConfig.from_file(args.config) if args.config else PipelineConfig()
    if args.resolution:
        config.export_resolution = args.resolution

    try:
        source = RecordedFrameSource(args.capture_dir)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Cannot read recording: {e}")
        return 1

    pipeline = KeyframePipeline(args.output_root, config=config)
    session = pipeline.start(is_rtk=args.rtk)
    _configure_logging(args, session_id=session.name)
    if source.location is not None:
        if args.rtk:
            pipeline.update_location(gps=source.location, rtk=source.location)
        else:
            pipeline.update_location(gps=source.location)

    start_time = time.time()
    source.subscribe(pipeline.handle_frame)
    delivered = source.play()

    def progress_callback(ratio: float) -> None:
        logger.debug(f"Archive progress {ratio:.1%}")

    try:
        output = pipeline.finalize(archive=args.archive, on_progress=progress_callback)
    except CaptureError as e:
        logger.error(f"Failed to finalize session {session.name}: {e}")
        return 1

    report = pipeline.stats
    summary = {
        "session": session.name,
        "output": str(output),
        "frames_delivered": delivered,
        "frames_processed": len(pipeline.results),
        "frames_exported": report["frames_exported"],
        "frames_failed": report["frames_failed"],
        "frames_dropped": report["frames_dropped"],
        "duration_seconds": round(time.time() - start_time, 3),
        "errors": [e for r in pipeline.results for e in r.errors],
    }
    print(json.dumps(summary, indent=2))
    return 0 if report["frames_failed"] == 0 else 1


def patch_gps(args: argparse.Namespace) -> int:
    """Patch the GPS coordinate of an existing image."""
    logger = get_logger("cli")
    if not args.image.exists():
        logger.error(f"Image not found: {args.image}")
        return 1

    try:
        offsets = patch_gps_coordinates(args.image, args.latitude, args.longitude)
    except CaptureError as e:
        logger.error(f"Failed to patch {args.image}: {e}")
        return 1

    print(json.dumps({
        "image": str(args.image),
        "latitude_offset": offsets.latitude_offset,
        "longitude_offset": offsets.longitude_offset,
    }, indent=2))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args)

    if args.command == "replay":
        return replay(args)
    if args.command == "patch-gps":
        return patch_gps(args)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
