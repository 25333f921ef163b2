import argparse
import json
import logging
import sys
import threading
from pathlib import Path

import uvicorn

from carevision.errors import CameraAccessDenied, CareVisionError, InferenceError
from carevision.ingest.camera import WebcamSource
from carevision.models import AppStatus
from carevision.presentation import render_text
from carevision.session import MonitoringSession
from carevision.settings import (
    get_api_host,
    get_api_port,
    get_camera_device,
    get_camera_warmup_seconds,
    get_log_level,
)
from carevision.vlm.client import CareVisionClient

logger = logging.getLogger(__name__)

_MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
}


def _guess_mime_type(path):
    return _MIME_TYPES.get(path.suffix.lower(), "image/jpeg")


def _print_json(payload):
    print(json.dumps(payload, ensure_ascii=True, indent=2))


def cmd_serve(args):
    uvicorn.run("carevision.api:app", host=args.host, port=args.port, log_level=get_log_level().lower())
    return 0


def cmd_analyze(args):
    path = Path(args.image)
    if not path.is_file():
        print(f"Image not found: {path}", file=sys.stderr)
        return 1
    client = CareVisionClient()
    try:
        report = client.generate_report(path.read_bytes(), _guess_mime_type(path))
    except InferenceError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    if args.json:
        _print_json(report.model_dump(mode="json", by_alias=True))
        return 0
    print(f"Alert: {report.alert_status.value}")
    print(f"Emotion: {report.emotion.value}")
    print(f"Motion: {report.motion.value}")
    print(f"Summary: {report.summary}")
    print(f"Recommendation: {report.recommendation}")
    return 0


def cmd_watch(args):
    device = get_camera_device() if args.device is None else args.device
    device = int(device) if isinstance(device, str) and device.isdigit() else device
    session = MonitoringSession(
        client=CareVisionClient(),
        camera_factory=lambda: WebcamSource(device=device, warmup_seconds=get_camera_warmup_seconds()),
        interval_seconds=args.interval,
    )
    halted = threading.Event()

    def on_change(state):
        print("\n" + render_text(state), flush=True)
        if state.status == AppStatus.ERROR:
            halted.set()

    session.subscribe(on_change)
    print(f"Watching camera {device!r}. Press Ctrl+C to stop.")
    try:
        session.start()
    except CameraAccessDenied:
        return 1
    try:
        halted.wait()
    except KeyboardInterrupt:
        print("\nStopped.")
    finally:
        session.close()
    return 1 if halted.is_set() else 0


def build_parser():
    parser = argparse.ArgumentParser(
        description="CareVision patient monitoring: periodic camera analysis with a hosted vision-language model."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the web dashboard.")
    serve.add_argument("--host", default=get_api_host(), help="Bind address.")
    serve.add_argument("--port", type=int, default=get_api_port(), help="Bind port.")
    serve.set_defaults(func=cmd_serve)

    watch = subparsers.add_parser("watch", help="Monitor a camera and print each report in the terminal.")
    watch.add_argument("--device", default=None, help="Camera index, file path or stream URL.")
    watch.add_argument("--interval", type=float, default=None, help="Seconds between analyses.")
    watch.set_defaults(func=cmd_watch)

    analyze = subparsers.add_parser("analyze", help="Produce a single report for an image file.")
    analyze.add_argument("image", help="Path to a JPEG/PNG image.")
    analyze.add_argument("--json", action="store_true", help="Print raw JSON.")
    analyze.set_defaults(func=cmd_analyze)

    return parser


def main(argv=None):
    logging.basicConfig(
        level=get_log_level(),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except CareVisionError as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
