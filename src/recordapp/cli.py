from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
import sys

from recordapp.capture import CaptureRequest, RecordingMode, RecordingSupervisor
from recordapp.config import AppConfig, default_config, load_config
from recordapp.encoder import encoder_available, require_encoder
from recordapp.utils.logging_utils import configure_logging


logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="recordapp")
    parser.add_argument("--config", default=None, help="Path to YAML config (default: built-in defaults)")
    parser.add_argument("--out-dir", default=None, help="Override the output directory")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("serve", help="Poll the remote command feed and record on demand")

    record = sub.add_parser("record", help="Record the screen, an audio device, or both")
    record.add_argument("mode", choices=[m.value for m in RecordingMode], help="What to record")
    record.add_argument("--duration", type=int, default=0, help="Seconds to record (0 = until Ctrl+C)")
    record.add_argument("--quality", default="medium", help="low, medium or high")
    record.add_argument(
        "--audio-quality",
        default=None,
        help="Audio quality for combined recordings (accepted, currently fixed at 128k AAC)",
    )
    record.add_argument("--device", default=None, help="Audio input device (default: first detected)")

    sub.add_parser("screenshot", help="Capture a single frame of the desktop")

    devices = sub.add_parser("devices", help="List audio input devices")
    devices.add_argument("--json", action="store_true", help="Emit machine-readable JSON")

    sub.add_parser("check", help="Check that the encoder binary is runnable")

    return parser


def _load(args: argparse.Namespace) -> AppConfig:
    out_dir = Path(args.out_dir).expanduser().resolve() if args.out_dir else None
    if args.config:
        config = load_config(args.config)
        if out_dir is not None:
            config.output_dir = out_dir
            config.output_dir.mkdir(parents=True, exist_ok=True)
    else:
        config = default_config(out_dir)
    configure_logging(config.log_level, config.log_file)
    return config


def _cmd_serve(config: AppConfig) -> int:
    from recordapp.service import CommandService

    service = CommandService(config)
    service.start()
    try:
        while not service.join(timeout=0.5):
            pass
    except KeyboardInterrupt:
        logger.info("interrupt received, shutting down")
        service.stop()
    if service.error is not None:
        raise service.error
    return 0


def _cmd_record(config: AppConfig, args: argparse.Namespace) -> int:
    supervisor = RecordingSupervisor.from_config(config)
    mode = RecordingMode(args.mode)

    device = args.device or config.remote.audio_device
    if mode is not RecordingMode.SCREEN and not device:
        detected = supervisor.list_audio_devices()
        if not detected:
            print("error: no audio input device found", file=sys.stderr)
            return 1
        device = detected[0]

    request = CaptureRequest(
        mode=mode,
        duration_seconds=args.duration,
        quality=args.quality,
        audio_quality=args.audio_quality,
        device=device if mode is not RecordingMode.SCREEN else None,
    )
    out_path = supervisor.start(request)
    if not request.indefinite:
        print(str(out_path))
        return 0

    print(f"Recording to {out_path}; press Ctrl+C to stop.")
    try:
        while not supervisor.wait_for_exit(timeout=0.5):
            pass
    except KeyboardInterrupt:
        pass
    final = supervisor.stop()
    print(str(final or out_path))
    return 0


def _cmd_screenshot(config: AppConfig) -> int:
    supervisor = RecordingSupervisor.from_config(config)
    print(str(supervisor.screenshot()))
    return 0


def _cmd_devices(config: AppConfig, args: argparse.Namespace) -> int:
    supervisor = RecordingSupervisor.from_config(config)
    devices = supervisor.list_audio_devices()

    if args.json:
        print(json.dumps({"audio": devices}, indent=2))
        return 0

    if not devices:
        print("No audio devices found.")
        return 0
    print("Audio devices:")
    for name in devices:
        print(f"  {name}")
    return 0


def _cmd_check(config: AppConfig) -> int:
    if encoder_available(config.encoder.path):
        print(f"{require_encoder(config.encoder.path)}: available")
        return 0
    print(f"{config.encoder.path}: not available", file=sys.stderr)
    return 1


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        config = _load(args)
        if args.command == "serve":
            return _cmd_serve(config)
        if args.command == "record":
            return _cmd_record(config, args)
        if args.command == "screenshot":
            return _cmd_screenshot(config)
        if args.command == "devices":
            return _cmd_devices(config, args)
        if args.command == "check":
            return _cmd_check(config)

        parser.error(f"unknown command: {args.command}")
        return 2
    except Exception as exc:
        logger.exception("fatal error")
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
