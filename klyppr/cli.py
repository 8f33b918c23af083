"""Thin CLI entry point: builds a Manifest and runs a job."""

import argparse
import sys
import threading
from pathlib import Path

from klyppr import ffutil
from klyppr.editors.encoders import QUALITY_SETTINGS, EncoderPolicy
from klyppr.engine import JobController
from klyppr.logging_config import configure_logging
from klyppr.manifest import Manifest, SilenceCutConfig, load_manifest
from klyppr.models import ProgressSample


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="klyppr",
        description="Klyppr: remove silent stretches from videos.",
    )
    parser.add_argument("--log-level", type=str, default=None, help="Logging level (default: INFO)")
    sub = parser.add_subparsers(dest="command")

    proc = sub.add_parser("process", help="Process a video file")
    proc.add_argument("video", nargs="?", type=Path, help="Input video file")
    proc.add_argument("--manifest", "-m", type=Path, help="Path to a JSON manifest file")
    proc.add_argument("--output", "-o", type=Path, help="Output file path")
    proc.add_argument("--silence-threshold", type=float, default=-35.0, help="Silence threshold in dB")
    proc.add_argument("--silence-min-duration", type=float, default=0.5, help="Minimum silence duration (seconds)")
    proc.add_argument("--padding", type=float, default=0.05, help="Padding kept around speech (seconds)")
    proc.add_argument("--quality", choices=list(QUALITY_SETTINGS), default="medium", help="Encoding quality preset")
    proc.add_argument("--normalize", action="store_true", help="Normalize loudness to -16 LUFS")
    proc.add_argument("--no-hardware", action="store_true", help="Never use a hardware video encoder")
    proc.add_argument("--threads", type=int, default=None, help="Encoder thread count")

    serve = sub.add_parser("serve", help="Launch the web UI")
    serve.add_argument("--port", type=int, default=8321, help="Port to listen on")
    serve.add_argument("--host", type=str, default="127.0.0.1", help="Host to bind to")
    return parser


def manifest_from_args(args: argparse.Namespace) -> Manifest:
    if args.manifest:
        return load_manifest(args.manifest)
    output = args.output or args.video.with_stem(args.video.stem + "_trimmed")
    return Manifest(
        input=args.video,
        output=output,
        silence_cut=SilenceCutConfig(
            threshold_db=args.silence_threshold,
            min_duration=args.silence_min_duration,
            padding=args.padding,
        ),
        quality=args.quality,
        normalize_audio=args.normalize,
        use_hardware_encoder=not args.no_hardware,
        threads=args.threads,
    )


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    try:
        ffutil.check_ffmpeg()
    except ffutil.FFmpegNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.command == "serve":
        from klyppr.web import create_app
        app = create_app()
        print(f"Klyppr web UI: http://{args.host}:{args.port}")
        app.run(host=args.host, port=args.port, debug=False, threaded=True)
        return

    if not args.manifest and not args.video:
        print("Error: provide either a VIDEO argument or --manifest.", file=sys.stderr)
        sys.exit(1)

    try:
        manifest = manifest_from_args(args)
    except (ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    controller = JobController(encoder_policy=EncoderPolicy.detect())

    def on_progress(sample: ProgressSample) -> None:
        eta = f" ETA {sample.eta:.0f}s" if sample.eta else ""
        print(f"\r  [{sample.percent:5.1f}%] {sample.status}{eta}\033[K", end="", flush=True)

    outcome = {}

    def work() -> None:
        outcome["result"] = controller.run(manifest, on_progress=on_progress)

    # The job runs on a worker so Ctrl-C on the main thread can cancel it.
    worker = threading.Thread(target=work, daemon=True)
    worker.start()
    try:
        while worker.is_alive():
            worker.join(0.2)
    except KeyboardInterrupt:
        controller.cancel()
        worker.join()
    print()

    if "result" not in outcome:
        print("Error: job did not complete", file=sys.stderr)
        sys.exit(1)
    result = outcome["result"]

    if result.cancelled:
        print("Cancelled.", file=sys.stderr)
        sys.exit(130)
    if not result.success:
        print(f"Error: {result.error}", file=sys.stderr)
        sys.exit(1)

    print(f"Done! Output: {result.output_path}")
    print(f"  Duration: {result.duration_original:.1f}s -> {result.duration_final:.1f}s")
    if result.segments_removed:
        print(f"  Silent segments removed: {result.segments_removed}")
