"""Thin CLI entry point: builds a Manifest and calls the engine."""

import argparse
import subprocess
import sys
from pathlib import Path

from clipsync import ffutil, memguard
from clipsync.analyzers.correlate import MAX_OFFSET_SECONDS
from clipsync.analyzers.dispatch import CorrelationError, WorkerError
from clipsync.editors import graph
from clipsync.engine import process, sync_files
from clipsync.logsetup import setup_logging
from clipsync.manifest import ExportConfig, Manifest, SyncConfig, load_manifest, parse_cuts
from clipsync.models import InvalidCutSegment

# Errors reported as a one-line message instead of a traceback.
USER_ERRORS = (
    memguard.MemoryLimitExceeded,
    ffutil.DecodeError,
    ffutil.FFmpegNotFoundError,
    ffutil.NoAudioStreamError,
    WorkerError,
    CorrelationError,
    InvalidCutSegment,
    graph.NothingToExportError,
    ValueError,
)


def _parse_cut(text: str) -> dict:
    try:
        start, end = text.split("-", 1)
        return {"start": float(start), "end": float(end)}
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid cut {text!r}, expected START-END in seconds") from None


def _add_export_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("video", nargs="?", type=Path, help="Input video file")
    p.add_argument("--manifest", "-m", type=Path, help="Path to a JSON manifest file")
    p.add_argument("--audio", "-a", type=Path, help="External audio file")
    p.add_argument("--output", "-o", type=Path, help="Output file path")
    p.add_argument("--duration", type=float, help="Timeline duration (probed when omitted)")
    p.add_argument("--cut", action="append", default=[], type=_parse_cut, metavar="START-END",
                   help="Region to remove, in seconds (repeatable)")
    p.add_argument("--offset", type=float, help="Manual sync offset in seconds (disables auto-sync)")
    p.add_argument("--format", choices=["mp4", "webm"], default="mp4", help="Output container")
    p.add_argument("--quality", choices=["high", "medium", "low"], default="high", help="Encode quality")
    p.add_argument("--no-external-audio", action="store_true", help="Use the video's own audio")
    p.add_argument("--no-cuts", action="store_true", help="Ignore cuts")
    p.add_argument("--normalize", action="store_true", help="Apply loudness normalization")


def _manifest_from_args(args: argparse.Namespace) -> Manifest:
    if args.manifest:
        return load_manifest(args.manifest)
    if not args.video:
        raise ValueError("provide either a VIDEO argument or --manifest.")

    output = args.output or args.video.with_name(f"{args.video.stem}_edited.{args.format}")
    return Manifest(
        video=args.video,
        output=output,
        audio=args.audio,
        duration=args.duration,
        cuts=parse_cuts(args.cut),
        sync=SyncConfig(auto=args.offset is None, offset=args.offset or 0.0),
        export=ExportConfig(
            format=args.format,
            quality=args.quality,
            include_external_audio=not args.no_external_audio,
            apply_cuts=not args.no_cuts,
            normalize_audio=args.normalize,
        ),
    )


def _cmd_sync(args: argparse.Namespace) -> None:
    result = sync_files(args.video, args.audio, max_offset_seconds=args.max_offset)
    print(f"Offset: {result.offset_seconds:+.3f}s")
    print(f"Confidence: {result.confidence:.0%}")


def _cmd_plan(args: argparse.Namespace) -> None:
    m = _manifest_from_args(args)
    duration = m.duration
    if duration is None:
        duration = ffutil.probe(m.video).duration
    cmd = graph.build_command(
        m.export,
        m.cuts,
        duration,
        m.sync.offset,
        m.audio is not None,
        video_input=str(m.video),
        audio_input=str(m.audio) if m.audio else graph.AUDIO_INPUT,
        output=str(m.output),
    )
    print(" ".join(["ffmpeg", *cmd]))


def _cmd_export(args: argparse.Namespace) -> None:
    m = _manifest_from_args(args)

    def on_progress(stage: str, frac: float) -> None:
        print(f"  [{frac:3.0%}] {stage}")

    result = process(m, on_progress=on_progress)

    print()
    print(f"Done! Output: {result.output_path}")
    print(f"  Duration: {result.duration_original:.1f}s -> {result.duration_final:.1f}s")
    print(f"  Segments kept: {result.segments_kept}")
    if result.sync:
        print(f"  Sync offset: {result.sync.offset_seconds:+.3f}s "
              f"(confidence {result.sync.confidence:.0%})")
    elif result.sync_offset:
        print(f"  Sync offset: {result.sync_offset:+.3f}s (manual)")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="clipsync",
        description="ClipSync: align external audio to video and export edited cuts.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--log-file", type=Path, help="Also write a detailed log to this file")
    sub = parser.add_subparsers(dest="command")

    sync = sub.add_parser("sync", help="Estimate the offset between a video and an audio file")
    sync.add_argument("video", type=Path, help="Reference video file")
    sync.add_argument("audio", type=Path, help="External audio file to align")
    sync.add_argument("--max-offset", type=float, default=MAX_OFFSET_SECONDS,
                      help="Maximum expected drift in seconds")

    plan = sub.add_parser("plan", help="Print the ffmpeg command for an export")
    _add_export_args(plan)

    export = sub.add_parser("export", help="Sync, cut and encode")
    _add_export_args(export)

    serve = sub.add_parser("serve", help="Launch the web API")
    serve.add_argument("--port", type=int, default=8321, help="Port to listen on")
    serve.add_argument("--host", type=str, default="127.0.0.1", help="Host to bind to")

    args = parser.parse_args()
    setup_logging(verbose=args.verbose, log_file=args.log_file)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "serve":
        from clipsync.web import create_app
        app = create_app()
        print(f"ClipSync API: http://{args.host}:{args.port}")
        app.run(host=args.host, port=args.port, debug=False)
        return

    handlers = {"sync": _cmd_sync, "plan": _cmd_plan, "export": _cmd_export}
    try:
        handlers[args.command](args)
    except USER_ERRORS as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except subprocess.CalledProcessError as e:
        stderr = e.stderr if isinstance(e.stderr, str) else (e.stderr or b"").decode(errors="replace")
        print(f"Error: ffmpeg failed: {stderr[-500:] or e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
