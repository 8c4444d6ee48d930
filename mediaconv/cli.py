"""
Command-line interface for mediaconv.

Thin wrapper over :class:`~mediaconv.manager.MediaManager`: each subcommand
selects the input file, runs one preset and prints the result.
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence

from .config import load_config
from .errors import MediaError
from .manager import MediaManager
from .video.media_file import WATERMARK_POSITIONS

logger = logging.getLogger("mediaconv")


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(prog="mediaconv", description="Probe and convert media files with ffmpeg.")
    parser.add_argument("--ffmpeg", type=str, default=None, help="Path to the ffmpeg executable.")
    parser.add_argument("--config", type=str, default=None, help="YAML configuration file.")
    parser.add_argument(
        "--log-level", type=str, default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set the logging level.",
    )
    parser.add_argument("--quiet", action="store_true", help="Do not print progress.")

    sub = parser.add_subparsers(dest="command", required=True)

    probe = sub.add_parser("probe", help="Print the metadata of a media file.")
    probe.add_argument("file")
    probe.add_argument("--json", action="store_true", help="Print the full metadata as JSON.")

    audio = sub.add_parser("audio", help="Extract the audio track to MP3.")
    audio.add_argument("file")
    audio.add_argument("destination")

    frames = sub.add_parser("frames", help="Extract frames as JPEG images.")
    frames.add_argument("file")
    frames.add_argument("folder")
    frames.add_argument("--size", type=str, default=None, help='Frame size, e.g. "640x?" or "50%%".')
    frames.add_argument("--start-time", type=str, default=None, help="Start time as hh:mm:ss.")
    frames.add_argument("--duration-time", type=str, default=None, help="Duration as hh:mm:ss.")
    frames.add_argument("--frame-rate", type=float, default=None)
    frames.add_argument("--file-name", type=str, default=None, help="Name template (%%t %%s %%x %%y).")
    sampling = frames.add_mutually_exclusive_group()
    sampling.add_argument("--number", type=int, default=None, help="Total number of frames.")
    sampling.add_argument("--every-n-frames", type=int, default=None)
    sampling.add_argument("--every-n-seconds", type=float, default=None)
    sampling.add_argument("--every-n-percentage", type=float, default=None)
    frames.add_argument("--no-keep-aspect-ratio", action="store_true")
    frames.add_argument("--padding-color", type=str, default="black")

    watermark = sub.add_parser("watermark", help="Overlay an image on a video.")
    watermark.add_argument("file")
    watermark.add_argument("image")
    watermark.add_argument("--output", type=str, default=None)
    watermark.add_argument("--position", type=str, default="SW", choices=WATERMARK_POSITIONS)
    for side in ("nord", "sud", "east", "west"):
        watermark.add_argument(f"--margin-{side}", type=int, default=None)

    return parser


def _progress_printer(quiet: bool):
    if quiet:
        return None

    def report(percent: float) -> None:
        print(f"\r{percent:6.2f}%", end="", file=sys.stderr, flush=True)

    return report


def _frame_settings(args: argparse.Namespace) -> dict:
    settings = {
        "size": args.size,
        "start_time": args.start_time,
        "duration_time": args.duration_time,
        "frame_rate": args.frame_rate,
        "file_name": args.file_name,
        "number": args.number,
        "every_n_frames": args.every_n_frames,
        "every_n_seconds": args.every_n_seconds,
        "every_n_percentage": args.every_n_percentage,
        "keep_aspect_ratio": not args.no_keep_aspect_ratio,
        "padding_color": args.padding_color,
    }
    return {key: value for key, value in settings.items() if value is not None}


async def run(args: argparse.Namespace) -> int:
    """Execute the parsed command. Returns the process exit code."""
    manager = MediaManager(load_config(args.config, binary=args.ffmpeg))
    media = await manager.select_input_file(args.file)
    progress = _progress_printer(args.quiet)

    if args.command == "probe":
        if args.json:
            print(media.metadata.model_dump_json(indent=2))
        else:
            print(media.metadata.to_analysis_string())
        return 0

    if args.command == "audio":
        result = await manager.extract_audio_to_mp3(args.destination, progress)
        outputs = [result]
    elif args.command == "frames":
        outputs = await manager.extract_frames_to_jpg(args.folder, _frame_settings(args), progress)
    else:
        settings = {"position": args.position}
        for side in ("nord", "sud", "east", "west"):
            value = getattr(args, f"margin_{side}")
            if value is not None:
                settings[f"margin_{side}"] = value
        result = await manager.add_watermark(args.image, args.output, settings, progress)
        outputs = [result]

    if progress is not None:
        print(file=sys.stderr)
    for output in outputs:
        print(output)
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return asyncio.run(run(args))
    except MediaError as exc:
        logger.debug("Command failed", exc_info=True)
        print(f"{exc.code}: {exc.message}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
