"""Ready-made conversions: audio to MP3, frames to JPEG, watermarking.

Each preset works on a fresh clone of the given :class:`MediaFile`, so the
caller's descriptor is never modified, and returns the running
:class:`Conversion`.
"""

import glob
import logging
import os
import re
import time
from pathlib import Path
from typing import Any, Mapping, Optional

from .config import ToolContext
from .errors import raise_error
from .executor.command_builder import CommandBuilder, build_select
from .executor.process_manager import Conversion
from .utils import make_dirs, merge_options, to_number
from .video.media_file import DimensionResult, MediaFile

logger = logging.getLogger("mediaconv")

MP3_FREQUENCY = 44100
MP3_CHANNELS = 2
MP3_BITRATE = 192

FRAME_DEFAULTS: dict[str, Any] = {
    "start_time": None,
    "duration_time": None,
    "frame_rate": None,
    "size": None,
    "number": None,
    "every_n_frames": None,
    "every_n_seconds": None,
    "every_n_percentage": None,
    "keep_pixel_aspect_ratio": True,
    "keep_aspect_ratio": True,
    "padding_color": "black",
    "file_name": None,
}

SAMPLING_MODES = ("number", "every_n_frames", "every_n_seconds", "every_n_percentage")

_NAME_TOKEN_RE = re.compile(r"%([a-zA-Z])")
_FRAME_INDEX_RE = re.compile(r"_(\d+)\.jpg$")


async def extract_sound_to_mp3(media: MediaFile, destination: str | Path,
                               context: Optional[ToolContext] = None) -> Conversion:
    """Extract the audio track to ``<destination stem>.mp3`` (44.1 kHz stereo, 192k)."""
    target = Path(destination).with_suffix(".mp3")
    # A stale file would satisfy the output check of a failed run
    if target.exists():
        target.unlink()

    clone = media.clone(reset_options=True)
    clone.set_disable_video()
    clone.set_audio_frequency(MP3_FREQUENCY)
    clone.set_audio_channels(MP3_CHANNELS)
    clone.set_audio_bitrate(MP3_BITRATE)
    clone.set_audio_codec("mp3")

    logger.info("Extracting audio of %s to %s", media.file_path, target)
    return await clone.save(target, context)


def _normalize_frame_settings(settings: Optional[Mapping[str, Any]]) -> dict[str, Any]:
    merged = merge_options(FRAME_DEFAULTS, settings)

    if merged["frame_rate"] is not None:
        merged["frame_rate"] = to_number(merged["frame_rate"])
    for key in SAMPLING_MODES:
        if merged[key] is not None:
            merged[key] = to_number(merged[key]) or None
    if merged["every_n_percentage"] is not None:
        merged["every_n_percentage"] = min(merged["every_n_percentage"], 100)

    active = [key for key in SAMPLING_MODES if merged[key]]
    if len(active) > 1:
        raise_error("extract_frame_invalid_everyN_options", ", ".join(active))
    return merged


def frame_file_name(template: Optional[str], source: str, dimension: DimensionResult) -> str:
    """Build the ``<name>_%d.jpg`` output pattern for extracted frames.

    Tokens in ``template``: ``%t`` timestamp in ms, ``%s`` ``WxH``,
    ``%x`` width, ``%y`` height. Unknown tokens are dropped. Without a
    template the source file's stem is used.
    """
    if template is None:
        name = Path(source).stem
    else:
        replacements = {
            "t": str(int(time.time() * 1000)),
            "s": dimension.size,
            "x": str(dimension.width),
            "y": str(dimension.height),
        }
        name = _NAME_TOKEN_RE.sub(lambda m: replacements.get(m.group(1), ""), template)
        name = os.path.splitext(os.path.basename(name))[0]
    return f"{name}_%d.jpg"


def _frame_sort_key(path: Path) -> tuple[int, str]:
    match = _FRAME_INDEX_RE.search(path.name)
    return (int(match.group(1)) if match else -1, path.name)


def _frame_files(folder: Path, pattern: str) -> list[Path]:
    prefix = pattern[: -len("%d.jpg")]
    return [
        path for path in Path(folder).glob(f"{glob.escape(prefix)}*.jpg")
        if path.name[len(prefix):-len(".jpg")].isdigit()
    ]


def remove_frames(folder: str | Path, pattern: str) -> int:
    """Delete frames left in ``folder`` for ``pattern`` by an earlier run."""
    stale = _frame_files(Path(folder), pattern)
    for path in stale:
        path.unlink()
    if stale:
        logger.info("Removed %d stale frames from %s", len(stale), folder)
    return len(stale)


def collect_frames(folder: str | Path, pattern: str) -> list[str]:
    """Files produced for ``pattern`` inside ``folder``, in frame order.

    Raises:
        MediaError: ``no_output_produced`` if there are none.
    """
    frames = sorted(_frame_files(Path(folder), pattern), key=_frame_sort_key)
    if not frames:
        raise_error("no_output_produced", folder)
    return [str(frame) for frame in frames]


async def extract_frames_to_jpg(media: MediaFile, destination_folder: str | Path,
                                settings: Optional[Mapping[str, Any]] = None,
                                context: Optional[ToolContext] = None) -> Conversion:
    """Extract frames as numbered JPEG files into ``destination_folder``.

    Args:
        media: Probed source file.
        destination_folder: Created if missing.
        settings: Overrides for :data:`FRAME_DEFAULTS`. At most one of the
            sampling modes ``number``, ``every_n_frames``,
            ``every_n_seconds`` and ``every_n_percentage`` may be set.
        context: Tool context for the binary and run settings.

    Returns:
        A conversion resolving to the sorted list of frame files.

    Raises:
        MediaError: ``invalid_option_name``,
            ``extract_frame_invalid_everyN_options``, ``size_format``,
            ``resolution_square_not_defined``, ``time_not_valid`` or
            ``mkdir``.
    """
    options = _normalize_frame_settings(settings)
    size = options["size"]
    if size is None:
        if not media.metadata.video.resolution:
            raise_error("resolution_square_not_defined")
        size = str(media.metadata.video.resolution)
    if options["every_n_percentage"] and media.metadata.duration.seconds <= 0:
        raise_error("time_not_valid", media.metadata.duration.raw)

    clone = media.clone(reset_options=True)
    if options["start_time"]:
        clone.set_video_start_time(options["start_time"])
    if options["duration_time"]:
        clone.set_video_duration(options["duration_time"])
    if options["frame_rate"]:
        clone.set_video_frame_rate(options["frame_rate"])
    clone.set_video_size(size, options["keep_pixel_aspect_ratio"],
                         options["keep_aspect_ratio"], options["padding_color"])
    dimension = clone.calculate_new_dimension()

    pattern = frame_file_name(options["file_name"], media.file_path, dimension)
    folder = make_dirs(destination_folder)
    remove_frames(folder, pattern)

    def customize(builder: CommandBuilder) -> None:
        if options["number"]:
            builder.add_flag("-vframes", options["number"])
        if options["every_n_frames"]:
            builder.add_flag("-vsync", 0)
            builder.add_filter(build_select("n", options["every_n_frames"]))
        if options["every_n_seconds"]:
            builder.add_flag("-vsync", 0)
            builder.add_filter(build_select("t", options["every_n_seconds"]))
        if options["every_n_percentage"]:
            every = media.metadata.duration.seconds * options["every_n_percentage"] / 100
            builder.add_flag("-vsync", 0)
            builder.add_filter(build_select("t", every))

    logger.info("Extracting frames of %s to %s", media.file_path, folder)
    return await clone.save(
        folder / pattern,
        context,
        customize=customize,
        expected_output=folder,
        finalize=lambda _folder: collect_frames(folder, pattern),
    )


def default_watermark_destination(file_path: str | Path, watermark_path: str | Path) -> str:
    """``<dir>/<stem>_watermark_<watermark stem><ext>`` next to the source."""
    source = Path(file_path)
    return str(source.with_name(f"{source.stem}_watermark_{Path(watermark_path).stem}{source.suffix}"))


async def add_watermark(media: MediaFile, watermark_path: str | Path,
                        destination: Optional[str | Path] = None,
                        settings: Optional[Mapping[str, Any]] = None,
                        context: Optional[ToolContext] = None) -> Conversion:
    """Overlay ``watermark_path`` on the video.

    See :meth:`MediaFile.set_watermark` for ``settings``.
    """
    clone = media.clone(reset_options=True)
    clone.set_watermark(watermark_path, settings)
    if not destination:
        destination = default_watermark_destination(media.file_path, watermark_path)

    logger.info("Adding watermark %s to %s", watermark_path, media.file_path)
    return await clone.save(destination, context, customize=lambda b: b.add_flag("-strict", -2))
