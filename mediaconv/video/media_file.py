"""Per-file conversion options and their rendering into a command."""

import copy
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

from ..config import ToolContext
from ..errors import raise_error
from ..executor.command_builder import CommandBuilder, build_overlay
from ..executor.process_manager import Conversion
from ..utils import Duration, format_number, merge_options, reduce_ratio, round_half_up, to_number
from .formats import AUDIO_CHANNELS, AspectRatio, MediaMetadata, Resolution, ToolCapabilities

logger = logging.getLogger("mediaconv")

_FIXED_WIDTH_RE = re.compile(r"^(\d+)x\?$")
_FIXED_HEIGHT_RE = re.compile(r"^\?x(\d+)$")
_PERCENTAGE_RE = re.compile(r"^(\d{1,3})%$")
_CLASSIC_SIZE_RE = re.compile(r"^(\d+)x(\d+)$")
_ASPECT_RE = re.compile(r"^(\d+):(\d+)$")

WATERMARK_POSITIONS = ("NE", "NC", "NW", "SE", "SC", "SW", "C", "CE", "CW")

_LEFT, _CENTER_X, _RIGHT = "0", "main_w/2-overlay_w/2", "main_w-overlay_w"
_TOP, _CENTER_Y, _BOTTOM = "0", "main_h/2-overlay_h/2", "main_h-overlay_h"

_WATERMARK_ANCHORS = {
    "NE": (_LEFT, _TOP),
    "NC": (_CENTER_X, _TOP),
    "NW": (_RIGHT, _TOP),
    "SE": (_LEFT, _BOTTOM),
    "SC": (_CENTER_X, _BOTTOM),
    "SW": (_RIGHT, _BOTTOM),
    "CE": (_LEFT, _CENTER_Y),
    "C": (_CENTER_X, _CENTER_Y),
    "CW": (_RIGHT, _CENTER_Y),
}

WATERMARK_DEFAULTS: dict[str, Any] = {
    "position": "SW",
    "margin_nord": None,
    "margin_sud": None,
    "margin_east": None,
    "margin_west": None,
}

Customizer = Callable[[CommandBuilder], None]


@dataclass
class Watermark:
    path: str
    overlay: str


@dataclass
class AudioOptions:
    """Requested audio settings; ``None`` means keep the tool default."""
    disabled: bool = False
    codec: Optional[str] = None
    frequency: Optional[int] = None
    channels: Optional[int] = None
    bitrate: Optional[int] = None
    quality: Optional[int] = None


@dataclass
class VideoOptions:
    """Requested video settings; ``None`` means keep the tool default."""
    disabled: bool = False
    format: Optional[str] = None
    codec: Optional[str] = None
    bitrate: Optional[int] = None
    framerate: Optional[float] = None
    start_time: Optional[int] = None
    duration: Optional[int] = None
    aspect: Optional[str] = None
    size: Optional[str] = None
    keep_pixel_aspect_ratio: bool = False
    keep_aspect_ratio: bool = False
    padding_color: Optional[str] = None
    watermark: Optional[Watermark] = None


@dataclass
class DimensionResult:
    """Final frame size; both dimensions are even."""
    width: int
    height: int
    aspect: Optional[AspectRatio] = None

    @property
    def size(self) -> str:
        return f"{self.width}x{self.height}"


def parse_size(size: str) -> tuple[str, int, int]:
    """Classify a size string.

    Returns ``(kind, a, b)`` where kind is ``"width"`` (``"640x?"``),
    ``"height"`` (``"?x480"``), ``"percentage"`` (``"50%"``) or
    ``"fixed"`` (``"640x480"``).

    Raises:
        MediaError: ``size_format`` for any other shape.
    """
    text = size.strip() if isinstance(size, str) else ""
    match = _FIXED_WIDTH_RE.match(text)
    if match:
        return "width", int(match.group(1)), 0
    match = _FIXED_HEIGHT_RE.match(text)
    if match:
        return "height", 0, int(match.group(1))
    match = _PERCENTAGE_RE.match(text)
    if match:
        return "percentage", int(match.group(1)), 0
    match = _CLASSIC_SIZE_RE.match(text)
    if match:
        return "fixed", int(match.group(1)), int(match.group(2))
    raise_error("size_format", size)


def _signed_margin(value: float, inverse: bool) -> str:
    if value == 0:
        return "+0"
    sign = "+" if (value > 0) != inverse else "-"
    return f"{sign}{format_number(abs(value))}"


def _margin(settings: Mapping[str, Any], key: str) -> float:
    value = to_number(settings.get(key))
    return 0 if value is None else value


def watermark_overlay(position: str, margin_nord: float = 0, margin_sud: float = 0,
                      margin_east: float = 0, margin_west: float = 0) -> str:
    """Render the ``<x>:<y>`` placement expression for an overlay.

    East and north margins keep their sign, west and south margins are
    inverted. A zero margin renders as ``+0``.
    """
    if position not in _WATERMARK_ANCHORS:
        raise_error("invalid_watermark_position", position)
    x, y = _WATERMARK_ANCHORS[position]
    horizontal = _signed_margin(margin_east, False) + _signed_margin(margin_west, True)
    vertical = _signed_margin(margin_nord, False) + _signed_margin(margin_sud, True)
    return f"{x}{horizontal}:{y}{vertical}"


def _as_seconds(value: "Duration | str | int") -> int:
    if isinstance(value, Duration):
        return value.seconds
    if isinstance(value, str):
        return Duration.parse(value).seconds
    number = to_number(value)
    if number is None or number < 0:
        raise_error("time_not_valid", value)
    return int(number)


class MediaFile:
    """Mutable option layer over one probed file.

    The file path, the tool capabilities and the metadata are fixed at
    construction; every ``set_*`` call validates its input immediately and
    returns ``self`` so calls can be chained. Use :meth:`clone` to derive an
    independent descriptor for a different operation.
    """

    def __init__(self, file_path: str | Path, capabilities: Optional[ToolCapabilities],
                 metadata: MediaMetadata):
        self.file_path = str(file_path)
        self.capabilities = capabilities
        self.metadata = metadata
        self.audio: Optional[AudioOptions] = None
        self.video: Optional[VideoOptions] = None

    def clone(self, reset_options: bool = False) -> "MediaFile":
        """Copy of the descriptor sharing metadata and capabilities.

        Args:
            reset_options: Start the copy with no options set.
        """
        other = MediaFile(self.file_path, self.capabilities, self.metadata)
        if not reset_options:
            other.audio = copy.deepcopy(self.audio)
            other.video = copy.deepcopy(self.video)
        return other

    def _audio_opts(self) -> AudioOptions:
        if self.audio is None:
            self.audio = AudioOptions()
        return self.audio

    def _video_opts(self) -> VideoOptions:
        if self.video is None:
            self.video = VideoOptions()
        return self.video

    def _check_format(self, fmt: str) -> None:
        if self.capabilities is None:
            logger.warning("Capabilities unknown, not checking format %s", fmt)
            return
        self.capabilities.check_supported_format(fmt)

    def _check_codec(self, codec: str) -> None:
        if self.capabilities is None:
            logger.warning("Capabilities unknown, not checking codec %s", codec)
            return
        self.capabilities.check_supported_codec(codec)

    # Video settings

    def set_disable_video(self) -> "MediaFile":
        self._video_opts().disabled = True
        return self

    def set_video_format(self, fmt: str) -> "MediaFile":
        self._check_format(fmt)
        self._video_opts().format = fmt
        return self

    def set_video_codec(self, codec: str) -> "MediaFile":
        self._check_codec(codec)
        self._video_opts().codec = codec
        return self

    def set_video_bitrate(self, bitrate: int) -> "MediaFile":
        """Video bitrate in kb."""
        self._video_opts().bitrate = bitrate
        return self

    def set_video_frame_rate(self, framerate: float) -> "MediaFile":
        self._video_opts().framerate = framerate
        return self

    def set_video_start_time(self, time: "Duration | str | int") -> "MediaFile":
        self._video_opts().start_time = _as_seconds(time)
        return self

    def set_video_duration(self, duration: "Duration | str | int") -> "MediaFile":
        self._video_opts().duration = _as_seconds(duration)
        return self

    def set_video_aspect_ratio(self, aspect: Optional[str]) -> "MediaFile":
        """Set the output aspect ratio from an ``"X:Y"`` string.

        A missing or malformed value falls back to the probed aspect.
        """
        label = self.metadata.video.aspect.label if self.metadata.video.aspect else None
        match = _ASPECT_RE.match(aspect.strip()) if isinstance(aspect, str) else None
        if match and int(match.group(2)) != 0:
            label = f"{match.group(1)}:{match.group(2)}"
        self._video_opts().aspect = label
        return self

    def set_video_size(self, size: str, keep_pixel_aspect_ratio: bool = False,
                       keep_aspect_ratio: bool = False,
                       padding_color: Optional[str] = None) -> "MediaFile":
        """Set the output frame size.

        Args:
            size: ``"640x?"``, ``"?x480"``, ``"50%"`` or ``"640x480"``.
            keep_pixel_aspect_ratio: Scale from the square-pixel resolution
                when the source has non-square pixels.
            keep_aspect_ratio: Pad to the aspect ratio of the final size.
            padding_color: Fill color for the padding, e.g. ``"black"``.

        Raises:
            MediaError: ``size_format`` for an unsupported size string.
        """
        parse_size(size)
        video = self._video_opts()
        video.size = size.strip()
        video.keep_pixel_aspect_ratio = bool(keep_pixel_aspect_ratio)
        video.keep_aspect_ratio = bool(keep_aspect_ratio)
        video.padding_color = padding_color
        return self

    def set_watermark(self, watermark_path: str | Path,
                      settings: Optional[Mapping[str, Any]] = None) -> "MediaFile":
        """Overlay an image on the video.

        Args:
            watermark_path: Image file to overlay.
            settings: ``position`` (one of ``NE NC NW SE SC SW C CE CW``,
                default ``SW``) and ``margin_nord``, ``margin_sud``,
                ``margin_east``, ``margin_west`` in pixels.

        Raises:
            MediaError: ``invalid_watermark``, ``invalid_option_name`` or
                ``invalid_watermark_position``.
        """
        path = str(watermark_path)
        if not Path(path).exists():
            raise_error("invalid_watermark", path)
        merged = merge_options(WATERMARK_DEFAULTS, settings)

        overlay = watermark_overlay(
            merged["position"],
            margin_nord=_margin(merged, "margin_nord"),
            margin_sud=_margin(merged, "margin_sud"),
            margin_east=_margin(merged, "margin_east"),
            margin_west=_margin(merged, "margin_west"),
        )
        self._video_opts().watermark = Watermark(path=path, overlay=overlay)
        return self

    # Audio settings

    def set_disable_audio(self) -> "MediaFile":
        self._audio_opts().disabled = True
        return self

    def set_audio_codec(self, codec: str) -> "MediaFile":
        """Set the audio codec; ``mp3`` becomes ``libmp3lame`` when available."""
        self._check_codec(codec)
        if codec == "mp3" and self.capabilities is not None and self.capabilities.has_module("libmp3lame"):
            codec = "libmp3lame"
        self._audio_opts().codec = codec
        return self

    def set_audio_frequency(self, frequency: int) -> "MediaFile":
        self._audio_opts().frequency = frequency
        return self

    def set_audio_channels(self, channels: int) -> "MediaFile":
        if isinstance(channels, bool) or channels not in AUDIO_CHANNELS.values():
            raise_error("audio_channel_is_invalid", channels)
        self._audio_opts().channels = channels
        return self

    def set_audio_bitrate(self, bitrate: int) -> "MediaFile":
        """Audio bitrate in k."""
        self._audio_opts().bitrate = bitrate
        return self

    def set_audio_quality(self, quality: int) -> "MediaFile":
        self._audio_opts().quality = quality
        return self

    # Rendering

    def calculate_new_dimension(self) -> DimensionResult:
        """Compute the output size from the size option and the metadata.

        Raises:
            MediaError: ``resolution_square_not_defined`` when no size is
                set or the reference resolution needed is unknown;
                ``size_format`` for an unsupported size string.
        """
        video = self.video
        if video is None or not video.size:
            raise_error("resolution_square_not_defined")

        reference = self.metadata.video.resolution
        if video.keep_pixel_aspect_ratio and self.metadata.video.resolution_square:
            reference = self.metadata.video.resolution_square

        kind, a, b = parse_size(video.size)
        aspect = self.metadata.video.aspect
        if kind == "width":
            width = a
            if aspect and aspect.x:
                height = round_half_up(width / aspect.x * aspect.y)
            else:
                _require(reference)
                height = round_half_up(reference.h * width / reference.w)
        elif kind == "height":
            height = b
            if aspect and aspect.y:
                width = round_half_up(height / aspect.y * aspect.x)
            else:
                _require(reference)
                width = round_half_up(reference.w * height / reference.h)
        elif kind == "percentage":
            _require(reference)
            width = round_half_up(reference.w * a / 100)
            height = round_half_up(reference.h * a / 100)
        else:
            width, height = a, b

        # Encoders want even dimensions
        if width % 2:
            width -= 1
        if height % 2:
            height -= 1

        result_aspect = None
        if video.keep_aspect_ratio and width > 0 and height > 0:
            x, y = reduce_ratio(width, height)
            result_aspect = AspectRatio(x=x, y=y, label=f"{x}:{y}", value=x / y)
        return DimensionResult(width=width, height=height, aspect=result_aspect)

    def build_command(self, destination: str | Path, context: Optional[ToolContext] = None,
                      customize: Optional[Customizer] = None) -> CommandBuilder:
        """Render the accumulated options into a :class:`CommandBuilder`.

        Raises:
            MediaError: ``command_already_exists`` when two options map to
                the same flag, or any dimension error.
        """
        builder = CommandBuilder.from_context(context) if context else CommandBuilder()
        builder.add_input(self.file_path)

        video = self.video
        if video is not None:
            if video.disabled:
                builder.add_flag("-vn")
            else:
                if video.format:
                    builder.add_flag("-f", video.format)
                if video.codec:
                    builder.add_flag("-vcodec", video.codec)
                if video.bitrate:
                    builder.add_flag("-b", f"{format_number(video.bitrate)}kb")
                if video.framerate:
                    builder.add_flag("-r", video.framerate)
                if video.start_time:
                    builder.add_flag("-ss", video.start_time)
                if video.duration:
                    builder.add_flag("-t", video.duration)
                if video.aspect:
                    builder.add_flag("-aspect", video.aspect)
                if video.watermark:
                    builder.add_input(video.watermark.path)
                    builder.add_filter(build_overlay(video.watermark.overlay))
                if video.size:
                    dimension = self.calculate_new_dimension()
                    if dimension.aspect is not None:
                        builder.apply_padding(dimension.aspect.x, dimension.aspect.y,
                                              dimension.aspect.label, video.padding_color)
                    builder.add_flag("-s", dimension.size)

        audio = self.audio
        if audio is not None:
            if audio.disabled:
                builder.add_flag("-an")
            else:
                if audio.codec:
                    builder.add_flag("-acodec", audio.codec)
                if audio.frequency:
                    builder.add_flag("-ar", audio.frequency)
                if audio.channels:
                    builder.add_flag("-ac", audio.channels)
                if audio.quality:
                    builder.add_flag("-aq", audio.quality)
                if audio.bitrate:
                    builder.add_flag("-ab", f"{format_number(audio.bitrate)}k")

        builder.set_output(destination)
        if customize is not None:
            customize(builder)
        logger.debug("Built command for %s: %s", self.file_path, builder.build_string())
        return builder

    async def save(self, destination: str | Path, context: Optional[ToolContext] = None,
                   customize: Optional[Customizer] = None,
                   finalize: Optional[Callable[[Optional[str]], object]] = None,
                   expected_output: Optional[str | Path] = None) -> Conversion:
        """Run the conversion and return its :class:`Conversion` handle."""
        builder = self.build_command(destination, context, customize)
        return await builder.execute(expected_output=expected_output, finalize=finalize)


def _require(reference: Resolution) -> None:
    if not reference:
        raise_error("resolution_square_not_defined")
