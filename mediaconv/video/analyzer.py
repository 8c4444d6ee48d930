"""Media probing and capability discovery from ffmpeg's text output.

``ffmpeg -i <file>`` prints a human-oriented banner, not a grammar, so each
field is pulled out by its own pattern and a field that is missing simply
stays empty.
"""

import logging
import os
import re
from pathlib import Path
from typing import Optional

from ..config import RunSettings, ToolContext
from ..errors import MediaError, raise_error
from ..executor.process_manager import run_buffered
from ..utils import duration_to_seconds, reduce_ratio, round_half_up
from .formats import (
    AUDIO_CHANNELS,
    AspectRatio,
    AudioInfo,
    ChannelInfo,
    DurationInfo,
    MediaMetadata,
    Resolution,
    ToolCapabilities,
    VideoInfo,
)

logger = logging.getLogger("mediaconv")

# Patterns searched over the whole combined output.
_GLOBAL_PATTERNS: dict[str, re.Pattern] = {
    "filename": re.compile(r"from '(.*)'"),
    "title": re.compile(r"\b(?:INAM|title)\s+:\s(.+)"),
    "artist": re.compile(r"\bartist\s+:\s(.+)"),
    "album": re.compile(r"\balbum\s+:\s(.+)"),
    "track": re.compile(r"\btrack\s+:\s(.+)"),
    "date": re.compile(r"\bdate\s+:\s(.+)"),
    "synched": re.compile(r"start: 0\.000000"),
    "duration": re.compile(r"Duration: (\d+:\d{2}:\d{2}\.\d+)"),
    "container": re.compile(r"Input #0, ([a-zA-Z0-9]+),"),
    "bitrate": re.compile(r"bitrate: (\d+) kb/s"),
    "rotate": re.compile(r"rotate\s+:\s(\d{2,3})"),
    "rotation": re.compile(r"rotation of (-?\d+(?:\.\d+)?) degrees"),
    "video_line": re.compile(r"Stream #\d+[:.]\d+\S*?: Video:.*"),
    "audio_line": re.compile(r"Stream #\d+[:.]\d+\S*?: Audio:.*"),
}

# Patterns searched in the first video stream line (or the whole text).
_VIDEO_PATTERNS: dict[str, re.Pattern] = {
    "stream": re.compile(r"Stream #\d+[:.](\d+)\S*?: Video"),
    "codec": re.compile(r"Video: (\w+)"),
    "resolution": re.compile(r"\b(\d{2,5})x(\d{2,5})\b"),
    "pixel": re.compile(r"[SP]AR (\d+:\d+)"),
    "aspect": re.compile(r"DAR (\d+:\d+)"),
    "fps": re.compile(r"(\d+(?:\.\d+)?) (?:fps|tb\(r\))"),
}

# Patterns searched in the first audio stream line (or the whole text).
_AUDIO_PATTERNS: dict[str, re.Pattern] = {
    "stream": re.compile(r"Stream #\d+[:.](\d+)\S*?: Audio"),
    "codec": re.compile(r"Audio: (\w+)"),
    "sample_rate": re.compile(r"(\d+) Hz"),
    "channels": re.compile(r"Audio:.*?\d+ Hz, ([^,\n]+)"),
    "bitrate": re.compile(r"Audio:.* (\d+) kb/s"),
}

_CONFIGURATION_RE = re.compile(r"configuration:(.*)")
_MODULE_RE = re.compile(r"--enable-([a-zA-Z0-9\-]+)")
_FORMAT_ROW_RE = re.compile(
    r"^ (?P<decode>[D ])(?P<encode>[E ])[d ]? (?P<names>[^\s=]+)(?=\s|$)",
    re.MULTILINE,
)


def _search(pattern: re.Pattern, text: str, group: int = 1) -> Optional[str]:
    match = pattern.search(text)
    if not match:
        return None
    value = match.group(group)
    return value.strip() if value else None


def _to_int(value: Optional[str], default: int = 0) -> int:
    return int(value) if value else default


def _parse_pair(label: str) -> Optional[tuple[int, int]]:
    x, _, y = label.partition(":")
    if not x.isdigit() or not y.isdigit() or int(y) == 0:
        return None
    return int(x), int(y)


def _parse_aspect(label: Optional[str], resolution: Resolution) -> Optional[AspectRatio]:
    pair = _parse_pair(label) if label else None
    if pair is not None:
        x, y = pair
        return AspectRatio(x=x, y=y, label=label, value=x / y)
    if resolution.w > 0 and resolution.h > 0:
        x, y = reduce_ratio(resolution.w, resolution.h)
        return AspectRatio(x=x, y=y, label=f"{x}:{y}", value=x / y)
    return None


def _parse_rotation(text: str) -> int:
    rotate = _search(_GLOBAL_PATTERNS["rotate"], text)
    if rotate:
        return int(rotate)
    rotation = _search(_GLOBAL_PATTERNS["rotation"], text)
    if rotation:
        return round_half_up(float(rotation)) % 360
    return 0


def parse_probe_output(text: str) -> MediaMetadata:
    """Build :class:`MediaMetadata` from the combined output of ``ffmpeg -i``."""
    video_text = _search(_GLOBAL_PATTERNS["video_line"], text, 0) or text
    audio_text = _search(_GLOBAL_PATTERNS["audio_line"], text, 0) or text

    duration_raw = _search(_GLOBAL_PATTERNS["duration"], text) or ""

    resolution_match = _VIDEO_PATTERNS["resolution"].search(video_text)
    resolution = Resolution(
        w=int(resolution_match.group(1)) if resolution_match else 0,
        h=int(resolution_match.group(2)) if resolution_match else 0,
    )

    pixel_string = _search(_VIDEO_PATTERNS["pixel"], video_text)
    pixel_pair = _parse_pair(pixel_string) if pixel_string else None
    if pixel_pair is not None:
        pixel = pixel_pair[0] / pixel_pair[1]
    elif resolution.w:
        pixel_string, pixel = "1:1", 1.0
    else:
        pixel_string, pixel = "", 0.0

    resolution_square = None
    if pixel not in (0, 1):
        if pixel > 1:
            resolution_square = Resolution(w=round_half_up(resolution.w * pixel), h=resolution.h)
        else:
            resolution_square = Resolution(w=resolution.w, h=round_half_up(resolution.h / pixel))

    fps = _search(_VIDEO_PATTERNS["fps"], video_text)
    video = VideoInfo(
        container=_search(_GLOBAL_PATTERNS["container"], text),
        bitrate=_to_int(_search(_GLOBAL_PATTERNS["bitrate"], text)),
        stream=_to_int(_search(_VIDEO_PATTERNS["stream"], video_text)),
        codec=_search(_VIDEO_PATTERNS["codec"], video_text),
        resolution=resolution,
        resolution_square=resolution_square,
        aspect=_parse_aspect(_search(_VIDEO_PATTERNS["aspect"], video_text), resolution),
        pixel_string=pixel_string,
        pixel=pixel,
        rotate=_parse_rotation(text),
        fps=float(fps) if fps else 0.0,
    )

    channels_raw = _search(_AUDIO_PATTERNS["channels"], audio_text)
    audio_bitrate = _search(_AUDIO_PATTERNS["bitrate"], audio_text)
    audio = AudioInfo(
        codec=_search(_AUDIO_PATTERNS["codec"], audio_text),
        bitrate=int(audio_bitrate) if audio_bitrate else None,
        sample_rate=_to_int(_search(_AUDIO_PATTERNS["sample_rate"], audio_text)),
        stream=_to_int(_search(_AUDIO_PATTERNS["stream"], audio_text)),
        channels=ChannelInfo(
            raw=channels_raw,
            value=AUDIO_CHANNELS.get(channels_raw, 0) if channels_raw else None,
        ),
    )

    return MediaMetadata(
        filename=_search(_GLOBAL_PATTERNS["filename"], text),
        title=_search(_GLOBAL_PATTERNS["title"], text),
        artist=_search(_GLOBAL_PATTERNS["artist"], text),
        album=_search(_GLOBAL_PATTERNS["album"], text),
        track=_search(_GLOBAL_PATTERNS["track"], text),
        date=_search(_GLOBAL_PATTERNS["date"], text),
        synched=_GLOBAL_PATTERNS["synched"].search(text) is not None,
        duration=DurationInfo(
            raw=duration_raw,
            seconds=duration_to_seconds(duration_raw) if duration_raw else 0,
        ),
        video=video,
        audio=audio,
    )


def parse_capabilities(text: str) -> ToolCapabilities:
    """Read enabled modules and the format table from ``ffmpeg -formats``."""
    modules: list[str] = []
    configuration = _search(_CONFIGURATION_RE, text)
    if configuration:
        modules = _MODULE_RE.findall(configuration)

    encode: list[str] = []
    decode: list[str] = []
    for row in _FORMAT_ROW_RE.finditer(text):
        can_decode = row.group("decode") == "D"
        can_encode = row.group("encode") == "E"
        for name in filter(None, row.group("names").split(",")):
            if can_decode and name not in decode:
                decode.append(name)
            if can_encode and name not in encode:
                encode.append(name)

    return ToolCapabilities(modules=tuple(modules), encode=tuple(encode), decode=tuple(decode))


async def probe_capabilities(binary: str, settings: Optional[RunSettings] = None) -> Optional[ToolCapabilities]:
    """Run ``<binary> -formats`` and parse it.

    Failures are logged and reported as ``None``; they never propagate.
    """
    try:
        result = await run_buffered([binary, "-formats"], settings)
    except MediaError as exc:
        logger.error("Unable to init ffmpeg supported info: %s", exc)
        return None
    if result.error is not None:
        logger.error("Unable to init ffmpeg supported info: %s", result.error)
        return None

    capabilities = parse_capabilities(result.output)
    if not capabilities.encode and not capabilities.decode:
        logger.warning("No format table found in output of %s -formats", binary)
        return None
    return capabilities


def validate_input_path(path: object) -> str:
    """Check an input path before anything is spawned.

    Raises:
        MediaError: ``input_filepath_must_be_string``,
            ``empty_input_filepath`` or ``file_input_not_exist``.
    """
    if not isinstance(path, (str, os.PathLike)):
        raise_error("input_filepath_must_be_string")
    text = str(path).strip()
    if not text:
        raise_error("empty_input_filepath")
    if not Path(text).exists():
        raise_error("file_input_not_exist")
    return text


class MediaAnalyzer:
    """Probes media files with the context's ffmpeg binary."""

    def __init__(self, context: ToolContext):
        """Initialize the analyzer.

        Args:
            context: Tool context providing the binary, run settings and
                the capabilities cache.
        """
        self.context = context

    async def analyze(self, path: str | Path) -> MediaMetadata:
        """Probe ``path`` and return its metadata.

        Only a process killed by a signal (or by the run timeout) fails the
        probe; ``ffmpeg -i`` exits non-zero on every plain probe.

        Raises:
            MediaError: For invalid paths (before spawning) or a killed probe.
        """
        file_path = validate_input_path(path)
        self.context.ensure_capabilities()

        result = await run_buffered([self.context.binary, "-i", file_path], self.context.settings)
        if result.signal is not None:
            logger.error("Probe of %s was killed: %s", file_path, result.error)
            raise result.error
        metadata = parse_probe_output(result.output)
        logger.debug("Probed %s:\n%s", file_path, metadata.to_analysis_string())
        return metadata


async def probe_media(path: str | Path, context: ToolContext) -> MediaMetadata:
    """Shortcut for ``MediaAnalyzer(context).analyze(path)``."""
    return await MediaAnalyzer(context).analyze(path)
