"""Probe records, tool capabilities and preset tables."""

import logging
from typing import Optional

from pydantic import BaseModel, ConfigDict

from ..errors import raise_error

logger = logging.getLogger("mediaconv")


class Resolution(BaseModel):
    """Frame size in pixels."""
    model_config = ConfigDict(frozen=True)

    w: int = 0
    h: int = 0

    def __bool__(self) -> bool:
        return self.w > 0 and self.h > 0

    def __str__(self) -> str:
        return f"{self.w}x{self.h}"


class AspectRatio(BaseModel):
    """Display aspect ratio, e.g. ``16:9``."""
    model_config = ConfigDict(frozen=True)

    x: int
    y: int
    label: str
    value: float


class DurationInfo(BaseModel):
    """Duration as printed by the tool and as whole seconds."""
    model_config = ConfigDict(frozen=True)

    raw: str = ""
    seconds: int = 0


class ChannelInfo(BaseModel):
    """Audio channel layout label and its channel count (0 if unknown)."""
    model_config = ConfigDict(frozen=True)

    raw: Optional[str] = None
    value: Optional[int] = None


class VideoInfo(BaseModel):
    """Video stream information."""
    model_config = ConfigDict(frozen=True)

    container: Optional[str] = None
    bitrate: int = 0
    stream: int = 0
    codec: Optional[str] = None
    resolution: Resolution = Resolution()
    resolution_square: Optional[Resolution] = None
    aspect: Optional[AspectRatio] = None
    pixel_string: str = ""
    pixel: float = 0.0
    rotate: int = 0
    fps: float = 0.0


class AudioInfo(BaseModel):
    """Audio stream information."""
    model_config = ConfigDict(frozen=True)

    codec: Optional[str] = None
    bitrate: Optional[int] = None
    sample_rate: int = 0
    stream: int = 0
    channels: ChannelInfo = ChannelInfo()


class MediaMetadata(BaseModel):
    """Everything recovered from one probe of a media file."""
    model_config = ConfigDict(frozen=True)

    filename: Optional[str] = None
    title: Optional[str] = None
    artist: Optional[str] = None
    album: Optional[str] = None
    track: Optional[str] = None
    date: Optional[str] = None
    synched: bool = False
    duration: DurationInfo = DurationInfo()
    video: VideoInfo = VideoInfo()
    audio: AudioInfo = AudioInfo()

    def to_analysis_string(self) -> str:
        """Generate a short human-readable summary."""
        lines = [f"Duration: {self.duration.raw or 'unknown'} ({self.duration.seconds} s)"]
        v = self.video
        if v.resolution:
            line = f"Video: {v.codec or 'unknown'} {v.resolution}"
            if v.aspect:
                line += f" [DAR {v.aspect.label}]"
            if v.fps:
                line += f" @ {v.fps:g} fps"
            lines.append(line)
        a = self.audio
        if a.codec:
            lines.append(
                f"Audio: {a.codec} @ {a.sample_rate} Hz, {a.channels.raw or 'unknown'}"
            )
        return "\n".join(lines)


class ToolCapabilities(BaseModel):
    """Modules, encodable and decodable formats of one tool binary."""
    model_config = ConfigDict(frozen=True)

    modules: tuple[str, ...] = ()
    encode: tuple[str, ...] = ()
    decode: tuple[str, ...] = ()

    def check_supported_format(self, fmt: str) -> None:
        """Raise ``format_not_supported`` unless ``fmt`` can be encoded."""
        if fmt not in self.encode:
            raise_error("format_not_supported", fmt)

    def check_supported_codec(self, codec: str) -> None:
        """Raise ``codec_not_supported`` unless ``codec`` can be encoded."""
        if codec not in self.encode:
            raise_error("codec_not_supported", codec)

    def has_module(self, name: str) -> bool:
        return name in self.modules


# Named frame sizes
SIZES = {
    "SQCIF": "128x96",
    "QCIF": "176x144",
    "CIF": "352x288",
    "4CIF": "704x576",
    "QQVGA": "160x120",
    "QVGA": "320x240",
    "VGA": "640x480",
    "SVGA": "800x600",
    "XGA": "1024x768",
    "UXGA": "1600x1200",
    "QXGA": "2048x1536",
    "SXGA": "1280x1024",
    "QSXGA": "2560x2048",
    "HSXGA": "5120x4096",
    "WVGA": "852x480",
    "WXGA": "1366x768",
    "WSXGA": "1600x1024",
    "WUXGA": "1920x1200",
    "WOXGA": "2560x1600",
    "WQSXGA": "3200x2048",
    "WQUXGA": "3840x2400",
    "WHSXGA": "6400x4096",
    "WHUXGA": "7680x4800",
    "CGA": "320x200",
    "EGA": "640x350",
    "HD480": "852x480",
    "HD720": "1280x720",
    "HD1080": "1920x1080",
}

RATIOS = {
    "4:3": 1.33,
    "3:2": 1.5,
    "14:9": 1.56,
    "16:9": 1.78,
    "21:9": 2.33,
}

AUDIO_CHANNELS = {
    "mono": 1,
    "stereo": 2,
}
