"""Pytest configuration for mediaconv tests.

Puts the project root on sys.path so `mediaconv` imports without an
install, and provides a fake ffmpeg executable (a small Python script) so
probe and process tests run without a real ffmpeg.
"""

import json
import os
import stat
import sys
from pathlib import Path

import pytest

project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from mediaconv.config import RunSettings, ToolContext  # noqa: E402


PROBE_OUTPUT = """\
ffmpeg version 6.0 Copyright (c) 2000-2023 the FFmpeg developers
  built with gcc 12 (GCC)
  configuration: --prefix=/usr --enable-gpl --enable-libmp3lame --enable-libx264
  libavutil      58.  2.100 / 58.  2.100
Input #0, mov,mp4,m4a,3gp,3g2,mj2, from 'sample.mp4':
  Metadata:
    major_brand     : isom
    title           : Sample Clip
    artist          : Jane Doe
    album_artist    : Someone Else
    album           : Demo Reel
    track           : 3
    date            : 2021
  Duration: 00:02:10.00, start: 0.000000, bitrate: 1205 kb/s
  Stream #0:0[0x1](und): Video: h264 (High) (avc1 / 0x31637661), yuv420p(progressive), 1920x1080 [SAR 1:1 DAR 16:9], 1000 kb/s, 25 fps, 25 tbr, 12800 tbn (default)
    Metadata:
      handler_name    : VideoHandler
  Stream #0:1[0x2](und): Audio: aac (LC) (mp4a / 0x6134706D), 44100 Hz, stereo, fltp, 128 kb/s (default)
At least one output file must be specified
"""

ANAMORPHIC_PROBE_OUTPUT = """\
Input #0, mpeg, from 'dvd.mpg':
  Duration: 00:00:45.50, start: 0.280633, bitrate: 5862 kb/s
  Stream #0:0[0x1e0]: Video: mpeg2video (Main), yuv420p(tv, top first), 720x576 [SAR 16:15 DAR 4:3], 25 fps, 25 tbr, 90k tbn
    Side data:
      displaymatrix: rotation of -90.00 degrees
  Stream #0:1[0x80]: Audio: ac3, 48000 Hz, 5.1(side), fltp, 448 kb/s
"""

FORMATS_OUTPUT = """\
ffmpeg version 6.0 Copyright (c) 2000-2023 the FFmpeg developers
  built with gcc 12 (GCC)
  configuration: --prefix=/usr --enable-gpl --enable-libmp3lame --enable-libx264
  libavutil      58.  2.100 / 58.  2.100
File formats:
 D. = Demuxing supported
 .E = Muxing supported
 --
 D  3dostr          3DO STR
  E 3g2             3GP2 (3GPP2 file format)
 DE image2          image2 sequence
 DE matroska,webm   Matroska / WebM
 DE mp3             MP3 (MPEG audio layer 3)
 DE mp4             MP4 (MPEG-4 Part 14)
 D  mov,mp4,m4a,3gp,3g2,mj2 QuickTime / MOV
"""

_FAKE_FFMPEG = """\
#!{python}
import json
import os
import sys
import time

here = os.path.dirname(os.path.abspath(__file__))
with open(os.path.join(here, "fake_ffmpeg.json"), encoding="utf-8") as fh:
    cfg = json.load(fh)

args = sys.argv[1:]
with open(os.path.join(here, "calls.jsonl"), "a", encoding="utf-8") as fh:
    fh.write(json.dumps(args) + "\\n")

if args == ["-formats"]:
    sys.stderr.write(cfg["formats"])
    sys.exit(cfg["formats_code"])

if len(args) == 2 and args[0] == "-i":
    sys.stderr.write(cfg["probe"])
    sys.stderr.flush()
    if cfg["probe_hang"]:
        time.sleep(30)
    sys.exit(1)

output = args[-1]
if cfg["create_output"]:
    if "%d" in output:
        for index in range(1, cfg["frames"] + 1):
            with open(output.replace("%d", str(index)), "w") as fh:
                fh.write("frame")
    else:
        with open(output, "w") as fh:
            fh.write("data")

for line in cfg["progress"]:
    sys.stderr.write(line)
    sys.stderr.flush()
    time.sleep(cfg["delay"])

if cfg["hang"]:
    time.sleep(30)

sys.stdout.write(cfg["stdout"])
sys.exit(cfg["exit_code"])
"""

_DEFAULTS = {
    "formats": FORMATS_OUTPUT,
    "formats_code": 0,
    "probe": PROBE_OUTPUT,
    "probe_hang": False,
    "create_output": True,
    "frames": 3,
    "progress": [],
    "delay": 0,
    "hang": False,
    "stdout": "",
    "exit_code": 0,
}


class FakeFFmpeg:
    """Handle on a fake ffmpeg script and the calls it received."""

    def __init__(self, directory: Path):
        self.directory = directory
        self.path = directory / "ffmpeg"
        self.path.write_text(_FAKE_FFMPEG.format(python=sys.executable), encoding="utf-8")
        self.path.chmod(self.path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        self.configure()

    def configure(self, **overrides):
        unknown = set(overrides) - set(_DEFAULTS)
        assert not unknown, f"unknown fake ffmpeg settings: {unknown}"
        config = {**_DEFAULTS, **overrides}
        (self.directory / "fake_ffmpeg.json").write_text(json.dumps(config), encoding="utf-8")
        return self

    def calls(self) -> list[list[str]]:
        log = self.directory / "calls.jsonl"
        if not log.exists():
            return []
        return [json.loads(line) for line in log.read_text(encoding="utf-8").splitlines()]

    def context(self, **settings) -> ToolContext:
        return ToolContext(binary=str(self.path), settings=RunSettings(**settings))


@pytest.fixture
def fake_ffmpeg(tmp_path):
    """A fake ffmpeg executable in its own directory."""
    directory = tmp_path / "bin"
    directory.mkdir()
    return FakeFFmpeg(directory)


@pytest.fixture
def probe_output():
    return PROBE_OUTPUT


@pytest.fixture
def anamorphic_probe_output():
    return ANAMORPHIC_PROBE_OUTPUT


@pytest.fixture
def formats_output():
    return FORMATS_OUTPUT


@pytest.fixture
def media_path(tmp_path):
    """An existing (dummy) input file."""
    path = tmp_path / "sample.mp4"
    path.write_bytes(b"\x00" * 16)
    return path
