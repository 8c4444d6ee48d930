"""
mediaconv

Builds ffmpeg command lines, runs them as asyncio subprocesses and reads
media metadata and progress from the tool's text output.
"""

from .config import RunSettings, ToolContext, load_config
from .errors import MediaError
from .executor.command_builder import CommandBuilder
from .executor.process_manager import Conversion
from .manager import MediaManager
from .video.analyzer import MediaAnalyzer
from .video.formats import MediaMetadata, ToolCapabilities
from .video.media_file import MediaFile

__version__ = "0.1.0"

__all__ = [
    "RunSettings",
    "ToolContext",
    "load_config",
    "MediaError",
    "CommandBuilder",
    "Conversion",
    "MediaManager",
    "MediaAnalyzer",
    "MediaMetadata",
    "ToolCapabilities",
    "MediaFile",
]
