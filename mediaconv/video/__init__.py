"""Media probing, metadata models and the per-file descriptor."""

from .analyzer import MediaAnalyzer, parse_capabilities, parse_probe_output, probe_media
from .formats import MediaMetadata, Resolution, ToolCapabilities
from .media_file import DimensionResult, MediaFile

__all__ = [
    "MediaAnalyzer",
    "parse_capabilities",
    "parse_probe_output",
    "probe_media",
    "MediaMetadata",
    "Resolution",
    "ToolCapabilities",
    "DimensionResult",
    "MediaFile",
]
