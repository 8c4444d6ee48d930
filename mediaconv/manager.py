"""Session facade: one selected input file and one current conversion."""

import logging
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

from . import presets
from .config import ToolContext, load_config
from .errors import raise_error
from .executor.process_manager import Conversion
from .video.analyzer import MediaAnalyzer
from .video.media_file import MediaFile

logger = logging.getLogger("mediaconv")

ProgressCallback = Callable[[float], None]


class MediaManager:
    """Selects an input file and runs presets on it.

    Only the most recent conversion is tracked, so
    :meth:`abort_current_conversion` always targets the latest one. Nothing
    is queued: starting a conversion while another runs is allowed.
    """

    def __init__(self, context: Optional[ToolContext] = None):
        self.context = context or load_config()
        self.analyzer = MediaAnalyzer(self.context)
        self.media: Optional[MediaFile] = None
        self.current: Optional[Conversion] = None

    async def initialize(self) -> None:
        """Load the tool capabilities up front."""
        capabilities = await self.context.initialize()
        if capabilities is None:
            logger.warning("ffmpeg capabilities unavailable for %s", self.context.binary)

    async def select_input_file(self, path: str | Path) -> MediaFile:
        """Probe ``path`` and make it the current input.

        Raises:
            MediaError: From the probe; the previous selection is kept.
        """
        metadata = await self.analyzer.analyze(path)
        capabilities = await self.context.wait_capabilities()
        self.media = MediaFile(path, capabilities, metadata)
        logger.info("Selected %s", self.media.file_path)
        return self.media

    def unselect_input_file(self) -> None:
        self.media = None

    def abort_current_conversion(self) -> bool:
        """Abort the current conversion, if any is running."""
        if self.current is None:
            return False
        return self.current.abort()

    def _require_media(self) -> MediaFile:
        if self.media is None:
            raise_error("no_input_selected")
        return self.media

    def _track(self, conversion: Conversion, media: MediaFile,
               on_progress: Optional[ProgressCallback]) -> Conversion:
        if on_progress is not None:
            conversion.on_progress(media.metadata.duration.seconds, on_progress)
        self.current = conversion
        return conversion

    async def extract_audio_to_mp3(self, destination: str | Path,
                                   on_progress: Optional[ProgressCallback] = None) -> str:
        """Extract the audio of the selected file; returns the MP3 path."""
        media = self._require_media()
        conversion = await presets.extract_sound_to_mp3(media, destination, self.context)
        return await self._track(conversion, media, on_progress)

    async def extract_frames_to_jpg(self, destination_folder: str | Path,
                                    settings: Optional[Mapping[str, Any]] = None,
                                    on_progress: Optional[ProgressCallback] = None) -> list[str]:
        """Extract frames of the selected file; returns the frame files in order."""
        media = self._require_media()
        conversion = await presets.extract_frames_to_jpg(media, destination_folder, settings, self.context)
        return await self._track(conversion, media, on_progress)

    async def add_watermark(self, watermark_path: str | Path,
                            destination: Optional[str | Path] = None,
                            settings: Optional[Mapping[str, Any]] = None,
                            on_progress: Optional[ProgressCallback] = None) -> str:
        """Watermark the selected file; returns the output path."""
        media = self._require_media()
        conversion = await presets.add_watermark(media, watermark_path, destination, settings, self.context)
        return await self._track(conversion, media, on_progress)
