"""Progress extraction from live ffmpeg output."""

import logging
import re
from typing import Callable, Optional

from ..utils import duration_to_seconds

logger = logging.getLogger("mediaconv")

_TIME_RE = re.compile(r"time=(\d+:\d{2}:\d{2}\.\d+)")


def parse_progress_time(text: str) -> Optional[int]:
    """Elapsed whole seconds from the last ``time=HH:MM:SS.ff`` marker in ``text``."""
    matches = _TIME_RE.findall(text)
    if not matches:
        return None
    return duration_to_seconds(matches[-1])


class ProgressTracker:
    """Turns output chunks into completion percentages.

    Values are reported as they are found: no clamping, smoothing or
    ordering is applied.
    """

    def __init__(self, total_seconds: int, callback: Callable[[float], None]):
        self.total_seconds = total_seconds
        self.callback = callback
        self.last_percent: Optional[float] = None

    def feed(self, text: str) -> Optional[float]:
        elapsed = parse_progress_time(text)
        if elapsed is None:
            return None
        if not self.total_seconds:
            logger.debug("Skipping progress report: total duration unknown")
            return None
        percent = (elapsed / self.total_seconds) * 100
        self.last_percent = percent
        self.callback(percent)
        return percent
