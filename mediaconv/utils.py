"""Small helpers shared by the probe, the descriptor and the presets."""

import logging
import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

from .errors import raise_error

logger = logging.getLogger("mediaconv")

# HH:MM:SS with an optional fractional part, as printed by ffmpeg
_TIMESTAMP_RE = re.compile(r"(\d+):(\d{2}):(\d{2})(?:\.(\d+))?")


def duration_to_seconds(text: str) -> int:
    """Convert an ``HH:MM:SS.frac`` string into whole seconds.

    The fractional part is discarded, so ``"00:01:30.500"`` gives ``90``.

    Raises:
        MediaError: ``time_not_valid`` if the text has no timestamp.
    """
    match = _TIMESTAMP_RE.search(text or "")
    if not match:
        raise_error("time_not_valid", text)
    hours, minutes, seconds = (int(g) for g in match.groups()[:3])
    return hours * 3600 + minutes * 60 + seconds


@dataclass(frozen=True)
class Duration:
    """A whole number of seconds used for start times and durations."""
    seconds: int

    @classmethod
    def parse(cls, text: str) -> "Duration":
        """Build from ``"hh:mm:ss"`` text."""
        if not isinstance(text, str) or not _TIMESTAMP_RE.fullmatch(text.strip()):
            raise_error("time_not_valid", text)
        return cls(duration_to_seconds(text))

    @classmethod
    def from_parts(cls, hours: int, minutes: int, seconds: int) -> "Duration":
        return cls(int(hours) * 3600 + int(minutes) * 60 + int(seconds))

    def __str__(self) -> str:
        hours, rest = divmod(self.seconds, 3600)
        minutes, seconds = divmod(rest, 60)
        return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def gcd(a: int, b: int) -> int:
    """Greatest common divisor of two non-negative integers."""
    return math.gcd(int(a), int(b))


def reduce_ratio(x: int, y: int) -> tuple[int, int]:
    """Reduce ``x:y`` by their GCD. ``(0, 0)`` is returned unchanged."""
    divisor = gcd(x, y)
    if divisor == 0:
        return x, y
    return int(x) // divisor, int(y) // divisor


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves going up."""
    return int(math.floor(value + 0.5))


def format_number(value: Any) -> str:
    """Render a number as a command-line token (``192`` not ``192.0``)."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def make_dirs(path: str | Path) -> Path:
    """Create ``path`` and any missing parents.

    Existing directories are left alone.

    Raises:
        MediaError: ``mkdir`` if a directory can not be created.
    """
    target = Path(path)
    try:
        target.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.error("Unable to create directory %s: %s", target, exc)
        raise_error("mkdir", target)
    return target


def merge_options(base: Mapping[str, Any], overrides: Optional[Mapping[str, Any]]) -> dict[str, Any]:
    """Return a copy of ``base`` updated with ``overrides``.

    Every key of ``overrides`` must already exist in ``base``.

    Raises:
        MediaError: ``invalid_option_name`` for an unknown key.
    """
    merged = dict(base)
    for key, value in (overrides or {}).items():
        if key not in merged:
            raise_error("invalid_option_name", key)
        merged[key] = value
    return merged


def index_of(value: Any, items: Sequence[Any]) -> Optional[int]:
    """Position of ``value`` in ``items``, or ``None`` when absent."""
    for position, item in enumerate(items):
        if item == value:
            return position
    return None


def to_number(value: Any) -> Optional[float]:
    """Coerce ``value`` to a finite float, or ``None`` if it is not numeric."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number
