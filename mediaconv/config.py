"""Run settings, binary resolution and the shared tool context.

A :class:`ToolContext` is created once (usually via :func:`load_config`)
and passed to everything that spawns the tool. It owns the capabilities
cache, keyed by binary path, which is filled by an explicit
:meth:`ToolContext.initialize` / :meth:`ToolContext.refresh_capabilities`
call or lazily by the first probe.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping, Optional

import yaml

from .errors import raise_error
from .utils import merge_options

if TYPE_CHECKING:
    from .video.formats import ToolCapabilities

logger = logging.getLogger("mediaconv")

ENV_BINARY = "MEDIACONV_FFMPEG"
DEFAULT_BINARY = "ffmpeg"


@dataclass
class RunSettings:
    """How the tool process is run."""
    encoding: str = "utf8"
    timeout: float = 0
    max_buffer: int = 200 * 1024

    @classmethod
    def from_mapping(cls, values: Optional[Mapping[str, Any]] = None) -> "RunSettings":
        """Build settings from a mapping, rejecting unknown keys."""
        merged = merge_options(asdict(cls()), values)
        return cls(**merged)


def resolve_binary(explicit: Optional[str] = None) -> str:
    """Find the ffmpeg executable.

    Order: ``explicit``, the ``MEDIACONV_FFMPEG`` environment variable,
    ``ffmpeg`` on ``PATH``. Falls back to the bare name so the spawn
    reports the failure.
    """
    if explicit:
        return str(explicit)
    from_env = os.environ.get(ENV_BINARY)
    if from_env:
        return from_env
    return shutil.which(DEFAULT_BINARY) or DEFAULT_BINARY


@dataclass
class ToolContext:
    """Binary path, run settings and the capabilities cache."""
    binary: str = DEFAULT_BINARY
    settings: RunSettings = field(default_factory=RunSettings)
    _capabilities: dict[str, ToolCapabilities] = field(default_factory=dict, repr=False)
    _pending: dict[str, asyncio.Task] = field(default_factory=dict, repr=False)

    @property
    def capabilities(self) -> Optional[ToolCapabilities]:
        """Cached capabilities of the current binary, if known."""
        return self._capabilities.get(self.binary)

    async def initialize(self) -> Optional[ToolCapabilities]:
        """Load capabilities for the current binary."""
        return await self.refresh_capabilities()

    async def refresh_capabilities(self) -> Optional[ToolCapabilities]:
        """Re-run the capabilities probe and replace the cached entry.

        A failed probe is logged by the probe and leaves the cache as it
        was.
        """
        from .video.analyzer import probe_capabilities

        binary = self.binary
        capabilities = await probe_capabilities(binary, self.settings)
        if capabilities is not None:
            self._capabilities[binary] = capabilities
            logger.info(
                "ffmpeg capabilities loaded for %s: %d modules, %d encoders, %d decoders",
                binary, len(capabilities.modules), len(capabilities.encode), len(capabilities.decode),
            )
        return self._capabilities.get(binary)

    def ensure_capabilities(self) -> Optional[asyncio.Task]:
        """Schedule a background capabilities probe unless one is cached or running.

        Must be called from a running event loop. Returns the pending task,
        or ``None`` when capabilities are already cached.
        """
        binary = self.binary
        if binary in self._capabilities:
            return None
        task = self._pending.get(binary)
        if task is None:
            task = asyncio.get_running_loop().create_task(self.refresh_capabilities())
            self._pending[binary] = task
            task.add_done_callback(lambda _t: self._pending.pop(binary, None))
            logger.debug("Scheduled capabilities probe for %s", binary)
        return task

    async def wait_capabilities(self) -> Optional[ToolCapabilities]:
        """Wait for a scheduled capabilities probe, if any, and return the cache entry."""
        task = self._pending.get(self.binary)
        if task is not None:
            await task
        return self.capabilities

    def invalidate(self, binary: Optional[str] = None) -> None:
        """Forget cached capabilities for ``binary`` (default: current binary)."""
        self._capabilities.pop(binary or self.binary, None)


_CONFIG_KEYS = {"ffmpeg_path": None, **asdict(RunSettings())}


def load_config(path: Optional[str | Path] = None, binary: Optional[str] = None) -> ToolContext:
    """Create a :class:`ToolContext` from an optional YAML file.

    Recognised keys: ``ffmpeg_path``, ``encoding``, ``timeout`` and
    ``max_buffer``. An explicit ``binary`` argument wins over the file,
    the file wins over the environment.

    Raises:
        MediaError: ``config_invalid`` for unreadable or non-mapping files,
            ``invalid_option_name`` for unknown keys.
    """
    values: dict[str, Any] = {}
    if path is not None:
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = yaml.safe_load(fh)
        except (OSError, yaml.YAMLError) as exc:
            logger.error("Failed to read config %s: %s", path, exc)
            raise_error("config_invalid", f"{path}: {exc}")
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise_error("config_invalid", f"{path}: top-level must be a mapping")
        values = merge_options(_CONFIG_KEYS, data)

    ffmpeg_path = values.pop("ffmpeg_path", None)
    settings = RunSettings.from_mapping(values)
    context = ToolContext(binary=resolve_binary(binary or ffmpeg_path), settings=settings)
    logger.debug("Loaded configuration: %r", context)
    return context
