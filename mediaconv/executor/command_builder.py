"""FFMPEG command builder for constructing de-duplicated invocations."""

import copy
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from ..config import RunSettings, ToolContext
from ..errors import raise_error
from ..utils import format_number, index_of
from .process_manager import Conversion, execute


@dataclass
class Filter:
    """A single filter-graph fragment such as ``pad=a:b:c:d``."""
    name: str
    args: list[str | int | float] = field(default_factory=list)
    params: dict[str, str | int | float] = field(default_factory=dict)

    def to_string(self) -> str:
        """Convert filter to FFMPEG filter string."""
        parts = [format_number(a) for a in self.args]
        parts.extend(f"{k}={format_number(v)}" for k, v in self.params.items())
        if not parts:
            return self.name
        return f"{self.name}={':'.join(parts)}"


@dataclass
class FilterChain:
    """Filter fragments in the order they were added."""
    fragments: list[str] = field(default_factory=list)

    def add(self, fragment: "str | Filter") -> "FilterChain":
        if isinstance(fragment, Filter):
            fragment = fragment.to_string()
        self.fragments.append(fragment)
        return self

    def to_string(self) -> str:
        return ", ".join(self.fragments)

    def __bool__(self) -> bool:
        return bool(self.fragments)


@dataclass
class FFMPEGCommand:
    """Represents a complete FFMPEG command."""
    binary: str = "ffmpeg"
    inputs: list[str] = field(default_factory=list)
    flags: list[tuple[str, Optional[str]]] = field(default_factory=list)
    filters: FilterChain = field(default_factory=FilterChain)
    output: Optional[str] = None

    @property
    def flag_names(self) -> list[str]:
        return [name for name, _ in self.flags]

    def to_args(self) -> list[str]:
        """Convert command to list of arguments for subprocess.

        Raises:
            MediaError: ``output_not_specified`` if no output was set.
        """
        if not self.output:
            raise_error("output_not_specified")

        args = [self.binary]
        for input_path in self.inputs:
            args.extend(["-i", input_path])
        for name, argument in self.flags:
            args.append(name)
            if argument is not None:
                args.append(argument)
        if self.filters:
            args.extend(["-filter_complex", self.filters.to_string()])
        args.extend(["-y", self.output])
        return args

    def to_string(self) -> str:
        """Convert command to shell string."""
        return " ".join(shlex.quote(arg) for arg in self.to_args())


class CommandBuilder:
    """Builder for constructing FFMPEG commands.

    A flag can be added only once; layering two settings that map to the
    same flag is reported as ``command_already_exists`` instead of letting
    ffmpeg silently pick one.
    """

    def __init__(self, binary: str = "ffmpeg", settings: Optional[RunSettings] = None):
        self._command = FFMPEGCommand(binary=binary)
        self.settings = settings or RunSettings()

    @classmethod
    def from_context(cls, context: ToolContext) -> "CommandBuilder":
        return cls(context.binary, context.settings)

    def add_input(self, path: str | Path) -> "CommandBuilder":
        """Add an input file (rendered as ``-i <path>``)."""
        self._command.inputs.append(str(path))
        return self

    def add_flag(self, name: str, argument: Optional[object] = None) -> "CommandBuilder":
        """Add a flag with an optional single argument.

        Raises:
            MediaError: ``command_already_exists`` if ``name`` was added before.
        """
        if index_of(name, self._command.flag_names) is not None:
            raise_error("command_already_exists", name)
        value = None if argument is None else format_number(argument)
        self._command.flags.append((name, value))
        return self

    def has_flag(self, name: str) -> bool:
        return index_of(name, self._command.flag_names) is not None

    def add_filter(self, fragment: str | Filter) -> "CommandBuilder":
        """Append a filter-graph fragment."""
        self._command.filters.add(fragment)
        return self

    def set_output(self, path: str | Path) -> "CommandBuilder":
        """Set the output path, replacing any previous one."""
        self._command.output = str(path)
        return self

    @property
    def output(self) -> Optional[str]:
        return self._command.output

    def apply_padding(self, aspect_x: int, aspect_y: int, label: str,
                      padding_color: Optional[str] = None) -> "CommandBuilder":
        """Scale to square pixels and pad the frame to ``aspect_x:aspect_y``."""
        ratio = f"({aspect_x}/{aspect_y})"
        pad_args = [rf"max(iw\,ih*{ratio})", f"ow/{ratio}", "(ow-iw)/2", "(oh-ih)/2"]
        if padding_color is not None:
            pad_args.append(padding_color)
        self.add_filter(Filter("scale", ["iw*sar", "ih"]))
        self.add_filter(Filter("pad", pad_args))
        self.add_flag("-aspect", label)
        return self

    def clone(self) -> "CommandBuilder":
        """Independent copy of the builder."""
        other = CommandBuilder(self._command.binary, copy.deepcopy(self.settings))
        other._command = copy.deepcopy(self._command)
        return other

    def build(self) -> FFMPEGCommand:
        """Build and return the command."""
        return self._command

    def build_args(self) -> list[str]:
        """Build and return command as argument list."""
        return self._command.to_args()

    def build_string(self) -> str:
        """Build and return command as shell string."""
        return self._command.to_string()

    async def execute(
        self,
        expected_output: Optional[str | Path] = None,
        finalize: Optional[Callable[[Optional[str]], object]] = None,
    ) -> Conversion:
        """Spawn the command and return its :class:`Conversion` handle.

        Args:
            expected_output: File or folder that must exist after a clean
                exit. Defaults to the configured output.
            finalize: Optional callable mapping the produced path to the
                conversion's result value.

        Raises:
            MediaError: ``output_not_specified`` before anything is spawned.
        """
        args = self.build_args()
        if expected_output is None:
            expected_output = self._command.output
        return await execute(args, self.settings, str(expected_output), finalize)


def build_overlay(expression: str) -> Filter:
    """``overlay=<x>:<y>`` fragment from a placement expression."""
    return Filter("overlay", [expression])


def build_select(variable: str, every: object) -> Filter:
    """``select=not(mod(<variable>\\,<every>))`` fragment for frame sampling."""
    return Filter("select", [rf"not(mod({variable}\,{format_number(every)}))"])
