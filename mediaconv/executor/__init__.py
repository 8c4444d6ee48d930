"""Command construction and process execution."""

from .command_builder import CommandBuilder, Filter, FilterChain, FFMPEGCommand
from .process_manager import Conversion, ProcessResult, ProcessState, RunningProcess, run_buffered, spawn
from .progress import ProgressTracker, parse_progress_time

__all__ = [
    "CommandBuilder",
    "Filter",
    "FilterChain",
    "FFMPEGCommand",
    "Conversion",
    "ProcessResult",
    "ProcessState",
    "RunningProcess",
    "run_buffered",
    "spawn",
    "ProgressTracker",
    "parse_progress_time",
]
