"""Process management for FFMPEG execution."""

import asyncio
import codecs
import contextlib
import logging
import re
import shlex
import signal
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from ..config import RunSettings
from ..errors import MediaError, render_error
from .progress import ProgressTracker

logger = logging.getLogger("mediaconv")

OutputListener = Callable[[str, str], None]
ExitCallback = Callable[[Optional[int], Optional[int]], None]
CompletionCallback = Callable[[Optional[MediaError], str, str], None]

_READ_SIZE = 64 * 1024
_TAIL_SIZE = 4096


class ProcessState(str, Enum):
    """Lifecycle state of a spawned process."""
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass
class ProcessResult:
    """Result of a buffered FFMPEG process execution."""
    return_code: Optional[int]
    signal: Optional[int]
    stdout: str
    stderr: str
    command: str
    error: Optional[MediaError] = None

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def output(self) -> str:
        """Combined stdout and stderr, the way the probes read it."""
        return self.stdout + self.stderr


def parse_error(stderr: str) -> str:
    """Extract meaningful error message from ffmpeg stderr."""
    lines = stderr.strip().split("\n")

    error_patterns = [
        r"Error.*",
        r"Invalid.*",
        r"No such file.*",
        r".*not found.*",
        r"Permission denied.*",
        r"Discarding.*",
    ]

    for line in reversed(lines):
        for pattern in error_patterns:
            if re.search(pattern, line, re.IGNORECASE):
                return line.strip()

    for line in reversed(lines):
        if line.strip():
            return line.strip()

    return ""


def _signal_name(signum: Optional[int]) -> Optional[str]:
    if signum is None:
        return None
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)


class RunningProcess:
    """A spawned tool process, optionally tied to an output file.

    stdout and stderr are read by background tasks and pushed, chunk by
    chunk, to the listeners registered with :meth:`on_output`. Exit
    callbacks run only once both streams are drained.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        command: list[str],
        settings: RunSettings,
        output_file: Optional[str | Path] = None,
    ):
        self._process = process
        self.command = command
        self.settings = settings
        self.output_file = Path(output_file) if output_file else None
        self.state = ProcessState.RUNNING
        self.return_code: Optional[int] = None
        self.signal: Optional[int] = None
        self._failure: Optional[str] = None
        self._stderr_tail = ""
        self._listeners: list[OutputListener] = []
        self._exit_callbacks: list[ExitCallback] = []
        self._exited = asyncio.Event()
        self._pump_task = asyncio.get_running_loop().create_task(self._pump())

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def exited(self) -> bool:
        return self._exited.is_set()

    def on_output(self, listener: OutputListener) -> None:
        """Register ``listener(stream_name, text)`` for every output chunk."""
        self._listeners.append(listener)

    def on_exit(self, callback: ExitCallback) -> None:
        """Register ``callback(return_code, signal)`` for process exit."""
        if self.exited:
            asyncio.get_running_loop().call_soon(callback, self.return_code, self.signal)
        else:
            self._exit_callbacks.append(callback)

    def register_progress_callback(self, total_seconds: int,
                                   callback: Callable[[float], None]) -> ProgressTracker:
        """Report completion percentages parsed from the live output."""
        tracker = ProgressTracker(total_seconds, callback)
        self.on_output(lambda _stream, text: tracker.feed(text))
        return tracker

    def abort(self) -> bool:
        """Terminate the process and remove its output once it has exited.

        Returns ``False`` when the process already completed or was aborted.
        """
        if self.state is not ProcessState.RUNNING or self.exited:
            return False
        self.state = ProcessState.ABORTED
        logger.info("Aborting process %s", self.pid)
        self._terminate()
        return True

    def fail(self, reason: str) -> None:
        """Kill the process, recording ``reason`` as its failure."""
        if self._failure is None:
            self._failure = reason
        self._terminate(kill=True)

    async def wait(self) -> Optional[int]:
        """Wait for exit and return the exit code."""
        await self._exited.wait()
        return self.return_code

    def exit_error(self) -> Optional[MediaError]:
        """The error describing an abnormal exit, or ``None`` on exit code 0."""
        if not self.exited:
            return None
        if self._failure is not None:
            return render_error("process_failed", self._failure)
        if self.signal is not None or self.return_code != 0:
            detail = f"code={self.return_code}, signal={_signal_name(self.signal)}"
            reason = parse_error(self._stderr_tail)
            if reason:
                detail = f"{detail}: {reason}"
            return render_error("process_failed", detail)
        return None

    def _terminate(self, kill: bool = False) -> None:
        with contextlib.suppress(ProcessLookupError):
            if kill:
                self._process.kill()
            else:
                self._process.terminate()

    async def _read_stream(self, stream: Optional[asyncio.StreamReader], name: str) -> None:
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder(self.settings.encoding)(errors="replace")
        while True:
            chunk = await stream.read(_READ_SIZE)
            text = decoder.decode(chunk, final=not chunk)
            if text:
                self._dispatch(name, text)
            if not chunk:
                break

    def _dispatch(self, name: str, text: str) -> None:
        if name == "stderr":
            self._stderr_tail = (self._stderr_tail + text)[-_TAIL_SIZE:]
        for listener in list(self._listeners):
            try:
                listener(name, text)
            except Exception:
                logger.exception("Output listener failed for process %s", self.pid)

    async def _pump(self) -> None:
        readers = asyncio.gather(
            self._read_stream(self._process.stdout, "stdout"),
            self._read_stream(self._process.stderr, "stderr"),
        )
        try:
            if self.settings.timeout and self.settings.timeout > 0:
                await asyncio.wait_for(readers, timeout=self.settings.timeout)
            else:
                await readers
        except asyncio.TimeoutError:
            logger.warning("Process %s timed out after %ss", self.pid, self.settings.timeout)
            self.fail(f"timed out after {self.settings.timeout}s")
        return_code = await self._process.wait()
        self._finish(return_code)

    def _finish(self, return_code: int) -> None:
        self.return_code = None if return_code < 0 else return_code
        self.signal = -return_code if return_code < 0 else None
        if self.state is ProcessState.RUNNING:
            self.state = ProcessState.COMPLETED
        logger.debug(
            "Process %s exited (code=%s, signal=%s, state=%s)",
            self.pid, self.return_code, _signal_name(self.signal), self.state.value,
        )

        if self.state is ProcessState.ABORTED and self.output_file and self.output_file.is_file():
            logger.info("Removing partial output %s", self.output_file)
            self.output_file.unlink(missing_ok=True)

        self._exited.set()
        for callback in self._exit_callbacks:
            try:
                callback(self.return_code, self.signal)
            except Exception:
                logger.exception("Exit callback failed for process %s", self.pid)


async def spawn(
    args: list[str],
    settings: Optional[RunSettings] = None,
    output_file: Optional[str | Path] = None,
    callback: Optional[CompletionCallback] = None,
) -> RunningProcess:
    """Start the tool process.

    Args:
        args: Full argument list, binary first.
        settings: Run settings (encoding, timeout, max_buffer).
        output_file: File removed after exit if the process is aborted.
        callback: When given, stdout and stderr are buffered and
            ``callback(error, stdout, stderr)`` is called once on exit.
            Otherwise the caller attaches its own listeners.

    Raises:
        MediaError: ``process_failed`` if the binary can not be started.
    """
    settings = settings or RunSettings()
    command_string = " ".join(shlex.quote(a) for a in args)
    logger.debug("Running: %s", command_string)
    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise render_error("process_failed", f"unable to start {args[0]}: {exc}") from exc

    running = RunningProcess(process, list(args), settings, output_file)

    if callback is not None:
        buffers: dict[str, list[str]] = {"stdout": [], "stderr": []}
        size = 0

        def collect(stream: str, text: str) -> None:
            nonlocal size
            buffers[stream].append(text)
            size += len(text)
            if settings.max_buffer and size > settings.max_buffer:
                logger.warning("Process %s exceeded max_buffer (%d)", running.pid, settings.max_buffer)
                running.fail(f"output exceeded max_buffer of {settings.max_buffer}")

        def finished(_code: Optional[int], _signal: Optional[int]) -> None:
            callback(running.exit_error(), "".join(buffers["stdout"]), "".join(buffers["stderr"]))

        running.on_output(collect)
        running.on_exit(finished)

    return running


async def run_buffered(args: list[str], settings: Optional[RunSettings] = None) -> ProcessResult:
    """Run the tool to completion and return its buffered output."""
    loop = asyncio.get_running_loop()
    done: asyncio.Future = loop.create_future()

    def finished(error: Optional[MediaError], stdout: str, stderr: str) -> None:
        if not done.done():
            done.set_result((error, stdout, stderr))

    running = await spawn(args, settings, callback=finished)
    error, stdout, stderr = await done
    return ProcessResult(
        return_code=running.return_code,
        signal=running.signal,
        stdout=stdout,
        stderr=stderr,
        command=" ".join(shlex.quote(a) for a in args),
        error=error,
    )


class Conversion:
    """Result handle of one builder-driven run.

    ``result`` resolves exactly once: with the produced output (or the value
    returned by ``finalize``) or with a :class:`MediaError`. Progress is a
    separate, repeatable channel.
    """

    def __init__(
        self,
        process: RunningProcess,
        expected_output: Optional[str] = None,
        finalize: Optional[Callable[[Optional[str]], object]] = None,
    ):
        self.process = process
        self.expected_output = expected_output
        self._finalize = finalize
        self.result: asyncio.Future = asyncio.get_running_loop().create_future()
        process.on_exit(self._on_exit)

    def on_progress(self, total_seconds: int, callback: Callable[[float], None]) -> None:
        """Call ``callback(percent)`` whenever an elapsed-time marker shows up."""
        self.process.register_progress_callback(total_seconds, callback)

    def abort(self) -> bool:
        return self.process.abort()

    @property
    def done(self) -> bool:
        return self.result.done()

    async def wait(self) -> object:
        return await self.result

    def __await__(self):
        return self.result.__await__()

    def _on_exit(self, _code: Optional[int], _signal: Optional[int]) -> None:
        if self.result.done():
            return
        error = self.process.exit_error()
        if error is None and self.expected_output and not Path(self.expected_output).exists():
            error = render_error("no_output_produced", self.expected_output)
        if error is not None:
            logger.info("Conversion failed: %s", error)
            self.result.set_exception(error)
            return
        value: object = self.expected_output
        if self._finalize is not None:
            try:
                value = self._finalize(self.expected_output)
            except MediaError as exc:
                self.result.set_exception(exc)
                return
            except Exception as exc:
                logger.exception("Finalizing output %s failed", self.expected_output)
                error = render_error("process_failed", exc)
                error.__cause__ = exc
                self.result.set_exception(error)
                return
        logger.info("Conversion completed: %s", self.expected_output)
        self.result.set_result(value)


async def execute(
    args: list[str],
    settings: Optional[RunSettings] = None,
    expected_output: Optional[str] = None,
    finalize: Optional[Callable[[Optional[str]], object]] = None,
) -> Conversion:
    """Spawn ``args`` and track it as a :class:`Conversion`."""
    running = await spawn(args, settings, output_file=expected_output)
    return Conversion(running, expected_output, finalize)
