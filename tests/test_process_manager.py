"""Tests for process execution, conversions and abort handling."""

import asyncio

import pytest

from mediaconv.config import RunSettings
from mediaconv.errors import MediaError
from mediaconv.executor.process_manager import (
    ProcessState,
    execute,
    parse_error,
    run_buffered,
    spawn,
)


async def _wait_for_file(path, timeout=5.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not path.exists():
        if loop.time() > deadline:
            raise AssertionError(f"{path} was never created")
        await asyncio.sleep(0.05)


class TestParseError:
    """Tests for parse_error."""

    def test_error_line_wins(self):
        stderr = "frame=1\nError opening output file /x.mp4\nConversion failed!\n"
        assert parse_error(stderr) == "Error opening output file /x.mp4"

    def test_falls_back_to_last_line(self):
        assert parse_error("first\nlast line\n") == "last line"

    def test_empty(self):
        assert parse_error("") == ""


class TestRunBuffered:
    """Tests for run_buffered."""

    @pytest.mark.asyncio
    async def test_success(self, fake_ffmpeg, tmp_path):
        fake_ffmpeg.configure(stdout="hello")
        result = await run_buffered([str(fake_ffmpeg.path), str(tmp_path / "o.txt")])
        assert result.success
        assert result.return_code == 0
        assert result.signal is None
        assert result.stdout == "hello"

    @pytest.mark.asyncio
    async def test_non_zero_exit(self, fake_ffmpeg, tmp_path):
        fake_ffmpeg.configure(exit_code=1, progress=["Error while opening encoder\n"])
        result = await run_buffered([str(fake_ffmpeg.path), str(tmp_path / "o.txt")])
        assert not result.success
        assert result.return_code == 1
        assert result.error.label == "process_failed"
        assert "code=1" in result.error.message
        assert "Error while opening encoder" in result.error.message

    @pytest.mark.asyncio
    async def test_max_buffer(self, fake_ffmpeg, tmp_path):
        fake_ffmpeg.configure(stdout="x" * 5000)
        result = await run_buffered(
            [str(fake_ffmpeg.path), str(tmp_path / "o.txt")],
            RunSettings(max_buffer=1000),
        )
        assert result.error.label == "process_failed"
        assert "max_buffer" in result.error.message

    @pytest.mark.asyncio
    async def test_timeout(self, fake_ffmpeg, tmp_path):
        fake_ffmpeg.configure(hang=True)
        result = await run_buffered(
            [str(fake_ffmpeg.path), str(tmp_path / "o.txt")],
            RunSettings(timeout=0.5),
        )
        assert result.signal is not None
        assert "timed out" in result.error.message

    @pytest.mark.asyncio
    async def test_missing_binary(self, tmp_path):
        with pytest.raises(MediaError) as exc_info:
            await run_buffered([str(tmp_path / "no-ffmpeg"), "-formats"])
        assert exc_info.value.label == "process_failed"


class TestSpawn:
    """Tests for listeners on a spawned process."""

    @pytest.mark.asyncio
    async def test_exit_after_output(self, fake_ffmpeg, tmp_path):
        fake_ffmpeg.configure(progress=["one\n", "two\n"])
        events = []
        running = await spawn([str(fake_ffmpeg.path), str(tmp_path / "o.txt")])
        running.on_output(lambda stream, text: events.append((stream, text)))
        exited = asyncio.get_running_loop().create_future()
        running.on_exit(lambda code, sig: exited.set_result((code, sig)))

        assert await exited == (0, None)
        stderr = "".join(text for stream, text in events if stream == "stderr")
        assert stderr == "one\ntwo\n"
        assert running.state is ProcessState.COMPLETED

    @pytest.mark.asyncio
    async def test_on_exit_after_exit(self, fake_ffmpeg, tmp_path):
        running = await spawn([str(fake_ffmpeg.path), str(tmp_path / "o.txt")])
        await running.wait()
        exited = asyncio.get_running_loop().create_future()
        running.on_exit(lambda code, sig: exited.set_result(code))
        assert await exited == 0

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_stop_others(self, fake_ffmpeg, tmp_path):
        fake_ffmpeg.configure(progress=["chunk\n"])
        seen = []

        def broken(stream, text):
            raise RuntimeError("boom")

        running = await spawn([str(fake_ffmpeg.path), str(tmp_path / "o.txt")])
        running.on_output(broken)
        running.on_output(lambda stream, text: seen.append(text))
        await running.wait()
        assert "chunk\n" in "".join(seen)


class TestConversion:
    """Tests for builder-driven conversions."""

    @pytest.mark.asyncio
    async def test_resolves_to_output(self, fake_ffmpeg, tmp_path):
        output = tmp_path / "out.mp4"
        conversion = await execute([str(fake_ffmpeg.path), "-y", str(output)], expected_output=str(output))
        assert await conversion == str(output)
        assert conversion.done

    @pytest.mark.asyncio
    async def test_no_output_produced(self, fake_ffmpeg, tmp_path):
        fake_ffmpeg.configure(create_output=False)
        output = tmp_path / "out.mp4"
        conversion = await execute([str(fake_ffmpeg.path), "-y", str(output)], expected_output=str(output))
        with pytest.raises(MediaError) as exc_info:
            await conversion
        assert exc_info.value.label == "no_output_produced"

    @pytest.mark.asyncio
    async def test_failed_exit(self, fake_ffmpeg, tmp_path):
        fake_ffmpeg.configure(exit_code=1)
        output = tmp_path / "out.mp4"
        conversion = await execute([str(fake_ffmpeg.path), "-y", str(output)], expected_output=str(output))
        with pytest.raises(MediaError) as exc_info:
            await conversion.wait()
        assert exc_info.value.label == "process_failed"

    @pytest.mark.asyncio
    async def test_finalize_value(self, fake_ffmpeg, tmp_path):
        output = tmp_path / "out.mp4"
        conversion = await execute(
            [str(fake_ffmpeg.path), "-y", str(output)],
            expected_output=str(output),
            finalize=lambda path: [path],
        )
        assert await conversion == [str(output)]

    @pytest.mark.asyncio
    async def test_finalize_unexpected_error(self, fake_ffmpeg, tmp_path):
        def finalize(path):
            raise OSError("permission denied")

        output = tmp_path / "out.mp4"
        conversion = await execute(
            [str(fake_ffmpeg.path), "-y", str(output)],
            expected_output=str(output),
            finalize=finalize,
        )
        with pytest.raises(MediaError) as exc_info:
            await asyncio.wait_for(conversion.wait(), 5)
        assert exc_info.value.label == "process_failed"
        assert isinstance(exc_info.value.__cause__, OSError)
        assert conversion.done

    @pytest.mark.asyncio
    async def test_progress(self, fake_ffmpeg, tmp_path):
        fake_ffmpeg.configure(
            progress=["frame=  25 time=00:00:01.00 bitrate=N/A\n", "frame=  50 time=00:00:02.40 bitrate=N/A\n"],
            delay=0.2,
        )
        output = tmp_path / "out.mp4"
        reports = []
        conversion = await execute([str(fake_ffmpeg.path), "-y", str(output)], expected_output=str(output))
        conversion.on_progress(4, reports.append)
        await conversion
        assert reports
        assert reports[-1] == 50.0
        assert set(reports) <= {25.0, 50.0}


class TestAbort:
    """Tests for aborting a running conversion."""

    @pytest.mark.asyncio
    async def test_abort_removes_output(self, fake_ffmpeg, tmp_path):
        fake_ffmpeg.configure(hang=True)
        output = tmp_path / "out.mp4"
        conversion = await execute([str(fake_ffmpeg.path), "-y", str(output)], expected_output=str(output))
        await _wait_for_file(output)

        assert conversion.abort() is True
        with pytest.raises(MediaError) as exc_info:
            await conversion
        assert exc_info.value.label == "process_failed"
        assert conversion.process.state is ProcessState.ABORTED
        assert not output.exists()

    @pytest.mark.asyncio
    async def test_abort_is_idempotent(self, fake_ffmpeg, tmp_path):
        fake_ffmpeg.configure(hang=True)
        output = tmp_path / "out.mp4"
        conversion = await execute([str(fake_ffmpeg.path), "-y", str(output)], expected_output=str(output))
        await _wait_for_file(output)

        assert conversion.abort() is True
        assert conversion.abort() is False
        with pytest.raises(MediaError):
            await conversion
        assert conversion.abort() is False

    @pytest.mark.asyncio
    async def test_abort_after_completion(self, fake_ffmpeg, tmp_path):
        output = tmp_path / "out.mp4"
        conversion = await execute([str(fake_ffmpeg.path), "-y", str(output)], expected_output=str(output))
        await conversion
        assert conversion.abort() is False
        assert output.exists()
        assert conversion.process.state is ProcessState.COMPLETED

    @pytest.mark.asyncio
    async def test_abort_keeps_directories(self, fake_ffmpeg, tmp_path):
        fake_ffmpeg.configure(hang=True, create_output=False)
        folder = tmp_path / "frames"
        folder.mkdir()
        conversion = await execute(
            [str(fake_ffmpeg.path), "-y", str(folder / "f_%d.jpg")], expected_output=str(folder)
        )
        await asyncio.sleep(0.2)
        assert conversion.abort() is True
        with pytest.raises(MediaError):
            await conversion
        assert folder.is_dir()
