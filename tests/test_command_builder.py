"""Tests for the command builder module."""

import pytest

from mediaconv.config import RunSettings, ToolContext
from mediaconv.errors import MediaError
from mediaconv.executor.command_builder import (
    CommandBuilder,
    Filter,
    FilterChain,
    FFMPEGCommand,
    build_overlay,
    build_select,
)


class TestFilter:
    """Tests for Filter class."""

    def test_positional_args(self):
        """Test basic filter string generation."""
        f = Filter(name="scale", args=["iw*sar", "ih"])
        assert f.to_string() == "scale=iw*sar:ih"

    def test_named_params(self):
        f = Filter(name="scale", params={"w": 1920, "h": 1080})
        assert f.to_string() == "scale=w=1920:h=1080"

    def test_filter_no_params(self):
        """Test filter without parameters."""
        assert Filter(name="hflip").to_string() == "hflip"

    def test_float_args_render_as_integers(self):
        assert Filter(name="fps", args=[30.0]).to_string() == "fps=30"


class TestFilterChain:
    """Tests for FilterChain class."""

    def test_fragments_joined_in_order(self):
        chain = FilterChain()
        chain.add("scale=iw*sar:ih").add(Filter("pad", ["a", "b"]))
        assert chain.to_string() == "scale=iw*sar:ih, pad=a:b"

    def test_empty_chain(self):
        """Test empty filter chain."""
        chain = FilterChain()
        assert chain.to_string() == ""
        assert not chain


class TestFFMPEGCommand:
    """Tests for FFMPEGCommand class."""

    def test_token_order(self):
        cmd = FFMPEGCommand(
            binary="ffmpeg",
            inputs=["/in.mp4", "/logo.png"],
            flags=[("-vn", None), ("-ar", "44100")],
            output="/out.mp3",
        )
        cmd.filters.add("overlay=0+0:0+0")
        assert cmd.to_args() == [
            "ffmpeg", "-i", "/in.mp4", "-i", "/logo.png",
            "-vn", "-ar", "44100",
            "-filter_complex", "overlay=0+0:0+0",
            "-y", "/out.mp3",
        ]

    def test_requires_output(self):
        with pytest.raises(MediaError) as exc_info:
            FFMPEGCommand(inputs=["/in.mp4"]).to_args()
        assert exc_info.value.label == "output_not_specified"

    def test_to_string_quotes(self):
        cmd = FFMPEGCommand(inputs=["/my video.mp4"], output="/out.mp4")
        assert cmd.to_string() == "ffmpeg -i '/my video.mp4' -y /out.mp4"


class TestCommandBuilder:
    """Tests for CommandBuilder class."""

    def test_basic_command(self):
        """Test basic command generation."""
        args = CommandBuilder().add_input("/input.mp4").set_output("/output.mp4").build_args()
        assert args == ["ffmpeg", "-i", "/input.mp4", "-y", "/output.mp4"]

    def test_output_is_last(self):
        builder = CommandBuilder()
        builder.set_output("/first.mp4")
        builder.add_input("/input.mp4")
        builder.add_flag("-an")
        builder.set_output("/second.mp4")
        args = builder.build_args()
        assert args[-2:] == ["-y", "/second.mp4"]
        assert "/first.mp4" not in args

    def test_missing_output(self):
        builder = CommandBuilder().add_input("/input.mp4")
        with pytest.raises(MediaError) as exc_info:
            builder.build_args()
        assert exc_info.value.code == 115

    def test_duplicate_flag(self):
        builder = CommandBuilder().add_flag("-s", "640x360")
        with pytest.raises(MediaError) as exc_info:
            builder.add_flag("-s", "320x180")
        assert exc_info.value.label == "command_already_exists"
        assert "-s" in exc_info.value.message

    def test_numeric_flag_argument(self):
        builder = CommandBuilder().add_flag("-ar", 44100).add_flag("-strict", -2)
        builder.set_output("/o.mp4")
        assert builder.build_args()[1:5] == ["-ar", "44100", "-strict", "-2"]

    def test_has_flag(self):
        builder = CommandBuilder().add_flag("-vn")
        assert builder.has_flag("-vn")
        assert not builder.has_flag("-an")

    def test_filters_are_additive(self):
        builder = CommandBuilder()
        builder.add_filter("overlay=0+0:0+0")
        builder.add_filter(build_select("n", 10))
        builder.set_output("/o.mp4")
        args = builder.build_args()
        index = args.index("-filter_complex")
        assert args[index + 1] == r"overlay=0+0:0+0, select=not(mod(n\,10))"

    def test_padding(self):
        builder = CommandBuilder().apply_padding(16, 9, "16:9", "black")
        builder.set_output("/o.mp4")
        args = builder.build_args()
        assert args[args.index("-filter_complex") + 1] == (
            r"scale=iw*sar:ih, pad=max(iw\,ih*(16/9)):ow/(16/9):(ow-iw)/2:(oh-ih)/2:black"
        )
        assert args[args.index("-aspect") + 1] == "16:9"

    def test_padding_without_color(self):
        builder = CommandBuilder().apply_padding(4, 3, "4:3").set_output("/o.mp4")
        assert builder.build_string().endswith(r"(ow-iw)/2:(oh-ih)/2' -y /o.mp4")

    def test_from_context(self):
        context = ToolContext(binary="/opt/ffmpeg", settings=RunSettings(timeout=5))
        builder = CommandBuilder.from_context(context)
        assert builder.set_output("/o.mp4").build_args()[0] == "/opt/ffmpeg"
        assert builder.settings.timeout == 5

    def test_clone_is_independent(self):
        builder = CommandBuilder().add_input("/in.mp4")
        other = builder.clone().add_flag("-an")
        assert other.has_flag("-an")
        assert not builder.has_flag("-an")

    @pytest.mark.asyncio
    async def test_execute_without_output(self):
        with pytest.raises(MediaError) as exc_info:
            await CommandBuilder().add_input("/in.mp4").execute()
        assert exc_info.value.label == "output_not_specified"


class TestFragments:
    """Tests for the fragment helpers."""

    def test_overlay(self):
        assert build_overlay("main_w-overlay_w+0+0:main_h-overlay_h+0+0").to_string() == (
            "overlay=main_w-overlay_w+0+0:main_h-overlay_h+0+0"
        )

    def test_select(self):
        assert build_select("t", 2.5).to_string() == r"select=not(mod(t\,2.5))"
