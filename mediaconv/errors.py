"""Error catalog for mediaconv.

Every failure raised by the library goes through :func:`raise_error`, so
callers can rely on a stable numeric ``code`` plus a readable message
without inspecting parser or process internals.
"""

from dataclasses import dataclass
from typing import Callable, NoReturn, Optional


@dataclass(frozen=True)
class ErrorDescriptor:
    """A catalog entry: numeric code and message template."""
    code: int
    template: Callable[[str], str]


_CATALOG: dict[str, ErrorDescriptor] = {
    "empty_input_filepath": ErrorDescriptor(
        100, lambda arg: "The input file path can not be empty"),
    "input_filepath_must_be_string": ErrorDescriptor(
        101, lambda arg: "The input file path must be a string"),
    "invalid_option_name": ErrorDescriptor(
        102, lambda arg: f'The option "{arg}" is invalid. Check the list of available options'),
    "file_input_not_exist": ErrorDescriptor(
        103, lambda arg: "The input file does not exist"),
    "format_not_supported": ErrorDescriptor(
        104, lambda arg: f'The format "{arg}" is not supported by the version of ffmpeg'),
    "audio_channel_is_invalid": ErrorDescriptor(
        105, lambda arg: f'The audio channel "{arg}" is not valid'),
    "mkdir": ErrorDescriptor(
        106, lambda arg: f"Error occurred during creation folder: {arg}"),
    "extract_frame_invalid_everyN_options": ErrorDescriptor(
        107, lambda arg: "You can specify only one sampling option between "
                         "number, every_n_frames, every_n_seconds and every_n_percentage"),
    "invalid_watermark": ErrorDescriptor(
        108, lambda arg: f'The watermark "{arg}" does not exists'),
    "invalid_watermark_position": ErrorDescriptor(
        109, lambda arg: f'Invalid watermark position "{arg}"'),
    "size_format": ErrorDescriptor(
        110, lambda arg: f'The format "{arg}" not supported by the function "set_video_size"'),
    "resolution_square_not_defined": ErrorDescriptor(
        111, lambda arg: "The resolution for pixel aspect ratio is not defined"),
    "command_already_exists": ErrorDescriptor(
        112, lambda arg: f'The command "{arg}" already exists'),
    "codec_not_supported": ErrorDescriptor(
        113, lambda arg: f'The codec "{arg}" is not supported by the version of ffmpeg'),
    "time_not_valid": ErrorDescriptor(
        114, lambda arg: f'The time or duration value "{arg}" is not expressed in a valid format'),
    "output_not_specified": ErrorDescriptor(
        115, lambda arg: "No output was specified!"),
    "process_failed": ErrorDescriptor(
        116, lambda arg: f"Error exit for process: {arg}"),
    "no_output_produced": ErrorDescriptor(
        117, lambda arg: f"No output file was produced: {arg}" if arg else "No output file was produced!"),
    "no_input_selected": ErrorDescriptor(
        118, lambda arg: "No input file selected!"),
    "config_invalid": ErrorDescriptor(
        119, lambda arg: f"Invalid configuration: {arg}"),
}

ERROR_LABELS = tuple(_CATALOG)


class MediaError(Exception):
    """Exception carrying a catalogued error code and message."""

    def __init__(self, label: str, code: int, message: str):
        super().__init__(message)
        self.label = label
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def __repr__(self) -> str:
        return f"MediaError(label={self.label!r}, code={self.code}, message={self.message!r})"


def render_error(label: str, arg: Optional[object] = None) -> MediaError:
    """Build the error for ``label``, formatting ``arg`` into its message.

    Raises:
        KeyError: If ``label`` is not in the catalog.
    """
    descriptor = _CATALOG[label]
    text = "" if arg is None else str(arg)
    return MediaError(label, descriptor.code, descriptor.template(text))


def raise_error(label: str, arg: Optional[object] = None) -> NoReturn:
    """Raise the catalogued error for ``label``."""
    raise render_error(label, arg)
