"""Domain types and parsing for render_caption_frames."""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Tuple

INVALID_COLOR_CODE = "caption_frames.input.invalid_color"
INVALID_CONFIG_CODE = "caption_frames.input.invalid_config"
INVALID_TRACKS_CODE = "caption_frames.input.invalid_tracks"
INVALID_URL_CODE = "caption_frames.input.invalid_url"
INPUT_FILE_CODE = "caption_frames.input.file_error"
UNREADABLE_DOCUMENT_CODE = "caption_frames.input.unreadable_document"
FONT_LOAD_CODE = "caption_frames.input.font_unloadable"
TRANSCRIPT_UNAVAILABLE_CODE = "caption_frames.transcript.unavailable"

VTT_TIME_RANGE_PATTERN = re.compile(
    r"(\d+):(\d{2}):(\d{2})\.(\d{3}) --> (\d+):(\d{2}):(\d{2})\.(\d{3})"
)
MARKUP_TAG_PATTERN = re.compile(r"<[^>]*>")
HEX_COLOR_PATTERN = re.compile(r"#([0-9a-fA-F]{6})")


class CaptionValidationError(ValueError):
    """Validation error with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class CaptionPipelineError(RuntimeError):
    """Runtime error with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class TranscriptUnavailableError(CaptionPipelineError):
    """Raised when no caption track yields a usable transcript."""

    def __init__(self, message: str = "No transcript available for this video") -> None:
        super().__init__(TRANSCRIPT_UNAVAILABLE_CODE, message)


@dataclass(frozen=True)
class Cue:
    """A single timed caption line.

    ``end_ms`` is not required to be after ``start_ms``; degenerate cues are
    kept as parsed and contribute no frames downstream.
    """

    text: str
    start_ms: int
    end_ms: int

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms


Track = Tuple[Cue, ...]


@dataclass(frozen=True)
class LayoutConfig:
    """Validated frame layout for the renderer."""

    width: int
    height: int
    fps: int
    font_size: int
    text_rgba: Tuple[int, int, int, int]
    background_rgba: Tuple[int, int, int, int]
    font_file: str | None = None

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise CaptionValidationError(
                INVALID_CONFIG_CODE, "width and height must be positive"
            )
        if self.fps <= 0:
            raise CaptionValidationError(INVALID_CONFIG_CODE, "fps must be positive")
        if self.font_size <= 0:
            raise CaptionValidationError(
                INVALID_CONFIG_CODE, "font_size must be positive"
            )
        for rgba in (self.text_rgba, self.background_rgba):
            if len(rgba) != 4:
                raise CaptionValidationError(INVALID_CONFIG_CODE, "color is invalid")
            for channel in rgba:
                if channel < 0 or channel > 255:
                    raise CaptionValidationError(
                        INVALID_CONFIG_CODE, "color channel out of range"
                    )
        if self.font_file is not None and not self.font_file.strip():
            raise CaptionValidationError(
                INVALID_CONFIG_CODE, "font_file must be non-empty"
            )


def parse_hex_color_to_rgba(color_value: str) -> Tuple[int, int, int, int]:
    """Parse a #RRGGBB color token into an opaque RGBA tuple."""
    match_value = HEX_COLOR_PATTERN.fullmatch(color_value.strip())
    if not match_value:
        raise CaptionValidationError(
            INVALID_COLOR_CODE,
            f"invalid color value: {color_value!r}",
        )
    rgb_hex = match_value.group(1)
    return (
        int(rgb_hex[0:2], 16),
        int(rgb_hex[2:4], 16),
        int(rgb_hex[4:6], 16),
        255,
    )


def parse_timestamp(hours: str, minutes: str, seconds: str, millis: str) -> int:
    """Convert timestamp fields into milliseconds."""
    return (int(hours) * 3600 + int(minutes) * 60 + int(seconds)) * 1000 + int(millis)


def strip_markup(line: str) -> str:
    """Remove inline tags such as ``<c.colorCCCCCC>`` or ``<b>``."""
    return MARKUP_TAG_PATTERN.sub("", line).strip()


def decode_document(document: str | bytes) -> str:
    """Return document text, rejecting values that are not a text document."""
    if isinstance(document, str):
        return document
    if isinstance(document, (bytes, bytearray)):
        try:
            return bytes(document).decode("utf-8", errors="strict")
        except UnicodeDecodeError as exc:
            raise CaptionValidationError(
                UNREADABLE_DOCUMENT_CODE,
                f"caption document is not valid UTF-8 at byte offset {exc.start}",
            ) from exc
    raise CaptionValidationError(
        UNREADABLE_DOCUMENT_CODE,
        f"caption document must be text, got {type(document).__name__}",
    )


def parse_webvtt(document: str | bytes) -> Track:
    """Parse a WebVTT document into a track of cues.

    Lines before the first time-range header, and anything between blocks that
    is not a header, are skipped. Blocks whose text is empty once markup is
    removed are dropped, so the track may hold fewer cues than the document has
    headers.
    """
    text_value = decode_document(document).replace("\ufeff", "")
    lines = text_value.splitlines()
    cues: list[Cue] = []

    line_index = 0
    while line_index < len(lines):
        match = VTT_TIME_RANGE_PATTERN.search(lines[line_index].strip())
        if not match:
            line_index += 1
            continue

        start_ms = parse_timestamp(*match.group(1, 2, 3, 4))
        end_ms = parse_timestamp(*match.group(5, 6, 7, 8))

        text_lines: list[str] = []
        line_index += 1
        while line_index < len(lines) and lines[line_index].strip():
            clean_line = strip_markup(lines[line_index])
            if clean_line:
                text_lines.append(clean_line)
            line_index += 1

        if text_lines:
            cues.append(
                Cue(text=" ".join(text_lines), start_ms=start_ms, end_ms=end_ms)
            )

    return tuple(cues)


def read_timed_text_file(file_path: str) -> str:
    """Read a caption document with strict UTF-8 decoding."""
    try:
        with open(file_path, "rb") as file_handle:
            file_bytes = file_handle.read()
    except FileNotFoundError as exc:
        raise CaptionValidationError(
            INPUT_FILE_CODE, f"caption file not found: {file_path}"
        ) from exc

    try:
        return file_bytes.decode("utf-8", errors="strict")
    except UnicodeDecodeError as exc:
        raise CaptionValidationError(
            INPUT_FILE_CODE,
            f"caption file is not valid UTF-8 at byte offset {exc.start}",
        ) from exc
