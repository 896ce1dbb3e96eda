#!/usr/bin/env -S uv run
# /// script
# requires-python = ">=3.11"
# dependencies = [
#   "pillow>=10.1"
# ]
# ///
"""Render multi-language caption tracks into a resumable PNG frame sequence."""

from __future__ import annotations

import argparse
import io
import logging
import math
import os
import shutil
import subprocess
import sys
from dataclasses import dataclass
from typing import Sequence, Tuple

from PIL import Image, ImageDraw, ImageFont

from domain.timed_text import (
    FONT_LOAD_CODE,
    INVALID_CONFIG_CODE,
    INVALID_TRACKS_CODE,
    CaptionPipelineError,
    CaptionValidationError,
    LayoutConfig,
    Track,
    TranscriptUnavailableError,
    parse_hex_color_to_rgba,
    parse_webvtt,
    read_timed_text_file,
)
from service.caption_acquisition import (
    download_audio,
    download_tracks,
    extract_video_id,
    list_subtitle_languages,
    select_preferred_languages,
)
from service.frame_pipeline import (
    FFMPEG_FRAME_PATTERN,
    FrameRenderer,
    generate_frames,
)
from service.job_state import GenerationJob, write_job_state
from service.track_alignment import align_tracks

LOGGER = logging.getLogger("render_caption_frames")

FFMPEG_NOT_FOUND_CODE = "caption_frames.ffmpeg.not_found"
FFMPEG_EXEC_CODE = "caption_frames.ffmpeg.exec_error"
FFMPEG_PROCESS_CODE = "caption_frames.ffmpeg.process_failed"
H264_CODEC = "libx264"
H264_PIXEL_FORMAT = "yuv420p"
H264_PRESET = "medium"
H264_CRF = "23"
AUDIO_CODEC = "aac"
AUDIO_BITRATE = "192k"
CHAR_WIDTH_RATIO = 0.6
LINE_HEIGHT_RATIO = 1.2
SECONDARY_FONT_RATIO = 0.8
MAX_LINES_PER_LANGUAGE = 2
TEXT_OFFSETS = ((0, 0), (1, 0), (0, 1))
NO_TRANSCRIPT_EXIT_CODE = 3


@dataclass(frozen=True)
class GenerationRequest:
    """Parsed CLI request and runtime options."""

    layout: LayoutConfig
    frames_dir: str
    job_file: str
    track_files: Tuple[Tuple[str, str], ...]
    youtube_url: str | None
    languages: Tuple[str, ...]
    work_dir: str
    audio_track: str | None
    output_video_file: str | None


def configure_logging() -> None:
    """Configure logging for CLI output."""
    logging.basicConfig(level=logging.INFO, format="%(message)s")


def load_font_cached(
    font_file_path: str | None,
    font_size: int,
    cache: dict[Tuple[str | None, int], ImageFont.FreeTypeFont],
) -> ImageFont.FreeTypeFont:
    """Load a font, or Pillow's default font, and cache by path and size."""
    cache_key = (font_file_path, font_size)
    cached_font = cache.get(cache_key)
    if cached_font is not None:
        return cached_font
    try:
        if font_file_path is None:
            font = ImageFont.load_default(size=font_size)
        else:
            font = ImageFont.truetype(
                font_file_path, size=font_size, layout_engine=ImageFont.Layout.BASIC
            )
    except Exception as exc:
        raise CaptionValidationError(
            FONT_LOAD_CODE, f"failed to load font {font_file_path} at size {font_size}"
        ) from exc
    cache[cache_key] = font
    return font


def wrap_caption_text(text_value: str, max_chars_per_line: int) -> list[str]:
    """Greedily wrap words so each line fits the character budget.

    A single word longer than the budget keeps a line of its own.
    """
    lines: list[str] = []
    current_line = ""
    for word in text_value.split():
        candidate = f"{current_line} {word}" if current_line else word
        if len(candidate) <= max_chars_per_line:
            current_line = candidate
            continue
        if current_line:
            lines.append(current_line)
        current_line = word
    if current_line:
        lines.append(current_line)
    return lines


def compute_language_center_y(height: int, language_count: int, language_index: int) -> float:
    """Vertical center of a language band: 1/2, or 1/3 and 2/3, and so on."""
    return height / (language_count + 1) * (language_index + 1)


def render_caption_image(
    lines: Sequence[str],
    layout: LayoutConfig,
    font_cache: dict[Tuple[str | None, int], ImageFont.FreeTypeFont],
) -> Image.Image:
    """Draw one caption frame; all-empty lines give a background-only frame."""
    frame_image = Image.new(
        "RGBA", (layout.width, layout.height), color=layout.background_rgba
    )
    if not any(line.strip() for line in lines):
        return frame_image

    draw_context = ImageDraw.Draw(frame_image)
    draw_context.fontmode = "1"
    max_chars_per_line = int(math.floor(layout.width / (layout.font_size * CHAR_WIDTH_RATIO)))
    line_height = layout.font_size * LINE_HEIGHT_RATIO
    center_x = layout.width / 2

    for language_index, text_value in enumerate(lines):
        if not text_value.strip():
            continue
        display_lines = wrap_caption_text(text_value, max_chars_per_line)[
            :MAX_LINES_PER_LANGUAGE
        ]
        font_size = layout.font_size
        if language_index > 0:
            font_size = max(1, int(round(layout.font_size * SECONDARY_FONT_RATIO)))
        font = load_font_cached(layout.font_file, font_size, font_cache)

        center_y = compute_language_center_y(layout.height, len(lines), language_index)
        start_y = center_y - (len(display_lines) * line_height) / 2 + line_height / 2
        for line_index, display_line in enumerate(display_lines):
            line_y = start_y + line_index * line_height
            for offset_x, offset_y in TEXT_OFFSETS:
                draw_context.text(
                    (center_x + offset_x, line_y + offset_y),
                    display_line,
                    font=font,
                    fill=layout.text_rgba,
                    anchor="mm",
                )
    return frame_image


def build_frame_renderer() -> FrameRenderer:
    """Return a renderer that encodes caption frames as PNG bytes."""
    font_cache: dict[Tuple[str | None, int], ImageFont.FreeTypeFont] = {}

    def render(lines: Sequence[str], layout: LayoutConfig) -> bytes:
        frame_image = render_caption_image(lines, layout, font_cache)
        buffer = io.BytesIO()
        frame_image.convert("RGB").save(buffer, format="PNG")
        return buffer.getvalue()

    return render


def ensure_ffmpeg_available() -> str:
    """Ensure ffmpeg is installed and executable."""
    ffmpeg_path = shutil.which("ffmpeg")
    if not ffmpeg_path:
        raise CaptionPipelineError(FFMPEG_NOT_FOUND_CODE, "ffmpeg not on PATH")
    try:
        subprocess.run(
            [ffmpeg_path, "-version"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=True,
        )
    except Exception as exc:
        raise CaptionPipelineError(
            FFMPEG_EXEC_CODE, "ffmpeg exists but could not be executed"
        ) from exc
    return ffmpeg_path


def build_mux_command(
    ffmpeg_path: str, frames_dir: str, audio_track: str, output_path: str, fps: int
) -> list[str]:
    """Build the ffmpeg command joining the frame sequence with audio."""
    return [
        ffmpeg_path,
        "-y",
        "-framerate",
        str(fps),
        "-start_number",
        "1",
        "-pattern_type",
        "sequence",
        "-i",
        os.path.join(frames_dir, FFMPEG_FRAME_PATTERN),
        "-i",
        audio_track,
        "-c:v",
        H264_CODEC,
        "-pix_fmt",
        H264_PIXEL_FORMAT,
        "-c:a",
        AUDIO_CODEC,
        "-b:a",
        AUDIO_BITRATE,
        "-shortest",
        "-r",
        str(fps),
        "-preset",
        H264_PRESET,
        "-crf",
        H264_CRF,
        output_path,
    ]


def mux_frames_to_video(
    frames_dir: str, audio_track: str, output_path: str, fps: int
) -> str:
    """Encode the frame sequence and audio track into a video file."""
    ffmpeg_path = ensure_ffmpeg_available()
    command = build_mux_command(ffmpeg_path, frames_dir, audio_track, output_path, fps)
    LOGGER.info("caption_frames.ffmpeg.command: %s", " ".join(command))
    result = subprocess.run(
        command,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.PIPE,
        text=True,
        check=False,
    )
    if result.returncode != 0:
        raise CaptionPipelineError(
            FFMPEG_PROCESS_CODE,
            f"ffmpeg failed with exit code {result.returncode}. {result.stderr.strip()}",
        )
    return output_path


def parse_track_argument(value: str) -> Tuple[str, str]:
    """Parse a LANG=PATH track argument."""
    language, separator, path = value.partition("=")
    if not separator or not language.strip() or not path.strip():
        raise CaptionValidationError(
            INVALID_TRACKS_CODE, f"track must be LANG=PATH: {value!r}"
        )
    return language.strip(), path.strip()


def parse_args(argv: Sequence[str]) -> GenerationRequest:
    """Parse CLI arguments into a GenerationRequest."""
    parser = argparse.ArgumentParser(prog="render_caption_frames.py", add_help=True)
    source_group = parser.add_mutually_exclusive_group(required=True)
    source_group.add_argument(
        "--track",
        action="append",
        default=None,
        help="LANG=PATH of a WebVTT file; the first track drives timing",
    )
    source_group.add_argument("--youtube-url", default=None)
    parser.add_argument("--languages", default=None, help="comma separated codes")
    parser.add_argument("--work-dir", default="temp_subs")
    parser.add_argument("--frames-dir", required=True)
    parser.add_argument("--job-file", default=None)
    parser.add_argument("--width", type=int, default=1920)
    parser.add_argument("--height", type=int, default=1080)
    parser.add_argument("--fps", type=int, default=30)
    parser.add_argument("--font-size", type=int, default=48)
    parser.add_argument("--font-file", default=None)
    parser.add_argument("--text-color", default="#FFFFFF")
    parser.add_argument("--background", default="#000000")
    parser.add_argument("--audio-track", default=None)
    parser.add_argument("--output-video-file", default=None)

    parsed = parser.parse_args(argv)
    track_files = tuple(parse_track_argument(value) for value in parsed.track or ())

    languages: Tuple[str, ...] = ()
    if parsed.languages is not None:
        if parsed.youtube_url is None:
            raise CaptionValidationError(
                INVALID_CONFIG_CODE, "languages requires youtube-url"
            )
        languages = tuple(
            code.strip() for code in parsed.languages.split(",") if code.strip()
        )
        if not languages:
            raise CaptionValidationError(
                INVALID_CONFIG_CODE, "languages must name at least one code"
            )

    if parsed.output_video_file and not (parsed.audio_track or parsed.youtube_url):
        raise CaptionValidationError(
            INVALID_CONFIG_CODE,
            "output-video-file requires audio-track or youtube-url",
        )

    layout = LayoutConfig(
        width=parsed.width,
        height=parsed.height,
        fps=parsed.fps,
        font_size=parsed.font_size,
        text_rgba=parse_hex_color_to_rgba(parsed.text_color),
        background_rgba=parse_hex_color_to_rgba(parsed.background),
        font_file=parsed.font_file,
    )
    job_file = parsed.job_file or os.path.join(
        os.path.dirname(os.path.abspath(parsed.frames_dir)), "job.json"
    )

    return GenerationRequest(
        layout=layout,
        frames_dir=parsed.frames_dir,
        job_file=job_file,
        track_files=track_files,
        youtube_url=parsed.youtube_url,
        languages=languages,
        work_dir=parsed.work_dir,
        audio_track=parsed.audio_track,
        output_video_file=parsed.output_video_file,
    )


def resolve_job_id(request: GenerationRequest) -> str:
    """Use the video id when downloading, else the frames directory name."""
    if request.youtube_url:
        return extract_video_id(request.youtube_url)
    return os.path.basename(os.path.abspath(request.frames_dir))


def load_tracks(request: GenerationRequest) -> list[Tuple[str, Track]]:
    """Load caption tracks from local files or from YouTube."""
    if request.youtube_url is None:
        return [
            (language, parse_webvtt(read_timed_text_file(path)))
            for language, path in request.track_files
        ]
    languages = list(request.languages)
    if not languages:
        languages = select_preferred_languages(
            list_subtitle_languages(request.youtube_url)
        )
    if not languages:
        raise TranscriptUnavailableError()
    LOGGER.info("caption_frames.acquire.requested: %s", ", ".join(languages))
    tracks = download_tracks(request.youtube_url, languages, request.work_dir)
    if not tracks:
        raise TranscriptUnavailableError()
    return tracks


def run_generation_job(request: GenerationRequest) -> GenerationJob:
    """Run the full job, persisting each state snapshot to the job file."""
    job = GenerationJob(video_id=resolve_job_id(request))

    def record(snapshot: GenerationJob) -> GenerationJob:
        write_job_state(request.job_file, snapshot)
        return snapshot

    def record_failure(error: str) -> None:
        try:
            record(job.fail(error))
        except CaptionPipelineError as exc:
            LOGGER.warning("%s: %s", exc.code, str(exc).strip())

    job = record(job.start_download())
    try:
        timeline = align_tracks(load_tracks(request))
        job = record(job.transcript_ready(len(timeline)))
        LOGGER.info(
            "caption_frames.transcript.ready: %d entries in %s",
            len(timeline),
            ", ".join(timeline.languages),
        )

        audio_track = request.audio_track
        if request.output_video_file and request.youtube_url and not audio_track:
            audio_track = download_audio(
                request.youtube_url, os.path.join(request.work_dir, "audio.webm")
            )

        job = record(job.start_generating())

        def on_progress(frame_index: int, total_frames: int, path: str) -> None:
            nonlocal job
            previous_progress = job.progress
            job = job.frame_rendered(frame_index, total_frames)
            if job.progress != previous_progress:
                LOGGER.info(
                    "caption_frames.render.progress: %d/%d %s",
                    frame_index,
                    total_frames,
                    path,
                )

        result = generate_frames(
            timeline,
            request.frames_dir,
            request.layout.fps,
            build_frame_renderer(),
            request.layout,
            on_progress=on_progress,
        )
        LOGGER.info(
            "caption_frames.render.done: %d frames (%d rendered, %d reused)",
            result.total_frames,
            result.rendered_frames,
            result.skipped_frames,
        )

        if request.output_video_file and audio_track:
            mux_frames_to_video(
                request.frames_dir,
                audio_track,
                request.output_video_file,
                request.layout.fps,
            )
            LOGGER.info(
                "caption_frames.output.video_written: %s", request.output_video_file
            )
        return record(job.complete())
    except (CaptionValidationError, CaptionPipelineError) as exc:
        record_failure(f"{exc.code}: {str(exc).strip()}")
        raise
    except Exception as exc:
        record_failure(f"caption_frames.unhandled_error: {str(exc).strip()}")
        raise


def main() -> int:
    """CLI entrypoint."""
    configure_logging()

    try:
        request = parse_args(sys.argv[1:])
        run_generation_job(request)
        return 0
    except TranscriptUnavailableError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return NO_TRANSCRIPT_EXIT_CODE
    except CaptionValidationError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except CaptionPipelineError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except Exception as exc:
        LOGGER.error("caption_frames.unhandled_error: %s", str(exc).strip())
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
