"""Sequential, resumable frame generation for render_caption_frames."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import os
import tempfile
from typing import Callable, Iterator, Sequence

from domain.timed_text import CaptionPipelineError, LayoutConfig
from service.frame_schedule import FrameSchedule, build_frame_schedule
from service.track_alignment import Timeline

FRAME_FILENAME_TEMPLATE = "frame_{frame_index:08d}.png"
FFMPEG_FRAME_PATTERN = "frame_%08d.png"
FRAME_RENDER_CODE = "caption_frames.render.failed"
FRAME_WRITE_CODE = "caption_frames.render.write_failed"
LOGGER = logging.getLogger("render_caption_frames")

FrameRenderer = Callable[[Sequence[str], LayoutConfig], bytes]
ProgressCallback = Callable[[int, int, str], None]


@dataclass(frozen=True)
class FrameProgress:
    """Progress event for one frame, rendered or reused from disk."""

    frame_index: int
    total_frames: int
    path: str
    rendered: bool


@dataclass(frozen=True)
class FrameGenerationResult:
    """Summary of a frame generation run."""

    total_frames: int
    duration_ms: int
    rendered_frames: int
    skipped_frames: int


def frame_path(frames_dir: str, frame_index: int) -> str:
    """Return the canonical path for a 1-based frame index."""
    return os.path.join(frames_dir, FRAME_FILENAME_TEMPLATE.format(frame_index=frame_index))


def write_frame_atomic(target_path: str, frame_bytes: bytes) -> None:
    """Write frame bytes so the target path only ever holds a complete file."""
    directory = os.path.dirname(target_path) or "."
    file_descriptor, temp_path = tempfile.mkstemp(
        prefix=".", suffix=".tmp", dir=directory
    )
    try:
        with os.fdopen(file_descriptor, "wb") as file_handle:
            file_handle.write(frame_bytes)
        os.replace(temp_path, target_path)
    except OSError as exc:
        if os.path.exists(temp_path):
            os.remove(temp_path)
        raise CaptionPipelineError(
            FRAME_WRITE_CODE, f"failed to write frame {target_path}: {exc}"
        ) from exc


def render_frame_bytes(
    renderer: FrameRenderer,
    lines: Sequence[str],
    layout: LayoutConfig,
    frame_index: int,
) -> bytes:
    """Call the renderer, turning any failure into a pipeline error."""
    try:
        frame_bytes = renderer(lines, layout)
    except CaptionPipelineError:
        raise
    except Exception as exc:
        raise CaptionPipelineError(
            FRAME_RENDER_CODE,
            f"renderer failed on frame {frame_index}: {str(exc).strip()}",
        ) from exc
    if not isinstance(frame_bytes, (bytes, bytearray)):
        raise CaptionPipelineError(
            FRAME_RENDER_CODE,
            f"renderer returned {type(frame_bytes).__name__} for frame {frame_index}",
        )
    return bytes(frame_bytes)


def iter_frames(
    schedule: FrameSchedule,
    frames_dir: str,
    renderer: FrameRenderer,
    layout: LayoutConfig,
) -> Iterator[FrameProgress]:
    """Yield one progress event per frame, rendering frames not yet on disk.

    Frames are produced strictly in increasing index order. Stopping iteration
    between frames leaves every finished frame in place for a later resume.
    """
    os.makedirs(frames_dir, exist_ok=True)
    for frame_index in range(1, schedule.total_frames + 1):
        target_path = frame_path(frames_dir, frame_index)
        if os.path.exists(target_path):
            yield FrameProgress(frame_index, schedule.total_frames, target_path, False)
            continue

        lines = schedule.texts_for(frame_index)
        frame_bytes = render_frame_bytes(renderer, lines, layout, frame_index)
        write_frame_atomic(target_path, frame_bytes)
        yield FrameProgress(frame_index, schedule.total_frames, target_path, True)


def generate_frames(
    timeline: Timeline,
    frames_dir: str,
    fps: int,
    renderer: FrameRenderer,
    layout: LayoutConfig,
    on_progress: ProgressCallback | None = None,
) -> FrameGenerationResult:
    """Render every frame of the timeline into frames_dir.

    The schedule is rebuilt on every call, so a resumed job maps frames
    exactly as the first run did.
    """
    schedule = build_frame_schedule(timeline, fps)
    rendered_frames = 0
    skipped_frames = 0
    for progress in iter_frames(schedule, frames_dir, renderer, layout):
        if progress.rendered:
            rendered_frames += 1
        else:
            skipped_frames += 1
        if on_progress is not None:
            on_progress(progress.frame_index, progress.total_frames, progress.path)

    if skipped_frames:
        LOGGER.info(
            "caption_frames.render.resumed: reused %d of %d frames in %s",
            skipped_frames,
            schedule.total_frames,
            frames_dir,
        )
    return FrameGenerationResult(
        total_frames=schedule.total_frames,
        duration_ms=timeline.duration_ms,
        rendered_frames=rendered_frames,
        skipped_frames=skipped_frames,
    )
