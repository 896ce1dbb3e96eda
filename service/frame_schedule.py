"""Frame schedule construction for render_caption_frames."""

from __future__ import annotations

from dataclasses import dataclass, field
import math
from types import MappingProxyType
from typing import Mapping, Tuple

from domain.timed_text import INVALID_CONFIG_CODE, CaptionPipelineError
from service.track_alignment import Timeline, TimelineEntry

EMPTY_TIMELINE_CODE = "caption_frames.internal.empty_timeline"
FRAME_OUT_OF_RANGE_CODE = "caption_frames.internal.frame_out_of_range"


@dataclass(frozen=True)
class FrameSchedule:
    """Timeline entry assigned to each 1-based frame index.

    Frames missing from ``assignments`` are blank.
    """

    total_frames: int
    languages: Tuple[str, ...]
    assignments: Mapping[int, TimelineEntry] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.total_frames < 0:
            raise CaptionPipelineError(
                INVALID_CONFIG_CODE, "total_frames must be non-negative"
            )
        for frame_index in self.assignments:
            if frame_index < 1 or frame_index > self.total_frames:
                raise CaptionPipelineError(
                    FRAME_OUT_OF_RANGE_CODE,
                    f"frame {frame_index} outside 1..{self.total_frames}",
                )

    def entry_for(self, frame_index: int) -> TimelineEntry | None:
        """Return the entry shown at a frame, or None for a blank frame."""
        if frame_index < 1 or frame_index > self.total_frames:
            raise CaptionPipelineError(
                FRAME_OUT_OF_RANGE_CODE,
                f"frame {frame_index} outside 1..{self.total_frames}",
            )
        return self.assignments.get(frame_index)

    def texts_for(self, frame_index: int) -> Tuple[str, ...]:
        """Return one line per language; blank frames yield empty strings."""
        entry = self.entry_for(frame_index)
        if entry is None:
            return tuple("" for _ in self.languages)
        return entry.texts


def frame_duration_ms(fps: int) -> float:
    """Return the duration of one frame in milliseconds."""
    if fps <= 0:
        raise CaptionPipelineError(INVALID_CONFIG_CODE, "fps must be positive")
    return 1000 / fps


def compute_total_frames(timeline: Timeline, fps: int) -> int:
    """Compute the frame count covering the end of the final entry."""
    return max(0, int(math.ceil(timeline.duration_ms / frame_duration_ms(fps))))


def frame_range(entry: TimelineEntry, fps: int) -> Tuple[int, int]:
    """Return the zero-based [start, end) frame slots covered by an entry.

    Zero or negative durations give an empty range.
    """
    duration = frame_duration_ms(fps)
    start_slot = int(math.floor(entry.offset_ms / duration))
    end_slot = int(math.ceil(entry.end_ms / duration))
    return start_slot, end_slot


def build_frame_schedule(timeline: Timeline, fps: int) -> FrameSchedule:
    """Assign timeline entries to frames.

    When entries share a frame, the one with the later offset holds it; equal
    offsets keep the earlier entry.
    """
    if not timeline.entries:
        raise CaptionPipelineError(
            EMPTY_TIMELINE_CODE, "cannot schedule frames for an empty timeline"
        )

    total_frames = compute_total_frames(timeline, fps)
    assignments: dict[int, TimelineEntry] = {}

    for entry in timeline.entries:
        start_slot, end_slot = frame_range(entry, fps)
        for slot in range(max(0, start_slot), min(end_slot, total_frames)):
            frame_index = slot + 1
            current = assignments.get(frame_index)
            if current is None or current.offset_ms < entry.offset_ms:
                assignments[frame_index] = entry

    return FrameSchedule(
        total_frames=total_frames,
        languages=timeline.languages,
        assignments=MappingProxyType(assignments),
    )
