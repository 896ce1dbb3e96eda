"""Tests for mapping timelines onto frame indices."""

from __future__ import annotations

import pytest

from domain.timed_text import CaptionPipelineError
from service.frame_schedule import (
    EMPTY_TIMELINE_CODE,
    FRAME_OUT_OF_RANGE_CODE,
    build_frame_schedule,
    compute_total_frames,
    frame_duration_ms,
    frame_range,
)
from service.track_alignment import Timeline, TimelineEntry


def make_timeline(*entries: TimelineEntry) -> Timeline:
    """Build a timeline whose language count follows the first entry."""
    language_count = len(entries[0].texts) if entries else 1
    languages = tuple(f"l{index}" for index in range(language_count))
    return Timeline(languages=languages, entries=tuple(entries))


def assigned_texts(timeline: Timeline, fps: int) -> list[str | None]:
    """Return the base text for each frame, None for blanks."""
    schedule = build_frame_schedule(timeline, fps)
    result: list[str | None] = []
    for frame_index in range(1, schedule.total_frames + 1):
        entry = schedule.entry_for(frame_index)
        result.append(entry.texts[0] if entry else None)
    return result


def test_single_entry_one_fps() -> None:
    """A one second entry at 1 fps covers frame 1 only."""
    entry = TimelineEntry(("hello", "bonjour"), 0, 1000)
    schedule = build_frame_schedule(make_timeline(entry), 1)

    assert schedule.total_frames == 1
    assert schedule.entry_for(1) == entry


def test_every_frame_is_covered_with_gaps_blank() -> None:
    """Frames between entries are blank, not missing."""
    timeline = make_timeline(
        TimelineEntry(("a",), 0, 1000), TimelineEntry(("b",), 2000, 1000)
    )

    texts = assigned_texts(timeline, 10)

    assert len(texts) == 30
    assert texts == ["a"] * 10 + [None] * 10 + ["b"] * 10


def test_blank_frame_texts_have_one_slot_per_language() -> None:
    """Blank frames still give every language a line."""
    timeline = make_timeline(
        TimelineEntry(("a", "x"), 0, 100), TimelineEntry(("b", "y"), 300, 100)
    )
    schedule = build_frame_schedule(timeline, 10)

    assert schedule.texts_for(1) == ("a", "x")
    assert schedule.texts_for(2) == ("", "")
    assert schedule.texts_for(4) == ("b", "y")


def test_later_offset_wins_overlap() -> None:
    """Shared frames go to the entry that starts later."""
    timeline = make_timeline(
        TimelineEntry(("early",), 0, 1000), TimelineEntry(("late",), 500, 1000)
    )

    texts = assigned_texts(timeline, 10)

    assert texts[:5] == ["early"] * 5
    assert texts[5:15] == ["late"] * 10


def test_later_offset_wins_regardless_of_order() -> None:
    """An earlier-starting entry listed last does not take shared frames."""
    timeline = make_timeline(
        TimelineEntry(("late",), 500, 1000), TimelineEntry(("early",), 0, 1000)
    )

    texts = assigned_texts(timeline, 10)

    assert len(texts) == 10
    assert texts == ["early"] * 5 + ["late"] * 5


def test_equal_offsets_keep_first_entry() -> None:
    """Entries with the same offset do not displace each other."""
    timeline = make_timeline(
        TimelineEntry(("first",), 0, 1000), TimelineEntry(("second",), 0, 500)
    )
    schedule = build_frame_schedule(timeline, 10)

    assert schedule.entry_for(1).texts == ("first",)  # type: ignore[union-attr]


def test_zero_and_negative_durations_claim_nothing() -> None:
    """Degenerate entries produce empty frame ranges."""
    timeline = make_timeline(
        TimelineEntry(("a",), 0, 300),
        TimelineEntry(("backwards",), 350, -200),
        TimelineEntry(("zero",), 500, 0),
    )

    texts = assigned_texts(timeline, 10)

    assert texts == ["a", "a", "a", None, None]


def test_fractional_frame_boundaries() -> None:
    """Start rounds down and end rounds up to whole frames."""
    entry = TimelineEntry(("a",), 100, 300)

    assert frame_duration_ms(4) == 250
    assert frame_range(entry, 4) == (0, 2)
    assert compute_total_frames(make_timeline(entry), 4) == 2


def test_empty_timeline_is_internal_fault() -> None:
    """Scheduling an empty timeline is a programming error."""
    with pytest.raises(CaptionPipelineError) as exc_info:
        build_frame_schedule(Timeline(languages=("en",), entries=()), 30)

    assert exc_info.value.code == EMPTY_TIMELINE_CODE


def test_entry_for_rejects_out_of_range_frames() -> None:
    """Frame indices are 1-based and bounded by total frames."""
    schedule = build_frame_schedule(make_timeline(TimelineEntry(("a",), 0, 200)), 10)

    for frame_index in (0, schedule.total_frames + 1):
        with pytest.raises(CaptionPipelineError) as exc_info:
            schedule.entry_for(frame_index)
        assert exc_info.value.code == FRAME_OUT_OF_RANGE_CODE


def test_frame_duration_requires_positive_fps() -> None:
    """Zero fps has no frame duration."""
    with pytest.raises(CaptionPipelineError):
        frame_duration_ms(0)
