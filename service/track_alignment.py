"""Merge per-language caption tracks into one base-timed timeline."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Tuple

from domain.timed_text import (
    INVALID_TRACKS_CODE,
    CaptionValidationError,
    Cue,
    Track,
    TranscriptUnavailableError,
)


@dataclass(frozen=True)
class TimelineEntry:
    """Texts for every language over one base-track interval."""

    texts: Tuple[str, ...]
    offset_ms: int
    duration_ms: int

    @property
    def end_ms(self) -> int:
        return self.offset_ms + self.duration_ms


@dataclass(frozen=True)
class Timeline:
    """Base-ordered timeline entries with their language slots."""

    languages: Tuple[str, ...]
    entries: Tuple[TimelineEntry, ...]

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def duration_ms(self) -> int:
        """End of the final entry, which is what the frame count derives from."""
        if not self.entries:
            return 0
        return self.entries[-1].end_ms


def cue_midpoint_ms(cue: Cue) -> float:
    """Return the temporal midpoint of a cue."""
    return cue.start_ms + cue.duration_ms / 2


def find_matching_text(track: Track, midpoint_ms: float) -> str:
    """Return the text of the first cue containing the midpoint, or ''."""
    for cue in track:
        if cue.start_ms <= midpoint_ms <= cue.end_ms:
            return cue.text
    return ""


def align_tracks(tracks: Sequence[Tuple[str, Track]]) -> Timeline:
    """Align secondary tracks onto the cues of the first (base) track.

    Each base cue becomes one entry. Secondary languages contribute the first
    cue, in track order, whose interval holds the base cue midpoint; languages
    without such a cue get an empty string.
    """
    if not tracks:
        raise CaptionValidationError(INVALID_TRACKS_CODE, "no caption tracks given")

    languages = tuple(language for language, _ in tracks)
    if len(set(languages)) != len(languages):
        raise CaptionValidationError(
            INVALID_TRACKS_CODE, f"duplicate track languages: {list(languages)}"
        )

    if not any(track for _, track in tracks):
        raise TranscriptUnavailableError()

    base_track = tracks[0][1]
    if not base_track:
        raise TranscriptUnavailableError(
            f"No transcript available for base language {languages[0]!r}"
        )

    secondary_tracks = [track for _, track in tracks[1:]]
    entries: list[TimelineEntry] = []
    for base_cue in base_track:
        midpoint_ms = cue_midpoint_ms(base_cue)
        texts = [base_cue.text]
        texts.extend(
            find_matching_text(track, midpoint_ms) for track in secondary_tracks
        )
        entries.append(
            TimelineEntry(
                texts=tuple(texts),
                offset_ms=base_cue.start_ms,
                duration_ms=base_cue.duration_ms,
            )
        )

    return Timeline(languages=languages, entries=tuple(entries))
