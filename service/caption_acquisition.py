"""Caption and audio acquisition through the yt-dlp executable."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import os
import re
import shutil
import subprocess
from typing import Sequence, Tuple

from domain.timed_text import (
    INVALID_URL_CODE,
    CaptionPipelineError,
    CaptionValidationError,
    Track,
    parse_webvtt,
    read_timed_text_file,
)

YTDLP_NOT_FOUND_CODE = "caption_frames.acquire.ytdlp_not_found"
SUBTITLE_LIST_CODE = "caption_frames.acquire.list_failed"
SUBTITLE_FETCH_CODE = "caption_frames.acquire.subtitle_failed"
AUDIO_FETCH_CODE = "caption_frames.acquire.audio_failed"
PREFERRED_LANGUAGES = ("mn", "en", "ja", "ko", "ru")
DEFAULT_LANGUAGE_LIMIT = 3
VIDEO_ID_LENGTH = 11
VIDEO_ID_PATTERN = re.compile(
    r"(?:youtube\.com/(?:[^/]+/.+/|(?:v|e(?:mbed)?)/|.*[?&]v=)|youtu\.be/)"
    r"([^\"&?/\s]{11})"
)
LISTING_COLUMN_SPLIT = re.compile(r"\s{2,}")
LOGGER = logging.getLogger("render_caption_frames")


@dataclass(frozen=True)
class SubtitleLanguage:
    """Manually uploaded subtitle language offered by a video."""

    code: str
    name: str


def normalize_video_url(url: str) -> str:
    """Strip shell escapes and expand bare video ids to watch URLs."""
    normalized = url.replace("\\", "").strip()
    if "youtube.com" not in normalized and "youtu.be" not in normalized:
        if len(normalized) == VIDEO_ID_LENGTH:
            return f"https://www.youtube.com/watch?v={normalized}"
        raise CaptionValidationError(
            INVALID_URL_CODE, f"invalid YouTube URL format: {url!r}"
        )
    return normalized


def extract_video_id(url: str) -> str:
    """Return the 11-character video id for a YouTube URL."""
    match = VIDEO_ID_PATTERN.search(normalize_video_url(url))
    if not match:
        raise CaptionValidationError(INVALID_URL_CODE, f"invalid YouTube URL: {url!r}")
    return match.group(1)


def parse_subtitle_listing(listing_output: str) -> list[SubtitleLanguage]:
    """Parse ``yt-dlp --list-subs`` output, keeping manual subtitles only."""
    languages: list[SubtitleLanguage] = []
    in_manual_section = False
    for line in listing_output.splitlines():
        if "Available subtitles" in line:
            in_manual_section = True
            continue
        if "Available automatic captions" in line or line.startswith("["):
            in_manual_section = False
            continue
        if not in_manual_section:
            continue
        if "Language" in line and "Name" in line:
            continue
        stripped = line.strip()
        if not stripped or stripped.startswith("--"):
            continue
        parts = LISTING_COLUMN_SPLIT.split(stripped)
        if len(parts) >= 2:
            languages.append(SubtitleLanguage(code=parts[0], name=parts[1]))
    return languages


def select_preferred_languages(
    available: Sequence[SubtitleLanguage],
    preferred: Sequence[str] = PREFERRED_LANGUAGES,
    limit: int = DEFAULT_LANGUAGE_LIMIT,
) -> list[str]:
    """Pick up to ``limit`` codes, preferred prefixes first, then listing order."""
    selected: list[str] = []
    for prefix in preferred:
        if len(selected) >= limit:
            break
        match = next(
            (language for language in available if language.code.startswith(prefix)),
            None,
        )
        if match is not None and match.code not in selected:
            selected.append(match.code)

    for language in available:
        if len(selected) >= limit:
            break
        if language.code not in selected:
            selected.append(language.code)
    return selected


def resolve_ytdlp_path() -> str:
    """Return the yt-dlp executable path."""
    ytdlp_path = shutil.which("yt-dlp")
    if not ytdlp_path:
        raise CaptionPipelineError(YTDLP_NOT_FOUND_CODE, "yt-dlp not on PATH")
    return ytdlp_path


def run_ytdlp(args: Sequence[str]) -> subprocess.CompletedProcess[str]:
    """Run yt-dlp and capture its text output."""
    return subprocess.run(
        [resolve_ytdlp_path(), *args],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        check=False,
    )


def list_subtitle_languages(url: str) -> list[SubtitleLanguage]:
    """List manual subtitle languages; listing failures yield no languages."""
    result = run_ytdlp(["--list-subs", "--no-playlist", normalize_video_url(url)])
    if result.returncode != 0:
        LOGGER.warning(
            "%s: yt-dlp exited with %d: %s",
            SUBTITLE_LIST_CODE,
            result.returncode,
            result.stderr.strip(),
        )
        return []
    languages = parse_subtitle_listing(result.stdout)
    LOGGER.info("caption_frames.acquire.languages: %d manual", len(languages))
    return languages


def find_subtitle_file(work_dir: str, language: str) -> str | None:
    """Find the .vtt file yt-dlp wrote for a language."""
    prefix = f"sub_{language}"
    for entry_name in sorted(os.listdir(work_dir)):
        if entry_name.startswith(prefix) and entry_name.endswith(".vtt"):
            return os.path.join(work_dir, entry_name)
    return None


def download_subtitle_document(url: str, language: str, work_dir: str) -> str | None:
    """Download one manual subtitle track and return the raw document."""
    os.makedirs(work_dir, exist_ok=True)
    output_stem = os.path.join(work_dir, f"sub_{language}")
    stale_path = find_subtitle_file(work_dir, language)
    while stale_path is not None:
        os.remove(stale_path)
        stale_path = find_subtitle_file(work_dir, language)

    result = run_ytdlp(
        [
            "--write-sub",
            "--sub-lang",
            language,
            "--sub-format",
            "vtt",
            "--skip-download",
            "--no-playlist",
            "--output",
            output_stem,
            normalize_video_url(url),
        ]
    )
    if result.returncode != 0:
        LOGGER.warning(
            "%s: %s (%s)", SUBTITLE_FETCH_CODE, language, result.stderr.strip()
        )
        return None

    subtitle_path = find_subtitle_file(work_dir, language)
    if subtitle_path is None:
        LOGGER.warning("%s: %s (file not found)", SUBTITLE_FETCH_CODE, language)
        return None
    return read_timed_text_file(subtitle_path)


def download_tracks(
    url: str, languages: Sequence[str], work_dir: str
) -> list[Tuple[str, Track]]:
    """Fetch and parse every requested language, skipping failed ones."""
    tracks: list[Tuple[str, Track]] = []
    for language in languages:
        document = download_subtitle_document(url, language, work_dir)
        if document is None:
            continue
        track = parse_webvtt(document)
        LOGGER.info("caption_frames.acquire.track: %s (%d cues)", language, len(track))
        tracks.append((language, track))
    return tracks


def download_audio(url: str, output_path: str) -> str:
    """Download best audio as .webm, reusing an existing file."""
    webm_path = re.sub(r"\.(mp3|m4a)$", ".webm", output_path)
    if os.path.exists(webm_path):
        LOGGER.info("caption_frames.acquire.audio_cached: %s", webm_path)
        return webm_path

    result = run_ytdlp(
        [
            "-f",
            "bestaudio",
            "--no-playlist",
            "--output",
            webm_path,
            normalize_video_url(url),
        ]
    )
    if result.returncode != 0:
        raise CaptionPipelineError(
            AUDIO_FETCH_CODE,
            f"yt-dlp failed with exit code {result.returncode}. {result.stderr.strip()}",
        )
    return webm_path
