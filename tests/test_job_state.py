"""Tests for immutable generation job snapshots."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from domain.timed_text import CaptionPipelineError
from service.job_state import (
    INVALID_PROGRESS_CODE,
    JOB_WRITE_CODE,
    GenerationJob,
    JobStatus,
    write_job_state,
)


def test_job_transitions_return_new_snapshots() -> None:
    """Transitions never mutate the previous snapshot."""
    idle = GenerationJob(video_id="abcdefghijk")
    downloading = idle.start_download()
    ready = downloading.transcript_ready(12)
    generating = ready.start_generating()

    assert idle.status == JobStatus.IDLE
    assert idle.progress == 0
    assert (downloading.status, downloading.progress) == (JobStatus.DOWNLOADING, 10)
    assert ready.progress == 30
    assert ready.message == "Transcript ready with 12 entries"
    assert (generating.status, generating.progress) == (JobStatus.GENERATING, 40)


def test_frame_progress_spans_forty_to_ninety() -> None:
    """Frame progress maps onto the 40..90 band."""
    job = GenerationJob(video_id="clip").start_generating()

    assert job.frame_rendered(1, 30).progress == 41
    assert job.frame_rendered(15, 30).progress == 65
    finished = job.frame_rendered(30, 30)
    assert finished.progress == 90
    assert (finished.current_frame, finished.total_frames) == (30, 30)


def test_complete_and_fail() -> None:
    """Terminal states carry their outcome."""
    job = GenerationJob(video_id="clip").start_generating()

    assert job.complete().progress == 100
    failed = job.fail("caption_frames.render.failed: boom")
    assert failed.status == JobStatus.ERROR
    assert failed.error == "caption_frames.render.failed: boom"
    assert failed.progress == job.progress


def test_progress_must_be_a_percentage() -> None:
    """Out of range progress is rejected."""
    with pytest.raises(CaptionPipelineError) as exc_info:
        GenerationJob(video_id="clip", progress=101)

    assert exc_info.value.code == INVALID_PROGRESS_CODE


def test_write_job_state(tmp_path: Path) -> None:
    """Snapshots are written as JSON with plain status strings."""
    job_path = tmp_path / "job.json"
    write_job_state(str(job_path), GenerationJob(video_id="clip").start_download())

    payload = json.loads(job_path.read_text(encoding="utf-8"))

    assert payload["video_id"] == "clip"
    assert payload["status"] == "downloading"
    assert payload["progress"] == 10
    assert not (tmp_path / "job.json.tmp").exists()


def test_write_job_state_creates_parent_directories(tmp_path: Path) -> None:
    """Missing parent directories are created before writing."""
    job_path = tmp_path / "out" / "project" / "job.json"

    write_job_state(str(job_path), GenerationJob(video_id="clip"))

    assert json.loads(job_path.read_text(encoding="utf-8"))["status"] == "idle"


def test_write_job_state_failure_leaves_no_temp_file(tmp_path: Path) -> None:
    """A failed replace removes the temporary snapshot."""
    job_path = tmp_path / "job.json"
    job_path.mkdir()

    with pytest.raises(CaptionPipelineError) as exc_info:
        write_job_state(str(job_path), GenerationJob(video_id="clip"))

    assert exc_info.value.code == JOB_WRITE_CODE
    assert not (tmp_path / "job.json.tmp").exists()
