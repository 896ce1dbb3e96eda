"""Immutable generation job state for render_caption_frames."""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from enum import Enum
import json
import math
import os

from domain.timed_text import CaptionPipelineError

INVALID_PROGRESS_CODE = "caption_frames.job.invalid_progress"
JOB_WRITE_CODE = "caption_frames.job.write_failed"

DOWNLOAD_PROGRESS = 10
TRANSCRIPT_PROGRESS = 30
GENERATING_PROGRESS = 40
FRAMES_PROGRESS_SPAN = 50
COMPLETE_PROGRESS = 100


class JobStatus(str, Enum):
    """Lifecycle states for a generation job."""

    IDLE = "idle"
    DOWNLOADING = "downloading"
    GENERATING = "generating"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class GenerationJob:
    """State snapshot for a frame generation job.

    Every transition returns a new snapshot; nothing is updated in place.
    """

    video_id: str
    status: JobStatus = JobStatus.IDLE
    progress: int = 0
    current_frame: int = 0
    total_frames: int = 0
    message: str | None = None
    error: str | None = None

    def __post_init__(self) -> None:
        if self.progress < 0 or self.progress > COMPLETE_PROGRESS:
            raise CaptionPipelineError(
                INVALID_PROGRESS_CODE,
                f"progress must be between 0 and 100: {self.progress}",
            )

    def start_download(self) -> GenerationJob:
        return replace(
            self,
            status=JobStatus.DOWNLOADING,
            progress=DOWNLOAD_PROGRESS,
            message="Downloading captions",
            error=None,
        )

    def transcript_ready(self, entry_count: int) -> GenerationJob:
        return replace(
            self,
            progress=TRANSCRIPT_PROGRESS,
            message=f"Transcript ready with {entry_count} entries",
        )

    def start_generating(self) -> GenerationJob:
        return replace(
            self,
            status=JobStatus.GENERATING,
            progress=GENERATING_PROGRESS,
            message="Generating frames",
        )

    def frame_rendered(self, frame_index: int, total_frames: int) -> GenerationJob:
        """Advance frame progress across the 40..90 band."""
        fraction = frame_index / total_frames if total_frames else 1.0
        return replace(
            self,
            current_frame=frame_index,
            total_frames=total_frames,
            progress=GENERATING_PROGRESS
            + int(math.floor(fraction * FRAMES_PROGRESS_SPAN)),
        )

    def complete(self) -> GenerationJob:
        return replace(
            self,
            status=JobStatus.COMPLETED,
            progress=COMPLETE_PROGRESS,
            message="Complete",
        )

    def fail(self, error: str) -> GenerationJob:
        return replace(self, status=JobStatus.ERROR, error=error)

    def to_payload(self) -> dict[str, object]:
        payload = asdict(self)
        payload["status"] = self.status.value
        return payload


def write_job_state(job_path: str, job: GenerationJob) -> None:
    """Persist a job snapshot as JSON, replacing any previous snapshot."""
    temp_path = f"{job_path}.tmp"
    try:
        os.makedirs(os.path.dirname(os.path.abspath(job_path)), exist_ok=True)
        with open(temp_path, "w", encoding="utf-8") as file_handle:
            json.dump(job.to_payload(), file_handle, indent=2)
        os.replace(temp_path, job_path)
    except OSError as exc:
        if os.path.exists(temp_path):
            os.remove(temp_path)
        raise CaptionPipelineError(
            JOB_WRITE_CODE, f"failed to write job state {job_path}: {exc}"
        ) from exc
