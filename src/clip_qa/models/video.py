"""Video record model for clip-qa.

A VideoRecord represents one ingested source video together with its
review decision and the state of its clip generation job.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path
from uuid import uuid4

from pydantic import BaseModel, Field


class ReviewStatus(str, Enum):
    """Reviewer decision for a video. Independent of the job state."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class JobState(str, Enum):
    """State of the clip generation job for a video.

    NOT_STARTED -> IN_PROGRESS -> DONE | FAILED
    FAILED -> IN_PROGRESS (retry), DONE -> NOT_STARTED (regenerate)
    """

    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    FAILED = "FAILED"


class ClipMode(str, Enum):
    """Segmentation strategy."""

    FAST = "fast"  # Stream copy, cuts land on the nearest prior keyframe
    PRECISE = "precise"  # Re-keyframe once, then cut on exact boundaries


def generate_video_id() -> str:
    """Generate a unique video ID."""
    return uuid4().hex


class VideoMetadata(BaseModel):
    """Probed properties of a video file."""

    fps: float | None = None
    resolution: str | None = None  # "WxH"
    aspect_ratio: str | None = None  # "16:9"
    duration: float | None = None  # seconds
    rotation: int | None = None  # degrees, None when no rotation is present
    codec: str | None = None
    file_size: int | None = None  # bytes, from the filesystem


class ClipOutput(BaseModel):
    """One generated clip file."""

    filename: str
    start_time: float  # offset into the source, seconds
    end_time: float
    duration: float
    fps: float | None = None
    resolution: str | None = None
    file_size: int = 0


class VideoRecord(BaseModel):
    """A source video and its clip generation state.

    Invariant: outputs is non-empty only when job_state is DONE.
    """

    id: str = Field(default_factory=generate_video_id)
    original_filename: str
    source_path: str
    prepared_path: str | None = None  # cached re-keyframed intermediate
    created_at: datetime = Field(default_factory=datetime.now)

    review_status: ReviewStatus = ReviewStatus.PENDING
    metadata: VideoMetadata | None = None

    # Clip generation job
    job_state: JobState = JobState.NOT_STARTED
    last_error: str | None = None
    outputs: list[ClipOutput] = Field(default_factory=list)
    last_job_duration_seconds: float | None = None
    last_job_mode: ClipMode | None = None

    @property
    def clip_count(self) -> int:
        """Number of generated clips."""
        return len(self.outputs)

    @property
    def total_output_size(self) -> int:
        """Combined size of all generated clips in bytes."""
        return sum(clip.file_size for clip in self.outputs)

    def output_paths(self, clips_dir: Path) -> list[Path]:
        """Resolve the listed outputs against a clips directory.

        Args:
            clips_dir: Directory holding this video's clips

        Returns:
            Absolute paths in output order
        """
        return [clips_dir / clip.filename for clip in self.outputs]

    def is_done(self) -> bool:
        """Check if the last job completed successfully."""
        return self.job_state == JobState.DONE
