"""Data models for clip-qa.

This module provides Pydantic models for video records and their clips.
"""

from __future__ import annotations

from clip_qa.models.video import (
    ClipMode,
    ClipOutput,
    JobState,
    ReviewStatus,
    VideoMetadata,
    VideoRecord,
    generate_video_id,
)

__all__ = [
    "ClipMode",
    "ClipOutput",
    "JobState",
    "ReviewStatus",
    "VideoMetadata",
    "VideoRecord",
    "generate_video_id",
]
