"""Caller-facing operations on the video library.

VideoLibrary is what the CLI (or any other front end) talks to. Creating
one runs the recovery sweep, so no job can start while a record from a
previous process is still marked IN_PROGRESS. Create exactly one per
process.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from clip_qa.clipper import ClipOrchestrator, GenerationResult
from clip_qa.config import AppConfig
from clip_qa.errors import NotFoundError, ValidationError
from clip_qa.ffmpeg import ToolInvoker
from clip_qa.logging import get_logger
from clip_qa.models.video import (
    ClipMode,
    ReviewStatus,
    VideoMetadata,
    VideoRecord,
    generate_video_id,
)
from clip_qa.recovery import recover_interrupted_jobs
from clip_qa.store import RecordStore


class VideoLibrary:
    """Facade over the record store, tool invoker and orchestrator."""

    def __init__(
        self,
        config: AppConfig,
        store: RecordStore | None = None,
        invoker: ToolInvoker | None = None,
        logger: logging.Logger | None = None,
        recover: bool = True,
    ):
        """Open the library.

        Args:
            config: Application configuration
            store: Record store (defaults to one rooted at config.data_dir)
            invoker: Tool invoker (defaults to one built from config.ffmpeg)
            logger: Logger shared by the library's collaborators
            recover: Run the startup recovery sweep
        """
        self.config = config
        self.logger = logger or get_logger(__name__)
        self.store = store or RecordStore(config.data_dir)
        self.invoker = invoker or ToolInvoker(config.ffmpeg, logger=self.logger)
        self.orchestrator = ClipOrchestrator(
            self.store,
            self.invoker,
            segment_seconds=config.segment_seconds,
            prepare_preset=config.prepare_preset,
            prepare_crf=config.prepare_crf,
            audio_bitrate=config.audio_bitrate,
            logger=self.logger,
        )

        self.recovered_ids: list[str] = []
        if recover:
            self.recovered_ids = recover_interrupted_jobs(self.store, self.logger)

    def list_videos(self) -> list[VideoRecord]:
        """All videos, newest first."""
        return self.store.list()

    def get_video(self, video_id: str) -> VideoRecord:
        """Get a video by ID.

        Raises:
            NotFoundError: If the video doesn't exist
        """
        return self.store.get(video_id)

    def add_video(self, source: Path | str) -> VideoRecord:
        """Ingest a local video file.

        The file is copied into the library under a newly assigned ID.

        Args:
            source: Path to the video file

        Returns:
            The new record (NOT_STARTED, no metadata, no clips)

        Raises:
            ValidationError: If the extension is not allowed
            NotFoundError: If the file doesn't exist
        """
        source = Path(source).expanduser()
        extension = source.suffix.lower()
        if extension not in self.config.allowed_extensions:
            self.logger.warning(
                "File type validation failed",
                extra={"source": str(source), "ext": extension},
            )
            raise ValidationError(
                f"Invalid file type: {extension or '(none)'}. "
                f"Supported: {', '.join(self.config.allowed_extensions)}",
                context={"path": str(source)},
            )
        if not source.is_file():
            raise NotFoundError(f"File not found: {source}", context={"path": str(source)})

        video_id = generate_video_id()
        video_dir = self.store.video_dir(video_id)
        destination = self.store.source_path(video_id, extension)

        try:
            self.store.clips_dir(video_id).mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, destination)
            record = VideoRecord(
                id=video_id,
                original_filename=source.name,
                source_path=str(destination),
            )
            self.store.create(record)
        except Exception:
            shutil.rmtree(video_dir, ignore_errors=True)
            raise

        self.logger.info(
            "Video added",
            extra={"video_id": video_id, "original_filename": source.name},
        )
        return record

    def extract_metadata(self, video_id: str) -> VideoMetadata:
        """Probe the source file and store its metadata.

        Raises:
            NotFoundError: If the video doesn't exist
            ProbeError: If probing fails
        """
        record = self.store.get(video_id)
        metadata = self.invoker.probe(record.source_path)
        self.store.update(video_id, metadata=metadata)
        self.logger.info("Metadata extracted", extra={"video_id": video_id})
        return metadata

    def set_review_status(self, video_id: str, status: ReviewStatus | str) -> VideoRecord:
        """Record a reviewer decision.

        Raises:
            NotFoundError: If the video doesn't exist
            ValidationError: If the status is unknown
        """
        try:
            status = ReviewStatus(status)
        except ValueError as e:
            raise ValidationError(
                f"Unknown review status: {status}",
                context={"allowed": [s.value for s in ReviewStatus]},
            ) from e
        return self.store.update(video_id, review_status=status)

    def generate_clips(self, video_id: str, mode: ClipMode | str = ClipMode.FAST) -> GenerationResult:
        """Generate clips, reusing existing ones when they are intact."""
        return self.orchestrator.generate(video_id, mode)

    def regenerate_clips(self, video_id: str, mode: ClipMode | str = ClipMode.FAST) -> GenerationResult:
        """Discard existing clips and generate them again."""
        return self.orchestrator.regenerate(video_id, mode)

    def delete_video(self, video_id: str) -> VideoRecord:
        """Delete a video record and every file belonging to it.

        Raises:
            NotFoundError: If the video doesn't exist
        """
        self.store.get(video_id)
        # Files go first so a failed removal still leaves a record pointing at them
        video_dir = self.store.video_dir(video_id)
        if video_dir.exists():
            shutil.rmtree(video_dir)
        removed = self.store.delete(video_id)
        self.logger.info("Video deleted", extra={"video_id": video_id})
        return removed
