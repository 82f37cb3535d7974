"""Clip generation orchestrator.

Owns the per-video job state machine:

    NOT_STARTED -> IN_PROGRESS -> DONE | FAILED
    FAILED -> IN_PROGRESS        (retry via generate)
    DONE -> NOT_STARTED          (regenerate only)

generate() is idempotent: a DONE video whose clips are all still on disk
is returned as-is without running any tool. Every other call starts from
an empty clips directory, and a failed attempt removes whatever it
produced before the record is marked FAILED.

IN_PROGRESS is committed before any tool runs, so an attempt killed
mid-way is visible to the startup recovery sweep.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path

from clip_qa.errors import JobFailedError, ProbeError, ToolError
from clip_qa.ffmpeg import (
    SEGMENT_PATTERN,
    ToolInvoker,
    build_prepare_args,
    build_segment_args,
)
from clip_qa.logging import (
    diagnostic_tail,
    get_logger,
    log_operation_complete,
    log_operation_failed,
    log_operation_start,
)
from clip_qa.models.video import ClipMode, ClipOutput, JobState, VideoMetadata, VideoRecord
from clip_qa.store import RecordStore

CLIP_GLOB = "*.mp4"


@dataclass
class GenerationResult:
    """Result of a generate/regenerate call.

    Attributes:
        outputs: Clips in playback order
        elapsed_seconds: Wall-clock time of the job, 0.0 when skipped
        skipped: True when existing clips were returned without running a job
    """

    outputs: list[ClipOutput] = field(default_factory=list)
    elapsed_seconds: float = 0.0
    skipped: bool = False


def list_clip_files(clips_dir: Path) -> list[Path]:
    """Clip files in a directory, sorted by name (= emission order)."""
    if not clips_dir.exists():
        return []
    return sorted((p for p in clips_dir.glob(CLIP_GLOB) if p.is_file()), key=lambda p: p.name)


def delete_clip_files(clips_dir: Path, logger: logging.Logger | None = None) -> int:
    """Delete every clip file in a directory.

    A missing directory is not an error.

    Returns:
        Number of files deleted
    """
    count = 0
    for path in list_clip_files(clips_dir):
        path.unlink()
        count += 1
        if logger is not None:
            logger.debug("Deleted clip file", extra={"file_path": str(path)})
    return count


def compute_offsets(
    durations: list[float],
    nominal_seconds: float,
    mode: ClipMode,
) -> list[tuple[float, float]]:
    """Compute (start, end) offsets into the source for each clip.

    Fast mode cuts drift with keyframe placement, so starts accumulate the
    real clip durations. Precise mode cuts are exact, so clip i starts at
    i * nominal_seconds.

    Args:
        durations: Actual duration of each clip, in order
        nominal_seconds: Requested clip length
        mode: Mode that produced the clips

    Returns:
        List of (start, end) in seconds, rounded to milliseconds
    """
    offsets = []
    elapsed = 0.0
    for index, duration in enumerate(durations):
        if mode == ClipMode.PRECISE:
            start = index * nominal_seconds
        else:
            start = elapsed
        offsets.append((round(start, 3), round(start + duration, 3)))
        elapsed += duration
    return offsets


def describe_failure(error: Exception) -> str:
    """Human-readable last_error text for a failed attempt."""
    if isinstance(error, ToolError):
        tail = diagnostic_tail(error.diagnostic_output).strip()
        if error.exit_code is None:
            return f"ffmpeg failed to start: {error.message}"
        if tail:
            return f"ffmpeg failed (exit {error.exit_code}): {tail}"
        return f"ffmpeg failed (exit {error.exit_code}): {error.message}"
    return f"{type(error).__name__}: {error}"


class ClipOrchestrator:
    """Drives clip generation for one video at a time.

    At most one generate/regenerate call may be in flight per video; the
    caller is responsible for that. Different videos may be processed from
    different threads.

    Example:
        orchestrator = ClipOrchestrator(store, ToolInvoker())
        result = orchestrator.generate(video_id, ClipMode.PRECISE)
        for clip in result.outputs:
            print(clip.filename, clip.start_time, clip.end_time)
    """

    def __init__(
        self,
        store: RecordStore,
        invoker: ToolInvoker,
        segment_seconds: int = 120,
        prepare_preset: str = "veryfast",
        prepare_crf: int = 23,
        audio_bitrate: str = "192k",
        logger: logging.Logger | None = None,
    ):
        """Initialize the orchestrator.

        Args:
            store: Record store holding the videos
            invoker: Runs ffprobe/ffmpeg
            segment_seconds: Nominal clip length
            prepare_preset: x264 preset for the precise mode preparation
            prepare_crf: x264 quality for the preparation encode
            audio_bitrate: AAC bitrate for the preparation encode
            logger: Logger to use (defaults to this module's logger)
        """
        self.store = store
        self.invoker = invoker
        self.segment_seconds = segment_seconds
        self.prepare_preset = prepare_preset
        self.prepare_crf = prepare_crf
        self.audio_bitrate = audio_bitrate
        self.logger = logger or get_logger(__name__)

    def generate(self, video_id: str, mode: ClipMode | str = ClipMode.FAST) -> GenerationResult:
        """Generate clips for a video, or return the existing ones.

        Args:
            video_id: Video to segment
            mode: "fast" (stream copy) or "precise" (prepare once, exact cuts)

        Returns:
            GenerationResult with the clips and elapsed time

        Raises:
            NotFoundError: If the video doesn't exist
            JobFailedError: If the attempt failed; the record is left FAILED
        """
        mode = ClipMode(mode)
        record = self.store.get(video_id)
        clips_dir = self.store.clips_dir(video_id)

        if record.is_done() and record.outputs:
            missing = [p.name for p in record.output_paths(clips_dir) if not p.exists()]
            if not missing:
                self.logger.info(
                    "Clips already generated, skipping",
                    extra={"video_id": video_id, "clip_count": record.clip_count},
                )
                return GenerationResult(outputs=list(record.outputs), skipped=True)
            self.logger.warning(
                "Clips marked as DONE but files missing, regenerating",
                extra={"video_id": video_id, "missing": missing},
            )

        self.store.update(video_id, job_state=JobState.IN_PROGRESS, last_error=None)
        log_operation_start(self.logger, "clip generation", video_id=video_id, mode=mode.value)
        started = time.monotonic()

        try:
            delete_clip_files(clips_dir, self.logger)
            clips_dir.mkdir(parents=True, exist_ok=True)

            if mode == ClipMode.PRECISE:
                input_path = self._ensure_prepared(record)
            else:
                input_path = Path(record.source_path)

            self.invoker.run_transcode(
                build_segment_args(input_path, clips_dir / SEGMENT_PATTERN, self.segment_seconds),
                operation="segment",
            )
            outputs = self._collect_outputs(clips_dir, mode)

        except Exception as exc:
            message = describe_failure(exc)
            self._roll_back(video_id, clips_dir, message)
            log_operation_failed(self.logger, "clip generation", exc, video_id=video_id)
            raise JobFailedError(
                message, video_id=video_id, context={"mode": mode.value}
            ) from exc

        elapsed = time.monotonic() - started
        self.store.update(
            video_id,
            outputs=outputs,
            job_state=JobState.DONE,
            last_error=None,
            last_job_duration_seconds=round(elapsed, 3),
            last_job_mode=mode,
        )
        log_operation_complete(
            self.logger,
            "clip generation",
            duration=elapsed,
            video_id=video_id,
            clip_count=len(outputs),
            total_size=sum(clip.file_size for clip in outputs),
        )
        return GenerationResult(outputs=outputs, elapsed_seconds=elapsed)

    def regenerate(self, video_id: str, mode: ClipMode | str = ClipMode.FAST) -> GenerationResult:
        """Discard existing clips and generate them again.

        The precise mode preparation is kept; it depends only on the source.

        Raises:
            NotFoundError: If the video doesn't exist
            JobFailedError: If the attempt failed
        """
        self.store.get(video_id)
        self.logger.info("Regenerating clips (clean slate)", extra={"video_id": video_id})

        delete_clip_files(self.store.clips_dir(video_id), self.logger)
        self.store.update(
            video_id,
            job_state=JobState.NOT_STARTED,
            outputs=[],
            last_error=None,
        )
        return self.generate(video_id, mode)

    def _ensure_prepared(self, record: VideoRecord) -> Path:
        """Return the re-keyframed intermediate, producing it if needed."""
        if record.prepared_path:
            cached = Path(record.prepared_path)
            if cached.exists():
                self.logger.info(
                    "Reusing prepared source",
                    extra={"video_id": record.id, "prepared_path": str(cached)},
                )
                return cached
            self.logger.warning(
                "Prepared source recorded but missing, rebuilding",
                extra={"video_id": record.id, "prepared_path": str(cached)},
            )

        target = self.store.prepared_path(record.id)
        partial = target.with_name(f"{target.stem}.partial{target.suffix}")

        self.logger.info(
            "Preparing source with keyframes on clip boundaries",
            extra={"video_id": record.id, "segment_seconds": self.segment_seconds},
        )
        try:
            self.invoker.run_transcode(
                build_prepare_args(
                    record.source_path,
                    partial,
                    self.segment_seconds,
                    preset=self.prepare_preset,
                    crf=self.prepare_crf,
                    audio_bitrate=self.audio_bitrate,
                ),
                operation="prepare",
            )
            os.replace(partial, target)
        except Exception:
            partial.unlink(missing_ok=True)
            raise

        # Persisted now so a later segmentation failure keeps the cache
        self.store.update(record.id, prepared_path=str(target))
        return target

    def _collect_outputs(self, clips_dir: Path, mode: ClipMode) -> list[ClipOutput]:
        """Describe the produced clip files, probing each one.

        A clip that cannot be probed falls back to the nominal duration.
        """
        files = list_clip_files(clips_dir)
        if not files:
            raise ToolError("ffmpeg produced no clips", exit_code=0)

        probed: list[VideoMetadata | None] = []
        for path in files:
            try:
                probed.append(self.invoker.probe(path))
            except ProbeError as e:
                self.logger.warning(
                    "Failed to extract clip metadata",
                    extra={"clip_path": str(path), "error": str(e)},
                )
                probed.append(None)

        durations = [
            meta.duration if meta is not None and meta.duration else float(self.segment_seconds)
            for meta in probed
        ]
        offsets = compute_offsets(durations, self.segment_seconds, mode)

        outputs = []
        for path, meta, duration, (start, end) in zip(files, probed, durations, offsets):
            outputs.append(
                ClipOutput(
                    filename=path.name,
                    start_time=start,
                    end_time=end,
                    duration=duration,
                    fps=meta.fps if meta else None,
                    resolution=meta.resolution if meta else None,
                    file_size=(meta.file_size if meta and meta.file_size else path.stat().st_size),
                )
            )
        return outputs

    def _roll_back(self, video_id: str, clips_dir: Path, message: str) -> None:
        """Remove partial output and mark the record FAILED."""
        try:
            removed = delete_clip_files(clips_dir, self.logger)
            if removed:
                self.logger.info(
                    "Removed partial clips", extra={"video_id": video_id, "count": removed}
                )
        except OSError as cleanup_error:
            self.logger.error(
                f"Failed to remove partial clips: {cleanup_error}",
                extra={"video_id": video_id},
            )

        self.store.update(
            video_id,
            job_state=JobState.FAILED,
            outputs=[],
            last_error=message,
        )
