"""Tests for the clip generation orchestrator."""

import logging
from pathlib import Path

import pytest

from clip_qa.clipper import (
    ClipOrchestrator,
    compute_offsets,
    delete_clip_files,
    describe_failure,
    list_clip_files,
)
from clip_qa.errors import JobFailedError, NotFoundError, ProbeError, ToolError
from clip_qa.ffmpeg import ToolResult
from clip_qa.models.video import ClipMode, JobState, VideoMetadata, VideoRecord
from clip_qa.store import RecordStore

LOGGER = logging.getLogger("tests.clipper")


class FakeInvoker:
    """Stands in for ToolInvoker; writes clip files like the segmenter would."""

    def __init__(self, durations=(121.2, 118.9, 45.0)):
        self.durations = list(durations)
        self.calls = []
        self.segment_error = None
        self.prepare_error = None
        self.files_written = None  # defaults to len(durations)
        self.unprobeable = set()
        self.on_call = None

    def run_transcode(self, args, operation="transcode"):
        self.calls.append(operation)
        if self.on_call is not None:
            self.on_call(operation)

        if operation == "prepare":
            if self.prepare_error is not None:
                Path(args[-1]).write_bytes(b"half written")
                raise self.prepare_error
            Path(args[-1]).write_bytes(b"prepared")
            return ToolResult(diagnostic_output="")

        pattern = str(args[-1])
        count = len(self.durations) if self.files_written is None else self.files_written
        for index in range(count):
            Path(pattern.replace("%03d", f"{index:03d}")).write_bytes(b"c" * (index + 1) * 10)
        if self.segment_error is not None:
            raise self.segment_error
        return ToolResult(diagnostic_output="")

    def probe(self, path):
        path = Path(path)
        if path.name in self.unprobeable:
            raise ProbeError("moov atom not found", context={"path": str(path)})
        index = int(path.stem.split("_")[1])
        return VideoMetadata(
            duration=self.durations[index],
            fps=30.0,
            resolution="1280x720",
            file_size=path.stat().st_size,
        )


@pytest.fixture
def store(tmp_path):
    return RecordStore(tmp_path / "data")


@pytest.fixture
def video_id(store):
    record = VideoRecord(
        id="vid1",
        original_filename="talk.mp4",
        source_path=str(store.source_path("vid1")),
    )
    store.clips_dir("vid1").mkdir(parents=True)
    store.source_path("vid1").write_bytes(b"source")
    store.create(record)
    return record.id


@pytest.fixture
def invoker():
    return FakeInvoker()


@pytest.fixture
def orchestrator(store, invoker):
    return ClipOrchestrator(store, invoker, segment_seconds=120, logger=LOGGER)


def clip_names(store, video_id):
    return [p.name for p in list_clip_files(store.clips_dir(video_id))]


class TestComputeOffsets:
    """Tests for clip offset calculation."""

    def test_fast_mode_accumulates_real_durations(self):
        """Test that fast mode offsets follow the actual clip lengths."""
        offsets = compute_offsets([121.2, 118.9, 45.0], 120, ClipMode.FAST)

        assert offsets == [(0.0, 121.2), (121.2, 240.1), (240.1, 285.1)]

    def test_precise_mode_uses_nominal_starts(self):
        """Test that precise mode offsets are multiples of the clip length."""
        offsets = compute_offsets([120.0, 120.0, 45.0], 120, ClipMode.PRECISE)

        assert offsets == [(0.0, 120.0), (120.0, 240.0), (240.0, 285.0)]

    def test_empty(self):
        """Test no clips."""
        assert compute_offsets([], 120, ClipMode.FAST) == []


class TestDescribeFailure:
    """Tests for last_error formatting."""

    def test_tool_error_uses_stderr_tail(self):
        """Test that the message carries the exit status and stderr tail."""
        error = ToolError("ffmpeg exited with code 1", exit_code=1, diagnostic_output="x" * 600 + "END")

        message = describe_failure(error)

        assert message.startswith("ffmpeg failed (exit 1): ")
        assert message.endswith("END")
        assert len(message) < 550

    def test_launch_failure(self):
        """Test a tool that never started."""
        error = ToolError("Failed to launch ffmpeg: not found", exit_code=None)

        assert describe_failure(error).startswith("ffmpeg failed to start")

    def test_other_errors(self):
        """Test non-tool errors."""
        assert describe_failure(OSError("disk full")) == "OSError: disk full"


class TestClipFiles:
    """Tests for clip file helpers."""

    def test_list_sorted_by_name(self, tmp_path):
        """Test that clips are listed in emission order."""
        for name in ["clip_002.mp4", "clip_000.mp4", "clip_001.mp4", "notes.txt"]:
            (tmp_path / name).write_bytes(b"x")

        assert [p.name for p in list_clip_files(tmp_path)] == [
            "clip_000.mp4",
            "clip_001.mp4",
            "clip_002.mp4",
        ]

    def test_delete_missing_dir(self, tmp_path):
        """Test that a missing directory is not an error."""
        assert delete_clip_files(tmp_path / "missing") == 0


class TestGenerate:
    """Tests for ClipOrchestrator.generate."""

    def test_fast_mode(self, store, orchestrator, invoker, video_id):
        """Test a successful fast mode run."""
        result = orchestrator.generate(video_id, ClipMode.FAST)

        assert invoker.calls == ["segment"]
        assert result.skipped is False
        assert [c.filename for c in result.outputs] == [
            "clip_000.mp4",
            "clip_001.mp4",
            "clip_002.mp4",
        ]
        assert [(c.start_time, c.end_time) for c in result.outputs] == [
            (0.0, 121.2),
            (121.2, 240.1),
            (240.1, 285.1),
        ]
        assert result.outputs[1].file_size == 20

        record = store.get(video_id)
        assert record.job_state == JobState.DONE
        assert record.outputs == result.outputs
        assert record.last_error is None
        assert record.last_job_mode == ClipMode.FAST
        assert record.last_job_duration_seconds is not None

    def test_mode_as_string(self, store, orchestrator, video_id):
        """Test that the mode can be given by value."""
        orchestrator.generate(video_id, "fast")

        assert store.get(video_id).last_job_mode == ClipMode.FAST

    def test_in_progress_committed_before_tool_runs(self, store, orchestrator, invoker, video_id):
        """Test that the record is IN_PROGRESS while ffmpeg runs."""
        seen = []
        invoker.on_call = lambda operation: seen.append(store.get(video_id).job_state)

        orchestrator.generate(video_id)

        assert seen == [JobState.IN_PROGRESS]

    def test_idempotent_when_clips_intact(self, orchestrator, invoker, video_id):
        """Test that a DONE video with all clips present is not re-run."""
        first = orchestrator.generate(video_id)
        second = orchestrator.generate(video_id)

        assert invoker.calls == ["segment"]
        assert second.skipped is True
        assert second.elapsed_seconds == 0.0
        assert second.outputs == first.outputs

    def test_reruns_when_a_clip_is_missing(self, store, orchestrator, invoker, video_id):
        """Test that a DONE record with a missing clip file is regenerated."""
        orchestrator.generate(video_id)
        (store.clips_dir(video_id) / "clip_001.mp4").unlink()

        result = orchestrator.generate(video_id)

        assert invoker.calls == ["segment", "segment"]
        assert result.skipped is False
        assert clip_names(store, video_id) == ["clip_000.mp4", "clip_001.mp4", "clip_002.mp4"]

    def test_reruns_when_done_without_outputs(self, store, orchestrator, invoker, video_id):
        """Test that DONE with an empty outputs list is not treated as complete."""
        store.update(video_id, job_state=JobState.DONE, outputs=[])

        result = orchestrator.generate(video_id)

        assert invoker.calls == ["segment"]
        assert len(result.outputs) == 3

    def test_removes_stale_clips_first(self, store, orchestrator, video_id):
        """Test that leftovers from earlier attempts are not picked up."""
        (store.clips_dir(video_id) / "clip_009.mp4").write_bytes(b"stale")

        result = orchestrator.generate(video_id)

        assert "clip_009.mp4" not in [c.filename for c in result.outputs]
        assert clip_names(store, video_id) == ["clip_000.mp4", "clip_001.mp4", "clip_002.mp4"]

    def test_unknown_video(self, orchestrator, invoker):
        """Test generating for a video that doesn't exist."""
        with pytest.raises(NotFoundError):
            orchestrator.generate("missing")

        assert invoker.calls == []

    def test_unknown_mode(self, store, orchestrator, invoker, video_id):
        """Test that an unknown mode is rejected before any state change."""
        with pytest.raises(ValueError):
            orchestrator.generate(video_id, "turbo")

        assert store.get(video_id).job_state == JobState.NOT_STARTED
        assert invoker.calls == []

    def test_unprobeable_clip_uses_nominal_duration(self, store, orchestrator, invoker, video_id):
        """Test that a clip which cannot be probed still gets an entry."""
        invoker.unprobeable = {"clip_001.mp4"}

        result = orchestrator.generate(video_id)

        clip = result.outputs[1]
        assert clip.duration == 120.0
        assert clip.fps is None
        assert clip.file_size == 20
        assert (clip.start_time, clip.end_time) == (121.2, 241.2)
        assert store.get(video_id).job_state == JobState.DONE


class TestFailureRollback:
    """Tests for rollback on failed attempts."""

    def test_tool_failure(self, store, orchestrator, invoker, video_id):
        """Test that a failing segmenter leaves a FAILED record and no clips."""
        invoker.files_written = 2
        invoker.segment_error = ToolError(
            "ffmpeg exited with code 1", exit_code=1, diagnostic_output="Invalid data found"
        )

        with pytest.raises(JobFailedError) as exc_info:
            orchestrator.generate(video_id)

        assert isinstance(exc_info.value.__cause__, ToolError)
        assert exc_info.value.video_id == video_id

        record = store.get(video_id)
        assert record.job_state == JobState.FAILED
        assert record.outputs == []
        assert record.last_error == "ffmpeg failed (exit 1): Invalid data found"
        assert clip_names(store, video_id) == []

    def test_failure_after_done_clears_outputs(self, store, orchestrator, invoker, video_id):
        """Test that a failed regenerate does not leave the old clips listed."""
        orchestrator.generate(video_id)
        invoker.segment_error = ToolError("boom", exit_code=1, diagnostic_output="boom")

        with pytest.raises(JobFailedError):
            orchestrator.regenerate(video_id)

        record = store.get(video_id)
        assert record.job_state == JobState.FAILED
        assert record.outputs == []
        assert clip_names(store, video_id) == []

    def test_launch_failure(self, store, orchestrator, invoker, video_id):
        """Test ffmpeg that could not be started."""
        invoker.files_written = 0
        invoker.segment_error = ToolError("Failed to launch ffmpeg: No such file", exit_code=None)

        with pytest.raises(JobFailedError):
            orchestrator.generate(video_id)

        assert store.get(video_id).last_error.startswith("ffmpeg failed to start")

    def test_no_clips_produced(self, store, orchestrator, invoker, video_id):
        """Test a segmenter run that exits cleanly without output."""
        invoker.files_written = 0

        with pytest.raises(JobFailedError, match="produced no clips"):
            orchestrator.generate(video_id)

        assert store.get(video_id).job_state == JobState.FAILED

    def test_retry_after_failure(self, store, orchestrator, invoker, video_id):
        """Test that a FAILED video can be generated again."""
        invoker.segment_error = ToolError("boom", exit_code=1)
        with pytest.raises(JobFailedError):
            orchestrator.generate(video_id)

        invoker.segment_error = None
        result = orchestrator.generate(video_id)

        record = store.get(video_id)
        assert record.job_state == JobState.DONE
        assert record.last_error is None
        assert len(result.outputs) == 3


class TestPreciseMode:
    """Tests for precise mode and the prepared source cache."""

    @pytest.fixture
    def invoker(self):
        return FakeInvoker(durations=(120.0, 120.0, 45.0))

    def test_prepares_then_segments(self, store, orchestrator, invoker, video_id):
        """Test the first precise run."""
        result = orchestrator.generate(video_id, ClipMode.PRECISE)

        assert invoker.calls == ["prepare", "segment"]
        assert [(c.start_time, c.end_time) for c in result.outputs] == [
            (0.0, 120.0),
            (120.0, 240.0),
            (240.0, 285.0),
        ]

        record = store.get(video_id)
        assert record.prepared_path == str(store.prepared_path(video_id))
        assert Path(record.prepared_path).exists()
        assert record.last_job_mode == ClipMode.PRECISE
        assert list(store.video_dir(video_id).glob("*.partial.mp4")) == []

    def test_prepared_source_is_reused(self, store, orchestrator, invoker, video_id):
        """Test that a second precise run skips the preparation encode."""
        orchestrator.generate(video_id, ClipMode.PRECISE)
        prepared = store.get(video_id).prepared_path

        orchestrator.regenerate(video_id, ClipMode.PRECISE)

        assert invoker.calls == ["prepare", "segment", "segment"]
        assert store.get(video_id).prepared_path == prepared

    def test_missing_prepared_file_is_rebuilt(self, store, orchestrator, invoker, video_id):
        """Test that a recorded but deleted preparation is produced again."""
        orchestrator.generate(video_id, ClipMode.PRECISE)
        store.prepared_path(video_id).unlink()

        orchestrator.regenerate(video_id, ClipMode.PRECISE)

        assert invoker.calls == ["prepare", "segment", "prepare", "segment"]
        assert store.prepared_path(video_id).exists()

    def test_prepare_failure(self, store, orchestrator, invoker, video_id):
        """Test that a failed preparation leaves no partial file behind."""
        invoker.prepare_error = ToolError("x264 failed", exit_code=1, diagnostic_output="x264 failed")

        with pytest.raises(JobFailedError):
            orchestrator.generate(video_id, ClipMode.PRECISE)

        record = store.get(video_id)
        assert record.job_state == JobState.FAILED
        assert record.prepared_path is None
        assert invoker.calls == ["prepare"]
        assert list(store.video_dir(video_id).glob("prepared*")) == []

    def test_segment_failure_keeps_preparation(self, store, orchestrator, invoker, video_id):
        """Test that the cache survives a later segmentation failure."""
        invoker.segment_error = ToolError("boom", exit_code=1)

        with pytest.raises(JobFailedError):
            orchestrator.generate(video_id, ClipMode.PRECISE)

        record = store.get(video_id)
        assert record.job_state == JobState.FAILED
        assert record.prepared_path == str(store.prepared_path(video_id))

        invoker.segment_error = None
        orchestrator.generate(video_id, ClipMode.PRECISE)

        assert invoker.calls == ["prepare", "segment", "segment"]


class TestRegenerate:
    """Tests for ClipOrchestrator.regenerate."""

    def test_forces_new_run(self, store, orchestrator, invoker, video_id):
        """Test that regenerate runs even when clips are intact."""
        orchestrator.generate(video_id)

        result = orchestrator.regenerate(video_id)

        assert invoker.calls == ["segment", "segment"]
        assert result.skipped is False
        assert store.get(video_id).job_state == JobState.DONE

    def test_mode_switch(self, store, orchestrator, invoker, video_id):
        """Test regenerating a fast mode result in precise mode."""
        orchestrator.generate(video_id, ClipMode.FAST)

        orchestrator.regenerate(video_id, ClipMode.PRECISE)

        assert invoker.calls == ["segment", "prepare", "segment"]
        assert store.get(video_id).last_job_mode == ClipMode.PRECISE

    def test_unknown_video(self, orchestrator):
        """Test regenerating a video that doesn't exist."""
        with pytest.raises(NotFoundError):
            orchestrator.regenerate("missing")
