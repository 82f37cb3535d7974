"""FFmpeg/FFprobe invocation for clip-qa.

ToolInvoker runs the probe and transcode tools as subprocesses, turns
failures into ProbeError/ToolError, and logs every invocation with its
command line, exit status and the tail of stderr. The command builders
assemble the two ffmpeg shapes used by the orchestrator; run_transcode
itself never interprets its arguments.
"""

from __future__ import annotations

import json
import logging
import math
import os
import platform
import subprocess
from dataclasses import dataclass
from fractions import Fraction
from pathlib import Path
from typing import Any

from clip_qa.errors import ProbeError, ToolError
from clip_qa.ffmpeg_binary import FFmpegConfig, get_ffmpeg_path, get_ffprobe_path
from clip_qa.logging import diagnostic_tail, get_logger, log_tool_invocation
from clip_qa.models.video import VideoMetadata

# Filename pattern emitted by the segmenter; zero padding keeps name
# order equal to emission order
SEGMENT_PATTERN = "clip_%03d.mp4"

PROBE_ARGS = [
    "-v", "quiet",
    "-print_format", "json",
    "-show_format",
    "-show_streams",
]


@dataclass
class ToolResult:
    """Outcome of a successful transcode run."""

    diagnostic_output: str


def build_segment_args(
    input_path: Path | str,
    output_pattern: Path | str,
    segment_seconds: int,
) -> list[str]:
    """Build ffmpeg arguments for stream-copy segmentation.

    Cuts land on the nearest keyframe at or before each boundary, so
    chunk lengths are only exact when the input was prepared with
    keyframes on the boundaries.

    Args:
        input_path: Source video
        output_pattern: Output path with a %03d sequence placeholder
        segment_seconds: Nominal chunk length

    Returns:
        Argument list (without the ffmpeg executable)
    """
    return [
        "-y",
        "-nostdin",
        "-i", str(input_path),
        "-map", "0:v:0",
        "-map", "0:a?",
        "-c", "copy",
        "-f", "segment",
        "-segment_time", str(segment_seconds),
        "-reset_timestamps", "1",
        str(output_pattern),
    ]


def build_prepare_args(
    input_path: Path | str,
    output_path: Path | str,
    segment_seconds: int,
    preset: str = "veryfast",
    crf: int = 23,
    audio_bitrate: str = "192k",
) -> list[str]:
    """Build ffmpeg arguments for the precise mode re-keyframe encode.

    Forces a keyframe at every multiple of segment_seconds so a later
    stream-copy segmentation cuts on exact boundaries.

    Returns:
        Argument list (without the ffmpeg executable)
    """
    return [
        "-y",
        "-nostdin",
        "-i", str(input_path),
        "-force_key_frames", f"expr:gte(t,n_forced*{segment_seconds})",
        "-c:v", "libx264",
        "-preset", preset,
        "-crf", str(crf),
        "-pix_fmt", "yuv420p",
        "-c:a", "aac",
        "-b:a", audio_bitrate,
        "-movflags", "+faststart",
        str(output_path),
    ]


def _parse_frame_rate(value: str | None) -> float | None:
    """Parse an ffprobe rational like "30000/1001" into a decimal."""
    if not value:
        return None
    try:
        num, _, den = value.partition("/")
        if den and int(den) == 0:
            return None
        rate = Fraction(int(num), int(den or 1))
    except ValueError:
        return None
    return round(float(rate), 2)


def _parse_rotation(stream: dict[str, Any]) -> int | None:
    """Rotation in degrees, side data first, then the legacy rotate tag."""
    for side_data in stream.get("side_data_list") or []:
        if isinstance(side_data, dict) and side_data.get("rotation") is not None:
            try:
                return int(float(side_data["rotation"]))
            except (TypeError, ValueError):
                break

    rotate = (stream.get("tags") or {}).get("rotate")
    if rotate is not None:
        try:
            return int(float(rotate))
        except (TypeError, ValueError):
            return None
    return None


def _aspect_ratio(stream: dict[str, Any], width: int | None, height: int | None) -> str | None:
    declared = stream.get("display_aspect_ratio")
    if declared and declared != "0:1":
        return declared
    if width and height:
        divisor = math.gcd(width, height)
        return f"{width // divisor}:{height // divisor}"
    return None


def parse_probe_output(data: dict[str, Any], file_size: int | None = None) -> VideoMetadata:
    """Extract VideoMetadata from ffprobe JSON output.

    Args:
        data: Parsed ffprobe document (format + streams)
        file_size: Size of the probed file in bytes

    Returns:
        VideoMetadata for the first video stream

    Raises:
        ProbeError: If there is no video stream
    """
    streams = data.get("streams") or []
    video_stream = next(
        (s for s in streams if isinstance(s, dict) and s.get("codec_type") == "video"),
        None,
    )
    if video_stream is None:
        raise ProbeError("No video stream found")

    width = video_stream.get("width")
    height = video_stream.get("height")
    resolution = f"{width}x{height}" if width and height else None

    duration = None
    raw_duration = (data.get("format") or {}).get("duration")
    if raw_duration is not None:
        try:
            duration = float(raw_duration)
        except (TypeError, ValueError):
            duration = None

    return VideoMetadata(
        fps=_parse_frame_rate(video_stream.get("r_frame_rate")),
        resolution=resolution,
        aspect_ratio=_aspect_ratio(video_stream, width, height),
        duration=duration,
        rotation=_parse_rotation(video_stream),
        codec=video_stream.get("codec_name"),
        file_size=file_size,
    )


class ToolInvoker:
    """Runs ffprobe and ffmpeg on behalf of the orchestrator.

    Calls block the calling thread until the tool exits. No timeout is
    applied; a hung tool blocks its job.
    """

    def __init__(
        self,
        config: FFmpegConfig | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the invoker.

        Args:
            config: Optional FFmpeg binary configuration.
            logger: Logger receiving tool invocation records.
        """
        self._config = config or FFmpegConfig()
        self._ffmpeg_path = get_ffmpeg_path(self._config) or "ffmpeg"
        self._ffprobe_path = get_ffprobe_path(self._config) or "ffprobe"
        self.logger = logger or get_logger(__name__)

    @property
    def ffmpeg_path(self) -> str:
        return self._ffmpeg_path

    @property
    def ffprobe_path(self) -> str:
        return self._ffprobe_path

    def _get_subprocess_flags(self) -> int:
        if platform.system() == "Windows":
            return subprocess.CREATE_NO_WINDOW
        return 0

    def probe(self, file_path: Path | str) -> VideoMetadata:
        """Extract metadata from a video file.

        Args:
            file_path: Video to inspect

        Returns:
            VideoMetadata; file_size comes from the filesystem

        Raises:
            ProbeError: If the file is missing, ffprobe fails or cannot be
                launched, its output is not JSON, or there is no video stream
        """
        file_path = Path(file_path)
        context = {"path": str(file_path)}

        if not file_path.exists():
            raise ProbeError(f"File not found: {file_path}", context=context)

        cmd = [self._ffprobe_path, *PROBE_ARGS, str(file_path)]
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                creationflags=self._get_subprocess_flags(),
            )
        except OSError as e:
            log_tool_invocation(self.logger, "probe", cmd, None, str(e))
            raise ProbeError(f"Failed to launch ffprobe: {e}", context=context) from e

        log_tool_invocation(self.logger, "probe", cmd, result.returncode, result.stderr)

        if result.returncode != 0:
            raise ProbeError(
                f"ffprobe exited with code {result.returncode}: "
                f"{diagnostic_tail(result.stderr).strip()}",
                context=context,
            )

        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise ProbeError(f"Failed to parse ffprobe output: {e}", context=context) from e
        if not isinstance(data, dict):
            raise ProbeError("Unexpected ffprobe output", context=context)

        try:
            metadata = parse_probe_output(data, file_size=os.stat(file_path).st_size)
        except ProbeError as e:
            e.context.update(context)
            raise
        return metadata

    def run_transcode(self, args: list[str], operation: str = "transcode") -> ToolResult:
        """Run ffmpeg with a fully assembled argument list.

        Args:
            args: Arguments (without the ffmpeg executable)
            operation: Name used in the invocation log record

        Returns:
            ToolResult with the captured diagnostic output

        Raises:
            ToolError: On non-zero exit, or exit_code=None if ffmpeg could
                not be launched
        """
        cmd = [self._ffmpeg_path, *args]
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                creationflags=self._get_subprocess_flags(),
            )
        except OSError as e:
            log_tool_invocation(self.logger, operation, cmd, None, str(e))
            raise ToolError(
                f"Failed to launch ffmpeg: {e}",
                exit_code=None,
                diagnostic_output=str(e),
            ) from e

        log_tool_invocation(self.logger, operation, cmd, result.returncode, result.stderr)

        if result.returncode != 0:
            raise ToolError(
                f"ffmpeg exited with code {result.returncode}",
                exit_code=result.returncode,
                diagnostic_output=result.stderr or result.stdout or "",
            )

        return ToolResult(diagnostic_output=result.stderr or "")
