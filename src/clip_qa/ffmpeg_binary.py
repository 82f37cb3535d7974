"""FFmpeg binary discovery for clip-qa.

Locates the ffmpeg and ffprobe executables. Uses an explicitly configured
path first, then the imageio-ffmpeg bundled binary, then the system PATH.
"""

from __future__ import annotations

import platform
import shutil
import subprocess
import sys
from pathlib import Path
from typing import NamedTuple

import imageio_ffmpeg
from pydantic import BaseModel, Field


class FFmpegInfo(NamedTuple):
    """Information about FFmpeg installation."""

    path: str
    version: str
    available: bool
    source: str  # "custom", "imageio", "system", or "not_found"


class FFmpegConfig(BaseModel):
    """Configuration for FFmpeg binary location."""

    ffmpeg_path: str | None = Field(
        default=None,
        description="Explicit path to the ffmpeg executable",
    )
    ffprobe_path: str | None = Field(
        default=None,
        description="Explicit path to the ffprobe executable",
    )
    prefer_system: bool = Field(
        default=False,
        description="Prefer ffmpeg on PATH over the bundled binary",
    )


def _subprocess_flags() -> int:
    """Platform-specific creation flags (no console window on Windows)."""
    if platform.system() == "Windows":
        return subprocess.CREATE_NO_WINDOW
    return 0


def _get_ffmpeg_from_imageio() -> str | None:
    """Get the ffmpeg binary bundled with imageio-ffmpeg, if one is installed."""
    try:
        return imageio_ffmpeg.get_ffmpeg_exe()
    except RuntimeError:
        return None


def _get_ffprobe_from_imageio() -> str | None:
    """Look for ffprobe next to the imageio-ffmpeg binary.

    imageio-ffmpeg does not bundle ffprobe, but a user-provided one
    may sit in the same directory.
    """
    ffmpeg_path = _get_ffmpeg_from_imageio()
    if ffmpeg_path is None:
        return None

    name = "ffprobe.exe" if platform.system() == "Windows" else "ffprobe"
    ffprobe_path = Path(ffmpeg_path).parent / name
    if ffprobe_path.exists():
        return str(ffprobe_path)
    return None


def _resolve(
    explicit: str | None,
    prefer_system: bool,
    system_name: str,
    bundled,
) -> tuple[str | None, str]:
    if explicit and Path(explicit).exists():
        return explicit, "custom"

    if prefer_system:
        system_path = shutil.which(system_name)
        if system_path:
            return system_path, "system"

    bundled_path = bundled()
    if bundled_path:
        return bundled_path, "imageio"

    system_path = shutil.which(system_name)
    if system_path:
        return system_path, "system"

    return None, "not_found"


def get_ffmpeg_path(config: FFmpegConfig | None = None) -> str | None:
    """Get the path to the ffmpeg executable.

    Search order: configured path, system PATH (when prefer_system),
    imageio-ffmpeg bundled binary, system PATH.

    Args:
        config: Optional configuration for custom paths.

    Returns:
        Path to ffmpeg, or None if not found.
    """
    config = config or FFmpegConfig()
    path, _ = _resolve(config.ffmpeg_path, config.prefer_system, "ffmpeg", _get_ffmpeg_from_imageio)
    return path


def get_ffprobe_path(config: FFmpegConfig | None = None) -> str | None:
    """Get the path to the ffprobe executable.

    Same search order as get_ffmpeg_path().
    """
    config = config or FFmpegConfig()
    path, _ = _resolve(
        config.ffprobe_path, config.prefer_system, "ffprobe", _get_ffprobe_from_imageio
    )
    return path


def _get_version(executable: str) -> str | None:
    """Get the version string reported by ``<executable> -version``."""
    try:
        result = subprocess.run(
            [executable, "-version"],
            capture_output=True,
            text=True,
            timeout=10,
            creationflags=_subprocess_flags(),
        )
    except (subprocess.TimeoutExpired, OSError):
        return None

    if result.returncode != 0:
        return None

    # e.g. "ffmpeg version 6.0-full_build-www.gyan.dev Copyright ..."
    first_line = result.stdout.split("\n")[0]
    if "version" in first_line:
        parts = first_line.split("version", 1)[1].strip().split()
        if parts:
            return parts[0]
    return first_line.strip() or None


def get_ffmpeg_info(config: FFmpegConfig | None = None) -> FFmpegInfo:
    """Get information about the ffmpeg installation in use."""
    config = config or FFmpegConfig()
    path, source = _resolve(
        config.ffmpeg_path, config.prefer_system, "ffmpeg", _get_ffmpeg_from_imageio
    )

    if path is None:
        return FFmpegInfo(path="", version="", available=False, source="not_found")

    return FFmpegInfo(
        path=path,
        version=_get_version(path) or "unknown",
        available=True,
        source=source,
    )


def check_ffprobe(config: FFmpegConfig | None = None) -> tuple[bool, str]:
    """Check if ffprobe is available.

    Returns:
        Tuple of (available, message).
    """
    path = get_ffprobe_path(config)

    if path is None:
        return (False, "FFprobe not found. Metadata extraction requires ffprobe on PATH.")

    version = _get_version(path)
    if version is None:
        return (False, f"FFprobe at {path} failed to run")

    return (True, f"FFprobe {version} available: {path}")


def get_dependency_report(config: FFmpegConfig | None = None) -> dict[str, dict[str, str | bool]]:
    """Generate a dependency report for the check-deps command."""
    ffmpeg_info = get_ffmpeg_info(config)
    ffprobe_available, ffprobe_msg = check_ffprobe(config)

    return {
        "ffmpeg": {
            "available": ffmpeg_info.available,
            "path": ffmpeg_info.path,
            "version": ffmpeg_info.version,
            "source": ffmpeg_info.source,
        },
        "ffprobe": {
            "available": ffprobe_available,
            "path": get_ffprobe_path(config) or "",
            "message": ffprobe_msg,
        },
        "imageio_ffmpeg": {
            "available": _get_ffmpeg_from_imageio() is not None,
            "version": getattr(imageio_ffmpeg, "__version__", "unknown"),
        },
        "platform": {
            "system": platform.system(),
            "machine": platform.machine(),
            "python": sys.version.split()[0],
        },
    }
