"""Command-line interface for clip-qa.

Uses Typer for a modern, type-hinted CLI experience.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, NoReturn, Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from clip_qa import __version__
from clip_qa.clipper import GenerationResult
from clip_qa.config import AppConfig, get_user_home, load_config
from clip_qa.errors import ClipQAError, NotFoundError, format_error_for_display
from clip_qa.ffmpeg_binary import get_dependency_report
from clip_qa.library import VideoLibrary
from clip_qa.logging import LogConfig, LogLevel, configure_logging, shutdown_logging
from clip_qa.models.video import ClipMode, JobState, ReviewStatus, VideoRecord

# Load environment variables from .env files
# Priority: local .env > ~/.clip-qa/.env
_user_env = get_user_home() / ".env"
if _user_env.exists():
    load_dotenv(_user_env)
load_dotenv(override=True)

app = typer.Typer(
    name="clip-qa",
    help="Cut videos into fixed-length clips for review, with crash-safe job tracking.",
    add_completion=False,
    rich_markup_mode="rich",
)

console = Console()

JOB_STATE_STYLES = {
    JobState.NOT_STARTED: "dim",
    JobState.IN_PROGRESS: "yellow",
    JobState.DONE: "green",
    JobState.FAILED: "red",
}

REVIEW_STYLES = {
    ReviewStatus.PENDING: "yellow",
    ReviewStatus.APPROVED: "green",
    ReviewStatus.REJECTED: "red",
}


class CLIState:
    """Per-invocation state shared between the callback and commands."""

    def __init__(self, config: AppConfig):
        self.config = config
        self._library: VideoLibrary | None = None

    @property
    def library(self) -> VideoLibrary:
        # Opening the library runs the recovery sweep, so it happens
        # before the first command touches any record
        if self._library is None:
            self._library = VideoLibrary(self.config)
            if self._library.recovered_ids:
                console.print(
                    f"[yellow]Recovered {len(self._library.recovered_ids)} interrupted "
                    f"job(s); they are marked FAILED and can be retried.[/yellow]"
                )
        return self._library


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"clip-qa version {__version__}")
        raise typer.Exit()


def _fail(error: Exception) -> NoReturn:
    console.print(f"[red]Error:[/red] {escape(format_error_for_display(error))}")
    raise typer.Exit(1)


def _state(ctx: typer.Context) -> CLIState:
    return ctx.obj


def _library(ctx: typer.Context) -> VideoLibrary:
    # Opening reads the store, so a corrupt db.json surfaces here
    try:
        return _state(ctx).library
    except ClipQAError as e:
        _fail(e)


def _resolve_id(library: VideoLibrary, value: str) -> str:
    """Accept a full ID or an unambiguous prefix of one."""
    ids = [record.id for record in library.list_videos()]
    if value in ids:
        return value
    matches = [video_id for video_id in ids if video_id.startswith(value)]
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        raise NotFoundError(f"Ambiguous video ID prefix: {value}", context={"matches": len(matches)})
    raise NotFoundError(f"Video not found: {value}")


def _format_size(size: int | None) -> str:
    if size is None:
        return "-"
    if size < 1024:
        return f"{size} B"
    value = size / 1024
    for unit in ("KB", "MB"):
        if value < 1024:
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


def _format_seconds(seconds: float | None) -> str:
    if seconds is None:
        return "-"
    minutes, secs = divmod(seconds, 60)
    return f"{int(minutes)}:{secs:05.2f}"


def _styled(value: str, style: str) -> str:
    return f"[{style}]{value}[/{style}]"


def _print_clips(record_id: str, result: GenerationResult) -> None:
    table = Table(title=f"Clips for {record_id[:8]}")
    table.add_column("#", style="dim", justify="right")
    table.add_column("File", style="cyan")
    table.add_column("Start", justify="right")
    table.add_column("End", justify="right")
    table.add_column("Duration", style="green", justify="right")
    table.add_column("Resolution", style="dim")
    table.add_column("Size", justify="right")

    for index, clip in enumerate(result.outputs):
        table.add_row(
            str(index),
            clip.filename,
            _format_seconds(clip.start_time),
            _format_seconds(clip.end_time),
            f"{clip.duration:.2f}s",
            clip.resolution or "-",
            _format_size(clip.file_size),
        )
    console.print(table)


@app.callback()
def main(
    ctx: typer.Context,
    data_dir: Annotated[
        Optional[Path],
        typer.Option(
            "--data-dir",
            "-d",
            help="Storage root for the library (default: $CLIP_QA_DATA_DIR or ~/.clip-qa/data).",
        ),
    ] = None,
    verbose: Annotated[
        int,
        typer.Option("--verbose", "-V", count=True, help="Increase log verbosity (repeatable)."),
    ] = 0,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Only log errors."),
    ] = False,
    log_file: Annotated[
        Optional[Path],
        typer.Option("--log-file", help="Write a full debug log to this file."),
    ] = None,
    json_logs: Annotated[
        bool,
        typer.Option("--json-logs", help="Emit logs as JSON lines."),
    ] = False,
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Clip QA - cut source videos into fixed-length clips for review.

    [bold]fast[/bold] mode copies streams and cuts on existing keyframes (clip lengths drift).

    [bold]precise[/bold] mode re-encodes the source once with keyframes on every boundary,
    then cuts exact clips. The prepared file is cached per video.

    Run one clip-qa process per data directory at a time. Every command marks
    jobs left IN_PROGRESS as interrupted, including a job another process is
    still running.
    """
    try:
        config = load_config(data_dir)
    except ClipQAError as e:
        _fail(e)

    level = LogLevel.QUIET if quiet else LogLevel(min(LogLevel.NORMAL + verbose, LogLevel.DEBUG))
    configure_logging(
        LogConfig(
            level=level,
            log_dir=config.log_dir,
            log_file=log_file,
            json_format=json_logs,
        )
    )
    ctx.call_on_close(shutdown_logging)
    ctx.obj = CLIState(config)


# =============================================================================
# Library Commands
# =============================================================================


@app.command("list")
def list_cmd(ctx: typer.Context) -> None:
    """List all videos in the library, newest first."""
    try:
        records = _library(ctx).list_videos()
    except ClipQAError as e:
        _fail(e)

    if not records:
        console.print("[yellow]No videos found.[/yellow]")
        console.print("Add one with: clip-qa add <file.mp4>")
        return

    table = Table(title=f"Videos ({len(records)})")
    table.add_column("ID", style="cyan")
    table.add_column("File", style="white", max_width=40)
    table.add_column("Review")
    table.add_column("Clips")
    table.add_column("Count", justify="right")
    table.add_column("Added", style="dim")

    for record in records:
        table.add_row(
            record.id[:8],
            escape(record.original_filename),
            _styled(record.review_status.value, REVIEW_STYLES[record.review_status]),
            _styled(record.job_state.value, JOB_STATE_STYLES[record.job_state]),
            str(record.clip_count),
            record.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@app.command()
def add(
    ctx: typer.Context,
    source: Annotated[Path, typer.Argument(help="Video file to add")],
    probe: Annotated[
        bool,
        typer.Option("--probe/--no-probe", help="Extract metadata right after adding"),
    ] = False,
) -> None:
    """Copy a video into the library."""
    library = _library(ctx)
    try:
        record = library.add_video(source)
    except ClipQAError as e:
        _fail(e)

    console.print(f"[green]Added:[/green] {escape(record.original_filename)} -> {record.id}")

    if probe:
        try:
            library.extract_metadata(record.id)
            console.print("[green]Metadata extracted.[/green]")
        except ClipQAError as e:
            console.print(
                f"[yellow]Warning:[/yellow] metadata extraction failed: "
                f"{escape(format_error_for_display(e))}"
            )


@app.command()
def show(
    ctx: typer.Context,
    video_id: Annotated[str, typer.Argument(help="Video ID (or unique prefix)")],
) -> None:
    """Show details, metadata and clips of a video."""
    library = _library(ctx)
    try:
        record = library.get_video(_resolve_id(library, video_id))
    except ClipQAError as e:
        _fail(e)

    console.print(Panel(_describe(record), title="Video Details"))

    if record.metadata:
        meta = record.metadata
        rotation = f"{meta.rotation}°" if meta.rotation is not None else "none"
        console.print(Panel(
            f"[cyan]FPS:[/cyan] {meta.fps if meta.fps is not None else '-'}\n"
            f"[cyan]Resolution:[/cyan] {meta.resolution or '-'}\n"
            f"[cyan]Aspect Ratio:[/cyan] {meta.aspect_ratio or '-'}\n"
            f"[cyan]Duration:[/cyan] {_format_seconds(meta.duration)}\n"
            f"[cyan]Rotation:[/cyan] {rotation}\n"
            f"[cyan]Codec:[/cyan] {meta.codec or '-'}\n"
            f"[cyan]File Size:[/cyan] {_format_size(meta.file_size)}",
            title="Metadata",
        ))

    if record.outputs:
        _print_clips(record.id, GenerationResult(outputs=record.outputs))


def _describe(record: VideoRecord) -> str:
    lines = [
        f"[bold]{escape(record.original_filename)}[/bold]",
        "",
        f"[cyan]ID:[/cyan] {record.id}",
        f"[cyan]Added:[/cyan] {record.created_at.isoformat(timespec='seconds')}",
        f"[cyan]Review:[/cyan] "
        f"{_styled(record.review_status.value, REVIEW_STYLES[record.review_status])}",
        f"[cyan]Clip Job:[/cyan] "
        f"{_styled(record.job_state.value, JOB_STATE_STYLES[record.job_state])}",
        f"[cyan]Clips:[/cyan] {record.clip_count} ({_format_size(record.total_output_size)})",
        f"[cyan]Source:[/cyan] {escape(record.source_path)}",
    ]
    if record.prepared_path:
        lines.append(f"[cyan]Prepared:[/cyan] {escape(record.prepared_path)}")
    if record.last_job_duration_seconds is not None:
        mode = record.last_job_mode.value if record.last_job_mode else "?"
        lines.append(
            f"[cyan]Last Job:[/cyan] {record.last_job_duration_seconds:.2f}s ({mode} mode)"
        )
    if record.last_error:
        lines.append(f"[red]Last Error:[/red] {escape(record.last_error)}")
    return "\n".join(lines)


@app.command("probe")
def probe_cmd(
    ctx: typer.Context,
    video_id: Annotated[str, typer.Argument(help="Video ID (or unique prefix)")],
) -> None:
    """Extract and store metadata for a video."""
    library = _library(ctx)
    try:
        resolved = _resolve_id(library, video_id)
        metadata = library.extract_metadata(resolved)
    except ClipQAError as e:
        _fail(e)

    table = Table(title="Metadata", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for name, value in metadata.model_dump().items():
        table.add_row(name, "-" if value is None else str(value))
    console.print(table)


def _run_job(ctx: typer.Context, video_id: str, mode: ClipMode, regenerate: bool) -> None:
    library = _library(ctx)
    try:
        resolved = _resolve_id(library, video_id)
        label = "Regenerating" if regenerate else "Generating"
        with console.status(f"[cyan]{label} clips ({mode.value} mode)...[/cyan]"):
            if regenerate:
                result = library.regenerate_clips(resolved, mode)
            else:
                result = library.generate_clips(resolved, mode)
    except ClipQAError as e:
        _fail(e)

    if result.skipped:
        console.print(
            f"[green]Clips already generated[/green] ({len(result.outputs)} clips). "
            f"Use 'clip-qa regenerate' to force a new run."
        )
    else:
        console.print(
            f"[green]Generated {len(result.outputs)} clips[/green] "
            f"in {result.elapsed_seconds:.2f}s"
        )
    _print_clips(resolved, result)


@app.command()
def generate(
    ctx: typer.Context,
    video_id: Annotated[str, typer.Argument(help="Video ID (or unique prefix)")],
    mode: Annotated[
        ClipMode,
        typer.Option("--mode", "-m", case_sensitive=False, help="Segmentation mode"),
    ] = ClipMode.FAST,
) -> None:
    """Cut a video into clips (skipped if intact clips already exist)."""
    _run_job(ctx, video_id, mode, regenerate=False)


@app.command()
def regenerate(
    ctx: typer.Context,
    video_id: Annotated[str, typer.Argument(help="Video ID (or unique prefix)")],
    mode: Annotated[
        ClipMode,
        typer.Option("--mode", "-m", case_sensitive=False, help="Segmentation mode"),
    ] = ClipMode.FAST,
) -> None:
    """Discard existing clips and cut the video again."""
    _run_job(ctx, video_id, mode, regenerate=True)


@app.command()
def delete(
    ctx: typer.Context,
    video_id: Annotated[str, typer.Argument(help="Video ID (or unique prefix)")],
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation"),
    ] = False,
) -> None:
    """Delete a video, its clips and every file stored for it.

    This cannot be undone.
    """
    library = _library(ctx)
    try:
        resolved = _resolve_id(library, video_id)
        record = library.get_video(resolved)
    except ClipQAError as e:
        _fail(e)

    if not yes:
        if not typer.confirm(f"Delete '{record.original_filename}' and all its clips?"):
            console.print("[yellow]Cancelled.[/yellow]")
            return

    try:
        library.delete_video(resolved)
    except ClipQAError as e:
        _fail(e)
    console.print(f"[green]Deleted:[/green] {resolved}")


@app.command()
def check_deps(
    ctx: typer.Context,
) -> None:
    """Check that ffmpeg and ffprobe are available."""
    report = get_dependency_report(_state(ctx).config.ffmpeg)

    table = Table(title="Dependency Status")
    table.add_column("Component", style="cyan")
    table.add_column("Status", style="white")
    table.add_column("Details", style="dim")

    ffmpeg = report["ffmpeg"]
    if ffmpeg["available"]:
        table.add_row(
            "FFmpeg",
            f"[green]Available[/green] (v{ffmpeg['version']})",
            f"Source: {ffmpeg['source']}\n{ffmpeg['path']}",
        )
    else:
        table.add_row("FFmpeg", "[red]Not Found[/red]", "Install with: pip install imageio-ffmpeg")

    ffprobe = report["ffprobe"]
    if ffprobe["available"]:
        table.add_row("FFprobe", "[green]Available[/green]", str(ffprobe["path"]))
    else:
        table.add_row("FFprobe", "[red]Not Found[/red]", str(ffprobe["message"]))

    platform_info = report["platform"]
    table.add_row("Platform", str(platform_info["system"]), str(platform_info["machine"]))

    console.print(table)

    if not (ffmpeg["available"] and ffprobe["available"]):
        raise typer.Exit(1)


# =============================================================================
# Review Commands
# =============================================================================

review_app = typer.Typer(
    name="review",
    help="Record reviewer decisions for videos.",
)
app.add_typer(review_app, name="review")


def _set_review(ctx: typer.Context, video_id: str, status: ReviewStatus) -> None:
    library = _library(ctx)
    try:
        record = library.set_review_status(_resolve_id(library, video_id), status)
    except ClipQAError as e:
        _fail(e)
    console.print(
        f"{_styled(status.value.capitalize(), REVIEW_STYLES[status])}: "
        f"{escape(record.original_filename)} ({record.id[:8]})"
    )


@review_app.command("approve")
def review_approve(
    ctx: typer.Context,
    video_id: Annotated[str, typer.Argument(help="Video ID (or unique prefix)")],
) -> None:
    """Mark a video as approved."""
    _set_review(ctx, video_id, ReviewStatus.APPROVED)


@review_app.command("reject")
def review_reject(
    ctx: typer.Context,
    video_id: Annotated[str, typer.Argument(help="Video ID (or unique prefix)")],
) -> None:
    """Mark a video as rejected."""
    _set_review(ctx, video_id, ReviewStatus.REJECTED)


@review_app.command("reset")
def review_reset(
    ctx: typer.Context,
    video_id: Annotated[str, typer.Argument(help="Video ID (or unique prefix)")],
) -> None:
    """Put a video back into the pending state."""
    _set_review(ctx, video_id, ReviewStatus.PENDING)


if __name__ == "__main__":
    app()
