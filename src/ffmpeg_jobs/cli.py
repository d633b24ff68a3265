"""
CLI module - Command line interface for ffmpeg-jobs

Entry point for the `ffj` command using Typer.
"""

import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn, TimeRemainingColumn
from rich.table import Table

from . import __version__
from .config import AppConfig, LoggingConfig, load_config, resolve_tool_path
from .definitions import (
    PRESERVE_ASPECT_RATIO_EVEN,
    AnyAudioEncoder,
    AnyVideoEncoder,
    AudioCodec,
    AudioEncoder,
    AudioSettings,
    CopyStream,
    CustomAudioEncoder,
    CustomVideoEncoder,
    EncodeProgress,
    FfmpegJob,
    H26xCodec,
    H26xEncoder,
    VideoCodec,
    VideoEncoder,
    VideoSettings,
    downscale,
    parse_bitrate,
)
from .errors import FfmpegError, ProbeError, ValidationError
from .metadata import FfprobeResult
from .probe import probe_file
from .process import run_ffmpeg_job

logger = logging.getLogger(__name__)

console = Console()
app = typer.Typer(
    name="ffj",
    help="ffmpeg-jobs - Supervised FFmpeg transcoding with progress reporting.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def version_callback(value: bool):
    if value:
        console.print(f"ffj version {__version__}")
        raise typer.Exit()


ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Path to config file", exists=True, dir_okay=False),
]


def configure_logging(config: LoggingConfig) -> None:
    """Route log records to stderr through Rich at the configured level."""
    root = logging.getLogger()
    root.setLevel(config.level.upper())
    if config.console_logging and not any(isinstance(h, RichHandler) for h in root.handlers):
        root.addHandler(RichHandler(console=Console(stderr=True), show_path=False))


def get_config(config_path: Path | None = None) -> AppConfig:
    """Load configuration and set up logging from it."""
    config = load_config(config_path)
    configure_logging(config.logging)
    return config


@app.callback()
def main(
    version: Annotated[
        bool, typer.Option("--version", "-v", callback=version_callback, is_eager=True, help="Show version")
    ] = False,
):
    """ffmpeg-jobs - Supervised FFmpeg transcoding with progress reporting."""
    pass


def _audio_encoder(name: str) -> AnyAudioEncoder:
    if name == "copy":
        return CopyStream()
    try:
        return AudioEncoder(AudioCodec(name))
    except ValueError:
        return CustomAudioEncoder(name)


def _video_encoder(name: str, crf: int | None) -> AnyVideoEncoder:
    if name == "copy":
        return CopyStream()
    if name in {c.value for c in H26xCodec}:
        return H26xEncoder(H26xCodec(name), crf=crf)
    if name in {c.value for c in VideoCodec}:
        return VideoEncoder(VideoCodec(name), crf=crf)
    return CustomVideoEncoder(name, crf=crf)


def _input_duration(input_file: Path, ffprobe_path: str) -> float | None:
    """Container duration for the progress bar, or None if it can't be probed."""
    try:
        result = probe_file(input_file, ffprobe_path, show_streams=False, show_chapters=False)
    except (ProbeError, FfmpegError) as err:
        logger.warning(f"Could not probe {input_file} for its duration: {err}")
        return None
    return result.duration_seconds


def _print_failure(err: FfmpegError) -> None:
    console.print(f"[red]Error ({err.kind.value}):[/red] {err.message} (exit code {err.exit_code})")
    if err.error_output:
        console.print("[dim]FFmpeg output:[/dim]")
        console.print(err.error_output, markup=False, highlight=False)


@app.command()
def transcode(
    input_file: Annotated[Path, typer.Argument(help="File to transcode", exists=True, dir_okay=False)],
    output_file: Annotated[Path, typer.Argument(help="Output file (overwritten if it exists)")],
    audio_codec: Annotated[
        str | None, typer.Option("--audio-codec", "-a", help="Audio encoder, e.g. aac, libopus or copy")
    ] = None,
    video_codec: Annotated[
        str | None, typer.Option("--video-codec", help="Video encoder, e.g. libx264, libvpx-vp9 or copy")
    ] = None,
    audio_bitrate: Annotated[str | None, typer.Option("--audio-bitrate", help="Audio bitrate, e.g. 128k")] = None,
    video_bitrate: Annotated[str | None, typer.Option("--video-bitrate", help="Video bitrate, e.g. 4M")] = None,
    crf: Annotated[int | None, typer.Option("--crf", help="Constant rate factor (CRF-capable encoders only)")] = None,
    height: Annotated[
        int | None, typer.Option("--height", help="Downscale to at most this height, keeping aspect ratio")
    ] = None,
    container_format: Annotated[str | None, typer.Option("--format", "-f", help="Force output container")] = None,
    timeout: Annotated[int | None, typer.Option("--timeout", help="Cancel after this many milliseconds")] = None,
    audio_only: Annotated[bool, typer.Option("--audio-only", help="Drop video, encode audio only")] = False,
    config: ConfigOption = None,
):
    """
    Transcode a file with FFmpeg, showing progress.

    [bold]Examples:[/bold]

        ffj transcode input.mov output.mp4 --video-codec libx264 --crf 23 --height 720

        ffj transcode talk.mkv talk.opus --audio-only -a libopus --audio-bitrate 96k
    """
    cfg = get_config(config)

    if audio_only and (video_codec or video_bitrate or crf is not None or height is not None):
        console.print("[red]Error:[/red] Video options cannot be combined with --audio-only")
        raise typer.Exit(code=2)

    try:
        audio_rate = parse_bitrate(audio_bitrate) if audio_bitrate else None
        video_rate = parse_bitrate(video_bitrate) if video_bitrate else None
    except ValueError as err:
        console.print(f"[red]Error:[/red] {err}")
        raise typer.Exit(code=2) from err

    audio_encoder = _audio_encoder(audio_codec) if audio_codec else None
    if audio_only:
        settings = AudioSettings(
            extra_args_after_input=("-vn",),
            audio_bitrate=audio_rate,
            audio_encoder=audio_encoder,
            container_format=container_format,
        )
    else:
        video_encoder = None
        if video_codec:
            video_encoder = _video_encoder(video_codec, crf)
        elif crf is not None:
            console.print("[red]Error:[/red] --crf requires --video-codec")
            raise typer.Exit(code=2)
        settings = VideoSettings(
            audio_bitrate=audio_rate,
            audio_encoder=audio_encoder,
            container_format=container_format,
            video_bitrate=video_rate,
            video_encoder=video_encoder,
            video_filters=(downscale(PRESERVE_ASPECT_RATIO_EVEN, height),) if height is not None else (),
        )

    job = FfmpegJob(str(input_file), str(output_file), settings)
    duration = _input_duration(input_file, cfg.tools.ffprobe)
    timeout_ms = timeout if timeout is not None else cfg.supervisor.timeout_ms

    console.print(f"[bold]Transcoding:[/bold] {input_file.name} -> {output_file}")

    progress_columns = (
        TextColumn("{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeRemainingColumn(),
        TextColumn("{task.fields[speed]}"),
    )
    try:
        with Progress(*progress_columns, console=console) as bar:
            task = bar.add_task("Encoding", total=duration, speed="")

            def on_progress(progress: EncodeProgress) -> None:
                bar.update(
                    task,
                    completed=progress.current_time_us / 1_000_000,
                    speed=f"{progress.speed:.2f}x" if progress.speed else "",
                )

            final = run_ffmpeg_job(
                job,
                listeners=[on_progress],
                ffmpeg_path=cfg.tools.ffmpeg,
                timeout_ms=timeout_ms,
                crf_encoders=frozenset(cfg.compiler.crf_encoders),
                poll_interval=cfg.supervisor.poll_interval,
                stderr_tail_chars=cfg.supervisor.stderr_tail_chars,
            )
            if duration is not None:
                bar.update(task, completed=duration)
    except ValidationError as err:
        console.print(f"[red]Error:[/red] {err}")
        raise typer.Exit(code=2) from err
    except FfmpegError as err:
        _print_failure(err)
        raise typer.Exit(code=1) from err

    if final is not None:
        size_mb = final.current_output_size / (1024 * 1024)
        console.print(f"[green]✓[/green] Done: {final.current_time_seconds}s encoded, {size_mb:.1f}MB written")
    else:
        console.print("[green]✓[/green] Done")


def _format_table(result: FfprobeResult) -> Table:
    fmt = result.format
    table = Table(title=f"Format: {fmt.filename}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Container", fmt.format_long_name or fmt.format_name)
    table.add_row("Duration", f"{result.duration_seconds:.2f}s" if result.duration_seconds is not None else "-")
    table.add_row("Size", fmt.size or "-")
    table.add_row("Bitrate", fmt.bit_rate or "-")
    table.add_row("Streams", str(fmt.nb_streams))
    for key, value in fmt.tags.items():
        table.add_row(f"tag:{key}", value)
    return table


def _streams_table(result: FfprobeResult) -> Table:
    table = Table(title="Streams")
    table.add_column("#", style="dim")
    table.add_column("Type", style="cyan")
    table.add_column("Codec")
    table.add_column("Details")
    table.add_column("Bitrate", style="dim")

    for stream in result.streams:
        if stream.codec_type == "video":
            details = f"{stream.width}x{stream.height} {stream.pix_fmt or ''} {stream.r_frame_rate or ''}".strip()
        elif stream.codec_type == "audio":
            details = f"{stream.sample_rate or '?'} Hz, {stream.channel_layout or stream.channels or '?'}"
        else:
            details = ""
        table.add_row(
            str(stream.index), stream.codec_type or "-", stream.codec_name or "-", details, stream.bit_rate or "-"
        )
    return table


def _chapters_table(result: FfprobeResult) -> Table:
    table = Table(title="Chapters")
    table.add_column("#", style="dim")
    table.add_column("Start", style="cyan")
    table.add_column("End", style="cyan")
    table.add_column("Title")
    for chapter in result.chapters:
        table.add_row(str(chapter.id), chapter.start_time, chapter.end_time, chapter.title or "-")
    return table


@app.command()
def probe(
    path: Annotated[str, typer.Argument(help="File or URL to probe")],
    as_json: Annotated[bool, typer.Option("--json", help="Print the parsed result as JSON")] = False,
    no_format: Annotated[bool, typer.Option("--no-format", help="Skip the container section")] = False,
    no_streams: Annotated[bool, typer.Option("--no-streams", help="Skip the stream list")] = False,
    no_chapters: Annotated[bool, typer.Option("--no-chapters", help="Skip the chapter list")] = False,
    config: ConfigOption = None,
):
    """Show container, stream and chapter information for a media file."""
    cfg = get_config(config)

    try:
        result = probe_file(
            path,
            cfg.tools.ffprobe,
            show_format=not no_format,
            show_streams=not no_streams,
            show_chapters=not no_chapters,
        )
    except (ProbeError, FfmpegError) as err:
        console.print(f"[red]Error:[/red] {err}")
        raise typer.Exit(code=1) from err

    if as_json:
        typer.echo(json.dumps(asdict(result), indent=2))
        return

    if result.format is not None:
        console.print(_format_table(result))
    if result.streams:
        console.print(_streams_table(result))
    if result.chapters:
        console.print(_chapters_table(result))


@app.command()
def check(config: ConfigOption = None):
    """Check that FFmpeg and FFprobe can be found."""
    cfg = get_config(config)
    tools = {
        "ffmpeg": resolve_tool_path("ffmpeg", cfg.tools.ffmpeg),
        "ffprobe": resolve_tool_path("ffprobe", cfg.tools.ffprobe),
    }

    table = Table(title="System Dependencies")
    table.add_column("Tool", style="cyan")
    table.add_column("Status")
    table.add_column("Path", style="dim")

    for tool, path in tools.items():
        if path:
            status_str = "[green]Available[/green]"
            path_str = str(path)
        else:
            status_str = "[red]Missing[/red]"
            path_str = "-"
        table.add_row(tool, status_str, path_str)

    console.print(table)

    missing = [t for t, p in tools.items() if p is None]
    if missing:
        console.print("\n[yellow]Warning:[/yellow] Some dependencies are missing.")
        console.print("Install FFmpeg (e.g. sudo apt install ffmpeg) or set FFJ_FFMPEG_PATH / FFJ_FFPROBE_PATH")
        raise typer.Exit(code=1)
