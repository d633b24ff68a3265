"""
Probe module - Runs FFprobe and parses its JSON report.

probe_file() blocks until FFprobe exits. probe_file_async() runs the same
call on a dedicated thread and returns a future on the caller's event loop.
"""

import asyncio
import logging
import subprocess
import threading
from pathlib import Path

from .constants import CANCELED_EXIT_CODE, FFPROBE_BASE_ARGS, OUTPUT_ENCODING, OUTPUT_ERRORS
from .errors import ProbeError, SpawnError
from .metadata import FfprobeResult

logger = logging.getLogger(__name__)


def build_probe_args(
    input_file: str | Path,
    show_format: bool = True,
    show_streams: bool = True,
    show_chapters: bool = True,
) -> list[str]:
    """Build FFprobe arguments (without the executable) for a file."""
    args = list(FFPROBE_BASE_ARGS)
    if show_format:
        args.append("-show_format")
    if show_streams:
        args.append("-show_streams")
    if show_chapters:
        args.append("-show_chapters")
    args.append(str(input_file))
    return args


def probe_file(
    input_file: str | Path,
    ffprobe_path: str = "ffprobe",
    show_format: bool = True,
    show_streams: bool = True,
    show_chapters: bool = True,
) -> FfprobeResult:
    """
    Probe a media file.

    Args:
        input_file: File (or URL) to probe
        ffprobe_path: FFprobe executable
        show_format: Include the container section
        show_streams: Include the stream list
        show_chapters: Include the chapter list

    Returns:
        FfprobeResult with the requested sections

    Raises:
        SpawnError: If FFprobe could not be started
        ProbeError: If FFprobe reported an error or produced unreadable output
    """
    args = build_probe_args(input_file, show_format, show_streams, show_chapters)
    cmd = [ffprobe_path, *args]
    logger.debug(f"Running FFprobe: {' '.join(cmd)}")

    try:
        result = subprocess.run(cmd, capture_output=True, encoding=OUTPUT_ENCODING, errors=OUTPUT_ERRORS)
    except OSError as err:
        error = SpawnError(f"Failed to start FFprobe ({ffprobe_path}): {err}", CANCELED_EXIT_CODE, args)
        error.__cause__ = err
        raise error

    try:
        probe_result = FfprobeResult.from_json(result.stdout)
    except ValueError as err:
        message = result.stderr.strip() or f"Unreadable FFprobe output: {err}"
        raise ProbeError(result.returncode, message) from err

    if probe_result.error is not None:
        raise ProbeError(probe_result.error.code, probe_result.error.message)

    if result.returncode != 0:
        raise ProbeError(result.returncode, result.stderr.strip() or "FFprobe failed without an error report")

    return probe_result


def probe_file_async(
    input_file: str | Path,
    ffprobe_path: str = "ffprobe",
    show_format: bool = True,
    show_streams: bool = True,
    show_chapters: bool = True,
) -> asyncio.Future[FfprobeResult]:
    """
    Probe a media file without blocking the event loop.

    Must be called from a running event loop. The returned future resolves
    with the same result, or fails with the same errors, as probe_file().
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future[FfprobeResult] = loop.create_future()

    def _set_result(result: FfprobeResult) -> None:
        if not future.done():
            future.set_result(result)

    def _set_exception(exc: BaseException) -> None:
        if not future.done():
            future.set_exception(exc)

    def _worker() -> None:
        try:
            result = probe_file(input_file, ffprobe_path, show_format, show_streams, show_chapters)
        except Exception as exc:
            loop.call_soon_threadsafe(_set_exception, exc)
        else:
            loop.call_soon_threadsafe(_set_result, result)

    threading.Thread(target=_worker, name="ffprobe", daemon=True).start()
    return future
