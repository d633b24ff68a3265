"""
Process module - Job handles and the asyncio event dispatcher.

start_ffmpeg_process() starts a supervisor thread for a job and returns an
FfmpegProcess handle. The handle's dispatcher runs as a task on the caller's
event loop: it polls the supervisor's queue, calls progress listeners on the
loop, and completes `future` once the job ends.

Example:

    async def main():
        process = start_ffmpeg_process(FfmpegJob("input.mp4", "output.webm"))
        process.add_progress_listener(lambda p: print(p.current_time_seconds))
        await process.future
"""

import asyncio
import logging
import queue
import threading
from collections.abc import Callable, Iterable

from .compiler import to_ffmpeg_args
from .constants import (
    CANCELED_EXIT_CODE,
    DEFAULT_CRF_ENCODERS,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_STDERR_TAIL_CHARS,
    FFMPEG_HEADER_ARGS,
    FFMPEG_TRAILER_ARGS,
)
from .definitions import EncodeProgress, FfmpegJob
from .errors import ProtocolViolation, SupervisorFault
from .events import SupervisorEvent
from .supervisor import FfmpegSupervisor

logger = logging.getLogger(__name__)

# Listeners run on the event loop; keep them short or they delay the other listeners
ProgressListener = Callable[[EncodeProgress], None]


class FfmpegProcess:
    """
    A running, finished or failed FFmpeg job.

    Attributes:
        job: The job being processed (None if started from raw arguments)
        args: Full FFmpeg argument list, including the fixed flags
        future: Completes when the job succeeds, or fails with an FfmpegError.
            All listeners for earlier progress have run before it completes.
        last_progress: The last progress report received, if any
    """

    def __init__(
        self,
        args: list[str],
        job: FfmpegJob | None = None,
        ffmpeg_path: str = "ffmpeg",
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        stderr_tail_chars: int = DEFAULT_STDERR_TAIL_CHARS,
    ):
        self.job = job
        self.args = list(args)
        self.last_progress: EncodeProgress | None = None
        self.poll_interval = poll_interval

        self._listeners: list[ProgressListener] = []
        self._cancel = threading.Event()
        self._events: queue.Queue[SupervisorEvent] = queue.Queue()
        self._supervisor = FfmpegSupervisor(
            ffmpeg_path,
            self.args,
            self._events,
            self._cancel,
            poll_interval=poll_interval,
            stderr_tail_chars=stderr_tail_chars,
        )

        loop = asyncio.get_running_loop()
        self.future: asyncio.Future[None] = loop.create_future()
        self.future.add_done_callback(self._on_future_done)
        self._dispatcher_task: asyncio.Task | None = None
        self._timeout_task: asyncio.Task | None = None

    # Listeners

    def add_progress_listener(self, listener: ProgressListener) -> None:
        self._listeners.append(listener)

    def remove_progress_listener(self, listener: ProgressListener) -> None:
        """Remove a listener. Takes effect from the next dispatch cycle."""
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def clear_progress_listeners(self) -> None:
        self._listeners.clear()

    # Status and control

    def cancel(self) -> None:
        """
        Cancel the job.

        The FFmpeg process is killed by the supervisor at its next poll, and the
        future fails with Canceled. The output file is not deleted.
        """
        self._cancel.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    @property
    def finished(self) -> bool:
        """Whether the job has ended (successfully or not)."""
        return self.future.done()

    @property
    def failed(self) -> bool:
        """Whether the job ended with an error. False while still running."""
        return self.future.done() and (self.future.cancelled() or self.future.exception() is not None)

    @property
    def succeeded(self) -> bool:
        return self.future.done() and not self.failed

    # Internals

    def _start(self, timeout_ms: int = 0) -> None:
        self._supervisor.start()
        self._dispatcher_task = asyncio.ensure_future(self._dispatch())
        if timeout_ms > 0:
            self._timeout_task = asyncio.ensure_future(self._timeout(timeout_ms))

    async def _timeout(self, timeout_ms: int) -> None:
        await asyncio.sleep(timeout_ms / 1000)
        if not self.future.done():
            logger.info(f"FFmpeg job timed out after {timeout_ms} ms")
            self._cancel.set()

    def _on_future_done(self, future: asyncio.Future) -> None:
        if self._timeout_task is not None:
            self._timeout_task.cancel()
        # Caller canceled the future itself: tear the process down too
        if future.cancelled():
            self._cancel.set()

    def _drain_events(self) -> list[SupervisorEvent]:
        events = []
        while True:
            try:
                events.append(self._events.get_nowait())
            except queue.Empty:
                return events

    def _notify(self, listeners: list[ProgressListener], progress: EncodeProgress) -> None:
        for listener in listeners:
            try:
                listener(progress)
            except Exception:
                # A failing listener must not stop the others or the job
                logger.exception(f"Progress listener {listener!r} raised")

    def _resolve(self, event: SupervisorEvent) -> None:
        if self.future.done():
            return
        if event.error is None:
            self.future.set_result(None)
        else:
            self.future.set_exception(event.error)

    async def _dispatch(self) -> None:
        try:
            await self._dispatch_loop()
        except Exception as exc:
            logger.exception("Error in FFmpeg event dispatcher")
            self._cancel.set()
            if not self.future.done():
                fault = SupervisorFault("Error occurred in FFmpeg event dispatcher", CANCELED_EXIT_CODE, self.args)
                fault.__cause__ = exc
                self.future.set_exception(fault)

    async def _dispatch_loop(self) -> None:
        while True:
            alive = self._supervisor.is_alive()
            events = self._drain_events()

            if events:
                # Listener changes take effect at cycle boundaries only
                listeners = list(self._listeners)
                for event in events:
                    if event.progress is not None:
                        self.last_progress = event.progress
                        if not event.terminal or event.succeeded:
                            self._notify(listeners, event.progress)
                    if event.terminal:
                        self._resolve(event)
                        return

            if not alive:
                # Everything the thread queued before it died has been drained above
                self._resolve_protocol_violation()
                return

            await asyncio.sleep(self.poll_interval)

    def _resolve_protocol_violation(self) -> None:
        if self.future.done():
            return
        self.future.set_exception(
            ProtocolViolation(
                "FFmpeg process executor thread terminated, but no input was received from it",
                CANCELED_EXIT_CODE,
                self.args,
            )
        )


def build_ffmpeg_args(args: Iterable[str]) -> list[str]:
    """Wrap caller arguments in the fixed header and trailer flags."""
    return [*FFMPEG_HEADER_ARGS, *args, *FFMPEG_TRAILER_ARGS]


def start_ffmpeg_process(
    job: FfmpegJob | Iterable[str],
    ffmpeg_path: str = "ffmpeg",
    timeout_ms: int = 0,
    *,
    crf_encoders: Iterable[str] = DEFAULT_CRF_ENCODERS,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    stderr_tail_chars: int = DEFAULT_STDERR_TAIL_CHARS,
) -> FfmpegProcess:
    """
    Start an FFmpeg job. Must be called from a running event loop.

    When given raw arguments, do not include -hide_banner, -v, -progress or -y;
    they are always added.

    Args:
        job: An FfmpegJob, or raw FFmpeg arguments
        ffmpeg_path: FFmpeg executable
        timeout_ms: Cancel the job after this many milliseconds (0 = never)
        crf_encoders: Encoders that accept -crf (only used when compiling a job)
        poll_interval: Seconds between supervisor/dispatcher polls
        stderr_tail_chars: Maximum stderr characters kept for error reports

    Returns:
        FfmpegProcess handle; await its `future` for the result

    Raises:
        ValidationError: If the job has conflicting options (no process is started)
    """
    if isinstance(job, FfmpegJob):
        caller_args = to_ffmpeg_args(job, crf_encoders)
        source_job = job
    else:
        caller_args = list(job)
        source_job = None

    process = FfmpegProcess(
        build_ffmpeg_args(caller_args),
        job=source_job,
        ffmpeg_path=ffmpeg_path,
        poll_interval=poll_interval,
        stderr_tail_chars=stderr_tail_chars,
    )
    process._start(timeout_ms)
    return process


def run_ffmpeg_job(
    job: FfmpegJob | Iterable[str],
    listeners: Iterable[ProgressListener] = (),
    ffmpeg_path: str = "ffmpeg",
    timeout_ms: int = 0,
    **kwargs,
) -> EncodeProgress | None:
    """
    Run a job to completion, blocking the calling thread.

    Returns:
        The last progress report

    Raises:
        ValidationError: If the job has conflicting options
        FfmpegError: If the job fails or is canceled
    """

    async def _run() -> EncodeProgress | None:
        process = start_ffmpeg_process(job, ffmpeg_path, timeout_ms, **kwargs)
        for listener in listeners:
            process.add_progress_listener(listener)
        await process.future
        return process.last_progress

    return asyncio.run(_run())
