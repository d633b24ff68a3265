"""
Supervisor module - Runs one FFmpeg process on its own thread.

The supervisor owns the process handle. It reads progress from stdout,
keeps a bounded tail of stderr, watches the cancel flag, and reports
everything as SupervisorEvents on a queue. Exactly one terminal event is
sent per run, whatever happens.
"""

import logging
import queue
import subprocess
import threading
from collections import deque
from collections.abc import Iterable

from .constants import (
    CANCELED_EXIT_CODE,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_STDERR_TAIL_CHARS,
    OUTPUT_ENCODING,
    OUTPUT_ERRORS,
    SIGNAL_EXIT_BASE,
)
from .definitions import EncodeProgress
from .errors import Canceled, ProtocolViolation, RuntimeFailure, SpawnError, SupervisorFault
from .events import SupervisorEvent, failure_event, progress_event, success_event
from .progress import ProgressParser

logger = logging.getLogger(__name__)

# Marks end of stdout on the internal line queue
_EOF = None


class StderrTail:
    """Keeps the last `limit` characters written to a stream."""

    def __init__(self, limit: int = DEFAULT_STDERR_TAIL_CHARS):
        self._chunks: deque[str] = deque()
        self._size = 0
        self._limit = limit
        self._lock = threading.Lock()

    def append(self, text: str) -> None:
        with self._lock:
            self._chunks.append(text)
            self._size += len(text)
            while len(self._chunks) > 1 and self._size - len(self._chunks[0]) >= self._limit:
                self._size -= len(self._chunks.popleft())

    def text(self) -> str:
        if self._limit <= 0:
            return ""
        with self._lock:
            return "".join(self._chunks)[-self._limit :]


def _pump_lines(stream: Iterable[str], lines: queue.Queue) -> None:
    try:
        for line in stream:
            lines.put(line)
    except (OSError, ValueError):
        # Stream closed underneath us (process killed)
        pass
    finally:
        lines.put(_EOF)


def _drain_into(stream: Iterable[str], tail: StderrTail) -> None:
    try:
        for chunk in stream:
            tail.append(chunk)
    except (OSError, ValueError):
        pass


class _Canceled(Exception):
    """Internal signal: the cancel flag was observed."""


class FfmpegSupervisor:
    """
    Supervises a single FFmpeg run on a dedicated thread.

    Args:
        ffmpeg_path: FFmpeg executable (looked up on PATH if not a path)
        args: Full argument list, including the fixed header/trailer flags
        events: Queue receiving SupervisorEvents
        cancel: Flag set by the caller (or a timeout) to stop the run
        poll_interval: Seconds to wait for output before re-checking the cancel flag
        stderr_tail_chars: Maximum stderr characters kept for error reports
    """

    def __init__(
        self,
        ffmpeg_path: str,
        args: list[str],
        events: queue.Queue,
        cancel: threading.Event,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        stderr_tail_chars: int = DEFAULT_STDERR_TAIL_CHARS,
    ):
        self.ffmpeg_path = ffmpeg_path
        self.args = list(args)
        self.events = events
        self.cancel = cancel
        self.poll_interval = poll_interval
        self.stderr_tail = StderrTail(stderr_tail_chars)

        self._process: subprocess.Popen | None = None
        self._pipe_threads: list[threading.Thread] = []
        self._terminal_sent = False
        self._last_progress: EncodeProgress | None = None
        self._thread = threading.Thread(target=self._run, name=f"ffmpeg-supervisor-{id(self):x}", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def join(self, timeout: float | None = None) -> None:
        self._thread.join(timeout)

    # Thread body

    def _run(self) -> None:
        try:
            self._supervise()
        except _Canceled:
            self._kill()
            logger.info(f"FFmpeg job canceled: {' '.join(self.args)}")
            self._send_terminal(
                failure_event(
                    Canceled("FFmpeg process was terminated", CANCELED_EXIT_CODE, self.args), self._last_progress
                )
            )
        except Exception as exc:
            logger.exception("Error in FFmpeg supervisor thread")
            self._kill()
            fault = SupervisorFault("Error occurred in FFmpeg process manager thread", CANCELED_EXIT_CODE, self.args)
            fault.__cause__ = exc
            self._send_terminal(failure_event(fault, self._last_progress))
        finally:
            if not self._terminal_sent:
                self._send_terminal(
                    failure_event(
                        ProtocolViolation(
                            "FFmpeg supervisor ended without reporting a result", CANCELED_EXIT_CODE, self.args
                        )
                    )
                )

    def _supervise(self) -> None:
        self._check_cancel()

        try:
            self._process = subprocess.Popen(
                [self.ffmpeg_path, *self.args],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                encoding=OUTPUT_ENCODING,
                errors=OUTPUT_ERRORS,
            )
        except OSError as err:
            error = SpawnError(f"Failed to start FFmpeg ({self.ffmpeg_path}): {err}", CANCELED_EXIT_CODE, self.args)
            error.__cause__ = err
            self._send_terminal(failure_event(error))
            return

        process = self._process
        logger.debug(f"Started FFmpeg (pid {process.pid}): {' '.join(self.args)}")

        # stderr must be drained even while we only care about stdout, or FFmpeg
        # blocks once the pipe buffer fills up
        lines: queue.Queue = queue.Queue()
        self._pipe_threads = [
            threading.Thread(target=_pump_lines, args=(process.stdout, lines), daemon=True),
            threading.Thread(target=_drain_into, args=(process.stderr, self.stderr_tail), daemon=True),
        ]
        for thread in self._pipe_threads:
            thread.start()

        end_progress = self._read_progress(lines)

        exit_code = self._wait_for_exit(process)
        self._close_pipes(process)
        if exit_code < 0:
            # Killed by a signal we did not send (cancel never reaches this point)
            logger.warning(f"FFmpeg (pid {process.pid}) was killed by signal {-exit_code}")
            exit_code = SIGNAL_EXIT_BASE - exit_code
        logger.debug(f"FFmpeg (pid {process.pid}) exited with code {exit_code}")

        if end_progress is not None:
            if exit_code > 0:
                # Final block reached listeners; the failure still has to be reported
                self._emit(progress_event(end_progress))
                self._send_terminal(failure_event(self._runtime_failure(exit_code), end_progress))
            else:
                self._send_terminal(success_event(end_progress))
            return

        if exit_code > 0:
            self._send_terminal(failure_event(self._runtime_failure(exit_code), self._last_progress))
        elif self._last_progress is None:
            message = (
                f"FFmpeg exited with code {exit_code} but no encode progress was received "
                "during the process lifetime"
            )
            self._send_terminal(failure_event(ProtocolViolation(message, exit_code, self.args)))
        else:
            message = f"FFmpeg exited with code {exit_code} before reporting the end of encoding"
            self._send_terminal(failure_event(ProtocolViolation(message, exit_code, self.args), self._last_progress))

    def _read_progress(self, lines: queue.Queue) -> EncodeProgress | None:
        """Read stdout until the end marker (returns its snapshot) or EOF (returns None)."""
        parser = ProgressParser()

        while True:
            self._check_cancel()

            try:
                line = lines.get(timeout=self.poll_interval)
            except queue.Empty:
                continue

            if line is _EOF:
                return None

            update = parser.feed(line)
            if update is None:
                continue

            if update.ended:
                self._last_progress = update.progress
                return update.progress

            self._last_progress = update.progress
            self._emit(progress_event(update.progress))

    def _wait_for_exit(self, process: subprocess.Popen) -> int:
        while True:
            self._check_cancel()
            try:
                return process.wait(timeout=self.poll_interval)
            except subprocess.TimeoutExpired:
                continue

    # Helpers

    def _check_cancel(self) -> None:
        if self.cancel.is_set():
            raise _Canceled()

    def _runtime_failure(self, exit_code: int) -> RuntimeFailure:
        error_output = self.stderr_tail.text().strip()
        return RuntimeFailure(
            f"FFmpeg exited with code {exit_code}",
            exit_code,
            self.args,
            error_output=error_output or None,
        )

    def _kill(self) -> None:
        process = self._process
        if process is None:
            return
        if process.poll() is None:
            process.kill()
        try:
            process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            logger.warning(f"FFmpeg (pid {process.pid}) did not exit after kill")
        self._close_pipes(process)

    def _close_pipes(self, process: subprocess.Popen) -> None:
        """Join the pipe reader threads, then close the pipes if both finished."""
        for thread in self._pipe_threads:
            thread.join(timeout=1.0)
        if any(thread.is_alive() for thread in self._pipe_threads):
            logger.warning(f"FFmpeg (pid {process.pid}) output pipes still open after exit")
            return
        for stream in (process.stdout, process.stderr):
            if stream is not None:
                stream.close()

    def _emit(self, event: SupervisorEvent) -> None:
        self.events.put(event)

    def _send_terminal(self, event: SupervisorEvent) -> None:
        if self._terminal_sent:
            logger.error(f"Dropping extra terminal event: {event!r}")
            return
        self._terminal_sent = True
        self.events.put(event)
