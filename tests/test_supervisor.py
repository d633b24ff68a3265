"""Tests for the FFmpeg supervisor thread, using a stand-in ffmpeg executable."""

import queue
import signal
import threading
import time
from unittest.mock import patch

from conftest import progress_block
from ffmpeg_jobs.errors import (
    Canceled,
    ErrorKind,
    ProtocolViolation,
    RuntimeFailure,
    SpawnError,
    SupervisorFault,
)
from ffmpeg_jobs.supervisor import FfmpegSupervisor, StderrTail

ARGS = ["-i", "in.mp4", "out.webm"]


def run_supervisor(ffmpeg_path, cancel=None, stderr_tail_chars=1024, timeout=10.0):
    """Run a supervisor to completion and return every event it sent."""
    events = queue.Queue()
    supervisor = FfmpegSupervisor(
        str(ffmpeg_path),
        ARGS,
        events,
        cancel or threading.Event(),
        poll_interval=0.01,
        stderr_tail_chars=stderr_tail_chars,
    )
    supervisor.start()
    supervisor.join(timeout)
    assert not supervisor.is_alive()

    sent = []
    while not events.empty():
        sent.append(events.get_nowait())
    return sent


def single_terminal(events):
    """Assert exactly one terminal event, sent last, and return it."""
    terminals = [e for e in events if e.terminal]
    assert len(terminals) == 1
    assert events[-1] is terminals[0]
    return terminals[0]


class TestStderrTail:
    """Tests for the bounded stderr buffer."""

    def test_keeps_last_characters(self):
        """Test only the last `limit` characters are kept."""
        tail = StderrTail(10)
        tail.append("0123456789")
        tail.append("abcdef")
        assert tail.text() == "6789abcdef"

    def test_short_output(self):
        tail = StderrTail(100)
        tail.append("error: ")
        tail.append("boom\n")
        assert tail.text() == "error: boom\n"

    def test_zero_limit(self):
        """Test a zero limit keeps nothing."""
        tail = StderrTail(0)
        tail.append("abc")
        tail.append("def")
        assert tail.text() == ""


class TestSuccessfulRun:
    """Tests for runs that reach the end marker."""

    def test_progress_then_success(self, fake_ffmpeg):
        """Test continue blocks become progress events and the end block the success event."""
        script = fake_ffmpeg(
            progress_block(1_000_000, frame=25)
            + progress_block(2_000_000, frame=50)
            + progress_block(3_000_000, frame=75, end=True)
        )

        events = run_supervisor(script)
        terminal = single_terminal(events)

        assert [e.progress.frame for e in events[:-1]] == [25, 50]
        assert terminal.succeeded
        assert terminal.progress.frame == 75
        assert terminal.progress.current_time_us == 3_000_000

    def test_fixed_arguments_passed_through(self, fake_ffmpeg):
        """Test the executable receives exactly the supervisor's arguments."""
        script = fake_ffmpeg(progress_block(0, end=True))
        run_supervisor(script)

        args_file = script.with_name(script.name + ".args.json")
        assert args_file.read_text().strip() == '["-i", "in.mp4", "out.webm"]'

    def test_end_marker_then_nonzero_exit(self, fake_ffmpeg):
        """Test a failing exit after the end marker still reports the failure."""
        script = fake_ffmpeg(progress_block(5_000_000, end=True), stderr="muxer failed\n", exit_code=1)

        events = run_supervisor(script)
        terminal = single_terminal(events)

        assert events[0].progress.current_time_us == 5_000_000
        assert isinstance(terminal.error, RuntimeFailure)
        assert terminal.error.exit_code == 1
        assert terminal.error.error_output == "muxer failed"


class TestFailedRun:
    """Tests for runs that fail."""

    def test_nonzero_exit_reports_stderr(self, fake_ffmpeg):
        """Test a crash is a runtime failure carrying exit code, arguments and stderr."""
        script = fake_ffmpeg(progress_block(1_000_000), stderr="Conversion failed!\n", exit_code=137)

        events = run_supervisor(script)
        terminal = single_terminal(events)
        error = terminal.error

        assert isinstance(error, RuntimeFailure)
        assert error.kind is ErrorKind.RUNTIME
        assert error.exit_code == 137
        assert error.error_output == "Conversion failed!"
        assert error.ffmpeg_args == ARGS
        assert "Conversion failed!" in str(error)
        assert terminal.progress.current_time_us == 1_000_000

    def test_nonzero_exit_without_stderr(self, fake_ffmpeg):
        """Test an empty stderr tail is reported as no output."""
        events = run_supervisor(fake_ffmpeg(exit_code=2))
        error = single_terminal(events).error

        assert isinstance(error, RuntimeFailure)
        assert error.error_output is None

    def test_killed_by_signal(self, fake_ffmpeg):
        """Test a process killed by a signal is a runtime failure with a shell-style exit code."""
        script = fake_ffmpeg(stderr="Killed while encoding\n", kill_signal=signal.SIGKILL)

        error = single_terminal(run_supervisor(script)).error

        assert isinstance(error, RuntimeFailure)
        assert error.exit_code == 128 + signal.SIGKILL
        assert error.error_output == "Killed while encoding"

    def test_killed_by_signal_after_progress(self, fake_ffmpeg):
        script = fake_ffmpeg(progress_block(1_000_000), kill_signal=signal.SIGTERM)

        terminal = single_terminal(run_supervisor(script))

        assert isinstance(terminal.error, RuntimeFailure)
        assert terminal.error.exit_code == 128 + signal.SIGTERM
        assert terminal.progress.current_time_us == 1_000_000

    def test_undecodable_stderr(self, fake_ffmpeg):
        """Test non-UTF-8 bytes on stderr are replaced and the rest of the output is kept."""
        script = fake_ffmpeg(
            stderr_bytes=b"caf\xe9.mp4: No such file or directory\nConversion failed!\n", exit_code=1
        )

        error = single_terminal(run_supervisor(script)).error

        assert isinstance(error, RuntimeFailure)
        assert error.error_output == "caf\ufffd.mp4: No such file or directory\nConversion failed!"

    def test_stderr_tail_is_bounded(self, fake_ffmpeg):
        """Test only the configured number of stderr characters is kept."""
        script = fake_ffmpeg(stderr="x" * 5000 + "LAST", exit_code=1)

        error = single_terminal(run_supervisor(script, stderr_tail_chars=16)).error

        assert len(error.error_output) <= 16
        assert error.error_output.endswith("LAST")

    def test_clean_exit_without_progress(self, fake_ffmpeg):
        """Test exit 0 without any progress is a protocol violation."""
        error = single_terminal(run_supervisor(fake_ffmpeg(exit_code=0))).error

        assert isinstance(error, ProtocolViolation)
        assert error.kind is ErrorKind.PROTOCOL
        assert error.exit_code == 0
        assert "no encode progress was received" in str(error)

    def test_clean_exit_before_end_marker(self, fake_ffmpeg):
        """Test exit 0 after progress but before the end marker is a protocol violation."""
        script = fake_ffmpeg(progress_block(1_000_000))

        events = run_supervisor(script)
        error = single_terminal(events).error

        assert isinstance(error, ProtocolViolation)
        assert "before reporting the end of encoding" in str(error)
        assert events[0].progress.current_time_us == 1_000_000

    def test_missing_executable(self, tmp_path):
        """Test a missing executable is a spawn error."""
        error = single_terminal(run_supervisor(tmp_path / "no-such-ffmpeg")).error

        assert isinstance(error, SpawnError)
        assert error.kind is ErrorKind.SPAWN
        assert error.exit_code == -1
        assert error.ffmpeg_args == ARGS

    def test_internal_error_becomes_fault(self, fake_ffmpeg):
        """Test an exception inside the supervisor is reported as a supervisor fault."""
        script = fake_ffmpeg(progress_block(1_000_000, end=True))

        with patch("ffmpeg_jobs.supervisor.ProgressParser.feed", side_effect=RuntimeError("parser exploded")):
            events = run_supervisor(script)

        error = single_terminal(events).error
        assert isinstance(error, SupervisorFault)
        assert error.kind is ErrorKind.SUPERVISOR
        assert isinstance(error.__cause__, RuntimeError)


class TestCancellation:
    """Tests for cooperative cancellation."""

    def test_cancel_kills_running_process(self, fake_ffmpeg):
        """Test setting the cancel flag kills FFmpeg and reports Canceled."""
        script = fake_ffmpeg(progress_block(1_000_000) + ["@sleep 30"] + progress_block(2_000_000, end=True))
        cancel = threading.Event()
        threading.Timer(0.3, cancel.set).start()

        started = time.monotonic()
        events = run_supervisor(script, cancel=cancel)
        elapsed = time.monotonic() - started

        error = single_terminal(events).error
        assert isinstance(error, Canceled)
        assert error.kind is ErrorKind.CANCELED
        assert error.exit_code == -1
        assert elapsed < 10

    def test_cancel_keeps_last_snapshot_and_closes_pipes(self, fake_ffmpeg):
        """Test the Canceled event carries the last progress and FFmpeg's pipes are closed."""
        script = fake_ffmpeg(progress_block(1_000_000) + ["@sleep 30"])
        events = queue.Queue()
        cancel = threading.Event()
        supervisor = FfmpegSupervisor(str(script), ARGS, events, cancel, poll_interval=0.01)
        supervisor.start()

        first = events.get(timeout=10)
        cancel.set()
        supervisor.join(10)
        terminal = events.get_nowait()

        assert first.progress.current_time_us == 1_000_000
        assert isinstance(terminal.error, Canceled)
        assert terminal.progress.current_time_us == 1_000_000
        assert supervisor._process.stdout.closed
        assert supervisor._process.stderr.closed

    def test_cancel_before_start(self, fake_ffmpeg):
        """Test a job canceled before it starts never spawns FFmpeg."""
        script = fake_ffmpeg(progress_block(0, end=True))
        cancel = threading.Event()
        cancel.set()

        error = single_terminal(run_supervisor(script, cancel=cancel)).error

        assert isinstance(error, Canceled)
        assert not script.with_name(script.name + ".args.json").exists()
