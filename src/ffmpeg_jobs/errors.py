"""
Error types raised by the compiler, supervisors and probe.

FfmpegError instances are the error records of failed jobs: one is produced
per failed job and delivered through the job's completion future.
"""

from enum import Enum


class ErrorKind(Enum):
    """Classification of a job or probe failure."""

    VALIDATION = "validation"
    SPAWN = "spawn"
    RUNTIME = "runtime"
    PROTOCOL = "protocol"
    CANCELED = "canceled"
    SUPERVISOR = "supervisor"
    PROBE = "probe"


class ValidationError(ValueError):
    """Raised when a job combines options that cannot be compiled together."""

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, option: str):
        super().__init__(message)
        self.option = option


class FfmpegError(IOError):
    """
    An FFmpeg job failure.

    Attributes:
        exit_code: Exit code of the FFmpeg process (-1 if it never exited on its own)
        error_output: Tail of FFmpeg's stderr, if any was captured
        ffmpeg_args: Full argument list passed to FFmpeg
    """

    kind = ErrorKind.RUNTIME

    def __init__(
        self,
        message: str,
        exit_code: int,
        args: list[str],
        error_output: str | None = None,
    ):
        super().__init__(message)
        self.exit_code = exit_code
        self.error_output = error_output
        # IOError reserves .args for its constructor arguments
        self.ffmpeg_args = list(args)

    @property
    def message(self) -> str:
        return super().__str__()

    def __str__(self) -> str:
        if self.error_output:
            return f"{self.message}: {self.error_output}"
        return self.message


class SpawnError(FfmpegError):
    """The external tool is missing or could not be started."""

    kind = ErrorKind.SPAWN


class RuntimeFailure(FfmpegError):
    """The external tool exited with a nonzero code."""

    kind = ErrorKind.RUNTIME


class ProtocolViolation(FfmpegError):
    """The process ended without a terminal progress report."""

    kind = ErrorKind.PROTOCOL


class Canceled(FfmpegError):
    """The job was canceled, either explicitly or by its timeout."""

    kind = ErrorKind.CANCELED


class SupervisorFault(FfmpegError):
    """The supervision machinery itself failed; the original exception is chained."""

    kind = ErrorKind.SUPERVISOR


class ProbeError(IOError):
    """Raised when FFprobe reports an error (or no usable result) for a file."""

    kind = ErrorKind.PROBE

    def __init__(self, code: int, message: str):
        super().__init__(f"FFprobe returned an error result with message '{message}' and code {code}")
        self.code = code
        self.message = message
