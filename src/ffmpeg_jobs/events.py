"""Events sent from a supervisor thread to the dispatcher."""

from dataclasses import dataclass

from .definitions import EncodeProgress
from .errors import FfmpegError


@dataclass(frozen=True)
class SupervisorEvent:
    """
    One message on a job's event queue.

    Non-terminal events carry a progress snapshot. Exactly one terminal event
    is sent per job: a success (error is None) or a failure, with the
    snapshot that preceded it if there was one.
    """

    progress: EncodeProgress | None = None
    terminal: bool = False
    error: FfmpegError | None = None

    @property
    def succeeded(self) -> bool:
        return self.terminal and self.error is None


def progress_event(progress: EncodeProgress) -> SupervisorEvent:
    return SupervisorEvent(progress=progress)


def success_event(progress: EncodeProgress | None) -> SupervisorEvent:
    return SupervisorEvent(progress=progress, terminal=True)


def failure_event(error: FfmpegError, progress: EncodeProgress | None = None) -> SupervisorEvent:
    return SupervisorEvent(progress=progress, terminal=True, error=error)
