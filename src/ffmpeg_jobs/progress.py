"""
Progress module - Parser for FFmpeg's `-progress` output.

FFmpeg writes blocks of `key=value` lines, each block closed by
`progress=continue` or, for the final block, `progress=end`:

    frame=120
    fps=29.97
    bitrate=1024.5kbits/s
    total_size=1048576
    out_time_us=4004000
    speed=1.5x
    progress=continue
"""

import logging
import re
from dataclasses import dataclass

from .constants import NOT_AVAILABLE, PROGRESS_END, PROGRESS_KEY
from .definitions import Bitrate, EncodeProgress, bps, kbps, mbps

logger = logging.getLogger(__name__)

_PROGRESS_BITRATE = re.compile(r"^((?:\d+\.)?\d+)\s*([a-zA-Z]+)?(?:/s)?$")

_KILO_UNITS = {"kbits", "kbps"}
_MEGA_UNITS = {"mbits", "mbps"}


def parse_progress_bitrate(value: str) -> Bitrate | None:
    """
    Parse a reported bitrate such as "128.5kbits/s", "500kbps" or "1000000/s".

    Unknown or missing units are treated as bits per second.

    Returns:
        Bitrate with a float value, or None if the text is not a bitrate
    """
    match = _PROGRESS_BITRATE.match(value.strip())
    if not match:
        return None

    number = float(match.group(1))
    unit = (match.group(2) or "").lower()

    if unit in _KILO_UNITS:
        return kbps(number)
    if unit in _MEGA_UNITS:
        return mbps(number)
    return bps(number)


def _parse_speed(value: str) -> float:
    # "1.5x", sometimes padded as " 1.5x"
    return float(value.strip().rstrip("x"))


@dataclass(frozen=True)
class ProgressUpdate:
    """A completed progress block."""

    progress: EncodeProgress
    ended: bool


class ProgressParser:
    """
    Accumulates progress lines into EncodeProgress snapshots.

    Feed lines one at a time; a ProgressUpdate is returned whenever a
    `progress=` line closes a block, after which a fresh snapshot begins.
    """

    def __init__(self):
        self._current = EncodeProgress()

    @property
    def current(self) -> EncodeProgress:
        """The snapshot being accumulated (not yet closed by a progress line)."""
        return self._current

    def feed(self, line: str) -> ProgressUpdate | None:
        key, sep, value = line.strip().partition("=")
        if not sep:
            return None

        key = key.strip()
        value = value.strip()

        if key == PROGRESS_KEY:
            update = ProgressUpdate(progress=self._current, ended=value == PROGRESS_END)
            self._current = EncodeProgress()
            return update

        if value == NOT_AVAILABLE:
            return None

        try:
            self._apply(key, value)
        except ValueError:
            logger.debug(f"Ignoring malformed progress value {key}={value!r}")
        return None

    def _apply(self, key: str, value: str) -> None:
        progress = self._current

        if key == "frame":
            progress.frame = int(value)
        elif key == "fps":
            progress.fps = float(value)
        elif key == "bitrate":
            bitrate = parse_progress_bitrate(value)
            if bitrate is not None:
                progress.bitrate = bitrate
        elif key == "total_size":
            progress.current_output_size = int(value)
        elif key in ("out_time_us", "out_time_ms"):
            # Both keys carry microseconds; negative before the first packet is written
            progress.current_time_us = max(0, int(value))
        elif key == "dup_frames":
            progress.duplicated_frames = int(value)
        elif key == "drop_frames":
            progress.dropped_frames = int(value)
        elif key == "speed":
            progress.speed = _parse_speed(value)
