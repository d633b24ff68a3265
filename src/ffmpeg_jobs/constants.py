"""
Centralized constants for ffmpeg-jobs.

Fixed CLI flags and protocol tokens should be defined here
to avoid duplication across modules.
"""

# Always prepended to every FFmpeg invocation (callers must not pass these)
FFMPEG_HEADER_ARGS = ("-hide_banner", "-v", "error")

# Always appended: machine-readable progress on stdout, unconditional overwrite
FFMPEG_TRAILER_ARGS = ("-progress", "pipe:1", "-y")

# Fixed FFprobe flags: quiet, JSON output, embedded error object
FFPROBE_BASE_ARGS = ("-v", "quiet", "-print_format", "json", "-show_error")

# Progress protocol
PROGRESS_KEY = "progress"
PROGRESS_CONTINUE = "continue"
PROGRESS_END = "end"
NOT_AVAILABLE = "N/A"

# Encoders known to accept -crf (others silently ignore the setting)
DEFAULT_CRF_ENCODERS = frozenset({"libx264", "libx265", "libvpx"})

# Supervision defaults
DEFAULT_POLL_INTERVAL = 0.01  # seconds
DEFAULT_STDERR_TAIL_CHARS = 1024

# Exit code reported for canceled jobs and supervisor faults
CANCELED_EXIT_CODE = -1

# A process killed by signal N exits with 128 + N, as reported by a shell
SIGNAL_EXIT_BASE = 128

# Tool output is decoded as UTF-8; undecodable bytes (e.g. Latin-1 file names) are replaced
OUTPUT_ENCODING = "utf-8"
OUTPUT_ERRORS = "replace"
