"""
Definitions module - Typed vocabulary for FFmpeg jobs.

Provides:
- Bitrates (requested and reported)
- Audio/video encoder selections, including "copy source stream"
- Video filters and their FFmpeg rendering
- Encode settings (audio, or video as a superset of audio) and jobs
- Encode progress snapshots

Nothing here does any work; the compiler turns these values into arguments.
"""

import re
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum

# Special dimensions understood by the scale filter
PRESERVE_ASPECT_RATIO = -1
PRESERVE_ASPECT_RATIO_EVEN = -2  # Needed by codecs like H.264 that require even sizes


# ---------------------------------------------------------------------------
# Bitrates
# ---------------------------------------------------------------------------


class BitrateUnit(Enum):
    BIT = ""
    KILOBIT = "k"
    MEGABIT = "M"  # lowercase m is "milli" to FFmpeg


_UNIT_MULTIPLIERS = {
    BitrateUnit.BIT: 1,
    BitrateUnit.KILOBIT: 1_000,
    BitrateUnit.MEGABIT: 1_000_000,
}


@dataclass(frozen=True)
class Bitrate:
    """A bitrate value in a given unit (int when requested, float when reported by FFmpeg)."""

    value: int | float
    unit: BitrateUnit = BitrateUnit.BIT

    @property
    def bits_per_second(self) -> float:
        return self.value * _UNIT_MULTIPLIERS[self.unit]

    def __str__(self) -> str:
        return f"{self.value}{self.unit.value}"


def bps(value: int | float) -> Bitrate:
    return Bitrate(value, BitrateUnit.BIT)


def kbps(value: int | float) -> Bitrate:
    return Bitrate(value, BitrateUnit.KILOBIT)


def mbps(value: int | float) -> Bitrate:
    return Bitrate(value, BitrateUnit.MEGABIT)


_BITRATE_TEXT = re.compile(r"^\s*(\d+)\s*([kKmM]?)\s*$")


def parse_bitrate(text: str) -> Bitrate:
    """
    Parse a user-supplied bitrate such as "128k", "5M" or "800000".

    Raises:
        ValueError: If the text is not a whole number with an optional k/m suffix
    """
    match = _BITRATE_TEXT.match(text)
    if not match:
        raise ValueError(f"Invalid bitrate: {text!r} (expected e.g. 128k, 5M, 800000)")

    value = int(match.group(1))
    suffix = match.group(2).lower()
    if suffix == "k":
        return kbps(value)
    if suffix == "m":
        return mbps(value)
    return bps(value)


# ---------------------------------------------------------------------------
# Encoders
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CopyStream:
    """Copy the source stream instead of encoding it. Valid for audio and video."""


class AudioCodec(Enum):
    LIBMP3LAME = "libmp3lame"
    AAC = "aac"
    LIBOPUS = "libopus"
    LIBVORBIS = "libvorbis"
    FLAC = "flac"


@dataclass(frozen=True)
class AudioEncoder:
    codec: AudioCodec


@dataclass(frozen=True)
class CustomAudioEncoder:
    """An audio encoder not covered by AudioCodec, passed through by name."""

    name: str


class H26xCodec(Enum):
    LIBX264 = "libx264"
    LIBX265 = "libx265"


class H26xPreset(Enum):
    ULTRAFAST = "ultrafast"
    SUPERFAST = "superfast"
    VERYFAST = "veryfast"
    FASTER = "faster"
    FAST = "fast"
    MEDIUM = "medium"
    SLOW = "slow"
    SLOWER = "slower"
    VERYSLOW = "veryslow"
    PLACEBO = "placebo"


class VideoCodec(Enum):
    LIBVPX = "libvpx"
    LIBVPX_VP9 = "libvpx-vp9"
    LIBAOM_AV1 = "libaom-av1"


@dataclass(frozen=True)
class H26xEncoder:
    """
    libx264/libx265 with their encoder-specific options.

    mov_flags are given without the leading "+", e.g. ("faststart",).
    crf is only emitted if the encoder is in the CRF allow-list.
    """

    codec: H26xCodec
    mov_flags: tuple[str, ...] = ()
    max_muxing_queue_size: int | None = None
    profile: str | None = None
    level: float | None = None
    preset: H26xPreset | None = None
    crf: int | None = None


@dataclass(frozen=True)
class VideoEncoder:
    codec: VideoCodec
    crf: int | None = None


@dataclass(frozen=True)
class CustomVideoEncoder:
    """A video encoder not covered by the other variants, passed through by name."""

    name: str
    crf: int | None = None


AnyAudioEncoder = AudioEncoder | CustomAudioEncoder | CopyStream
AnyVideoEncoder = H26xEncoder | VideoEncoder | CustomVideoEncoder | CopyStream

COPY_STREAM_NAME = "copy"


def encoder_name(encoder: AnyAudioEncoder | AnyVideoEncoder) -> str:
    """Return the name passed to -c:a / -c:v for an encoder selection."""
    if isinstance(encoder, CopyStream):
        return COPY_STREAM_NAME
    if isinstance(encoder, (CustomAudioEncoder, CustomVideoEncoder)):
        return encoder.name
    if isinstance(encoder, (AudioEncoder, H26xEncoder, VideoEncoder)):
        return encoder.codec.value
    raise TypeError(f"Not an encoder selection: {encoder!r}")


def render_mov_flags(flags: tuple[str, ...]) -> str:
    """Render MOV flags for -movflags, e.g. ("faststart", "frag_keyframe") -> "+faststart+frag_keyframe"."""
    return "".join(f"+{flag}" for flag in flags)


# ---------------------------------------------------------------------------
# Video filters
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScaleFilter:
    """
    Scale to width x height.

    Negative dimensions are PRESERVE_ASPECT_RATIO / PRESERVE_ASPECT_RATIO_EVEN.
    With downscale_only, a source smaller than the target is left as is.
    """

    width: int
    height: int
    downscale_only: bool = False

    def _dimension(self, value: int, source: str) -> str:
        if value >= 0 and self.downscale_only:
            return f"min({value},{source})"
        return str(value)

    def __str__(self) -> str:
        return f"scale={self._dimension(self.width, 'iw')}:{self._dimension(self.height, 'ih')}"


@dataclass(frozen=True)
class FpsFilter:
    """Change the framerate; with limit_only, lower framerates are kept."""

    framerate: float
    limit_only: bool = False

    def __str__(self) -> str:
        if self.limit_only:
            return f"fps=min({self.framerate},source_fps)"
        return f"fps={self.framerate}"


@dataclass(frozen=True)
class PixelFormatFilter:
    pixel_format: str

    def __str__(self) -> str:
        return f"format={self.pixel_format}"


@dataclass(frozen=True)
class RawFilter:
    """A raw filter string, rendered verbatim."""

    text: str

    def __str__(self) -> str:
        return self.text


VideoFilter = ScaleFilter | FpsFilter | PixelFormatFilter | RawFilter


def render_filters(filters: list[VideoFilter] | tuple[VideoFilter, ...]) -> str:
    """Render a filter chain for -vf, escaping backslashes and commas inside each filter."""
    rendered = []
    for vf in filters:
        rendered.append(str(vf).replace("\\", "\\\\").replace(",", "\\,"))
    return ",".join(rendered)


def scale(width: int, height: int, downscale_only: bool = False) -> ScaleFilter:
    return ScaleFilter(width, height, downscale_only)


def downscale(width: int, height: int) -> ScaleFilter:
    return ScaleFilter(width, height, downscale_only=True)


def fps(framerate: float, limit_only: bool = False) -> FpsFilter:
    return FpsFilter(framerate, limit_only)


def limit_fps(framerate: float) -> FpsFilter:
    return FpsFilter(framerate, limit_only=True)


def pixel_format(name: str) -> PixelFormatFilter:
    return PixelFormatFilter(name)


# ---------------------------------------------------------------------------
# Settings and jobs
# ---------------------------------------------------------------------------


class Strictness(Enum):
    """Encoder/decoder strictness levels (-strict)."""

    NORMAL = "normal"
    VERY = "very"
    STRICT = "strict"
    UNOFFICIAL = "unofficial"
    EXPERIMENTAL = "experimental"


def format_duration(value: timedelta) -> str:
    """Render a duration for -t/-to/-ss, e.g. 90 seconds -> "90.0s"."""
    return f"{value.total_seconds()}s"


@dataclass(frozen=True)
class AudioSettings:
    """Settings available to every job; VideoSettings extends them."""

    extra_args_before_input: tuple[str, ...] = ()
    extra_args_after_input: tuple[str, ...] = ()
    extra_args_after_output: tuple[str, ...] = ()
    audio_bitrate: Bitrate | None = None
    audio_encoder: AnyAudioEncoder | None = None
    audio_sample_rate: int | None = None
    strictness: Strictness | None = None
    # Maximum output duration; takes precedence over output_ends_at
    output_duration: timedelta | None = None
    # Stop reading the input at this position
    output_ends_at: timedelta | None = None
    # Seek the input to this position before encoding
    input_starts_at: timedelta | None = None
    threads: int | None = None
    # Output container (-f); if None FFmpeg infers it from the output extension
    container_format: str | None = None


@dataclass(frozen=True)
class VideoSettings(AudioSettings):
    """Audio settings plus video-only options. Also suitable for images."""

    video_bitrate: Bitrate | None = None
    video_encoder: AnyVideoEncoder | None = None
    video_filters: tuple[VideoFilter, ...] = ()
    # Number of frames to output (e.g. 1 for a screenshot)
    output_frame_count: int | None = None


EncodeSettings = AudioSettings | VideoSettings


@dataclass(frozen=True)
class FfmpegJob:
    """An FFmpeg encoding job."""

    input_file: str
    output_file: str
    settings: EncodeSettings = field(default_factory=VideoSettings)


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


@dataclass
class EncodeProgress:
    """
    One FFmpeg progress report.

    Optional fields are None when FFmpeg reports them as not applicable
    (e.g. no frame count when encoding pure audio).
    """

    frame: int | None = None
    fps: float | None = None
    bitrate: Bitrate = field(default_factory=lambda: bps(0.0))
    current_output_size: int = 0  # bytes
    current_time_us: int = 0
    duplicated_frames: int | None = None
    dropped_frames: int | None = None
    speed: float = 0.0  # multiple of realtime, e.g. 2.5 = 2.5x

    @property
    def current_time_ms(self) -> int:
        return self.current_time_us // 1_000

    @property
    def current_time_seconds(self) -> int:
        return self.current_time_us // 1_000_000
