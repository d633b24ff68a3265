"""
Compiler module - Turns an FfmpegJob into FFmpeg CLI arguments.

Pure and deterministic: no I/O, the same job always compiles to the same
argument list. Options that cannot apply to a copied stream raise
ValidationError instead of being dropped.
"""

from collections.abc import Iterable

from .constants import DEFAULT_CRF_ENCODERS
from .definitions import (
    AudioSettings,
    CopyStream,
    FfmpegJob,
    H26xEncoder,
    VideoSettings,
    encoder_name,
    format_duration,
    render_filters,
    render_mov_flags,
)
from .errors import ValidationError


def _raise_copy_conflict(option: str, stream: str) -> None:
    raise ValidationError(f"Cannot specify {option} for {stream} stream that is being copied", option=option)


def build_audio_args(settings: AudioSettings) -> list[str]:
    """Build the options shared by audio and video jobs (everything between input and video options)."""
    args: list[str] = []

    if settings.audio_encoder is not None:
        args.extend(["-c:a", encoder_name(settings.audio_encoder)])

    if settings.strictness is not None:
        args.extend(["-strict", settings.strictness.value])

    if settings.threads is not None:
        args.extend(["-threads", str(settings.threads)])

    if settings.output_duration is not None:
        args.extend(["-t", format_duration(settings.output_duration)])

    # FFmpeg gives -t priority over -to when both are present
    if settings.output_ends_at is not None:
        args.extend(["-to", format_duration(settings.output_ends_at)])

    if settings.input_starts_at is not None:
        args.extend(["-ss", format_duration(settings.input_starts_at)])

    audio_copied = isinstance(settings.audio_encoder, CopyStream)

    if settings.audio_bitrate is not None:
        if audio_copied:
            _raise_copy_conflict("bitrate", "audio")
        args.extend(["-b:a", str(settings.audio_bitrate)])

    if settings.audio_sample_rate is not None:
        if audio_copied:
            _raise_copy_conflict("sample rate", "audio")
        args.extend(["-ar", str(settings.audio_sample_rate)])

    return args


def build_video_args(settings: VideoSettings, crf_encoders: Iterable[str] = DEFAULT_CRF_ENCODERS) -> list[str]:
    """Build video-only options."""
    args: list[str] = []
    encoder = settings.video_encoder

    if encoder is not None:
        args.extend(["-c:v", encoder_name(encoder)])

    if settings.output_frame_count is not None:
        args.extend(["-frames:v", str(settings.output_frame_count)])

    video_copied = isinstance(encoder, CopyStream)

    if settings.video_bitrate is not None:
        if video_copied:
            _raise_copy_conflict("bitrate", "video")
        args.extend(["-b:v", str(settings.video_bitrate)])

    if settings.video_filters:
        if video_copied:
            _raise_copy_conflict("video filters", "video")
        args.extend(["-vf", render_filters(settings.video_filters)])

    if encoder is None or video_copied:
        return args

    # Encoder-specific options (only H.264/H.265 carry any)
    if isinstance(encoder, H26xEncoder):
        if encoder.mov_flags:
            args.extend(["-movflags", render_mov_flags(encoder.mov_flags)])
        if encoder.max_muxing_queue_size is not None:
            args.extend(["-max_muxing_queue_size", str(encoder.max_muxing_queue_size)])
        if encoder.profile is not None:
            args.extend(["-profile:v", encoder.profile])
        if encoder.level is not None:
            args.extend(["-level", str(encoder.level)])
        if encoder.preset is not None:
            args.extend(["-preset", encoder.preset.value])

    # CRF is silently ignored for encoders that don't support it
    if encoder.crf is not None and encoder_name(encoder) in set(crf_encoders):
        args.extend(["-crf", str(encoder.crf)])

    return args


def to_ffmpeg_args(job: FfmpegJob, crf_encoders: Iterable[str] = DEFAULT_CRF_ENCODERS) -> list[str]:
    """
    Compile a job into FFmpeg CLI arguments.

    The fixed header/trailer flags (-hide_banner, -v, -progress, -y) are not
    included; start_ffmpeg_process adds them.

    Args:
        job: The job to compile
        crf_encoders: Encoder names that accept -crf

    Returns:
        Ordered argument list: input, shared options, video options, output, trailing options

    Raises:
        ValidationError: If an encoding option is set for a copied stream
    """
    settings = job.settings
    args: list[str] = []

    args.extend(settings.extra_args_before_input)
    args.extend(["-i", job.input_file])
    args.extend(settings.extra_args_after_input)

    args.extend(build_audio_args(settings))

    if isinstance(settings, VideoSettings):
        args.extend(build_video_args(settings, crf_encoders))

    args.append(job.output_file)
    args.extend(settings.extra_args_after_output)

    if settings.container_format is not None:
        args.extend(["-f", settings.container_format])

    return args
