"""
Metadata module - FFprobe JSON result schema.

Only the commonly used fields are typed; unknown keys are ignored. Numbers
that FFprobe reports as strings (durations, bit rates, sample rates) are
kept as strings, matching FFprobe's output.
"""

import json
from dataclasses import dataclass, field, fields
from typing import Any


def _known_fields(cls, data: dict) -> dict:
    """Filter a JSON object down to the dataclass fields of cls."""
    names = {f.name for f in fields(cls)}
    return {key: value for key, value in data.items() if key in names}


@dataclass
class FfprobeErrorData:
    """An error reported by FFprobe (`-show_error`)."""

    code: int
    message: str


@dataclass
class FfprobeStream:
    index: int
    codec_type: str | None = None  # "video", "audio", "subtitle", "data", "attachment"
    codec_name: str | None = None
    codec_long_name: str | None = None
    profile: str | None = None
    codec_tag_string: str | None = None
    width: int | None = None
    height: int | None = None
    pix_fmt: str | None = None
    display_aspect_ratio: str | None = None
    sample_fmt: str | None = None
    sample_rate: str | None = None
    channels: int | None = None
    channel_layout: str | None = None
    r_frame_rate: str | None = None  # e.g. "30/1"
    avg_frame_rate: str | None = None
    time_base: str | None = None
    start_time: str | None = None
    duration: str | None = None
    bit_rate: str | None = None
    nb_frames: str | None = None
    disposition: dict[str, int] = field(default_factory=dict)
    tags: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "FfprobeStream":
        return cls(**_known_fields(cls, data))


@dataclass
class FfprobeChapter:
    id: int
    time_base: str
    start: int
    start_time: str
    end: int
    end_time: str
    tags: dict[str, str] = field(default_factory=dict)

    @property
    def title(self) -> str | None:
        return self.tags.get("title")

    @classmethod
    def from_dict(cls, data: dict) -> "FfprobeChapter":
        return cls(**_known_fields(cls, data))


@dataclass
class FfprobeFormat:
    filename: str
    nb_streams: int = 0
    nb_programs: int = 0
    format_name: str = ""
    format_long_name: str = ""
    start_time: str | None = None
    duration: str | None = None
    size: str | None = None
    bit_rate: str | None = None
    probe_score: int = 0
    tags: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "FfprobeFormat":
        return cls(**_known_fields(cls, data))


@dataclass
class FfprobeResult:
    """
    An FFprobe result.

    Each section is None unless it was requested (show_format, show_streams,
    show_chapters). `error` is set when FFprobe embedded an error object;
    probe_file() raises ProbeError instead of returning such a result.
    """

    streams: list[FfprobeStream] | None = None
    chapters: list[FfprobeChapter] | None = None
    format: FfprobeFormat | None = None
    error: FfprobeErrorData | None = None

    @property
    def duration_seconds(self) -> float | None:
        """Container duration in seconds, if FFprobe reported one."""
        if self.format is None or self.format.duration is None:
            return None
        try:
            return float(self.format.duration)
        except ValueError:
            return None

    @property
    def video_streams(self) -> list[FfprobeStream]:
        return [s for s in self.streams or [] if s.codec_type == "video"]

    @property
    def audio_streams(self) -> list[FfprobeStream]:
        return [s for s in self.streams or [] if s.codec_type == "audio"]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FfprobeResult":
        result = cls()

        if "streams" in data:
            result.streams = [FfprobeStream.from_dict(s) for s in data["streams"]]
        if "chapters" in data:
            result.chapters = [FfprobeChapter.from_dict(c) for c in data["chapters"]]
        if "format" in data:
            result.format = FfprobeFormat.from_dict(data["format"])
        if "error" in data:
            error = data["error"]
            result.error = FfprobeErrorData(code=int(error.get("code", 0)), message=error.get("string", ""))

        return result

    @classmethod
    def from_json(cls, text: str) -> "FfprobeResult":
        """
        Parse FFprobe's `-print_format json` output.

        Raises:
            ValueError: If the text is not a JSON object, or its sections don't
                have the expected shape (e.g. a stream without an index)
        """
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError("FFprobe output is not a JSON object")
        try:
            return cls.from_dict(data)
        except (TypeError, AttributeError, KeyError) as err:
            raise ValueError(f"FFprobe output does not match the expected schema: {err}") from err
