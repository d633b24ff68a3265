"""Shared pytest fixtures for ffmpeg-jobs tests."""

import json
import sys
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

# Stand-in ffmpeg executable; PLAN is replaced with a JSON string literal
_FAKE_FFMPEG_SCRIPT = """
import json
import os
import sys
import time

plan = json.loads(PLAN)

if plan["args_file"]:
    with open(plan["args_file"], "w") as f:
        json.dump(sys.argv[1:], f)

for line in plan["stdout"]:
    if line.startswith("@sleep "):
        time.sleep(float(line.split()[1]))
        continue
    print(line, flush=True)

sys.stdout.buffer.write(bytes.fromhex(plan["stdout_bytes"]))
sys.stdout.buffer.flush()

sys.stderr.write(plan["stderr"])
sys.stderr.flush()
sys.stderr.buffer.write(bytes.fromhex(plan["stderr_bytes"]))
sys.stderr.buffer.flush()

if plan["kill_signal"] is not None:
    os.kill(os.getpid(), plan["kill_signal"])
    time.sleep(30)
sys.exit(plan["exit_code"])
"""


def progress_block(
    out_time_us: int,
    frame: int | None = None,
    end: bool = False,
    bitrate: str = "128.0kbits/s",
    total_size: int = 1024,
    speed: str = "1.5x",
) -> list[str]:
    """Lines of one FFmpeg `-progress` block."""
    return [
        f"frame={frame if frame is not None else 'N/A'}",
        "fps=25.00",
        f"bitrate={bitrate}",
        f"total_size={total_size}",
        f"out_time_us={out_time_us}",
        "dup_frames=0",
        "drop_frames=0",
        f"speed={speed}",
        f"progress={'end' if end else 'continue'}",
    ]


# A trimmed-down `ffprobe -show_format -show_streams -show_chapters` report
SAMPLE_PROBE = {
    "streams": [
        {
            "index": 0,
            "codec_name": "h264",
            "codec_long_name": "H.264 / AVC / MPEG-4 AVC / MPEG-4 part 10",
            "profile": "High",
            "codec_type": "video",
            "width": 1920,
            "height": 1080,
            "pix_fmt": "yuv420p",
            "r_frame_rate": "30/1",
            "avg_frame_rate": "30/1",
            "time_base": "1/15360",
            "duration": "10.000000",
            "bit_rate": "4000000",
            "nb_frames": "300",
            "disposition": {"default": 1, "attached_pic": 0},
            "tags": {"language": "und", "handler_name": "VideoHandler"},
            "color_range": "tv",
        },
        {
            "index": 1,
            "codec_name": "aac",
            "codec_type": "audio",
            "sample_fmt": "fltp",
            "sample_rate": "48000",
            "channels": 2,
            "channel_layout": "stereo",
            "bit_rate": "128000",
        },
    ],
    "chapters": [
        {
            "id": 0,
            "time_base": "1/1000",
            "start": 0,
            "start_time": "0.000000",
            "end": 5000,
            "end_time": "5.000000",
            "tags": {"title": "Intro"},
        }
    ],
    "format": {
        "filename": "in.mp4",
        "nb_streams": 2,
        "nb_programs": 0,
        "format_name": "mov,mp4,m4a,3gp,3g2,mj2",
        "format_long_name": "QuickTime / MOV",
        "start_time": "0.000000",
        "duration": "10.010000",
        "size": "5242880",
        "bit_rate": "4190000",
        "probe_score": 100,
        "tags": {"major_brand": "isom"},
    },
}


@pytest.fixture
def fake_ffmpeg(tmp_path):
    """
    Factory writing an executable that stands in for ffmpeg.

    It prints `stdout` lines (a line "@sleep N" pauses for N seconds instead),
    then writes `stdout_bytes`, `stderr` and `stderr_bytes` and exits with
    `exit_code`, or kills itself with `kill_signal` if one is given. The
    arguments it was called with are saved to `<script>.args.json`.
    """
    counter = iter(range(1000))

    def _make(
        stdout=(),
        stderr: str = "",
        exit_code: int = 0,
        stdout_bytes: bytes = b"",
        stderr_bytes: bytes = b"",
        kill_signal: int | None = None,
    ):
        script = tmp_path / f"fake_ffmpeg_{next(counter)}"
        plan = {
            "stdout": list(stdout),
            "stderr": stderr,
            "stdout_bytes": stdout_bytes.hex(),
            "stderr_bytes": stderr_bytes.hex(),
            "exit_code": exit_code,
            "kill_signal": None if kill_signal is None else int(kill_signal),
            "args_file": str(script) + ".args.json",
        }
        body = _FAKE_FFMPEG_SCRIPT.replace("PLAN", json.dumps(json.dumps(plan)), 1)
        script.write_text(f"#!{sys.executable}\n{body}")
        script.chmod(0o755)
        return script

    return _make


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch):
    """Keep user config and tool overrides out of the tests."""
    monkeypatch.delenv("FFJ_FFMPEG_PATH", raising=False)
    monkeypatch.delenv("FFJ_FFPROBE_PATH", raising=False)
    monkeypatch.setenv("FFJ_CONFIG_DIR", str(tmp_path / "no-config"))


@pytest.fixture
def sample_config(tmp_path):
    """Create a sample config file."""
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        """
tools:
  ffmpeg: /opt/ffmpeg/bin/ffmpeg
  ffprobe: /opt/ffmpeg/bin/ffprobe

supervisor:
  poll_interval_ms: 5
  stderr_tail_chars: 256
  timeout_ms: 60000

compiler:
  crf_encoders: [libx264, libsvtav1]

logging:
  level: DEBUG
"""
    )
    return config_file


@pytest.fixture
def mock_subprocess():
    """Mock subprocess.run for tests that call external tools."""
    with patch("subprocess.run") as mock_run:
        mock_run.return_value = MagicMock(returncode=0, stdout="{}", stderr="")
        yield mock_run


@pytest.fixture(name="_mock_shutil_which")
def mock_shutil_which():
    """Mock shutil.which to simulate available tools."""

    def which_side_effect(tool):
        available = {"ffmpeg", "ffprobe"}
        return f"/usr/bin/{tool}" if tool in available else None

    with patch("shutil.which", side_effect=which_side_effect) as mock:
        yield mock
