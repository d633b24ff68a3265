"""
Configuration management with YAML loading and environment variable support.
"""

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .constants import DEFAULT_CRF_ENCODERS, DEFAULT_STDERR_TAIL_CHARS

logger = logging.getLogger(__name__)


def _env_str(env_var: str, default: str) -> str:
    """Get a string from an environment variable or return default."""
    return os.environ.get(env_var) or default


@dataclass
class ToolsConfig:
    """External executables - overridable via FFJ_FFMPEG_PATH / FFJ_FFPROBE_PATH."""

    ffmpeg: str = field(default_factory=lambda: _env_str("FFJ_FFMPEG_PATH", "ffmpeg"))
    ffprobe: str = field(default_factory=lambda: _env_str("FFJ_FFPROBE_PATH", "ffprobe"))


@dataclass
class SupervisorConfig:
    poll_interval_ms: int = 10
    stderr_tail_chars: int = DEFAULT_STDERR_TAIL_CHARS
    timeout_ms: int = 0  # 0 = no timeout

    @property
    def poll_interval(self) -> float:
        """Poll interval in seconds."""
        return self.poll_interval_ms / 1000


@dataclass
class CompilerConfig:
    # Encoders that accept -crf; others silently drop the setting
    crf_encoders: list[str] = field(default_factory=lambda: sorted(DEFAULT_CRF_ENCODERS))


@dataclass
class LoggingConfig:
    level: str = "WARNING"
    console_logging: bool = True


@dataclass
class AppConfig:
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    supervisor: SupervisorConfig = field(default_factory=SupervisorConfig)
    compiler: CompilerConfig = field(default_factory=CompilerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> "AppConfig":
        """Load configuration from YAML file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: dict) -> "AppConfig":
        """Create config from dictionary. Unknown sections and keys are ignored."""
        config = cls()

        for section_name in ("tools", "supervisor", "compiler", "logging"):
            values = data.get(section_name)
            if not isinstance(values, dict):
                continue
            section = getattr(config, section_name)
            for key, value in values.items():
                if not hasattr(section, key):
                    continue
                current = getattr(section, key)
                if isinstance(current, list):
                    if isinstance(value, str):
                        value = [value]
                    elif isinstance(value, list):
                        value = [str(item) for item in value]
                if not isinstance(value, type(current)):
                    logger.warning(
                        f"Ignoring {section_name}.{key}: expected {type(current).__name__}, got {value!r}"
                    )
                    continue
                setattr(section, key, value)

        # Environment wins over the file for tool paths
        if value := os.environ.get("FFJ_FFMPEG_PATH"):
            config.tools.ffmpeg = value
        if value := os.environ.get("FFJ_FFPROBE_PATH"):
            config.tools.ffprobe = value

        return config


def _get_default_config_dir() -> Path:
    """Get default config directory."""
    if config_dir := os.environ.get("FFJ_CONFIG_DIR"):
        return Path(config_dir)

    if xdg_config := os.environ.get("XDG_CONFIG_HOME"):
        return Path(xdg_config) / "ffmpeg-jobs"

    return Path.home() / ".config" / "ffmpeg-jobs"


def load_config(path: Path | None = None, config_dir: Path | None = None) -> AppConfig:
    """
    Load configuration.

    Args:
        path: Path to config file (default: searches standard locations)
        config_dir: Config directory to search (default: FFJ_CONFIG_DIR or XDG config home)

    Returns:
        AppConfig (defaults if no config file was found)
    """
    if path is None:
        if config_dir is None:
            config_dir = _get_default_config_dir()

        for candidate in (config_dir / "config.yaml", Path.cwd() / "ffj.yaml"):
            if candidate.exists():
                path = candidate
                break

    return AppConfig.from_yaml(path) if path else AppConfig()


def resolve_tool_path(tool_name: str, configured: str | None = None) -> Path | None:
    """
    Resolve an executable.

    Search order:
    1. Configured path (if it names an existing file)
    2. Configured name, or tool_name, on the system PATH

    Args:
        tool_name: Name of the tool to find
        configured: Path or name from config (may be empty string or None)

    Returns:
        Path to tool, or None if not found
    """
    if configured:
        p = Path(configured)
        if p.is_file():
            return p
        if found := shutil.which(configured):
            return Path(found)

    if found := shutil.which(tool_name):
        return Path(found)

    return None
