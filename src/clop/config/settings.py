"""
Configuration settings for the optimiser.

Supports loading from environment variables with fallback defaults.
Uses python-dotenv for .env file support.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from clop.utils.logging_config import get_logger

load_dotenv()

logger = get_logger(__name__)


def _get_env_float(key: str, default: float) -> float:
    """Get float from environment variable."""
    value = os.getenv(key)
    return float(value) if value else default


def _get_env_int(key: str, default: int) -> int:
    """Get integer from environment variable."""
    value = os.getenv(key)
    return int(value) if value else default


def _get_env_bool(key: str, default: bool) -> bool:
    """Get boolean from environment variable."""
    value = os.getenv(key)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes")


def _get_env_paths(key: str) -> List[Path]:
    """Get a list of directories from a comma separated environment variable."""
    value = os.getenv(key)
    if not value:
        return []
    return [Path(x.strip()).expanduser() for x in value.split(",") if x.strip()]


def _get_env_optional_path(key: str) -> Optional[Path]:
    """Get optional path from environment variable."""
    value = os.getenv(key)
    if not value or value.lower() == "none":
        return None
    return Path(value).expanduser()


@dataclass
class Settings:
    """
    Configuration settings for the optimiser.

    All settings can be overridden via environment variables.

    Attributes:
        workdir: Root for backups, scratch outputs and process logs.
        bin_dir: Directory searched for codec binaries before PATH.
        max_concurrent_jobs: Maximum number of jobs running at once.
        undo_stack_size: How many removed jobs can be restored.
        cancel_poll_interval: Seconds between cancellation checks while an
            external tool runs.
        auto_remove_seconds: Remove succeeded jobs after this many seconds
            (0 keeps them until removed explicitly).
        tool_timeout: Seconds before an external tool is killed.
        jpeg_quality: JPEG quality for normal optimisation.
        jpeg_aggressive_quality: JPEG quality for aggressive optimisation.
        video_crf: x264 CRF for normal optimisation.
        video_aggressive_crf: x264 CRF for aggressive optimisation.
        aggressive_jpeg: Use aggressive optimisation for JPEG by default.
        aggressive_png: Use aggressive optimisation for PNG by default.
        aggressive_gif: Use aggressive optimisation for GIF by default.
        aggressive_mp4: Use aggressive optimisation for videos by default.
        pause_automatic_optimisations: Stop the folder watcher submitting.
        image_dirs: Folders watched for new images.
        video_dirs: Folders watched for new videos.
        max_auto_file_size_mb: Watched files above this size are skipped.
        watch_interval: Seconds between folder scans.
        log_file: Optional log file path.
    """

    workdir: Path = field(default_factory=lambda: Path(os.getenv(
        "CLOP_WORKDIR",
        str(Path.home() / ".clop" / "workdir")
    )).expanduser())
    bin_dir: Optional[Path] = field(
        default_factory=lambda: _get_env_optional_path("CLOP_BIN_DIR")
    )

    # Job manager
    max_concurrent_jobs: int = field(
        default_factory=lambda: _get_env_int("CLOP_MAX_CONCURRENT_JOBS", 2)
    )
    undo_stack_size: int = field(
        default_factory=lambda: _get_env_int("CLOP_UNDO_STACK_SIZE", 5)
    )
    cancel_poll_interval: float = field(
        default_factory=lambda: _get_env_float("CLOP_CANCEL_POLL_INTERVAL", 0.1)
    )
    auto_remove_seconds: float = field(
        default_factory=lambda: _get_env_float("CLOP_AUTO_REMOVE_SECONDS", 0.0)
    )
    tool_timeout: float = field(
        default_factory=lambda: _get_env_float("CLOP_TOOL_TIMEOUT", 600.0)
    )

    # Encoder settings
    jpeg_quality: int = field(
        default_factory=lambda: _get_env_int("CLOP_JPEG_QUALITY", 85)
    )
    jpeg_aggressive_quality: int = field(
        default_factory=lambda: _get_env_int("CLOP_JPEG_AGGRESSIVE_QUALITY", 65)
    )
    video_crf: int = field(
        default_factory=lambda: _get_env_int("CLOP_VIDEO_CRF", 26)
    )
    video_aggressive_crf: int = field(
        default_factory=lambda: _get_env_int("CLOP_VIDEO_AGGRESSIVE_CRF", 32)
    )

    # Per-format aggressive defaults
    aggressive_jpeg: bool = field(
        default_factory=lambda: _get_env_bool("CLOP_AGGRESSIVE_JPEG", False)
    )
    aggressive_png: bool = field(
        default_factory=lambda: _get_env_bool("CLOP_AGGRESSIVE_PNG", False)
    )
    aggressive_gif: bool = field(
        default_factory=lambda: _get_env_bool("CLOP_AGGRESSIVE_GIF", False)
    )
    aggressive_mp4: bool = field(
        default_factory=lambda: _get_env_bool("CLOP_AGGRESSIVE_MP4", False)
    )

    # Automation (folder watching)
    pause_automatic_optimisations: bool = field(
        default_factory=lambda: _get_env_bool("CLOP_PAUSE_AUTOMATIC_OPTIMISATIONS", False)
    )
    image_dirs: List[Path] = field(
        default_factory=lambda: _get_env_paths("CLOP_IMAGE_DIRS")
    )
    video_dirs: List[Path] = field(
        default_factory=lambda: _get_env_paths("CLOP_VIDEO_DIRS")
    )
    enable_automatic_image_optimisations: bool = field(
        default_factory=lambda: _get_env_bool("CLOP_ENABLE_AUTOMATIC_IMAGE_OPTIMISATIONS", True)
    )
    enable_automatic_video_optimisations: bool = field(
        default_factory=lambda: _get_env_bool("CLOP_ENABLE_AUTOMATIC_VIDEO_OPTIMISATIONS", True)
    )
    max_auto_file_size_mb: float = field(
        default_factory=lambda: _get_env_float("CLOP_MAX_AUTO_FILE_SIZE_MB", 500.0)
    )
    watch_interval: float = field(
        default_factory=lambda: _get_env_float("CLOP_WATCH_INTERVAL", 2.0)
    )

    log_file: Optional[str] = field(
        default_factory=lambda: os.getenv("CLOP_LOG_FILE") or None
    )

    def __post_init__(self):
        self.workdir = Path(self.workdir)
        if self.bin_dir is not None:
            self.bin_dir = Path(self.bin_dir)

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Create settings instance from environment variables.

        Returns:
            Settings instance with values from environment.
        """
        return cls()

    def validate(self) -> bool:
        """
        Validate all settings.

        Returns:
            True if all settings are valid.

        Raises:
            ValueError: If any setting is invalid.
        """
        if self.max_concurrent_jobs < 1:
            raise ValueError(
                f"max_concurrent_jobs must be >= 1, got {self.max_concurrent_jobs}"
            )

        if self.undo_stack_size < 1:
            raise ValueError(
                f"undo_stack_size must be >= 1, got {self.undo_stack_size}"
            )

        if self.cancel_poll_interval <= 0:
            raise ValueError(
                f"cancel_poll_interval must be > 0, got {self.cancel_poll_interval}"
            )

        if self.auto_remove_seconds < 0:
            raise ValueError(
                f"auto_remove_seconds must be >= 0, got {self.auto_remove_seconds}"
            )

        for name in ("jpeg_quality", "jpeg_aggressive_quality"):
            value = getattr(self, name)
            if not 1 <= value <= 95:
                raise ValueError(f"{name} must be between 1 and 95, got {value}")

        for name in ("video_crf", "video_aggressive_crf"):
            value = getattr(self, name)
            if not 0 <= value <= 51:
                raise ValueError(f"{name} must be between 0 and 51, got {value}")

        if self.watch_interval <= 0:
            raise ValueError(
                f"watch_interval must be > 0, got {self.watch_interval}"
            )

        return True

    def aggressive_default(self, suffix: str) -> bool:
        """
        Get the per-format aggressive optimisation default.

        Args:
            suffix: File suffix including the dot (e.g. ".png").

        Returns:
            True if files of this format are optimised aggressively by default.
        """
        suffix = suffix.lower()
        if suffix in (".jpg", ".jpeg"):
            return self.aggressive_jpeg
        if suffix == ".png":
            return self.aggressive_png
        if suffix == ".gif":
            return self.aggressive_gif
        if suffix in (".mp4", ".mov", ".m4v"):
            return self.aggressive_mp4
        return False


# Global settings instance (lazy loaded)
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the process-wide settings instance.

    Creates settings on first call, returns cached instance thereafter.
    Only entry points (CLI, server) should call this; components receive
    their settings explicitly.

    Returns:
        Global Settings instance.
    """
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
        logger.debug(f"Loaded settings, workdir={_settings.workdir}")
    return _settings


def reset_settings() -> None:
    """Reset the global settings instance (useful for testing)."""
    global _settings
    _settings = None
