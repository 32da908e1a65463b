"""
Relay (FFmpeg) configuration.

The relay copies the source video stream untouched and re-encodes audio to
a fixed codec, so there are no encoding presets here, only the handful of
knobs the command builder and the supervisor need.
"""

from typing import Optional

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings


class RelayConfig(BaseSettings):
    """Relay configuration from environment variables."""

    # FFmpeg binary
    path: str = Field(
        default="ffmpeg",
        description="Path to FFmpeg binary",
    )

    # Logging
    log_level: str = Field(
        default="info",
        description="FFmpeg log level (quiet, panic, fatal, error, warning, info, verbose, debug)",
    )

    # Codecs and container
    video_codec: str = Field(
        default="copy",
        description="Video codec (copy passes the source stream through)",
    )

    audio_codec: str = Field(
        default="aac",
        description="Audio codec",
    )

    container_format: str = Field(
        default="flv",
        description="Streaming container format for every output leg",
    )

    read_native_rate: bool = Field(
        default=True,
        description="Read input at native frame rate (-re)",
    )

    # Process management
    stop_timeout: Optional[float] = Field(
        default=None,
        description="Seconds to wait after SIGTERM before SIGKILL (unset: never force kill)",
        ge=0.0,
        le=300.0,
    )

    poll_interval: float = Field(
        default=1.0,
        description="How often a relay process is checked for exit (seconds)",
        gt=0.0,
        le=60.0,
    )

    model_config = ConfigDict(
        env_prefix="FFMPEG_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


def get_config() -> RelayConfig:
    """
    Get relay configuration from environment variables.

    Returns:
        RelayConfig: Configuration instance
    """
    return RelayConfig()
