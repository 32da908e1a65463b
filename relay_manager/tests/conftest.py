"""
Pytest configuration and fixtures for relay manager tests.
"""

from pathlib import Path
from unittest.mock import Mock

import pytest

from relay_manager.command_builder import RelayCommandBuilder
from relay_manager.config import RelayConfig
from relay_manager.platforms import Platform
from relay_manager.supervisor import ProcessSupervisor


@pytest.fixture
def source_file(temp_dir: Path) -> Path:
    """Create a source video file."""
    video = temp_dir / "video.mp4"
    video.touch()
    return video


@pytest.fixture
def test_config() -> RelayConfig:
    """Create a test configuration."""
    return RelayConfig(
        path="ffmpeg",
        log_level="warning",
        poll_interval=0.01,
    )


@pytest.fixture
def command_builder(test_config: RelayConfig) -> RelayCommandBuilder:
    """Create a command builder for testing."""
    return RelayCommandBuilder(test_config)


@pytest.fixture
def rtmp_platform() -> Platform:
    return Platform(type="rtmp", server="a.rtmp.youtube.com/live2", stream_key="yt-key")


@pytest.fixture
def twitch_platform() -> Platform:
    return Platform(type="rtmp", server="live.twitch.tv/app", stream_key="tw-key")


@pytest.fixture
def custom_platform() -> Platform:
    return Platform(type="custom", url="rtmps://live-api-s.facebook.com:443/rtmp/fb-key")


@pytest.fixture
def store() -> Mock:
    """Status store double recording every transition."""
    return Mock(spec=["mark_active", "mark_completed", "mark_stopped", "mark_failed"])


@pytest.fixture
def supervisor(store: Mock, temp_dir: Path, test_config: RelayConfig) -> ProcessSupervisor:
    """Create a process supervisor for testing."""
    return ProcessSupervisor(store=store, log_dir=temp_dir / "logs", config=test_config)
