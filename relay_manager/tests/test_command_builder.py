"""
Tests for relay command builder.
"""

import pytest

from relay_manager.command_builder import RelayCommandBuilder, create_command_builder
from relay_manager.config import RelayConfig
from relay_manager.errors import InvalidConfiguration
from relay_manager.platforms import Platform


class TestRelayCommandBuilder:
    """Test relay command builder."""

    def test_initialization(self, test_config: RelayConfig):
        """Test command builder initialization."""
        builder = RelayCommandBuilder(test_config)

        assert builder.config == test_config

    def test_single_platform_command(self, command_builder, source_file, rtmp_platform):
        """Test that one platform produces a direct single-output command."""
        cmd = command_builder.build_command(str(source_file), [rtmp_platform])

        assert cmd == [
            "ffmpeg",
            "-hide_banner",
            "-loglevel",
            "warning",
            "-re",
            "-i",
            str(source_file),
            "-c:v",
            "copy",
            "-c:a",
            "aac",
            "-f",
            "flv",
            "rtmp://a.rtmp.youtube.com/live2/yt-key",
        ]
        assert "tee" not in cmd

    def test_fan_out_command_has_one_leg_per_platform(
        self, command_builder, source_file, rtmp_platform, twitch_platform, custom_platform
    ):
        """Test that three platforms produce a tee command with three legs."""
        cmd = command_builder.build_command(
            str(source_file), [rtmp_platform, twitch_platform, custom_platform]
        )

        assert cmd[cmd.index("-f") + 1] == "tee"
        assert cmd[cmd.index("-map") + 1] == "0"

        legs = cmd[-1].split("|")
        assert legs == [
            "[f=flv]rtmp://a.rtmp.youtube.com/live2/yt-key",
            "[f=flv]rtmp://live.twitch.tv/app/tw-key",
            "[f=flv]rtmps://live-api-s.facebook.com:443/rtmp/fb-key",
        ]

    def test_empty_platform_list_rejected(self, command_builder, source_file):
        """Test that an empty platform list raises InvalidConfiguration."""
        with pytest.raises(InvalidConfiguration, match="No output platforms"):
            command_builder.build_command(str(source_file), [])

    def test_unresolvable_platforms_rejected(self, command_builder, source_file):
        """Test that platforms which all filter out raise InvalidConfiguration."""
        platforms = [
            Platform(type="rtmp", server="live.twitch.tv/app", stream_key=""),
            Platform(type="custom", url="   "),
            Platform(type="srt", url="srt://example.com:9000"),
        ]

        with pytest.raises(InvalidConfiguration, match="No valid output platforms"):
            command_builder.build_command(str(source_file), platforms)

    def test_unsupported_platforms_filtered_before_counting(
        self, command_builder, source_file, rtmp_platform
    ):
        """Test that one valid platform among unsupported ones is a single output."""
        platforms = [Platform(type="srt", url="srt://example.com:9000"), rtmp_platform]

        cmd = command_builder.build_command(str(source_file), platforms)

        assert "tee" not in cmd
        assert cmd[-1] == "rtmp://a.rtmp.youtube.com/live2/yt-key"

    def test_empty_source_path_rejected(self, command_builder, rtmp_platform):
        """Test building command with an empty source path."""
        with pytest.raises(InvalidConfiguration, match="source_path cannot be empty"):
            command_builder.build_command("", [rtmp_platform])

    def test_deterministic(self, command_builder, source_file, rtmp_platform, custom_platform):
        """Test that identical input gives identical commands."""
        platforms = [rtmp_platform, custom_platform]

        first = command_builder.build_command(str(source_file), platforms)
        second = command_builder.build_command(str(source_file), platforms)

        assert first == second

    def test_custom_binary_and_formats(self, source_file, rtmp_platform):
        """Test that binary, codecs and container come from config."""
        config = RelayConfig(
            path="/usr/bin/ffmpeg",
            audio_codec="libopus",
            container_format="mpegts",
            read_native_rate=False,
        )
        cmd = RelayCommandBuilder(config).build_command(str(source_file), [rtmp_platform])

        assert cmd[0] == "/usr/bin/ffmpeg"
        assert "-re" not in cmd
        assert cmd[cmd.index("-c:a") + 1] == "libopus"
        assert cmd[cmd.index("-f") + 1] == "mpegts"

    def test_resolve_outputs_preserves_order(
        self, command_builder, rtmp_platform, twitch_platform
    ):
        """Test that resolved outputs follow platform order."""
        outputs = command_builder.resolve_outputs([twitch_platform, rtmp_platform])

        assert outputs == [
            "rtmp://live.twitch.tv/app/tw-key",
            "rtmp://a.rtmp.youtube.com/live2/yt-key",
        ]

    def test_get_command_string(self, command_builder, temp_dir, rtmp_platform):
        """Test getting the command as a quoted string."""
        source = temp_dir / "my video.mp4"

        cmd_str = command_builder.get_command_string(str(source), [rtmp_platform])

        assert cmd_str.startswith("ffmpeg ")
        assert f"'{source}'" in cmd_str


class TestCreateCommandBuilder:
    """Test command builder factory."""

    def test_create_with_config(self, test_config: RelayConfig):
        """Test creating builder with explicit config."""
        builder = create_command_builder(test_config)

        assert builder.config == test_config

    def test_create_with_defaults(self):
        """Test creating builder with default config."""
        builder = create_command_builder()

        assert isinstance(builder, RelayCommandBuilder)
        assert builder.config.audio_codec == "aac"
