"""
FFmpeg relay command builder.

Turns a source file and an ordered list of platforms into the argument list
for a single FFmpeg process. One output is pushed directly; two or more are
fanned out through the tee muxer so the source is read only once.
"""

import logging
import shlex
from typing import List, Optional, Sequence

from relay_manager.config import RelayConfig
from relay_manager.errors import InvalidConfiguration
from relay_manager.platforms import Platform

logger = logging.getLogger(__name__)


class RelayCommandBuilder:
    """
    Builds FFmpeg commands for relaying one video file to many platforms.

    Pure: the same source and platforms always produce the same command.
    """

    def __init__(self, config: RelayConfig):
        """
        Initialize command builder.

        Args:
            config: Relay configuration
        """
        self.config = config

    def resolve_outputs(self, platforms: Sequence[Platform]) -> List[str]:
        """
        Resolve output URLs, dropping unsupported or empty destinations.

        Args:
            platforms: Platforms in dispatch order

        Returns:
            Output URLs in the same order
        """
        outputs = []
        for platform in platforms:
            url = platform.output_url()
            if url is None:
                logger.debug(f"Skipping unresolvable platform: {platform.label()}")
                continue
            outputs.append(url)
        return outputs

    def build_command(self, source_path: str, platforms: Sequence[Platform]) -> List[str]:
        """
        Build the relay command.

        Args:
            source_path: Path to the source media file
            platforms: Ordered list of target platforms

        Returns:
            List of command arguments for subprocess

        Raises:
            InvalidConfiguration: If the source path is empty or no platform
                resolves to an output URL
        """
        if not source_path or not str(source_path).strip():
            raise InvalidConfiguration("source_path cannot be empty")

        if not platforms:
            raise InvalidConfiguration("No output platforms provided")

        outputs = self.resolve_outputs(platforms)
        if not outputs:
            raise InvalidConfiguration("No valid output platforms provided")

        cmd = [self.config.path]
        cmd.extend(self._build_global_options())
        cmd.extend(self._build_input(str(source_path)))

        if len(outputs) > 1:
            # tee needs explicit stream selection
            cmd.extend(["-map", "0"])

        cmd.extend(self._build_codec_options())
        cmd.extend(self._build_output_options(outputs))

        return cmd

    def _build_global_options(self) -> List[str]:
        """Build global FFmpeg options."""
        return [
            "-hide_banner",
            "-loglevel",
            self.config.log_level,
        ]

    def _build_input(self, source_path: str) -> List[str]:
        """Build input options."""
        options = []
        if self.config.read_native_rate:
            options.append("-re")
        options.extend(["-i", source_path])
        return options

    def _build_codec_options(self) -> List[str]:
        """Video is passed through, audio is re-encoded."""
        return [
            "-c:v", self.config.video_codec,
            "-c:a", self.config.audio_codec,
        ]

    def _build_output_options(self, outputs: List[str]) -> List[str]:
        """Single output or tee fan-out, one leg per platform."""
        fmt = self.config.container_format

        if len(outputs) == 1:
            return ["-f", fmt, outputs[0]]

        legs = "|".join(f"[f={fmt}]{output}" for output in outputs)
        return ["-f", "tee", legs]

    def get_command_string(self, source_path: str, platforms: Sequence[Platform]) -> str:
        """
        Get the relay command as a single shell-quoted string (useful for logging).

        Args:
            source_path: Path to the source media file
            platforms: Ordered list of target platforms

        Returns:
            Command string
        """
        return shlex.join(self.build_command(source_path, platforms))


def create_command_builder(config: Optional[RelayConfig] = None) -> RelayCommandBuilder:
    """
    Factory function to create a command builder.

    Args:
        config: Optional relay configuration (creates default if not provided)

    Returns:
        RelayCommandBuilder instance
    """
    if config is None:
        from relay_manager.config import get_config
        config = get_config()

    return RelayCommandBuilder(config)
