"""
Relay Manager

FFmpeg relay process lifecycle for multistreaming: builds single-output or
tee fan-out commands and supervises one relay process per stream job.

Version: 1.0.0
"""

__version__ = "1.0.0"

from relay_manager.command_builder import RelayCommandBuilder
from relay_manager.config import RelayConfig
from relay_manager.errors import (
    AbnormalExit,
    InvalidConfiguration,
    RelayError,
    ResourceMissing,
    SpawnFailure,
)
from relay_manager.locks import KeyedLock
from relay_manager.platforms import Platform, PlatformType
from relay_manager.supervisor import ActiveSession, ProcessSupervisor

__all__ = [
    "AbnormalExit",
    "ActiveSession",
    "InvalidConfiguration",
    "KeyedLock",
    "Platform",
    "PlatformType",
    "ProcessSupervisor",
    "RelayCommandBuilder",
    "RelayConfig",
    "RelayError",
    "ResourceMissing",
    "SpawnFailure",
]
