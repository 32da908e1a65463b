"""
Relay targets.

A Platform is one destination a stream is pushed to. Platforms are created
by the dashboard and only read here.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

_RTMP_SCHEMES = ("rtmp://", "rtmps://")


class PlatformType(str, Enum):
    """Supported platform types."""

    RTMP = "rtmp"  # server + stream key
    CUSTOM = "custom"  # full output URL


class Platform(BaseModel):
    """One relay destination.

    Accepts both the snake_case column names of ``stream_platforms`` rows
    and the camelCase keys used on the command channel.
    """

    type: str = Field(..., description="Platform type (rtmp or custom)")
    server: Optional[str] = Field(None, description="RTMP ingest server")
    stream_key: Optional[str] = Field(None, alias="streamKey", description="RTMP stream key")
    url: Optional[str] = Field(None, description="Full output URL for custom platforms")
    name: Optional[str] = Field(None, description="Display name")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @property
    def is_supported(self) -> bool:
        return self.type in (PlatformType.RTMP.value, PlatformType.CUSTOM.value)

    def output_url(self) -> Optional[str]:
        """
        Resolve the output URL for this platform.

        Returns:
            The destination URL, or None if the type is unsupported or the
            destination is empty.
        """
        if self.type == PlatformType.RTMP.value:
            server = (self.server or "").strip().rstrip("/")
            key = (self.stream_key or "").strip()
            if not server or not key:
                return None
            if not server.startswith(_RTMP_SCHEMES):
                server = f"rtmp://{server}"
            return f"{server}/{key}"

        if self.type == PlatformType.CUSTOM.value:
            url = (self.url or "").strip()
            return url or None

        return None

    def label(self) -> str:
        """Short human-readable label for logs (never includes the stream key)."""
        if self.name:
            return self.name
        if self.type == PlatformType.RTMP.value:
            return f"rtmp:{self.server or '?'}"
        # Custom URLs carry the key as the last path segment or in the query
        url = (self.url or "").split("?")[0].rstrip("/")
        base, _, _ = url.rpartition("/")
        if base and not base.endswith("/"):
            url = base
        return f"{self.type}:{url or '?'}"
