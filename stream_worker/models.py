"""Stream job models and control channel payloads."""

import json
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from relay_manager.platforms import Platform


class StreamStatus(str, Enum):
    """Stream job status as stored in ``streams.status``."""

    SCHEDULED = "scheduled"
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self in (StreamStatus.COMPLETED, StreamStatus.FAILED, StreamStatus.STOPPED)


def _coerce_platforms(value: Any) -> Any:
    # jsonb_agg may come back as text depending on the driver
    if isinstance(value, str):
        value = json.loads(value)
    if value is None:
        return []
    return [item for item in value if item is not None]


class StreamJob(BaseModel):
    """A persisted request to relay one video file to one or more platforms."""

    id: str = Field(..., description="Stream id")
    title: Optional[str] = Field(None, description="Stream title")
    video_path: str = Field(..., description="Video path relative to the upload directory")
    status: StreamStatus = Field(StreamStatus.SCHEDULED, description="Current status")
    scheduled_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    error: Optional[str] = None
    log_file: Optional[str] = None
    platforms: List[Platform] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, value: Any) -> Any:
        return value if value is None else str(value)

    @field_validator("platforms", mode="before")
    @classmethod
    def _platforms(cls, value: Any) -> Any:
        return _coerce_platforms(value)


class StartCommand(BaseModel):
    """Immediate start request received on the control channel."""

    stream_id: str = Field(..., alias="streamId")
    video_path: str = Field(..., alias="videoPath")
    platforms: List[Platform] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("stream_id", mode="before")
    @classmethod
    def _id_as_str(cls, value: Any) -> Any:
        return value if value is None else str(value)

    @field_validator("platforms", mode="before")
    @classmethod
    def _platforms(cls, value: Any) -> Any:
        return _coerce_platforms(value)


class StopCommand(BaseModel):
    """Immediate stop request received on the control channel."""

    stream_id: str = Field(..., alias="streamId")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("stream_id", mode="before")
    @classmethod
    def _id_as_str(cls, value: Any) -> Any:
        return value if value is None else str(value)
