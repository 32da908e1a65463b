"""Stream Worker - scheduled and on-demand multistream dispatch.

Turns stream records from PostgreSQL and immediate commands from Redis into
supervised FFmpeg relay processes, and keeps stream status in sync with
what is actually running.

Main Components:
    - DispatchEngine: per-stream deduplication and serialization
    - SchedulerTrigger: periodic dispatch of due scheduled streams
    - CommandChannelListener: immediate start/stop requests
    - StatusStore: durable stream status
    - StreamWorker: process lifecycle and graceful shutdown

Example:
    >>> from stream_worker import StreamWorker, WorkerConfig
    >>> worker = StreamWorker(WorkerConfig())
    >>> asyncio.run(worker.run())
"""

from stream_worker.command_listener import CommandChannelListener
from stream_worker.config import WorkerConfig
from stream_worker.dispatch import DispatchEngine, DispatchResult
from stream_worker.models import StartCommand, StopCommand, StreamJob, StreamStatus
from stream_worker.scheduler import SchedulerTrigger
from stream_worker.status_store import StatusStore
from stream_worker.worker import StreamWorker, WorkerStartupError

__version__ = "1.0.0"
__all__ = [
    "CommandChannelListener",
    "DispatchEngine",
    "DispatchResult",
    "SchedulerTrigger",
    "StartCommand",
    "StatusStore",
    "StopCommand",
    "StreamJob",
    "StreamStatus",
    "StreamWorker",
    "WorkerConfig",
    "WorkerStartupError",
]
