"""
Dispatch engine.

The single funnel between the trigger sources (scheduler and control
channel) and the process supervisor. Requests for the same stream are
serialized through a per-stream lock; requests for different streams run
in parallel.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Optional, Sequence

from relay_manager.platforms import Platform
from relay_manager.supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)


class DispatchResult(str, Enum):
    """Outcome of a start or stop request."""

    STARTED = "started"
    ALREADY_RUNNING = "already_running"
    FAILED = "failed"
    REJECTED = "rejected"  # engine is shutting down
    STOPPED = "stopped"
    NOT_RUNNING = "not_running"


class DispatchEngine:
    """
    Deduplicates and serializes start/stop requests per stream.

    The scheduler and the control channel can both ask for the same stream
    at the same moment (and the channel may deliver a message twice); only
    the first start spawns a process, later ones report ALREADY_RUNNING.
    """

    def __init__(self, supervisor: ProcessSupervisor, metrics: Optional[Any] = None):
        """
        Initialize dispatch engine.

        Args:
            supervisor: Process supervisor owning the session registry
            metrics: Optional metrics recorder
        """
        self.supervisor = supervisor
        self.locks = supervisor.locks
        self.metrics = metrics
        self._accepting = True

    @property
    def accepting(self) -> bool:
        return self._accepting

    def stop_accepting(self) -> None:
        """Reject every later start request."""
        self._accepting = False

    def has_session(self, job_id: str) -> bool:
        return self.supervisor.has_session(job_id)

    async def request_start(
        self,
        job_id: str,
        source_path: str,
        platforms: Sequence[Platform],
    ) -> DispatchResult:
        """
        Start a stream unless it is already running.

        Args:
            job_id: Stream id
            source_path: Path to the source video
            platforms: Ordered target platforms

        Returns:
            STARTED, ALREADY_RUNNING, FAILED or REJECTED
        """
        async with self.locks.hold(job_id):
            if not self._accepting:
                logger.warning(f"Rejecting start for stream {job_id}: worker is shutting down")
                self._record("rejected")
                return DispatchResult.REJECTED

            if self.supervisor.has_session(job_id):
                logger.info(f"Stream {job_id} is already running, ignoring start request")
                self._record("already_running")
                return DispatchResult.ALREADY_RUNNING

            started = await self.supervisor.start(job_id, source_path, platforms)
            return DispatchResult.STARTED if started else DispatchResult.FAILED

    async def request_stop(self, job_id: str) -> DispatchResult:
        """
        Stop a stream.

        Args:
            job_id: Stream id

        Returns:
            STOPPED, or NOT_RUNNING if there was no active session
        """
        async with self.locks.hold(job_id):
            if await self.supervisor.stop(job_id):
                return DispatchResult.STOPPED

        return DispatchResult.NOT_RUNNING

    async def shutdown(self) -> int:
        """
        Refuse new starts and stop every active session.

        Returns only after every stop has completed.

        Returns:
            Number of sessions stopped
        """
        self.stop_accepting()
        job_ids = self.supervisor.active_job_ids()
        if not job_ids:
            return 0

        logger.info(f"Stopping {len(job_ids)} active stream(s)")
        results = await asyncio.gather(
            *(self.request_stop(job_id) for job_id in job_ids),
            return_exceptions=True,
        )

        stopped = 0
        for job_id, result in zip(job_ids, results):
            if isinstance(result, BaseException):
                logger.error(f"Failed to stop stream {job_id} during shutdown: {result}")
            elif result == DispatchResult.STOPPED:
                stopped += 1
        return stopped

    def _record(self, result: str) -> None:
        if self.metrics is not None:
            self.metrics.record_start(result)
