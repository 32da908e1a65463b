"""
Scheduler trigger.

Every tick, finds scheduled streams that are due and hands them to the
dispatch engine. A missing source video fails the stream before any
process is spawned. One stream failing never stops the rest of the tick.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from relay_manager.errors import ResourceMissing
from stream_worker.dispatch import DispatchEngine, DispatchResult
from stream_worker.models import StreamJob
from stream_worker.status_store import StatusStore

logger = logging.getLogger(__name__)


class SchedulerTrigger:
    """Periodically dispatches due scheduled streams."""

    def __init__(
        self,
        store: StatusStore,
        engine: DispatchEngine,
        upload_dir: Path,
        interval_seconds: float = 60.0,
        align_to_clock: bool = True,
        metrics: Optional[Any] = None,
    ):
        """
        Initialize scheduler trigger.

        Args:
            store: Status store to query and to report missing files to
            engine: Dispatch engine receiving start requests
            upload_dir: Directory that video paths are relative to
            interval_seconds: Seconds between ticks
            align_to_clock: Tick on wall-clock multiples of the interval
            metrics: Optional metrics recorder
        """
        self.store = store
        self.engine = engine
        self.upload_dir = Path(upload_dir)
        self.interval_seconds = interval_seconds
        self.align_to_clock = align_to_clock
        self.metrics = metrics

        self._task: Optional[asyncio.Task] = None
        self._idle = asyncio.Event()
        self._idle.set()

    def seconds_until_next_tick(self, now: Optional[float] = None) -> float:
        """Delay before the next tick."""
        if not self.align_to_clock:
            return self.interval_seconds
        now = time.time() if now is None else now
        remainder = now % self.interval_seconds
        return self.interval_seconds - remainder

    def resolve_source(self, job: StreamJob) -> Path:
        return self.upload_dir / job.video_path

    async def run_once(self, now: Optional[datetime] = None) -> int:
        """
        Run a single scheduler tick.

        Args:
            now: Reference time (defaults to the current UTC time)

        Returns:
            Number of streams started
        """
        now = now or datetime.now(timezone.utc)
        if self.metrics is not None:
            self.metrics.record_tick()

        try:
            jobs = await asyncio.to_thread(self.store.fetch_due_jobs, now)
        except Exception as e:
            logger.error(f"Error fetching scheduled streams: {e}", exc_info=True)
            return 0

        if jobs:
            logger.info(f"Found {len(jobs)} due scheduled stream(s)")

        started = 0
        for job in jobs:
            try:
                if await self._dispatch(job) == DispatchResult.STARTED:
                    started += 1
            except Exception as e:
                logger.error(f"Error dispatching scheduled stream {job.id}: {e}", exc_info=True)

        return started

    async def _dispatch(self, job: StreamJob) -> Optional[DispatchResult]:
        logger.info(f"Processing scheduled stream {job.id}: {job.title or job.video_path}")

        source = self.resolve_source(job)
        if not source.is_file():
            error = ResourceMissing(str(source), job_id=job.id)
            async with self.engine.locks.hold(job.id):
                if self.engine.has_session(job.id):
                    logger.info(f"Stream {job.id} is already running, leaving its status alone")
                    return DispatchResult.ALREADY_RUNNING
                logger.error(f"Stream {job.id}: {error}")
                await asyncio.to_thread(self.store.mark_failed, job.id, str(error))
            return None

        return await self.engine.request_start(job.id, str(source), job.platforms)

    async def _run(self) -> None:
        logger.info(f"Scheduler started (interval: {self.interval_seconds}s)")
        while True:
            try:
                await asyncio.sleep(self.seconds_until_next_tick())
                self._idle.clear()
                try:
                    await self.run_once()
                finally:
                    self._idle.set()
            except asyncio.CancelledError:
                logger.info("Scheduler cancelled")
                raise
            except Exception as e:
                logger.error(f"Error in scheduler loop: {e}", exc_info=True)

    def start(self) -> None:
        """Start the scheduler loop in the background."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="scheduler")

    async def stop(self) -> None:
        """
        Stop the scheduler loop and wait for it to finish.

        A tick already in progress runs to completion first; only the wait
        for the next tick is cancelled.
        """
        if self._task is None:
            return
        await self._idle.wait()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Scheduler stopped")
