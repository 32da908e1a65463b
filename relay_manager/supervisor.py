"""
Relay process supervisor.

Owns the registry of live FFmpeg relay processes: spawns them with their
output redirected into a per-session log file, watches each one until it
exits, and writes every lifecycle transition to the status store.
"""

import asyncio
import logging
import re
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any, Dict, List, Optional, Sequence, Set

import psutil

from relay_manager.command_builder import RelayCommandBuilder
from relay_manager.config import RelayConfig
from relay_manager.errors import AbnormalExit, SpawnFailure
from relay_manager.locks import KeyedLock
from relay_manager.platforms import Platform

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


@dataclass
class ActiveSession:
    """Runtime record of a stream job that is currently being relayed."""

    job_id: str
    process: subprocess.Popen
    log_file: Path
    log_handle: IO
    started_at: datetime
    platforms: List[Platform]
    command: List[str] = field(default_factory=list)
    watcher: Optional[asyncio.Task] = None

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def is_running(self) -> bool:
        return self.process.poll() is None

    @property
    def uptime_seconds(self) -> float:
        return (datetime.now(timezone.utc) - self.started_at).total_seconds()

    def close_log(self) -> None:
        """Close the log sink. Safe to call more than once."""
        if self.log_handle.closed:
            return
        try:
            self.log_handle.close()
        except OSError as e:
            logger.warning(f"Failed to close log file {self.log_file}: {e}")


class ProcessSupervisor:
    """
    Spawns, watches and stops relay processes, one per stream job.

    The store is any object exposing ``mark_active``, ``mark_completed``,
    ``mark_stopped`` and ``mark_failed``; its calls are blocking and are run
    in a worker thread. Exit handling takes the same per-job lock the
    dispatch engine uses, so a process exit never interleaves with a start
    or stop for the same job.
    """

    def __init__(
        self,
        store: Any,
        log_dir: Path,
        config: Optional[RelayConfig] = None,
        command_builder: Optional[RelayCommandBuilder] = None,
        locks: Optional[KeyedLock] = None,
        metrics: Optional[Any] = None,
    ):
        """
        Initialize process supervisor.

        Args:
            store: Status store receiving lifecycle transitions
            log_dir: Directory for per-session relay logs
            config: Relay configuration (creates default if not provided)
            command_builder: Command builder (creates default if not provided)
            locks: Per-job locks shared with the dispatch engine
            metrics: Optional metrics recorder
        """
        if config is None:
            from relay_manager.config import get_config

            config = get_config()

        self.config = config
        self.command_builder = command_builder or RelayCommandBuilder(config)
        self.store = store
        self.log_dir = Path(log_dir)
        self.locks = locks or KeyedLock()
        self.metrics = metrics

        self._sessions: Dict[str, ActiveSession] = {}
        self._watchers: Set[asyncio.Task] = set()

        self.log_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Process supervisor initialized (log dir: {self.log_dir})")

    def log_file_for(self, job_id: str, started_at: datetime) -> Path:
        """Per-session log path, unique per job and start time."""
        safe_id = _UNSAFE_FILENAME_CHARS.sub("_", str(job_id))
        stamp = started_at.strftime("%Y-%m-%dT%H-%M-%S-%f")[:-3] + "Z"
        return self.log_dir / f"stream-{safe_id}-{stamp}.log"

    async def start(self, job_id: str, source_path: str, platforms: Sequence[Platform]) -> bool:
        """
        Start relaying a stream job.

        Args:
            job_id: Stream job identifier
            source_path: Path to the source media file
            platforms: Ordered target platforms

        Returns:
            True if the relay process was spawned, False otherwise
        """
        if job_id in self._sessions:
            logger.warning(f"Stream {job_id} already has an active session")
            return False

        log_handle = None
        try:
            cmd = self.command_builder.build_command(source_path, platforms)

            started_at = datetime.now(timezone.utc)
            log_file = self.log_file_for(job_id, started_at)
            log_handle = open(log_file, "ab")

            logger.info(
                f"Starting stream {job_id}: {source_path} -> "
                f"{len(self.command_builder.resolve_outputs(platforms))} output(s)"
            )

            try:
                process = subprocess.Popen(
                    cmd,
                    stdout=log_handle,
                    stderr=subprocess.STDOUT,
                    stdin=subprocess.DEVNULL,
                )
            except (OSError, ValueError) as e:
                raise SpawnFailure(f"Failed to spawn relay process: {e}", job_id=job_id) from e

        except Exception as e:
            logger.error(f"Failed to start stream {job_id}: {e}")
            if log_handle is not None:
                log_handle.close()
            await self._persist("mark_failed", job_id, str(e), None)
            self._record("record_start", "failed")
            return False

        session = ActiveSession(
            job_id=job_id,
            process=process,
            log_file=log_file,
            log_handle=log_handle,
            started_at=started_at,
            platforms=list(platforms),
            command=cmd,
        )
        self._sessions[job_id] = session

        # Exit handling may only persist once "active" has landed
        try:
            await self._persist("mark_active", job_id, started_at, str(log_file))
        finally:
            self._start_watcher(session)
        self._record("record_start", "started")
        self._update_active_gauge()

        logger.info(f"Stream {job_id} started (PID: {process.pid}, log: {log_file})")
        return True

    async def stop(self, job_id: str) -> bool:
        """
        Stop a stream job's relay process.

        Args:
            job_id: Stream job identifier

        Returns:
            True if a session was stopped, False if the job was not running
        """
        session = self._sessions.get(job_id)
        if session is None:
            logger.info(f"Stream {job_id} is not running")
            return False

        logger.info(f"Stopping stream {job_id} (PID: {session.pid})")
        self._terminate(session)

        if self.config.stop_timeout is not None:
            exited = await self._wait_for_exit(session, self.config.stop_timeout)
            if not exited:
                logger.warning(
                    f"Relay process {session.pid} ignored SIGTERM for "
                    f"{self.config.stop_timeout}s, force killing"
                )
                session.process.kill()

        session.close_log()
        self._release(session)

        await self._persist("mark_stopped", job_id, datetime.now(timezone.utc))
        self._record("record_exit", "stopped")

        logger.info(f"Stream {job_id} stopped")
        return True

    def _terminate(self, session: ActiveSession) -> None:
        if not session.is_running:
            logger.debug(f"Relay process {session.pid} already exited")
            return
        try:
            session.process.terminate()
        except ProcessLookupError:
            logger.debug(f"Relay process {session.pid} vanished before SIGTERM")

    async def _wait_for_exit(self, session: ActiveSession, timeout: float) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while session.process.poll() is None:
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(self.config.poll_interval)
        return True

    def _start_watcher(self, session: ActiveSession) -> None:
        session.watcher = asyncio.create_task(
            self._watch(session), name=f"relay-watch-{session.job_id}"
        )
        self._watchers.add(session.watcher)
        session.watcher.add_done_callback(self._watchers.discard)

    async def _watch(self, session: ActiveSession) -> None:
        """Wait for the process to exit, then hand it to exit handling."""
        while session.process.poll() is None:
            await asyncio.sleep(self.config.poll_interval)

        exit_code = session.process.returncode
        logger.info(f"Relay process for stream {session.job_id} exited with code {exit_code}")

        async with self.locks.hold(session.job_id):
            await self._handle_exit(session, exit_code)

    async def _handle_exit(self, session: ActiveSession, exit_code: Optional[int]) -> None:
        if self._sessions.get(session.job_id) is not session:
            # Stopped deliberately (or replaced); stop() already persisted.
            return

        session.close_log()
        self._release(session)
        ended_at = datetime.now(timezone.utc)

        if exit_code == 0:
            await self._persist("mark_completed", session.job_id, ended_at)
            self._record("record_exit", "completed")
            logger.info(f"Stream {session.job_id} completed")
        else:
            error = AbnormalExit(exit_code, job_id=session.job_id)
            await self._persist("mark_failed", session.job_id, str(error), ended_at)
            self._record("record_exit", "failed")
            logger.error(f"Stream {session.job_id} failed: {error} (log: {session.log_file})")

    def _release(self, session: ActiveSession) -> None:
        if self._sessions.get(session.job_id) is session:
            del self._sessions[session.job_id]
        self._update_active_gauge()

    async def _persist(self, method: str, job_id: str, *args: Any) -> None:
        """
        Write a status transition; failures are logged, never raised.

        A write that has been handed to its thread always finishes before
        this returns, even if the caller is cancelled meanwhile, so a later
        transition for the same stream can never be overtaken by it.
        """
        if self.store is None:
            return
        write = asyncio.ensure_future(
            asyncio.to_thread(getattr(self.store, method), job_id, *args)
        )
        try:
            await asyncio.shield(write)
        except asyncio.CancelledError:
            await asyncio.wait({write})
            self._log_write_error(method, job_id, write)
            raise
        except Exception as e:
            logger.error(f"Failed to persist {method} for stream {job_id}: {e}", exc_info=True)

    def _log_write_error(self, method: str, job_id: str, write: asyncio.Future) -> None:
        if not write.cancelled() and write.exception() is not None:
            logger.error(f"Failed to persist {method} for stream {job_id}: {write.exception()}")

    def _record(self, method: str, label: str) -> None:
        if self.metrics is not None:
            getattr(self.metrics, method)(label)

    def _update_active_gauge(self) -> None:
        if self.metrics is not None:
            self.metrics.set_active_sessions(len(self._sessions))

    def has_session(self, job_id: str) -> bool:
        return job_id in self._sessions

    def is_running(self, job_id: str) -> bool:
        session = self._sessions.get(job_id)
        return session is not None and session.is_running

    def active_job_ids(self) -> List[str]:
        return list(self._sessions)

    def get_status(self) -> Dict[str, Dict[str, Any]]:
        """
        Get status of every active session.

        Returns:
            Mapping of job id to session status information
        """
        status = {}
        for job_id, session in self._sessions.items():
            entry = {
                "pid": session.pid,
                "running": session.is_running,
                "started_at": session.started_at.isoformat(),
                "uptime_seconds": session.uptime_seconds,
                "log_file": str(session.log_file),
                "platforms": [platform.label() for platform in session.platforms],
            }

            try:
                proc = psutil.Process(session.pid)
                entry["cpu_percent"] = proc.cpu_percent(interval=None)
                entry["memory_mb"] = proc.memory_info().rss / 1024 / 1024
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                pass

            status[job_id] = entry
        return status

    async def close(self) -> None:
        """Cancel remaining watcher tasks. Call after every session is stopped."""
        watchers = list(self._watchers)
        for watcher in watchers:
            watcher.cancel()
        if watchers:
            await asyncio.gather(*watchers, return_exceptions=True)
        logger.info("Process supervisor closed")
