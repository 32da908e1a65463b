"""
Stream worker entry point.

Wires the status store, process supervisor, dispatch engine, scheduler and
command channel together, runs until SIGTERM/SIGINT, then drains every
active relay session before exiting.
"""

import asyncio
import logging
import signal
import sys
from typing import Optional

from redis.asyncio import Redis

from relay_manager.config import RelayConfig
from relay_manager.supervisor import ProcessSupervisor
from stream_worker.command_listener import CommandChannelListener
from stream_worker.config import WorkerConfig, get_config
from stream_worker.dispatch import DispatchEngine
from stream_worker.logging_config import configure_logging
from stream_worker.metrics import WorkerMetrics
from stream_worker.scheduler import SchedulerTrigger
from stream_worker.status_store import StatusStore

logger = logging.getLogger(__name__)

ORPHANED_SESSION_ERROR = "Worker restarted while stream was active"


class WorkerStartupError(Exception):
    """The worker cannot reach a service it needs to run."""


class StreamWorker:
    """Long-running multistream worker."""

    def __init__(
        self,
        config: WorkerConfig,
        relay_config: Optional[RelayConfig] = None,
        store: Optional[StatusStore] = None,
        redis_client: Optional[Redis] = None,
        metrics: Optional[WorkerMetrics] = None,
    ):
        """
        Initialize the worker and its components.

        Args:
            config: Worker configuration
            relay_config: Relay configuration (read from environment if not provided)
            store: Status store (created from config if not provided)
            redis_client: Redis client (created from config if not provided)
            metrics: Metrics recorder (created if not provided)
        """
        self.config = config
        self.metrics = metrics or WorkerMetrics()
        self.store = store or StatusStore(config)

        self.supervisor = ProcessSupervisor(
            store=self.store,
            log_dir=config.log_dir,
            config=relay_config,
            metrics=self.metrics,
        )
        self.engine = DispatchEngine(self.supervisor, metrics=self.metrics)

        self.scheduler = SchedulerTrigger(
            store=self.store,
            engine=self.engine,
            upload_dir=config.upload_dir,
            interval_seconds=config.scheduler_interval_seconds,
            align_to_clock=config.scheduler_align_to_clock,
            metrics=self.metrics,
        )

        if redis_client is None:
            redis_client = Redis.from_url(config.redis_url, decode_responses=True)
        self.listener = CommandChannelListener(
            redis_client,
            self.engine,
            start_channel=config.start_channel,
            stop_channel=config.stop_channel,
            metrics=self.metrics,
        )

        self._stop_event: Optional[asyncio.Event] = None

    async def startup(self) -> None:
        """
        Connect to external services and start the trigger loops.

        Raises:
            WorkerStartupError: If PostgreSQL or Redis is unreachable
        """
        logger.info("Starting streaming worker...")

        try:
            await asyncio.to_thread(self.store.check_connection)
        except Exception as e:
            raise WorkerStartupError(f"Database connection error: {e}") from e

        try:
            await self.listener.connect()
        except Exception as e:
            raise WorkerStartupError(f"Redis connection error: {e}") from e

        if self.config.reconcile_orphans_on_startup:
            orphaned = await asyncio.to_thread(
                self.store.fail_orphaned_sessions, ORPHANED_SESSION_ERROR
            )
            if orphaned:
                logger.warning(f"Marked {orphaned} orphaned active stream(s) as failed")

        if self.config.metrics_port:
            self.metrics.serve(self.config.metrics_port)

        self.scheduler.start()
        self.listener.start()
        logger.info("Streaming worker started")

    async def shutdown(self) -> None:
        """Stop the triggers, drain every active session, close connections."""
        logger.info("Shutting down...")

        # Ticks and messages still in flight see REJECTED from here on
        self.engine.stop_accepting()
        await self.listener.stop()
        await self.scheduler.stop()

        stopped = await self.engine.shutdown()
        logger.info(f"Stopped {stopped} active stream(s)")

        await self.supervisor.close()
        await self._close_clients()
        logger.info("Shutdown complete")

    async def _close_clients(self) -> None:
        try:
            await self.listener.close()
        except Exception as e:
            logger.warning(f"Error closing Redis client: {e}")
        self.store.close()

    def request_shutdown(self) -> None:
        """Ask a running worker to shut down."""
        if self._stop_event is not None:
            self._stop_event.set()

    async def run(self) -> None:
        """Run until a termination signal arrives."""
        self._stop_event = asyncio.Event()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except NotImplementedError:
                # Windows event loops do not support signal handlers
                pass

        try:
            await self.startup()
        except WorkerStartupError:
            await self._close_clients()
            raise

        try:
            await self._stop_event.wait()
        finally:
            await self.shutdown()


def main() -> int:
    """Console entry point."""
    config = get_config()
    configure_logging(config.log_level, config.log_format)

    try:
        asyncio.run(StreamWorker(config).run())
    except WorkerStartupError as e:
        logger.critical(f"Worker error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
