"""Status Store - durable stream status in PostgreSQL.

Reads due scheduled streams and writes every lifecycle transition back to
the ``streams`` table. Each transition is a single UPDATE committed on its
own, so no transition ever needs a rollback of an earlier one.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import Engine, create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import QueuePool

from stream_worker.config import WorkerConfig
from stream_worker.models import StreamJob, StreamStatus

logger = logging.getLogger(__name__)

_DUE_JOBS_SQL = text(
    "SELECT s.id, s.title, s.video_path, s.status, s.scheduled_at, "
    "jsonb_agg(to_jsonb(p) ORDER BY p.id) AS platforms "
    "FROM streams s "
    "JOIN users u ON s.user_id = u.id "
    "JOIN stream_platforms p ON s.id = p.stream_id "
    "WHERE s.status = :status "
    "AND s.scheduled_at <= :now "
    "AND u.plan_active = TRUE "
    "GROUP BY s.id "
    "ORDER BY s.scheduled_at"
)


class StatusStore:
    """Reads and writes stream status using PostgreSQL.

    Example:
        >>> store = StatusStore(WorkerConfig())
        >>> jobs = store.fetch_due_jobs(datetime.now(timezone.utc))
        >>> store.mark_failed(jobs[0].id, "Video file not found: /uploads/a.mp4")
    """

    def __init__(self, config: WorkerConfig):
        """Initialize StatusStore with configuration.

        Args:
            config: WorkerConfig with the database URL and pool settings
        """
        self.config = config
        self.engine: Engine = self._create_engine()

    def _create_engine(self) -> Engine:
        """Create SQLAlchemy engine with connection pooling.

        Returns:
            Configured SQLAlchemy Engine
        """
        return create_engine(
            self.config.database_url,
            poolclass=QueuePool,
            pool_size=self.config.db_pool_size,
            max_overflow=self.config.db_max_overflow,
            pool_timeout=self.config.db_pool_timeout,
            pool_recycle=self.config.db_pool_recycle,
            pool_pre_ping=True,  # Verify connections before using
        )

    def check_connection(self) -> None:
        """Verify the database is reachable.

        Raises:
            SQLAlchemyError: If the database cannot be reached
        """
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("Connected to PostgreSQL database")

    def fetch_due_jobs(self, now: datetime) -> List[StreamJob]:
        """Get scheduled streams that are due and belong to an active plan.

        Args:
            now: Current time; streams scheduled at or before it are due

        Returns:
            Due stream jobs with their platforms, oldest first
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _DUE_JOBS_SQL,
                {"status": StreamStatus.SCHEDULED.value, "now": now},
            )
            rows = result.mappings().all()

        jobs = []
        for row in rows:
            try:
                jobs.append(StreamJob.model_validate(dict(row)))
            except ValueError as e:
                logger.error(f"Skipping malformed stream row {row.get('id')}: {e}")
        return jobs

    def mark_active(self, job_id: str, started_at: datetime, log_file: str) -> None:
        """Record that a relay process is running for the stream."""
        self._execute(
            "UPDATE streams SET status = :status, started_at = :started_at, "
            "ended_at = NULL, error = NULL, log_file = :log_file WHERE id = :id",
            {
                "status": StreamStatus.ACTIVE.value,
                "started_at": started_at,
                "log_file": log_file,
                "id": job_id,
            },
        )

    def mark_completed(self, job_id: str, ended_at: datetime) -> None:
        """Record a clean relay exit."""
        self._set_final_status(job_id, StreamStatus.COMPLETED, ended_at)

    def mark_stopped(self, job_id: str, ended_at: datetime) -> None:
        """Record a deliberate stop."""
        self._set_final_status(job_id, StreamStatus.STOPPED, ended_at)

    def mark_failed(self, job_id: str, error: str, ended_at: Optional[datetime] = None) -> None:
        """Record a failure with its error text.

        Args:
            job_id: Stream id
            error: Error description shown to the user
            ended_at: End time, if the stream had been running
        """
        if ended_at is None:
            sql = "UPDATE streams SET status = :status, error = :error WHERE id = :id"
        else:
            sql = (
                "UPDATE streams SET status = :status, error = :error, "
                "ended_at = :ended_at WHERE id = :id"
            )
        self._execute(
            sql,
            {
                "status": StreamStatus.FAILED.value,
                "error": error,
                "ended_at": ended_at,
                "id": job_id,
            },
        )

    def fail_orphaned_sessions(self, error: str) -> int:
        """Mark every stream still marked active as failed.

        Only valid at startup, before this worker has started anything:
        an active row cannot have a live process behind it then.

        Returns:
            Number of streams updated
        """
        return self._execute(
            "UPDATE streams SET status = :failed, error = :error, ended_at = :ended_at "
            "WHERE status = :active",
            {
                "failed": StreamStatus.FAILED.value,
                "active": StreamStatus.ACTIVE.value,
                "error": error,
                "ended_at": datetime.now(timezone.utc),
            },
        )

    def _set_final_status(self, job_id: str, status: StreamStatus, ended_at: datetime) -> None:
        self._execute(
            "UPDATE streams SET status = :status, ended_at = :ended_at WHERE id = :id",
            {"status": status.value, "ended_at": ended_at, "id": job_id},
        )

    def _execute(self, sql: str, params: dict) -> int:
        try:
            with self.engine.connect() as conn:
                result = conn.execute(text(sql), params)
                conn.commit()
            return result.rowcount
        except SQLAlchemyError as e:
            logger.error(f"Database error updating stream {params.get('id', '*')}: {e}")
            raise

    def close(self) -> None:
        """Dispose of the connection pool."""
        self.engine.dispose()
        logger.info("StatusStore connection pool closed")
