"""
SQLite-durable submission queue for execution tasks.

CRITICAL PROPERTIES:
1. One job per order id: enqueue of a known id is ignored (dedup)
2. claim() atomically moves a job to active and counts the attempt
3. Jobs left active by a crash are re-queued by recover() (at-least-once)
4. Delayed retries: a retried job becomes claimable at available_at

STATES:
    queued -> active -> done
                     -> queued (retry)
                     -> failed
"""

import json
import sqlite3
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from swapdesk.errors import QueueError
from swapdesk.logging import get_logger, LogStream


MEMORY_DB = ":memory:"


class JobState:
    """Job state identifiers."""
    QUEUED = "queued"
    ACTIVE = "active"
    DONE = "done"
    FAILED = "failed"

    ALL = (QUEUED, ACTIVE, DONE, FAILED)


@dataclass(frozen=True)
class Job:
    """A claimed or inspected queue entry."""
    order_id: str
    state: str
    attempts: int
    available_at: float
    created_at: float
    payload: Dict[str, Any] = field(default_factory=dict)
    last_error: Optional[str] = None

    @property
    def attempt(self) -> int:
        """1-based number of the current (or last) attempt."""
        return self.attempts


class SubmissionQueue:
    """
    Durable FIFO of execution tasks keyed by order id.

    USAGE:
        queue = SubmissionQueue(Path("data/queue.db"))

        queue.enqueue(order_id)                 # False if already known
        job = queue.claim()                     # None if nothing is due
        queue.retry(job.order_id, delay=2.0, error="venue timeout")
        queue.complete(job.order_id)
    """

    CREATE_TABLE_SQL = """
        CREATE TABLE IF NOT EXISTS jobs (
            order_id TEXT PRIMARY KEY,
            payload TEXT NOT NULL,
            state TEXT NOT NULL,
            attempts INTEGER NOT NULL DEFAULT 0,
            available_at REAL NOT NULL,
            created_at REAL NOT NULL,
            updated_at REAL NOT NULL,
            last_error TEXT
        )
    """

    CREATE_INDEX_SQL = """
        CREATE INDEX IF NOT EXISTS idx_jobs_due
        ON jobs (state, available_at, created_at)
    """

    def __init__(self, db_path: Union[Path, str], clock: Callable[[], float] = time.time):
        """
        Args:
            db_path: SQLite database file, or ":memory:"
            clock: Epoch seconds source (injectable for tests)
        """
        self.db_path = db_path
        self._clock = clock
        self.logger = get_logger(LogStream.QUEUE)

        self._lock = threading.Lock()
        self._closed = False
        self._listeners: List[Callable[[str], None]] = []

        path = str(db_path)
        if path != MEMORY_DB:
            Path(path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(path, check_same_thread=False)
        if path != MEMORY_DB:
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.isolation_level = None
        self._conn.row_factory = sqlite3.Row

        self._conn.execute(self.CREATE_TABLE_SQL)
        self._conn.execute(self.CREATE_INDEX_SQL)

        self.logger.info("SubmissionQueue initialized", extra={"db_path": path})

    # ========================================================================
    # LISTENERS
    # ========================================================================

    def add_listener(self, callback: Callable[[str], None]) -> None:
        """Call callback(order_id) whenever a job becomes claimable."""
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[str], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify(self, order_id: str) -> None:
        for callback in list(self._listeners):
            try:
                callback(order_id)
            except Exception as e:
                # Listener failures never affect the queue
                self.logger.error(
                    "Queue listener failed",
                    extra={"order_id": order_id, "error": str(e)},
                    exc_info=True
                )

    # ========================================================================
    # PRODUCER SIDE
    # ========================================================================

    def enqueue(self, order_id: str, payload: Optional[Dict[str, Any]] = None) -> bool:
        """
        Add a job for order_id.

        Returns:
            True if queued, False if a job for this order already exists

        Raises:
            QueueError: Write failed
        """
        now = self._clock()
        body = json.dumps(payload or {}, sort_keys=True, default=str)

        with self._lock:
            self._check_open()
            try:
                cursor = self._conn.execute(
                    """
                    INSERT OR IGNORE INTO jobs (
                        order_id, payload, state, attempts, available_at, created_at, updated_at
                    ) VALUES (?, ?, ?, 0, ?, ?, ?)
                    """,
                    (order_id, body, JobState.QUEUED, now, now, now),
                )
                added = cursor.rowcount > 0
            except sqlite3.Error as e:
                raise QueueError(f"Failed to enqueue {order_id}: {e}") from e

        if added:
            self.logger.info(f"Job enqueued: {order_id}", extra={"order_id": order_id})
            self._notify(order_id)
        else:
            self.logger.info(f"Job already known, ignored: {order_id}", extra={"order_id": order_id})
        return added

    # ========================================================================
    # CONSUMER SIDE
    # ========================================================================

    def claim(self) -> Optional[Job]:
        """
        Take the oldest due job and mark it active.

        Returns:
            The job with attempts already incremented, or None
        """
        now = self._clock()

        with self._lock:
            self._check_open()
            conn = self._conn
            try:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute(
                    """
                    SELECT order_id FROM jobs
                    WHERE state = ? AND available_at <= ?
                    ORDER BY available_at, created_at
                    LIMIT 1
                    """,
                    (JobState.QUEUED, now),
                ).fetchone()

                if row is None:
                    conn.execute("COMMIT")
                    return None

                conn.execute(
                    """
                    UPDATE jobs SET state = ?, attempts = attempts + 1, updated_at = ?
                    WHERE order_id = ?
                    """,
                    (JobState.ACTIVE, now, row["order_id"]),
                )
                job_row = self._fetch_row(row["order_id"])
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                conn.rollback()
                raise QueueError(f"Failed to claim job: {e}") from e

        job = self._row_to_job(job_row)
        self.logger.debug(f"Job claimed: {job.order_id}", extra={
            "order_id": job.order_id,
            "attempt": job.attempt,
        })
        return job

    def retry(self, order_id: str, delay: float, error: Optional[str] = None) -> None:
        """Put an active job back, claimable after delay seconds."""
        now = self._clock()
        self._set_state(
            order_id,
            JobState.QUEUED,
            available_at=now + max(0.0, delay),
            error=error,
        )
        self.logger.info(f"Job scheduled for retry: {order_id}", extra={
            "order_id": order_id,
            "delay_seconds": delay,
            "error": error,
        })
        self._notify(order_id)

    def complete(self, order_id: str) -> None:
        self._set_state(order_id, JobState.DONE)
        self.logger.debug(f"Job completed: {order_id}", extra={"order_id": order_id})

    def fail(self, order_id: str, error: Optional[str] = None) -> None:
        """Mark a job permanently failed. It is never claimed again."""
        self._set_state(order_id, JobState.FAILED, error=error)
        self.logger.warning(f"Job failed: {order_id}", extra={
            "order_id": order_id,
            "error": error,
        })

    def recover(self) -> int:
        """
        Re-queue jobs left active by an interrupted process.

        Returns:
            Number of jobs re-queued
        """
        now = self._clock()
        with self._lock:
            self._check_open()
            try:
                cursor = self._conn.execute(
                    "UPDATE jobs SET state = ?, available_at = ?, updated_at = ? WHERE state = ?",
                    (JobState.QUEUED, now, now, JobState.ACTIVE),
                )
                count = cursor.rowcount
            except sqlite3.Error as e:
                raise QueueError(f"Failed to recover jobs: {e}") from e

        if count:
            self.logger.warning(f"Recovered {count} interrupted job(s)", extra={"count": count})
        return count

    def _set_state(
        self,
        order_id: str,
        state: str,
        available_at: Optional[float] = None,
        error: Optional[str] = None,
    ) -> None:
        now = self._clock()
        with self._lock:
            self._check_open()
            try:
                if available_at is None:
                    cursor = self._conn.execute(
                        """
                        UPDATE jobs SET state = ?, last_error = COALESCE(?, last_error), updated_at = ?
                        WHERE order_id = ?
                        """,
                        (state, error, now, order_id),
                    )
                else:
                    cursor = self._conn.execute(
                        """
                        UPDATE jobs SET state = ?, available_at = ?,
                            last_error = COALESCE(?, last_error), updated_at = ?
                        WHERE order_id = ?
                        """,
                        (state, available_at, error, now, order_id),
                    )
            except sqlite3.Error as e:
                raise QueueError(f"Failed to update job {order_id}: {e}") from e

        if cursor.rowcount == 0:
            raise QueueError(f"No job for order {order_id}")

    # ========================================================================
    # INSPECTION
    # ========================================================================

    def get(self, order_id: str) -> Optional[Job]:
        with self._lock:
            self._check_open()
            row = self._fetch_row(order_id)
        return self._row_to_job(row) if row is not None else None

    def next_due_in(self) -> Optional[float]:
        """Seconds until the earliest queued job is due (0 if due now), None if none queued."""
        with self._lock:
            self._check_open()
            row = self._conn.execute(
                "SELECT MIN(available_at) AS due FROM jobs WHERE state = ?",
                (JobState.QUEUED,),
            ).fetchone()

        if row is None or row["due"] is None:
            return None
        return max(0.0, row["due"] - self._clock())

    def counts(self) -> Dict[str, int]:
        """Number of jobs per state."""
        with self._lock:
            self._check_open()
            rows = self._conn.execute(
                "SELECT state, COUNT(*) AS n FROM jobs GROUP BY state"
            ).fetchall()

        result = {state: 0 for state in JobState.ALL}
        for row in rows:
            result[row["state"]] = row["n"]
        return result

    def _fetch_row(self, order_id: str) -> Optional[sqlite3.Row]:
        return self._conn.execute(
            "SELECT * FROM jobs WHERE order_id = ?",
            (order_id,)
        ).fetchone()

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> Job:
        return Job(
            order_id=row["order_id"],
            state=row["state"],
            attempts=row["attempts"],
            available_at=row["available_at"],
            created_at=row["created_at"],
            payload=json.loads(row["payload"]),
            last_error=row["last_error"],
        )

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def _check_open(self) -> None:
        if self._closed:
            raise QueueError("SubmissionQueue is closed")

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._conn.close()

        self.logger.info("SubmissionQueue closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
