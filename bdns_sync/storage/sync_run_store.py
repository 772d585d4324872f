"""
Storage layer for sync runs.

The sync_runs table is the only signal used to decide whether a sync is
active. Claiming a run is a check-and-set inside an immediate transaction,
backed by a partial unique index allowing a single 'running' row.
"""

import json
import logging
import sqlite3
from datetime import timedelta
from typing import Any, Dict, List, Optional

from bdns_sync.core.domain_models import SyncRun, SyncStats, SyncStatus, SyncType
from bdns_sync.core.errors import ConflictError
from bdns_sync.core.time_utils import now_utc, parse_timestamp
from .db import Database


logger = logging.getLogger(__name__)


DEFAULT_STALE_AFTER = timedelta(hours=24)

STALE_RUN_MESSAGE = "Stale run: no completion recorded before the watchdog threshold"


class SyncRunStore:
    """
    Tracks sync run lifecycle and progress counters.

    Usage:
        runs = SyncRunStore(db)
        run = runs.begin_run(SyncType.INCREMENTAL)
        runs.update_progress(run.id, stats)
        runs.finish(run.id, SyncStatus.COMPLETED, stats)
    """

    def __init__(self, db: Database, stale_after: timedelta = DEFAULT_STALE_AFTER):
        """
        Initialize run store.

        Args:
            db: Shared Database
            stale_after: Age after which a 'running' row is presumed dead
        """
        self.db = db
        self.stale_after = stale_after

    def begin_run(self, sync_type: SyncType, parameters: Optional[Dict[str, Any]] = None) -> SyncRun:
        """
        Claim the single running slot and create a new run.

        A running row whose last heartbeat (or start, before the first
        heartbeat) is older than stale_after is marked failed first.

        Args:
            sync_type: Kind of sync
            parameters: Run parameters stored for diagnosis

        Returns:
            The new SyncRun

        Raises:
            ConflictError: If another run is running (nothing is created)
        """
        sync_type = SyncType(sync_type)
        now = now_utc()

        try:
            with self.db.get_connection(immediate=True) as conn:
                active = conn.execute(
                    """
                    SELECT id, started_at, COALESCE(heartbeat_at, started_at) AS last_seen
                    FROM sync_runs WHERE status = ? LIMIT 1
                    """,
                    (SyncStatus.RUNNING.value,),
                ).fetchone()

                if active is not None:
                    last_seen = parse_timestamp(active["last_seen"])
                    if now - last_seen < self.stale_after:
                        raise ConflictError(active["id"])

                    logger.warning(
                        f"Sync run {active['id']} last seen at {active['last_seen']} "
                        f"looks stale, marking it failed"
                    )
                    conn.execute(
                        """
                        UPDATE sync_runs
                        SET status = ?, finished_at = ?, error_message = ?
                        WHERE id = ?
                        """,
                        (SyncStatus.FAILED.value, now.isoformat(), STALE_RUN_MESSAGE, active["id"]),
                    )

                cursor = conn.execute(
                    """
                    INSERT INTO sync_runs (sync_type, status, parameters_json, started_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (
                        sync_type.value,
                        SyncStatus.RUNNING.value,
                        json.dumps(parameters or {}),
                        now.isoformat(),
                    ),
                )
                run_id = cursor.lastrowid

        except sqlite3.IntegrityError as e:
            # Another writer won the partial unique index
            raise ConflictError() from e

        logger.info(f"Sync run {run_id} started (type: {sync_type.value})")
        return SyncRun(
            id=run_id,
            sync_type=sync_type,
            status=SyncStatus.RUNNING,
            started_at=now,
            parameters=parameters or {},
        )

    def set_totals(self, run_id: int, total_pages: int, total_records: int) -> int:
        """Record the expected size of a run. Returns 0 if it is no longer running."""
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                """
                UPDATE sync_runs SET total_pages = ?, total_records = ?, heartbeat_at = ?
                WHERE id = ? AND status = 'running'
                """,
                (total_pages, total_records, now_utc().isoformat(), run_id),
            )
            return cursor.rowcount

    def update_progress(self, run_id: int, stats: SyncStats) -> int:
        """
        Persist the run's counters and refresh its heartbeat.

        Only a running row is updated.

        Returns:
            Rows updated: 0 means the run was finished or failed elsewhere
        """
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                """
                UPDATE sync_runs SET
                    processed_pages = :processed_pages,
                    processed_records = :processed_records,
                    new_records = :new_records,
                    updated_records = :updated_records,
                    touched_records = :touched_records,
                    failed_records = :failed_records,
                    heartbeat_at = :heartbeat_at
                WHERE id = :id AND status = 'running'
                """,
                dict(stats.as_dict(), id=run_id, heartbeat_at=now_utc().isoformat()),
            )
            return cursor.rowcount

    def finish(
        self,
        run_id: int,
        status: SyncStatus,
        stats: SyncStats,
        error_message: Optional[str] = None,
    ):
        """
        Flush final counters and move the run to a terminal status.

        Terminal runs are never reopened: only a running row is updated.
        """
        status = SyncStatus(status)
        if status == SyncStatus.RUNNING:
            raise ValueError("finish() requires a terminal status")

        with self.db.get_connection() as conn:
            cursor = conn.execute(
                """
                UPDATE sync_runs SET
                    status = :status,
                    finished_at = :finished_at,
                    error_message = :error_message,
                    processed_pages = :processed_pages,
                    processed_records = :processed_records,
                    new_records = :new_records,
                    updated_records = :updated_records,
                    touched_records = :touched_records,
                    failed_records = :failed_records
                WHERE id = :id AND status = 'running'
                """,
                dict(
                    stats.as_dict(),
                    id=run_id,
                    status=status.value,
                    finished_at=now_utc().isoformat(),
                    error_message=error_message,
                ),
            )
            if cursor.rowcount == 0:
                logger.warning(f"Sync run {run_id} was not running, status left unchanged")
                return

        logger.info(f"Sync run {run_id} finished: {status.value}")

    def get_run(self, run_id: int) -> Optional[SyncRun]:
        with self.db.get_connection() as conn:
            row = conn.execute("SELECT * FROM sync_runs WHERE id = ?", (run_id,)).fetchone()
            return self._row_to_run(row) if row else None

    def latest_run(self) -> Optional[SyncRun]:
        """Most recently started run, or None."""
        with self.db.get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM sync_runs ORDER BY started_at DESC, id DESC LIMIT 1"
            ).fetchone()
            return self._row_to_run(row) if row else None

    def latest_completed_run(self) -> Optional[SyncRun]:
        with self.db.get_connection() as conn:
            row = conn.execute(
                """
                SELECT * FROM sync_runs WHERE status = 'completed'
                ORDER BY finished_at DESC, id DESC LIMIT 1
                """
            ).fetchone()
            return self._row_to_run(row) if row else None

    def active_runs(self) -> List[SyncRun]:
        """Running runs: zero or one entries."""
        with self.db.get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM sync_runs WHERE status = 'running' ORDER BY id"
            ).fetchall()
            return [self._row_to_run(row) for row in rows]

    def is_running(self) -> bool:
        latest = self.latest_run()
        return latest is not None and latest.is_running

    def _row_to_run(self, row) -> SyncRun:
        return SyncRun(
            id=row["id"],
            sync_type=SyncType(row["sync_type"]),
            status=SyncStatus(row["status"]),
            started_at=parse_timestamp(row["started_at"]),
            finished_at=parse_timestamp(row["finished_at"]),
            heartbeat_at=parse_timestamp(row["heartbeat_at"]),
            total_pages=row["total_pages"],
            total_records=row["total_records"],
            stats=SyncStats(
                processed_pages=row["processed_pages"],
                processed_records=row["processed_records"],
                new_records=row["new_records"],
                updated_records=row["updated_records"],
                touched_records=row["touched_records"],
                failed_records=row["failed_records"],
            ),
            parameters=json.loads(row["parameters_json"] or "{}"),
            error_message=row["error_message"],
        )
