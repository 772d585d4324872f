import sqlite3
from datetime import timedelta

import pytest

from bdns_sync.core.domain_models import SyncStats, SyncStatus, SyncType
from bdns_sync.core.errors import ConflictError
from bdns_sync.core.time_utils import now_utc
from bdns_sync.storage.sync_run_store import STALE_RUN_MESSAGE, SyncRunStore


@pytest.fixture
def runs(db):
    return SyncRunStore(db)


def _count_runs(db):
    with db.get_connection() as conn:
        return conn.execute("SELECT COUNT(*) FROM sync_runs").fetchone()[0]


def test_begin_run_records_parameters(runs):
    run = runs.begin_run(SyncType.FULL, parameters={"page_size": 100})

    stored = runs.get_run(run.id)
    assert stored.status == SyncStatus.RUNNING
    assert stored.sync_type == SyncType.FULL
    assert stored.parameters == {"page_size": 100}
    assert runs.is_running()


def test_second_begin_run_conflicts_without_creating_a_row(db, runs):
    first = runs.begin_run(SyncType.INCREMENTAL)

    with pytest.raises(ConflictError) as exc_info:
        runs.begin_run(SyncType.FULL)

    assert exc_info.value.active_run_id == first.id
    assert _count_runs(db) == 1


def test_stale_run_is_failed_and_replaced(db, runs):
    stale = runs.begin_run(SyncType.COMPLETE)
    old = (now_utc() - timedelta(hours=25)).isoformat()
    with db.get_connection() as conn:
        conn.execute("UPDATE sync_runs SET started_at = ? WHERE id = ?", (old, stale.id))

    fresh = runs.begin_run(SyncType.INCREMENTAL)

    recovered = runs.get_run(stale.id)
    assert recovered.status == SyncStatus.FAILED
    assert recovered.error_message == STALE_RUN_MESSAGE
    assert [r.id for r in runs.active_runs()] == [fresh.id]


def test_update_progress_and_finish(runs):
    run = runs.begin_run(SyncType.INCREMENTAL)
    runs.set_totals(run.id, 3, 300)

    stats = SyncStats(processed_pages=1, processed_records=100, new_records=90, touched_records=10)
    runs.update_progress(run.id, stats)
    assert runs.get_run(run.id).stats == stats

    final = SyncStats(processed_pages=3, processed_records=298, new_records=250, failed_records=2)
    runs.finish(run.id, SyncStatus.COMPLETED, final)

    finished = runs.get_run(run.id)
    assert finished.status == SyncStatus.COMPLETED
    assert finished.finished_at is not None
    assert finished.total_pages == 3
    assert finished.total_records == 300
    assert finished.stats == final
    assert runs.latest_completed_run().id == run.id
    assert runs.active_runs() == []


def test_finish_does_not_reopen_terminal_runs(runs):
    run = runs.begin_run(SyncType.INCREMENTAL)
    runs.finish(run.id, SyncStatus.FAILED, SyncStats(), "boom")
    runs.finish(run.id, SyncStatus.COMPLETED, SyncStats(processed_pages=5))

    stored = runs.get_run(run.id)
    assert stored.status == SyncStatus.FAILED
    assert stored.error_message == "boom"
    assert stored.stats.processed_pages == 0


def test_finish_requires_terminal_status(runs):
    run = runs.begin_run(SyncType.INCREMENTAL)
    with pytest.raises(ValueError):
        runs.finish(run.id, SyncStatus.RUNNING, SyncStats())


def test_new_run_allowed_after_finish(runs):
    first = runs.begin_run(SyncType.INCREMENTAL)
    runs.finish(first.id, SyncStatus.COMPLETED, SyncStats())

    second = runs.begin_run(SyncType.INCREMENTAL)

    assert second.id != first.id
    assert runs.latest_run().id == second.id


def test_partial_index_allows_single_running_row(db):
    with db.get_connection() as conn:
        conn.execute(
            "INSERT INTO sync_runs (sync_type, status, started_at) VALUES ('full', 'running', '2024-01-01T00:00:00+00:00')"
        )
    with pytest.raises(sqlite3.IntegrityError):
        with db.get_connection() as conn:
            conn.execute(
                "INSERT INTO sync_runs (sync_type, status, started_at) VALUES ('full', 'running', '2024-01-02T00:00:00+00:00')"
            )


def _backdate(db, run_id, hours, column="started_at"):
    stamp = (now_utc() - timedelta(hours=hours)).isoformat()
    with db.get_connection() as conn:
        conn.execute(f"UPDATE sync_runs SET {column} = ? WHERE id = ?", (stamp, run_id))


def test_progress_is_not_written_once_run_was_recovered_as_stale(db, runs):
    overtaken = runs.begin_run(SyncType.COMPLETE)
    _backdate(db, overtaken.id, 25)
    runs.begin_run(SyncType.INCREMENTAL)

    written = runs.update_progress(
        overtaken.id, SyncStats(processed_pages=99, processed_records=9900)
    )

    stored = runs.get_run(overtaken.id)
    assert written == 0
    assert stored.status == SyncStatus.FAILED
    assert stored.stats.processed_pages == 0
    assert runs.set_totals(overtaken.id, 10, 1000) == 0


def test_update_progress_refreshes_heartbeat(runs):
    run = runs.begin_run(SyncType.INCREMENTAL)
    assert runs.get_run(run.id).heartbeat_at is None

    assert runs.update_progress(run.id, SyncStats(processed_pages=1)) == 1

    assert runs.get_run(run.id).heartbeat_at is not None


def test_recent_heartbeat_keeps_long_run_alive(db, runs):
    long_run = runs.begin_run(SyncType.COMPLETE)
    _backdate(db, long_run.id, 30)
    _backdate(db, long_run.id, 1, column="heartbeat_at")

    with pytest.raises(ConflictError):
        runs.begin_run(SyncType.INCREMENTAL)

    assert runs.get_run(long_run.id).status == SyncStatus.RUNNING


def test_old_heartbeat_marks_run_stale(db, runs):
    long_run = runs.begin_run(SyncType.COMPLETE)
    _backdate(db, long_run.id, 30)
    _backdate(db, long_run.id, 25, column="heartbeat_at")

    fresh = runs.begin_run(SyncType.INCREMENTAL)

    assert runs.get_run(long_run.id).status == SyncStatus.FAILED
    assert [r.id for r in runs.active_runs()] == [fresh.id]
