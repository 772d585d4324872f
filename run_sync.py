#!/usr/bin/env python3
"""
BDNS grant sync - command line runner.

Pulls grant announcements (convocatorias) from the BDNS public API into the
local SQLite store, keeping sectors/instruments/regions junction tables in
step.

Usage:
    python run_sync.py                        # Incremental sync (last 7 days)
    python run_sync.py --type full            # Current calendar year
    python run_sync.py --type complete        # Whole registry since 2008
    python run_sync.py --status               # Show the latest run
    python run_sync.py --active               # List running syncs
    python run_sync.py --backfill-links       # Rebuild junction tables
"""

import argparse
import json
import logging
import sys
from dataclasses import replace
from datetime import datetime
from pathlib import Path

from tqdm import tqdm

from bdns_sync.config import SyncSettings
from bdns_sync.core.domain_models import SyncStatus, SyncType
from bdns_sync.core.money import format_eur_amount
from bdns_sync.storage.classification_store import JunctionNormalizer
from bdns_sync.storage.db import Database
from bdns_sync.storage.grant_store import GrantStore
from bdns_sync.sync.control import list_active_syncs, start_sync, sync_status
from bdns_sync.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


# =============================================================================
# SETUP
# =============================================================================

def setup_logging(settings: SyncSettings) -> Path:
    """Log to a timestamped file under LOG_DIR and to the console."""
    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    log_file = log_dir / f"sync_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )
    return log_file


class ProgressBar:
    """tqdm bar fed by the orchestrator's on_progress callback."""

    def __init__(self):
        self.bar = None

    def __call__(self, stats, total_pages: int):
        if self.bar is None:
            self.bar = tqdm(total=total_pages, desc="Syncing pages", unit="page")
        self.bar.n = stats.processed_pages
        self.bar.set_postfix(
            new=stats.new_records,
            updated=stats.updated_records,
            failed=stats.failed_records,
        )
        self.bar.refresh()

    def close(self):
        if self.bar is not None:
            self.bar.close()


# =============================================================================
# COMMANDS
# =============================================================================

def run_sync(settings: SyncSettings, sync_type: str, show_progress: bool) -> int:
    progress = ProgressBar() if show_progress else None
    orchestrator = SyncOrchestrator.from_settings(settings, on_progress=progress)

    try:
        response = start_sync(orchestrator, sync_type, background=False)
    finally:
        if progress:
            progress.close()

    logger.info(response.message)
    run = orchestrator.runs.get_run(response.data["run_id"]) if "run_id" in response.data else None
    if run is None:
        print(f"\n{response.message}")
        return 1

    print_run_summary(run.to_dict())

    stats = orchestrator.grants.get_statistics()
    print(f"  Grants stored:      {stats['total_grants']} ({stats['open_grants']} open)")
    print(f"  Total funding:      {format_eur_amount(stats['total_amount'])}")
    print(f"  Average per grant:  {format_eur_amount(stats['average_amount'])}")
    print("=" * 70)

    return 0 if run.status == SyncStatus.COMPLETED else 1


def print_run_summary(run: dict):
    print("\n" + "=" * 70)
    print(f"SYNC RUN {run['id']} ({run['sync_type']}): {run['status'].upper()}")
    print("=" * 70)
    print(f"  Started:            {run['started_at']}")
    print(f"  Finished:           {run['finished_at'] or '-'}")
    print(f"  Pages:              {run['processed_pages']}/{run['total_pages'] or 0}")
    print(f"  Records processed:  {run['processed_records']}")
    print(f"  New:                {run['new_records']}")
    print(f"  Updated:            {run['updated_records']}")
    print(f"  Unchanged:          {run['touched_records']}")
    print(f"  Failed:             {run['failed_records']}")
    if run.get("error_message"):
        print(f"  Error:              {run['error_message']}")


def show_status(settings: SyncSettings) -> int:
    orchestrator = SyncOrchestrator.from_settings(settings)
    response = sync_status(orchestrator)
    if not response.success:
        print(response.message)
        return 1

    run = response.data["run"]
    if run is None:
        print(response.message)
        return 0

    print_run_summary(run)
    print("=" * 70)
    return 0


def show_active(settings: SyncSettings) -> int:
    orchestrator = SyncOrchestrator.from_settings(settings)
    response = list_active_syncs(orchestrator)
    print(response.message)
    for run in response.data.get("runs", []):
        print(json.dumps(run, indent=2, ensure_ascii=False))
    return 0 if response.success else 1


def backfill_links(settings: SyncSettings, batch_size: int, show_progress: bool) -> int:
    db = Database(settings.db_path)
    normalizer = JunctionNormalizer(db)
    stats = normalizer.backfill(GrantStore(db), batch_size=batch_size, progress=show_progress)

    print("\n" + "=" * 70)
    print("JUNCTION BACKFILL COMPLETE")
    print("=" * 70)
    print(f"  Grants linked:      {stats['grants']}")
    print(f"  Grants skipped:     {stats['failed']}")
    print(f"  Sector links:       {stats['sectors']}")
    print(f"  Instrument links:   {stats['instruments']}")
    print(f"  Region links:       {stats['regions']}")
    print("=" * 70)
    return 0


# =============================================================================
# MAIN
# =============================================================================

def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="BDNS grant sync")
    parser.add_argument(
        "--type",
        default=SyncType.INCREMENTAL.value,
        choices=[t.value for t in SyncType],
        help="Sync type (default: incremental)",
    )
    parser.add_argument("--status", action="store_true", help="Show the latest sync run")
    parser.add_argument("--active", action="store_true", help="List running sync runs")
    parser.add_argument(
        "--backfill-links",
        action="store_true",
        help="Rebuild junction tables from stored legacy payloads",
    )
    parser.add_argument("--db", help="SQLite database path (overrides BDNS_DB_PATH)")
    parser.add_argument("--page-size", type=int, help="Records per API page")
    parser.add_argument("--workers", type=int, help="Threads reconciling records per page")
    parser.add_argument("--batch-size", type=int, default=500, help="Backfill batch size")
    parser.add_argument("--no-progress", action="store_true", help="Disable progress bars")
    args = parser.parse_args(argv)

    settings = SyncSettings.from_env()
    if args.db:
        settings = replace(settings, db_path=args.db)
    if args.page_size:
        settings = replace(settings, page_size=args.page_size)
    if args.workers:
        settings = replace(settings, record_workers=args.workers)

    log_file = setup_logging(settings)
    logger.info(f"Logging to {log_file}")

    if args.status:
        return show_status(settings)
    if args.active:
        return show_active(settings)
    if args.backfill_links:
        return backfill_links(settings, args.batch_size, not args.no_progress)
    return run_sync(settings, args.type, not args.no_progress)


if __name__ == "__main__":
    sys.exit(main())
