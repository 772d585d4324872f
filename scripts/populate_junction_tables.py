#!/usr/bin/env python3
"""
Populate grant_sectors / grant_instruments / grant_regions from the legacy
classification payloads stored on each grant.

Safe to re-run: classifications are get-or-create and junction inserts
ignore existing pairs.

Usage:
    python scripts/populate_junction_tables.py
    python scripts/populate_junction_tables.py --db data/bdns.db --batch-size 1000
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from bdns_sync.config import SyncSettings
from bdns_sync.storage.classification_store import JunctionNormalizer
from bdns_sync.storage.db import Database
from bdns_sync.storage.grant_store import GrantStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Populate classification junction tables")
    parser.add_argument("--db", help="SQLite database path (overrides BDNS_DB_PATH)")
    parser.add_argument("--batch-size", type=int, default=500, help="Grants read per query")
    args = parser.parse_args()

    db_path = args.db or SyncSettings.from_env().db_path
    db = Database(db_path)

    grant_store = GrantStore(db)
    total = grant_store.count()
    logger.info(f"Populating junction tables for {total} grants in {db_path}")

    stats = JunctionNormalizer(db).backfill(grant_store, batch_size=args.batch_size, progress=True)

    logger.info(
        f"Done: {stats['grants']} grants linked, {stats['failed']} skipped "
        f"({stats['sectors']} sectors, {stats['instruments']} instruments, "
        f"{stats['regions']} regions)"
    )
    return 0 if stats["failed"] == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
