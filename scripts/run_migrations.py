#!/usr/bin/env python3
"""
Apply pending schema migrations.

Each .sql file under bdns_sync/storage/migrations is applied once, inside a
transaction, and recorded in schema_migrations.

Usage:
    python scripts/run_migrations.py
    python scripts/run_migrations.py --db data/bdns.db
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from bdns_sync.config import SyncSettings
from bdns_sync.storage.db import Database

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Apply BDNS schema migrations")
    parser.add_argument("--db", help="SQLite database path (overrides BDNS_DB_PATH)")
    args = parser.parse_args()

    db_path = args.db or SyncSettings.from_env().db_path

    # Database() applies pending migrations on open
    db = Database(db_path)

    applied = db.applied_migrations()
    logger.info(f"{len(applied)} migration(s) applied to {db_path}:")
    for filename in applied:
        logger.info(f"  {filename}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
