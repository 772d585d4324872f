"""
Lightweight SQLite database wrapper.

Handles:
- Database initialization
- Schema migrations (one .sql file per migration, applied once)
- Connection management
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List
import logging


logger = logging.getLogger(__name__)


MIGRATIONS_DIR = Path(__file__).parent / "migrations"

# Seconds a connection waits on a locked database before failing
DEFAULT_BUSY_TIMEOUT = 30.0


class Database:
    """
    SQLite database wrapper for grants, classifications and sync runs.

    Usage:
        db = Database("bdns.db")
        with db.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM grants")
    """

    def __init__(
        self,
        path: str = "bdns.db",
        busy_timeout: float = DEFAULT_BUSY_TIMEOUT,
        migrations_dir: Path = MIGRATIONS_DIR,
    ):
        """
        Initialize database and apply pending migrations.

        Args:
            path: Path to SQLite database file
            busy_timeout: Seconds to wait for locks held by other connections
            migrations_dir: Directory holding *.sql migration files
        """
        self.path = str(path)
        self.busy_timeout = busy_timeout
        self.migrations_dir = Path(migrations_dir)

        # Ensure parent directory exists
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        applied = self.run_migrations()
        if applied:
            logger.info(f"Applied {len(applied)} migration(s): {', '.join(applied)}")

        logger.info(f"Database initialized: {self.path}")

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path, timeout=self.busy_timeout, check_same_thread=False)
        conn.row_factory = sqlite3.Row  # Enable column access by name
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def applied_migrations(self) -> List[str]:
        """Filenames of migrations already applied, in order."""
        with self.get_connection() as conn:
            self._ensure_migrations_table(conn)
            rows = conn.execute(
                "SELECT filename FROM schema_migrations ORDER BY filename"
            ).fetchall()
            return [row["filename"] for row in rows]

    def _ensure_migrations_table(self, conn: sqlite3.Connection):
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                filename TEXT PRIMARY KEY,
                applied_at TEXT DEFAULT CURRENT_TIMESTAMP
            );
            """
        )

    def run_migrations(self) -> List[str]:
        """
        Apply every pending migration, each inside its own transaction.

        Returns:
            Filenames applied by this call
        """
        done = set(self.applied_migrations())
        pending = sorted(
            p for p in self.migrations_dir.glob("*.sql") if p.name not in done
        )

        applied = []
        for migration in pending:
            self._apply_migration(migration)
            applied.append(migration.name)
        return applied

    def _apply_migration(self, migration: Path):
        sql = migration.read_text(encoding="utf-8")
        filename = migration.name.replace("'", "''")

        conn = self._connect()
        try:
            # executescript() commits first, so the transaction is explicit
            conn.executescript(
                "BEGIN;\n"
                f"{sql}\n;\n"
                f"INSERT INTO schema_migrations (filename) VALUES ('{filename}');\n"
                "COMMIT;"
            )
            logger.debug(f"Migration {migration.name} applied")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.rollback()
            logger.error(f"Migration {migration.name} failed: {e}")
            raise
        finally:
            conn.close()

    @contextmanager
    def get_connection(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """
        Get a database connection context manager.

        Automatically commits on success, rolls back on error, closes on exit.

        Args:
            immediate: Take the write lock up front (BEGIN IMMEDIATE), so a
                read-then-write sequence is atomic across processes

        Yields:
            sqlite3.Connection
        """
        conn = self._connect()
        if immediate:
            conn.isolation_level = None
            conn.execute("BEGIN IMMEDIATE")

        try:
            yield conn
            if conn.in_transaction:
                conn.commit()
        except Exception as e:
            if conn.in_transaction:
                conn.rollback()
            logger.debug(f"Database transaction rolled back: {e}")
            raise
        finally:
            conn.close()
