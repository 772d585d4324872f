from bdns_sync.storage.db import Database


EXPECTED_TABLES = {
    "grants",
    "sectors",
    "instruments",
    "regions",
    "grant_sectors",
    "grant_instruments",
    "grant_regions",
    "sync_runs",
    "schema_migrations",
}


def _tables(db):
    with db.get_connection() as conn:
        rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
        return {row["name"] for row in rows}


def test_database_creates_schema(db):
    assert EXPECTED_TABLES <= _tables(db)
    assert db.applied_migrations() == ["0001_initial_schema.sql", "0002_sync_run_heartbeat.sql"]


def test_migrations_are_applied_once(tmp_path):
    path = tmp_path / "bdns.db"
    Database(path)

    reopened = Database(path)

    assert reopened.run_migrations() == []
    assert reopened.applied_migrations() == ["0001_initial_schema.sql", "0002_sync_run_heartbeat.sql"]


def test_new_migration_file_is_applied(tmp_path):
    migrations = tmp_path / "migrations"
    migrations.mkdir()
    (migrations / "0001_first.sql").write_text("CREATE TABLE first (id INTEGER PRIMARY KEY);")
    db = Database(tmp_path / "a.db", migrations_dir=migrations)

    (migrations / "0002_second.sql").write_text("CREATE TABLE second (id INTEGER PRIMARY KEY);")

    assert db.run_migrations() == ["0002_second.sql"]
    assert {"first", "second"} <= _tables(db)


def test_failed_migration_is_not_recorded(tmp_path):
    migrations = tmp_path / "migrations"
    migrations.mkdir()
    (migrations / "0001_bad.sql").write_text(
        "CREATE TABLE partial (id INTEGER PRIMARY KEY);\nINSERT INTO missing_table VALUES (1);"
    )

    try:
        Database(tmp_path / "b.db", migrations_dir=migrations)
    except Exception:
        pass
    else:
        assert False, "Expected the broken migration to raise"

    migrations.joinpath("0001_bad.sql").unlink()
    db = Database(tmp_path / "b.db", migrations_dir=migrations)
    assert db.applied_migrations() == []
    assert "partial" not in _tables(db)


def test_connection_rolls_back_on_error(db):
    try:
        with db.get_connection() as conn:
            conn.execute(
                "INSERT INTO sectors (code, name, created_at) VALUES ('A', 'Agricultura', 'now')"
            )
            raise RuntimeError("abort")
    except RuntimeError:
        pass

    with db.get_connection() as conn:
        assert conn.execute("SELECT COUNT(*) FROM sectors").fetchone()[0] == 0
