"""Tests for the connection pool and schema migrations."""

import pytest
from sqlalchemy import text

from tasktree.core.exceptions import DatabaseError
from tasktree.database.connection import ConnectionPool
from tasktree.database.migrations import Migration, MigrationRunner, create_database_schema


@pytest.fixture
async def bare_pool(db_path):
    pool = ConnectionPool(db_path)
    await pool.initialize()
    yield pool
    await pool.close()


async def test_pool_requires_initialize(db_path):
    pool = ConnectionPool(db_path)
    with pytest.raises(DatabaseError) as exc_info:
        async with pool.read_transaction():
            pass
    assert exc_info.value.error_code == "POOL_NOT_INIT"


async def test_pragmas_applied(bare_pool):
    async with bare_pool.read_transaction() as conn:
        foreign_keys = (await conn.execute(text("PRAGMA foreign_keys"))).scalar()
        journal_mode = (await conn.execute(text("PRAGMA journal_mode"))).scalar()
    assert foreign_keys == 1
    assert journal_mode.lower() == "wal"
    assert await bare_pool.health_check() is True


async def test_write_transaction_rolls_back(bare_pool):
    async with bare_pool.write_transaction() as conn:
        await conn.execute(text("CREATE TABLE scratch (value INTEGER)"))

    with pytest.raises(RuntimeError):
        async with bare_pool.write_transaction() as conn:
            await conn.execute(text("INSERT INTO scratch (value) VALUES (1)"))
            raise RuntimeError("abort")

    async with bare_pool.read_transaction() as conn:
        count = (await conn.execute(text("SELECT COUNT(*) FROM scratch"))).scalar()
    assert count == 0
    assert bare_pool.stats["failed_transactions"] == 1


async def test_run_migrations_is_idempotent(bare_pool):
    runner = MigrationRunner(bare_pool)

    assert await runner.run_migrations() == 1
    assert await runner.run_migrations() == 0

    status = await runner.get_migration_status()
    assert [(version, applied) for version, _, applied in status] == [("001", True)]
    assert await runner.verify_schema() is True


async def test_verify_schema_detects_missing_tables(bare_pool):
    runner = MigrationRunner(bare_pool)
    assert await runner.verify_schema() is False

    await runner.run_migrations()
    await runner.rollback_migration("000")

    assert await runner.verify_schema() is False
    status = await runner.get_migration_status()
    assert status[0][2] is False


async def test_create_database_schema(bare_pool):
    await create_database_schema(bare_pool)

    async with bare_pool.read_transaction() as conn:
        result = await conn.execute(text("SELECT name FROM sqlite_master WHERE type='table'"))
        tables = {row[0] for row in result.fetchall()}
    assert {"tasks", "task_dependencies", "schema_version"} <= tables


async def test_memory_database(tmp_path):
    pool = ConnectionPool(":memory:")
    await pool.initialize()
    try:
        await create_database_schema(pool)
        assert await pool.health_check() is True
    finally:
        await pool.close()


async def test_registered_migration_runs_after_builtin(bare_pool):
    runner = MigrationRunner(bare_pool)
    runner.add_migration(
        Migration(
            version="002",
            description="Add task labels",
            up_sql="CREATE TABLE task_labels (task_id INTEGER NOT NULL, label TEXT NOT NULL);",
            down_sql="DROP TABLE task_labels;",
        )
    )

    assert await runner.run_migrations() == 2
    status = await runner.get_migration_status()
    assert [(version, applied) for version, _, applied in status] == [("001", True), ("002", True)]

    await runner.rollback_migration("001")

    status = await runner.get_migration_status()
    assert [(version, applied) for version, _, applied in status] == [("001", True), ("002", False)]
    async with bare_pool.read_transaction() as conn:
        result = await conn.execute(text("SELECT name FROM sqlite_master WHERE type='table'"))
        tables = {row[0] for row in result.fetchall()}
    assert "task_labels" not in tables
    assert "tasks" in tables
