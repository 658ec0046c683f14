"""
Database migration system for tasktree.

Applies schema changes incrementally and tracks applied versions.
"""

from typing import List, Optional, Set, Tuple

import structlog
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncConnection
from sqlalchemy.schema import CreateIndex, CreateTable

from tasktree.core.exceptions import DatabaseError
from tasktree.database.connection import ConnectionPool
from tasktree.database.schema import get_table_creation_order, schema_version

logger = structlog.get_logger(__name__)


class Migration:
    """Single database migration definition."""

    def __init__(
        self,
        version: str,
        description: str,
        up_sql: Optional[str] = None,
        down_sql: Optional[str] = None,
    ):
        """
        Initialize migration.

        Args:
            version: Migration version (e.g., "001", "002")
            description: Human-readable description
            up_sql: SQL to apply migration. None means "build from metadata"
            down_sql: SQL to rollback migration (optional)
        """
        self.version = version
        self.description = description
        self.up_sql = up_sql
        self.down_sql = down_sql

    async def apply(self, conn: AsyncConnection) -> None:
        """Apply migration to database."""
        logger.info("Applying migration", version=self.version, description=self.description)

        if self.up_sql is None:
            for table in get_table_creation_order():
                await conn.execute(CreateTable(table, if_not_exists=True))
                for index in sorted(table.indexes, key=lambda i: i.name):
                    await conn.execute(CreateIndex(index, if_not_exists=True))
        else:
            for statement in self._split_sql(self.up_sql):
                await conn.execute(text(statement))

        await conn.execute(
            schema_version.insert().values(version=self.version, description=self.description)
        )

        logger.info("Migration applied", version=self.version)

    async def rollback(self, conn: AsyncConnection) -> None:
        """Rollback migration from database."""
        if not self.down_sql:
            raise DatabaseError(
                f"Migration {self.version} has no rollback SQL",
                error_code="NO_ROLLBACK",
            )

        logger.info("Rolling back migration", version=self.version)

        for statement in self._split_sql(self.down_sql):
            await conn.execute(text(statement))

        await conn.execute(
            schema_version.delete().where(schema_version.c.version == self.version)
        )

        logger.info("Migration rolled back", version=self.version)

    def _split_sql(self, sql: str) -> List[str]:
        """Split SQL into individual statements."""
        statements = []
        for statement in sql.split(";"):
            statement = statement.strip()
            if statement and not statement.startswith("--"):
                statements.append(statement)
        return statements


class MigrationRunner:
    """Runs database migrations in correct order."""

    def __init__(self, pool: ConnectionPool):
        """
        Initialize migration runner.

        Args:
            pool: Database connection pool
        """
        self.pool = pool
        self._extra_migrations: List[Migration] = []

    def add_migration(self, migration: Migration) -> None:
        """Register a migration to run after the built-in ones."""
        self._extra_migrations.append(migration)

    @property
    def migrations(self) -> List[Migration]:
        return self._get_builtin_migrations() + self._extra_migrations

    async def run_migrations(self) -> int:
        """
        Run all pending migrations in one write transaction.

        Returns:
            Number of migrations applied
        """
        logger.info("Starting database migrations")

        async with self.pool.write_transaction() as conn:
            await conn.execute(CreateTable(schema_version, if_not_exists=True))
            applied_versions = await self._get_applied_versions(conn)

            pending_migrations = [
                m for m in self.migrations if m.version not in applied_versions
            ]

            if not pending_migrations:
                logger.info("No pending migrations")
                return 0

            for migration in pending_migrations:
                await migration.apply(conn)

        logger.info("Migrations applied", count=len(pending_migrations))
        return len(pending_migrations)

    async def rollback_migration(self, target_version: str) -> None:
        """
        Rollback migrations down to target version (exclusive).

        Args:
            target_version: Version to rollback to
        """
        logger.info("Rolling back migrations", target_version=target_version)

        async with self.pool.write_transaction() as conn:
            applied_versions = await self._get_applied_versions(conn)

            migrations_to_rollback = []
            for migration in reversed(self.migrations):
                if migration.version in applied_versions:
                    if migration.version == target_version:
                        break
                    migrations_to_rollback.append(migration)

            for migration in migrations_to_rollback:
                await migration.rollback(conn)

        logger.info("Migrations rolled back", count=len(migrations_to_rollback))

    async def _table_names(self, conn: AsyncConnection) -> Set[str]:
        result = await conn.execute(text("SELECT name FROM sqlite_master WHERE type='table'"))
        return {row[0] for row in result.fetchall()}

    async def _get_applied_versions(self, conn: AsyncConnection) -> Set[str]:
        """Get set of applied migration versions."""
        if schema_version.name not in await self._table_names(conn):
            return set()
        result = await conn.execute(select(schema_version.c.version))
        return {row[0] for row in result.fetchall()}

    def _get_builtin_migrations(self) -> List[Migration]:
        """Get built-in migrations for core schema."""
        return [
            Migration(
                version="001",
                description="Create task tables from metadata",
                up_sql=None,
                down_sql=self._generate_drop_tables_sql(),
            ),
        ]

    def _generate_drop_tables_sql(self) -> str:
        """Generate SQL to drop the task tables, children first."""
        drop_statements = []
        for table in reversed(get_table_creation_order()):
            if table is schema_version:
                continue
            drop_statements.append(f"DROP TABLE IF EXISTS {table.name}")
        return ";\n".join(drop_statements) + ";"

    async def get_migration_status(self) -> List[Tuple[str, str, bool]]:
        """
        Get status of all migrations.

        Returns:
            List of (version, description, applied) tuples
        """
        async with self.pool.read_transaction() as conn:
            applied_versions = await self._get_applied_versions(conn)

        return [
            (migration.version, migration.description, migration.version in applied_versions)
            for migration in self.migrations
        ]

    async def verify_schema(self) -> bool:
        """
        Verify database schema is complete and correct.

        Returns:
            True if schema is valid
        """
        logger.info("Verifying database schema")

        async with self.pool.read_transaction() as conn:
            expected_tables = {table.name for table in get_table_creation_order()}
            missing_tables = expected_tables - await self._table_names(conn)
            if missing_tables:
                logger.error("Missing database tables", missing=sorted(missing_tables))
                return False

            violations = (await conn.execute(text("PRAGMA foreign_key_check"))).fetchall()
            if violations:
                logger.error("Foreign key violations found", count=len(violations))
                return False

            applied_versions = await self._get_applied_versions(conn)
            expected_versions = {m.version for m in self.migrations}
            if applied_versions != expected_versions:
                logger.warning(
                    "Schema version mismatch",
                    applied=sorted(applied_versions),
                    expected=sorted(expected_versions),
                )

        logger.info("Database schema verification successful")
        return True


async def create_database_schema(pool: ConnectionPool) -> None:
    """
    Convenience function to create complete database schema.

    Args:
        pool: Database connection pool
    """
    runner = MigrationRunner(pool)
    await runner.run_migrations()

    if not await runner.verify_schema():
        raise DatabaseError(
            "Database schema verification failed",
            error_code="SCHEMA_INVALID",
        )
