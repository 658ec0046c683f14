"""
Database layer: SQLAlchemy async engine, schema and migrations.
"""

from tasktree.database.connection import ConnectionPool
from tasktree.database.migrations import Migration, MigrationRunner, create_database_schema
from tasktree.database.schema import metadata, schema_version, task_dependencies, tasks

__all__ = [
    "ConnectionPool",
    "Migration",
    "MigrationRunner",
    "create_database_schema",
    "metadata",
    "tasks",
    "task_dependencies",
    "schema_version",
]
