"""
Database schema definition using SQLAlchemy Core.

Tasks live in one flat table keyed by a surrogate id with a nullable
self-referencing parent_id. Dependencies are stored as edges between task ids.
Uses SQLAlchemy Core (not ORM) for type safety without overhead.
"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.sql import func

# Metadata container for all tables
metadata = MetaData()

# ============================================================================
# TASK TABLES
# ============================================================================

tasks = Table(
    "tasks",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "parent_id",
        Integer,
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=True,
    ),
    Column("task_number", String(64), nullable=False, unique=True),
    Column("name", String(200), nullable=False),
    Column("description", Text),
    Column("docs_references", JSON),  # Array of URLs
    Column("testing_strategy", Text),
    Column(
        "status",
        String(20),
        CheckConstraint(
            "status IN ('pending', 'in_progress', 'completed', 'cancelled')",
            name="ck_tasks_status",
        ),
        nullable=False,
        default="pending",
    ),
    Column(
        "priority",
        Integer,
        CheckConstraint("priority BETWEEN 0 AND 10", name="ck_tasks_priority"),
        nullable=False,
        default=0,
    ),
    Column("files", JSON),  # Array of file paths
    Column("notes", Text),
    Column("completion_notes", Text),
    Column("completion_percentage", Float),
    Column(
        "created_at",
        DateTime,
        nullable=False,
        default=datetime.now,
        server_default=func.current_timestamp(),
    ),
    Column(
        "updated_at",
        DateTime,
        nullable=False,
        default=datetime.now,
        onupdate=datetime.now,
        server_default=func.current_timestamp(),
    ),
    Index("idx_tasks_status", "status"),
    Index("idx_tasks_parent_id", "parent_id"),
    Index("idx_tasks_priority", "priority"),
)

task_dependencies = Table(
    "task_dependencies",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "task_id",
        Integer,
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "depends_on_id",
        Integer,
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
    ),
    UniqueConstraint("task_id", "depends_on_id", name="uq_task_dependency"),
    Index("idx_dependencies_task_id", "task_id"),
    Index("idx_dependencies_depends_on_id", "depends_on_id"),
)

# ============================================================================
# SCHEMA VERSION TRACKING
# ============================================================================

schema_version = Table(
    "schema_version",
    metadata,
    Column("version", String(20), primary_key=True),
    Column("applied_at", DateTime, server_default=func.current_timestamp()),
    Column("description", Text),
)


def get_table_creation_order() -> list[Table]:
    """
    Get tables in correct creation order respecting foreign keys.

    Returns:
        Ordered list of tables for creation
    """
    return [
        schema_version,
        tasks,
        task_dependencies,
    ]
