"""
Core module: configuration, exceptions and logging setup.
"""

from tasktree.core.config import DatabaseConfig, LoggingConfig, TaskConfig, TaskTreeConfig
from tasktree.core.exceptions import (
    ConfigurationError,
    DatabaseError,
    DuplicateInBatchError,
    DuplicateTaskError,
    ParentNotFoundError,
    TaskBlockedError,
    TaskNotFoundError,
    TaskTreeError,
    ValidationFailedError,
)

__all__ = [
    "TaskTreeConfig",
    "DatabaseConfig",
    "TaskConfig",
    "LoggingConfig",
    "TaskTreeError",
    "DatabaseError",
    "TaskNotFoundError",
    "ParentNotFoundError",
    "DuplicateTaskError",
    "TaskBlockedError",
    "ValidationFailedError",
    "DuplicateInBatchError",
    "ConfigurationError",
]
