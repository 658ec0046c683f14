"""
tasktree: hierarchical, dependency-aware task store with a completion engine.

Tasks are numbered with dotted-decimal labels ("1.0", "1.1", "2.0"), live in a
single SQLite table with parent pointers, and can depend on other tasks by
number.

Features:
- Atomic bulk import with all-or-nothing batch validation
- Cascading completion of parent tasks
- Subtree deletion in a single transaction
- Readiness-aware "current task" navigation
- Aggregated statistics and progress trees
"""

__version__ = "0.1.0"
__license__ = "MIT"

from tasktree.core.config import TaskTreeConfig
from tasktree.core.exceptions import (
    DatabaseError,
    DuplicateInBatchError,
    DuplicateTaskError,
    ParentNotFoundError,
    TaskBlockedError,
    TaskNotFoundError,
    TaskTreeError,
    ValidationFailedError,
)
from tasktree.core.logging import get_logger, setup_logging
from tasktree.workspace import TaskWorkspace

__all__ = [
    "__version__",
    "TaskTreeConfig",
    "TaskWorkspace",
    "setup_logging",
    "get_logger",
    "TaskTreeError",
    "DatabaseError",
    "TaskNotFoundError",
    "ParentNotFoundError",
    "DuplicateTaskError",
    "TaskBlockedError",
    "ValidationFailedError",
    "DuplicateInBatchError",
]
