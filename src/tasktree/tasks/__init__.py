"""
Task management: models, storage, validation, completion and navigation.
"""

from tasktree.tasks.completion import CompletionService
from tasktree.tasks.models import (
    BulkImportEnvelope,
    BulkInsertResult,
    CompletionResult,
    Readiness,
    Task,
    TaskFilter,
    TaskInput,
    TaskNode,
    TaskProgress,
    TaskStats,
    TaskStatus,
    TaskUpdate,
    ValidationIssue,
    ValidationReport,
)
from tasktree.tasks.navigation import NavigationEngine
from tasktree.tasks.numbering import task_number_key
from tasktree.tasks.repository import TaskRepository
from tasktree.tasks.service import TaskService
from tasktree.tasks.validation import TaskValidator

__all__ = [
    "Task",
    "TaskInput",
    "TaskUpdate",
    "TaskFilter",
    "TaskStatus",
    "Readiness",
    "TaskNode",
    "TaskProgress",
    "TaskStats",
    "BulkImportEnvelope",
    "BulkInsertResult",
    "CompletionResult",
    "ValidationIssue",
    "ValidationReport",
    "TaskRepository",
    "TaskValidator",
    "CompletionService",
    "NavigationEngine",
    "TaskService",
    "task_number_key",
]
