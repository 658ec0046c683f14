"""
Custom exceptions for tasktree.

Exception hierarchy:
- TaskTreeError (base)
  ├── DatabaseError
  │   └── TaskNotFoundError
  │       └── ParentNotFoundError
  ├── DuplicateTaskError
  ├── TaskBlockedError
  ├── ValidationFailedError
  │   └── DuplicateInBatchError
  └── ConfigurationError
"""

from typing import Any, Dict, List, Optional


class TaskTreeError(Exception):
    """Base exception for every tasktree error."""

    default_code: Optional[str] = None

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.context = context or {}

    def __str__(self) -> str:
        base_msg = self.message
        if self.error_code:
            base_msg = f"[{self.error_code}] {base_msg}"
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg = f"{base_msg} (Context: {context_str})"
        return base_msg


class DatabaseError(TaskTreeError):
    """Errors raised by the SQLite storage layer."""

    default_code = "DB_ERROR"

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        query: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", None) or {}
        if table:
            context["table"] = table
        if query:
            context["query"] = query[:100] + "..." if len(query) > 100 else query
        super().__init__(message, context=context, **kwargs)


class TaskNotFoundError(DatabaseError):
    """A task number or id does not exist in the store."""

    default_code = "TASK_NOT_FOUND"

    def __init__(
        self,
        message: str,
        task_number: Optional[str] = None,
        task_id: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", None) or {}
        if task_number:
            context["task_number"] = task_number
        if task_id is not None:
            context["task_id"] = task_id
        super().__init__(message, context=context, **kwargs)
        self.task_number = task_number


class ParentNotFoundError(TaskNotFoundError):
    """The parent named by a task definition does not exist."""

    default_code = "PARENT_NOT_FOUND"

    def __init__(self, parent_number: str, task_number: Optional[str] = None, **kwargs: Any) -> None:
        context = kwargs.pop("context", None) or {}
        context["parent_number"] = parent_number
        super().__init__(
            f"Parent task {parent_number} not found",
            task_number=task_number,
            context=context,
            **kwargs,
        )
        self.parent_number = parent_number


class DuplicateTaskError(TaskTreeError):
    """A single create targets a task number that is already stored."""

    default_code = "DUPLICATE_TASK"

    def __init__(self, task_number: str, **kwargs: Any) -> None:
        super().__init__(
            f"Task with number {task_number} already exists",
            context={"task_number": task_number},
            **kwargs,
        )
        self.task_number = task_number


class TaskBlockedError(TaskTreeError):
    """A task cannot be completed while some of its dependencies are open."""

    default_code = "TASK_BLOCKED"

    def __init__(self, task_number: str, blockers: List[str], **kwargs: Any) -> None:
        super().__init__(
            f"Cannot complete task {task_number}. Blocked by: {', '.join(blockers)}",
            context={"task_number": task_number},
            **kwargs,
        )
        self.task_number = task_number
        self.blockers = list(blockers)


class ValidationFailedError(TaskTreeError):
    """Schema or batch business-rule violation. Never leaves writes behind."""

    default_code = "VALIDATION_FAILED"

    def __init__(self, message: str, issues: Optional[List[Any]] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.issues = list(issues or [])


class DuplicateInBatchError(ValidationFailedError):
    """Two entries of the same import batch share a task number."""

    default_code = "DUPLICATE_IN_BATCH"


class ConfigurationError(TaskTreeError):
    """Configuration loading errors."""

    default_code = "CONFIG_ERROR"

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_file: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", None) or {}
        if config_key:
            context["config_key"] = config_key
        if config_file:
            context["config_file"] = config_file
        super().__init__(message, context=context, **kwargs)
