"""
Task models for tasktree.

Core Components:
- Task: a stored task row with its dependencies resolved to numbers
- TaskInput / TaskUpdate: caller-supplied definitions and partial updates
- BulkImportEnvelope: the {"tasks": [...]} import/export document
- Result envelopes for validation, bulk import, completion and statistics
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import AnyUrl, BaseModel, Field, TypeAdapter, field_validator

from tasktree.core.exceptions import DuplicateInBatchError, ValidationFailedError
from tasktree.tasks.numbering import is_valid_task_number

_url_adapter = TypeAdapter(AnyUrl)


class TaskStatus(str, Enum):
    """Task lifecycle status"""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED})


class Readiness(str, Enum):
    """Whether a pending task can be picked up right now"""
    READY = "ready"
    BLOCKED = "blocked"
    NONE = "none"


def _check_number(value: str) -> str:
    if not is_valid_task_number(value):
        raise ValueError(f"Invalid task number format: {value!r} (expected e.g. 1.0, 2.1.3)")
    return value


def _check_urls(values: List[str]) -> List[str]:
    for value in values:
        try:
            _url_adapter.validate_python(value)
        except ValueError:
            raise ValueError(f"Invalid URL: {value!r}") from None
    return values


class TaskInput(BaseModel):
    """
    Caller-supplied task definition.

    Used by single create, bulk import and export. Status and priority are
    left unset when the caller omits them so configured defaults can apply.
    """

    number: str = Field(..., description="Dotted-decimal task number")
    name: str = Field(..., min_length=1, max_length=200, description="Task name")
    description: Optional[str] = Field(None, description="Task description")
    parent: Optional[str] = Field(None, description="Parent task number")
    status: Optional[TaskStatus] = Field(None, description="Initial status")
    priority: Optional[int] = Field(None, ge=0, le=10, description="Priority 0-10")
    files: List[str] = Field(default_factory=list, description="Related file paths")
    docs_references: List[str] = Field(default_factory=list, description="Documentation URLs")
    testing_strategy: Optional[str] = Field(None, description="How the work gets verified")
    dependencies: List[str] = Field(default_factory=list, description="Task numbers this task waits on")
    notes: Optional[str] = Field(None, description="Free-form notes")
    completion_notes: Optional[str] = Field(None, description="Notes recorded on completion")

    model_config = {"extra": "ignore"}

    @field_validator("number")
    @classmethod
    def validate_number(cls, v: str) -> str:
        return _check_number(v)

    @field_validator("parent")
    @classmethod
    def validate_parent(cls, v: Optional[str]) -> Optional[str]:
        return None if v is None else _check_number(v)

    @field_validator("dependencies")
    @classmethod
    def validate_dependencies(cls, v: List[str]) -> List[str]:
        for number in v:
            _check_number(number)
        # de-duplicate, keep caller order
        return list(dict.fromkeys(v))

    @field_validator("docs_references")
    @classmethod
    def validate_docs_references(cls, v: List[str]) -> List[str]:
        return _check_urls(v)


class TaskUpdate(BaseModel):
    """Partial update. Only explicitly set fields are applied."""

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[int] = Field(None, ge=0, le=10)
    files: Optional[List[str]] = None
    docs_references: Optional[List[str]] = None
    testing_strategy: Optional[str] = None
    dependencies: Optional[List[str]] = None
    notes: Optional[str] = None
    completion_notes: Optional[str] = None
    completion_percentage: Optional[float] = Field(None, ge=0.0, le=100.0)

    model_config = {"extra": "forbid"}

    @field_validator("dependencies")
    @classmethod
    def validate_dependencies(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            return v
        for number in v:
            _check_number(number)
        return list(dict.fromkeys(v))

    @field_validator("docs_references")
    @classmethod
    def validate_docs_references(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return v if v is None else _check_urls(v)

    def changes(self) -> Dict[str, Any]:
        """Fields the caller set, ready for the repository."""
        return self.model_dump(exclude_unset=True)


class Task(BaseModel):
    """A persisted task."""

    id: int
    task_number: str
    name: str
    description: Optional[str] = None
    parent_id: Optional[int] = None
    parent_number: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    priority: int = 0
    dependencies: List[str] = Field(default_factory=list)
    files: List[str] = Field(default_factory=list)
    docs_references: List[str] = Field(default_factory=list)
    testing_strategy: Optional[str] = None
    notes: Optional[str] = None
    completion_notes: Optional[str] = None
    completion_percentage: Optional[float] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_definition(self) -> TaskInput:
        """Turn the stored task back into an importable definition."""
        return TaskInput(
            number=self.task_number,
            name=self.name,
            description=self.description,
            parent=self.parent_number,
            status=self.status,
            priority=self.priority,
            files=list(self.files),
            docs_references=list(self.docs_references),
            testing_strategy=self.testing_strategy,
            dependencies=list(self.dependencies),
            notes=self.notes,
            completion_notes=self.completion_notes,
        )


class TaskFilter(BaseModel):
    """Listing filter for TaskRepository.list"""

    status: Optional[TaskStatus] = None
    parent_id: Optional[int] = None
    parent_number: Optional[str] = None
    root_only: bool = False
    include_completed: bool = False
    include_cancelled: bool = True


class BulkImportEnvelope(BaseModel):
    """
    Import/export document: {"tasks": [...]}.

    Entries stay raw mappings so that a malformed entry is reported against
    its own index instead of rejecting the whole document up front.
    """

    tasks: List[Dict[str, Any]] = Field(..., description="Task definitions in import order")

    @classmethod
    def from_definitions(cls, definitions: List[TaskInput]) -> "BulkImportEnvelope":
        return cls(
            tasks=[
                d.model_dump(mode="json", exclude_none=True)
                for d in definitions
            ]
        )

    @classmethod
    def from_json(cls, data: Union[str, bytes]) -> "BulkImportEnvelope":
        return cls.model_validate_json(data)

    def to_json(self, pretty: bool = False) -> str:
        return json.dumps(self.model_dump(mode="json"), indent=2 if pretty else None, ensure_ascii=False)


# ============================================================================
# VALIDATION RESULTS
# ============================================================================


class ValidationIssue(BaseModel):
    """One problem found in a task definition"""

    task: Optional[str] = Field(None, description="Task number, when it could be read")
    field: str
    error: str
    code: str = "invalid"
    index: Optional[int] = Field(None, description="Position in the batch")


class ValidationSummary(BaseModel):
    total: int = 0
    valid: int = 0
    invalid: int = 0


class ValidationReport(BaseModel):
    """Outcome of validating a batch of task definitions"""

    valid: bool
    errors: List[ValidationIssue] = Field(default_factory=list)
    summary: ValidationSummary = Field(default_factory=ValidationSummary)

    @property
    def has_duplicates(self) -> bool:
        return any(issue.code == "duplicate" for issue in self.errors)

    def issues_by_index(self) -> Dict[int, List[ValidationIssue]]:
        grouped: Dict[int, List[ValidationIssue]] = {}
        for issue in self.errors:
            grouped.setdefault(issue.index if issue.index is not None else -1, []).append(issue)
        return grouped

    def raise_for_errors(self) -> None:
        """Raise the matching exception if the batch did not validate."""
        if self.valid:
            return
        message = f"Validation failed for {self.summary.invalid} of {self.summary.total} tasks"
        if self.has_duplicates:
            raise DuplicateInBatchError(message, issues=self.errors)
        raise ValidationFailedError(message, issues=self.errors)


# ============================================================================
# BULK IMPORT RESULTS
# ============================================================================


class SkippedTask(BaseModel):
    task_number: str
    reason: str


class FailedTask(BaseModel):
    task: Optional[str] = None
    index: Optional[int] = None
    error: str


class BulkInsertSummary(BaseModel):
    total: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0


class BulkInsertResult(BaseModel):
    """Outcome of a bulk import"""

    success: bool
    inserted: List[Task] = Field(default_factory=list)
    skipped: List[SkippedTask] = Field(default_factory=list)
    errors: List[FailedTask] = Field(default_factory=list)
    summary: BulkInsertSummary = Field(default_factory=BulkInsertSummary)


# ============================================================================
# COMPLETION, STATISTICS AND NAVIGATION VIEWS
# ============================================================================


class CompletionResult(BaseModel):
    task: Task
    auto_completed: List[str] = Field(
        default_factory=list,
        description="Ancestors completed by the cascade, nearest first",
    )


class TaskStats(BaseModel):
    """Aggregate counters over the whole store"""

    total: int = 0
    pending: int = 0
    in_progress: int = 0
    completed: int = 0
    cancelled: int = 0
    completion_rate: int = 0
    root_tasks: int = 0
    leaf_tasks: int = 0
    with_dependencies: int = 0
    blocked: int = 0
    ready: int = 0


class TaskNode(BaseModel):
    """A task with its children, rebuilt from parent pointers"""

    task: Task
    level: int = 0
    children: List["TaskNode"] = Field(default_factory=list)

    def walk(self):
        """Yield this node and its descendants depth first."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))


class TaskProgress(BaseModel):
    task_number: str
    name: str
    status: TaskStatus
    level: int
    children: int = 0
    completed_children: int = 0
    completion_percentage: float = 0.0


TaskNode.model_rebuild()
