"""
Task Service - business rules on top of the repository.

Sole writer of task invariants:
- unique task numbers, existing parents and dependencies on create/update
- subtree deletion
- completion with the upward cascade
- all-or-nothing bulk import
- aggregate statistics
"""

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import structlog
from pydantic import ValidationError

from tasktree.core.config import TaskConfig
from tasktree.core.exceptions import (
    DuplicateTaskError,
    ParentNotFoundError,
    TaskNotFoundError,
    TaskTreeError,
    ValidationFailedError,
)
from tasktree.tasks.completion import CompletionService, percentage
from tasktree.tasks.models import (
    BulkImportEnvelope,
    BulkInsertResult,
    BulkInsertSummary,
    CompletionResult,
    FailedTask,
    SkippedTask,
    Task,
    TaskFilter,
    TaskInput,
    TaskStats,
    TaskStatus,
    TaskUpdate,
    ValidationIssue,
    ValidationReport,
)
from tasktree.tasks.navigation import partition_pending
from tasktree.tasks.repository import TaskRepository
from tasktree.tasks.validation import TaskDefinition, TaskValidator, issues_from_validation_error

logger = structlog.get_logger(__name__)

# Columns that cannot be cleared through an update
_NON_NULLABLE_UPDATES = ("name", "status", "priority")


class TaskService:
    """
    Service for task lifecycle management.

    Every mutation is checked here before it reaches the repository, and every
    multi-row write runs inside one repository.atomic() unit.
    """

    def __init__(
        self,
        repository: TaskRepository,
        validator: Optional[TaskValidator] = None,
        completion: Optional[CompletionService] = None,
        config: Optional[TaskConfig] = None,
    ):
        self.repository = repository
        self.validator = validator or TaskValidator()
        self.completion = completion or CompletionService()
        self.config = config or TaskConfig()

    # ============================================================================
    # SINGLE TASK OPERATIONS
    # ============================================================================

    async def create(self, task_input: TaskDefinition) -> Task:
        """
        Create a new task.

        Raises:
            ValidationFailedError: Schema violation or unknown dependency
            DuplicateTaskError: The number is already stored
            ParentNotFoundError: The parent number is not stored
        """
        definition = self._parse_definition(task_input)
        self._check_self_references(definition)

        async with self.repository.atomic() as repo:
            if await repo.find_by_number(definition.number) is not None:
                raise DuplicateTaskError(definition.number)

            parent_id = None
            if definition.parent is not None:
                parent = await repo.find_by_number(definition.parent)
                if parent is None:
                    raise ParentNotFoundError(definition.parent, task_number=definition.number)
                parent_id = parent.id

            await self._check_dependencies_exist(repo, definition.number, definition.dependencies)

            task = await repo.insert(self._with_defaults(definition), parent_id)

        logger.info("Task created", task_number=task.task_number, parent=definition.parent)
        return task

    async def get(self, number: str) -> Task:
        task = await self.repository.find_by_number(number)
        if task is None:
            raise TaskNotFoundError(f"Task {number} not found", task_number=number)
        return task

    async def find(self, number: str) -> Optional[Task]:
        return await self.repository.find_by_number(number)

    async def list(self, task_filter: Optional[TaskFilter] = None) -> List[Task]:
        return await self.repository.list(task_filter)

    async def update(self, number: str, partial: Union[TaskUpdate, Mapping[str, Any]]) -> Task:
        """
        Merge a partial update into an existing task.

        Raises:
            TaskNotFoundError: No task carries this number
            ValidationFailedError: Invalid fields or unknown dependencies
        """
        if isinstance(partial, TaskUpdate):
            update = partial
        else:
            try:
                update = TaskUpdate.model_validate(dict(partial))
            except ValidationError as e:
                raise ValidationFailedError(
                    f"Invalid update for task {number}",
                    issues=issues_from_validation_error(e, task_number=number),
                ) from e

        changes = {
            key: value
            for key, value in update.changes().items()
            if not (key in _NON_NULLABLE_UPDATES and value is None)
        }

        async with self.repository.atomic() as repo:
            task = await repo.find_by_number(number)
            if task is None:
                raise TaskNotFoundError(f"Task {number} not found", task_number=number)

            dependencies = changes.get("dependencies")
            if dependencies:
                if number in dependencies:
                    raise ValidationFailedError(
                        f"Task {number} cannot depend on itself",
                        issues=[self._dependency_issue(number, "Task cannot depend on itself")],
                    )
                await self._check_dependencies_exist(repo, number, dependencies)
                await self._check_no_cycle(repo, number, dependencies)

            updated = await repo.update(number, changes)

        logger.info("Task updated", task_number=number, fields=sorted(changes))
        return updated

    async def start_task(self, number: str) -> Task:
        """Mark a task in_progress."""
        return await self.update(number, TaskUpdate(status=TaskStatus.IN_PROGRESS))

    async def delete(self, number: str) -> bool:
        """
        Delete a task and all of its descendants in one transaction.

        Raises:
            TaskNotFoundError: No task carries this number
        """
        if not await self.repository.delete(number):
            raise TaskNotFoundError(f"Task {number} not found", task_number=number)
        return True

    async def complete_task(self, number: str, notes: Optional[str] = None) -> CompletionResult:
        """
        Complete a task and cascade completion up the tree.

        The status change, the cascade and the progress refresh commit together.

        Raises:
            TaskNotFoundError: No task carries this number
            TaskBlockedError: A dependency is not completed
        """
        async with self.repository.atomic() as repo:
            return await self.completion.complete(repo, number, notes)

    # ============================================================================
    # BULK IMPORT / EXPORT
    # ============================================================================

    async def validate_import(self, tasks: Sequence[TaskDefinition]) -> ValidationReport:
        """Dry run of bulk_insert validation. Writes nothing."""
        known = await self.repository.existing_numbers()
        return self.validator.validate_import(tasks, known)

    async def bulk_insert(
        self,
        tasks: Sequence[TaskDefinition],
        raise_on_invalid: bool = False,
    ) -> BulkInsertResult:
        """
        Import a batch of task definitions atomically.

        The whole batch is validated first. If any entry fails, nothing is
        written. Otherwise entries are inserted in batch order inside one
        transaction. Numbers that are already stored are skipped.

        Args:
            tasks: Task definitions in import order (parents before children)
            raise_on_invalid: Raise ValidationFailedError/DuplicateInBatchError
                instead of returning a failed result
        """
        summary = BulkInsertSummary(total=len(tasks))
        known = await self.repository.existing_numbers()
        report, parsed = self.validator.validate_batch(tasks, known)

        if not report.valid:
            if raise_on_invalid:
                report.raise_for_errors()
            errors = self._failures_from_report(report)
            summary.failed = len(errors)
            logger.warning("Bulk import rejected", total=summary.total, failed=summary.failed)
            return BulkInsertResult(success=False, errors=errors, summary=summary)

        skipped: List[SkippedTask] = []
        inserted: List[Task] = []
        current: Optional[TaskInput] = None
        current_index: Optional[int] = None

        try:
            async with self.repository.atomic() as repo:
                ids_by_number: Dict[str, int] = {}
                pending_edges: List[TaskInput] = []

                for current_index, current in enumerate(parsed):
                    if current.number in known:
                        skipped.append(SkippedTask(task_number=current.number, reason="Already exists"))
                        continue

                    parent_id = None
                    if current.parent is not None:
                        parent_id = ids_by_number.get(current.parent)
                        if parent_id is None:
                            parent = await repo.find_by_number(current.parent)
                            if parent is None:
                                raise ParentNotFoundError(current.parent, task_number=current.number)
                            parent_id = parent.id

                    task = await repo.insert(
                        self._with_defaults(current), parent_id, with_dependencies=False
                    )
                    ids_by_number[task.task_number] = task.id
                    if current.dependencies:
                        pending_edges.append(current)

                # second pass: an entry may depend on a later one
                for current in pending_edges:
                    current_index = None
                    await repo.set_dependencies(ids_by_number[current.number], current.dependencies)

                for task_id in ids_by_number.values():
                    inserted.append(await repo.find_by_id(task_id))

        except TaskTreeError as e:
            logger.error(
                "Bulk import failed, rolled back",
                task_number=current.number if current else None,
                error=str(e),
            )
            summary.failed = 1
            summary.skipped = len(skipped)
            return BulkInsertResult(
                success=False,
                skipped=skipped,
                errors=[
                    FailedTask(
                        task=current.number if current else None,
                        index=current_index,
                        error=e.message,
                    )
                ],
                summary=summary,
            )

        summary.successful = len(inserted)
        summary.skipped = len(skipped)
        logger.info(
            "Bulk import committed",
            total=summary.total,
            inserted=summary.successful,
            skipped=summary.skipped,
        )
        return BulkInsertResult(success=True, inserted=inserted, skipped=skipped, summary=summary)

    async def import_envelope(
        self,
        envelope: Union[BulkImportEnvelope, Mapping[str, Any], str, bytes],
        raise_on_invalid: bool = False,
    ) -> BulkInsertResult:
        """Import a {"tasks": [...]} document given as model, mapping or JSON text."""
        try:
            if isinstance(envelope, BulkImportEnvelope):
                parsed = envelope
            elif isinstance(envelope, (str, bytes)):
                parsed = BulkImportEnvelope.from_json(envelope)
            else:
                parsed = BulkImportEnvelope.model_validate(envelope)
        except ValidationError as e:
            raise ValidationFailedError(
                "Import document must be an object with a 'tasks' list",
                issues=issues_from_validation_error(e),
            ) from e

        return await self.bulk_insert(parsed.tasks, raise_on_invalid=raise_on_invalid)

    async def load_import_file(
        self, path: Union[str, Path], raise_on_invalid: bool = False
    ) -> BulkInsertResult:
        """
        Import a JSON envelope from disk.

        Raises:
            FileNotFoundError: The file does not exist
            ValidationFailedError: The file is not a valid envelope
        """
        path = Path(path)
        logger.info("Loading import file", path=str(path))
        return await self.import_envelope(path.read_bytes(), raise_on_invalid)

    async def export_tasks(self, task_filter: Optional[TaskFilter] = None) -> BulkImportEnvelope:
        """
        Turn stored tasks back into an importable envelope.

        Without a filter every task is exported, completed ones included.
        """
        if task_filter is None:
            stored = await self.repository.list_all()
        else:
            stored = await self.repository.list(task_filter)
        return BulkImportEnvelope.from_definitions([task.to_definition() for task in stored])

    # ============================================================================
    # STATISTICS
    # ============================================================================

    async def get_stats(self) -> TaskStats:
        """Aggregate counters over all tasks, read from one snapshot."""
        async with self.repository.snapshot() as repo:
            all_tasks = await repo.list_all()

        statuses = {task.task_number: task.status for task in all_tasks}
        parent_ids = {task.parent_id for task in all_tasks if task.parent_id is not None}
        pending = [task for task in all_tasks if task.status == TaskStatus.PENDING]
        ready, blocked = partition_pending(pending, statuses)

        counts = {status: 0 for status in TaskStatus}
        for task in all_tasks:
            counts[task.status] += 1

        total = len(all_tasks)
        return TaskStats(
            total=total,
            pending=counts[TaskStatus.PENDING],
            in_progress=counts[TaskStatus.IN_PROGRESS],
            completed=counts[TaskStatus.COMPLETED],
            cancelled=counts[TaskStatus.CANCELLED],
            completion_rate=percentage(counts[TaskStatus.COMPLETED], total),
            root_tasks=sum(1 for task in all_tasks if task.is_root),
            leaf_tasks=sum(1 for task in all_tasks if task.id not in parent_ids),
            with_dependencies=sum(1 for task in all_tasks if task.dependencies),
            blocked=len(blocked),
            ready=len(ready),
        )

    # ============================================================================
    # HELPERS
    # ============================================================================

    def _parse_definition(self, task_input: TaskDefinition) -> TaskInput:
        if isinstance(task_input, TaskInput):
            return task_input
        issues = self.validator.validate_single(task_input)
        if issues:
            raise ValidationFailedError(
                f"Invalid task definition: {'; '.join(f'{i.field}: {i.error}' for i in issues)}",
                issues=issues,
            )
        return TaskInput.model_validate(dict(task_input))

    def _check_self_references(self, definition: TaskInput) -> None:
        if definition.parent == definition.number:
            raise ValidationFailedError(
                f"Task {definition.number} cannot be its own parent",
                issues=[
                    ValidationIssue(
                        task=definition.number,
                        field="parent",
                        error="Task cannot be its own parent",
                        code="self_reference",
                    )
                ],
            )
        if definition.number in definition.dependencies:
            raise ValidationFailedError(
                f"Task {definition.number} cannot depend on itself",
                issues=[self._dependency_issue(definition.number, "Task cannot depend on itself")],
            )

    async def _check_dependencies_exist(
        self, repo: TaskRepository, number: str, dependencies: Sequence[str]
    ) -> None:
        if not dependencies:
            return
        existing = await repo.existing_numbers(dependencies)
        missing = [dep for dep in dependencies if dep not in existing]
        if missing:
            raise ValidationFailedError(
                f"Dependencies not found for task {number}: {', '.join(missing)}",
                issues=[
                    self._dependency_issue(number, f"Dependency {dep} not found", "dependency_not_found")
                    for dep in missing
                ],
            )

    async def _check_no_cycle(
        self, repo: TaskRepository, number: str, dependencies: Sequence[str]
    ) -> None:
        graph: Dict[str, List[str]] = {}
        for owner, dependency in await repo.dependency_edges():
            if owner != number:
                graph.setdefault(owner, []).append(dependency)

        via = self.validator.find_cycle(number, dependencies, graph)
        if via is not None:
            raise ValidationFailedError(
                f"Dependency {via} would make task {number} depend on itself",
                issues=[self._dependency_issue(number, f"Circular dependency detected with {via}", "cycle")],
            )

    def _dependency_issue(self, number: str, error: str, code: str = "self_reference") -> ValidationIssue:
        return ValidationIssue(task=number, field="dependencies", error=error, code=code)

    def _with_defaults(self, definition: TaskInput) -> TaskInput:
        updates: Dict[str, Any] = {}
        if definition.status is None:
            updates["status"] = TaskStatus(self.config.default_status)
        if definition.priority is None:
            updates["priority"] = self.config.default_priority
        return definition.model_copy(update=updates) if updates else definition

    def _failures_from_report(self, report: ValidationReport) -> List[FailedTask]:
        """One FailedTask per offending entry, its messages joined."""
        failures = []
        for index, issues in sorted(report.issues_by_index().items()):
            number = next((issue.task for issue in issues if issue.task), None)
            failures.append(
                FailedTask(
                    task=number,
                    index=index if index >= 0 else None,
                    error="; ".join(f"{issue.field}: {issue.error}" for issue in issues),
                )
            )
        return failures
