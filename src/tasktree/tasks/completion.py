"""
Completion engine: dependency gate, upward cascade, progress percentages.

Every method takes the repository it should work through. TaskService hands
in a repository bound to one write transaction so that the whole cascade
commits or rolls back together.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Sequence

import structlog

from tasktree.core.exceptions import TaskBlockedError, TaskNotFoundError
from tasktree.tasks.models import CompletionResult, Task, TaskStatus
from tasktree.tasks.repository import TaskRepository

logger = structlog.get_logger(__name__)


def round_half_up(value: float) -> int:
    """Round .5 away from zero (Python's round() rounds half to even)."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def percentage(part: int, whole: int) -> int:
    """part / whole as a rounded percentage, 0 when whole is 0."""
    if whole <= 0:
        return 0
    return round_half_up(part / whole * 100)


def children_percentage(statuses: Sequence[TaskStatus]) -> int:
    completed = sum(1 for status in statuses if status == TaskStatus.COMPLETED)
    return percentage(completed, len(statuses))


def format_blocker(task: Task) -> str:
    return f"{task.task_number}: {task.name} ({task.status.value})"


class CompletionService:
    """Completes tasks and propagates completion up the tree."""

    async def blockers(self, repository: TaskRepository, task: Task) -> List[str]:
        """Dependencies that still prevent completion, formatted for display."""
        incomplete = await repository.incomplete_dependencies(task.id)
        return [format_blocker(dep) for dep in incomplete]

    async def complete(
        self,
        repository: TaskRepository,
        number: str,
        notes: Optional[str] = None,
    ) -> CompletionResult:
        """
        Mark a task completed and run the upward cascade.

        Raises:
            TaskNotFoundError: No task carries this number
            TaskBlockedError: Some dependency is not completed yet
        """
        task = await repository.find_by_number(number)
        if task is None:
            raise TaskNotFoundError(f"Task {number} not found", task_number=number)

        blockers = await self.blockers(repository, task)
        if blockers:
            raise TaskBlockedError(number, blockers)

        changes = {"status": TaskStatus.COMPLETED, "completion_percentage": 100.0}
        if notes is not None:
            changes["completion_notes"] = notes
        await repository.update_by_id(task.id, changes)

        auto_completed = await self.cascade(repository, task.parent_id)
        completed = await repository.find_by_id(task.id)

        logger.info(
            "Task completed",
            task_number=number,
            auto_completed=auto_completed,
        )
        return CompletionResult(task=completed, auto_completed=auto_completed)

    async def cascade(self, repository: TaskRepository, parent_id: Optional[int]) -> List[str]:
        """
        Walk up from parent_id, completing ancestors whose children are all terminal.

        An ancestor that is already terminal keeps its status and the walk
        goes on past it. Auto-completion stops at the first ancestor with an
        unfinished child or at the root. Percentages are refreshed for every
        ancestor on the way to the root.

        Returns:
            Numbers of auto-completed ancestors, nearest first
        """
        auto_completed: List[str] = []
        cascading = True

        while parent_id is not None:
            ancestor = await repository.find_by_id(parent_id)
            if ancestor is None:
                break

            statuses = await repository.child_statuses(ancestor.id)
            all_terminal = bool(statuses) and all(status.is_terminal for status in statuses)
            if not all_terminal:
                cascading = False

            if cascading and not ancestor.is_terminal:
                await repository.update_by_id(
                    ancestor.id,
                    {"status": TaskStatus.COMPLETED, "completion_percentage": 100.0},
                )
                auto_completed.append(ancestor.task_number)
                logger.debug("Ancestor auto-completed", task_number=ancestor.task_number)
            else:
                if ancestor.status == TaskStatus.COMPLETED:
                    progress = 100.0
                else:
                    progress = float(children_percentage(statuses))
                if ancestor.completion_percentage != progress:
                    await repository.update_by_id(ancestor.id, {"completion_percentage": progress})

            parent_id = ancestor.parent_id

        return auto_completed
