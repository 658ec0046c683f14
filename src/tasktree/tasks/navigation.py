"""
Navigation and readiness over the task tree.

Nothing here is cached: the current task, readiness and the hierarchy are
derived from stored status and dependency state on every call.
"""

from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import structlog

from tasktree.core.exceptions import TaskNotFoundError
from tasktree.tasks.completion import children_percentage
from tasktree.tasks.models import (
    Readiness,
    Task,
    TaskFilter,
    TaskNode,
    TaskProgress,
    TaskStatus,
)
from tasktree.tasks.numbering import task_number_key
from tasktree.tasks.repository import TaskRepository

logger = structlog.get_logger(__name__)


def classify(task: Task, statuses: Mapping[str, TaskStatus]) -> Readiness:
    """
    Readiness of a task given the status of every stored task.

    A dependency that is not in statuses counts as incomplete.
    """
    if task.status != TaskStatus.PENDING:
        return Readiness.NONE
    for dependency in task.dependencies:
        if statuses.get(dependency) != TaskStatus.COMPLETED:
            return Readiness.BLOCKED
    return Readiness.READY


def partition_pending(
    tasks: Sequence[Task], statuses: Mapping[str, TaskStatus]
) -> Tuple[List[Task], List[Task]]:
    """Split tasks into (ready, blocked), keeping their order."""
    ready, blocked = [], []
    for task in tasks:
        readiness = classify(task, statuses)
        if readiness == Readiness.READY:
            ready.append(task)
        elif readiness == Readiness.BLOCKED:
            blocked.append(task)
    return ready, blocked


class NavigationEngine:
    """Read-only views used to pick and browse work."""

    def __init__(self, repository: TaskRepository):
        self.repository = repository

    # ============================================================================
    # CURRENT / NEXT / PREVIOUS
    # ============================================================================

    async def get_current_task(self) -> Optional[Task]:
        """
        The task to work on now.

        The lowest-numbered in_progress task wins. Otherwise the
        lowest-numbered ready pending task. None when neither exists.
        """
        async with self.repository.snapshot() as repo:
            in_progress = await repo.list(TaskFilter(status=TaskStatus.IN_PROGRESS))
            if in_progress:
                return in_progress[0]

            pending = await repo.list(TaskFilter(status=TaskStatus.PENDING))
            statuses = await repo.statuses_by_number()

        ready, blocked = partition_pending(pending, statuses)
        if not ready:
            logger.debug("No actionable task", pending=len(pending), blocked=len(blocked))
            return None
        return ready[0]

    async def get_next_task(self, after: Optional[str] = None) -> Optional[Task]:
        """Next pending or in_progress task after a number, in natural order."""
        if after is None:
            return await self.get_current_task()

        after_key = task_number_key(after)
        for task in await self._open_tasks():
            if task_number_key(task.task_number) > after_key:
                return task
        return None

    async def get_previous_task(self, before: Optional[str] = None) -> Optional[Task]:
        """Closest pending or in_progress task before a number."""
        if before is None:
            return None

        before_key = task_number_key(before)
        previous = None
        for task in await self._open_tasks():
            if task_number_key(task.task_number) >= before_key:
                break
            previous = task
        return previous

    async def get_remaining_task_count(self) -> int:
        """pending + in_progress"""
        async with self.repository.snapshot() as repo:
            pending = await repo.count(TaskStatus.PENDING)
            in_progress = await repo.count(TaskStatus.IN_PROGRESS)
        return pending + in_progress

    # ============================================================================
    # READINESS
    # ============================================================================

    async def get_readiness(self, number: str) -> Readiness:
        async with self.repository.snapshot() as repo:
            task = await repo.find_by_number(number)
            if task is None:
                raise TaskNotFoundError(f"Task {number} not found", task_number=number)
            statuses = await repo.statuses_by_number()
        return classify(task, statuses)

    async def get_ready_tasks(self) -> List[Task]:
        ready, _ = await self._partition()
        return ready

    async def get_blocked_tasks(self) -> List[Task]:
        _, blocked = await self._partition()
        return blocked

    # ============================================================================
    # VIEWS
    # ============================================================================

    async def get_task_hierarchy(self, root_number: Optional[str] = None) -> List[TaskNode]:
        """
        Rebuild the tree from parent pointers.

        Args:
            root_number: Start from this task instead of every root task
        """
        all_tasks = await self.repository.list_all()
        children: Dict[Optional[int], List[Task]] = {}
        for task in all_tasks:
            children.setdefault(task.parent_id, []).append(task)

        if root_number is None:
            roots = children.get(None, [])
        else:
            roots = [task for task in all_tasks if task.task_number == root_number]
            if not roots:
                raise TaskNotFoundError(f"Task {root_number} not found", task_number=root_number)

        nodes = [TaskNode(task=task, level=0) for task in roots]
        stack = list(nodes)
        while stack:
            node = stack.pop()
            for child in children.get(node.task.id, []):
                child_node = TaskNode(task=child, level=node.level + 1)
                node.children.append(child_node)
                stack.append(child_node)
        return nodes

    async def get_tasks_by_status(self) -> Dict[TaskStatus, List[Task]]:
        grouped: Dict[TaskStatus, List[Task]] = {status: [] for status in TaskStatus}
        for task in await self.repository.list_all():
            grouped[task.status].append(task)
        return grouped

    async def search_tasks(self, query: str) -> List[Task]:
        """Substring search on task number, name and description."""
        return await self.repository.search(query)

    async def get_task_dependencies(self, number: str) -> List[Task]:
        async with self.repository.snapshot() as repo:
            task = await self._require(repo, number)
            return await repo.dependencies_of(task.id)

    async def get_dependent_tasks(self, number: str) -> List[Task]:
        async with self.repository.snapshot() as repo:
            task = await self._require(repo, number)
            return await repo.dependents(task.id)

    async def get_progress_tree(self) -> List[TaskProgress]:
        """
        Progress of every task in natural order.

        A task with children reports completed children over all children.
        A leaf reports 100 when completed, 0 otherwise.
        """
        all_tasks = await self.repository.list_all()
        by_id = {task.id: task for task in all_tasks}
        child_statuses: Dict[int, List[TaskStatus]] = {}
        for task in all_tasks:
            if task.parent_id is not None:
                child_statuses.setdefault(task.parent_id, []).append(task.status)

        progress = []
        for task in all_tasks:
            statuses = child_statuses.get(task.id, [])
            if statuses:
                percent = float(children_percentage(statuses))
            else:
                percent = 100.0 if task.status == TaskStatus.COMPLETED else 0.0

            level, parent_id = 0, task.parent_id
            while parent_id is not None and parent_id in by_id:
                level += 1
                parent_id = by_id[parent_id].parent_id

            progress.append(
                TaskProgress(
                    task_number=task.task_number,
                    name=task.name,
                    status=task.status,
                    level=level,
                    children=len(statuses),
                    completed_children=sum(1 for s in statuses if s == TaskStatus.COMPLETED),
                    completion_percentage=percent,
                )
            )
        return progress

    # ============================================================================
    # HELPERS
    # ============================================================================

    async def _open_tasks(self) -> List[Task]:
        return await self.repository.list(TaskFilter(include_completed=False, include_cancelled=False))

    async def _partition(self) -> Tuple[List[Task], List[Task]]:
        async with self.repository.snapshot() as repo:
            pending = await repo.list(TaskFilter(status=TaskStatus.PENDING))
            statuses = await repo.statuses_by_number()
        return partition_pending(pending, statuses)

    async def _require(self, repo: TaskRepository, number: str) -> Task:
        task = await repo.find_by_number(number)
        if task is None:
            raise TaskNotFoundError(f"Task {number} not found", task_number=number)
        return task
