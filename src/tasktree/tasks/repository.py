"""
Task Repository Layer - SQLAlchemy Core over aiosqlite

Durable storage of task rows and dependency edges.

Key Features:
- Point lookups by id and by task number
- Filtered listing in natural task-number order
- Dependency edges stored by id, exposed as task numbers
- Subtree deletion collected with an explicit id stack
- atomic(): a repository bound to one write transaction
- snapshot(): a repository bound to one read transaction

The repository stores what it is given. Business rules (parent existence,
duplicates, blocked completion) are enforced by TaskService.
"""

import contextlib
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Set, Tuple

import structlog
from sqlalchemy import and_, delete, func, insert, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection

from tasktree.core.exceptions import DatabaseError, TaskNotFoundError
from tasktree.database.connection import ConnectionPool
from tasktree.database.schema import task_dependencies, tasks
from tasktree.tasks.models import Task, TaskFilter, TaskInput, TaskStatus
from tasktree.tasks.numbering import sort_by_number, sort_numbers

logger = structlog.get_logger(__name__)

_parent = tasks.alias("parent")
_dependency = tasks.alias("dependency")

_TASK_COLUMNS = (
    "name",
    "description",
    "status",
    "priority",
    "files",
    "docs_references",
    "testing_strategy",
    "notes",
    "completion_notes",
    "completion_percentage",
)


class TaskRepository:
    """
    Async repository for task rows.

    An unbound repository opens a short transaction per call. A bound one
    (from atomic() or snapshot()) reuses its connection for every call.
    """

    def __init__(
        self,
        pool: ConnectionPool,
        conn: Optional[AsyncConnection] = None,
        writable: bool = True,
    ):
        self.pool = pool
        self._conn = conn
        self._writable = writable

    @property
    def is_bound(self) -> bool:
        return self._conn is not None

    # ============================================================================
    # TRANSACTION SCOPES
    # ============================================================================

    @contextlib.asynccontextmanager
    async def atomic(self) -> AsyncIterator["TaskRepository"]:
        """
        Run a sequence of repository calls as one write transaction.

        Commits on normal exit, rolls back on any exception. Inside an
        already-bound write scope the same repository is yielded.
        """
        if self.is_bound:
            if not self._writable:
                raise DatabaseError("Cannot open a write scope inside a read snapshot")
            yield self
            return

        async with self.pool.write_transaction() as conn:
            with self._translate_errors():
                yield TaskRepository(self.pool, conn, writable=True)

    @contextlib.asynccontextmanager
    async def snapshot(self) -> AsyncIterator["TaskRepository"]:
        """Run a sequence of reads against one consistent snapshot."""
        if self.is_bound:
            yield self
            return

        async with self.pool.read_transaction() as conn:
            with self._translate_errors():
                yield TaskRepository(self.pool, conn, writable=False)

    @contextlib.contextmanager
    def _translate_errors(self):
        try:
            yield
        except SQLAlchemyError as e:
            raise DatabaseError(f"Storage operation failed: {e}", table=tasks.name) from e

    @contextlib.asynccontextmanager
    async def _read(self) -> AsyncIterator[AsyncConnection]:
        if self.is_bound:
            yield self._conn
            return
        async with self.pool.read_transaction() as conn:
            with self._translate_errors():
                yield conn

    @contextlib.asynccontextmanager
    async def _write(self) -> AsyncIterator[AsyncConnection]:
        if self.is_bound:
            if not self._writable:
                raise DatabaseError("Write attempted inside a read snapshot")
            yield self._conn
            return
        async with self.pool.write_transaction() as conn:
            with self._translate_errors():
                yield conn

    # ============================================================================
    # WRITES
    # ============================================================================

    async def insert(
        self,
        task_input: TaskInput,
        parent_id: Optional[int] = None,
        with_dependencies: bool = True,
    ) -> Task:
        """
        Insert a task row and, unless told otherwise, its dependency edges.

        Args:
            task_input: Task definition (status/priority defaults already applied)
            parent_id: Resolved parent id, None for a root task
            with_dependencies: Write dependency edges now. Bulk import writes
                them in a second pass once the whole batch exists.
        """
        status = task_input.status or TaskStatus.PENDING
        now = datetime.now()
        values = {
            "parent_id": parent_id,
            "task_number": task_input.number,
            "name": task_input.name,
            "description": task_input.description,
            "status": status.value,
            "priority": task_input.priority if task_input.priority is not None else 0,
            "files": list(task_input.files),
            "docs_references": list(task_input.docs_references),
            "testing_strategy": task_input.testing_strategy,
            "notes": task_input.notes,
            "completion_notes": task_input.completion_notes,
            "completion_percentage": 100.0 if status == TaskStatus.COMPLETED else None,
            "created_at": now,
            "updated_at": now,
        }

        async with self._write() as conn:
            result = await conn.execute(insert(tasks).values(**values))
            task_id = result.inserted_primary_key[0]
            if with_dependencies and task_input.dependencies:
                await self._replace_dependencies(conn, task_id, task_input.dependencies)
            task = await self._fetch_one(conn, tasks.c.id == task_id)

        logger.debug("Task inserted", task_number=task.task_number, task_id=task.id)
        return task

    async def set_dependencies(self, task_id: int, numbers: Iterable[str]) -> None:
        """Replace the dependency edge set of a task."""
        async with self._write() as conn:
            await self._replace_dependencies(conn, task_id, list(numbers))

    async def update(self, number: str, changes: Dict[str, Any]) -> Optional[Task]:
        """
        Apply changes to the task with this number and bump updated_at.

        A "dependencies" entry replaces the edge set.

        Returns:
            The updated task, None if no task carries this number
        """
        async with self._write() as conn:
            task_id = await self._id_for(conn, number)
            if task_id is None:
                return None
            await self._apply_changes(conn, task_id, changes)
            return await self._fetch_one(conn, tasks.c.id == task_id)

    async def update_by_id(self, task_id: int, changes: Dict[str, Any]) -> Optional[Task]:
        async with self._write() as conn:
            await self._apply_changes(conn, task_id, changes)
            return await self._fetch_one(conn, tasks.c.id == task_id)

    async def delete(self, number: str) -> bool:
        """
        Delete a task and its whole subtree.

        Returns:
            False only when no task carries this number
        """
        async with self._write() as conn:
            root_id = await self._id_for(conn, number)
            if root_id is None:
                return False

            subtree_ids: List[int] = []
            stack = [root_id]
            while stack:
                current = stack.pop()
                subtree_ids.append(current)
                result = await conn.execute(select(tasks.c.id).where(tasks.c.parent_id == current))
                stack.extend(row[0] for row in result.fetchall())

            await conn.execute(
                delete(task_dependencies).where(
                    or_(
                        task_dependencies.c.task_id.in_(subtree_ids),
                        task_dependencies.c.depends_on_id.in_(subtree_ids),
                    )
                )
            )
            # children before parents
            for task_id in reversed(subtree_ids):
                await conn.execute(delete(tasks).where(tasks.c.id == task_id))

        logger.info("Task subtree deleted", task_number=number, deleted=len(subtree_ids))
        return True

    # ============================================================================
    # READS
    # ============================================================================

    async def find_by_id(self, task_id: int) -> Optional[Task]:
        async with self._read() as conn:
            return await self._fetch_one(conn, tasks.c.id == task_id)

    async def find_by_number(self, number: str) -> Optional[Task]:
        async with self._read() as conn:
            return await self._fetch_one(conn, tasks.c.task_number == number)

    async def list(self, task_filter: Optional[TaskFilter] = None) -> List[Task]:
        """
        List tasks in natural task-number order.

        Completed tasks are left out unless include_completed is set or the
        filter asks for status=completed explicitly.
        """
        task_filter = task_filter or TaskFilter()
        conditions = []

        if task_filter.status is not None:
            conditions.append(tasks.c.status == task_filter.status.value)
        if task_filter.parent_id is not None:
            conditions.append(tasks.c.parent_id == task_filter.parent_id)
        if task_filter.parent_number is not None:
            conditions.append(_parent.c.task_number == task_filter.parent_number)
        if task_filter.root_only:
            conditions.append(tasks.c.parent_id.is_(None))
        if not task_filter.include_completed and task_filter.status != TaskStatus.COMPLETED:
            conditions.append(tasks.c.status != TaskStatus.COMPLETED.value)
        if not task_filter.include_cancelled and task_filter.status != TaskStatus.CANCELLED:
            conditions.append(tasks.c.status != TaskStatus.CANCELLED.value)

        async with self._read() as conn:
            return await self._fetch_many(conn, and_(*conditions) if conditions else None)

    async def list_all(self) -> List[Task]:
        """Every task, any status."""
        async with self._read() as conn:
            return await self._fetch_many(conn, None)

    async def list_children(self, parent_id: int) -> List[Task]:
        async with self._read() as conn:
            return await self._fetch_many(conn, tasks.c.parent_id == parent_id)

    async def child_statuses(self, parent_id: int) -> List[TaskStatus]:
        async with self._read() as conn:
            result = await conn.execute(select(tasks.c.status).where(tasks.c.parent_id == parent_id))
            return [TaskStatus(row[0]) for row in result.fetchall()]

    async def existing_numbers(self, numbers: Optional[Iterable[str]] = None) -> Set[str]:
        """
        Task numbers already stored.

        Args:
            numbers: Restrict the check to these numbers. None returns all.
        """
        query = select(tasks.c.task_number)
        if numbers is not None:
            numbers = list(numbers)
            if not numbers:
                return set()
            query = query.where(tasks.c.task_number.in_(numbers))
        async with self._read() as conn:
            result = await conn.execute(query)
            return {row[0] for row in result.fetchall()}

    async def statuses_by_number(self) -> Dict[str, TaskStatus]:
        async with self._read() as conn:
            result = await conn.execute(select(tasks.c.task_number, tasks.c.status))
            return {row[0]: TaskStatus(row[1]) for row in result.fetchall()}

    async def incomplete_dependencies(self, task_id: int) -> List[Task]:
        """Dependencies of a task that are not completed yet."""
        async with self._read() as conn:
            dep_ids = select(task_dependencies.c.depends_on_id).where(
                task_dependencies.c.task_id == task_id
            )
            return await self._fetch_many(
                conn,
                and_(tasks.c.id.in_(dep_ids), tasks.c.status != TaskStatus.COMPLETED.value),
            )

    async def dependencies_of(self, task_id: int) -> List[Task]:
        async with self._read() as conn:
            dep_ids = select(task_dependencies.c.depends_on_id).where(
                task_dependencies.c.task_id == task_id
            )
            return await self._fetch_many(conn, tasks.c.id.in_(dep_ids))

    async def dependents(self, task_id: int) -> List[Task]:
        """Tasks that depend on this one."""
        async with self._read() as conn:
            dependent_ids = select(task_dependencies.c.task_id).where(
                task_dependencies.c.depends_on_id == task_id
            )
            return await self._fetch_many(conn, tasks.c.id.in_(dependent_ids))

    async def dependency_edges(self) -> List[Tuple[str, str]]:
        """All (task_number, depends_on_number) pairs."""
        owner = tasks.alias("owner")
        query = (
            select(owner.c.task_number, _dependency.c.task_number)
            .select_from(
                task_dependencies.join(owner, task_dependencies.c.task_id == owner.c.id).join(
                    _dependency, task_dependencies.c.depends_on_id == _dependency.c.id
                )
            )
        )
        async with self._read() as conn:
            result = await conn.execute(query)
            return [(row[0], row[1]) for row in result.fetchall()]

    async def search(self, text: str) -> List[Task]:
        """Case-insensitive substring match on number, name and description."""
        condition = or_(
            tasks.c.task_number.icontains(text, autoescape=True),
            tasks.c.name.icontains(text, autoescape=True),
            tasks.c.description.icontains(text, autoescape=True),
        )
        async with self._read() as conn:
            return await self._fetch_many(conn, condition)

    async def count(self, status: Optional[TaskStatus] = None) -> int:
        query = select(func.count()).select_from(tasks)
        if status is not None:
            query = query.where(tasks.c.status == status.value)
        async with self._read() as conn:
            result = await conn.execute(query)
            return result.scalar_one()

    # ============================================================================
    # HELPERS
    # ============================================================================

    def _task_query(self):
        return select(tasks, _parent.c.task_number.label("parent_number")).select_from(
            tasks.outerjoin(_parent, tasks.c.parent_id == _parent.c.id)
        )

    async def _fetch_one(self, conn: AsyncConnection, condition) -> Optional[Task]:
        result = await conn.execute(self._task_query().where(condition))
        row = result.fetchone()
        if row is None:
            return None
        dependencies = await self._load_dependencies(conn, [row.id])
        return self._row_to_task(row, dependencies.get(row.id, []))

    async def _fetch_many(self, conn: AsyncConnection, condition) -> List[Task]:
        query = self._task_query()
        if condition is not None:
            query = query.where(condition)
        rows = (await conn.execute(query)).fetchall()
        if not rows:
            return []
        if condition is None:
            dependencies = await self._load_dependencies(conn, None)
        else:
            dependencies = await self._load_dependencies(conn, [row.id for row in rows])
        return sort_by_number(
            self._row_to_task(row, dependencies.get(row.id, [])) for row in rows
        )

    async def _load_dependencies(
        self, conn: AsyncConnection, task_ids: Optional[List[int]]
    ) -> Dict[int, List[str]]:
        """Dependency numbers per task id, naturally sorted."""
        query = select(task_dependencies.c.task_id, _dependency.c.task_number).select_from(
            task_dependencies.join(_dependency, task_dependencies.c.depends_on_id == _dependency.c.id)
        )
        if task_ids is not None:
            query = query.where(task_dependencies.c.task_id.in_(task_ids))

        grouped: Dict[int, List[str]] = {}
        for task_id, number in (await conn.execute(query)).fetchall():
            grouped.setdefault(task_id, []).append(number)
        return {task_id: sort_numbers(numbers) for task_id, numbers in grouped.items()}

    async def _id_for(self, conn: AsyncConnection, number: str) -> Optional[int]:
        result = await conn.execute(select(tasks.c.id).where(tasks.c.task_number == number))
        return result.scalar_one_or_none()

    async def _replace_dependencies(
        self, conn: AsyncConnection, task_id: int, numbers: List[str]
    ) -> None:
        await conn.execute(delete(task_dependencies).where(task_dependencies.c.task_id == task_id))
        if not numbers:
            return

        result = await conn.execute(
            select(tasks.c.task_number, tasks.c.id).where(tasks.c.task_number.in_(numbers))
        )
        ids_by_number = {row[0]: row[1] for row in result.fetchall()}

        missing = [n for n in numbers if n not in ids_by_number]
        if missing:
            raise TaskNotFoundError(
                f"Dependency task {missing[0]} not found",
                task_number=missing[0],
                task_id=task_id,
            )

        await conn.execute(
            insert(task_dependencies),
            [{"task_id": task_id, "depends_on_id": ids_by_number[n]} for n in dict.fromkeys(numbers)],
        )

    async def _apply_changes(
        self, conn: AsyncConnection, task_id: int, changes: Dict[str, Any]
    ) -> None:
        changes = dict(changes)
        if "dependencies" in changes:
            await self._replace_dependencies(conn, task_id, list(changes.pop("dependencies") or []))

        values: Dict[str, Any] = {}
        for key, value in changes.items():
            if key not in _TASK_COLUMNS:
                raise DatabaseError(f"Unknown task field: {key}", table=tasks.name)
            if isinstance(value, TaskStatus):
                value = value.value
            elif key in ("files", "docs_references") and value is None:
                value = []
            values[key] = value
        values["updated_at"] = datetime.now()

        await conn.execute(update(tasks).where(tasks.c.id == task_id).values(**values))

    def _row_to_task(self, row, dependencies: List[str]) -> Task:
        """Convert database row to Task model"""
        return Task(
            id=row.id,
            task_number=row.task_number,
            name=row.name,
            description=row.description,
            parent_id=row.parent_id,
            parent_number=row.parent_number,
            status=TaskStatus(row.status),
            priority=row.priority,
            dependencies=dependencies,
            files=list(row.files or []),
            docs_references=list(row.docs_references or []),
            testing_strategy=row.testing_strategy,
            notes=row.notes,
            completion_notes=row.completion_notes,
            completion_percentage=row.completion_percentage,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )
