"""
TaskWorkspace - one open task store with its services wired together.

Typical use by a CLI or an automation wrapper:

    async with TaskWorkspace(config) as ws:
        task = await ws.navigation.get_current_task()
        ...
        await ws.tasks.complete_task(task.task_number, notes="done")
"""

from typing import Optional

import structlog

from tasktree.core.config import TaskTreeConfig
from tasktree.core.exceptions import DatabaseError
from tasktree.database.connection import ConnectionPool
from tasktree.database.migrations import create_database_schema
from tasktree.tasks.navigation import NavigationEngine
from tasktree.tasks.repository import TaskRepository
from tasktree.tasks.service import TaskService

logger = structlog.get_logger(__name__)


class TaskWorkspace:
    """Owns the connection pool and exposes .tasks and .navigation."""

    def __init__(self, config: Optional[TaskTreeConfig] = None):
        self.config = config or TaskTreeConfig()
        self.pool = ConnectionPool.from_config(self.config.database)
        self.repository = TaskRepository(self.pool)
        self.tasks = TaskService(self.repository, config=self.config.tasks)
        self.navigation = NavigationEngine(self.repository)
        self._opened = False

    async def __aenter__(self) -> "TaskWorkspace":
        """Async context manager entry."""
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    async def open(self) -> None:
        """Initialize the engine and bring the schema up to date."""
        if self._opened:
            return

        await self.pool.initialize()
        try:
            if self.config.database.auto_migrate:
                await create_database_schema(self.pool)
            elif not await self.pool.health_check():
                raise DatabaseError("Task store is not reachable", error_code="DB_UNAVAILABLE")
        except Exception:
            await self.pool.close()
            raise

        self._opened = True
        logger.info(
            "Task workspace opened",
            db_path=str(self.pool.db_path),
            environment=self.config.environment,
        )

    async def close(self) -> None:
        if not self._opened:
            return
        await self.pool.close()
        self._opened = False
        logger.info("Task workspace closed")
