"""Shared fixtures: every test gets its own SQLite file under tmp_path."""

import pytest

from tasktree.core.config import DatabaseConfig, TaskTreeConfig
from tasktree.database.connection import ConnectionPool
from tasktree.database.migrations import create_database_schema
from tasktree.tasks.navigation import NavigationEngine
from tasktree.tasks.repository import TaskRepository
from tasktree.tasks.service import TaskService
from tasktree.workspace import TaskWorkspace


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "tasks.db")


@pytest.fixture
async def pool(db_path):
    pool = ConnectionPool(db_path)
    await pool.initialize()
    await create_database_schema(pool)
    yield pool
    await pool.close()


@pytest.fixture
def repository(pool):
    return TaskRepository(pool)


@pytest.fixture
def service(repository):
    return TaskService(repository)


@pytest.fixture
def navigation(repository):
    return NavigationEngine(repository)


@pytest.fixture
def workspace_config(tmp_path):
    return TaskTreeConfig(database=DatabaseConfig(db_path=str(tmp_path / "workspace.db")))


@pytest.fixture
async def workspace(workspace_config):
    async with TaskWorkspace(workspace_config) as ws:
        yield ws


@pytest.fixture
def make_tasks(service):
    """Create tasks in order and return them keyed by number."""

    async def _make(*definitions):
        created = {}
        for definition in definitions:
            task = await service.create(definition)
            created[task.task_number] = task
        return created

    return _make
