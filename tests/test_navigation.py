"""Tests for NavigationEngine views."""

import pytest

from tasktree.core.exceptions import TaskNotFoundError
from tasktree.tasks.models import Readiness, TaskStatus
from tasktree.tasks.navigation import classify


def task(number, parent=None, **kwargs):
    data = {"number": number, "name": f"Task {number}", **kwargs}
    if parent is not None:
        data["parent"] = parent
    return data


class TestCurrentTask:
    async def test_empty_store(self, navigation):
        assert await navigation.get_current_task() is None
        assert await navigation.get_remaining_task_count() == 0

    async def test_in_progress_wins_over_ready(self, navigation, make_tasks):
        await make_tasks(task("1.0"), task("3.0", status="in_progress"), task("2.0", status="in_progress"))
        current = await navigation.get_current_task()
        assert current.task_number == "2.0"

    async def test_lowest_ready_pending(self, navigation, make_tasks):
        await make_tasks(
            task("1.0", status="completed"),
            task("1.10"),
            task("1.2", dependencies=["1.10"]),
            task("1.9"),
        )
        current = await navigation.get_current_task()
        assert current.task_number == "1.9"

    async def test_everything_blocked(self, navigation, make_tasks):
        await make_tasks(task("1.0", status="cancelled"), task("2.0", dependencies=["1.0"]))
        assert await navigation.get_current_task() is None
        assert await navigation.get_remaining_task_count() == 1


class TestNextPrevious:
    async def test_natural_order(self, navigation, make_tasks):
        await make_tasks(
            task("1.0"),
            task("1.2", parent="1.0"),
            task("1.10", parent="1.0"),
            task("2.0", status="completed"),
            task("3.0", status="in_progress"),
        )

        assert (await navigation.get_next_task("1.2")).task_number == "1.10"
        assert (await navigation.get_next_task("1.10")).task_number == "3.0"
        assert await navigation.get_next_task("3.0") is None
        assert (await navigation.get_next_task()).task_number == "3.0"

        assert (await navigation.get_previous_task("1.10")).task_number == "1.2"
        assert (await navigation.get_previous_task("3.0")).task_number == "1.10"
        assert await navigation.get_previous_task("1.0") is None
        assert await navigation.get_previous_task() is None

    async def test_remaining_count(self, navigation, make_tasks):
        await make_tasks(
            task("1.0"),
            task("2.0", status="in_progress"),
            task("3.0", status="completed"),
            task("4.0", status="cancelled"),
        )
        assert await navigation.get_remaining_task_count() == 2


class TestReadiness:
    async def test_ready_and_blocked(self, navigation, make_tasks, service):
        await make_tasks(task("1.0"), task("2.0", dependencies=["1.0"]), task("3.0", status="in_progress"))

        assert [t.task_number for t in await navigation.get_ready_tasks()] == ["1.0"]
        assert [t.task_number for t in await navigation.get_blocked_tasks()] == ["2.0"]
        assert await navigation.get_readiness("2.0") == Readiness.BLOCKED
        assert await navigation.get_readiness("3.0") == Readiness.NONE

        await service.complete_task("1.0")

        assert await navigation.get_readiness("2.0") == Readiness.READY
        assert await navigation.get_blocked_tasks() == []

    async def test_readiness_of_missing_task(self, navigation):
        with pytest.raises(TaskNotFoundError):
            await navigation.get_readiness("1.0")

    async def test_missing_dependency_counts_as_blocked(self, navigation, make_tasks):
        created = await make_tasks(task("1.0"), task("2.0", dependencies=["1.0"]))
        statuses = {"2.0": TaskStatus.PENDING}
        assert classify(created["2.0"], statuses) == Readiness.BLOCKED
        assert classify(created["1.0"], statuses) == Readiness.READY


class TestViews:
    async def test_hierarchy(self, navigation, make_tasks):
        await make_tasks(
            task("1.0"),
            task("1.1", parent="1.0"),
            task("1.1.1", parent="1.1"),
            task("1.2", parent="1.0"),
            task("2.0"),
        )

        roots = await navigation.get_task_hierarchy()

        assert [node.task.task_number for node in roots] == ["1.0", "2.0"]
        first = roots[0]
        assert [node.task.task_number for node in first.children] == ["1.1", "1.2"]
        assert [(node.task.task_number, node.level) for node in first.walk()] == [
            ("1.0", 0),
            ("1.1", 1),
            ("1.1.1", 2),
            ("1.2", 1),
        ]

        subtree = await navigation.get_task_hierarchy("1.1")
        assert len(subtree) == 1
        assert subtree[0].level == 0
        assert [node.task.task_number for node in subtree[0].children] == ["1.1.1"]

        with pytest.raises(TaskNotFoundError):
            await navigation.get_task_hierarchy("9.0")

    async def test_tasks_by_status(self, navigation, make_tasks):
        await make_tasks(task("1.0"), task("2.0", status="completed"), task("3.0", status="completed"))

        grouped = await navigation.get_tasks_by_status()

        assert set(grouped) == set(TaskStatus)
        assert [t.task_number for t in grouped[TaskStatus.COMPLETED]] == ["2.0", "3.0"]
        assert grouped[TaskStatus.CANCELLED] == []

    async def test_search(self, navigation, make_tasks):
        await make_tasks(task("1.0", name="Design schema"), task("2.0", name="Write docs"))
        assert [t.task_number for t in await navigation.search_tasks("schema")] == ["1.0"]
        assert await navigation.search_tasks("nothing here") == []

    async def test_dependencies_and_dependents(self, navigation, make_tasks):
        await make_tasks(task("1.0"), task("2.0"), task("3.0", dependencies=["2.0", "1.0"]))

        assert [t.task_number for t in await navigation.get_task_dependencies("3.0")] == ["1.0", "2.0"]
        assert [t.task_number for t in await navigation.get_dependent_tasks("1.0")] == ["3.0"]
        assert await navigation.get_dependent_tasks("3.0") == []

        with pytest.raises(TaskNotFoundError):
            await navigation.get_task_dependencies("4.0")
        with pytest.raises(TaskNotFoundError):
            await navigation.get_dependent_tasks("4.0")

    async def test_progress_tree(self, navigation, make_tasks, service):
        await make_tasks(
            task("1.0"),
            task("1.1", parent="1.0"),
            task("1.2", parent="1.0"),
            task("1.3", parent="1.0"),
            task("2.0"),
        )
        await service.complete_task("1.1")

        progress = {entry.task_number: entry for entry in await navigation.get_progress_tree()}

        assert progress["1.0"].children == 3
        assert progress["1.0"].completed_children == 1
        assert progress["1.0"].completion_percentage == 33.0
        assert progress["1.1"].level == 1
        assert progress["1.1"].completion_percentage == 100.0
        assert progress["2.0"].completion_percentage == 0.0
