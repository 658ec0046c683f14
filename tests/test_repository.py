"""Tests for TaskRepository storage primitives."""

import pytest

from tasktree.core.exceptions import DatabaseError, TaskNotFoundError
from tasktree.tasks.models import TaskFilter, TaskInput, TaskStatus


def definition(number, name=None, **kwargs):
    return TaskInput(number=number, name=name or f"Task {number}", **kwargs)


async def numbers(repository, task_filter=None):
    return [task.task_number for task in await repository.list(task_filter)]


class TestInsertAndFind:
    async def test_insert_assigns_id_and_timestamps(self, repository):
        task = await repository.insert(definition("1.0", description="root"))

        assert task.id > 0
        assert task.task_number == "1.0"
        assert task.status == TaskStatus.PENDING
        assert task.priority == 0
        assert task.parent_id is None
        assert task.created_at is not None
        assert task.updated_at is not None

        assert await repository.find_by_id(task.id) == task
        assert await repository.find_by_number("1.0") == task
        assert await repository.find_by_number("9.9") is None

    async def test_parent_number_is_joined(self, repository):
        root = await repository.insert(definition("1.0"))
        child = await repository.insert(definition("1.1"), parent_id=root.id)

        assert child.parent_id == root.id
        assert child.parent_number == "1.0"

    async def test_json_lists_round_trip(self, repository):
        task = await repository.insert(
            definition(
                "1.0",
                files=["src/a.py", "src/b.py"],
                docs_references=["https://example.com/docs"],
            )
        )
        assert task.files == ["src/a.py", "src/b.py"]
        assert task.docs_references == ["https://example.com/docs"]

    async def test_completed_insert_is_full_progress(self, repository):
        task = await repository.insert(definition("1.0", status=TaskStatus.COMPLETED))
        assert task.completion_percentage == 100.0

    async def test_duplicate_number_is_storage_error(self, repository):
        await repository.insert(definition("1.0"))
        with pytest.raises(DatabaseError):
            await repository.insert(definition("1.0"))
        assert await repository.count() == 1

    async def test_missing_dependency_leaves_nothing_behind(self, repository):
        with pytest.raises(TaskNotFoundError):
            await repository.insert(definition("2.0", dependencies=["1.0"]))
        assert await repository.find_by_number("2.0") is None

    async def test_dependencies_are_naturally_sorted(self, repository):
        await repository.insert(definition("1.10"))
        await repository.insert(definition("1.2"))
        task = await repository.insert(definition("3.0", dependencies=["1.10", "1.2"]))
        assert task.dependencies == ["1.2", "1.10"]


class TestList:
    async def test_natural_order(self, repository):
        for number in ["1.10", "2.0", "1.2", "1.1", "10.0"]:
            await repository.insert(definition(number))
        assert await numbers(repository) == ["1.1", "1.2", "1.10", "2.0", "10.0"]

    async def test_include_completed_excludes_completed_only(self, repository):
        await repository.insert(definition("1.0", status=TaskStatus.PENDING))
        await repository.insert(definition("2.0", status=TaskStatus.IN_PROGRESS))
        await repository.insert(definition("3.0", status=TaskStatus.COMPLETED))
        await repository.insert(definition("4.0", status=TaskStatus.CANCELLED))

        assert await numbers(repository) == ["1.0", "2.0", "4.0"]
        assert await numbers(repository, TaskFilter(include_completed=True)) == [
            "1.0",
            "2.0",
            "3.0",
            "4.0",
        ]
        assert await numbers(repository, TaskFilter(include_cancelled=False)) == ["1.0", "2.0"]

    async def test_status_completed_overrides_include_flag(self, repository):
        await repository.insert(definition("1.0", status=TaskStatus.COMPLETED))
        await repository.insert(definition("2.0"))
        assert await numbers(repository, TaskFilter(status=TaskStatus.COMPLETED)) == ["1.0"]

    async def test_parent_filters(self, repository):
        root = await repository.insert(definition("1.0"))
        await repository.insert(definition("1.1"), parent_id=root.id)
        await repository.insert(definition("1.2"), parent_id=root.id)
        await repository.insert(definition("2.0"))

        assert await numbers(repository, TaskFilter(parent_id=root.id)) == ["1.1", "1.2"]
        assert await numbers(repository, TaskFilter(parent_number="1.0")) == ["1.1", "1.2"]
        assert await numbers(repository, TaskFilter(root_only=True)) == ["1.0", "2.0"]
        assert [t.task_number for t in await repository.list_children(root.id)] == ["1.1", "1.2"]

    async def test_search_is_case_insensitive(self, repository):
        await repository.insert(definition("1.0", name="Write Parser"))
        await repository.insert(definition("2.0", name="Other", description="parser tests"))
        await repository.insert(definition("3.0", name="Unrelated"))

        found = await repository.search("PARSER")
        assert [task.task_number for task in found] == ["1.0", "2.0"]

    async def test_count(self, repository):
        await repository.insert(definition("1.0"))
        await repository.insert(definition("2.0", status=TaskStatus.COMPLETED))
        assert await repository.count() == 2
        assert await repository.count(TaskStatus.COMPLETED) == 1


class TestUpdate:
    async def test_update_merges_and_bumps_timestamp(self, repository):
        created = await repository.insert(definition("1.0"))

        updated = await repository.update("1.0", {"name": "Renamed", "priority": 7})

        assert updated.name == "Renamed"
        assert updated.priority == 7
        assert updated.description is None
        assert updated.updated_at >= created.updated_at

    async def test_update_replaces_dependency_set(self, repository):
        await repository.insert(definition("1.0"))
        await repository.insert(definition("2.0"))
        await repository.insert(definition("3.0", dependencies=["1.0"]))

        updated = await repository.update("3.0", {"dependencies": ["2.0"]})
        assert updated.dependencies == ["2.0"]

        cleared = await repository.update("3.0", {"dependencies": []})
        assert cleared.dependencies == []

    async def test_update_missing_returns_none(self, repository):
        assert await repository.update("7.0", {"name": "x"}) is None

    async def test_unknown_field_rejected(self, repository):
        await repository.insert(definition("1.0"))
        with pytest.raises(DatabaseError):
            await repository.update("1.0", {"task_number": "2.0"})


class TestDelete:
    async def test_delete_removes_subtree_and_edges(self, repository):
        root = await repository.insert(definition("1.0"))
        child = await repository.insert(definition("1.1"), parent_id=root.id)
        await repository.insert(definition("1.1.1"), parent_id=child.id)
        await repository.insert(definition("1.2"), parent_id=root.id)
        await repository.insert(definition("2.0", dependencies=["1.1"]))

        assert await repository.delete("1.0") is True

        for number in ["1.0", "1.1", "1.1.1", "1.2"]:
            assert await repository.find_by_number(number) is None
        survivor = await repository.find_by_number("2.0")
        assert survivor.dependencies == []
        assert await repository.dependency_edges() == []

    async def test_delete_missing_returns_false(self, repository):
        assert await repository.delete("5.0") is False


class TestDependencies:
    async def test_dependency_queries(self, repository):
        first = await repository.insert(definition("1.0", status=TaskStatus.COMPLETED))
        second = await repository.insert(definition("2.0"))
        third = await repository.insert(definition("3.0", dependencies=["1.0", "2.0"]))

        assert [t.task_number for t in await repository.incomplete_dependencies(third.id)] == ["2.0"]
        assert [t.task_number for t in await repository.dependencies_of(third.id)] == ["1.0", "2.0"]
        assert [t.task_number for t in await repository.dependents(first.id)] == ["3.0"]
        assert [t.task_number for t in await repository.dependents(second.id)] == ["3.0"]
        assert sorted(await repository.dependency_edges()) == [("3.0", "1.0"), ("3.0", "2.0")]

    async def test_existing_numbers(self, repository):
        await repository.insert(definition("1.0"))
        await repository.insert(definition("2.0"))
        assert await repository.existing_numbers() == {"1.0", "2.0"}
        assert await repository.existing_numbers(["2.0", "3.0"]) == {"2.0"}
        assert await repository.existing_numbers([]) == set()


class TestTransactionScopes:
    async def test_atomic_rolls_back_on_error(self, repository):
        with pytest.raises(RuntimeError):
            async with repository.atomic() as repo:
                await repo.insert(definition("1.0"))
                await repo.insert(definition("2.0"))
                raise RuntimeError("abort")

        assert await repository.count() == 0

    async def test_atomic_commits(self, repository):
        async with repository.atomic() as repo:
            root = await repo.insert(definition("1.0"))
            await repo.insert(definition("1.1"), parent_id=root.id)
            assert await repo.count() == 2

        assert await repository.count() == 2

    async def test_nested_atomic_reuses_scope(self, repository):
        async with repository.atomic() as repo:
            async with repo.atomic() as inner:
                assert inner is repo

    async def test_snapshot_is_read_only(self, repository):
        assert not repository.is_bound
        async with repository.snapshot() as repo:
            assert repo.is_bound
            with pytest.raises(DatabaseError):
                await repo.insert(definition("1.0"))
        assert await repository.count() == 0
