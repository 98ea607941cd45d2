"""Visibility filter and display ordering."""

from __future__ import annotations

from datetime import datetime, timezone

from identity_access.domain import Identity, Role
from teaching.models import TaskData, TaskStatus
from teaching.visibility import filter_visible_tasks, sort_tasks

GROUP_A, GROUP_B = 1, 2


def _task(task_id: int, *, group_id=None, due=None, created=None) -> TaskData:
    created_at = created or datetime(2025, 6, 1, tzinfo=timezone.utc)
    return TaskData(
        id=task_id,
        title=f"T{task_id}",
        description="",
        status=TaskStatus.ACTIVE,
        due_date=due,
        group_id=group_id,
        created_by_id=100,
        created_at=created_at,
        updated_at=created_at,
    )


def test_student_sees_global_and_own_group_in_due_order():
    t1 = _task(1, group_id=None, due=datetime(2025, 6, 12, tzinfo=timezone.utc))
    t2 = _task(2, group_id=GROUP_A, due=datetime(2025, 6, 14, tzinfo=timezone.utc))
    t3 = _task(3, group_id=GROUP_B, due=datetime(2025, 6, 11, tzinfo=timezone.utc))
    student = Identity(id=5, roles=frozenset({Role.STUDENT}), group_id=GROUP_A)

    visible = filter_visible_tasks(student, [t3, t2, t1])

    assert [t.id for t in visible] == [1, 2]


def test_staff_see_everything_unfiltered():
    tasks = [_task(i, group_id=g) for i, g in ((1, None), (2, GROUP_A), (3, GROUP_B))]
    for roles in ({Role.TEACHER}, {Role.ADMIN}):
        caller = Identity(id=9, roles=frozenset(roles))
        assert {t.id for t in filter_visible_tasks(caller, tasks)} == {1, 2, 3}


def test_student_without_group_sees_only_global_tasks():
    tasks = [_task(1), _task(2, group_id=GROUP_A)]
    student = Identity(id=5, roles=frozenset({Role.STUDENT}))
    assert [t.id for t in filter_visible_tasks(student, tasks)] == [1]


def test_undated_tasks_sort_last_and_ties_prefer_newest():
    due = datetime(2025, 6, 20, tzinfo=timezone.utc)
    older = _task(1, due=due, created=datetime(2025, 5, 1, tzinfo=timezone.utc))
    newer = _task(2, due=due, created=datetime(2025, 5, 2, tzinfo=timezone.utc))
    undated = _task(3)
    earliest = _task(4, due=datetime(2025, 6, 1, tzinfo=timezone.utc))

    ordered = sort_tasks([undated, older, newer, earliest])

    assert [t.id for t in ordered] == [4, 2, 1, 3]
