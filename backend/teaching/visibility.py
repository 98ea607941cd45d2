"""
Task visibility filter.

Applies the READ_TASK rule across a collection and returns the visible tasks
in the display order every caller relies on: due date ascending, tasks without
a due date last, ties broken by creation time descending (newest first).
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Tuple

from identity_access.domain import Identity

from teaching.models import TaskData
from teaching.policy import can_read_group


def task_order_key(task: TaskData) -> Tuple[int, float, float]:
    due: datetime | None = task.due_date
    return (
        1 if due is None else 0,
        due.timestamp() if due is not None else 0.0,
        -task.created_at.timestamp(),
    )


def sort_tasks(tasks: Iterable[TaskData]) -> List[TaskData]:
    return sorted(tasks, key=task_order_key)


def filter_visible_tasks(identity: Identity, tasks: Iterable[TaskData]) -> List[TaskData]:
    """Return the tasks ``identity`` may read, ordered for display."""
    return sort_tasks(t for t in tasks if can_read_group(identity, t.group_id))
