"""
Deadline classifier for the planning view.

Buckets (first match wins):
    overdue    due calendar day strictly before today's calendar day
    thisWeek   due at or before the coming Sunday 23:59:59.999999 (a week ahead
               when today is Sunday)
    nextWeek   due at or before the Sunday after that
    later      any other due date
    noDeadline no due date

"Local" means the timezone of ``now``. Due timestamps are converted into it
before calendar days are compared, so the caller picks the planner timezone by
choosing how it builds ``now``. Only ACTIVE and IN_REVIEW tasks are planned.

Everything here is pure: no store access, no clock reads.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional

from teaching.models import TaskData, TaskStatus
from teaching.visibility import sort_tasks

from planning.models import PriorityRecord


class Bucket(str, Enum):
    OVERDUE = "overdue"
    THIS_WEEK = "thisWeek"
    NEXT_WEEK = "nextWeek"
    LATER = "later"
    NO_DEADLINE = "noDeadline"


BUCKET_ORDER = tuple(Bucket)
PLANNABLE_STATUSES = frozenset({TaskStatus.ACTIVE, TaskStatus.IN_REVIEW})


def end_of_week(now: datetime) -> datetime:
    """The coming Sunday at 23:59:59.999999.

    On a Sunday that is the Sunday a week ahead: the day itself already counts
    toward the new week.
    """
    days = 7 - now.isoweekday() % 7
    sunday = now + timedelta(days=days)
    return sunday.replace(hour=23, minute=59, second=59, microsecond=999999)


def _localize(due: datetime, now: datetime) -> datetime:
    if due.tzinfo is None:
        return due.replace(tzinfo=now.tzinfo)
    return due.astimezone(now.tzinfo)


def classify_due(due: Optional[datetime], now: datetime) -> Bucket:
    if due is None:
        return Bucket.NO_DEADLINE
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local_due = _localize(due, now)
    if local_due.date() < now.date():
        return Bucket.OVERDUE
    week_end = end_of_week(now)
    if local_due <= week_end:
        return Bucket.THIS_WEEK
    if local_due <= week_end + timedelta(days=7):
        return Bucket.NEXT_WEEK
    return Bucket.LATER


def is_plannable(task: TaskData) -> bool:
    return task.status in PLANNABLE_STATUSES


@dataclass(frozen=True)
class PlanItem:
    task: TaskData
    priority: Optional[int]
    estimated_minutes: Optional[int]


def _index_priorities(priorities: Iterable[PriorityRecord] | Mapping[int, PriorityRecord]) -> Dict[int, PriorityRecord]:
    if isinstance(priorities, Mapping):
        return dict(priorities)
    return {p.task_id: p for p in priorities}


def plan(
    now: datetime,
    tasks: Iterable[TaskData],
    priorities: Iterable[PriorityRecord] | Mapping[int, PriorityRecord] = (),
) -> Dict[Bucket, List[PlanItem]]:
    """Bucket plannable tasks and order each bucket by priority.

    Tasks without a priority sort after every prioritized task and keep their
    deadline-then-creation order among themselves (the sort is stable).
    """
    by_task = _index_priorities(priorities)
    buckets: Dict[Bucket, List[PlanItem]] = {b: [] for b in BUCKET_ORDER}
    for task in sort_tasks(t for t in tasks if is_plannable(t)):
        rec = by_task.get(task.id)
        item = PlanItem(
            task=task,
            priority=rec.priority if rec else None,
            estimated_minutes=rec.estimated_minutes if rec else None,
        )
        buckets[classify_due(task.due_date, now)].append(item)
    for items in buckets.values():
        items.sort(key=lambda i: math.inf if i.priority is None else i.priority)
    return buckets


def classify(
    now: datetime,
    tasks: Iterable[TaskData],
    priorities: Iterable[PriorityRecord] | Mapping[int, PriorityRecord] = (),
) -> Dict[Bucket, List[TaskData]]:
    """Map every bucket to its ordered task list."""
    return {bucket: [i.task for i in items] for bucket, items in plan(now, tasks, priorities).items()}
