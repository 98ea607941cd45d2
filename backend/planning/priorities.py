"""
Priority store use cases and the reorder protocol.

Why:
    Drag-and-drop in a client produces a new order for one bucket. Instead of
    replaying many single-task updates (which could interleave with another
    drag and leave duplicate or missing positions), the observed order is
    turned into one batch of contiguous priorities 0..n-1 and handed to the
    store, which applies it atomically per caller.

Scope:
    Records are stored per (caller, task). Two callers ordering the same task
    never see each other's priorities or estimates.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Protocol, Sequence, Tuple

from identity_access.domain import Identity

from teaching.errors import InvalidInput
from teaching.models import UNSET
from teaching.services.tasks import TasksService

from planning.deadlines import Bucket, classify_due, is_plannable
from planning.models import PriorityRecord

logger = logging.getLogger("coursetasks.planning.priorities")


class PriorityRepoProtocol(Protocol):
    def list_priorities(self, user_id: int) -> List[PriorityRecord]:
        ...

    def upsert_priority(
        self,
        user_id: int,
        task_id: int,
        *,
        priority: object = UNSET,
        estimated_minutes: object = UNSET,
    ) -> PriorityRecord:
        ...

    def apply_priority_batch(self, user_id: int, assignments: Sequence[Tuple[int, int]]) -> List[PriorityRecord]:
        """Set each ``(task_id, priority)`` in one atomic step, keeping estimates."""
        ...


def _as_int(value: object, code: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInput(code)
    return value


def normalize_priority(value: object) -> int:
    priority = _as_int(value, "invalid_priority")
    if priority < 0:
        raise InvalidInput("invalid_priority")
    return priority


def normalize_estimate(value: object) -> Optional[int]:
    if value is None:
        return None
    minutes = _as_int(value, "invalid_estimate")
    if minutes < 1:
        raise InvalidInput("invalid_estimate")
    return minutes


def plan_reorder(task_ids: Sequence[object]) -> List[Tuple[int, int]]:
    """Translate an observed order into ``(task_id, priority)`` pairs 0..n-1."""
    if not isinstance(task_ids, (list, tuple)):
        raise InvalidInput("task_ids_must_be_array")
    if not task_ids:
        raise InvalidInput("empty_task_ids")
    ids = [_as_int(tid, "invalid_task_ids") for tid in task_ids]
    if len(ids) != len(set(ids)):
        raise InvalidInput("duplicate_task_ids")
    return [(tid, idx) for idx, tid in enumerate(ids)]


@dataclass
class PrioritiesService:
    repo: PriorityRepoProtocol
    tasks: TasksService

    def list_priorities(self, identity: Identity) -> List[PriorityRecord]:
        items = self.repo.list_priorities(identity.id)
        return sorted(items, key=lambda r: (math.inf if r.priority is None else r.priority, r.task_id))

    def set_priority(self, identity: Identity, task_id: int, priority: object) -> PriorityRecord:
        self.tasks.require_readable(identity, task_id)
        return self.repo.upsert_priority(identity.id, task_id, priority=normalize_priority(priority))

    def set_estimate(self, identity: Identity, task_id: int, minutes: object) -> PriorityRecord:
        self.tasks.require_readable(identity, task_id)
        return self.repo.upsert_priority(identity.id, task_id, estimated_minutes=normalize_estimate(minutes))

    def reorder(
        self,
        identity: Identity,
        task_ids: Sequence[object],
        *,
        bucket: Optional[Bucket] = None,
        now: Optional[datetime] = None,
    ) -> List[PriorityRecord]:
        """Apply an observed bucket order as one batch.

        Every task must exist and be readable by the caller. With ``bucket``,
        every task must also currently be planned into that bucket relative
        to ``now``; a stale client view fails with ``bucket_mismatch`` instead
        of scrambling another bucket.
        """
        assignments = plan_reorder(task_ids)
        tasks = [self.tasks.require_readable(identity, tid) for tid, _ in assignments]
        if bucket is not None:
            if now is None:
                raise InvalidInput("missing_now")
            for task in tasks:
                if not is_plannable(task) or classify_due(task.due_date, now) is not bucket:
                    raise InvalidInput("bucket_mismatch")
        records = self.repo.apply_priority_batch(identity.id, assignments)
        logger.info("priorities reordered user=%s count=%s", identity.id, len(assignments))
        return records
