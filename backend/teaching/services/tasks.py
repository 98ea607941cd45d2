"""Teaching tasks service layer (Clean Architecture boundary).

Why:
    Encapsulates task use cases (list/get/create/update/delete/status/calendar)
    behind the authorization policy so that web adapters remain framework-free
    and validation plus access rules can be unit-tested without FastAPI.

Guard order:
    Existence first (NotFound), then policy (Forbidden), then input validation
    (InvalidInput). A caller therefore learns "absent" or "denied" before any
    detail about the payload.
"""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional, Protocol, Set

from identity_access.domain import Identity

from teaching.errors import InvalidInput, NotFound
from teaching.models import UNSET, TaskData, TaskStatus
from teaching.policy import Action, Resource, authorize
from teaching.visibility import filter_visible_tasks

logger = logging.getLogger("coursetasks.teaching.tasks")

_UNSET = UNSET


class TasksRepoProtocol(Protocol):
    def list_tasks(self) -> List[TaskData]:
        ...

    def get_task(self, task_id: int) -> Optional[TaskData]:
        ...

    def create_task(
        self,
        *,
        title: str,
        description: str,
        status: TaskStatus,
        due_date: Optional[datetime],
        group_id: Optional[int],
        created_by_id: int,
    ) -> TaskData:
        ...

    def update_task(
        self,
        task_id: int,
        *,
        title: Any,
        description: Any,
        status: Any,
        due_date: Any,
        group_id: Any,
        in_review_student_id: Any,
    ) -> Optional[TaskData]:
        ...

    def delete_task_cascade(self, task_id: int) -> bool:
        ...

    def submitted_task_ids(self, student_id: int) -> Set[int]:
        ...


def _normalize_title(value: object) -> str:
    if value is None or not isinstance(value, str):
        raise InvalidInput("invalid_title")
    trimmed = value.strip()
    if not trimmed or len(trimmed) > 200:
        raise InvalidInput("invalid_title")
    return trimmed


def _normalize_description(value: object) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise InvalidInput("invalid_description")
    return value.strip()


def _parse_status(value: object) -> TaskStatus:
    if isinstance(value, TaskStatus):
        return value
    if not isinstance(value, str):
        raise InvalidInput("invalid_status")
    try:
        return TaskStatus(value.strip().upper())
    except ValueError as exc:
        raise InvalidInput("invalid_status") from exc


def parse_due_date(value: object) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError as exc:
            raise InvalidInput("invalid_due_date") from exc
    else:
        raise InvalidInput("invalid_due_date")
    if parsed.tzinfo is None:
        raise InvalidInput("invalid_due_date")
    return parsed.astimezone(timezone.utc)


def _normalize_id(value: object, code: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidInput(code)
    try:
        parsed = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise InvalidInput(code) from exc
    if parsed < 1:
        raise InvalidInput(code)
    return parsed


def task_resource(task: TaskData) -> Resource:
    return Resource(owner_id=task.created_by_id, group_id=task.group_id)


@dataclass
class TasksService:
    """Use cases for tasks (framework-independent)."""

    repo: TasksRepoProtocol

    # --- reads ------------------------------------------------------------------
    def list_tasks(self, identity: Identity) -> List[TaskData]:
        """Visible tasks, due date ascending (undated last), newest first on ties."""
        visible = filter_visible_tasks(identity, self.repo.list_tasks())
        return self._student_view(identity, visible)

    def require_readable(self, identity: Identity, task_id: int) -> TaskData:
        task = self.repo.get_task(task_id)
        if task is None:
            raise NotFound("task_not_found")
        authorize(identity, Action.READ_TASK, task_resource(task))
        return task

    def get_task(self, identity: Identity, task_id: int) -> TaskData:
        task = self.require_readable(identity, task_id)
        return self._student_view(identity, [task])[0]

    def list_calendar(self, identity: Identity, month: str) -> List[TaskData]:
        """Visible tasks due inside ``month`` (``YYYY-MM``, UTC), ascending."""
        start, end = _month_bounds(month)
        items = [
            t for t in filter_visible_tasks(identity, self.repo.list_tasks())
            if t.due_date is not None and start <= t.due_date <= end
        ]
        return self._student_view(identity, items)

    # --- writes -----------------------------------------------------------------
    def create_task(
        self,
        identity: Identity,
        *,
        title: object,
        description: object = None,
        status: object = None,
        due_date: object = None,
        group_id: object = None,
    ) -> TaskData:
        authorize(identity, Action.CREATE_TASK)
        task = self.repo.create_task(
            title=_normalize_title(title),
            description=_normalize_description(description),
            status=TaskStatus.ACTIVE if status is None else _parse_status(status),
            due_date=parse_due_date(due_date),
            group_id=_normalize_id(group_id, "invalid_group_id"),
            created_by_id=identity.id,
        )
        logger.info("task created id=%s by=%s", task.id, identity.id)
        return task

    def update_task(
        self,
        identity: Identity,
        task_id: int,
        *,
        title: object = _UNSET,
        description: object = _UNSET,
        status: object = _UNSET,
        due_date: object = _UNSET,
        group_id: object = _UNSET,
        in_review_student_id: object = _UNSET,
    ) -> TaskData:
        """Patch a task. Omitted fields stay; explicit ``None`` clears nullable ones."""
        existing = self.repo.get_task(task_id)
        if existing is None:
            raise NotFound("task_not_found")
        authorize(identity, Action.UPDATE_TASK, task_resource(existing))
        repo_kwargs: dict[str, Any] = {}
        if title is not _UNSET:
            repo_kwargs["title"] = _normalize_title(title)
        if description is not _UNSET:
            if description is None:
                raise InvalidInput("invalid_description")
            repo_kwargs["description"] = _normalize_description(description)
        if status is not _UNSET:
            if status is None:
                raise InvalidInput("invalid_status")
            repo_kwargs["status"] = _parse_status(status)
        if due_date is not _UNSET:
            repo_kwargs["due_date"] = parse_due_date(due_date)
        if group_id is not _UNSET:
            repo_kwargs["group_id"] = _normalize_id(group_id, "invalid_group_id")
        if in_review_student_id is not _UNSET:
            repo_kwargs["in_review_student_id"] = _normalize_id(in_review_student_id, "invalid_student_id")
        result = self.repo.update_task(
            task_id,
            title=repo_kwargs.get("title", _UNSET),
            description=repo_kwargs.get("description", _UNSET),
            status=repo_kwargs.get("status", _UNSET),
            due_date=repo_kwargs.get("due_date", _UNSET),
            group_id=repo_kwargs.get("group_id", _UNSET),
            in_review_student_id=repo_kwargs.get("in_review_student_id", _UNSET),
        )
        if result is None:
            raise NotFound("task_not_found")
        return result

    def update_status(
        self,
        identity: Identity,
        task_id: int,
        *,
        status: object,
        in_review_student_id: object = None,
    ) -> TaskData:
        """Change status; only IN_REVIEW keeps a reviewed student."""
        parsed = _parse_status(status)
        reviewed = in_review_student_id if parsed is TaskStatus.IN_REVIEW else None
        return self.update_task(identity, task_id, status=parsed, in_review_student_id=reviewed)

    def delete_task(self, identity: Identity, task_id: int) -> None:
        """Delete permanently, cascading to submissions, comments and priorities."""
        existing = self.repo.get_task(task_id)
        if existing is None:
            raise NotFound("task_not_found")
        authorize(identity, Action.DELETE_TASK, task_resource(existing))
        if not self.repo.delete_task_cascade(task_id):
            raise NotFound("task_not_found")
        logger.info("task deleted id=%s by=%s", task_id, identity.id)

    # --- helpers ----------------------------------------------------------------
    def _student_view(self, identity: Identity, tasks: Iterable[TaskData]) -> List[TaskData]:
        """Project stored status onto what a student sees for their own work.

        Only ACTIVE and IN_REVIEW are projected; DRAFT and CLOSED stay as stored.
        """
        items = list(tasks)
        if not identity.is_student_only:
            return items
        submitted = self.repo.submitted_task_ids(identity.id)
        projected: List[TaskData] = []
        for task in items:
            if task.status in (TaskStatus.ACTIVE, TaskStatus.IN_REVIEW):
                if task.id in submitted:
                    task = replace(task, status=TaskStatus.IN_REVIEW)
                elif task.status is TaskStatus.IN_REVIEW:
                    task = replace(task, status=TaskStatus.ACTIVE)
            projected.append(task)
        return projected


def _month_bounds(month: str) -> tuple[datetime, datetime]:
    try:
        year_s, month_s = (month or "").split("-")
        year, mon = int(year_s), int(month_s)
    except ValueError as exc:
        raise InvalidInput("invalid_month") from exc
    if not 1 <= mon <= 12 or year < 1:
        raise InvalidInput("invalid_month")
    last_day = calendar.monthrange(year, mon)[1]
    start = datetime(year, mon, 1, tzinfo=timezone.utc)
    end = datetime(year, mon, last_day, 23, 59, 59, 999999, tzinfo=timezone.utc)
    return start, end
