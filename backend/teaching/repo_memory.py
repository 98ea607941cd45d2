"""
In-memory repository for tasks, submissions, comments and priorities.

Used for local development and tests when no database is configured. A single
re-entrant lock serializes every write, which makes multi-row operations
(cascade delete, priority batches) atomic with respect to each other.
"""

from __future__ import annotations

import itertools
import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Set, Tuple

from teaching.errors import NotFound
from teaching.models import UNSET, CommentData, SubmissionData, TaskData, TaskStatus

from planning.models import PriorityRecord


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryRepo:
    def __init__(self) -> None:
        self.tasks: Dict[int, TaskData] = {}
        self.submissions: Dict[int, SubmissionData] = {}
        self.comments: Dict[int, CommentData] = {}
        # priorities[(user_id, task_id)] = record
        self.priorities: Dict[Tuple[int, int], PriorityRecord] = {}
        self._lock = threading.RLock()
        self._task_seq = itertools.count(1)
        self._submission_seq = itertools.count(1)
        self._comment_seq = itertools.count(1)

    # --- Tasks ------------------------------------------------------------------
    def list_tasks(self) -> List[TaskData]:
        with self._lock:
            return list(self.tasks.values())

    def get_task(self, task_id: int) -> Optional[TaskData]:
        return self.tasks.get(task_id)

    def create_task(
        self,
        *,
        title: str,
        description: str,
        status: TaskStatus,
        due_date: Optional[datetime],
        group_id: Optional[int],
        created_by_id: int,
        created_at: Optional[datetime] = None,
    ) -> TaskData:
        now = created_at or _now()
        with self._lock:
            task = TaskData(
                id=next(self._task_seq),
                title=title,
                description=description,
                status=status,
                due_date=due_date,
                group_id=group_id,
                created_by_id=created_by_id,
                created_at=now,
                updated_at=now,
            )
            self.tasks[task.id] = task
        return task

    def update_task(
        self,
        task_id: int,
        *,
        title=UNSET,
        description=UNSET,
        status=UNSET,
        due_date=UNSET,
        group_id=UNSET,
        in_review_student_id=UNSET,
    ) -> Optional[TaskData]:
        with self._lock:
            task = self.tasks.get(task_id)
            if task is None:
                return None
            changes = {
                name: value
                for name, value in (
                    ("title", title),
                    ("description", description),
                    ("status", status),
                    ("due_date", due_date),
                    ("group_id", group_id),
                    ("in_review_student_id", in_review_student_id),
                )
                if value is not UNSET
            }
            updated = replace(task, updated_at=_now(), **changes)
            self.tasks[task_id] = updated
        return updated

    def delete_task_cascade(self, task_id: int) -> bool:
        with self._lock:
            if self.tasks.pop(task_id, None) is None:
                return False
            for sid in [s.id for s in self.submissions.values() if s.task_id == task_id]:
                self.submissions.pop(sid, None)
            for cid in [c.id for c in self.comments.values() if c.task_id == task_id]:
                self.comments.pop(cid, None)
            for key in [k for k in self.priorities if k[1] == task_id]:
                self.priorities.pop(key, None)
        return True

    # --- Submissions ------------------------------------------------------------
    def submitted_task_ids(self, student_id: int) -> Set[int]:
        with self._lock:
            return {s.task_id for s in self.submissions.values() if s.student_id == student_id}

    def list_submissions(self, task_id: int, student_id: Optional[int] = None) -> List[SubmissionData]:
        with self._lock:
            items = [
                s for s in self.submissions.values()
                if s.task_id == task_id and (student_id is None or s.student_id == student_id)
            ]
        items.sort(key=lambda s: (s.submitted_at, s.id), reverse=True)
        return items

    def find_submissions(
        self,
        *,
        task_ids: Optional[Sequence[int]] = None,
        student_id: Optional[int] = None,
    ) -> List[SubmissionData]:
        """Submissions across tasks, newest first."""
        wanted = set(task_ids) if task_ids is not None else None
        with self._lock:
            items = [
                s for s in self.submissions.values()
                if (wanted is None or s.task_id in wanted) and (student_id is None or s.student_id == student_id)
            ]
        items.sort(key=lambda s: (s.submitted_at, s.id), reverse=True)
        return items

    def get_submission(self, submission_id: int) -> Optional[SubmissionData]:
        return self.submissions.get(submission_id)

    def upsert_submission(
        self,
        task_id: int,
        student_id: int,
        *,
        content: Optional[str],
        file_url: Optional[str],
    ) -> SubmissionData:
        with self._lock:
            existing = next(
                (s for s in self.submissions.values() if s.task_id == task_id and s.student_id == student_id),
                None,
            )
            if existing is not None:
                saved = replace(
                    existing,
                    content=content,
                    file_url=file_url,
                    submitted_at=_now(),
                )
            else:
                saved = SubmissionData(
                    id=next(self._submission_seq),
                    task_id=task_id,
                    student_id=student_id,
                    content=content,
                    file_url=file_url,
                    submitted_at=_now(),
                )
            self.submissions[saved.id] = saved
        return saved

    def delete_submission(self, submission_id: int) -> bool:
        with self._lock:
            return self.submissions.pop(submission_id, None) is not None

    def grade_submission(self, submission_id: int, *, grade: int, grader_id: int) -> Optional[SubmissionData]:
        with self._lock:
            sub = self.submissions.get(submission_id)
            if sub is None:
                return None
            graded = replace(sub, grade=grade, graded_at=_now(), graded_by_id=grader_id)
            self.submissions[submission_id] = graded
        return graded

    # --- Comments ---------------------------------------------------------------
    def list_comments(self, task_id: int) -> List[CommentData]:
        with self._lock:
            items = [c for c in self.comments.values() if c.task_id == task_id]
        items.sort(key=lambda c: (c.created_at, c.id))
        return items

    def get_comment(self, comment_id: int) -> Optional[CommentData]:
        return self.comments.get(comment_id)

    def create_comment(self, task_id: int, author_id: int, content: str) -> CommentData:
        with self._lock:
            comment = CommentData(
                id=next(self._comment_seq),
                task_id=task_id,
                author_id=author_id,
                content=content,
                created_at=_now(),
            )
            self.comments[comment.id] = comment
        return comment

    def delete_comment(self, comment_id: int) -> bool:
        with self._lock:
            return self.comments.pop(comment_id, None) is not None

    # --- Priorities -------------------------------------------------------------
    def list_priorities(self, user_id: int) -> List[PriorityRecord]:
        with self._lock:
            return [rec for (uid, _), rec in self.priorities.items() if uid == user_id]

    def upsert_priority(
        self,
        user_id: int,
        task_id: int,
        *,
        priority=UNSET,
        estimated_minutes=UNSET,
    ) -> PriorityRecord:
        with self._lock:
            rec = self.priorities.get((user_id, task_id)) or PriorityRecord(task_id=task_id)
            if priority is not UNSET:
                rec = replace(rec, priority=priority)
            if estimated_minutes is not UNSET:
                rec = replace(rec, estimated_minutes=estimated_minutes)
            self.priorities[(user_id, task_id)] = rec
        return rec

    def apply_priority_batch(self, user_id: int, assignments: Sequence[Tuple[int, int]]) -> List[PriorityRecord]:
        with self._lock:
            missing = [tid for tid, _ in assignments if tid not in self.tasks]
            if missing:
                raise NotFound("task_not_found")
            saved: List[PriorityRecord] = []
            for task_id, priority in assignments:
                current = self.priorities.get((user_id, task_id)) or PriorityRecord(task_id=task_id)
                rec = replace(current, priority=priority)
                self.priorities[(user_id, task_id)] = rec
                saved.append(rec)
        return saved
