"""Roster use cases: who in a group has submitted, and which tasks a student gets.

Why:
    Teachers follow a task per group and a student across their tasks. The
    user directory knows group membership; the repo knows tasks and
    submissions. This service joins both behind the VIEW_ROSTER rule.

Guard order:
    Task-based views check existence first (NotFound), then the role
    (Forbidden). The per-student view checks the role first so that callers
    without staff rights learn nothing about which user ids exist.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Protocol, Sequence

from identity_access.domain import Identity
from identity_access.stores import UserRecord

from teaching.errors import NotFound
from teaching.models import SubmissionData, TaskData
from teaching.policy import Action, authorize
from teaching.services.tasks import TasksRepoProtocol
from teaching.visibility import sort_tasks


class UserDirectoryProtocol(Protocol):
    def get(self, user_id: int) -> Optional[UserRecord]:
        ...

    def list_students(self, group_id: int) -> List[UserRecord]:
        ...

    def list_group_ids(self) -> List[int]:
        ...


class RosterRepoProtocol(TasksRepoProtocol, Protocol):
    def find_submissions(
        self,
        *,
        task_ids: Optional[Sequence[int]] = None,
        student_id: Optional[int] = None,
    ) -> List[SubmissionData]:
        ...


@dataclass(frozen=True)
class StudentRef:
    id: int
    full_name: str


@dataclass(frozen=True)
class StudentSubmissionStatus:
    student: StudentRef
    submitted_at: Optional[datetime] = None
    grade: Optional[int] = None


@dataclass
class TaskStudentsStatus:
    submitted: List[StudentSubmissionStatus] = field(default_factory=list)
    not_submitted: List[StudentSubmissionStatus] = field(default_factory=list)


@dataclass(frozen=True)
class GroupRoster:
    group_id: int
    students: List[StudentRef]


@dataclass(frozen=True)
class StudentTasks:
    student: StudentRef
    group_id: Optional[int]
    tasks: List[TaskData]


def _ref(user: UserRecord) -> StudentRef:
    return StudentRef(id=user.id, full_name=user.full_name)


@dataclass
class RosterService:
    repo: RosterRepoProtocol
    users: UserDirectoryProtocol

    def students_status(self, identity: Identity, task_id: int) -> TaskStudentsStatus:
        """Split the task's group into students with and without a submission.

        A global task (no group) has no roster and yields two empty lists.
        """
        task = self.repo.get_task(task_id)
        if task is None:
            raise NotFound("task_not_found")
        authorize(identity, Action.VIEW_ROSTER)
        if task.group_id is None:
            return TaskStudentsStatus()
        by_student = {s.student_id: s for s in self.repo.find_submissions(task_ids=[task_id])}
        result = TaskStudentsStatus()
        for user in self.users.list_students(task.group_id):
            sub = by_student.get(user.id)
            if sub is None:
                result.not_submitted.append(StudentSubmissionStatus(student=_ref(user)))
            else:
                result.submitted.append(
                    StudentSubmissionStatus(student=_ref(user), submitted_at=sub.submitted_at, grade=sub.grade)
                )
        return result

    def tasks_for_student(self, identity: Identity, student_id: int) -> StudentTasks:
        """The caller's own tasks that reach ``student_id`` (global or the student's group)."""
        authorize(identity, Action.VIEW_ROSTER)
        student = self.users.get(student_id)
        if student is None:
            raise NotFound("student_not_found")
        tasks = [
            t for t in self.repo.list_tasks()
            if t.created_by_id == identity.id and (t.group_id is None or t.group_id == student.group_id)
        ]
        return StudentTasks(student=_ref(student), group_id=student.group_id, tasks=sort_tasks(tasks))

    def teacher_groups(self, identity: Identity) -> List[GroupRoster]:
        """Groups the caller has assigned tasks to, each with its students."""
        authorize(identity, Action.VIEW_ROSTER)
        group_ids = sorted(
            {t.group_id for t in self.repo.list_tasks() if t.created_by_id == identity.id and t.group_id is not None}
        )
        return [
            GroupRoster(group_id=gid, students=[_ref(u) for u in self.users.list_students(gid)])
            for gid in group_ids
        ]

    def available_groups(self, identity: Identity) -> List[int]:
        """Every group id known from the directory or referenced by a task."""
        authorize(identity, Action.VIEW_ROSTER)
        ids = set(self.users.list_group_ids())
        ids.update(t.group_id for t in self.repo.list_tasks() if t.group_id is not None)
        return sorted(ids)
