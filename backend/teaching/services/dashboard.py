"""Dashboard summaries for students and teachers.

Both views are read-only aggregates over tasks, submissions and the user
directory, computed relative to an explicit ``now``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from identity_access.domain import Identity

from teaching.models import TaskStatus
from teaching.policy import Action, authorize
from teaching.services.roster import RosterRepoProtocol, UserDirectoryProtocol

RECENT_LIMIT = 5
_DAY = timedelta(days=1)


@dataclass(frozen=True)
class NearestDeadline:
    task_id: int
    title: str
    due_date: datetime
    days_left: int


@dataclass(frozen=True)
class RecentGrade:
    task_id: int
    title: str
    grade: int
    graded_at: datetime


@dataclass(frozen=True)
class StudentDashboard:
    total_tasks: int
    submitted_count: int
    not_submitted_count: int
    overdue_count: int
    nearest_deadline: Optional[NearestDeadline]
    recent_grades: List[RecentGrade] = field(default_factory=list)


@dataclass(frozen=True)
class RecentSubmission:
    task_id: int
    task_title: str
    student_name: str
    submitted_at: datetime


@dataclass(frozen=True)
class TeacherDashboard:
    my_tasks_count: int
    pending_review_count: int
    overdue_students_count: int
    recent_submissions: List[RecentSubmission] = field(default_factory=list)


@dataclass
class DashboardService:
    repo: RosterRepoProtocol
    users: UserDirectoryProtocol

    def student_dashboard(self, identity: Identity, now: datetime) -> StudentDashboard:
        """Counts over the open tasks addressed to the caller's group or everyone.

        Overdue and nearest deadline only consider tasks the caller has not
        submitted yet. ``days_left`` rounds partial days up.
        """
        tasks = [
            t for t in self.repo.list_tasks()
            if t.status in (TaskStatus.ACTIVE, TaskStatus.IN_REVIEW)
            and (t.group_id is None or t.group_id == identity.group_id)
        ]
        by_id = {t.id: t for t in tasks}
        submissions = self.repo.find_submissions(task_ids=list(by_id), student_id=identity.id)
        submitted = {s.task_id for s in submissions}

        overdue = 0
        nearest: Optional[NearestDeadline] = None
        for task in tasks:
            if task.id in submitted or task.due_date is None:
                continue
            if task.due_date < now:
                overdue += 1
            elif nearest is None or task.due_date < nearest.due_date:
                nearest = NearestDeadline(
                    task_id=task.id,
                    title=task.title,
                    due_date=task.due_date,
                    days_left=math.ceil((task.due_date - now) / _DAY),
                )

        graded = sorted(
            (s for s in submissions if s.grade is not None and s.graded_at is not None),
            key=lambda s: s.graded_at,
            reverse=True,
        )
        recent = [
            RecentGrade(task_id=s.task_id, title=by_id[s.task_id].title, grade=s.grade, graded_at=s.graded_at)
            for s in graded[:RECENT_LIMIT]
        ]
        return StudentDashboard(
            total_tasks=len(tasks),
            submitted_count=len(submitted),
            not_submitted_count=len(tasks) - len(submitted),
            overdue_count=overdue,
            nearest_deadline=nearest,
            recent_grades=recent,
        )

    def teacher_dashboard(self, identity: Identity, now: datetime) -> TeacherDashboard:
        """Workload over the tasks the caller created."""
        authorize(identity, Action.VIEW_ROSTER)
        mine = [t for t in self.repo.list_tasks() if t.created_by_id == identity.id]
        by_id = {t.id: t for t in mine}
        submissions = self.repo.find_submissions(task_ids=list(by_id))

        overdue_students = 0
        for task in mine:
            if task.due_date is None or task.due_date >= now or task.group_id is None:
                continue
            students = {u.id for u in self.users.list_students(task.group_id)}
            handed_in = {s.student_id for s in submissions if s.task_id == task.id}
            overdue_students += len(students - handed_in)

        recent: List[RecentSubmission] = []
        for sub in submissions[:RECENT_LIMIT]:
            student = self.users.get(sub.student_id)
            recent.append(
                RecentSubmission(
                    task_id=sub.task_id,
                    task_title=by_id[sub.task_id].title,
                    student_name=student.full_name if student is not None else "",
                    submitted_at=sub.submitted_at,
                )
            )
        return TeacherDashboard(
            my_tasks_count=len(mine),
            pending_review_count=sum(1 for s in submissions if s.grade is None),
            overdue_students_count=overdue_students,
            recent_submissions=recent,
        )
