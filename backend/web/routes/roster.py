"""
Roster and dashboard routes.

Why:
    Staff views that join tasks and submissions with the user directory
    (students-status per task, a student's tasks, group rosters, teacher
    dashboard) plus the student's own dashboard.

Routing:
    Single-segment paths such as `/api/tasks/student-dashboard` would otherwise
    be captured by `/api/tasks/{task_id}`; this router is included before the
    task router.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Request

from teaching.services.dashboard import DashboardService, StudentDashboard, TeacherDashboard
from teaching.services.roster import RosterService, StudentRef, StudentSubmissionStatus

from .planning import _parse_now
from .tasks import (
    _bad_request,
    _error_from_exception,
    _get_repo,
    _identity,
    _iso,
    _json_private,
    _parse_id,
    serialize_task,
)

roster_router = APIRouter(tags=["Roster"])  # explicit paths below


def _user_store():
    import main  # type: ignore

    return main.USER_STORE


def _roster_service() -> RosterService:
    return RosterService(_get_repo(), _user_store())


def _dashboard_service() -> DashboardService:
    return DashboardService(_get_repo(), _user_store())


def _serialize_student(ref: StudentRef) -> dict:
    return {"id": ref.id, "fullName": ref.full_name}


def _serialize_status(entry: StudentSubmissionStatus) -> dict:
    body = _serialize_student(entry.student)
    if entry.submitted_at is not None:
        body.update({"submittedAt": _iso(entry.submitted_at), "grade": entry.grade})
    return body


def _serialize_student_dashboard(board: StudentDashboard) -> dict:
    nearest = board.nearest_deadline
    return {
        "totalTasks": board.total_tasks,
        "submittedCount": board.submitted_count,
        "notSubmittedCount": board.not_submitted_count,
        "overdueCount": board.overdue_count,
        "nearestDeadline": (
            {
                "taskId": nearest.task_id,
                "title": nearest.title,
                "dueDate": _iso(nearest.due_date),
                "daysLeft": nearest.days_left,
            }
            if nearest is not None
            else None
        ),
        "recentGrades": [
            {"taskId": g.task_id, "title": g.title, "grade": g.grade, "gradedAt": _iso(g.graded_at)}
            for g in board.recent_grades
        ],
    }


def _serialize_teacher_dashboard(board: TeacherDashboard) -> dict:
    return {
        "myTasksCount": board.my_tasks_count,
        "pendingReviewCount": board.pending_review_count,
        "overdueStudentsCount": board.overdue_students_count,
        "recentSubmissions": [
            {
                "taskId": s.task_id,
                "taskTitle": s.task_title,
                "studentName": s.student_name,
                "submittedAt": _iso(s.submitted_at),
            }
            for s in board.recent_submissions
        ],
    }


@roster_router.get("/api/tasks/available-groups")
async def available_groups(request: Request):
    try:
        group_ids = _roster_service().available_groups(_identity(request))
    except PermissionError as exc:
        return _error_from_exception(exc)
    return _json_private([{"id": gid} for gid in group_ids])


@roster_router.get("/api/tasks/teacher/groups")
async def teacher_groups(request: Request):
    """Groups the caller has assigned tasks to, with their students by name."""
    try:
        rosters = _roster_service().teacher_groups(_identity(request))
    except PermissionError as exc:
        return _error_from_exception(exc)
    return _json_private(
        [{"group": {"id": r.group_id}, "students": [_serialize_student(s) for s in r.students]} for r in rosters]
    )


@roster_router.get("/api/tasks/student-dashboard")
async def student_dashboard(request: Request, now: Optional[str] = None):
    current = _parse_now(now)
    if current is None:
        return _bad_request("invalid_now")
    board = _dashboard_service().student_dashboard(_identity(request), current)
    return _json_private(_serialize_student_dashboard(board))


@roster_router.get("/api/tasks/teacher-dashboard")
async def teacher_dashboard(request: Request, now: Optional[str] = None):
    current = _parse_now(now)
    if current is None:
        return _bad_request("invalid_now")
    try:
        board = _dashboard_service().teacher_dashboard(_identity(request), current)
    except PermissionError as exc:
        return _error_from_exception(exc)
    return _json_private(_serialize_teacher_dashboard(board))


@roster_router.get("/api/tasks/student/{student_id}")
async def tasks_for_student(request: Request, student_id: str):
    """The caller's tasks that reach a given student (staff only).

    Behavior:
        - 403 for callers without TEACHER/ADMIN, before any directory lookup.
        - 404 when the student id is unknown.
    """
    sid = _parse_id(student_id)
    if sid is None:
        return _bad_request("invalid_student_id")
    try:
        result = _roster_service().tasks_for_student(_identity(request), sid)
    except (LookupError, PermissionError) as exc:
        return _error_from_exception(exc)
    return _json_private(
        {
            "student": {**_serialize_student(result.student), "groupId": result.group_id},
            "tasks": [serialize_task(t) for t in result.tasks],
        }
    )


@roster_router.get("/api/tasks/{task_id}/students-status")
async def students_status(request: Request, task_id: str):
    tid = _parse_id(task_id)
    if tid is None:
        return _bad_request("invalid_task_id")
    try:
        status = _roster_service().students_status(_identity(request), tid)
    except (LookupError, PermissionError) as exc:
        return _error_from_exception(exc)
    return _json_private(
        {
            "submitted": [_serialize_status(e) for e in status.submitted],
            "notSubmitted": [_serialize_status(e) for e in status.not_submitted],
        }
    )
