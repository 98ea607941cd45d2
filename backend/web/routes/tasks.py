"""
Task API routes: tasks, status, calendar, submissions and comments.

Why:
    Thin adapter between HTTP and the teaching services. The middleware
    authenticates; this module parses ids and payloads, hands the verified
    identity to the service explicitly and maps domain errors to status codes.

Notes:
    - Error mapping: LookupError → 404, PermissionError → 403, ValueError → 400,
      always as `{"error": <kind>, "detail": <code>}` with private, no-store.
    - Persistence: Prefers the Postgres-backed repo when a DSN is configured;
      falls back to an in-memory repo for tests/local offline work. Tests can
      call `set_repo` to override the implementation for isolation.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field

import config as _cfg
from identity_access.domain import Identity
from teaching.models import CommentData, SubmissionData, TaskData
from teaching.repo_memory import InMemoryRepo
from teaching.services.comments import CommentsService
from teaching.services.submissions import SubmissionsService
from teaching.services.tasks import TasksService

tasks_router = APIRouter(tags=["Tasks"])  # explicit paths below
logger = logging.getLogger("coursetasks.web.tasks")


# --- Repository wiring -----------------------------------------------------------


def _build_default_repo():
    """Prefer the DB-backed repo when a DSN is configured; otherwise in-memory."""
    dsn = _cfg.database_dsn()
    if not dsn:
        return InMemoryRepo()
    from teaching.repo_db import DBRepo

    try:
        return DBRepo(dsn=dsn)
    except Exception as exc:  # pragma: no cover - exercised when the DSN is unusable
        logger.warning("Task repo unavailable (%s); using in-memory fallback", exc.__class__.__name__)
        return InMemoryRepo()


"""Lazy repo accessor to avoid import-time DB checks in tests."""
_REPO = None


def _get_repo():
    global _REPO
    if _REPO is None:
        _REPO = _build_default_repo()
    return _REPO


def set_repo(repo) -> None:
    """Allow tests to swap the repository implementation."""
    global _REPO
    _REPO = repo


def _tasks_service() -> TasksService:
    return TasksService(_get_repo())


def _submissions_service() -> SubmissionsService:
    return SubmissionsService(_get_repo(), _tasks_service())


def _comments_service() -> CommentsService:
    return CommentsService(_get_repo(), _tasks_service())


# --- Response helpers ------------------------------------------------------------


def _json_private(payload, *, status_code: int = 200) -> JSONResponse:
    """Return a JSONResponse with cache disabled for shared caches and browsers.

    Task data is group- and student-scoped; it must never sit in a proxy cache.
    """
    return JSONResponse(content=payload, status_code=status_code, headers={"Cache-Control": "private, no-store"})


def _private_error(payload: dict, *, status_code: int) -> JSONResponse:
    return JSONResponse(content=payload, status_code=status_code, headers={"Cache-Control": "private, no-store"})


def _no_content() -> Response:
    return Response(status_code=204, headers={"Cache-Control": "private, no-store"})


def _error_from_exception(exc: Exception) -> JSONResponse:
    """Map the domain error taxonomy onto HTTP."""
    detail = str(exc) or None
    if isinstance(exc, LookupError):
        body = {"error": "not_found"}
        status = 404
    elif isinstance(exc, PermissionError):
        body = {"error": "forbidden"}
        status = 403
    else:
        body = {"error": "bad_request"}
        status = 400
    if detail:
        body["detail"] = detail
    return _private_error(body, status_code=status)


def _bad_request(detail: str) -> JSONResponse:
    return _private_error({"error": "bad_request", "detail": detail}, status_code=400)


def _identity(request: Request) -> Identity:
    return request.state.identity


def _parse_id(value: str) -> Optional[int]:
    """Positive integer id or None, without coercing FastAPI to return 422."""
    raw = (value or "").strip()
    if not (raw.isascii() and raw.isdigit()):
        return None
    parsed = int(raw)
    return parsed if parsed > 0 else None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def serialize_task(task: TaskData) -> dict:
    return {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "status": task.status.value,
        "dueDate": _iso(task.due_date),
        "groupId": task.group_id,
        "createdById": task.created_by_id,
        "inReviewStudentId": task.in_review_student_id,
        "createdAt": _iso(task.created_at),
        "updatedAt": _iso(task.updated_at),
    }


def _serialize_submission(sub: SubmissionData) -> dict:
    return {
        "id": sub.id,
        "taskId": sub.task_id,
        "studentId": sub.student_id,
        "content": sub.content,
        "fileUrl": sub.file_url,
        "submittedAt": _iso(sub.submitted_at),
        "grade": sub.grade,
        "gradedAt": _iso(sub.graded_at),
        "gradedById": sub.graded_by_id,
    }


def _serialize_comment(comment: CommentData) -> dict:
    return {
        "id": comment.id,
        "taskId": comment.task_id,
        "authorId": comment.author_id,
        "content": comment.content,
        "createdAt": _iso(comment.created_at),
    }


# --- Request models ----------------------------------------------------------------
# Accept loose typing everywhere to avoid FastAPI 422 and surface our 400 codes.


class TaskCreatePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: object | None = None
    description: object | None = None
    status: object | None = None
    due_date: object | None = Field(default=None, alias="dueDate")
    group_id: object | None = Field(default=None, alias="groupId")


class TaskUpdatePayload(TaskCreatePayload):
    pass


class TaskStatusPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: object | None = None
    in_review_student_id: object | None = Field(default=None, alias="inReviewStudentId")


class SubmissionPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: object | None = None
    file_url: object | None = Field(default=None, alias="fileUrl")


class GradePayload(BaseModel):
    grade: object | None = None


class CommentPayload(BaseModel):
    content: object | None = None


# --- Tasks -------------------------------------------------------------------------


@tasks_router.get("/api/tasks")
async def list_tasks(request: Request):
    """Tasks visible to the caller, due date ascending (undated last)."""
    items = _tasks_service().list_tasks(_identity(request))
    return _json_private([serialize_task(t) for t in items])


@tasks_router.post("/api/tasks")
async def create_task(request: Request, payload: TaskCreatePayload):
    """Create a task (TEACHER/ADMIN). Status defaults to ACTIVE, group to global."""
    try:
        task = _tasks_service().create_task(
            _identity(request),
            title=payload.title,
            description=payload.description,
            status=payload.status,
            due_date=payload.due_date,
            group_id=payload.group_id,
        )
    except (LookupError, PermissionError, ValueError) as exc:
        return _error_from_exception(exc)
    return _json_private(serialize_task(task), status_code=201)


@tasks_router.get("/api/tasks/calendar")
async def list_calendar(request: Request, month: Optional[str] = None):
    """Visible tasks due in `month` (YYYY-MM); defaults to the current month."""
    if month is None:
        month = datetime.now(_cfg.planner_timezone()).strftime("%Y-%m")
    try:
        items = _tasks_service().list_calendar(_identity(request), month)
    except (LookupError, PermissionError, ValueError) as exc:
        return _error_from_exception(exc)
    return _json_private([serialize_task(t) for t in items])


@tasks_router.get("/api/tasks/{task_id}")
async def get_task(request: Request, task_id: str):
    tid = _parse_id(task_id)
    if tid is None:
        return _bad_request("invalid_task_id")
    try:
        task = _tasks_service().get_task(_identity(request), tid)
    except (LookupError, PermissionError, ValueError) as exc:
        return _error_from_exception(exc)
    return _json_private(serialize_task(task))


@tasks_router.patch("/api/tasks/{task_id}")
async def update_task(request: Request, task_id: str, payload: TaskUpdatePayload):
    """Partial update (creator or ADMIN).

    Omitted fields are left untouched; an explicit null clears `dueDate` or
    `groupId` and is rejected for `title`, `description` and `status`.
    """
    tid = _parse_id(task_id)
    if tid is None:
        return _bad_request("invalid_task_id")
    fields_set = payload.model_fields_set
    if not fields_set:
        return _bad_request("empty_payload")
    kwargs = {name: getattr(payload, name) for name in fields_set}
    try:
        task = _tasks_service().update_task(_identity(request), tid, **kwargs)
    except (LookupError, PermissionError, ValueError) as exc:
        return _error_from_exception(exc)
    return _json_private(serialize_task(task))


@tasks_router.patch("/api/tasks/{task_id}/status")
async def update_task_status(request: Request, task_id: str, payload: TaskStatusPayload):
    tid = _parse_id(task_id)
    if tid is None:
        return _bad_request("invalid_task_id")
    if payload.status is None:
        return _bad_request("invalid_status")
    try:
        task = _tasks_service().update_status(
            _identity(request),
            tid,
            status=payload.status,
            in_review_student_id=payload.in_review_student_id,
        )
    except (LookupError, PermissionError, ValueError) as exc:
        return _error_from_exception(exc)
    return _json_private(serialize_task(task))


@tasks_router.delete("/api/tasks/{task_id}")
async def delete_task(request: Request, task_id: str):
    """Delete permanently; submissions, comments and priorities go with it."""
    tid = _parse_id(task_id)
    if tid is None:
        return _bad_request("invalid_task_id")
    try:
        _tasks_service().delete_task(_identity(request), tid)
    except (LookupError, PermissionError, ValueError) as exc:
        return _error_from_exception(exc)
    return _no_content()


# --- Submissions -------------------------------------------------------------------


@tasks_router.get("/api/tasks/{task_id}/submissions")
async def list_submissions(request: Request, task_id: str, studentId: Optional[str] = None):  # noqa: N803
    tid = _parse_id(task_id)
    if tid is None:
        return _bad_request("invalid_task_id")
    student_id = None
    if studentId is not None:
        student_id = _parse_id(studentId)
        if student_id is None:
            return _bad_request("invalid_student_id")
    try:
        items = _submissions_service().list_submissions(_identity(request), tid, student_id=student_id)
    except (LookupError, PermissionError, ValueError) as exc:
        return _error_from_exception(exc)
    return _json_private([_serialize_submission(s) for s in items])


@tasks_router.post("/api/tasks/{task_id}/submissions")
async def create_submission(request: Request, task_id: str, payload: SubmissionPayload):
    """Submit (or resubmit) the caller's work; resubmission resets the grade."""
    tid = _parse_id(task_id)
    if tid is None:
        return _bad_request("invalid_task_id")
    try:
        saved = _submissions_service().submit(
            _identity(request), tid, content=payload.content, file_url=payload.file_url
        )
    except (LookupError, PermissionError, ValueError) as exc:
        return _error_from_exception(exc)
    return _json_private(_serialize_submission(saved), status_code=201)


@tasks_router.delete("/api/tasks/{task_id}/submissions/{submission_id}")
async def delete_submission(request: Request, task_id: str, submission_id: str):
    tid = _parse_id(task_id)
    if tid is None:
        return _bad_request("invalid_task_id")
    sid = _parse_id(submission_id)
    if sid is None:
        return _bad_request("invalid_submission_id")
    try:
        _submissions_service().delete_submission(_identity(request), tid, sid)
    except (LookupError, PermissionError, ValueError) as exc:
        return _error_from_exception(exc)
    return _no_content()


@tasks_router.patch("/api/tasks/{task_id}/submissions/{submission_id}/grade")
async def grade_submission(request: Request, task_id: str, submission_id: str, payload: GradePayload):
    tid = _parse_id(task_id)
    if tid is None:
        return _bad_request("invalid_task_id")
    sid = _parse_id(submission_id)
    if sid is None:
        return _bad_request("invalid_submission_id")
    try:
        graded = _submissions_service().grade_submission(_identity(request), tid, sid, grade=payload.grade)
    except (LookupError, PermissionError, ValueError) as exc:
        return _error_from_exception(exc)
    return _json_private(_serialize_submission(graded))


# --- Comments ----------------------------------------------------------------------


@tasks_router.get("/api/tasks/{task_id}/comments")
async def list_comments(request: Request, task_id: str):
    tid = _parse_id(task_id)
    if tid is None:
        return _bad_request("invalid_task_id")
    try:
        items = _comments_service().list_comments(_identity(request), tid)
    except (LookupError, PermissionError, ValueError) as exc:
        return _error_from_exception(exc)
    return _json_private([_serialize_comment(c) for c in items])


@tasks_router.post("/api/tasks/{task_id}/comments")
async def create_comment(request: Request, task_id: str, payload: CommentPayload):
    tid = _parse_id(task_id)
    if tid is None:
        return _bad_request("invalid_task_id")
    try:
        comment = _comments_service().add_comment(_identity(request), tid, content=payload.content)
    except (LookupError, PermissionError, ValueError) as exc:
        return _error_from_exception(exc)
    return _json_private(_serialize_comment(comment), status_code=201)


@tasks_router.delete("/api/tasks/{task_id}/comments/{comment_id}")
async def delete_comment(request: Request, task_id: str, comment_id: str):
    tid = _parse_id(task_id)
    if tid is None:
        return _bad_request("invalid_task_id")
    cid = _parse_id(comment_id)
    if cid is None:
        return _bad_request("invalid_comment_id")
    try:
        _comments_service().delete_comment(_identity(request), tid, cid)
    except (LookupError, PermissionError, ValueError) as exc:
        return _error_from_exception(exc)
    return _no_content()
