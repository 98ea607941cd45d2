"""
Planning API routes: deadline buckets, per-caller priorities and reorder.

Why:
    The planning view is read-only and computed per request from the caller's
    visible tasks and the caller's own priority records. Writes go through the
    priority service; a drag-and-drop result is submitted once as a reorder
    command instead of many single-task updates.

Time:
    `now` defaults to the current time in PLANNER_TIMEZONE. A client may pass
    `now` explicitly (ISO 8601); an offset in that value selects the timezone
    whose calendar days and weeks are used, a naive value is read in the
    planner timezone.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, ConfigDict, Field

import config as _cfg
from planning.deadlines import BUCKET_ORDER, Bucket, PlanItem, plan
from planning.models import ESTIMATE_CHOICES, PriorityRecord
from planning.priorities import PrioritiesService

from .tasks import (
    _bad_request,
    _error_from_exception,
    _get_repo,
    _identity,
    _json_private,
    _parse_id,
    _tasks_service,
    serialize_task,
)

planning_router = APIRouter(tags=["Planning"])  # explicit paths below
logger = logging.getLogger("coursetasks.web.planning")


def _priorities_service() -> PrioritiesService:
    return PrioritiesService(_get_repo(), _tasks_service())


def _parse_now(raw: Optional[str]) -> Optional[datetime]:
    """Current planner time, or the client's ISO timestamp; None if malformed."""
    tz = _cfg.planner_timezone()
    if raw is None or not str(raw).strip():
        return datetime.now(tz)
    try:
        parsed = datetime.fromisoformat(str(raw).strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=tz)
    return parsed


def _serialize_record(rec: PriorityRecord) -> dict:
    return {"taskId": rec.task_id, "priority": rec.priority, "estimatedMinutes": rec.estimated_minutes}


def _serialize_item(item: PlanItem) -> dict:
    return {
        "task": serialize_task(item.task),
        "priority": item.priority,
        "estimatedMinutes": item.estimated_minutes,
    }


class PriorityPayload(BaseModel):
    priority: object | None = None


class EstimatePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    estimated_minutes: object | None = Field(default=None, alias="estimatedMinutes")


class ReorderPayload(BaseModel):
    # Accept loose typing to avoid FastAPI 422 and map contract errors to 400
    model_config = ConfigDict(populate_by_name=True)

    task_ids: object | None = Field(default=None, alias="taskIds")
    bucket: object | None = None
    now: object | None = None


@planning_router.get("/api/planning")
async def get_plan(request: Request, now: Optional[str] = None):
    """Bucketed plan of the caller's ACTIVE/IN_REVIEW tasks, every bucket present."""
    current = _parse_now(now)
    if current is None:
        return _bad_request("invalid_now")
    identity = _identity(request)
    tasks = _tasks_service().list_tasks(identity)
    priorities = _priorities_service().list_priorities(identity)
    buckets = plan(current, tasks, priorities)
    body = {
        "now": current.isoformat(),
        "buckets": {b.value: [_serialize_item(i) for i in buckets[b]] for b in BUCKET_ORDER},
        "estimateChoices": list(ESTIMATE_CHOICES),
    }
    return _json_private(body)


@planning_router.get("/api/planning/priorities")
async def list_priorities(request: Request):
    items = _priorities_service().list_priorities(_identity(request))
    return _json_private([_serialize_record(r) for r in items])


@planning_router.patch("/api/tasks/{task_id}/priority")
async def set_priority(request: Request, task_id: str, payload: PriorityPayload):
    tid = _parse_id(task_id)
    if tid is None:
        return _bad_request("invalid_task_id")
    try:
        rec = _priorities_service().set_priority(_identity(request), tid, payload.priority)
    except (LookupError, PermissionError, ValueError) as exc:
        return _error_from_exception(exc)
    return _json_private(_serialize_record(rec))


@planning_router.patch("/api/tasks/{task_id}/estimate")
async def set_estimate(request: Request, task_id: str, payload: EstimatePayload):
    """Set or clear (explicit null) the caller's time estimate for a task."""
    tid = _parse_id(task_id)
    if tid is None:
        return _bad_request("invalid_task_id")
    if "estimated_minutes" not in payload.model_fields_set:
        return _bad_request("invalid_estimate")
    try:
        rec = _priorities_service().set_estimate(_identity(request), tid, payload.estimated_minutes)
    except (LookupError, PermissionError, ValueError) as exc:
        return _error_from_exception(exc)
    return _json_private(_serialize_record(rec))


@planning_router.post("/api/planning/reorder")
async def reorder(request: Request, payload: ReorderPayload):
    """Apply an observed bucket order as priorities 0..n-1 in one batch.

    Behavior:
        - 200 with the caller's records for the reordered tasks, in order.
        - 400 on invalid payload (non-array, empty, duplicates, non-integer ids,
          unknown bucket, or a task that no longer falls into `bucket`).
        - 404 when a task does not exist, 403 when it is not visible to the caller.
    """
    bucket = None
    if payload.bucket is not None:
        if not isinstance(payload.bucket, str):
            return _bad_request("invalid_bucket")
        try:
            bucket = Bucket(payload.bucket)
        except ValueError:
            return _bad_request("invalid_bucket")
    current = None
    if bucket is not None:
        if payload.now is not None and not isinstance(payload.now, str):
            return _bad_request("invalid_now")
        current = _parse_now(payload.now)
        if current is None:
            return _bad_request("invalid_now")
    identity = _identity(request)
    try:
        records = _priorities_service().reorder(identity, payload.task_ids, bucket=bucket, now=current)
    except (LookupError, PermissionError, ValueError) as exc:
        logger.info("reorder rejected user=%s code=%s", identity.id, getattr(exc, "code", exc.__class__.__name__))
        return _error_from_exception(exc)
    return _json_private([_serialize_record(r) for r in records])
