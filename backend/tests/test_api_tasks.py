"""
Task API contract tests (in-memory repo).

Covers the visibility scenario end to end, the create/update/delete guards,
omitted vs. null in PATCH bodies, id parsing (400 instead of 422), status
transitions and the calendar.
"""

import pytest
import httpx
from httpx import ASGITransport
from pathlib import Path
import sys

REPO_ROOT = Path(__file__).resolve().parents[2]
WEB_DIR = REPO_ROOT / "backend" / "web"
sys.path.insert(0, str(WEB_DIR))
import main  # type: ignore

from utils.auth import register_user


pytestmark = pytest.mark.anyio("asyncio")

GROUP_A, GROUP_B = 1, 2


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test")


async def _create(client, headers, **body) -> dict:
    r = await client.post("/api/tasks", json=body, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()


async def test_student_sees_global_and_own_group_tasks_in_due_order():
    _, teacher = register_user(main, "tina", ["TEACHER"])
    _, student = register_user(main, "ana", ["STUDENT"], group_id=GROUP_A)
    async with _client() as client:
        t2 = await _create(client, teacher, title="T2", groupId=GROUP_A, dueDate="2025-06-14T10:00:00Z")
        t3 = await _create(client, teacher, title="T3", groupId=GROUP_B, dueDate="2025-06-11T10:00:00Z")
        t1 = await _create(client, teacher, title="T1", dueDate="2025-06-12T10:00:00Z")
        r_student = await client.get("/api/tasks", headers=student)
        r_teacher = await client.get("/api/tasks", headers=teacher)
    assert [t["id"] for t in r_student.json()] == [t1["id"], t2["id"]]
    assert [t["id"] for t in r_teacher.json()] == [t3["id"], t1["id"], t2["id"]]
    assert r_student.headers.get("Cache-Control") == "private, no-store"


async def test_create_defaults_and_serialization():
    rec, teacher = register_user(main, "tina", ["TEACHER"])
    async with _client() as client:
        task = await _create(client, teacher, title="Essay")
    assert task["status"] == "ACTIVE"
    assert task["groupId"] is None
    assert task["dueDate"] is None
    assert task["createdById"] == rec.id
    assert task["createdAt"] and task["updatedAt"]


async def test_student_cannot_create_tasks():
    _, student = register_user(main, "ana", ["STUDENT"], group_id=GROUP_A)
    async with _client() as client:
        r = await client.post("/api/tasks", json={"title": "Mine"}, headers=student)
    assert r.status_code == 403
    assert r.json()["error"] == "forbidden"


@pytest.mark.parametrize(
    "body,detail",
    [
        ({}, "invalid_title"),
        ({"title": "   "}, "invalid_title"),
        ({"title": "T", "dueDate": "2025-06-10T10:00:00"}, "invalid_due_date"),
        ({"title": "T", "status": "PAUSED"}, "invalid_status"),
        ({"title": "T", "groupId": "abc"}, "invalid_group_id"),
    ],
)
async def test_create_validation_errors_are_400(body, detail):
    _, teacher = register_user(main, "tina", ["TEACHER"])
    async with _client() as client:
        r = await client.post("/api/tasks", json=body, headers=teacher)
    assert r.status_code == 400
    assert r.json() == {"error": "bad_request", "detail": detail}


async def test_patch_omitted_keeps_and_null_clears_due_date():
    _, teacher = register_user(main, "tina", ["TEACHER"])
    async with _client() as client:
        task = await _create(client, teacher, title="T", dueDate="2025-06-13T12:00:00Z")
        kept = await client.patch(f"/api/tasks/{task['id']}", json={"title": "Renamed"}, headers=teacher)
        cleared = await client.patch(f"/api/tasks/{task['id']}", json={"dueDate": None}, headers=teacher)
        empty = await client.patch(f"/api/tasks/{task['id']}", json={}, headers=teacher)
    assert kept.status_code == 200
    assert kept.json()["dueDate"] == "2025-06-13T12:00:00+00:00"
    assert cleared.json()["dueDate"] is None
    assert cleared.json()["title"] == "Renamed"
    assert empty.status_code == 400
    assert empty.json()["detail"] == "empty_payload"


async def test_only_creator_or_admin_may_mutate():
    _, owner = register_user(main, "tina", ["TEACHER"])
    _, other = register_user(main, "tom", ["TEACHER"])
    _, admin = register_user(main, "root", ["ADMIN"])
    async with _client() as client:
        task = await _create(client, owner, title="T")
        r_other_patch = await client.patch(f"/api/tasks/{task['id']}", json={"title": "x"}, headers=other)
        r_other_delete = await client.delete(f"/api/tasks/{task['id']}", headers=other)
        r_admin_patch = await client.patch(f"/api/tasks/{task['id']}", json={"title": "ok"}, headers=admin)
        r_admin_delete = await client.delete(f"/api/tasks/{task['id']}", headers=admin)
        r_gone = await client.get(f"/api/tasks/{task['id']}", headers=owner)
    assert r_other_patch.status_code == 403
    assert r_other_delete.status_code == 403
    assert r_admin_patch.status_code == 200
    assert r_admin_delete.status_code == 204
    assert r_gone.status_code == 404


async def test_not_found_precedes_forbidden():
    _, student = register_user(main, "ana", ["STUDENT"], group_id=GROUP_A)
    async with _client() as client:
        r_patch = await client.patch("/api/tasks/4242", json={"title": "x"}, headers=student)
        r_delete = await client.delete("/api/tasks/4242", headers=student)
    assert r_patch.status_code == 404
    assert r_delete.status_code == 404


async def test_student_reading_foreign_group_task_is_forbidden():
    _, teacher = register_user(main, "tina", ["TEACHER"])
    _, student = register_user(main, "ana", ["STUDENT"], group_id=GROUP_A)
    async with _client() as client:
        task = await _create(client, teacher, title="B", groupId=GROUP_B)
        r = await client.get(f"/api/tasks/{task['id']}", headers=student)
    assert r.status_code == 403


@pytest.mark.parametrize("raw_id", ["abc", "0", "-1", "1.5", "²", "١٢"])
async def test_malformed_task_id_is_400(raw_id):
    _, teacher = register_user(main, "tina", ["TEACHER"])
    async with _client() as client:
        r = await client.get(f"/api/tasks/{raw_id}", headers=teacher)
    assert r.status_code == 400
    assert r.json() == {"error": "bad_request", "detail": "invalid_task_id"}


async def test_status_transition_records_reviewed_student():
    _, teacher = register_user(main, "tina", ["TEACHER"])
    student_rec, _ = register_user(main, "ana", ["STUDENT"], group_id=GROUP_A)
    async with _client() as client:
        task = await _create(client, teacher, title="T")
        r = await client.patch(
            f"/api/tasks/{task['id']}/status",
            json={"status": "IN_REVIEW", "inReviewStudentId": student_rec.id},
            headers=teacher,
        )
        r_missing = await client.patch(f"/api/tasks/{task['id']}/status", json={}, headers=teacher)
    assert r.status_code == 200
    assert r.json()["status"] == "IN_REVIEW"
    assert r.json()["inReviewStudentId"] == student_rec.id
    assert r_missing.status_code == 400


async def test_calendar_lists_month_and_rejects_bad_month():
    _, teacher = register_user(main, "tina", ["TEACHER"])
    async with _client() as client:
        june = await _create(client, teacher, title="June", dueDate="2025-06-20T08:00:00Z")
        await _create(client, teacher, title="July", dueDate="2025-07-02T08:00:00Z")
        r = await client.get("/api/tasks/calendar", params={"month": "2025-06"}, headers=teacher)
        r_bad = await client.get("/api/tasks/calendar", params={"month": "2025-13"}, headers=teacher)
    assert [t["id"] for t in r.json()] == [june["id"]]
    assert r_bad.status_code == 400
    assert r_bad.json()["detail"] == "invalid_month"
