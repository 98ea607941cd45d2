"""
Submissions and comments API contract tests.
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


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test")


async def _task(client, teacher, **body) -> int:
    r = await client.post("/api/tasks", json={"title": "T", **body}, headers=teacher)
    assert r.status_code == 201, r.text
    return r.json()["id"]


async def test_submission_flow_and_student_status_view():
    _, teacher = register_user(main, "tina", ["TEACHER"])
    ana_rec, ana = register_user(main, "ana", ["STUDENT"], group_id=1)
    _, ben = register_user(main, "ben", ["STUDENT"], group_id=1)
    async with _client() as client:
        tid = await _task(client, teacher, groupId=1)
        r_submit = await client.post(
            f"/api/tasks/{tid}/submissions", json={"content": "my essay", "fileUrl": "s3://bucket/essay.pdf"}, headers=ana
        )
        await client.post(f"/api/tasks/{tid}/submissions", json={"content": "ben's"}, headers=ben)
        ana_task = await client.get(f"/api/tasks/{tid}", headers=ana)
        teacher_task = await client.get(f"/api/tasks/{tid}", headers=teacher)
        ana_list = await client.get(f"/api/tasks/{tid}/submissions", headers=ana)
        teacher_list = await client.get(f"/api/tasks/{tid}/submissions", headers=teacher)
        filtered = await client.get(
            f"/api/tasks/{tid}/submissions", params={"studentId": ana_rec.id}, headers=teacher
        )
    assert r_submit.status_code == 201
    assert r_submit.json()["fileUrl"] == "s3://bucket/essay.pdf"
    assert ana_task.json()["status"] == "IN_REVIEW"
    assert teacher_task.json()["status"] == "ACTIVE"
    assert [s["studentId"] for s in ana_list.json()] == [ana_rec.id]
    assert len(teacher_list.json()) == 2
    assert [s["studentId"] for s in filtered.json()] == [ana_rec.id]


async def test_grading_is_staff_only_and_bounded():
    _, teacher = register_user(main, "tina", ["TEACHER"])
    _, ana = register_user(main, "ana", ["STUDENT"], group_id=1)
    async with _client() as client:
        tid = await _task(client, teacher)
        sub = (await client.post(f"/api/tasks/{tid}/submissions", json={"content": "x"}, headers=ana)).json()
        url = f"/api/tasks/{tid}/submissions/{sub['id']}/grade"
        r_student = await client.patch(url, json={"grade": 100}, headers=ana)
        r_bad = await client.patch(url, json={"grade": 101}, headers=teacher)
        r_ok = await client.patch(url, json={"grade": 87}, headers=teacher)
        r_bad_id = await client.patch(f"/api/tasks/{tid}/submissions/abc/grade", json={"grade": 1}, headers=teacher)
    assert r_student.status_code == 403
    assert r_bad.status_code == 400
    assert r_bad.json()["detail"] == "invalid_grade"
    assert r_ok.json()["grade"] == 87
    assert r_ok.json()["gradedAt"] is not None
    assert r_bad_id.json()["detail"] == "invalid_submission_id"


async def test_empty_submission_is_400():
    _, teacher = register_user(main, "tina", ["TEACHER"])
    _, ana = register_user(main, "ana", ["STUDENT"], group_id=1)
    async with _client() as client:
        tid = await _task(client, teacher)
        r = await client.post(f"/api/tasks/{tid}/submissions", json={}, headers=ana)
    assert r.status_code == 400
    assert r.json()["detail"] == "empty_submission"


async def test_delete_submission_under_other_task_is_404():
    _, teacher = register_user(main, "tina", ["TEACHER"])
    _, ana = register_user(main, "ana", ["STUDENT"], group_id=1)
    async with _client() as client:
        one = await _task(client, teacher)
        two = await _task(client, teacher)
        sub = (await client.post(f"/api/tasks/{one}/submissions", json={"content": "x"}, headers=ana)).json()
        r_wrong = await client.delete(f"/api/tasks/{two}/submissions/{sub['id']}", headers=ana)
        r_ok = await client.delete(f"/api/tasks/{one}/submissions/{sub['id']}", headers=ana)
    assert r_wrong.status_code == 404
    assert r_ok.status_code == 204


async def test_comment_thread():
    _, teacher = register_user(main, "tina", ["TEACHER"])
    _, ana = register_user(main, "ana", ["STUDENT"], group_id=1)
    _, carl = register_user(main, "carl", ["STUDENT"], group_id=2)
    _, admin = register_user(main, "root", ["ADMIN"])
    async with _client() as client:
        tid = await _task(client, teacher, groupId=1)
        c1 = await client.post(f"/api/tasks/{tid}/comments", json={"content": "Question?"}, headers=ana)
        await client.post(f"/api/tasks/{tid}/comments", json={"content": "Answer."}, headers=teacher)
        r_long = await client.post(f"/api/tasks/{tid}/comments", json={"content": "x" * 2001}, headers=ana)
        r_foreign = await client.get(f"/api/tasks/{tid}/comments", headers=carl)
        r_teacher_delete = await client.delete(f"/api/tasks/{tid}/comments/{c1.json()['id']}", headers=teacher)
        r_admin_delete = await client.delete(f"/api/tasks/{tid}/comments/{c1.json()['id']}", headers=admin)
        thread = await client.get(f"/api/tasks/{tid}/comments", headers=ana)
    assert c1.status_code == 201
    assert r_long.status_code == 400
    assert r_foreign.status_code == 403
    assert r_teacher_delete.status_code == 403
    assert r_admin_delete.status_code == 204
    assert [c["content"] for c in thread.json()] == ["Answer."]
