"""
Postgres-backed repository for tasks, submissions, comments and priorities.

Design:
- Minimal psycopg3 usage; each call opens a short-lived connection.
- Multi-row writes (cascade delete, priority batches) run in one transaction.
- Priority batches additionally take a transaction-scoped advisory lock keyed
  by the caller, so two reorders from the same caller are applied one after
  the other and never interleave.

Expected tables (provisioned elsewhere):
    public.tasks(id, title, description, status, due_date, group_id,
                 created_by_id, in_review_student_id, created_at, updated_at)
    public.submissions(id, task_id, student_id, content, file_url,
                       submitted_at, grade, graded_at, graded_by_id,
                       unique (task_id, student_id))
    public.task_comments(id, task_id, author_id, content, created_at)
    public.task_priorities(user_id, task_id, priority, estimated_minutes,
                           primary key (user_id, task_id))
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Set, Tuple
import os
from datetime import datetime

import psycopg
from psycopg import sql

from teaching.errors import NotFound
from teaching.models import UNSET, CommentData, SubmissionData, TaskData, TaskStatus

from planning.models import PriorityRecord

# Namespace for pg_advisory_xact_lock(int, int) so our locks never collide
# with other users of advisory locks on the same database.
_PRIORITY_LOCK_NAMESPACE = 7301


def _dsn() -> str:
    for dsn in (os.getenv("TASKS_DATABASE_URL"), os.getenv("DATABASE_URL")):
        if dsn:
            return dsn
    raise RuntimeError("Database DSN unavailable for DBRepo")


_TASK_COLUMNS_SQL = """
    id, title, description, status, due_date, group_id,
    created_by_id, created_at, updated_at, in_review_student_id
"""

_SUBMISSION_COLUMNS_SQL = """
    id, task_id, student_id, content, file_url, submitted_at,
    grade, graded_at, graded_by_id
"""


def _task_row(row: Tuple) -> TaskData:
    return TaskData(
        id=int(row[0]),
        title=row[1],
        description=row[2] or "",
        status=TaskStatus(row[3]),
        due_date=row[4],
        group_id=int(row[5]) if row[5] is not None else None,
        created_by_id=int(row[6]),
        created_at=row[7],
        updated_at=row[8],
        in_review_student_id=int(row[9]) if row[9] is not None else None,
    )


def _submission_row(row: Tuple) -> SubmissionData:
    return SubmissionData(
        id=int(row[0]),
        task_id=int(row[1]),
        student_id=int(row[2]),
        content=row[3],
        file_url=row[4],
        submitted_at=row[5],
        grade=int(row[6]) if row[6] is not None else None,
        graded_at=row[7],
        graded_by_id=int(row[8]) if row[8] is not None else None,
    )


def _comment_row(row: Tuple) -> CommentData:
    return CommentData(id=int(row[0]), task_id=int(row[1]), author_id=int(row[2]), content=row[3], created_at=row[4])


def _priority_row(row: Tuple) -> PriorityRecord:
    return PriorityRecord(
        task_id=int(row[0]),
        priority=int(row[1]) if row[1] is not None else None,
        estimated_minutes=int(row[2]) if row[2] is not None else None,
    )


class DBRepo:
    def __init__(self, dsn: Optional[str] = None) -> None:
        self._dsn = dsn or _dsn()

    # --- Tasks ------------------------------------------------------------------
    def list_tasks(self) -> List[TaskData]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(f"select {_TASK_COLUMNS_SQL} from public.tasks")
                rows = cur.fetchall() or []
        return [_task_row(r) for r in rows]

    def get_task(self, task_id: int) -> Optional[TaskData]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(f"select {_TASK_COLUMNS_SQL} from public.tasks where id = %s", (task_id,))
                row = cur.fetchone()
        return _task_row(row) if row else None

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
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    insert into public.tasks (title, description, status, due_date, group_id, created_by_id)
                    values (%s, %s, %s, %s, %s, %s)
                    returning {_TASK_COLUMNS_SQL}
                    """,
                    (title, description, status.value, due_date, group_id, created_by_id),
                )
                row = cur.fetchone()
                conn.commit()
        return _task_row(row)

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
        fields: Dict[str, Any] = {}
        for name, value in (
            ("title", title),
            ("description", description),
            ("status", status),
            ("due_date", due_date),
            ("group_id", group_id),
            ("in_review_student_id", in_review_student_id),
        ):
            if value is not UNSET:
                fields[name] = value.value if isinstance(value, TaskStatus) else value
        assignments = [sql.SQL("{} = %s").format(sql.Identifier(name)) for name in fields]
        assignments.append(sql.SQL("updated_at = now()"))
        stmt = sql.SQL("update public.tasks set {} where id = %s returning " + _TASK_COLUMNS_SQL).format(
            sql.SQL(", ").join(assignments)
        )
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(stmt, (*fields.values(), task_id))
                row = cur.fetchone()
                conn.commit()
        return _task_row(row) if row else None

    def delete_task_cascade(self, task_id: int) -> bool:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute("delete from public.task_priorities where task_id = %s", (task_id,))
                cur.execute("delete from public.task_comments where task_id = %s", (task_id,))
                cur.execute("delete from public.submissions where task_id = %s", (task_id,))
                cur.execute("delete from public.tasks where id = %s", (task_id,))
                deleted = cur.rowcount > 0
                conn.commit()
        return deleted

    # --- Submissions ------------------------------------------------------------
    def submitted_task_ids(self, student_id: int) -> Set[int]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute("select distinct task_id from public.submissions where student_id = %s", (student_id,))
                rows = cur.fetchall() or []
        return {int(r[0]) for r in rows}

    def list_submissions(self, task_id: int, student_id: Optional[int] = None) -> List[SubmissionData]:
        query = f"select {_SUBMISSION_COLUMNS_SQL} from public.submissions where task_id = %s"
        params: Tuple[Any, ...] = (task_id,)
        if student_id is not None:
            query += " and student_id = %s"
            params = (task_id, student_id)
        query += " order by submitted_at desc, id desc"
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                rows = cur.fetchall() or []
        return [_submission_row(r) for r in rows]

    def find_submissions(
        self,
        *,
        task_ids: Optional[Sequence[int]] = None,
        student_id: Optional[int] = None,
    ) -> List[SubmissionData]:
        if task_ids is not None and not task_ids:
            return []
        clauses: List[str] = []
        params: List[Any] = []
        if task_ids is not None:
            clauses.append("task_id = any(%s)")
            params.append(list(task_ids))
        if student_id is not None:
            clauses.append("student_id = %s")
            params.append(student_id)
        query = f"select {_SUBMISSION_COLUMNS_SQL} from public.submissions"
        if clauses:
            query += " where " + " and ".join(clauses)
        query += " order by submitted_at desc, id desc"
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(query, tuple(params))
                rows = cur.fetchall() or []
        return [_submission_row(r) for r in rows]

    def get_submission(self, submission_id: int) -> Optional[SubmissionData]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(f"select {_SUBMISSION_COLUMNS_SQL} from public.submissions where id = %s", (submission_id,))
                row = cur.fetchone()
        return _submission_row(row) if row else None

    def upsert_submission(
        self,
        task_id: int,
        student_id: int,
        *,
        content: Optional[str],
        file_url: Optional[str],
    ) -> SubmissionData:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    insert into public.submissions (task_id, student_id, content, file_url, submitted_at)
                    values (%s, %s, %s, %s, now())
                    on conflict (task_id, student_id) do update
                      set content = excluded.content,
                          file_url = excluded.file_url,
                          submitted_at = excluded.submitted_at
                    returning {_SUBMISSION_COLUMNS_SQL}
                    """,
                    (task_id, student_id, content, file_url),
                )
                row = cur.fetchone()
                conn.commit()
        return _submission_row(row)

    def delete_submission(self, submission_id: int) -> bool:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute("delete from public.submissions where id = %s", (submission_id,))
                deleted = cur.rowcount > 0
                conn.commit()
        return deleted

    def grade_submission(self, submission_id: int, *, grade: int, grader_id: int) -> Optional[SubmissionData]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    update public.submissions
                       set grade = %s, graded_at = now(), graded_by_id = %s
                     where id = %s
                    returning {_SUBMISSION_COLUMNS_SQL}
                    """,
                    (grade, grader_id, submission_id),
                )
                row = cur.fetchone()
                conn.commit()
        return _submission_row(row) if row else None

    # --- Comments ---------------------------------------------------------------
    def list_comments(self, task_id: int) -> List[CommentData]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    select id, task_id, author_id, content, created_at
                    from public.task_comments
                    where task_id = %s
                    order by created_at asc, id asc
                    """,
                    (task_id,),
                )
                rows = cur.fetchall() or []
        return [_comment_row(r) for r in rows]

    def get_comment(self, comment_id: int) -> Optional[CommentData]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "select id, task_id, author_id, content, created_at from public.task_comments where id = %s",
                    (comment_id,),
                )
                row = cur.fetchone()
        return _comment_row(row) if row else None

    def create_comment(self, task_id: int, author_id: int, content: str) -> CommentData:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    insert into public.task_comments (task_id, author_id, content)
                    values (%s, %s, %s)
                    returning id, task_id, author_id, content, created_at
                    """,
                    (task_id, author_id, content),
                )
                row = cur.fetchone()
                conn.commit()
        return _comment_row(row)

    def delete_comment(self, comment_id: int) -> bool:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute("delete from public.task_comments where id = %s", (comment_id,))
                deleted = cur.rowcount > 0
                conn.commit()
        return deleted

    # --- Priorities -------------------------------------------------------------
    def list_priorities(self, user_id: int) -> List[PriorityRecord]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    select task_id, priority, estimated_minutes
                    from public.task_priorities
                    where user_id = %s
                    order by priority asc nulls last, task_id
                    """,
                    (user_id,),
                )
                rows = cur.fetchall() or []
        return [_priority_row(r) for r in rows]

    def upsert_priority(
        self,
        user_id: int,
        task_id: int,
        *,
        priority=UNSET,
        estimated_minutes=UNSET,
    ) -> PriorityRecord:
        set_priority = priority is not UNSET
        set_estimate = estimated_minutes is not UNSET
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    insert into public.task_priorities (user_id, task_id, priority, estimated_minutes)
                    values (%s, %s, %s, %s)
                    on conflict (user_id, task_id) do update
                      set priority = case when %s then excluded.priority else task_priorities.priority end,
                          estimated_minutes = case when %s then excluded.estimated_minutes
                                                   else task_priorities.estimated_minutes end
                    returning task_id, priority, estimated_minutes
                    """,
                    (
                        user_id,
                        task_id,
                        priority if set_priority else None,
                        estimated_minutes if set_estimate else None,
                        set_priority,
                        set_estimate,
                    ),
                )
                row = cur.fetchone()
                conn.commit()
        return _priority_row(row)

    def apply_priority_batch(self, user_id: int, assignments: Sequence[Tuple[int, int]]) -> List[PriorityRecord]:
        """Atomically assign priorities for one caller, preserving estimates."""
        task_ids = [tid for tid, _ in assignments]
        orderings = [prio for _, prio in assignments]
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "select pg_advisory_xact_lock(%s, hashtext(%s::text))",
                    (_PRIORITY_LOCK_NAMESPACE, str(user_id)),
                )
                cur.execute("select id from public.tasks where id = any(%s)", (task_ids,))
                existing = {int(r[0]) for r in (cur.fetchall() or [])}
                if existing != set(task_ids):
                    conn.rollback()
                    raise NotFound("task_not_found")
                cur.execute(
                    """
                    with new_order as (
                      select tid, ord from unnest(%s::bigint[], %s::int[]) as t(tid, ord)
                    )
                    insert into public.task_priorities (user_id, task_id, priority)
                    select %s, n.tid, n.ord from new_order n
                    on conflict (user_id, task_id) do update
                      set priority = excluded.priority
                    returning task_id, priority, estimated_minutes
                    """,
                    (task_ids, orderings, user_id),
                )
                rows = cur.fetchall() or []
                conn.commit()
        by_task = {int(r[0]): _priority_row(r) for r in rows}
        return [by_task[tid] for tid in task_ids if tid in by_task]
