"""
Lightweight psycopg stand-in for unit tests.

Provides ``install_fake_psycopg`` which monkeypatches a target module so that
``psycopg.connect`` returns connections backed by an in-memory table set.
Designed to support the subset of SQL used by DBRepo's priority and cascade
paths, and to record transaction boundaries (statements, commits, rollbacks)
so tests can assert that a batch ran in a single transaction.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import types
from typing import Any, Dict, List, Optional, Tuple


@dataclass
class FakeDatabase:
    task_ids: set[int] = field(default_factory=set)
    # priorities[(user_id, task_id)] = (priority, estimated_minutes)
    priorities: Dict[Tuple[int, int], Tuple[Optional[int], Optional[int]]] = field(default_factory=dict)
    comments: Dict[int, int] = field(default_factory=dict)  # comment id -> task id
    submissions: Dict[int, int] = field(default_factory=dict)  # submission id -> task id
    submission_rows: List[tuple] = field(default_factory=list)  # full rows served to selects
    params: List[Tuple[Any, ...]] = field(default_factory=list)
    statements: List[str] = field(default_factory=list)
    locks: List[Tuple[Any, ...]] = field(default_factory=list)
    connections: int = 0
    commits: int = 0
    rollbacks: int = 0


class _FakeCursor:
    def __init__(self, db: FakeDatabase, pending: Dict[Tuple[int, int], Tuple[Optional[int], Optional[int]]]) -> None:
        self._db = db
        self._pending = pending
        self._rows: List[tuple] = []
        self.rowcount = 0

    def execute(self, sql: str, params: tuple | list = ()) -> None:
        sql_low = " ".join(str(sql).lower().split())
        self._db.statements.append(sql_low)
        self._rows = []
        self.rowcount = 0
        if sql_low.startswith("select pg_advisory_xact_lock"):
            self._db.locks.append(tuple(params))
            self._rows = [(None,)]
        elif sql_low.startswith("select id from public.tasks where id = any"):
            wanted = list(params[0])
            self._rows = [(tid,) for tid in wanted if tid in self._db.task_ids]
        elif sql_low.startswith("with new_order"):
            task_ids, orderings, user_id = params
            for tid, prio in zip(task_ids, orderings):
                current = self._pending.get((user_id, tid), self._db.priorities.get((user_id, tid), (None, None)))
                self._pending[(user_id, tid)] = (prio, current[1])
                self._rows.append((tid, prio, current[1]))
        elif sql_low.startswith("select id, task_id, student_id") and "from public.submissions" in sql_low:
            self._db.params.append(tuple(params))
            self._rows = list(self._db.submission_rows)
        elif sql_low.startswith("select task_id, priority, estimated_minutes from public.task_priorities"):
            user_id = params[0]
            self._rows = [
                (tid, prio, est)
                for (uid, tid), (prio, est) in sorted(self._db.priorities.items())
                if uid == user_id
            ]
        elif sql_low.startswith("delete from public.task_priorities where task_id"):
            keys = [k for k in self._db.priorities if k[1] == params[0]]
            for key in keys:
                self._pending[key] = None  # type: ignore[assignment]
            self.rowcount = len(keys)
        elif sql_low.startswith("delete from public.task_comments where task_id"):
            self.rowcount = sum(1 for t in self._db.comments.values() if t == params[0])
        elif sql_low.startswith("delete from public.submissions where task_id"):
            self.rowcount = sum(1 for t in self._db.submissions.values() if t == params[0])
        elif sql_low.startswith("delete from public.tasks where id"):
            self.rowcount = 1 if params[0] in self._db.task_ids else 0
            self._pending[("task", params[0])] = None  # type: ignore[index]
        else:
            raise AssertionError(f"Unexpected SQL in fake psycopg: {sql}")

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return list(self._rows)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class _FakeConn:
    """Buffers writes until ``commit``; ``rollback`` discards them."""

    def __init__(self, db: FakeDatabase) -> None:
        self._db = db
        self._pending: Dict[Any, Any] = {}
        db.connections += 1

    def cursor(self):
        return _FakeCursor(self._db, self._pending)

    def commit(self) -> None:
        for key, value in self._pending.items():
            if key[0] == "task":
                tid = key[1]
                self._db.task_ids.discard(tid)
                for cid in [c for c, t in self._db.comments.items() if t == tid]:
                    self._db.comments.pop(cid)
                for sid in [s for s, t in self._db.submissions.items() if t == tid]:
                    self._db.submissions.pop(sid)
            elif value is None:
                self._db.priorities.pop(key, None)
            else:
                self._db.priorities[key] = value
        self._pending.clear()
        self._db.commits += 1

    def rollback(self) -> None:
        self._pending.clear()
        self._db.rollbacks += 1

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


def install_fake_psycopg(monkeypatch, target_module, db: FakeDatabase | None = None) -> FakeDatabase:
    """
    Patch ``target_module`` so psycopg operations go against an in-memory store.

    Returns the ``FakeDatabase`` acting as the backing store.
    """
    fake_db = db or FakeDatabase()

    def fake_connect(dsn: str, autocommit: bool | None = None, **_: Any):
        return _FakeConn(fake_db)

    fake_psycopg = types.SimpleNamespace(connect=fake_connect)
    monkeypatch.setattr(target_module, "psycopg", fake_psycopg, raising=False)
    return fake_db


__all__ = ["FakeDatabase", "install_fake_psycopg"]
