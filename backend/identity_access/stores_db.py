"""
Database-backed user directory for production use (Postgres).

Why: Group membership and credentials live in the application database. This
store reads them with short-lived psycopg3 connections and never writes; user
provisioning is handled elsewhere.

Expected table (``public.users`` by default):
    id bigint, username text, full_name text, roles text[],
    group_id bigint null, password_hash text
"""
from __future__ import annotations

from typing import List, Optional, Tuple
import os
import re

import psycopg
from psycopg import sql

from .domain import parse_roles
from .stores import UserRecord, check_password

_TABLE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}(?:\.[A-Za-z_][A-Za-z0-9_]{0,62})?$")


class DBUserStore:
    """Postgres-backed user directory.

    Parameters
    ----------
    dsn:
        Psycopg3 connection string.
    table:
        Fully qualified table name. Defaults to `public.users`.
    """

    def __init__(self, dsn: str | None = None, table: str = "public.users") -> None:
        self._dsn = dsn or os.getenv("DATABASE_URL", "")
        if not self._dsn:
            raise RuntimeError("No database DSN provided for DBUserStore")
        if not _TABLE_RE.match(table or ""):
            raise ValueError("Invalid table name")
        schema, _, name = table.rpartition(".")
        self._schema = schema or "public"
        self._name = name

    def _select(self, where: str, value: object) -> Optional[UserRecord]:
        stmt = sql.SQL(
            "select id, username, full_name, roles, group_id, password_hash from {}.{} where " + where
        ).format(sql.Identifier(self._schema), sql.Identifier(self._name))
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(stmt, (value,))
                row = cur.fetchone()
        return _row_to_user(row) if row else None

    def get(self, user_id: int) -> Optional[UserRecord]:
        return self._select("id = %s", user_id)

    def get_by_username(self, username: str) -> Optional[UserRecord]:
        return self._select("username = %s", username)

    def authenticate(self, username: str, password: str) -> Optional[UserRecord]:
        rec = self.get_by_username((username or "").strip())
        if rec is None or not check_password(password, rec.password_hash):
            return None
        return rec

    def list_students(self, group_id: int) -> List[UserRecord]:
        stmt = sql.SQL(
            "select id, username, full_name, roles, group_id, password_hash from {}.{} "
            "where group_id = %s and 'STUDENT' = any(roles) order by full_name, id"
        ).format(sql.Identifier(self._schema), sql.Identifier(self._name))
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(stmt, (group_id,))
                rows = cur.fetchall() or []
        return [_row_to_user(r) for r in rows]

    def list_group_ids(self) -> List[int]:
        stmt = sql.SQL(
            "select distinct group_id from {}.{} where group_id is not null order by group_id"
        ).format(sql.Identifier(self._schema), sql.Identifier(self._name))
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(stmt)
                rows = cur.fetchall() or []
        return [int(r[0]) for r in rows]


def _row_to_user(row: Tuple) -> UserRecord:
    return UserRecord(
        id=int(row[0]),
        username=row[1],
        full_name=row[2] or row[1],
        roles=parse_roles(row[3] if isinstance(row[3], list) else []),
        group_id=int(row[4]) if row[4] is not None else None,
        password_hash=row[5],
    )
