"""
Configuration and startup security checks for coursetasks.

Why: Task data is scoped per group and per student. A deployment with a weak
token secret or an unencrypted database connection would undo that. This
module provides a single guard that enforces minimal production safety
constraints without burdening local development, plus small readers for the
settings the web layer needs at request time.

Permissions: The caller needs no special privileges. The functions simply read
environment variables; the guard raises `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

import os
from datetime import timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

MIN_JWT_SECRET_LENGTH = 32
DEV_JWT_SECRET = "coursetasks-dev-secret-change-me-please-0000"
DEFAULT_JWT_TTL_SECONDS = 3600


def _is_prod_like(env: str) -> bool:
    env_l = (env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


def environment() -> str:
    return (os.getenv("COURSETASKS_ENV", "dev") or "dev").strip().lower()


def database_dsn() -> str | None:
    for key in ("TASKS_DATABASE_URL", "DATABASE_URL"):
        val = (os.getenv(key) or "").strip()
        if val:
            return val
    return None


def jwt_secret() -> str:
    """Token signing secret; dev/test fall back to a fixed placeholder."""
    secret = (os.getenv("JWT_SECRET") or "").strip()
    return secret or DEV_JWT_SECRET


def jwt_ttl_seconds() -> int:
    raw = (os.getenv("JWT_TTL_SECONDS") or "").strip()
    if not raw:
        return DEFAULT_JWT_TTL_SECONDS
    try:
        ttl = int(raw)
    except ValueError:
        return DEFAULT_JWT_TTL_SECONDS
    return ttl if ttl > 0 else DEFAULT_JWT_TTL_SECONDS


def planner_timezone() -> tzinfo:
    """Timezone used to decide which calendar day and week "now" falls in."""
    name = (os.getenv("PLANNER_TIMEZONE") or "").strip()
    if not name or name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Intent: Abort process startup when obviously insecure settings are detected
    in production/staging. Development remains permissive for convenience.

    Checks:
    - JWT_SECRET must be set, at least 32 characters, and not the dev placeholder.
    - A database DSN must be configured (no in-memory store in production).
    - DATABASE_URL / TASKS_DATABASE_URL must not explicitly disable TLS.
    - PLANNER_TIMEZONE, when set, must name a known IANA zone.
    """

    if not _is_prod_like(environment()):
        return  # dev/test remain permissive

    # 1) Token signing secret
    secret = (os.getenv("JWT_SECRET") or "").strip()
    if not secret or secret == DEV_JWT_SECRET or secret.upper().startswith("CHANGE_ME"):
        raise SystemExit("Refusing to start: JWT_SECRET is unset or a placeholder in production.")
    if len(secret) < MIN_JWT_SECRET_LENGTH:
        raise SystemExit(
            f"Refusing to start: JWT_SECRET must be at least {MIN_JWT_SECRET_LENGTH} characters in production."
        )

    # 2) Persistent storage is mandatory
    if database_dsn() is None:
        raise SystemExit("Refusing to start: DATABASE_URL is unset in production. The in-memory store is dev-only.")

    # 3) Postgres TLS: basic guard to avoid explicit disable
    for key in ("DATABASE_URL", "TASKS_DATABASE_URL"):
        if "sslmode=disable" in (os.getenv(key) or ""):
            raise SystemExit(
                f"Refusing to start: {key} contains sslmode=disable in production. Use sslmode=require or verify TLS."
            )

    # 4) Planner timezone must resolve; a silent UTC fallback would shift buckets
    tz_name = (os.getenv("PLANNER_TIMEZONE") or "").strip()
    if tz_name and tz_name.upper() != "UTC":
        try:
            ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            raise SystemExit(f"Refusing to start: PLANNER_TIMEZONE '{tz_name}' is not a known timezone.")
