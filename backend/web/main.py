"coursetasks"
from __future__ import annotations

import os
import logging
import sys as _sys

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from identity_access.resolver import resolve_identity
from identity_access.stores import UserStore
from identity_access.tokens import TokenVerificationError

# Ensure imports consistently reference the same module instance.
if __name__ == "main":
    _sys.modules.setdefault("backend.web.main", _sys.modules[__name__])
elif __name__ == "backend.web.main":
    _sys.modules["main"] = _sys.modules[__name__]


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out/opt-in via COURSETASKS_ENABLE_DOTENV (default true
      outside pytest).
    """
    if "pytest" in _sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("COURSETASKS_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


from dotenv import load_dotenv

if _should_load_dotenv():
    load_dotenv()

# Minimal production safety checks (fail-fast on insecure config)
import config as _cfg  # noqa: E402

_cfg.ensure_secure_config_on_startup()

# --- App & Settings Setup -------------------------------------------------------


class AuthSettings:
    def __init__(self) -> None:
        self._env_override: str | None = None
        self._secret_override: str | None = None

    @property
    def environment(self) -> str:
        if self._env_override is not None:
            return self._env_override
        return _cfg.environment()

    @property
    def jwt_secret(self) -> str:
        if self._secret_override is not None:
            return self._secret_override
        return _cfg.jwt_secret()

    @property
    def jwt_ttl_seconds(self) -> int:
        return _cfg.jwt_ttl_seconds()

    def override_environment(self, env: str | None) -> None:
        """Override environment for tests (e.g., "prod"), or reset with None."""
        self._env_override = env

    def override_jwt_secret(self, secret: str | None) -> None:
        self._secret_override = secret


logger = logging.getLogger("coursetasks.identity_access")
SETTINGS = AuthSettings()


def _build_user_store():
    """Prefer the Postgres directory when a DSN is configured."""
    dsn = _cfg.database_dsn()
    if not dsn:
        return UserStore()
    try:
        from identity_access.stores_db import DBUserStore

        return DBUserStore(dsn=dsn)
    except Exception as exc:  # pragma: no cover - exercised when DB is unreachable
        logger.warning("User directory unavailable (%s); using in-memory store", exc.__class__.__name__)
        return UserStore()


USER_STORE = _build_user_store()


def set_user_store(store) -> None:
    """Allow tests to swap the user directory."""
    global USER_STORE
    USER_STORE = store


app = FastAPI(title="coursetasks", description="Academic task tracking and deadline planning", version="0.1.0")

from routes.auth import auth_router  # noqa: E402
from routes.roster import roster_router  # noqa: E402
from routes.tasks import tasks_router  # noqa: E402
from routes.planning import planning_router  # noqa: E402

# --- Authentication Middleware -----------------------------------------------


def _is_public_path(path: str) -> bool:
    return path.startswith("/auth/") or path in ("/health", "/favicon.ico")


@app.middleware("http")
async def auth_enforcement(request: Request, call_next):
    path = request.url.path
    if _is_public_path(path) or not path.startswith("/api/"):
        return await call_next(request)

    try:
        identity = resolve_identity(
            request.headers.get("authorization"),
            secret=SETTINGS.jwt_secret,
            users=USER_STORE,
        )
    except TokenVerificationError:
        headers = {"Cache-Control": "private, no-store", "WWW-Authenticate": "Bearer"}
        return JSONResponse({"error": "unauthenticated"}, status_code=401, headers=headers)

    # Expose the verified identity for handlers; services receive it explicitly.
    request.state.identity = identity
    return await call_next(request)


# --- Security Headers Middleware ----------------------------------------------


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    if SETTINGS.environment == "prod":
        response.headers.setdefault("Cross-Origin-Opener-Policy", "same-origin")
        response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


app.include_router(auth_router)
# Roster paths share the /api/tasks prefix; register them before /api/tasks/{task_id}.
app.include_router(roster_router)
app.include_router(tasks_router)
app.include_router(planning_router)


@app.get("/health")
async def health_check():
    # Minimal health endpoint used by orchestrators and tests.
    return JSONResponse({"status": "healthy"}, headers={"Cache-Control": "private, no-store"})
