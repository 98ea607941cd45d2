"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend to avoid sandbox restrictions
that can affect the Trio backend (e.g., socketpair permission errors), and
keep the app on its in-memory stores so no test needs a live database.
"""
import os
import importlib
import sys
from pathlib import Path
import pytest


def _ensure_offline_env_defaults() -> None:
    """Run the suite against in-memory stores with a fixed signing secret.

    DSNs exported in a developer shell would make `main` build the Postgres
    user directory at import time; tests that need the DB repo patch psycopg
    explicitly instead.
    """
    for var in ("DATABASE_URL", "TASKS_DATABASE_URL", "COURSETASKS_ENV", "PLANNER_TIMEZONE"):
        os.environ.pop(var, None)
    os.environ["JWT_SECRET"] = "test-secret-for-coursetasks-suite-0123456789"
    os.environ["COURSETASKS_ENABLE_DOTENV"] = "false"


_ensure_offline_env_defaults()

# Ensure modules in backend/ and backend/web are importable across tests
REPO_ROOT = Path(__file__).resolve().parents[2]
BACKEND_DIR = REPO_ROOT / "backend"
WEB_DIR = BACKEND_DIR / "web"
TESTS_DIR = BACKEND_DIR / "tests"
for p in (str(REPO_ROOT), str(BACKEND_DIR), str(WEB_DIR), str(TESTS_DIR)):
    if p not in sys.path:
        sys.path.insert(0, p)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _reset_task_repo_between_tests():
    """Give every test a fresh in-memory task repository."""
    try:
        import routes.tasks as tasks  # type: ignore
        from teaching.repo_memory import InMemoryRepo  # type: ignore
    except Exception:
        yield
        return
    tasks.set_repo(InMemoryRepo())
    yield


@pytest.fixture(autouse=True)
def _reset_user_store_and_settings():
    """Reset the shared user directory and settings overrides per test.

    Why:
        API tests register users on `main.USER_STORE` and some force `prod`
        semantics or a different secret via `main.SETTINGS`. Without a reset,
        users and overrides leak into unrelated tests in a full run.
    """
    try:
        from identity_access.stores import UserStore  # type: ignore
    except Exception:
        yield
        return

    fresh = UserStore()
    for name in ("main", "backend.web.main"):
        mod = sys.modules.get(name)
        if mod is None:
            try:
                mod = importlib.import_module(name)  # type: ignore[assignment]
            except Exception:
                continue
        if hasattr(mod, "set_user_store"):
            mod.set_user_store(fresh)
        if hasattr(mod, "SETTINGS"):
            mod.SETTINGS.override_environment(None)
            mod.SETTINGS.override_jwt_secret(None)
    yield


@pytest.fixture(autouse=True)
def _clear_env_toggles(monkeypatch: pytest.MonkeyPatch):
    """Clear env-driven toggles that may leak across tests."""
    for var in ("COURSETASKS_ENV", "DATABASE_URL", "TASKS_DATABASE_URL", "PLANNER_TIMEZONE"):
        monkeypatch.delenv(var, raising=False)
    yield
