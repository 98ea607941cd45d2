"""
In-memory user directory for development and tests.

Why: Bearer tokens carry only ``{sub, username, roles}``. The caller's group
is looked up per request so that moving a student between groups takes effect
without re-issuing tokens. Login also needs a credential check. For
production, use the Postgres-backed ``DBUserStore``.

Security: Passwords are stored as salted PBKDF2-SHA256 hashes and compared in
constant time. Plain-text passwords never leave ``hash_password``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional
import hashlib
import secrets
import threading

from .domain import Role, parse_roles

_PBKDF2_ITERATIONS = 200_000


def hash_password(password: str, *, salt: str | None = None, iterations: int = _PBKDF2_ITERATIONS) -> str:
    """Return ``pbkdf2_sha256$<iterations>$<salt>$<hex digest>``."""
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), iterations)
    return f"pbkdf2_sha256${iterations}${salt}${digest.hex()}"


def check_password(password: str, encoded: str | None) -> bool:
    if not password or not encoded:
        return False
    try:
        algorithm, iterations, salt, expected = encoded.split("$", 3)
        rounds = int(iterations)
    except ValueError:
        return False
    if algorithm != "pbkdf2_sha256":
        return False
    candidate = hash_password(password, salt=salt, iterations=rounds)
    return secrets.compare_digest(candidate.rsplit("$", 1)[1], expected)


@dataclass
class UserRecord:
    id: int
    username: str
    full_name: str
    roles: FrozenSet[Role] = field(default_factory=frozenset)
    group_id: Optional[int] = None
    password_hash: Optional[str] = None


class UserStore:
    def __init__(self) -> None:
        self._by_id: Dict[int, UserRecord] = {}
        self._lock = threading.Lock()
        self._next_id = 1

    def add_user(
        self,
        *,
        username: str,
        password: str,
        roles: Iterable[Role | str],
        full_name: str = "",
        group_id: Optional[int] = None,
        user_id: Optional[int] = None,
    ) -> UserRecord:
        normalized = (username or "").strip()
        if not normalized:
            raise ValueError("invalid_username")
        with self._lock:
            if any(u.username == normalized for u in self._by_id.values()):
                raise ValueError("duplicate_username")
            uid = user_id if user_id is not None else self._next_id
            self._next_id = max(self._next_id, uid) + 1
            rec = UserRecord(
                id=uid,
                username=normalized,
                full_name=full_name or normalized,
                roles=parse_roles(r.value if isinstance(r, Role) else r for r in roles),
                group_id=group_id,
                password_hash=hash_password(password),
            )
            self._by_id[uid] = rec
        return rec

    def get(self, user_id: int) -> Optional[UserRecord]:
        return self._by_id.get(user_id)

    def get_by_username(self, username: str) -> Optional[UserRecord]:
        for rec in self._by_id.values():
            if rec.username == username:
                return rec
        return None

    def authenticate(self, username: str, password: str) -> Optional[UserRecord]:
        """Return the user when the credentials match, else ``None``."""
        rec = self.get_by_username((username or "").strip())
        if rec is None or not check_password(password, rec.password_hash):
            return None
        return rec

    def list_students(self, group_id: int) -> List[UserRecord]:
        """Students of ``group_id`` ordered by full name."""
        with self._lock:
            items = [
                u for u in self._by_id.values()
                if u.group_id == group_id and Role.STUDENT in u.roles
            ]
        return sorted(items, key=lambda u: (u.full_name, u.id))

    def list_group_ids(self) -> List[int]:
        with self._lock:
            return sorted({u.group_id for u in self._by_id.values() if u.group_id is not None})
