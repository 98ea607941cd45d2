"""Turn an Authorization header into a request-scoped Identity."""
from __future__ import annotations

from typing import Optional, Protocol

from .domain import Identity
from .stores import UserRecord
from .tokens import TokenVerificationError, parse_bearer, verify_access_token


class UserDirectoryProtocol(Protocol):
    def get(self, user_id: int) -> Optional[UserRecord]:
        ...


def resolve_identity(
    authorization: str | None,
    *,
    secret: str,
    users: UserDirectoryProtocol,
    now: float | None = None,
) -> Identity:
    """Verify the bearer credential and complete it with the caller's group.

    Roles come from the token; the group comes from the directory. An unknown
    subject is treated like any other invalid credential.
    """
    token = parse_bearer(authorization)
    user_id, username, roles = verify_access_token(token, secret=secret, now=now)
    rec = users.get(user_id)
    if rec is None:
        raise TokenVerificationError()
    return Identity(id=user_id, username=username or rec.username, roles=roles, group_id=rec.group_id)
