"""
Helpers to register users on the app's directory and mint bearer headers.

Keeps API tests short: one call yields the stored user and the
`Authorization` header to send.
"""
from __future__ import annotations

from typing import Dict, Iterable, Optional, Tuple

from identity_access.domain import Role
from identity_access.stores import UserRecord
from identity_access.tokens import issue_access_token


def register_user(
    main_module,
    username: str,
    roles: Iterable[Role | str],
    *,
    group_id: Optional[int] = None,
    password: str = "correct-horse-battery",
) -> Tuple[UserRecord, Dict[str, str]]:
    rec = main_module.USER_STORE.add_user(
        username=username,
        password=password,
        roles=roles,
        group_id=group_id,
    )
    return rec, bearer_for(main_module, rec)


def bearer_for(main_module, rec: UserRecord, *, now: float | None = None, ttl_seconds: int = 3600) -> Dict[str, str]:
    token = issue_access_token(
        user_id=rec.id,
        username=rec.username,
        roles=rec.roles,
        secret=main_module.SETTINGS.jwt_secret,
        ttl_seconds=ttl_seconds,
        now=now,
    )
    return {"Authorization": f"Bearer {token}"}
