"""
Identity domain constants and the per-request caller identity.

Why:
- Centralize allowed roles to avoid drift between the token layer, the policy
  and the web adapter.
- Roles are a set-valued attribute of the identity. Every rule asks "has role
  X", never "is exactly role X", so a teacher who is also an admin gets the
  union of both grants.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Iterable, Optional


class Role(str, Enum):
    STUDENT = "STUDENT"
    TEACHER = "TEACHER"
    ADMIN = "ADMIN"


# Keep roles minimal and explicit. Immutable to prevent accidental mutation.
ALLOWED_ROLES = frozenset(r.value for r in Role)
STAFF_ROLES = frozenset({Role.TEACHER, Role.ADMIN})


def parse_roles(raw: Iterable[object] | None) -> FrozenSet[Role]:
    """Normalize claim values (any case) into a set of known roles.

    Unknown role names are dropped silently; a token cannot grant roles the
    system does not define.
    """
    roles = set()
    for item in raw or ():
        if not isinstance(item, str):
            continue
        name = item.strip().upper()
        if name in ALLOWED_ROLES:
            roles.add(Role(name))
    return frozenset(roles)


@dataclass(frozen=True)
class Identity:
    """Verified caller context, valid for one request only."""

    id: int
    username: str = ""
    roles: FrozenSet[Role] = field(default_factory=frozenset)
    group_id: Optional[int] = None

    def has_role(self, role: Role) -> bool:
        return role in self.roles

    def has_any_role(self, roles: Iterable[Role]) -> bool:
        return not self.roles.isdisjoint(roles)

    @property
    def is_student_only(self) -> bool:
        """True when the caller holds STUDENT and no staff role."""
        return Role.STUDENT in self.roles and self.roles.isdisjoint(STAFF_ROLES)


__all__ = ["ALLOWED_ROLES", "STAFF_ROLES", "Identity", "Role", "parse_roles"]
