"""
Authorization policy for tasks, submissions and comments.

Why:
    Keep every allow/deny rule in one pure function so routes, services and
    tests agree on the same decision table. Access is derived from the
    caller's role set, group and ownership, never from per-row ACLs.

Rules (``decide``):
    - READ_TASK: staff (TEACHER/ADMIN) always; STUDENT when the task is global
      (no group) or belongs to the student's group.
    - CREATE_TASK: caller holds TEACHER or ADMIN.
    - UPDATE_TASK / DELETE_TASK: ADMIN, or the task's creator.
    - READ_SUBMISSION: staff always; STUDENT only for their own submission.
    - DELETE_SUBMISSION: ADMIN or TEACHER, or a STUDENT owning the submission.
    - GRADE_SUBMISSION: TEACHER or ADMIN.
    - DELETE_COMMENT: ADMIN, or the comment's author.
    - VIEW_ROSTER: TEACHER or ADMIN (group rosters, per-student task lists,
      submission status per student, teacher dashboard).

Order of checks is the caller's job: confirm the resource exists (NotFound)
before asking the policy (Forbidden), so absence never masquerades as denial.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from identity_access.domain import STAFF_ROLES, Identity, Role

from teaching.errors import Forbidden


class Action(str, Enum):
    READ_TASK = "read_task"
    CREATE_TASK = "create_task"
    UPDATE_TASK = "update_task"
    DELETE_TASK = "delete_task"
    READ_SUBMISSION = "read_submission"
    DELETE_SUBMISSION = "delete_submission"
    GRADE_SUBMISSION = "grade_submission"
    DELETE_COMMENT = "delete_comment"
    VIEW_ROSTER = "view_roster"


class Decision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"

    @property
    def allowed(self) -> bool:
        return self is Decision.ALLOW


@dataclass(frozen=True)
class Resource:
    """Ownership/group attributes of the resource a decision is about.

    ``owner_id`` is the task creator, the submitting student or the comment
    author depending on the action.
    """

    owner_id: Optional[int] = None
    group_id: Optional[int] = None


_DENY_CODES = {
    Action.READ_TASK: "group_mismatch",
    Action.CREATE_TASK: "role_required",
    Action.UPDATE_TASK: "not_owner",
    Action.DELETE_TASK: "not_owner",
    Action.READ_SUBMISSION: "not_owner",
    Action.DELETE_SUBMISSION: "not_owner",
    Action.GRADE_SUBMISSION: "role_required",
    Action.DELETE_COMMENT: "not_owner",
    Action.VIEW_ROSTER: "role_required",
}


def _is_owner(identity: Identity, resource: Resource) -> bool:
    return resource.owner_id is not None and resource.owner_id == identity.id


def can_read_group(identity: Identity, group_id: Optional[int]) -> bool:
    if identity.has_any_role(STAFF_ROLES):
        return True
    if not identity.has_role(Role.STUDENT):
        return False
    return group_id is None or (identity.group_id is not None and group_id == identity.group_id)


def decide(identity: Identity, action: Action, resource: Resource | None = None) -> Decision:
    res = resource or Resource()
    if action is Action.READ_TASK:
        ok = can_read_group(identity, res.group_id)
    elif action is Action.CREATE_TASK:
        ok = identity.has_any_role(STAFF_ROLES)
    elif action in (Action.UPDATE_TASK, Action.DELETE_TASK, Action.DELETE_COMMENT):
        ok = identity.has_role(Role.ADMIN) or _is_owner(identity, res)
    elif action is Action.READ_SUBMISSION:
        ok = identity.has_any_role(STAFF_ROLES) or (identity.has_role(Role.STUDENT) and _is_owner(identity, res))
    elif action is Action.DELETE_SUBMISSION:
        ok = (
            identity.has_role(Role.ADMIN)
            or identity.has_role(Role.TEACHER)
            or (identity.has_role(Role.STUDENT) and _is_owner(identity, res))
        )
    elif action in (Action.GRADE_SUBMISSION, Action.VIEW_ROSTER):
        ok = identity.has_any_role(STAFF_ROLES)
    else:  # pragma: no cover - exhaustive over Action
        ok = False
    return Decision.ALLOW if ok else Decision.DENY


def authorize(identity: Identity, action: Action, resource: Resource | None = None) -> None:
    """Raise ``Forbidden`` with a rule-specific code when ``decide`` denies."""
    if not decide(identity, action, resource).allowed:
        raise Forbidden(_DENY_CODES.get(action, "forbidden"))
