"""
Authentication-related FastAPI routes (router-only module).

Why:
    Keep login and profile endpoints in a dedicated router so token issuing
    stays next to the credential check and away from task handlers.

Notes:
    - This module imports from `main` inside functions to reuse the shared
      user directory and settings. Tests swap those on `main` directly.
    - Unknown user and wrong password produce the same 401 so the endpoint
      cannot be used to enumerate usernames.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from identity_access.domain import Identity
from identity_access.tokens import issue_access_token

auth_router = APIRouter(tags=["Auth"])  # explicit paths, no prefix
logger = logging.getLogger("coursetasks.web.auth")


def _private(payload: dict, *, status_code: int = 200) -> JSONResponse:
    return JSONResponse(content=payload, status_code=status_code, headers={"Cache-Control": "private, no-store"})


class LoginPayload(BaseModel):
    # Loose typing so missing/ill-typed fields become our 400, not FastAPI's 422
    username: object | None = None
    password: object | None = None


def _serialize_user(rec, identity: Identity | None = None) -> dict:
    roles = identity.roles if identity is not None else rec.roles
    return {
        "id": rec.id,
        "username": rec.username,
        "fullName": rec.full_name,
        "roles": sorted(r.value for r in roles),
        "groupId": identity.group_id if identity is not None else rec.group_id,
    }


@auth_router.post("/auth/login")
async def login(payload: LoginPayload):
    """Exchange username/password for a bearer access token.

    Behavior:
        - 200 `{accessToken, user}` on success.
        - 400 `invalid_credentials_payload` when either field is missing/blank.
        - 401 `invalid_credentials` for unknown users and wrong passwords alike.
    """
    import main  # type: ignore

    username = payload.username.strip() if isinstance(payload.username, str) else ""
    password = payload.password if isinstance(payload.password, str) else ""
    if not username or not password:
        return _private({"error": "bad_request", "detail": "invalid_credentials_payload"}, status_code=400)
    rec = main.USER_STORE.authenticate(username, password)
    if rec is None:
        logger.info("login rejected")
        return _private({"error": "unauthenticated", "detail": "invalid_credentials"}, status_code=401)
    token = issue_access_token(
        user_id=rec.id,
        username=rec.username,
        roles=rec.roles,
        secret=main.SETTINGS.jwt_secret,
        ttl_seconds=main.SETTINGS.jwt_ttl_seconds,
    )
    logger.info("login ok user=%s", rec.id)
    return _private({"accessToken": token, "user": _serialize_user(rec)})


@auth_router.get("/api/me")
async def get_me(request: Request):
    """Profile of the authenticated caller (roles from the token, group from the directory)."""
    import main  # type: ignore

    identity: Identity = request.state.identity
    rec = main.USER_STORE.get(identity.id)
    if rec is None:
        return _private({"error": "unauthenticated"}, status_code=401)
    return _private(_serialize_user(rec, identity))
