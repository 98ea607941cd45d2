"""
Access token issuing and verification for the identity_access bounded context.

Why: Keep cryptographic validation of bearer tokens outside the web adapter so
we can unit test it independently and reuse it for login and request checks.

Security: Tokens are HS256-signed with a shared secret and carry the claims
``{sub, username, roles, iat, exp}``. Every failure (missing scheme, decode
error, bad signature, expiry, malformed claims) raises the same
``TokenVerificationError("invalid_token")`` so callers can never tell an
expired token from a forged one.
"""
from __future__ import annotations

import time
from typing import Dict, Iterable, Tuple

from jose import jwt
from jose.exceptions import JOSEError

from .domain import Role, parse_roles

ALGORITHM = "HS256"
DEFAULT_TTL_SECONDS = 3600
MAX_CLOCK_SKEW_SECONDS = 5  # Allow minimal skew between servers


class TokenVerificationError(Exception):
    """Raised when a bearer credential fails verification."""

    def __init__(self, code: str = "invalid_token"):
        super().__init__(code)
        self.code = code


def issue_access_token(
    *,
    user_id: int,
    username: str,
    roles: Iterable[Role | str],
    secret: str,
    ttl_seconds: int = DEFAULT_TTL_SECONDS,
    now: float | None = None,
) -> str:
    """Sign an access token for the given user."""
    issued_at = int(now if now is not None else time.time())
    role_names = sorted({r.value if isinstance(r, Role) else str(r).upper() for r in roles})
    claims = {
        "sub": str(user_id),
        "username": username,
        "roles": role_names,
        "iat": issued_at,
        "exp": issued_at + int(ttl_seconds),
    }
    return jwt.encode(claims, secret, algorithm=ALGORITHM)


def parse_bearer(header_value: str | None) -> str:
    """Extract the raw token from an ``Authorization: Bearer <token>`` header."""
    if not header_value:
        raise TokenVerificationError()
    scheme, _, token = header_value.partition(" ")
    token = token.strip()
    if scheme != "Bearer" or not token:
        raise TokenVerificationError()
    return token


def verify_access_token(token: str, *, secret: str, now: float | None = None) -> Tuple[int, str, frozenset]:
    """Validate a token and return ``(user_id, username, roles)``.

    Raises
    ------
    TokenVerificationError:
        On any decode, signature, expiry or claim-shape problem, or when no
        known role remains after normalization.
    """
    if not token or not secret:
        raise TokenVerificationError()
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=[ALGORITHM],
            options={
                "verify_signature": True,
                "verify_aud": False,
                "verify_exp": False,
                "verify_iat": False,
                "verify_nbf": False,
            },
        )
    except JOSEError as exc:
        raise TokenVerificationError() from exc

    _validate_temporal_claims(claims, now=now)

    sub = claims.get("sub")
    try:
        user_id = int(str(sub))
    except (TypeError, ValueError) as exc:
        raise TokenVerificationError() from exc
    raw_roles = claims.get("roles")
    if not isinstance(raw_roles, list):
        raise TokenVerificationError()
    roles = parse_roles(raw_roles)
    if not roles:
        raise TokenVerificationError()
    username = claims.get("username")
    return user_id, username if isinstance(username, str) else "", roles


def _validate_temporal_claims(claims: Dict[str, object], *, now: float | None = None) -> None:
    current = now if now is not None else time.time()
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        raise TokenVerificationError()
    if exp + MAX_CLOCK_SKEW_SECONDS < current:
        raise TokenVerificationError()

    iat = claims.get("iat")
    if isinstance(iat, (int, float)) and iat - MAX_CLOCK_SKEW_SECONDS > current:
        raise TokenVerificationError()

    nbf = claims.get("nbf")
    if isinstance(nbf, (int, float)) and nbf - MAX_CLOCK_SKEW_SECONDS > current:
        raise TokenVerificationError()
