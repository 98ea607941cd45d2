"""
Security tests for access token issuing and verification.

Every failure mode (missing scheme, garbage, forged signature, expiry, bad
claims) must surface as the same TokenVerificationError so that a caller can
never learn why a credential was rejected.
"""

from __future__ import annotations

import pytest
from jose import jwt

from identity_access import tokens as tokens_mod
from identity_access.domain import Role
from identity_access.tokens import (
    TokenVerificationError,
    issue_access_token,
    parse_bearer,
    verify_access_token,
)

SECRET = "unit-test-secret-with-enough-length-000000"
NOW = 1_750_000_000


def _token(**overrides) -> str:
    kwargs = dict(user_id=7, username="ana", roles=[Role.STUDENT], secret=SECRET, now=NOW)
    kwargs.update(overrides)
    return issue_access_token(**kwargs)


def test_roundtrip_returns_subject_username_and_roles():
    user_id, username, roles = verify_access_token(_token(roles=["teacher", "ADMIN"]), secret=SECRET, now=NOW + 10)
    assert user_id == 7
    assert username == "ana"
    assert roles == frozenset({Role.TEACHER, Role.ADMIN})


def test_claims_carry_one_hour_validity_by_default():
    claims = jwt.get_unverified_claims(_token())
    assert claims["sub"] == "7"
    assert claims["exp"] - claims["iat"] == 3600
    assert claims["roles"] == ["STUDENT"]


def test_expired_and_forged_tokens_fail_identically():
    expired = _token()
    forged = _token(secret="another-secret-that-is-also-long-enough")
    with pytest.raises(TokenVerificationError) as exp_info:
        verify_access_token(expired, secret=SECRET, now=NOW + 3600 + tokens_mod.MAX_CLOCK_SKEW_SECONDS + 1)
    with pytest.raises(TokenVerificationError) as forged_info:
        verify_access_token(forged, secret=SECRET, now=NOW)
    assert exp_info.value.code == forged_info.value.code == "invalid_token"
    assert str(exp_info.value) == str(forged_info.value)


def test_small_clock_skew_is_tolerated():
    token = _token()
    user_id, _, _ = verify_access_token(token, secret=SECRET, now=NOW + 3600 + tokens_mod.MAX_CLOCK_SKEW_SECONDS)
    assert user_id == 7


def test_token_issued_in_the_future_is_rejected():
    with pytest.raises(TokenVerificationError):
        verify_access_token(_token(now=NOW + 600), secret=SECRET, now=NOW)


def test_non_numeric_subject_is_rejected():
    token = jwt.encode({"sub": "abc", "roles": [], "exp": NOW + 60}, SECRET, algorithm="HS256")
    with pytest.raises(TokenVerificationError):
        verify_access_token(token, secret=SECRET, now=NOW)


def test_missing_roles_claim_is_rejected():
    token = jwt.encode({"sub": "3", "exp": NOW + 60}, SECRET, algorithm="HS256")
    with pytest.raises(TokenVerificationError):
        verify_access_token(token, secret=SECRET, now=NOW)


@pytest.mark.parametrize("roles", [[], ["GUEST", "owner"]])
def test_token_without_known_roles_is_rejected(roles):
    token = jwt.encode({"sub": "3", "roles": roles, "exp": NOW + 60}, SECRET, algorithm="HS256")
    with pytest.raises(TokenVerificationError):
        verify_access_token(token, secret=SECRET, now=NOW)


def test_other_algorithms_are_refused():
    token = jwt.encode({"sub": "3", "roles": [], "exp": NOW + 60}, SECRET, algorithm="HS512")
    with pytest.raises(TokenVerificationError):
        verify_access_token(token, secret=SECRET, now=NOW)


@pytest.mark.parametrize("header", [None, "", "Bearer", "Bearer   ", "Basic abc", "bearer abc"])
def test_parse_bearer_requires_scheme_and_token(header):
    with pytest.raises(TokenVerificationError):
        parse_bearer(header)


def test_parse_bearer_extracts_token():
    assert parse_bearer("Bearer abc.def.ghi") == "abc.def.ghi"


def test_garbage_token_is_rejected():
    with pytest.raises(TokenVerificationError):
        verify_access_token("not-a-jwt", secret=SECRET, now=NOW)
