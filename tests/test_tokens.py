"""
Tests del servicio de tokens
"""
from datetime import timedelta

import pytest
from jose import jwt

from petpilot.errors import TokenInvalid, TokenMalformed
from petpilot.schemas.user import Role
from petpilot.security import (
    ALGO,
    create_access_token,
    create_refresh_token,
    hash_password,
    issue_tokens,
    verify_access_token,
    verify_password,
    verify_refresh_token,
)

USER = {"id": "507f1f77bcf86cd799439011", "email": "ana@example.com", "role": "pilot", "token_version": 3}


def test_issue_tokens_binds_identity():
    tokens = issue_tokens(USER)
    access = verify_access_token(tokens["access_token"])
    refresh = verify_refresh_token(tokens["refresh_token"])

    for payload in (access, refresh):
        assert payload.sub == USER["id"]
        assert payload.email == USER["email"]
        assert payload.role == Role.pilot
    assert access.type == "access"
    assert refresh.type == "refresh"
    assert refresh.ver == 3
    # La ventana del refresh es mucho más larga que la del access
    assert refresh.exp - refresh.iat > access.exp - access.iat


def test_tokens_are_unique_per_issue():
    a = issue_tokens(USER)
    b = issue_tokens(USER)
    assert a["access_token"] != b["access_token"]
    assert a["refresh_token"] != b["refresh_token"]


def test_expired_access_token_rejected():
    token = create_access_token(USER["id"], USER["email"], "owner", expires_delta=timedelta(seconds=-5))
    with pytest.raises(TokenInvalid):
        verify_access_token(token)


def test_expired_refresh_token_rejected():
    token = create_refresh_token(USER["id"], USER["email"], "owner", expires_delta=timedelta(seconds=-5))
    with pytest.raises(TokenInvalid):
        verify_refresh_token(token)


def test_token_signed_with_other_secret_rejected():
    forged = jwt.encode(
        {"sub": USER["id"], "email": USER["email"], "role": "admin", "type": "access",
         "iat": 1, "exp": 4102444800, "jti": "x"},
        "some-other-secret",
        algorithm=ALGO,
    )
    with pytest.raises(TokenInvalid):
        verify_access_token(forged)


def test_access_and_refresh_tokens_are_not_interchangeable():
    tokens = issue_tokens(USER)
    with pytest.raises(TokenInvalid):
        verify_refresh_token(tokens["access_token"])
    with pytest.raises(TokenInvalid):
        verify_access_token(tokens["refresh_token"])


@pytest.mark.parametrize("garbage", ["", "not-a-jwt", "a.b", "abc.def.ghi"])
def test_malformed_token(garbage):
    with pytest.raises(TokenMalformed):
        verify_access_token(garbage)


def test_password_hashing():
    hashed = hash_password("s3cret-pass")
    assert hashed != "s3cret-pass"
    assert verify_password("s3cret-pass", hashed)
    assert not verify_password("wrong", hashed)
    assert not verify_password("s3cret-pass", "")
