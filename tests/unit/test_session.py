"""Tests for client session tokens."""

import jwt
import pytest

from jobrelay.contracts import Principal, Role
from jobrelay.errors import AuthError
from jobrelay.security import SessionCodec


def test_round_trip_keeps_user_and_role():
    codec = SessionCodec("session-secret")
    token = codec.encode(Principal(user_id="alice", role=Role.ADMIN))

    principal = codec.from_authorization(f"Bearer {token}")
    assert principal.user_id == "alice"
    assert principal.is_admin


@pytest.mark.parametrize("header", [None, "", "Basic abc", "Bearer", "Bearer a b"])
def test_malformed_authorization_header(header):
    with pytest.raises(AuthError):
        SessionCodec("session-secret").from_authorization(header)


def test_wrong_secret_and_expired_tokens_are_rejected():
    token = SessionCodec("other").encode(Principal(user_id="bob"))
    with pytest.raises(AuthError):
        SessionCodec("session-secret").decode(token)

    expired = jwt.encode({"sub": "bob", "exp": 1}, "session-secret", algorithm="HS256")
    with pytest.raises(AuthError, match="expired"):
        SessionCodec("session-secret").decode(expired)


def test_unknown_role_is_rejected():
    token = jwt.encode(
        {"sub": "bob", "role": "root", "exp": 4102444800}, "session-secret", algorithm="HS256"
    )
    with pytest.raises(AuthError):
        SessionCodec("session-secret").decode(token)
