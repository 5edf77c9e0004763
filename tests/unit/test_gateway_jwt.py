"""Unit tests for JWT handler and the actor dependency."""

from datetime import timedelta
from unittest.mock import patch

import pytest
from fastapi import HTTPException
from jose import jwt

from config.settings import settings
from src.mp_common.errors import InvalidCredentialsError
from src.mp_gateway.auth.dependencies import get_current_actor
from src.mp_gateway.auth.jwt_handler import create_access_token, decode_token


def test_access_token_contains_correct_claims() -> None:
    token = create_access_token("user-123", roles=["admin"])
    # Decode without verification to inspect claims
    payload = jwt.get_unverified_claims(token)
    assert payload["sub"] == "user-123"
    assert payload["type"] == "access"
    assert payload["roles"] == ["admin"]


def test_decode_valid_access_token() -> None:
    token = create_access_token("user-abc")
    payload = decode_token(token)
    assert payload["sub"] == "user-abc"
    assert payload["roles"] == []


def test_expired_access_token_raises_credentials_error() -> None:
    with patch(
        "src.mp_gateway.auth.jwt_handler._ACCESS_EXPIRE",
        timedelta(seconds=-1),
    ):
        token = create_access_token("user-abc")
    with pytest.raises(InvalidCredentialsError):
        decode_token(token)


def test_tampered_token_raises_error() -> None:
    token = create_access_token("user-abc")
    tampered = token[:-4] + "xxxx"
    with pytest.raises(InvalidCredentialsError):
        decode_token(tampered)


def test_non_access_token_rejected() -> None:
    """A refresh token from the identity service must not authenticate calls."""
    token = jwt.encode(
        {"sub": "user-abc", "type": "refresh"}, settings.JWT_SECRET, algorithm="HS256"
    )
    with pytest.raises(InvalidCredentialsError):
        decode_token(token)


def test_wrong_secret_rejected() -> None:
    token = jwt.encode({"sub": "user-abc", "type": "access"}, "other-secret", algorithm="HS256")
    with pytest.raises(InvalidCredentialsError):
        decode_token(token)


class TestCurrentActor:
    async def test_plain_user(self) -> None:
        actor = await get_current_actor(create_access_token("client-1"))
        assert actor.user_id == "client-1"
        assert actor.is_admin is False

    async def test_admin_role(self) -> None:
        actor = await get_current_actor(create_access_token("ops-1", roles=[settings.ADMIN_ROLE]))
        assert actor.is_admin is True

    async def test_invalid_token_is_401(self) -> None:
        with pytest.raises(HTTPException) as exc_info:
            await get_current_actor("not-a-token")
        assert exc_info.value.status_code == 401

    async def test_missing_subject_is_401(self) -> None:
        token = jwt.encode({"type": "access"}, settings.JWT_SECRET, algorithm="HS256")
        with pytest.raises(HTTPException):
            await get_current_actor(token)
