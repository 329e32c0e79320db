"""Tests for bearer token verification."""

import time

import jwt
import pytest

from supermd.auth import verify_identity_token
from supermd.config import get_settings
from supermd.exceptions import IdentityError

SECRET = "test-secret-0123456789abcdef0123456789"
OTHER_SECRET = "other-secret-0123456789abcdef0123456789"


def _token(claims: dict, secret: str = SECRET) -> str:
    return jwt.encode(claims, secret, algorithm="HS256")


class TestVerifyIdentityToken:
    """Test verify_identity_token."""

    @pytest.mark.asyncio
    async def test_dev_token_in_development(self):
        settings = get_settings()

        claims = await verify_identity_token(settings.auth_dev_token)

        assert claims.subject == settings.auth_dev_user_id

    @pytest.mark.asyncio
    async def test_dev_token_rejected_outside_development(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "production")
        get_settings.cache_clear()

        with pytest.raises(IdentityError):
            await verify_identity_token("dev_token")

    @pytest.mark.asyncio
    async def test_valid_token(self):
        token = _token({"sub": "user-42", "email": "u@example.com", "exp": int(time.time()) + 60})

        claims = await verify_identity_token(token)

        assert claims.subject == "user-42"
        assert claims.email == "u@example.com"

    @pytest.mark.asyncio
    async def test_wrong_signature(self):
        with pytest.raises(IdentityError):
            await verify_identity_token(_token({"sub": "user-42"}, secret=OTHER_SECRET))

    @pytest.mark.asyncio
    async def test_expired_token(self):
        with pytest.raises(IdentityError):
            await verify_identity_token(_token({"sub": "user-42", "exp": int(time.time()) - 60}))

    @pytest.mark.asyncio
    async def test_missing_subject(self):
        with pytest.raises(IdentityError):
            await verify_identity_token(_token({"email": "u@example.com"}))

    @pytest.mark.asyncio
    async def test_unconfigured_secret(self, monkeypatch):
        monkeypatch.setenv("AUTH_JWT_SECRET", "")
        get_settings.cache_clear()

        with pytest.raises(IdentityError):
            await verify_identity_token(_token({"sub": "user-42"}))
