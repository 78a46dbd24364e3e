"""
Unit Tests for bearer-token authentication
"""

import time

import pytest
from fastapi import HTTPException
from jose import jwt

from lib.auth import JWT_ALGORITHM, get_current_user

SECRET = "test-jwt-secret"


def _token(**claims):
    payload = {"sub": "user-1", "aud": "authenticated", "email": "student@example.com", "exp": int(time.time()) + 600}
    payload.update(claims)
    return jwt.encode(payload, SECRET, algorithm=JWT_ALGORITHM)


class TestGetCurrentUser:

    @pytest.fixture(autouse=True)
    def jwt_secret(self, monkeypatch):
        monkeypatch.setenv("SUPABASE_JWT_SECRET", SECRET)

    @pytest.mark.asyncio
    async def test_valid_token(self):
        user = await get_current_user(f"Bearer {_token()}")
        assert user == {"id": "user-1", "email": "student@example.com"}

    @pytest.mark.asyncio
    async def test_missing_header(self):
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(None)
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_wrong_scheme(self):
        with pytest.raises(HTTPException):
            await get_current_user(f"Token {_token()}")

    @pytest.mark.asyncio
    async def test_expired_token(self):
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(f"Bearer {_token(exp=int(time.time()) - 60)}")
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_wrong_signature(self):
        forged = jwt.encode({"sub": "user-1", "aud": "authenticated"}, "other-secret", algorithm=JWT_ALGORITHM)
        with pytest.raises(HTTPException):
            await get_current_user(f"Bearer {forged}")

    @pytest.mark.asyncio
    async def test_token_without_subject(self):
        with pytest.raises(HTTPException):
            await get_current_user(f"Bearer {_token(sub=None)}")
