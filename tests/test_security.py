"""
Unit tests for security module
"""

import pytest
from datetime import timedelta
from uuid import uuid4
from fastapi.security import HTTPAuthorizationCredentials
from jose import jwt

from app.config import settings
from app.core import security
from app.core.exceptions import AuthenticationError, ForbiddenError
from app.core.security import create_access_token, decode_token, get_current_user, require_admin


def bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


@pytest.fixture
def use_test_db(db, monkeypatch):
    """Point the auth dependency at the test database"""
    monkeypatch.setattr(security, "db_manager", db)


@pytest.mark.unit
class TestJWTTokens:
    """Test JWT token functionality"""

    def test_create_access_token(self):
        token = create_access_token({"sub": "user123"})

        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
        assert payload["sub"] == "user123"
        assert payload["type"] == "access"
        assert "exp" in payload

    def test_decode_round_trip(self):
        token = create_access_token({"sub": "user123"}, expires_delta=timedelta(minutes=5))

        assert decode_token(token)["sub"] == "user123"

    def test_expired_token(self):
        token = create_access_token({"sub": "user123"}, expires_delta=timedelta(seconds=-1))

        with pytest.raises(AuthenticationError):
            decode_token(token)

    def test_wrong_token_type(self):
        token = jwt.encode(
            {"sub": "user123", "type": "refresh"},
            settings.JWT_SECRET_KEY,
            algorithm=settings.JWT_ALGORITHM
        )

        with pytest.raises(AuthenticationError) as exc_info:
            decode_token(token)
        assert "Expected access" in exc_info.value.message

    def test_tampered_token(self):
        token = jwt.encode({"sub": "user123", "type": "access"}, "another-secret", algorithm="HS256")

        with pytest.raises(AuthenticationError):
            decode_token(token)


@pytest.mark.unit
class TestCurrentUser:

    @pytest.mark.asyncio
    async def test_missing_credentials(self):
        with pytest.raises(AuthenticationError):
            await get_current_user(None)

    @pytest.mark.asyncio
    async def test_resolves_user(self, use_test_db, test_user):
        user = await get_current_user(bearer(create_access_token({"sub": str(test_user.id)})))

        assert user.id == test_user.id

    @pytest.mark.asyncio
    async def test_unknown_user(self, use_test_db, test_db):
        with pytest.raises(AuthenticationError):
            await get_current_user(bearer(create_access_token({"sub": str(uuid4())})))

    @pytest.mark.asyncio
    async def test_subject_must_be_uuid(self, use_test_db):
        with pytest.raises(AuthenticationError):
            await get_current_user(bearer(create_access_token({"sub": "not-a-uuid"})))

    @pytest.mark.asyncio
    async def test_inactive_user(self, use_test_db, test_user, db_session):
        test_user.is_active = False
        db_session.add(test_user)
        await db_session.commit()

        with pytest.raises(AuthenticationError):
            await get_current_user(bearer(create_access_token({"sub": str(test_user.id)})))


@pytest.mark.unit
class TestRequireAdmin:

    @pytest.mark.asyncio
    async def test_admin_passes(self, admin_user):
        assert await require_admin(admin_user) is admin_user

    @pytest.mark.asyncio
    async def test_regular_user_is_forbidden(self, test_user):
        with pytest.raises(ForbiddenError):
            await require_admin(test_user)
