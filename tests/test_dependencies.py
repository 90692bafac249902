"""
Tests for API dependencies.

Covers bearer token verification, admin role checks and service wiring.
"""

from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import MagicMock
from uuid import uuid4

import jwt
import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from proofai.api.dependencies import (
    decode_access_token,
    get_billing_provider,
    get_current_user,
    get_entitlement_provider,
    require_admin_role,
)
from proofai.config import settings
from proofai.exceptions import AuthenticationError
from proofai.models.api import UserRole
from proofai.services.entitlements import DatabaseEntitlementResolver

SECRET = settings.auth_jwt_secret
AUDIENCE = settings.auth_jwt_audience


def bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


class TestDecodeAccessToken:
    def test_valid_token(self, make_token) -> None:
        user_id = uuid4()

        user = decode_access_token(make_token(user_id), SECRET, AUDIENCE)

        assert user.user_id == user_id
        assert user.email == "user@example.com"

    def test_token_without_email(self, make_token) -> None:
        user = decode_access_token(make_token(uuid4(), email=None), SECRET, AUDIENCE)

        assert user.email is None

    def test_expired_token(self, make_token) -> None:
        token = make_token(uuid4(), expires_in=timedelta(minutes=-5))

        with pytest.raises(AuthenticationError, match="expired"):
            decode_access_token(token, SECRET, AUDIENCE)

    def test_wrong_audience(self, make_token) -> None:
        token = make_token(uuid4(), audience="someone-else")

        with pytest.raises(AuthenticationError):
            decode_access_token(token, SECRET, AUDIENCE)

    def test_wrong_secret(self, make_token) -> None:
        token = make_token(uuid4(), secret="a-different-secret-that-is-long-enough")

        with pytest.raises(AuthenticationError):
            decode_access_token(token, SECRET, AUDIENCE)

    def test_subject_must_be_uuid(self) -> None:
        token = jwt.encode({"sub": "not-a-uuid", "aud": AUDIENCE}, SECRET, algorithm="HS256")

        with pytest.raises(AuthenticationError, match="subject"):
            decode_access_token(token, SECRET, AUDIENCE)

    def test_missing_subject(self) -> None:
        token = jwt.encode({"aud": AUDIENCE}, SECRET, algorithm="HS256")

        with pytest.raises(AuthenticationError):
            decode_access_token(token, SECRET, AUDIENCE)

    def test_unconfigured_secret(self, make_token) -> None:
        with pytest.raises(AuthenticationError, match="not configured"):
            decode_access_token(make_token(uuid4()), "", AUDIENCE)


class TestGetCurrentUser:
    @pytest.mark.asyncio
    async def test_missing_header(self) -> None:
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(None)

        assert exc_info.value.status_code == 401
        assert exc_info.value.headers == {"WWW-Authenticate": "Bearer"}

    @pytest.mark.asyncio
    async def test_invalid_token(self) -> None:
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(bearer("garbage"))

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_valid_token(self, make_token) -> None:
        user_id = uuid4()

        user = await get_current_user(bearer(make_token(user_id)))

        assert user.user_id == user_id


class TestRequireAdminRole:
    @pytest.mark.asyncio
    async def test_admin_profile(self, store, admin_user) -> None:
        caller = SimpleNamespace(user_id=admin_user.user_id, email=None)

        account = await require_admin_role(caller, store)

        assert account.role == UserRole.ADMIN

    @pytest.mark.asyncio
    async def test_regular_user_forbidden(self, store, starter_user) -> None:
        caller = SimpleNamespace(user_id=starter_user.user_id, email=None)

        with pytest.raises(HTTPException) as exc_info:
            await require_admin_role(caller, store)

        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_support_user_forbidden(self, store) -> None:
        account = store.add_account(role=UserRole.SUPPORT)
        caller = SimpleNamespace(user_id=account.user_id, email=None)

        with pytest.raises(HTTPException) as exc_info:
            await require_admin_role(caller, store)

        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_missing_profile_forbidden(self, store) -> None:
        caller = SimpleNamespace(user_id=uuid4(), email=None)

        with pytest.raises(HTTPException) as exc_info:
            await require_admin_role(caller, store)

        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_store_failure_is_unavailable(self, store, admin_user) -> None:
        store.fail_on.add("get_account")
        caller = SimpleNamespace(user_id=admin_user.user_id, email=None)

        with pytest.raises(HTTPException) as exc_info:
            await require_admin_role(caller, store)

        assert exc_info.value.status_code == 503


class TestServiceWiring:
    @pytest.mark.asyncio
    async def test_database_provider_selected(self, store) -> None:
        provider = await get_entitlement_provider(store)

        assert isinstance(provider, DatabaseEntitlementResolver)

    def test_billing_provider_not_configured(self) -> None:
        request = MagicMock()
        request.app.state = SimpleNamespace(billing_provider=None)

        with pytest.raises(HTTPException) as exc_info:
            get_billing_provider(request)

        assert exc_info.value.status_code == 503

    def test_billing_provider_from_app_state(self) -> None:
        provider = object()
        request = MagicMock()
        request.app.state = SimpleNamespace(billing_provider=provider)

        assert get_billing_provider(request) is provider
