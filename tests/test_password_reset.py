"""
Tests for the password reset flow (service and API).
"""

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from flowmind.core.exceptions.service_exceptions import EmailDeliveryError, NotFoundError
from flowmind.core.security import verify_password
from flowmind.crud.crud_users import crud_users
from flowmind.models.user import User
from flowmind.services.password_reset_service import (
    PasswordResetService,
    hash_reset_token,
)

from tests.helpers.test_utils import assert_response_error


class TestPasswordResetService:
    @pytest.mark.asyncio
    async def test_request_stores_hash_and_sends_token(
        self, async_session: AsyncSession, test_user: User, email_sender
    ):
        service = PasswordResetService(email_sender=email_sender)

        await service.request_reset(async_session, test_user.email.upper())

        assert len(email_sender.sent) == 1
        address, token = email_sender.sent[0]
        assert address == test_user.email
        assert len(token) == 64

        stored = await crud_users.get(db=async_session, id=test_user.id)
        assert stored["reset_token_hash"] == hash_reset_token(token)
        assert stored["reset_token_hash"] != token
        assert stored["reset_token_expires_at"] is not None

    @pytest.mark.asyncio
    async def test_delivery_failure_rolls_back_token(
        self, async_session: AsyncSession, test_user: User, email_sender
    ):
        email_sender.succeed = False
        service = PasswordResetService(email_sender=email_sender)

        with pytest.raises(EmailDeliveryError):
            await service.request_reset(async_session, test_user.email)

        stored = await crud_users.get(db=async_session, id=test_user.id)
        assert stored["reset_token_hash"] is None
        assert stored["reset_token_expires_at"] is None

    @pytest.mark.asyncio
    async def test_unknown_email(self, async_session: AsyncSession, email_sender):
        service = PasswordResetService(email_sender=email_sender)
        with pytest.raises(NotFoundError):
            await service.request_reset(async_session, "nobody@example.com")

    @pytest.mark.asyncio
    async def test_expired_token_rejected(
        self, async_session: AsyncSession, test_user: User, email_sender
    ):
        service = PasswordResetService(email_sender=email_sender)
        await crud_users.update(
            db=async_session,
            object={
                "reset_token_hash": hash_reset_token("expired-token"),
                "reset_token_expires_at": datetime.now(timezone.utc) - timedelta(minutes=1),
            },
            id=test_user.id,
        )

        with pytest.raises(NotFoundError):
            await service.validate_token(async_session, "expired-token")

    @pytest.mark.asyncio
    async def test_reset_replaces_password_and_clears_token(
        self, async_session: AsyncSession, test_user: User, email_sender
    ):
        service = PasswordResetService(email_sender=email_sender)
        await service.request_reset(async_session, test_user.email)
        _, token = email_sender.sent[0]

        await service.reset_password(async_session, token, "BrandNewPass1!")

        stored = await crud_users.get(db=async_session, id=test_user.id)
        assert await verify_password("BrandNewPass1!", stored["hashed_password"])
        assert stored["reset_token_hash"] is None
        assert stored["reset_token_expires_at"] is None
        with pytest.raises(NotFoundError):
            await service.validate_token(async_session, token)


class TestPasswordResetAPI:
    @pytest.mark.asyncio
    async def test_full_flow(
        self, async_client: AsyncClient, test_user: User, email_sender
    ):
        response = await async_client.post(
            "/api/password/forgot", json={"email": test_user.email}
        )
        assert response.status_code == 200
        _, token = email_sender.sent[0]

        response = await async_client.get(f"/api/password/reset/{token}")
        assert response.status_code == 200

        response = await async_client.post(
            "/api/password/reset",
            json={"token": token, "new_password": "BrandNewPass1!"},
        )
        assert response.status_code == 200

        response = await async_client.post(
            "/api/auth/login",
            data={"username": test_user.username, "password": "BrandNewPass1!"},
        )
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_invalid_token(self, async_client: AsyncClient):
        response = await async_client.get("/api/password/reset/not-a-real-token")
        assert_response_error(response, 404)

    @pytest.mark.asyncio
    async def test_delivery_failure_is_503(
        self, async_client: AsyncClient, test_user: User, email_sender
    ):
        email_sender.succeed = False

        response = await async_client.post(
            "/api/password/forgot", json={"email": test_user.email}
        )

        assert_response_error(response, 503)
