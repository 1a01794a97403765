"""
Password Reset Service.

Token gửi cho người dùng là 32 byte ngẫu nhiên (hex); DB chỉ lưu SHA-256 của
token cùng thời điểm hết hạn. Nếu gửi email thất bại, token vừa tạo bị xóa.
"""

import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.exceptions.service_exceptions import EmailDeliveryError, NotFoundError
from ..core.logger import get_logger
from ..core.security import get_password_hash
from ..crud.crud_users import crud_users
from .email_service import EmailSender

logger = get_logger(__name__)

RESET_TOKEN_BYTES = 32


def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _as_utc(value: datetime) -> datetime:
    # SQLite trả về datetime không có tzinfo
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class PasswordResetService:
    def __init__(
        self,
        email_sender: EmailSender,
        expire_hours: int = settings.RESET_TOKEN_EXPIRE_HOURS,
    ):
        self.email_sender = email_sender
        self.expire_hours = expire_hours

    async def _set_token(
        self,
        db: AsyncSession,
        user_id: str,
        token_hash: str | None,
        expires_at: datetime | None,
    ) -> None:
        await crud_users.update(
            db=db,
            object={
                "reset_token_hash": token_hash,
                "reset_token_expires_at": expires_at,
                "updated_at": datetime.now(timezone.utc),
            },
            id=user_id,
        )

    async def request_reset(self, db: AsyncSession, email: str) -> None:
        """Tạo token, lưu hash và gửi email; rollback token nếu gửi thất bại."""
        user = await crud_users.get(db=db, email=email.strip().lower())
        if not user:
            raise NotFoundError("No account with that email")

        token = secrets.token_hex(RESET_TOKEN_BYTES)
        expires_at = datetime.now(timezone.utc) + timedelta(hours=self.expire_hours)
        await self._set_token(db, user["id"], hash_reset_token(token), expires_at)

        delivered = await self.email_sender.send_reset_email(user["email"], token)
        if not delivered:
            await self._set_token(db, user["id"], None, None)
            logger.warning(f"Reset email delivery failed for user {user['id']}, token cleared")
            raise EmailDeliveryError("Could not send password reset email")

        logger.info(f"Password reset requested for user {user['id']}")

    async def validate_token(self, db: AsyncSession, token: str) -> dict[str, Any]:
        user = await crud_users.get(db=db, reset_token_hash=hash_reset_token(token))
        if not user or user["reset_token_expires_at"] is None:
            raise NotFoundError("Password reset token is invalid or has expired")
        if _as_utc(user["reset_token_expires_at"]) <= datetime.now(timezone.utc):
            raise NotFoundError("Password reset token is invalid or has expired")
        return user

    async def reset_password(self, db: AsyncSession, token: str, new_password: str) -> None:
        user = await self.validate_token(db, token)
        await crud_users.update(
            db=db,
            object={
                "hashed_password": get_password_hash(new_password),
                "reset_token_hash": None,
                "reset_token_expires_at": None,
                "updated_at": datetime.now(timezone.utc),
            },
            id=user["id"],
        )
        logger.info(f"Password reset completed for user {user['id']}")
