from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ...core.db.database import async_get_db
from ...schemas.user import ForgotPasswordRequest, MessageResponse, ResetPasswordRequest
from ...services.password_reset_service import PasswordResetService
from ..dependencies import get_password_reset_service

router = APIRouter(prefix="/password", tags=["password"])


@router.post("/forgot", response_model=MessageResponse)
async def forgot_password(
    payload: ForgotPasswordRequest,
    db: Annotated[AsyncSession, Depends(async_get_db)],
    service: Annotated[PasswordResetService, Depends(get_password_reset_service)],
) -> MessageResponse:
    """Tạo token đặt lại mật khẩu và gửi email cho người dùng."""
    await service.request_reset(db, payload.email)
    return MessageResponse(message="Password reset email sent")


@router.get("/reset/{token}", response_model=MessageResponse)
async def validate_reset_token(
    token: str,
    db: Annotated[AsyncSession, Depends(async_get_db)],
    service: Annotated[PasswordResetService, Depends(get_password_reset_service)],
) -> MessageResponse:
    await service.validate_token(db, token)
    return MessageResponse(message="Password reset token is valid")


@router.post("/reset", response_model=MessageResponse)
async def reset_password(
    payload: ResetPasswordRequest,
    db: Annotated[AsyncSession, Depends(async_get_db)],
    service: Annotated[PasswordResetService, Depends(get_password_reset_service)],
) -> MessageResponse:
    await service.reset_password(db, payload.token, payload.new_password)
    return MessageResponse(message="Password has been reset")
