from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from ..core.enums import UserRole

_PASSWORD_FIELD = Field(min_length=8, max_length=128, examples=["Str1ngst!"])


class UserBase(BaseModel):
    username: Annotated[
        str,
        Field(
            min_length=3,
            max_length=50,
            pattern=r"^[A-Za-z0-9_.\-]+$",
            examples=["userson"],
        ),
    ]
    email: Annotated[EmailStr, Field(examples=["user.userson@example.com"])]

    @field_validator("username", mode="before")
    @classmethod
    def _strip_username(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("email", mode="after")
    @classmethod
    def _lower_email(cls, value: str) -> str:
        return value.lower()


class UserRead(BaseModel):
    id: str
    username: str
    email: str
    role: UserRole
    created_at: datetime


class UserCreate(UserBase):
    model_config = ConfigDict(extra="forbid")

    password: Annotated[str, _PASSWORD_FIELD]


class UserCreateInternal(UserBase):
    hashed_password: str
    role: str = UserRole.user.value


class UserUpdateInternal(BaseModel):
    hashed_password: str | None = None
    reset_token_hash: str | None = None
    reset_token_expires_at: datetime | None = None
    updated_at: datetime


class UserResetTokenUpdate(BaseModel):
    """Ghi / xóa token đặt lại mật khẩu (None để xóa)."""

    reset_token_hash: str | None
    reset_token_expires_at: datetime | None


class UserDelete(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str


class ForgotPasswordRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: EmailStr


class ResetPasswordRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    token: Annotated[str, Field(min_length=1, max_length=256)]
    new_password: Annotated[str, _PASSWORD_FIELD]


class MessageResponse(BaseModel):
    message: str
