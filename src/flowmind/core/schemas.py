from datetime import datetime, timezone

from pydantic import BaseModel, Field


class TimestampSchema(BaseModel):
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime | None = None


class Token(BaseModel):
    access_token: str
    token_type: str


class TokenData(BaseModel):
    username: str


class HealthCheck(BaseModel):
    name: str
    version: str | None = None
    status: str = "ok"
