"""
Provider model - configured upstream LLM vendors.

One row holds the whole provider document: models, parameters, capabilities
and mapping entries are embedded in JSON columns and live and die with it.
"""

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from uuid6 import uuid7

from ..core.db.database import Base


class Provider(Base):
    """Model provider document."""

    __tablename__ = "model_provider"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default_factory=lambda: str(uuid7()), init=False
    )

    identifier: Mapped[str] = mapped_column(String(100), unique=True, index=True)

    name: Mapped[str] = mapped_column(String(255))

    base_url: Mapped[str] = mapped_column(String(2048))

    api_key_encrypted: Mapped[str] = mapped_column(Text)  # CredentialVault blob

    auth_type: Mapped[str] = mapped_column(String(20), default="bearer")

    auth_location: Mapped[str] = mapped_column(String(20), default="header")

    auth_key_name: Mapped[str | None] = mapped_column(
        String(100), default=None, nullable=True
    )

    custom_headers: Mapped[dict] = mapped_column(JSON, default_factory=dict)

    request_mapping: Mapped[dict] = mapped_column(JSON, default_factory=dict)

    response_mapping: Mapped[dict] = mapped_column(JSON, default_factory=dict)

    models: Mapped[list] = mapped_column(JSON, default_factory=list)

    is_active: Mapped[bool] = mapped_column(Boolean, default=False, index=True)

    token_usage: Mapped[int] = mapped_column(Integer, default=0)

    # Bumped on every document write, used for compare-and-swap updates
    version: Mapped[int] = mapped_column(Integer, default=1)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default_factory=lambda: datetime.now(timezone.utc),
        init=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default_factory=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        init=False,
    )
