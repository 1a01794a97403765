from typing import Annotated, Any

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..ai.providers.dispatcher import ProviderDispatcher, get_provider_dispatcher
from ..ai.providers.provider_tester import ConnectionTester
from ..core.db.database import async_get_db
from ..core.enums import UserRole
from ..core.exceptions.http_exceptions import (
    ForbiddenException,
    UnauthorizedException,
)
from ..core.logger import get_logger
from ..core.security import oauth2_scheme, verify_token
from ..crud.crud_users import crud_users
from ..services.email_service import EmailSender, get_email_sender
from ..services.password_reset_service import PasswordResetService
from ..services.provider_registry import ProviderRegistry, get_provider_registry

logger = get_logger(__name__)


async def get_current_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    db: Annotated[AsyncSession, Depends(async_get_db)],
) -> dict[str, Any]:
    token_data = verify_token(token)
    if token_data is None:
        raise UnauthorizedException("User not authenticated.")

    user = await crud_users.get(db=db, username=token_data.username)
    if user:
        return user

    raise UnauthorizedException("User not authenticated.")


async def get_current_admin(
    current_user: Annotated[dict, Depends(get_current_user)],
) -> dict:
    if current_user["role"] != UserRole.admin.value:
        raise ForbiddenException("You do not have enough privileges.")

    return current_user


def get_connection_tester(
    registry: Annotated[ProviderRegistry, Depends(get_provider_registry)],
    dispatcher: Annotated[ProviderDispatcher, Depends(get_provider_dispatcher)],
) -> ConnectionTester:
    """Lấy ConnectionTester cho endpoint test provider."""
    return ConnectionTester(registry=registry, dispatcher=dispatcher)


def get_password_reset_service(
    email_sender: Annotated[EmailSender, Depends(get_email_sender)],
) -> PasswordResetService:
    return PasswordResetService(email_sender=email_sender)
