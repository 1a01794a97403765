from typing import Annotated, cast

from fastapi import APIRouter, Depends
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from ...core.db.database import async_get_db
from ...core.exceptions.http_exceptions import (
    DuplicateValueException,
    NotFoundException,
    UnauthorizedException,
)
from ...core.logger import get_logger
from ...core.schemas import Token
from ...core.security import authenticate_user, create_access_token, get_password_hash
from ...crud.crud_users import crud_users
from ...schemas.user import UserCreate, UserCreateInternal, UserRead

router = APIRouter(prefix="/auth", tags=["auth"])
logger = get_logger(__name__)


@router.post("/register", response_model=UserRead, status_code=201)
async def register(
    user: UserCreate,
    db: Annotated[AsyncSession, Depends(async_get_db)],
) -> UserRead:
    """Register a new account with the ``user`` role.

    Raises
    ------
    DuplicateValueException
        If username or email already exists
    """
    if await crud_users.exists(db=db, username=user.username):
        raise DuplicateValueException("Username is already taken")
    if await crud_users.exists(db=db, email=user.email):
        raise DuplicateValueException("Email is already registered")

    user_internal_dict = user.model_dump()
    user_internal_dict["hashed_password"] = get_password_hash(
        user_internal_dict.pop("password")
    )

    user_internal = UserCreateInternal(**user_internal_dict)
    user_read = await crud_users.create(
        db=db,
        object=user_internal,
        schema_to_select=UserRead,
        return_as_model=True,
    )
    if user_read is None:
        raise NotFoundException("Created user not found")

    logger.info(f"Registered user {user.username}")
    return cast(UserRead, user_read)


@router.post("/login", response_model=Token)
async def login(
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
    db: Annotated[AsyncSession, Depends(async_get_db)],
) -> dict[str, str]:
    """Authenticate with username (or email) and password, return a bearer JWT."""
    user = await authenticate_user(
        username_or_email=form_data.username, password=form_data.password, db=db
    )
    if not user:
        raise UnauthorizedException("Wrong username or password.")

    access_token = create_access_token(data={"sub": user["username"], "role": user["role"]})
    return {"access_token": access_token, "token_type": "bearer"}
