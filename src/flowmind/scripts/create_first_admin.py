"""Tạo tài khoản admin đầu tiên từ ADMIN_USERNAME / ADMIN_EMAIL / ADMIN_PASSWORD.

Usage: python -m flowmind.scripts.create_first_admin
"""

import asyncio

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.db.database import local_session
from ..core.enums import UserRole
from ..core.logger import get_logger
from ..core.security import get_password_hash
from ..core.setup import create_tables
from ..crud.crud_users import crud_users
from ..schemas.user import UserCreateInternal

logger = get_logger(__name__)


async def create_first_admin(session: AsyncSession) -> bool:
    """Trả về True nếu admin được tạo, False nếu đã tồn tại."""
    email = settings.ADMIN_EMAIL.lower()
    if await crud_users.exists(db=session, email=email) or await crud_users.exists(
        db=session, username=settings.ADMIN_USERNAME
    ):
        logger.info(f"Admin user {settings.ADMIN_USERNAME} already exists")
        return False

    admin = UserCreateInternal(
        username=settings.ADMIN_USERNAME,
        email=email,
        hashed_password=get_password_hash(settings.ADMIN_PASSWORD),
        role=UserRole.admin.value,
    )
    await crud_users.create(db=session, object=admin)
    logger.info(f"Admin user {settings.ADMIN_USERNAME} created")
    return True


async def main() -> None:
    await create_tables()
    async with local_session() as session:
        await create_first_admin(session)


if __name__ == "__main__":
    asyncio.run(main())
