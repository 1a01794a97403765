from fastcrud import FastCRUD

from ..models.user import User
from ..schemas.user import (
    UserCreateInternal,
    UserDelete,
    UserRead,
    UserResetTokenUpdate,
    UserUpdateInternal,
)

CRUDUser = FastCRUD[
    User,
    UserCreateInternal,
    UserResetTokenUpdate,
    UserUpdateInternal,
    UserDelete,
    UserRead,
]
crud_users = CRUDUser(User)
