# ruff: noqa
from fastcrud.exceptions.http_exceptions import (
    CustomException,
    DuplicateValueException,
    ForbiddenException,
    NotFoundException,
    UnauthorizedException,
)
