from collections.abc import AsyncGenerator, Callable
from contextlib import _AsyncGeneratorContextManager, asynccontextmanager
from typing import Any

from fastapi import APIRouter, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import Settings
from .db.database import Base, async_engine as engine
from .exceptions.service_exceptions import DispatchFailure, ServiceError
from .logger import get_logger

logger = get_logger(__name__)


# -------------- database --------------
async def create_tables() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# -------------- application --------------
def lifespan_factory(
    settings: Settings,
    create_tables_on_start: bool = True,
) -> Callable[[FastAPI], _AsyncGeneratorContextManager[Any]]:
    """Factory to create a lifespan async context manager for a FastAPI app."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator:
        if create_tables_on_start and settings.CREATE_TABLES_ON_START:
            await create_tables()
            logger.info("[Startup] Database tables ready")

        yield

        await engine.dispose()

    return lifespan


def _service_error_body(exc: ServiceError) -> dict[str, Any]:
    body: dict[str, Any] = {"detail": exc.message}
    if exc.details:
        body["errors"] = exc.details
    if isinstance(exc, DispatchFailure) and exc.result is not None:
        result = exc.result
        body["result"] = (
            result.model_dump(mode="json") if isinstance(result, BaseModel) else result
        )
    return body


def register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    """Đăng ký handler chuyển lỗi service thành JSON response"""

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        if exc.status_code >= 500:
            logger.warning(
                f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}"
            )
        return JSONResponse(
            status_code=exc.status_code, content=_service_error_body(exc)
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        content = {"detail": "Internal server error"}
        if settings.is_development:
            content["error"] = str(exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content
        )


def create_application(
    router: APIRouter,
    settings: Settings,
    create_tables_on_start: bool = True,
    lifespan: Callable[[FastAPI], _AsyncGeneratorContextManager[Any]] | None = None,
    **kwargs: Any,
) -> FastAPI:
    """Creates and configures a FastAPI application based on the provided settings.

    Parameters
    ----------
    router : APIRouter
        The APIRouter object containing the routes to be included in the FastAPI application.

    settings
        The application settings (app metadata, database, CORS origin, environment).

    create_tables_on_start : bool
        Whether the default lifespan should create missing tables.

    lifespan
        Custom lifespan; the default one from ``lifespan_factory`` is used otherwise.

    **kwargs
        Additional keyword arguments passed directly to the FastAPI constructor.

    Returns
    -------
    FastAPI
        A fully configured FastAPI application instance.
    """
    kwargs.update(
        {
            "title": settings.APP_NAME,
            "description": settings.APP_DESCRIPTION,
            "version": settings.APP_VERSION,
        }
    )

    if lifespan is None:
        lifespan = lifespan_factory(settings, create_tables_on_start=create_tables_on_start)

    application = FastAPI(lifespan=lifespan, **kwargs)
    application.include_router(router)

    application.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(application, settings)

    return application
