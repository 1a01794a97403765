from fastapi import APIRouter

from .auth import router as auth_router
from .health import router as health_router
from .model_providers import router as model_providers_router
from .password import router as password_router

router = APIRouter(prefix="/api")
router.include_router(health_router)
router.include_router(auth_router)
router.include_router(password_router)
router.include_router(model_providers_router)
