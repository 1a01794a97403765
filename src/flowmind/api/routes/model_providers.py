"""Model provider API router.

Exposes endpoints to:
- List / read providers (API key never included)
- Create, update, delete providers (admin)
- Toggle provider and per-model status (admin)
- Run a live connection test with redacted diagnostics (admin)
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ...ai.providers.presets import list_presets
from ...ai.providers.provider_tester import ConnectionTester
from ...core.db.database import async_get_db
from ...core.enums import DispatchErrorKind
from ...core.exceptions.service_exceptions import (
    DispatchFailure,
    TransportError,
    UpstreamError,
)
from ...core.logger import get_logger
from ...schemas.provider import (
    ModelsReplace,
    ModelStatusUpdate,
    NormalizedResult,
    ProviderCreate,
    ProviderModel,
    ProviderPreset,
    ProviderStatusUpdate,
    ProviderSummary,
    ProviderTestRequest,
    ProviderUpdate,
)
from ...services.provider_registry import ProviderRegistry, get_provider_registry
from ..dependencies import get_connection_tester, get_current_admin, get_current_user

logger = get_logger(__name__)

router = APIRouter(prefix="/model-providers", tags=["model-providers"])

# Upstream auth failures are our credential problem, not the caller's
_UPSTREAM_AUTH_STATUSES = {401, 403, 407}

DbSession = Annotated[AsyncSession, Depends(async_get_db)]
Registry = Annotated[ProviderRegistry, Depends(get_provider_registry)]


def raise_for_result(result: NormalizedResult) -> None:
    """Chuyển kết quả test thất bại thành exception có HTTP status tương ứng."""
    if result.success or result.error is None:
        return

    kind = result.error.kind
    message = result.error.message
    if kind == DispatchErrorKind.upstream_error:
        upstream = result.status_code or 502
        code = (
            upstream
            if upstream >= 400 and upstream not in _UPSTREAM_AUTH_STATUSES
            else 502
        )
        raise UpstreamError(message, result, status_code=code)
    if kind == DispatchErrorKind.transport_error:
        raise TransportError(message, result)
    if kind == DispatchErrorKind.response_mapping_error:
        raise DispatchFailure(message, result, status_code=502)
    raise DispatchFailure(message, result, status_code=400)


@router.get("", response_model=list[ProviderSummary])
async def list_providers(
    db: DbSession,
    registry: Registry,
    current_user: Annotated[dict, Depends(get_current_user)],
) -> list[ProviderSummary]:
    return await registry.list(db)


@router.get("/presets", response_model=dict[str, ProviderPreset])
async def get_presets(
    current_user: Annotated[dict, Depends(get_current_user)],
) -> dict[str, ProviderPreset]:
    """Danh sách vendor preset có thể chọn khi tạo provider."""
    return list_presets()


@router.post("", response_model=ProviderSummary, status_code=status.HTTP_201_CREATED)
async def create_provider(
    payload: ProviderCreate,
    db: DbSession,
    registry: Registry,
    current_user: Annotated[dict, Depends(get_current_admin)],
) -> ProviderSummary:
    return await registry.create(db, payload)


@router.get("/{provider_id}", response_model=ProviderSummary)
async def get_provider(
    provider_id: str,
    db: DbSession,
    registry: Registry,
    current_user: Annotated[dict, Depends(get_current_user)],
) -> ProviderSummary:
    return await registry.get_by_id(db, provider_id)


@router.put("/{provider_id}", response_model=ProviderSummary)
async def update_provider(
    provider_id: str,
    payload: ProviderUpdate,
    db: DbSession,
    registry: Registry,
    current_user: Annotated[dict, Depends(get_current_admin)],
) -> ProviderSummary:
    return await registry.update(db, provider_id, payload)


@router.delete("/{provider_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_provider(
    provider_id: str,
    db: DbSession,
    registry: Registry,
    current_user: Annotated[dict, Depends(get_current_admin)],
) -> Response:
    """Xóa provider. Provider đang bật phải được tắt trước (409)."""
    await registry.delete(db, provider_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch("/{provider_id}/status", response_model=ProviderSummary)
async def set_provider_status(
    provider_id: str,
    payload: ProviderStatusUpdate,
    db: DbSession,
    registry: Registry,
    current_user: Annotated[dict, Depends(get_current_admin)],
) -> ProviderSummary:
    return await registry.set_global_enabled(db, provider_id, payload.is_active)


@router.get("/{provider_id}/models", response_model=list[ProviderModel])
async def list_provider_models(
    provider_id: str,
    db: DbSession,
    registry: Registry,
    current_user: Annotated[dict, Depends(get_current_user)],
) -> list[ProviderModel]:
    return await registry.list_models(db, provider_id)


@router.put("/{provider_id}/models", response_model=list[ProviderModel])
async def replace_provider_models(
    provider_id: str,
    payload: ModelsReplace,
    db: DbSession,
    registry: Registry,
    current_user: Annotated[dict, Depends(get_current_admin)],
) -> list[ProviderModel]:
    return await registry.replace_models(db, provider_id, payload.models)


@router.patch("/{provider_id}/models/{model_code}", response_model=ProviderSummary)
async def set_model_status(
    provider_id: str,
    model_code: str,
    payload: ModelStatusUpdate,
    db: DbSession,
    registry: Registry,
    current_user: Annotated[dict, Depends(get_current_admin)],
) -> ProviderSummary:
    return await registry.set_model_enabled(
        db, provider_id, model_code, payload.is_enabled
    )


@router.post("/{provider_id}/test", response_model=NormalizedResult)
async def test_provider(
    provider_id: str,
    payload: ProviderTestRequest,
    db: DbSession,
    tester: Annotated[ConnectionTester, Depends(get_connection_tester)],
    current_user: Annotated[dict, Depends(get_current_admin)],
) -> NormalizedResult:
    """
    Test provider connection with one real chat request.

    Success returns 200 with the normalized result. Failures keep the same
    redacted result in the ``result`` field of the error body.
    """
    result = await tester.test(db, provider_id, payload.message, payload.model)
    raise_for_result(result)
    return result
