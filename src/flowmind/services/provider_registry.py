"""
Provider Registry - lưu trữ và quản lý cấu hình model provider.

Mỗi provider là một document (một row). Mọi thay đổi document đi qua
compare-and-swap trên cột ``version`` nên các cập nhật đồng thời (ví dụ bật/tắt
hai model khác nhau cùng lúc) không ghi đè lên nhau. Validation và kiểm tra
trùng lặp luôn chạy trước khi mã hóa API key hoặc ghi DB.
"""

from __future__ import annotations

import re
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete as sa_delete
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..ai.providers.field_mapper import (
    PathSyntaxError,
    TransformError,
    UnknownTransformError,
    validate_entry,
)
from ..ai.providers.presets import get_preset
from ..core.enums import ParameterType
from ..core.exceptions.service_exceptions import (
    ConflictError,
    NotFoundError,
    ValidationError,
)
from ..core.logger import get_logger
from ..core.vault import CredentialVault, get_vault
from ..crud.crud_provider import crud_provider
from ..models.provider import Provider
from ..schemas.provider import (
    MappingEntry,
    ModelParameter,
    ProviderCreate,
    ProviderCreateInternal,
    ProviderModel,
    ProviderStored,
    ProviderSummary,
    ProviderUpdate,
    ProviderWithSecret,
)

logger = get_logger(__name__)

MAX_CAS_RETRIES = 5
REQUIRED_CREATE_FIELDS = ("name", "identifier", "base_url", "api_key")
_HEADER_NAME_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")

Mutation = Callable[[ProviderStored], Awaitable[dict[str, Any]]]


def normalize_identifier(identifier: str) -> str:
    return identifier.strip().lower()


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _dump_mapping(mapping: dict[str, MappingEntry]) -> dict[str, dict[str, Any]]:
    return {name: entry.model_dump(mode="json") for name, entry in mapping.items()}


def _dump_models(models: list[ProviderModel]) -> list[dict[str, Any]]:
    return [model.model_dump(mode="json") for model in models]


def _validate_mapping(
    field: str, mapping: dict[str, MappingEntry], errors: dict[str, str]
) -> None:
    for logical_name, entry in mapping.items():
        try:
            validate_entry(entry)
        except (PathSyntaxError, UnknownTransformError, TransformError) as e:
            errors[f"{field}.{logical_name}"] = str(e)


def _validate_parameter(param: ModelParameter) -> str | None:
    is_number = param.type == ParameterType.number
    if not is_number and (param.min is not None or param.max is not None):
        return "min/max are only allowed for number parameters"
    if param.type != ParameterType.enum and param.options:
        return "options are only allowed for enum parameters"

    if is_number:
        if param.min is not None and param.max is not None and param.min > param.max:
            return "min must be less than or equal to max"
        if param.default is not None:
            if isinstance(param.default, bool) or not isinstance(
                param.default, (int, float)
            ):
                return "default must be a number"
            if param.min is not None and param.default < param.min:
                return "default is below min"
            if param.max is not None and param.default > param.max:
                return "default is above max"
    elif param.type == ParameterType.enum:
        if not param.options:
            return "enum parameters need at least one option"
        if param.default is not None and param.default not in param.options:
            return "default must be one of options"
    elif param.type == ParameterType.boolean:
        if param.default is not None and not isinstance(param.default, bool):
            return "default must be a boolean"
    elif param.default is not None and not isinstance(param.default, str):
        return "default must be a string"
    return None


def _validate_parameters(
    prefix: str, parameters: list[ModelParameter], errors: dict[str, str]
) -> None:
    seen: set[str] = set()
    for index, param in enumerate(parameters):
        key = f"{prefix}.parameters[{index}]"
        if param.name in seen:
            errors[key] = f"duplicate parameter name '{param.name}'"
            continue
        seen.add(param.name)
        problem = _validate_parameter(param)
        if problem:
            errors[key] = problem


def _validate_models(models: list[ProviderModel], errors: dict[str, str]) -> None:
    seen: set[str] = set()
    for index, model in enumerate(models):
        prefix = f"models[{index}]"
        if model.code in seen:
            errors[f"{prefix}.code"] = f"duplicate model code '{model.code}'"
        seen.add(model.code)
        _validate_parameters(prefix, model.parameters, errors)
        for cap_index, capability in enumerate(model.capabilities):
            _validate_parameters(
                f"{prefix}.capabilities[{cap_index}]", capability.parameters, errors
            )


def _validate_base_url(base_url: str, errors: dict[str, str]) -> None:
    if not base_url.lower().startswith(("http://", "https://")):
        errors["base_url"] = "base_url must be an http(s) URL"


def _validate_headers(headers: dict[str, str], errors: dict[str, str]) -> None:
    for name, value in headers.items():
        key = f"custom_headers.{name}"
        if not _HEADER_NAME_RE.match(name):
            errors[key] = "header name must be an HTTP token"
        elif not value.isascii() or "\r" in value or "\n" in value:
            errors[key] = "header value must be ASCII without line breaks"


def _cascade_disabled(models: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [{**model, "is_enabled": False} for model in models]


class ProviderRegistry:
    """Provider CRUD over the document store."""

    def __init__(self, vault: CredentialVault):
        self.vault = vault

    # ---------- reads ----------

    async def _fetch(self, db: AsyncSession, provider_id: str) -> ProviderStored | None:
        return await crud_provider.get(
            db=db,
            id=provider_id,
            schema_to_select=ProviderStored,
            return_as_model=True,
        )

    async def _require(self, db: AsyncSession, provider_id: str) -> ProviderStored:
        provider = await self._fetch(db, provider_id)
        if provider is None:
            raise NotFoundError(f"Provider {provider_id} not found")
        return provider

    async def list(self, db: AsyncSession) -> list[ProviderSummary]:
        result = await crud_provider.get_multi(
            db=db,
            offset=0,
            limit=None,
            sort_columns=["created_at", "id"],
            sort_orders=["asc", "asc"],
            schema_to_select=ProviderSummary,
            return_as_model=True,
        )
        return result["data"]

    async def get_by_id(
        self, db: AsyncSession, provider_id: str, include_secret: bool = False
    ) -> ProviderSummary | ProviderWithSecret:
        stored = await self._require(db, provider_id)
        data = stored.model_dump(exclude={"api_key_encrypted"})
        if not include_secret:
            return ProviderSummary.model_validate(data)
        return ProviderWithSecret(
            **data, api_key=self.vault.decrypt(stored.api_key_encrypted)
        )

    async def list_models(self, db: AsyncSession, provider_id: str) -> list[ProviderModel]:
        stored = await self._require(db, provider_id)
        return stored.models

    # ---------- create ----------

    async def create(self, db: AsyncSession, data: ProviderCreate) -> ProviderSummary:
        """Tạo provider mới.

        Thứ tự kiểm tra: thiếu field -> identifier trùng -> thiếu mapping ->
        mapping/model không hợp lệ. Chỉ sau đó mới mã hóa API key và ghi DB.
        """
        missing = {
            field: "Field is required"
            for field in REQUIRED_CREATE_FIELDS
            if _is_blank(getattr(data, field))
        }
        if missing:
            raise ValidationError("Missing required fields", details=missing)

        identifier = normalize_identifier(data.identifier)
        if await crud_provider.exists(db=db, identifier=identifier):
            raise ConflictError(f"Provider identifier '{identifier}' already exists")

        preset = None
        if data.preset:
            preset = get_preset(data.preset)
            if preset is None:
                raise ValidationError(
                    "Unknown preset", details={"preset": f"Unknown preset '{data.preset}'"}
                )

        request_mapping = data.request_mapping or (preset.request_mapping if preset else None)
        response_mapping = data.response_mapping or (
            preset.response_mapping if preset else None
        )
        if not request_mapping or not response_mapping:
            details = {}
            if not request_mapping:
                details["request_mapping"] = "Mapping configuration is required"
            if not response_mapping:
                details["response_mapping"] = "Mapping configuration is required"
            raise ValidationError("Mapping configuration is required", details=details)

        explicit = data.model_fields_set
        auth_type = data.auth_type
        auth_location = data.auth_location
        auth_key_name = data.auth_key_name
        custom_headers = dict(data.custom_headers)
        models = data.models
        if preset is not None:
            if "auth_type" not in explicit:
                auth_type = preset.auth_type
            if "auth_location" not in explicit:
                auth_location = preset.auth_location
            if "auth_key_name" not in explicit:
                auth_key_name = preset.auth_key_name
            custom_headers = {**preset.custom_headers, **custom_headers}
            if "models" not in explicit:
                models = preset.models

        base_url = data.base_url.strip()
        errors: dict[str, str] = {}
        _validate_base_url(base_url, errors)
        _validate_headers(custom_headers, errors)
        _validate_mapping("request_mapping", request_mapping, errors)
        _validate_mapping("response_mapping", response_mapping, errors)
        if "content" not in response_mapping:
            errors["response_mapping.content"] = "A 'content' mapping is required"
        _validate_models(models, errors)
        if errors:
            raise ValidationError("Invalid provider configuration", details=errors)

        internal = ProviderCreateInternal(
            identifier=identifier,
            name=data.name.strip(),
            base_url=base_url,
            api_key_encrypted=self.vault.encrypt(data.api_key),
            auth_type=auth_type.value,
            auth_location=auth_location.value,
            auth_key_name=auth_key_name,
            custom_headers=custom_headers,
            request_mapping=_dump_mapping(request_mapping),
            response_mapping=_dump_mapping(response_mapping),
            models=_dump_models(models),
            is_active=data.is_active,
        )
        try:
            created = await crud_provider.create(
                db=db,
                object=internal,
                schema_to_select=ProviderSummary,
                return_as_model=True,
            )
        except IntegrityError:
            await db.rollback()
            raise ConflictError(
                f"Provider identifier '{identifier}' already exists"
            ) from None

        logger.info(f"Created provider {identifier} ({created.id})")
        return await self.get_by_id(db, created.id)

    # ---------- document writes ----------

    async def _compare_and_swap(
        self, db: AsyncSession, provider_id: str, mutate: Mutation
    ) -> ProviderSummary:
        """Đọc - áp dụng ``mutate`` - ghi có điều kiện ``version``; thử lại khi thua race."""
        for attempt in range(1, MAX_CAS_RETRIES + 1):
            current = await self._require(db, provider_id)
            changes = await mutate(current)

            stmt = (
                sa_update(Provider)
                .where(Provider.id == provider_id, Provider.version == current.version)
                .values(
                    **changes,
                    version=current.version + 1,
                    updated_at=datetime.now(timezone.utc),
                )
            )
            try:
                result = await db.execute(stmt)
            except IntegrityError:
                await db.rollback()
                raise ConflictError("Provider identifier already exists") from None

            if result.rowcount == 1:
                await db.commit()
                return await self.get_by_id(db, provider_id)

            await db.rollback()
            logger.debug(
                f"Concurrent write on provider {provider_id}, retry {attempt}/{MAX_CAS_RETRIES}"
            )

        raise ConflictError(
            f"Provider {provider_id} was modified concurrently, please retry"
        )

    async def update(
        self, db: AsyncSession, provider_id: str, data: ProviderUpdate
    ) -> ProviderSummary:
        patch = data.model_dump(exclude_unset=True)
        # Chỉ auth_key_name được phép đặt về None
        patch = {k: v for k, v in patch.items() if v is not None or k == "auth_key_name"}

        errors: dict[str, str] = {}
        if "base_url" in patch:
            patch["base_url"] = patch["base_url"].strip()
            _validate_base_url(patch["base_url"], errors)
        if "name" in patch:
            patch["name"] = patch["name"].strip()
            if not patch["name"]:
                errors["name"] = "Field is required"
        if "identifier" in patch:
            patch["identifier"] = normalize_identifier(patch["identifier"])
            if not patch["identifier"]:
                errors["identifier"] = "Field is required"
        if data.custom_headers is not None:
            _validate_headers(data.custom_headers, errors)
        if data.request_mapping is not None:
            if not data.request_mapping:
                errors["request_mapping"] = "Mapping configuration is required"
            _validate_mapping("request_mapping", data.request_mapping, errors)
            patch["request_mapping"] = _dump_mapping(data.request_mapping)
        if data.response_mapping is not None:
            _validate_mapping("response_mapping", data.response_mapping, errors)
            if "content" not in data.response_mapping:
                errors["response_mapping.content"] = "A 'content' mapping is required"
            patch["response_mapping"] = _dump_mapping(data.response_mapping)
        if data.models is not None:
            _validate_models(data.models, errors)
            patch["models"] = _dump_models(data.models)
        if errors:
            raise ValidationError("Invalid provider configuration", details=errors)

        for enum_field in ("auth_type", "auth_location"):
            if enum_field in patch:
                patch[enum_field] = getattr(data, enum_field).value

        existing = await self._require(db, provider_id)
        if "identifier" in patch and patch["identifier"] != existing.identifier:
            if await crud_provider.exists(db=db, identifier=patch["identifier"]):
                raise ConflictError(
                    f"Provider identifier '{patch['identifier']}' already exists"
                )

        if "api_key" in patch:
            patch["api_key_encrypted"] = self.vault.encrypt(patch.pop("api_key"))

        async def mutate(current: ProviderStored) -> dict[str, Any]:
            changes = dict(patch)
            if changes.get("is_active") is False:
                models = changes.get("models", _dump_models(current.models))
                changes["models"] = _cascade_disabled(models)
            return changes

        updated = await self._compare_and_swap(db, provider_id, mutate)
        logger.info(f"Updated provider {updated.identifier}: {sorted(patch)}")
        return updated

    async def set_global_enabled(
        self, db: AsyncSession, provider_id: str, enabled: bool
    ) -> ProviderSummary:
        """Bật/tắt provider. Tắt provider sẽ tắt luôn mọi model trong cùng một lệnh ghi."""

        async def mutate(current: ProviderStored) -> dict[str, Any]:
            changes: dict[str, Any] = {"is_active": enabled}
            if not enabled:
                changes["models"] = _cascade_disabled(_dump_models(current.models))
            return changes

        updated = await self._compare_and_swap(db, provider_id, mutate)
        logger.info(
            f"Provider {updated.identifier} {'enabled' if enabled else 'disabled'}"
        )
        return updated

    async def set_model_enabled(
        self, db: AsyncSession, provider_id: str, model_code: str, enabled: bool
    ) -> ProviderSummary:
        async def mutate(current: ProviderStored) -> dict[str, Any]:
            models = _dump_models(current.models)
            for model in models:
                if model["code"] == model_code:
                    model["is_enabled"] = enabled
                    return {"models": models}
            raise NotFoundError(
                f"Model '{model_code}' not found in provider {current.identifier}"
            )

        return await self._compare_and_swap(db, provider_id, mutate)

    async def replace_models(
        self, db: AsyncSession, provider_id: str, models: list[ProviderModel]
    ) -> list[ProviderModel]:
        errors: dict[str, str] = {}
        _validate_models(models, errors)
        if errors:
            raise ValidationError("Invalid model list", details=errors)

        async def mutate(current: ProviderStored) -> dict[str, Any]:
            return {"models": _dump_models(models)}

        updated = await self._compare_and_swap(db, provider_id, mutate)
        return updated.models

    async def delete(self, db: AsyncSession, provider_id: str) -> None:
        """Xóa provider; chỉ xóa được khi provider đang tắt."""
        result = await db.execute(
            sa_delete(Provider).where(
                Provider.id == provider_id, Provider.is_active.is_(False)
            )
        )
        if result.rowcount == 1:
            await db.commit()
            logger.info(f"Deleted provider {provider_id}")
            return

        await db.rollback()
        await self._require(db, provider_id)
        raise ConflictError("Provider is active, disable it before deleting")

    async def add_token_usage(self, db: AsyncSession, provider_id: str, tokens: int) -> None:
        if tokens <= 0:
            return
        await db.execute(
            sa_update(Provider)
            .where(Provider.id == provider_id)
            .values(token_usage=Provider.token_usage + tokens)
        )
        await db.commit()


def get_provider_registry() -> ProviderRegistry:
    return ProviderRegistry(vault=get_vault())
