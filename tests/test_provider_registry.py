"""
Unit tests for the provider registry.
"""

import asyncio

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from flowmind.core.exceptions.service_exceptions import (
    ConflictError,
    NotFoundError,
    ValidationError,
)
from flowmind.models.provider import Provider
from flowmind.schemas.provider import (
    ProviderCreate,
    ProviderModel,
    ProviderSummary,
    ProviderUpdate,
    ProviderWithSecret,
)
from flowmind.services.provider_registry import ProviderRegistry

from tests.helpers.test_utils import (
    TEST_API_KEY,
    create_model_payload,
    create_provider_payload,
)


async def _create(registry: ProviderRegistry, db: AsyncSession, **kwargs) -> ProviderSummary:
    return await registry.create(db, ProviderCreate(**create_provider_payload(**kwargs)))


class TestCreateProvider:
    @pytest.mark.asyncio
    async def test_create_normalizes_and_encrypts(
        self, registry: ProviderRegistry, async_session: AsyncSession
    ):
        provider = await _create(
            registry,
            async_session,
            identifier="  OpenAI-Main ",
            base_url=" https://api.example.com/v1/chat ",
        )

        assert provider.identifier == "openai-main"
        assert provider.base_url == "https://api.example.com/v1/chat"
        assert provider.is_active is False
        assert "api_key" not in provider.model_dump()

        row = (
            await async_session.execute(select(Provider).where(Provider.id == provider.id))
        ).scalar_one()
        assert row.api_key_encrypted != TEST_API_KEY
        assert TEST_API_KEY not in row.api_key_encrypted
        assert registry.vault.decrypt(row.api_key_encrypted) == TEST_API_KEY

    @pytest.mark.asyncio
    async def test_missing_fields_report_each_field(
        self, registry: ProviderRegistry, async_session: AsyncSession
    ):
        payload = create_provider_payload()
        del payload["api_key"]
        payload["name"] = "   "

        with pytest.raises(ValidationError) as exc_info:
            await registry.create(async_session, ProviderCreate(**payload))

        assert set(exc_info.value.details) == {"name", "api_key"}

    @pytest.mark.asyncio
    async def test_identifier_conflict_after_normalization(
        self, registry: ProviderRegistry, async_session: AsyncSession
    ):
        await _create(registry, async_session, identifier="Zhipu")

        with pytest.raises(ConflictError):
            await _create(registry, async_session, identifier="zhipu ")

    @pytest.mark.asyncio
    async def test_conflict_checked_before_mapping(
        self, registry: ProviderRegistry, async_session: AsyncSession
    ):
        await _create(registry, async_session, identifier="dup")

        with pytest.raises(ConflictError):
            await _create(
                registry,
                async_session,
                identifier="DUP",
                request_mapping=None,
                response_mapping=None,
            )

    @pytest.mark.asyncio
    async def test_mapping_is_mandatory_without_preset(
        self, registry: ProviderRegistry, async_session: AsyncSession
    ):
        with pytest.raises(ValidationError) as exc_info:
            await _create(
                registry, async_session, request_mapping=None, response_mapping=None
            )
        assert "request_mapping" in exc_info.value.details
        assert "response_mapping" in exc_info.value.details

    @pytest.mark.asyncio
    async def test_preset_is_explicit_opt_in(
        self, registry: ProviderRegistry, async_session: AsyncSession
    ):
        provider = await _create(
            registry,
            async_session,
            preset="anthropic",
            request_mapping=None,
            response_mapping=None,
        )

        assert provider.response_mapping["content"].path == "content[0].text"
        assert provider.auth_type.value == "apikey"
        assert provider.custom_headers["anthropic-version"] == "2023-06-01"

    @pytest.mark.asyncio
    async def test_unknown_preset(
        self, registry: ProviderRegistry, async_session: AsyncSession
    ):
        with pytest.raises(ValidationError) as exc_info:
            await _create(registry, async_session, preset="nope", request_mapping=None)
        assert "preset" in exc_info.value.details

    @pytest.mark.asyncio
    async def test_invalid_mapping_and_models(
        self, registry: ProviderRegistry, async_session: AsyncSession
    ):
        bad_param = create_model_payload(
            "gpt-4",
            parameters=[{"name": "temperature", "type": "number", "min": 2, "max": 1}],
        )
        with pytest.raises(ValidationError) as exc_info:
            await _create(
                registry,
                async_session,
                request_mapping={"model": {"path": "model", "transform": "shout"}},
                response_mapping={"usage": {"path": "usage..total"}},
                models=[bad_param, create_model_payload("gpt-4")],
            )

        details = exc_info.value.details
        assert "request_mapping.model" in details
        assert "response_mapping.usage" in details
        assert "response_mapping.content" in details
        assert "models[1].code" in details
        assert "models[0].parameters[0]" in details

    @pytest.mark.asyncio
    async def test_enum_parameter_default_must_be_an_option(
        self, registry: ProviderRegistry, async_session: AsyncSession
    ):
        model = create_model_payload(
            "gpt-4",
            parameters=[
                {"name": "style", "type": "enum", "options": ["a", "b"], "default": "c"}
            ],
        )
        with pytest.raises(ValidationError):
            await _create(registry, async_session, models=[model])


    @pytest.mark.asyncio
    async def test_create_returns_persisted_summary(
        self, registry: ProviderRegistry, async_session: AsyncSession
    ):
        provider = await _create(registry, async_session)

        assert isinstance(provider, ProviderSummary)
        assert provider.id
        assert provider.version == 1
        fetched = await registry.get_by_id(async_session, provider.id)
        assert fetched.identifier == provider.identifier

    @pytest.mark.asyncio
    async def test_custom_headers_must_be_encodable(
        self, registry: ProviderRegistry, async_session: AsyncSession
    ):
        with pytest.raises(ValidationError) as exc_info:
            await _create(
                registry,
                async_session,
                custom_headers={"X-Org": "công-ty", "Bad Header": "ok"},
            )

        assert set(exc_info.value.details) == {
            "custom_headers.X-Org",
            "custom_headers.Bad Header",
        }
        assert await registry.list(async_session) == []


class TestReadProvider:
    @pytest.mark.asyncio
    async def test_list_excludes_secret(
        self, registry: ProviderRegistry, async_session: AsyncSession
    ):
        await _create(registry, async_session)
        await _create(registry, async_session)

        providers = await registry.list(async_session)

        assert len(providers) == 2
        for provider in providers:
            assert isinstance(provider, ProviderSummary)
            assert not isinstance(provider, ProviderWithSecret)
            assert TEST_API_KEY not in provider.model_dump_json()

    @pytest.mark.asyncio
    async def test_get_with_secret_is_explicit(
        self, registry: ProviderRegistry, async_session: AsyncSession
    ):
        created = await _create(registry, async_session)

        summary = await registry.get_by_id(async_session, created.id)
        with_secret = await registry.get_by_id(
            async_session, created.id, include_secret=True
        )

        assert not hasattr(summary, "api_key")
        assert isinstance(with_secret, ProviderWithSecret)
        assert with_secret.api_key == TEST_API_KEY
        assert TEST_API_KEY not in repr(with_secret)

    @pytest.mark.asyncio
    async def test_unknown_id(self, registry: ProviderRegistry, async_session: AsyncSession):
        with pytest.raises(NotFoundError):
            await registry.get_by_id(async_session, "missing-id")


class TestUpdateProvider:
    @pytest.mark.asyncio
    async def test_partial_update_and_key_rotation(
        self, registry: ProviderRegistry, async_session: AsyncSession
    ):
        created = await _create(registry, async_session)

        updated = await registry.update(
            async_session,
            created.id,
            ProviderUpdate(name="Renamed", api_key="sk-rotated"),
        )

        assert updated.name == "Renamed"
        assert updated.identifier == created.identifier
        assert updated.version == created.version + 1
        secret = await registry.get_by_id(async_session, created.id, include_secret=True)
        assert secret.api_key == "sk-rotated"

    @pytest.mark.asyncio
    async def test_identifier_change_rechecks_uniqueness(
        self, registry: ProviderRegistry, async_session: AsyncSession
    ):
        await _create(registry, async_session, identifier="taken")
        other = await _create(registry, async_session, identifier="other")

        with pytest.raises(ConflictError):
            await registry.update(async_session, other.id, ProviderUpdate(identifier=" TAKEN"))

    @pytest.mark.asyncio
    async def test_update_disable_cascades(
        self, registry: ProviderRegistry, async_session: AsyncSession
    ):
        created = await _create(registry, async_session, is_active=True)

        updated = await registry.update(
            async_session, created.id, ProviderUpdate(is_active=False)
        )

        assert updated.is_active is False
        assert all(not model.is_enabled for model in updated.models)

    @pytest.mark.asyncio
    async def test_update_rejects_header_with_line_break(
        self, registry: ProviderRegistry, async_session: AsyncSession
    ):
        created = await _create(registry, async_session)

        with pytest.raises(ValidationError) as exc_info:
            await registry.update(
                async_session,
                created.id,
                ProviderUpdate(custom_headers={"X-Trace": "a\r\nInjected: 1"}),
            )

        assert "custom_headers.X-Trace" in exc_info.value.details
        stored = await registry.get_by_id(async_session, created.id)
        assert stored.custom_headers == {}


class TestStatusAndDelete:
    @pytest.mark.asyncio
    async def test_delete_active_then_disable_then_delete(
        self, registry: ProviderRegistry, async_session: AsyncSession
    ):
        created = await _create(registry, async_session, is_active=True)

        with pytest.raises(ConflictError):
            await registry.delete(async_session, created.id)

        disabled = await registry.set_global_enabled(async_session, created.id, False)
        assert disabled.is_active is False
        assert [m.is_enabled for m in disabled.models] == [False, False]

        await registry.delete(async_session, created.id)
        with pytest.raises(NotFoundError):
            await registry.get_by_id(async_session, created.id)

    @pytest.mark.asyncio
    async def test_delete_unknown(self, registry: ProviderRegistry, async_session: AsyncSession):
        with pytest.raises(NotFoundError):
            await registry.delete(async_session, "missing-id")

    @pytest.mark.asyncio
    async def test_enable_does_not_touch_models(
        self, registry: ProviderRegistry, async_session: AsyncSession
    ):
        created = await _create(registry, async_session)
        await registry.set_model_enabled(async_session, created.id, "gpt-4", False)

        enabled = await registry.set_global_enabled(async_session, created.id, True)

        assert enabled.is_active is True
        assert {m.code: m.is_enabled for m in enabled.models} == {
            "gpt-4": False,
            "gpt-3.5": True,
        }

    @pytest.mark.asyncio
    async def test_model_toggle_is_isolated(
        self, registry: ProviderRegistry, async_session: AsyncSession
    ):
        created = await _create(registry, async_session, is_active=True)

        updated = await registry.set_model_enabled(
            async_session, created.id, "gpt-4", False
        )

        assert updated.is_active is True
        assert {m.code: m.is_enabled for m in updated.models} == {
            "gpt-4": False,
            "gpt-3.5": True,
        }

    @pytest.mark.asyncio
    async def test_unknown_model_code(
        self, registry: ProviderRegistry, async_session: AsyncSession
    ):
        created = await _create(registry, async_session)
        with pytest.raises(NotFoundError):
            await registry.set_model_enabled(async_session, created.id, "nope", True)


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_model_toggles_are_both_kept(
        self, registry: ProviderRegistry, session_factory
    ):
        async with session_factory() as db:
            created = await _create(
                registry,
                db,
                models=[
                    create_model_payload("gpt-4", is_enabled=True),
                    create_model_payload("gpt-3.5", is_enabled=False),
                ],
            )

        async def toggle(code: str, enabled: bool):
            async with session_factory() as db:
                await registry.set_model_enabled(db, created.id, code, enabled)

        await asyncio.gather(toggle("gpt-4", False), toggle("gpt-3.5", True))

        async with session_factory() as db:
            models = await registry.list_models(db, created.id)
        assert {m.code: m.is_enabled for m in models} == {
            "gpt-4": False,
            "gpt-3.5": True,
        }

    @pytest.mark.asyncio
    async def test_stale_version_gives_conflict_after_retries(
        self, registry: ProviderRegistry, async_session: AsyncSession, monkeypatch
    ):
        created = await _create(registry, async_session)
        stale = await registry._require(async_session, created.id)
        stale = stale.model_copy(update={"version": stale.version + 100})

        async def always_stale(db, provider_id):
            return stale

        monkeypatch.setattr(registry, "_require", always_stale)

        with pytest.raises(ConflictError):
            await registry.set_model_enabled(async_session, created.id, "gpt-4", False)


class TestModelsAndUsage:
    @pytest.mark.asyncio
    async def test_replace_models(self, registry: ProviderRegistry, async_session: AsyncSession):
        created = await _create(registry, async_session)

        models = await registry.replace_models(
            async_session,
            created.id,
            [ProviderModel(**create_model_payload("glm-4-flash"))],
        )

        assert [m.code for m in models] == ["glm-4-flash"]
        assert [m.code for m in await registry.list_models(async_session, created.id)] == [
            "glm-4-flash"
        ]

    @pytest.mark.asyncio
    async def test_replace_models_rejects_duplicates(
        self, registry: ProviderRegistry, async_session: AsyncSession
    ):
        created = await _create(registry, async_session)
        duplicate = ProviderModel(**create_model_payload("same"))

        with pytest.raises(ValidationError):
            await registry.replace_models(async_session, created.id, [duplicate, duplicate])

    @pytest.mark.asyncio
    async def test_add_token_usage_accumulates(
        self, registry: ProviderRegistry, async_session: AsyncSession
    ):
        created = await _create(registry, async_session)

        await registry.add_token_usage(async_session, created.id, 10)
        await registry.add_token_usage(async_session, created.id, 5)

        provider = await registry.get_by_id(async_session, created.id)
        assert provider.token_usage == 15
        assert provider.version == created.version
