"""
Provider Tester - test provider connections by making actual API calls.

Đây là đường duy nhất (ngoài dispatcher) được đọc API key đã giải mã.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from ...core.exceptions.service_exceptions import ValidationError
from ...core.logger import get_logger
from ...schemas.provider import NormalizedResult, ProviderWithSecret
from ...services.provider_registry import ProviderRegistry
from .dispatcher import ProviderDispatcher

logger = get_logger(__name__)


def pick_model_code(provider: ProviderWithSecret, model_code: str | None) -> str:
    """Chọn model để test: model chỉ định, hoặc model đầu tiên đang bật."""
    if not provider.models:
        raise ValidationError(
            "no usable model", details={"models": "Provider has no models"}
        )
    if model_code:
        return model_code
    for model in provider.models:
        if model.is_enabled:
            return model.code
    raise ValidationError(
        "no usable model", details={"models": "No enabled model to test"}
    )


class ConnectionTester:
    def __init__(self, registry: ProviderRegistry, dispatcher: ProviderDispatcher):
        self.registry = registry
        self.dispatcher = dispatcher

    async def test(
        self,
        db: AsyncSession,
        provider_id: str,
        sample_message: str,
        model_code: str | None = None,
    ) -> NormalizedResult:
        """
        Test provider connection with one real chat request.

        Args:
            db: Database session
            provider_id: Provider to test
            sample_message: Message sent as the user turn
            model_code: Optional model code, first enabled model otherwise

        Returns:
            NormalizedResult from the dispatcher, unchanged (already redacted)
        """
        provider = await self.registry.get_by_id(db, provider_id, include_secret=True)
        code = pick_model_code(provider, model_code)

        logger.info(f"Testing provider {provider.identifier} with {code}")
        result = await self.dispatcher.dispatch(provider, code, sample_message)

        if result.success and result.token_usage:
            await self.registry.add_token_usage(db, provider_id, result.token_usage)

        if not result.success and result.error is not None:
            logger.warning(
                f"Provider {provider.identifier} test failed: "
                f"{result.error.kind.value} - {result.error.message}"
            )
        return result
