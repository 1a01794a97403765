"""
Adapter Dispatcher - gửi chat request tới LLM vendor theo cấu hình mapping.

Một interpreter duy nhất cho mọi vendor: payload được dựng bằng
``request_mapping``, câu trả lời được đọc bằng ``response_mapping``. Lỗi mạng,
lỗi HTTP từ upstream và lỗi mapping đều được trả về trong ``NormalizedResult``
(không raise ra ngoài). API key chỉ xuất hiện trong request thật gửi đi; mọi
bản sao trả về cho client đã được che.
"""

from __future__ import annotations

import base64
import copy
import time
from typing import Any

import httpx

from ...core.config import settings
from ...core.enums import AuthLocation, AuthType, DispatchErrorKind
from ...core.exceptions.service_exceptions import NotFoundError
from ...core.logger import get_logger
from ...schemas.provider import (
    DispatchError,
    MappingEntry,
    NormalizedResult,
    ProviderModel,
    ProviderWithSecret,
    RawRequest,
    RawResponse,
)
from .field_mapper import (
    PathConflictError,
    PathNotFoundError,
    PathSyntaxError,
    TransformError,
    UnknownTransformError,
    inject,
    read_mapped,
    write_mapped,
)

logger = get_logger(__name__)

REDACTED = "********"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_HEADER_NAMES = {
    AuthType.bearer: "Authorization",
    AuthType.basic: "Authorization",
    AuthType.apikey: "x-api-key",
}
DEFAULT_PARAM_NAME = "api_key"

_MAPPING_ERRORS = (
    PathSyntaxError,
    PathConflictError,
    TransformError,
    UnknownTransformError,
)
# Header hoặc URL không mã hóa được, phát hiện trước khi có phản hồi
_LOCAL_ERRORS = (*_MAPPING_ERRORS, UnicodeEncodeError, httpx.InvalidURL)


class _OutboundRequest:
    """Request thật (có key) và bản sao đã che key."""

    def __init__(self, url: str, headers: dict[str, str], body: dict[str, Any]):
        self.url = url
        self.headers = headers
        self.body = body
        self.redacted_url = url
        self.redacted_headers = dict(headers)
        self.redacted_body: Any = copy.deepcopy(body)

    def public(self) -> RawRequest:
        return RawRequest(
            url=self.redacted_url,
            method="POST",
            headers=self.redacted_headers,
            body=self.redacted_body,
        )


def _bearer_value(api_key: str) -> str:
    return api_key if api_key.lower().startswith("bearer ") else f"Bearer {api_key}"


def _basic_value(api_key: str) -> str:
    if api_key.lower().startswith("basic "):
        return api_key
    return "Basic " + base64.b64encode(api_key.encode("utf-8")).decode("ascii")


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


class ProviderDispatcher:
    """Gửi một request tới provider và chuẩn hóa kết quả.

    ``client`` cho phép truyền vào một ``httpx.AsyncClient`` dùng chung
    (hoặc client với MockTransport trong test); nếu không có, mỗi lần
    dispatch tạo client riêng và đóng ngay sau khi xong.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
    ):
        self.timeout = timeout
        self._client = client

    # ---------- request building ----------

    @staticmethod
    def resolve_model(provider: ProviderWithSecret, model_code: str) -> ProviderModel:
        for model in provider.models:
            if model.code == model_code:
                if not model.is_enabled:
                    raise NotFoundError(
                        f"Model '{model_code}' is disabled for provider {provider.identifier}"
                    )
                return model
        raise NotFoundError(
            f"Model '{model_code}' not found in provider {provider.identifier}"
        )

    @staticmethod
    def build_request_values(model: ProviderModel, user_message: str) -> dict[str, Any]:
        values: dict[str, Any] = {
            param.name: param.default
            for param in model.parameters
            if param.default is not None
        }
        values.update(
            {
                "model": model.code,
                "messages": [{"role": "user", "content": user_message}],
                "prompt": user_message,
                "message": user_message,
            }
        )
        return values

    @staticmethod
    def build_payload(
        request_mapping: dict[str, MappingEntry], values: dict[str, Any]
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        for logical_name, entry in request_mapping.items():
            value = values.get(logical_name)
            if value is None:
                # Entry với transform default vẫn được ghi (default-fill)
                if not (entry.transform or "").startswith("default"):
                    continue
            write_mapped(payload, entry, value)
        return payload

    def _apply_auth(
        self, provider: ProviderWithSecret, request: _OutboundRequest
    ) -> None:
        auth_type = AuthType(provider.auth_type)
        if auth_type == AuthType.none:
            return

        api_key = provider.api_key
        location = AuthLocation(provider.auth_location)

        if location == AuthLocation.header:
            header_name = provider.auth_key_name or DEFAULT_HEADER_NAMES[auth_type]
            if auth_type == AuthType.bearer:
                value, shown = _bearer_value(api_key), f"Bearer {REDACTED}"
            elif auth_type == AuthType.basic:
                value, shown = _basic_value(api_key), f"Basic {REDACTED}"
            else:
                value, shown = api_key, REDACTED
            request.headers[header_name] = value
            request.redacted_headers[header_name] = shown
            return

        key_name = provider.auth_key_name or DEFAULT_PARAM_NAME
        if location == AuthLocation.query:
            url = httpx.URL(request.url)
            request.url = str(url.copy_add_param(key_name, api_key))
            request.redacted_url = str(url.copy_add_param(key_name, REDACTED))
        else:
            inject(request.body, key_name, api_key)
            inject(request.redacted_body, key_name, REDACTED)

    @staticmethod
    def _mask_leaked_headers(request: _OutboundRequest, api_key: str) -> None:
        if not api_key:
            return
        for name, value in request.redacted_headers.items():
            if api_key in value:
                request.redacted_headers[name] = REDACTED

    @staticmethod
    def _scrub(text: str, api_key: str) -> str:
        return text.replace(api_key, REDACTED) if api_key else text

    # ---------- response handling ----------

    @staticmethod
    def _decode_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text

    def _extract_result(
        self,
        provider: ProviderWithSecret,
        body: Any,
    ) -> tuple[str | None, int | None]:
        content = read_mapped(body, provider.response_mapping["content"])
        if content is not None and not isinstance(content, str):
            content = str(content)

        tokens = None
        usage_entry = provider.response_mapping.get("usage")
        if usage_entry is not None:
            try:
                usage = read_mapped(body, usage_entry)
                tokens = int(usage) if usage is not None else None
            except UnknownTransformError:
                raise
            except (PathNotFoundError, TransformError, TypeError, ValueError) as e:
                logger.debug(f"Usage not extracted: {e}")
        return content, tokens

    # ---------- dispatch ----------

    async def dispatch(
        self, provider: ProviderWithSecret, model_code: str, user_message: str
    ) -> NormalizedResult:
        model = self.resolve_model(provider, model_code)
        started = time.perf_counter()

        headers = {"Content-Type": "application/json", **provider.custom_headers}
        try:
            payload = self.build_payload(
                provider.request_mapping,
                self.build_request_values(model, user_message),
            )
            request = _OutboundRequest(provider.base_url, headers, payload)
            self._apply_auth(provider, request)
        except _LOCAL_ERRORS as e:
            return NormalizedResult(
                success=False,
                model=model.code,
                latency_ms=_elapsed_ms(started),
                raw_request=RawRequest(url=provider.base_url, headers={}, body=None),
                error=DispatchError(
                    kind=DispatchErrorKind.local_error,
                    message=self._scrub(str(e), provider.api_key),
                ),
            )
        self._mask_leaked_headers(request, provider.api_key)
        raw_request = request.public()

        try:
            response = await self._send(request)
        except (UnicodeEncodeError, httpx.InvalidURL) as e:
            return NormalizedResult(
                success=False,
                model=model.code,
                latency_ms=_elapsed_ms(started),
                raw_request=raw_request,
                error=DispatchError(
                    kind=DispatchErrorKind.local_error,
                    message=self._scrub(
                        f"Request could not be encoded: {e}", provider.api_key
                    ),
                ),
            )
        except httpx.TimeoutException:
            latency = _elapsed_ms(started)
            logger.warning(
                f"Provider {provider.identifier} timed out after {latency}ms"
            )
            return NormalizedResult(
                success=False,
                model=model.code,
                latency_ms=latency,
                raw_request=raw_request,
                error=DispatchError(
                    kind=DispatchErrorKind.transport_error,
                    message=f"Request timed out after {self.timeout:g}s",
                ),
            )
        except httpx.HTTPError as e:
            message = self._scrub(f"{e.__class__.__name__}: {e}", provider.api_key)
            logger.warning(
                f"Provider {provider.identifier} unreachable: {message}"
            )
            return NormalizedResult(
                success=False,
                model=model.code,
                latency_ms=_elapsed_ms(started),
                raw_request=raw_request,
                error=DispatchError(
                    kind=DispatchErrorKind.transport_error, message=message
                ),
            )

        latency = _elapsed_ms(started)
        body = self._decode_body(response)
        raw_response = RawResponse(
            status=response.status_code,
            headers=dict(response.headers),
            body=body,
        )
        logger.info(
            f"Dispatch {provider.identifier}/{model.code} -> {response.status_code} ({latency}ms)"
        )

        if not response.is_success:
            return NormalizedResult(
                success=False,
                model=model.code,
                status_code=response.status_code,
                latency_ms=latency,
                raw_request=raw_request,
                raw_response=raw_response,
                error=DispatchError(
                    kind=DispatchErrorKind.upstream_error,
                    message=f"Upstream returned HTTP {response.status_code}",
                ),
            )

        try:
            content, tokens = self._extract_result(provider, body)
        except (PathNotFoundError, *_MAPPING_ERRORS) as e:
            return NormalizedResult(
                success=False,
                model=model.code,
                status_code=response.status_code,
                latency_ms=latency,
                raw_request=raw_request,
                raw_response=raw_response,
                error=DispatchError(
                    kind=DispatchErrorKind.response_mapping_error, message=str(e)
                ),
            )

        return NormalizedResult(
            success=True,
            model=model.code,
            content=content,
            token_usage=tokens,
            status_code=response.status_code,
            latency_ms=latency,
            raw_request=raw_request,
            raw_response=raw_response,
        )

    async def _send(self, request: _OutboundRequest) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(
                request.url,
                headers=request.headers,
                json=request.body,
                timeout=self.timeout,
            )
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(request.url, headers=request.headers, json=request.body)


def get_provider_dispatcher() -> ProviderDispatcher:
    return ProviderDispatcher(timeout=settings.DISPATCH_TIMEOUT_SECONDS)
