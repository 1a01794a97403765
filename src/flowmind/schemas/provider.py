"""
Provider schemas - Pydantic models for validation and serialization.

``ProviderSummary`` never carries the API key. ``ProviderWithSecret`` is only
produced by an explicit ``include_secret=True`` read and is consumed by the
connection tester / dispatcher, never returned by the API.
"""

from datetime import datetime
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field

from ..core.enums import (
    AuthLocation,
    AuthType,
    CapabilityType,
    DispatchErrorKind,
    ParameterType,
)


class MappingEntry(BaseModel):
    """Declarative rule moving one value into / out of a JSON payload."""

    model_config = ConfigDict(extra="forbid")

    path: Annotated[str, Field(min_length=1, examples=["choices[0].message.content"])]
    transform: Annotated[str | None, Field(default=None, examples=["to_int"])]


class ModelParameter(BaseModel):
    name: Annotated[str, Field(min_length=1, max_length=100, examples=["temperature"])]
    type: ParameterType = ParameterType.number
    required: bool = False
    default: Any = None
    min: float | None = None
    max: float | None = None
    options: list[Any] | None = None
    description: str | None = None


class ModelCapability(BaseModel):
    type: CapabilityType
    name: Annotated[str, Field(min_length=1, max_length=100)]
    description: str | None = None
    parameters: list[ModelParameter] = Field(default_factory=list)


class ProviderModel(BaseModel):
    """One LLM offered by a provider, addressed by its vendor code."""

    code: Annotated[str, Field(min_length=1, max_length=200, examples=["gpt-4o-mini"])]
    name: Annotated[str | None, Field(default=None, max_length=255)]
    description: str | None = None
    is_enabled: bool = True
    parameters: list[ModelParameter] = Field(default_factory=list)
    capabilities: list[ModelCapability] = Field(default_factory=list)


class ProviderCreate(BaseModel):
    """Schema for creating a provider.

    Required fields are typed optional so that missing values are reported by
    the registry with per-field detail instead of a generic 422.
    """

    model_config = ConfigDict(extra="forbid")

    name: Annotated[str | None, Field(default=None, max_length=255, examples=["OpenAI"])]
    identifier: Annotated[
        str | None, Field(default=None, max_length=100, examples=["openai"])
    ]
    base_url: Annotated[
        str | None,
        Field(
            default=None,
            max_length=2048,
            examples=["https://api.openai.com/v1/chat/completions"],
        ),
    ]
    api_key: Annotated[str | None, Field(default=None, examples=["sk-..."])]

    auth_type: AuthType = AuthType.bearer
    auth_location: AuthLocation = AuthLocation.header
    auth_key_name: Annotated[str | None, Field(default=None, max_length=100)]
    custom_headers: dict[str, str] = Field(default_factory=dict)

    request_mapping: dict[str, MappingEntry] | None = None
    response_mapping: dict[str, MappingEntry] | None = None
    models: list[ProviderModel] = Field(default_factory=list)

    is_active: bool = False
    preset: Annotated[
        str | None,
        Field(
            default=None,
            description="Opt-in vendor preset filling mappings and headers not given explicitly",
            examples=["openai"],
        ),
    ]


class ProviderUpdate(BaseModel):
    """Schema for partial provider update."""

    model_config = ConfigDict(extra="forbid")

    name: Annotated[str | None, Field(default=None, min_length=1, max_length=255)]
    identifier: Annotated[str | None, Field(default=None, min_length=1, max_length=100)]
    base_url: Annotated[str | None, Field(default=None, min_length=1, max_length=2048)]
    api_key: Annotated[str | None, Field(default=None, min_length=1)]
    auth_type: AuthType | None = None
    auth_location: AuthLocation | None = None
    auth_key_name: str | None = None
    custom_headers: dict[str, str] | None = None
    request_mapping: dict[str, MappingEntry] | None = None
    response_mapping: dict[str, MappingEntry] | None = None
    models: list[ProviderModel] | None = None
    is_active: bool | None = None


class ProviderCreateInternal(BaseModel):
    """Row values written by the registry (api key already encrypted)."""

    identifier: str
    name: str
    base_url: str
    api_key_encrypted: str
    auth_type: str
    auth_location: str
    auth_key_name: str | None = None
    custom_headers: dict[str, str]
    request_mapping: dict[str, dict[str, Any]]
    response_mapping: dict[str, dict[str, Any]]
    models: list[dict[str, Any]]
    is_active: bool = False


class ProviderSummary(BaseModel):
    """Externally visible provider (no secret)."""

    id: str
    identifier: str
    name: str
    base_url: str
    is_active: bool
    auth_type: AuthType
    auth_location: AuthLocation
    auth_key_name: str | None = None
    custom_headers: dict[str, str] = Field(default_factory=dict)
    request_mapping: dict[str, MappingEntry] = Field(default_factory=dict)
    response_mapping: dict[str, MappingEntry] = Field(default_factory=dict)
    models: list[ProviderModel] = Field(default_factory=list)
    token_usage: int = 0
    version: int = 1
    created_at: datetime
    updated_at: datetime | None = None


class ProviderStored(ProviderSummary):
    """Internal read including the encrypted blob."""

    api_key_encrypted: str


class ProviderWithSecret(ProviderSummary):
    """Provider with decrypted API key. Never serialized to clients."""

    api_key: str = Field(repr=False)


class ProviderStatusUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    is_active: bool


class ModelStatusUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    is_enabled: bool


class ModelsReplace(BaseModel):
    model_config = ConfigDict(extra="forbid")

    models: list[ProviderModel]


class ProviderTestRequest(BaseModel):
    """Input for POST /model-providers/{id}/test."""

    message: Annotated[
        str, Field(min_length=1, max_length=4000, examples=["Hello, who are you?"])
    ]
    model: Annotated[
        str | None,
        Field(default=None, description="Model code; first enabled model if omitted"),
    ]


class ProviderPreset(BaseModel):
    """Vendor preset (opt-in template for create)."""

    name: str
    description: str | None = None
    base_url: str
    auth_type: AuthType = AuthType.bearer
    auth_location: AuthLocation = AuthLocation.header
    auth_key_name: str | None = None
    custom_headers: dict[str, str] = Field(default_factory=dict)
    request_mapping: dict[str, MappingEntry]
    response_mapping: dict[str, MappingEntry]
    models: list[ProviderModel] = Field(default_factory=list)


# Dispatch result schemas
class RawRequest(BaseModel):
    url: str
    method: str = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = None


class RawResponse(BaseModel):
    status: int
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = None


class DispatchError(BaseModel):
    kind: DispatchErrorKind
    message: str


class NormalizedResult(BaseModel):
    """Uniform result of a dispatch / connection test (credentials redacted)."""

    success: bool
    model: str | None = None
    content: str | None = None
    token_usage: int | None = None
    status_code: int | None = None
    latency_ms: int = 0
    raw_request: RawRequest | None = None
    raw_response: RawResponse | None = None
    error: DispatchError | None = None
