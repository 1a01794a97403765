"""
Enumeration types for core data models.

Provides type-safe enums for user roles and model provider configuration.
"""

from enum import Enum


class UserRole(str, Enum):
    """User role enumeration."""

    user = "user"
    admin = "admin"


class AuthType(str, Enum):
    """How the provider credential is presented upstream."""

    none = "none"
    basic = "basic"
    bearer = "bearer"
    apikey = "apikey"


class AuthLocation(str, Enum):
    """Where the provider credential is placed in the outbound request."""

    header = "header"
    query = "query"
    body = "body"


class ParameterType(str, Enum):
    string = "string"
    number = "number"
    boolean = "boolean"
    enum = "enum"


class CapabilityType(str, Enum):
    text = "text"
    image = "image"
    audio = "audio"
    embedding = "embedding"


class DispatchErrorKind(str, Enum):
    """Failure classification of an outbound provider call."""

    local_error = "local_error"
    transport_error = "transport_error"
    upstream_error = "upstream_error"
    response_mapping_error = "response_mapping_error"
