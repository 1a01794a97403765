"""
Service-layer exceptions.

Raised by the provider registry, credential vault, connection tester and
password reset service. The web layer renders them through a single
exception handler (see ``core.setup``) using ``status_code``.
"""

from typing import Any


class ServiceError(Exception):
    """Base exception for service errors."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        status_code: int | None = None,
    ):
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class ValidationError(ServiceError):
    """Missing or malformed input."""

    status_code = 400


class ConflictError(ServiceError):
    """Duplicate identifier, delete-while-active or a lost concurrent write."""

    status_code = 409


class NotFoundError(ServiceError):
    """Unknown provider, model or reset token."""

    status_code = 404


class DecryptionError(ServiceError):
    """Credential vault integrity failure.

    The message is constant so callers cannot learn why decryption failed.
    """

    status_code = 500

    def __init__(self):
        super().__init__("Unable to decrypt stored credential")


class EmailDeliveryError(ServiceError):
    """The reset email could not be delivered."""

    status_code = 503


class DispatchFailure(ServiceError):
    """A failed connection test, carrying the redacted diagnostics."""

    def __init__(self, message: str, result: Any, status_code: int | None = None):
        super().__init__(message, status_code=status_code)
        self.result = result


class UpstreamError(DispatchFailure):
    """The LLM vendor answered with a non-2xx status."""

    status_code = 502


class TransportError(DispatchFailure):
    """No response from the LLM vendor (connection failure or timeout)."""

    status_code = 503
