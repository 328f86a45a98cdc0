"""
Exception hierarchy for the payer gateway.

Every failure the gateway can produce is a ``GatewayError`` carrying a code,
a category, a human message, partner detail and a ``retryable`` flag, so
callers never have to re-derive retryability.
"""

import asyncio
from typing import Any

from .enums import ErrorCategory
from .models import ErrorDetail


class GatewayError(Exception):
    """Base exception for all gateway errors."""

    default_code = "INTEGRATION_ERROR"
    category = ErrorCategory.INTERNAL
    retryable = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
        retryable: bool | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.details = details or {}
        if retryable is not None:
            self.retryable = retryable

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary representation."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "category": self.category.value,
            "details": self.details,
            "retryable": self.retryable,
        }

    def to_detail(self) -> ErrorDetail:
        return ErrorDetail(
            code=self.error_code,
            category=self.category,
            message=self.message,
            details=dict(self.details),
            retryable=self.retryable,
        )


class ValidationError(GatewayError):
    """Raised when a domain object fails pre-flight checks."""

    default_code = "VALIDATION_ERROR"
    category = ErrorCategory.VALIDATION

    def __init__(
        self,
        message: str,
        errors: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.errors = list(errors or [])
        details = dict(details or {})
        if self.errors:
            details.setdefault("errors", self.errors)
        super().__init__(message, details=details)


class ConnectivityError(GatewayError):
    """Raised on timeouts, DNS failures, resets and dropped sessions."""

    default_code = "CONNECTIVITY_ERROR"
    category = ErrorCategory.CONNECTIVITY
    retryable = True


class RemoteError(GatewayError):
    """Raised when a partner answers with a non-success status."""

    default_code = "REMOTE_ERROR"
    category = ErrorCategory.REMOTE

    def __init__(
        self,
        message: str,
        status_code: int,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.status_code = status_code
        details = dict(details or {})
        details["status_code"] = status_code
        super().__init__(
            message,
            details=details,
            retryable=status_code >= 500 or status_code == 429,
        )


class ProtocolError(GatewayError):
    """Raised when a SOAP, XML or X12 envelope does not match the contract."""

    default_code = "PROTOCOL_ERROR"
    category = ErrorCategory.PROTOCOL


class CircuitOpenError(GatewayError):
    """Raised when a partner's breaker is OPEN."""

    default_code = "CIRCUIT_OPEN"
    category = ErrorCategory.CIRCUIT_OPEN

    def __init__(self, partner_id: str, retry_after_seconds: float) -> None:
        self.partner_id = partner_id
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            f"Circuit breaker for partner '{partner_id}' is OPEN. "
            f"Please try again in {retry_after_seconds:.0f}s.",
            details={
                "partner_id": partner_id,
                "retry_after_seconds": retry_after_seconds,
            },
        )


class ConfigurationError(GatewayError):
    """Raised when gateway configuration is invalid or missing."""

    default_code = "CONFIGURATION_ERROR"
    category = ErrorCategory.CONFIGURATION


class UnknownPartnerError(ConfigurationError):
    """Raised when no partner is registered under an identifier."""

    default_code = "UNKNOWN_PARTNER"

    def __init__(self, partner_id: str) -> None:
        self.partner_id = partner_id
        super().__init__(
            f"No integration registered for partner '{partner_id}'",
            details={"partner_id": partner_id},
        )


class UnknownOperationError(ConfigurationError):
    """Raised when a generic operation name cannot be resolved."""

    default_code = "UNKNOWN_OPERATION"

    def __init__(self, operation: str, partner_id: str | None = None) -> None:
        self.operation = operation
        super().__init__(
            f"Unknown operation '{operation}'",
            details={"operation": operation, "partner_id": partner_id},
        )


NETWORK_EXCEPTIONS = (asyncio.TimeoutError, TimeoutError, ConnectionError)


def is_retryable(exc: BaseException) -> bool:
    """Single retry predicate shared by every adapter call."""
    if isinstance(exc, GatewayError):
        return exc.retryable
    return isinstance(exc, NETWORK_EXCEPTIONS)


def as_gateway_error(exc: BaseException) -> GatewayError:
    """Normalize any exception into the gateway taxonomy."""
    if isinstance(exc, GatewayError):
        return exc
    if isinstance(exc, NETWORK_EXCEPTIONS):
        return ConnectivityError(
            str(exc) or exc.__class__.__name__,
            details={"type": exc.__class__.__name__},
        )
    return GatewayError(
        f"Unexpected integration failure: {exc}",
        details={"type": exc.__class__.__name__},
    )
