"""Domain exceptions for the mailbridge application.

Defines domain-level exceptions for credential, provider, and ledger
failures. These exceptions are independent of infrastructure concerns.
Presentation layer maps them to HTTP responses in exception handlers.
"""

from typing import Any


class MailBridgeException(Exception):
    """Base exception for all mailbridge application errors.

    All custom exceptions should inherit from this class to allow
    consistent error handling and logging. Presentation layer maps
    these to HTTP responses using message, error_code, and details.

    Attributes:
        message: Human-readable error description.
        error_code: Machine-readable error code.
        details: Additional error context (e.g. field, resource_id).
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            error_code: Optional machine-readable code; defaults to class name.
            details: Optional dict of extra context.
        """
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-safe representation for API error responses."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ValidationException(MailBridgeException):
    """Raised when input validation fails (e.g. invalid format or range)."""

    def __init__(self, message: str, field: str | None = None) -> None:
        """Initialize with message and optional field name.

        Args:
            message: Description of the validation failure.
            field: Optional field or attribute that failed validation.
        """
        details = {"field": field} if field else {}
        super().__init__(message, "VALIDATION_ERROR", details)


class AuthenticationException(MailBridgeException):
    """Raised when authentication fails (e.g. invalid credentials or token)."""

    def __init__(self, message: str = "Authentication failed") -> None:
        super().__init__(message, "AUTHENTICATION_ERROR")


class AuthorizationException(MailBridgeException):
    """Raised when the caller may not act on the requested tenant or resource."""

    def __init__(
        self,
        resource: str | None = None,
        action: str | None = None,
        message: str = "Permission denied",
    ) -> None:
        """Initialize with optional resource, action, and message.

        Args:
            resource: Optional resource type (e.g. 'email_account').
            action: Optional action that was attempted (e.g. 'send').
            message: Human-readable message; default used when resource/action omitted.
        """
        if resource and action:
            message = f"Permission denied: {action} on {resource}"
        details: dict[str, Any] = {}
        if resource:
            details["resource"] = resource
        if action:
            details["action"] = action
        super().__init__(message, "PERMISSION_DENIED", details)


class ResourceNotFoundException(MailBridgeException):
    """Raised when a requested resource is not found."""

    def __init__(self, resource_type: str, resource_id: str) -> None:
        """Initialize with resource type and id.

        Args:
            resource_type: Type of resource (e.g. 'email_account', 'email_event').
            resource_id: The ID that was not found.
        """
        super().__init__(
            f"{resource_type} not found: {resource_id}",
            "RESOURCE_NOT_FOUND",
            {"resource_type": resource_type, "resource_id": resource_id},
        )


class CryptoError(MailBridgeException):
    """Raised when the vault key is missing/malformed or a ciphertext fails integrity checks.

    Fatal for the affected account until the mailbox is reconnected.
    """

    def __init__(self, message: str = "Token encryption failure") -> None:
        super().__init__(message, "CRYPTO_ERROR")


class MissingRefreshToken(MailBridgeException):
    """Raised when an access token needs refreshing but no refresh token is stored."""

    def __init__(self, account_id: str) -> None:
        super().__init__(
            "Missing refresh token",
            "MISSING_REFRESH_TOKEN",
            {"account_id": account_id},
        )


class TokenRefreshFailed(MailBridgeException):
    """Raised when the provider token endpoint rejects a refresh.

    The provider error body is kept in the message so failures can be
    classified (e.g. invalid_grant means the grant was revoked).
    """

    def __init__(
        self,
        provider: str,
        status_code: int | None,
        body: str,
    ) -> None:
        self.provider = provider
        self.status_code = status_code
        self.body = body
        super().__init__(
            f"{provider} token refresh failed ({status_code}): {body}",
            "TOKEN_REFRESH_FAILED",
            {"provider": provider, "status_code": status_code},
        )


class MissingThreadContext(MailBridgeException):
    """Raised when a reply target lacks the thread/message id its provider needs."""

    def __init__(self, provider: str, missing: str) -> None:
        super().__init__(
            f"Cannot reply via {provider}: inbound event has no {missing}",
            "MISSING_THREAD_CONTEXT",
            {"provider": provider, "missing": missing},
        )


class ProviderFetchFailed(MailBridgeException):
    """Raised on transient provider HTTP or network errors (retryable)."""

    def __init__(
        self,
        provider: str,
        operation: str,
        status_code: int | None = None,
        reason: str = "",
    ) -> None:
        self.status_code = status_code
        message = f"{provider} {operation} failed"
        if status_code is not None:
            message = f"{message} ({status_code})"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            "PROVIDER_FETCH_FAILED",
            {"provider": provider, "operation": operation, "status_code": status_code},
        )


class HistoryCursorExpired(MailBridgeException):
    """Raised when Gmail no longer has history for the stored cursor (404)."""

    def __init__(self, history_id: str) -> None:
        super().__init__(
            f"Gmail history ID {history_id} has expired",
            "HISTORY_CURSOR_EXPIRED",
            {"history_id": history_id},
        )


class DownstreamDeliveryFailed(MailBridgeException):
    """Raised when the downstream consumer does not accept a payload (non-2xx or network)."""

    def __init__(self, status_code: int | None, reason: str = "") -> None:
        message = "Failed to forward email to downstream consumer"
        if status_code is not None:
            message = f"{message} ({status_code})"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            "DOWNSTREAM_DELIVERY_FAILED",
            {"status_code": status_code},
        )
