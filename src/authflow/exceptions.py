"""Structured exception classes for AuthFlow."""

import json
from typing import Any, Dict, Optional


class AuthFlowError(Exception):
    """Base exception for all AuthFlow errors.

    This exception serves as the parent class for all AuthFlow specific
    exceptions, providing a consistent interface for error handling
    across the client.

    Any error that passed through the retry manager additionally carries
    a ``retry_info`` attribute describing the executed attempts.

    :param message: Human-readable error message
    :param code: Optional error code for programmatic handling
    :param details: Optional dictionary containing additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        """Initialize the exception with message, code, and details."""
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        self.retry_info = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format.

        :return: Dictionary containing error code, message, and details
        """
        data = {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }
        if self.retry_info is not None:
            data["retry_info"] = self.retry_info.model_dump(exclude={"attempts"})
            data["retry_info"]["attempts"] = len(self.retry_info.attempts)
        return data

    def to_json(self) -> str:
        """Convert exception to JSON string.

        :return: JSON-encoded string representation of the exception
        """
        return json.dumps(self.to_dict(), default=str)


class ValidationError(AuthFlowError):
    """Raised when validation fails.

    This exception is raised for malformed tokens, credentials or
    component configuration. It is fatal and surfaced immediately.

    :param message: Description of the validation error
    :param field: Optional name of the field that failed validation
    :param value: Optional value that caused the validation failure
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
    ):
        """Initialize validation error with message and optional field/value."""
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message=message, code="VALIDATION_ERROR", details=details)
        self.field = field


class ConfigurationError(AuthFlowError):
    """Raised for configuration-related errors.

    :param message: Description of the configuration error
    :param setting: Optional name of the problematic setting
    """

    def __init__(self, message: str, setting: Optional[str] = None):
        """Initialize configuration error with message and optional setting."""
        details = {}
        if setting:
            details["setting"] = setting
        super().__init__(message=message, code="CONFIGURATION_ERROR", details=details)


class TransportError(AuthFlowError):
    """Raised when an HTTP exchange fails.

    Normalized form of every transport failure: a non-2xx response,
    a network failure or a timeout. The ``status`` and ``code`` attributes
    drive retry classification.

    :param message: Description of the failure (reason phrase for HTTP errors)
    :param status: HTTP status code, ``0`` for network failures
    :param code: Error code such as ``HTTP_503``, ``ECONNREFUSED`` or ``TIMEOUT``
    :param data: Parsed response body, when there was one
    :param headers: Response headers, when there were any
    """

    def __init__(
        self,
        message: str,
        status: int = 0,
        code: Optional[str] = None,
        data: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        """Initialize transport error with status, code and response context."""
        details: Dict[str, Any] = {"status": status}
        if data is not None:
            details["response_body"] = data
        super().__init__(
            message=message, code=code or f"HTTP_{status}", details=details
        )
        self.status = status
        self.data = data
        self.headers = headers or {}

    @property
    def is_unauthorized(self) -> bool:
        """Whether the server rejected the request credentials."""
        return self.status == 401


class NetworkError(TransportError):
    """Raised when the request never produced an HTTP response."""

    def __init__(self, message: str, code: str = "ECONNREFUSED"):
        """Initialize network error with a connection-level error code."""
        super().__init__(message=message, status=0, code=code)


class RequestTimeoutError(TransportError):
    """Raised when an outbound call is aborted by its timeout.

    :param message: Description of the timeout
    :param timeout_ms: Optional timeout that was exceeded, in milliseconds
    """

    def __init__(self, message: str = "Request timeout", timeout_ms: Optional[float] = None):
        """Initialize timeout error with message and optional timeout."""
        super().__init__(message=message, status=408, code="TIMEOUT")
        if timeout_ms is not None:
            self.details["timeout_ms"] = timeout_ms


class AuthError(AuthFlowError):
    """Raised when login or token refresh fails.

    Token state is cleared before a refresh failure surfaces.

    :param message: Description of the authentication failure
    :param status: Optional HTTP status returned by the auth endpoint
    :param details: Optional additional context about the failure
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        """Initialize authentication error with message and optional status."""
        details = dict(details or {})
        if status is not None:
            details["status"] = status
        super().__init__(message=message, code="AUTHENTICATION_ERROR", details=details)
        self.status = status


class TokensNotFoundError(AuthError):
    """Raised when an auth response lacks one of the configured token fields."""

    def __init__(self, access_field: str, refresh_field: str):
        """Initialize with the field names that were expected."""
        super().__init__(
            message=(
                "Tokens not found in response. "
                f"Expected fields: {access_field}, {refresh_field}"
            ),
            details={"expected_fields": [access_field, refresh_field]},
        )
        self.code = "TOKENS_NOT_FOUND"


class TokenRefreshError(AuthError):
    """Raised when the refresh token is missing, expired or rejected."""

    def __init__(self, message: str, status: Optional[int] = None):
        """Initialize refresh error with message and optional status."""
        super().__init__(message=message, status=status)
        self.code = "TOKEN_REFRESH_ERROR"


class CircuitOpenError(AuthFlowError):
    """Raised when the circuit breaker rejects a call without running it.

    :param message: Description of the rejection
    :param next_retry_time: Epoch milliseconds at which a probe is allowed
    """

    def __init__(
        self,
        message: str = "Circuit breaker is open",
        next_retry_time: Optional[float] = None,
    ):
        """Initialize circuit open error with message and retry time."""
        details = {}
        if next_retry_time is not None:
            details["next_retry_time"] = next_retry_time
        super().__init__(message=message, code="CIRCUIT_OPEN", details=details)
        self.next_retry_time = next_retry_time
