"""
Exception hierarchy for the Challenger session client.

This module defines structured exceptions with error codes, context information,
and recovery suggestions so every layer of the request pipeline classifies
failures the same way.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorCode(Enum):
    """Standardized error codes for the request pipeline."""

    # Network and Communication Errors (2000-2099)
    NETWORK = "NETWORK_2001"
    TIMEOUT = "NETWORK_2002"

    # HTTP Errors (4000-5099)
    HTTP_CLIENT = "HTTP_4000"
    HTTP_AUTH_EXPIRED = "HTTP_4001"
    HTTP_SERVER = "HTTP_5000"

    # Response Decoding Errors (6000-6099)
    PARSE = "PARSE_6001"

    # Secure Storage Errors (7000-7099)
    STORAGE = "STORAGE_7001"

    # Configuration Errors (8000-8099)
    CONFIG = "CONFIG_8001"


class ErrorSeverity(Enum):
    """Error severity levels for logging and handling."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecoveryAction(Enum):
    """Suggested recovery actions for errors."""
    RETRY_WITH_BACKOFF = "retry_with_backoff"
    REFRESH_TOKEN = "refresh_token"
    LOGOUT = "logout"
    USER_INTERVENTION = "user_intervention"
    IGNORE = "ignore"


class ChallengerError(Exception):
    """
    Base exception class for all session client errors.

    Provides structured error information including error codes, context,
    and recovery suggestions for consistent error handling.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[Dict[str, Any]] = None,
        recovery_actions: Optional[List[RecoveryAction]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)

        self.message = message
        self.error_code = error_code
        self.severity = severity
        self.context = context or {}
        self.recovery_actions = recovery_actions or []
        self.cause = cause
        self.user_message = user_message or message
        self.timestamp = datetime.now()

        # Add cause information to context if available
        if cause:
            self.context['cause_type'] = type(cause).__name__
            self.context['cause_message'] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format for serialization."""
        return {
            'error': {
                'code': self.error_code.value,
                'message': self.message,
                'user_message': self.user_message,
                'severity': self.severity.value,
                'timestamp': self.timestamp.isoformat(),
                'context': self.context,
                'recovery_actions': [action.value for action in self.recovery_actions],
                'cause': {
                    'type': self.context.get('cause_type'),
                    'message': self.context.get('cause_message')
                } if self.cause else None
            }
        }


class RequestError(ChallengerError):
    """
    Classified outcome of a single failed HTTP attempt.

    Subclasses decide whether the failure is transient, i.e. whether repeating
    the same request unchanged is expected to help.
    """

    @property
    def is_transient(self) -> bool:
        return False


class NetworkError(RequestError):
    """The request never produced a response (connection refused, DNS, reset)."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            error_code=ErrorCode.NETWORK,
            severity=ErrorSeverity.MEDIUM,
            recovery_actions=[RecoveryAction.RETRY_WITH_BACKOFF],
            **kwargs
        )

    @property
    def is_transient(self) -> bool:
        return True


class RequestTimeoutError(RequestError):
    """The request exceeded its per-call timeout."""

    def __init__(self, message: str, timeout_ms: Optional[int] = None, **kwargs):
        context = kwargs.pop('context', {})
        if timeout_ms is not None:
            context['timeout_ms'] = timeout_ms

        super().__init__(
            message=message,
            error_code=ErrorCode.TIMEOUT,
            severity=ErrorSeverity.MEDIUM,
            recovery_actions=[RecoveryAction.RETRY_WITH_BACKOFF],
            context=context,
            **kwargs
        )
        self.timeout_ms = timeout_ms

    @property
    def is_transient(self) -> bool:
        return True


class HTTPStatusError(RequestError):
    """
    The server answered with a status of 400 or above.

    Carries the status, the decoded body and the server's own message when the
    body has one. Whether a status counts as transient is decided by the
    caller's retry policy.
    """

    def __init__(
        self,
        status: int,
        body: Any = None,
        error_code: ErrorCode = ErrorCode.HTTP_CLIENT,
        severity: ErrorSeverity = ErrorSeverity.LOW,
        recovery_actions: Optional[List[RecoveryAction]] = None,
        **kwargs
    ):
        self.status = status
        self.body = body
        self.server_message = extract_server_message(body)

        context = kwargs.pop('context', {})
        context['status'] = status

        message = kwargs.pop('message', None)
        if not message:
            message = f"Request failed ({status})"
            if self.server_message:
                message = f"{message}: {self.server_message}"

        super().__init__(
            message=message,
            error_code=error_code,
            severity=severity,
            recovery_actions=recovery_actions or [RecoveryAction.USER_INTERVENTION],
            context=context,
            user_message=kwargs.pop('user_message', None) or self.server_message,
            **kwargs
        )

    @classmethod
    def for_status(cls, status: int, body: Any = None) -> 'HTTPStatusError':
        """
        Build the subclass matching an HTTP status.

        Args:
            status: HTTP status code (>= 400)
            body: Decoded response body (dict, list, str or None)

        Returns:
            AuthExpiredError for 401, ServerHTTPError for 5xx, ClientHTTPError otherwise
        """
        if status == 401:
            return AuthExpiredError(body=body)
        if status >= 500:
            return ServerHTTPError(status, body=body)
        return ClientHTTPError(status, body=body)


class ClientHTTPError(HTTPStatusError):
    """4xx response other than 401."""

    def __init__(self, status: int, body: Any = None, **kwargs):
        super().__init__(status, body=body, error_code=ErrorCode.HTTP_CLIENT, **kwargs)


class AuthExpiredError(HTTPStatusError):
    """401 response: the access token is missing, invalid or expired."""

    def __init__(self, body: Any = None, **kwargs):
        super().__init__(
            401,
            body=body,
            error_code=ErrorCode.HTTP_AUTH_EXPIRED,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.REFRESH_TOKEN, RecoveryAction.LOGOUT],
            **kwargs
        )


class ServerHTTPError(HTTPStatusError):
    """5xx response."""

    def __init__(self, status: int, body: Any = None, **kwargs):
        super().__init__(
            status,
            body=body,
            error_code=ErrorCode.HTTP_SERVER,
            severity=ErrorSeverity.MEDIUM,
            **kwargs
        )


class ResponseParseError(RequestError):
    """A successful response whose body could not be decoded."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            error_code=ErrorCode.PARSE,
            severity=ErrorSeverity.MEDIUM,
            recovery_actions=[RecoveryAction.USER_INTERVENTION],
            **kwargs
        )


class StorageError(ChallengerError):
    """The secure store rejected a read, write or delete."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            error_code=ErrorCode.STORAGE,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.IGNORE],
            **kwargs
        )


class ConfigurationError(ChallengerError):
    """Configuration related errors."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
        if config_key:
            context['config_key'] = config_key

        super().__init__(
            message=message,
            error_code=ErrorCode.CONFIG,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.USER_INTERVENTION],
            context=context,
            **kwargs
        )


def extract_server_message(body: Any) -> Optional[str]:
    """
    Pull a human readable message out of an error body.

    Servers answer with ``{"message": ...}``, ``{"detail": ...}`` or
    ``{"error": ...}``; anything else (lists, nested objects, numbers) yields None.
    A non-empty plain text body is used as-is.

    Args:
        body: Decoded response body

    Returns:
        The message string or None
    """
    if isinstance(body, dict):
        for key in ('message', 'detail', 'error'):
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return None

    if isinstance(body, str) and body.strip():
        return body.strip()

    return None
