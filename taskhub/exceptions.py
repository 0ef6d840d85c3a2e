"""
Exception hierarchy for the TaskHub server.

Every error carries an ErrorType, an HTTP status for the request surface,
and structured context that is logged when the error is constructed.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .error_types import ErrorMessages, ErrorType
from .structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class ErrorContext:
    """Contextual information for error handling."""

    user_id: int | None = None
    room_id: str | None = None
    connection_id: str | None = None
    request_id: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert context to dictionary for logging."""
        return {
            "user_id": self.user_id,
            "room_id": self.room_id,
            "connection_id": self.connection_id,
            "request_id": self.request_id,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


class TaskHubError(Exception):
    """
    Base exception for all TaskHub errors.

    Provides structured error handling with context and metadata
    for proper error categorization and debugging.
    """

    error_type: ErrorType = ErrorType.INTERNAL_ERROR
    status_code: int = 500
    log_level: str = "error"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        details: dict[str, Any] | None = None,
        user_friendly: str | None = None,
    ):
        """
        Initialize the error.

        Args:
            message: Technical error message
            context: Error context information
            details: Additional error details
            user_friendly: User-friendly error message
        """
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext()
        self.details = details or {}
        self.user_friendly = user_friendly or message
        self.timestamp = datetime.now(UTC)

        self._log_error()

    def _log_error(self) -> None:
        """Log the error with structured context."""
        log_method = getattr(logger, self.log_level, logger.error)
        log_method(
            "TaskHub error occurred",
            error_type=self.__class__.__name__,
            message=self.message,
            context=self.context.to_dict(),
            details=self.details,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_type": self.error_type.value,
            "message": self.message,
            "user_friendly": self.user_friendly,
            "retryable": self.retryable,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class UnauthenticatedError(TaskHubError):
    """No credential was supplied, or it could not be parsed as a bearer credential."""

    error_type = ErrorType.UNAUTHENTICATED
    status_code = 401
    log_level = "info"

    def __init__(self, message: str = ErrorMessages.ACCESS_TOKEN_REQUIRED, **kwargs):
        super().__init__(message, **kwargs)


class InvalidOrExpiredCredentialError(TaskHubError):
    """Signature, expiry or claim validation failed."""

    error_type = ErrorType.INVALID_OR_EXPIRED_CREDENTIAL
    status_code = 403
    log_level = "warning"

    def __init__(self, message: str = ErrorMessages.INVALID_OR_EXPIRED_TOKEN, reason: str = "invalid", **kwargs):
        super().__init__(message, **kwargs)
        self.reason = reason
        self.details["reason"] = reason


class InvalidRefreshTokenError(InvalidOrExpiredCredentialError):
    """A refresh token is unknown, revoked, expired, or no longer matches its registry entry."""

    error_type = ErrorType.INVALID_REFRESH_TOKEN

    def __init__(self, message: str = ErrorMessages.INVALID_REFRESH_TOKEN, reason: str = "invalid", **kwargs):
        super().__init__(message, reason=reason, **kwargs)


class PrincipalInactiveError(TaskHubError):
    """Valid credential, but the principal no longer exists or has been deactivated."""

    error_type = ErrorType.PRINCIPAL_INACTIVE
    status_code = 403
    log_level = "warning"

    def __init__(self, message: str = ErrorMessages.PRINCIPAL_INACTIVE, principal_id: int | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.principal_id = principal_id
        if principal_id is not None:
            self.details["principal_id"] = principal_id


class AuthorizationDeniedError(TaskHubError):
    """Role or ownership guard rejected an authenticated principal."""

    error_type = ErrorType.AUTHORIZATION_DENIED
    status_code = 403
    log_level = "warning"

    def __init__(self, message: str = ErrorMessages.INSUFFICIENT_PERMISSIONS, **kwargs):
        super().__init__(message, **kwargs)


class RoomAccessDeniedError(TaskHubError):
    """Authenticated principal is not a member, owner or watcher of the target room."""

    error_type = ErrorType.ROOM_ACCESS_DENIED
    status_code = 403
    log_level = "warning"

    def __init__(self, message: str = ErrorMessages.ROOM_ACCESS_DENIED, room_id: str | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.room_id = room_id
        if room_id is not None:
            self.details["room_id"] = room_id


class EventValidationError(TaskHubError):
    """Malformed inbound event or request payload."""

    error_type = ErrorType.VALIDATION_FAILED
    status_code = 422
    log_level = "warning"

    def __init__(
        self,
        message: str = ErrorMessages.INVALID_EVENT,
        error_type: ErrorType | None = None,
        field: str | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        if error_type is not None:
            self.error_type = error_type
        self.field = field
        if field:
            self.details["field"] = field


class ResourceNotFoundError(TaskHubError):
    """A stored record is absent or belongs to someone else."""

    error_type = ErrorType.RESOURCE_NOT_FOUND
    status_code = 404
    log_level = "info"

    def __init__(
        self,
        message: str = ErrorMessages.RESOURCE_NOT_FOUND,
        resource_type: str | None = None,
        resource_id: int | str | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.resource_type = resource_type
        self.resource_id = resource_id
        if resource_type:
            self.details["resource_type"] = resource_type
        if resource_id is not None:
            self.details["resource_id"] = resource_id


class ResourceConflictError(TaskHubError):
    """A unique value (username, email) is already in use."""

    error_type = ErrorType.RESOURCE_CONFLICT
    status_code = 409
    log_level = "info"

    def __init__(self, message: str, field: str | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.field = field
        if field:
            self.details["field"] = field


class PersistenceUnavailableError(TaskHubError):
    """The persistence collaborator failed or did not answer in time."""

    error_type = ErrorType.PERSISTENCE_UNAVAILABLE
    status_code = 503
    retryable = True

    def __init__(self, message: str = ErrorMessages.PERSISTENCE_UNAVAILABLE, operation: str = "unknown", **kwargs):
        super().__init__(message, **kwargs)
        self.operation = operation
        self.details["operation"] = operation


class ConfigurationError(TaskHubError):
    """Configuration and setup errors."""

    error_type = ErrorType.CONFIGURATION_ERROR

    def __init__(self, message: str, config_key: str | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.config_key = config_key
        if config_key:
            self.details["config_key"] = config_key
