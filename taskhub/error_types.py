"""
Centralized error types and constants for TaskHub.

Standardized error types keep the HTTP and real-time surfaces consistent.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any


class ErrorType(Enum):
    """Standardized error types for consistent categorization."""

    # Authentication and Authorization
    UNAUTHENTICATED = "unauthenticated"
    INVALID_OR_EXPIRED_CREDENTIAL = "invalid_or_expired_credential"
    INVALID_REFRESH_TOKEN = "invalid_refresh_token"
    PRINCIPAL_INACTIVE = "principal_inactive"
    AUTHORIZATION_DENIED = "authorization_denied"
    ROOM_ACCESS_DENIED = "room_access_denied"

    # Validation Errors
    VALIDATION_FAILED = "validation_failed"
    MESSAGE_TOO_LARGE = "message_too_large"
    INVALID_FORMAT = "invalid_format"

    # Resources
    RESOURCE_NOT_FOUND = "resource_not_found"
    RESOURCE_CONFLICT = "resource_conflict"

    # Persistence
    PERSISTENCE_UNAVAILABLE = "persistence_unavailable"

    # Rate Limiting
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"

    # Configuration and System
    CONFIGURATION_ERROR = "configuration_error"
    INTERNAL_ERROR = "internal_error"


def create_standard_error_response(
    error_type: ErrorType,
    message: str,
    user_friendly: str | None = None,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Create a standardized HTTP error response body.

    Args:
        error_type: The type of error
        message: Technical error message
        user_friendly: User-friendly error message (optional)
        details: Additional error details (optional)
    """
    return {
        "error": {
            "type": error_type.value,
            "message": message,
            "user_friendly": user_friendly or message,
            "details": details or {},
            "timestamp": datetime.now(UTC).isoformat(),
        }
    }


def create_websocket_error_response(
    error_type: ErrorType,
    message: str,
    user_friendly: str | None = None,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Create the payload of a real-time `error` event.

    Args:
        error_type: The type of error
        message: Technical error message
        user_friendly: User-friendly error message (optional)
        details: Additional error details (optional)

    Returns:
        WebSocket error response dictionary
    """
    return {
        "type": "error",
        "error_type": error_type.value,
        "message": message,
        "user_friendly": user_friendly or message,
        "details": details or {},
    }


class ErrorMessages:
    """Common error messages for consistent user experience."""

    # Authentication
    ACCESS_TOKEN_REQUIRED = "Access token is required"
    INVALID_OR_EXPIRED_TOKEN = "Invalid or expired token"
    INVALID_REFRESH_TOKEN = "Invalid or expired refresh token"
    INVALID_CREDENTIALS = "Invalid credentials"
    PRINCIPAL_INACTIVE = "User not found or inactive"
    INSUFFICIENT_PERMISSIONS = "Insufficient permissions"
    ACCESS_DENIED = "Access denied"

    # Rooms
    ROOM_ACCESS_DENIED = "Access denied to room"
    NOT_A_ROOM_MEMBER = "Not a member of this room"
    NOT_AUTHORIZED_TO_SEND = "Not authorized to send message"
    NOT_AUTHORIZED_TO_UPDATE_TASK = "Not authorized to update task"

    # Validation
    INVALID_EVENT = "Invalid event payload"
    MESSAGE_TOO_LARGE = "Message too large"
    WEAK_PASSWORD = "Password does not meet the strength requirements"
    INCORRECT_PASSWORD = "Current password is incorrect"

    # Resources
    RESOURCE_NOT_FOUND = "Resource not found"
    NOTIFICATION_NOT_FOUND = "Notification not found"
    USERNAME_TAKEN = "Username already taken"
    EMAIL_TAKEN = "Email already registered"

    # Persistence
    PERSISTENCE_UNAVAILABLE = "Message could not be saved. Please retry."

    # System
    INTERNAL_ERROR = "An internal error occurred"
    TOO_MANY_REQUESTS = "Too many requests. Please try again later."
