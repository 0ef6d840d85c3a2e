"""Structured logging for the TaskHub server."""

from .enhanced_logging_config import (
    bind_request_context,
    clear_request_context,
    configure_enhanced_structlog,
    get_current_context,
    get_logger,
    sanitize_sensitive_data,
    setup_enhanced_logging,
)

__all__ = [
    "bind_request_context",
    "clear_request_context",
    "configure_enhanced_structlog",
    "get_current_context",
    "get_logger",
    "sanitize_sensitive_data",
    "setup_enhanced_logging",
]
