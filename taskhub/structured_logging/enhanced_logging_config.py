"""
Enhanced structlog-based logging configuration for the TaskHub server.

This module provides MDC (Mapped Diagnostic Context) via contextvars,
security sanitization of credentials, and renderer selection driven by
LoggingConfig.
"""

import json
import logging
import os
import sys
import uuid
from typing import Any

import structlog
from structlog.contextvars import (
    bind_contextvars,
    clear_contextvars,
    merge_contextvars,
)
from structlog.stdlib import BoundLogger, LoggerFactory

logger = structlog.get_logger(__name__)

_LOGGING_INITIALIZED = False
_LOGGING_SIGNATURE: str | None = None

VALID_ENVIRONMENTS = ["local", "unit_test", "e2e_test", "production"]

_SENSITIVE_KEYS = (
    "password",
    "token",
    "secret",
    "credential",
    "jwt",
    "api_key",
    "private_key",
    "bearer",
    "authorization",
)


def detect_environment() -> str:
    """
    Detect the current environment.

    Returns:
        Environment name: "e2e_test", "unit_test", "local", or "production"
    """
    if "pytest" in sys.modules or "pytest" in sys.argv[0]:
        return "unit_test"

    logging_env = os.getenv("LOGGING_ENVIRONMENT", "")
    if logging_env in VALID_ENVIRONMENTS:
        return logging_env

    return "local"


def sanitize_sensitive_data(_logger: Any, _name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Remove sensitive data from log entries.

    Bearer credentials, refresh tokens, secrets and password hashes must never
    reach a log sink; any key that looks like one is replaced by "[REDACTED]".

    Args:
        _logger: Logger instance (unused)
        _name: Logger name (unused)
        event_dict: Event dictionary to sanitize

    Returns:
        Sanitized event dictionary
    """

    def sanitize_dict(d: dict[str, Any]) -> dict[str, Any]:
        sanitized: dict[str, Any] = {}
        for key, value in d.items():
            if isinstance(value, dict):
                sanitized[key] = sanitize_dict(value)
            elif isinstance(key, str) and any(sensitive in key.lower() for sensitive in _SENSITIVE_KEYS):
                sanitized[key] = "[REDACTED]"
            else:
                sanitized[key] = value
        return sanitized

    return sanitize_dict(event_dict)


def _select_renderer(log_format: str) -> Any:
    if log_format == "json":
        return structlog.processors.JSONRenderer(default=str)
    if log_format == "colored":
        return structlog.dev.ConsoleRenderer(colors=True)
    return structlog.processors.KeyValueRenderer(key_order=["timestamp", "level", "event"])


def configure_enhanced_structlog(
    environment: str | None = None,
    log_level: str = "INFO",
    log_format: str = "human",
    disable_logging: bool = False,
) -> None:
    """
    Configure structlog with MDC, sanitization and the selected renderer.

    Args:
        environment: Environment name (auto-detected if None)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: One of "json", "human", "colored"
        disable_logging: Drop everything below CRITICAL when True
    """
    if environment is None:
        environment = detect_environment()

    level = logging.CRITICAL if disable_logging else getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    if not any(getattr(handler, "_taskhub_handler", False) for handler in root_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(message)s"))
        handler._taskhub_handler = True  # type: ignore[attr-defined]
        root_logger.addHandler(handler)
    root_logger.setLevel(level)

    base_processors = [
        # Security first
        sanitize_sensitive_data,
        merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=base_processors + [_select_renderer(log_format)],
        context_class=dict,
        logger_factory=LoggerFactory(),
        wrapper_class=BoundLogger,
        cache_logger_on_first_use=False,
    )


def setup_enhanced_logging(logging_config: Any, *, force_reconfigure: bool = False) -> None:
    """
    Set up logging from a LoggingConfig instance.

    Repeated calls are no-ops unless force_reconfigure is set.

    Args:
        logging_config: LoggingConfig (environment, level, format, disable_logging)
        force_reconfigure: When True, reconfigure even if already initialized
    """
    global _LOGGING_INITIALIZED  # pylint: disable=global-statement
    global _LOGGING_SIGNATURE  # pylint: disable=global-statement

    config_dict = logging_config.model_dump() if hasattr(logging_config, "model_dump") else dict(logging_config)
    config_signature = json.dumps(config_dict, sort_keys=True, default=str)

    if _LOGGING_INITIALIZED and not force_reconfigure:
        get_logger("taskhub.logging.setup").debug(
            "setup_enhanced_logging skipped; logging system already initialized",
            config_signature=_LOGGING_SIGNATURE,
        )
        return

    environment = config_dict.get("environment") or detect_environment()
    log_level = config_dict.get("level", "INFO")
    log_format = config_dict.get("format", "human")
    disable_logging = bool(config_dict.get("disable_logging", False))

    configure_enhanced_structlog(environment, log_level, log_format, disable_logging)

    if not disable_logging:
        _configure_uvicorn_logging()

    get_logger("taskhub.logging.enhanced").info(
        "Enhanced logging system initialized",
        environment=environment,
        log_level=log_level,
        log_format=log_format,
        mdc_enabled=True,
        security_sanitization=True,
    )

    _LOGGING_INITIALIZED = True
    _LOGGING_SIGNATURE = config_signature


def _configure_uvicorn_logging() -> None:
    """Route uvicorn's loggers through the root handler."""
    for name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = []
        uvicorn_logger.propagate = True

    get_logger("uvicorn.enhanced").debug("Enhanced uvicorn logging configured")


def bind_request_context(
    correlation_id: str | None = None,
    user_id: str | None = None,
    connection_id: str | None = None,
    request_id: str | None = None,
    **kwargs,
) -> None:
    """
    Bind request or connection context to the current logging context.

    Args:
        correlation_id: Unique correlation ID (generated when omitted)
        user_id: Principal ID if known
        connection_id: Real-time connection ID if known
        request_id: HTTP request ID if known
        **kwargs: Additional context variables
    """
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())

    context_vars = {
        "correlation_id": correlation_id,
        "user_id": user_id,
        "connection_id": connection_id,
        "request_id": request_id,
        **kwargs,
    }
    bind_contextvars(**{k: v for k, v in context_vars.items() if v is not None})


def clear_request_context() -> None:
    """Clear the current request context from logging."""
    clear_contextvars()


def get_current_context() -> dict[str, Any]:
    """Get the current logging context."""
    return structlog.contextvars.get_contextvars()


def get_logger(name: str) -> Any:  # Returns BoundLogger but typed as Any for flexibility
    """
    Get a structlog logger with the specified name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger instance
    """
    return structlog.get_logger(name)
