"""
Pydantic-based configuration models for the TaskHub server.

Each concern owns a BaseSettings class with its own environment prefix;
AppConfig aggregates them.
"""

import json
from typing import Annotated, Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode

from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


def _parse_env_list(candidate: Any) -> list[str]:
    """Parse a value as a JSON list or CSV."""
    if candidate is None:
        return []
    if isinstance(candidate, list | tuple):
        return [str(item).strip() for item in candidate if str(item).strip()]
    s = str(candidate).strip()
    if not s:
        return []
    try:
        loaded = json.loads(s)
        if isinstance(loaded, list):
            return [str(item).strip() for item in loaded if str(item).strip()]
    except json.JSONDecodeError:
        pass
    return [item.strip() for item in s.split(",") if item.strip()]


class ServerConfig(BaseSettings):
    """Server network configuration."""

    host: str = Field(default="127.0.0.1", description="Server bind address")
    port: int = Field(default=3200, description="Server port")

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port is in valid range."""
        if not 1024 <= v <= 65535:
            logger.error("Invalid server port", port=v, valid_range="1024-65535")
            raise ValueError("Port must be between 1024 and 65535")
        return v

    model_config = {"env_prefix": "SERVER_", "case_sensitive": False, "extra": "ignore"}


class SecurityConfig(BaseSettings):
    """Token signing and session lifecycle configuration."""

    jwt_secret: str = Field(..., description="Access token signing secret (required)")
    jwt_refresh_secret: str = Field(..., description="Refresh token signing secret (required)")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    access_token_expiration: str = Field(default="15m", description="Access token lifetime, e.g. 15m")
    refresh_token_expiration: str = Field(default="7d", description="Refresh token lifetime, e.g. 7d")
    refresh_token_rotation: bool = Field(
        default=False,
        description="Issue a new refresh token on every refresh and revoke the old one",
    )
    refresh_sweep_interval_seconds: float = Field(
        default=3600.0, description="Seconds between expired refresh-token sweeps"
    )

    @field_validator("jwt_secret", "jwt_refresh_secret")
    @classmethod
    def validate_secret_length(cls, v: str) -> str:
        """Signing secrets must be long enough for HMAC."""
        if len(v) < 16:
            logger.error("Signing secret validation failed - too short", length=len(v), minimum_length=16)
            raise ValueError("Signing secrets must be at least 16 characters")
        return v

    @field_validator("jwt_algorithm")
    @classmethod
    def validate_algorithm(cls, v: str) -> str:
        """Only HMAC algorithms are supported with shared secrets."""
        v_upper = v.upper()
        if v_upper not in ("HS256", "HS384", "HS512"):
            raise ValueError(f"JWT algorithm must be one of HS256, HS384, HS512, got '{v}'")
        return v_upper

    @field_validator("refresh_sweep_interval_seconds")
    @classmethod
    def validate_sweep_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Sweep interval must be positive")
        return v

    @model_validator(mode="after")
    def validate_distinct_secrets(self) -> "SecurityConfig":
        """Access and refresh tokens must be signed with different secrets."""
        if self.jwt_secret == self.jwt_refresh_secret:
            logger.error("Access and refresh signing secrets are identical")
            raise ValueError("jwt_secret and jwt_refresh_secret must differ")
        return self

    model_config = {"env_prefix": "TASKHUB_", "case_sensitive": False, "extra": "ignore"}


class RealtimeConfig(BaseSettings):
    """Real-time event channel limits."""

    persistence_timeout_seconds: float = Field(
        default=10.0, description="Upper bound on a persistence call made while handling an event"
    )
    max_message_size: int = Field(default=10 * 1024, description="Maximum inbound frame size in bytes")
    max_json_depth: int = Field(default=10, description="Maximum nesting depth of inbound JSON")
    max_string_length: int = Field(default=4000, description="Maximum length of any string in an inbound frame")
    max_messages_per_minute: int = Field(default=100, description="Per-connection inbound frame limit")
    message_window: int = Field(default=60, description="Rate-limit window in seconds")

    @field_validator(
        "max_message_size", "max_json_depth", "max_string_length", "max_messages_per_minute", "message_window"
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Real-time limits must be at least 1")
        return v

    @field_validator("persistence_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Persistence timeout must be positive")
        return v

    model_config = {"env_prefix": "REALTIME_", "case_sensitive": False, "extra": "ignore"}


class DatabaseConfig(BaseSettings):
    """Persistence backend configuration."""

    url: str = Field(default="memory://", description="Database URL or memory:// for the in-process store")
    pool_size: int = Field(default=5, description="Number of connections to maintain in pool")
    max_overflow: int = Field(default=10, description="Additional connections beyond pool_size")
    pool_timeout: int = Field(default=30, description="Seconds to wait for connection from pool")

    @field_validator("url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Accept the in-memory backend or an async SQLAlchemy URL."""
        if not v:
            raise ValueError("Database URL cannot be empty")
        if v.startswith("memory://"):
            return v
        if not (v.startswith("postgresql+asyncpg://") or v.startswith("sqlite+aiosqlite://")):
            logger.error(
                "Database URL validation failed - unsupported driver",
                url_preview=v.split("://", 1)[0],
            )
            raise ValueError("Database URL must be memory://, postgresql+asyncpg:// or sqlite+aiosqlite://")
        return v

    @field_validator("pool_size", "max_overflow", "pool_timeout")
    @classmethod
    def validate_pool_config(cls, v: int) -> int:
        """Validate pool configuration values are positive."""
        if v < 1:
            raise ValueError("Pool configuration values must be at least 1")
        return v

    @property
    def is_memory(self) -> bool:
        return self.url.startswith("memory://")

    model_config = {"env_prefix": "DATABASE_", "case_sensitive": False, "extra": "ignore"}


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    environment: str = Field(default="local", description="Logging environment")
    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="human", description="Log format")
    disable_logging: bool = Field(default=False, description="Disable all logging")

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate logging environment."""
        valid_environments = ["local", "unit_test", "e2e_test", "production"]
        if v not in valid_environments:
            logger.error("Invalid logging environment", environment=v, valid_environments=valid_environments)
            raise ValueError(f"Environment must be one of {valid_environments}, got '{v}'")
        return v

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}, got '{v}'")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = ["json", "human", "colored"]
        if v not in valid_formats:
            raise ValueError(f"Log format must be one of {valid_formats}, got '{v}'")
        return v

    model_config = {"env_prefix": "LOGGING_", "case_sensitive": False, "extra": "ignore"}


class CORSConfig(BaseSettings):
    """Cross-origin resource sharing configuration."""

    allow_origins: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"],
        description="Origins permitted to access the TaskHub API",
    )
    allow_credentials: bool = Field(default=True, description="Whether credentialed requests are accepted")
    allow_methods: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        description="HTTP methods permitted by CORS responses",
    )
    allow_headers: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["Content-Type", "Authorization", "X-Requested-With", "Accept"],
        description="Request headers permitted by CORS responses",
    )
    max_age: int = Field(default=600, description="Seconds browsers may cache CORS preflight responses")

    @field_validator("allow_origins", "allow_headers", mode="before")
    @classmethod
    def parse_list(cls, value: object) -> list[str]:
        items = _parse_env_list(value)
        if not items:
            raise ValueError("At least one entry must be provided")
        return items

    @field_validator("allow_methods", mode="before")
    @classmethod
    def parse_allow_methods(cls, value: object) -> list[str]:
        return [method.upper() for method in _parse_env_list(value)]

    @field_validator("max_age")
    @classmethod
    def validate_max_age(cls, value: int) -> int:
        if value < 0:
            raise ValueError("max_age must be non-negative")
        return value

    model_config = {"env_prefix": "CORS_", "case_sensitive": False, "extra": "ignore"}


class AppConfig(BaseSettings):
    """
    Composite application configuration.

    Access via get_config().
    """

    server: ServerConfig = Field(default_factory=ServerConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)  # type: ignore[arg-type]
    realtime: RealtimeConfig = Field(default_factory=RealtimeConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    cors: CORSConfig = Field(default_factory=CORSConfig)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "case_sensitive": False, "extra": "ignore"}

    def describe(self) -> dict[str, Any]:
        """Non-secret summary for startup logging."""
        return {
            "host": self.server.host,
            "port": self.server.port,
            "database_backend": "memory" if self.database.is_memory else self.database.url.split("://", 1)[0],
            "access_expiration": self.security.access_token_expiration,
            "refresh_expiration": self.security.refresh_token_expiration,
            "refresh_rotation": self.security.refresh_token_rotation,
            "environment": self.logging.environment,
        }
