"""Authentication: token lifecycle, refresh registry and request guards."""

from .durations import DEFAULT_ACCESS_LIFETIME, DEFAULT_REFRESH_LIFETIME, parse_duration
from .refresh_registry import RefreshTokenRecord, RefreshTokenRegistry
from .token_service import RefreshResult, TokenPair, TokenService

__all__ = [
    "DEFAULT_ACCESS_LIFETIME",
    "DEFAULT_REFRESH_LIFETIME",
    "RefreshResult",
    "RefreshTokenRecord",
    "RefreshTokenRegistry",
    "TokenPair",
    "TokenService",
    "parse_duration",
]
