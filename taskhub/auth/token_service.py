"""
Access and refresh token lifecycle.

Access tokens are stateless HS256 JWTs verified by signature and expiry
alone. Refresh tokens are JWTs signed with a separate secret and backed by
an entry in the injected RefreshTokenRegistry.
"""

import asyncio
import secrets
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

import jwt

from ..config.models import SecurityConfig
from ..exceptions import InvalidOrExpiredCredentialError, InvalidRefreshTokenError, UnauthenticatedError
from ..models import Principal
from ..structured_logging.enhanced_logging_config import get_logger
from .durations import DEFAULT_ACCESS_LIFETIME, DEFAULT_REFRESH_LIFETIME, parse_duration
from .refresh_registry import RefreshTokenRegistry

logger = get_logger(__name__)

ACCESS = "access"
REFRESH = "refresh"

PrincipalLookup = Callable[[int], Awaitable[Principal | None]]


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class RefreshResult:
    access_token: str
    refresh_token: str
    rotated: bool
    principal: Principal


class TokenService:
    """Issues, verifies, refreshes and revokes credentials."""

    def __init__(self, security: SecurityConfig, registry: RefreshTokenRegistry) -> None:
        self._access_secret = security.jwt_secret
        self._refresh_secret = security.jwt_refresh_secret
        self._algorithm = security.jwt_algorithm
        self.rotation_enabled = security.refresh_token_rotation
        self.registry = registry
        self.access_lifetime: timedelta = parse_duration(
            security.access_token_expiration, DEFAULT_ACCESS_LIFETIME, "access_token_expiration"
        )
        self.refresh_lifetime: timedelta = parse_duration(
            security.refresh_token_expiration, DEFAULT_REFRESH_LIFETIME, "refresh_token_expiration"
        )
        logger.info(
            "Token service initialized",
            algorithm=self._algorithm,
            access_lifetime_seconds=int(self.access_lifetime.total_seconds()),
            refresh_lifetime_seconds=int(self.refresh_lifetime.total_seconds()),
            rotation_enabled=self.rotation_enabled,
        )

    def _encode(self, principal_id: int, kind: str, lifetime: timedelta) -> tuple[str, datetime]:
        issued_at = self.registry.now()
        expires_at = issued_at + lifetime
        payload = {
            "sub": str(principal_id),
            "type": kind,
            "iat": issued_at,
            "exp": expires_at,
            "jti": secrets.token_hex(8),
        }
        secret = self._access_secret if kind == ACCESS else self._refresh_secret
        return jwt.encode(payload, secret, algorithm=self._algorithm), expires_at

    def issue_access_token(self, principal_id: int) -> str:
        token, _ = self._encode(principal_id, ACCESS, self.access_lifetime)
        logger.debug("Access token issued", principal_id=principal_id)
        return token

    def issue_refresh_token(self, principal_id: int) -> str:
        token, expires_at = self._encode(principal_id, REFRESH, self.refresh_lifetime)
        self.registry.register(token, principal_id, expires_at)
        return token

    def issue_token_pair(self, principal_id: int) -> TokenPair:
        return TokenPair(self.issue_access_token(principal_id), self.issue_refresh_token(principal_id))

    def _decode(self, token: str | None, kind: str) -> int:
        if token is None or not token.strip():
            raise UnauthenticatedError()

        secret = self._access_secret if kind == ACCESS else self._refresh_secret
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[self._algorithm],
                options={"require": ["exp", "sub", "type"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise InvalidOrExpiredCredentialError(reason="expired") from e
        except jwt.InvalidTokenError as e:
            logger.debug("Token decode failed", kind=kind, error=str(e))
            raise InvalidOrExpiredCredentialError(reason="invalid") from e

        if payload.get("type") != kind:
            raise InvalidOrExpiredCredentialError(reason="invalid", details={"expected_kind": kind})
        try:
            return int(payload["sub"])
        except (TypeError, ValueError) as e:
            raise InvalidOrExpiredCredentialError(reason="invalid") from e

    def verify_access_token(self, token: str | None) -> int:
        """
        Verify signature and expiry of an access token.

        The refresh registry is not consulted.

        Raises:
            UnauthenticatedError: No credential supplied
            InvalidOrExpiredCredentialError: Signature, expiry or claim failure
        """
        return self._decode(token, ACCESS)

    def verify_refresh_token(self, token: str | None) -> int:
        """Signature and expiry check for a refresh token; does not consult the registry."""
        return self._decode(token, REFRESH)

    async def refresh(self, refresh_token: str, principal_lookup: PrincipalLookup) -> RefreshResult:
        """
        Mint a new access token from a registered refresh token.

        The registry entry must exist and be unexpired, the signature must
        verify, the signed principal must match the entry, and the principal
        must still exist and be active. Any failure deletes the entry.

        The refresh token is reused unless rotation is enabled, in which case
        it is revoked and a replacement is returned.

        Raises:
            InvalidRefreshTokenError: On any of the failures above
        """
        if not refresh_token or not refresh_token.strip():
            raise InvalidRefreshTokenError(reason="missing")

        record = self.registry.lookup(refresh_token)

        try:
            signed_principal_id = self.verify_refresh_token(refresh_token)
        except InvalidOrExpiredCredentialError as e:
            self.registry.revoke(refresh_token)
            raise InvalidRefreshTokenError(reason=e.reason) from e

        if signed_principal_id != record.principal_id:
            self.registry.revoke(refresh_token)
            logger.warning(
                "Refresh token principal mismatch",
                signed_principal_id=signed_principal_id,
                registered_principal_id=record.principal_id,
            )
            raise InvalidRefreshTokenError(reason="principal_mismatch")

        principal = await principal_lookup(record.principal_id)
        if principal is None or not principal.is_active:
            self.registry.revoke(refresh_token)
            raise InvalidRefreshTokenError(reason="principal_unavailable")

        access_token = self.issue_access_token(principal.id)
        if self.rotation_enabled:
            self.registry.revoke(refresh_token)
            new_refresh_token = self.issue_refresh_token(principal.id)
            logger.info("Refresh token rotated", principal_id=principal.id)
            return RefreshResult(access_token, new_refresh_token, True, principal)

        logger.info("Access token refreshed", principal_id=principal.id)
        return RefreshResult(access_token, refresh_token, False, principal)

    def revoke(self, refresh_token: str) -> bool:
        """Idempotent logout."""
        return self.registry.revoke(refresh_token)

    def revoke_all(self, principal_id: int) -> int:
        return self.registry.revoke_for_principal(principal_id)

    def sweep_expired(self) -> int:
        return self.registry.sweep()

    async def run_sweep_loop(self, interval_seconds: float) -> None:
        """Sweep expired refresh tokens every interval until cancelled."""
        logger.info("Refresh token sweep loop started", interval_seconds=interval_seconds)
        try:
            while True:
                await asyncio.sleep(interval_seconds)
                self.sweep_expired()
        except asyncio.CancelledError:
            logger.info("Refresh token sweep loop stopped")
            raise
