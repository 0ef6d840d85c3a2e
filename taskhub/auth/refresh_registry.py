"""
Process-local refresh-token registry.

Maps each issued refresh token to `{principal_id, expires_at}`. The registry
is constructed once by the application container and injected into the
TokenService; it is never module-level state. Entries are lost on restart.

All read-then-act sequences (look up, check expiry, delete) happen under one
lock so an explicit revoke, a failed refresh and the periodic sweep cannot
race on the same entry.
"""

import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from ..exceptions import InvalidRefreshTokenError
from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class RefreshTokenRecord:
    principal_id: int
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


def _parse_entry(raw: Any) -> RefreshTokenRecord:
    """Raises ValueError/TypeError/KeyError when the stored entry is unusable."""
    principal_id = raw["principal_id"]
    expires_at = raw["expires_at"]
    if isinstance(principal_id, bool) or not isinstance(principal_id, int):
        raise TypeError("principal_id must be an int")
    if not isinstance(expires_at, datetime) or expires_at.tzinfo is None:
        raise TypeError("expires_at must be an aware datetime")
    return RefreshTokenRecord(principal_id=principal_id, expires_at=expires_at)


class RefreshTokenRegistry:
    """Lock-guarded map of refresh token -> RefreshTokenRecord."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._entries: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, token: object) -> bool:
        with self._lock:
            return token in self._entries

    def now(self) -> datetime:
        return self._clock()

    def register(self, token: str, principal_id: int, expires_at: datetime) -> None:
        with self._lock:
            self._entries[token] = {"principal_id": principal_id, "expires_at": expires_at}
        logger.debug("Refresh token registered", principal_id=principal_id, expires_at=expires_at.isoformat())

    def lookup(self, token: str) -> RefreshTokenRecord:
        """
        Return the live record for a token.

        Absent, expired and unparseable entries all raise
        InvalidRefreshTokenError; expired and unparseable entries are removed
        in the same critical section that inspected them.
        """
        with self._lock:
            raw = self._entries.get(token)
            if raw is None:
                reason = "unknown"
            else:
                try:
                    record = _parse_entry(raw)
                except (KeyError, TypeError, ValueError):
                    del self._entries[token]
                    reason = "corrupt"
                else:
                    if not record.is_expired(self._clock()):
                        return record
                    del self._entries[token]
                    reason = "expired"

        logger.info("Refresh token lookup rejected", reason=reason)
        raise InvalidRefreshTokenError(reason=reason)

    def revoke(self, token: str) -> bool:
        """Remove a token. Returns False when it was already absent."""
        with self._lock:
            removed = self._entries.pop(token, None) is not None
        if removed:
            logger.info("Refresh token revoked")
        return removed

    def revoke_for_principal(self, principal_id: int) -> int:
        """Remove every token issued to the principal. Returns how many were removed."""
        with self._lock:
            owned = [
                token
                for token, raw in self._entries.items()
                if isinstance(raw, dict) and raw.get("principal_id") == principal_id
            ]
            for token in owned:
                del self._entries[token]
        logger.info("Refresh tokens revoked for principal", principal_id=principal_id, removed=len(owned))
        return len(owned)

    def sweep(self, now: datetime | None = None) -> int:
        """
        Delete every entry whose expiry has passed (or that cannot be parsed).

        Returns:
            int: Number of entries removed
        """
        cutoff = now or self._clock()
        with self._lock:
            stale = []
            for token, raw in self._entries.items():
                try:
                    if _parse_entry(raw).is_expired(cutoff):
                        stale.append(token)
                except (KeyError, TypeError, ValueError):
                    stale.append(token)
            for token in stale:
                del self._entries[token]
            remaining = len(self._entries)

        logger.info("Refresh token sweep completed", removed=len(stale), remaining=remaining)
        return len(stale)
