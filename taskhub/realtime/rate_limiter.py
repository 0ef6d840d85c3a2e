"""
Per-connection inbound message rate limiting.
"""

import time
from typing import Any

from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class RateLimiter:
    """
    Sliding-window limiter keyed by connection id.

    Each connection may send `max_messages_per_minute` frames within any
    `message_window` seconds.
    """

    def __init__(self, max_messages_per_minute: int = 100, message_window: int = 60) -> None:
        self.message_attempts: dict[str, list[float]] = {}
        self.max_messages_per_minute = max_messages_per_minute
        self.message_window = message_window

    def check_message_rate_limit(self, connection_id: str) -> bool:
        """
        Record an inbound frame and report whether it is within the limit.

        Returns:
            bool: True if allowed, False if the limit is exceeded
        """
        current_time = time.time()
        attempts = [
            attempt_time
            for attempt_time in self.message_attempts.get(connection_id, [])
            if current_time - attempt_time < self.message_window
        ]

        if len(attempts) >= self.max_messages_per_minute:
            self.message_attempts[connection_id] = attempts
            logger.warning(
                "Message rate limit exceeded",
                connection_id=connection_id,
                attempts=len(attempts),
                max_attempts=self.max_messages_per_minute,
            )
            return False

        attempts.append(current_time)
        self.message_attempts[connection_id] = attempts
        return True

    def get_message_rate_limit_info(self, connection_id: str) -> dict[str, Any]:
        current_time = time.time()
        recent = [t for t in self.message_attempts.get(connection_id, []) if current_time - t < self.message_window]
        return {
            "attempts": len(recent),
            "max_attempts": self.max_messages_per_minute,
            "window_seconds": self.message_window,
            "attempts_remaining": max(0, self.max_messages_per_minute - len(recent)),
            "reset_time": min(recent) + self.message_window if recent else 0,
        }

    def remove_connection_message_data(self, connection_id: str) -> None:
        """Forget a closed connection."""
        self.message_attempts.pop(connection_id, None)
