"""
Tests for the per-connection rate limiter.
"""

from unittest.mock import patch

from taskhub.realtime.rate_limiter import RateLimiter


class TestRateLimiter:
    """Test sliding-window limiting."""

    def test_within_limit(self):
        """Test that frames under the limit are allowed."""
        limiter = RateLimiter(max_messages_per_minute=3)
        assert all(limiter.check_message_rate_limit("c1") for _ in range(3))

    def test_over_limit(self):
        """Test that the frame after the limit is refused."""
        limiter = RateLimiter(max_messages_per_minute=2)
        limiter.check_message_rate_limit("c1")
        limiter.check_message_rate_limit("c1")
        assert limiter.check_message_rate_limit("c1") is False
        assert limiter.get_message_rate_limit_info("c1")["attempts_remaining"] == 0

    def test_connections_are_independent(self):
        """Test that one connection's usage does not affect another."""
        limiter = RateLimiter(max_messages_per_minute=1)
        assert limiter.check_message_rate_limit("c1") is True
        assert limiter.check_message_rate_limit("c2") is True

    def test_window_slides(self):
        """Test that old attempts expire out of the window."""
        limiter = RateLimiter(max_messages_per_minute=1, message_window=60)
        with patch("taskhub.realtime.rate_limiter.time.time", return_value=1000.0):
            assert limiter.check_message_rate_limit("c1") is True
            assert limiter.check_message_rate_limit("c1") is False
        with patch("taskhub.realtime.rate_limiter.time.time", return_value=1061.0):
            assert limiter.check_message_rate_limit("c1") is True

    def test_remove_connection(self):
        """Test that closing a connection forgets its history."""
        limiter = RateLimiter(max_messages_per_minute=1)
        limiter.check_message_rate_limit("c1")
        limiter.remove_connection_message_data("c1")
        assert limiter.check_message_rate_limit("c1") is True
        assert limiter.get_message_rate_limit_info("unknown")["attempts"] == 0
