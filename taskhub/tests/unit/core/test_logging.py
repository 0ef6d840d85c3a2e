"""
Tests for structured logging helpers.
"""

from taskhub.structured_logging.enhanced_logging_config import (
    bind_request_context,
    clear_request_context,
    get_current_context,
    sanitize_sensitive_data,
)


def test_credentials_redacted():
    """Test that tokens, secrets and password hashes never reach a sink."""
    event = sanitize_sensitive_data(
        None,
        "info",
        {
            "event": "Login",
            "access_token": "abc",
            "password_hash": "$argon2id$...",
            "details": {"refresh_token": "def", "room_id": "task:1"},
            "principal_id": 1,
        },
    )
    assert event["access_token"] == "[REDACTED]"
    assert event["password_hash"] == "[REDACTED]"
    assert event["details"] == {"refresh_token": "[REDACTED]", "room_id": "task:1"}
    assert event["principal_id"] == 1


def test_request_context_binding():
    """Test binding and clearing connection context."""
    bind_request_context(user_id="1", connection_id="c-1")
    context = get_current_context()
    assert context["user_id"] == "1"
    assert context["connection_id"] == "c-1"
    assert context["correlation_id"]

    clear_request_context()
    assert get_current_context() == {}
