"""Password strength rules applied at registration and password change."""

import re

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128

COMMON_PASSWORDS = frozenset(
    {
        "password",
        "password1",
        "password123",
        "123456",
        "12345678",
        "qwerty",
        "qwerty123",
        "admin",
        "admin123",
        "letmein",
        "welcome1",
    }
)


def password_strength_errors(password: str) -> list[str]:
    """
    Check a candidate password.

    Returns:
        list[str]: One message per failed rule; empty when the password is acceptable
    """
    errors = []
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if len(password) > MAX_PASSWORD_LENGTH:
        errors.append(f"Password must be at most {MAX_PASSWORD_LENGTH} characters long")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        errors.append("Password must contain at least one number")
    if password.lower() in COMMON_PASSWORDS:
        errors.append("Password is too common and easily guessable")
    return errors


def validate_password_strength(password: str) -> str:
    """
    Pydantic-friendly validator.

    Raises:
        ValueError: Listing every failed rule
    """
    errors = password_strength_errors(password)
    if errors:
        raise ValueError("; ".join(errors))
    return password
