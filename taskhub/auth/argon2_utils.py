"""
Argon2id password hashing utilities for TaskHub.

Parameters can be tuned via ARGON2_TIME_COST, ARGON2_MEMORY_COST,
ARGON2_PARALLELISM and ARGON2_HASH_LENGTH.
"""

import os

from argon2 import PasswordHasher, Type, exceptions

from ..exceptions import TaskHubError
from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)

TIME_COST = int(os.getenv("ARGON2_TIME_COST", "3"))
MEMORY_COST = int(os.getenv("ARGON2_MEMORY_COST", "65536"))  # 64MB
PARALLELISM = int(os.getenv("ARGON2_PARALLELISM", "1"))
HASH_LENGTH = int(os.getenv("ARGON2_HASH_LENGTH", "32"))

if not 1 <= TIME_COST <= 10:
    raise ValueError(f"ARGON2_TIME_COST must be between 1 and 10, got {TIME_COST}")
if not 1024 <= MEMORY_COST <= 1048576:
    raise ValueError(f"ARGON2_MEMORY_COST must be between 1024 and 1048576, got {MEMORY_COST}")
if not 1 <= PARALLELISM <= 16:
    raise ValueError(f"ARGON2_PARALLELISM must be between 1 and 16, got {PARALLELISM}")
if not 16 <= HASH_LENGTH <= 64:
    raise ValueError(f"ARGON2_HASH_LENGTH must be between 16 and 64, got {HASH_LENGTH}")

_default_hasher = PasswordHasher(
    type=Type.ID,
    time_cost=TIME_COST,
    memory_cost=MEMORY_COST,
    parallelism=PARALLELISM,
    hash_len=HASH_LENGTH,
)


def hash_password(password: str) -> str:
    """
    Hash a plaintext password using Argon2id.

    Raises:
        TaskHubError: If hashing fails
    """
    try:
        return _default_hasher.hash(password)
    except exceptions.HashingError as e:
        logger.error("Argon2 hashing error", error=str(e), error_type=type(e).__name__)
        raise TaskHubError(f"Failed to hash password: {e}", user_friendly="Password processing failed") from e


def verify_password(password: str, hashed: str | None) -> bool:
    """Verify a plaintext password against an Argon2 hash. Never raises on mismatch."""
    if not hashed:
        logger.debug("Password verification failed - empty hash")
        return False

    try:
        return _default_hasher.verify(hashed, password)
    except (exceptions.VerificationError, exceptions.InvalidHashError) as e:
        logger.debug("Password verification failed", error_type=type(e).__name__)
        return False


def needs_rehash(hashed: str) -> bool:
    """Check if a hash was produced with outdated parameters."""
    if not hashed.startswith("$argon2"):
        return True
    return _default_hasher.check_needs_rehash(hashed)
