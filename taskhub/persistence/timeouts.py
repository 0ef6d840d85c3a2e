"""Bounded waits on persistence calls."""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from ..exceptions import PersistenceUnavailableError

T = TypeVar("T")


async def bounded(awaitable: Awaitable[T], timeout: float, operation: str) -> T:
    """
    Await a persistence call for at most `timeout` seconds.

    Raises:
        PersistenceUnavailableError: On timeout (retryable)
    """
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except TimeoutError as e:
        raise PersistenceUnavailableError(
            f"Persistence call timed out: {operation}",
            operation=operation,
            details={"timeout_seconds": timeout},
        ) from e
