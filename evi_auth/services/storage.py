"""Storage call guard - per-call timeout and error classification."""

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

from sqlalchemy.exc import SQLAlchemyError

from evi_auth.core.config import settings
from evi_auth.services.errors import StorageError, StorageTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def guarded(operation: str, awaitable: Awaitable[T], timeout: float | None = None) -> T:
    """Await a storage call under a time budget.

    Args:
        operation: Short name of the store operation, used in errors and logs
        awaitable: The query coroutine
        timeout: Seconds before giving up (default: STORAGE_TIMEOUT_SECONDS)

    Raises:
        StorageTimeoutError: The call did not finish in time (retryable)
        StorageError: The database raised or the connection failed
    """
    budget = timeout if timeout is not None else settings.storage_timeout_seconds
    try:
        return await asyncio.wait_for(awaitable, timeout=budget)
    except TimeoutError as e:
        logger.warning(f"Storage operation {operation} timed out after {budget}s")
        raise StorageTimeoutError(
            f"Storage operation {operation} timed out after {budget}s", operation=operation
        ) from e
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Storage operation {operation} failed: {type(e).__name__}: {e}")
        raise StorageError(f"Storage operation {operation} failed", operation=operation) from e
