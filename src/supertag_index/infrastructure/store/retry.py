"""Retry logic for SQLite lock contention."""

import logging
import random
import sqlite3
import time
from typing import Callable, Optional, TypeVar

from supertag_index.core.config import RetryConfig

from .models import DatabaseLockedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

LOCK_ERROR_MARKERS = ("database is locked", "busy")


def is_lock_error(error: BaseException) -> bool:
    """True for SQLite errors caused by another connection holding a lock."""
    if not isinstance(error, sqlite3.OperationalError):
        return False
    message = str(error).lower()
    return any(marker in message for marker in LOCK_ERROR_MARKERS)


def compute_delay(
    attempt: int,
    config: RetryConfig,
    rand: Callable[[], float] = random.random,
) -> float:
    """Backoff delay in seconds for a zero-based attempt number."""
    delay = config.base_delay * (2 ** attempt) + rand() * config.jitter
    return min(delay, config.max_delay)


def with_db_retry(
    operation: Callable[[], T],
    config: Optional[RetryConfig] = None,
    context: str = "",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Execute a database operation, retrying on lock contention.

    ``config.max_retries`` is the total number of attempts. Errors that are
    not lock errors propagate immediately.

    Args:
        operation: Callable to execute
        config: Retry configuration
        context: Label used in log messages
        sleep: Sleep function, replaceable in tests

    Returns:
        Result of the operation

    Raises:
        DatabaseLockedError: If every attempt failed with a lock error
    """
    config = config or RetryConfig()
    attempts = max(config.max_retries, 1)
    label = context or "database operation"
    last_error: Optional[Exception] = None

    for attempt in range(attempts):
        try:
            return operation()
        except sqlite3.OperationalError as e:
            if not is_lock_error(e):
                raise
            last_error = e

            if attempt == attempts - 1:
                logger.error(f"{label}: database still locked after {attempts} attempts: {e}")
                raise DatabaseLockedError(
                    f"{label} failed after {attempts} attempts: {e}",
                    attempts=attempts,
                    context=context,
                ) from e

            delay = compute_delay(attempt, config)
            logger.warning(
                f"{label}: attempt {attempt + 1} hit a locked database. "
                f"Retrying in {delay:.2f}s..."
            )
            sleep(delay)

    raise DatabaseLockedError(f"Unexpected retry loop exit: {last_error}", context=context)
