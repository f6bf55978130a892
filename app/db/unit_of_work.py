"""
Unit of Work - commit-or-rollback with bounded retries on write conflicts.

A unit of work is an async callable that performs all reads and writes of one
business operation on a session without committing. It is re-run from scratch
when PostgreSQL aborts it with a serialization failure or a deadlock.
"""

from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.exceptions import PersistenceConflictError
from app.observability.metrics import metrics

logger = get_logger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})


def is_retryable_conflict(error: DBAPIError) -> bool:
    """True when the driver error is a serialization failure or deadlock."""
    orig = error.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code in RETRYABLE_SQLSTATES


async def run_in_transaction(
    session: AsyncSession,
    work: Callable[[], Awaitable[T]],
    *,
    operation: str,
    max_attempts: int,
) -> T:
    """
    Run work and commit, retrying the whole unit on write conflicts.

    Any other error rolls back and propagates unchanged.

    Raises:
        PersistenceConflictError: Still conflicting after max_attempts
    """
    for attempt in range(1, max_attempts + 1):
        try:
            result = await work()
            await session.commit()
            return result
        except DBAPIError as e:
            await session.rollback()
            if not is_retryable_conflict(e):
                raise
            metrics.record_retry(operation)
            logger.warning(
                "unit_of_work_conflict",
                operation=operation,
                attempt=attempt,
                max_attempts=max_attempts,
            )
        except BaseException:
            await session.rollback()
            raise

    metrics.record_error("PersistenceConflictError", operation)
    raise PersistenceConflictError(operation, max_attempts)
