import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import StorageUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    """True for failures worth retrying on a read: lost connections, timeouts, pool exhaustion."""
    if isinstance(exc, (OperationalError, InterfaceError, PoolTimeoutError, asyncio.TimeoutError)):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


async def retry_read(
    db: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    description: str,
    attempts: int | None = None,
    backoff_seconds: float | None = None,
) -> T:
    """
    Run a read-only storage operation with bounded retries and exponential backoff.

    Only read paths go through here. Writes are never retried blindly,
    see AppointmentLedger.insert_appointment_if_no_overlap.

    Raises:
        StorageUnavailable: once every attempt has failed with a transient error.
    """
    attempts = attempts if attempts is not None else settings.STORAGE_READ_RETRIES
    delay = backoff_seconds if backoff_seconds is not None else settings.STORAGE_RETRY_BACKOFF_SECONDS

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Exception as exc:
            if not is_transient(exc):
                raise
            if attempt == attempts:
                logger.error("%s failed after %d attempts: %s", description, attempts, exc)
                raise StorageUnavailable(f"{description} is temporarily unavailable") from exc

            logger.warning("%s failed (attempt %d/%d), retrying in %.2fs: %s",
                           description, attempt, attempts, delay, exc)
            # The failed transaction is unusable until rolled back
            await db.rollback()
            await asyncio.sleep(delay)
            delay *= 2

    raise StorageUnavailable(f"{description} is temporarily unavailable")
