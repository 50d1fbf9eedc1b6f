"""Retry policy for transactions that hit transient database failures.

Only whole transactions are retried: a multi-step transition is rolled back
and replayed from the start, never resumed half way.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from sqlalchemy.exc import DisconnectionError, OperationalError, InterfaceError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    before_sleep_log,
)

from assignment_engine.core.config import settings
from assignment_engine.core.errors import TransientStoreError

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (OperationalError, DisconnectionError, InterfaceError, asyncio.TimeoutError, ConnectionError)


@asynccontextmanager
async def transaction_scope(session: AsyncSession):
    """Roll back on any failure; surface connection-level failures as TransientStoreError."""
    try:
        yield session
    except TRANSIENT_ERRORS as exc:
        await _safe_rollback(session)
        raise TransientStoreError("Database temporarily unavailable", {"cause": exc.__class__.__name__}) from exc
    except BaseException:
        await _safe_rollback(session)
        raise


async def _safe_rollback(session: AsyncSession) -> None:
    try:
        await session.rollback()
    except TRANSIENT_ERRORS:
        # connection already gone; the transaction died with it
        logger.warning("Rollback failed on a dead connection", exc_info=True)


def transactional_retry(max_attempts: int | None = None):
    """Retry a coroutine that owns one complete transaction when it raises TransientStoreError."""
    return retry(
        retry=retry_if_exception_type(TransientStoreError),
        stop=stop_after_attempt(max_attempts or settings.STORE_RETRY_ATTEMPTS),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
