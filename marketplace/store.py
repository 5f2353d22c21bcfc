"""
Marketplace service: store access helpers

The order and message stores are plain tables reached through raw SQL on an
`AsyncSession`. Every service wraps its store work in `guard()` so that a
database error or a slow database surfaces as a structured failure and the
session is rolled back before anything is published.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import StoreFailure, StoreUnavailable

logger = logging.getLogger(__name__)

_last_stamp = datetime.min.replace(tzinfo=timezone.utc)


def utcnow() -> datetime:
    """Current UTC time, strictly increasing within the process."""
    global _last_stamp
    now = datetime.now(timezone.utc)
    if now <= _last_stamp:
        now = _last_stamp + timedelta(microseconds=1)
    _last_stamp = now
    return now


def stamp(moment: datetime) -> str:
    # fixed width so that text ordering equals time ordering
    return moment.isoformat(timespec="microseconds")


@asynccontextmanager
async def guard(session: AsyncSession, timeout: float, operation: str):
    """
    Run a block of store calls under a deadline.

    - SQLAlchemyError → StoreFailure
    - deadline expiry → StoreUnavailable (retryable)
    """
    try:
        async with asyncio.timeout(timeout):
            yield
    except TimeoutError as e:
        logger.warning("Store timeout during %s after %.1fs", operation, timeout)
        await session.rollback()
        raise StoreUnavailable(operation) from e
    except SQLAlchemyError as e:
        logger.exception("Store failure during %s", operation)
        await session.rollback()
        raise StoreFailure(operation) from e
