"""Async database engine and session management.

Configures the SQLAlchemy async engine with connection pooling and provides
dependency injection for database sessions.
"""

import logging
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from credit_ledger.core.config import settings
from credit_ledger.core.errors import TransientStoreError

logger = logging.getLogger(__name__)

engine = create_async_engine(
    settings.database_url,
    echo=settings.environment == "development",
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that provides a database session."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def transient_store_errors(
    db: AsyncSession, operation: str
) -> AsyncIterator[None]:
    """Roll back and raise TransientStoreError on driver/connection failures.

    Integrity violations are not transient and propagate unchanged; ledger
    services handle the ones they expect (duplicate keys) themselves.

    Args:
        db: Session whose transaction is rolled back on failure.
        operation: Short label for the log line (e.g., "spend").

    Raises:
        TransientStoreError: On any DBAPIError other than IntegrityError.
    """
    try:
        yield
    except IntegrityError:
        raise
    except DBAPIError as e:
        await db.rollback()
        logger.exception("Ledger store failure during %s", operation)
        raise TransientStoreError() from e
