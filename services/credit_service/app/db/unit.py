from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..errors import StorageFailure
from ..metrics import ledger_storage_failure_total


@asynccontextmanager
async def atomic(session_factory: async_sessionmaker[AsyncSession], operation: str) -> AsyncIterator[AsyncSession]:
    """Run the body as one database transaction on a fresh session.

    Domain errors raised inside roll the unit back and propagate untouched;
    storage errors roll back and surface as a retryable ``StorageFailure``.
    """
    try:
        async with session_factory() as session:
            async with session.begin():
                yield session
    except SQLAlchemyError as exc:
        ledger_storage_failure_total.labels(operation=operation).inc()
        logger.error(f"ledger.storage_failure operation={operation} error={exc}")
        raise StorageFailure(operation) from exc
