"""
Migration Manager - Transaction Boundary
========================================

Explicit transaction handles threaded through every registry and
reconciler call. Calls made with the same Transaction observe each other's
uncommitted writes; a fresh Transaction runs on its own connection and only
sees committed data.
"""

from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, TypeVar
from uuid import uuid4

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from migration_manager.core.exceptions import InvalidStateError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class Transaction:
    """
    Handle for one unit of work.

    Registries only ever flush through ``session``; committing or rolling
    back is the job of whoever called ``TransactionManager.begin()``.
    """

    def __init__(self, session: AsyncSession):
        self.id = uuid4().hex[:8]
        self._session = session
        self._finished = False

    @property
    def session(self) -> AsyncSession:
        if self._finished:
            raise InvalidStateError(f"Transaction {self.id} has already been committed or rolled back")
        return self._session

    @property
    def is_active(self) -> bool:
        return not self._finished

    async def commit(self) -> None:
        session = self.session
        try:
            await session.commit()
        finally:
            self._finished = True
            await session.close()
        logger.debug("Transaction committed", transaction=self.id)

    async def rollback(self) -> None:
        if self._finished:
            return
        try:
            await self._session.rollback()
        finally:
            self._finished = True
            await self._session.close()
        logger.debug("Transaction rolled back", transaction=self.id)

    async def close(self) -> None:
        """Release the handle, discarding any uncommitted work."""
        await self.rollback()


class TransactionManager:
    """Opens transactions against the process-wide session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def begin(self) -> Transaction:
        tx = Transaction(self._session_factory())
        logger.debug("Transaction started", transaction=tx.id)
        return tx

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[Transaction, None]:
        """
        Commit on success, roll back on any exception.

        Usage:
            async with manager.transaction() as tx:
                await batches.create(tx, batch)
        """
        tx = await self.begin()
        try:
            yield tx
            if tx.is_active:
                await tx.commit()
        except Exception:
            await tx.rollback()
            raise

    async def run(
        self,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """Run ``fn(tx, *args, **kwargs)`` inside its own transaction."""
        async with self.transaction() as tx:
            return await fn(tx, *args, **kwargs)
