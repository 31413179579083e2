"""
Migration Manager - Application
===============================

Wires the store, the registries and the reconciler together.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from migration_manager.core.config import settings
from migration_manager.core.database import (
    AsyncSessionLocal,
    close_db,
    create_session_factory,
    engine as default_engine,
    init_db,
)
from migration_manager.core.logging import configure_logging
from migration_manager.core.reconciler import AssignmentReconciler, ReconcileResult
from migration_manager.core.registry import Registries
from migration_manager.core.transaction import Transaction, TransactionManager

logger = structlog.get_logger()


class MigrationManager:
    """
    Entry point for callers outside the core.

    Registries and the reconciler take an explicit Transaction; the
    ``reconcile_*`` helpers open and commit their own.
    """

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self.transactions = TransactionManager(session_factory or AsyncSessionLocal)
        self.registries = Registries()
        self.reconciler = AssignmentReconciler(self.registries)

    def transaction(self):
        return self.transactions.transaction()

    async def reconcile_batch(self, name: str) -> ReconcileResult:
        """Reconcile one batch in its own transaction."""
        return await self.transactions.run(self._reconcile_by_name, name)

    async def reconcile_all(self) -> dict[str, ReconcileResult]:
        return await self.transactions.run(self.reconciler.reconcile_all)

    async def _reconcile_by_name(self, tx: Transaction, name: str) -> ReconcileResult:
        batch = await self.registries.batches.get_by_name(tx, name)
        return await self.reconciler.reconcile(tx, batch)


# ==========================================================================
# Lifespan
# ==========================================================================

@asynccontextmanager
async def lifespan(bind: Optional[AsyncEngine] = None) -> AsyncGenerator[MigrationManager, None]:
    """
    Process lifespan.

    Startup:
    - Configure logging
    - Create tables if missing

    Shutdown:
    - Dispose the engine
    """
    configure_logging()
    bind = bind or default_engine

    logger.info("Starting Migration Manager", version=settings.APP_VERSION, environment=settings.ENVIRONMENT)
    await init_db(bind)
    logger.info("Database initialized")

    session_factory = AsyncSessionLocal if bind is default_engine else create_session_factory(bind)
    try:
        yield MigrationManager(session_factory)
    finally:
        logger.info("Shutting down Migration Manager")
        await close_db(bind)
        logger.info("Database connections closed")
