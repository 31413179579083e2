"""
Migration Manager - Test Fixtures
=================================

Shared pytest fixtures for all tests.
"""

from collections.abc import AsyncGenerator, Callable
from typing import Any
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from migration_manager.core.database import close_db, create_engine, create_session_factory, init_db
from migration_manager.core.reconciler import AssignmentReconciler
from migration_manager.core.registry import Registries
from migration_manager.core.schemas import (
    Batch,
    Instance,
    InstanceCPUInfo,
    InstanceDiskInfo,
    InstanceMemoryInfo,
    InstanceNICInfo,
    Source,
    VMwareProperties,
    VMwareSource,
)
from migration_manager.core.transaction import Transaction, TransactionManager


# ==========================================================================
# Test Database Setup
# ==========================================================================

@pytest.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """
    File-backed SQLite database per test.

    A file rather than :memory: so separate transactions get separate
    connections and isolation can be observed.
    """
    test_engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    await init_db(test_engine)
    yield test_engine
    await close_db(test_engine)


@pytest.fixture
def transactions(engine: AsyncEngine) -> TransactionManager:
    return TransactionManager(create_session_factory(engine))


@pytest.fixture
async def tx(transactions: TransactionManager) -> AsyncGenerator[Transaction, None]:
    """A transaction left open for the test; rolled back afterwards."""
    transaction = await transactions.begin()
    yield transaction
    await transaction.close()


@pytest.fixture
def registries() -> Registries:
    return Registries()


@pytest.fixture
def reconciler(registries: Registries) -> AssignmentReconciler:
    return AssignmentReconciler(registries)


# ==========================================================================
# Entity Fixtures
# ==========================================================================

@pytest.fixture
async def source(tx: Transaction, registries: Registries) -> Source:
    """A VMware source every test instance can point at."""
    return await registries.sources.create(
        tx,
        VMwareSource(
            name="vcenter01",
            properties=VMwareProperties(
                endpoint="https://vcenter01.example.com",
                username="admin",
                password="secret",
            ),
        ),
    )


@pytest.fixture
def make_instance(source: Source) -> Callable[..., Instance]:
    """Factory for unsaved instances on the default source."""

    def _make(inventory_path: str = "/dc1/vm/web01", **overrides: Any) -> Instance:
        values: dict[str, Any] = {
            "uuid": uuid4(),
            "inventory_path": inventory_path,
            "source_id": source.id,
            "architecture": "x86_64",
            "os": "Ubuntu",
            "os_version": "22.04",
            "cpu": InstanceCPUInfo(number_cpus=4),
            "memory": InstanceMemoryInfo(memory_in_bytes=8 * 1024**3),
            "disks": [InstanceDiskInfo(name="disk0", size_in_bytes=40 * 1024**3)],
            "nics": [InstanceNICInfo(network="VM Network", hardware_address="00:50:56:01:02:03")],
        }
        values.update(overrides)
        return Instance(**values)

    return _make


@pytest.fixture
async def batch(tx: Transaction, registries: Registries) -> Batch:
    """A Defined batch adopting everything under /dc1/vm/."""
    return await registries.batches.create(
        tx,
        Batch(name="wave-1", include_expression='InventoryPath startsWith "/dc1/vm/"'),
    )
