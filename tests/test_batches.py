"""
Migration Manager - Batch Registry Tests
========================================

Lifecycle guards on batch update and delete.
"""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from migration_manager.core.exceptions import (
    ConflictError,
    ForeignKeyViolationError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
    NotPersistedError,
    ValidationError,
)
from migration_manager.core.models import BatchStatus, MigrationStatus
from migration_manager.core.registry import Registries
from migration_manager.core.schemas import Batch, CommonSource, IncusTarget, Instance
from migration_manager.core.transaction import Transaction, TransactionManager


# ==========================================================================
# Create Tests
# ==========================================================================

class TestCreateBatch:
    """Batch creation and validation."""

    async def test_create_assigns_id_and_defined_status(self, tx: Transaction, registries: Registries):
        batch = await registries.batches.create(
            tx, Batch(name="b1", status=BatchStatus.RUNNING, include_expression="true")
        )

        assert batch.id is not None
        assert batch.status == BatchStatus.DEFINED
        assert batch.target_id is None

    async def test_duplicate_name_conflicts(self, tx: Transaction, registries: Registries):
        await registries.batches.create(tx, Batch(name="b1"))

        with pytest.raises(ConflictError, match="already exists"):
            await registries.batches.create(tx, Batch(name="b1"))

    async def test_malformed_expression_rejected(self, tx: Transaction, registries: Registries):
        with pytest.raises(InvalidArgumentError):
            await registries.batches.create(tx, Batch(name="b1", include_expression="Name =="))

    async def test_window_end_before_start_rejected(self, tx: Transaction, registries: Registries):
        start = datetime(2026, 1, 10, tzinfo=timezone.utc)

        with pytest.raises(ValidationError, match="window"):
            await registries.batches.create(
                tx,
                Batch(
                    name="b1",
                    migration_window_start=start,
                    migration_window_end=start - timedelta(hours=1),
                ),
            )

    async def test_window_stored_as_utc(self, tx: Transaction, registries: Registries):
        start = datetime(2026, 1, 10, 12, tzinfo=timezone(timedelta(hours=2)))
        await registries.batches.create(
            tx, Batch(name="b1", migration_window_start=start, migration_window_end=start + timedelta(hours=4))
        )

        fetched = await registries.batches.get_by_name(tx, "b1")
        assert fetched.migration_window_start == start
        assert fetched.migration_window_start.utcoffset() == timedelta(0)

    async def test_unknown_target_rejected(self, tx: Transaction, registries: Registries):
        with pytest.raises(ForeignKeyViolationError):
            await registries.batches.create(tx, Batch(name="b1", target_id=42))

    async def test_target_reference_round_trips(self, tx: Transaction, registries: Registries):
        target = await registries.targets.create(
            tx, IncusTarget(name="incus01", endpoint="https://incus01:8443")
        )
        batch = await registries.batches.create(tx, Batch(name="b1", target_id=target.id))

        fetched = await registries.batches.get_by_name(tx, "b1")
        assert fetched.target_id == target.id
        assert fetched == batch


# ==========================================================================
# Lookup Tests
# ==========================================================================

class TestLookupBatch:
    """Lookups and listings."""

    async def test_get_missing(self, tx: Transaction, registries: Registries):
        with pytest.raises(NotFoundError):
            await registries.batches.get_by_name(tx, "nope")
        with pytest.raises(NotFoundError):
            await registries.batches.get_by_id(tx, 99)

    async def test_list_ordered_by_name(self, tx: Transaction, registries: Registries):
        for name in ("c", "a", "b"):
            await registries.batches.create(tx, Batch(name=name))

        assert [b.name for b in await registries.batches.list(tx)] == ["a", "b", "c"]

    async def test_list_by_status(self, tx: Transaction, registries: Registries):
        await registries.batches.create(tx, Batch(name="a"))
        await registries.batches.create(tx, Batch(name="b"))
        await registries.batches.update_status(tx, "b", BatchStatus.RUNNING, "started")

        running = await registries.batches.list_by_status(tx, BatchStatus.RUNNING)
        assert [b.name for b in running] == ["b"]
        assert running[0].status_message == "started"


# ==========================================================================
# Update Tests
# ==========================================================================

class TestUpdateBatch:
    """Updates are only allowed outside a migration phase."""

    async def test_update_requires_persisted_batch(self, tx: Transaction, registries: Registries):
        with pytest.raises(NotPersistedError):
            await registries.batches.update(tx, Batch(name="b1"))

    async def test_update_running_batch_fails(self, tx: Transaction, registries: Registries):
        batch = await registries.batches.create(tx, Batch(name="b1"))
        await registries.batches.update_status(tx, "b1", BatchStatus.RUNNING)

        # The in-memory copy still says Defined; the stored status wins
        with pytest.raises(InvalidStateError, match="Currently in a migration phase"):
            await registries.batches.update(tx, batch.model_copy(update={"storage_pool": "fast"}))

    @pytest.mark.parametrize(
        "status",
        [BatchStatus.DEFINED, BatchStatus.FINISHED, BatchStatus.ERROR],
    )
    async def test_update_modifiable_batch_succeeds(
        self,
        tx: Transaction,
        registries: Registries,
        status: BatchStatus,
    ):
        batch = await registries.batches.create(tx, Batch(name="b1"))
        await registries.batches.update_status(tx, "b1", status)

        updated = await registries.batches.update(
            tx,
            batch.model_copy(update={"storage_pool": "fast", "include_expression": 'OS == "Ubuntu"'}),
        )

        assert updated.storage_pool == "fast"
        assert updated.include_expression == 'OS == "Ubuntu"'
        # update never changes the status
        assert updated.status == status

    async def test_rename_to_existing_conflicts(self, tx: Transaction, registries: Registries):
        await registries.batches.create(tx, Batch(name="a"))
        b = await registries.batches.create(tx, Batch(name="b"))

        with pytest.raises(ConflictError):
            await registries.batches.update(tx, b.model_copy(update={"name": "a"}))


# ==========================================================================
# Delete Tests
# ==========================================================================

class TestDeleteBatch:
    """Deleting a batch releases its instances."""

    async def test_delete_unassigns_instances(
        self,
        tx: Transaction,
        registries: Registries,
        batch: Batch,
        make_instance: Callable[..., Instance],
    ):
        instance = await registries.instances.create(tx, make_instance(batch_id=batch.id))
        assert instance.migration_status == MigrationStatus.ASSIGNED_BATCH

        await registries.batches.delete(tx, batch.name)

        released = await registries.instances.get_by_uuid(tx, instance.uuid)
        assert released.batch_id is None
        assert released.migration_status == MigrationStatus.NOT_ASSIGNED_BATCH
        with pytest.raises(NotFoundError):
            await registries.batches.get_by_name(tx, batch.name)

    async def test_delete_running_batch_fails(self, tx: Transaction, registries: Registries, batch: Batch):
        await registries.batches.update_status(tx, batch.name, BatchStatus.RUNNING)

        with pytest.raises(InvalidStateError, match=f"Cannot delete batch '{batch.name}'"):
            await registries.batches.delete(tx, batch.name)

    async def test_delete_with_migrating_instance_fails_and_changes_nothing(
        self,
        transactions: TransactionManager,
        registries: Registries,
    ):
        # Set up in a committed transaction so the failed delete has something to roll back to
        async with transactions.transaction() as tx:
            source = await registries.sources.create(tx, CommonSource(name="src"))
            batch = await registries.batches.create(tx, Batch(name="wave-2"))
            idle = await registries.instances.create(
                tx, Instance(uuid=uuid4(), inventory_path="/dc1/vm/a", source_id=source.id, batch_id=batch.id)
            )
            busy = await registries.instances.create(
                tx, Instance(uuid=uuid4(), inventory_path="/dc1/vm/b", source_id=source.id, batch_id=batch.id)
            )
            await registries.instances.update_status(tx, busy.uuid, MigrationStatus.BACKGROUND_IMPORT)

        with pytest.raises(InvalidStateError, match="migration phase"):
            async with transactions.transaction() as tx:
                await registries.batches.delete(tx, "wave-2")

        async with transactions.transaction() as tx:
            assert (await registries.batches.get_by_name(tx, "wave-2")).id == batch.id
            for uuid, status in (
                (idle.uuid, MigrationStatus.ASSIGNED_BATCH),
                (busy.uuid, MigrationStatus.BACKGROUND_IMPORT),
            ):
                instance = await registries.instances.get_by_uuid(tx, uuid)
                assert instance.batch_id == batch.id
                assert instance.migration_status == status

    async def test_delete_missing(self, tx: Transaction, registries: Registries):
        with pytest.raises(NotFoundError):
            await registries.batches.delete(tx, "nope")


# ==========================================================================
# Start / Stop Tests
# ==========================================================================

class TestStartStopBatch:
    """Guarded lifecycle transitions."""

    @pytest.mark.parametrize(
        "status",
        [BatchStatus.DEFINED, BatchStatus.STOPPED, BatchStatus.ERROR],
    )
    async def test_start_queues_batch(
        self,
        tx: Transaction,
        registries: Registries,
        batch: Batch,
        status: BatchStatus,
    ):
        await registries.batches.update_status(tx, batch.name, status)

        started = await registries.batches.start(tx, batch.name)

        assert started.status == BatchStatus.QUEUED
        assert not started.can_be_modified()

    @pytest.mark.parametrize(
        "status",
        [BatchStatus.QUEUED, BatchStatus.RUNNING, BatchStatus.FINISHED],
    )
    async def test_start_rejected_from_other_states(
        self,
        tx: Transaction,
        registries: Registries,
        batch: Batch,
        status: BatchStatus,
    ):
        await registries.batches.update_status(tx, batch.name, status)

        with pytest.raises(InvalidStateError, match=f"current state '{status.value}'"):
            await registries.batches.start(tx, batch.name)

    @pytest.mark.parametrize("status", [BatchStatus.QUEUED, BatchStatus.RUNNING])
    async def test_stop(self, tx: Transaction, registries: Registries, batch: Batch, status: BatchStatus):
        await registries.batches.update_status(tx, batch.name, status)

        stopped = await registries.batches.stop(tx, batch.name)

        assert stopped.status == BatchStatus.STOPPED
        assert (await registries.batches.get_by_name(tx, batch.name)).status_message == "Stopped"

    async def test_stop_idle_batch_rejected(self, tx: Transaction, registries: Registries, batch: Batch):
        with pytest.raises(InvalidStateError, match="Cannot stop batch 'wave-1' in its current state 'Defined'"):
            await registries.batches.stop(tx, batch.name)

    async def test_stopped_batch_can_be_restarted(self, tx: Transaction, registries: Registries, batch: Batch):
        await registries.batches.start(tx, batch.name)
        await registries.batches.stop(tx, batch.name)

        assert (await registries.batches.start(tx, batch.name)).status == BatchStatus.QUEUED

    async def test_start_missing(self, tx: Transaction, registries: Registries):
        with pytest.raises(NotFoundError):
            await registries.batches.start(tx, "nope")
        with pytest.raises(ValidationError):
            await registries.batches.start(tx, "")
