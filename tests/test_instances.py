"""
Migration Manager - Instance Registry Tests
===========================================

Referential checks, migration guards and status consistency.
"""

from collections.abc import Callable
from uuid import uuid4

import pytest

from migration_manager.core.exceptions import (
    ConflictError,
    ForeignKeyViolationError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from migration_manager.core.models import BatchStatus, MigrationStatus
from migration_manager.core.registry import Registries
from migration_manager.core.schemas import Batch, CommonSource, Instance, InstanceOverride
from migration_manager.core.transaction import Transaction


# ==========================================================================
# Create Tests
# ==========================================================================

class TestCreateInstance:
    """Instance creation."""

    async def test_missing_source_then_success(self, tx: Transaction, registries: Registries):
        instance = Instance(uuid=uuid4(), inventory_path="/dc1/vm/db01", source_id=1)

        with pytest.raises(ForeignKeyViolationError) as excinfo:
            await registries.instances.create(tx, instance)
        assert isinstance(excinfo.value, ValidationError)

        source = await registries.sources.create(tx, CommonSource(name="vcenter01"))
        created = await registries.instances.create(
            tx, instance.model_copy(update={"source_id": source.id})
        )

        assert created.source_id == source.id
        assert created.batch_id is None
        assert created.target_id is None
        assert created.migration_status == MigrationStatus.NOT_ASSIGNED_BATCH

    async def test_name_derived_from_inventory_path(
        self,
        tx: Transaction,
        registries: Registries,
        make_instance: Callable[..., Instance],
    ):
        created = await registries.instances.create(tx, make_instance("/dc1/vm/My VM (old)"))
        assert created.name == "My-VM-old-"

    async def test_duplicate_uuid_conflicts(
        self,
        tx: Transaction,
        registries: Registries,
        make_instance: Callable[..., Instance],
    ):
        instance = make_instance()
        await registries.instances.create(tx, instance)

        with pytest.raises(ConflictError):
            await registries.instances.create(tx, instance)

    async def test_unknown_batch_rejected(
        self,
        tx: Transaction,
        registries: Registries,
        make_instance: Callable[..., Instance],
    ):
        with pytest.raises(ForeignKeyViolationError, match="batch"):
            await registries.instances.create(tx, make_instance(batch_id=7))

    async def test_unknown_target_rejected(
        self,
        tx: Transaction,
        registries: Registries,
        make_instance: Callable[..., Instance],
    ):
        with pytest.raises(ForeignKeyViolationError, match="target"):
            await registries.instances.create(tx, make_instance(target_id=7))

    async def test_status_derived_from_batch(
        self,
        tx: Transaction,
        registries: Registries,
        batch: Batch,
        make_instance: Callable[..., Instance],
    ):
        created = await registries.instances.create(
            tx,
            make_instance(batch_id=batch.id, migration_status=MigrationStatus.FINISHED),
        )
        assert created.migration_status == MigrationStatus.ASSIGNED_BATCH

    async def test_create_in_running_batch_fails(
        self,
        tx: Transaction,
        registries: Registries,
        batch: Batch,
        make_instance: Callable[..., Instance],
    ):
        await registries.batches.update_status(tx, batch.name, BatchStatus.RUNNING)
        instance = make_instance(batch_id=batch.id)

        with pytest.raises(InvalidStateError, match=f"Batch '{batch.name}' is currently in a migration phase"):
            await registries.instances.create(tx, instance)

        with pytest.raises(NotFoundError):
            await registries.instances.get_by_uuid(tx, instance.uuid)

    async def test_hardware_round_trips(
        self,
        tx: Transaction,
        registries: Registries,
        make_instance: Callable[..., Instance],
    ):
        instance = make_instance()
        await registries.instances.create(tx, instance)

        fetched = await registries.instances.get_by_uuid(tx, instance.uuid)
        assert fetched.cpu == instance.cpu
        assert fetched.memory == instance.memory
        assert fetched.disks == instance.disks
        assert fetched.nics == instance.nics

    async def test_get_missing(self, tx: Transaction, registries: Registries):
        with pytest.raises(NotFoundError):
            await registries.instances.get_by_uuid(tx, uuid4())


# ==========================================================================
# Listing Tests
# ==========================================================================

class TestListInstances:
    """Filtered listings."""

    async def test_list_by_batch_and_unassigned(
        self,
        tx: Transaction,
        registries: Registries,
        batch: Batch,
        make_instance: Callable[..., Instance],
    ):
        assigned = await registries.instances.create(tx, make_instance("/dc1/vm/a", batch_id=batch.id))
        free = await registries.instances.create(tx, make_instance("/dc1/vm/b"))

        assert [i.uuid for i in await registries.instances.list_by_batch(tx, batch.id)] == [assigned.uuid]
        assert [i.uuid for i in await registries.instances.list_unassigned(tx)] == [free.uuid]
        assert len(await registries.instances.list(tx)) == 2
        assert [
            i.uuid for i in await registries.instances.list_by_status(tx, MigrationStatus.ASSIGNED_BATCH)
        ] == [assigned.uuid]


# ==========================================================================
# Update Tests
# ==========================================================================

class TestUpdateInstance:
    """Updates are blocked while migrating or while the batch is running."""

    async def test_update_sets_manual_timestamp(
        self,
        tx: Transaction,
        registries: Registries,
        make_instance: Callable[..., Instance],
    ):
        created = await registries.instances.create(tx, make_instance())
        assert created.last_manual_update is None

        updated = await registries.instances.update(
            tx, created.model_copy(update={"annotation": "owner: ops"})
        )

        assert updated.annotation == "owner: ops"
        assert updated.last_manual_update is not None

    async def test_update_leaves_assignment_alone(
        self,
        tx: Transaction,
        registries: Registries,
        batch: Batch,
        make_instance: Callable[..., Instance],
    ):
        created = await registries.instances.create(tx, make_instance(batch_id=batch.id))

        updated = await registries.instances.update(
            tx,
            created.model_copy(update={"batch_id": None, "migration_status": MigrationStatus.ERROR}),
        )

        assert updated.batch_id == batch.id
        assert updated.migration_status == MigrationStatus.ASSIGNED_BATCH

    async def test_update_while_migrating_fails(
        self,
        tx: Transaction,
        registries: Registries,
        batch: Batch,
        make_instance: Callable[..., Instance],
    ):
        created = await registries.instances.create(tx, make_instance(batch_id=batch.id))
        await registries.instances.update_status(tx, created.uuid, MigrationStatus.BACKGROUND_IMPORT)

        with pytest.raises(InvalidStateError, match="migration phase"):
            await registries.instances.update(tx, created)

    async def test_update_in_running_batch_fails(
        self,
        tx: Transaction,
        registries: Registries,
        batch: Batch,
        make_instance: Callable[..., Instance],
    ):
        created = await registries.instances.create(tx, make_instance(batch_id=batch.id))
        await registries.batches.update_status(tx, batch.name, BatchStatus.RUNNING)

        with pytest.raises(InvalidStateError, match=f"Assigned batch '{batch.name}'"):
            await registries.instances.update(tx, created)


# ==========================================================================
# Status Tests
# ==========================================================================

class TestUpdateStatus:
    """NotAssignedBatch if and only if there is no batch."""

    async def test_unassigned_instance_cannot_start_migrating(
        self,
        tx: Transaction,
        registries: Registries,
        make_instance: Callable[..., Instance],
    ):
        created = await registries.instances.create(tx, make_instance())

        with pytest.raises(InvalidStateError):
            await registries.instances.update_status(tx, created.uuid, MigrationStatus.CREATING)

    async def test_assigned_instance_cannot_be_marked_unassigned(
        self,
        tx: Transaction,
        registries: Registries,
        batch: Batch,
        make_instance: Callable[..., Instance],
    ):
        created = await registries.instances.create(tx, make_instance(batch_id=batch.id))

        with pytest.raises(InvalidStateError):
            await registries.instances.update_status(tx, created.uuid, MigrationStatus.NOT_ASSIGNED_BATCH)

    async def test_user_disabled_allowed_while_unassigned(
        self,
        tx: Transaction,
        registries: Registries,
        make_instance: Callable[..., Instance],
    ):
        created = await registries.instances.create(tx, make_instance())

        updated = await registries.instances.update_status(
            tx, created.uuid, MigrationStatus.USER_DISABLED_MIGRATION
        )
        assert updated.migration_status_message == "User disabled migration"

    async def test_assign_and_unassign(
        self,
        tx: Transaction,
        registries: Registries,
        batch: Batch,
        make_instance: Callable[..., Instance],
    ):
        created = await registries.instances.create(tx, make_instance())

        assigned = await registries.instances.assign(tx, created.uuid, batch.id)
        assert (assigned.batch_id, assigned.migration_status) == (batch.id, MigrationStatus.ASSIGNED_BATCH)

        released = await registries.instances.unassign(tx, created.uuid)
        assert (released.batch_id, released.migration_status) == (None, MigrationStatus.NOT_ASSIGNED_BATCH)

    async def test_migrating_instance_cannot_be_unassigned(
        self,
        tx: Transaction,
        registries: Registries,
        batch: Batch,
        make_instance: Callable[..., Instance],
    ):
        created = await registries.instances.create(tx, make_instance(batch_id=batch.id))
        await registries.instances.update_status(tx, created.uuid, MigrationStatus.BACKGROUND_IMPORT)

        with pytest.raises(InvalidStateError, match="Cannot unassign .* Currently in a migration phase"):
            await registries.instances.unassign(tx, created.uuid)
        with pytest.raises(InvalidStateError, match="Cannot assign .* Currently in a migration phase"):
            await registries.instances.assign(tx, created.uuid, batch.id)

        kept = await registries.instances.get_by_uuid(tx, created.uuid)
        assert (kept.batch_id, kept.migration_status) == (batch.id, MigrationStatus.BACKGROUND_IMPORT)

    async def test_assign_to_running_batch_fails(
        self,
        tx: Transaction,
        registries: Registries,
        batch: Batch,
        make_instance: Callable[..., Instance],
    ):
        created = await registries.instances.create(tx, make_instance())
        await registries.batches.update_status(tx, batch.name, BatchStatus.RUNNING)

        with pytest.raises(InvalidStateError, match=f"Batch '{batch.name}' is currently in a migration phase"):
            await registries.instances.assign(tx, created.uuid, batch.id)

        assert (await registries.instances.get_by_uuid(tx, created.uuid)).batch_id is None


# ==========================================================================
# Delete Tests
# ==========================================================================

class TestDeleteInstance:
    """Deletion and override cascade."""

    async def test_delete_cascades_override(
        self,
        tx: Transaction,
        registries: Registries,
        make_instance: Callable[..., Instance],
    ):
        created = await registries.instances.create(tx, make_instance())
        await registries.overrides.create(tx, InstanceOverride(uuid=created.uuid, comment="keep 2 cpus"))

        await registries.instances.delete(tx, created.uuid)

        with pytest.raises(NotFoundError):
            await registries.instances.get_by_uuid(tx, created.uuid)
        with pytest.raises(NotFoundError):
            await registries.overrides.get_by_uuid(tx, created.uuid)

        # The override cannot come back without its instance
        with pytest.raises(ForeignKeyViolationError):
            await registries.overrides.create(tx, InstanceOverride(uuid=created.uuid))

    async def test_delete_while_migrating_fails(
        self,
        tx: Transaction,
        registries: Registries,
        batch: Batch,
        make_instance: Callable[..., Instance],
    ):
        created = await registries.instances.create(tx, make_instance(batch_id=batch.id))
        await registries.instances.update_status(tx, created.uuid, MigrationStatus.FINAL_IMPORT)

        with pytest.raises(InvalidStateError):
            await registries.instances.delete(tx, created.uuid)

        assert (await registries.instances.get_by_uuid(tx, created.uuid)).uuid == created.uuid

    async def test_delete_assigned_idle_instance(
        self,
        tx: Transaction,
        registries: Registries,
        batch: Batch,
        make_instance: Callable[..., Instance],
    ):
        created = await registries.instances.create(tx, make_instance(batch_id=batch.id))

        await registries.instances.delete(tx, created.uuid)

        assert await registries.instances.list_by_batch(tx, batch.id) == []
