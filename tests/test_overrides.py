"""
Migration Manager - Instance Override Tests
===========================================
"""

from collections.abc import Callable
from uuid import uuid4

import pytest

from migration_manager.core.exceptions import (
    ConflictError,
    ForeignKeyViolationError,
    InvalidStateError,
    NotFoundError,
)
from migration_manager.core.registry import Registries
from migration_manager.core.schemas import Batch, Instance, InstanceOverride
from migration_manager.core.transaction import Transaction


class TestInstanceOverrides:
    """Override CRUD and its guards."""

    async def test_create_and_update(
        self,
        tx: Transaction,
        registries: Registries,
        make_instance: Callable[..., Instance],
    ):
        instance = await registries.instances.create(tx, make_instance())

        created = await registries.overrides.create(
            tx, InstanceOverride(uuid=instance.uuid, number_cpus=2, comment="downsize")
        )
        assert created.last_update is not None

        updated = await registries.overrides.update(
            tx, created.model_copy(update={"disable_migration": True})
        )
        assert updated.disable_migration is True
        assert updated.comment == "downsize"
        assert (await registries.overrides.get_by_uuid(tx, instance.uuid)).disable_migration is True

    async def test_missing_instance(self, tx: Transaction, registries: Registries):
        with pytest.raises(ForeignKeyViolationError):
            await registries.overrides.create(tx, InstanceOverride(uuid=uuid4()))

    async def test_duplicate_conflicts(
        self,
        tx: Transaction,
        registries: Registries,
        make_instance: Callable[..., Instance],
    ):
        instance = await registries.instances.create(tx, make_instance())
        await registries.overrides.create(tx, InstanceOverride(uuid=instance.uuid))

        with pytest.raises(ConflictError):
            await registries.overrides.create(tx, InstanceOverride(uuid=instance.uuid))

    async def test_create_on_assigned_instance_fails(
        self,
        tx: Transaction,
        registries: Registries,
        batch: Batch,
        make_instance: Callable[..., Instance],
    ):
        instance = await registries.instances.create(tx, make_instance(batch_id=batch.id))

        with pytest.raises(InvalidStateError, match="assigned to a batch"):
            await registries.overrides.create(tx, InstanceOverride(uuid=instance.uuid))

    async def test_update_and_delete_blocked_once_assigned(
        self,
        tx: Transaction,
        registries: Registries,
        batch: Batch,
        make_instance: Callable[..., Instance],
    ):
        instance = await registries.instances.create(tx, make_instance())
        override = await registries.overrides.create(tx, InstanceOverride(uuid=instance.uuid))
        await registries.instances.assign(tx, instance.uuid, batch.id)

        with pytest.raises(InvalidStateError):
            await registries.overrides.update(tx, override)
        with pytest.raises(InvalidStateError):
            await registries.overrides.delete(tx, instance.uuid)

    async def test_delete(
        self,
        tx: Transaction,
        registries: Registries,
        make_instance: Callable[..., Instance],
    ):
        instance = await registries.instances.create(tx, make_instance())
        await registries.overrides.create(tx, InstanceOverride(uuid=instance.uuid))

        await registries.overrides.delete(tx, instance.uuid)

        with pytest.raises(NotFoundError):
            await registries.overrides.get_by_uuid(tx, instance.uuid)
        # The instance itself is untouched
        assert (await registries.instances.get_by_uuid(tx, instance.uuid)).uuid == instance.uuid
