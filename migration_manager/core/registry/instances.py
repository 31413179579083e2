"""
Instance registry.

Instances are keyed by the UUID their source reports. The registry keeps
``migration_status`` and ``batch_id`` consistent: an instance is
``NotAssignedBatch`` exactly when it has no batch (a user may still park an
unassigned instance in ``UserDisabledMigration``).
"""

from __future__ import annotations

from typing import Optional, Union
from uuid import UUID

from sqlalchemy import select

from migration_manager.core.exceptions import (
    ConflictError,
    ForeignKeyViolationError,
    InvalidStateError,
)
from migration_manager.core.models import (
    INVALID_DATABASE_ID,
    BatchRow,
    InstanceOverrideRow,
    InstanceRow,
    MigrationStatus,
    SourceRow,
    TargetRow,
    from_db_id,
)
from migration_manager.core.registry.base import Registry, utcnow
from migration_manager.core.registry.convert import (
    batch_from_row,
    instance_from_row,
    instance_values,
)
from migration_manager.core.schemas import Instance
from migration_manager.core.transaction import Transaction

InstanceKey = Union[UUID, str]

# Statuses an instance without a batch may carry.
_UNASSIGNED_STATUSES = (
    MigrationStatus.NOT_ASSIGNED_BATCH,
    MigrationStatus.USER_DISABLED_MIGRATION,
)


class InstanceRegistry(Registry):
    """CRUD, guards and batch assignment for instances."""

    # ==========================================================================
    # Lookups
    # ==========================================================================

    async def _get_row(self, tx: Transaction, uuid: InstanceKey) -> InstanceRow:
        return await self._one(
            tx,
            select(InstanceRow).where(InstanceRow.uuid == str(uuid)),
            f"Instance '{uuid}' not found",
        )

    async def get_by_uuid(self, tx: Transaction, uuid: InstanceKey) -> Instance:
        return instance_from_row(await self._get_row(tx, uuid))

    async def list(self, tx: Transaction) -> list[Instance]:
        rows = await self._all(tx, select(InstanceRow).order_by(InstanceRow.inventory_path))
        return [instance_from_row(row) for row in rows]

    async def list_by_batch(self, tx: Transaction, batch_id: int) -> list[Instance]:
        rows = await self._all(
            tx,
            select(InstanceRow)
            .where(InstanceRow.batch_id == batch_id)
            .order_by(InstanceRow.inventory_path),
        )
        return [instance_from_row(row) for row in rows]

    async def list_unassigned(self, tx: Transaction) -> list[Instance]:
        return await self.list_by_batch(tx, INVALID_DATABASE_ID)

    async def list_by_status(self, tx: Transaction, status: MigrationStatus) -> list[Instance]:
        rows = await self._all(
            tx,
            select(InstanceRow)
            .where(InstanceRow.migration_status == status)
            .order_by(InstanceRow.inventory_path),
        )
        return [instance_from_row(row) for row in rows]

    # ==========================================================================
    # Reference checks
    # ==========================================================================

    async def _check_references(self, tx: Transaction, instance: Instance) -> None:
        label = f"Instance '{instance.uuid}'"

        if not await self._count(tx, SourceRow, SourceRow.id == instance.source_id):
            raise ForeignKeyViolationError(
                f"{label}: source with ID {instance.source_id} does not exist"
            )

        if instance.target_id is not None:
            if not await self._count(tx, TargetRow, TargetRow.id == instance.target_id):
                raise ForeignKeyViolationError(
                    f"{label}: target with ID {instance.target_id} does not exist"
                )

        if instance.batch_id is not None:
            if not await self._count(tx, BatchRow, BatchRow.id == instance.batch_id):
                raise ForeignKeyViolationError(
                    f"{label}: batch with ID {instance.batch_id} does not exist"
                )

    async def _assigned_batch_row(self, tx: Transaction, row: InstanceRow) -> Optional[BatchRow]:
        batch_id = from_db_id(row.batch_id)
        if batch_id is None:
            return None
        return await self._one_or_none(tx, select(BatchRow).where(BatchRow.id == batch_id))

    async def _modifiable_batch_row(self, tx: Transaction, uuid: InstanceKey, batch_id: int) -> BatchRow:
        batch = await self._one_or_none(tx, select(BatchRow).where(BatchRow.id == batch_id))
        if batch is None:
            raise ForeignKeyViolationError(
                f"Instance '{uuid}': batch with ID {batch_id} does not exist"
            )
        if not batch_from_row(batch).can_be_modified():
            raise InvalidStateError(
                f"Cannot assign instance '{uuid}': Batch '{batch.name}' is currently in a migration phase"
            )
        return batch

    @staticmethod
    def _require_idle(row: InstanceRow, action: str) -> None:
        if instance_from_row(row).is_migrating():
            raise InvalidStateError(
                f"Cannot {action} instance '{row.uuid}': Currently in a migration phase"
            )

    # ==========================================================================
    # Writes
    # ==========================================================================

    async def create(self, tx: Transaction, instance: Instance) -> Instance:
        """
        Store a newly discovered instance.

        The status is derived from the batch reference; whatever status the
        caller supplied is ignored.
        """
        if await self._count(tx, InstanceRow, InstanceRow.uuid == str(instance.uuid)):
            raise ConflictError(f"Instance '{instance.uuid}' already exists")

        await self._check_references(tx, instance)
        if instance.batch_id is not None:
            await self._modifiable_batch_row(tx, instance.uuid, instance.batch_id)

        status = (
            MigrationStatus.ASSIGNED_BATCH
            if instance.batch_id is not None
            else MigrationStatus.NOT_ASSIGNED_BATCH
        )
        row = InstanceRow(
            uuid=str(instance.uuid),
            migration_status=status,
            migration_status_message=status.description,
            batch_id=INVALID_DATABASE_ID if instance.batch_id is None else instance.batch_id,
            last_manual_update=instance.last_manual_update,
            **instance_values(instance),
        )
        tx.session.add(row)
        await self._flush(tx, f"Instance '{instance.uuid}'")

        self.logger.info(
            "Instance created",
            uuid=row.uuid,
            inventory_path=row.inventory_path,
            status=status.value,
        )
        return instance_from_row(row)

    async def update(self, tx: Transaction, instance: Instance) -> Instance:
        """
        Update source-synced and user-editable fields.

        Batch membership and migration status are left alone; use
        assign/unassign and update_status for those.
        """
        row = await self._get_row(tx, instance.uuid)
        self._require_idle(row, "update")

        batch = await self._assigned_batch_row(tx, row)
        if batch is not None and not batch_from_row(batch).can_be_modified():
            raise InvalidStateError(
                f"Cannot update instance '{row.uuid}': Assigned batch '{batch.name}' is currently in a migration phase"
            )

        await self._check_references(tx, instance.model_copy(update={"batch_id": None}))

        for key, value in instance_values(instance).items():
            setattr(row, key, value)
        row.last_manual_update = utcnow()
        await self._flush(tx, f"Instance '{row.uuid}'")

        self.logger.info("Instance updated", uuid=row.uuid)
        return instance_from_row(row)

    async def update_status(
        self,
        tx: Transaction,
        uuid: InstanceKey,
        status: MigrationStatus,
        message: str = "",
    ) -> Instance:
        """Record a status reported by the migration executor."""
        row = await self._get_row(tx, uuid)
        assigned = row.batch_id != INVALID_DATABASE_ID

        if assigned and status == MigrationStatus.NOT_ASSIGNED_BATCH:
            raise InvalidStateError(
                f"Cannot set status of instance '{row.uuid}' to {status.value}: instance is assigned to a batch"
            )
        if not assigned and status not in _UNASSIGNED_STATUSES:
            raise InvalidStateError(
                f"Cannot set status of instance '{row.uuid}' to {status.value}: instance is not assigned to a batch"
            )

        row.migration_status = status
        row.migration_status_message = message or status.description
        await self._flush(tx, f"Instance '{row.uuid}'")

        self.logger.info("Instance status changed", uuid=row.uuid, status=status.value)
        return instance_from_row(row)

    async def assign(self, tx: Transaction, uuid: InstanceKey, batch_id: int) -> Instance:
        """Attach an idle instance to a batch that is not running."""
        row = await self._get_row(tx, uuid)
        self._require_idle(row, "assign")
        await self._modifiable_batch_row(tx, row.uuid, batch_id)

        row.batch_id = batch_id
        row.migration_status = MigrationStatus.ASSIGNED_BATCH
        row.migration_status_message = MigrationStatus.ASSIGNED_BATCH.description
        await self._flush(tx, f"Instance '{row.uuid}'")
        return instance_from_row(row)

    async def unassign(self, tx: Transaction, uuid: InstanceKey) -> Instance:
        row = await self._get_row(tx, uuid)
        self._require_idle(row, "unassign")

        row.batch_id = INVALID_DATABASE_ID
        row.migration_status = MigrationStatus.NOT_ASSIGNED_BATCH
        row.migration_status_message = MigrationStatus.NOT_ASSIGNED_BATCH.description
        await self._flush(tx, f"Instance '{row.uuid}'")
        return instance_from_row(row)

    async def delete(self, tx: Transaction, uuid: InstanceKey) -> None:
        """Delete an instance together with its override."""
        row = await self._get_row(tx, uuid)
        self._require_idle(row, "delete")

        override = await self._one_or_none(
            tx, select(InstanceOverrideRow).where(InstanceOverrideRow.uuid == row.uuid)
        )
        if override is not None:
            await tx.session.delete(override)
            await self._flush(tx, f"Override for instance '{row.uuid}'")

        key = row.uuid
        await tx.session.delete(row)
        await self._flush(tx, f"Instance '{key}'")
        self.logger.info("Instance deleted", uuid=key)

