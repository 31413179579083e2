"""
Batch registry.

A batch may only be edited or removed while no migration work is running
for it. Deleting a batch releases its instances back to the unassigned pool
in the same transaction.
"""

from __future__ import annotations

from sqlalchemy import select

from migration_manager.core.criteria import compile_expression
from migration_manager.core.exceptions import (
    ForeignKeyViolationError,
    InvalidStateError,
    ValidationError,
)
from migration_manager.core.models import (
    INVALID_DATABASE_ID,
    BatchRow,
    BatchStatus,
    InstanceRow,
    MigrationStatus,
    TargetRow,
)
from migration_manager.core.registry.base import Registry
from migration_manager.core.registry.convert import batch_from_row, batch_values, instance_from_row
from migration_manager.core.schemas import Batch
from migration_manager.core.transaction import Transaction

_STARTABLE = (BatchStatus.DEFINED, BatchStatus.STOPPED, BatchStatus.ERROR)
_STOPPABLE = (BatchStatus.QUEUED, BatchStatus.RUNNING)


class BatchRegistry(Registry):
    """CRUD and lifecycle guards for batches."""

    async def _validate(self, tx: Transaction, batch: Batch) -> None:
        if not batch.name:
            raise ValidationError("Batch name cannot be empty")

        # Malformed expressions are rejected here rather than on first reconcile
        compile_expression(batch.include_expression)

        start, end = batch.migration_window_start, batch.migration_window_end
        if start is not None and end is not None and end < start:
            raise ValidationError(
                f"Batch '{batch.name}': migration window ends before it starts"
            )

        if batch.target_id is not None:
            if not await self._count(tx, TargetRow, TargetRow.id == batch.target_id):
                raise ForeignKeyViolationError(
                    f"Batch '{batch.name}': target with ID {batch.target_id} does not exist"
                )

    async def _get_row_by_name(self, tx: Transaction, name: str) -> BatchRow:
        return await self._one(
            tx,
            select(BatchRow).where(BatchRow.name == name),
            f"Batch '{name}' not found",
        )

    # ==========================================================================
    # Lookups
    # ==========================================================================

    async def get_by_name(self, tx: Transaction, name: str) -> Batch:
        return batch_from_row(await self._get_row_by_name(tx, name))

    async def get_by_id(self, tx: Transaction, batch_id: int) -> Batch:
        row = await self._one(
            tx,
            select(BatchRow).where(BatchRow.id == batch_id),
            f"Batch with ID {batch_id} not found",
        )
        return batch_from_row(row)

    async def list(self, tx: Transaction) -> list[Batch]:
        rows = await self._all(tx, select(BatchRow).order_by(BatchRow.name))
        return [batch_from_row(row) for row in rows]

    async def list_by_status(self, tx: Transaction, status: BatchStatus) -> list[Batch]:
        rows = await self._all(
            tx,
            select(BatchRow).where(BatchRow.status == status).order_by(BatchRow.name),
        )
        return [batch_from_row(row) for row in rows]

    # ==========================================================================
    # Writes
    # ==========================================================================

    async def create(self, tx: Transaction, batch: Batch) -> Batch:
        """Store a new batch. Every batch starts out ``Defined``."""
        await self._validate(tx, batch)

        row = BatchRow(
            status=BatchStatus.DEFINED,
            status_message="",
            **batch_values(batch),
        )
        tx.session.add(row)
        await self._flush(tx, f"Batch '{batch.name}'")

        self.logger.info("Batch created", batch=row.name, batch_id=row.id)
        return batch_from_row(row)

    async def update(self, tx: Transaction, batch: Batch) -> Batch:
        """
        Update a batch's definition.

        The guard uses the stored status, not the one on ``batch``: a stale
        in-memory copy must not unlock a batch the executor has since started.
        """
        batch_id = batch.database_id()
        row = await self._one(
            tx,
            select(BatchRow).where(BatchRow.id == batch_id),
            f"Batch with ID {batch_id} not found",
        )

        if not batch_from_row(row).can_be_modified():
            raise InvalidStateError(
                f"Cannot update batch '{row.name}': Currently in a migration phase"
            )

        await self._validate(tx, batch)

        for key, value in batch_values(batch).items():
            setattr(row, key, value)
        await self._flush(tx, f"Batch '{batch.name}'")

        self.logger.info("Batch updated", batch=row.name, batch_id=row.id)
        return batch_from_row(row)

    async def update_status(
        self,
        tx: Transaction,
        name: str,
        status: BatchStatus,
        message: str = "",
    ) -> Batch:
        """Record a status change made by the migration executor."""
        row = await self._get_row_by_name(tx, name)
        row.status = status
        row.status_message = message
        await self._flush(tx, f"Batch '{name}'")

        self.logger.info("Batch status changed", batch=name, status=status.value)
        return batch_from_row(row)

    async def start(self, tx: Transaction, name: str) -> Batch:
        """Queue a batch for the migration executor."""
        return await self._transition(tx, name, "start", _STARTABLE, BatchStatus.QUEUED)

    async def stop(self, tx: Transaction, name: str) -> Batch:
        """Stop a queued or running batch."""
        return await self._transition(tx, name, "stop", _STOPPABLE, BatchStatus.STOPPED)

    async def _transition(
        self,
        tx: Transaction,
        name: str,
        action: str,
        allowed: tuple[BatchStatus, ...],
        status: BatchStatus,
    ) -> Batch:
        if not name:
            raise ValidationError("Batch name cannot be empty")

        row = await self._get_row_by_name(tx, name)
        if row.status not in allowed:
            raise InvalidStateError(
                f"Cannot {action} batch '{name}' in its current state '{row.status.value}'"
            )

        previous = row.status
        row.status = status
        row.status_message = status.value
        await self._flush(tx, f"Batch '{name}'")

        self.logger.info("Batch status changed", batch=name, previous=previous.value, status=status.value)
        return batch_from_row(row)

    async def delete(self, tx: Transaction, name: str) -> None:
        """
        Delete a batch and unassign its instances.

        Fails before writing anything if the batch is running or any of its
        instances is migrating.
        """
        row = await self._get_row_by_name(tx, name)

        if not batch_from_row(row).can_be_modified():
            raise InvalidStateError(
                f"Cannot delete batch '{name}': Currently in a migration phase"
            )

        instances = await self._all(tx, select(InstanceRow).where(InstanceRow.batch_id == row.id))
        migrating = [i.uuid for i in instances if instance_from_row(i).is_migrating()]
        if migrating:
            raise InvalidStateError(
                f"Cannot delete batch '{name}': At least one assigned instance is in a migration phase"
            )

        for instance in instances:
            instance.batch_id = INVALID_DATABASE_ID
            instance.migration_status = MigrationStatus.NOT_ASSIGNED_BATCH
            instance.migration_status_message = MigrationStatus.NOT_ASSIGNED_BATCH.description
        await self._flush(tx, f"Batch '{name}'")

        await tx.session.delete(row)
        await self._flush(tx, f"Batch '{name}'")

        self.logger.info("Batch deleted", batch=name, unassigned=len(instances))
