"""
Instance override registry.

Overrides may only be edited while their instance is idle and outside any
batch, so a running migration never sees its inputs change underneath it.
"""

from __future__ import annotations

from sqlalchemy import select

from migration_manager.core.exceptions import (
    ConflictError,
    ForeignKeyViolationError,
    InvalidStateError,
)
from migration_manager.core.models import InstanceOverrideRow, InstanceRow
from migration_manager.core.registry.base import Registry, utcnow
from migration_manager.core.registry.convert import instance_from_row, override_from_row
from migration_manager.core.registry.instances import InstanceKey
from migration_manager.core.schemas import InstanceOverride
from migration_manager.core.transaction import Transaction


class InstanceOverrideRegistry(Registry):

    async def _check_instance(self, tx: Transaction, uuid: InstanceKey, action: str) -> None:
        row = await self._one_or_none(tx, select(InstanceRow).where(InstanceRow.uuid == str(uuid)))
        if row is None:
            raise ForeignKeyViolationError(
                f"Cannot {action} override: instance '{uuid}' does not exist"
            )

        instance = instance_from_row(row)
        if instance.is_assigned() or not instance.can_be_modified():
            raise InvalidStateError(
                f"Cannot {action} override for instance '{uuid}': Instance is assigned to a batch or migrating"
            )

    async def _get_row(self, tx: Transaction, uuid: InstanceKey) -> InstanceOverrideRow:
        return await self._one(
            tx,
            select(InstanceOverrideRow).where(InstanceOverrideRow.uuid == str(uuid)),
            f"Override for instance '{uuid}' not found",
        )

    async def get_by_uuid(self, tx: Transaction, uuid: InstanceKey) -> InstanceOverride:
        return override_from_row(await self._get_row(tx, uuid))

    async def list(self, tx: Transaction) -> list[InstanceOverride]:
        rows = await self._all(tx, select(InstanceOverrideRow).order_by(InstanceOverrideRow.uuid))
        return [override_from_row(row) for row in rows]

    async def create(self, tx: Transaction, override: InstanceOverride) -> InstanceOverride:
        await self._check_instance(tx, override.uuid, "create")

        if await self._count(tx, InstanceOverrideRow, InstanceOverrideRow.uuid == str(override.uuid)):
            raise ConflictError(f"Override for instance '{override.uuid}' already exists")

        row = InstanceOverrideRow(
            uuid=str(override.uuid),
            last_update=utcnow(),
            comment=override.comment,
            number_cpus=override.number_cpus,
            memory_in_bytes=override.memory_in_bytes,
            disable_migration=override.disable_migration,
        )
        tx.session.add(row)
        await self._flush(tx, f"Override for instance '{override.uuid}'")

        self.logger.info(
            "Instance override created",
            uuid=row.uuid,
            disable_migration=row.disable_migration,
        )
        return override_from_row(row)

    async def update(self, tx: Transaction, override: InstanceOverride) -> InstanceOverride:
        await self._check_instance(tx, override.uuid, "update")
        row = await self._get_row(tx, override.uuid)

        row.last_update = utcnow()
        row.comment = override.comment
        row.number_cpus = override.number_cpus
        row.memory_in_bytes = override.memory_in_bytes
        row.disable_migration = override.disable_migration
        await self._flush(tx, f"Override for instance '{override.uuid}'")

        self.logger.info("Instance override updated", uuid=row.uuid)
        return override_from_row(row)

    async def delete(self, tx: Transaction, uuid: InstanceKey) -> None:
        await self._check_instance(tx, uuid, "delete")
        row = await self._get_row(tx, uuid)

        await tx.session.delete(row)
        await self._flush(tx, f"Override for instance '{uuid}'")
        self.logger.info("Instance override deleted", uuid=str(uuid))
