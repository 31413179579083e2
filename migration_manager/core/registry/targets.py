"""Target registry."""

from __future__ import annotations

from sqlalchemy import select

from migration_manager.core.exceptions import ForeignKeyViolationError, NotFoundError
from migration_manager.core.models import BatchRow, InstanceRow, TargetRow
from migration_manager.core.registry.base import Registry
from migration_manager.core.registry.convert import target_from_row, target_values
from migration_manager.core.schemas import Target
from migration_manager.core.transaction import Transaction


class TargetRegistry(Registry):
    """CRUD for migration targets (common and Incus)."""

    async def create(self, tx: Transaction, target: Target) -> Target:
        row = TargetRow(**target_values(target))
        tx.session.add(row)
        await self._flush(tx, f"Target '{target.name}'")

        self.logger.info("Target created", target=target.name, target_type=row.target_type.value)
        return target_from_row(row)

    async def get_by_name(self, tx: Transaction, name: str) -> Target:
        row = await self._one(
            tx,
            select(TargetRow).where(TargetRow.name == name),
            f"Target '{name}' not found",
        )
        return target_from_row(row)

    async def get_by_id(self, tx: Transaction, target_id: int) -> Target:
        row = await self._one(
            tx,
            select(TargetRow).where(TargetRow.id == target_id),
            f"Target with ID {target_id} not found",
        )
        return target_from_row(row)

    async def list(self, tx: Transaction) -> list[Target]:
        rows = await self._all(tx, select(TargetRow).order_by(TargetRow.name))
        return [target_from_row(row) for row in rows]

    async def update(self, tx: Transaction, target: Target) -> Target:
        target_id = target.database_id()
        row = await self._one(
            tx,
            select(TargetRow).where(TargetRow.id == target_id),
            f"Target with ID {target_id} not found",
        )

        for key, value in target_values(target).items():
            setattr(row, key, value)
        await self._flush(tx, f"Target '{target.name}'")

        self.logger.info("Target updated", target=target.name)
        return target_from_row(row)

    async def delete(self, tx: Transaction, name: str) -> None:
        row = await self._one_or_none(tx, select(TargetRow).where(TargetRow.name == name))
        if row is None:
            raise NotFoundError(f"Target '{name}' not found")

        instances = await self._count(tx, InstanceRow, InstanceRow.target_id == row.id)
        if instances:
            raise ForeignKeyViolationError(
                f"{instances} instances refer to target '{name}', can't delete"
            )

        batches = await self._count(tx, BatchRow, BatchRow.target_id == row.id)
        if batches:
            raise ForeignKeyViolationError(
                f"{batches} batches refer to target '{name}', can't delete"
            )

        await tx.session.delete(row)
        await self._flush(tx, f"Target '{name}'")
        self.logger.info("Target deleted", target=name)
