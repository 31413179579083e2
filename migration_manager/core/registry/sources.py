"""Source registry."""

from __future__ import annotations

from sqlalchemy import select

from migration_manager.core.exceptions import ForeignKeyViolationError, NotFoundError
from migration_manager.core.models import InstanceRow, SourceRow
from migration_manager.core.registry.base import Registry
from migration_manager.core.registry.convert import source_from_row, source_values
from migration_manager.core.schemas import Source
from migration_manager.core.transaction import Transaction


class SourceRegistry(Registry):
    """CRUD for migration sources (common and VMware)."""

    async def create(self, tx: Transaction, source: Source) -> Source:
        row = SourceRow(**source_values(source))
        tx.session.add(row)
        await self._flush(tx, f"Source '{source.name}'")

        self.logger.info("Source created", source=source.name, source_type=row.source_type.value)
        return source_from_row(row)

    async def get_by_name(self, tx: Transaction, name: str) -> Source:
        row = await self._one(
            tx,
            select(SourceRow).where(SourceRow.name == name),
            f"Source '{name}' not found",
        )
        return source_from_row(row)

    async def get_by_id(self, tx: Transaction, source_id: int) -> Source:
        row = await self._one(
            tx,
            select(SourceRow).where(SourceRow.id == source_id),
            f"Source with ID {source_id} not found",
        )
        return source_from_row(row)

    async def list(self, tx: Transaction) -> list[Source]:
        rows = await self._all(tx, select(SourceRow).order_by(SourceRow.name))
        return [source_from_row(row) for row in rows]

    async def update(self, tx: Transaction, source: Source) -> Source:
        source_id = source.database_id()
        row = await self._one(
            tx,
            select(SourceRow).where(SourceRow.id == source_id),
            f"Source with ID {source_id} not found",
        )

        for key, value in source_values(source).items():
            setattr(row, key, value)
        await self._flush(tx, f"Source '{source.name}'")

        self.logger.info("Source updated", source=source.name)
        return source_from_row(row)

    async def delete(self, tx: Transaction, name: str) -> None:
        row = await self._one_or_none(tx, select(SourceRow).where(SourceRow.name == name))
        if row is None:
            raise NotFoundError(f"Source '{name}' not found")

        referencing = await self._count(tx, InstanceRow, InstanceRow.source_id == row.id)
        if referencing:
            raise ForeignKeyViolationError(
                f"{referencing} instances refer to source '{name}', can't delete"
            )

        await tx.session.delete(row)
        await self._flush(tx, f"Source '{name}'")
        self.logger.info("Source deleted", source=name)
