"""
Registry base class.

Registries never commit. They flush through the caller's Transaction so
later calls in the same transaction observe the write, and translate store
constraint failures into domain errors here.
"""

from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from sqlalchemy import Select, func, select
from sqlalchemy.exc import IntegrityError

from migration_manager.core.exceptions import NotFoundError, map_integrity_error
from migration_manager.core.transaction import Transaction


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Registry:
    """Shared helpers for the entity registries."""

    def __init__(self) -> None:
        self.logger = structlog.get_logger(type(self).__module__)

    async def _flush(self, tx: Transaction, entity: str) -> None:
        try:
            await tx.session.flush()
        except IntegrityError as e:
            mapped = map_integrity_error(e, entity)
            if mapped is e:
                raise
            raise mapped from e

    async def _one(self, tx: Transaction, stmt: Select, not_found: str) -> Any:
        result = await tx.session.execute(stmt)
        row = result.scalar_one_or_none()
        if row is None:
            raise NotFoundError(not_found)
        return row

    async def _one_or_none(self, tx: Transaction, stmt: Select) -> Optional[Any]:
        result = await tx.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _all(self, tx: Transaction, stmt: Select) -> list[Any]:
        result = await tx.session.execute(stmt)
        return list(result.scalars().all())

    async def _count(self, tx: Transaction, model: type, *criteria: Any) -> int:
        result = await tx.session.execute(
            select(func.count()).select_from(model).where(*criteria)
        )
        return int(result.scalar_one())
