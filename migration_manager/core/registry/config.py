"""Global key/value configuration store."""

from sqlalchemy import select

from migration_manager.core.models import ConfigRow
from migration_manager.core.registry.base import Registry
from migration_manager.core.transaction import Transaction


class ConfigRegistry(Registry):

    async def read_global_config(self, tx: Transaction) -> dict[str, str]:
        rows = await self._all(tx, select(ConfigRow).order_by(ConfigRow.key))
        return {row.key: row.value for row in rows}

    async def write_global_config(self, tx: Transaction, config: dict[str, str]) -> None:
        """Replace the whole configuration with ``config``."""
        existing = {row.key: row for row in await self._all(tx, select(ConfigRow))}

        for key, row in existing.items():
            if key not in config:
                await tx.session.delete(row)

        for key, value in config.items():
            row = existing.get(key)
            if row is None:
                tx.session.add(ConfigRow(key=key, value=str(value)))
            else:
                row.value = str(value)

        await self._flush(tx, "Config key")
        self.logger.info("Global config written", keys=sorted(config))
