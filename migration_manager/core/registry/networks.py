"""Network registry."""

from __future__ import annotations

from sqlalchemy import select

from migration_manager.core.models import NetworkRow
from migration_manager.core.registry.base import Registry
from migration_manager.core.registry.convert import network_from_row
from migration_manager.core.schemas import Network
from migration_manager.core.transaction import Transaction


class NetworkRegistry(Registry):

    async def create(self, tx: Transaction, network: Network) -> Network:
        row = NetworkRow(name=network.name, config=dict(network.config))
        tx.session.add(row)
        await self._flush(tx, f"Network '{network.name}'")

        self.logger.info("Network created", network=network.name)
        return network_from_row(row)

    async def get_by_name(self, tx: Transaction, name: str) -> Network:
        row = await self._one(
            tx,
            select(NetworkRow).where(NetworkRow.name == name),
            f"Network '{name}' not found",
        )
        return network_from_row(row)

    async def list(self, tx: Transaction) -> list[Network]:
        rows = await self._all(tx, select(NetworkRow).order_by(NetworkRow.name))
        return [network_from_row(row) for row in rows]

    async def update(self, tx: Transaction, network: Network) -> Network:
        network_id = network.database_id()
        row = await self._one(
            tx,
            select(NetworkRow).where(NetworkRow.id == network_id),
            f"Network with ID {network_id} not found",
        )
        row.name = network.name
        row.config = dict(network.config)
        await self._flush(tx, f"Network '{network.name}'")

        self.logger.info("Network updated", network=network.name)
        return network_from_row(row)

    async def delete(self, tx: Transaction, name: str) -> None:
        row = await self._one(
            tx,
            select(NetworkRow).where(NetworkRow.name == name),
            f"Network '{name}' not found",
        )
        await tx.session.delete(row)
        await self._flush(tx, f"Network '{name}'")
        self.logger.info("Network deleted", network=name)
