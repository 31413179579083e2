"""
Migration Manager - Assignment Reconciler
=========================================

Keeps instance -> batch assignment in line with each batch's include
expression.

Two passes per batch, both in the caller's transaction:
1. Drop: assigned instances that no longer match are released, unless
   they are migrating. A migrating instance is never detached.
2. Adopt: unassigned instances that match are assigned.

Any evaluator error aborts the call before the caller commits, so no
partial assignment survives. Running twice without changes writes nothing
the second time.
"""

from dataclasses import dataclass, field
from uuid import UUID

import structlog

from migration_manager.core.criteria import CompiledExpression, build_snapshot, compile_expression
from migration_manager.core.exceptions import InvalidStateError
from migration_manager.core.models import MigrationStatus
from migration_manager.core.registry import Registries
from migration_manager.core.schemas import Batch, Instance, InstanceOverride, Source
from migration_manager.core.transaction import Transaction

logger = structlog.get_logger(__name__)


@dataclass
class ReconcileResult:
    """UUIDs touched by one reconcile run."""

    batch: str
    assigned: list[UUID] = field(default_factory=list)
    unassigned: list[UUID] = field(default_factory=list)

    @property
    def writes(self) -> int:
        return len(self.assigned) + len(self.unassigned)


class AssignmentReconciler:
    """
    Applies batch include expressions to the instance inventory.

    Usage:
        reconciler = AssignmentReconciler(registries)
        async with manager.transaction() as tx:
            result = await reconciler.reconcile(tx, batch)
    """

    def __init__(self, registries: Registries):
        self.registries = registries

    async def reconcile(self, tx: Transaction, batch: Batch) -> ReconcileResult:
        batch_id = batch.database_id()

        # Work from the stored definition; the caller's copy may be stale
        current = await self.registries.batches.get_by_id(tx, batch_id)
        if not current.can_be_modified():
            raise InvalidStateError(
                f"Cannot reconcile batch '{current.name}': Currently in a migration phase"
            )

        expression = compile_expression(current.include_expression)
        sources = {source.id: source for source in await self.registries.sources.list(tx)}
        overrides = {override.uuid: override for override in await self.registries.overrides.list(tx)}

        result = ReconcileResult(batch=current.name)

        # Drop pass
        for instance in await self.registries.instances.list_by_batch(tx, batch_id):
            if instance.migration_status == MigrationStatus.USER_DISABLED_MIGRATION:
                continue

            if self._matches(expression, instance, sources, overrides):
                continue

            if instance.is_migrating():
                logger.warning(
                    "Instance no longer matches batch but is migrating, keeping it assigned",
                    batch=current.name,
                    uuid=str(instance.uuid),
                    status=instance.migration_status.value,
                )
                continue

            await self.registries.instances.unassign(tx, instance.uuid)
            result.unassigned.append(instance.uuid)

        # Adopt pass
        for instance in await self.registries.instances.list_unassigned(tx):
            if instance.migration_status == MigrationStatus.USER_DISABLED_MIGRATION:
                continue

            override = overrides.get(instance.uuid)
            if override is not None and override.disable_migration:
                continue

            if not instance.can_be_modified():
                continue

            if self._matches(expression, instance, sources, overrides):
                await self.registries.instances.assign(tx, instance.uuid, batch_id)
                result.assigned.append(instance.uuid)

        logger.info(
            "Batch reconciled",
            batch=current.name,
            assigned=len(result.assigned),
            unassigned=len(result.unassigned),
        )
        return result

    async def reconcile_all(self, tx: Transaction) -> dict[str, ReconcileResult]:
        """
        Reconcile every modifiable batch, in name order.

        An instance matching several batches goes to the first one reached.
        """
        results = {}
        for batch in await self.registries.batches.list(tx):
            if not batch.can_be_modified():
                logger.debug("Skipping batch in migration phase", batch=batch.name, status=batch.status.value)
                continue
            results[batch.name] = await self.reconcile(tx, batch)
        return results

    @staticmethod
    def _matches(
        expression: CompiledExpression,
        instance: Instance,
        sources: dict[int, Source],
        overrides: dict[UUID, InstanceOverride],
    ) -> bool:
        snapshot = build_snapshot(
            instance,
            source=sources.get(instance.source_id),
            override=overrides.get(instance.uuid),
        )
        return expression.evaluate(snapshot)
