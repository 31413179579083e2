"""Certificate registry, keyed by fingerprint."""

from __future__ import annotations

from sqlalchemy import select

from migration_manager.core.exceptions import ConflictError, NotFoundError
from migration_manager.core.models import CertificateRow
from migration_manager.core.registry.base import Registry
from migration_manager.core.registry.convert import certificate_from_row
from migration_manager.core.schemas import Certificate
from migration_manager.core.transaction import Transaction


class CertificateRegistry(Registry):

    async def create(self, tx: Transaction, certificate: Certificate) -> Certificate:
        row = CertificateRow(
            fingerprint=certificate.fingerprint,
            type=certificate.type,
            name=certificate.name,
            description=certificate.description,
            certificate=certificate.certificate,
        )
        tx.session.add(row)
        await self._flush(tx, f"Certificate '{certificate.fingerprint}'")

        self.logger.info("Certificate added", fingerprint=certificate.fingerprint, name=certificate.name)
        return certificate_from_row(row)

    async def get_by_fingerprint(self, tx: Transaction, fingerprint: str) -> Certificate:
        row = await self._one(
            tx,
            select(CertificateRow).where(CertificateRow.fingerprint == fingerprint),
            f"Certificate '{fingerprint}' not found",
        )
        return certificate_from_row(row)

    async def get_by_fingerprint_prefix(self, tx: Transaction, prefix: str) -> Certificate:
        """
        Resolve an abbreviated fingerprint.

        Raises NotFoundError if nothing matches and ConflictError if the
        prefix matches more than one certificate.
        """
        rows = await self._all(
            tx,
            select(CertificateRow)
            .where(CertificateRow.fingerprint.startswith(prefix, autoescape=True))
            .order_by(CertificateRow.fingerprint),
        )
        if not rows:
            raise NotFoundError(f"No certificate found with fingerprint prefix '{prefix}'")
        if len(rows) > 1:
            raise ConflictError(f"More than one certificate matches fingerprint prefix '{prefix}'")
        return certificate_from_row(rows[0])

    async def list(self, tx: Transaction) -> list[Certificate]:
        rows = await self._all(tx, select(CertificateRow).order_by(CertificateRow.fingerprint))
        return [certificate_from_row(row) for row in rows]

    async def update(self, tx: Transaction, certificate: Certificate) -> Certificate:
        row = await self._one(
            tx,
            select(CertificateRow).where(CertificateRow.fingerprint == certificate.fingerprint),
            f"Certificate '{certificate.fingerprint}' not found",
        )
        row.type = certificate.type
        row.name = certificate.name
        row.description = certificate.description
        row.certificate = certificate.certificate
        await self._flush(tx, f"Certificate '{certificate.fingerprint}'")
        return certificate_from_row(row)

    async def delete(self, tx: Transaction, fingerprint: str) -> None:
        row = await self._one(
            tx,
            select(CertificateRow).where(CertificateRow.fingerprint == fingerprint),
            f"Certificate '{fingerprint}' not found",
        )
        await tx.session.delete(row)
        await self._flush(tx, f"Certificate '{fingerprint}'")
        self.logger.info("Certificate removed", fingerprint=fingerprint)
