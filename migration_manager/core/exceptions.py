"""
Migration Manager - Errors
==========================

Domain error taxonomy. Store-level constraint failures are mapped onto these
at the registry boundary; anything else propagates unchanged.
"""

from sqlalchemy.exc import IntegrityError


class MigrationManagerError(Exception):
    """Base class for all domain errors."""


class NotFoundError(MigrationManagerError):
    """A lookup by key or ID yielded no row."""


class ConflictError(MigrationManagerError):
    """A uniqueness rule was violated (duplicate name, fingerprint, UUID)."""


class ValidationError(MigrationManagerError):
    """The caller supplied an entity or argument that cannot be accepted."""


class ForeignKeyViolationError(ValidationError):
    """A reference points at a row that does not exist, or a row is still referenced."""


class InvalidArgumentError(ValidationError):
    """Malformed or ill-typed criteria expression, or a bad function call."""


class InvalidStateError(MigrationManagerError):
    """A lifecycle guard blocked the operation (running batch, migrating instance)."""


class NotPersistedError(MigrationManagerError):
    """The entity has no surrogate ID because it was never stored."""


def map_integrity_error(err: IntegrityError, entity: str) -> MigrationManagerError | IntegrityError:
    """
    Translate an IntegrityError into the matching domain error.

    ``entity`` names the row being written, e.g. ``"Batch 'b1'"``. Unrecognised
    integrity failures are returned as-is so the caller can re-raise them.
    """
    text = str(err.orig) if err.orig is not None else str(err)

    if "UNIQUE constraint failed" in text or "duplicate key" in text:
        return ConflictError(f"{entity} already exists")

    if "FOREIGN KEY constraint failed" in text or "foreign key constraint" in text:
        return ForeignKeyViolationError(f"{entity} references a row that does not exist")

    return err
