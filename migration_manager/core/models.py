"""
Migration Manager - Database Models
===================================

SQLAlchemy models for all persisted entities.
These define the storage shape only; registries convert rows to the
domain entities in ``schemas.py`` and back.
"""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from migration_manager.core.database import Base


# Reserved value for "no associated row" in sentinel-capable ID columns.
INVALID_DATABASE_ID = -1


def to_db_id(value: Optional[int]) -> int:
    return INVALID_DATABASE_ID if value is None else value


def from_db_id(value: Optional[int]) -> Optional[int]:
    if value is None or value == INVALID_DATABASE_ID:
        return None
    return value


# ==========================================================================
# Enums
# ==========================================================================

class BatchStatus(str, enum.Enum):
    """Lifecycle of a batch. Only the executor moves a batch to RUNNING."""
    UNKNOWN = "Unknown"
    DEFINED = "Defined"
    QUEUED = "Queued"
    RUNNING = "Running"
    STOPPED = "Stopped"
    FINISHED = "Finished"
    ERROR = "Error"


class MigrationStatus(str, enum.Enum):
    """Per-instance migration state machine."""
    UNKNOWN = "Unknown"
    NOT_ASSIGNED_BATCH = "NotAssignedBatch"
    ASSIGNED_BATCH = "AssignedBatch"
    CREATING = "Creating"
    BACKGROUND_IMPORT = "BackgroundImport"
    IDLE = "Idle"
    FINAL_IMPORT = "FinalImport"
    IMPORT_COMPLETE = "ImportComplete"
    FINISHED = "Finished"
    ERROR = "Error"
    USER_DISABLED_MIGRATION = "UserDisabledMigration"

    @property
    def description(self) -> str:
        return _MIGRATION_STATUS_DESCRIPTIONS[self]


_MIGRATION_STATUS_DESCRIPTIONS = {
    MigrationStatus.UNKNOWN: "Unknown",
    MigrationStatus.NOT_ASSIGNED_BATCH: "Not yet assigned to a batch",
    MigrationStatus.ASSIGNED_BATCH: "Assigned to a batch",
    MigrationStatus.CREATING: "Creating new VM",
    MigrationStatus.BACKGROUND_IMPORT: "Performing background import tasks",
    MigrationStatus.IDLE: "Idle",
    MigrationStatus.FINAL_IMPORT: "Performing final import tasks",
    MigrationStatus.IMPORT_COMPLETE: "Import tasks complete",
    MigrationStatus.FINISHED: "Finished",
    MigrationStatus.ERROR: "Error",
    MigrationStatus.USER_DISABLED_MIGRATION: "User disabled migration",
}


class SourceType(str, enum.Enum):
    """Kinds of migration source."""
    COMMON = "common"
    VMWARE = "vmware"


class TargetType(str, enum.Enum):
    """Kinds of migration target."""
    COMMON = "common"
    INCUS = "incus"


# ==========================================================================
# Models
# ==========================================================================

class SourceRow(Base):
    """Source environment (hypervisor inventory) instances are read from."""

    __tablename__ = "sources"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    source_type: Mapped[SourceType] = mapped_column(
        Enum(SourceType, native_enum=False),
        nullable=False,
    )
    insecure: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    properties: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    def __repr__(self) -> str:
        return f"<Source {self.name}>"


class TargetRow(Base):
    """Target environment instances are migrated into."""

    __tablename__ = "targets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    target_type: Mapped[TargetType] = mapped_column(
        Enum(TargetType, native_enum=False),
        nullable=False,
    )
    endpoint: Mapped[str] = mapped_column(String(1024), default="", nullable=False)
    tls_client_key: Mapped[str] = mapped_column(Text, default="", nullable=False)
    tls_client_cert: Mapped[str] = mapped_column(Text, default="", nullable=False)
    oidc_tokens: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    insecure: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    incus_profile: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    incus_project: Mapped[str] = mapped_column(String(255), default="", nullable=False)

    def __repr__(self) -> str:
        return f"<Target {self.name}>"


class NetworkRow(Base):
    __tablename__ = "networks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    config: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    def __repr__(self) -> str:
        return f"<Network {self.name}>"


class CertificateRow(Base):
    __tablename__ = "certificates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    fingerprint: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    certificate: Mapped[str] = mapped_column(Text, nullable=False)

    def __repr__(self) -> str:
        return f"<Certificate {self.fingerprint[:12]}>"


class ConfigRow(Base):
    """Global key/value configuration."""

    __tablename__ = "config"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)


class BatchRow(Base):
    """
    Batch of instances sharing a migration window, target and include expression.

    target_id holds INVALID_DATABASE_ID when no target is selected yet.
    """

    __tablename__ = "batches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    status: Mapped[BatchStatus] = mapped_column(
        Enum(BatchStatus, native_enum=False),
        default=BatchStatus.DEFINED,
        nullable=False,
    )
    status_message: Mapped[str] = mapped_column(Text, default="", nullable=False)
    include_expression: Mapped[str] = mapped_column(Text, nullable=False)
    migration_window_start: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    migration_window_end: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    target_id: Mapped[int] = mapped_column(
        Integer,
        default=INVALID_DATABASE_ID,
        nullable=False,
    )
    target_project: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    storage_pool: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    default_network: Mapped[str] = mapped_column(String(255), default="", nullable=False)

    def __repr__(self) -> str:
        return f"<Batch {self.name} ({self.status.value})>"


class InstanceRow(Base):
    """
    VM instance discovered on a source.

    batch_id and target_id hold INVALID_DATABASE_ID when unassigned.
    """

    __tablename__ = "instances"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True)
    inventory_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    annotation: Mapped[str] = mapped_column(Text, default="", nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    migration_status: Mapped[MigrationStatus] = mapped_column(
        Enum(MigrationStatus, native_enum=False),
        default=MigrationStatus.NOT_ASSIGNED_BATCH,
        nullable=False,
    )
    migration_status_message: Mapped[str] = mapped_column(Text, default="", nullable=False)
    last_update_from_source: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    last_manual_update: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    source_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("sources.id"),
        index=True,
        nullable=False,
    )
    target_id: Mapped[int] = mapped_column(
        Integer,
        default=INVALID_DATABASE_ID,
        nullable=False,
    )
    batch_id: Mapped[int] = mapped_column(
        Integer,
        default=INVALID_DATABASE_ID,
        index=True,
        nullable=False,
    )

    architecture: Mapped[str] = mapped_column(String(64), default="", nullable=False)
    os: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    os_version: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    disks: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    nics: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    number_cpus: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    memory_in_bytes: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    use_legacy_bios: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    secure_boot_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    tpm_present: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<Instance {self.inventory_path}>"


class InstanceOverrideRow(Base):
    """User-supplied corrections for one instance; removed with the instance."""

    __tablename__ = "instance_overrides"

    uuid: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("instances.uuid", ondelete="CASCADE"),
        primary_key=True,
    )
    last_update: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    comment: Mapped[str] = mapped_column(Text, default="", nullable=False)
    number_cpus: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    memory_in_bytes: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    disable_migration: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<InstanceOverride {self.uuid}>"
