"""
Migration Manager - Pydantic Schemas
====================================

Domain entities handed out by the registries. Absent references are
``None`` here; the storage sentinel never leaves the registry layer.
The public projection of any entity is ``entity.model_dump(mode="json")``.
"""

import posixpath
import re
from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from migration_manager.core.config import settings
from migration_manager.core.exceptions import NotPersistedError
from migration_manager.core.models import (
    BatchStatus,
    MigrationStatus,
    SourceType,
    TargetType,
)


# ==========================================================================
# Base Schemas
# ==========================================================================

class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class PersistedSchema(BaseSchema):
    """Entity with a surrogate ID assigned by the store."""

    id: Optional[int] = None

    def database_id(self) -> int:
        if self.id is None:
            raise NotPersistedError(
                f"{type(self).__name__} '{getattr(self, 'name', '')}' has not been added to the database, so it doesn't have an ID"
            )
        return self.id


# ==========================================================================
# Sources
# ==========================================================================

class VMwareProperties(BaseSchema):
    """Connection settings for a vCenter/ESXi source."""

    model_config = ConfigDict(str_strip_whitespace=False)

    endpoint: str
    username: str
    password: str


class CommonSource(PersistedSchema):
    """Source with no hypervisor-specific connection data."""

    source_type: Literal[SourceType.COMMON] = SourceType.COMMON
    name: str = Field(min_length=1, max_length=255)
    insecure: bool = False


class VMwareSource(PersistedSchema):
    """VMware source carrying the vCenter connection settings."""

    source_type: Literal[SourceType.VMWARE] = SourceType.VMWARE
    name: str = Field(min_length=1, max_length=255)
    insecure: bool = False
    properties: VMwareProperties


Source = Annotated[Union[CommonSource, VMwareSource], Field(discriminator="source_type")]
SourceAdapter: TypeAdapter[Source] = TypeAdapter(Source)


# ==========================================================================
# Targets
# ==========================================================================

class CommonTarget(PersistedSchema):
    target_type: Literal[TargetType.COMMON] = TargetType.COMMON
    name: str = Field(min_length=1, max_length=255)


class IncusTarget(PersistedSchema):
    """Incus target; authenticates either with TLS client certs or OIDC tokens."""

    model_config = ConfigDict(str_strip_whitespace=False)

    target_type: Literal[TargetType.INCUS] = TargetType.INCUS
    name: str = Field(min_length=1, max_length=255)
    endpoint: str
    tls_client_key: str = ""
    tls_client_cert: str = ""
    oidc_tokens: Optional[dict[str, Any]] = None
    insecure: bool = False
    incus_profile: str = "default"
    incus_project: str = "default"


Target = Annotated[Union[CommonTarget, IncusTarget], Field(discriminator="target_type")]
TargetAdapter: TypeAdapter[Target] = TypeAdapter(Target)


# ==========================================================================
# Simple records
# ==========================================================================

class Network(PersistedSchema):
    name: str = Field(min_length=1, max_length=255)
    config: dict[str, Any] = Field(default_factory=dict)


class Certificate(BaseSchema):
    # PEM bodies and keys are stored verbatim
    model_config = ConfigDict(str_strip_whitespace=False)

    fingerprint: str = Field(min_length=1)
    type: str = "client"
    name: str = ""
    description: str = ""
    certificate: str


# ==========================================================================
# Batches
# ==========================================================================

class Batch(PersistedSchema):
    """Named group of instances sharing a migration window, target and include expression."""

    name: str = Field(min_length=1, max_length=255)
    status: BatchStatus = BatchStatus.DEFINED
    status_message: str = ""
    include_expression: str = Field(default_factory=lambda: settings.DEFAULT_INCLUDE_EXPRESSION)
    migration_window_start: Optional[datetime] = None
    migration_window_end: Optional[datetime] = None
    target_id: Optional[int] = None
    target_project: str = ""
    storage_pool: str = ""
    default_network: str = ""

    def can_be_modified(self) -> bool:
        return self.status in (
            BatchStatus.DEFINED,
            BatchStatus.FINISHED,
            BatchStatus.ERROR,
        )


# ==========================================================================
# Instances
# ==========================================================================

_NON_NAME_CHARS = re.compile(r"[^\-a-zA-Z0-9]+")


def derive_instance_name(inventory_path: str) -> str:
    """Last inventory path segment, restricted to alphanumerics and hyphens."""
    base = posixpath.basename(inventory_path.rstrip("/"))
    return _NON_NAME_CHARS.sub("-", base)


class InstanceCPUInfo(BaseSchema):
    number_cpus: int = Field(default=0, ge=0)


class InstanceMemoryInfo(BaseSchema):
    memory_in_bytes: int = Field(default=0, ge=0)


class InstanceDiskInfo(BaseSchema):
    name: str = ""
    type: str = "HDD"
    is_shared: bool = False
    size_in_bytes: int = Field(default=0, ge=0)


class InstanceNICInfo(BaseSchema):
    network: str = ""
    hardware_address: str = ""


class Instance(BaseSchema):
    """VM instance as synced from its source."""

    uuid: UUID
    inventory_path: str = Field(min_length=1)
    annotation: str = ""
    name: str = ""
    migration_status: MigrationStatus = MigrationStatus.NOT_ASSIGNED_BATCH
    migration_status_message: str = ""
    last_update_from_source: Optional[datetime] = None
    last_manual_update: Optional[datetime] = None

    source_id: int
    target_id: Optional[int] = None
    batch_id: Optional[int] = None

    architecture: str = ""
    os: str = ""
    os_version: str = ""
    cpu: InstanceCPUInfo = Field(default_factory=InstanceCPUInfo)
    memory: InstanceMemoryInfo = Field(default_factory=InstanceMemoryInfo)
    disks: list[InstanceDiskInfo] = Field(default_factory=list)
    nics: list[InstanceNICInfo] = Field(default_factory=list)
    use_legacy_bios: bool = False
    secure_boot_enabled: bool = False
    tpm_present: bool = False

    @model_validator(mode="after")
    def _default_name(self) -> "Instance":
        if not self.name:
            self.name = derive_instance_name(self.inventory_path)
        return self

    def is_assigned(self) -> bool:
        return self.batch_id is not None

    def is_migrating(self) -> bool:
        return self.migration_status in (
            MigrationStatus.CREATING,
            MigrationStatus.BACKGROUND_IMPORT,
            MigrationStatus.IDLE,
            MigrationStatus.FINAL_IMPORT,
            MigrationStatus.IMPORT_COMPLETE,
        )

    def can_be_modified(self) -> bool:
        return self.migration_status in (
            MigrationStatus.NOT_ASSIGNED_BATCH,
            MigrationStatus.FINISHED,
            MigrationStatus.ERROR,
            MigrationStatus.USER_DISABLED_MIGRATION,
        )


class InstanceOverride(BaseSchema):
    """User-supplied corrections for one instance, independent of source data."""

    uuid: UUID
    last_update: Optional[datetime] = None
    comment: str = ""
    number_cpus: int = Field(default=0, ge=0)
    memory_in_bytes: int = Field(default=0, ge=0)
    disable_migration: bool = False
