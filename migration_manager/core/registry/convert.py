"""
Row <-> entity conversion.

The only place where storage sentinels and JSON columns are translated
to and from the domain entities.
"""

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

from migration_manager.core.models import (
    BatchRow,
    CertificateRow,
    InstanceOverrideRow,
    InstanceRow,
    NetworkRow,
    SourceRow,
    SourceType,
    TargetRow,
    TargetType,
    from_db_id,
    to_db_id,
)
from migration_manager.core.schemas import (
    Batch,
    Certificate,
    CommonSource,
    CommonTarget,
    IncusTarget,
    Instance,
    InstanceCPUInfo,
    InstanceDiskInfo,
    InstanceMemoryInfo,
    InstanceNICInfo,
    InstanceOverride,
    Network,
    Source,
    Target,
    VMwareProperties,
    VMwareSource,
)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands timestamps back without tzinfo; everything is stored as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc)
    return value


# ==========================================================================
# Sources
# ==========================================================================

def source_from_row(row: SourceRow) -> Source:
    match row.source_type:
        case SourceType.COMMON:
            return CommonSource(id=row.id, name=row.name, insecure=row.insecure)
        case SourceType.VMWARE:
            return VMwareSource(
                id=row.id,
                name=row.name,
                insecure=row.insecure,
                properties=VMwareProperties.model_validate(row.properties),
            )
        case _:
            raise ValueError(f"Unknown source type {row.source_type!r}")


def source_values(source: Source) -> dict[str, Any]:
    match source:
        case CommonSource():
            properties: dict[str, Any] = {}
        case VMwareSource():
            properties = source.properties.model_dump()
        case _:
            raise TypeError(f"Can only store a common or VMware source, got {type(source).__name__}")

    return {
        "name": source.name,
        "source_type": source.source_type,
        "insecure": source.insecure,
        "properties": properties,
    }


# ==========================================================================
# Targets
# ==========================================================================

def target_from_row(row: TargetRow) -> Target:
    match row.target_type:
        case TargetType.COMMON:
            return CommonTarget(id=row.id, name=row.name)
        case TargetType.INCUS:
            return IncusTarget(
                id=row.id,
                name=row.name,
                endpoint=row.endpoint,
                tls_client_key=row.tls_client_key,
                tls_client_cert=row.tls_client_cert,
                oidc_tokens=row.oidc_tokens,
                insecure=row.insecure,
                incus_profile=row.incus_profile,
                incus_project=row.incus_project,
            )
        case _:
            raise ValueError(f"Unknown target type {row.target_type!r}")


def target_values(target: Target) -> dict[str, Any]:
    values: dict[str, Any] = {
        "name": target.name,
        "target_type": target.target_type,
        "endpoint": "",
        "tls_client_key": "",
        "tls_client_cert": "",
        "oidc_tokens": None,
        "insecure": False,
        "incus_profile": "",
        "incus_project": "",
    }

    match target:
        case CommonTarget():
            pass
        case IncusTarget():
            values.update(
                endpoint=target.endpoint,
                tls_client_key=target.tls_client_key,
                tls_client_cert=target.tls_client_cert,
                oidc_tokens=target.oidc_tokens,
                insecure=target.insecure,
                incus_profile=target.incus_profile,
                incus_project=target.incus_project,
            )
        case _:
            raise TypeError(f"Can only store a common or Incus target, got {type(target).__name__}")

    return values


# ==========================================================================
# Simple records
# ==========================================================================

def network_from_row(row: NetworkRow) -> Network:
    return Network(id=row.id, name=row.name, config=dict(row.config or {}))


def certificate_from_row(row: CertificateRow) -> Certificate:
    return Certificate(
        fingerprint=row.fingerprint,
        type=row.type,
        name=row.name,
        description=row.description,
        certificate=row.certificate,
    )


# ==========================================================================
# Batches
# ==========================================================================

def batch_from_row(row: BatchRow) -> Batch:
    return Batch(
        id=row.id,
        name=row.name,
        status=row.status,
        status_message=row.status_message,
        include_expression=row.include_expression,
        migration_window_start=_aware(row.migration_window_start),
        migration_window_end=_aware(row.migration_window_end),
        target_id=from_db_id(row.target_id),
        target_project=row.target_project,
        storage_pool=row.storage_pool,
        default_network=row.default_network,
    )


def batch_values(batch: Batch) -> dict[str, Any]:
    """Writable batch columns. Status is owned by update_status."""
    return {
        "name": batch.name,
        "include_expression": batch.include_expression,
        "migration_window_start": _utc(batch.migration_window_start),
        "migration_window_end": _utc(batch.migration_window_end),
        "target_id": to_db_id(batch.target_id),
        "target_project": batch.target_project,
        "storage_pool": batch.storage_pool,
        "default_network": batch.default_network,
    }


# ==========================================================================
# Instances
# ==========================================================================

def instance_from_row(row: InstanceRow) -> Instance:
    return Instance(
        uuid=UUID(row.uuid),
        inventory_path=row.inventory_path,
        annotation=row.annotation,
        name=row.name,
        migration_status=row.migration_status,
        migration_status_message=row.migration_status_message,
        last_update_from_source=_aware(row.last_update_from_source),
        last_manual_update=_aware(row.last_manual_update),
        source_id=row.source_id,
        target_id=from_db_id(row.target_id),
        batch_id=from_db_id(row.batch_id),
        architecture=row.architecture,
        os=row.os,
        os_version=row.os_version,
        cpu=InstanceCPUInfo(number_cpus=row.number_cpus),
        memory=InstanceMemoryInfo(memory_in_bytes=row.memory_in_bytes),
        disks=[InstanceDiskInfo.model_validate(disk) for disk in row.disks or []],
        nics=[InstanceNICInfo.model_validate(nic) for nic in row.nics or []],
        use_legacy_bios=row.use_legacy_bios,
        secure_boot_enabled=row.secure_boot_enabled,
        tpm_present=row.tpm_present,
    )


def instance_values(instance: Instance) -> dict[str, Any]:
    """Source-synced and user-editable columns. Status and batch are set separately."""
    return {
        "inventory_path": instance.inventory_path,
        "annotation": instance.annotation,
        "name": instance.name,
        "last_update_from_source": _utc(instance.last_update_from_source),
        "source_id": instance.source_id,
        "target_id": to_db_id(instance.target_id),
        "architecture": instance.architecture,
        "os": instance.os,
        "os_version": instance.os_version,
        "disks": [disk.model_dump() for disk in instance.disks],
        "nics": [nic.model_dump() for nic in instance.nics],
        "number_cpus": instance.cpu.number_cpus,
        "memory_in_bytes": instance.memory.memory_in_bytes,
        "use_legacy_bios": instance.use_legacy_bios,
        "secure_boot_enabled": instance.secure_boot_enabled,
        "tpm_present": instance.tpm_present,
    }


def override_from_row(row: InstanceOverrideRow) -> InstanceOverride:
    return InstanceOverride(
        uuid=UUID(row.uuid),
        last_update=_aware(row.last_update),
        comment=row.comment,
        number_cpus=row.number_cpus,
        memory_in_bytes=row.memory_in_bytes,
        disable_migration=row.disable_migration,
    )
