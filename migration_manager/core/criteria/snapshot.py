"""Attribute snapshot of an instance, as seen by include expressions."""

from typing import Any, Optional

from migration_manager.core.schemas import Instance, InstanceOverride, Source


def build_snapshot(
    instance: Instance,
    source: Optional[Source] = None,
    override: Optional[InstanceOverride] = None,
) -> dict[str, Any]:
    """
    Flatten an instance (plus its source and override) into the fixed
    attribute schema include expressions are written against.

    Every key is always present, so expressions never fail on a missing
    optional field; collections are always lists.
    """
    return {
        "UUID": str(instance.uuid),
        "Name": instance.name,
        "InventoryPath": instance.inventory_path,
        "Annotation": instance.annotation,
        "Architecture": instance.architecture,
        "OS": instance.os,
        "OSVersion": instance.os_version,
        "MigrationStatus": instance.migration_status.value,
        "CPU": {
            "NumberCPUs": instance.cpu.number_cpus,
        },
        "Memory": {
            "MemoryInBytes": instance.memory.memory_in_bytes,
        },
        "Disks": [
            {
                "Name": disk.name,
                "Type": disk.type,
                "IsShared": disk.is_shared,
                "SizeInBytes": disk.size_in_bytes,
            }
            for disk in instance.disks
        ],
        "NICs": [
            {
                "Network": nic.network,
                "HardwareAddress": nic.hardware_address,
            }
            for nic in instance.nics
        ],
        "UseLegacyBios": instance.use_legacy_bios,
        "SecureBootEnabled": instance.secure_boot_enabled,
        "TPMPresent": instance.tpm_present,
        "Source": {
            "Name": source.name if source is not None else "",
            "SourceType": source.source_type.value if source is not None else "",
        },
        "Overrides": {
            "Comment": override.comment if override is not None else "",
            "NumberCPUs": override.number_cpus if override is not None else 0,
            "MemoryInBytes": override.memory_in_bytes if override is not None else 0,
            "DisableMigration": override.disable_migration if override is not None else False,
        },
    }
