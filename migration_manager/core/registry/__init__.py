"""
Registries
==========

One registry per entity type. Every method takes the active Transaction as
its first argument and flushes through it; none of them commit.
"""

from dataclasses import dataclass, field

from migration_manager.core.registry.batches import BatchRegistry
from migration_manager.core.registry.certificates import CertificateRegistry
from migration_manager.core.registry.config import ConfigRegistry
from migration_manager.core.registry.instances import InstanceRegistry
from migration_manager.core.registry.networks import NetworkRegistry
from migration_manager.core.registry.overrides import InstanceOverrideRegistry
from migration_manager.core.registry.sources import SourceRegistry
from migration_manager.core.registry.targets import TargetRegistry


@dataclass
class Registries:
    """The full set of registries, shared by the reconciler and the manager."""

    batches: BatchRegistry = field(default_factory=BatchRegistry)
    instances: InstanceRegistry = field(default_factory=InstanceRegistry)
    overrides: InstanceOverrideRegistry = field(default_factory=InstanceOverrideRegistry)
    sources: SourceRegistry = field(default_factory=SourceRegistry)
    targets: TargetRegistry = field(default_factory=TargetRegistry)
    networks: NetworkRegistry = field(default_factory=NetworkRegistry)
    certificates: CertificateRegistry = field(default_factory=CertificateRegistry)
    config: ConfigRegistry = field(default_factory=ConfigRegistry)


__all__ = [
    "BatchRegistry",
    "CertificateRegistry",
    "ConfigRegistry",
    "InstanceOverrideRegistry",
    "InstanceRegistry",
    "NetworkRegistry",
    "Registries",
    "SourceRegistry",
    "TargetRegistry",
]
