"""
Migration Manager
=================

Batch membership and state consistency for VM migrations.
"""

from migration_manager.main import MigrationManager, lifespan

__version__ = "0.1.0"

__all__ = ["MigrationManager", "lifespan"]
