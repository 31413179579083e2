"""
Migration Manager - Core Package
================================

Models, registries, the criteria evaluator and the assignment reconciler.
"""

from migration_manager.core.config import settings
from migration_manager.core.database import Base
from migration_manager.core.transaction import Transaction, TransactionManager

__all__ = ["Base", "Transaction", "TransactionManager", "settings"]
