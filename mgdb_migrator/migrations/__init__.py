"""Migration registry and execution engine."""

from mgdb_migrator.migrations.migration_manager import Migrator
from mgdb_migrator.migrations.registry import Migration, MigrationRegistry

__all__ = ["Migration", "MigrationRegistry", "Migrator"]
