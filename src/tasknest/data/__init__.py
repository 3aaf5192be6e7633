"""
Data management submodule: snapshot persistence, backups and migrations.
"""

# Import the main storage class
from .core import LocalStorage, export_filename
from .backup import BackupManager
from .slots import SlotStore
# Import the engine classes for direct access if needed
from .migrate import MigrationEngine
from .validate import validate_and_migrate
from .defaults import default_snapshot

__all__ = [
    'LocalStorage',
    'BackupManager',
    'SlotStore',
    'MigrationEngine',
    'validate_and_migrate',
    'default_snapshot',
    'export_filename',
]
