import abc
from typing import Any, Dict

# Raw snapshot dictionary as read from storage, camelCase keys.
MigrationData = Dict[str, Any]

class Migration(abc.ABC):
    """
    An abstract base class for snapshot migrations.

    Each concrete migration upgrades a raw snapshot dictionary to the schema
    version named by VERSION (e.g., '1.1.0').
    """
    VERSION = None

    @abc.abstractmethod
    def upgrade(self, data: MigrationData) -> MigrationData:
        """
        Applies schema changes to the data to upgrade it to VERSION.

        Args:
            data: The dictionary representing the snapshot to be migrated.

        Returns:
            The migrated data dictionary.
        """
        pass
