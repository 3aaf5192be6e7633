from typing import List, Optional

from packaging import version
from packaging.version import InvalidVersion

from tasknest.migration import Migration, MigrationData
from tasknest.recovery import MigrationError
from tasknest.version import APP_SCHEMA_VERSION
from tasknest.logs import get_logger

log = get_logger("data.migrate")

# Migrations shipped with the application, applied in VERSION order.
BUILTIN_MIGRATIONS: List[Migration] = []

class MigrationEngine:
    """
    Upgrades raw snapshot dictionaries step by step to the application schema version.

    Steps are Migration instances ordered by their VERSION. A snapshot tagged
    with version X runs every step with X < VERSION <= target.
    """
    def __init__(self, migrations: Optional[List[Migration]] = None, target_version: str = APP_SCHEMA_VERSION):
        self.target_version = target_version
        self.migrations: List[Migration] = []
        for migration in (BUILTIN_MIGRATIONS if migrations is None else migrations):
            self.register(migration)

    def register(self, migration: Migration):
        if migration.VERSION is None:
            raise ValueError(f"{type(migration).__name__} does not declare a VERSION")
        self.migrations.append(migration)
        self.migrations.sort(key=lambda m: version.parse(m.VERSION))
        log.debug(f"Registered migration {type(migration).__name__} -> {migration.VERSION}")

    def get_migration_path(self, current_version: str) -> List[Migration]:
        """
        Determines the sequence of migrations needed to get from
        current_version to the target version.
        """
        try:
            current = version.parse(current_version)
        except InvalidVersion:
            log.error(f"Current version '{current_version}' is not a valid version tag.")
            return []

        target = version.parse(self.target_version)
        if current > target:
            log.warning(f"Snapshot version {current_version} is newer than {self.target_version}; leaving as is.")
            return []

        return [m for m in self.migrations if current < version.parse(m.VERSION) <= target]

    def migrate(self, data: MigrationData) -> MigrationData:
        """Run every pending step on data and return the upgraded dictionary."""
        current_version = str(data.get("version") or self.target_version)
        migration_path = self.get_migration_path(current_version)
        if not migration_path:
            return data

        for migration in migration_path:
            log.info(f"Migrating snapshot from {current_version} to {migration.VERSION}...")
            try:
                data = migration.upgrade(dict(data))
            except Exception as e:
                raise MigrationError(f"Migration to {migration.VERSION} failed: {e}") from e
            data["version"] = migration.VERSION
            current_version = migration.VERSION

        log.info(f"Snapshot migrated to version {current_version}.")
        return data
