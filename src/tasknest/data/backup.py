import json
import time
from typing import Any, Dict, List, Optional

from .slots import SlotStore
from tasknest.models import StorageSnapshot
from tasknest.recovery import FileOperationError, StorageWriteError
from tasknest.logs import get_logger

log = get_logger('data.backup')

class BackupManager:
    """
    Rolling snapshot backups kept in the slot store next to the primary slot.

    Backup keys embed a fixed-width microsecond timestamp, so sorting keys
    sorts backups oldest to newest.
    """

    def __init__(self, slots: SlotStore, storage_key: str = "taskManager", keep_count: int = 5):
        self.slots = slots
        self.storage_key = storage_key
        self.keep_count = keep_count

    @property
    def prefix(self) -> str:
        return f"{self.storage_key}_backup_"

    def _generate_backup_key(self) -> str:
        """Generate a backup key with a timestamp, bumped past any existing key"""
        stamp = time.time_ns() // 1000
        key = f"{self.prefix}{stamp:016d}"
        while self.slots.exists(key):
            stamp += 1
            key = f"{self.prefix}{stamp:016d}"
        return key

    def create_backup(self, snapshot: StorageSnapshot) -> str:
        """Write a copy of the snapshot under a new backup key, then prune old backups"""
        backup_key = self._generate_backup_key()
        try:
            self.slots.set(backup_key, snapshot.to_json())
        except FileOperationError as e:
            raise StorageWriteError(f"Failed to create backup {backup_key}: {e}") from e

        self.cleanup_old_backups()
        log.debug(f"Created backup {backup_key}")
        return backup_key

    def list_backups(self) -> List[str]:
        """List all available backup keys (newest first)"""
        return list(reversed(self.slots.keys(self.prefix)))

    def count(self) -> int:
        return len(self.slots.keys(self.prefix))

    def read_backup(self, backup_key: str) -> Dict[str, Any]:
        """Parse one backup. Raises ValueError when it is not a JSON object"""
        if not backup_key.startswith(self.prefix):
            raise ValueError(f"{backup_key} is not a backup of {self.storage_key}")
        text = self.slots.get(backup_key)
        if text is None:
            raise FileNotFoundError(f"Backup {backup_key} not found")
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError(f"Backup {backup_key} does not hold a snapshot")
        return data

    def delete_backup(self, backup_key: str) -> bool:
        """Delete a specific backup"""
        return self.slots.remove(backup_key)

    def cleanup_old_backups(self, keep_count: Optional[int] = None) -> int:
        """Clean up old backups, keeping only the most recent ones"""
        keep = self.keep_count if keep_count is None else keep_count
        deleted_count = 0

        for backup_key in self.list_backups()[keep:]:
            try:
                if self.delete_backup(backup_key):
                    deleted_count += 1
            except FileOperationError as e:
                log.warning(f"Could not remove old backup {backup_key}: {e}")

        if deleted_count:
            log.debug(f"Pruned {deleted_count} old backup(s)")
        return deleted_count

    def clear_backups(self) -> int:
        return self.cleanup_old_backups(keep_count=0)
