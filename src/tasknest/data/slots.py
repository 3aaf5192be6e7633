"""
SlotStore - a small key/value store with one file per key.

Plays the part browser localStorage plays for a web client: string values
under string keys, listed and removed by key.
"""
import re
from pathlib import Path
from typing import List, Optional, Union

from .io import atomic_write_text, read_text
from tasknest.recovery import FileOperationError
from tasknest.logs import get_logger

log = get_logger("data.slots")

KEY_PATTERN = re.compile(r'^[A-Za-z0-9_.-]+$')
SLOT_SUFFIX = ".json"


class SlotStore:
    def __init__(self, directory: Union[Path, str]):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        if not KEY_PATTERN.match(key):
            raise ValueError(f"Invalid slot key: {key!r}")
        return self.directory / f"{key}{SLOT_SUFFIX}"

    def get(self, key: str) -> Optional[str]:
        return read_text(self._path(key))

    def set(self, key: str, value: str) -> None:
        atomic_write_text(self._path(key), value, create_dirs=True)

    def remove(self, key: str) -> bool:
        path = self._path(key)
        if not path.exists():
            return False
        try:
            path.unlink()
        except OSError as e:
            raise FileOperationError(f"Failed to remove slot {key}: {e}") from e
        return True

    def exists(self, key: str) -> bool:
        return self._path(key).exists()

    def keys(self, prefix: str = "") -> List[str]:
        """Keys starting with prefix, in lexicographic order."""
        if not self.directory.exists():
            return []
        found = [
            path.name[:-len(SLOT_SUFFIX)]
            for path in self.directory.iterdir()
            if path.is_file() and path.name.endswith(SLOT_SUFFIX) and not path.name.startswith(".")
        ]
        return sorted(key for key in found if key.startswith(prefix))
