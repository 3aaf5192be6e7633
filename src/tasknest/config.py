"""Settings loaded from TASKNEST_* environment variables.

One Settings object for the whole app; nothing here touches the disk.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

ENV_PREFIX = "TASKNEST"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- Logging ----
    log_level: str

    # ---- Local persistence ----
    data_dir: Path
    storage_key: str
    autosave_delay: float
    backup_count: int

    # ---- Remote mirror ----
    remote_url: str

    @property
    def slots_dir(self) -> Path:
        return self.data_dir / "slots"

    @property
    def log_dir(self) -> Path:
        return self.data_dir / "logs"

    @staticmethod
    def from_env() -> "Settings":
        data_dir = _env_path(_k("DATA_DIR"), Path.home() / ".local" / "share" / "tasknest")
        return Settings(
            log_level=_env(_k("LOG_LEVEL"), "WARNING").upper(),
            data_dir=data_dir,
            storage_key=_env(_k("STORAGE_KEY"), "taskManager").strip() or "taskManager",
            autosave_delay=max(0.0, _env_float(_k("AUTOSAVE_DELAY"), 1.0)),
            backup_count=max(1, _env_int(_k("BACKUP_COUNT"), 5)),
            remote_url=_env(_k("REMOTE_URL"), "").strip().rstrip("/"),
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
