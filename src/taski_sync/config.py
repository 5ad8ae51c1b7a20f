# src/taski_sync/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time.
- Consumers accept an injected settings object; get_settings() is only the default.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "TASKI"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


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
    if raw is None:
        return default
    s = raw.strip()
    if not s:
        return default
    try:
        return float(s)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    tasks_db_path: Path

    # ---- Session ----
    user_id: str

    # ---- Reminders ----
    reminder_poll_seconds: float
    default_reminder_hour: int
    cancel_vanished_reminders: bool

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "taski").strip() or "taski"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/taski"))
        tasks_db_path = _env_path(_k("TASKS_DB_PATH"), data_dir / "tasks.sqlite3")

        user_id = _env(_k("USER_ID"), "local").strip() or "local"

        reminder_poll_seconds = max(0.1, _env_float(_k("REMINDER_POLL_SECONDS"), 1.0))
        # Calendar picks without a time land on this hour (9 AM unless overridden).
        default_reminder_hour = min(23, max(0, _env_int(_k("DEFAULT_REMINDER_HOUR"), 9)))
        cancel_vanished_reminders = _env_bool(_k("CANCEL_VANISHED_REMINDERS"), False)

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            tasks_db_path=tasks_db_path,
            user_id=user_id,
            reminder_poll_seconds=reminder_poll_seconds,
            default_reminder_hour=default_reminder_hour,
            cancel_vanished_reminders=cancel_vanished_reminders,
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    """Load .env once and return the process-wide Settings."""
    global _SETTINGS
    if _SETTINGS is None:
        load_dotenv(override=False)
        _SETTINGS = Settings.from_env()
    return _SETTINGS
